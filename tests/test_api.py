import base64
import json

import pytest
from fastapi.testclient import TestClient

from docx_archive import open_part
from main import FILLED_NAME, app
from provenance import hash_structured

DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def upload(plan_summary_docx, r5_answers):
    def _files(template=None):
        return {
            "template": ("PlanSummary.docx", template if template is not None else plan_summary_docx, DOCX),
            "answers": ("r5.json", json.dumps(r5_answers).encode("utf-8"), "application/json"),
        }
    return _files


class TestFillEndpoints:

    def test_fill_streams_docx(self, client, upload, plan_metadata):
        resp = client.post("/plan-summary/fill", files=upload(),
                           data={"metadata_json": json.dumps(plan_metadata)})
        assert resp.status_code == 200
        assert resp.headers["content-disposition"] == f"attachment; filename={FILLED_NAME}"
        assert resp.headers["x-content-hash"] == hash_structured(plan_metadata)
        assert "17-00045" in open_part(resp.content)

    def test_run_returns_log_and_manifest(self, client, upload, plan_metadata):
        resp = client.post("/plan-summary/run", files=upload(),
                           data={"metadata_json": json.dumps(plan_metadata)})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["log"][1] == {"label": "Case Number", "error": None, "ok": True, "reason": "appended"}
        assert set(body["manifest"]["input_hashes"]) == {"PlanSummary.docx", "r5.json"}
        assert "Acme Pension Plan" in open_part(base64.b64decode(body["docx_base64"]))

    def test_invalid_metadata_is_422(self, client, upload):
        resp = client.post("/plan-summary/fill", files=upload(),
                           data={"metadata_json": json.dumps({"schema_version": "0.7.0"})})
        assert resp.status_code == 422
        paths = [e["path"] for e in resp.json()["errors"]]
        assert paths == ["/", "/"]

    def test_bad_metadata_json(self, client, upload):
        resp = client.post("/plan-summary/run", files=upload(), data={"metadata_json": "{nope"})
        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Invalid metadata_json")

    def test_corrupt_template(self, client, upload, plan_metadata):
        resp = client.post("/plan-summary/fill", files=upload(b"not a zip"),
                           data={"metadata_json": json.dumps(plan_metadata)})
        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Invalid template")

    def test_wrong_content_type(self, client, plan_metadata, r5_answers):
        files = {
            "template": ("x.pdf", b"%PDF", "application/pdf"),
            "answers": ("r5.json", b"{}", "application/json"),
        }
        resp = client.post("/plan-summary/fill", files=files, data={"metadata_json": json.dumps(plan_metadata)})
        assert resp.status_code == 400


class TestMetadataEndpoints:

    def test_validate(self, client, plan_metadata):
        resp = client.post("/metadata/validate", data={"metadata_json": json.dumps(plan_metadata)})
        assert resp.json() == {"success": True, "errors": []}

    def test_validate_reports_errors(self, client, plan_metadata):
        plan_metadata["plan"]["plan_name"]["citations"][0]["page"] = 0
        resp = client.post("/metadata/validate", data={"metadata_json": json.dumps(plan_metadata)})
        body = resp.json()
        assert body["success"] is False
        assert body["errors"][0]["path"] == "/plan/plan_name/citations/0/page"

    def test_hash(self, client, plan_metadata):
        resp = client.post("/metadata/hash", data={"metadata_json": json.dumps(plan_metadata)})
        body = resp.json()
        assert body["content_hash"] == hash_structured(plan_metadata)
        assert body["manifest"]["module_id"] == "metadata"

    def test_hash_refuses_invalid(self, client):
        resp = client.post("/metadata/hash", data={"metadata_json": "{}"})
        assert resp.status_code == 422


class TestTemplateEndpoints:

    def test_labels(self, client, plan_summary_docx):
        resp = client.post("/template/labels", files={"template": ("t.docx", plan_summary_docx, DOCX)})
        labels = [x["label"] for x in resp.json()["labels"]]
        assert labels[:2] == ["Plan Name", "Case Number"]
        assert labels.count("Immediate Rate") == 2

    def test_root(self, client):
        assert "Plan Summary" in client.get("/").json()["message"]


class TestBundleEndpoint:

    def test_bundle_download(self, client):
        files = [
            ("prompt", ("metadata-scraper-prompt.txt", b"Extract plan metadata.", "text/plain")),
            ("documents", ("plan.pdf", b"%PDF-1.7", "application/pdf")),
        ]
        resp = client.post("/metadata/bundle", files=files, data={"doc_ids": ["DOC-1"]})
        assert resp.status_code == 200
        assert resp.headers["content-disposition"] == "attachment; filename=metadata-llm-bundle.json"
        bundle = resp.json()
        assert bundle["prompt"]["name"] == "metadata-scraper-prompt.txt"
        assert bundle["documents"][0]["mime"] == "application/pdf"
        assert base64.b64decode(bundle["documents"][0]["base64"]) == b"%PDF-1.7"

    def test_bundle_missing_doc_id(self, client):
        files = [
            ("prompt", ("p.txt", b"Extract plan metadata.", "text/plain")),
            ("documents", ("plan.pdf", b"%PDF-1.7", "application/pdf")),
        ]
        resp = client.post("/metadata/bundle", files=files)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Missing doc_id for plan.pdf"
