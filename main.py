# main.py
from fastapi import FastAPI, UploadFile, File, Form, HTTPException
from fastapi.responses import StreamingResponse, JSONResponse
import base64
import io
import json
import logging
from typing import Any, Dict, List, Optional

from docx_archive import FileFormatError
from docx_tree import ParseError
from label_locator import template_labels
from metadata_bundle import BUNDLE_NAME, BundleDocument, BundleError, build_bundle_async, bundle_to_json
from metadata_validation import PLAN_METADATA_SCHEMA, ValidationFailed, register_metadata, require_valid, validate_plan_metadata
from plan_summary import FillResult, fill_plan_summary_async

logger = logging.getLogger(__name__)

app = FastAPI(title="Plan Summary DOCX Fill")

DOCX_TYPES = {
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/octet-stream",
}
FILLED_NAME = "PlanSummary.FILLED.docx"


def _parse_json(text: str, what: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Invalid {what}: {e}")


def _issues_response(err: ValidationFailed) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"success": False, "errors": [{"path": i.path, "message": i.message} for i in err.issues]},
    )


async def _read_template(template: UploadFile) -> bytes:
    if template.content_type and template.content_type not in DOCX_TYPES:
        raise HTTPException(status_code=400, detail="File must be a .docx")
    return await template.read()


async def _run(template: UploadFile, metadata_json: str, answers: UploadFile) -> FillResult:
    metadata = _parse_json(metadata_json, "metadata_json")
    # unvalidated metadata is never filled or hashed
    require_valid(metadata)
    template_bytes = await _read_template(template)
    answers_bytes = await answers.read()
    try:
        return await fill_plan_summary_async(
            template_bytes,
            answers_bytes,
            metadata,
            template_name=template.filename or "template.docx",
            answers_name=answers.filename or "answers.json",
        )
    except (FileFormatError, ParseError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid template: {e}")
    except ValueError as e:
        # bad answers JSON, or clashing upload names
        raise HTTPException(status_code=400, detail=f"Invalid answers: {e}")


@app.post("/plan-summary/fill")
async def fill_plan_summary_docx(
    template: UploadFile = File(...),
    answers: UploadFile = File(...),
    metadata_json: str = Form(...),
):
    """
    Fill the Plan Summary template and return it for download.
    The run manifest's content hash comes back in X-Content-Hash.
    """
    try:
        result = await _run(template, metadata_json, answers)
    except ValidationFailed as e:
        return _issues_response(e)

    for line in result.log.lines():
        logger.info("fill: %s", line)
    headers = {
        "Content-Disposition": f"attachment; filename={FILLED_NAME}",
        "X-Content-Hash": result.manifest.content_hash,
    }
    return StreamingResponse(
        io.BytesIO(result.archive),
        media_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        headers=headers,
    )


@app.post("/plan-summary/run")
async def run_plan_summary(
    template: UploadFile = File(...),
    answers: UploadFile = File(...),
    metadata_json: str = Form(...),
):
    """Same fill, but return the outcome log, manifest and base64 archive as JSON."""
    try:
        result = await _run(template, metadata_json, answers)
    except ValidationFailed as e:
        return _issues_response(e)
    return {
        "success": True,
        "log": result.log.to_list(),
        "manifest": result.manifest.to_dict(),
        "filename": FILLED_NAME,
        "docx_base64": base64.b64encode(result.archive).decode("ascii"),
    }


@app.post("/metadata/validate")
async def validate_metadata(metadata_json: str = Form(...)):
    metadata = _parse_json(metadata_json, "metadata_json")
    issues = validate_plan_metadata(metadata)
    return {
        "success": not issues,
        "errors": [{"path": i.path, "message": i.message} for i in issues],
    }


@app.post("/metadata/hash")
async def hash_metadata(metadata_json: str = Form(...)):
    metadata = _parse_json(metadata_json, "metadata_json")
    try:
        manifest = register_metadata(metadata)
    except ValidationFailed as e:
        return _issues_response(e)
    return {"success": True, "content_hash": manifest.content_hash, "manifest": manifest.to_dict()}


@app.post("/metadata/bundle")
async def bundle_metadata_inputs(
    prompt: UploadFile = File(...),
    documents: List[UploadFile] = File(default=[]),
    doc_ids: List[str] = Form(default=[]),
    schema_json: Optional[str] = Form(None),
):
    """
    Download the LLM bundle (prompt, schema, base64 documents).
    doc_ids pair with documents by position.
    """
    if len(doc_ids) > len(documents):
        raise HTTPException(status_code=400, detail="More doc_ids than documents")
    prompt_text = (await prompt.read()).decode("utf-8", errors="replace")
    docs = []
    for i, upload in enumerate(documents):
        docs.append(BundleDocument(
            doc_id=doc_ids[i] if i < len(doc_ids) else "",
            filename=upload.filename or f"document-{i + 1}",
            data=await upload.read(),
            mime=upload.content_type or None,
        ))
    try:
        bundle = await build_bundle_async(
            prompt_text,
            schema_json if schema_json is not None else PLAN_METADATA_SCHEMA,
            docs,
            prompt_name=prompt.filename,
        )
    except BundleError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return StreamingResponse(
        io.BytesIO(bundle_to_json(bundle).encode("utf-8")),
        media_type="application/json",
        headers={"Content-Disposition": f"attachment; filename={BUNDLE_NAME}"},
    )


@app.post("/template/labels")
async def list_template_labels(template: UploadFile = File(...)):
    """
    Labelled table cells of a template:
    [{ "table": 0, "row": 1, "col": 0, "label": "Case Number" }]
    """
    data = await _read_template(template)
    try:
        labels = template_labels(data)
    except Exception as e:  # python-docx raises several unrelated types for a bad package
        raise HTTPException(status_code=400, detail=f"Invalid template: {e}")
    return {"success": True, "labels": labels}


# Simple root
@app.get("/")
async def root() -> Dict[str, str]:
    return {"message": "Plan Summary DOCX Fill API. Use /plan-summary/fill and /plan-summary/run endpoints."}
