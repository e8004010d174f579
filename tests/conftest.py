import copy

import pytest

from case_records import default_plan_metadata
from docx_builders import build_docx, plan_summary_document


@pytest.fixture
def plan_summary_docx() -> bytes:
    return build_docx(plan_summary_document())


@pytest.fixture
def plan_metadata() -> dict:
    record = default_plan_metadata()
    record["meta"]["case_number"]["value"] = "17-00045"
    record["plan"]["plan_name"] = {
        "value": "Acme Pension Plan",
        "citations": [{"doc_id": "DOC-1", "page": 1, "locator": "cover"}],
    }
    record["plan"]["termination_date"]["value"] = "2017-03-31"
    record["plan"]["trusteeship_date"]["value"] = "2017-09-30"
    record["plan"]["valuation_date"]["value"] = "2017-03-31"
    return record


@pytest.fixture
def r5_answers() -> dict:
    return {
        "items": [
            {"r5_id": "R5-101", "label": "PBGC lump sum immediate rate", "answer": "1.25%"},
            {"r5_id": "R5-102", "label": "PBGC lump sum deferral rate", "answer": "4.00%"},
            {"r5_id": "R5-201", "label": "PBGC annuity rates", "answer": "2.50% / 3.75%"},
        ],
        "dependent_fields": {},
    }


@pytest.fixture
def make_metadata(plan_metadata):
    """Copy of the sample metadata with plan.<key> values overridden."""
    def _make(**plan_values):
        record = copy.deepcopy(plan_metadata)
        for k, v in plan_values.items():
            record["plan"][k] = {"value": v, "citations": []}
        return record
    return _make
