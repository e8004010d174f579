# case_records.py
"""
Typed views over the two JSON inputs of a Plan Summary run.

PlanMetadata  - the authoritative, schema-validated case record
                ({schema_version, meta:{…}, plan:{…}, documents, other_attributes,
                 dependent_fields}); every field is a FieldValue.
AnswerRecord  - the semi-structured R5 answer export ({items:[…], dependent_fields:{…}, …}).

Both loaders are forgiving: anything missing or malformed becomes "absent"
(FieldValue.value is None) instead of raising. The literal "unknown" that the
source data uses for blank fields is kept as-is and only treated as absent by
the value resolver.
"""
import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
SCHEMA_VERSION = "0.7.0"

META_KEYS = ["case_number", "case_processing_section", "notes"]
PLAN_KEYS = [
    "plan_name", "plan_number", "ein", "case_processing_section", "actuary", "auditor",
    "plan_sponsor_name", "plan_type", "effective_date", "termination_date",
    "termination_type", "trusteeship_date", "nod_date", "noit_date", "bpd_bankruptcy",
    "dobf", "employer_status", "facility_closing_date", "successor_plan", "plan_assets",
    "sparr", "funding_status", "valuation_date", "pbgc_case_status", "participant_count",
    "pbgc_lump_sum_first_segment", "pbgc_lump_sum_second_segment",
    "pbgc_lump_sum_third_segment", "pbgc_annuity_immediate_rate",
    "pbgc_annuity_thereafter_rate",
]


def to_text_value(v) -> str:
    """Scalar → text the way JSON authors expect ("5", "0.05", "true"); None/containers → ""."""
    if v is None or isinstance(v, (dict, list, tuple)):
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


# =========================
# Citations / field values
# =========================
@dataclass(frozen=True)
class Citation:
    doc_id: str
    page: int
    locator: str

    @classmethod
    def from_dict(cls, raw) -> Optional["Citation"]:
        """None unless doc_id, page and locator are all present and non-empty."""
        if not isinstance(raw, Mapping):
            return None
        doc_id = to_text_value(raw.get("doc_id")).strip()
        locator = to_text_value(raw.get("locator")).strip()
        page_raw = raw.get("page")
        if isinstance(page_raw, bool):
            return None
        try:
            page = int(str(page_raw).strip())
        except (TypeError, ValueError):
            return None
        if not doc_id or not locator or page <= 0:
            return None
        return cls(doc_id=doc_id, page=page, locator=locator)

    def to_dict(self) -> dict:
        return {"doc_id": self.doc_id, "page": self.page, "locator": self.locator}


@dataclass(frozen=True)
class FieldValue:
    value: Optional[str] = None  # None = unset; "unknown" is a real, preserved value
    citations: Tuple[Citation, ...] = ()

    @property
    def is_known(self) -> bool:
        if self.value is None:
            return False
        v = self.value.strip()
        return bool(v) and v != UNKNOWN

    @classmethod
    def from_raw(cls, raw) -> "FieldValue":
        if not isinstance(raw, Mapping):
            return cls()
        value = raw.get("value")
        value = None if value is None else to_text_value(value)
        cites_raw = raw.get("citations")
        citations: Tuple[Citation, ...] = ()
        if isinstance(cites_raw, list):
            parsed = [Citation.from_dict(c) for c in cites_raw]
            # one bad entry invalidates the whole list
            if all(c is not None for c in parsed):
                citations = tuple(parsed)
        return cls(value=value, citations=citations)

    def to_dict(self) -> dict:
        return {
            "value": UNKNOWN if self.value is None else self.value,
            "citations": [c.to_dict() for c in self.citations],
        }


def _field_map(raw) -> Dict[str, FieldValue]:
    if not isinstance(raw, Mapping):
        return {}
    return {str(k): FieldValue.from_raw(v) for k, v in raw.items()}


def _text_map(raw) -> Dict[str, str]:
    if not isinstance(raw, Mapping):
        return {}
    out = {}
    for k, v in raw.items():
        t = to_text_value(v)
        if t:
            out[str(k)] = t
    return out


# =========================
# Plan metadata
# =========================
@dataclass
class PlanMetadata:
    schema_version: str = ""
    meta: Dict[str, FieldValue] = field(default_factory=dict)
    plan: Dict[str, FieldValue] = field(default_factory=dict)
    documents: List[Any] = field(default_factory=list)
    other_attributes: List[Any] = field(default_factory=list)
    dependent_fields: Dict[str, str] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw) -> "PlanMetadata":
        if not isinstance(raw, Mapping):
            logger.warning("plan metadata is not a JSON object; treating every field as absent")
            raw = {}
        docs = raw.get("documents")
        others = raw.get("other_attributes")
        return cls(
            schema_version=to_text_value(raw.get("schema_version")),
            meta=_field_map(raw.get("meta")),
            plan=_field_map(raw.get("plan")),
            documents=list(docs) if isinstance(docs, list) else [],
            other_attributes=list(others) if isinstance(others, list) else [],
            dependent_fields=_text_map(raw.get("dependent_fields")),
            raw=dict(raw),
        )

    def lookup(self, path: str) -> FieldValue:
        """'plan.termination_date' / 'meta.case_number'; a bare key means plan.<key>."""
        section, _, key = path.partition(".")
        if not key:
            section, key = "plan", section
        if section == "plan":
            return self.plan.get(key, FieldValue())
        if section == "meta":
            return self.meta.get(key, FieldValue())
        if section == "other":
            for attr in self.other_attributes:
                if isinstance(attr, Mapping) and attr.get("name") == key:
                    return FieldValue.from_raw(attr)
        return FieldValue()


def default_plan_metadata() -> dict:
    """Blank metadata record: every known field present with value "unknown"."""
    empty = {"value": UNKNOWN, "citations": []}
    return {
        "schema_version": SCHEMA_VERSION,
        "meta": {k: copy.deepcopy(empty) for k in META_KEYS},
        "plan": {k: copy.deepcopy(empty) for k in PLAN_KEYS},
        "documents": [],
        "other_attributes": [],
    }


# =========================
# Answer record (R5)
# =========================
@dataclass(frozen=True)
class AnswerItem:
    identifier: str
    label: str
    answer: str

    @classmethod
    def from_raw(cls, raw) -> Optional["AnswerItem"]:
        if not isinstance(raw, Mapping):
            return None
        ident = raw.get("identifier", raw.get("r5_id", raw.get("id")))
        return cls(
            identifier=to_text_value(ident),
            label=to_text_value(raw.get("label")),
            answer=to_text_value(raw.get("answer")),
        )


@dataclass
class AnswerRecord:
    items: List[AnswerItem] = field(default_factory=list)
    dependent_fields: Dict[str, str] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw) -> "AnswerRecord":
        if not isinstance(raw, Mapping):
            logger.warning("answer record is not a JSON object; ignoring it")
            raw = {}
        items_raw = raw.get("items")
        items: List[AnswerItem] = []
        skipped = 0
        for it in items_raw if isinstance(items_raw, list) else []:
            item = AnswerItem.from_raw(it)
            if item is None:
                skipped += 1
                continue
            items.append(item)
        if skipped:
            logger.info("skipped %d malformed answer item(s)", skipped)
        return cls(items=items, dependent_fields=_text_map(raw.get("dependent_fields")), raw=dict(raw))

    def top_level(self, key: str) -> str:
        return to_text_value(self.raw.get(key))


# =========================
# File readers
# =========================
def load_json_file(path: Path) -> Any:
    with open(path, "r", encoding="utf-8-sig") as f:
        return json.load(f)


def _read_csv_with_fallbacks(path: Path) -> pd.DataFrame:
    encodings = ["utf-8", "utf-8-sig", "cp1252", "latin1"]
    last_err = None
    for enc in encodings:
        try:
            return pd.read_csv(path, dtype=str, encoding=enc)
        except UnicodeDecodeError as e:
            last_err = e
    raise RuntimeError(f"Failed to read CSV with common encodings. Last error: {last_err}")


def _read_table_any(path: Path, sheet: Optional[str] = None) -> pd.DataFrame:
    ext = path.suffix.lower()
    if ext in [".xlsx", ".xls"]:
        return pd.read_excel(path, dtype=str, sheet_name=sheet or 0)
    elif ext == ".csv":
        return _read_csv_with_fallbacks(path)
    else:
        raise RuntimeError(f"Unsupported file extension: {ext}. Use .csv, .xlsx, or .xls")


def answer_items_from_df(df: pd.DataFrame) -> dict:
    """
    Item table → answer-record mapping. Expected columns (case-insensitive):
    Identifier (or R5_ID / ID) | Label | Answer. Rows without any text are dropped.
    """
    df = df.fillna("")
    cols = {str(c).strip().lower(): c for c in df.columns}
    id_col = cols.get("identifier") or cols.get("r5_id") or cols.get("id")
    label_col = cols.get("label")
    answer_col = cols.get("answer")
    if answer_col is None or (id_col is None and label_col is None):
        raise ValueError("Answer table must have columns: Answer and Identifier and/or Label")

    items = []
    for _, row in df.iterrows():
        ident = str(row[id_col]).strip() if id_col is not None else ""
        label = str(row[label_col]).strip() if label_col is not None else ""
        answer = str(row[answer_col])
        if not (ident or label or answer.strip()):
            continue
        items.append({"identifier": ident, "label": label, "answer": answer})
    return {"items": items}


def load_answer_file(path: Path, sheet: Optional[str] = None) -> dict:
    """R5 answers from .json, or from a .csv/.xlsx item table."""
    if path.suffix.lower() == ".json":
        return load_json_file(path)
    return answer_items_from_df(_read_table_any(path, sheet))
