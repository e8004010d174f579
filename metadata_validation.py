# metadata_validation.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import jsonschema

from provenance import Manifest, build_manifest, hash_structured

logger = logging.getLogger(__name__)

METADATA_MODULE_ID = "metadata"
METADATA_MODULE_VERSION = "0.7.0"

_FIELD_VALUE = {
    "type": "object",
    "required": ["value", "citations"],
    "properties": {
        "value": {"type": "string"},
        "citations": {"type": "array", "items": {"$ref": "#/definitions/citation"}},
    },
}

PLAN_METADATA_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "PlanMetadata",
    "type": "object",
    "required": ["schema_version", "meta", "plan"],
    "properties": {
        "schema_version": {"type": "string", "minLength": 1},
        "meta": {
            "type": "object",
            "required": ["case_number"],
            "additionalProperties": {"$ref": "#/definitions/fieldValue"},
        },
        "plan": {
            "type": "object",
            "required": ["plan_name"],
            "additionalProperties": {"$ref": "#/definitions/fieldValue"},
        },
        "documents": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["doc_id"],
                "properties": {"doc_id": {"type": "string", "minLength": 1}},
                "additionalProperties": {"$ref": "#/definitions/fieldValue"},
            },
        },
        "other_attributes": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "value"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "value": {"type": "string"},
                    "citations": {"type": "array", "items": {"$ref": "#/definitions/citation"}},
                },
            },
        },
        "dependent_fields": {
            "type": "object",
            "additionalProperties": {"type": ["string", "number"]},
        },
    },
    "definitions": {
        "citation": {
            "type": "object",
            "required": ["doc_id", "page", "locator"],
            "properties": {
                "doc_id": {"type": "string", "minLength": 1},
                "page": {"type": "integer", "minimum": 1},
                "locator": {"type": "string", "minLength": 1},
            },
        },
        "fieldValue": _FIELD_VALUE,
    },
}


@dataclass(frozen=True)
class ValidationIssue:
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path} {self.message}"


class ValidationFailed(Exception):
    """Plan metadata did not pass the schema. Carries every issue, unsummarized."""

    def __init__(self, issues: List[ValidationIssue]):
        self.issues = list(issues)
        super().__init__("Validation errors: " + "; ".join(str(i) for i in self.issues))


def _pointer(path) -> str:
    parts = [str(p) for p in path]
    return "/" + "/".join(parts) if parts else "/"


def validate_plan_metadata(record: Any, schema: Optional[dict] = None) -> List[ValidationIssue]:
    """All schema violations (empty list = valid), ordered by instance path."""
    validator_cls = jsonschema.validators.validator_for(schema or PLAN_METADATA_SCHEMA)
    validator = validator_cls(schema or PLAN_METADATA_SCHEMA)
    errors = sorted(validator.iter_errors(record), key=lambda e: [str(p) for p in e.absolute_path])
    return [ValidationIssue(_pointer(e.absolute_path), e.message) for e in errors]


def require_valid(record: Any, schema: Optional[dict] = None) -> None:
    issues = validate_plan_metadata(record, schema)
    if issues:
        raise ValidationFailed(issues)


def register_metadata(record: Any, schema: Optional[dict] = None,
                      now: Optional[datetime] = None) -> Manifest:
    """
    Validate a metadata record and produce its "metadata" manifest.
    Invalid records raise ValidationFailed and are never hashed.
    """
    require_valid(record, schema)
    manifest = build_manifest(
        module_id=METADATA_MODULE_ID,
        module_version=METADATA_MODULE_VERSION,
        content_hash=hash_structured(record),
        now=now,
    )
    logger.info("metadata registered, content hash %s", manifest.content_hash)
    return manifest
