# metadata_bundle.py
"""
LLM bundle for offline metadata extraction.

One JSON file carrying the scraper prompt, the plan metadata schema and every
plan document (base64 plus its sha256), so an external model run can produce a
PlanMetadata record that cites documents by doc_id:

  {
    "meta":      {"app_version": ..., "generated_at_utc": ...},
    "prompt":    {"name": ..., "text": ...},
    "schema":    {...},
    "documents": [{"doc_id", "filename", "mime", "sha256", "base64"}, ...]
  }
"""
import base64
import json
import logging
import mimetypes
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Sequence

from provenance import APP_VERSION, hash_inputs, sha256_hex, utc_timestamp

logger = logging.getLogger(__name__)

BUNDLE_NAME = "metadata-llm-bundle.json"
DEFAULT_PROMPT_NAME = "metadata-scraper-prompt.txt"
DEFAULT_MIME = "application/octet-stream"


class BundleError(ValueError):
    pass


@dataclass(frozen=True)
class BundleDocument:
    doc_id: str
    filename: str
    data: bytes
    mime: Optional[str] = None

    @classmethod
    def from_path(cls, doc_id: str, path: Path) -> "BundleDocument":
        path = Path(path)
        return cls(doc_id=doc_id.strip(), filename=path.name, data=path.read_bytes())

    @property
    def content_type(self) -> str:
        if self.mime:
            return self.mime
        guessed, _ = mimetypes.guess_type(self.filename)
        return guessed or DEFAULT_MIME


def _schema_object(schema: Any) -> Any:
    # pasted schema text is accepted as well as a parsed object
    if isinstance(schema, (bytes, str)):
        text = schema.decode("utf-8") if isinstance(schema, bytes) else schema
        if not text.strip():
            raise BundleError("Schema is empty.")
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise BundleError(f"Schema is not valid JSON: {e}") from e
    if not schema:
        raise BundleError("Schema is empty.")
    return schema


def _check(prompt_text: str, documents: Sequence[BundleDocument]) -> None:
    if not prompt_text:
        raise BundleError("Upload the scraper prompt first.")
    for doc in documents:
        if not doc.doc_id or not doc.doc_id.strip():
            raise BundleError(f"Missing doc_id for {doc.filename}")


def _assemble(prompt_text, schema_obj, documents, digests, prompt_name, now) -> dict:
    return {
        "meta": {"app_version": APP_VERSION, "generated_at_utc": utc_timestamp(now)},
        "prompt": {"name": prompt_name or DEFAULT_PROMPT_NAME, "text": prompt_text},
        "schema": schema_obj,
        "documents": [
            {
                "doc_id": doc.doc_id.strip(),
                "filename": doc.filename,
                "mime": doc.content_type,
                "sha256": digest,
                "base64": base64.b64encode(doc.data).decode("ascii"),
            }
            for doc, digest in zip(documents, digests)
        ],
    }


def build_bundle(
        prompt_text: str,
        schema: Any,
        documents: Sequence[BundleDocument],
        prompt_name: Optional[str] = None,
        now: Optional[datetime] = None,
) -> dict:
    """Check the inputs (prompt, schema, a doc_id per document) and assemble the bundle dict."""
    _check(prompt_text, documents)
    schema_obj = _schema_object(schema)
    digests = [sha256_hex(doc.data) for doc in documents]
    logger.debug("bundling %d document(s)", len(documents))
    return _assemble(prompt_text, schema_obj, documents, digests, prompt_name, now)


async def build_bundle_async(
        prompt_text: str,
        schema: Any,
        documents: Sequence[BundleDocument],
        prompt_name: Optional[str] = None,
        now: Optional[datetime] = None,
) -> dict:
    _check(prompt_text, documents)
    schema_obj = _schema_object(schema)
    # keyed by position: two uploads may share a filename
    digests = await hash_inputs({str(i): doc.data for i, doc in enumerate(documents)})
    ordered: List[str] = [digests[str(i)] for i in range(len(documents))]
    return _assemble(prompt_text, schema_obj, documents, ordered, prompt_name, now)


def bundle_to_json(bundle: dict) -> str:
    return json.dumps(bundle, indent=2, ensure_ascii=False)
