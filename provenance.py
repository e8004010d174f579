# provenance.py
"""
Hashes and manifests recorded alongside every fill run.

content_hash  = sha256 over the UTF-8 bytes of the canonical (key-sorted,
                2-space indented) JSON of the plan metadata
input_hashes  = sha256 of each raw input file, keyed by its name
All digests are lowercase 64-char hex.
"""
import asyncio
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from canonical_json import stringify_stable

APP_VERSION = "0.7.0"


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_text(s: str) -> str:
    return sha256_hex(s.encode("utf-8"))


def hash_structured(value: Any) -> str:
    return hash_text(stringify_stable(value))


async def hash_inputs(named: Mapping[str, bytes]) -> Dict[str, str]:
    """Digest every input concurrently; each result lands under its own name."""
    names = list(named)
    digests = await asyncio.gather(*(asyncio.to_thread(sha256_hex, named[n]) for n in names))
    return dict(zip(names, digests))


def utc_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Manifest:
    app_version: str
    module_id: str
    module_version: str
    generated_at: str
    content_hash: str
    input_hashes: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # read-only snapshot of the caller's mapping
        object.__setattr__(self, "input_hashes", MappingProxyType(dict(self.input_hashes)))

    def to_dict(self) -> dict:
        return {
            "app_version": self.app_version,
            "module_id": self.module_id,
            "module_version": self.module_version,
            "generated_at": self.generated_at,
            "content_hash": self.content_hash,
            "input_hashes": dict(self.input_hashes),
        }

    def to_json(self) -> str:
        return stringify_stable(self.to_dict())


def build_manifest(
        module_id: str,
        module_version: str,
        content_hash: str,
        input_hashes: Optional[Mapping[str, str]] = None,
        app_version: str = APP_VERSION,
        now: Optional[datetime] = None,
) -> Manifest:
    return Manifest(
        app_version=app_version,
        module_id=module_id,
        module_version=module_version,
        generated_at=utc_timestamp(now),
        content_hash=content_hash,
        input_hashes=input_hashes or {},
    )
