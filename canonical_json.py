# canonical_json.py
import json
from typing import Any


def canonicalize(value: Any) -> Any:
    """
    Return a copy of `value` with every mapping's keys sorted (code-point order),
    recursively. Lists keep their order; scalars are returned as-is.
    """
    if isinstance(value, dict):
        return {str(k): canonicalize(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    return value


def stringify_stable(value: Any) -> str:
    """Two-space-indented JSON of the canonical form; identical for key-order variants."""
    return json.dumps(canonicalize(value), indent=2, ensure_ascii=False)
