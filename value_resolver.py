# value_resolver.py
import logging
from typing import Iterable, Optional, Sequence, Tuple

from case_records import AnswerRecord, PlanMetadata

logger = logging.getLogger(__name__)


def _nz(s: Optional[str]) -> bool:
    return bool(s) and bool(s.strip())


def resolve(
        field_key: str,
        keywords: Sequence[str],
        metadata: PlanMetadata,
        answers: AnswerRecord,
        source: Optional[str] = None,
) -> str:
    """
    Highest-priority value for `field_key`, or "" when nothing supplies it:
      1. authoritative metadata field (`source` path, default plan.<field_key>),
         unless blank or "unknown"
      2. metadata.dependent_fields[field_key]
      3. answers.dependent_fields[field_key]
      4. answers[field_key] (top-level scalar)
      5. answer items: identifier == key wins outright; else first item whose
         label/identifier contains a keyword and whose answer is non-blank
    """
    fv = metadata.lookup(source or f"plan.{field_key}")
    if fv.is_known:
        logger.debug("%s ← metadata %s", field_key, source or f"plan.{field_key}")
        return fv.value

    m = metadata.dependent_fields.get(field_key)
    if _nz(m):
        logger.debug("%s ← metadata dependent_fields", field_key)
        return m

    d = answers.dependent_fields.get(field_key)
    if _nz(d):
        logger.debug("%s ← answers dependent_fields", field_key)
        return d

    t = answers.top_level(field_key)
    if _nz(t):
        logger.debug("%s ← answers top-level field", field_key)
        return t

    key_l = field_key.lower()
    ks = [k.lower() for k in keywords if k]
    for it in answers.items:
        ident = it.identifier.lower()
        lbl = it.label.lower()
        if ident == key_l:
            logger.debug("%s ← answer item %r (identifier)", field_key, it.identifier)
            return it.answer
        if ks and any(k in lbl or k in ident for k in ks):
            if _nz(it.answer):
                logger.debug("%s ← answer item %r (keyword)", field_key, it.identifier or it.label)
                return it.answer
    return ""


def resolve_first(
        candidates: Iterable[Tuple[str, Sequence[str]]],
        metadata: PlanMetadata,
        answers: AnswerRecord,
        source: Optional[str] = None,
) -> str:
    """Try (key, keywords) pairs in order; `source` only applies to the first key."""
    for i, (key, keywords) in enumerate(candidates):
        v = resolve(key, keywords, metadata, answers, source=source if i == 0 else None)
        if v:
            return v
    return ""
