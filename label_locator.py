# label_locator.py
"""
Find tables and table cells in a parsed document by their visible label text.

Tables are found by heading (case-insensitive): first the table that follows a
heading paragraph in the body, then any table whose text contains the heading.
Cells are found by exact equality after normalization (trim, collapse
whitespace, drop one trailing colon). Matching is case-sensitive for cells, so
"Rate" never matches "Immediate Rate" and "DOPT" never matches
"DOPT (Termination Date)". Templates must use stable label strings.
"""
import io
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from docx import Document
from rapidfuzz import fuzz, process

from docx_tree import DocumentTree, Node, clean_text, descendants, is_tag, iter_children, text_content

logger = logging.getLogger(__name__)

SUGGEST_THRESH = 70


@dataclass(frozen=True)
class LocatorResult:
    node: Optional[Any] = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.node is not None


def found(node) -> LocatorResult:
    return LocatorResult(node=node)


def not_found(reason: str) -> LocatorResult:
    return LocatorResult(node=None, reason=reason)


# =========================
# Normalization helpers
# =========================
def norm(s) -> str:
    return re.sub(r"\s+", " ", str(s if s is not None else "")).strip()


def norm_label(s) -> str:
    return re.sub(r":$", "", norm(s))


# =========================
# Table discovery
# =========================
def find_table_after_heading(tree: DocumentTree, heading: str) -> LocatorResult:
    """First body-level table after a paragraph whose text contains `heading`."""
    body = tree.body
    if body is None:
        return not_found("document has no body")

    needle = heading.lower()
    seen_heading = False
    for child in iter_children(body):
        if is_tag(child, "w:p"):
            if needle in text_content(child).lower():
                seen_heading = True
        elif is_tag(child, "w:tbl"):
            if seen_heading:
                return found(child)
    return not_found(f"no table after heading: {heading}")


def find_table_containing_text(tree: DocumentTree, heading: str) -> LocatorResult:
    needle = heading.lower()
    for tbl in descendants(tree, "w:tbl"):
        if needle in text_content(tbl).lower():
            return found(tbl)
    return not_found(f"no table containing: {heading}")


def find_rates_block_table(tree: DocumentTree, heading: str) -> LocatorResult:
    res = find_table_after_heading(tree, heading)
    if res.ok:
        return res
    res = find_table_containing_text(tree, heading)
    if res.ok:
        return res
    return not_found(f"block table not found: {heading}")


def find_table_containing_all_labels(tree: DocumentTree, labels: Sequence[str]) -> LocatorResult:
    needles = [norm_label(x).lower() for x in labels]
    for tbl in descendants(tree, "w:tbl"):
        txt = text_content(tbl).lower()
        if all(n in txt for n in needles):
            return found(tbl)
    return not_found(f"no table containing labels: {', '.join(labels)}")


# =========================
# Cell lookup
# =========================
def _first_cell_with_label(scope: Node, label: str):
    target = norm_label(label)
    for tc in descendants(scope, "w:tc"):
        if norm_label(text_content(tc)) == target:
            return tc
    return None


def find_cell_by_label(table, label: str) -> LocatorResult:
    tc = _first_cell_with_label(table, label)
    if tc is None:
        return not_found(f"label not found in block: {label}")
    return found(tc)


def find_cell_by_label_anywhere(tree: DocumentTree, label: str) -> LocatorResult:
    tc = _first_cell_with_label(tree, label)
    if tc is None:
        return not_found(f"label not found: {label}")
    return found(tc)


def find_filled_cell(scope: Node, label: str, value: str) -> LocatorResult:
    """
    A label cell that an earlier fill already appended `value` to
    ("Plan Name: Acme Pension Plan"). Same exact-label rule on the part before the value.
    """
    tail = norm(clean_text(value).replace("\n", ""))
    target = norm_label(label)
    if not tail:
        return not_found(f"label not found: {label}")
    for tc in descendants(scope, "w:tc"):
        text = norm(text_content(tc))
        if text.endswith(tail) and norm_label(text[: len(text) - len(tail)]) == target:
            return found(tc)
    return not_found(f"label not found: {label}")


def find_cell_right_of_label(table, label: str) -> LocatorResult:
    """The value slot next to a label cell (same row, next cell)."""
    target = norm_label(label)
    for row in descendants(table, "w:tr"):
        cells = descendants(row, "w:tc")
        for c, cell in enumerate(cells):
            if norm_label(text_content(cell)) == target:
                if c + 1 >= len(cells):
                    return not_found(f"no value cell to right of '{label}'")
                return found(cells[c + 1])
    return not_found(f"label not found in metadata table: '{label}'")


# =========================
# Diagnostics
# =========================
def cell_labels(scope: Node) -> List[str]:
    out = []
    for tc in descendants(scope, "w:tc"):
        t = norm_label(text_content(tc))
        if t:
            out.append(t)
    return out


def suggest_labels(scope: Node, label: str, limit: int = 3) -> List[Tuple[str, float]]:
    """Closest cell labels to `label`; only used for messages, never for matching."""
    choices = sorted(set(cell_labels(scope)))
    if not choices:
        return []
    hits = process.extract(norm_label(label), choices, scorer=fuzz.token_set_ratio,
                           limit=limit, score_cutoff=SUGGEST_THRESH)
    return [(h[0], float(h[1])) for h in hits]


def template_labels(archive_bytes: bytes) -> List[dict]:
    """
    Every non-empty table cell of a .docx template, in table order, as
    {"table": i, "row": r, "col": c, "label": normalized text}. Nested tables follow
    their parent table. Merged cells are reported once.
    """
    doc = Document(io.BytesIO(archive_bytes))
    out: List[dict] = []
    seen = set()  # holds the <w:tc> elements themselves so merged cells dedupe by identity
    pending = list(doc.tables)
    t_idx = 0
    while pending:
        tbl = pending.pop(0)
        nested = []
        for ri, row in enumerate(tbl.rows):
            for ci, cell in enumerate(row.cells):
                if cell._tc in seen:
                    continue
                seen.add(cell._tc)
                label = norm_label(text_content(cell._tc))
                if label:
                    out.append({"table": t_idx, "row": ri, "col": ci, "label": label})
                nested.extend(cell.tables)
        pending[:0] = nested
        t_idx += 1
    logger.debug("template has %d labelled cells", len(out))
    return out
