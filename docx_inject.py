# docx_inject.py
"""
Label-driven field injection into a parsed document part.

A run takes an ordered worklist of FieldSpec entries and works in three separate
passes so that no lookup ever sees a half-mutated tree:

  1. resolve  - pick a value for every field (value_resolver)
  2. locate   - find every target cell (read-only; block tables are looked up once
                per scope and shared by all fields of that block)
  3. write    - apply the mutations in worklist order, one outcome per field

Two write policies:
  append  - keep what the cell has and add " <value>" (newlines become <w:br/>).
            A value already present in the cell is a successful no-op, which makes
            re-running a fill over its own output harmless.
  replace - only for dedicated value slots (the cell right of a label): clear the
            cell content and write a single paragraph.

One field failing never stops the run; it is recorded and the next field runs.
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from case_records import AnswerRecord, PlanMetadata
from docx_tree import (
    DocumentTree,
    append_child,
    clean_text,
    clear_children,
    create_line_break_run,
    create_paragraph,
    create_text_run,
    descendants,
    text_content,
)
from label_locator import (
    LocatorResult,
    find_cell_by_label,
    find_cell_by_label_anywhere,
    find_cell_right_of_label,
    find_filled_cell,
    find_rates_block_table,
    find_table_containing_all_labels,
    not_found,
    suggest_labels,
)
from value_resolver import resolve_first

logger = logging.getLogger(__name__)

APPEND = "append"
REPLACE = "replace"

# outcome error kinds: template problems vs data problems
TABLE_NOT_FOUND = "table_not_found"
LABEL_NOT_FOUND = "label_not_found"
VALUE_UNRESOLVED = "value_unresolved"


# =========================
# Outcomes
# =========================
@dataclass(frozen=True)
class InjectionOutcome:
    ok: bool
    reason: str
    label: str = ""
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"ok": self.ok, "reason": self.reason}

    def to_line(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)


@dataclass
class InjectionLog:
    outcomes: List[InjectionOutcome] = field(default_factory=list)

    def append(self, outcome: InjectionOutcome) -> None:
        self.outcomes.append(outcome)

    def __iter__(self) -> Iterator[InjectionOutcome]:
        return iter(self.outcomes)

    def __len__(self) -> int:
        return len(self.outcomes)

    def __getitem__(self, i) -> InjectionOutcome:
        return self.outcomes[i]

    def lines(self) -> List[str]:
        return [o.to_line() for o in self.outcomes]

    def to_list(self) -> List[dict]:
        return [{"label": o.label, "error": o.error, **o.to_dict()} for o in self.outcomes]

    @property
    def failures(self) -> List[InjectionOutcome]:
        return [o for o in self.outcomes if not o.ok]


# =========================
# Cell mutations
# =========================
def _append_text_with_breaks(tree: DocumentTree, p, text: str) -> None:
    parts = str(text).split("\n")
    for i, part in enumerate(parts):
        append_child(p, create_text_run(tree, part))
        if i < len(parts) - 1:
            append_child(p, create_line_break_run(tree))


def append_value(tree: DocumentTree, cell, value: str, prefix: str = " ", label: str = "") -> InjectionOutcome:
    value = clean_text(value)
    if not value:
        return InjectionOutcome(False, "value missing", label, VALUE_UNRESOLVED)
    existing = text_content(cell)
    # <w:br/> carries no text, so a multi-line value reads back with its parts joined
    joined = value.replace("\n", "")
    if value in existing or (joined and joined in existing):
        return InjectionOutcome(True, "already present", label)

    paragraphs = descendants(cell, "w:p")
    if paragraphs:
        p = paragraphs[0]
    else:
        p = append_child(cell, create_paragraph(tree))
    _append_text_with_breaks(tree, p, f"{prefix}{value}")
    return InjectionOutcome(True, "appended", label)


def set_value(tree: DocumentTree, cell, value: str) -> None:
    """Replace the cell content with one paragraph holding `value`; cell properties stay."""
    clear_children(cell, keep=["w:tcPr"])
    append_child(cell, create_paragraph(tree, [create_text_run(tree, clean_text(value))]))


# =========================
# Worklist
# =========================
@dataclass(frozen=True)
class Scope:
    kind: str = "anywhere"  # anywhere | block | labels
    heading: str = ""
    labels: Tuple[str, ...] = ()

    @classmethod
    def anywhere(cls) -> "Scope":
        return cls()

    @classmethod
    def block(cls, heading: str) -> "Scope":
        return cls(kind="block", heading=heading)

    @classmethod
    def table_with(cls, labels: Sequence[str]) -> "Scope":
        return cls(kind="labels", labels=tuple(labels))

    @property
    def is_table(self) -> bool:
        return self.kind != "anywhere"

    @property
    def name(self) -> str:
        if self.kind == "block":
            return self.heading
        if self.kind == "labels":
            return " / ".join(self.labels)
        return "document"


@dataclass(frozen=True)
class FieldSpec:
    label: str
    key: str
    keywords: Tuple[str, ...] = ()
    scope: Scope = Scope()
    policy: str = APPEND
    source: Optional[str] = None  # metadata path, e.g. "meta.case_number"
    fallback_keys: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()

    @classmethod
    def from_dict(cls, raw: dict) -> "FieldSpec":
        scope_raw = raw.get("scope", "anywhere")
        if isinstance(scope_raw, dict) and scope_raw.get("block"):
            scope = Scope.block(str(scope_raw["block"]))
        elif isinstance(scope_raw, dict) and scope_raw.get("labels"):
            scope = Scope.table_with([str(x) for x in scope_raw["labels"]])
        elif scope_raw in (None, "", "anywhere"):
            scope = Scope.anywhere()
        else:
            raise ValueError(f"Unsupported scope for '{raw.get('label')}': {scope_raw!r}")

        policy = str(raw.get("policy", APPEND)).lower()
        if policy not in (APPEND, REPLACE):
            raise ValueError(f"Unsupported policy for '{raw.get('label')}': {policy}")
        if not raw.get("label") or not raw.get("key"):
            raise ValueError(f"Field map entry needs 'label' and 'key': {raw!r}")

        fallbacks = tuple(
            (str(fb["key"]), tuple(str(k) for k in fb.get("keywords", [])))
            for fb in raw.get("fallbacks", []) or []
        )
        return cls(
            label=str(raw["label"]),
            key=str(raw["key"]),
            keywords=tuple(str(k) for k in raw.get("keywords", []) or []),
            scope=scope,
            policy=policy,
            source=raw.get("source") or None,
            fallback_keys=fallbacks,
        )


def load_field_map(path: Path) -> List[FieldSpec]:
    """A JSON list of field entries (or {"fields": [...]}) → worklist."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("fields", [])
    if not isinstance(data, list):
        raise ValueError("Field map must be a JSON list of field entries")
    return [FieldSpec.from_dict(x) for x in data]


def _locate_table(tree: DocumentTree, scope: Scope) -> LocatorResult:
    if scope.kind == "block":
        return find_rates_block_table(tree, scope.heading)
    res = find_table_containing_all_labels(tree, scope.labels)
    return res if res.ok else not_found(f"table not found: {scope.name}")


def _locate_cell(tree: DocumentTree, spec: FieldSpec, table, value: str) -> LocatorResult:
    if spec.policy == REPLACE:
        return find_cell_right_of_label(table if table is not None else tree, spec.label)
    if table is None:
        res = find_cell_by_label_anywhere(tree, spec.label)
    else:
        res = find_cell_by_label(table, spec.label)
    if res.ok or not value:
        return res
    # output of an earlier run: the label cell now ends with the value
    filled = find_filled_cell(table if table is not None else tree, spec.label, value)
    return filled if filled.ok else res


def _write(tree: DocumentTree, spec: FieldSpec, value: str, target: LocatorResult) -> InjectionOutcome:
    if not target.ok:
        return InjectionOutcome(False, target.reason, spec.label, LABEL_NOT_FOUND)
    if spec.policy == REPLACE:
        if not value.strip():
            return InjectionOutcome(False, f"value missing for '{spec.label}'", spec.label, VALUE_UNRESOLVED)
        set_value(tree, target.node, value)
        return InjectionOutcome(True, f"set right-cell for '{spec.label}'", spec.label)
    return append_value(tree, target.node, value, label=spec.label)


def run_worklist(
        tree: DocumentTree,
        worklist: Sequence[FieldSpec],
        metadata: PlanMetadata,
        answers: AnswerRecord,
) -> InjectionLog:
    # 1) resolve (cleaned up front so locate and write see the stored form)
    values = [
        clean_text(resolve_first([(s.key, s.keywords), *s.fallback_keys], metadata, answers, source=s.source))
        for s in worklist
    ]

    # 2) locate (read-only)
    tables: Dict[Scope, LocatorResult] = {}
    targets: List[Optional[LocatorResult]] = []
    for spec, value in zip(worklist, values):
        table = None
        if spec.scope.is_table:
            if spec.scope not in tables:
                tables[spec.scope] = _locate_table(tree, spec.scope)
                if tables[spec.scope].ok:
                    logger.debug("located table for %s", spec.scope.name)
                else:
                    logger.warning("%s", tables[spec.scope].reason)
            if not tables[spec.scope].ok:
                targets.append(None)
                continue
            table = tables[spec.scope].node
        target = _locate_cell(tree, spec, table, value)
        if not target.ok:
            hints = suggest_labels(table if table is not None else tree, spec.label)
            if hints:
                logger.warning("%s (closest: %s)", target.reason, ", ".join(repr(h[0]) for h in hints))
            else:
                logger.warning("%s", target.reason)
        targets.append(target)

    # 3) write, in worklist order
    log = InjectionLog()
    tables_reported = False
    summarized = set()
    for spec, value, target in zip(worklist, values, targets):
        if spec.scope.is_table:
            if not tables_reported:
                tables_reported = True
                for scope, res in tables.items():
                    if not res.ok:
                        log.append(InjectionOutcome(False, res.reason, scope.name, TABLE_NOT_FOUND))
            if target is None:
                continue
            if spec.scope not in summarized:
                summarized.add(spec.scope)
                parts = [
                    f"{s.label}={'OK' if v else 'MISSING'}"
                    for s, v in zip(worklist, values) if s.scope == spec.scope
                ]
                logger.info("%s: %s", spec.scope.name, ", ".join(parts))
        outcome = _write(tree, spec, value, target)
        if not outcome.ok:
            logger.info("%s: %s", spec.label, outcome.reason)
        log.append(outcome)
    return log
