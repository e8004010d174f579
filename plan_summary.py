#!/usr/bin/env python3
# plan_summary.py
"""
Plan Summary filler:
- Open the Plan Summary .docx template and take word/document.xml out of it
- Append header facts (Plan Name, Case Number, DOPT, DOTR, BPD) next to their labels
- Append the PBGC lump sum / annuity immediate and deferral rates inside their rate blocks
- Repack the template (only word/document.xml changes) and write a manifest

Usage:
  python plan_summary.py fill --template PlanSummary.docx --metadata plan-metadata.json \
      --answers r5.json --out PlanSummary.FILLED.docx --manifest manifest.plan-summary.json
  python plan_summary.py labels --template PlanSummary.docx [--near "Case No"]
  python plan_summary.py validate --metadata plan-metadata.json
  python plan_summary.py hash --metadata plan-metadata.json [--manifest manifest.metadata.json]
  python plan_summary.py blank --out plan-metadata.json
  python plan_summary.py bundle --prompt metadata-scraper-prompt.txt --doc DOC-1=plan.pdf \
      --doc DOC-2=amendment.pdf --out metadata-llm-bundle.json
"""
import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from canonical_json import stringify_stable
from case_records import AnswerRecord, PlanMetadata, default_plan_metadata, load_answer_file, load_json_file
from docx_archive import DOCUMENT_PART, FileFormatError, open_part, replace_part
from docx_inject import FieldSpec, InjectionLog, Scope, load_field_map, run_worklist
from docx_tree import ParseError, parse, serialize
from label_locator import suggest_labels, template_labels
from metadata_bundle import BUNDLE_NAME, BundleDocument, BundleError, build_bundle, bundle_to_json
from metadata_validation import PLAN_METADATA_SCHEMA, ValidationFailed, register_metadata, require_valid
from provenance import Manifest, build_manifest, hash_inputs, hash_structured

logger = logging.getLogger(__name__)

MODULE_ID = "plan-summary"
MODULE_VERSION = "0.7.0"

LUMP_SUM_HEADING = "PBGC Lump Sum Rates"
ANNUITY_HEADING = "PBGC Annuity Rates"
_ANNUITY_RATES = (("pbgc_annuity_rates", ("pbgc annuity rates", "annuity rates")),)

# Order matters: header cells first, then each rates block (one table lookup per block).
PLAN_SUMMARY_WORKLIST: Tuple[FieldSpec, ...] = (
    FieldSpec("Plan Name", "plan_name", source="plan.plan_name"),
    FieldSpec("Case Number", "case_number", source="meta.case_number"),
    FieldSpec("DOPT", "dopt", source="plan.termination_date"),
    FieldSpec("DOTR", "dotr", source="plan.trusteeship_date"),
    FieldSpec("BPD", "bpd", source="plan.valuation_date"),
    FieldSpec("Immediate Rate", "pbgc_lump_sum_immediate_rate",
              ("pbgc lump sum immediate", "lump sum immediate"), Scope.block(LUMP_SUM_HEADING)),
    FieldSpec("Deferral Rate", "pbgc_lump_sum_deferral_rate",
              ("pbgc lump sum deferral", "lump sum deferral"), Scope.block(LUMP_SUM_HEADING)),
    FieldSpec("Immediate Rate", "pbgc_annuity_immediate_rate",
              ("pbgc annuity immediate", "annuity immediate"), Scope.block(ANNUITY_HEADING),
              fallback_keys=_ANNUITY_RATES),
    FieldSpec("Deferral Rate", "pbgc_annuity_deferral_rate",
              ("pbgc annuity deferral", "annuity deferral"), Scope.block(ANNUITY_HEADING),
              fallback_keys=_ANNUITY_RATES),
)


@dataclass(frozen=True)
class FillResult:
    archive: bytes
    log: InjectionLog
    manifest: Manifest


# =========================
# Pipeline
# =========================
def fill_document(
        template_bytes: bytes,
        metadata: PlanMetadata,
        answers: AnswerRecord,
        worklist: Sequence[FieldSpec] = PLAN_SUMMARY_WORKLIST,
        part_path: str = DOCUMENT_PART,
) -> Tuple[bytes, InjectionLog]:
    """
    Fill one template. FileFormatError / ParseError are raised before the tree is
    touched; the caller's bytes are never modified (a new archive is returned).
    """
    xml_text = open_part(template_bytes, part_path)
    tree = parse(xml_text)
    log = run_worklist(tree, worklist, metadata, answers)
    archive = replace_part(template_bytes, part_path, serialize(tree))
    ok = sum(1 for o in log if o.ok)
    logger.info("filled %d/%d field(s)", ok, len(log))
    return archive, log


def fill_plan_summary(
        template_bytes: bytes,
        metadata: Mapping[str, Any],
        answers: Mapping[str, Any],
        input_hashes: Optional[Mapping[str, str]] = None,
        worklist: Sequence[FieldSpec] = PLAN_SUMMARY_WORKLIST,
        now: Optional[datetime] = None,
) -> FillResult:
    archive, log = fill_document(
        template_bytes, PlanMetadata.from_dict(metadata), AnswerRecord.from_dict(answers), worklist
    )
    manifest = build_manifest(
        module_id=MODULE_ID,
        module_version=MODULE_VERSION,
        content_hash=hash_structured(metadata),
        input_hashes=input_hashes,
        now=now,
    )
    return FillResult(archive=archive, log=log, manifest=manifest)


async def fill_plan_summary_async(
        template_bytes: bytes,
        answers_bytes: bytes,
        metadata: Mapping[str, Any],
        template_name: str = "template.docx",
        answers_name: str = "answers.json",
        worklist: Sequence[FieldSpec] = PLAN_SUMMARY_WORKLIST,
        now: Optional[datetime] = None,
) -> FillResult:
    """Hash both raw inputs concurrently, then run the (synchronous) fill."""
    if template_name == answers_name:
        raise ValueError("template and answers need distinct names for the manifest")
    answers = json.loads(answers_bytes.decode("utf-8-sig"))
    input_hashes = await hash_inputs({template_name: template_bytes, answers_name: answers_bytes})
    return fill_plan_summary(template_bytes, metadata, answers, input_hashes, worklist, now)


# =========================
# CLI
# =========================
def _load_metadata(path: str, validate: bool, schema_path: Optional[str] = None) -> dict:
    record = load_json_file(Path(path))
    if validate:
        schema = load_json_file(Path(schema_path)) if schema_path else None
        require_valid(record, schema)
    return record


def _print_issues(err: ValidationFailed) -> None:
    print("[Metadata] Schema validation failed.", file=sys.stderr)
    for issue in err.issues:
        print(f"  {issue.path} {issue.message}", file=sys.stderr)


def _input_keys(*paths: Path) -> List[str]:
    """Manifest keys for input files: base names, or the paths as given when two base names clash."""
    names = [p.name for p in paths]
    if len(set(names)) == len(names):
        return names
    return [str(p) for p in paths]


def cmd_fill(args) -> int:
    try:
        metadata = _load_metadata(args.metadata, validate=not args.no_validate, schema_path=args.schema)
        answers = load_answer_file(Path(args.answers), sheet=args.sheet)
        worklist = load_field_map(Path(args.field_map)) if args.field_map else PLAN_SUMMARY_WORKLIST
    except ValidationFailed as e:
        _print_issues(e)
        return 2
    except (OSError, ValueError, RuntimeError) as e:
        print(f"[Input] {e}", file=sys.stderr)
        return 2

    template_path, answers_path = Path(args.template), Path(args.answers)
    try:
        template_bytes = template_path.read_bytes()
        answers_bytes = answers_path.read_bytes()
    except OSError as e:
        print(f"[Input] {e}", file=sys.stderr)
        return 2
    template_key, answers_key = _input_keys(template_path, answers_path)
    input_hashes = asyncio.run(hash_inputs({template_key: template_bytes, answers_key: answers_bytes}))

    try:
        result = fill_plan_summary(template_bytes, metadata, answers, input_hashes, worklist)
    except (FileFormatError, ParseError) as e:
        print(f"[DOCX] {e}", file=sys.stderr)
        return 3

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(result.archive)
    print("DOCX fill log:")
    for line in result.log.lines():
        print(line)
    if args.manifest:
        Path(args.manifest).write_text(result.manifest.to_json(), encoding="utf-8")
        print(f"🧾 Manifest written to {args.manifest}")
    else:
        print("Manifest:")
        print(result.manifest.to_json())
    failed = len(result.log.failures)
    if failed:
        print(f"⚠️  {failed} field(s) not filled.")
    print(f"✅ Wrote {out}")
    return 0


def cmd_labels(args) -> int:
    try:
        data = Path(args.template).read_bytes()
        labels = template_labels(data)
    except OSError as e:
        print(f"[Input] {e}", file=sys.stderr)
        return 2
    except Exception as e:  # python-docx raises several unrelated types for a bad package
        print(f"[DOCX] {e}", file=sys.stderr)
        return 3

    if args.near:
        try:
            tree = parse(open_part(data))
        except (FileFormatError, ParseError) as e:
            print(f"[DOCX] {e}", file=sys.stderr)
            return 3
        hits = suggest_labels(tree, args.near, limit=args.limit)
        if not hits:
            print(f"⚠️  No label close to '{args.near}'.")
        for text, score in hits:
            print(f"{score:5.1f}  {text}")
        return 0

    for row in labels:
        print(f"table {row['table']:>2}  r{row['row']:<3} c{row['col']:<3} {row['label']}")
    print(f"🧭 {len(labels)} labelled cell(s)")
    return 0


def cmd_validate(args) -> int:
    try:
        _load_metadata(args.metadata, validate=True, schema_path=args.schema)
    except ValidationFailed as e:
        _print_issues(e)
        return 2
    except (OSError, ValueError) as e:
        print(f"[Input] {e}", file=sys.stderr)
        return 2
    print("✅ Valid PlanMetadata JSON.")
    return 0


def cmd_hash(args) -> int:
    try:
        record = load_json_file(Path(args.metadata))
        schema = load_json_file(Path(args.schema)) if args.schema else None
        manifest = register_metadata(record, schema)
    except ValidationFailed as e:
        _print_issues(e)
        return 2
    except (OSError, ValueError) as e:
        print(f"[Input] {e}", file=sys.stderr)
        return 2
    print(f"Plan metadata hash: {manifest.content_hash}")
    if args.manifest:
        Path(args.manifest).write_text(manifest.to_json(), encoding="utf-8")
        print(f"🧾 Manifest written to {args.manifest}")
    return 0


def cmd_blank(args) -> int:
    text = stringify_stable(default_plan_metadata())
    if args.out:
        Path(args.out).write_text(text, encoding="utf-8")
        print(f"✅ Wrote {args.out}")
    else:
        print(text)
    return 0


def _bundle_document(spec: str) -> BundleDocument:
    # "DOC-1=path/to/plan.pdf"; a bare path has no doc_id and is rejected by build_bundle
    doc_id, sep, path = spec.partition("=")
    if not sep:
        doc_id, path = "", spec
    return BundleDocument.from_path(doc_id, Path(path))


def cmd_bundle(args) -> int:
    try:
        prompt_path = Path(args.prompt)
        prompt_text = prompt_path.read_text(encoding="utf-8")
        schema = Path(args.schema).read_text(encoding="utf-8") if args.schema else PLAN_METADATA_SCHEMA
        documents = [_bundle_document(s) for s in args.doc]
        bundle = build_bundle(prompt_text, schema, documents, prompt_name=prompt_path.name)
    except BundleError as e:
        print(f"[Bundle] {e}", file=sys.stderr)
        return 2
    except (OSError, UnicodeDecodeError) as e:
        print(f"[Input] {e}", file=sys.stderr)
        return 2

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(bundle_to_json(bundle), encoding="utf-8")
    print(f"📦 Bundled {len(documents)} document(s)")
    print(f"✅ Wrote {out}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Fill the Plan Summary DOCX from plan metadata and R5 answers.")
    ap.add_argument("--verbose", "-v", action="store_true", help="Log resolver/locator details")
    sub = ap.add_subparsers(dest="command", required=True)

    f = sub.add_parser("fill", help="Fill a Plan Summary template")
    f.add_argument("--template", "--input", dest="template", required=True, help="Plan Summary DOCX template")
    f.add_argument("--metadata", required=True, help="Plan metadata JSON")
    f.add_argument("--answers", "--r5", dest="answers", required=True, help="R5 answers (.json, .csv, .xlsx)")
    f.add_argument("--sheet", default=None, help="Worksheet name when --answers is an Excel file")
    f.add_argument("--out", "--output", dest="out", required=True, help="Output DOCX path")
    f.add_argument("--manifest", default=None, help="Write the run manifest JSON here")
    f.add_argument("--field-map", default=None, help="JSON field map replacing the built-in worklist")
    f.add_argument("--schema", default=None, help="Alternative metadata JSON schema")
    f.add_argument("--no-validate", action="store_true", help="Skip metadata schema validation")
    f.set_defaults(func=cmd_fill)

    lb = sub.add_parser("labels", help="List table-cell labels of a template")
    lb.add_argument("--template", "--input", dest="template", required=True)
    lb.add_argument("--near", default=None, help="Show the labels closest to this text")
    lb.add_argument("--limit", type=int, default=5)
    lb.set_defaults(func=cmd_labels)

    v = sub.add_parser("validate", help="Validate plan metadata against the schema")
    v.add_argument("--metadata", required=True)
    v.add_argument("--schema", default=None)
    v.set_defaults(func=cmd_validate)

    h = sub.add_parser("hash", help="Canonical hash (and manifest) of valid plan metadata")
    h.add_argument("--metadata", required=True)
    h.add_argument("--schema", default=None)
    h.add_argument("--manifest", default=None)
    h.set_defaults(func=cmd_hash)

    b = sub.add_parser("blank", help="Write a blank plan metadata record")
    b.add_argument("--out", default=None)
    b.set_defaults(func=cmd_blank)

    bd = sub.add_parser("bundle", help="Package prompt, schema and plan documents for an offline LLM run")
    bd.add_argument("--prompt", required=True, help="Scraper prompt text file")
    bd.add_argument("--doc", action="append", default=[], metavar="DOC_ID=PATH",
                    help="Plan document with its doc_id (repeatable)")
    bd.add_argument("--schema", default=None, help="Schema JSON to ship instead of the built-in one")
    bd.add_argument("--out", default=BUNDLE_NAME)
    bd.set_defaults(func=cmd_bundle)
    return ap


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = create_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
