#!/usr/bin/env python3
import argparse
import json
import os
import sys
from typing import List, Optional


# Ensure we can import sibling scripts
SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
if SCRIPT_DIR not in sys.path:
    sys.path.insert(0, SCRIPT_DIR)

from catalog_errors import CatalogError  # type: ignore
from catalog_registry import DEFAULT_SCHEMA, load_records, load_schema, schema_errors  # type: ignore
from prereq_pipeline import run_pipeline  # type: ignore


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Minimize the prerequisite graph of a canonical course catalog")
    ap.add_argument("input", nargs="?", default="data/courses_canonical.jsonl", help="Canonical course records (JSON array or JSON Lines)")
    ap.add_argument("--output", default="data/courses_minimized.json", help="Output JSON path")
    ap.add_argument("--schema", default=DEFAULT_SCHEMA, help="JSON Schema for input records")
    ap.add_argument("--no-validate", action="store_true", help="Skip schema validation of input records")
    ap.add_argument("--max-workers", type=int, default=1, help="Worker threads for normal-form conversion")
    ap.add_argument("--strict-cycles", action="store_true", help="Abort on circular prerequisites instead of breaking them")
    args = ap.parse_args(argv)

    records = load_records(args.input)
    print(f"[info] Loaded {len(records)} record(s) from {args.input}")

    if not args.no_validate:
        errors = schema_errors(records, load_schema(args.schema))
        if errors:
            for err in errors:
                print(err)
            return 1

    try:
        result = run_pipeline(records, max_workers=args.max_workers, strict_cycles=args.strict_cycles)
    except CatalogError as exc:
        print(f"[error] {exc}")
        return 1

    for finding in result.findings:
        print(f"[warn] {finding.kind}: {finding.message}")

    os.makedirs(os.path.dirname(args.output) or ".", exist_ok=True)
    with open(args.output, "w", encoding="utf-8") as f:
        json.dump(result.records, f, ensure_ascii=False, indent=2)

    print(json.dumps(result.stats))
    print(f"[done] Wrote {len(result.records)} courses -> {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
