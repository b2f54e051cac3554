#!/usr/bin/env python3
import os
import sys
from typing import List, Optional

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
if SCRIPT_DIR not in sys.path:
    sys.path.insert(0, SCRIPT_DIR)

from catalog_registry import load_records, load_schema, schema_errors  # type: ignore


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 2:
        print("usage: validate_courses.py <schema.json> <data.json|data.jsonl>")
        return 2

    schema_path, data_path = argv
    schema = load_schema(schema_path)
    records = load_records(data_path)

    errors = schema_errors(records, schema)
    if errors:
        for err in errors:
            print(err)
        return 1
    print(f"ok ({len(records)} records)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
