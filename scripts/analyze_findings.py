#!/usr/bin/env python3
import argparse
import json
import os
from typing import Any, Dict, Iterable, List, Optional


def is_empty(ast: Optional[Dict[str, Any]]) -> bool:
    return not ast or ast.get("op") == "EMPTY"


def analyze(courses: Iterable[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    results: Dict[str, List[Dict[str, Any]]] = {
        "none": [],
        "unchanged": [],
        "minimized": [],
        "flagged": [],
    }

    for c in courses:
        pr = c.get("prerequisites") or {}
        original = pr.get("original")
        minimized = pr.get("minimized")
        findings = c.get("findings") or []
        if findings:
            results["flagged"].append({
                "code": c.get("code"),
                "title": c.get("title"),
                "kinds": sorted({f.get("kind") for f in findings}),
                "messages": [f.get("message") for f in findings],
            })
        if is_empty(original) and is_empty(minimized):
            results["none"].append({"code": c.get("code"), "title": c.get("title")})
        elif original == minimized:
            results["unchanged"].append({"code": c.get("code"), "title": c.get("title")})
        else:
            results["minimized"].append({
                "code": c.get("code"),
                "title": c.get("title"),
                "original": original,
                "minimized": minimized,
            })
    return results


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Summarize minimization changes and findings for review")
    ap.add_argument("input", default="data/courses_minimized.json", nargs="?", help="Minimized courses JSON")
    ap.add_argument("--outdir", default="data/analysis", help="Output directory")
    args = ap.parse_args(argv)

    with open(args.input, "r", encoding="utf-8") as f:
        data = json.load(f)

    res = analyze(data)

    os.makedirs(args.outdir, exist_ok=True)
    for name, items in res.items():
        with open(os.path.join(args.outdir, f"{name}.json"), "w", encoding="utf-8") as f:
            json.dump(items, f, ensure_ascii=False, indent=2)

    for name, items in res.items():
        print(f"{name}: {len(items)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
