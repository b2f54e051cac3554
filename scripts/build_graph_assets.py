#!/usr/bin/env python3
import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional, Tuple

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
if SCRIPT_DIR not in sys.path:
    sys.path.insert(0, SCRIPT_DIR)

from requirement_expr import AllOf, AnyOf, CourseRef, ExamRef, Expr, from_json, is_leaf  # type: ignore


def leaf_node(leaf: Expr) -> Dict[str, Any]:
    if isinstance(leaf, CourseRef):
        return {"id": leaf.code, "label": leaf.code, "kind": "course", "subject": leaf.code.split()[0] if " " in leaf.code else None}
    kind = "exam" if isinstance(leaf, ExamRef) else "group"
    return {"id": str(leaf), "label": str(leaf), "kind": kind, "subject": None}


def build_graph(courses: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Slim nodes/edges for the renderer from minimized course records.

    Edges point from prerequisite to course. Nested any/all groups get their
    own junction node so the diagram keeps the boolean structure.
    """
    nodes_map: Dict[str, Dict[str, Any]] = {}
    edges: List[Dict[str, Any]] = []

    def ensure_node(node: Dict[str, Any]) -> str:
        if node["id"] not in nodes_map:
            nodes_map[node["id"]] = node
        return node["id"]

    for c in courses:
        code = c["code"]
        ensure_node({"id": code, "label": c.get("title") or code, "kind": "course", "subject": code.split()[0] if " " in code else None})
        nodes_map[code]["label"] = c.get("title") or nodes_map[code]["label"]
        nodes_map[code]["flagged"] = bool(c.get("findings"))

        minimized = from_json((c.get("prerequisites") or {}).get("minimized") or {"op": "EMPTY"})
        counter = [0]

        def attach(expr: Expr, target: str, kind: str, group: Optional[str]) -> None:
            if is_leaf(expr):
                src = ensure_node(leaf_node(expr))
                edges.append({"source": src, "target": target, "kind": kind, "group": group})
                return
            counter[0] += 1
            junction = f"{code}#{counter[0]}"
            op = "all" if isinstance(expr, AllOf) else "any"
            ensure_node({"id": junction, "label": op, "kind": op, "subject": None})
            edges.append({"source": junction, "target": target, "kind": kind, "group": group})
            for child in expr.items:
                attach(child, junction, op, junction)

        top = minimized.items if isinstance(minimized, AllOf) else (minimized,)
        for item in top:
            if isinstance(item, AnyOf):
                counter[0] += 1
                gid = f"{code}#{counter[0]}"
                for child in item.items:
                    attach(child, code, "any", gid)
            else:
                attach(item, code, "all", None)

    return list(nodes_map.values()), edges


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Build slim graph assets from the minimized catalog")
    ap.add_argument("input", nargs="?", default="data/courses_minimized.json", help="Minimized courses JSON")
    ap.add_argument("--graph-out", default="data/graph.json", help="Output graph JSON (nodes, edges)")
    args = ap.parse_args(argv)

    with open(args.input, "r", encoding="utf-8") as f:
        courses = json.load(f)

    nodes, edges = build_graph(courses)

    os.makedirs(os.path.dirname(args.graph_out) or ".", exist_ok=True)
    with open(args.graph_out, "w", encoding="utf-8") as f:
        json.dump({"nodes": nodes, "edges": edges}, f, ensure_ascii=False, indent=2)

    print(f"nodes: {len(nodes)}, edges: {len(edges)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
