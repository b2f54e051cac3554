#!/usr/bin/env python3
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from catalog_errors import Finding, UnknownReferenceFinding
from catalog_registry import CatalogRegistry
from implication_graph import ImplicationGraph, build_graph
from minimize_graph import MinimizeResult, minimize, minimized_expressions
from normal_form import convert_catalog, convert_expressions
from requirement_expr import Expr, to_json


# Upper bound on re-minimizing the reconstructed output; it settles in one or two.
MAX_SETTLE_ROUNDS = 8


@dataclass
class PipelineResult:
    records: List[Dict[str, Any]]
    findings: List[Finding]
    graph: ImplicationGraph
    stats: Dict[str, int] = field(default_factory=dict)


def unknown_reference_findings(registry: CatalogRegistry) -> List[Finding]:
    findings: List[Finding] = []
    for code, missing in registry.unknown_references().items():
        for ref in missing:
            findings.append(UnknownReferenceFinding(
                (code,),
                f"{code} requires {ref}, which is not in the catalog; kept as an opaque prerequisite",
            ))
    return findings


def _dedupe(findings: Iterable[Finding]) -> List[Finding]:
    seen = set()
    out: List[Finding] = []
    for f in findings:
        if f not in seen:
            seen.add(f)
            out.append(f)
    return out


def settle(expressions: Dict[str, Expr], result: MinimizeResult, max_workers: Optional[int] = None) -> Tuple[Dict[str, Expr], MinimizeResult, int]:
    """Re-minimize reconstructed expressions until they come back unchanged.

    Reconstruction regroups nested any/all structure, and the new grouping
    can expose redundancy the first graph hid. The returned expressions
    minimize to themselves.
    """
    rounds = 0
    while rounds < MAX_SETTLE_ROUNDS:
        rounds += 1
        graph, _ = build_graph(convert_expressions(expressions, max_workers=max_workers))
        again = minimize(graph)
        result = MinimizeResult(again.graph, result.findings, result.stats)
        rerun = minimized_expressions(again.graph, expressions)
        if rerun == expressions:
            break
        expressions = rerun
    return expressions, result, rounds


def run_pipeline(records: Iterable[Dict[str, Any]], max_workers: Optional[int] = None, strict_cycles: bool = False) -> PipelineResult:
    """Registry -> CNF -> implication graph -> minimized graph -> output records."""
    registry = CatalogRegistry.from_records(records)
    findings = unknown_reference_findings(registry)

    normal_form = convert_catalog(registry, max_workers=max_workers)
    graph, build_findings = build_graph(normal_form)
    result = minimize(graph, strict_cycles=strict_cycles)
    findings = _dedupe(findings + build_findings + list(result.findings))

    minimized = minimized_expressions(result.graph, registry.all_courses())
    minimized, result, rounds = settle(minimized, result, max_workers=max_workers)

    out: List[Dict[str, Any]] = []
    for code in sorted(registry.all_courses()):
        entry = registry.entry(code)
        rec: Dict[str, Any] = {"code": code, "aliases": sorted(registry.aliases_of(code))}
        rec.update(entry.metadata)
        rec["prerequisites"] = {
            "original": to_json(entry.expression),
            "minimized": to_json(minimized[code]),
        }
        rec["findings"] = [f.to_json() for f in findings if code in f.courses]
        out.append(rec)

    stats = {
        "courses": len(registry),
        "clauses": len(normal_form.clauses),
        "groups": len(normal_form.groups),
        "findings": len(findings),
    }
    stats.update(result.stats)
    stats["edges_after"] = len(result.graph.requirements) + len(result.graph.conjunctions)
    stats["literals_after"] = result.graph.size()
    stats["settle_rounds"] = rounds
    return PipelineResult(out, findings, result.graph, stats)
