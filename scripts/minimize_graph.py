#!/usr/bin/env python3
"""Fixed-point rewriting of the prerequisite implication graph.

Every rule keeps the derivability closure of the course and exam atoms
unchanged; only the cycle breaker, which runs before the baseline closure is
taken, removes information, and it reports what it removed. Synthetic groups
that shrink during rewriting are inlined, re-established or collected.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

import networkx as nx

from catalog_errors import CycleError, CycleFinding, Finding
from implication_graph import (
    Closure,
    Conjunction,
    ImplicationGraph,
    Requirement,
    atom_key,
    atom_name,
    drop_self_targets,
    reconstruct,
    requirements_by_source,
)
from normal_form import AuxRef
from requirement_expr import CourseRef, Expr


@dataclass(frozen=True)
class MinimizeResult:
    graph: ImplicationGraph
    findings: Tuple[Finding, ...] = ()
    stats: Dict[str, int] = field(default_factory=dict, compare=False, hash=False)


def apply_idempotency(graph: ImplicationGraph) -> ImplicationGraph:
    reqs: Dict[Requirement, None] = {}
    for r in graph.requirements:
        targets = tuple(sorted(set(r.targets), key=atom_key))
        reqs[Requirement(r.source, targets)] = None
    conjs: Dict[Conjunction, None] = {}
    for c in graph.conjunctions:
        sources = tuple(sorted(set(c.sources), key=atom_key))
        conjs[Conjunction(sources, c.target)] = None
    return graph.replace(
        sorted(reqs, key=Requirement.sort_key),
        sorted(conjs, key=Conjunction.sort_key),
    )


def apply_negation(graph: ImplicationGraph) -> Tuple[ImplicationGraph, List[Finding]]:
    requirements, findings = drop_self_targets(graph.requirements)
    # all{a, b} -> a holds trivially
    conjunctions = [c for c in graph.conjunctions if c.target not in c.sources]
    return graph.replace(requirements, conjunctions), findings


def _mandatory_digraph(requirements: Iterable[Requirement]) -> nx.DiGraph:
    G = nx.DiGraph()
    for r in sorted(requirements, key=Requirement.sort_key):
        if r.mandatory:
            G.add_edge(r.source, r.targets[0])
    return G


def break_cycles(graph: ImplicationGraph, strict: bool = False) -> Tuple[ImplicationGraph, List[Finding]]:
    """Remove the lexicographically-last edge of each mandatory cycle.

    Disjunctive edges are ignored: a cycle through an "any of" set does not
    force a contradiction since only one branch has to hold.
    """
    requirements = list(graph.requirements)
    findings: List[Finding] = []
    while True:
        G = _mandatory_digraph(requirements)
        sccs = [c for c in nx.strongly_connected_components(G) if len(c) > 1]
        if not sccs:
            break
        comp = min(sccs, key=lambda c: min(atom_key(a) for a in c))
        start = min(comp, key=atom_key)
        cycle = nx.find_cycle(G.subgraph(comp), source=start)
        members = [atom_name(u) for u, _ in cycle]
        if strict:
            raise CycleError(members + [members[0]])
        u, v = max(cycle, key=lambda e: (atom_key(e[0]), atom_key(e[1])))
        removed = Requirement(u, (v,))
        requirements = [r for r in requirements if r != removed]
        findings.append(CycleFinding(
            tuple(sorted(set(members))),
            f"circular prerequisites {' -> '.join(members + [members[0]])}; dropped {atom_name(u)} -> {atom_name(v)}",
            removed_edge=(atom_name(u), atom_name(v)),
        ))
    if not findings:
        return graph, findings
    return graph.replace(requirements), findings


def apply_simplification(graph: ImplicationGraph) -> ImplicationGraph:
    # a -> {B} makes a -> {B, C} redundant; all{S} -> b makes all{S, T} -> b redundant
    target_sets: Dict = {}
    for r in graph.requirements:
        target_sets.setdefault(r.source, []).append(frozenset(r.targets))
    requirements = [
        r for r in graph.requirements
        if not any(other < frozenset(r.targets) for other in target_sets[r.source])
    ]
    source_sets: Dict = {}
    for c in graph.conjunctions:
        source_sets.setdefault(c.target, []).append(frozenset(c.sources))
    conjunctions = [
        c for c in graph.conjunctions
        if not any(other < frozenset(c.sources) for other in source_sets[c.target])
    ]
    return graph.replace(requirements, conjunctions)


def apply_absorption(graph: ImplicationGraph, base: Closure) -> ImplicationGraph:
    # c -> any{x, y} with x => y is c -> any{y}
    requirements: List[Requirement] = []
    for r in graph.requirements:
        if r.mandatory:
            requirements.append(r)
            continue
        dropped = set()
        for x in r.targets:
            for y in r.targets:
                if x == y or x in dropped or y in dropped:
                    continue
                if base.derives(x, y):
                    if base.derives(y, x):
                        dropped.add(max(x, y, key=atom_key))
                    else:
                        dropped.add(x)
        targets = tuple(t for t in r.targets if t not in dropped)
        requirements.append(Requirement(r.source, targets) if dropped else r)
    return graph.replace(requirements)


def _covered(req: Requirement, by_source: Dict, by_target: Dict, closure: Closure) -> bool:
    targets = set(req.targets)
    reach = closure.bits(targets)
    # sources whose own requirement is at least as narrow as req
    for t in targets:
        for r in by_target.get(t, ()):
            if r != req and targets.issuperset(r.targets):
                reach |= closure.bits((r.source,))
    for other in by_source.get(req.source, ()):
        if other != req and all(closure.mask(x) & reach for x in other.targets):
            return True
    # a disjunctive edge can also be covered through group conjunctions
    return not req.mandatory and bool(closure.mask(req.source) & closure.bits(targets))


def apply_transitivity(graph: ImplicationGraph, base: Closure) -> ImplicationGraph:
    """Drop ``a -> T`` when ``a``'s other edges already force one of ``T``.

    With ``a -> b`` and ``b -> c``, a direct ``a -> c`` goes and ``a -> b`` is
    kept; likewise ``a -> any{c, d}`` goes when ``b -> any{c, d}``. Each drop
    is checked against the closure by recomputing the source's mask only.
    """
    closure = Closure(graph)
    by_source: Dict = {}
    by_target: Dict = {}
    for r in graph.requirements:
        by_source.setdefault(r.source, []).append(r)
        for t in set(r.targets):
            by_target.setdefault(t, []).append(r)

    dropped = set()
    for source in sorted(by_source, key=atom_key):
        for req in list(by_source[source]):
            if not _covered(req, by_source, by_target, closure):
                continue
            keeps = closure.keeps_without(req)
            if keeps is None:
                candidate = [r for r in graph.requirements if r != req and r not in dropped]
                keeps = Closure(graph.replace(candidate)) == base
            if not keeps:
                continue
            closure.forget(req)
            dropped.add(req)
            by_source[source].remove(req)
            for t in set(req.targets):
                by_target[t].remove(req)
    if not dropped:
        return graph
    return graph.replace(r for r in graph.requirements if r not in dropped)


def _group_requirements(requirements: Iterable[Requirement]) -> Dict[AuxRef, List[Requirement]]:
    out: Dict[AuxRef, List[Requirement]] = {}
    for r in requirements:
        if isinstance(r.source, AuxRef):
            out.setdefault(r.source, []).append(r)
    return out


def inline_groups(graph: ImplicationGraph) -> ImplicationGraph:
    """Replace a group left with a single requirement by that requirement's targets.

    ``x -> any{a, g}`` with only ``g -> b`` left becomes ``x -> any{a, b}``,
    which lets absorption see ``a => b``.
    """
    requirements = list(graph.requirements)
    conjunctions = list(graph.conjunctions)
    gone: List[AuxRef] = []
    while True:
        in_sources = {s for c in conjunctions for s in c.sources}
        pick = None
        for g, reqs in sorted(_group_requirements(requirements).items(), key=lambda kv: atom_key(kv[0])):
            if len(reqs) != 1 or g in reqs[0].targets:
                continue
            if reqs[0].mandatory or g not in in_sources:
                pick = reqs[0]
                break
        if pick is None:
            break
        g = pick.source

        new_requirements: List[Requirement] = []
        for r in requirements:
            if r.source == g:
                continue
            if g in r.targets:
                targets = {t for t in r.targets if t != g} | set(pick.targets)
                if r.source in targets:
                    # satisfied by its own source
                    continue
                r = Requirement(r.source, tuple(sorted(targets, key=atom_key)))
            new_requirements.append(r)
        new_conjunctions: List[Conjunction] = []
        for c in conjunctions:
            if c.target == g:
                continue
            if g in c.sources:
                sources = {pick.targets[0] if s == g else s for s in c.sources}
                if c.target in sources:
                    continue
                c = Conjunction(tuple(sorted(sources, key=atom_key)), c.target)
            new_conjunctions.append(c)
        requirements, conjunctions = new_requirements, new_conjunctions
        gone.append(g)

    if not gone:
        return graph
    return graph.without(gone, requirements, conjunctions)


def restore_group_conjunctions(graph: ImplicationGraph) -> ImplicationGraph:
    """Give a group whose edges are all mandatory the conjunction that establishes it."""
    established: Dict = {}
    for c in graph.conjunctions:
        established.setdefault(c.target, []).append(frozenset(c.sources))
    added: List[Conjunction] = []
    for g, reqs in sorted(_group_requirements(graph.requirements).items(), key=lambda kv: atom_key(kv[0])):
        if len(reqs) < 2 or not all(r.mandatory for r in reqs):
            continue
        members = frozenset(r.targets[0] for r in reqs)
        if any(sources <= members for sources in established.get(g, ())):
            continue
        added.append(Conjunction(tuple(sorted(members, key=atom_key)), g))
    if not added:
        return graph
    return graph.replace(conjunctions=list(graph.conjunctions) + added)


def collect_dead_groups(graph: ImplicationGraph) -> ImplicationGraph:
    """Remove groups that no course or exam requirement reaches any more."""
    by_group = _group_requirements(graph.requirements)
    live = set()
    stack = [
        t for r in graph.requirements if not isinstance(r.source, AuxRef)
        for t in r.targets if isinstance(t, AuxRef)
    ]
    while stack:
        g = stack.pop()
        if g in live:
            continue
        live.add(g)
        stack.extend(t for r in by_group.get(g, ()) for t in r.targets if isinstance(t, AuxRef))

    dead = {a for a in graph.nodes if isinstance(a, AuxRef)} - live
    if not dead:
        return graph
    requirements = [r for r in graph.requirements if r.source not in dead]
    conjunctions = [c for c in graph.conjunctions if c.target not in dead and not dead.intersection(c.sources)]
    return graph.without(dead, requirements, conjunctions)


def reshape_groups(graph: ImplicationGraph) -> ImplicationGraph:
    graph = inline_groups(graph)
    graph = restore_group_conjunctions(graph)
    graph = collect_dead_groups(graph)
    return apply_idempotency(graph)


def minimize(graph: ImplicationGraph, strict_cycles: bool = False) -> MinimizeResult:
    start_edges = len(graph.requirements) + len(graph.conjunctions)
    start_size = graph.size()

    graph = apply_idempotency(graph)
    graph, findings = apply_negation(graph)
    graph, cycle_findings = break_cycles(graph, strict_cycles)
    findings.extend(cycle_findings)
    graph = apply_idempotency(graph)
    base = Closure(graph)

    passes = 0
    while True:
        passes += 1
        before = graph
        graph = apply_simplification(graph)
        graph = apply_absorption(graph, base)
        graph = apply_transitivity(graph, base)
        graph = apply_idempotency(graph)
        # group rewrites change the atom set, so the baseline follows them
        reshaped = reshape_groups(graph)
        if reshaped != graph:
            graph = reshaped
            base = Closure(graph)
        # absorption can turn a hidden cycle into a mandatory one
        graph, late_cycles = break_cycles(graph, strict_cycles)
        if late_cycles:
            findings.extend(late_cycles)
            base = Closure(graph)
        if graph == before:
            break

    stats = {
        "edges_before": start_edges,
        "edges_after": len(graph.requirements) + len(graph.conjunctions),
        "literals_before": start_size,
        "literals_after": graph.size(),
        "passes": passes,
        "cycles_broken": sum(1 for f in findings if isinstance(f, CycleFinding)),
    }
    return MinimizeResult(graph, tuple(findings), stats)


def minimized_expressions(graph: ImplicationGraph, courses: Iterable[str]) -> Dict[str, Expr]:
    by_source = requirements_by_source(graph)
    return {code: reconstruct(graph, CourseRef(code), by_source=by_source) for code in sorted(courses)}
