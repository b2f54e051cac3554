#!/usr/bin/env python3
import dataclasses
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import networkx as nx

from catalog_errors import Finding, SelfReferenceFinding, UnsatisfiableRequirementError
from normal_form import Atom, AuxRef, NormalForm, format_clause
from requirement_expr import AllOf, AnyOf, CourseRef, ExamRef, Expr, GroupRef, normalize, sort_expr


def atom_key(atom: Atom):
    return atom.sort_key()


def atom_name(atom: Atom) -> str:
    return atom.code if isinstance(atom, CourseRef) else str(atom)


def atom_kind(atom: Atom) -> str:
    if isinstance(atom, CourseRef):
        return "course"
    if isinstance(atom, ExamRef):
        return "exam"
    if isinstance(atom, GroupRef):
        return "group"
    return "synthetic"


@dataclass(frozen=True)
class Requirement:
    """``source`` requires at least one of ``targets``; one target means mandatory."""

    source: Atom
    targets: Tuple[Atom, ...]

    @property
    def mandatory(self) -> bool:
        return len(self.targets) == 1

    def sort_key(self):
        return (atom_key(self.source), len(self.targets), tuple(atom_key(t) for t in self.targets))

    def __str__(self) -> str:
        if self.mandatory:
            return f"{self.source} -> {self.targets[0]}"
        return f"{self.source} -> any{{{', '.join(str(t) for t in self.targets)}}}"


@dataclass(frozen=True)
class Conjunction:
    """All of ``sources`` together establish ``target``."""

    sources: Tuple[Atom, ...]
    target: Atom

    def sort_key(self):
        return (atom_key(self.target), tuple(atom_key(s) for s in self.sources))

    def __str__(self) -> str:
        return f"all{{{', '.join(str(s) for s in self.sources)}}} -> {self.target}"


@dataclass(frozen=True)
class ImplicationGraph:
    requirements: Tuple[Requirement, ...] = ()
    conjunctions: Tuple[Conjunction, ...] = ()
    nodes: FrozenSet[Atom] = frozenset()
    groups: Dict[AuxRef, Expr] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        found: Set[Atom] = set(self.nodes)
        for req in self.requirements:
            found.add(req.source)
            found.update(req.targets)
        for conj in self.conjunctions:
            found.update(conj.sources)
            found.add(conj.target)
        object.__setattr__(self, "nodes", frozenset(found))

    def size(self) -> int:
        return sum(1 + len(r.targets) for r in self.requirements) + sum(len(c.sources) + 1 for c in self.conjunctions)

    def replace(self, requirements: Optional[Iterable[Requirement]] = None, conjunctions: Optional[Iterable[Conjunction]] = None) -> "ImplicationGraph":
        changes = {}
        if requirements is not None:
            changes["requirements"] = tuple(requirements)
        if conjunctions is not None:
            changes["conjunctions"] = tuple(conjunctions)
        return dataclasses.replace(self, **changes)

    def without(self, dropped: Iterable[Atom], requirements: Iterable[Requirement], conjunctions: Iterable[Conjunction]) -> "ImplicationGraph":
        """New graph with the ``dropped`` atoms removed from the node set and groups."""
        dropped = set(dropped)
        groups = {g: e for g, e in self.groups.items() if g not in dropped}
        return ImplicationGraph(tuple(requirements), tuple(conjunctions), self.nodes - dropped, groups)

    def __str__(self) -> str:
        lines = [str(r) for r in self.requirements] + [str(c) for c in self.conjunctions]
        return "\n".join(lines)


def drop_self_targets(requirements: Iterable[Requirement]) -> Tuple[List[Requirement], List[Finding]]:
    kept: List[Requirement] = []
    findings: List[Finding] = []
    for req in requirements:
        if req.source not in req.targets:
            kept.append(req)
            continue
        # x -> any{x, ...} is always satisfied, so the whole requirement goes
        name = atom_name(req.source)
        findings.append(SelfReferenceFinding((name,), f"{name} lists itself as a prerequisite; requirement dropped"))
    return kept, findings


def build_graph(normal_form: NormalForm) -> Tuple[ImplicationGraph, List[Finding]]:
    requirements: List[Requirement] = []
    conjunctions: List[Conjunction] = []
    nodes: Set[Atom] = {CourseRef(code) for code in normal_form.courses}

    for clause in normal_form.clauses:
        neg = sorted((l.atom for l in clause if not l.positive), key=atom_key)
        pos = sorted((l.atom for l in clause if l.positive), key=atom_key)
        nodes.update(neg)
        nodes.update(pos)
        if len(neg) == 1:
            if not pos:
                raise UnsatisfiableRequirementError(atom_name(neg[0]))
            requirements.append(Requirement(neg[0], tuple(pos)))
        elif len(neg) >= 2 and len(pos) == 1:
            conjunctions.append(Conjunction(tuple(neg), pos[0]))
        else:
            raise ValueError(f"clause {format_clause(clause)} is not a prerequisite implication")

    requirements, findings = drop_self_targets(requirements)
    graph = ImplicationGraph(tuple(requirements), tuple(conjunctions), frozenset(nodes), dict(normal_form.groups))
    return graph, findings


class Closure:
    """Derivability closure: ``p in closure[c]`` iff satisfying ``c`` forces ``p``.

    Least fixed point of
      D(x) = {x} | union over x -> T of (intersection of D(t), t in T)
                 | union over S => b with S <= D(x) of D(b)
    kept as one bitmask per atom.
    """

    def __init__(self, graph: ImplicationGraph) -> None:
        self.atoms: List[Atom] = sorted(graph.nodes, key=atom_key)
        self.index: Dict[Atom, int] = {a: i for i, a in enumerate(self.atoms)}
        self.masks: List[int] = self._compute(graph)

    def _compute(self, graph: ImplicationGraph) -> List[int]:
        n = len(self.atoms)
        index = self.index
        reqs: List[List[Tuple[int, ...]]] = [[] for _ in range(n)]
        G = nx.DiGraph()
        G.add_nodes_from(range(n))
        for req in graph.requirements:
            src = index[req.source]
            targets = tuple(index[t] for t in req.targets)
            reqs[src].append(targets)
            for t in targets:
                G.add_edge(src, t)
        conjs: List[Tuple[int, int]] = []
        for conj in graph.conjunctions:
            smask = 0
            for s in conj.sources:
                smask |= 1 << index[s]
            conjs.append((smask, index[conj.target]))
        self._reqs = reqs
        self._conjs = conjs

        # dependencies first so most atoms settle in one sweep
        cond = nx.condensation(G)
        order: List[int] = []
        for comp in reversed(list(nx.topological_sort(cond))):
            order.extend(sorted(cond.nodes[comp]["members"]))

        D = [1 << i for i in range(n)]
        changed = True
        while changed:
            changed = False
            for i in order:
                m = D[i]
                for targets in reqs[i]:
                    acc = D[targets[0]]
                    for t in targets[1:]:
                        acc &= D[t]
                    m |= acc
                if conjs:
                    grew = True
                    while grew:
                        grew = False
                        for smask, t in conjs:
                            if smask & m == smask and D[t] & ~m:
                                m |= D[t]
                                grew = True
                if m != D[i]:
                    D[i] = m
                    changed = True
        return D

    def derives(self, source: Atom, target: Atom) -> bool:
        return bool(self.masks[self.index[source]] >> self.index[target] & 1)

    def mask(self, atom: Atom) -> int:
        return self.masks[self.index[atom]]

    def bits(self, atoms: Iterable[Atom]) -> int:
        m = 0
        for a in atoms:
            m |= 1 << self.index[a]
        return m

    def keeps_without(self, req: Requirement) -> Optional[bool]:
        """Whether dropping ``req`` leaves every mask unchanged.

        Only the source's mask is recomputed, against the other atoms' current
        masks. That settles the question unless the source sits on a
        derivation cycle, in which case None is returned and the caller has to
        recompute the whole closure.
        """
        i = self.index[req.source]
        targets = tuple(self.index[t] for t in req.targets)
        remaining = list(self._reqs[i])
        remaining.remove(targets)

        D = self.masks
        m = 1 << i
        for ts in remaining:
            acc = D[ts[0]]
            for t in ts[1:]:
                acc &= D[t]
            m |= acc
        grew = True
        while grew:
            grew = False
            for smask, t in self._conjs:
                if smask & m == smask and D[t] & ~m:
                    m |= D[t]
                    grew = True
        if m != D[i]:
            return False
        above = D[i] & ~(1 << i)
        while above:
            low = above & -above
            if D[low.bit_length() - 1] >> i & 1:
                return None
            above ^= low
        return True

    def forget(self, req: Requirement) -> None:
        """Record that ``req`` was dropped without changing any mask."""
        i = self.index[req.source]
        self._reqs[i].remove(tuple(self.index[t] for t in req.targets))

    def of(self, atom: Atom) -> FrozenSet[Atom]:
        m = self.masks[self.index[atom]]
        return frozenset(a for i, a in enumerate(self.atoms) if m >> i & 1)

    def as_dict(self) -> Dict[Atom, FrozenSet[Atom]]:
        return {a: self.of(a) for a in self.atoms}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Closure):
            return NotImplemented
        if self.atoms == other.atoms:
            return self.masks == other.masks
        return self.as_dict() == other.as_dict()


def closure(graph: ImplicationGraph) -> Dict[Atom, FrozenSet[Atom]]:
    return Closure(graph).as_dict()


def requirements_by_source(graph: ImplicationGraph) -> Dict[Atom, List[Requirement]]:
    out: Dict[Atom, List[Requirement]] = {}
    for req in graph.requirements:
        out.setdefault(req.source, []).append(req)
    return out


def reconstruct(graph: ImplicationGraph, source: Atom, _seen: FrozenSet[Atom] = frozenset(), by_source: Optional[Dict[Atom, List[Requirement]]] = None) -> Expr:
    """Inverse of ``build_graph`` for one source: its requirement expression.

    Children come out in canonical order so the result does not depend on
    which groups were inlined.
    """
    seen = _seen | {source}
    if by_source is None:
        by_source = requirements_by_source(graph)

    def expand(target: Atom) -> Expr:
        if isinstance(target, AuxRef):
            if target in seen:
                return graph.groups.get(target, AllOf(()))
            return reconstruct(graph, target, seen, by_source)
        return target

    conjuncts: List[Expr] = []
    for req in by_source.get(source, ()):
        parts = [expand(t) for t in req.targets]
        conjuncts.append(parts[0] if len(parts) == 1 else AnyOf(tuple(parts)))
    return sort_expr(normalize(AllOf(tuple(conjuncts))))


def to_networkx(graph: ImplicationGraph, mandatory_only: bool = False) -> nx.DiGraph:
    G = nx.DiGraph()
    for atom in sorted(graph.nodes, key=atom_key):
        G.add_node(atom_name(atom), kind=atom_kind(atom), atom=atom)
    for gid, req in enumerate(graph.requirements):
        if req.mandatory:
            G.add_edge(atom_name(req.source), atom_name(req.targets[0]), kind="all")
        elif not mandatory_only:
            for t in req.targets:
                G.add_edge(atom_name(req.source), atom_name(t), kind="any", group=gid)
    if not mandatory_only:
        for gid, conj in enumerate(graph.conjunctions):
            for s in conj.sources:
                G.add_edge(atom_name(s), atom_name(conj.target), kind="establishes", group=gid)
    return G
