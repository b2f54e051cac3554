#!/usr/bin/env python3
"""Catalog-wide conversion of ``course => prerequisites`` into CNF.

Each implication ``c => E`` becomes ``not c or E``. ``E`` is rewritten to
negation normal form and distributed into clauses. An ``all(...)`` that sits
inside a disjunction next to siblings is not distributed; it is replaced by a
synthetic group proposition with definitional clauses, so the clause count
stays linear in the size of the input tree.
"""
import concurrent.futures
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from catalog_errors import UnsatisfiableRequirementError
from requirement_expr import (
    AllOf,
    AnyOf,
    CourseRef,
    ExamRef,
    Expr,
    GroupRef,
    is_leaf,
    normalize,
)


@dataclass(frozen=True)
class AuxRef:
    # synthetic group proposition; label is derived from the grouped structure
    label: str

    def sort_key(self) -> Tuple[int, str, int]:
        return (3, self.label, 0)

    def __str__(self) -> str:
        return f"<{self.label}>"


Atom = Union[CourseRef, ExamRef, GroupRef, AuxRef]


@dataclass(frozen=True)
class Literal:
    atom: Atom
    positive: bool = True

    def negate(self) -> "Literal":
        return Literal(self.atom, not self.positive)

    def sort_key(self) -> Tuple[Tuple[int, str, int], bool]:
        return (self.atom.sort_key(), self.positive)

    def __str__(self) -> str:
        return str(self.atom) if self.positive else f"~{self.atom}"


Clause = FrozenSet[Literal]


def clause_key(clause: Clause) -> Tuple:
    return tuple(sorted(lit.sort_key() for lit in clause))


def format_clause(clause: Clause) -> str:
    return "(" + " | ".join(str(l) for l in sorted(clause, key=Literal.sort_key)) + ")"


@dataclass(frozen=True)
class _And:
    items: Tuple


@dataclass(frozen=True)
class _Or:
    items: Tuple


def to_nnf(expr: Expr, positive: bool = True):
    """Push negation down to the leaves (De Morgan)."""
    if is_leaf(expr):
        return Literal(expr, positive)
    children = tuple(to_nnf(child, positive) for child in expr.items)
    conjunctive = isinstance(expr, AllOf) == positive
    return _And(children) if conjunctive else _Or(children)


def _label(node) -> str:
    if isinstance(node, Literal):
        return str(node)
    parts = sorted(_label(child) for child in node.items)
    name = "all" if isinstance(node, _And) else "any"
    return f"{name}(" + ", ".join(parts) + ")"


def _to_expr(node) -> Expr:
    if isinstance(node, Literal):
        return node.atom
    kind = AllOf if isinstance(node, _And) else AnyOf
    return kind(tuple(_to_expr(child) for child in node.items))


class _Converter:
    def __init__(self) -> None:
        self.groups: Dict[AuxRef, Expr] = {}
        self.definitions: List[Clause] = []

    def group(self, node, clauses: List[Clause]) -> AuxRef:
        aux = AuxRef(_label(node))
        if aux in self.groups:
            return aux
        self.groups[aux] = _to_expr(node)
        neg = Literal(aux, False)
        for clause in clauses:
            self.definitions.append(clause | {neg})
        # all of the members establish the group
        if all(len(c) == 1 and next(iter(c)).positive for c in clauses):
            members = [next(iter(c)).negate() for c in clauses]
            self.definitions.append(frozenset(members + [Literal(aux, True)]))
        return aux

    def cnf(self, node) -> List[Clause]:
        if isinstance(node, Literal):
            return [frozenset([node])]
        if isinstance(node, _And):
            out: List[Clause] = []
            for child in node.items:
                sub = self.cnf(child)
                if frozenset() in sub:
                    return [frozenset()]
                out.extend(sub)
            return out

        children: List = []
        for child in node.items:
            if isinstance(child, _Or):
                children.extend(child.items)
            else:
                children.append(child)
        parts: List[List[Clause]] = []
        for child in children:
            sub = self.cnf(child)
            if not sub:
                # a trivially true disjunct satisfies the whole disjunction
                return []
            if sub == [frozenset()]:
                continue
            if len(sub) > 1 and len(children) > 1:
                sub = [frozenset([Literal(self.group(child, sub), True)])]
            parts.append(sub)
        if not parts:
            return [frozenset()]
        if len(parts) == 1:
            return parts[0]
        return [frozenset().union(*(p[0] for p in parts))]


@dataclass(frozen=True)
class CourseClauses:
    code: str
    clauses: Tuple[Clause, ...]
    definitions: Tuple[Clause, ...]
    groups: Dict[AuxRef, Expr] = field(default_factory=dict, compare=False, hash=False)


def convert_course(code: str, expression: Expr) -> CourseClauses:
    """CNF of ``code => expression``; raises if the expression is unsatisfiable."""
    converter = _Converter()
    head = Literal(CourseRef(code), False)
    body = converter.cnf(to_nnf(normalize(expression)))
    clauses = [clause | {head} for clause in body]
    if frozenset([head]) in clauses:
        raise UnsatisfiableRequirementError(code)
    return CourseClauses(code, tuple(clauses), tuple(converter.definitions), converter.groups)


@dataclass(frozen=True)
class NormalForm:
    clauses: Tuple[Clause, ...]
    groups: Dict[AuxRef, Expr] = field(default_factory=dict, compare=False, hash=False)
    courses: Tuple[str, ...] = ()

    def size(self) -> int:
        return sum(len(c) for c in self.clauses)

    def __str__(self) -> str:
        return "\n".join(format_clause(c) for c in self.clauses)


def merge(results: List[CourseClauses]) -> NormalForm:
    seen = set()
    clauses: List[Clause] = []
    groups: Dict[AuxRef, Expr] = {}
    for res in results:
        for clause in res.clauses + res.definitions:
            if clause not in seen:
                seen.add(clause)
                clauses.append(clause)
        groups.update(res.groups)
    clauses.sort(key=clause_key)
    return NormalForm(tuple(clauses), groups, tuple(r.code for r in results))


def convert_catalog(registry, max_workers: Optional[int] = None) -> NormalForm:
    expressions = {code: registry.resolved_expression(code) for code in registry.all_courses()}
    return convert_expressions(expressions, max_workers=max_workers)


def convert_expressions(expressions: Dict[str, Expr], max_workers: Optional[int] = None) -> NormalForm:
    codes = sorted(expressions)

    def convert_one(code: str) -> CourseClauses:
        return convert_course(code, expressions[code])

    if not max_workers or max_workers <= 1 or len(codes) < 2:
        return merge([convert_one(code) for code in codes])

    results: Dict[str, CourseClauses] = {}
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_code: Dict[concurrent.futures.Future, str] = {}
        for code in codes:
            future = executor.submit(convert_one, code)
            future_to_code[future] = code
        for future in concurrent.futures.as_completed(future_to_code):
            results[future_to_code[future]] = future.result()
    # merge sequentially in course order so the output does not depend on scheduling
    return merge([results[code] for code in codes])
