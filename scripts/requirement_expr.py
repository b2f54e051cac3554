#!/usr/bin/env python3
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple, Union

from catalog_errors import InvalidExpressionError


@dataclass(frozen=True)
class CourseRef:
    code: str

    def __post_init__(self) -> None:
        if not isinstance(self.code, str) or not self.code.strip():
            raise InvalidExpressionError(f"course reference needs a code, got {self.code!r}")

    def sort_key(self) -> Tuple[int, str, int]:
        return (0, self.code, 0)

    def __str__(self) -> str:
        return self.code


@dataclass(frozen=True)
class ExamRef:
    name: str
    min_score: int

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise InvalidExpressionError(f"exam reference needs a name, got {self.name!r}")
        if isinstance(self.min_score, bool) or not isinstance(self.min_score, int) or self.min_score < 0:
            raise InvalidExpressionError(f"exam {self.name!r} needs a non-negative integer score, got {self.min_score!r}")

    def sort_key(self) -> Tuple[int, str, int]:
        return (1, self.name, self.min_score)

    def __str__(self) -> str:
        return f"{self.name} >= {self.min_score}"


@dataclass(frozen=True)
class GroupRef:
    name: str

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise InvalidExpressionError(f"group reference needs a name, got {self.name!r}")

    def sort_key(self) -> Tuple[int, str, int]:
        return (2, self.name, 0)

    def __str__(self) -> str:
        return f"[{self.name}]"


LEAF_TYPES = (CourseRef, ExamRef, GroupRef)


def _check_items(owner: str, items: Any) -> Tuple["Expr", ...]:
    if isinstance(items, (str, bytes)) or not isinstance(items, Iterable):
        raise InvalidExpressionError(f"{owner} expects a list of expressions, got {items!r}")
    items = tuple(items)
    for child in items:
        if not isinstance(child, LEAF_TYPES + (AllOf, AnyOf)):
            raise InvalidExpressionError(f"{owner} child is not a requirement expression: {child!r}")
    return items


@dataclass(frozen=True)
class AllOf:
    items: Tuple["Expr", ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", _check_items("AllOf", self.items))

    def __str__(self) -> str:
        return "all(" + ", ".join(str(c) for c in self.items) + ")"


@dataclass(frozen=True)
class AnyOf:
    items: Tuple["Expr", ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", _check_items("AnyOf", self.items))

    def __str__(self) -> str:
        return "any(" + ", ".join(str(c) for c in self.items) + ")"


Leaf = Union[CourseRef, ExamRef, GroupRef]
Expr = Union[CourseRef, ExamRef, GroupRef, AllOf, AnyOf]

NO_PREREQUISITES = AllOf(())


def is_leaf(expr: Any) -> bool:
    return isinstance(expr, LEAF_TYPES)


def atoms(expr: Expr) -> List[Leaf]:
    out: List[Leaf] = []

    def walk(node: Expr) -> None:
        if is_leaf(node):
            out.append(node)
            return
        for child in node.items:
            walk(child)

    walk(expr)
    return out


def course_codes(expr: Expr) -> List[str]:
    # Unique order-preserving
    seen = set()
    uniq: List[str] = []
    for leaf in atoms(expr):
        if isinstance(leaf, CourseRef) and leaf.code not in seen:
            seen.add(leaf.code)
            uniq.append(leaf.code)
    return uniq


def map_courses(expr: Expr, fn) -> Expr:
    """Rebuild ``expr`` with every course code passed through ``fn``."""
    if isinstance(expr, CourseRef):
        return CourseRef(fn(expr.code))
    if is_leaf(expr):
        return expr
    return type(expr)(tuple(map_courses(c, fn) for c in expr.items))


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def _flatten(expr: Expr) -> Expr:
    if is_leaf(expr):
        return expr
    kind = type(expr)
    children: List[Expr] = []
    for child in expr.items:
        child = _flatten(child)
        if type(child) is kind:
            children.extend(child.items)
        else:
            children.append(child)
    return kind(tuple(children))


def _dedupe(items: Iterable[Expr]) -> List[Expr]:
    seen = set()
    out: List[Expr] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def _exam_overlap(expr: Expr) -> Expr:
    # any(exam>=3, exam>=4) -> exam>=3 ; all(exam>=3, exam>=4) -> exam>=4
    if is_leaf(expr):
        return expr
    children = [_exam_overlap(c) for c in expr.items]
    best: Dict[str, int] = {}
    for child in children:
        if isinstance(child, ExamRef):
            prev = best.get(child.name)
            if prev is None:
                best[child.name] = child.min_score
            elif isinstance(expr, AnyOf):
                best[child.name] = min(prev, child.min_score)
            else:
                best[child.name] = max(prev, child.min_score)
    out: List[Expr] = []
    emitted = set()
    for child in children:
        if isinstance(child, ExamRef):
            if child.name in emitted:
                continue
            emitted.add(child.name)
            out.append(ExamRef(child.name, best[child.name]))
        else:
            out.append(child)
    return type(expr)(tuple(out))


def _unbox(expr: Expr) -> Expr:
    if is_leaf(expr):
        return expr
    children = _dedupe(_unbox(c) for c in expr.items)
    if len(children) == 1:
        return children[0]
    return type(expr)(tuple(children))


def normalize(expr: Expr) -> Expr:
    """Flatten, de-duplicate, merge overlapping exam scores and unbox singlets.

    The result is logically equivalent to ``expr``. Child order is kept so
    that parsed input reads the same way after normalization.
    """
    expr = _flatten(expr)
    expr = _exam_overlap(expr)
    expr = _unbox(expr)
    # unboxing can expose new same-operator nesting
    expr = _flatten(expr)
    if not is_leaf(expr):
        expr = type(expr)(tuple(_dedupe(expr.items)))
    return expr


def expr_key(expr: Expr) -> Tuple:
    if is_leaf(expr):
        return expr.sort_key() + ((),)
    rank = 4 if isinstance(expr, AllOf) else 5
    return (rank, "", 0, tuple(expr_key(c) for c in expr.items))


def sort_expr(expr: Expr) -> Expr:
    """Same expression with children in canonical order, recursively."""
    if is_leaf(expr):
        return expr
    children = sorted((sort_expr(c) for c in expr.items), key=expr_key)
    return type(expr)(tuple(children))


# ---------------------------------------------------------------------------
# JSON codec ({"op": ...} AST shape)
# ---------------------------------------------------------------------------

def from_json(node: Any) -> Expr:
    if not isinstance(node, dict):
        raise InvalidExpressionError(f"expected an AST object, got {node!r}")
    op = node.get("op")
    if op == "EMPTY":
        return NO_PREREQUISITES
    if op == "COURSE":
        return CourseRef(node.get("course"))
    if op == "EXAM":
        return ExamRef(node.get("exam"), node.get("score"))
    if op == "GROUP":
        return GroupRef(node.get("group"))
    if op in ("AND", "OR"):
        items = node.get("items")
        if not isinstance(items, list):
            raise InvalidExpressionError(f"{op} node needs an items list, got {items!r}")
        children = tuple(from_json(child) for child in items)
        return AllOf(children) if op == "AND" else AnyOf(children)
    raise InvalidExpressionError(f"unknown AST op {op!r}")


def to_json(expr: Expr) -> Dict[str, Any]:
    if isinstance(expr, CourseRef):
        return {"op": "COURSE", "course": expr.code}
    if isinstance(expr, ExamRef):
        return {"op": "EXAM", "exam": expr.name, "score": expr.min_score}
    if isinstance(expr, GroupRef):
        return {"op": "GROUP", "group": expr.name}
    if isinstance(expr, AllOf) and not expr.items:
        return {"op": "EMPTY"}
    op = "AND" if isinstance(expr, AllOf) else "OR"
    return {"op": op, "items": [to_json(child) for child in expr.items]}
