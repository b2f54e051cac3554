#!/usr/bin/env python3
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Tuple


class CatalogError(Exception):
    """Fatal configuration or data error; the run aborts."""

    def __init__(self, message: str, codes: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.codes: Tuple[str, ...] = tuple(codes)


class DuplicateCourseError(CatalogError):
    def __init__(self, code: str) -> None:
        super().__init__(f"course {code} registered twice with conflicting prerequisites", [code])


class UnknownAliasTargetError(CatalogError):
    def __init__(self, alias: str, target: str) -> None:
        super().__init__(f"alias {alias} points to {target}, which is not a registered course", [alias, target])


class AmbiguousAliasError(CatalogError):
    def __init__(self, alias: str, targets: Iterable[str]) -> None:
        targets = sorted(set(targets))
        super().__init__(f"alias {alias} maps to more than one course: {', '.join(targets)}", [alias] + targets)


class UnsatisfiableRequirementError(CatalogError):
    def __init__(self, code: str) -> None:
        super().__init__(f"prerequisites of {code} reduce to false and can never be met", [code])


class CycleError(CatalogError):
    def __init__(self, members: Iterable[str]) -> None:
        members = list(members)
        super().__init__(f"circular mandatory prerequisites: {' -> '.join(members)}", members)


class InvalidExpressionError(CatalogError, ValueError):
    def __init__(self, message: str, codes: Iterable[str] = ()) -> None:
        super().__init__(message, codes)


# Non-fatal findings, attached to the output for human review.

@dataclass(frozen=True)
class Finding:
    courses: Tuple[str, ...]
    message: str
    kind: str = field(default="finding", init=False)

    def to_json(self) -> Dict[str, Any]:
        return {"kind": self.kind, "courses": list(self.courses), "message": self.message}


@dataclass(frozen=True)
class SelfReferenceFinding(Finding):
    kind: str = field(default="self_reference", init=False)


@dataclass(frozen=True)
class CycleFinding(Finding):
    removed_edge: Tuple[str, str] = ("", "")
    kind: str = field(default="cycle", init=False)

    def to_json(self) -> Dict[str, Any]:
        out = super().to_json()
        out["removed_edge"] = list(self.removed_edge)
        return out


@dataclass(frozen=True)
class UnknownReferenceFinding(Finding):
    kind: str = field(default="unknown_reference", init=False)
