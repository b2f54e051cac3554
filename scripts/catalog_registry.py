#!/usr/bin/env python3
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set

from jsonschema import Draft202012Validator

from catalog_errors import (
    AmbiguousAliasError,
    DuplicateCourseError,
    UnknownAliasTargetError,
)
from requirement_expr import NO_PREREQUISITES, CourseRef, Expr, atoms, from_json, map_courses


SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_SCHEMA = os.path.join(SCRIPT_DIR, os.pardir, "schema", "course_record.schema.json")

# Record fields consumed here; everything else passes through as metadata.
RECORD_KEYS = ("code", "prerequisites", "aliases", "alias_of")


@dataclass(frozen=True)
class CourseEntry:
    code: str
    expression: Expr
    aliases: FrozenSet[str] = frozenset()
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


class CatalogRegistry:
    """Canonical course code -> requirement expression, aliases and metadata."""

    def __init__(self) -> None:
        self._courses: Dict[str, CourseEntry] = {}
        self._alias_to_canonical: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._courses)

    def __contains__(self, code: str) -> bool:
        return code in self._courses

    def entry(self, code: str) -> CourseEntry:
        return self._courses[code]

    def add_alias(self, alias: str, canonical: str) -> None:
        if alias == canonical:
            return
        prev = self._alias_to_canonical.get(alias)
        if prev is not None and prev != canonical:
            raise AmbiguousAliasError(alias, [prev, canonical])
        if alias in self._courses:
            raise AmbiguousAliasError(alias, [alias, canonical])
        self._alias_to_canonical[alias] = canonical

    def register(self, code: str, expression: Expr = NO_PREREQUISITES, aliases: Iterable[str] = (), metadata: Optional[Dict[str, Any]] = None) -> CourseEntry:
        aliases = frozenset(a for a in aliases if a != code)
        if code in self._alias_to_canonical:
            raise AmbiguousAliasError(code, [code, self._alias_to_canonical[code]])

        existing = self._courses.get(code)
        if existing is not None and existing.expression != expression:
            raise DuplicateCourseError(code)

        for alias in sorted(aliases):
            self.add_alias(alias, code)

        if existing is not None:
            # same course seen in another snapshot: merge, keep the first metadata
            merged_meta = dict(metadata or {})
            merged_meta.update(existing.metadata)
            entry = CourseEntry(code, expression, existing.aliases | aliases, merged_meta)
        else:
            entry = CourseEntry(code, expression, aliases, dict(metadata or {}))
        self._courses[code] = entry
        return entry

    def resolve(self, code: str) -> str:
        if code in self._courses:
            return code
        target = self._alias_to_canonical.get(code)
        if target is None:
            # external / unknown reference, left as-is
            return code
        if target not in self._courses:
            raise UnknownAliasTargetError(code, target)
        return target

    def is_known(self, code: str) -> bool:
        return self.resolve(code) in self._courses

    def all_courses(self) -> Set[str]:
        return set(self._courses)

    def aliases_of(self, code: str) -> FrozenSet[str]:
        found = {a for a, c in self._alias_to_canonical.items() if c == code}
        return frozenset(found) | self._courses[code].aliases

    def validate(self) -> None:
        for alias in sorted(self._alias_to_canonical):
            target = self._alias_to_canonical[alias]
            if alias in self._courses:
                raise AmbiguousAliasError(alias, [alias, target])
            if target not in self._courses:
                raise UnknownAliasTargetError(alias, target)

    def resolved_expression(self, code: str) -> Expr:
        return map_courses(self._courses[code].expression, self.resolve)

    def unknown_references(self) -> Dict[str, List[str]]:
        out: Dict[str, List[str]] = {}
        for code in sorted(self._courses):
            missing: List[str] = []
            for leaf in atoms(self.resolved_expression(code)):
                if isinstance(leaf, CourseRef) and leaf.code not in self._courses and leaf.code not in missing:
                    missing.append(leaf.code)
            if missing:
                out[code] = missing
        return out

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "CatalogRegistry":
        registry = cls()
        for rec in records:
            code = rec["code"]
            if rec.get("alias_of"):
                # standalone cross-listing record; its course may come later
                registry.add_alias(code, rec["alias_of"])
                continue
            raw = rec.get("prerequisites") or {"op": "EMPTY"}
            expression = from_json(raw)
            metadata = {k: v for k, v in rec.items() if k not in RECORD_KEYS}
            registry.register(code, expression, rec.get("aliases") or [], metadata)
        registry.validate()
        return registry


def load_records(path: str) -> List[Dict[str, Any]]:
    """Read canonical records from a JSON array or a JSON Lines file."""
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    records: List[Dict[str, Any]] = []
    for line in text.splitlines():
        line = line.strip()
        if line:
            records.append(json.loads(line))
    return records


def load_schema(path: str = DEFAULT_SCHEMA) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def schema_errors(records: List[Dict[str, Any]], schema: Dict[str, Any]) -> List[str]:
    validator = Draft202012Validator(schema)
    errors: List[str] = []
    for i, rec in enumerate(records):
        for err in validator.iter_errors(rec):
            errors.append(f"error: {err.message} at {[i] + list(err.path)}")
    return errors
