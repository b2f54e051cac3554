import json

import pytest

from catalog_errors import AmbiguousAliasError, DuplicateCourseError, UnknownAliasTargetError
from catalog_registry import (
    DEFAULT_SCHEMA,
    CatalogRegistry,
    load_records,
    load_schema,
    schema_errors,
)
from requirement_expr import NO_PREREQUISITES, AllOf, AnyOf, CourseRef


def test_register_is_idempotent_for_identical_expressions():
    reg = CatalogRegistry()
    expr = AllOf([CourseRef("MATH 0090")])
    reg.register("MATH 0100", expr, aliases=["APMA 0100"])
    reg.register("MATH 0100", AllOf([CourseRef("MATH 0090")]), aliases=["MATH 0100A"])
    assert reg.all_courses() == {"MATH 0100"}
    assert reg.aliases_of("MATH 0100") == frozenset({"APMA 0100", "MATH 0100A"})


def test_register_conflicting_expression_fails():
    reg = CatalogRegistry()
    reg.register("MATH 0100", AllOf([CourseRef("MATH 0090")]))
    with pytest.raises(DuplicateCourseError) as exc:
        reg.register("MATH 0100", AnyOf([CourseRef("MATH 0090")]))
    assert exc.value.codes == ("MATH 0100",)


def test_resolve_follows_aliases_and_keeps_unknown_codes():
    reg = CatalogRegistry()
    reg.register("CSCI 1470", NO_PREREQUISITES, aliases=["DATA 1470"])
    assert reg.resolve("DATA 1470") == "CSCI 1470"
    assert reg.resolve("CSCI 1470") == "CSCI 1470"
    assert reg.resolve("PHYS 9999") == "PHYS 9999"
    assert reg.is_known("DATA 1470")
    assert not reg.is_known("PHYS 9999")


def test_alias_to_unregistered_course_fails():
    reg = CatalogRegistry()
    reg.add_alias("ENGN 0030", "ENGN 0031")
    with pytest.raises(UnknownAliasTargetError):
        reg.resolve("ENGN 0030")
    with pytest.raises(UnknownAliasTargetError):
        reg.validate()


def test_alias_before_its_course_is_fine_once_registered():
    reg = CatalogRegistry()
    reg.add_alias("ENGN 0030", "ENGN 0031")
    reg.register("ENGN 0031")
    reg.validate()
    assert reg.resolve("ENGN 0030") == "ENGN 0031"
    assert "ENGN 0030" in reg.aliases_of("ENGN 0031")



def test_alias_record_before_its_course():
    records = [
        {"code": "APMA 0100", "alias_of": "MATH 0100"},
        {"code": "MATH 0180", "prerequisites": {"op": "COURSE", "course": "APMA 0100"}},
        {"code": "MATH 0100"},
    ]
    reg = CatalogRegistry.from_records(records)
    assert reg.all_courses() == {"MATH 0100", "MATH 0180"}
    assert reg.resolved_expression("MATH 0180") == CourseRef("MATH 0100")
    assert reg.aliases_of("MATH 0100") == frozenset({"APMA 0100"})


def test_alias_record_to_missing_course_fails():
    with pytest.raises(UnknownAliasTargetError) as exc:
        CatalogRegistry.from_records([{"code": "ENGN 0030", "alias_of": "ENGN 0031"}, {"code": "ENGN 0040"}])
    assert exc.value.codes == ("ENGN 0030", "ENGN 0031")

def test_alias_mapping_to_two_courses_is_ambiguous():
    reg = CatalogRegistry()
    reg.register("CLPS 0450", aliases=["NEUR 0450"])
    with pytest.raises(AmbiguousAliasError) as exc:
        reg.register("PSYC 0450", aliases=["NEUR 0450"])
    assert set(exc.value.codes) >= {"NEUR 0450", "CLPS 0450", "PSYC 0450"}


def test_alias_that_is_also_a_canonical_code_is_ambiguous():
    reg = CatalogRegistry()
    reg.register("CLPS 0450")
    with pytest.raises(AmbiguousAliasError):
        reg.register("NEUR 0450", aliases=["CLPS 0450"])

    reg = CatalogRegistry()
    reg.register("CLPS 0450", aliases=["NEUR 0450"])
    with pytest.raises(AmbiguousAliasError):
        reg.register("NEUR 0450")


def test_resolved_expression_and_unknown_references():
    reg = CatalogRegistry()
    reg.register("MATH 0100", aliases=["APMA 0100"])
    reg.register("MATH 0180", AllOf([CourseRef("APMA 0100"), CourseRef("MATH 0050")]))
    assert reg.resolved_expression("MATH 0180") == AllOf([CourseRef("MATH 0100"), CourseRef("MATH 0050")])
    assert reg.unknown_references() == {"MATH 0180": ["MATH 0050"]}


def test_from_records_keeps_metadata():
    records = [
        {"code": "VISA 1510", "title": "Sculpture", "semester_range": [4, 5, 6], "prerequisites": {"op": "COURSE", "course": "VISA 0100"}},
        {"code": "VISA 0100", "aliases": ["VISA 0101"], "level": "undergraduate"},
    ]
    reg = CatalogRegistry.from_records(records)
    assert reg.all_courses() == {"VISA 1510", "VISA 0100"}
    assert reg.entry("VISA 1510").metadata == {"title": "Sculpture", "semester_range": [4, 5, 6]}
    assert reg.entry("VISA 0100").expression == NO_PREREQUISITES
    assert reg.resolve("VISA 0101") == "VISA 0100"


def test_load_records_reads_json_array_and_json_lines(tmp_path):
    records = [{"code": "A 1"}, {"code": "B 2", "aliases": ["C 3"]}]
    array = tmp_path / "courses.json"
    array.write_text(json.dumps(records), encoding="utf-8")
    lines = tmp_path / "courses.jsonl"
    lines.write_text("\n".join(json.dumps(r) for r in records) + "\n\n", encoding="utf-8")
    assert load_records(str(array)) == records
    assert load_records(str(lines)) == records


def test_schema_accepts_good_records_and_reports_bad_ones():
    schema = load_schema(DEFAULT_SCHEMA)
    good = [{
        "code": "CSCI 0200",
        "aliases": [],
        "prerequisites": {"op": "OR", "items": [
            {"op": "COURSE", "course": "CSCI 0150"},
            {"op": "EXAM", "exam": "AP Computer Science A", "score": 5},
        ]},
        "restricted": False,
    }]
    assert schema_errors(good, schema) == []

    bad = [{"code": "CSCI 0200", "prerequisites": {"op": "XOR", "items": []}}, {"aliases": []}]
    errors = schema_errors(bad, schema)
    assert any("[0, 'prerequisites']" in e for e in errors)
    assert any("'code' is a required property" in e for e in errors)
