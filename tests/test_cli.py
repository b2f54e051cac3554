import json

import analyze_findings
import build_graph_assets
import minimize_catalog
import validate_courses
from catalog_registry import DEFAULT_SCHEMA


RECORDS = [
    {"code": "MATH 0090", "title": "Introductory Calculus I"},
    {"code": "MATH 0100", "title": "Introductory Calculus II", "aliases": ["APMA 0100"],
     "prerequisites": {"op": "OR", "items": [
         {"op": "COURSE", "course": "MATH 0090"},
         {"op": "EXAM", "exam": "AP Calculus AB", "score": 4},
     ]}},
    {"code": "MATH 0180", "title": "Intermediate Calculus",
     "prerequisites": {"op": "AND", "items": [
         {"op": "COURSE", "course": "APMA 0100"},
         {"op": "OR", "items": [
             {"op": "COURSE", "course": "MATH 0090"},
             {"op": "EXAM", "exam": "AP Calculus AB", "score": 4},
         ]},
     ]}},
    {"code": "VISA 1510", "prerequisites": {"op": "COURSE", "course": "VISA 1520"}},
    {"code": "VISA 1520", "prerequisites": {"op": "COURSE", "course": "VISA 1510"}},
]


def write_jsonl(path, records):
    path.write_text("".join(json.dumps(r) + "\n" for r in records), encoding="utf-8")
    return str(path)


def run_minimize(tmp_path, capsys, *extra):
    src = write_jsonl(tmp_path / "courses.jsonl", RECORDS)
    out = tmp_path / "out" / "courses_minimized.json"
    rc = minimize_catalog.main([src, "--output", str(out), *extra])
    return rc, out, capsys.readouterr().out


def test_minimize_catalog_writes_minimized_records(tmp_path, capsys):
    rc, out, stdout = run_minimize(tmp_path, capsys)
    assert rc == 0
    assert "[info] Loaded 5 record(s)" in stdout
    assert "[warn] cycle:" in stdout
    assert "[done] Wrote 5 courses" in stdout

    data = {c["code"]: c for c in json.loads(out.read_text(encoding="utf-8"))}
    calc = data["MATH 0180"]
    assert calc["prerequisites"]["minimized"] == {"op": "COURSE", "course": "MATH 0100"}
    assert calc["title"] == "Intermediate Calculus"
    assert data["MATH 0100"]["aliases"] == ["APMA 0100"]
    assert data["VISA 1510"]["findings"][0]["kind"] == "cycle"
    assert data["VISA 1510"]["findings"][0]["removed_edge"] == ["VISA 1520", "VISA 1510"]
    assert data["VISA 1520"]["prerequisites"]["minimized"] == {"op": "EMPTY"}


def test_minimize_catalog_strict_cycles_fails(tmp_path, capsys):
    rc, out, stdout = run_minimize(tmp_path, capsys, "--strict-cycles", "--max-workers", "3")
    assert rc == 1
    assert "[error] circular mandatory prerequisites" in stdout
    assert not out.exists()


def test_minimize_catalog_rejects_invalid_records(tmp_path, capsys):
    src = write_jsonl(tmp_path / "bad.jsonl", [{"code": "MATH 0100", "prerequisites": {"op": "NOT"}}])
    rc = minimize_catalog.main([src, "--output", str(tmp_path / "out.json")])
    assert rc == 1
    assert "error:" in capsys.readouterr().out


def test_minimize_catalog_reports_alias_conflicts(tmp_path, capsys):
    records = [{"code": "CLPS 0450", "aliases": ["NEUR 0450"]}, {"code": "PSYC 0450", "aliases": ["NEUR 0450"]}]
    src = write_jsonl(tmp_path / "courses.jsonl", records)
    rc = minimize_catalog.main([src, "--output", str(tmp_path / "out.json")])
    assert rc == 1
    assert "[error] alias NEUR 0450 maps to more than one course" in capsys.readouterr().out



def test_minimize_catalog_reports_dangling_alias_record(tmp_path, capsys):
    records = [{"code": "NEUR 0450", "alias_of": "CLPS 0450"}, {"code": "PSYC 0450"}]
    src = write_jsonl(tmp_path / "courses.jsonl", records)
    rc = minimize_catalog.main([src, "--output", str(tmp_path / "out.json")])
    assert rc == 1
    assert "[error] alias NEUR 0450 points to CLPS 0450" in capsys.readouterr().out
    assert not (tmp_path / "out.json").exists()

def test_validate_courses(tmp_path, capsys):
    good = write_jsonl(tmp_path / "good.jsonl", RECORDS)
    assert validate_courses.main([DEFAULT_SCHEMA, good]) == 0
    assert "ok (5 records)" in capsys.readouterr().out

    bad = write_jsonl(tmp_path / "bad.jsonl", [{"title": "No code"}])
    assert validate_courses.main([DEFAULT_SCHEMA, bad]) == 1
    assert validate_courses.main([DEFAULT_SCHEMA]) == 2


def test_build_graph_assets_from_minimized_output(tmp_path, capsys):
    rc, out, _ = run_minimize(tmp_path, capsys)
    assert rc == 0
    graph_out = tmp_path / "graph.json"
    assert build_graph_assets.main([str(out), "--graph-out", str(graph_out)]) == 0
    assert "nodes:" in capsys.readouterr().out

    graph = json.loads(graph_out.read_text(encoding="utf-8"))
    nodes = {n["id"]: n for n in graph["nodes"]}
    assert nodes["MATH 0180"]["label"] == "Intermediate Calculus"
    assert nodes["VISA 1510"]["flagged"] is True
    assert nodes["AP Calculus AB >= 4"]["kind"] == "exam"
    edges = {(e["source"], e["target"]): e for e in graph["edges"]}
    assert edges[("MATH 0100", "MATH 0180")]["kind"] == "all"
    any_edges = [e for e in graph["edges"] if e["target"] == "MATH 0100"]
    assert {e["kind"] for e in any_edges} == {"any"}
    assert len({e["group"] for e in any_edges}) == 1


def test_build_graph_keeps_nested_structure():
    courses = [{"code": "X 1", "prerequisites": {"minimized": {"op": "OR", "items": [
        {"op": "COURSE", "course": "A 1"},
        {"op": "AND", "items": [{"op": "COURSE", "course": "B 1"}, {"op": "COURSE", "course": "C 1"}]},
    ]}}}]
    nodes, edges = build_graph_assets.build_graph(courses)
    ids = {n["id"] for n in nodes}
    assert "X 1#2" in ids
    assert {"source": "B 1", "target": "X 1#2", "kind": "all", "group": "X 1#2"} in edges
    assert {"source": "X 1#2", "target": "X 1", "kind": "any", "group": "X 1#1"} in edges


def test_analyze_findings(tmp_path, capsys):
    rc, out, _ = run_minimize(tmp_path, capsys)
    assert rc == 0
    outdir = tmp_path / "analysis"
    assert analyze_findings.main([str(out), "--outdir", str(outdir)]) == 0
    stdout = capsys.readouterr().out
    assert "flagged: 2" in stdout

    minimized = json.loads((outdir / "minimized.json").read_text(encoding="utf-8"))
    assert "MATH 0180" in {m["code"] for m in minimized}
    none = json.loads((outdir / "none.json").read_text(encoding="utf-8"))
    assert {n["code"] for n in none} == {"MATH 0090"}
