"""
Unit tests for goboundcheck parser and analyzers.
"""
import json
import re
import sys
from collections import defaultdict
from pathlib import Path

# Add backend to path when running from project root
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "backend"))

from parser.package_loader import (
    Package, SourceError, expand_patterns, load_package, parse_go_source, pattern_base,
)
from parser.symbol_extractor import extract_symbols_from_source, node_text
from parser.tree_walker import walk_accesses
from analyzer.type_checker import DeclarationTypeOracle, Diagnostic, PackageIndex, TypeClass
from analyzer.guards import condition_has_len_cap_call, implements_sort_interface
from analyzer.bounds_checker import UNGUARDED_ACCESS_MESSAGE, check_package, check_slice_bounds
import goboundcheck

TESTDATA = Path(__file__).resolve().parent / "testdata"

WANT_RE = re.compile(r"//\s*want\s+(.*)$")
QUOTED_RE = re.compile(r'"((?:[^"\\]|\\.)*)"')


def _check(code: str) -> list[Diagnostic]:
    source_file = parse_go_source(code.encode("utf-8"), "test.go")
    return check_package(Package(name="p", directory=".", files=[source_file]))


def _in_func(body: str, params: str = "") -> str:
    return f"package p\n\nfunc f({params}) int64 {{\n{body}\n\treturn 0\n}}\n"


def _expectations(package: Package) -> dict[tuple[str, int], list[str]]:
    expected: dict[tuple[str, int], list[str]] = {}
    for f in package.files:
        for lineno, line in enumerate(f.source.decode("utf-8").splitlines(), start=1):
            m = WANT_RE.search(line)
            if m:
                expected[(f.path, lineno)] = QUOTED_RE.findall(m.group(1))
    return expected


def run_testdata(pkg: str) -> None:
    """Check the diagnostics for testdata/src/<pkg> against its ``// want`` comments."""
    package = load_package(TESTDATA / "src" / pkg)
    got: dict[tuple[str, int], list[str]] = defaultdict(list)
    for d in check_package(package):
        got[(d.file, d.line)].append(d.message)
    expected = _expectations(package)

    unexpected = sorted(set(got) - set(expected))
    missing = sorted(set(expected) - set(got))
    assert not unexpected, f"Unexpected diagnostics at {unexpected}"
    assert not missing, f"Missing diagnostics at {missing}"
    for key, patterns in expected.items():
        messages = got[key]
        assert len(messages) == len(patterns), f"{key}: expected {len(patterns)} diagnostic(s), got {messages}"
        for pattern, message in zip(patterns, messages):
            assert re.search(pattern, message), f"{key}: {message!r} does not match {pattern!r}"


def test_testdata_slices():
    run_testdata("slices")


def test_testdata_withtests():
    run_testdata("withtests")


def test_unchecked_index():
    diag = _check(_in_func("\tx := make([]int64, 4, 16)\n\tb := x[30]\n\t_ = b"))
    assert len(diag) == 1
    assert diag[0].message == UNGUARDED_ACCESS_MESSAGE
    assert diag[0].line == 5
    assert diag[0].column == 7
    assert diag[0].file == "test.go"
    assert diag[0].code == "GOBOUNDCHECK"


def test_len_guard_before_index():
    diag = _check(_in_func("\tx := make([]int64, 4, 16)\n\tvar b int64\n\tif 30 < len(x) {\n\t\tb = x[30]\n\t}\n\t_ = b"))
    assert diag == []


def test_cap_guard_on_left():
    diag = _check(_in_func("\tx := make([]int64, 4, 16)\n\tvar b int64\n\tif cap(x) > 30 {\n\t\tb = x[30]\n\t}\n\t_ = b"))
    assert diag == []


def test_guard_buried_in_disjunction():
    diag = _check(_in_func("\tx := make([]int64, 4, 16)\n\tvar b int64\n\tif 5 == 4 || 2 == 3 || cap(x) > 30 {\n\t\tb = x[30]\n\t}\n\t_ = b"))
    assert diag == []


def test_condition_without_len_call():
    diag = _check(_in_func("\tx := make([]int64, 4, 16)\n\tif true {\n\t\treturn x[1000]\n\t}"))
    assert len(diag) == 1
    assert diag[0].line == 6


def test_condition_with_other_call():
    code = """package p

func check() int64 { return 0 }

func f() int64 {
	x := make([]int64, 4, 16)
	if check() == 0 {
		return x[1000]
	}
	return 99
}
"""
    diag = _check(code)
    assert len(diag) == 1
    assert diag[0].line == 8


def test_map_access_never_reported():
    code = _in_func('\tm := map[string]int64{}\n\tn := make(map[int]int64)\n\treturn m["a"] + n[1]')
    assert _check(code) == []


def test_two_accesses_same_container_reported_twice():
    diag = _check(_in_func("\treturn x[0] + x[0]", params="x []int64"))
    assert len(diag) == 2
    assert diag[0].column < diag[1].column


def test_slice_expr_has_no_type_gate():
    # Slicing a string is still reported; indexing it is not.
    diag = _check(_in_func("\t_ = s[0]\n\t_ = s[1:]", params="s string"))
    assert len(diag) == 1
    assert diag[0].line == 5


def test_unknown_container_type_skipped():
    code = """package p

import "strings"

func f(line string) string {
	parts := strings.Split(line, ",")
	return parts[0]
}
"""
    assert _check(code) == []


def test_condition_evaluator_operators():
    code = """package p

func f(x, y []int, i int) {
	if len(x) <= i {
	}
	if (i < len(x)) == true {
	}
	if i > 0 && (y != nil || cap(x) > i) {
	}
	if i < len(y) {
	}
	if !(len(x) > i) {
	}
}
"""
    root = parse_go_source(code.encode(), "c.go").root
    conditions = []

    def collect(node):
        if node.type == "if_statement":
            conditions.append(node.child_by_field_name("condition"))
        for c in node.named_children:
            collect(c)

    collect(root)
    results = [condition_has_len_cap_call(c, "x") for c in conditions]
    assert results == [True, True, True, False, False]


def test_walker_document_order_and_ancestors():
    code = _in_func("\ta := x[0]\n\tb := x[1:2]\n\tc := x[y[0]]\n\t_, _, _ = a, b, c", params="x, y []int64")
    root = parse_go_source(code.encode(), "w.go").root
    visited = [(node_text(n), n.type, [a.type for a in ancestors]) for n, ancestors in walk_accesses(root)]
    assert [v[0] for v in visited] == ["x[0]", "x[1:2]", "x[y[0]]", "y[0]"]
    assert visited[1][1] == "slice_expression"
    assert visited[0][2][0] == "source_file"
    assert "function_declaration" in visited[0][2]
    # The enclosing access is part of the nested access's ancestor chain.
    assert visited[3][2][-1] == "index_expression"


def test_range_key_guard():
    code = _in_func("\tt := int64(0)\n\tfor i, v := range x {\n\t\tt += x[i] + v\n\t}\n\treturn t", params="x []int64")
    assert _check(code) == []


def test_range_other_index_reported():
    code = _in_func("\tt := int64(0)\n\tfor i := range x {\n\t\tt += x[i+1]\n\t}\n\treturn t", params="x []int64")
    diag = _check(code)
    assert len(diag) == 1
    assert diag[0].line == 6


def test_range_over_other_container_reported():
    code = _in_func("\tt := int64(0)\n\tfor i := range y {\n\t\tt += x[i]\n\t}\n\treturn t", params="x, y []int64")
    assert len(_check(code)) == 1


def test_sort_interface_methods_guarded():
    code = """package p

type byAge []int

func (a byAge) Len() int           { return len(a) }
func (a byAge) Less(i, j int) bool { return a[i] < a[j] }
func (a *byAge) Swap(i, j int)     { (*a)[i], (*a)[j] = (*a)[j], (*a)[i] }
func (a byAge) First() int         { return a[0] }
"""
    diag = _check(code)
    assert len(diag) == 1
    assert diag[0].line == 8


def test_sort_interface_requires_full_method_set():
    code = """package p

type half []int

func (h half) Len() int           { return len(h) }
func (h half) Less(i, j int) bool { return h[i] < h[j] }
"""
    assert len(_check(code)) == 2


def test_capability_oracle_signatures():
    code = b"""package p

type s []int

func (x s) Len() int               { return len(x) }
func (x s) Less(a int, b int) bool { return false }
func (x s) Swap(a, b int)          {}

type t []int

func (x t) Len() (n int)         { return 0 }
func (x t) Less(a, b int) bool   { return false }
func (x t) Swap(a, b int) bool   { return false }
"""
    index = PackageIndex(extract_symbols_from_source(code, "s.go"))
    assert implements_sort_interface("s", index)
    assert not implements_sort_interface("t", index)
    assert index.has_method("t", "Len", [], ["int"])
    assert not index.has_method("u", "Len", [], ["int"])


def test_type_oracle_classification():
    code = """package p

type names []string
type cells [3]int
type table map[string]int
type alias = names

var global = make(names, 2)

func build() []int { return nil }

func f(p cells, q table, r alias, rest ...int) {
	a := build()
	b := append(a, 1)
	c := [...]int{1, 2}
	d := a[1:]
	var e [2]byte
	s := "text"
	_ = global[0]
	_ = p[0]
	_ = q["k"]
	_ = r[0]
	_ = rest[0]
	_ = a[0]
	_ = b[0]
	_ = c[0]
	_ = d[0]
	_ = e[0]
	_ = s[0]
	_ = unknown[0]
}
"""
    source_file = parse_go_source(code.encode(), "t.go")
    oracle = DeclarationTypeOracle(PackageIndex.from_files([source_file]))
    classes = {}
    for access, _ in walk_accesses(source_file.root):
        if access.type != "index_expression":
            continue
        operand = access.child_by_field_name("operand")
        classes[node_text(operand)] = oracle.classify(operand)
    assert classes == {
        "global": TypeClass.SLICE,
        "p": TypeClass.ARRAY,
        "q": TypeClass.MAP,
        "r": TypeClass.SLICE,
        "rest": TypeClass.SLICE,
        "a": TypeClass.SLICE,
        "b": TypeClass.SLICE,
        "c": TypeClass.ARRAY,
        "d": TypeClass.SLICE,
        "e": TypeClass.ARRAY,
        "s": TypeClass.OTHER,
        "unknown": None,
    }


def test_type_oracle_shadowing():
    code = """package p

func f(x []int) {
	_ = x[0]
	{
		x := map[int]int{}
		_ = x[0]
	}
	_ = x[1]
}
"""
    diag = _check(code)
    assert [d.line for d in diag] == [4, 9]


def test_type_oracle_uses_other_files():
    a = parse_go_source(b"package p\n\ntype buf []byte\n\nvar shared buf\n", "a.go")
    b = parse_go_source(b"package p\n\nfunc f() byte {\n\treturn shared[0]\n}\n", "b.go")
    diag = check_package(Package(name="p", directory=".", files=[a, b]))
    assert len(diag) == 1
    assert diag[0].file == "b.go"
    # Without a.go the container type is unknown and the access is skipped.
    index = PackageIndex.from_files([b])
    assert check_slice_bounds(b, DeclarationTypeOracle(index), index) == []


def test_type_oracle_derived_types():
    code = """package p

type rows [][]string

func pair() ([]int, map[string]int) { return nil, nil }

func f(r rows, m map[int][4]byte) {
	for i, row := range r {
		_ = row[i]
	}
	for k, cell := range m {
		_ = cell[k]
	}
	first := r[0]
	xs, counts := pair()
	cells, ok := m[1]
	_ = first[0]
	_ = xs[0]
	_ = counts["a"]
	_ = cells[0]
	_ = ok
}
"""
    source_file = parse_go_source(code.encode(), "d.go")
    oracle = DeclarationTypeOracle(PackageIndex.from_files([source_file]))
    classes = {}
    indexes = {}
    for access, _ in walk_accesses(source_file.root):
        operand = access.child_by_field_name("operand")
        index = access.child_by_field_name("index")
        classes[node_text(operand)] = oracle.classify(operand)
        indexes[node_text(index)] = oracle.classify(index)
    assert classes == {
        "row": TypeClass.SLICE,
        "cell": TypeClass.ARRAY,
        "r": TypeClass.SLICE,
        "m": TypeClass.MAP,
        "first": TypeClass.SLICE,
        "xs": TypeClass.SLICE,
        "counts": TypeClass.MAP,
        "cells": TypeClass.ARRAY,
    }
    # Range keys: int for slices, the key type for maps.
    assert indexes["i"] == TypeClass.OTHER
    assert indexes["k"] == TypeClass.OTHER


def test_range_value_of_nested_slice_reported():
    code = _in_func("\tfor _, row := range rows {\n\t\treturn row[0]\n\t}", params="rows [][]int64")
    diag = _check(code)
    assert len(diag) == 1
    assert diag[0].line == 5


def test_symbol_extraction():
    code = b"""package p

type pair [2]int

var count, total int = 1, 2

const limit = 10

func add(a, b int) int { return a + b }

func (p *pair) Swap(i, j int) {}
"""
    symbols = extract_symbols_from_source(code, "s.go")
    by_name = {s.name: s for s in symbols}
    assert by_name["pair"].kind == "type"
    assert by_name["pair"].type == "[2]int"
    assert by_name["count"].kind == "variable"
    assert by_name["total"].type == "int"
    assert by_name["limit"].kind == "constant"
    assert by_name["add"].kind == "function"
    assert [p["name"] for p in by_name["add"].params] == ["a", "b"]
    assert by_name["add"].results == ["int"]
    swap = by_name["Swap"]
    assert swap.kind == "method"
    assert swap.scope == "pair"
    assert [p["type"] for p in swap.params] == ["int", "int"]
    assert swap.results == []
    assert swap.to_dict()["scope"] == "pair"


def test_syntax_error_raises():
    try:
        parse_go_source(b"package p\n\nfunc f( {\n", "bad.go")
    except SourceError as e:
        assert e.path == "bad.go"
        assert "syntax error" in str(e)
    else:
        raise AssertionError("expected SourceError")


def test_load_package_excludes_tests():
    package = load_package(TESTDATA / "src" / "withtests", include_tests=False)
    assert package.name == "withtests"
    assert [Path(f.path).name for f in package.files] == ["pkg.go"]
    assert check_package(package) == []


def test_load_package_missing_path():
    try:
        load_package(TESTDATA / "src" / "does-not-exist")
    except SourceError as e:
        assert "no such file" in str(e)
    else:
        raise AssertionError("expected SourceError")


def test_expand_patterns():
    paths = expand_patterns([str(ROOT / "demo_repo") + "/..."])
    assert paths == [str(ROOT / "demo_repo")]
    # testdata directories are skipped when walking
    assert expand_patterns([str(ROOT / "tests") + "/..."]) == []
    assert expand_patterns(["some/dir"]) == ["some/dir"]


def test_deeply_nested_expression():
    terms = " + 1" * 3000
    diag = _check(_in_func(f"\treturn x[0]{terms}", params="x []int64"))
    assert len(diag) == 1
    assert (diag[0].line, diag[0].column) == (4, 9)

    cond = " || ".join(["i == 0"] * 3000)
    code = _in_func(f"\tif {cond} || len(x) > i {{\n\t\treturn x[i]\n\t}}", params="x []int64, i int")
    assert _check(code) == []

    try:
        parse_go_source(_in_func(f"\treturn x[0]{terms} +").encode(), "deep.go")
    except SourceError as e:
        assert "syntax error" in str(e)
    else:
        raise AssertionError("expected SourceError")


def test_pattern_base():
    assert pattern_base("/...") == "/"
    assert pattern_base("...") == "."
    assert pattern_base("./...") == "."
    assert pattern_base("src/pkg/...") == "src/pkg"
    assert pattern_base("src/pkg") is None


def test_demo_repo():
    package = load_package(ROOT / "demo_repo")
    diag = check_package(package)
    assert package.name == "main"
    assert [(Path(d.file).name, d.line) for d in diag] == [("main.go", 17), ("queue.go", 11)]


def test_cli_reports_and_exit_code(capsys):
    code = goboundcheck.main([str(TESTDATA / "src" / "withtests")])
    err = capsys.readouterr().err
    assert code == goboundcheck.EXIT_DIAGNOSTICS
    assert "pkg_test.go:4:9: " + UNGUARDED_ACCESS_MESSAGE in err


def test_cli_without_tests_is_clean(capsys):
    code = goboundcheck.main(["-test=false", str(TESTDATA / "src" / "withtests")])
    assert code == goboundcheck.EXIT_OK
    assert UNGUARDED_ACCESS_MESSAGE not in capsys.readouterr().err


def test_cli_json_output(capsys):
    directory = str(TESTDATA / "src" / "withtests")
    code = goboundcheck.main(["-json", directory])
    out = json.loads(capsys.readouterr().out)
    assert code == goboundcheck.EXIT_OK
    entries = out[directory]["goboundcheck"]
    assert len(entries) == 1
    assert entries[0]["posn"].endswith("pkg_test.go:4:9")
    assert entries[0]["message"] == UNGUARDED_ACCESS_MESSAGE


def test_cli_load_failure(capsys, tmp_path):
    (tmp_path / "broken.go").write_text("package broken\n\nfunc f( {\n")
    code = goboundcheck.main([str(tmp_path)])
    assert code == goboundcheck.EXIT_FAILURE
    assert "syntax error" in capsys.readouterr().err


def test_server_analyze_buffer():
    from fastapi.testclient import TestClient
    from server import app

    client = TestClient(app)
    other = {"content": "package p\n\ntype buf []byte\n", "file_path": "a.go"}
    resp = client.post("/analyze", json={
        "content": "package p\n\nfunc f(b buf) byte {\n\treturn b[0]\n}\n",
        "file_path": "b.go",
        "open_buffers": [other],
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["file"] == "b.go"
    assert len(data["diagnostics"]) == 1
    assert data["diagnostics"][0]["line"] == 4
    assert data["diagnostics"][0]["code"] == "GOBOUNDCHECK"


def test_server_errors_and_rules():
    from fastapi.testclient import TestClient
    from server import app

    client = TestClient(app)
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/rules").json()["rules"][0]["name"] == "goboundcheck"
    resp = client.post("/analyze", json={"content": "package p\nfunc (", "file_path": "x.go"})
    assert resp.status_code == 400
    resp = client.post("/analyze/package", json={"repo_path": str(TESTDATA / "nope")})
    assert resp.status_code == 400
    resp = client.post("/analyze/package", json={"repo_path": str(ROOT / "demo_repo")})
    assert resp.status_code == 200
    assert len(resp.json()["diagnostics"]) == 2


if __name__ == "__main__":
    test_testdata_slices()
    test_testdata_withtests()
    test_unchecked_index()
    test_len_guard_before_index()
    test_cap_guard_on_left()
    test_guard_buried_in_disjunction()
    test_condition_without_len_call()
    test_condition_with_other_call()
    test_map_access_never_reported()
    test_two_accesses_same_container_reported_twice()
    test_slice_expr_has_no_type_gate()
    test_unknown_container_type_skipped()
    test_condition_evaluator_operators()
    test_walker_document_order_and_ancestors()
    test_range_key_guard()
    test_range_other_index_reported()
    test_range_over_other_container_reported()
    test_sort_interface_methods_guarded()
    test_sort_interface_requires_full_method_set()
    test_capability_oracle_signatures()
    test_type_oracle_classification()
    test_type_oracle_shadowing()
    test_type_oracle_uses_other_files()
    test_type_oracle_derived_types()
    test_range_value_of_nested_slice_reported()
    test_symbol_extraction()
    test_syntax_error_raises()
    test_load_package_excludes_tests()
    test_load_package_missing_path()
    test_expand_patterns()
    test_deeply_nested_expression()
    test_pattern_base()
    test_demo_repo()
    print("All tests passed.")
