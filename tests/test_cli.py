import json
import pathlib
import textwrap

import pytest

from lrgen.__main__ import main

GRAMMAR_SOURCE = textwrap.dedent(
    """
    from lrgen import Grammar, choice, pattern, prec, seq, sym

    SUMS = Grammar(
        "sums",
        {
            "expr": choice(
                prec.left(1, seq(sym.expr, "+", sym.expr)),
                sym.number,
            ),
            "number": pattern(r"\\d+"),
        },
    )


    def broken():
        return Grammar(
            "broken",
            {
                "expr": choice(seq(sym.expr, "+", sym.expr), sym.number),
                "number": pattern(r"\\d+"),
            },
        )
    """
)


@pytest.fixture
def workspace(tmp_path: pathlib.Path) -> pathlib.Path:
    (tmp_path / "sums.py").write_text(GRAMMAR_SOURCE, encoding="utf-8")
    (tmp_path / "good.txt").write_text("1 + 2 + 3", encoding="utf-8")
    (tmp_path / "bad.txt").write_text("1 + + 3", encoding="utf-8")
    return tmp_path


def test_compile(workspace, capsys):
    assert main(["compile", str(workspace / "sums.py:SUMS")]) == 0
    compiled = json.loads(capsys.readouterr().out)
    assert compiled["name"] == "sums"
    assert len(compiled["states"]) > 0


def test_compile_finds_the_grammar(workspace, capsys):
    # With no attribute named, the one Grammar in the module is used.
    assert main(["compile", str(workspace / "sums.py")]) == 0
    assert json.loads(capsys.readouterr().out)["name"] == "sums"


def test_compile_to_files(workspace, capsys):
    output = workspace / "sums.json"
    dot = workspace / "sums.dot"
    assert main(["compile", str(workspace / "sums.py:SUMS"), "-o", str(output), "--lexer-dot", str(dot)]) == 0
    assert json.loads(output.read_text(encoding="utf-8"))["name"] == "sums"
    assert dot.read_text(encoding="utf-8").startswith("digraph G {")


def test_compile_table(workspace, capsys):
    assert main(["compile", str(workspace / "sums.py:SUMS"), "--table"]) == 0
    assert "accept" in capsys.readouterr().out


def test_compile_error(workspace, capsys):
    assert main(["compile", str(workspace / "sums.py:broken")]) == 1
    err = capsys.readouterr().err
    assert err.startswith("error: ")
    assert "ambiguities" in err


def test_missing_attribute(workspace, capsys):
    assert main(["compile", str(workspace / "sums.py:nope")]) == 1
    assert "Cannot find nope" in capsys.readouterr().err


def test_compile_json_grammar(workspace, capsys):
    data = {
        "name": "words",
        "rules": {
            "program": {"type": "REPEAT", "content": {"type": "SYMBOL", "name": "word"}},
            "word": {"type": "PATTERN", "value": "[a-z]+"},
        },
    }
    path = workspace / "grammar.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    assert main(["compile", str(path)]) == 0
    assert json.loads(capsys.readouterr().out)["name"] == "words"


def test_tokenize(workspace, capsys):
    assert main(["tokenize", str(workspace / "sums.py:SUMS"), str(workspace / "good.txt")]) == 0
    lines = capsys.readouterr().out.splitlines()
    # Three numbers, two plusses and the spaces between them all.
    assert len(lines) == 9


def test_parse(workspace, capsys):
    assert main(["parse", str(workspace / "sums.py:SUMS"), str(workspace / "good.txt"), "--sexp"]) == 0
    out = capsys.readouterr().out.strip()
    assert out == "(expr (expr (expr 1) + (expr 2)) + (expr 3))"


def test_parse_errors(workspace, capsys):
    source = workspace / "bad.txt"
    assert main(["parse", str(workspace / "sums.py:SUMS"), str(source)]) == 1
    captured = capsys.readouterr()
    assert captured.out.startswith("expr [0, 7)")
    assert captured.err.startswith(f"{source}:1:4: Syntax Error: Unexpected +")
