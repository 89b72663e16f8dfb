import json

import pytest

from lrgen import (
    AmbiguousTokenError,
    Assoc,
    Grammar,
    GrammarError,
    InlineCycleError,
    NonTerminatingRecursionError,
    UndefinedRuleError,
    UnresolvedConflictError,
    alias,
    blank,
    choice,
    field,
    optional,
    pattern,
    prec,
    repeat,
    repeat1,
    seq,
    sym,
    token,
)
from lrgen.lowering import inline_rules
from lrgen.tables import Reduce, Shift, Split


def arithmetic() -> Grammar:
    return Grammar(
        "arithmetic",
        {
            "expr": choice(
                prec.left(4, seq(sym.expr, "+", sym.expr)),
                prec.left(6, seq(sym.expr, "*", sym.expr)),
                sym.int,
            ),
            "int": pattern(r"\d+"),
        },
    )


def productions_of(grammar: Grammar, name: str):
    return [p for p in grammar.lowered().productions if p.name == name]


def productions(grammar: Grammar, name: str) -> list[tuple[str, ...]]:
    return [p.symbols for p in grammar.lowered().productions if p.name == name]


def test_grammar_aho_ullman_2():
    Grammar(
        "aho_ullman",
        {
            "S": seq(sym.X, sym.X),
            "X": choice(seq(sym.A, sym.X), sym.B),
            "A": "a",
            "B": "b",
        },
    ).build_table()


def test_fun_lalr():
    Grammar(
        "fun_lalr",
        {
            "S": seq(sym.V, sym.E),
            "E": choice(sym.F, seq(sym.E, "+", sym.F)),
            "F": choice(sym.V, "int", seq("(", sym.E, ")")),
            "V": sym.ID,
            "ID": "id",
        },
    ).build_table()


def test_combinator_operators():
    assert (sym.a | "b") == choice(sym.a, "b")
    assert ("b" | sym.a) == choice("b", sym.a)
    assert (sym.a + "," + sym.b) == seq(seq(sym.a, ","), sym.b)
    assert choice(choice(sym.a, sym.b), sym.c) == choice(sym.a, sym.b, sym.c)
    assert optional(sym.a) == choice(sym.a, blank())
    assert prec.left(sym.a) == prec.left(0, sym.a)


def test_combinator_errors():
    with pytest.raises(ValueError):
        seq()
    with pytest.raises(ValueError):
        choice()
    with pytest.raises(TypeError):
        seq(sym.a, 3)
    with pytest.raises(TypeError):
        prec(True, sym.a)


###############################################################################
# Validation
###############################################################################
def test_undefined_rule():
    with pytest.raises(UndefinedRuleError) as e:
        Grammar("bad", {"a": seq("x", sym.b)})
    assert e.value.name == "b"
    assert e.value.referenced_from == "a"


def test_non_terminating_recursion():
    with pytest.raises(NonTerminatingRecursionError) as e:
        Grammar("bad", {"program": choice(sym.a, "x"), "a": seq("y", sym.a)})
    assert e.value.rules == ("a",)


def test_repeat_of_nothing():
    with pytest.raises(GrammarError):
        Grammar("bad", {"program": seq("x", repeat(blank()))})


def test_empty_literal():
    with pytest.raises(GrammarError):
        Grammar("bad", {"program": seq("x", "")})


@pytest.mark.parametrize("name", ["seq", "ERROR", "__private", "a$b", ""])
def test_reserved_rule_names(name):
    with pytest.raises(GrammarError):
        Grammar("bad", {"program": "x", name: "y"})


def test_reserved_external_name():
    with pytest.raises(GrammarError):
        Grammar("bad", {"program": sym.ERROR}, externals=["ERROR"])


def test_external_is_also_a_rule():
    with pytest.raises(GrammarError):
        Grammar("bad", {"program": sym.thing, "thing": "x"}, externals=["thing"])


def test_unknown_precedence_level():
    with pytest.raises(GrammarError):
        Grammar("bad", {"program": prec("missing", seq("x", "y"))})


def test_transparent_start_rule():
    with pytest.raises(GrammarError):
        Grammar("bad", {"_program": seq("x", "y")})


def test_token_start_rule():
    grammar = Grammar("bad", {"program": "x"})
    with pytest.raises(GrammarError):
        grammar.build_table()


def test_extra_must_be_a_token():
    with pytest.raises(GrammarError):
        Grammar(
            "bad",
            {"program": seq("x", sym.thing), "thing": seq("y", "z")},
            extras=[sym.thing],
        )


def test_word_must_be_a_token():
    with pytest.raises(GrammarError):
        Grammar("bad", {"program": seq("x", "y")}, word=sym.program)


def test_word_must_be_defined():
    with pytest.raises(UndefinedRuleError):
        Grammar("bad", {"program": seq("x", "y")}, word="identifier")


def test_inline_and_conflict_names_must_be_defined():
    with pytest.raises(UndefinedRuleError):
        Grammar("bad", {"program": seq("x", "y")}, inline=["nope"])
    with pytest.raises(UndefinedRuleError):
        Grammar("bad", {"program": seq("x", "y")}, conflicts=[["program", "nope"]])


def test_ambiguous_tokens():
    grammar = Grammar(
        "bad",
        {"program": choice(sym.plus, sym.add), "plus": "+", "add": "+"},
    )
    with pytest.raises(AmbiguousTokenError) as e:
        grammar.compile()
    assert set(e.value.names) == {"plus", "add"}


def test_pattern_matching_nothing():
    grammar = Grammar("bad", {"program": seq(sym.a, "x"), "a": pattern("a*")})
    with pytest.raises(GrammarError):
        grammar.compile_lexer()


def test_unreachable_rule_warning():
    grammar = Grammar("warn", {"program": seq("x", "y"), "unused": "z"})
    assert grammar.warnings == ["Rule 'unused' is unreachable from the start rule 'program'"]
    assert "unused" not in [t.name for t in grammar.terminals()]


def test_unused_conflict_warning():
    grammar = Grammar(
        "warn",
        {"program": repeat(sym.expr), "expr": "x"},
        conflicts=[["expr"]],
    )
    compiled = grammar.compile()
    assert compiled.warnings == ["Conflict between expr is never used"]
    assert grammar.all_warnings() == compiled.warnings


###############################################################################
# Lowering
###############################################################################
def test_named_precedence_levels():
    grammar = Grammar(
        "levels",
        {"program": prec("product", seq("x", "y"))},
        precedences=["sum", "product"],
    )
    assert grammar.get_precedence("sum") == 1
    assert grammar.get_precedence("product") == 2
    assert grammar.get_precedence(7) == 7

    grouped = Grammar(
        "levels",
        {"program": seq("x", "y")},
        precedences=[["unary", "call"], "member"],
    )
    assert grouped.precedences == {"unary": 1, "call": 1, "member": 2}


def test_terminal_names():
    grammar = Grammar(
        "names",
        {
            "program": seq("if", sym.identifier, "expr", sym.expr),
            "identifier": pattern("[a-z]+"),
            "expr": "x",
        },
    )
    names = [t.name for t in grammar.terminals()]
    # Named terminals come first, then literals as they are found, then
    # the default whitespace extra.
    assert names == ["identifier", "expr", "if", '"expr"', "_token1"]

    terminals = {t.name: t for t in grammar.terminals()}
    assert terminals["identifier"].named
    assert not terminals["if"].named
    assert terminals["_token1"].hidden
    assert terminals["_token1"].extra


def test_token_of_a_literal_is_the_literal():
    grammar = Grammar(
        "tokens",
        {"program": seq(token("let"), "let", token(seq("a", repeat("b"))))},
    )
    names = [t.name for t in grammar.terminals()]
    assert names == ["let", "_token1", "_token2"]
    assert productions(grammar, "program") == [("let", "let", "_token1")]


def test_token_precedence():
    grammar = Grammar(
        "tokens",
        {
            "program": repeat(choice(sym.keyword, sym.name)),
            "keyword": prec(3, token(choice("if", "else"))),
            "name": token(prec(1, pattern("[a-z]+"))),
        },
    )
    terminals = {t.name: t for t in grammar.terminals()}
    assert terminals["keyword"].precedence == 3
    assert terminals["name"].precedence == 1


def test_repeat_becomes_a_transparent_helper():
    grammar = Grammar("repeats", {"program": repeat(sym.item), "item": "x"})
    lowered = grammar.lowered()

    assert productions(grammar, "program") == [(), ("__gen_program_0",)]
    assert productions(grammar, "__gen_program_0") == [
        ("__gen_program_0", "item"),
        ("item",),
    ]
    assert lowered.origins["__gen_program_0"] == "program"
    assert "__gen_program_0" in lowered.transparents
    assert grammar.non_terminals() == ["program", "__gen_program_0"]


def test_repeat1_has_no_empty_production():
    grammar = Grammar("repeats", {"program": repeat1(sym.item), "item": "x"})
    assert productions(grammar, "program") == [("__gen_program_0",)]


def test_precedence_annotations():
    grammar = arithmetic()
    plus = [p for p in grammar.lowered().productions if "+" in p.symbols][0]
    assert plus.precedence == ((4, Assoc.LEFT),) * 3
    assert plus.reduce_precedence() == (4, Assoc.LEFT)

    int_production = [p for p in grammar.lowered().productions if p.symbols == ("int",)][0]
    assert int_production.precedence == (None,)
    assert int_production.reduce_precedence() is None


def test_innermost_precedence_wins():
    grammar = Grammar(
        "nested",
        {"program": prec.left(1, seq("a", prec.right(2, "b")))},
    )
    (production,) = grammar.lowered().productions[:1]
    assert production.precedence == ((1, Assoc.LEFT), (2, Assoc.RIGHT))


def test_dynamic_precedence_lowering():
    grammar = Grammar(
        "dynamic",
        {"program": choice(prec.dynamic(2, seq("a", "b")), seq("a", "c"))},
    )
    dynamics = {p.symbols: p.dynamic for p in grammar.lowered().productions if p.name == "program"}
    assert dynamics == {("a", "b"): 2, ("a", "c"): 0}


def test_inline_rules():
    grammar = Grammar(
        "inline",
        {
            "outer": seq(sym.pair, sym.c),
            "pair": seq(sym.a, sym.b),
            "a": "a",
            "b": "b",
            "c": "c",
        },
        inline=["pair"],
    )
    assert grammar.non_terminals() == ["outer"]
    assert productions(grammar, "outer") == [("a", "b", "c")]

    once = inline_rules(grammar.rules, grammar.inline)
    assert inline_rules(once, grammar.inline) == once


def test_inline_cycle():
    grammar = Grammar(
        "cycle",
        {
            "program": sym.x,
            "x": choice(sym.y, "a"),
            "y": choice(sym.x, "b"),
        },
        inline=["x", "y"],
    )
    with pytest.raises(InlineCycleError) as e:
        grammar.build_table()
    assert e.value.cycle == ("x", "y", "x")


def test_inline_start_rule():
    grammar = Grammar("bad", {"program": seq("a", "b")}, inline=["program"])
    with pytest.raises(GrammarError):
        grammar.build_table()


def test_fields_and_aliases_in_productions():
    grammar = Grammar(
        "fields",
        {
            "assignment": seq(field("left", sym.identifier), "=", field("right", alias(sym.number, sym.value))),
            "identifier": pattern("[a-z]+"),
            "number": pattern(r"\d+"),
        },
    )
    (production,) = productions_of(grammar, "assignment")
    assert production.fields == ("left", None, "right")
    assert production.aliases == (None, None, "value")


###############################################################################
# Tables
###############################################################################
def test_unresolved_conflict():
    grammar = Grammar(
        "ambiguous",
        {
            "expr": choice(seq(sym.expr, "+", sym.expr), sym.int),
            "int": pattern(r"\d+"),
        },
    )
    with pytest.raises(UnresolvedConflictError) as e:
        grammar.build_table()

    ambiguity = e.value.ambiguities[0]
    assert ambiguity.symbol == "+"
    assert "expr" in ambiguity.rules
    assert "Give these rules a precedence or declare a conflict" in str(e.value)


def conflicting(conflicts) -> Grammar:
    return Grammar(
        "conflicts",
        {
            "program": choice(
                seq(sym.a, "x"),
                seq(sym.b, "x"),
                seq(sym.c, "y"),
                seq(sym.a, "y"),
            ),
            "a": sym.identifier,
            "b": sym.identifier,
            "c": sym.identifier,
            "identifier": pattern("[a-z]+"),
        },
        conflicts=conflicts,
    )


def test_conflict_not_covered():
    with pytest.raises(UnresolvedConflictError) as e:
        conflicting([["a", "b"]]).build_table()

    assert len(e.value.ambiguities) == 1
    ambiguity = e.value.ambiguities[0]
    assert ambiguity.symbol == "y"
    assert ambiguity.rules == ("a", "c")


def test_conflict_becomes_a_split():
    grammar = conflicting([["a", "b"], ["a", "c"]])
    table = grammar.build_table()

    splits = [action for row in table.actions for action in row.values() if isinstance(action, Split)]
    assert len(splits) == 2
    for split in splits:
        assert all(isinstance(a, Reduce) for a in split.actions)
    assert grammar.all_warnings() == []


def test_shift_reduce_split_puts_the_shift_first():
    grammar = Grammar(
        "dangling",
        {
            "statement": choice(
                seq("if", sym.statement),
                seq("if", sym.statement, "else", sym.statement),
                "x",
            ),
        },
        conflicts=[["statement"]],
    )
    table = grammar.build_table()
    splits = [action for row in table.actions for action in row.values() if isinstance(action, Split)]
    assert len(splits) > 0
    for split in splits:
        assert isinstance(split.actions[0], Shift)
        assert isinstance(split.actions[1], Reduce)


def test_precedence_resolves_dangling_else():
    grammar = Grammar(
        "dangling",
        {
            "statement": choice(
                prec.right(seq("if", sym.statement)),
                prec.right(seq("if", sym.statement, "else", sym.statement)),
                "x",
            ),
        },
    )
    table = grammar.build_table()
    for row in table.actions:
        action = row.get("else")
        if action is not None:
            assert isinstance(action, Shift)


def negation(negate) -> Grammar:
    return Grammar(
        "negation",
        {
            "expr": choice(
                prec.left(1, seq(sym.expr, "+", sym.expr)),
                negate,
                sym.int,
            ),
            "int": pattern(r"\d+"),
        },
    )


def test_precedence_needs_both_sides():
    # The shift of "+" has a precedence but the reduce of "- expr" does not,
    # so neither one wins.
    with pytest.raises(UnresolvedConflictError) as e:
        negation(seq("-", sym.expr)).build_table()

    assert {a.symbol for a in e.value.ambiguities} == {"+"}


def test_precedence_on_both_sides():
    table = negation(prec(2, seq("-", sym.expr))).build_table()
    assert not any(isinstance(a, Split) for row in table.actions for a in row.values())


def test_unannotated_reduces_are_not_filtered():
    grammar = Grammar(
        "reduces",
        {
            "program": choice(seq(sym.a, "x"), seq(sym.b, "x")),
            "a": prec(1, sym.identifier),
            "b": sym.identifier,
            "identifier": pattern("[a-z]+"),
        },
    )
    with pytest.raises(UnresolvedConflictError) as e:
        grammar.build_table()
    assert e.value.ambiguities[0].rules == ("a", "b")


def test_expected():
    table = arithmetic().build_table()
    assert table.expected(0) == {"int"}


def test_error_names():
    table = arithmetic().build_table()
    assert table.error_names["+"] == '"+"'
    assert "int" not in table.error_names


def test_table_format():
    table = arithmetic().build_table()
    text = table.format()
    assert "accept" in text
    assert text.splitlines()[0].strip().startswith("|")


###############################################################################
# Compiled output
###############################################################################
def test_node_types():
    compiled = arithmetic().compile()
    assert [(n.type, n.named) for n in compiled.node_types] == [
        ("expr", True),
        ("int", True),
        ("*", False),
        ("+", False),
    ]


def test_node_type_fields():
    grammar = Grammar(
        "fields",
        {
            "assignment": seq(field("left", sym.identifier), "=", field("right", sym._value)),
            "_value": choice(sym.identifier, sym.number),
            "identifier": pattern("[a-z]+"),
            "number": pattern(r"\d+"),
        },
    )
    node_types = {n.type: n for n in grammar.compile().node_types}
    assert node_types["assignment"].fields == {
        "left": ["identifier"],
        "right": ["identifier", "number"],
    }
    assert "_value" not in node_types


def test_node_type_aliases():
    grammar = Grammar(
        "aliases",
        {
            "program": seq(alias(seq(sym.identifier, "=", sym.identifier), sym.binding), ";"),
            "identifier": pattern("[a-z]+"),
        },
    )
    node_types = {(n.type, n.named) for n in grammar.compile().node_types}
    assert ("binding", True) in node_types
    assert not any(t.startswith("__") for t, _ in node_types)


def test_compiled_json():
    grammar = conflicting([["a", "b"], ["a", "c"]])
    compiled = grammar.compile()
    data = json.loads(compiled.dumps())

    assert data["name"] == "conflicts"
    assert len(data["states"]) == len(compiled.parse_table.actions)
    assert len(data["lexer"]) == len(compiled.lexer_table)
    assert data["extras"] == ["_token1"]
    assert data["externals"] == []

    actions = [a for state in data["states"] for a in state["actions"].values()]
    assert {a["type"] for a in actions} == {"shift", "reduce", "accept", "split"}
    for split in (a for a in actions if a["type"] == "split"):
        assert all(inner["type"] == "reduce" for inner in split["actions"])

    assert {"type": "program", "named": True} in data["node_types"]


def test_compile_is_cached():
    grammar = arithmetic()
    assert grammar.compile() is grammar.compile()
    assert grammar.build_table() is grammar.build_table()
