"""Read and write tree-sitter's `grammar.json`.

`tree-sitter generate` turns a `grammar.js` into a JSON description of the
grammar (in `src/grammar.json`) before it does anything else. That JSON is
exactly our rule graph, written out, so loading it lets us compile real
tree-sitter grammars without a JavaScript runtime.

https://tree-sitter.github.io/tree-sitter/creating-parsers
"""

import json
import logging
import pathlib
import typing

from .errors import GrammarError
from .grammar import Grammar
from .rules import (
    Alias,
    Assoc,
    Blank,
    Choice,
    External,
    Field,
    Literal,
    Pattern,
    Prec,
    Repeat,
    Repeat1,
    Rule,
    Seq,
    Symbol,
    Token,
)

logger = logging.getLogger("lrgen.grammar")

_PREC_TYPES = {
    "PREC": Assoc.NONE,
    "PREC_LEFT": Assoc.LEFT,
    "PREC_RIGHT": Assoc.RIGHT,
    "PREC_DYNAMIC": Assoc.DYNAMIC,
}
_PREC_NAMES = {assoc: name for name, assoc in _PREC_TYPES.items()}


def rule_from_json(node: dict) -> Rule:
    """Convert one node of a grammar.json rule into a Rule."""
    kind = node.get("type")
    match kind:
        case "BLANK":
            return Blank()
        case "STRING":
            return Literal(node["value"])
        case "PATTERN":
            return Pattern(node["value"], node.get("flags", ""))
        case "SYMBOL":
            return Symbol(node["name"])
        case "SEQ":
            return Seq(tuple(rule_from_json(m) for m in node["members"]))
        case "CHOICE":
            return Choice(tuple(rule_from_json(m) for m in node["members"]))
        case "REPEAT":
            return Repeat(rule_from_json(node["content"]))
        case "REPEAT1":
            return Repeat1(rule_from_json(node["content"]))
        case "PREC" | "PREC_LEFT" | "PREC_RIGHT" | "PREC_DYNAMIC":
            return Prec(node["value"], _PREC_TYPES[kind], rule_from_json(node["content"]))
        case "FIELD":
            return Field(node["name"], rule_from_json(node["content"]))
        case "ALIAS":
            return Alias(node["value"], bool(node["named"]), rule_from_json(node["content"]))
        case "TOKEN" | "IMMEDIATE_TOKEN":
            # We don't track whether extras may come before a token, so an
            # immediate token is just a token.
            return Token(rule_from_json(node["content"]))
        case _:
            raise GrammarError(f"Unknown rule type {kind!r} in grammar.json")


def rule_to_json(rule: Rule, levels: typing.Mapping[str, int] | None = None) -> dict:
    """Convert a Rule into a grammar.json node. If `levels` is given, named
    precedence levels are written out as their numbers.
    """

    def convert(node: Rule) -> dict:
        return rule_to_json(node, levels)

    match rule:
        case Blank():
            return {"type": "BLANK"}
        case Literal(value=value):
            return {"type": "STRING", "value": value}
        case Pattern(value=value, flags=flags):
            if not isinstance(value, str):
                raise GrammarError("A pattern built out of `Re` objects has no JSON form")
            result = {"type": "PATTERN", "value": value}
            if flags:
                result["flags"] = flags
            return result
        case Symbol(name=name) | External(name=name):
            return {"type": "SYMBOL", "name": name}
        case Seq(members=members):
            return {"type": "SEQ", "members": [convert(m) for m in members]}
        case Choice(members=members):
            return {"type": "CHOICE", "members": [convert(m) for m in members]}
        case Repeat(content=content):
            return {"type": "REPEAT", "content": convert(content)}
        case Repeat1(content=content):
            return {"type": "REPEAT1", "content": convert(content)}
        case Prec(value=value, assoc=assoc, content=content):
            if levels is not None and isinstance(value, str):
                value = levels[value]
            return {"type": _PREC_NAMES[assoc], "value": value, "content": convert(content)}
        case Field(name=name, content=content):
            return {"type": "FIELD", "name": name, "content": convert(content)}
        case Alias(value=value, named=named, content=content):
            return {"type": "ALIAS", "value": value, "named": named, "content": convert(content)}
        case Token(content=content):
            return {"type": "TOKEN", "content": convert(content)}
        case _:
            raise GrammarError(f"Rule {rule!r} has no JSON form")


def _precedences_from_json(precedences: list[list[dict]]) -> dict[str, int]:
    """Tree-sitter lists precedence levels from highest to lowest, in one or
    more independent orderings. We number each ordering from the bottom up.
    """
    table: dict[str, int] = {}
    for ordering in precedences:
        for index, entry in enumerate(ordering):
            if entry.get("type") != "STRING":
                logger.warning("Ignoring precedence entry %r: only named levels are supported", entry)
                continue
            table.setdefault(entry["value"], len(ordering) - index)
    return table


def _external_name(node: dict) -> str:
    match node.get("type"):
        case "SYMBOL":
            return node["name"]
        case "STRING":
            return node["value"]
        case _:
            raise GrammarError(f"Unsupported external token {node!r}")


def load_grammar_json(source: dict | str | pathlib.Path) -> Grammar:
    """Make a Grammar out of a grammar.json document: the parsed JSON, the
    JSON text, or the path of the file.
    """
    if isinstance(source, pathlib.Path):
        source = json.loads(source.read_text(encoding="utf-8"))
    elif isinstance(source, str):
        source = json.loads(source)
    assert isinstance(source, dict)

    if len(source.get("supertypes", [])) > 0:
        logger.info("%s: supertypes are not supported and are ignored", source.get("name"))

    return Grammar(
        source.get("name", "unknown"),
        {name: rule_from_json(body) for name, body in source["rules"].items()},
        extras=[rule_from_json(e) for e in source["extras"]] if "extras" in source else None,
        conflicts=source.get("conflicts", []),
        inline=source.get("inline", []),
        externals=[_external_name(e) for e in source.get("externals", [])],
        word=source.get("word"),
        precedences=_precedences_from_json(source.get("precedences", [])),
    )


def _precedences_to_json(table: dict[str, int]) -> list[list[dict]] | None:
    """Write the level table as a single tree-sitter ordering, if loading that
    ordering back gives the same numbers. Otherwise there's no ordering that
    says what the table says, and we return None.
    """
    if len(table) == 0:
        return []
    levels = sorted(table.items(), key=lambda item: -item[1])
    orderings = [[{"type": "STRING", "value": name} for name, _ in levels]]
    if _precedences_from_json(orderings) != table:
        return None
    return orderings


def dump_grammar_json(grammar: Grammar) -> dict[str, typing.Any]:
    """The inverse of `load_grammar_json`, as a JSON-able dict.

    Named precedence levels stay named when tree-sitter's numbering of them
    matches ours; otherwise every rule gets the numbers instead.
    """
    orderings = _precedences_to_json(grammar.precedences)
    levels = grammar.precedences if orderings is None else None
    result: dict[str, typing.Any] = {
        "name": grammar.name,
        "rules": {name: rule_to_json(body, levels) for name, body in grammar.rules.items()},
        "extras": [rule_to_json(e, levels) for e in grammar.extras],
        "conflicts": [sorted(c) for c in grammar.conflicts],
        "precedences": orderings or [],
        "externals": [{"type": "SYMBOL", "name": e} for e in grammar.externals],
        "inline": sorted(grammar.inline),
        "supertypes": [],
    }
    if grammar.word is not None:
        result["word"] = grammar.word
    return result
