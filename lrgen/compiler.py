"""Compile a grammar into everything a runtime needs.

The result is a `CompiledGrammar`: the parse table, the lexer table, and the
node types (the schema of the trees the parser will produce). It can be
written out as JSON for a runtime that lives somewhere else.
"""

import dataclasses
import json
import logging
import typing

from .lexer import LexerTable
from .lowering import LoweredGrammar
from .tables import Accept, ParseAction, ParseTable, Reduce, Shift, Split

if typing.TYPE_CHECKING:
    from .grammar import Grammar

logger = logging.getLogger("lrgen.grammar")


@dataclasses.dataclass
class NodeType:
    """A kind of node that can show up in a tree. `fields` maps each field
    name to the types of the nodes that can be in it.
    """

    type: str
    named: bool
    fields: dict[str, list[str]] = dataclasses.field(default_factory=dict)

    def to_json(self) -> dict:
        result: dict[str, typing.Any] = {"type": self.type, "named": self.named}
        if len(self.fields) > 0:
            result["fields"] = {name: types for name, types in self.fields.items()}
        return result


@dataclasses.dataclass
class CompiledGrammar:
    name: str
    parse_table: ParseTable
    lexer_table: LexerTable
    node_types: list[NodeType]
    warnings: list[str]

    def to_json(self) -> dict:
        """Everything in a form that `json.dump` can write."""
        return {
            "name": self.name,
            "states": [
                {
                    "actions": {
                        terminal: action_to_json(action) for terminal, action in actions.items()
                    },
                    "gotos": dict(gotos),
                }
                for actions, gotos in zip(self.parse_table.actions, self.parse_table.gotos)
            ],
            "extras": sorted(self.parse_table.extras),
            "externals": list(self.parse_table.externals),
            "error_names": dict(self.parse_table.error_names),
            "lexer": [
                {
                    "accept": accept.name if accept is not None else None,
                    "edges": [[span.lower, span.upper, target] for span, target in edges],
                }
                for accept, edges in self.lexer_table
            ],
            "node_types": [node_type.to_json() for node_type in self.node_types],
            "warnings": list(self.warnings),
        }

    def dumps(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_json(), indent=indent)


def action_to_json(action: ParseAction) -> dict:
    match action:
        case Shift(state=state):
            return {"type": "shift", "state": state}
        case Reduce(name=name, count=count, transparent=transparent, dynamic=dynamic):
            result: dict[str, typing.Any] = {
                "type": "reduce",
                "symbol": name,
                "count": count,
                "transparent": transparent,
            }
            if dynamic != 0:
                result["dynamic"] = dynamic
            if len(action.fields) > 0:
                result["fields"] = list(action.fields)
            if len(action.aliases) > 0:
                result["aliases"] = list(action.aliases)
            return result
        case Accept():
            return {"type": "accept"}
        case Split(actions=actions):
            return {"type": "split", "actions": [action_to_json(a) for a in actions]}
        case _:
            raise ValueError(f"Unknown action {action}")


class _NodeTypeBuilder:
    def __init__(self, lowered: LoweredGrammar):
        self.lowered = lowered
        self.productions: dict[str, list] = {}
        for production in lowered.productions:
            self.productions.setdefault(production.name, []).append(production)
        self.terminals = {t.name: t for t in lowered.terminals}

    def visible(self, symbol: str, seen: set[str]) -> list[tuple[str, bool]]:
        """The node types that `symbol` shows up as in a tree, looking
        through transparent rules.
        """
        if symbol in self.lowered.transparents:
            if symbol in seen:
                return []
            seen.add(symbol)
            result = []
            for production in self.productions.get(symbol, []):
                for index, child in enumerate(production.symbols):
                    alias = production.aliases[index] if len(production.aliases) > 0 else None
                    result.extend(self.child_types(child, alias, seen))
            return result

        terminal = self.terminals.get(symbol)
        if terminal is not None:
            if terminal.hidden:
                return []
            return [(symbol, terminal.named)]
        return [(symbol, True)]

    def child_types(self, symbol: str, alias: str | None, seen: set[str]) -> list[tuple[str, bool]]:
        if alias is not None:
            return [(alias, self.lowered.aliases.get(alias, True))]
        return self.visible(symbol, seen)

    def fields(self, name: str, seen: set[str]) -> dict[str, set[str]]:
        """The fields of `name`, including the fields of the transparent
        rules it is made of.
        """
        result: dict[str, set[str]] = {}
        if name in seen:
            return result
        seen.add(name)

        for production in self.productions.get(name, []):
            for index, child in enumerate(production.symbols):
                field = production.fields[index] if len(production.fields) > 0 else None
                alias = production.aliases[index] if len(production.aliases) > 0 else None
                if field is not None:
                    types = self.child_types(child, alias, set())
                    result.setdefault(field, set()).update(t for t, _ in types)
                if alias is None and child in self.lowered.transparents:
                    for inner, types in self.fields(child, seen).items():
                        result.setdefault(inner, set()).update(types)
        return result

    def build(self) -> list[NodeType]:
        node_types: dict[tuple[str, bool], NodeType] = {}

        for name in self.productions:
            if name in self.lowered.transparents:
                continue
            fields = self.fields(name, set())
            node_types[(name, True)] = NodeType(
                name,
                True,
                {field: sorted(types) for field, types in sorted(fields.items())},
            )

        for alias, named in self.lowered.aliases.items():
            node_types.setdefault((alias, named), NodeType(alias, named))

        for terminal in self.lowered.terminals:
            if terminal.hidden:
                continue
            node_types.setdefault((terminal.name, terminal.named), NodeType(terminal.name, terminal.named))

        for external in self.lowered.externals:
            node_types.setdefault((external, True), NodeType(external, True))

        return sorted(node_types.values(), key=lambda n: (not n.named, n.type))


def node_types(lowered: LoweredGrammar) -> list[NodeType]:
    return _NodeTypeBuilder(lowered).build()


def compile_grammar(grammar: "Grammar") -> CompiledGrammar:
    """Compile the grammar: parse table, lexer and node types.

    Raises a GrammarError (or one of its subclasses) if anything is wrong;
    nothing is returned in that case.
    """
    parse_table = grammar.build_table()
    lexer_table = grammar.compile_lexer()
    lowered = grammar.lowered()

    compiled = CompiledGrammar(
        name=grammar.name,
        parse_table=parse_table,
        lexer_table=lexer_table,
        node_types=node_types(lowered),
        warnings=grammar.all_warnings(),
    )
    logger.info(
        "Compiled %s: %d states, %d lexer states, %d node types",
        grammar.name,
        len(parse_table.actions),
        len(lexer_table),
        len(compiled.node_types),
    )
    return compiled
