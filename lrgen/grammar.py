"""The grammar: a named, ordered set of rules plus everything tree-sitter
lets you say about them.

Here's an example of a simple grammar:

    grammar = Grammar(
        "arithmetic",
        {
            "expression": choice(
                prec.left(1, seq(sym.expression, "+", sym.expression)),
                prec.left(2, seq(sym.expression, "*", sym.expression)),
                seq("(", sym.expression, ")"),
                sym.number,
            ),
            "number": pattern(r"\\d+"),
        },
    )
    table = grammar.build_table()

The first rule is the start rule. Rules whose body is a literal, a pattern
or a `token()` are terminals; everything else is a nonterminal. Rules whose
names start with an underscore are "transparent": they never show up in the
tree, their children are spliced into the parent instead.

A Grammar checks itself thoroughly when it is constructed, and is never
modified afterwards. Compiling it is lazy, and happens at most once.
"""

import logging
import typing

from .errors import GrammarError, NonTerminatingRecursionError, UndefinedRuleError
from .lexer import LexerTable, Terminal, compile_lexer
from .lowering import LoweredGrammar, lower, terminal_body
from .rules import (
    Alias,
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
    as_rule,
    transform,
    walk,
)
from .tables import ParserGenerator, ParseTable

if typing.TYPE_CHECKING:
    from .compiler import CompiledGrammar

logger = logging.getLogger("lrgen.grammar")

RESERVED_NAMES = frozenset(
    {
        "ERROR",
        "alias",
        "blank",
        "choice",
        "field",
        "optional",
        "prec",
        "repeat",
        "repeat1",
        "seq",
        "token",
    }
)

PrecedenceTable = typing.Mapping[str, int] | typing.Sequence[str | typing.Sequence[str]]


def _names(values: typing.Iterable[Symbol | str]) -> list[str]:
    return [v.name if isinstance(v, Symbol) else v for v in values]


def _check_name(name: str, what: str):
    if not isinstance(name, str) or len(name) == 0:
        raise GrammarError(f"{what} names must be non-empty strings, not {name!r}")
    if name in RESERVED_NAMES or name.startswith("__") or "$" in name:
        raise GrammarError(f"'{name}' is a reserved name and cannot be used for a {what.lower()}")


def _can_terminate(node: Rule, productive: set[str]) -> bool:
    match node:
        case Symbol(name=name):
            return name in productive
        case Seq(members=members):
            return all(_can_terminate(m, productive) for m in members)
        case Choice(members=members):
            return any(_can_terminate(m, productive) for m in members)
        case Repeat():
            return True
        case Repeat1(content=content) | Prec(content=content) | Field(content=content):
            return _can_terminate(content, productive)
        case Alias(content=content) | Token(content=content):
            return _can_terminate(content, productive)
        case _:
            return True


def _only_empty(node: Rule, empty: set[str]) -> bool:
    match node:
        case Blank():
            return True
        case Symbol(name=name):
            return name in empty
        case Seq(members=members) | Choice(members=members):
            return all(_only_empty(m, empty) for m in members)
        case Literal(value=value):
            return value == ""
        case Pattern() | External():
            return False
        case _:
            return all(_only_empty(c, empty) for c in node.children())


class Grammar:
    """A grammar, ready to be compiled.

    `rules` maps rule names to rules, in order; the first one is the start
    rule. Strings are accepted in place of rules and mean literal text.

    `extras` are the tokens that can appear anywhere between other tokens,
    like whitespace and comments. By default that's whitespace; pass an
    empty list for a grammar with no extras at all.

    `conflicts` is a list of sets of rule names. If the only conflicts in a
    state are between rules in one of these sets, the parse table keeps all
    of the actions (a GLR split) instead of failing.

    `inline` rules are substituted into every rule that refers to them, and
    never become nodes of their own.

    `externals` are tokens matched by an external scanner at parse time.

    `word` is the identifier-like token; keywords win over it when they
    match the same text.

    `precedences` gives names to precedence levels: either a mapping from
    name to value, or a list of levels from lowest to highest (numbered from
    1), where each level is a name or a list of names.
    """

    name: str
    rules: dict[str, Rule]
    start: str
    extras: list[Rule]
    conflicts: list[frozenset[str]]
    inline: frozenset[str]
    externals: list[str]
    word: str | None
    precedences: dict[str, int]
    warnings: list[str]

    _lowered: LoweredGrammar | None
    _table: ParseTable | None
    _table_warnings: list[str]
    _compiled: "CompiledGrammar | None"

    def __init__(
        self,
        name: str,
        rules: typing.Mapping[str, Rule | str],
        *,
        extras: typing.Iterable[Rule | str] | None = None,
        conflicts: typing.Iterable[typing.Iterable[Symbol | str]] | None = None,
        inline: typing.Iterable[Symbol | str] | None = None,
        externals: typing.Iterable[Symbol | str] | None = None,
        word: Symbol | str | None = None,
        precedences: PrecedenceTable | None = None,
    ):
        if len(rules) == 0:
            raise GrammarError("A grammar needs at least one rule")

        self.name = name
        for rule_name in rules:
            _check_name(rule_name, "Rule")

        self.externals = _names(externals or [])
        for external in self.externals:
            _check_name(external, "External")
            if external in rules:
                raise GrammarError(f"'{external}' is both a rule and an external token")

        self.precedences = self._precedence_table(precedences)

        self.rules = {
            rule_name: self._resolve(rule_name, as_rule(body), rules) for rule_name, body in rules.items()
        }
        self.start = next(iter(self.rules))
        if self.start.startswith("_"):
            raise GrammarError(f"The start rule '{self.start}' cannot be transparent")

        if extras is None:
            extras = [Pattern(r"\s")]
        self.extras = [self._resolve(None, as_rule(extra), self.rules) for extra in extras]

        if isinstance(word, Symbol):
            word = word.name
        if word is not None and word not in self.rules:
            raise UndefinedRuleError(word)
        self.word = word
        if word is not None and not self.is_terminal_rule(word):
            raise GrammarError(f"The word rule '{word}' must be a token")

        for extra in self.extras:
            if isinstance(extra, Symbol) and not self.is_terminal_rule(extra.name):
                raise GrammarError(f"The extra '{extra.name}' must be a token")
            if isinstance(extra, External):
                raise GrammarError(f"The extra '{extra.name}' is an external token")

        self.inline = frozenset(_names(inline or []))
        for inline_name in self.inline:
            if inline_name not in self.rules:
                raise UndefinedRuleError(inline_name)

        self.conflicts = []
        for conflict in conflicts or []:
            conflict_set = frozenset(_names(conflict))
            for conflict_name in conflict_set:
                if conflict_name not in self.rules:
                    raise UndefinedRuleError(conflict_name)
            self.conflicts.append(conflict_set)

        self._check_termination()
        self._check_repeats()
        self.warnings = self._find_unreachable()

        self._lowered = None
        self._table = None
        self._table_warnings = []
        self._compiled = None

    def _precedence_table(self, precedences: PrecedenceTable | None) -> dict[str, int]:
        if precedences is None:
            return {}
        if isinstance(precedences, typing.Mapping):
            return dict(precedences)

        table = {}
        for index, level in enumerate(precedences):
            names = [level] if isinstance(level, str) else list(level)
            for level_name in names:
                table[level_name] = index + 1
        return table

    def _resolve(self, owner: str | None, rule: Rule, names: typing.Collection[str]) -> Rule:
        """Check the names used in a rule, and turn references to externals
        into `External`s.
        """

        def resolve(node: Rule) -> Rule | None:
            match node:
                case Symbol(name=name):
                    if name in self.externals:
                        return External(name)
                    if name not in names:
                        raise UndefinedRuleError(name, owner)
                    return node
                case Prec(value=str(value)) if value not in self.precedences:
                    raise GrammarError(f"Unknown precedence level '{value}' in rule '{owner}'")
                case _:
                    return None

        return transform(rule, resolve)

    def _check_termination(self):
        productive: set[str] = set()
        changed = True
        while changed:
            changed = False
            for name, body in self.rules.items():
                if name not in productive and _can_terminate(body, productive):
                    productive.add(name)
                    changed = True

        stuck = [name for name in self.rules if name not in productive]
        if len(stuck) > 0:
            raise NonTerminatingRecursionError(stuck)

    def _check_repeats(self):
        # Start by assuming every rule only matches empty input, and take
        # rules out until nothing changes.
        empty = set(self.rules)
        changed = True
        while changed:
            changed = False
            for name in list(empty):
                if not _only_empty(self.rules[name], empty):
                    empty.discard(name)
                    changed = True

        for name, body in self.rules.items():
            for node in walk(body):
                if isinstance(node, Literal) and node.value == "":
                    raise GrammarError(f"Rule '{name}' contains an empty string")
                if isinstance(node, (Repeat, Repeat1)) and _only_empty(node.content, empty):
                    raise GrammarError(
                        f"Rule '{name}' repeats something that can only match empty input"
                    )

    def _find_unreachable(self) -> list[str]:
        roots = [self.start]
        if self.word is not None:
            roots.append(self.word)
        for extra in self.extras:
            roots.extend(n.name for n in walk(extra) if isinstance(n, Symbol))

        reachable: set[str] = set()
        while len(roots) > 0:
            name = roots.pop()
            if name in reachable:
                continue
            reachable.add(name)
            roots.extend(n.name for n in walk(self.rules[name]) if isinstance(n, Symbol))

        warnings = []
        for name in self.rules:
            if name not in reachable:
                message = f"Rule '{name}' is unreachable from the start rule '{self.start}'"
                logger.warning("%s: %s", self.name, message)
                warnings.append(message)
        return warnings

    def get_precedence(self, value: int | str) -> int:
        if isinstance(value, int):
            return value
        level = self.precedences.get(value)
        if level is None:
            raise GrammarError(f"Unknown precedence level '{value}'")
        return level

    def is_terminal_rule(self, name: str) -> bool:
        return terminal_body(self.rules[name]) is not None

    def lowered(self) -> LoweredGrammar:
        """The grammar as flat productions and terminals."""
        if self._lowered is None:
            self._lowered = lower(self)
        return self._lowered

    def terminals(self) -> list[Terminal]:
        return self.lowered().terminals

    def non_terminals(self) -> list[str]:
        return list(self.lowered().origins.keys())

    def build_table(self) -> ParseTable:
        """Construct a parse table for this grammar.

        Raises UnresolvedConflictError if the grammar is ambiguous in a way
        that neither precedence nor the declared conflicts cover.
        """
        if self._table is not None:
            return self._table

        lowered = self.lowered()
        gen = ParserGenerator(
            lowered.start,
            lowered.productions,
            transparents=lowered.transparents,
            origins=lowered.origins,
            conflicts=self.conflicts,
        )
        table = gen.gen_table()

        table.extras.update(lowered.extras)
        table.externals.extend(lowered.externals)
        for t in lowered.terminals:
            if t.error_name is not None:
                table.error_names[t.name] = t.error_name
            elif isinstance(t.pattern, str):
                table.error_names[t.name] = f'"{t.pattern}"'

        warnings = []
        for conflict in gen.unused_conflicts:
            message = f"Conflict between {', '.join(sorted(conflict))} is never used"
            logging.getLogger("lrgen.tables").warning("%s: %s", self.name, message)
            warnings.append(message)

        self._table = table
        self._table_warnings = warnings
        return table

    def compile_lexer(self) -> LexerTable:
        """Construct a lexer table for this grammar."""
        return compile_lexer(self.terminals())

    def compile(self) -> "CompiledGrammar":
        """Compile everything: the parse table, the lexer and the node types."""
        if self._compiled is None:
            from .compiler import compile_grammar

            self._compiled = compile_grammar(self)
        return self._compiled

    def all_warnings(self) -> list[str]:
        """Warnings about the grammar, and about its table if that has been
        built.
        """
        return self.warnings + self._table_warnings
