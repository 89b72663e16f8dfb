"""Lower a grammar's rule graph into flat productions and terminals.

The rule graph is a tree of choices, sequences, repetitions and annotations;
the table generator wants plain productions, a name and a list of symbols.
Lowering happens in three steps:

1. Inline rules are substituted into the rules that refer to them.
2. Every terminal the grammar can produce is given a name and a `Terminal`:
   named terminal rules keep their names, literal strings are named by their
   text, and anonymous patterns and `token()`s get a hidden generated name.
3. Each rule is flattened into its productions. Choices multiply out into
   separate productions, repetitions become helper rules, and `prec`,
   `field` and `alias` annotations end up attached to the individual
   positions of the productions they wrapped.
"""

import dataclasses
import logging
import typing

from .errors import GrammarError, InlineCycleError
from .lexer import Re, Terminal
from .regex import parse_pattern
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
    transform,
    walk,
)
from .tables import END_SYMBOL, START_SYMBOL

if typing.TYPE_CHECKING:
    from .grammar import Grammar

logger = logging.getLogger("lrgen.grammar")

# Names the runtime and the tables use for their own purposes.
RESERVED_TERMINALS = frozenset({START_SYMBOL, END_SYMBOL, "ERROR"})


def inline_rules(rules: typing.Mapping[str, Rule], inline: typing.Collection[str]) -> dict[str, Rule]:
    """Replace every reference to an inline rule with a copy of its body.

    Inline rules can refer to other inline rules, they are substituted until
    there is nothing left to substitute. A cycle among inline rules raises
    InlineCycleError. Running this on its own output changes nothing.
    """
    inline = set(inline)
    if len(inline) == 0:
        return dict(rules)

    deps = {
        name: {n.name for n in walk(rules[name]) if isinstance(n, Symbol) and n.name in inline}
        for name in inline
    }
    cycle = _find_cycle(deps)
    if cycle is not None:
        raise InlineCycleError(cycle)

    expanded: dict[str, Rule] = {}

    def substitute(node: Rule) -> Rule | None:
        if isinstance(node, Symbol) and node.name in inline:
            return expand(node.name)
        return None

    def expand(name: str) -> Rule:
        result = expanded.get(name)
        if result is None:
            result = transform(rules[name], substitute)
            expanded[name] = result
        return result

    return {name: transform(body, substitute) for name, body in rules.items()}


def _find_cycle(deps: dict[str, set[str]]) -> list[str] | None:
    visiting: list[str] = []
    done: set[str] = set()

    def visit(name: str) -> list[str] | None:
        if name in done:
            return None
        if name in visiting:
            return visiting[visiting.index(name) :] + [name]

        visiting.append(name)
        for dep in sorted(deps[name]):
            cycle = visit(dep)
            if cycle is not None:
                return cycle
        visiting.pop()
        done.add(name)
        return None

    for name in sorted(deps):
        cycle = visit(name)
        if cycle is not None:
            return cycle
    return None


def terminal_body(rule: Rule) -> Rule | None:
    """If the rule defines a terminal (a literal, a pattern or a token,
    possibly under `prec`) return the part that does the matching.
    """
    while isinstance(rule, Prec) and rule.assoc != Assoc.DYNAMIC:
        rule = rule.content
    if isinstance(rule, (Literal, Pattern, Token)):
        return rule
    return None


class Step(typing.NamedTuple):
    """One position in a production, with everything that was wrapped
    around it.
    """

    symbol: str
    precedence: int | None = None
    assoc: Assoc = Assoc.NONE
    field: str | None = None
    alias: str | None = None


class Path(typing.NamedTuple):
    steps: tuple[Step, ...]
    dynamic: int = 0


@dataclasses.dataclass(frozen=True)
class Production:
    """A single flat production of a nonterminal.

    `precedence` has one entry per symbol: `(value, assoc)` for positions
    under a `prec`, None for positions without one. `fields` and `aliases`,
    if not empty, also have one entry per symbol.
    """

    name: str
    symbols: tuple[str, ...]
    precedence: tuple[tuple[int, Assoc] | None, ...]
    dynamic: int = 0
    fields: tuple[str | None, ...] = ()
    aliases: tuple[str | None, ...] = ()

    def reduce_precedence(self) -> tuple[int, Assoc] | None:
        if len(self.precedence) == 0:
            return None
        return self.precedence[-1]


@dataclasses.dataclass
class LoweredGrammar:
    start: str
    productions: list[Production]
    # Every terminal the lexer needs to know about, in declaration order,
    # extras included.
    terminals: list[Terminal]
    # Nonterminal name to the grammar rule it came from; generated helper
    # rules map to the rule that needed them.
    origins: dict[str, str]
    transparents: set[str]
    externals: list[str]
    extras: set[str]
    word: str | None
    # Alias name to whether it is a named node.
    aliases: dict[str, bool]


class _Lowering:
    grammar: "Grammar"
    rules: dict[str, Rule]

    def __init__(self, grammar: "Grammar"):
        self.grammar = grammar
        self.rules = inline_rules(grammar.rules, grammar.inline)

        self.terminals: dict[str, Terminal] = {}
        self.literal_names: dict[str, str] = {}
        self.anonymous: dict[str, str] = {}
        self.productions: list[Production] = []
        self.seen_productions: set[Production] = set()
        self.origins: dict[str, str] = {}
        self.aliases: dict[str, bool] = {}
        self.taken: set[str] = set(grammar.rules) | set(grammar.externals)
        self.gen_index = 0
        self.token_index = 0
        self.current = grammar.start

    def is_terminal_rule(self, name: str) -> bool:
        return name in self.rules and terminal_body(self.rules[name]) is not None

    def reachable(self) -> set[str]:
        roots = [self.grammar.start]
        if self.grammar.word is not None:
            roots.append(self.grammar.word)
        for extra in self.grammar.extras:
            roots.extend(n.name for n in walk(extra) if isinstance(n, Symbol))

        result: set[str] = set()
        while len(roots) > 0:
            name = roots.pop()
            if name in result or name not in self.rules:
                continue
            result.add(name)
            roots.extend(n.name for n in walk(self.rules[name]) if isinstance(n, Symbol))
        return result

    def lower(self) -> LoweredGrammar:
        start = self.grammar.start
        if start in self.grammar.inline:
            raise GrammarError(f"The start rule '{start}' cannot be inlined")
        if self.is_terminal_rule(start):
            raise GrammarError(f"The start rule '{start}' must be a nonterminal, not a token")

        reachable = self.reachable()
        for name in self.rules:
            if name in reachable and self.is_terminal_rule(name):
                self.named_terminal(name)

        for name, body in self.rules.items():
            if name not in reachable or name in self.grammar.inline or self.is_terminal_rule(name):
                continue
            self.current = name
            self.origins[name] = name
            for path in self.flatten(body):
                self.add(name, path)

        extras = set()
        for extra in self.grammar.extras:
            extras.add(self.extra_terminal(extra))
        for name in extras:
            self.terminals[name].extra = True

        word = self.grammar.word
        if word is not None:
            if not self.is_terminal_rule(word):
                raise GrammarError(f"The word rule '{word}' must be a token")
            self.terminals[word].word = True

        if logger.isEnabledFor(logging.DEBUG):
            for production in self.productions:
                logger.debug("%s -> %s", production.name, " ".join(production.symbols))

        return LoweredGrammar(
            start=start,
            productions=self.productions,
            terminals=list(self.terminals.values()),
            origins=self.origins,
            transparents={name for name in self.origins if name.startswith("_")},
            externals=list(self.grammar.externals),
            extras=extras,
            word=word,
            aliases=self.aliases,
        )

    ###########################################################################
    # Terminals
    ###########################################################################
    def new_terminal(self, name: str, pattern: str | Re, **kwargs) -> Terminal:
        terminal = Terminal(name, pattern, order=len(self.terminals), **kwargs)
        self.terminals[name] = terminal
        return terminal

    def named_terminal(self, name: str):
        body = self.rules[name]
        precedence = 0
        while isinstance(body, Prec):
            precedence = self.grammar.get_precedence(body.value)
            body = body.content

        pattern, inner = self.token_pattern(body, name)
        if inner is not None:
            precedence = inner

        self.new_terminal(
            name,
            pattern,
            precedence=precedence,
            named=True,
            hidden=name.startswith("_"),
        )

    def literal(self, text: str) -> str:
        if text == "":
            raise GrammarError(f"Rule '{self.current}' contains an empty string")

        name = self.literal_names.get(text)
        if name is None:
            name = text
            if name in self.taken or name in self.terminals or name in RESERVED_TERMINALS:
                name = f'"{text}"'
            self.literal_names[text] = name
            self.new_terminal(name, text, named=False)
        return name

    def anonymous_token(self, node: Rule) -> str:
        key = repr(node)
        name = self.anonymous.get(key)
        if name is None:
            pattern, precedence = self.token_pattern(node, self.current)
            if isinstance(pattern, str):
                # token("x") is just the literal "x".
                name = self.literal(pattern)
                if precedence is not None:
                    self.terminals[name].precedence = precedence
            else:
                while True:
                    self.token_index += 1
                    name = f"_token{self.token_index}"
                    if name not in self.taken:
                        break
                self.taken.add(name)
                self.new_terminal(
                    name,
                    pattern,
                    precedence=precedence or 0,
                    named=False,
                    hidden=True,
                )
            self.anonymous[key] = name
        return name

    def extra_terminal(self, node: Rule) -> str:
        match node:
            case Symbol(name=name):
                if not self.is_terminal_rule(name):
                    raise GrammarError(f"The extra '{name}' must be a token")
                return name
            case Literal(value=value):
                return self.literal(value)
            case Pattern() | Token():
                return self.anonymous_token(node)
            case _:
                raise GrammarError(f"Extras must be tokens, not {node!r}")

    def token_pattern(self, node: Rule, owner: str) -> tuple[str | Re, int | None]:
        """Compile the body of a terminal. Returns the pattern (a string for
        plain literals) and the lexical precedence given inside the token, if
        any.
        """
        if isinstance(node, Token):
            node = node.content
        if isinstance(node, Literal):
            if node.value == "":
                raise GrammarError(f"Token '{owner}' matches the empty string")
            return (node.value, None)

        precedence: list[int] = []
        result = self.token_re(node, owner, precedence, set())
        if result is None:
            raise GrammarError(f"Token '{owner}' matches the empty string")
        return (result, max(precedence) if len(precedence) > 0 else None)

    def token_re(self, node: Rule, owner: str, precedence: list[int], visiting: set[str]) -> Re | None:
        """Turn the content of a token into a regular expression. None means
        the node only matches the empty string.
        """
        match node:
            case Blank():
                return None
            case Literal(value=value):
                if value == "":
                    return None
                return Re.literal(value)
            case Pattern(value=value, flags=flags):
                if isinstance(value, Re):
                    return value
                return parse_pattern(value, flags)
            case Seq(members=members):
                parts = [r for m in members if (r := self.token_re(m, owner, precedence, visiting)) is not None]
                if len(parts) == 0:
                    return None
                return Re.seq(*parts)
            case Choice(members=members):
                results = [self.token_re(m, owner, precedence, visiting) for m in members]
                parts = [r for r in results if r is not None]
                if len(parts) == 0:
                    return None
                result = Re.alt(*parts)
                if len(parts) < len(results):
                    result = result.question()
                return result
            case Repeat(content=content):
                inner = self.token_re(content, owner, precedence, visiting)
                return inner.star() if inner is not None else None
            case Repeat1(content=content):
                inner = self.token_re(content, owner, precedence, visiting)
                return inner.plus() if inner is not None else None
            case Prec(value=value, content=content):
                precedence.append(self.grammar.get_precedence(value))
                return self.token_re(content, owner, precedence, visiting)
            case Field(content=content) | Alias(content=content) | Token(content=content):
                return self.token_re(content, owner, precedence, visiting)
            case Symbol(name=name):
                if not self.is_terminal_rule(name) or name in visiting:
                    raise GrammarError(f"Token '{owner}' refers to '{name}', which is not a token")
                return self.token_re(self.rules[name], owner, precedence, visiting | {name})
            case _:
                raise GrammarError(f"Token '{owner}' cannot contain {node!r}")

    ###########################################################################
    # Productions
    ###########################################################################
    def fresh_name(self, kind: str) -> str:
        while True:
            name = f"__{kind}_{self.current}_{self.gen_index}"
            self.gen_index += 1
            if name not in self.taken and name not in self.origins:
                break
        self.origins[name] = self.current
        return name

    def add(self, name: str, path: Path):
        steps = path.steps
        fields = tuple(s.field for s in steps)
        aliases = tuple(s.alias for s in steps)
        production = Production(
            name=name,
            symbols=tuple(s.symbol for s in steps),
            precedence=tuple((s.precedence, s.assoc) if s.precedence is not None else None for s in steps),
            dynamic=path.dynamic,
            fields=fields if any(f is not None for f in fields) else (),
            aliases=aliases if any(a is not None for a in aliases) else (),
        )
        if production not in self.seen_productions:
            self.seen_productions.add(production)
            self.productions.append(production)

    def repeat_rule(self, content: Rule) -> str:
        """Make a helper rule matching one or more of `content`. The helper is
        transparent, so its children end up in-line in the parent.
        """
        name = self.fresh_name("gen")
        paths = [p for p in self.flatten(content) if len(p.steps) > 0]
        for path in paths:
            self.add(name, Path((Step(name),) + path.steps, path.dynamic))
            self.add(name, path)
        return name

    def flatten(self, node: Rule) -> list[Path]:
        """All of the ways that `node` can be matched, as sequences of
        symbols.
        """
        match node:
            case Blank():
                return [Path(())]

            case Literal(value=value):
                return [Path((Step(self.literal(value)),))]

            case Pattern() | Token():
                return [Path((Step(self.anonymous_token(node)),))]

            case Symbol(name=name) | External(name=name):
                return [Path((Step(name),))]

            case Seq(members=members):
                result = [Path(())]
                for member in members:
                    tails = self.flatten(member)
                    result = [
                        Path(head.steps + tail.steps, head.dynamic + tail.dynamic)
                        for head in result
                        for tail in tails
                    ]
                return result

            case Choice(members=members):
                return [path for member in members for path in self.flatten(member)]

            case Repeat(content=content):
                return [Path(()), Path((Step(self.repeat_rule(content)),))]

            case Repeat1(content=content):
                return [Path((Step(self.repeat_rule(content)),))]

            case Prec(value=value, assoc=Assoc.DYNAMIC, content=content):
                level = self.grammar.get_precedence(value)
                return [
                    path if path.dynamic != 0 else path._replace(dynamic=level)
                    for path in self.flatten(content)
                ]

            case Prec(value=value, assoc=assoc, content=content):
                level = self.grammar.get_precedence(value)
                return [
                    Path(
                        tuple(
                            s if s.precedence is not None else s._replace(precedence=level, assoc=assoc)
                            for s in path.steps
                        ),
                        path.dynamic,
                    )
                    for path in self.flatten(content)
                ]

            case Field(name=name, content=content):
                return [
                    Path(
                        tuple(s if s.field is not None else s._replace(field=name) for s in path.steps),
                        path.dynamic,
                    )
                    for path in self.flatten(content)
                ]

            case Alias(value=value, named=named, content=content):
                self.aliases[value] = named or self.aliases.get(value, False)
                paths = self.flatten(content)
                if len(paths) == 1 and len(paths[0].steps) == 1:
                    step = paths[0].steps[0]
                    return [Path((step._replace(alias=value),), paths[0].dynamic)]

                # Anything more complicated than a single symbol needs a node
                # of its own to carry the alias.
                name = self.fresh_name("alias")
                for path in paths:
                    self.add(name, path)
                return [Path((Step(name, alias=value),))]

            case _:
                raise GrammarError(f"Rule '{self.current}' contains {node!r}, which cannot be lowered")


def lower(grammar: "Grammar") -> LoweredGrammar:
    return _Lowering(grammar).lower()
