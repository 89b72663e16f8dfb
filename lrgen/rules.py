"""The rule graph: the nodes that grammar rules are built out of.

Grammars are written the way tree-sitter grammars are written, only in Python
instead of JavaScript. Each rule is a tree of immutable nodes built with the
combinators in this module:

    rules = {
        "expression": choice(
            prec.left("PLUS", seq(sym.expression, "+", sym.expression)),
            prec.left("TIMES", seq(sym.expression, "*", sym.expression)),
            sym.number,
        ),
        "number": pattern(r"\\d+"),
    }

References to other rules go through `sym`, and are *by name*: a `Symbol`
never embeds the rule it points at, which is what lets rules refer to
themselves and to each other before they are defined. The `Grammar` resolves
the names when it is constructed.

Plain strings are accepted anywhere a rule is, and mean "match exactly this
text". Rules also support `|` (choice) and `+` (sequence), the same way the
original helper library did, so `sym.a + "," + sym.b` is a sequence.
"""

import dataclasses
import enum
import typing


class Assoc(enum.Enum):
    """Associativity of a rule."""

    NONE = 0
    LEFT = 1
    RIGHT = 2
    DYNAMIC = 3


class Rule:
    """A node in the rule graph. Rules are composed and then lowered into flat
    productions by the grammar compiler.
    """

    def __or__(self, other) -> "Rule":
        return choice(self, other)

    def __ror__(self, other) -> "Rule":
        return choice(other, self)

    def __add__(self, other) -> "Rule":
        return seq(self, other)

    def __radd__(self, other) -> "Rule":
        return seq(other, self)

    def children(self) -> tuple["Rule", ...]:
        return ()


@dataclasses.dataclass(frozen=True)
class Blank(Rule):
    """Matches no input at all."""


@dataclasses.dataclass(frozen=True)
class Literal(Rule):
    value: str


@dataclasses.dataclass(frozen=True)
class Pattern(Rule):
    """A regular expression, in the JavaScript dialect tree-sitter uses. The
    value can also be an already-built `lexer.Re`.
    """

    value: typing.Any
    flags: str = ""


@dataclasses.dataclass(frozen=True)
class Symbol(Rule):
    """A reference, by name, to another rule in the grammar."""

    name: str


@dataclasses.dataclass(frozen=True)
class External(Rule):
    """A reference to a token matched by the external scanner."""

    name: str


@dataclasses.dataclass(frozen=True)
class Seq(Rule):
    members: tuple[Rule, ...]

    def children(self) -> tuple[Rule, ...]:
        return self.members


@dataclasses.dataclass(frozen=True)
class Choice(Rule):
    members: tuple[Rule, ...]

    def children(self) -> tuple[Rule, ...]:
        return self.members


@dataclasses.dataclass(frozen=True)
class Repeat(Rule):
    """Zero or more."""

    content: Rule

    def children(self) -> tuple[Rule, ...]:
        return (self.content,)


@dataclasses.dataclass(frozen=True)
class Repeat1(Rule):
    """One or more."""

    content: Rule

    def children(self) -> tuple[Rule, ...]:
        return (self.content,)


@dataclasses.dataclass(frozen=True)
class Prec(Rule):
    """Precedence and associativity for everything inside `content`.

    `value` is either an integer or the name of a level in the grammar's
    precedence table.
    """

    value: int | str
    assoc: Assoc
    content: Rule

    def children(self) -> tuple[Rule, ...]:
        return (self.content,)


@dataclasses.dataclass(frozen=True)
class Field(Rule):
    name: str
    content: Rule

    def children(self) -> tuple[Rule, ...]:
        return (self.content,)


@dataclasses.dataclass(frozen=True)
class Alias(Rule):
    """Show `content` in the tree under a different name. `named` is False
    when the alias is an anonymous node (a string) rather than a named one.
    """

    value: str
    named: bool
    content: Rule

    def children(self) -> tuple[Rule, ...]:
        return (self.content,)


@dataclasses.dataclass(frozen=True)
class Token(Rule):
    """Lex everything inside `content` as a single, atomic terminal."""

    content: Rule

    def children(self) -> tuple[Rule, ...]:
        return (self.content,)


def as_rule(value: typing.Any) -> Rule:
    """Convert the things we accept in place of rules into rules."""
    if isinstance(value, Rule):
        return value
    if isinstance(value, str):
        return Literal(value)
    raise TypeError(f"Expected a rule or a string, got {value!r}")


def replace_children(rule: Rule, children: typing.Sequence[Rule]) -> Rule:
    """Make a copy of `rule` with new children. The number of children must
    match what `rule.children()` returned.
    """
    match rule:
        case Seq():
            return Seq(tuple(children))
        case Choice():
            return Choice(tuple(children))
        case Repeat():
            return Repeat(children[0])
        case Repeat1():
            return Repeat1(children[0])
        case Prec(value=value, assoc=assoc):
            return Prec(value, assoc, children[0])
        case Field(name=name):
            return Field(name, children[0])
        case Alias(value=value, named=named):
            return Alias(value, named, children[0])
        case Token():
            return Token(children[0])
        case _:
            assert len(children) == 0
            return rule


def transform(rule: Rule, fn: typing.Callable[[Rule], Rule | None]) -> Rule:
    """Rebuild a rule bottom-up. `fn` is called on each node before its
    children are visited; if it returns a rule that rule replaces the node
    (and is not visited further), if it returns None the node's children are
    transformed instead.
    """
    replacement = fn(rule)
    if replacement is not None:
        return replacement

    children = rule.children()
    if len(children) == 0:
        return rule

    new_children = [transform(child, fn) for child in children]
    if all(a is b for a, b in zip(children, new_children)):
        return rule
    return replace_children(rule, new_children)


def walk(rule: Rule) -> typing.Iterator[Rule]:
    """Every node in the rule, parents before children."""
    stack = [rule]
    while len(stack) > 0:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children()))


###############################################################################
# Combinators
###############################################################################
class _SymbolFactory:
    """`sym.foo` and `sym("foo")` both make a reference to the rule `foo`."""

    def __getattr__(self, name: str) -> Symbol:
        if name.startswith("__"):
            raise AttributeError(name)
        return Symbol(name)

    def __call__(self, name: str) -> Symbol:
        return Symbol(name)


sym = _SymbolFactory()


def blank() -> Rule:
    return Blank()


def pattern(value: typing.Any, flags: str = "") -> Rule:
    return Pattern(value, flags)


def seq(*args: typing.Any) -> Rule:
    """A rule that matches a sequence of rules."""
    if len(args) == 0:
        raise ValueError("seq() needs at least one rule")
    return Seq(tuple(as_rule(a) for a in args))


def choice(*args: typing.Any) -> Rule:
    """A rule that matches one of a series of alternatives.

    Nested choices are flattened, so `a | b | c` is a single three-way choice.
    """
    if len(args) == 0:
        raise ValueError("choice() needs at least one rule")
    members: list[Rule] = []
    for a in args:
        r = as_rule(a)
        if isinstance(r, Choice):
            members.extend(r.members)
        else:
            members.append(r)
    return Choice(tuple(members))


alt = choice


def optional(*args: typing.Any) -> Rule:
    """Mark a sequence as optional."""
    return Choice((seq(*args) if len(args) > 1 else as_rule(args[0]), Blank()))


opt = optional


def repeat(*args: typing.Any) -> Rule:
    """Zero or more repetitions of the specified rules.

    In the tree, the members of the repetition are in-line with the parent.
    If you want to name the list, create a named rule to contain it.
    """
    return Repeat(seq(*args) if len(args) > 1 else as_rule(args[0]))


def repeat1(*args: typing.Any) -> Rule:
    """One or more repetitions of the specified rules."""
    return Repeat1(seq(*args) if len(args) > 1 else as_rule(args[0]))


zero_or_more = repeat
one_or_more = repeat1


def field(name: str, rule: typing.Any) -> Rule:
    return Field(name, as_rule(rule))


def alias(rule: typing.Any, value: Symbol | str) -> Rule:
    """Show `rule` as `value` in the tree. Aliasing to a symbol makes a named
    node, aliasing to a string makes an anonymous one.
    """
    if isinstance(value, Symbol):
        return Alias(value.name, True, as_rule(rule))
    return Alias(value, False, as_rule(rule))


class _Prec:
    """`prec(value, rule)`, `prec.left(...)`, `prec.right(...)` and
    `prec.dynamic(...)`. The value can be omitted for left and right, in which
    case it is zero.
    """

    def _make(self, assoc: Assoc, value: typing.Any, rule: typing.Any) -> Rule:
        if rule is None:
            value, rule = 0, value
        if not isinstance(value, (int, str)) or isinstance(value, bool):
            raise TypeError(f"Precedence must be an integer or a level name, got {value!r}")
        return Prec(value, assoc, as_rule(rule))

    def __call__(self, value: int | str, rule: typing.Any) -> Rule:
        return self._make(Assoc.NONE, value, rule)

    def left(self, value: typing.Any, rule: typing.Any = None) -> Rule:
        return self._make(Assoc.LEFT, value, rule)

    def right(self, value: typing.Any, rule: typing.Any = None) -> Rule:
        return self._make(Assoc.RIGHT, value, rule)

    def dynamic(self, value: int | str, rule: typing.Any) -> Rule:
        return self._make(Assoc.DYNAMIC, value, rule)


prec = _Prec()


def token(rule: typing.Any) -> Rule:
    """Lex the whole rule as one terminal."""
    return Token(as_rule(rule))
