"""Everything that can go wrong while compiling a grammar.

All compile errors derive from `GrammarError`, which is a `ValueError`, so
callers that only care that "the grammar is bad" can catch that.
"""

import dataclasses
import typing


class GrammarError(ValueError):
    """The grammar cannot be compiled."""


class UndefinedRuleError(GrammarError):
    """A rule refers to a name that isn't a rule or an external."""

    def __init__(self, name: str, referenced_from: str | None = None):
        self.name = name
        self.referenced_from = referenced_from
        if referenced_from is None:
            super().__init__(f"'{name}' is not a rule in this grammar")
        else:
            super().__init__(
                f"Rule '{referenced_from}' refers to '{name}', which is not a rule in this grammar"
            )


class NonTerminatingRecursionError(GrammarError):
    """Some rules can never finish matching: every derivation recurses."""

    def __init__(self, rules: typing.Sequence[str]):
        self.rules = tuple(rules)
        super().__init__(
            "These rules can never match anything, every alternative recurses without "
            f"a base case: {', '.join(self.rules)}"
        )


class InlineCycleError(GrammarError):
    """The inline rules refer to each other in a loop, so inlining would
    never finish.
    """

    def __init__(self, cycle: typing.Sequence[str]):
        self.cycle = tuple(cycle)
        super().__init__(f"Inline rules form a cycle: {' -> '.join(self.cycle)}")


class AmbiguousTokenError(GrammarError):
    """Two different terminals match exactly the same text and nothing says
    which one should win.
    """

    def __init__(self, names: typing.Sequence[str], text: str):
        self.names = tuple(names)
        self.text = text
        super().__init__(
            f"Terminals {' and '.join(repr(n) for n in self.names)} both match exactly {text!r}"
        )


@dataclasses.dataclass
class PossibleAction:
    name: str
    rule: str
    action_str: str

    def __str__(self):
        return f"We are in the rule `{self.name}: {self.rule}` and we should {self.action_str}"


@dataclasses.dataclass
class Ambiguity:
    path: str
    symbol: str
    actions: typing.Tuple[PossibleAction, ...]
    rules: typing.Tuple[str, ...] = ()

    def __str__(self):
        lines = []
        lines.append(
            f"When we have parsed '{self.path}' and see '{self.symbol}' we don't know whether:"
        )
        lines.extend(f"- {action}" for action in self.actions)
        if len(self.rules) > 0:
            lines.append(
                f"Give these rules a precedence or declare a conflict between them: "
                f"{', '.join(self.rules)}"
            )
        return "\n".join(lines)


class UnresolvedConflictError(GrammarError):
    """The grammar is ambiguous somewhere that neither precedence nor a
    declared conflict covers. Every such place found during the compile is in
    `ambiguities`.
    """

    ambiguities: list[Ambiguity]

    def __init__(self, ambiguities):
        self.ambiguities = ambiguities
        super().__init__(self.ambiguities)

    def __str__(self):
        return f"{len(self.ambiguities)} ambiguities:\n\n" + "\n\n".join(
            str(ambiguity) for ambiguity in self.ambiguities
        )


class TokenError(Exception):
    """The input can't be broken into tokens at `position`."""

    def __init__(self, message: str, position: int):
        super().__init__(message)
        self.position = position
