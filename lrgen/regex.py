"""Parse regular expression strings into `Re` trees.

Grammars write their patterns in the JavaScript regex dialect that
tree-sitter uses, so this is a small recursive-descent parser for the subset
of that dialect that describes regular languages: alternation, grouping,
character classes, the usual escapes and quantifiers. Anchors, lookaround,
word boundaries and backreferences have no meaning for a lexer DFA and are
rejected.

Binding, loosest to tightest, is alternation, then adjacency, then the
quantifiers.
"""

import re
import typing

from .errors import GrammarError
from .lexer import UNICODE_MAX_CP, Re, ReSet, Span, normalize_spans

_ESCAPE_CODES: dict[str, str] = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "f": "\f",
    "v": "\v",
    "0": "\0",
}

_DIGIT = [Span.from_str("0", "9")]
_WORD = normalize_spans(
    [
        Span.from_str("0", "9"),
        Span.from_str("A", "Z"),
        Span.from_str("_"),
        Span.from_str("a", "z"),
    ]
)
_SPACE = normalize_spans(
    [
        Span.from_str("\t", "\r"),
        Span.from_str(" "),
        Span.from_str("\u00a0"),
        Span.from_str("\u1680"),
        Span.from_str("\u2000", "\u200a"),
        Span.from_str("\u2028", "\u2029"),
        Span.from_str("\u202f"),
        Span.from_str("\u205f"),
        Span.from_str("\u3000"),
        Span.from_str("\ufeff"),
    ]
)
_CLASS_ESCAPES: dict[str, list[Span]] = {"d": _DIGIT, "w": _WORD, "s": _SPACE}

_COUNT = re.compile(r"\{(\d+)(,(\d*))?\}")


def _invert(spans: list[Span]) -> list[Span]:
    return ReSet(spans).invert().values


def _fold_case(spans: list[Span]) -> list[Span]:
    """Add the other-case version of every ASCII letter in the spans."""
    result = list(spans)
    for span in spans:
        for lower, upper, delta in ((ord("A"), ord("Z") + 1, 32), (ord("a"), ord("z") + 1, -32)):
            lo = max(span.lower, lower)
            hi = min(span.upper, upper)
            if lo < hi:
                result.append(Span(lo + delta, hi + delta))
    return normalize_spans(result)


class _PatternParser:
    pattern: str
    pos: int
    ignore_case: bool

    def __init__(self, pattern: str, flags: str):
        self.pattern = pattern
        self.pos = 0
        self.ignore_case = "i" in flags

    def fail(self, message: str) -> typing.NoReturn:
        raise GrammarError(f"Invalid pattern /{self.pattern}/ at offset {self.pos}: {message}")

    def peek(self) -> str | None:
        if self.pos < len(self.pattern):
            return self.pattern[self.pos]
        return None

    def next(self) -> str:
        c = self.peek()
        if c is None:
            self.fail("unexpected end of pattern")
        self.pos += 1
        return c

    def charset(self, spans: list[Span]) -> ReSet:
        if self.ignore_case:
            spans = _fold_case(spans)
        return ReSet(normalize_spans(spans))

    def parse(self) -> Re:
        result = self.parse_alternation()
        if self.pos != len(self.pattern):
            self.fail("unbalanced ')'")
        if result is None:
            self.fail("the pattern only matches the empty string")
        return result

    def parse_alternation(self) -> Re | None:
        branches = [self.parse_sequence()]
        while self.peek() == "|":
            self.pos += 1
            branches.append(self.parse_sequence())

        present = [b for b in branches if b is not None]
        if len(present) == 0:
            return None

        result = Re.alt(*present)
        if len(present) < len(branches):
            # One of the branches was empty, like `a|`.
            result = result.question()
        return result

    def parse_sequence(self) -> Re | None:
        items = []
        while True:
            c = self.peek()
            if c is None or c == "|" or c == ")":
                break
            item = self.parse_quantified()
            if item is not None:
                items.append(item)

        if len(items) == 0:
            return None
        return Re.seq(*items)

    def parse_quantified(self) -> Re | None:
        atom = self.parse_atom()
        while True:
            c = self.peek()
            if c == "*" or c == "+" or c == "?":
                self.pos += 1
                if atom is None:
                    self.fail("nothing to repeat")
                if c == "*":
                    atom = atom.star()
                elif c == "+":
                    atom = atom.plus()
                else:
                    atom = atom.question()

            elif c == "{" and (match := _COUNT.match(self.pattern, self.pos)) is not None:
                self.pos = match.end()
                if atom is None:
                    self.fail("nothing to repeat")
                lower = int(match.group(1))
                if match.group(2) is None:
                    upper = lower
                elif match.group(3) == "":
                    upper = None
                else:
                    upper = int(match.group(3))
                    if upper < lower:
                        self.fail("numbers out of order in {} quantifier")
                atom = self.counted(atom, lower, upper)

            else:
                break

            if self.peek() == "?":
                # Lazy quantifiers match the same language.
                self.pos += 1

        return atom

    def counted(self, atom: Re, lower: int, upper: int | None) -> Re | None:
        parts = [atom] * lower
        if upper is None:
            parts.append(atom.star())
        else:
            parts.extend([atom.question()] * (upper - lower))
        if len(parts) == 0:
            return None
        return Re.seq(*parts)

    def parse_atom(self) -> Re | None:
        c = self.next()
        if c == "(":
            if self.pattern.startswith("?:", self.pos):
                self.pos += 2
            elif self.peek() == "?":
                self.fail("lookaround and named groups are not supported")
            inner = self.parse_alternation()
            if self.peek() != ")":
                self.fail("missing ')'")
            self.pos += 1
            return inner

        if c == "[":
            return self.parse_class()

        if c == ".":
            return self.charset(_invert([Span.from_str("\n")]))

        if c == "^" or c == "$":
            self.fail("anchors are not supported")

        if c == "\\":
            spans, _ = self.parse_escape(in_class=False)
            return self.charset(spans)

        if c == "*" or c == "+" or c == "?":
            self.fail("nothing to repeat")

        return self.charset([Span.from_str(c)])

    def parse_escape(self, in_class: bool) -> tuple[list[Span], bool]:
        """Parse an escape sequence; the backslash has already been consumed.
        Returns the spans it matches, and whether it was a single character
        (which matters for ranges in character classes).
        """
        c = self.next()
        lower = c.lower()
        if lower in _CLASS_ESCAPES:
            spans = _CLASS_ESCAPES[lower]
            if c != lower:
                spans = _invert(spans)
            return (spans, False)

        if c in _ESCAPE_CODES:
            return ([Span.from_str(_ESCAPE_CODES[c])], True)

        if c == "b":
            if in_class:
                return ([Span.from_str("\b")], True)
            self.fail("word boundaries are not supported")

        if c == "u":
            if self.peek() == "{":
                end = self.pattern.find("}", self.pos)
                if end < 0:
                    self.fail("unterminated \\u{...} escape")
                digits = self.pattern[self.pos + 1 : end]
                self.pos = end + 1
            else:
                digits = self.pattern[self.pos : self.pos + 4]
                self.pos += 4
            return ([self.code_point(digits)], True)

        if c == "x":
            digits = self.pattern[self.pos : self.pos + 2]
            self.pos += 2
            return ([self.code_point(digits)], True)

        if c in "pPkcB" or c.isdigit():
            self.fail(f"\\{c} escapes are not supported")

        return ([Span.from_str(c)], True)

    def code_point(self, digits: str) -> Span:
        try:
            value = int(digits, 16)
        except ValueError:
            self.fail(f"bad hex escape {digits!r}")
        if not 0 <= value < UNICODE_MAX_CP:
            self.fail(f"code point {digits} out of range")
        return Span(value, value + 1)

    def parse_class_atom(self) -> tuple[list[Span], bool]:
        c = self.next()
        if c == "\\":
            return self.parse_escape(in_class=True)
        return ([Span.from_str(c)], True)

    def parse_class(self) -> Re:
        negate = False
        if self.peek() == "^":
            negate = True
            self.pos += 1

        spans: list[Span] = []
        while True:
            c = self.peek()
            if c is None:
                self.fail("unterminated character class")
            if c == "]":
                self.pos += 1
                break

            lo, single = self.parse_class_atom()
            is_range = (
                single
                and self.peek() == "-"
                and self.pos + 1 < len(self.pattern)
                and self.pattern[self.pos + 1] != "]"
            )
            if not is_range:
                spans.extend(lo)
                continue

            self.pos += 1
            hi, single = self.parse_class_atom()
            if not single:
                # Like `[a-\d]`, the dash is just a dash.
                spans.extend(lo)
                spans.append(Span.from_str("-"))
                spans.extend(hi)
                continue

            if hi[0].lower < lo[0].lower:
                self.fail("range out of order in character class")
            spans.append(Span(lo[0].lower, hi[0].upper))

        if self.ignore_case:
            spans = _fold_case(spans)
        spans = normalize_spans(spans)
        if negate:
            return ReSet(_invert(spans))
        return ReSet(spans)


def parse_pattern(pattern: str, flags: str = "") -> Re:
    """Parse a regular expression string into an `Re`.

    Raises GrammarError if the pattern is malformed, uses a feature a DFA
    can't express, or only matches the empty string.
    """
    return _PatternParser(pattern, flags).parse()
