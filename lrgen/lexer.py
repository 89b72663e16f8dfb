"""Lexer support: regular expressions, NFAs, and the DFA we hand to the
runtime.

Every terminal in a grammar is either a literal string or a regular
expression (an `Re`). We build one big NFA with an epsilon edge from a shared
start state into each terminal's sub-automaton, and then convert the whole
thing into a DFA by tracking sets of NFA states ("super states"). At each DFA
state we decide, once and for all, which terminal wins if the input stops
matching there; the runtime then does maximal munch over the table.
"""

import bisect
import dataclasses
import logging
import typing

from .errors import AmbiguousTokenError, GrammarError

logger = logging.getLogger("lrgen.lexer")


@dataclasses.dataclass(frozen=True, slots=True)
class Span:
    lower: int  # inclusive
    upper: int  # exclusive

    @classmethod
    def from_str(cls, lower: str, upper: str | None = None) -> "Span":
        lo = ord(lower)
        if upper is None:
            hi = lo + 1
        else:
            hi = ord(upper) + 1

        return Span(lower=lo, upper=hi)

    def __len__(self) -> int:
        return self.upper - self.lower

    def intersects(self, other: "Span") -> bool:
        """Determine if this span intersects the other span."""
        return self.lower < other.upper and self.upper > other.lower

    def split(self, other: "Span") -> tuple["Span|None", "Span|None", "Span|None"]:
        """Split two possibly-intersecting spans into three regions: a low
        region, which covers just the lower part of the union, a mid region,
        which covers the intersection, and a hi region, which covers just the
        upper part of the union.

        Graphically, given two spans A and B:

                   [      B    )
             [      A    )
             [ lo )[ mid )[ hi )

        If the lower bounds align then `lo` is None, if the upper bounds align
        then `hi` is None, and if both spans are identical only `mid` is left.
        Spans that don't intersect at all come back as (lower, None, upper).

        split is reflexive: it doesn't matter which order you split things in,
        you will always get the same output spans, in the same order.
        """
        if not self.intersects(other):
            if self.lower < other.lower:
                return (self, None, other)
            else:
                return (other, None, self)

        first = min(self.lower, other.lower)
        second = max(self.lower, other.lower)
        third = min(self.upper, other.upper)
        fourth = max(self.upper, other.upper)

        low = Span(first, second) if first != second else None
        mid = Span(second, third)
        hi = Span(third, fourth) if third != fourth else None

        return (low, mid, hi)

    def __str__(self) -> str:
        return f"[{self.lower}-{self.upper})"


ET = typing.TypeVar("ET")


class EdgeList(typing.Generic[ET]):
    """A list of edge transitions, keyed by *span*. The spans in the list
    never overlap and are always sorted.
    """

    _edges: list[tuple[Span, list[ET]]]

    def __init__(self):
        self._edges = []

    def __iter__(self) -> typing.Iterator[tuple[Span, list[ET]]]:
        return iter(self._edges)

    def __repr__(self) -> str:
        return f"EdgeList[{','.join(str(s[0]) + '->' + repr(s[1]) for s in self._edges)}]"

    def add_edge(self, c: Span, s: ET):
        """Add an edge for the given span to the list. Where the span overlaps
        spans already in the list, the spans are split so that each piece
        carries the targets of everything that covers it.
        """
        our_targets = [s]

        # The first existing span whose upper bound is past our lower bound
        # is the first one we could possibly touch.
        point = bisect.bisect_right(self._edges, c.lower, key=lambda x: x[0].upper)

        # We split against the lowest overlapping span each time around, so
        # the remainder of the incoming span may need several passes.
        next_span: Span | None = c
        while next_span is not None:
            c = next_span
            next_span = None

            if point == len(self._edges):
                self._edges.insert(point, (c, [s]))
                return

            right_span, right_targets = self._edges[point]
            if not c.intersects(right_span):
                # Entirely in a gap before the next span.
                self._edges.insert(point, (c, [s]))
                return

            del self._edges[point]
            lo, mid, hi = c.split(right_span)

            if lo is not None:
                # lo belongs to exactly one of the two spans.
                targets = right_targets if lo.intersects(right_span) else our_targets
                self._edges.insert(point, (lo, targets))
                point += 1

            if mid is not None:
                self._edges.insert(point, (mid, right_targets + our_targets))
                point += 1

            if hi is not None:
                if hi.intersects(right_span):
                    # The rest of the existing span; we're finished.
                    self._edges.insert(point, (hi, right_targets))
                else:
                    # The rest of the incoming span might overlap the spans
                    # that come after, so go around again with just that.
                    next_span = hi


class NFAState:
    """An NFA state. A state can be an accept state if it has a Terminal
    associated with it."""

    accept: "Terminal | None"
    epsilons: list["NFAState"]
    _edges: EdgeList["NFAState"]

    def __init__(self):
        self.accept = None
        self.epsilons = []
        self._edges = EdgeList()

    def edges(self) -> typing.Iterable[tuple[Span, list["NFAState"]]]:
        return self._edges

    def add_edge(self, c: Span, s: "NFAState") -> "NFAState":
        self._edges.add_edge(c, s)
        return s


@dataclasses.dataclass
class Re:
    def to_nfa(self) -> tuple[NFAState, list[NFAState]]:
        raise NotImplementedError()

    @classmethod
    def alt(cls, *values: "Re") -> "Re":
        result = values[0]
        for v in values[1:]:
            result = ReAlt(result, v)
        return result

    @classmethod
    def seq(cls, *values: "Re") -> "Re":
        result = values[0]
        for v in values[1:]:
            result = ReSeq(result, v)
        return result

    @classmethod
    def literal(cls, value: str) -> "Re":
        return cls.seq(*[ReSet.from_ranges(c) for c in value])

    @classmethod
    def set(cls, *args: str | tuple[str, str]) -> "ReSet":
        return ReSet.from_ranges(*args)

    def plus(self) -> "Re":
        return RePlus(self)

    def star(self) -> "Re":
        return ReStar(self)

    def question(self) -> "Re":
        return ReQuestion(self)


UNICODE_MAX_CP = 1114112


def normalize_spans(spans: typing.Iterable[Span]) -> list[Span]:
    """Sort the spans and merge the ones that touch or overlap."""
    result: list[Span] = []
    for span in sorted(spans, key=lambda s: s.lower):
        if len(result) > 0 and result[-1].upper >= span.lower:
            last = result[-1]
            result[-1] = Span(last.lower, max(last.upper, span.upper))
        else:
            result.append(span)
    return result


@dataclasses.dataclass
class ReSet(Re):
    values: list[Span]

    @classmethod
    def from_ranges(cls, *args: str | tuple[str, str]) -> "ReSet":
        values = []
        for a in args:
            if isinstance(a, str):
                values.append(Span.from_str(a))
            else:
                values.append(Span.from_str(a[0], a[1]))

        return ReSet(normalize_spans(values))

    def invert(self) -> "ReSet":
        spans = []
        lower = 0
        for span in normalize_spans(self.values):
            upper = span.lower
            if upper != lower:
                assert lower < upper
                spans.append(Span(lower, upper))
            lower = span.upper

        # Python strings are sequences of code points, so that's the
        # universe we invert within.
        upper = UNICODE_MAX_CP
        if upper != lower:
            assert lower < upper
            spans.append(Span(lower, upper))

        return ReSet(spans)

    def to_nfa(self) -> tuple[NFAState, list[NFAState]]:
        start = NFAState()
        end = NFAState()
        for span in self.values:
            start.add_edge(span, end)
        return (start, [end])


@dataclasses.dataclass
class RePlus(Re):
    child: Re

    def to_nfa(self) -> tuple[NFAState, list[NFAState]]:
        start, ends = self.child.to_nfa()

        end = NFAState()
        for e in ends:
            e.epsilons.append(end)
        end.epsilons.append(start)
        return (start, [end])


@dataclasses.dataclass
class ReStar(Re):
    child: Re

    def to_nfa(self) -> tuple[NFAState, list[NFAState]]:
        start = NFAState()

        child_start, ends = self.child.to_nfa()
        start.epsilons.append(child_start)
        for end in ends:
            end.epsilons.append(start)

        return (start, [start])


@dataclasses.dataclass
class ReQuestion(Re):
    child: Re

    def to_nfa(self) -> tuple[NFAState, list[NFAState]]:
        start = NFAState()

        child_start, ends = self.child.to_nfa()
        start.epsilons.append(child_start)
        ends.append(start)

        return (start, ends)


@dataclasses.dataclass
class ReSeq(Re):
    left: Re
    right: Re

    def to_nfa(self) -> tuple[NFAState, list[NFAState]]:
        left_start, left_ends = self.left.to_nfa()
        right_start, right_ends = self.right.to_nfa()
        for end in left_ends:
            end.epsilons.append(right_start)
        return (left_start, right_ends)


@dataclasses.dataclass
class ReAlt(Re):
    left: Re
    right: Re

    def to_nfa(self) -> tuple[NFAState, list[NFAState]]:
        left_start, left_ends = self.left.to_nfa()
        right_start, right_ends = self.right.to_nfa()

        start = NFAState()
        start.epsilons.append(left_start)
        start.epsilons.append(right_start)

        return (start, left_ends + right_ends)


@dataclasses.dataclass(eq=False)
class Terminal:
    """A terminal symbol, as the lexer sees it.

    `pattern` is either a string, to be matched exactly, or an `Re`. `order`
    is the declaration order of the terminal in the grammar, and is the last
    word in deciding between two terminals that match the same text.
    """

    name: str
    pattern: str | Re
    order: int = 0
    precedence: int = 0
    named: bool = True
    hidden: bool = False
    extra: bool = False
    word: bool = False
    error_name: str | None = None

    @property
    def regex(self) -> bool:
        return isinstance(self.pattern, Re)

    def preference(self) -> tuple[int, bool, bool, bool, int]:
        """Bigger is better, when two terminals accept at the same state."""
        return (self.precedence, not self.regex, not self.word, not self.extra, -self.order)

    def __repr__(self) -> str:
        return self.name


LexerTable = list[tuple[Terminal | None, list[tuple[Span, int]]]]


class NFASuperState:
    states: frozenset[NFAState]

    def __init__(self, states: typing.Iterable[NFAState]):
        # Close over the given states, including every state that is
        # reachable by epsilon-transition.
        stack = list(states)
        result = set()
        while len(stack) > 0:
            st = stack.pop()
            if st in result:
                continue
            result.add(st)
            stack.extend(st.epsilons)

        self.states = frozenset(result)

    def __eq__(self, other):
        if not isinstance(other, NFASuperState):
            return False
        return self.states == other.states

    def __hash__(self) -> int:
        return hash(self.states)

    def edges(self) -> list[tuple[Span, "NFASuperState"]]:
        working: EdgeList[list[NFAState]] = EdgeList()
        for st in self.states:
            for span, targets in st.edges():
                working.add_edge(span, targets)

        # EdgeList maps span to list[list[State]] which we want to flatten.
        result = []
        for span, stateses in working:
            s: list[NFAState] = []
            for states in stateses:
                s.extend(states)

            result.append((span, NFASuperState(s)))

        return result

    def accepting(self) -> list[Terminal]:
        return [st.accept for st in self.states if st.accept is not None]

    def accept_terminal(self) -> Terminal | None:
        """Pick the terminal that wins if the input stops matching here. All
        the candidates have matched exactly the same text.
        """
        accept = None
        for terminal in self.accepting():
            if accept is None or terminal.preference() > accept.preference():
                accept = terminal
        return accept


def check_literals(terminals: typing.Iterable[Terminal]):
    """Two different literal terminals with the same text can never be told
    apart, by anything.
    """
    literals: dict[str, Terminal] = {}
    for terminal in terminals:
        if terminal.regex:
            continue
        assert isinstance(terminal.pattern, str)

        existing = literals.get(terminal.pattern)
        if existing is not None and existing.name != terminal.name:
            raise AmbiguousTokenError([existing.name, terminal.name], terminal.pattern)
        literals[terminal.pattern] = terminal


def compile_lexer(terminals: typing.Sequence[Terminal]) -> LexerTable:
    """Construct a lexer table for the given terminals.

    State 0 of the resulting table is the start state.
    """
    check_literals(terminals)

    # Parse the terminals all together into a big NFA rooted at `NFA`.
    NFA = NFAState()
    for terminal in terminals:
        pattern = terminal.pattern
        if isinstance(pattern, Re):
            start, ends = pattern.to_nfa()
            for end in ends:
                end.accept = terminal
            NFA.epsilons.append(start)

        else:
            if len(pattern) == 0:
                raise GrammarError(f"Terminal '{terminal.name}' matches the empty string")
            start = end = NFAState()
            for c in pattern:
                end = end.add_edge(Span.from_str(c), NFAState())
            end.accept = terminal
            NFA.epsilons.append(start)

    # Convert the NFA into a DFA in the most straightforward way (by tracking
    # sets of state closures, called SuperStates.)
    DFA: dict[NFASuperState, tuple[int, list[tuple[Span, NFASuperState]]]] = {}

    initial = NFASuperState([NFA])
    empty = initial.accepting()
    if len(empty) > 0:
        names = ", ".join(sorted({t.name for t in empty}))
        raise GrammarError(f"These terminals match the empty string: {names}")

    stack = [initial]
    while len(stack) > 0:
        ss = stack.pop()
        if ss in DFA:
            continue

        edges = ss.edges()

        DFA[ss] = (len(DFA), edges)
        for _, target in edges:
            stack.append(target)

    logger.debug("Lexer for %d terminals has %d states", len(terminals), len(DFA))
    return [
        (
            ss.accept_terminal(),
            [(k, DFA[v][0]) for k, v in edges],
        )
        for ss, (_, edges) in DFA.items()
    ]


def format_lexer_table(table: LexerTable) -> str:
    """Render the lexer table as a graphviz digraph."""
    lines = ["digraph G {"]
    for index, (accept, edges) in enumerate(table):
        label = accept.name if accept is not None else ""
        label = label.replace("\\", "\\\\").replace('"', '\\"')
        lines.append(f'  {index} [label="{label}"];')
        for span, target in edges:
            label = str(span).replace('"', '\\"')
            lines.append(f'  {index} -> {target} [label="{label}"];')
    lines.append("}")
    return "\n".join(lines) + "\n"
