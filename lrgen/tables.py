"""LR(1) parse table generation.

The parser tables are built with a variant of Pager's algorithm, following
the implementation in GRMTools: it supports the same languages as canonical
LR(1), but merges "weakly compatible" states as it goes so the tables come
out about the size of LALR tables.

Conflicts are where the interesting decisions are made. When a state has
more than one thing it could do on a lookahead, we try, in order:

1. Precedence and associativity. Every position in every production knows
   the precedence of the innermost `prec()` that wrapped it. A reduce uses
   the precedence of the production's last position; a shift uses the
   highest precedence of any item that shifts the terminal. Positions outside
   any `prec()` have no precedence, and an action without one is never
   decided this way. Otherwise higher wins; on a tie LEFT reduces, RIGHT
   shifts, and NONE leaves the conflict in place.
2. Declared conflicts. If the rules involved in what's left are all in one
   of the grammar's declared conflict sets, we keep *all* of the actions, as
   a `Split`, and let a GLR runtime sort it out.
3. Failing that, the grammar is ambiguous and we raise
   `UnresolvedConflictError`, with every conflict we found.
"""

import collections
import dataclasses
import itertools
import json
import logging
import typing

from .errors import Ambiguity, PossibleAction, UnresolvedConflictError
from .rules import Assoc

if typing.TYPE_CHECKING:
    from .lowering import Production

logger = logging.getLogger("lrgen.tables")

START_SYMBOL = "__start"
END_SYMBOL = "$end"


class Configuration(typing.NamedTuple):
    """A core configuration, basically, a position within a production.

    These need to be as small and as tight as you can make them. They are
    immutable and we deal with large numbers of these. The lookahead is kept
    outside, in the ItemSet.
    """

    name: int
    symbols: typing.Tuple[int, ...]
    position: int
    next: int | None
    production: int

    @classmethod
    def from_rule(cls, name: int, symbols: typing.Tuple[int, ...], production: int):
        if len(symbols) == 0:
            next = None
        else:
            next = symbols[0]
        return Configuration(
            name=name,
            symbols=symbols,
            position=0,
            next=next,
            production=production,
        )

    @property
    def at_end(self) -> bool:
        return self.position == len(self.symbols)

    def replace_position(self, new_position):
        if new_position == len(self.symbols):
            next = None
        else:
            next = self.symbols[new_position]
        return self._replace(position=new_position, next=next)

    @property
    def rest(self) -> typing.Tuple[int, ...]:
        return self.symbols[(self.position + 1) :]

    def format(self, alphabet: list[str]) -> str:
        return "{name} -> {bits}".format(
            name=alphabet[self.name],
            bits=" ".join(
                [
                    "* " + alphabet[sym] if i == self.position else alphabet[sym]
                    for i, sym in enumerate(self.symbols)
                ]
            )
            + (" *" if self.at_end else ""),
        )


# An ItemSet keeps the lookaheads outside the configurations and uses a
# dictionary to check for containment quickly.
@dataclasses.dataclass
class ItemSet:
    """An ItemSet is a group of configuration cores together with their
    "contexts", or lookahead sets.

    An ItemSet is comparable for equality, and also supports this lesser notion
    of "weakly compatible" which is used to collapse states in the pager
    algorithm.
    """

    items: dict[Configuration, set[int]]

    def __init__(self, items=None):
        self.items = items or {}

    def weakly_compatible(self, other: "ItemSet") -> bool:
        a = self.items
        b = other.items

        if len(a) != len(b):
            return False

        for acore in a:
            if acore not in b:
                return False

        if len(a) == 1:
            return True

        # Two sets are weakly compatible if, for every pair of cores, merging
        # the contexts can't introduce a reduce/reduce conflict that neither
        # set had on its own.
        a_keys = list(a.keys())
        for i, i_key in enumerate(itertools.islice(a_keys, 0, len(a_keys) - 1)):
            for j_key in itertools.islice(a_keys, i + 1, None):
                a_i_key = a[i_key]
                b_i_key = b[i_key]
                a_j_key = a[j_key]
                b_j_key = b[j_key]

                if a_i_key.isdisjoint(b_j_key) and a_j_key.isdisjoint(b_i_key):
                    continue

                if not (a_i_key.isdisjoint(a_j_key) and b_i_key.isdisjoint(b_j_key)):
                    continue

                return False

        return True

    def weakly_merge(self, other: "ItemSet") -> bool:
        """Merge b into a, returning True if this lead to any changes."""
        a = self.items
        b = other.items

        changed = False
        for a_key, a_ctx in a.items():
            start_len = len(a_ctx)
            a_ctx.update(b[a_key])  # Python doesn't tell us changes
            changed = changed or (start_len != len(a_ctx))

        return changed

    def goto(self, symbol: int) -> "ItemSet":
        result = ItemSet()
        for core, context in self.items.items():
            if core.next == symbol:
                next = core.replace_position(core.position + 1)
                result.items[next] = set(context)
        return result


@dataclasses.dataclass
class StateGraph:
    """All of the states of the parser, and the transitions between them.

    `successors[i]` is the mapping from grammar symbol to the index of the
    state you get by processing that symbol in state `i`.
    """

    closures: list[ItemSet]
    successors: list[dict[int, int]]

    def dump_state(self, alphabet: list[str]) -> str:
        return json.dumps(
            {
                str(set_index): {
                    "closures": [f"{c.format(alphabet)} -> {l}" for c, l in closure.items.items()],
                    "successors": {alphabet[k]: str(v) for k, v in successors.items()},
                }
                for set_index, (closure, successors) in enumerate(
                    zip(self.closures, self.successors)
                )
            },
            indent=4,
            sort_keys=True,
        )

    def find_path_to_set(self, target_set: ItemSet) -> list[int]:
        """Trace the path of grammar symbols from the first set (which always
        set 0) to the target set. This is useful in conflict reporting,
        because we'll be *at* an ItemSet and want to show the grammar symbols
        that get us to where we found the conflict.

        This function raises KeyError if no path is found.
        """
        target_index = self.closures.index(target_set)
        visited = set()

        queue: collections.deque = collections.deque()
        queue.appendleft((0, []))
        while len(queue) > 0:
            set_index, path = queue.pop()
            if set_index == target_index:
                return path

            if set_index in visited:
                continue
            visited.add(set_index)

            for symbol, successor in self.successors[set_index].items():
                queue.appendleft((successor, path + [symbol]))

        raise KeyError("Unable to find a path to the target set!")


@dataclasses.dataclass
class Action:
    pass


@dataclasses.dataclass
class Reduce(Action):
    """Pop `count` values and make a `name` out of them.

    `fields` and `aliases`, when not empty, have one entry per popped value:
    the field name to give that child, and the name to show it as.
    """

    name: str
    count: int
    transparent: bool
    dynamic: int = 0
    fields: typing.Tuple[str | None, ...] = ()
    aliases: typing.Tuple[str | None, ...] = ()


@dataclasses.dataclass
class Shift(Action):
    state: int


@dataclasses.dataclass
class Accept(Action):
    pass


@dataclasses.dataclass
class Error(Action):
    pass


@dataclasses.dataclass
class Split(Action):
    """More than one action is possible here, and the grammar said that was
    OK: a GLR runtime should try all of them.
    """

    actions: typing.Tuple["Shift | Reduce | Accept", ...]


ParseAction = Reduce | Shift | Accept | Error | Split


class ErrorCollection:
    """A collection of errors. The errors are grouped by config set and alphabet
    symbol, so that we can group the error strings appropriately when we format
    the error.
    """

    errors: dict[int, dict[int, dict[Configuration, Action]]]
    sets: dict[int, ItemSet]

    def __init__(self):
        self.errors = {}
        self.sets = {}

    def any(self) -> bool:
        """Return True if there are any errors in this collection."""
        return len(self.errors) > 0

    def add_error(
        self,
        config_set: ItemSet,
        symbol: int,
        config: Configuration,
        action: Action,
    ):
        """Add an error to the collection.

        config_set is the set with the error.
        symbol is the symbol we saw when we saw the error.
        config is the configuration that we were in when we saw the error.
        action is what we were trying to do.
        """
        # ItemSets aren't hashable, so key them by identity.
        self.sets[id(config_set)] = config_set
        set_errors = self.errors.setdefault(id(config_set), {})
        symbol_errors = set_errors.setdefault(symbol, {})
        symbol_errors[config] = action

    def gen_exception(
        self,
        alphabet: list[str],
        all_sets: StateGraph,
        origins: dict[str, str],
    ) -> UnresolvedConflictError | None:
        """Format all the errors into an error, or return None if there are no
        errors.

        We need the alphabet to turn all these integers into something human
        readable, and all the sets to trace a path to where the errors were
        encountered.
        """
        if len(self.errors) == 0:
            return None

        errors = []
        for set_key, set_errors in self.errors.items():
            path = all_sets.find_path_to_set(self.sets[set_key])
            path_str = " ".join(alphabet[s] for s in path)

            for symbol, symbol_errors in set_errors.items():
                actions = []
                rules = set()
                for config, action in symbol_errors.items():
                    name = alphabet[config.name]
                    rules.add(origins.get(name, name))
                    rule = " ".join(
                        f"{'* ' if config.position == i else ''}{alphabet[s]}"
                        for i, s in enumerate(config.symbols)
                    )
                    if config.at_end:
                        rule += " *"

                    match action:
                        case Reduce(name=name, count=count, transparent=transparent):
                            name_str = name if not transparent else f"transparent node ({name})"
                            action_str = f"use the {count} values to make a {name_str}"
                        case Shift():
                            action_str = "consume the token and keep going"
                        case Accept():
                            action_str = "accept the parse"
                        case _:
                            raise Exception(f"unknown action type {action}")

                    actions.append(PossibleAction(name, rule, action_str))

                errors.append(
                    Ambiguity(
                        path=path_str,
                        symbol=alphabet[symbol],
                        actions=tuple(actions),
                        rules=tuple(sorted(rules)),
                    )
                )

        return UnresolvedConflictError(errors)


@dataclasses.dataclass
class ParseTable:
    actions: list[dict[str, ParseAction]]
    gotos: list[dict[str, int]]
    extras: set[str] = dataclasses.field(default_factory=set)
    externals: list[str] = dataclasses.field(default_factory=list)
    error_names: dict[str, str] = dataclasses.field(default_factory=dict)

    def expected(self, state: int) -> set[str]:
        """The terminals that are valid in the given state."""
        return set(self.actions[state].keys())

    def format(self) -> str:
        """Format a parser table so pretty."""

        def format_action(action: ParseAction | None) -> str:
            match action:
                case Accept():
                    return "accept"
                case Shift(state=state):
                    return f"s{state}"
                case Reduce(count=count):
                    return f"r{count}"
                case Split(actions=actions):
                    return "/".join(format_action(a) for a in actions)
                case _:
                    return ""

        def format_goto(gotos: dict[str, int], nt: str):
            index = gotos.get(nt)
            if index is None:
                return ""
            else:
                return str(index)

        terminals = list(sorted({k for row in self.actions for k in row.keys()}))
        nonterminals = list(sorted({k for row in self.gotos for k in row.keys()}))

        header = "     | {terms} | {nts}".format(
            terms=" ".join(f"{terminal: <6}" for terminal in terminals),
            nts=" ".join(f"{nt: <5}" for nt in nonterminals),
        )

        lines = [
            header,
            "-" * len(header),
        ] + [
            "{index: <4} | {actions} | {gotos}".format(
                index=i,
                actions=" ".join(
                    "{0: <6}".format(format_action(actions.get(terminal)))
                    for terminal in terminals
                ),
                gotos=" ".join("{0: <5}".format(format_goto(gotos, nt)) for nt in nonterminals),
            )
            for i, (actions, gotos) in enumerate(zip(self.actions, self.gotos))
        ]
        return "\n".join(lines)


Candidate = typing.Tuple[Shift | Reduce | Accept, Configuration]


class TableBuilder(object):
    """A helper object to assemble actions into build parse tables.

    This is a builder type thing: call `new_row` at the start of
    each row, then `flush` when you're done with the last row. Every action
    for a row is collected first, and conflicts are resolved when the row is
    finished.
    """

    errors: ErrorCollection
    actions: list[dict[str, ParseAction]]
    gotos: list[dict[str, int]]
    alphabet: list[str]
    productions: "list[Production]"
    transparents: set[str]
    origins: dict[str, str]
    conflicts: list[frozenset[str]]
    firsts: "FirstInfo"
    used_conflicts: set[int]

    action_row: None | list[list[Candidate]]
    goto_row: None | list[None | int]

    def __init__(
        self,
        alphabet: list[str],
        productions: "list[Production]",
        transparents: set[str],
        origins: dict[str, str],
        conflicts: list[frozenset[str]],
        firsts: "FirstInfo",
    ):
        self.errors = ErrorCollection()
        self.actions = []
        self.gotos = []

        self.alphabet = alphabet
        self.productions = productions
        self.transparents = transparents
        self.origins = origins
        self.conflicts = conflicts
        self.firsts = firsts
        self.used_conflicts = set()
        self.action_row = None
        self.goto_row = None

    def flush(self, all_sets: StateGraph) -> ParseTable:
        """Finish building the table and return it.

        Raises UnresolvedConflictError if there were any conflicts during
        construction.
        """
        self._flush_row()
        error = self.errors.gen_exception(self.alphabet, all_sets, self.origins)
        if error is not None:
            raise error

        return ParseTable(actions=self.actions, gotos=self.gotos)

    def unused_conflicts(self) -> list[frozenset[str]]:
        return [c for i, c in enumerate(self.conflicts) if i not in self.used_conflicts]

    def new_row(self, config_set: ItemSet):
        """Start a new row, processing the given config set. Call this before
        doing anything else.
        """
        self._flush_row()
        self.action_row = [[] for _ in self.alphabet]
        self.goto_row = [None for _ in self.alphabet]
        self.current_config_set = config_set

    def _flush_row(self):
        if self.action_row is not None:
            actions = {}
            for sym, candidates in enumerate(self.action_row):
                if len(candidates) == 0:
                    continue
                action = self._resolve(sym, candidates)
                if action is not None:
                    actions[self.alphabet[sym]] = action

            self.actions.append(actions)

        if self.goto_row is not None:
            gotos = {self.alphabet[sym]: e for sym, e in enumerate(self.goto_row) if e is not None}

            self.gotos.append(gotos)

    def set_table_reduce(self, symbol: int, config: Configuration):
        """Mark a reduce of the given configuration for the given symbol in the
        current row.
        """
        name = self.alphabet[config.name]
        production = self.productions[config.production]
        action = Reduce(
            name,
            len(config.symbols),
            name in self.transparents,
            dynamic=production.dynamic,
            fields=production.fields,
            aliases=production.aliases,
        )
        self._add_candidate(symbol, action, config)

    def set_table_accept(self, symbol: int, config: Configuration):
        """Mark a accept of the given configuration for the given symbol in the
        current row.
        """
        self._add_candidate(symbol, Accept(), config)

    def set_table_shift(self, symbol: int, index: int, config: Configuration):
        """Mark a shift in the current row of the given given symbol to the
        given index. The configuration here provides debugging informtion for
        conflicts.
        """
        self._add_candidate(symbol, Shift(index), config)

    def set_table_goto(self, symbol: int, index: int):
        """Set the goto for the given nonterminal symbol in the current row."""
        assert self.goto_row is not None
        assert self.goto_row[symbol] is None
        self.goto_row[symbol] = index

    def _add_candidate(self, symbol: int, action: Shift | Reduce | Accept, config: Configuration):
        assert self.action_row is not None
        self.action_row[symbol].append((action, config))

    def _position_precedence(self, config: Configuration) -> int | None:
        entry = self.productions[config.production].precedence[config.position]
        return None if entry is None else entry[0]

    def _shift_precedence(self, symbol: int, shifts: list[Candidate]) -> int | None:
        """The precedence of shifting `symbol`: the highest precedence of the
        items that shift it, or that are in the middle of a production and
        would continue with it (because it starts the nonterminal that comes
        next). None if none of those items has a precedence.
        """
        values = [self._position_precedence(c) for _, c in shifts]
        for config in self.current_config_set.items:
            next = config.next
            if config.position == 0 or next is None or next == symbol:
                continue
            if symbol in self.firsts.firsts[next]:
                values.append(self._position_precedence(config))

        annotated = [v for v in values if v is not None]
        if len(annotated) == 0:
            return None
        return max(annotated)

    def _reduce_precedence(self, config: Configuration) -> tuple[int, Assoc] | None:
        return self.productions[config.production].reduce_precedence()

    def _resolve(self, symbol: int, candidates: list[Candidate]) -> ParseAction | None:
        """Pick the action for `symbol` out of everything the row wanted to
        do. Returns None if the conflict couldn't be resolved, after
        recording the error.

        Precedence only decides between actions that both have one; anything
        else is left for the declared conflicts.
        """
        shifts = [(a, c) for a, c in candidates if isinstance(a, Shift)]
        others = [(a, c) for a, c in candidates if not isinstance(a, Shift)]

        if len(others) == 0:
            # Every shifting item goes to the same successor state.
            return shifts[0][0]
        if len(shifts) == 0 and len(others) == 1:
            return others[0][0]

        # Among competing reductions, only the highest precedence survive.
        if len(others) > 1:
            levels = [self._reduce_precedence(c) for _, c in others]
            values = [level[0] for level in levels if level is not None]
            if len(values) == len(levels):
                best = max(values)
                others = [other for other, value in zip(others, values) if value == best]

        keep_shift = False
        if len(shifts) > 0:
            shift_prec = self._shift_precedence(symbol, shifts)
            remaining = []
            for a, c in others:
                level = self._reduce_precedence(c)
                if shift_prec is None or level is None:
                    remaining.append((a, c))
                    keep_shift = True
                    continue

                value, assoc = level
                if value > shift_prec:
                    remaining.append((a, c))
                elif value < shift_prec:
                    keep_shift = True
                elif assoc == Assoc.LEFT:
                    remaining.append((a, c))
                elif assoc == Assoc.RIGHT:
                    keep_shift = True
                else:
                    remaining.append((a, c))
                    keep_shift = True
            others = remaining

        winners: list[Candidate] = []
        if keep_shift:
            winners.extend(shifts)
        winners.extend(others)

        actions: list[Shift | Reduce | Accept] = []
        if keep_shift:
            actions.append(shifts[0][0])
        actions.extend(a for a, _ in others)
        if len(actions) == 1:
            return actions[0]

        rules = set()
        for _, config in winners:
            name = self.alphabet[config.name]
            rules.add(self.origins.get(name, name))

        matched = False
        for index, conflict in enumerate(self.conflicts):
            if rules <= conflict:
                self.used_conflicts.add(index)
                matched = True

        if matched:
            return Split(tuple(actions))

        for action, config in winners:
            self.errors.add_error(self.current_config_set, symbol, config, action)
        return None


def update_changed(items: set[int], other: set[int]) -> bool:
    """Merge the `other` set into the `items` set, and return True if this
    changed the items set.
    """
    old_len = len(items)
    items.update(other)
    return old_len != len(items)


@dataclasses.dataclass(frozen=True)
class FirstInfo:
    """A structure that tracks the first set of a grammar. (Or, as it is
    commonly styled in textbooks, FIRST.)

    firsts[s] is the set of first terminals of any particular nonterminal s.
    (For a terminal , firsts[s] == s.)

    is_epsilon[s] is True if the nonterminal s can be empty, that is, if
    it can match zero symbols.

    For example, consider following grammar:

        [
          ('x', ['y', 'A']),
          ('y', ['z']),
          ('y', ['B', 'x']),
          ('y', []),
          ('z', ['C']),
          ('z', ['D', x]),
        ]

    For this grammar, FIRST['z'] is ('C', 'D').

    FIRST['y'] is ('B', 'C', 'D'). For the first production, 'z' is first, and
    since 'z' is a nonterminal we need to include all of its symbols too,
    transitively. For the second production, 'B' is first, and so that gets
    added to the set. The last production doesn't have anything in it, so it
    doesn't contribute to FIRST['y'], but it does set `is_epsilon` to True.

    Finally, FIRST['x'] is ('A', 'B', 'C', 'D'). ('B', 'C', 'D') comes from
    FIRST['y'], as 'y' is first in our only production. But the 'A' comes from
    the fact that is_epsilon['y'] is True: since 'y' can match empty input,
    it is also legal for 'x' to begin with 'A'.
    """

    firsts: list[set[int]]
    is_epsilon: list[bool]

    @classmethod
    def from_grammar(
        cls,
        grammar: list[list[typing.Tuple[int, ...]]],
        terminal: typing.Tuple[bool, ...],
    ) -> "FirstInfo":
        """Construct a new FirstInfo from the specified grammar.

        terminal[s] is True if symbol s is a terminal symbol.
        """
        # Add all terminals to their own firsts
        firsts: list[set[int]] = []
        for index, is_terminal in enumerate(terminal):
            firsts.append(set())
            if is_terminal:
                firsts[index].add(index)

        # Rules are recursive and mutually recursive, so iterate to a fixed
        # point; naive recursion never finishes, and recursion with a visited
        # set revisits the same symbols over and over.
        epsilons = [False for _ in terminal]
        changed = True
        while changed:
            changed = False
            for name, rules in enumerate(grammar):
                f = firsts[name]
                for rule in rules:
                    if len(rule) == 0:
                        changed = changed or not epsilons[name]
                        epsilons[name] = True
                        continue

                    for index, symbol in enumerate(rule):
                        other_firsts = firsts[symbol]
                        changed = update_changed(f, other_firsts) or changed

                        is_last = index == len(rule) - 1
                        if is_last and epsilons[symbol]:
                            # If this is the last symbol and the last
                            # symbol can be empty then I can be empty
                            # too! :P
                            changed = changed or not epsilons[name]
                            epsilons[name] = True

                        if not epsilons[symbol]:
                            # This symbol can't be empty, so nothing after
                            # it can be first.
                            break

        return FirstInfo(firsts=firsts, is_epsilon=epsilons)


class ParserGenerator:
    """Generate parse tables for LR1 grammars.

    This class implements a variant of pager's algorithm to generate the parse
    tables, which support the same set of languages as Canonical LR1 but with
    much smaller resulting parse tables.

    It proceeds as LR1, generating successor states, but every time it makes
    a new state it searches the states it has already made for one that is
    "weakly compatible;" if it finds one it merges the new state with the old
    state and marks the old state to be re-visited.

    The implementation here follows from the implementation in
    `GRMTools<https://github.com/softdevteam/grmtools/blob/master/lrtable/src/lib/pager.rs>`_.

    As they explain there:

    > The general algorithms that form the basis of what's used in this file
    > can be found in:
    >
    >      A Practical General Method for Constructing LR(k) Parsers
    >         David Pager, Acta Informatica 7, 249--268, 1977
    >
    > However Pager's paper is dense, and doesn't name sub-parts of the
    > algorithm. We mostly reference the (still incomplete, but less
    > incomplete) version of the algorithm found in:
    >
    >      Measuring and extending LR(1) parser generation
    >         Xin Chen, PhD thesis, University of Hawaii, 2009
    """

    # Internally we use integers as symbols, not strings. Mostly this is fine,
    # but when we need to map back from integer to string we index this list.
    alphabet: list[str]

    # Every production, by index. The last one is the augmented start
    # production, `__start -> start`.
    productions: "list[Production]"

    # The grammar we work with. The outer list is indexed by grammar symbol,
    # terminal *and* non-terminal. The inner list is the list of productions
    # (production index and symbols) for the given nonterminal symbol. (If you
    # have a terminal `t` and look it up you'll just get an empty list.)
    grammar: list[list[typing.Tuple[int, typing.Tuple[int, ...]]]]

    # nonterminal[i] is True if alphabet[i] is a nonterminal.
    nonterminal: typing.Tuple[bool, ...]
    # The complement of nonterminal. terminal[i] is True if alphabet[i] is a
    # terminal.
    terminal: typing.Tuple[bool, ...]

    # The set of symbols for which we should reduce "transparently." This doesn't
    # affect state generation at all, only the generation of the final table.
    transparents: set[str]

    # Maps generated helper rules back to the rule that they were made for,
    # so that conflicts can be reported (and declared) in terms of the rules
    # in the grammar.
    origins: dict[str, str]

    conflicts: list[frozenset[str]]

    symbol_key: dict[str, int]
    start_symbol: int
    end_symbol: int

    _firsts: FirstInfo

    # Declared conflicts that never suppressed anything, filled in by
    # gen_table().
    unused_conflicts: list[frozenset[str]]

    def __init__(
        self,
        start: str,
        productions: "list[Production]",
        transparents: None | set[str] = None,
        origins: None | dict[str, str] = None,
        conflicts: None | list[frozenset[str]] = None,
    ):
        """Initialize the parser generator with the specified productions and
        start symbol.

        Productions are flat: a name, and a list of the terminals and
        nonterminals that make it up, with the precedence of each position.
        Alternation, repetition and so on have already been lowered away by
        the time we get here. An empty production means that the nonterminal
        can match nothing.
        """
        from .lowering import Production

        alphabet = set()
        for production in productions:
            alphabet.add(production.name)
            alphabet.update(production.symbols)

        if START_SYMBOL in alphabet or END_SYMBOL in alphabet:
            raise ValueError(f"Can't use {START_SYMBOL} or {END_SYMBOL} in grammars, they're reserved.")

        alphabet.add(START_SYMBOL)
        alphabet.add(END_SYMBOL)
        self.alphabet = list(sorted(alphabet))

        symbol_key = {symbol: index for index, symbol in enumerate(self.alphabet)}

        start_symbol = symbol_key[START_SYMBOL]
        end_symbol = symbol_key[END_SYMBOL]

        self.productions = list(productions)
        self.productions.append(
            Production(START_SYMBOL, (start,), (None,)),
        )

        # We count on python dictionaries retaining the insertion order, like
        # it or not.
        full_grammar: list[list] = [list() for _ in self.alphabet]
        terminal: list[bool] = [True for _ in self.alphabet]
        nonterminal = [False for _ in self.alphabet]

        for index, production in enumerate(self.productions):
            name_symbol = symbol_key[production.name]

            terminal[name_symbol] = False
            nonterminal[name_symbol] = True

            full_grammar[name_symbol].append(
                (index, tuple(symbol_key[symbol] for symbol in production.symbols))
            )

        self.grammar = full_grammar
        self.terminal = tuple(terminal)
        self.nonterminal = tuple(nonterminal)

        assert self.terminal[end_symbol]
        assert self.nonterminal[start_symbol]

        self.transparents = transparents or set()
        self.origins = origins or {}
        self.conflicts = conflicts or []
        self.unused_conflicts = []

        self.symbol_key = symbol_key
        self.start_symbol = start_symbol
        self.end_symbol = end_symbol

        self._firsts = FirstInfo.from_grammar(
            [[symbols for _, symbols in rules] for rules in self.grammar],
            self.terminal,
        )

    def gen_sets(self, seeds: ItemSet) -> StateGraph:
        # This function can be seen as a modified version of items() from
        # Chen's dissertation, by way of grmtools.

        # closed_states and core_states are both equally sized vectors of
        # states. Core states are smaller, and used for the weakly compatible
        # checks, but we ultimately need to return closed states. Closed
        # states which are None are those which require processing; thus
        # closed_states also implicitly serves as a todo list.
        closed_states: list[ItemSet | None] = []
        core_states: list[ItemSet] = []
        edges: list[dict[int, int]] = []

        core_states.append(seeds)
        closed_states.append(None)
        edges.append({})

        # We maintain a set of which rules and tokens we've seen; when
        # processing a given state there's no point processing a rule or
        # token more than once.
        seen: set[int] = set()

        # cnd_weaklies represent which states are possible weakly compatible
        # matches for a given symbol.
        cnd_weaklies: list[list[int]] = [[] for _ in range(len(self.alphabet))]

        todo = 1  # How many None values are there in closed_states?
        todo_off = 0  # Offset in closed states to start searching for the next todo.
        while todo > 0:
            assert len(core_states) == len(closed_states)
            assert len(core_states) == len(edges)

            # Processing state x disproportionately causes state x + 1 to
            # require processing, so search for the next todo from where we
            # left off, wrapping around as necessary.
            try:
                state_i = closed_states.index(None, todo_off)
            except ValueError:
                state_i = closed_states.index(None)

            todo_off = state_i + 1
            todo -= 1

            cl_state = self.gen_closure(core_states[state_i])
            closed_states[state_i] = cl_state

            seen.clear()
            for core in cl_state.items.keys():
                sym = core.next
                if sym is None or sym in seen:
                    continue
                seen.add(sym)

                nstate = cl_state.goto(sym)

                # Try and find a compatible match for this state.
                cnd_states = cnd_weaklies[sym]

                # First see if any of the candidate states are exactly the
                # same as the new state. The weakly compatible check is not
                # guaranteed to be reflexive, so this is needed for
                # correctness and not just speed.
                found = False
                for cnd in cnd_states:
                    if core_states[cnd] == nstate:
                        edges[state_i][sym] = cnd
                        found = True
                        break

                if found:
                    continue

                m: int | None = None
                for cnd in cnd_states:
                    if core_states[cnd].weakly_compatible(nstate):
                        m = cnd
                        break

                if m is not None:
                    # A weakly compatible match has been found.
                    edges[state_i][sym] = m
                    if core_states[m].weakly_merge(nstate):
                        # The merged state changed, so it (and, recursively,
                        # everything after it) has to be reprocessed. Its
                        # edges are regenerated from scratch when that
                        # happens.
                        if closed_states[m] is not None:
                            closed_states[m] = None
                            todo += 1

                else:
                    stidx = len(core_states)

                    cnd_weaklies[sym].append(stidx)
                    edges[state_i][sym] = stidx

                    edges.append({})
                    closed_states.append(None)
                    core_states.append(nstate)
                    todo += 1

        # Merging can leave states that are no longer reachable from the
        # start state; weed them out and renumber the edges.
        assert len(core_states) == len(closed_states)

        all_states = []
        for core_state, closed_state in zip(core_states, closed_states):
            assert closed_state is not None
            all_states.append((core_state, closed_state))
        gc_states, gc_edges = self.gc(all_states, edges)

        return StateGraph(
            closures=[closed_state for _, closed_state in gc_states],
            successors=gc_edges,
        )

    def gc(
        self,
        states: list[tuple[ItemSet, ItemSet]],
        edges: list[dict[int, int]],
    ) -> tuple[list[tuple[ItemSet, ItemSet]], list[dict[int, int]]]:
        # All state indexes reachable from the start state will be inserted
        # into the 'seen' set.
        todo = [0]
        seen = set()
        while len(todo) > 0:
            item = todo.pop()
            if item in seen:
                continue
            seen.add(item)
            todo.extend(e for e in edges[item].values() if e not in seen)

        if len(seen) == len(states):
            # Every state is reachable.
            return states, edges

        # Work out where each surviving state ends up: with states [0, 1, 2]
        # where 1 is unreachable, the offsets are [0, 1, 1] and state 2
        # becomes state 1.
        gc_states: list[tuple[ItemSet, ItemSet]] = []
        offsets: list[int] = []
        offset = 0
        for state_i, zstate in enumerate(states):
            offsets.append(state_i - offset)
            if state_i not in seen:
                offset += 1
                continue

            gc_states.append(zstate)

        gc_edges: list[dict[int, int]] = []
        for st_edge_i, st_edges in enumerate(edges):
            if st_edge_i not in seen:
                continue

            gc_edges.append({k: offsets[v] for k, v in st_edges.items()})

        return (gc_states, gc_edges)

    def gen_first(self, symbols: typing.Iterable[int]) -> typing.Tuple[set[int], bool]:
        """Return the first set for a *sequence* of symbols.

        Build the set by combining the first sets of the symbols from left to
        right as long as epsilon remains in the first set. If we reach the end
        and every symbol has had epsilon, then this set also has epsilon.
        """
        result = set()
        for s in symbols:
            result.update(self._firsts.firsts[s])
            if not self._firsts.is_epsilon[s]:
                return (result, False)

        return (result, True)

    def gen_closure(self, items: ItemSet) -> ItemSet:
        """Generate the closure of the given ItemSet.

        Some of the configurations the ItemSet might be positioned right before
        nonterminals. In that case, obviously, we should *also* behave as if we
        were right at the beginning of each production for that nonterminal. The
        set of all those productions combined with all the incoming productions
        is the closure.
        """
        closure: dict[Configuration, set[int]] = {}

        todo = [(core, context) for core, context in items.items.items()]
        while len(todo) > 0:
            core, context = todo.pop()

            existing_context = closure.get(core)
            if existing_context is None or not context <= existing_context:
                if existing_context is not None:
                    existing_context.update(context)
                else:
                    # The lookahead set was generated once for all of the
                    # child rules, so copy it here.
                    closure[core] = set(context)

                config_next = core.next
                if config_next is None:
                    continue

                rules = self.grammar[config_next]
                if len(rules) > 0:
                    lookahead, epsilon = self.gen_first(core.rest)
                    if epsilon:
                        lookahead.update(context)

                    for production, rule in rules:
                        todo.append((Configuration.from_rule(config_next, rule, production), lookahead))

        return ItemSet(closure)

    def gen_all_sets(self):
        """Generate all of the configuration sets for the grammar.

        In LR1 parsers, we must remember to set the lookahead of the start
        symbol to the end marker.
        """
        seeds = ItemSet(
            {
                Configuration.from_rule(self.start_symbol, rule, production): {self.end_symbol}
                for production, rule in self.grammar[self.start_symbol]
            }
        )
        return self.gen_sets(seeds)

    def gen_table(self) -> ParseTable:
        """Generate the parse table.

        The parse table is a list of states. The first state in the list is
        the starting state. Each state maps terminals to actions (shift,
        reduce, accept, or a split between several of those) and nonterminals
        to the state to go to after a reduction produces them.

        Anything missing from the row indicates an error.
        """
        config_sets = self.gen_all_sets()
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("States:\n%s", config_sets.dump_state(self.alphabet))

        builder = TableBuilder(
            self.alphabet,
            self.productions,
            self.transparents,
            self.origins,
            self.conflicts,
            self._firsts,
        )

        for config_set_id, config_set in enumerate(config_sets.closures):
            builder.new_row(config_set)
            successors = config_sets.successors[config_set_id]

            for config, lookahead in config_set.items.items():
                config_next = config.next
                if config_next is None:
                    if config.name != self.start_symbol:
                        for a in sorted(lookahead):
                            builder.set_table_reduce(a, config)
                    else:
                        builder.set_table_accept(self.end_symbol, config)

                elif self.terminal[config_next]:
                    index = successors[config_next]
                    builder.set_table_shift(config_next, index, config)

            for symbol, index in successors.items():
                if self.nonterminal[symbol]:
                    builder.set_table_goto(symbol, index)

        table = builder.flush(config_sets)
        self.unused_conflicts = builder.unused_conflicts()
        logger.info("Generated %d parser states", len(table.actions))
        return table
