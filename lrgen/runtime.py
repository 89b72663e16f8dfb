"""A reference parser for compiled grammars.

This is a GLR driver over the tables that `compile_grammar` produces. Most
of the time there is exactly one parse stack and it runs like any other LR
parser; when the table has a `Split` the stack forks, and the branches run
side by side until they die, merge or accept. Branches that end up in the
same states after shifting a token are merged, keeping the one with the
higher dynamic precedence.

Tokens are lexed lazily, one at a time, so the lexer can ask the parser what
it expects: the external scanner is only called when the current states
accept an external token, and an extra (like a comment) is only skipped if
the parser doesn't want it as a real token right here.

Syntax errors are recovered from with CPCT+: we look for the cheapest
series of token insertions and deletions that lets the parse continue.
Tokens that were inserted are zero characters wide in the tree.
"""

import bisect
import collections
import enum
import logging
import re
import typing
from dataclasses import dataclass, replace

from .compiler import CompiledGrammar
from .errors import TokenError
from .lexer import LexerTable, Terminal
from .tables import END_SYMBOL, Accept, Error, ParseTable, Reduce, Shift, Split

ERROR_SYMBOL = "ERROR"


@dataclass
class TokenValue:
    kind: str
    start: int
    end: int
    pre_trivia: list["TokenValue"]
    post_trivia: list["TokenValue"]


@dataclass
class Tree:
    name: str | None
    start: int
    end: int
    children: typing.Tuple["Tree | TokenValue", ...]
    # The field name of each child, or empty if no child has one.
    field_names: typing.Tuple[str | None, ...] = ()

    def child_by_field_name(self, field: str) -> "Tree | TokenValue | None":
        for child, name in zip(self.children, self.field_names):
            if name == field:
                return child
        return None

    def children_by_field_name(self, field: str) -> list["Tree | TokenValue"]:
        return [child for child, name in zip(self.children, self.field_names) if name == field]

    def sexp(self, source: str | None = None) -> str:
        """Render the tree as an s-expression. Tokens are shown as their text
        if the source is provided, otherwise (and when they are zero-width,
        because error recovery made them up) as their kind.
        """

        def format_node(node: Tree | TokenValue) -> str:
            match node:
                case Tree(name=name, children=children):
                    parts = [name or "???"] + [format_node(child) for child in children]
                    return "(" + " ".join(parts) + ")"

                case TokenValue(kind=kind, start=start, end=end):
                    if source is None or start == end:
                        return kind
                    return source[start:end]

        return format_node(self)

    def format_lines(self, source: str | None = None, *, ignore_error: bool = False) -> list[str]:
        lines = []

        def format_node(node: Tree | TokenValue, indent: int, field: str | None):
            prefix = (" " * indent) + (f"{field}: " if field is not None else "")
            match node:
                case Tree(name=name, start=start, end=end, children=children):
                    if ignore_error and start == end:
                        return

                    lines.append(prefix + f"{name or '???'} [{start}, {end})")
                    field_names = node.field_names or (None,) * len(children)
                    for child, child_field in zip(children, field_names):
                        format_node(child, indent + 2, child_field)

                case TokenValue(kind=kind, start=start, end=end):
                    if ignore_error and start == end:
                        return

                    if source is not None:
                        value = f":'{source[start:end]}'"
                    else:
                        value = ""
                    lines.append(prefix + f"{kind}{value} [{start}, {end})")

        format_node(self, 0, None)
        return lines

    def format(self, source: str | None = None, *, ignore_error: bool = False) -> str:
        return "\n".join(self.format_lines(source, ignore_error=ignore_error))


@dataclass
class ParseError:
    message: str
    start: int
    end: int


class ExternalToken(typing.NamedTuple):
    """What an external scanner found: the name of the external token and
    how many characters it covers.
    """

    name: str
    length: int


class ExternalScanner(typing.Protocol):
    def scan(self, text: str, position: int, valid: frozenset[str]) -> ExternalToken | None:
        """Try to match one of the `valid` external tokens at `position`.
        Return None to let the ordinary lexer have a go instead.

        The token can be empty, and `position` can be the end of the text.
        """
        ...


@typing.runtime_checkable
class StatefulScanner(ExternalScanner, typing.Protocol):
    """A scanner that keeps state between tokens (say, a stack of indents)
    and can save and restore it. The state is restored whenever a scan
    produces no token, and an empty token is only accepted again at the same
    place if the scanner's state has changed since the last one.
    """

    def serialize(self) -> bytes: ...

    def deserialize(self, state: bytes): ...


###############################################################################
# Lexing
###############################################################################
def longest_match(table: LexerTable, text: str, start: int) -> tuple[Terminal, int] | None:
    """Run the lexer DFA from `start`, returning the terminal of the longest
    match and its length, or None if nothing matches at all.
    """
    pos = start
    state: int | None = 0
    last_accept = None
    last_accept_pos = start

    while state is not None:
        accept, edges = table[state]
        if accept is not None:
            last_accept = accept
            last_accept_pos = pos

        if pos >= len(text):
            break

        char = ord(text[pos])

        # Find the index of the span where the upper value is the tightest
        # bound on the character.
        state = None
        index = bisect.bisect_right(edges, char, key=lambda x: x[0].upper)
        if index < len(edges):
            span, target = edges[index]
            if char >= span.lower:
                state = target
                pos += 1

    if last_accept is None:
        return None
    return (last_accept, last_accept_pos - start)


def generic_tokenize(src: str, table: LexerTable) -> typing.Iterable[tuple[Terminal, int, int]]:
    """Break the whole source into tokens, without a parser to guide the
    lexer. Yields (terminal, start, length) and raises TokenError if some
    part of the input can't be lexed.
    """
    pos = 0
    while pos < len(src):
        match = longest_match(table, src, pos)
        if match is None:
            raise TokenError(f"Token error at {pos}", pos)

        terminal, length = match
        yield (terminal, pos, length)
        pos += length


def dump_tokens(src: str, table: LexerTable) -> list[str]:
    """One line per token: offset, line, column, kind and text."""
    tokens = list(generic_tokenize(src, table))
    lines_at = [m.start() for m in re.finditer("\n", src)]

    max_terminal_name = max(
        (len(terminal.name) for terminal, _ in table if terminal is not None),
        default=0,
    )
    max_offset_len = len(str(len(src)))

    prev_line = None
    lines = []
    for kind, start, length in tokens:
        line_index = bisect.bisect_left(lines_at, start)
        if line_index == 0:
            col_start = 0
        else:
            col_start = lines_at[line_index - 1] + 1
        column_index = start - col_start
        value = src[start : start + length]

        line_number = line_index + 1
        if line_number != prev_line:
            line_part = f"{line_number:4}"
            prev_line = line_number
        else:
            line_part = "   |"

        line = f"{start:{max_offset_len}} {line_part} {column_index:3} {kind.name:{max_terminal_name}} {repr(value)}"
        lines.append(line)
    return lines


class TokenBuffer:
    """The tokens of the input, lexed on demand.

    `get(index, valid, states)` returns the token at `index`, lexing it if
    this is the first time anyone asked. `valid` is the set of terminals the
    parser can accept there; it decides whether the external scanner is
    consulted and whether an extra is delivered as a token or skipped as
    trivia. `states` are the parser states asking, which is how we notice a
    scanner that keeps producing the same empty token without the parse
    moving on.
    Trivia is attached to the tokens on either side of it, the same list
    shared as the `post_trivia` of one and the `pre_trivia` of the next.
    """

    text: str
    lexer: LexerTable
    extras: set[str]
    externals: set[str]
    scanner: ExternalScanner | None

    def __init__(
        self,
        text: str,
        lexer: LexerTable,
        extras: set[str],
        externals: typing.Iterable[str],
        scanner: ExternalScanner | None = None,
    ):
        self.text = text
        self.lexer = lexer
        self.extras = extras
        self.externals = set(externals)
        self.scanner = scanner

        self.tokens: list[TokenValue] = []
        self.position = 0
        self.trivia: list[TokenValue] = []
        # The empty external tokens produced at `self.position`, with the
        # parser states and scanner state they were produced in.
        self.empty_tokens: set[tuple[str, frozenset[int], bytes | None]] = set()
        self.lines = [m.start() for m in re.finditer("\n", text)]

    def get(
        self,
        index: int,
        valid: typing.Collection[str],
        states: typing.Collection[int] = (),
    ) -> TokenValue:
        while len(self.tokens) <= index:
            if len(self.tokens) > 0 and self.tokens[-1].kind == END_SYMBOL:
                return self.tokens[-1]
            self.tokens.append(self.lex(valid, frozenset(states)))
        return self.tokens[index]

    def insert(self, index: int, token: TokenValue):
        self.tokens.insert(index, token)

    def delete(self, index: int):
        del self.tokens[index]

    def scan(self, position: int, valid: frozenset[str], states: frozenset[int]) -> ExternalToken | None:
        assert self.scanner is not None
        saved = None
        if isinstance(self.scanner, StatefulScanner):
            saved = self.scanner.serialize()

        result = self.scanner.scan(self.text, position, valid)
        if result is not None:
            if result.name not in self.externals:
                raise TokenError(f"The scanner returned '{result.name}', which is not an external token", position)
            if result.name not in valid:
                raise TokenError(f"The scanner returned '{result.name}', which is not valid here", position)
            if result.length < 0 or position + result.length > len(self.text):
                raise TokenError(f"The scanner returned '{result.name}' with a bad length {result.length}", position)

            if result.length == 0:
                # The same empty token, for the same parser states, with the
                # scanner in the same state, would go around forever.
                key = (result.name, states, saved)
                if key in self.empty_tokens:
                    result = None
                else:
                    self.empty_tokens.add(key)

        if result is None and isinstance(self.scanner, StatefulScanner):
            assert saved is not None
            self.scanner.deserialize(saved)
        return result

    def emit(self, kind: str, start: int, end: int) -> TokenValue:
        prev_trivia = self.trivia
        self.trivia = []
        if end > self.position:
            self.empty_tokens = set()
        self.position = end
        return TokenValue(
            kind=kind,
            start=start,
            end=end,
            pre_trivia=prev_trivia,
            post_trivia=self.trivia,
        )

    def lex(self, valid: typing.Collection[str], states: frozenset[int] = frozenset()) -> TokenValue:
        valid_externals = frozenset(e for e in self.externals if e in valid)
        while True:
            pos = self.position
            # The scanner gets a look at the end of the input too; layout
            # rules close their blocks there.
            if self.scanner is not None and len(valid_externals) > 0:
                external = self.scan(pos, valid_externals, states)
                if external is not None:
                    return self.emit(external.name, pos, pos + external.length)

            if pos >= len(self.text):
                return self.emit(END_SYMBOL, pos, pos)

            match = longest_match(self.lexer, self.text, pos)
            if match is None:
                # Nothing matches here; hand the parser one character it
                # can't use, and let error recovery throw it away.
                return self.emit(ERROR_SYMBOL, pos, pos + 1)

            terminal, length = match
            if terminal.name in self.extras and terminal.name not in valid:
                self.trivia.append(
                    TokenValue(
                        kind=terminal.name,
                        start=pos,
                        end=pos + length,
                        pre_trivia=[],
                        post_trivia=[],
                    )
                )
                self.position = pos + length
                self.empty_tokens = set()
                continue

            return self.emit(terminal.name, pos, pos + length)


###############################################################################
# Error recovery
###############################################################################
recover_log = logging.getLogger("lrgen.runtime.recovery")


class StackNode(typing.NamedTuple):
    """A parse stack, as a linked list so that branches can share it."""

    state: int
    value: "TokenValue | Tree | None"
    parent: "StackNode | None"

    def states(self) -> tuple[int, ...]:
        result = []
        node: StackNode | None = self
        while node is not None:
            result.append(node.state)
            node = node.parent
        return tuple(result)


class RepairAction(enum.Enum):
    Base = "bas"
    Insert = "ins"
    Delete = "del"
    Shift = "sft"


class RepairStack(typing.NamedTuple):
    state: int
    parent: "RepairStack | None"

    @classmethod
    def from_stack(cls, stack: StackNode) -> "RepairStack":
        result: RepairStack | None = None
        for state in reversed(stack.states()):
            result = RepairStack(state=state, parent=result)

        assert result is not None
        return result

    def pop(self, n: int) -> "RepairStack":
        s = self
        while n > 0:
            s = s.parent
            n -= 1
            assert s is not None, "Stack underflow"

        return s

    def flatten(self) -> list[int]:
        stack = self
        result: list[int] = []
        while stack is not None:
            result.append(stack.state)
            stack = stack.parent
        return result

    def push(self, state: int) -> "RepairStack":
        return RepairStack(state, self)

    def handle_token(
        self, table: ParseTable, token: str
    ) -> typing.Tuple["RepairStack | None", bool, list[str]]:
        """Pretend we received this token during a repair.

        This is *incredibly* annoying: basically another implementation of the
        shift/reduce machine. We need to do this in order to simulate the effect
        of receiving a token of the given type, so that we know what state the
        world will be in if we (hypothetically) take a given action. Where the
        table splits, the repair only follows the first alternative.

        Returns the new stack, a boolean indicating whether or not this marks
        a successful parse, and a list of reductions we made.
        """
        rl = recover_log

        reductions = []
        stack = self
        while True:
            action = table.actions[stack.state].get(token)
            if action is None:
                return None, False, reductions

            if isinstance(action, Split):
                action = action.actions[0]

            match action:
                case Shift():
                    rl.debug(f"{stack.state}: SHIFT -> {action.state}")
                    return stack.push(action.state), False, reductions

                case Accept():
                    rl.debug(f"{stack.state}: ACCEPT")
                    return stack, True, reductions

                case Reduce():
                    if not action.transparent:
                        reductions.append(action.name)
                    rl.debug(f"{stack.state}: REDUCE {action.name} {action.count} ")
                    new_stack = stack.pop(action.count)
                    rl.debug(f"               -> {new_stack.state}")
                    new_state = table.gotos[new_stack.state][action.name]
                    rl.debug(f"               goto {new_state}")
                    stack = new_stack.push(new_state)

                case Error():
                    assert False, "Explicit error found in repair"

                case _:
                    typing.assert_never(action)


class Repair:
    repair: RepairAction
    cost: int
    stack: RepairStack
    value: str | None
    parent: "Repair | None"
    advance: int
    success: bool
    reductions: list[str]

    def __init__(
        self, repair, cost, stack, parent, advance=0, value=None, success=False, reductions=None
    ):
        self.repair = repair
        self.cost = cost
        self.stack = stack
        self.parent = parent
        self.value = value
        self.success = success
        self.advance = advance
        self.reductions = reductions if reductions is not None else []

        if parent is not None:
            self.cost += parent.cost
            self.advance += parent.advance

        if self.advance >= 3:
            self.success = True

    def __repr__(self):
        valstr = f"({self.value})" if self.value is not None else ""
        return f"<Repair {self.repair.value}{valstr} cost:{self.cost} advance:{self.advance}>"

    def neighbors(
        self,
        table: ParseTable,
        input: TokenBuffer,
        start: int,
    ) -> typing.Iterable["Repair"]:
        """Generate all the possible next repairs from this one."""
        input_index = start + self.advance
        state = self.stack.state
        current_token = input.get(input_index, table.expected(state), (state,)).kind

        rl = recover_log
        if rl.isEnabledFor(logging.DEBUG):
            valstr = f"({self.value})" if self.value is not None else ""
            rl.debug(f"{self.repair.value}{valstr} @ {self.cost} input:{input_index}")
            rl.debug(f"  {','.join(str(s) for s in self.stack.flatten())}")

        # Consuming the current token, or making up a new one and consuming
        # that: either way, run the shift-reduce machine to find out what the
        # stack looks like afterwards. An insert leaves the input alone; a
        # shift advances it.
        for token in table.actions[state].keys():
            rl.debug(f"  token: {token}")
            new_stack, success, reductions = self.stack.handle_token(table, token)
            if new_stack is None:
                # State merging can leave reduce actions that lead to errors;
                # that isn't a bug, there's just nothing to do here.
                continue

            if token == current_token:
                rl.debug(f"  generate shift {token}")
                yield Repair(
                    repair=RepairAction.Shift,
                    parent=self,
                    stack=new_stack,
                    cost=0,  # Shifts are free.
                    advance=1,  # Move forward by one.
                    success=success,
                    reductions=reductions,
                )

            # Never generate an insert for EOF, that might cause us to cut
            # off large parts of the tree!
            if token != END_SYMBOL:
                rl.debug(f"  generate insert {token}")
                yield Repair(
                    repair=RepairAction.Insert,
                    value=token,
                    parent=self,
                    stack=new_stack,
                    cost=1,
                    success=success,
                    reductions=reductions,
                )

        # A delete advances the input without touching the stack. Only
        # delete-insert pairs are generated, never insert-delete: they are
        # symmetrical, and trying both is a waste of time and memory.
        if self.repair != RepairAction.Insert and current_token != END_SYMBOL:
            rl.debug("  generate delete")
            yield Repair(
                repair=RepairAction.Delete,
                parent=self,
                stack=self.stack,
                cost=2,
                advance=1,
            )


def recover(table: ParseTable, input: TokenBuffer, start: int, stack: StackNode) -> list[Repair] | None:
    """An implementation of CPCT+ for automated error recovery.

    Given a current parse state, attempt to produce a series of modifications to
    the token stream such that the parse will continue successfully.
    """
    rl = recover_log
    initial = Repair(
        repair=RepairAction.Base,
        cost=0,
        stack=RepairStack.from_stack(stack),
        parent=None,
    )

    todo_queue = [[initial]]
    level = 0
    while level < len(todo_queue):
        queue_index = 0
        queue = todo_queue[level]
        while queue_index < len(queue):
            repair = queue[queue_index]

            if repair.success:
                # Every repair on this level costs the same, and every repair
                # on a later level costs more, so the first success we find
                # is one of the cheapest. Take it.
                repairs: list[Repair] = []
                r: Repair | None = repair
                while r is not None:
                    repairs.append(r)
                    r = r.parent
                repairs.reverse()
                if rl.isEnabledFor(logging.INFO):
                    rl.info("Recovered with actions:")
                    for r in repairs:
                        rl.info(" " + repr(r))
                return repairs

            # A neighbor can land on the same level as its parent, so keep
            # appending to the current queue while walking it.
            for neighbor in repair.neighbors(table, input, start):
                for _ in range((neighbor.cost - len(todo_queue)) + 1):
                    todo_queue.append([])
                todo_queue[neighbor.cost].append(neighbor)

            queue_index += 1
        level += 1

    return None


###############################################################################
# Parsing
###############################################################################
action_log = logging.getLogger("lrgen.runtime.action")


@dataclass
class Branch:
    """One of the parses in flight."""

    stack: StackNode
    dynamic: int = 0
    # Offsets where this branch absorbed an equally good alternative.
    ambiguities: typing.Tuple[int, ...] = ()


def _alias(value: "Tree | TokenValue", alias: str) -> "Tree | TokenValue":
    if isinstance(value, TokenValue):
        return replace(value, kind=alias)
    return replace(value, name=alias)


class Parser:
    table: ParseTable
    lexer: LexerTable
    scanner: ExternalScanner | None

    def __init__(self, compiled: CompiledGrammar, scanner: ExternalScanner | None = None):
        self.table = compiled.parse_table
        self.lexer = compiled.lexer_table
        self.scanner = scanner

    def reduce(self, branch: Branch, action: Reduce, token: TokenValue) -> Branch:
        """Pop the children off the branch's stack, make a new tree node out
        of them and push it.
        """
        values: list[Tree | TokenValue] = []
        node = branch.stack
        for _ in range(action.count):
            assert node.parent is not None and node.value is not None
            values.append(node.value)
            node = node.parent
        values.reverse()

        children: list[Tree | TokenValue] = []
        fields: list[str | None] = []
        for index, value in enumerate(values):
            field = action.fields[index] if len(action.fields) > 0 else None
            alias = action.aliases[index] if len(action.aliases) > 0 else None
            if alias is not None:
                value = _alias(value, alias)

            if isinstance(value, Tree) and value.name is None:
                # Transparent: splice the children in, and the field we have
                # here applies to any of them that doesn't have its own.
                children.extend(value.children)
                inner = value.field_names or (None,) * len(value.children)
                fields.extend(f if f is not None else field for f in inner)
            else:
                children.append(value)
                fields.append(field)

        if len(children) > 0:
            start = children[0].start
            end = children[-1].end
        else:
            start = end = token.start

        tree = Tree(
            name=action.name if not action.transparent else None,
            start=start,
            end=end,
            children=tuple(children),
            field_names=tuple(fields) if any(f is not None for f in fields) else (),
        )

        goto = self.table.gotos[node.state].get(action.name)
        assert goto is not None
        return Branch(
            stack=StackNode(goto, tree, node),
            dynamic=branch.dynamic + action.dynamic,
            ambiguities=branch.ambiguities,
        )

    def parse(self, text: str) -> typing.Tuple[Tree | None, list[str]]:
        """Parse text into a tree, returning both the root of the tree (if
        any could be found) and a list of errors that were encountered during
        the parse.

        This parse method does automated error recovery. Tree nodes that were
        generated as a result of error recovery will be noticeable because they
        will be zero characters wide (so are empty external tokens, though).
        """
        input = TokenBuffer(
            text,
            self.lexer,
            self.table.extras,
            self.table.externals,
            self.scanner,
        )
        input_index = 0

        branches = [Branch(StackNode(0, None, None))]
        result: Tree | None = None
        errors: list[ParseError] = []

        al = action_log
        while True:
            valid: set[str] = set()
            for branch in branches:
                valid.update(self.table.expected(branch.stack.state))
            current_token = input.get(input_index, valid, [b.stack.state for b in branches])

            # Run every branch up to the point where it shifts, accepts or
            # fails on the current token.
            queue = collections.deque(branches)
            shifts: list[tuple[Branch, int]] = []
            accepted: list[Branch] = []
            failed: list[Branch] = []
            while len(queue) > 0:
                branch = queue.popleft()
                state = branch.stack.state
                action = self.table.actions[state].get(current_token.kind, Error())
                if al.isEnabledFor(logging.INFO):
                    al.info(
                        "{stack: <30} {input: <15} {action: <5}".format(
                            stack=repr(list(reversed(branch.stack.states()[:5]))),
                            input=current_token.kind,
                            action=repr(action),
                        )
                    )

                alternatives = action.actions if isinstance(action, Split) else (action,)
                for alternative in alternatives:
                    match alternative:
                        case Shift(state=target):
                            shifts.append((branch, target))
                        case Reduce():
                            queue.append(self.reduce(branch, alternative, current_token))
                        case Accept():
                            accepted.append(branch)
                        case Error():
                            failed.append(branch)
                        case _:
                            typing.assert_never(alternative)

            if len(accepted) > 0:
                best = self.choose(accepted, current_token.start)
                value = best.stack.value
                assert isinstance(value, Tree)
                result = value
                for offset in best.ambiguities:
                    errors.append(ParseError("Ambiguous parse", offset, offset))
                break

            if len(shifts) > 0:
                merged: dict[tuple[int, ...], list[Branch]] = {}
                for branch, target in shifts:
                    shifted = replace(branch, stack=StackNode(target, current_token, branch.stack))
                    merged.setdefault(shifted.stack.states(), []).append(shifted)
                branches = [self.choose(group, current_token.start) for group in merged.values()]
                input_index += 1
                continue

            # Every branch failed. Carry on with the most promising one, and
            # try to repair the input to suit it.
            branch = max(failed, key=lambda b: b.dynamic)
            branches = [branch]

            if current_token.kind == END_SYMBOL:
                error_message = "end of file"
            else:
                error_message = f"{current_token.kind}"
            error_message = "Syntax Error: Unexpected " + error_message

            repairs = recover(self.table, input, input_index, branch.stack)

            # Without a repair sequence it's hard to know what we were trying
            # to do, so give up with a basic message.
            if repairs is None:
                expected = sorted(
                    self.table.error_names.get(t, t) for t in self.table.expected(branch.stack.state)
                )
                if len(expected) > 0:
                    error_message = f"{error_message}, expected one of {', '.join(expected)}"
                errors.append(
                    ParseError(
                        message=error_message,
                        start=current_token.start,
                        end=current_token.end,
                    )
                )
                break

            # Patch the token stream with the repairs, and use them to guide
            # the error message: they're our guess about what we were in the
            # middle of when things went wrong.
            cursor = input_index
            token_message = None
            production_message = None
            for repair in repairs:
                if production_message is None and len(repair.reductions) > 0:
                    production_message = f"while parsing {repair.reductions[-1]}"

                match repair.repair:
                    case RepairAction.Base:
                        pass

                    case RepairAction.Insert:
                        assert repair.value is not None
                        pos = input.get(cursor, ()).start
                        input.insert(
                            cursor,
                            TokenValue(
                                kind=repair.value,
                                start=pos,
                                end=pos,
                                pre_trivia=[],
                                post_trivia=[],
                            ),
                        )
                        cursor += 1

                        if token_message is None:
                            token_message = f"(Did you forget {repair.value}?)"

                    case RepairAction.Delete:
                        input.delete(cursor)

                    case RepairAction.Shift:
                        cursor += 1

                    case _:
                        typing.assert_never(repair.repair)

            if production_message is not None:
                error_message = f"{error_message} {production_message}"
            if token_message is not None:
                error_message = f"{error_message}. {token_message}"
            errors.append(
                ParseError(
                    message=error_message,
                    start=current_token.start,
                    end=current_token.end,
                )
            )

        return (result, self.format_errors(input, errors))

    def choose(self, branches: list[Branch], offset: int) -> Branch:
        """Pick the branch with the highest dynamic precedence. If there's a
        tie the first one wins, but it remembers that it was ambiguous here.
        """
        best = branches[0]
        tied = False
        for branch in branches[1:]:
            if branch.dynamic > best.dynamic:
                best = branch
                tied = False
            elif branch.dynamic == best.dynamic:
                tied = True

        if tied and offset not in best.ambiguities:
            best = replace(best, ambiguities=best.ambiguities + (offset,))
        return best

    def format_errors(self, input: TokenBuffer, errors: list[ParseError]) -> list[str]:
        error_strings = []
        lines = input.lines
        for parse_error in errors:
            line_index = bisect.bisect_left(lines, parse_error.start)
            if line_index == 0:
                col_start = 0
            else:
                col_start = lines[line_index - 1] + 1
            column_index = parse_error.start - col_start
            line_index += 1

            error_strings.append(f"{line_index}:{column_index}: {parse_error.message}")
        return error_strings


def parse(
    compiled: CompiledGrammar,
    text: str,
    scanner: ExternalScanner | None = None,
) -> typing.Tuple[Tree | None, list[str]]:
    """Parse the provided text with a compiled grammar."""
    return Parser(compiled, scanner).parse(text)
