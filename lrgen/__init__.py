"""A compiler for tree-sitter style grammars.

Write the grammar with the combinators here (or load a tree-sitter
`grammar.json`), then compile it into LR(1) parse tables, a lexer automaton,
and a description of the trees it makes.
"""

from .compiler import CompiledGrammar, NodeType, compile_grammar
from .errors import (
    AmbiguousTokenError,
    GrammarError,
    InlineCycleError,
    NonTerminatingRecursionError,
    TokenError,
    UndefinedRuleError,
    UnresolvedConflictError,
)
from .grammar import Grammar
from .lexer import Re, Terminal
from .rules import (
    Assoc,
    Rule,
    alias,
    alt,
    blank,
    choice,
    field,
    one_or_more,
    opt,
    optional,
    pattern,
    prec,
    repeat,
    repeat1,
    seq,
    sym,
    token,
    zero_or_more,
)
from .runtime import ExternalScanner, ExternalToken, StatefulScanner, Tree, TokenValue, parse
from .tree_sitter import dump_grammar_json, load_grammar_json

__all__ = [
    "AmbiguousTokenError",
    "Assoc",
    "CompiledGrammar",
    "ExternalScanner",
    "ExternalToken",
    "Grammar",
    "GrammarError",
    "InlineCycleError",
    "NodeType",
    "NonTerminatingRecursionError",
    "Re",
    "Rule",
    "StatefulScanner",
    "Terminal",
    "TokenError",
    "TokenValue",
    "Tree",
    "UndefinedRuleError",
    "UnresolvedConflictError",
    "alias",
    "alt",
    "blank",
    "choice",
    "compile_grammar",
    "dump_grammar_json",
    "field",
    "load_grammar_json",
    "one_or_more",
    "opt",
    "optional",
    "parse",
    "pattern",
    "prec",
    "repeat",
    "repeat1",
    "seq",
    "sym",
    "token",
    "zero_or_more",
]
