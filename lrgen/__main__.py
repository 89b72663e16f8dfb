"""Command line interface: compile a grammar, or use it to tokenize or parse
a file.

The grammar is either a tree-sitter `grammar.json`, or a Python grammar named
as `module:attribute` or `path/to/file.py:attribute`. The attribute can be a
Grammar or a function that returns one; if it's left off, the module is
searched for the one Grammar it defines.
"""

import argparse
import importlib
import importlib.util
import logging
import pathlib
import sys
import typing

from .errors import GrammarError, TokenError
from .grammar import Grammar
from .lexer import format_lexer_table
from .runtime import dump_tokens, parse
from .tree_sitter import load_grammar_json


def _load_module(spec: str):
    if spec.endswith(".py"):
        path = pathlib.Path(spec)
        module_spec = importlib.util.spec_from_file_location(path.stem, path)
        if module_spec is None or module_spec.loader is None:
            raise GrammarError(f"{spec} does not seem to be a module")
        module = importlib.util.module_from_spec(module_spec)
        module_spec.loader.exec_module(module)
        return module
    return importlib.import_module(spec)


def load_grammar(source: str) -> Grammar:
    """Load a grammar from a grammar.json path or a Python module."""
    if source.endswith(".json"):
        return load_grammar_json(pathlib.Path(source))

    module_name, _, member_name = source.rpartition(":")
    if module_name == "" or member_name.endswith(".py"):
        module_name, member_name = source, ""

    module = _load_module(module_name)
    if member_name == "":
        grammars = [v for v in vars(module).values() if isinstance(v, Grammar)]
        if len(grammars) != 1:
            raise GrammarError(f"{len(grammars)} grammars found in {module_name}, name the one you want")
        return grammars[0]

    value = getattr(module, member_name, None)
    if value is None:
        raise GrammarError(f"Cannot find {member_name} in {module_name}")
    if callable(value) and not isinstance(value, Grammar):
        value = value()
    if not isinstance(value, Grammar):
        raise GrammarError(f"{member_name} in {module_name} is not a Grammar")
    return value


def cmd_compile(args: argparse.Namespace) -> int:
    grammar = load_grammar(args.grammar)
    compiled = grammar.compile()
    for warning in compiled.warnings:
        print(f"warning: {warning}", file=sys.stderr)

    if args.table:
        print(compiled.parse_table.format())
    if args.lexer_dot is not None:
        pathlib.Path(args.lexer_dot).write_text(format_lexer_table(compiled.lexer_table), encoding="utf-8")

    output = compiled.dumps()
    if args.output is None:
        if not args.table:
            print(output)
    else:
        pathlib.Path(args.output).write_text(output + "\n", encoding="utf-8")
    return 0


def cmd_tokenize(args: argparse.Namespace) -> int:
    grammar = load_grammar(args.grammar)
    source = pathlib.Path(args.source).read_text(encoding="utf-8")
    for line in dump_tokens(source, grammar.compile_lexer()):
        print(line)
    return 0


def cmd_parse(args: argparse.Namespace) -> int:
    grammar = load_grammar(args.grammar)
    source = pathlib.Path(args.source).read_text(encoding="utf-8")
    tree, errors = parse(grammar.compile(), source)
    if tree is not None:
        if args.sexp:
            print(tree.sexp(source))
        else:
            print(tree.format(source))
    for error in errors:
        print(f"{args.source}:{error}", file=sys.stderr)
    return 1 if len(errors) > 0 else 0


def main(argv: typing.Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="lrgen", description="Compile tree-sitter style grammars")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log more. Once for progress, twice for everything the compiler does.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    compile_parser = subparsers.add_parser("compile", help="Compile a grammar to JSON tables")
    compile_parser.add_argument("grammar", help="A grammar.json file, or module:attribute")
    compile_parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Where to write the compiled grammar. The default is standard output.",
    )
    compile_parser.add_argument(
        "--lexer-dot",
        default=None,
        help="Also write the lexer automaton, as a graphviz file, to this path.",
    )
    compile_parser.add_argument(
        "--table",
        action="store_true",
        help="Print the parse table in a human readable form.",
    )
    compile_parser.set_defaults(func=cmd_compile)

    tokenize_parser = subparsers.add_parser("tokenize", help="Break a file into tokens")
    tokenize_parser.add_argument("grammar", help="A grammar.json file, or module:attribute")
    tokenize_parser.add_argument("source", help="The file to tokenize")
    tokenize_parser.set_defaults(func=cmd_tokenize)

    parse_parser = subparsers.add_parser("parse", help="Parse a file and print the tree")
    parse_parser.add_argument("grammar", help="A grammar.json file, or module:attribute")
    parse_parser.add_argument("source", help="The file to parse")
    parse_parser.add_argument("--sexp", action="store_true", help="Print the tree as an s-expression.")
    parse_parser.set_defaults(func=cmd_parse)

    parsed = parser.parse_args(argv)

    if parsed.verbose >= 2:
        level = logging.DEBUG
    elif parsed.verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(name)s: %(message)s")

    try:
        return parsed.func(parsed)
    except (GrammarError, TokenError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
