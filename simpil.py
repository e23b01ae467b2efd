"""simpIL entry point and prompt wiring."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from diagnostics import DiagnosticLog
from hooks import HookRegistry, trace_printer
from interpreter import (
    ARITHMETIC_CHECKED,
    ARITHMETIC_MODES,
    ASSERTION_EXIT_CODE,
    AssertionFailedSignal,
    ExitSignal,
    Interpreter,
    SimpILRuntimeError,
    TracebackFormatter,
    parse_source,
)
from lexer import SimpILParseError
from parser import describe


EXIT_OK = 0
EXIT_ERROR = 1


def _print_results(results: List[int]) -> None:
    for value in results:
        print(value)


def _report_assertion(sig: AssertionFailedSignal) -> None:
    where = f" at line {sig.location.line}" if sig.location else ""
    print(f"AssertionFailed: assert evaluated to {sig.value}{where}", file=sys.stderr)


def run_source(
    source_text: str,
    filename: str,
    args: argparse.Namespace,
    *,
    input_sources: Optional[dict] = None,
) -> int:
    diagnostics = DiagnosticLog(filename=filename, echo=True)
    try:
        program = parse_source(source_text, filename, diagnostics=diagnostics)
    except SimpILParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return EXIT_ERROR

    if args.dump_ast:
        for index, statement in enumerate(program.statements):
            print(f"{index}: {describe(statement)}", file=sys.stderr)

    if program.errors and not args.keep_going:
        print(
            f"{len(program.errors)} statement(s) failed to parse; not running (use --keep-going)",
            file=sys.stderr,
        )
        return EXIT_ERROR

    hooks = HookRegistry()
    if args.trace:
        hooks.on_event("after_statement", trace_printer(lambda line: print(line, file=sys.stderr)), owner="trace")

    interpreter = Interpreter(
        program.statements,
        filename=filename,
        verbose=args.verbose,
        arithmetic=args.arithmetic,
        input_sources=input_sources,
        hooks=hooks,
        max_steps=args.max_steps,
    )
    try:
        results = interpreter.run()
    except AssertionFailedSignal as sig:
        if not args.quiet:
            _print_results(sig.results)
        _report_assertion(sig)
        return sig.code
    except ExitSignal as sig:
        return sig.code
    except SimpILRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return EXIT_ERROR
    if not args.quiet:
        _print_results(results)
    return EXIT_OK


def run_repl(args: argparse.Namespace) -> int:
    print("\x1b[38;2;153;221;255msimpIL\033[0m prompt. Each line runs as its own program.")
    # get_input reads a single line here instead of waiting for end of input.
    input_sources = {"stdin": lambda: input("input> ")}
    while True:
        try:
            line = input("\x1b[38;2;153;221;255m>\033[0m ")
        except EOFError:
            print()
            break
        if line.strip() == "":
            continue
        code = run_source(line, "<stdin>", args, input_sources=input_sources)
        if code == ASSERTION_EXIT_CODE:
            # An assertion failure stops the whole session.
            return code
    return EXIT_OK


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="simpIL reference interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Record vars and registers in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--arithmetic", choices=ARITHMETIC_MODES, default=ARITHMETIC_CHECKED, help="Overflow behaviour for + - *")
    parser.add_argument("--max-steps", type=int, default=None, help="Abort after this many executed statements")
    parser.add_argument("--trace", action="store_true", help="Print every executed statement to stderr")
    parser.add_argument("--dump-ast", action="store_true", help="Print parsed statements to stderr before running")
    parser.add_argument("--keep-going", action="store_true", help="Run even if some statements failed to parse")
    parser.add_argument("-q", "--quiet", action="store_true", help="Do not print per-statement results")
    return parser


def run_cli(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return EXIT_ERROR
        return run_repl(args)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8", errors="replace") as handle:
                # Undecodable bytes become U+FFFD, which the lexer reports and skips.
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return EXIT_ERROR

    return run_source(source_text, filename, args)


if __name__ == "__main__":
    raise SystemExit(run_cli())
