from __future__ import annotations
import json
import sys
import numpy as np
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from diagnostics import DiagnosticLog
from hooks import HookRegistry, StepContext
from lexer import SimpILError, U32_MAX, Lexer
from parser import (
    Assert,
    Assignment,
    Binary,
    Expression,
    GetInput,
    Goto,
    IfThenElse,
    Load,
    ParseError,
    Parser,
    Program,
    SourceLocation,
    Statement,
    Store,
    Unary,
    Val,
    Var,
)


ARITHMETIC_CHECKED = "checked"
ARITHMETIC_WRAP = "wrap"
ARITHMETIC_MODES = (ARITHMETIC_CHECKED, ARITHMETIC_WRAP)

# The historical 1337 as seen through an 8-bit process status.
ASSERTION_EXIT_CODE = 1337 & 0xFF

_U32 = np.uint32

_WRAPPING_OPS: Dict[str, Callable[[Any, Any], Any]] = {
    "PLUS": np.add,
    "MINUS": np.subtract,
    "STAR": np.multiply,
}


class SimpILRuntimeError(SimpILError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None


class UndefinedVariableError(SimpILRuntimeError):
    pass


class UndefinedRegisterError(SimpILRuntimeError):
    pass


class InputError(SimpILRuntimeError):
    pass


class DivisionByZeroError(SimpILRuntimeError):
    pass


class ArithmeticOverflowError(SimpILRuntimeError):
    pass


class JumpOutOfRangeError(SimpILRuntimeError):
    pass


class StepLimitError(SimpILRuntimeError):
    pass


class ExitSignal(Exception):
    def __init__(self, code: int = 0) -> None:
        super().__init__(code)
        self.code = code


class AssertionFailedSignal(ExitSignal):
    """Stops the whole run; deliberately not a SimpILRuntimeError."""

    def __init__(self, value: int, *, location: Optional[SourceLocation], results: List[int]) -> None:
        super().__init__(ASSERTION_EXIT_CODE)
        self.value = value
        self.location = location
        self.results = results


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    program_counter: Optional[int]
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    rule: str
    env_snapshot: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StateEntry] = []
        self.next_state_index = 0

    def record(
        self,
        *,
        program_counter: Optional[int],
        location: Optional[SourceLocation],
        statement: Optional[str],
        rule: str,
        env_snapshot: Optional[Dict[str, Any]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            program_counter=program_counter,
            source_location=location,
            statement=statement,
            rule=rule,
            env_snapshot=env_snapshot,
        )
        self.entries.append(entry)
        self.next_state_index += 1
        return entry

    @property
    def last(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None


def parse_source(
    text: str,
    filename: str = "<string>",
    *,
    diagnostics: Optional[DiagnosticLog] = None,
) -> Program:
    diagnostics = diagnostics if diagnostics is not None else DiagnosticLog(filename=filename)
    lexer = Lexer(text, filename, diagnostics=diagnostics)
    parser = Parser(lexer.tokens(), filename, text.split("\n"), diagnostics=diagnostics)
    return parser.parse()


def _stdin_source() -> str:
    return sys.stdin.read()


class Interpreter:
    def __init__(
        self,
        statements: Sequence[Statement],
        *,
        filename: str = "<string>",
        verbose: bool = False,
        arithmetic: str = ARITHMETIC_CHECKED,
        input_sources: Optional[Mapping[str, Callable[[], str]]] = None,
        hooks: Optional[HookRegistry] = None,
        max_steps: Optional[int] = None,
    ) -> None:
        if arithmetic not in ARITHMETIC_MODES:
            raise ValueError(f"Unknown arithmetic mode '{arithmetic}'")
        if max_steps is not None and max_steps < 0:
            raise ValueError("max_steps must be non-negative")
        self.statements: Tuple[Statement, ...] = tuple(statements)
        self.filename = filename
        self.verbose = verbose
        self.arithmetic = arithmetic
        self.input_sources: Dict[str, Callable[[], str]] = {"stdin": _stdin_source}
        if input_sources:
            self.input_sources.update(input_sources)
        self.hook_registry = hooks if hooks is not None else HookRegistry()
        self.max_steps = max_steps
        self.parse_errors: List[ParseError] = []

        self.registers: Dict[int, int] = {}
        self.vars: Dict[str, int] = {}
        self.program_counter = 0
        self.results: List[int] = []
        self.steps_taken = 0
        self.logger = StateLogger(verbose=verbose)
        self.logger.record(program_counter=None, location=None, statement="<seed>", rule="SEED")

    @classmethod
    def from_source(
        cls,
        text: str,
        filename: str = "<string>",
        *,
        keep_going: bool = False,
        diagnostics: Optional[DiagnosticLog] = None,
        **kwargs: Any,
    ) -> "Interpreter":
        """Parse ``text`` and build an interpreter over its statements.

        Recovered parse errors shift every later jump target, so the first one is
        raised unless ``keep_going`` is set; the errors are then kept on
        ``parse_errors``.
        """
        program = parse_source(text, filename, diagnostics=diagnostics)
        if program.errors and not keep_going:
            raise program.errors[0]
        interpreter = cls(program.statements, filename=filename, **kwargs)
        interpreter.parse_errors = list(program.errors)
        return interpreter

    @property
    def finished(self) -> bool:
        return self.program_counter >= len(self.statements)

    def run(self) -> List[int]:
        self._emit_event("program_start", self)
        try:
            while not self.finished:
                self.step()
        except ExitSignal:
            raise
        except SimpILRuntimeError as error:
            self._emit_event("on_error", self, error)
            if self.logger.entries:
                error.step_index = self.logger.entries[-1].step_index
            raise
        except Exception as exc:
            # Keep the CLI's traceback formatting for unexpected failures.
            loc = self.logger.last.source_location if self.logger.last else None
            wrapped = SimpILRuntimeError(f"Internal interpreter error: {exc}", location=loc, rule="internal")
            if self.logger.entries:
                wrapped.step_index = self.logger.entries[-1].step_index
            raise wrapped from exc
        self._emit_event("program_end", self, list(self.results))
        return list(self.results)

    def step(self) -> int:
        """Execute the statement under the program counter and return its value."""
        if self.finished:
            raise SimpILRuntimeError("No statement left to execute", rule="STEP")
        statement = self.statements[self.program_counter]
        if self.max_steps is not None and self.steps_taken >= self.max_steps:
            raise StepLimitError(
                f"Step limit of {self.max_steps} exceeded",
                location=statement.location,
                rule="STEP",
            )
        self._emit_event("before_statement", self, statement, location=statement.location)
        self.program_counter += 1
        self.steps_taken += 1
        self._log_step(statement)
        value = self._execute_statement(statement)
        self.results.append(value)
        self._emit_event("after_statement", self, statement, value, location=statement.location)
        return value

    def _execute_statement(self, statement: Statement) -> int:
        if isinstance(statement, Assignment):
            value = self._evaluate_expression(statement.expression)
            self.vars[statement.target] = value
            return value
        if isinstance(statement, Store):
            address = self._evaluate_expression(statement.address)
            value = self._evaluate_expression(statement.value)
            self.registers[address] = value
            return value
        if isinstance(statement, Goto):
            target = self._evaluate_expression(statement.target)
            if target > len(self.statements):
                raise JumpOutOfRangeError(
                    f"Jump target {target} is outside the program (0..{len(self.statements)})",
                    location=statement.location,
                    rule="GOTO",
                )
            self.program_counter = target
            return target
        if isinstance(statement, Assert):
            value = self._evaluate_expression(statement.condition)
            if value == 1:
                return value
            raise AssertionFailedSignal(value, location=statement.location, results=list(self.results))
        if isinstance(statement, IfThenElse):
            condition = self._evaluate_expression(statement.condition)
            if condition == 1:
                return self._evaluate_expression(statement.then_branch)
            if condition == 0:
                return self._evaluate_expression(statement.else_branch)
            return 0
        raise SimpILRuntimeError(
            f"Unsupported statement {statement.__class__.__name__}",
            location=statement.location,
            rule="internal",
        )

    def _evaluate_expression(self, expression: Expression) -> int:
        if isinstance(expression, Val):
            return expression.value
        if isinstance(expression, Var):
            if expression.name not in self.vars:
                raise UndefinedVariableError(
                    f"Undefined variable '{expression.name}'",
                    location=expression.location,
                    rule="VAR",
                )
            return self.vars[expression.name]
        if isinstance(expression, Load):
            address = self._evaluate_expression(expression.address)
            if address not in self.registers:
                raise UndefinedRegisterError(
                    f"Register {address} has not been stored to",
                    location=expression.location,
                    rule="LOAD",
                )
            return self.registers[address]
        if isinstance(expression, Binary):
            left = self._evaluate_expression(expression.left)
            right = self._evaluate_expression(expression.right)
            return self._binary(expression.operator.type, left, right, expression.location)
        if isinstance(expression, Unary):
            # The sign is parsed but not applied: u32 has no negatives.
            return self._evaluate_expression(expression.operand)
        if isinstance(expression, GetInput):
            return self._read_input(expression)
        raise SimpILRuntimeError(
            f"Unsupported expression {expression.__class__.__name__}",
            location=expression.location,
            rule="internal",
        )

    def _binary(self, op: str, left: int, right: int, location: SourceLocation) -> int:
        if op == "SLASH":
            if right == 0:
                raise DivisionByZeroError("Division by zero", location=location, rule="DIV")
            return left // right
        if self.arithmetic == ARITHMETIC_WRAP:
            if op not in _WRAPPING_OPS:
                raise SimpILRuntimeError(f"Invalid binary operator {op}", location=location, rule="internal")
            with np.errstate(over="ignore"):
                result = _WRAPPING_OPS[op](np.array(left, dtype=_U32), np.array(right, dtype=_U32))
            return int(result)
        if op == "PLUS":
            result = left + right
        elif op == "MINUS":
            result = left - right
        elif op == "STAR":
            result = left * right
        else:
            raise SimpILRuntimeError(f"Invalid binary operator {op}", location=location, rule="internal")
        if result < 0:
            raise ArithmeticOverflowError(f"Arithmetic underflow: {left} - {right}", location=location, rule=op)
        if result > U32_MAX:
            raise ArithmeticOverflowError(f"Arithmetic overflow: result {result} exceeds u32", location=location, rule=op)
        return result

    def _read_input(self, expression: GetInput) -> int:
        provider = self.input_sources.get(expression.source)
        if provider is None:
            raise InputError(
                f"Unknown input source '{expression.source}'",
                location=expression.location,
                rule="GET_INPUT",
            )
        text = provider().strip()
        if not text or not text.isdigit() or not text.isascii():
            raise InputError(
                f"Input {text!r} from {expression.source} is not an unsigned integer",
                location=expression.location,
                rule="GET_INPUT",
            )
        value = int(text)
        if value > U32_MAX:
            raise InputError(
                f"Input {value} from {expression.source} does not fit in u32",
                location=expression.location,
                rule="GET_INPUT",
            )
        return value

    def snapshot(self) -> Dict[str, Any]:
        return {
            "vars": dict(self.vars),
            "registers": {str(k): v for k, v in self.registers.items()},
        }

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except (SimpILError, ExitSignal):
            raise
        except Exception as exc:
            loc = self.logger.last.source_location if self.logger.last else None
            raise SimpILRuntimeError(f"Hook for '{event}' failed: {exc}", location=loc, rule="EXT") from exc

    def _log_step(self, statement: Statement) -> None:
        location = statement.location
        entry = self.logger.record(
            program_counter=self.program_counter - 1,
            location=location,
            statement=location.statement or None,
            rule=statement.__class__.__name__,
            env_snapshot=self.snapshot() if self.verbose else None,
        )
        try:
            self.hook_registry.after_step(
                self,
                StepContext(
                    step_index=entry.step_index,
                    program_counter=self.program_counter - 1,
                    rule=entry.rule,
                    location=location,
                ),
            )
        except (SimpILError, ExitSignal):
            raise
        except Exception as exc:
            raise SimpILRuntimeError(f"Step rule failed: {exc}", location=location, rule="EXT") from exc


@dataclass
class TracebackFormatter:
    interpreter: Interpreter
    recent: int = field(default=3)

    def recent_entries(self) -> List[StateEntry]:
        steps = [entry for entry in self.interpreter.logger.entries if entry.program_counter is not None]
        return steps[-self.recent:] if self.recent > 0 else []

    def format_text(self, error: SimpILRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent step last):"]
        for entry in self.recent_entries():
            location = entry.source_location
            if location:
                lines.append(f"  File \"{location.file}\", line {location.line}, statement {entry.program_counter}")
                if entry.statement:
                    lines.append(f"    {entry.statement}")
            else:
                lines.append(f"  <unknown location>, statement {entry.program_counter}")
            lines.append(f"    State log index: {entry.step_index}  State id: {entry.state_id}")
            if verbose and entry.env_snapshot is not None:
                variables = ", ".join(f"{k}={v}" for k, v in entry.env_snapshot["vars"].items())
                registers = ", ".join(f"[{k}]={v}" for k, v in entry.env_snapshot["registers"].items())
                lines.append(f"    Vars: {variables or '-'}  Registers: {registers or '-'}")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: SimpILRuntimeError) -> str:
        steps_json: List[Dict[str, Any]] = []
        for entry in self.recent_entries():
            item: Dict[str, Any] = {
                "step_index": entry.step_index,
                "state_id": entry.state_id,
                "program_counter": entry.program_counter,
                "rule": entry.rule,
            }
            if entry.source_location:
                item["source_location"] = {
                    "file": entry.source_location.file,
                    "line": entry.source_location.line,
                    "statement": entry.source_location.statement,
                }
            if entry.env_snapshot is not None:
                item["env_snapshot"] = entry.env_snapshot
            steps_json.append(item)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "failing_step_index": error.step_index,
            },
            "traceback": steps_json,
        }
        return json.dumps(data, indent=2)
