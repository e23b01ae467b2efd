from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple


EVENTS = ("program_start", "before_statement", "after_statement", "on_error", "program_end")


class HookError(Exception):
    pass


@dataclass(frozen=True)
class StepContext:
    step_index: int
    program_counter: int
    rule: str
    location: Any  # SourceLocation | None


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, owner)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)
    # list[(every_n, handler, owner, name)]
    _step_rules: List[Tuple[int, Callable[[Any, StepContext], None], str, str]] = field(default_factory=list)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int = 0, owner: str = "") -> None:
        if event not in EVENTS:
            raise HookError(f"Unknown event '{event}'")
        self._events.setdefault(event, []).append((priority, handler, owner))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _owner in self._events.get(event, []):
            handler(*args, **kwargs)

    def add_step_rule(
        self,
        *,
        every_n: int,
        handler: Callable[[Any, StepContext], None],
        name: str = "",
        owner: str = "",
    ) -> None:
        if every_n <= 0:
            raise HookError("every_n_steps must be >= 1")
        self._step_rules.append((every_n, handler, owner, name))

    def after_step(self, interpreter: Any, ctx: StepContext) -> None:
        for every_n, handler, _owner, _name in self._step_rules:
            if ctx.step_index % every_n == 0:
                handler(interpreter, ctx)

    def every_n_steps(self, every_n: int, *, name: str = ""):
        def deco(fn: Callable[[Any, StepContext], None]) -> Callable[[Any, StepContext], None]:
            self.add_step_rule(every_n=every_n, handler=fn, name=name or fn.__name__)
            return fn

        return deco


def trace_printer(write: Callable[[str], None]) -> Callable[..., None]:
    """Build an ``after_statement`` handler that writes one line per step."""

    def _print_step(interpreter: Any, statement: Any, result: int, *, location: Optional[Any] = None) -> None:
        entry = interpreter.logger.entries[-1] if interpreter.logger.entries else None
        index = entry.step_index if entry else "?"
        pc = entry.program_counter if entry else "?"
        text = location.statement if location is not None and location.statement else statement.__class__.__name__
        write(f"[{index}] pc={pc} {text} -> {result}")

    return _print_step
