from __future__ import annotations
import sys
from dataclasses import dataclass, field
from typing import List, Optional, TextIO


@dataclass(frozen=True)
class Diagnostic:
    stage: str
    filename: str
    line: int
    column: int
    message: str

    def format(self) -> str:
        return f"{self.filename}:{self.line}:{self.column}: {self.message}"


@dataclass
class DiagnosticLog:
    """Collects scanner and parser reports, optionally echoing them to a stream."""

    filename: str = "<string>"
    echo: bool = False
    stream: Optional[TextIO] = field(default=None, repr=False)
    entries: List[Diagnostic] = field(default_factory=list)

    def report(self, line: int, column: int, message: str, *, stage: str = "scan") -> Diagnostic:
        entry = Diagnostic(stage=stage, filename=self.filename, line=line, column=column, message=message)
        self.entries.append(entry)
        if self.echo:
            print(entry.format(), file=self.stream if self.stream is not None else sys.stderr)
        return entry

    def for_stage(self, stage: str) -> List[Diagnostic]:
        return [entry for entry in self.entries if entry.stage == stage]

    def __len__(self) -> int:
        return len(self.entries)
