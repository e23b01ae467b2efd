from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, List, Optional, Union

from diagnostics import DiagnosticLog


U32_MAX = 0xFFFFFFFF


class SimpILError(Exception):
    """Base class for interpreter errors."""


class SimpILParseError(SimpILError):
    """Raised when scanning or parsing fails."""

    def __init__(self, message: str, *, line: int = 0, column: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column


class LiteralOverflowError(SimpILParseError):
    """Raised when a numeric literal does not fit in 32 unsigned bits."""


@dataclass(frozen=True)
class Token:
    type: str
    lexeme: str
    line: int
    column: int
    value: Optional[Union[int, str]] = None


# Marker types produced by the dispatch but never emitted.
INVALID = "INVALID"
IGNORE = "IGNORE"

KEYWORDS = {
    "store": "STORE",
    "goto": "GOTO",
    "assert": "ASSERT",
    "if": "IF",
    "then": "THEN",
    "else": "ELSE",
    "load": "LOAD",
    "get_input": "GET_INPUT",
}

SYMBOLS = {
    "(": "LPAREN",
    ")": "RPAREN",
    ",": "COMMA",
    "+": "PLUS",
    "-": "MINUS",
    "*": "STAR",
    "/": "SLASH",
}

DIGITS = "0123456789"
IDENTIFIER_START = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ_"
IDENTIFIER_PART = IDENTIFIER_START + DIGITS


class Lexer:
    def __init__(self, text: str, filename: str = "<string>", *, diagnostics: Optional[DiagnosticLog] = None) -> None:
        self.text = text
        self.filename = filename
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticLog(filename=filename)
        self.index = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Token]:
        return list(self.tokens())

    def tokens(self) -> Iterator[Token]:
        """Yield tokens lazily, ending with a single EOF token.

        Invalid characters are reported to the diagnostic log and skipped.
        """
        text = self.text
        n = len(text)
        while self.index < n:
            start, line, col = self.index, self.line, self.column
            ch = text[self.index]
            self._advance()
            token_type = self._dispatch(ch)
            if token_type == IGNORE:
                continue
            if token_type == INVALID:
                self.diagnostics.report(line, col, f"Invalid token '{ch}'", stage="scan")
                continue
            lexeme = text[start:self.index]
            value: Optional[Union[int, str]] = None
            if token_type == "NUMBER":
                value = self._number_value(lexeme, line, col)
            elif token_type == "IDENT":
                value = lexeme
            yield Token(token_type, lexeme, line, col, value)
        yield Token("EOF", "", self.line, self.column)

    def _dispatch(self, ch: str) -> str:
        if ch in SYMBOLS:
            return SYMBOLS[ch]
        if ch == ":":
            if self._match("="):
                return "ASSIGN"
            return INVALID
        if ch in " \t\r\n":
            return IGNORE
        if ch in DIGITS:
            self._consume_while(DIGITS)
            return "NUMBER"
        if ch in IDENTIFIER_START:
            start = self.index - 1
            self._consume_while(IDENTIFIER_PART)
            return KEYWORDS.get(self.text[start:self.index], "IDENT")
        return INVALID

    def _number_value(self, digits: str, line: int, col: int) -> int:
        value = int(digits)
        if value > U32_MAX:
            raise LiteralOverflowError(
                f"Numeric literal {digits} does not fit in u32 at {self.filename}:{line}:{col}",
                line=line,
                column=col,
            )
        return value

    def _consume_while(self, allowed: str) -> None:
        text = self.text
        n = len(text)
        while self.index < n and text[self.index] in allowed:
            self._advance()

    def _match(self, expected: str) -> bool:
        if self._eof or self._peek() != expected:
            return False
        self._advance()
        return True

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1
