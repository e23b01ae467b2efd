from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from diagnostics import DiagnosticLog
from lexer import SimpILParseError, Token


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass(frozen=True)
class Node:
    location: SourceLocation


class Statement(Node):
    pass


class Expression(Node):
    pass


@dataclass(frozen=True)
class Assignment(Statement):
    target: str
    expression: Expression


@dataclass(frozen=True)
class Store(Statement):
    address: Expression
    value: Expression


@dataclass(frozen=True)
class Goto(Statement):
    target: Expression


@dataclass(frozen=True)
class Assert(Statement):
    condition: Expression


@dataclass(frozen=True)
class IfThenElse(Statement):
    condition: Expression
    then_branch: Expression
    else_branch: Expression


@dataclass(frozen=True)
class Load(Expression):
    address: Expression


@dataclass(frozen=True)
class Binary(Expression):
    left: Expression
    operator: Token
    right: Expression


@dataclass(frozen=True)
class Unary(Expression):
    operator: Token
    operand: Expression


@dataclass(frozen=True)
class Var(Expression):
    name: str


@dataclass(frozen=True)
class GetInput(Expression):
    source: str


@dataclass(frozen=True)
class Val(Expression):
    value: int


class ParseError(SimpILParseError):
    """A recoverable failure to parse one statement."""

    def __init__(self, message: str, token: Token) -> None:
        super().__init__(message, line=token.line, column=token.column)
        self.token = token


class StatementParseError(ParseError):
    def __init__(self, reason: str, token: Token) -> None:
        super().__init__(f"Statement: {reason} at line {token.line}", token)
        self.reason = reason


class ExpressionParseError(ParseError):
    def __init__(self, reason: str, token: Token) -> None:
        super().__init__(f"Expression: {reason} at line {token.line}", token)
        self.reason = reason


class ExpectedTokenError(ParseError):
    def __init__(self, expected: str, token: Token) -> None:
        super().__init__(f"Expected token {expected} but found {token.type} at line {token.line}", token)
        self.expected = expected


@dataclass
class Program:
    statements: List[Statement]
    errors: List[ParseError] = field(default_factory=list)


# (left, right) binding powers; a higher left power binds tighter.
BINDING_POWERS: Dict[str, Tuple[int, int]] = {
    "PLUS": (1, 2),
    "MINUS": (1, 2),
    "STAR": (3, 4),
    "SLASH": (3, 4),
}

STATEMENT_STARTS = {"IDENT", "STORE", "GOTO", "ASSERT", "IF", "EOF"}

OPERATOR_SYMBOLS = {"PLUS": "+", "MINUS": "-", "STAR": "*", "SLASH": "/"}


class Parser:
    def __init__(
        self,
        tokens: Iterable[Token],
        filename: str = "<string>",
        source_lines: Optional[List[str]] = None,
        *,
        diagnostics: Optional[DiagnosticLog] = None,
    ) -> None:
        self._tokens: Iterator[Token] = iter(tokens)
        self.filename = filename
        self.source_lines = source_lines if source_lines is not None else []
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticLog(filename=filename)
        self.errors: List[ParseError] = []
        self._current: Optional[Token] = None
        self._last: Optional[Token] = None
        self._consumed = 0

    def parse(self) -> Program:
        statements = list(self.statements())
        return Program(statements=statements, errors=list(self.errors))

    def statements(self) -> Iterator[Statement]:
        """Yield statements one at a time, recovering from malformed ones."""
        while self._peek().type != "EOF":
            consumed_before = self._consumed
            try:
                statement = self._parse_statement()
            except ParseError as error:
                self.errors.append(error)
                self.diagnostics.report(error.line, error.column, error.message, stage="parse")
                self._synchronize(made_progress=self._consumed > consumed_before)
                continue
            yield statement

    def _synchronize(self, *, made_progress: bool) -> None:
        if not made_progress:
            self._advance()
        while self._peek().type not in STATEMENT_STARTS:
            self._advance()

    def _parse_statement(self) -> Statement:
        token = self._peek()
        if token.type == "IDENT":
            return self._parse_assignment()
        if token.type == "STORE":
            return self._parse_store()
        if token.type == "GOTO":
            return self._parse_goto()
        if token.type == "ASSERT":
            return self._parse_assert()
        if token.type == "IF":
            return self._parse_if()
        if token.type == "EOF":
            raise StatementParseError("Unexpected end of file reached", token)
        raise StatementParseError(f"Found {token.type} '{token.lexeme}', expected statement", token)

    def _parse_assignment(self) -> Assignment:
        ident = self._consume("IDENT")
        self._consume("ASSIGN")
        expr = self._parse_expression()
        return Assignment(location=self._location_from_token(ident), target=ident.lexeme, expression=expr)

    def _parse_store(self) -> Store:
        keyword = self._consume("STORE")
        self._consume("LPAREN")
        address = self._parse_expression()
        self._consume("COMMA")
        value = self._parse_expression()
        self._consume("RPAREN")
        return Store(location=self._location_from_token(keyword), address=address, value=value)

    def _parse_goto(self) -> Goto:
        keyword = self._consume("GOTO")
        return Goto(location=self._location_from_token(keyword), target=self._parse_expression())

    def _parse_assert(self) -> Assert:
        keyword = self._consume("ASSERT")
        return Assert(location=self._location_from_token(keyword), condition=self._parse_expression())

    def _parse_if(self) -> IfThenElse:
        keyword = self._consume("IF")
        condition = self._parse_expression()
        self._consume("THEN")
        self._consume("GOTO")
        then_branch = self._parse_expression()
        self._consume("ELSE")
        self._consume("GOTO")
        else_branch = self._parse_expression()
        return IfThenElse(
            location=self._location_from_token(keyword),
            condition=condition,
            then_branch=then_branch,
            else_branch=else_branch,
        )

    def _parse_expression(self, min_power: int = 0) -> Expression:
        left = self._parse_prefix()
        while True:
            operator = self._peek()
            powers = BINDING_POWERS.get(operator.type)
            if powers is None:
                break
            left_power, right_power = powers
            # Equal powers stop here, which makes each level left-associative.
            if left_power <= min_power:
                break
            self._advance()
            right = self._parse_expression(right_power)
            left = Binary(location=left.location, left=left, operator=operator, right=right)
        return left

    def _parse_prefix(self) -> Expression:
        token = self._peek()
        location = self._location_from_token(token)
        if token.type == "NUMBER":
            self._advance()
            return Val(location=location, value=int(token.value))
        if token.type == "IDENT":
            self._advance()
            return Var(location=location, name=token.lexeme)
        if token.type == "LOAD":
            self._advance()
            self._consume("LPAREN")
            address = self._parse_expression()
            self._consume("RPAREN")
            return Load(location=location, address=address)
        if token.type == "GET_INPUT":
            self._advance()
            source = "stdin"
            if self._match("LPAREN"):
                source = self._consume("IDENT").lexeme
                self._consume("RPAREN")
            return GetInput(location=location, source=source)
        if token.type in ("PLUS", "MINUS"):
            self._advance()
            return Unary(location=location, operator=token, operand=self._parse_expression())
        if token.type == "LPAREN":
            self._advance()
            expr = self._parse_expression()
            self._consume("RPAREN")
            return expr
        raise ExpressionParseError(f"Found {token.type} '{token.lexeme}', expected expression", token)

    def _consume(self, token_type: str) -> Token:
        token = self._peek()
        if token.type != token_type:
            raise ExpectedTokenError(token_type, token)
        self._advance()
        return token

    def _match(self, token_type: str) -> bool:
        if self._peek().type == token_type:
            self._advance()
            return True
        return False

    def _peek(self) -> Token:
        if self._current is None:
            self._current = next(self._tokens, None)
            if self._current is None:
                # Streams that stop without an EOF token still end cleanly.
                line = self._last.line if self._last is not None else 1
                self._current = Token("EOF", "", line, 0)
        return self._current

    def _advance(self) -> Token:
        token = self._peek()
        if token.type != "EOF":
            self._last = token
            self._current = None
            self._consumed += 1
        return token

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)


def describe(node: Node) -> str:
    """Render a node as a compact prefix form, e.g. ``(+ (* 1 1) 1)``."""
    if isinstance(node, Val):
        return str(node.value)
    if isinstance(node, Var):
        return node.name
    if isinstance(node, GetInput):
        return f"(get_input {node.source})"
    if isinstance(node, Load):
        return f"(load {describe(node.address)})"
    if isinstance(node, Unary):
        return f"({node.operator.lexeme} {describe(node.operand)})"
    if isinstance(node, Binary):
        symbol = OPERATOR_SYMBOLS.get(node.operator.type, node.operator.lexeme)
        return f"({symbol} {describe(node.left)} {describe(node.right)})"
    if isinstance(node, Assignment):
        return f"(:= {node.target} {describe(node.expression)})"
    if isinstance(node, Store):
        return f"(store {describe(node.address)} {describe(node.value)})"
    if isinstance(node, Goto):
        return f"(goto {describe(node.target)})"
    if isinstance(node, Assert):
        return f"(assert {describe(node.condition)})"
    if isinstance(node, IfThenElse):
        return (
            f"(if {describe(node.condition)} "
            f"{describe(node.then_branch)} {describe(node.else_branch)})"
        )
    raise TypeError(f"Cannot describe {node.__class__.__name__}")
