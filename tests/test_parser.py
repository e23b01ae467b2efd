"""
Parser tests: statement grammar, precedence and error recovery
"""

import pytest

from lexer import Lexer
from parser import (
  Assert,
  Assignment,
  Binary,
  ExpectedTokenError,
  ExpressionParseError,
  GetInput,
  Goto,
  IfThenElse,
  Load,
  Parser,
  StatementParseError,
  Store,
  Unary,
  Val,
  Var,
  describe,
)


def parse(text, diagnostics=None):
  lexer = Lexer(text, diagnostics=diagnostics)
  return Parser(lexer.tokens(), "<test>", text.split("\n"), diagnostics=diagnostics).parse()


def statements(text):
  program = parse(text)
  assert program.errors == [], [e.message for e in program.errors]
  return program.statements


def single(text):
  result = statements(text)
  assert len(result) == 1
  return result[0]


class TestStatements:
  """Each statement form parses into its node"""

  def test_assignment(self):
    st = single("x := 1")
    assert isinstance(st, Assignment)
    assert st.target == "x"
    assert isinstance(st.expression, Val) and st.expression.value == 1

  def test_store(self):
    st = single("store(1, 2)")
    assert isinstance(st, Store)
    assert (st.address.value, st.value.value) == (1, 2)

  def test_goto(self):
    st = single("goto 1")
    assert isinstance(st, Goto)

  def test_assert(self):
    st = single("assert 1")
    assert isinstance(st, Assert)

  def test_if_then_else(self):
    st = single("if 1 then goto 2 else goto 3")
    assert isinstance(st, IfThenElse)
    assert describe(st) == "(if 1 2 3)"

  def test_if_requires_goto_before_branches(self):
    program = parse("if 1 then 2 else 3")
    assert program.statements == []
    assert isinstance(program.errors[0], ExpectedTokenError)
    assert program.errors[0].expected == "GOTO"

  def test_statements_are_not_newline_delimited(self):
    result = statements("x := 1 y := x goto 0")
    assert [type(s).__name__ for s in result] == ["Assignment", "Assignment", "Goto"]

  def test_location_carries_source_line(self):
    result = statements("x := 1\n  store(x, 2)")
    assert result[1].location.line == 2
    assert result[1].location.statement == "store(x, 2)"
    assert result[1].location.file == "<test>"


class TestExpressions:
  """Prefix forms and unary handling"""

  def test_load(self):
    st = single("goto load(1)")
    assert isinstance(st.target, Load)

  def test_get_input_defaults_to_stdin(self):
    st = single("x := get_input")
    assert st.expression == GetInput(location=st.expression.location, source="stdin")

  def test_get_input_with_source(self):
    st = single("goto get_input(stdout)")
    assert isinstance(st.target, GetInput)
    assert st.target.source == "stdout"

  def test_unary(self):
    st = single("goto -1")
    assert isinstance(st.target, Unary)
    assert st.target.operator.type == "MINUS"

  def test_unary_operand_is_full_expression(self):
    st = single("goto -1 + 2")
    assert describe(st.target) == "(- (+ 1 2))"

  def test_parenthesised_grouping(self):
    st = single("x := (1 + 2) * 3")
    assert describe(st.expression) == "(* (+ 1 2) 3)"

  def test_variable(self):
    st = single("y := x")
    assert isinstance(st.expression, Var) and st.expression.name == "x"

  def test_binary(self):
    st = single("goto 1 + 1")
    assert isinstance(st.target, Binary)


class TestPrecedence:
  """Binding powers group operators correctly"""

  @pytest.mark.parametrize("source, expected", [
    ("1 * 1 + 1", "(+ (* 1 1) 1)"),
    ("1 + 1 * 1", "(+ 1 (* 1 1))"),
    ("1 - 2 - 3", "(- (- 1 2) 3)"),
    ("8 / 4 / 2", "(/ (/ 8 4) 2)"),
    ("1 + 2 * 3 - 4 / 5", "(- (+ 1 (* 2 3)) (/ 4 5))"),
    ("load(1 + 1) * x", "(* (load (+ 1 1)) x)"),
  ])
  def test_grouping(self, source, expected):
    st = single(f"v := {source}")
    assert describe(st.expression) == expected

  def test_tree_shape(self):
    expr = single("v := 1 * 1 + 1").expression
    assert isinstance(expr, Binary) and expr.operator.type == "PLUS"
    assert isinstance(expr.left, Binary) and expr.left.operator.type == "STAR"
    assert isinstance(expr.right, Val)


class TestErrorRecovery:
  """One malformed statement never aborts the whole parse"""

  def test_stray_token_then_valid_statement(self, diagnostics):
    program = parse("5 x := 1", diagnostics)
    assert len(program.statements) == 1
    assert isinstance(program.statements[0], Assignment)
    assert isinstance(program.errors[0], StatementParseError)
    assert diagnostics.for_stage("parse")[0].line == 1

  def test_missing_comma_recovers_at_next_statement(self):
    program = parse("store(1 2)\ngoto 0")
    assert [type(s).__name__ for s in program.statements] == ["Goto"]
    assert isinstance(program.errors[0], ExpectedTokenError)
    assert program.errors[0].expected == "COMMA"

  def test_missing_assign_operator(self):
    program = parse("x 1\nassert 1")
    assert [type(s).__name__ for s in program.statements] == ["Assert"]
    assert isinstance(program.errors[0], ExpectedTokenError)
    assert program.errors[0].expected == "ASSIGN"
    assert program.errors[0].token.type == "NUMBER"

  def test_bad_expression(self):
    program = parse("goto then\nx := 2")
    assert [type(s).__name__ for s in program.statements] == ["Assignment"]
    assert isinstance(program.errors[0], ExpressionParseError)

  def test_unexpected_end_of_input(self):
    program = parse("assert")
    assert program.statements == []
    assert len(program.errors) == 1

  def test_several_errors(self):
    program = parse(") ) x := 1 , goto 2 store(")
    assert [type(s).__name__ for s in program.statements] == ["Assignment", "Goto"]
    assert len(program.errors) == 3

  def test_statements_is_lazy(self):
    lexer = Lexer("x := 1 ) goto 0")
    stream = Parser(lexer.tokens()).statements()
    assert isinstance(next(stream), Assignment)
    assert isinstance(next(stream), Goto)
    with pytest.raises(StopIteration):
      next(stream)

  def test_token_stream_without_eof(self):
    tokens = [t for t in Lexer("goto 1").tokenize() if t.type != "EOF"]
    result = Parser(tokens).parse()
    assert len(result.statements) == 1


class TestImmutability:
  """AST nodes cannot be changed once built"""

  def test_nodes_are_frozen(self):
    st = single("x := 1")
    with pytest.raises(AttributeError):
      st.target = "y"
