"""
Scanner tests: token forms, line tracking and invalid characters
"""

import pytest

from lexer import Lexer, LiteralOverflowError, Token


def scan(text, diagnostics=None):
  return Lexer(text, diagnostics=diagnostics).tokenize()


def types(text):
  return [t.type for t in scan(text)]


class TestTokenForms:
  """Each token kind is produced from its source form"""

  def test_single_characters(self):
    assert types("( ) , + - * /") == [
      "LPAREN", "RPAREN", "COMMA", "PLUS", "MINUS", "STAR", "SLASH", "EOF",
    ]

  def test_value(self):
    tokens = scan("1")
    assert tokens[0] == Token("NUMBER", "1", 1, 1, 1)
    assert tokens[-1].type == "EOF"

  def test_assignment_lexemes_are_exact_slices(self):
    tokens = scan("val := 2")
    assert [(t.type, t.lexeme, t.value) for t in tokens[:-1]] == [
      ("IDENT", "val", "val"),
      ("ASSIGN", ":=", None),
      ("NUMBER", "2", 2),
    ]
    assert [t.column for t in tokens[:-1]] == [1, 5, 8]

  def test_keywords_are_case_sensitive(self):
    assert types("store goto assert if then else load get_input") == [
      "STORE", "GOTO", "ASSERT", "IF", "THEN", "ELSE", "LOAD", "GET_INPUT", "EOF",
    ]
    assert types("Store GOTO") == ["IDENT", "IDENT", "EOF"]

  def test_identifier_characters(self):
    tokens = scan("_tmp9 x_1")
    assert [t.lexeme for t in tokens[:-1]] == ["_tmp9", "x_1"]

  def test_digits_then_letters_split(self):
    assert [(t.type, t.lexeme) for t in scan("12ab")[:-1]] == [("NUMBER", "12"), ("IDENT", "ab")]

  def test_u32_max_literal(self):
    assert scan("4294967295")[0].value == 4294967295

  def test_literal_overflow(self):
    with pytest.raises(LiteralOverflowError) as info:
      scan("x := 4294967296")
    assert info.value.line == 1
    assert info.value.column == 6


class TestLinesAndWhitespace:
  """Whitespace is dropped and newlines advance the line counter"""

  def test_lines(self):
    tokens = scan("x := 1\n\ty := 2\r\n")
    assert [(t.lexeme, t.line) for t in tokens[:-1]] == [
      ("x", 1), (":=", 1), ("1", 1), ("y", 2), (":=", 2), ("2", 2),
    ]
    assert tokens[-1].line == 3

  def test_empty_source(self):
    assert scan("") == [Token("EOF", "", 1, 1)]

  def test_tokens_is_lazy(self):
    stream = Lexer("goto 1").tokens()
    assert next(stream).type == "GOTO"
    assert next(stream).type == "NUMBER"
    assert next(stream).type == "EOF"
    with pytest.raises(StopIteration):
      next(stream)


class TestInvalidCharacters:
  """Invalid characters are reported and skipped"""

  def test_invalid_is_reported_and_skipped(self, diagnostics):
    tokens = scan("x # := 1", diagnostics)
    assert [t.type for t in tokens] == ["IDENT", "ASSIGN", "NUMBER", "EOF"]
    assert len(diagnostics) == 1
    entry = diagnostics.entries[0]
    assert (entry.stage, entry.line, entry.column) == ("scan", 1, 3)
    assert "'#'" in entry.message

  def test_lone_colon_is_invalid(self, diagnostics):
    tokens = scan("x : 1", diagnostics)
    assert [t.type for t in tokens] == ["IDENT", "NUMBER", "EOF"]
    assert "':'" in diagnostics.entries[0].message

  def test_scanning_continues_after_invalid(self, diagnostics):
    tokens = scan("@\n!goto 3", diagnostics)
    assert [(t.type, t.line) for t in tokens[:-1]] == [("GOTO", 2), ("NUMBER", 2)]
    assert [(d.line, d.column) for d in diagnostics.entries] == [(1, 1), (2, 1)]


class TestDeterminism:
  """Re-scanning the same text gives the same tokens"""

  @pytest.mark.parametrize("text", [
    "x := 1 + 2 * y",
    "store(load(1), get_input)\ngoto 0",
    "if x then goto 2 else goto 3 $ assert 1",
  ])
  def test_rescan_is_identical(self, text):
    assert scan(text) == scan(text)
