"""
Test configuration for the simpIL interpreter tests
"""

import sys
from pathlib import Path

import pytest

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from diagnostics import DiagnosticLog
from interpreter import Interpreter, parse_source


@pytest.fixture
def diagnostics():
  """Provide a fresh, silent diagnostic log"""
  return DiagnosticLog()


@pytest.fixture
def make_interpreter():
  """Build an interpreter from source text, failing on any parse error"""

  def _make(source, **kwargs):
    program = parse_source(source)
    assert program.errors == [], [e.message for e in program.errors]
    return Interpreter(program.statements, **kwargs)

  return _make


@pytest.fixture
def run(make_interpreter):
  """Run source text to completion and return the result values"""

  def _run(source, **kwargs):
    return make_interpreter(source, **kwargs).run()

  return _run
