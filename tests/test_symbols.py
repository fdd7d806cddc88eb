"""
Unit tests for the symbol table declaration policy.
"""

import pytest
from epascript import SymbolTable, DiagnosticCollector, SemanticError
from epascript.runtime.values import int_var, string_var, array_var, reference_var


@pytest.fixture
def diagnostics():
    return DiagnosticCollector()


@pytest.fixture
def table(diagnostics):
    return SymbolTable(diagnostics)


class TestDeclare:
    """Test declaration and redeclaration."""

    def test_seeded_constants(self, table):
        assert table.names() == ["PI", "E"]

    def test_declare_and_get(self, table):
        assert table.declare("X", int_var(1))
        assert table.get("X").data == 1
        assert "X" in table
        assert table.get("Y") is None

    def test_redeclaration_keeps_value(self, table, diagnostics):
        table.declare("X", int_var(1))
        assert not table.declare("X", int_var(2))
        assert table.get("X").data == 1
        assert table.get("X").declaration_count == 2
        assert diagnostics.codes() == ["W301"]

    def test_set_keeps_declaration_count(self, table):
        table.declare("X", int_var(1))
        table.declare("X", int_var(1))
        table.set("X", int_var(5))
        assert table.get("X").data == 5
        assert table.get("X").declaration_count == 2

    def test_declaration_order(self, table):
        table.declare("B", int_var(1))
        table.declare("A", int_var(2))
        assert table.names()[-2:] == ["B", "A"]
        assert list(table.snapshot())[-2:] == ["B", "A"]


class TestInvalidate:
    """Test INVALIDATE_PARAM semantics."""

    def test_invalidate_then_redeclare_replaces(self, table, diagnostics):
        table.declare("X", int_var(1))
        assert table.invalidate("X")
        assert "X" not in table
        assert table.is_invalidated("X")
        assert table.declare("X", int_var(7))
        assert table.get("X").data == 7
        assert table.get("X").declaration_count == 1
        assert diagnostics.codes() == []

    def test_invalidate_unknown_name(self, table, diagnostics):
        assert not table.invalidate("NOPE")
        assert diagnostics.codes() == ["W302"]

    def test_invalidate_non_scalar(self, table):
        table.declare("A", array_var([int_var(1)]))
        with pytest.raises(SemanticError) as exc_info:
            table.invalidate("A")
        assert exc_info.value.code == "E302"
        assert "A" in table


class TestTeardown:
    """Test reference disposal."""

    def test_remove_disposes_references(self, table):
        disposed = []
        table.declare("R", reference_var("edge_7"))
        table.remove("R", disposed.append)
        assert disposed == ["edge_7"]
        assert "R" not in table

    def test_teardown_disposes_nested_references(self, table):
        disposed = []
        table.declare("REFS", array_var([reference_var("a"), reference_var("b")]))
        table.declare("NAME", string_var("x"))
        table.teardown(disposed.append)
        assert disposed == ["a", "b"]
        assert len(table) == 0
