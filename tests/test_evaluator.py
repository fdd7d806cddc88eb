"""
Unit tests for expression evaluation and built-in functions.
"""

import math
import pytest
from epascript import parse_expression, SymbolTable, Evaluator, EvaluationError, VariableKind
from epascript.runtime.values import (
    int_var, double_var, string_var, array_var, map_var, struct_var,
    coerce_to_kind, format_number,
)


@pytest.fixture
def symbols():
    return SymbolTable()


def evaluate(text, symbols=None, **kwargs):
    evaluator = Evaluator(symbols if symbols is not None else SymbolTable(), **kwargs)
    return evaluator.evaluate(parse_expression(text))


def as_string(text, symbols=None):
    evaluator = Evaluator(symbols if symbols is not None else SymbolTable())
    return evaluator.evaluate_to_string(parse_expression(text))


class TestArithmetic:
    """Test arithmetic and logical operators."""

    def test_precedence(self):
        result = evaluate("2 + 3 * 4")
        assert result.kind == VariableKind.INTEGER
        assert result.data == 14

    def test_parentheses(self):
        assert evaluate("(2 + 3) * 4").data == 20

    def test_division_is_always_double(self):
        result = evaluate("7 / 2")
        assert result.kind == VariableKind.DOUBLE
        assert result.data == 3.5
        assert evaluate("4 / 2").kind == VariableKind.DOUBLE

    def test_mixed_operands_give_double(self):
        result = evaluate("2 * 1.5")
        assert result.kind == VariableKind.DOUBLE
        assert result.data == 3.0

    def test_division_by_zero(self):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate("1 / 0")
        assert exc_info.value.code == "E203"

    def test_unary_minus(self, symbols):
        symbols.declare("X", int_var(5))
        assert evaluate("-X + 1", symbols).data == -4

    def test_logical(self):
        result = evaluate("1 < 2 AND 3 > 2")
        assert result.kind == VariableKind.BOOL
        assert result.data is True
        assert evaluate("1 > 2 OR 0").data is False

    def test_short_circuit(self):
        assert evaluate("0 AND UNKNOWN").data is False
        assert evaluate("1 OR UNKNOWN").data is True

    def test_undefined_identifier(self):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate("UNKNOWN + 1")
        assert exc_info.value.code == "E202"
        assert "UNKNOWN" in str(exc_info.value)

    def test_string_in_arithmetic(self):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate('"a" + 1')
        assert exc_info.value.code == "E201"

    def test_hyphenated_names_subtract(self, symbols):
        symbols.declare("A", int_var(5))
        symbols.declare("B", int_var(2))
        assert evaluate("A-B", symbols).data == 3


class TestComparison:
    """Test relational operators."""

    def test_epsilon_equality(self):
        assert evaluate("0.1 + 0.2 == 0.3").data is True
        assert evaluate("0.1 + 0.2 <> 0.3").data is False

    def test_strict_comparison_respects_epsilon(self):
        assert evaluate("1 < 1.0000000001").data is False
        assert evaluate("1 <= 1.0000000001").data is True

    def test_string_equality_compares_text(self):
        assert evaluate('"10" == 10').data is True
        assert evaluate('"abc" == "abd"').data is False

    def test_relational_chain(self):
        # (3 > 2) is TRUE, which compares as 1
        assert evaluate("3 > 2 > 0").data is True
        assert evaluate("3 > 2 > 1").data is False


class TestBuiltins:
    """Test built-in functions."""

    def test_trig_in_degrees(self):
        assert evaluate("sin(30)").data == pytest.approx(0.5)
        assert evaluate("atan(1)").data == pytest.approx(45.0)

    def test_trig_in_radians(self):
        assert evaluate("sin(PI / 2)", trig_in_degrees=False).data == pytest.approx(1.0)

    def test_math(self):
        assert evaluate("sqrt(16)").data == 4.0
        assert evaluate("pow(2, 10)").data == 1024.0
        assert evaluate("abs(-3)").data == 3
        assert evaluate("floor(2.7)").data == 2
        assert evaluate("ceil(2.1)").data == 3
        assert evaluate("log(1000)").data == pytest.approx(3.0)

    def test_round_half_away_from_zero(self):
        assert evaluate("round(2.5)").data == 3
        assert evaluate("round(-2.5)").data == -3
        assert evaluate("round(3.14159, 2)").data == pytest.approx(3.14)

    def test_mod(self):
        result = evaluate("mod(7, 3)")
        assert result.kind == VariableKind.INTEGER
        assert result.data == 1
        with pytest.raises(EvaluationError) as exc_info:
            evaluate("mod(1, 0)")
        assert exc_info.value.code == "E203"

    def test_strings(self):
        assert evaluate('strlen("abc")').data == 3
        assert evaluate('strcmp("a", "B")').data == -1
        assert evaluate('strcmpcs("a", "a")').data == 0
        assert evaluate('strfind("Hello", "LL")').data == 2
        assert evaluate('strfindcs("Hello", "LL")').data == -1
        assert evaluate('asc("A")').data == 65

    def test_conversions(self):
        assert evaluate('stoi("42")').data == 42
        assert evaluate('stoi("4.7")').data == 4
        assert evaluate('stof("-1.5")').data == -1.5
        assert evaluate('stob("yes")').data is True
        assert evaluate('isnumber("12")').data is True
        assert evaluate('isinteger("1.5")').data is False
        assert evaluate('isdouble("1.5")').data is True

    def test_relational_functions(self):
        assert evaluate("equal(1, 1.0)").data is True
        assert evaluate('less("a", "b")').data is True
        assert evaluate("greaterorequal(2, 3)").data is False

    def test_wrong_argument_count(self):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate("sqrt(1, 2)")
        assert exc_info.value.code == "E207"

    def test_domain_error(self):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate("sqrt(-1)")
        assert exc_info.value.code == "E207"

    def test_bad_conversion(self):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate('stoi("abc")')
        assert exc_info.value.code == "E207"


class TestAccess:
    """Test constants and container access."""

    def test_constants(self):
        assert evaluate("PI").data == pytest.approx(math.pi)
        assert evaluate("E").data == pytest.approx(math.e)

    def test_array_index(self, symbols):
        symbols.declare("A", array_var([int_var(10), int_var(20)]))
        assert evaluate("A[1]", symbols).data == 20
        with pytest.raises(EvaluationError) as exc_info:
            evaluate("A[2]", symbols)
        assert exc_info.value.code == "E205"

    def test_map_lookup(self, symbols):
        symbols.declare("M", map_var({"w": int_var(10)}))
        assert evaluate("M:w", symbols).data == 10
        with pytest.raises(EvaluationError) as exc_info:
            evaluate("M:h", symbols)
        assert exc_info.value.code == "E206"

    def test_structure_member(self, symbols):
        symbols.declare("S", struct_var({"len": double_var(2.5)}))
        assert evaluate("S.len", symbols).data == 2.5
        assert evaluate("S.len * 2", symbols).data == 5.0

    def test_nested_access(self, symbols):
        holes = array_var([struct_var({"dia": double_var(6.0)})])
        symbols.declare("HOLES", holes)
        assert evaluate("HOLES[0].dia", symbols).data == 6.0

    def test_evaluation_does_not_write(self, symbols):
        symbols.declare("A", array_var([int_var(1)]))
        evaluate("A[0] + 1", symbols)
        assert symbols.get("A").to_python() == [1]


class TestStringPath:
    """Test evaluation in string context."""

    def test_concatenation(self, symbols):
        symbols.declare("SIZE", string_var("M6"))
        assert as_string('"img_" + SIZE + ".gif"', symbols) == "img_M6.gif"

    def test_undeclared_name_is_its_own_text(self):
        assert as_string('"img_" + SIZE + ".gif"') == "img_SIZE.gif"

    def test_numbers_render_as_text(self, symbols):
        symbols.declare("N", int_var(3))
        symbols.declare("D", double_var(2.0))
        assert as_string('"n" + N + "_" + D', symbols) == "n3_2"

    def test_hyphenated_text(self):
        assert as_string("file-name") == "file-name"

    def test_hyphenated_numbers_subtract(self, symbols):
        symbols.declare("A", int_var(5))
        symbols.declare("B", int_var(2))
        assert as_string("A-B", symbols) == "3"


class TestValues:
    """Test value coercion and formatting."""

    def test_coerce_double_into_integer_truncates(self):
        result = coerce_to_kind(VariableKind.INTEGER, double_var(2.9))
        assert result.kind == VariableKind.INTEGER
        assert result.data == 2

    def test_coerce_number_into_bool(self):
        assert coerce_to_kind(VariableKind.BOOL, int_var(3)).data is True

    def test_coerce_number_into_string_fails(self):
        with pytest.raises(EvaluationError) as exc_info:
            coerce_to_kind(VariableKind.STRING, int_var(1))
        assert exc_info.value.code == "E201"

    def test_format_number(self):
        assert format_number(3.0) == "3"
        assert format_number(2.5) == "2.5"
        assert format_number(True) == "1"
