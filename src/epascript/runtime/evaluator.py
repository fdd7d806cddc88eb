"""
Expression evaluator.

Two entry points share one tree walk:

- `evaluate` is the general path. Identifiers must be declared, arithmetic
  needs numeric operands, and the result is a Variable.
- `evaluate_to_string` is used where the result is known to be a string
  (assignment to a STRING slot, picture filenames). `+` concatenates, and
  an undeclared bare identifier stands for its own text, so
  `"img_" + size + ".gif"` works without quoting every piece.
"""

import logging
import math
from typing import TYPE_CHECKING, Optional, Union

from .values import (
    Variable, VariableKind, NUMERIC_KINDS,
    int_var, double_var, string_var, bool_var, from_python,
    to_number, to_text,
)
from .builtins import get_builtin_registry
from ..ast import (
    Expression, Literal, LiteralType, Constant, VariableRef,
    UnaryOp, BinaryOp, FunctionCall, IndexAccess, MapLookup, MemberAccess,
)
from ..errors import (
    EvaluationError,
    error_type_mismatch, error_undefined_identifier, error_division_by_zero,
    error_invalid_operand, error_index_out_of_range, error_missing_key,
)
from ..tokens import TokenType

if TYPE_CHECKING:
    from ..symbols import SymbolTable

logger = logging.getLogger(__name__)

Number = Union[int, float]

_CONSTANTS = {"PI": math.pi, "E": math.e}

_ARITHMETIC = frozenset({TokenType.PLUS, TokenType.MINUS, TokenType.STAR, TokenType.SLASH})
_RELATIONAL = frozenset({
    TokenType.EQ, TokenType.NE, TokenType.LT, TokenType.GT, TokenType.LE, TokenType.GE,
})


class Evaluator:
    """
    Evaluates expressions against a symbol table.

    Evaluation never writes to the symbol table.
    """

    def __init__(self, symbols: "SymbolTable", epsilon: float = 1e-9,
                 trig_in_degrees: bool = True):
        self.symbols = symbols
        self.epsilon = epsilon
        self.registry = get_builtin_registry(trig_in_degrees, epsilon)

    # --- General path ---

    def evaluate(self, expr: Expression) -> Variable:
        """Evaluate an expression to produce a Variable."""
        if isinstance(expr, Literal):
            return self._eval_literal(expr)
        elif isinstance(expr, Constant):
            return self._eval_constant(expr)
        elif isinstance(expr, VariableRef):
            return self._unfreeze(self.lookup(expr.name, expr))
        elif isinstance(expr, UnaryOp):
            return self._eval_unary_op(expr)
        elif isinstance(expr, BinaryOp):
            return self._eval_binary_op(expr)
        elif isinstance(expr, FunctionCall):
            return self._eval_function_call(expr)
        elif isinstance(expr, IndexAccess):
            return self._unfreeze(self._eval_index_access(expr))
        elif isinstance(expr, (MapLookup, MemberAccess)):
            return self._unfreeze(self._eval_keyed_access(expr))
        else:
            raise error_invalid_operand(f"cannot evaluate {type(expr).__name__}", expr.span)

    def evaluate_condition(self, expr: Expression) -> bool:
        """Truth value of an IF / ELSE_IF condition."""
        return self.evaluate(expr).is_truthy()

    def evaluate_number(self, expr: Expression) -> Number:
        value = self.evaluate(expr)
        if value.kind not in NUMERIC_KINDS:
            raise error_type_mismatch("number", value.kind.name.lower(), expr.span)
        return to_number(value)

    def evaluate_int(self, expr: Expression) -> int:
        return int(self.evaluate_number(expr))

    def lookup(self, name: str, node: Optional[Expression] = None) -> Variable:
        """
        Resolve a variable name.

        The exact name is tried first. Otherwise a dotted name is resolved
        as a structure member chain from its longest declared prefix.
        """
        span = node.span if node is not None else None
        variable = self.symbols.get(name)
        if variable is not None:
            return variable

        parts = name.split(".")
        for cut in range(len(parts) - 1, 0, -1):
            root = self.symbols.get(".".join(parts[:cut]))
            if root is None:
                continue
            current = root
            for member in parts[cut:]:
                current = self._member(current, member, span)
            return current

        if name in _CONSTANTS:
            return double_var(_CONSTANTS[name])
        raise error_undefined_identifier(name, span)

    @staticmethod
    def _unfreeze(variable: Variable) -> Variable:
        if variable.kind == VariableKind.FROZEN_EXPR:
            return from_python(variable.data.value)
        return variable

    def _eval_literal(self, lit: Literal) -> Variable:
        """Evaluate a literal value."""
        if lit.literal_type == LiteralType.INT:
            return int_var(lit.value)
        elif lit.literal_type == LiteralType.DOUBLE:
            return double_var(lit.value)
        elif lit.literal_type == LiteralType.BOOL:
            return bool_var(lit.value)
        return string_var(lit.value)

    def _eval_constant(self, const: Constant) -> Variable:
        variable = self.symbols.get(const.name)
        if variable is not None:
            return self._unfreeze(variable)
        if const.name in _CONSTANTS:
            return double_var(_CONSTANTS[const.name])
        raise error_undefined_identifier(const.name, const.span)

    def _eval_unary_op(self, op: UnaryOp) -> Variable:
        """Evaluate unary minus."""
        operand = self.evaluate(op.operand)
        if operand.kind == VariableKind.DOUBLE:
            return double_var(-operand.data)
        if operand.kind in NUMERIC_KINDS:
            return int_var(-int(operand.data))
        raise error_type_mismatch("number", operand.kind.name.lower(), op.span)

    def _eval_binary_op(self, op: BinaryOp) -> Variable:
        """Evaluate a binary operation."""
        # Short-circuit for logical operators
        if op.operator == TokenType.AND:
            if not self.evaluate(op.left).is_truthy():
                return bool_var(False)
            return bool_var(self.evaluate(op.right).is_truthy())
        elif op.operator == TokenType.OR:
            if self.evaluate(op.left).is_truthy():
                return bool_var(True)
            return bool_var(self.evaluate(op.right).is_truthy())

        left = self.evaluate(op.left)
        right = self.evaluate(op.right)

        if op.operator in _ARITHMETIC:
            return self._arithmetic(op, left, right)
        if op.operator in _RELATIONAL:
            return bool_var(self._relation(op, left, right))
        raise error_invalid_operand(f"unknown operator {op.operator.name}", op.span)

    def _operand(self, op: BinaryOp, value: Variable) -> Number:
        if value.kind not in NUMERIC_KINDS:
            raise error_type_mismatch("number", value.kind.name.lower(), op.span)
        return to_number(value)

    def _arithmetic(self, op: BinaryOp, left: Variable, right: Variable) -> Variable:
        x = self._operand(op, left)
        y = self._operand(op, right)
        integral = left.kind != VariableKind.DOUBLE and right.kind != VariableKind.DOUBLE

        if op.operator == TokenType.SLASH:
            if y == 0:
                raise error_division_by_zero(op.span)
            return double_var(x / y)
        if op.operator == TokenType.PLUS:
            result = x + y
        elif op.operator == TokenType.MINUS:
            result = x - y
        else:
            result = x * y
        return int_var(result) if integral else double_var(result)

    def _relation(self, op: BinaryOp, left: Variable, right: Variable) -> bool:
        if op.operator in (TokenType.EQ, TokenType.NE):
            if left.kind == VariableKind.STRING or right.kind == VariableKind.STRING:
                equal = to_text(left) == to_text(right)
            else:
                equal = abs(self._operand(op, left) - self._operand(op, right)) <= self.epsilon
            return equal if op.operator == TokenType.EQ else not equal

        x = self._operand(op, left)
        y = self._operand(op, right)
        close = abs(x - y) <= self.epsilon
        if op.operator == TokenType.LT:
            return x < y and not close
        if op.operator == TokenType.GT:
            return x > y and not close
        if op.operator == TokenType.LE:
            return x < y or close
        return x > y or close

    def _eval_function_call(self, call: FunctionCall) -> Variable:
        """Evaluate a builtin function call."""
        args = [self.evaluate(arg) for arg in call.arguments]
        func = self.registry.get_function(call.name)
        if func is None:
            raise error_undefined_identifier(call.name, call.span)
        try:
            return func(args)
        except EvaluationError as exc:
            if exc.diagnostic.span.start.line == 0:
                exc.diagnostic.span = call.span
            raise

    def _eval_index_access(self, access: IndexAccess) -> Variable:
        """Evaluate array element access (e.g., holes[2])."""
        base = self._container(access.base)
        if base.kind != VariableKind.ARRAY:
            raise error_invalid_operand(f"cannot index a {base.kind.name.lower()}", access.span)
        index = self.evaluate(access.index)
        if index.kind not in NUMERIC_KINDS:
            raise error_type_mismatch("integer index", index.kind.name.lower(), access.index.span)
        position = int(index.data)
        if position < 0 or position >= len(base.data):
            raise error_index_out_of_range(position, len(base.data), access.span)
        return base.data[position]

    def _eval_keyed_access(self, access: Union[MapLookup, MemberAccess]) -> Variable:
        """Evaluate map lookup or structure member access."""
        base = self._container(access.base)
        key = access.key if isinstance(access, MapLookup) else access.member
        return self._member(base, key, access.span)

    def _container(self, expr: Expression) -> Variable:
        """Resolve the base of an access chain without copying it."""
        if isinstance(expr, VariableRef):
            return self.lookup(expr.name, expr)
        if isinstance(expr, IndexAccess):
            return self._eval_index_access(expr)
        if isinstance(expr, (MapLookup, MemberAccess)):
            return self._eval_keyed_access(expr)
        return self.evaluate(expr)

    @staticmethod
    def _member(base: Variable, key: str, span=None) -> Variable:
        if base.kind not in (VariableKind.MAP, VariableKind.STRUCTURE):
            raise error_invalid_operand(f"'{key}' looked up in a {base.kind.name.lower()}", span)
        if key not in base.data:
            raise error_missing_key(key, span)
        return base.data[key]

    # --- String path ---

    def evaluate_to_string(self, expr: Expression) -> str:
        """
        Evaluate in string context.

        `+` concatenates the text of both sides. A bare identifier that is
        not declared yields its own name. Other expressions are evaluated
        generally and rendered as text.
        """
        if isinstance(expr, Literal):
            return to_text(self._eval_literal(expr))
        if isinstance(expr, VariableRef):
            try:
                variable = self.lookup(expr.name, expr)
            except EvaluationError:
                return expr.name
            return to_text(variable, expr.name)
        if isinstance(expr, BinaryOp) and expr.operator == TokenType.PLUS:
            return self.evaluate_to_string(expr.left) + self.evaluate_to_string(expr.right)
        if isinstance(expr, BinaryOp) and expr.operator == TokenType.MINUS:
            try:
                return to_text(self.evaluate(expr))
            except EvaluationError:
                # hyphenated text such as a file name split by the parser
                logger.debug("joining %s as hyphenated text", expr.__class__.__name__)
                return self.evaluate_to_string(expr.left) + "-" + self.evaluate_to_string(expr.right)
        return to_text(self.evaluate(expr))
