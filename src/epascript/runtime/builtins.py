"""
Built-in function registry for the EPA script evaluator.

Functions are looked up by name at parse time (an unknown name is a
parse error) and called with evaluated Variables at run time.

Trigonometric functions work in degrees by default, matching the host
CAD system; a registry built with `trig_in_degrees=False` uses radians.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union
import math

from .values import (
    Variable, VariableKind, NUMERIC_KINDS,
    int_var, double_var, string_var, bool_var,
    format_number,
)
from ..tokens import is_number_text
from ..errors import error_bad_argument, error_division_by_zero

Number = Union[int, float]


@dataclass
class BuiltinFunction:
    """
    A built-in function with its arity and implementation.

    `max_args` of None means "same as min_args".
    """
    name: str
    min_args: int
    implementation: Callable[..., Variable]
    max_args: Optional[int] = None
    doc: str = ""

    def accepts(self, count: int) -> bool:
        upper = self.min_args if self.max_args is None else self.max_args
        return self.min_args <= count <= upper

    def __call__(self, args: List[Variable]) -> Variable:
        if not self.accepts(len(args)):
            upper = self.min_args if self.max_args is None else self.max_args
            expected = str(self.min_args) if upper == self.min_args else f"{self.min_args}-{upper}"
            raise error_bad_argument(self.name, f"expected {expected} argument(s), got {len(args)}")
        try:
            return self.implementation(*args)
        except (ValueError, OverflowError) as exc:
            raise error_bad_argument(self.name, str(exc)) from exc


def _number(fn: str, var: Variable) -> Number:
    if var.kind == VariableKind.BOOL:
        return int(var.data)
    if var.kind in (VariableKind.INTEGER, VariableKind.DOUBLE):
        return var.data
    raise error_bad_argument(fn, f"expected a number, got {var.kind.name.lower()}")


def _text(fn: str, var: Variable) -> str:
    if var.kind == VariableKind.STRING:
        return var.data
    if var.kind in NUMERIC_KINDS:
        return format_number(var.data)
    raise error_bad_argument(fn, f"expected a string, got {var.kind.name.lower()}")


def _numeric_result(value: Number, like: Tuple[Variable, ...]) -> Variable:
    """Keep integer results integral when every input was integral."""
    if all(v.kind != VariableKind.DOUBLE for v in like) and float(value).is_integer():
        return int_var(int(value))
    return double_var(value)


def _sign(n: int) -> int:
    return (n > 0) - (n < 0)


def _parse_number_text(text: str) -> Optional[Number]:
    """Parse optionally signed decimal text; None if not a number."""
    stripped = text.strip()
    body = stripped[1:] if stripped[:1] in "+-" else stripped
    if not is_number_text(body):
        return None
    value = float(stripped) if "." in body else int(stripped)
    return value


class BuiltinRegistry:
    """
    Registry of all built-in functions.

    Functions are registered by name and can be looked up for execution.
    """

    def __init__(self, trig_in_degrees: bool = True, epsilon: float = 1e-9):
        self.trig_in_degrees = trig_in_degrees
        self.epsilon = epsilon
        self._functions: Dict[str, BuiltinFunction] = {}
        self._register_all()

    def get_function(self, name: str) -> Optional[BuiltinFunction]:
        """Look up a function by name."""
        return self._functions.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def names(self) -> List[str]:
        return sorted(self._functions)

    def register(self, func: BuiltinFunction) -> None:
        """Register a function."""
        self._functions[func.name] = func

    def call(self, name: str, args: List[Variable]) -> Variable:
        func = self._functions.get(name)
        if func is None:
            raise error_bad_argument(name, "unknown function")
        return func(args)

    def _register_all(self) -> None:
        """Register all built-in functions."""
        self._register_math_functions()
        self._register_string_functions()
        self._register_conversion_functions()
        self._register_relational_functions()

    # --- Math Functions ---

    def _to_radians(self, x: Number) -> float:
        return math.radians(x) if self.trig_in_degrees else float(x)

    def _from_radians(self, x: float) -> float:
        return math.degrees(x) if self.trig_in_degrees else x

    def _register_math_functions(self) -> None:
        """Register mathematical functions."""

        def _trig(name: str, fn: Callable[[float], float]):
            def impl(x: Variable) -> Variable:
                return double_var(fn(self._to_radians(_number(name, x))))
            return impl

        def _inverse_trig(name: str, fn: Callable[[float], float]):
            def impl(x: Variable) -> Variable:
                return double_var(self._from_radians(fn(_number(name, x))))
            return impl

        def _plain(name: str, fn: Callable[[float], float]):
            def impl(x: Variable) -> Variable:
                return double_var(fn(_number(name, x)))
            return impl

        def _log(x: Variable) -> Variable:
            return double_var(math.log10(_number("log", x)))

        def _ln(x: Variable) -> Variable:
            return double_var(math.log(_number("ln", x)))

        def _ceil(x: Variable) -> Variable:
            return int_var(math.ceil(_number("ceil", x)))

        def _floor(x: Variable) -> Variable:
            return int_var(math.floor(_number("floor", x)))

        def _abs(x: Variable) -> Variable:
            return _numeric_result(abs(_number("abs", x)), (x,))

        def _sqr(x: Variable) -> Variable:
            n = _number("sqr", x)
            return _numeric_result(n * n, (x,))

        def _pow(base: Variable, exp: Variable) -> Variable:
            return double_var(math.pow(_number("pow", base), _number("pow", exp)))

        def _mod(a: Variable, b: Variable) -> Variable:
            x, y = _number("mod", a), _number("mod", b)
            if y == 0:
                raise error_division_by_zero()
            if isinstance(x, int) and isinstance(y, int):
                return int_var(int(math.fmod(x, y)))
            return double_var(math.fmod(x, y))

        def _round(x: Variable, digits: Optional[Variable] = None) -> Variable:
            value = _number("round", x)
            if digits is None:
                # half away from zero, like the host system
                return int_var(int(math.copysign(math.floor(abs(value) + 0.5), value)))
            places = int(_number("round", digits))
            scale = 10.0 ** places
            return double_var(math.copysign(math.floor(abs(value) * scale + 0.5), value) / scale)

        for name, fn in (("sin", math.sin), ("cos", math.cos), ("tan", math.tan)):
            self.register(BuiltinFunction(name, 1, _trig(name, fn), doc=f"{name} of an angle"))
        for name, fn in (("asin", math.asin), ("acos", math.acos), ("atan", math.atan)):
            self.register(BuiltinFunction(name, 1, _inverse_trig(name, fn), doc=f"{name} returning an angle"))
        for name, fn in (("sinh", math.sinh), ("cosh", math.cosh), ("tanh", math.tanh),
                         ("exp", math.exp), ("sqrt", math.sqrt)):
            self.register(BuiltinFunction(name, 1, _plain(name, fn)))

        self.register(BuiltinFunction("log", 1, _log, doc="base-10 logarithm"))
        self.register(BuiltinFunction("ln", 1, _ln, doc="natural logarithm"))
        self.register(BuiltinFunction("ceil", 1, _ceil))
        self.register(BuiltinFunction("floor", 1, _floor))
        self.register(BuiltinFunction("abs", 1, _abs))
        self.register(BuiltinFunction("sqr", 1, _sqr, doc="square"))
        self.register(BuiltinFunction("pow", 2, _pow))
        self.register(BuiltinFunction("mod", 2, _mod))
        self.register(BuiltinFunction("round", 1, _round, max_args=2))

    # --- String Functions ---

    def _register_string_functions(self) -> None:
        """Register string inspection functions."""

        def _strlen(s: Variable) -> Variable:
            return int_var(len(_text("strlen", s)))

        def _strcmp(a: Variable, b: Variable) -> Variable:
            x, y = _text("strcmp", a).lower(), _text("strcmp", b).lower()
            return int_var(_sign((x > y) - (x < y)))

        def _strcmpcs(a: Variable, b: Variable) -> Variable:
            x, y = _text("strcmpcs", a), _text("strcmpcs", b)
            return int_var(_sign((x > y) - (x < y)))

        def _strfind(s: Variable, sub: Variable) -> Variable:
            return int_var(_text("strfind", s).lower().find(_text("strfind", sub).lower()))

        def _strfindcs(s: Variable, sub: Variable) -> Variable:
            return int_var(_text("strfindcs", s).find(_text("strfindcs", sub)))

        def _asc(s: Variable) -> Variable:
            text = _text("asc", s)
            if not text:
                raise error_bad_argument("asc", "empty string")
            return int_var(ord(text[0]))

        self.register(BuiltinFunction("strlen", 1, _strlen))
        self.register(BuiltinFunction("strcmp", 2, _strcmp, doc="case-insensitive compare"))
        self.register(BuiltinFunction("strcmpcs", 2, _strcmpcs, doc="case-sensitive compare"))
        self.register(BuiltinFunction("strfind", 2, _strfind, doc="case-insensitive find, -1 if absent"))
        self.register(BuiltinFunction("strfindcs", 2, _strfindcs, doc="case-sensitive find, -1 if absent"))
        self.register(BuiltinFunction("asc", 1, _asc, doc="code of the first character"))

    # --- Conversion Functions ---

    def _register_conversion_functions(self) -> None:
        """Register string/number conversions and type tests."""

        def _stof(s: Variable) -> Variable:
            value = _parse_number_text(_text("stof", s))
            if value is None:
                raise error_bad_argument("stof", f"'{s.data}' is not a number")
            return double_var(value)

        def _stoi(s: Variable) -> Variable:
            value = _parse_number_text(_text("stoi", s))
            if value is None:
                raise error_bad_argument("stoi", f"'{s.data}' is not a number")
            return int_var(math.trunc(value))

        def _stob(s: Variable) -> Variable:
            if s.kind in NUMERIC_KINDS:
                return bool_var(s.data != 0)
            text = _text("stob", s).strip().lower()
            if text in ("true", "yes", "on"):
                return bool_var(True)
            if text in ("false", "no", "off", ""):
                return bool_var(False)
            value = _parse_number_text(text)
            if value is None:
                raise error_bad_argument("stob", f"'{s.data}' is not a boolean")
            return bool_var(value != 0)

        def _isnumber(s: Variable) -> Variable:
            if s.kind in NUMERIC_KINDS:
                return bool_var(True)
            return bool_var(s.kind == VariableKind.STRING and _parse_number_text(s.data) is not None)

        def _isinteger(s: Variable) -> Variable:
            if s.kind in (VariableKind.INTEGER, VariableKind.BOOL):
                return bool_var(True)
            if s.kind == VariableKind.STRING:
                return bool_var(isinstance(_parse_number_text(s.data), int))
            return bool_var(False)

        def _isdouble(s: Variable) -> Variable:
            if s.kind == VariableKind.DOUBLE:
                return bool_var(True)
            if s.kind == VariableKind.STRING:
                return bool_var(isinstance(_parse_number_text(s.data), float))
            return bool_var(False)

        self.register(BuiltinFunction("stof", 1, _stof))
        self.register(BuiltinFunction("stoi", 1, _stoi))
        self.register(BuiltinFunction("stob", 1, _stob))
        self.register(BuiltinFunction("isnumber", 1, _isnumber))
        self.register(BuiltinFunction("isinteger", 1, _isinteger))
        self.register(BuiltinFunction("isdouble", 1, _isdouble))

    # --- Relational Functions ---

    def compare(self, a: Variable, b: Variable, fn: str = "compare") -> int:
        """Three-way compare: text when either side is a string, else numeric with tolerance."""
        if a.kind == VariableKind.STRING or b.kind == VariableKind.STRING:
            x, y = _text(fn, a), _text(fn, b)
            return (x > y) - (x < y)
        x, y = _number(fn, a), _number(fn, b)
        if abs(x - y) <= self.epsilon:
            return 0
        return 1 if x > y else -1

    def _register_relational_functions(self) -> None:
        """Register equal/less/greater helper functions."""

        def _relation(name: str, test: Callable[[int], bool]):
            def impl(a: Variable, b: Variable) -> Variable:
                return bool_var(test(self.compare(a, b, name)))
            return impl

        relations = [
            ("equal", lambda c: c == 0),
            ("less", lambda c: c < 0),
            ("lessorequal", lambda c: c <= 0),
            ("greater", lambda c: c > 0),
            ("greaterorequal", lambda c: c >= 0),
        ]
        for name, test in relations:
            self.register(BuiltinFunction(name, 2, _relation(name, test)))


# Registries keyed by (trig_in_degrees, epsilon)
_registries: Dict[Tuple[bool, float], BuiltinRegistry] = {}


def get_builtin_registry(trig_in_degrees: bool = True, epsilon: float = 1e-9) -> BuiltinRegistry:
    """Get the shared built-in function registry for the given settings."""
    key = (trig_in_degrees, epsilon)
    registry = _registries.get(key)
    if registry is None:
        registry = BuiltinRegistry(trig_in_degrees, epsilon)
        _registries[key] = registry
    return registry


def call_builtin(name: str, args: List[Variable]) -> Variable:
    """Call a built-in function by name using default settings."""
    return get_builtin_registry().call(name, args)
