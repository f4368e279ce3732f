"""Exact integer and decimal value types.

On-chain magnitudes are 10**18-scale integers; every conversion to a native
float happens once, at the presentation boundary, through ``to_float`` which
reports the rounding direction.
"""

import functools
from decimal import (
    ROUND_HALF_EVEN,
    Context,
    Decimal,
    DivisionByZero,
    InvalidOperation,
)
from enum import Enum
from typing import Tuple, Union

from .errors import ComputeInconsistency, ValidationError

CONTEXT = Context(prec=60, rounding=ROUND_HALF_EVEN)


class Accuracy(str, Enum):
    EXACT = "exact"
    BELOW = "below"
    ABOVE = "above"


IntLike = Union["ExactInt", int]
DecimalLike = Union["ExactDecimal", "ExactInt", int, str, Decimal]


def _parse_int_str(raw: str) -> int:
    s = raw.strip()
    if not s:
        return 0
    neg = s.startswith("-")
    body = s[1:] if neg else s
    try:
        if body[:2].lower() == "0x":
            v = int(body[2:] or "0", 16)
        else:
            v = int(body, 10)
    except ValueError as e:
        raise ValidationError(f"invalid integer literal: {raw!r}") from e
    return -v if neg else v


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


@functools.total_ordering
class ExactInt:
    __slots__ = ("_v",)

    def __init__(self, value: Union["ExactInt", int, str, Decimal] = 0):
        if isinstance(value, ExactInt):
            v = value._v
        elif isinstance(value, bool):
            v = int(value)
        elif isinstance(value, int):
            v = value
        elif isinstance(value, str):
            v = _parse_int_str(value)
        elif isinstance(value, Decimal):
            if not value.is_finite() or value != value.to_integral_value():
                raise ValidationError(f"not an integer: {value}")
            v = int(value)
        else:
            raise ValidationError(f"cannot build ExactInt from {type(value).__name__}")
        object.__setattr__(self, "_v", v)

    def __setattr__(self, name, value):
        raise AttributeError("ExactInt is immutable")

    def __reduce__(self):
        return (ExactInt, (self._v,))

    @property
    def value(self) -> int:
        return self._v

    @staticmethod
    def _coerce(other: IntLike) -> int:
        if isinstance(other, ExactInt):
            return other._v
        if isinstance(other, int):
            return other
        return NotImplemented

    def __add__(self, other: IntLike) -> "ExactInt":
        o = self._coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return ExactInt(self._v + o)

    __radd__ = __add__

    def __sub__(self, other: IntLike) -> "ExactInt":
        o = self._coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return ExactInt(self._v - o)

    def __rsub__(self, other: IntLike) -> "ExactInt":
        o = self._coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return ExactInt(o - self._v)

    def __mul__(self, other: IntLike) -> "ExactInt":
        o = self._coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return ExactInt(self._v * o)

    __rmul__ = __mul__

    def div(self, other: IntLike) -> "ExactInt":
        """Truncating division; a zero divisor yields zero."""
        o = self._coerce(other)
        if o is NotImplemented:
            raise ValidationError(f"cannot divide by {type(other).__name__}")
        if o == 0:
            return ExactInt(0)
        return ExactInt(_trunc_div(self._v, o))

    __floordiv__ = div

    def mod(self, other: IntLike) -> "ExactInt":
        o = self._coerce(other)
        if o is NotImplemented:
            raise ValidationError(f"cannot take modulus by {type(other).__name__}")
        if o == 0:
            return ExactInt(0)
        return ExactInt(self._v - o * _trunc_div(self._v, o))

    __mod__ = mod

    def pow(self, exponent: int) -> "ExactInt":
        if exponent < 0:
            raise ValidationError("ExactInt exponent must be non-negative")
        return ExactInt(self._v ** exponent)

    def modpow(self, exponent: IntLike, modulus: IntLike) -> "ExactInt":
        e = int(ExactInt(exponent))
        m = int(ExactInt(modulus))
        if e <= 0:
            return ExactInt(1) if m == 0 else ExactInt(1).mod(m)
        if m == 0:
            return ExactInt(self._v ** e)
        return ExactInt(pow(self._v, e, abs(m)))

    def __neg__(self) -> "ExactInt":
        return ExactInt(-self._v)

    def __abs__(self) -> "ExactInt":
        return ExactInt(abs(self._v))

    def neg(self) -> "ExactInt":
        return -self

    def abs(self) -> "ExactInt":
        return ExactInt(abs(self._v))

    def sign(self) -> int:
        return (self._v > 0) - (self._v < 0)

    def is_zero(self) -> bool:
        return self._v == 0

    def is_negative(self) -> bool:
        return self._v < 0

    def is_positive(self) -> bool:
        return self._v > 0

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ExactDecimal):
            return other == self
        o = self._coerce(other)  # type: ignore[arg-type]
        if o is NotImplemented:
            return NotImplemented
        return self._v == o

    def __lt__(self, other: IntLike) -> bool:
        o = self._coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return self._v < o

    def __hash__(self) -> int:
        return hash(self._v)

    def __int__(self) -> int:
        return self._v

    def __bool__(self) -> bool:
        return self._v != 0

    def __str__(self) -> str:
        return str(self._v)

    def __repr__(self) -> str:
        return f"ExactInt('{self._v}')"

    def to_decimal(self) -> "ExactDecimal":
        return ExactDecimal(self)

    def to_float(self) -> Tuple[float, Accuracy]:
        try:
            f = float(self._v)
        except OverflowError:
            return (float("inf"), Accuracy.BELOW) if self._v > 0 else (float("-inf"), Accuracy.ABOVE)
        back = int(f)
        if back == self._v:
            return f, Accuracy.EXACT
        return f, (Accuracy.ABOVE if back > self._v else Accuracy.BELOW)


def _to_decimal(value: DecimalLike) -> Decimal:
    if isinstance(value, ExactDecimal):
        return value._d
    if isinstance(value, ExactInt):
        return Decimal(value.value)
    if isinstance(value, float):
        raise ValidationError("ExactDecimal refuses native floats; pass a string")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            return Decimal(0)
        try:
            d = Decimal(s)
        except InvalidOperation as e:
            raise ValidationError(f"invalid decimal literal: {value!r}") from e
    else:
        raise ValidationError(f"cannot build ExactDecimal from {type(value).__name__}")
    if not d.is_finite():
        raise ValidationError(f"non-finite decimal: {value!r}")
    return d


@functools.total_ordering
class ExactDecimal:
    __slots__ = ("_d",)

    def __init__(self, value: DecimalLike = 0):
        object.__setattr__(self, "_d", _to_decimal(value))

    def __setattr__(self, name, value):
        raise AttributeError("ExactDecimal is immutable")

    def __reduce__(self):
        return (ExactDecimal, (self._d,))

    @property
    def value(self) -> Decimal:
        return self._d

    @staticmethod
    def _coerce(other: object) -> Decimal:
        if isinstance(other, (ExactDecimal, ExactInt, int, str, Decimal)) and not isinstance(other, bool):
            return _to_decimal(other)
        return NotImplemented

    def __add__(self, other: DecimalLike) -> "ExactDecimal":
        o = self._coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return ExactDecimal(CONTEXT.add(self._d, o))

    __radd__ = __add__

    def __sub__(self, other: DecimalLike) -> "ExactDecimal":
        o = self._coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return ExactDecimal(CONTEXT.subtract(self._d, o))

    def __rsub__(self, other: DecimalLike) -> "ExactDecimal":
        o = self._coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return ExactDecimal(CONTEXT.subtract(o, self._d))

    def __mul__(self, other: DecimalLike) -> "ExactDecimal":
        o = self._coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return ExactDecimal(CONTEXT.multiply(self._d, o))

    __rmul__ = __mul__

    def __truediv__(self, other: DecimalLike) -> "ExactDecimal":
        o = self._coerce(other)
        if o is NotImplemented:
            return NotImplemented
        if o == 0:
            return ExactDecimal(0)
        return ExactDecimal(CONTEXT.divide(self._d, o))

    def __rtruediv__(self, other: DecimalLike) -> "ExactDecimal":
        o = self._coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return ExactDecimal(o) / self

    div = __truediv__
    add = __add__
    sub = __sub__
    mul = __mul__

    def pow(self, exponent: DecimalLike) -> "ExactDecimal":
        e = _to_decimal(exponent)
        if e == e.to_integral_value():
            e = Decimal(int(e))
        try:
            return ExactDecimal(CONTEXT.power(self._d, e))
        except DivisionByZero:
            return ExactDecimal(0)
        except InvalidOperation as ex:
            raise ComputeInconsistency(f"{self._d} ** {e} is undefined") from ex

    __pow__ = pow

    def __neg__(self) -> "ExactDecimal":
        return ExactDecimal(-self._d)

    def __abs__(self) -> "ExactDecimal":
        return ExactDecimal(abs(self._d))

    def neg(self) -> "ExactDecimal":
        return -self

    def abs(self) -> "ExactDecimal":
        return ExactDecimal(abs(self._d))

    def sign(self) -> int:
        return (self._d > 0) - (self._d < 0)

    def is_zero(self) -> bool:
        return self._d == 0

    def lt(self, other: DecimalLike) -> bool:
        return self._d < _to_decimal(other)

    def lte(self, other: DecimalLike) -> bool:
        return self._d <= _to_decimal(other)

    def gt(self, other: DecimalLike) -> bool:
        return self._d > _to_decimal(other)

    def gte(self, other: DecimalLike) -> bool:
        return self._d >= _to_decimal(other)

    def eq(self, other: DecimalLike) -> bool:
        return self._d == _to_decimal(other)

    def __eq__(self, other: object) -> bool:
        try:
            o = self._coerce(other)
        except ValidationError:
            # not a number, so not equal
            return NotImplemented
        if o is NotImplemented:
            return NotImplemented
        return self._d == o

    def __lt__(self, other: DecimalLike) -> bool:
        o = self._coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return self._d < o

    def __hash__(self) -> int:
        return hash(self._d)

    def __bool__(self) -> bool:
        return self._d != 0

    def __str__(self) -> str:
        if self._d == 0:
            return "0"
        return format(self._d.normalize(CONTEXT), "f")

    def __repr__(self) -> str:
        return f"ExactDecimal('{self}')"

    def format(self, places: int) -> str:
        q = Decimal(1).scaleb(-places)
        return format(self._d.quantize(q, context=Context(prec=120, rounding=ROUND_HALF_EVEN)), "f")

    def to_decimal(self) -> Decimal:
        return self._d

    def to_float(self) -> Tuple[float, Accuracy]:
        """Boundary-only conversion, reporting how the double compares to the exact value."""
        f = float(self._d)
        if f in (float("inf"), float("-inf")):
            return f, (Accuracy.ABOVE if f > 0 else Accuracy.BELOW)
        back = Decimal(f)
        if back == self._d:
            return f, Accuracy.EXACT
        return f, (Accuracy.ABOVE if back > self._d else Accuracy.BELOW)


ZERO = ExactDecimal(0)
ONE = ExactDecimal(1)


def dmin(*values: ExactDecimal) -> ExactDecimal:
    return min(values, key=lambda x: x.value)


def dmax(*values: ExactDecimal) -> ExactDecimal:
    return max(values, key=lambda x: x.value)


def normalize(amount: IntLike, decimals: int) -> ExactDecimal:
    """``amount / 10**decimals`` by shifting the exponent; no rounding occurs."""
    if decimals < 0:
        raise ValidationError(f"decimals must be >= 0, got {decimals}")
    sign, digits, exponent = Decimal(int(ExactInt(amount))).as_tuple()
    return ExactDecimal(Decimal((sign, digits, exponent - decimals)))


def apr_to_apy(apr: ExactDecimal, periods: Union[int, ExactDecimal]) -> ExactDecimal:
    """Compound ``apr`` over ``periods`` per year; fractional periods are allowed."""
    if periods <= 0:
        return apr
    return (ONE + apr / periods).pow(periods) - ONE


def apy_from_pps(current: ExactDecimal, historical: ExactDecimal, days: int) -> ExactDecimal:
    if historical.is_zero() or historical == current:
        return ZERO
    return (current - historical) / historical / days * 365
