"""
Forward-mode automatic differentiation with dual numbers.

An `Evaluation` carries a value and a fixed-size vector of partial derivatives
with respect to an ordered set of local unknowns. Every arithmetic operation
propagates the derivatives through the chain rule, so residuals built from
evaluations hand their Jacobian rows to the assembler directly.
"""

import math
import typing

import numpy as np


__all__ = [
    "Evaluation",
    "FloatOrEvaluation",
    "value_of",
    "exp",
    "log",
    "sqrt",
    "maximum",
    "minimum",
]


class Evaluation:
    """A value together with its partial derivatives."""

    __slots__ = ("value", "derivatives")

    # numpy scalars on the left must defer to the reflected operators
    __array_ufunc__ = None

    def __init__(self, value: float, derivatives: np.ndarray) -> None:
        self.value = float(value)
        self.derivatives = derivatives

    @classmethod
    def constant(cls, value: float, size: int) -> "Evaluation":
        """Create an evaluation with all derivatives zero."""
        return cls(value, np.zeros(size, dtype=np.float64))

    @classmethod
    def variable(cls, value: float, index: int, size: int) -> "Evaluation":
        """Create an evaluation seeded as the `index`-th unknown."""
        derivatives = np.zeros(size, dtype=np.float64)
        derivatives[index] = 1.0
        return cls(value, derivatives)

    @property
    def size(self) -> int:
        return self.derivatives.shape[0]

    def derivative(self, index: int) -> float:
        return float(self.derivatives[index])

    def copy(self) -> "Evaluation":
        return Evaluation(self.value, self.derivatives.copy())

    def extend(self, size: int, offset: int = 0) -> "Evaluation":
        """
        Embed the derivatives into a larger derivative vector.

        :param size: Size of the new derivative vector.
        :param offset: Position of the first existing derivative in the new vector.
        :return: A new evaluation with the same value.
        """
        if offset + self.size > size:
            raise ValueError(
                f"Cannot place {self.size} derivatives at offset {offset} in a vector of size {size}"
            )
        derivatives = np.zeros(size, dtype=np.float64)
        derivatives[offset : offset + self.size] = self.derivatives
        return Evaluation(self.value, derivatives)

    def _check(self, other: "Evaluation") -> None:
        if other.derivatives.shape != self.derivatives.shape:
            raise ValueError(
                f"Derivative size mismatch: {self.size} vs {other.size}"
            )

    def __add__(self, other: "FloatOrEvaluation") -> "Evaluation":
        if isinstance(other, Evaluation):
            self._check(other)
            return Evaluation(self.value + other.value, self.derivatives + other.derivatives)
        return Evaluation(self.value + other, self.derivatives.copy())

    __radd__ = __add__

    def __sub__(self, other: "FloatOrEvaluation") -> "Evaluation":
        if isinstance(other, Evaluation):
            self._check(other)
            return Evaluation(self.value - other.value, self.derivatives - other.derivatives)
        return Evaluation(self.value - other, self.derivatives.copy())

    def __rsub__(self, other: float) -> "Evaluation":
        return Evaluation(other - self.value, -self.derivatives)

    def __mul__(self, other: "FloatOrEvaluation") -> "Evaluation":
        if isinstance(other, Evaluation):
            self._check(other)
            return Evaluation(
                self.value * other.value,
                self.derivatives * other.value + other.derivatives * self.value,
            )
        return Evaluation(self.value * other, self.derivatives * other)

    __rmul__ = __mul__

    def __truediv__(self, other: "FloatOrEvaluation") -> "Evaluation":
        if isinstance(other, Evaluation):
            self._check(other)
            inverse = 1.0 / other.value
            value = self.value * inverse
            return Evaluation(
                value, (self.derivatives - other.derivatives * value) * inverse
            )
        return Evaluation(self.value / other, self.derivatives / other)

    def __rtruediv__(self, other: float) -> "Evaluation":
        value = other / self.value
        return Evaluation(value, -self.derivatives * (value / self.value))

    def __pow__(self, exponent: "FloatOrEvaluation") -> "Evaluation":
        if isinstance(exponent, Evaluation):
            return exp(exponent * log(self))
        value = self.value**exponent
        if exponent == 0.0:
            return Evaluation(1.0, np.zeros_like(self.derivatives))
        return Evaluation(
            value, self.derivatives * (exponent * self.value ** (exponent - 1.0))
        )

    def __rpow__(self, base: float) -> "Evaluation":
        value = base**self.value
        return Evaluation(value, self.derivatives * (value * math.log(base)))

    def __neg__(self) -> "Evaluation":
        return Evaluation(-self.value, -self.derivatives)

    def __pos__(self) -> "Evaluation":
        return self.copy()

    def __abs__(self) -> "Evaluation":
        if self.value < 0.0:
            return -self
        return self.copy()

    # Ordering compares values only, which is what branch decisions need.
    def __lt__(self, other: "FloatOrEvaluation") -> bool:
        return self.value < value_of(other)

    def __le__(self, other: "FloatOrEvaluation") -> bool:
        return self.value <= value_of(other)

    def __gt__(self, other: "FloatOrEvaluation") -> bool:
        return self.value > value_of(other)

    def __ge__(self, other: "FloatOrEvaluation") -> bool:
        return self.value >= value_of(other)

    def __float__(self) -> float:
        return self.value

    def __repr__(self) -> str:
        return f"Evaluation(value={self.value!r}, derivatives={self.derivatives!r})"


FloatOrEvaluation = typing.Union[float, Evaluation]


def value_of(x: FloatOrEvaluation) -> float:
    """Value of an evaluation, or the float itself."""
    if isinstance(x, Evaluation):
        return x.value
    return float(x)


def exp(x: FloatOrEvaluation) -> FloatOrEvaluation:
    if isinstance(x, Evaluation):
        value = math.exp(x.value)
        return Evaluation(value, x.derivatives * value)
    return math.exp(x)


def log(x: FloatOrEvaluation) -> FloatOrEvaluation:
    if isinstance(x, Evaluation):
        return Evaluation(math.log(x.value), x.derivatives / x.value)
    return math.log(x)


def sqrt(x: FloatOrEvaluation) -> FloatOrEvaluation:
    if isinstance(x, Evaluation):
        value = math.sqrt(x.value)
        return Evaluation(value, x.derivatives * (0.5 / value))
    return math.sqrt(x)


def maximum(a: FloatOrEvaluation, b: FloatOrEvaluation) -> FloatOrEvaluation:
    """Larger of two operands; derivatives follow the selected operand."""
    return a if value_of(a) >= value_of(b) else b


def minimum(a: FloatOrEvaluation, b: FloatOrEvaluation) -> FloatOrEvaluation:
    """Smaller of two operands; derivatives follow the selected operand."""
    return a if value_of(a) <= value_of(b) else b
