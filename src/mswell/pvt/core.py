"""Property oracle interface and derivative-aware table interpolation."""

import typing

import numpy as np
from scipy.interpolate import make_interp_spline  # type: ignore[import-untyped]

from mswell.ad import Evaluation, FloatOrEvaluation
from mswell.errors import PropertyEvaluationError, ValidationError
from mswell.types import FluidPhase

__all__ = ["PropertyOracle", "TableInterpolator"]


@typing.runtime_checkable
class PropertyOracle(typing.Protocol):
    """
    Protocol for fluid property evaluation.

    Every method accepts plain floats or `Evaluation`s for the state
    arguments and returns the same kind, with derivatives propagated in the
    caller's derivative layout.
    """

    def formation_volume_factor(
        self,
        phase: FluidPhase,
        pressure: FloatOrEvaluation,
        temperature: float,
        composition: FloatOrEvaluation = 0.0,
        cell: int = 0,
    ) -> FloatOrEvaluation:
        """
        Formation volume factor of a phase (reservoir volume per surface volume).

        :param phase: The phase.
        :param pressure: Phase pressure (Pa).
        :param temperature: Temperature (K).
        :param composition: Dissolved gas-oil ratio for oil, vaporized oil-gas ratio for gas.
        :param cell: Cell index, used to select the PVT region.
        :raises PropertyEvaluationError: If the state is outside the valid range.
        """
        ...

    def viscosity(
        self,
        phase: FluidPhase,
        pressure: FloatOrEvaluation,
        temperature: float,
        composition: FloatOrEvaluation = 0.0,
        cell: int = 0,
    ) -> FloatOrEvaluation:
        """Viscosity of a phase (Pa·s)."""
        ...

    def saturation_limit(
        self,
        phase: FluidPhase,
        pressure: FloatOrEvaluation,
        temperature: float,
        cell: int = 0,
    ) -> FloatOrEvaluation:
        """
        Saturated composition of a phase.

        Maximum dissolved gas-oil ratio for oil, maximum vaporized oil-gas
        ratio for gas, zero for water.
        """
        ...

    def surface_density(self, phase: FluidPhase, cell: int = 0) -> float:
        """Density of a phase at surface conditions (kg/m³)."""
        ...


class TableInterpolator:
    """
    Piecewise-linear table lookup that propagates derivatives.

    Wraps a degree-one `scipy.interpolate` B-spline and its derivative, both
    built once at construction.
    """

    def __init__(
        self,
        xs: typing.Sequence[float],
        ys: typing.Sequence[float],
        extrapolate: bool = True,
        name: str = "property",
    ) -> None:
        """
        :param xs: Strictly increasing abscissae (at least two points).
        :param ys: Ordinates.
        :param extrapolate: Whether queries outside `[xs[0], xs[-1]]` are extrapolated linearly.
        :param name: Name used in error messages.
        """
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
        if xs.ndim != 1 or xs.size < 2:
            raise ValidationError(f"Table for {name} needs at least two points")
        if xs.shape != ys.shape:
            raise ValidationError(
                f"Table for {name} has {ys.size} values for {xs.size} abscissae"
            )
        if np.any(np.diff(xs) <= 0.0):
            raise ValidationError(f"Abscissae of the {name} table must increase strictly")

        self.name = name
        self.extrapolate = extrapolate
        self.bounds = (float(xs[0]), float(xs[-1]))
        self._spline = make_interp_spline(xs, ys, k=1)
        self._slope = self._spline.derivative()

    def __call__(self, x: FloatOrEvaluation) -> FloatOrEvaluation:
        """
        Evaluate the table at `x`.

        :return: Interpolated value, as an `Evaluation` if `x` is one.
        :raises PropertyEvaluationError: If `x` is not finite, or outside the
            table while extrapolation is disabled.
        """
        xv = x.value if isinstance(x, Evaluation) else float(x)
        if not np.isfinite(xv):
            raise PropertyEvaluationError(f"Cannot evaluate {self.name} at {xv}")
        lower, upper = self.bounds
        if not self.extrapolate and (xv < lower or xv > upper):
            raise PropertyEvaluationError(
                f"{self.name} requested at {xv:.6g}, outside table range [{lower:.6g}, {upper:.6g}]"
            )
        value = float(self._spline(xv))
        if isinstance(x, Evaluation):
            return Evaluation(value, x.derivatives * float(self._slope(xv)))
        return value
