import typing

import attrs

from mswell.constants import Constants, c
from mswell.errors import ValidationError
from mswell.types import FluidPhase, PhaseMapping

__all__ = ["Config"]


def _default_scaling_factors() -> typing.Dict[FluidPhase, float]:
    return {
        FluidPhase.WATER: c.DEFAULT_WATER_SCALING_FACTOR,
        FluidPhase.OIL: c.DEFAULT_OIL_SCALING_FACTOR,
        FluidPhase.GAS: c.DEFAULT_GAS_SCALING_FACTOR,
    }


def _validate_scaling_factors(instance, attribute, value) -> None:
    for phase, factor in value.items():
        if factor <= 0.0:
            raise ValidationError(
                f"Scaling factor for {FluidPhase(phase).value} must be positive, got {factor}"
            )


@attrs.frozen
class Config:
    """Well model parameters: inner Newton solve, pressure-drop terms and update limits."""

    tolerance_wells: float = attrs.field(
        default=1e-4, validator=attrs.validators.gt(0.0)
    )
    """Tolerance for the scaled mass-balance (flux) residuals."""
    pressure_tolerance_factor: float = attrs.field(
        default=10.0, validator=attrs.validators.gt(0.0)
    )
    """
    Pressure and control equations are converged when their residual is below
    `tolerance_wells * pressure_tolerance_factor`.
    """
    max_residual_allowed: float = attrs.field(
        factory=lambda: c.MAX_WELL_RESIDUAL, validator=attrs.validators.gt(0.0)
    )
    """Scaled flux residuals above this value mark the well solution as diverged."""
    max_inner_iterations: int = attrs.field(
        default=100,
        validator=attrs.validators.and_(
            attrs.validators.ge(1), attrs.validators.le(500)
        ),
    )
    """
    Budget of inner (well-only) Newton iterations per assembly.

    Exhausting it is reported as a status; the outer simulator decides whether
    to cut the time step.
    """
    use_inner_iterations: bool = True
    """Whether `assemble` converges the well equations locally before the final assembly."""
    include_friction: bool = True
    """Whether frictional pressure loss is part of the segment pressure equations."""
    include_acceleration: bool = False
    """Whether the velocity-head (acceleration) term is part of the segment pressure equations."""
    max_fraction_change: float = attrs.field(
        default=0.2, validator=attrs.validators.gt(0.0)
    )
    """Largest change of a phase fraction primary variable in a single Newton update."""
    max_pressure_change: float = attrs.field(
        default=2e5, validator=attrs.validators.gt(0.0)
    )
    """Largest change of a segment pressure in a single Newton update (Pa)."""
    gravity: float = attrs.field(
        factory=lambda: c.ACCELERATION_DUE_TO_GRAVITY, validator=attrs.validators.ge(0.0)
    )
    """Acceleration due to gravity (m/s²). Set to zero to drop hydrostatic terms."""
    phase_scaling_factors: PhaseMapping[float] = attrs.field(
        factory=_default_scaling_factors, validator=_validate_scaling_factors
    )
    """
    Weights `g_p` of the phases in the total rate primary variable
    `G_t = sum_p g_p Q_p`. Gas is down-weighted so that the total rate is not
    dominated by surface gas volumes.
    """
    constants: Constants = attrs.field(factory=Constants)
    """Physical constants and thresholds used by the well model."""

    def scaling_factor(self, phase: FluidPhase) -> float:
        return float(self.phase_scaling_factors.get(phase, 1.0))
