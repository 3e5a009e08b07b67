"""Per-segment primary variables of a multisegment well."""

import logging
import typing

import attrs
import numpy as np

from mswell._precision import get_dtype
from mswell.ad import Evaluation
from mswell.config import Config
from mswell.constants import c
from mswell.errors import ValidationError
from mswell.types import FluidPhase, PhaseUsage, WellRole
from mswell.utils import limited_step, renormalize_fractions

logger = logging.getLogger(__name__)

__all__ = ["PrimaryVariableLayout", "PrimaryVariables", "process_fractions"]


@attrs.frozen
class PrimaryVariableLayout:
    """
    Ordering of the primary variables of a segment and of the local derivative vector.

    Every segment carries the total rate `G_t`, the water and gas fractions
    (when those phases are active) and the segment pressure, in that order.
    The oil fraction is implied. Derivative vectors hold the reservoir
    unknowns of one cell first, followed by the unknowns of one segment.
    """

    phase_usage: PhaseUsage
    """Active phases."""
    num_eq: int = attrs.field(validator=attrs.validators.ge(1))
    """Number of reservoir unknowns per cell."""
    scaling_factors: typing.Tuple[float, ...] = attrs.field(
        converter=lambda values: tuple(float(value) for value in values)
    )
    """Weight `g_p` of each active phase in the total rate."""

    @scaling_factors.validator
    def _check_scaling_factors(self, attribute, value) -> None:
        if len(value) != self.phase_usage.num_phases:
            raise ValidationError(
                f"Expected {self.phase_usage.num_phases} scaling factors, got {len(value)}"
            )
        if any(factor <= 0.0 for factor in value):
            raise ValidationError("Phase scaling factors must be positive")

    @classmethod
    def from_config(
        cls, phase_usage: PhaseUsage, num_eq: int, config: Config
    ) -> "PrimaryVariableLayout":
        return cls(
            phase_usage=phase_usage,
            num_eq=num_eq,
            scaling_factors=[config.scaling_factor(phase) for phase in phase_usage],
        )

    @property
    def num_well_eq(self) -> int:
        return self.phase_usage.num_phases + 1

    @property
    def size(self) -> int:
        """Length of the local derivative vectors."""
        return self.num_eq + self.num_well_eq

    @property
    def gtotal(self) -> int:
        return 0

    @property
    def wfrac(self) -> int:
        return 1 if self.phase_usage.has_water else -1

    @property
    def gfrac(self) -> int:
        if not self.phase_usage.has_gas:
            return -1
        return 2 if self.phase_usage.has_water else 1

    @property
    def spres(self) -> int:
        return self.num_well_eq - 1

    def fraction_index(self, phase: FluidPhase) -> int:
        """Position of a phase's fraction variable, or -1 for the implied oil fraction."""
        if phase is FluidPhase.WATER:
            return self.wfrac
        if phase is FluidPhase.GAS:
            return self.gfrac
        return -1

    def scaling_factor(self, phase: FluidPhase) -> float:
        return self.scaling_factors[self.phase_usage.position(phase)]

    def well_slot(self, eq: int) -> int:
        """Position of a segment unknown in the derivative vector."""
        return self.num_eq + eq


def process_fractions(values: np.ndarray, layout: PrimaryVariableLayout, segment: int = 0) -> bool:
    """
    Remove negative phase fractions from a segment's primary variables (in-place).

    Negative fractions, checked in the order water, gas, oil, are set to zero
    and the remaining fractions are rescaled to keep summing to one. This is
    applied once per update; the result is not re-checked.

    :param values: Primary variable values of one segment.
    :param layout: Primary variable layout.
    :param segment: Segment index, for logging.
    :return: True if any fraction was corrected.
    """
    pu = layout.phase_usage
    fractions = np.zeros(pu.num_phases, dtype=np.float64)
    io = pu.position(FluidPhase.OIL)
    fractions[io] = 1.0
    for phase in (FluidPhase.WATER, FluidPhase.GAS):
        index = layout.fraction_index(phase)
        if index >= 0:
            fractions[pu.position(phase)] = values[index]
            fractions[io] -= values[index]

    order = np.array(
        [
            pu.position(phase)
            for phase in (FluidPhase.WATER, FluidPhase.GAS, FluidPhase.OIL)
            if pu.position(phase) >= 0
        ],
        dtype=np.int64,
    )
    corrected = renormalize_fractions(fractions, order, c.MIN_FRACTION_DENOMINATOR)
    if corrected:
        logger.warning(
            f"Nonphysical phase fractions in segment {segment} were clipped to "
            f"{dict(zip((phase.value for phase in pu), fractions.round(6)))}"
        )
        for phase in (FluidPhase.WATER, FluidPhase.GAS):
            index = layout.fraction_index(phase)
            if index >= 0:
                values[index] = fractions[pu.position(phase)]
    return corrected


class PrimaryVariables:
    """
    Primary variable values of every segment and their `Evaluation`s.

    The evaluations are scratch state rebuilt by `init_evaluations` whenever
    the values change. Segment `s` variable `k` is seeded at derivative slot
    `num_eq + k`.
    """

    def __init__(self, layout: PrimaryVariableLayout, num_segments: int) -> None:
        self.layout = layout
        self.num_segments = num_segments
        self.values = np.zeros((num_segments, layout.num_well_eq), dtype=get_dtype())
        self.evaluations: typing.List[typing.List[Evaluation]] = []
        self.init_evaluations()

    def init_evaluations(self) -> None:
        layout = self.layout
        size = layout.size
        self.evaluations = [
            [
                Evaluation.variable(self.values[seg, eq], layout.well_slot(eq), size)
                for eq in range(layout.num_well_eq)
            ]
            for seg in range(self.num_segments)
        ]

    def copy(self) -> "PrimaryVariables":
        other = PrimaryVariables(self.layout, self.num_segments)
        other.values[...] = self.values
        other.init_evaluations()
        return other

    def gtotal(self, seg: int) -> Evaluation:
        return self.evaluations[seg][self.layout.gtotal]

    def segment_pressure(self, seg: int) -> Evaluation:
        return self.evaluations[seg][self.layout.spres]

    def volume_fraction(self, seg: int, phase: FluidPhase) -> Evaluation:
        """Fraction variable of a phase; the oil fraction is one minus the others."""
        index = self.layout.fraction_index(phase)
        if index >= 0:
            return self.evaluations[seg][index]
        oil = Evaluation.constant(1.0, self.layout.size)
        for other in (FluidPhase.WATER, FluidPhase.GAS):
            other_index = self.layout.fraction_index(other)
            if other_index >= 0:
                oil = oil - self.evaluations[seg][other_index]
        return oil

    def volume_fraction_scaled(self, seg: int, phase: FluidPhase) -> Evaluation:
        """`F_p / g_p`, so that `Q_p = G_t * F_p / g_p`."""
        return self.volume_fraction(seg, phase) / self.layout.scaling_factor(phase)

    def surface_volume_fraction(self, seg: int, phase: FluidPhase) -> Evaluation:
        """`Q_p / sum_q Q_q` at surface conditions."""
        total = None
        for other in self.layout.phase_usage:
            scaled = self.volume_fraction_scaled(seg, other)
            total = scaled if total is None else total + scaled
        return self.volume_fraction_scaled(seg, phase) / total

    def segment_rate(self, seg: int, phase: FluidPhase) -> Evaluation:
        """Surface rate of a phase through a segment."""
        return self.gtotal(seg) * self.volume_fraction_scaled(seg, phase)

    def process_fractions(self, seg: int) -> bool:
        return process_fractions(self.values[seg], self.layout, seg)

    def apply_update(self, dx: np.ndarray, config: Config) -> None:
        """
        Apply a Newton increment, `x <- x - dx`, with step limits.

        Fraction steps are limited to `config.max_fraction_change`, pressure
        steps to `config.max_pressure_change`; total rate steps are not
        limited. Fractions are processed once afterwards.

        :param dx: Increments of shape `(num_segments, num_well_eq)`.
        :param config: Update limits.
        """
        layout = self.layout
        dx = np.asarray(dx, dtype=np.float64).reshape(self.num_segments, layout.num_well_eq)
        for seg in range(self.num_segments):
            values = self.values[seg]
            for index in (layout.wfrac, layout.gfrac):
                if index >= 0:
                    values[index] -= limited_step(dx[seg, index], config.max_fraction_change)
            self.process_fractions(seg)
            values[layout.spres] -= limited_step(dx[seg, layout.spres], config.max_pressure_change)
            values[layout.gtotal] -= dx[seg, layout.gtotal]
        self.init_evaluations()

    def set_from_rates(
        self,
        segment_rates: np.ndarray,
        segment_pressures: np.ndarray,
        role: WellRole,
        injected_phase: typing.Optional[FluidPhase] = None,
    ) -> None:
        """
        Initialize the primary variables from segment surface rates and pressures.

        `G_t = sum_p g_p Q_p` and `F_p = g_p Q_p / G_t`. Segments without flow
        take the injected phase for injectors and equal fractions for
        producers.

        :param segment_rates: Surface rates of shape `(num_segments, num_phases)`.
        :param segment_pressures: Segment pressures (Pa).
        :param role: Well role.
        :param injected_phase: Injected phase, required for injectors.
        """
        layout = self.layout
        pu = layout.phase_usage
        g = np.asarray(layout.scaling_factors, dtype=np.float64)
        for seg in range(self.num_segments):
            rates = np.asarray(segment_rates[seg], dtype=np.float64)
            total = float(np.dot(g, rates))
            self.values[seg, layout.gtotal] = total
            if abs(total) > 0.0:
                fractions = g * rates / total
            elif role is WellRole.INJECTOR:
                if injected_phase is None:
                    raise ValidationError("An injector needs an injected phase")
                fractions = np.zeros(pu.num_phases, dtype=np.float64)
                fractions[pu.position(injected_phase)] = 1.0
            else:
                fractions = np.full(pu.num_phases, 1.0 / pu.num_phases, dtype=np.float64)
            for phase in (FluidPhase.WATER, FluidPhase.GAS):
                index = layout.fraction_index(phase)
                if index >= 0:
                    self.values[seg, index] = fractions[pu.position(phase)]
            self.values[seg, layout.spres] = segment_pressures[seg]
        self.init_evaluations()

    def segment_rates(self) -> np.ndarray:
        """Surface rates `Q_p = G_t F_p / g_p` of every segment, shape `(num_segments, num_phases)`."""
        layout = self.layout
        pu = layout.phase_usage
        rates = np.zeros((self.num_segments, pu.num_phases), dtype=get_dtype())
        for seg in range(self.num_segments):
            for phase in pu:
                rates[seg, pu.position(phase)] = self.segment_rate(seg, phase).value
        return rates

    def segment_pressures(self) -> np.ndarray:
        return self.values[:, self.layout.spres].astype(get_dtype(), copy=True)
