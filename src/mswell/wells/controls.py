"""Well control mechanisms and their control equations."""

import logging
import typing

import attrs
import numpy as np

from mswell.ad import Evaluation
from mswell.errors import ValidationError
from mswell.types import FluidPhase, PhaseUsage, WellRole
from mswell.wells.segments import SegmentNetwork
from mswell.wells.state import WellState
from mswell.wells.variables import PrimaryVariables

logger = logging.getLogger(__name__)

__all__ = [
    "WellControl",
    "BHPControl",
    "RateControl",
    "ReservoirVoidageControl",
]


@typing.runtime_checkable
class WellControl(typing.Protocol):
    """
    Protocol for well control implementations.

    A control supplies the equation that replaces the pressure equation of
    the top segment, and knows how to move a well state onto its target.
    """

    def residual(
        self,
        variables: PrimaryVariables,
        role: WellRole,
        coefficients: typing.Optional[np.ndarray] = None,
    ) -> Evaluation:
        """
        Control equation residual `current - target` at the top segment.

        :param variables: Primary variables of the well.
        :param role: Well role, giving the sign of rate targets.
        :param coefficients: Surface to reservoir voidage coefficients, per active phase.
        :return: The residual with derivatives in the top segment's layout.
        """
        ...

    def update_well_state(
        self,
        state: WellState,
        network: SegmentNetwork,
        phase_usage: PhaseUsage,
        role: WellRole,
        injected_phase: typing.Optional[FluidPhase] = None,
        coefficients: typing.Optional[np.ndarray] = None,
    ) -> None:
        """
        Move the well state onto the control target (in-place).

        :param state: Well state to update.
        :param network: Segment network of the well.
        :param phase_usage: Active phases, in the order of the state's rate vectors.
        :param role: Well role.
        :param injected_phase: Injected phase of an injector.
        :param coefficients: Surface to reservoir voidage coefficients.
        """
        ...


def _default_distribution(
    phase_usage: PhaseUsage,
    role: WellRole,
    injected_phase: typing.Optional[FluidPhase],
) -> np.ndarray:
    num_phases = phase_usage.num_phases
    if role is WellRole.INJECTOR:
        if injected_phase is None or phase_usage.position(injected_phase) < 0:
            raise ValidationError("An injector needs an active injected phase")
        distribution = np.zeros(num_phases)
        distribution[phase_usage.position(injected_phase)] = 1.0
        return distribution
    return np.full(num_phases, 1.0 / num_phases)


def _scale_well_rates(
    state: WellState,
    network: SegmentNetwork,
    current: float,
    target: float,
    fallback: np.ndarray,
) -> None:
    if current != 0.0:
        state.well_rates = state.well_rates * (target / current)
    else:
        state.well_rates = fallback
    state.init_segment_rates_with_well_rates(network)


@attrs.frozen(slots=True)
class BHPControl:
    """
    Bottom-hole pressure control.

    Fixes the pressure of the top segment.
    """

    bottom_hole_pressure: float = attrs.field(validator=attrs.validators.gt(0))
    """Target bottom-hole pressure (Pa)."""

    def residual(
        self,
        variables: PrimaryVariables,
        role: WellRole,
        coefficients: typing.Optional[np.ndarray] = None,
    ) -> Evaluation:
        return variables.segment_pressure(0) - self.bottom_hole_pressure

    def update_well_state(
        self,
        state: WellState,
        network: SegmentNetwork,
        phase_usage: PhaseUsage,
        role: WellRole,
        injected_phase: typing.Optional[FluidPhase] = None,
        coefficients: typing.Optional[np.ndarray] = None,
    ) -> None:
        state.bhp = self.bottom_hole_pressure
        state.segment_pressures[0] = self.bottom_hole_pressure

    def __str__(self) -> str:
        return f"BHP Control (BHP={self.bottom_hole_pressure:.6g} Pa)"


@attrs.frozen(slots=True)
class RateControl:
    """
    Surface rate control.

    Fixes the surface rate of one phase, or the total surface rate of all
    phases when no phase is given.
    """

    target_rate: float = attrs.field(validator=attrs.validators.gt(0))
    """Target surface rate magnitude (sm³/s). The well role gives the sign."""
    phase: typing.Optional[FluidPhase] = attrs.field(
        default=None, converter=attrs.converters.optional(FluidPhase)
    )
    """Controlled phase. None controls the total surface rate."""

    def _controlled(self, phases: typing.Sequence[FluidPhase]) -> typing.List[int]:
        if self.phase is None:
            return list(range(len(phases)))
        if self.phase not in phases:
            raise ValidationError(f"Controlled phase {self.phase.value} is not active")
        return [list(phases).index(self.phase)]

    def residual(
        self,
        variables: PrimaryVariables,
        role: WellRole,
        coefficients: typing.Optional[np.ndarray] = None,
    ) -> Evaluation:
        phases = variables.layout.phase_usage.phases
        rate = Evaluation.constant(0.0, variables.layout.size)
        for index in self._controlled(phases):
            rate = rate + variables.segment_rate(0, phases[index])
        return rate - role.sign * self.target_rate

    def update_well_state(
        self,
        state: WellState,
        network: SegmentNetwork,
        phase_usage: PhaseUsage,
        role: WellRole,
        injected_phase: typing.Optional[FluidPhase] = None,
        coefficients: typing.Optional[np.ndarray] = None,
    ) -> None:
        target = role.sign * self.target_rate
        controlled = self._controlled(phase_usage.phases)
        current = float(np.sum(state.well_rates[controlled]))
        if self.phase is None:
            fallback = target * _default_distribution(phase_usage, role, injected_phase)
        else:
            fallback = np.zeros(phase_usage.num_phases)
            fallback[controlled[0]] = target
        _scale_well_rates(state, network, current, target, fallback)

    def __str__(self) -> str:
        phase = "total" if self.phase is None else self.phase.value
        return f"Rate Control ({phase} rate={self.target_rate:.6g} sm³/s)"


@attrs.frozen(slots=True)
class ReservoirVoidageControl:
    """
    Reservoir voidage rate control.

    Fixes `sum_p coeff_p Q_p`, the rate at reservoir conditions, using the
    surface to reservoir conversion coefficients of the rate converter.
    """

    target_rate: float = attrs.field(validator=attrs.validators.gt(0))
    """Target reservoir voidage rate magnitude (rm³/s). The well role gives the sign."""

    @staticmethod
    def _check(coefficients: typing.Optional[np.ndarray], num_phases: int) -> np.ndarray:
        if coefficients is None:
            raise ValidationError("Reservoir voidage control requires conversion coefficients")
        coefficients = np.asarray(coefficients, dtype=np.float64)
        if coefficients.shape != (num_phases,):
            raise ValidationError(
                f"Expected {num_phases} conversion coefficients, got shape {coefficients.shape}"
            )
        return coefficients

    def residual(
        self,
        variables: PrimaryVariables,
        role: WellRole,
        coefficients: typing.Optional[np.ndarray] = None,
    ) -> Evaluation:
        phases = variables.layout.phase_usage.phases
        coefficients = self._check(coefficients, len(phases))
        rate = Evaluation.constant(0.0, variables.layout.size)
        for index, phase in enumerate(phases):
            rate = rate + coefficients[index] * variables.segment_rate(0, phase)
        return rate - role.sign * self.target_rate

    def update_well_state(
        self,
        state: WellState,
        network: SegmentNetwork,
        phase_usage: PhaseUsage,
        role: WellRole,
        injected_phase: typing.Optional[FluidPhase] = None,
        coefficients: typing.Optional[np.ndarray] = None,
    ) -> None:
        coefficients = self._check(coefficients, phase_usage.num_phases)
        target = role.sign * self.target_rate
        current = float(np.dot(coefficients, state.well_rates))
        distribution = _default_distribution(phase_usage, role, injected_phase)
        voidage = float(np.dot(coefficients, distribution))
        fallback = (
            distribution * (target / voidage)
            if voidage != 0.0
            else np.zeros(phase_usage.num_phases)
        )
        _scale_well_rates(state, network, current, target, fallback)

    def __str__(self) -> str:
        return f"Reservoir Voidage Control (rate={self.target_rate:.6g} rm³/s)"
