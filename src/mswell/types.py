import enum
import typing

import attrs
import numpy as np
from typing_extensions import TypeAlias

from mswell.errors import ValidationError


__all__ = [
    "FluidPhase",
    "WellRole",
    "PhaseUsage",
    "FloatArray",
    "PhaseMapping",
]


FloatArray: TypeAlias = np.typing.NDArray[np.floating]
"""Plain float array (state vectors, residuals, matrix blocks)."""

T = typing.TypeVar("T")


class FluidPhase(enum.Enum):
    """Enum representing the phase of the fluid in the reservoir or wellbore."""

    WATER = "water"
    OIL = "oil"
    GAS = "gas"


PhaseMapping = typing.Mapping[FluidPhase, T]

CANONICAL_PHASE_ORDER: typing.Tuple[FluidPhase, ...] = (
    FluidPhase.WATER,
    FluidPhase.OIL,
    FluidPhase.GAS,
)
"""Order in which active phases are laid out in every per-phase vector."""


class WellRole(enum.Enum):
    """Declared role of a well. Determines the sign of control targets and the crossflow policy."""

    INJECTOR = "injector"
    PRODUCER = "producer"

    @property
    def sign(self) -> float:
        """Sign applied to rate targets (injection is positive, production negative)."""
        return 1.0 if self is WellRole.INJECTOR else -1.0


def _phase_tuple(
    value: typing.Iterable[typing.Union[FluidPhase, str]],
) -> typing.Tuple[FluidPhase, ...]:
    requested = {FluidPhase(phase) for phase in value}
    return tuple(phase for phase in CANONICAL_PHASE_ORDER if phase in requested)


@attrs.frozen(slots=True)
class PhaseUsage:
    """
    Active phase configuration.

    Active phases are always ordered water, oil, gas, and every per-phase
    vector in the package (surface rates, mobilities, residual components)
    follows that order.
    """

    phases: typing.Tuple[FluidPhase, ...] = attrs.field(converter=_phase_tuple)
    """Active phases in canonical order."""

    @phases.validator
    def _check_phases(self, attribute, value) -> None:
        if FluidPhase.OIL not in value:
            raise ValidationError("The oil phase must be active")

    @classmethod
    def three_phase(cls) -> "PhaseUsage":
        return cls(CANONICAL_PHASE_ORDER)

    @property
    def num_phases(self) -> int:
        return len(self.phases)

    @property
    def has_water(self) -> bool:
        return FluidPhase.WATER in self.phases

    @property
    def has_oil(self) -> bool:
        return FluidPhase.OIL in self.phases

    @property
    def has_gas(self) -> bool:
        return FluidPhase.GAS in self.phases

    def position(self, phase: FluidPhase) -> int:
        """
        Position of a phase in per-phase vectors.

        :param phase: The phase to look up.
        :return: Index of the phase, or -1 if the phase is inactive.
        """
        try:
            return self.phases.index(phase)
        except ValueError:
            return -1

    def __iter__(self) -> typing.Iterator[FluidPhase]:
        return iter(self.phases)

    def __len__(self) -> int:
        return len(self.phases)
