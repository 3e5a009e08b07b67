import logging
import typing

import attrs
import numpy as np

from mswell._precision import get_dtype
from mswell.errors import ValidationError
from mswell import serialization
from mswell.wells.segments import SegmentNetwork

logger = logging.getLogger(__name__)

__all__ = ["WellState"]


def _as_array(value: typing.Any) -> np.ndarray:
    return np.array(value, dtype=get_dtype())


@attrs.define
class WellState:
    """
    Persistent state of a well, exchanged with the outer simulator.

    Rates are surface rates per active phase, positive for injection.
    Segment rates are the flow through each segment towards its inlets.
    """

    bhp: float
    """Bottom-hole pressure, the pressure of the top segment (Pa)."""
    well_rates: np.ndarray = attrs.field(converter=_as_array)
    """Surface rates of the well per phase, shape `(num_phases,)`."""
    segment_pressures: np.ndarray = attrs.field(converter=_as_array)
    """Segment pressures, shape `(num_segments,)` (Pa)."""
    segment_rates: np.ndarray = attrs.field(converter=_as_array)
    """Segment surface rates, shape `(num_segments, num_phases)`."""
    perforation_rates: np.ndarray = attrs.field(converter=_as_array)
    """Perforation surface rates, shape `(num_perforations, num_phases)`."""

    def __attrs_post_init__(self) -> None:
        num_phases = self.well_rates.shape[0]
        num_segments = self.segment_pressures.shape[0]
        if self.perforation_rates.size == 0:
            self.perforation_rates = self.perforation_rates.reshape(0, num_phases)
        if self.segment_rates.shape != (num_segments, num_phases):
            raise ValidationError(
                f"Segment rates must have shape {(num_segments, num_phases)}, got {self.segment_rates.shape}"
            )
        if self.perforation_rates.ndim != 2 or self.perforation_rates.shape[1] != num_phases:
            raise ValidationError(
                f"Perforation rates must have {num_phases} columns, got shape {self.perforation_rates.shape}"
            )

    @classmethod
    def initial(
        cls,
        network: SegmentNetwork,
        num_phases: int,
        bhp: float,
        well_rates: typing.Optional[typing.Sequence[float]] = None,
    ) -> "WellState":
        """
        Create a state with uniform segment pressures.

        Segment rates are initialized from the well rates.

        :param network: Segment network of the well.
        :param num_phases: Number of active phases.
        :param bhp: Initial bottom-hole pressure (Pa).
        :param well_rates: Initial surface rates per phase. Defaults to zero.
        """
        rates = np.zeros(num_phases) if well_rates is None else well_rates
        state = cls(
            bhp=float(bhp),
            well_rates=rates,
            segment_pressures=np.full(network.num_segments, float(bhp)),
            segment_rates=np.zeros((network.num_segments, num_phases)),
            perforation_rates=np.zeros((network.num_perforations, num_phases)),
        )
        state.init_segment_rates_with_well_rates(network)
        return state

    @property
    def num_phases(self) -> int:
        return int(self.well_rates.shape[0])

    def init_segment_rates_with_well_rates(self, network: SegmentNetwork) -> None:
        """
        Derive perforation and segment rates from the well rates.

        Well rates are spread evenly over the perforations, and each segment
        carries the rates of its own perforations plus those of its inlets.
        """
        num_perforations = network.num_perforations
        if num_perforations == 0:
            self.perforation_rates = np.zeros((0, self.num_phases), dtype=get_dtype())
            self.segment_rates = np.zeros(
                (network.num_segments, self.num_phases), dtype=get_dtype()
            )
            self.segment_rates[0] = self.well_rates
            return

        self.perforation_rates = np.tile(
            self.well_rates / num_perforations, (num_perforations, 1)
        ).astype(get_dtype())
        segment_rates = np.zeros((network.num_segments, self.num_phases), dtype=get_dtype())
        for seg in network.leaves_to_root():
            for perf in network.segment_perforations(seg):
                segment_rates[seg] += self.perforation_rates[perf]
            for inlet in network.inlets(seg):
                segment_rates[seg] += segment_rates[inlet]
        self.segment_rates = segment_rates

    def copy(self) -> "WellState":
        return WellState(
            bhp=self.bhp,
            well_rates=self.well_rates.copy(),
            segment_pressures=self.segment_pressures.copy(),
            segment_rates=self.segment_rates.copy(),
            perforation_rates=self.perforation_rates.copy(),
        )

    def dump(self) -> typing.Dict[str, typing.Any]:
        """Plain representation for output and restart."""
        return serialization.dump(self)

    @classmethod
    def load(cls, data: typing.Mapping[str, typing.Any]) -> "WellState":
        return serialization.load(cls, data)
