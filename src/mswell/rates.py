"""Conversion of surface rates to reservoir voidage rates."""

import logging
import typing

import attrs
import numpy as np

from mswell._precision import get_dtype
from mswell.ad import value_of
from mswell.errors import ComputationError, ValidationError
from mswell.pvt.core import PropertyOracle
from mswell.reservoir import ReservoirState
from mswell.types import FluidPhase, PhaseUsage

logger = logging.getLogger(__name__)

__all__ = ["RegionMapping", "RegionAttributes", "SurfaceToReservoirVoidage"]


def _as_region_array(value: typing.Any) -> np.ndarray:
    regions = np.asarray(value)
    if regions.ndim != 1:
        raise ValidationError("Region mapping must be a 1D array of region ids")
    return regions.astype(np.int64, copy=False)


@attrs.frozen
class RegionMapping:
    """Forward (cell to region) and reverse (region to cells) region lookup."""

    regions: np.ndarray = attrs.field(converter=_as_region_array)
    """Region id of every cell."""

    @classmethod
    def single_region(cls, num_cells: int, region: int = 0) -> "RegionMapping":
        return cls(np.full(num_cells, region, dtype=np.int64))

    @property
    def num_cells(self) -> int:
        return int(self.regions.shape[0])

    def active_regions(self) -> typing.List[int]:
        return [int(region) for region in np.unique(self.regions)]

    def region(self, cell: int) -> int:
        return int(self.regions[cell])

    def cells(self, region: int) -> np.ndarray:
        return np.flatnonzero(self.regions == region)


@attrs.frozen
class RegionAttributes:
    """Averaged state of a fluid-in-place region."""

    pressure: float
    """Average hydrocarbon pressure (Pa)."""
    temperature: float
    """Average temperature (K)."""
    cell: int
    """Representative cell used for property evaluation."""
    max_dissolved_gas_oil_ratio: float = 0.0
    """Rs,max at the average pressure."""
    max_vaporized_oil_gas_ratio: float = 0.0
    """Rv,max at the average pressure."""


class SurfaceToReservoirVoidage:
    """
    Convert component rates at surface conditions to reservoir voidage rates.

    Fluid properties are evaluated at the average hydrocarbon pressure and
    temperature of each region. Dissolved gas-oil and vaporized oil-gas ratios
    follow from the rates themselves and are capped by their saturated values
    at the average pressure.
    """

    def __init__(
        self,
        phase_usage: PhaseUsage,
        oracle: PropertyOracle,
        region_mapping: RegionMapping,
    ) -> None:
        """
        :param phase_usage: Active phases. Coefficient vectors follow its order.
        :param oracle: Property oracle.
        :param region_mapping: Fluid-in-place region of every cell.
        """
        self.phase_usage = phase_usage
        self.oracle = oracle
        self.region_mapping = region_mapping
        self._attributes: typing.Dict[int, RegionAttributes] = {}

    def define_state(
        self,
        state: ReservoirState,
        ownership: typing.Optional[np.ndarray] = None,
    ) -> None:
        """
        Compute region averages and saturated ratios from the reservoir state.

        :param state: Reservoir state. Must cover every cell of the region mapping.
        :param ownership: Optional mask of cells owned by this process. Only owned
            cells contribute to the averages of a partitioned run.
        """
        if state.num_cells != self.region_mapping.num_cells:
            raise ValidationError(
                f"Reservoir state has {state.num_cells} cells, region mapping has {self.region_mapping.num_cells}"
            )
        if ownership is not None:
            ownership = np.asarray(ownership, dtype=bool)
            if ownership.shape != (state.num_cells,):
                raise ValidationError("Ownership mask must have one entry per cell")

        attributes = {}
        for region in self.region_mapping.active_regions():
            cells = self.region_mapping.cells(region)
            if ownership is not None:
                cells = cells[ownership[cells]]
            if cells.size == 0:
                logger.debug(f"Region {region} has no owned cells; skipping")
                continue

            pressure = float(np.mean(state.pressure[cells]))
            temperature = float(np.mean(state.temperature[cells]))
            cell = int(cells[0])
            rs_max = 0.0
            rv_max = 0.0
            if self.phase_usage.has_gas:
                rs_max = value_of(
                    self.oracle.saturation_limit(FluidPhase.OIL, pressure, temperature, cell)
                )
                rv_max = value_of(
                    self.oracle.saturation_limit(FluidPhase.GAS, pressure, temperature, cell)
                )
            attributes[region] = RegionAttributes(
                pressure=pressure,
                temperature=temperature,
                cell=cell,
                max_dissolved_gas_oil_ratio=rs_max,
                max_vaporized_oil_gas_ratio=rv_max,
            )
            logger.debug(
                f"Region {region}: p_avg={pressure:.6g} Pa, T_avg={temperature:.6g} K, "
                f"Rs_max={rs_max:.6g}, Rv_max={rv_max:.6g}"
            )
        self._attributes = attributes

    def attributes(self, region: int) -> RegionAttributes:
        try:
            return self._attributes[region]
        except KeyError:
            raise ValidationError(
                f"No state defined for region {region}; call define_state() with a state covering it"
            ) from None

    def calc_miscibility(
        self, surface_rates: typing.Sequence[float], region: int
    ) -> typing.Tuple[float, float]:
        """
        Dissolved gas-oil and vaporized oil-gas ratios implied by surface rates.

        :param surface_rates: Active-phase surface rates.
        :param region: Region id.
        :return: `(rs, rv)`, each capped at its saturated value.
        """
        pu = self.phase_usage
        if not pu.has_gas:
            return 0.0, 0.0

        attrs_ = self.attributes(region)
        q_o = float(surface_rates[pu.position(FluidPhase.OIL)])
        q_g = float(surface_rates[pu.position(FluidPhase.GAS)])

        rs_max = attrs_.max_dissolved_gas_oil_ratio
        if abs(q_o) > 0.0:
            rs = q_g / q_o
        else:
            rs = rs_max if abs(q_g) > 0.0 else 0.0

        rv_max = attrs_.max_vaporized_oil_gas_ratio
        if abs(q_g) > 0.0:
            rv = q_o / q_g
        else:
            rv = rv_max if abs(q_o) > 0.0 else 0.0
        return min(rs, rs_max), min(rv, rv_max)

    def calc_coefficients(
        self, surface_rates: typing.Sequence[float], region: int
    ) -> np.ndarray:
        """
        Surface to reservoir conversion coefficients.

        The reservoir voidage rate is `sum_p coeff_p * q_p`. Water converts
        independently through `1/b_w`; oil and gas are coupled through the
        inverse of `R = [[1, rv], [rs, 1]]` when both are active.

        :param surface_rates: Active-phase surface rates.
        :param region: Region id.
        :return: One coefficient per active phase.
        :raises ValidationError: If the region is unknown.
        :raises ComputationError: If `1 - rs*rv` vanishes.
        """
        pu = self.phase_usage
        if len(surface_rates) != pu.num_phases:
            raise ValidationError(
                f"Expected {pu.num_phases} surface rates, got {len(surface_rates)}"
            )
        attrs_ = self.attributes(region)
        p = attrs_.pressure
        T = attrs_.temperature
        cell = attrs_.cell
        coefficients = np.zeros(pu.num_phases, dtype=get_dtype())

        if pu.has_water:
            bw = 1.0 / value_of(
                self.oracle.formation_volume_factor(FluidPhase.WATER, p, T, 0.0, cell)
            )
            coefficients[pu.position(FluidPhase.WATER)] = 1.0 / bw

        rs, rv = self.calc_miscibility(surface_rates, region)
        det_r = 1.0 - rs * rv
        if det_r <= 0.0:
            raise ComputationError(
                f"Degenerate miscibility in region {region}: 1 - rs*rv = {det_r:.6g}"
            )

        io = pu.position(FluidPhase.OIL)
        ig = pu.position(FluidPhase.GAS)

        # q_o,r = (q_o,s - rv q_g,s) / (b_o det R)
        bo = 1.0 / value_of(self.oracle.formation_volume_factor(FluidPhase.OIL, p, T, rs, cell))
        den = bo * det_r
        coefficients[io] += 1.0 / den
        if pu.has_gas:
            coefficients[ig] -= rv / den

            # q_g,r = (q_g,s - rs q_o,s) / (b_g det R)
            bg = 1.0 / value_of(
                self.oracle.formation_volume_factor(FluidPhase.GAS, p, T, rv, cell)
            )
            den = bg * det_r
            coefficients[ig] += 1.0 / den
            coefficients[io] -= rs / den
        return coefficients

    def calc_reservoir_voidage_rate(
        self, surface_rates: typing.Sequence[float], region: int
    ) -> float:
        """Total reservoir voidage rate of the given surface rates."""
        rates = np.asarray(surface_rates, dtype=get_dtype())
        return float(np.dot(self.calc_coefficients(rates, region), rates))
