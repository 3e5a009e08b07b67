"""Segment fluid properties and perforation inflow rates."""

import logging
import typing

import attrs

from mswell.ad import Evaluation, minimum, value_of
from mswell.errors import ComputationError
from mswell.pvt.core import PropertyOracle
from mswell.reservoir import CellQuantities
from mswell.types import FluidPhase, WellRole
from mswell.wells.segments import SegmentNetwork
from mswell.wells.variables import PrimaryVariableLayout, PrimaryVariables

logger = logging.getLogger(__name__)

__all__ = ["SegmentFluidProperties", "PerforationFlow", "FluidStateEvaluator"]


@attrs.frozen
class SegmentFluidProperties:
    """Mixture properties of a segment, differentiated with respect to its primary variables."""

    density: Evaluation
    """Mixture density at segment conditions (kg/m³)."""
    viscosity: Evaluation
    """Mixture viscosity (Pa·s)."""
    mass_rate: Evaluation
    """Mixture mass rate through the segment (kg/s). Positive downwards (injection)."""
    volume_ratio: Evaluation
    """Reservoir volume per unit surface volume of the mixture."""
    surface_fractions: typing.Tuple[Evaluation, ...]
    """Surface volume fractions per active phase."""


@attrs.frozen
class PerforationFlow:
    rates: typing.Tuple[Evaluation, ...]
    """Surface rates per active phase, positive for injection into the cell."""
    drawdown: float
    """Pressure difference cell minus segment, both taken at the perforation depth (Pa)."""
    crossflow_suppressed: bool = False
    """Whether the rates were zeroed because the flow opposed the well's role."""


class FluidStateEvaluator:
    """
    Fluid state of a well's segments and perforations.

    Segment quantities are built from the primary variables and the
    property oracle; perforation rates combine them with the quantities of
    the perforated cells.
    """

    def __init__(
        self,
        layout: PrimaryVariableLayout,
        network: SegmentNetwork,
        oracle: PropertyOracle,
        gravity: float,
    ) -> None:
        self.layout = layout
        self.network = network
        self.oracle = oracle
        self.gravity = gravity

    def segment_properties(
        self, variables: PrimaryVariables, temperature: float
    ) -> typing.List[SegmentFluidProperties]:
        """
        Compute the mixture properties of every segment.

        With oil and gas both active, the dissolved gas-oil ratio and
        vaporized oil-gas ratio follow from the surface composition, capped at
        their saturated values, and the reservoir volume fractions are
        corrected through `1 - rs*rv`.

        :param variables: Primary variables.
        :param temperature: Temperature of the well fluid (K).
        :return: Properties per segment.
        """
        pu = self.layout.phase_usage
        oracle = self.oracle
        cell = self.network.perforations[0].cell if self.network.num_perforations else 0
        surface_densities = [oracle.surface_density(phase, cell) for phase in pu]
        io = pu.position(FluidPhase.OIL)
        ig = pu.position(FluidPhase.GAS)

        properties = []
        for seg in range(variables.num_segments):
            pressure = variables.segment_pressure(seg)
            mix_s = [variables.surface_volume_fraction(seg, phase) for phase in pu]

            rs: typing.Union[float, Evaluation] = 0.0
            rv: typing.Union[float, Evaluation] = 0.0
            if pu.has_gas:
                if mix_s[io].value > 0.0 and mix_s[ig].value > 0.0:
                    rs_max = oracle.saturation_limit(FluidPhase.OIL, pressure, temperature, cell)
                    rv_max = oracle.saturation_limit(FluidPhase.GAS, pressure, temperature, cell)
                    rs = minimum(mix_s[ig] / mix_s[io], rs_max)
                    rv = minimum(mix_s[io] / mix_s[ig], rv_max)

            b = []
            viscosities = []
            for phase in pu:
                composition = rs if phase is FluidPhase.OIL else rv if phase is FluidPhase.GAS else 0.0
                b.append(
                    1.0 / oracle.formation_volume_factor(phase, pressure, temperature, composition, cell)
                )
                viscosities.append(oracle.viscosity(phase, pressure, temperature, composition, cell))

            mix = list(mix_s)
            if pu.has_gas:
                d = 1.0 - rs * rv
                if value_of(d) <= 0.0:
                    raise ComputationError(
                        f"Degenerate miscibility in segment {seg}: 1 - rs*rv = {value_of(d):.6g}"
                    )
                if value_of(rs) != 0.0:
                    mix[ig] = (mix_s[ig] - mix_s[io] * rs) / d
                if value_of(rv) != 0.0:
                    mix[io] = (mix_s[io] - mix_s[ig] * rv) / d

            volume_ratio = mix[0] / b[0]
            for p in range(1, pu.num_phases):
                volume_ratio = volume_ratio + mix[p] / b[p]

            viscosity = viscosities[0] * mix[0] / b[0]
            density = surface_densities[0] * mix_s[0]
            mass_rate = surface_densities[0] * variables.segment_rate(seg, pu.phases[0])
            for p in range(1, pu.num_phases):
                viscosity = viscosity + viscosities[p] * mix[p] / b[p]
                density = density + surface_densities[p] * mix_s[p]
                mass_rate = mass_rate + surface_densities[p] * variables.segment_rate(
                    seg, pu.phases[p]
                )

            properties.append(
                SegmentFluidProperties(
                    density=density / volume_ratio,
                    viscosity=viscosity / volume_ratio,
                    mass_rate=mass_rate,
                    volume_ratio=volume_ratio,
                    surface_fractions=tuple(mix_s),
                )
            )
        return properties

    def cell_perforation_pressure_differences(
        self, cells: typing.Sequence[CellQuantities]
    ) -> typing.List[float]:
        """
        Pressure difference between each perforation and its cell centre.

        Uses the relative-permeability weighted density of the cell. These
        values are explicit: computed once per outer iteration and kept fixed
        through the inner iterations.

        :param cells: Cell quantities in perforation order.
        """
        return [
            self.gravity
            * quantities.average_density()
            * self.network.cell_perforation_depth_difference(perf)
            for perf, quantities in enumerate(cells)
        ]

    def perforation_rates(
        self,
        variables: PrimaryVariables,
        properties: typing.Sequence[SegmentFluidProperties],
        perf: int,
        cell: CellQuantities,
        cell_perforation_pressure_difference: float,
        role: WellRole,
        allow_crossflow: bool,
    ) -> PerforationFlow:
        """
        Phase surface rates through a perforation.

        Flow from the cell into the well (production) uses the phase mobilities
        and composition of the cell. Flow from the well into the cell
        (injection) uses the total mobility of the cell and the surface
        composition of the segment. Flow against the well's role is zero
        unless crossflow is allowed.

        :param variables: Primary variables.
        :param properties: Segment fluid properties.
        :param perf: Perforation index.
        :param cell: Quantities of the perforated cell.
        :param cell_perforation_pressure_difference: Frozen cell to perforation pressure difference (Pa).
        :param role: Well role.
        :param allow_crossflow: Whether flow against the role is allowed.
        :return: The perforation flow.
        :raises ComputationError: If the injected mixture has `1 - rs*rv == 0`.
        """
        pu = self.layout.phase_usage
        perforation = self.network.perforation(perf)
        seg = perforation.segment
        size = self.layout.size

        segment_pressure = variables.segment_pressure(seg)
        perforation_segment_pressure_difference = (
            self.gravity
            * properties[seg].density
            * self.network.perforation_segment_depth_difference(perf)
        )
        drawdown = (cell.pressure + cell_perforation_pressure_difference) - (
            segment_pressure + perforation_segment_pressure_difference
        )
        well_index = perforation.transmissibility_factor
        zero = tuple(Evaluation.constant(0.0, size) for _ in pu)

        if drawdown.value > 0.0:
            if not allow_crossflow and role is WellRole.INJECTOR:
                return PerforationFlow(zero, drawdown.value, crossflow_suppressed=True)
            rates = [
                cell.inverse_formation_volume_factors[p]
                * (-well_index * cell.mobilities[p] * drawdown)
                for p in range(pu.num_phases)
            ]
            if pu.has_gas:
                io = pu.position(FluidPhase.OIL)
                ig = pu.position(FluidPhase.GAS)
                oil_rate = rates[io]
                gas_rate = rates[ig]
                rates[ig] = gas_rate + cell.dissolved_gas_oil_ratio * oil_rate
                rates[io] = oil_rate + cell.vaporized_oil_gas_ratio * gas_rate
            return PerforationFlow(tuple(rates), drawdown.value)

        if not allow_crossflow and role is WellRole.PRODUCER:
            return PerforationFlow(zero, drawdown.value, crossflow_suppressed=True)

        total_rate = -well_index * cell.total_mobility * drawdown
        cmix_s = properties[seg].surface_fractions
        b = cell.inverse_formation_volume_factors

        volume_ratio = Evaluation.constant(0.0, size)
        if pu.has_water:
            iw = pu.position(FluidPhase.WATER)
            volume_ratio = volume_ratio + cmix_s[iw] / b[iw]
        io = pu.position(FluidPhase.OIL)
        if pu.has_gas:
            ig = pu.position(FluidPhase.GAS)
            rs = cell.dissolved_gas_oil_ratio
            rv = cell.vaporized_oil_gas_ratio
            d = 1.0 - rv * rs
            if d == 0.0:
                raise ComputationError(
                    f"Zero miscibility determinant (1 - rs*rv) at perforation {perf}"
                )
            oil_volume = (cmix_s[io] - rv * cmix_s[ig]) / d
            gas_volume = (cmix_s[ig] - rs * cmix_s[io]) / d
            volume_ratio = volume_ratio + oil_volume / b[io] + gas_volume / b[ig]
        else:
            volume_ratio = volume_ratio + cmix_s[io] / b[io]

        surface_total = total_rate / volume_ratio
        return PerforationFlow(
            tuple(cmix_s[p] * surface_total for p in range(pu.num_phases)), drawdown.value
        )
