import typing

import numpy as np
import pytest

from mswell import (
    BlackOilTableData,
    BlackOilTables,
    Config,
    FluidPhase,
    PerforationSpec,
    PhaseUsage,
    ReservoirState,
    SegmentSpec,
    build_segment_network,
)
from mswell.ad import FloatOrEvaluation

RESERVOIR_PRESSURE = 2.0e7
RESERVOIR_TEMPERATURE = 350.0


class ConstantOracle:
    """Property oracle with pressure independent properties."""

    def __init__(
        self,
        formation_volume_factors: typing.Mapping[FluidPhase, float],
        viscosities: typing.Mapping[FluidPhase, float],
        surface_densities: typing.Mapping[FluidPhase, float],
        max_dissolved_gas_oil_ratio: float = 0.0,
        max_vaporized_oil_gas_ratio: float = 0.0,
    ) -> None:
        self.formation_volume_factors = dict(formation_volume_factors)
        self.viscosities = dict(viscosities)
        self.surface_densities = dict(surface_densities)
        self.max_dissolved_gas_oil_ratio = max_dissolved_gas_oil_ratio
        self.max_vaporized_oil_gas_ratio = max_vaporized_oil_gas_ratio

    def formation_volume_factor(
        self,
        phase: FluidPhase,
        pressure: FloatOrEvaluation,
        temperature: float,
        composition: FloatOrEvaluation = 0.0,
        cell: int = 0,
    ) -> FloatOrEvaluation:
        return 0.0 * pressure + self.formation_volume_factors[phase]

    def viscosity(
        self,
        phase: FluidPhase,
        pressure: FloatOrEvaluation,
        temperature: float,
        composition: FloatOrEvaluation = 0.0,
        cell: int = 0,
    ) -> FloatOrEvaluation:
        return 0.0 * pressure + self.viscosities[phase]

    def saturation_limit(
        self,
        phase: FluidPhase,
        pressure: FloatOrEvaluation,
        temperature: float,
        cell: int = 0,
    ) -> FloatOrEvaluation:
        limit = (
            self.max_dissolved_gas_oil_ratio
            if phase is FluidPhase.OIL
            else self.max_vaporized_oil_gas_ratio
        )
        return 0.0 * pressure + limit

    def surface_density(self, phase: FluidPhase, cell: int = 0) -> float:
        return self.surface_densities[phase]


@pytest.fixture
def oil_only() -> PhaseUsage:
    return PhaseUsage(phases=[FluidPhase.OIL])


@pytest.fixture
def water_oil() -> PhaseUsage:
    return PhaseUsage(phases=[FluidPhase.WATER, FluidPhase.OIL])


@pytest.fixture
def three_phase() -> PhaseUsage:
    return PhaseUsage.three_phase()


@pytest.fixture
def dead_oil_tables() -> BlackOilTables:
    """Dead oil and water tables."""
    data = BlackOilTableData(
        pressures=[1.0e6, 2.0e7, 4.0e7],
        oil_formation_volume_factor=[1.10, 1.08, 1.06],
        oil_viscosity=[1.2e-3, 1.0e-3, 0.9e-3],
        oil_surface_density=850.0,
        water_formation_volume_factor=[1.02, 1.01, 1.00],
        water_viscosity=[5.0e-4, 5.0e-4, 5.0e-4],
        water_surface_density=1000.0,
    )
    return BlackOilTables(data)


@pytest.fixture
def live_oil_tables() -> BlackOilTables:
    """Live oil with dry gas and water."""
    data = BlackOilTableData(
        pressures=[1.0e6, 1.0e7, 2.0e7, 3.0e7],
        oil_formation_volume_factor=[1.05, 1.20, 1.35, 1.50],
        oil_viscosity=[2.0e-3, 1.5e-3, 1.2e-3, 1.0e-3],
        oil_surface_density=850.0,
        solution_gas_oil_ratio=[5.0, 50.0, 100.0, 150.0],
        undersaturated_oil_compressibility=1.0e-9,
        undersaturated_oil_viscosibility=1.0e-9,
        water_formation_volume_factor=[1.02, 1.015, 1.01, 1.005],
        water_viscosity=[5.0e-4, 5.0e-4, 5.0e-4, 5.0e-4],
        gas_formation_volume_factor=[0.1, 0.01, 0.005, 0.0035],
        gas_viscosity=[1.2e-5, 1.5e-5, 2.0e-5, 2.5e-5],
        gas_surface_density=0.9,
    )
    return BlackOilTables(data)


@pytest.fixture
def tight_config() -> Config:
    return Config(tolerance_wells=1e-10, pressure_tolerance_factor=1e3)


@pytest.fixture
def two_segment_network():
    """Vertical well: top segment at 1000 m and one segment below, one perforation each."""
    segments = [
        SegmentSpec(number=1, outlet=None, depth=1000.0, length=10.0),
        SegmentSpec(number=2, outlet=1, depth=1010.0, length=10.0),
    ]
    perforations = [
        PerforationSpec(cell=0, segment=1, transmissibility_factor=1e-11, depth=1000.0),
        PerforationSpec(cell=1, segment=2, transmissibility_factor=1e-11, depth=1010.0),
    ]
    return build_segment_network(segments, perforations)


@pytest.fixture
def branched_network():
    """A main bore of three segments with a lateral branching off the second."""
    segments = [
        SegmentSpec(number=1, outlet=None, depth=1000.0, length=10.0),
        SegmentSpec(number=2, outlet=1, depth=1010.0, length=10.0),
        SegmentSpec(number=3, outlet=2, depth=1020.0, length=10.0),
        SegmentSpec(number=4, outlet=2, depth=1010.0, length=50.0, diameter=0.08),
    ]
    perforations = [
        PerforationSpec(cell=1, segment=2, transmissibility_factor=1e-11, depth=1010.0),
        PerforationSpec(cell=2, segment=3, transmissibility_factor=1e-11, depth=1020.0),
        PerforationSpec(cell=3, segment=4, transmissibility_factor=1e-11, depth=1010.0),
    ]
    return build_segment_network(segments, perforations)


def make_reservoir(
    num_cells: int,
    pressure: float = RESERVOIR_PRESSURE,
    water_saturation: typing.Optional[float] = None,
    gas_saturation: typing.Optional[float] = None,
) -> ReservoirState:
    return ReservoirState(
        pressure=np.full(num_cells, pressure),
        temperature=RESERVOIR_TEMPERATURE,
        water_saturation=None
        if water_saturation is None
        else np.full(num_cells, water_saturation),
        gas_saturation=None if gas_saturation is None else np.full(num_cells, gas_saturation),
    )


@pytest.fixture
def reservoir_factory():
    return make_reservoir


@pytest.fixture
def constant_oracle_factory():
    return ConstantOracle
