import numpy as np
import pytest

from mswell import FluidPhase, PhaseUsage, RegionMapping, ReservoirState, SurfaceToReservoirVoidage
from mswell.errors import ValidationError


@pytest.fixture
def oil_gas():
    return PhaseUsage(["oil", "gas"])


@pytest.fixture
def oracle(constant_oracle_factory):
    return constant_oracle_factory(
        formation_volume_factors={FluidPhase.WATER: 1.0, FluidPhase.OIL: 1.2, FluidPhase.GAS: 0.005},
        viscosities={FluidPhase.WATER: 5e-4, FluidPhase.OIL: 1e-3, FluidPhase.GAS: 2e-5},
        surface_densities={FluidPhase.WATER: 1000.0, FluidPhase.OIL: 850.0, FluidPhase.GAS: 0.9},
        max_dissolved_gas_oil_ratio=0.6,
    )


def test_region_mapping():
    mapping = RegionMapping([0, 0, 2, 2, 2])
    assert mapping.active_regions() == [0, 2]
    assert mapping.region(3) == 2
    np.testing.assert_array_equal(mapping.cells(2), [2, 3, 4])
    assert RegionMapping.single_region(3).active_regions() == [0]


def test_region_averages(oil_gas, oracle):
    converter = SurfaceToReservoirVoidage(oil_gas, oracle, RegionMapping.single_region(2))
    converter.define_state(ReservoirState(pressure=[1.0e7, 2.0e7], temperature=[340.0, 360.0]))
    attributes = converter.attributes(0)
    assert attributes.pressure == pytest.approx(1.5e7)
    assert attributes.temperature == pytest.approx(350.0)
    assert attributes.max_dissolved_gas_oil_ratio == pytest.approx(0.6)


def test_miscibility_from_rates(oil_gas, oracle):
    converter = SurfaceToReservoirVoidage(oil_gas, oracle, RegionMapping.single_region(2))
    converter.define_state(ReservoirState(pressure=[1.0e7, 2.0e7], temperature=350.0))

    rs, rv = converter.calc_miscibility([50.0, 25.0], 0)
    assert rs == pytest.approx(0.5)
    assert rv == 0.0

    # Capped at the saturated value
    rs, _ = converter.calc_miscibility([50.0, 100.0], 0)
    assert rs == pytest.approx(0.6)


def test_coefficients_and_voidage(oil_gas, oracle):
    converter = SurfaceToReservoirVoidage(oil_gas, oracle, RegionMapping.single_region(2))
    converter.define_state(ReservoirState(pressure=[1.0e7, 2.0e7], temperature=350.0))
    rates = [50.0, 25.0]
    coefficients = converter.calc_coefficients(rates, 0)
    np.testing.assert_allclose(coefficients, [1.2 - 0.5 * 0.005, 0.005])
    # All gas is dissolved, so the voidage is the oil volume
    assert converter.calc_reservoir_voidage_rate(rates, 0) == pytest.approx(60.0)


def test_water_converts_independently(three_phase, oracle):
    converter = SurfaceToReservoirVoidage(three_phase, oracle, RegionMapping.single_region(1))
    converter.define_state(ReservoirState(pressure=[1.0e7], temperature=350.0))
    coefficients = converter.calc_coefficients([10.0, 0.0, 0.0], 0)
    assert coefficients[three_phase.position(FluidPhase.WATER)] == pytest.approx(1.0)


def test_unowned_regions_are_skipped(oil_gas, oracle):
    converter = SurfaceToReservoirVoidage(oil_gas, oracle, RegionMapping([0, 0, 1, 1]))
    converter.define_state(
        ReservoirState(pressure=[1.0e7, 1.2e7, 2.0e7, 2.2e7], temperature=350.0),
        ownership=[True, False, False, False],
    )
    assert converter.attributes(0).pressure == pytest.approx(1.0e7)
    with pytest.raises(ValidationError):
        converter.attributes(1)
    with pytest.raises(ValidationError):
        converter.calc_coefficients([1.0, 1.0], 1)


def test_rate_count_is_checked(oil_gas, oracle):
    converter = SurfaceToReservoirVoidage(oil_gas, oracle, RegionMapping.single_region(1))
    converter.define_state(ReservoirState(pressure=[1.0e7], temperature=350.0))
    with pytest.raises(ValidationError):
        converter.calc_coefficients([1.0, 2.0, 3.0], 0)
