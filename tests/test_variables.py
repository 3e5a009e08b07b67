import numpy as np
import pytest

from mswell import Config, FluidPhase, WellRole
from mswell.wells import PrimaryVariableLayout, PrimaryVariables, process_fractions


@pytest.fixture
def layout(three_phase):
    return PrimaryVariableLayout.from_config(three_phase, 3, Config())


def _fractions(values, layout):
    water = values[layout.wfrac]
    gas = values[layout.gfrac]
    return np.array([water, 1.0 - water - gas, gas])


def test_layout_positions(layout, oil_only):
    assert (layout.gtotal, layout.wfrac, layout.gfrac, layout.spres) == (0, 1, 2, 3)
    assert layout.num_well_eq == 4
    assert layout.size == 7
    assert layout.well_slot(layout.spres) == 6
    assert layout.scaling_factor(FluidPhase.GAS) == pytest.approx(0.01)

    single = PrimaryVariableLayout.from_config(oil_only, 1, Config())
    assert (single.wfrac, single.gfrac, single.spres, single.size) == (-1, -1, 1, 3)


def test_process_fractions_redistributes_negative_fraction(layout):
    values = np.array([1.0, -0.1, 0.5, 2.0e7])
    assert process_fractions(values, layout)
    assert values[layout.wfrac] == 0.0
    assert values[layout.gfrac] == pytest.approx(0.5 / 1.1)
    fractions = _fractions(values, layout)
    assert fractions.sum() == pytest.approx(1.0)
    assert values[layout.spres] == 2.0e7


def test_process_fractions_leaves_valid_fractions(layout):
    values = np.array([1.0, 0.2, 0.3, 2.0e7])
    assert not process_fractions(values, layout)
    np.testing.assert_array_equal(values, [1.0, 0.2, 0.3, 2.0e7])


def test_updates_keep_fractions_physical(layout):
    rng = np.random.default_rng(42)
    variables = PrimaryVariables(layout, num_segments=3)
    variables.values[:, layout.wfrac] = 0.3
    variables.values[:, layout.gfrac] = 0.3
    variables.values[:, layout.spres] = 2.0e7
    config = Config(max_fraction_change=1.0)
    for _ in range(50):
        dx = rng.normal(scale=0.8, size=(3, layout.num_well_eq))
        variables.apply_update(dx, config)
        for seg in range(3):
            fractions = _fractions(variables.values[seg], layout)
            assert np.all(fractions >= 0.0)
            assert np.all(fractions <= 1.0 + 1e-12)
            assert fractions.sum() == pytest.approx(1.0)


def test_update_limits(layout):
    variables = PrimaryVariables(layout, num_segments=1)
    variables.values[0] = [1.0, 0.3, 0.3, 2.0e7]
    variables.init_evaluations()
    variables.apply_update(np.array([[5.0, 0.5, 0.0, -1.0e6]]), Config())
    assert variables.values[0, layout.gtotal] == pytest.approx(-4.0)
    assert variables.values[0, layout.wfrac] == pytest.approx(0.1)
    assert variables.values[0, layout.spres] == pytest.approx(2.0e7 + 2.0e5)
    assert variables.segment_pressure(0).value == pytest.approx(2.0e7 + 2.0e5)


def test_rates_round_trip_through_primary_variables(layout):
    variables = PrimaryVariables(layout, num_segments=1)
    rates = np.array([[-1.0, -2.0, -100.0]])
    variables.set_from_rates(rates, np.array([1.5e7]), WellRole.PRODUCER)

    assert variables.values[0, layout.gtotal] == pytest.approx(-4.0)
    assert variables.values[0, layout.wfrac] == pytest.approx(0.25)
    assert variables.values[0, layout.gfrac] == pytest.approx(0.25)
    np.testing.assert_allclose(variables.segment_rates(), rates)
    np.testing.assert_allclose(variables.segment_pressures(), [1.5e7])

    gas = variables.surface_volume_fraction(0, FluidPhase.GAS)
    assert gas.value == pytest.approx(25.0 / 25.75)


def test_zero_rate_initialization(layout):
    variables = PrimaryVariables(layout, num_segments=1)
    variables.set_from_rates(np.zeros((1, 3)), np.array([1e7]), WellRole.PRODUCER)
    assert variables.values[0, layout.wfrac] == pytest.approx(1.0 / 3.0)

    variables.set_from_rates(
        np.zeros((1, 3)), np.array([1e7]), WellRole.INJECTOR, FluidPhase.GAS
    )
    assert variables.values[0, layout.gfrac] == 1.0
    assert variables.values[0, layout.wfrac] == 0.0


def test_segment_rate_derivatives_live_in_well_slots(layout):
    variables = PrimaryVariables(layout, num_segments=2)
    variables.set_from_rates(
        np.array([[-1.0, -2.0, -100.0], [-0.5, -1.0, -50.0]]),
        np.array([1.5e7, 1.51e7]),
        WellRole.PRODUCER,
    )
    rate = variables.segment_rate(1, FluidPhase.WATER)
    np.testing.assert_array_equal(rate.derivatives[: layout.num_eq], 0.0)
    # dQ_w/dG_t = F_w / g_w
    assert rate.derivative(layout.well_slot(layout.gtotal)) == pytest.approx(0.25)
