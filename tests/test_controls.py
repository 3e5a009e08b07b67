import numpy as np
import pytest

from mswell import Config, FluidPhase, WellRole, with_precision
from mswell.errors import DeserializationError, ValidationError
from mswell.wells import (
    BHPControl,
    PrimaryVariableLayout,
    PrimaryVariables,
    RateControl,
    ReservoirVoidageControl,
    WellControl,
    WellState,
)


def _variables(phase_usage, rates, pressures):
    layout = PrimaryVariableLayout.from_config(phase_usage, phase_usage.num_phases, Config())
    variables = PrimaryVariables(layout, num_segments=len(pressures))
    variables.set_from_rates(np.asarray(rates), np.asarray(pressures), WellRole.PRODUCER)
    return variables


def test_well_state_initialization(two_segment_network):
    state = WellState.initial(two_segment_network, 1, bhp=1.9e7, well_rates=[-2.0])
    np.testing.assert_allclose(state.perforation_rates, [[-1.0], [-1.0]])
    np.testing.assert_allclose(state.segment_rates, [[-2.0], [-1.0]])
    np.testing.assert_allclose(state.segment_pressures, [1.9e7, 1.9e7])

    data = state.dump()
    assert data["segment_rates"] == [[-2.0], [-1.0]]
    assert data["bhp"] == 1.9e7

    restored = WellState.load(data)
    assert isinstance(restored.segment_rates, np.ndarray)
    np.testing.assert_allclose(restored.segment_rates, state.segment_rates)
    np.testing.assert_allclose(restored.perforation_rates, state.perforation_rates)
    assert restored.bhp == state.bhp


def test_well_state_load_rejects_bad_data(two_segment_network):
    data = WellState.initial(two_segment_network, 1, bhp=1.9e7).dump()
    data["segment_rates"] = [[0.0, 0.0]]
    with pytest.raises(DeserializationError):
        WellState.load(data)


def test_well_state_precision(two_segment_network):
    with with_precision(np.float32):
        state = WellState.initial(two_segment_network, 1, bhp=1.9e7, well_rates=[-2.0])
    assert state.well_rates.dtype == np.float32
    assert state.segment_rates.dtype == np.float32
    assert WellState.initial(two_segment_network, 1, bhp=1.9e7).well_rates.dtype == np.float64


def test_well_state_shapes_are_checked():
    with pytest.raises(ValidationError):
        WellState(
            bhp=1e7,
            well_rates=[0.0, 0.0],
            segment_pressures=[1e7, 1e7],
            segment_rates=[[0.0, 0.0]],
            perforation_rates=[],
        )


def test_controls_satisfy_protocol():
    for control in (BHPControl(1e7), RateControl(1.0), ReservoirVoidageControl(1.0)):
        assert isinstance(control, WellControl)
    with pytest.raises(ValueError):
        BHPControl(-1.0)


def test_bhp_control(oil_only, two_segment_network):
    variables = _variables(oil_only, [[-2.0], [-1.0]], [1.5e7, 1.51e7])
    control = BHPControl(1.0e7)
    residual = control.residual(variables, WellRole.PRODUCER)
    assert residual.value == pytest.approx(5.0e6)
    assert residual.derivative(variables.layout.well_slot(variables.layout.spres)) == 1.0

    state = WellState.initial(two_segment_network, 1, bhp=1.5e7)
    control.update_well_state(state, two_segment_network, oil_only, WellRole.PRODUCER)
    assert state.bhp == 1.0e7
    assert state.segment_pressures[0] == 1.0e7


def test_rate_control_residual_uses_role_sign(water_oil):
    variables = _variables(water_oil, [[-3.0, -7.0]], [1.5e7])
    total = RateControl(10.0)
    assert total.residual(variables, WellRole.PRODUCER).value == pytest.approx(0.0)
    assert total.residual(variables, WellRole.INJECTOR).value == pytest.approx(-20.0)

    water = RateControl(5.0, phase=FluidPhase.WATER)
    assert water.residual(variables, WellRole.PRODUCER).value == pytest.approx(2.0)

    with pytest.raises(ValidationError):
        RateControl(5.0, phase="gas").residual(variables, WellRole.PRODUCER)


def test_rate_control_scales_well_state(water_oil, two_segment_network):
    state = WellState.initial(two_segment_network, 2, bhp=1.5e7, well_rates=[-1.0, -3.0])
    RateControl(8.0).update_well_state(state, two_segment_network, water_oil, WellRole.PRODUCER)
    np.testing.assert_allclose(state.well_rates, [-2.0, -6.0])
    np.testing.assert_allclose(state.segment_rates[0], [-2.0, -6.0])
    np.testing.assert_allclose(state.segment_rates[1], [-1.0, -3.0])


def test_rate_control_from_zero_rates(three_phase, two_segment_network):
    producer = WellState.initial(two_segment_network, 3, bhp=1.5e7)
    RateControl(9.0).update_well_state(producer, two_segment_network, three_phase, WellRole.PRODUCER)
    np.testing.assert_allclose(producer.well_rates, [-3.0, -3.0, -3.0])

    injector = WellState.initial(two_segment_network, 3, bhp=1.5e7)
    RateControl(9.0).update_well_state(
        injector, two_segment_network, three_phase, WellRole.INJECTOR, FluidPhase.WATER
    )
    np.testing.assert_allclose(injector.well_rates, [9.0, 0.0, 0.0])


def test_reservoir_voidage_control(water_oil, two_segment_network):
    variables = _variables(water_oil, [[-1.0, -2.0]], [1.5e7])
    control = ReservoirVoidageControl(5.0)
    coefficients = np.array([1.0, 1.5])
    residual = control.residual(variables, WellRole.PRODUCER, coefficients)
    assert residual.value == pytest.approx(-1.0 - 3.0 + 5.0)

    with pytest.raises(ValidationError):
        control.residual(variables, WellRole.PRODUCER)

    state = WellState.initial(two_segment_network, 2, bhp=1.5e7, well_rates=[-1.0, -2.0])
    control.update_well_state(
        state, two_segment_network, water_oil, WellRole.PRODUCER, coefficients=coefficients
    )
    assert float(np.dot(coefficients, state.well_rates)) == pytest.approx(-5.0)
