import math

import numpy as np
import pytest

from mswell import BlackOilTableData, BlackOilTables, FluidPhase
from mswell.ad import Evaluation
from mswell.errors import PropertyEvaluationError, ValidationError
from mswell.pvt import TableInterpolator

T = 350.0


def test_interpolator_propagates_slope():
    table = TableInterpolator([0.0, 1.0, 2.0], [0.0, 2.0, 3.0])
    assert table(0.5) == pytest.approx(1.0)

    x = Evaluation.variable(1.5, 0, 1)
    y = table(x)
    assert y.value == pytest.approx(2.5)
    assert y.derivative(0) == pytest.approx(1.0)


def test_interpolator_outside_range():
    assert TableInterpolator([0.0, 1.0], [1.0, 3.0])(2.0) == pytest.approx(5.0)
    strict = TableInterpolator([0.0, 1.0], [1.0, 3.0], extrapolate=False, name="Bo")
    assert strict(1.0) == pytest.approx(3.0)
    with pytest.raises(PropertyEvaluationError):
        strict(2.0)
    with pytest.raises(PropertyEvaluationError):
        strict(float("nan"))


def test_interpolator_validation():
    with pytest.raises(ValidationError):
        TableInterpolator([1.0], [2.0])
    with pytest.raises(ValidationError):
        TableInterpolator([0.0, 1.0], [1.0, 2.0, 3.0])
    with pytest.raises(ValidationError):
        TableInterpolator([1.0, 0.0], [1.0, 2.0])

def test_dead_oil_lookup(dead_oil_tables):
    assert dead_oil_tables.formation_volume_factor(FluidPhase.OIL, 2.0e7, T) == pytest.approx(1.08)
    assert dead_oil_tables.viscosity(FluidPhase.WATER, 3.0e7, T) == pytest.approx(5.0e-4)
    assert dead_oil_tables.surface_density(FluidPhase.OIL) == 850.0
    assert dead_oil_tables.saturation_limit(FluidPhase.OIL, 2.0e7, T) == 0.0


def test_missing_gas_table_raises(dead_oil_tables):
    with pytest.raises(PropertyEvaluationError):
        dead_oil_tables.formation_volume_factor(FluidPhase.GAS, 2.0e7, T)


def test_saturated_and_undersaturated_oil(live_oil_tables):
    saturated = live_oil_tables.formation_volume_factor(FluidPhase.OIL, 2.0e7, T, 100.0)
    assert saturated == pytest.approx(1.35)

    # Rs = 50 has its bubble point at 1e7 Pa
    undersaturated = live_oil_tables.formation_volume_factor(FluidPhase.OIL, 2.0e7, T, 50.0)
    assert undersaturated == pytest.approx(1.20 * math.exp(-1.0e-9 * 1.0e7))
    viscosity = live_oil_tables.viscosity(FluidPhase.OIL, 2.0e7, T, 50.0)
    assert viscosity == pytest.approx(1.5e-3 * math.exp(1.0e-9 * 1.0e7))


def test_saturation_limit_with_derivatives(live_oil_tables):
    pressure = Evaluation.variable(1.5e7, 0, 2)
    rs = live_oil_tables.saturation_limit(FluidPhase.OIL, pressure, T)
    assert rs.value == pytest.approx(75.0)
    assert rs.derivative(0) == pytest.approx(50.0 / 1.0e7)
    assert live_oil_tables.saturation_limit(FluidPhase.GAS, pressure, T).value == 0.0


def test_table_validation():
    with pytest.raises(ValidationError):
        BlackOilTables(
            BlackOilTableData(
                pressures=[2.0e7, 1.0e7],
                oil_formation_volume_factor=[1.1, 1.2],
                oil_viscosity=[1e-3, 1e-3],
            )
        )
    with pytest.raises(ValidationError):
        BlackOilTables(
            BlackOilTableData(
                pressures=[1.0e7, 2.0e7],
                oil_formation_volume_factor=[1.1, 1.2, 1.3],
                oil_viscosity=[1e-3, 1e-3],
            )
        )
    with pytest.raises(ValidationError):
        BlackOilTables(
            BlackOilTableData(
                pressures=[1.0e7, 2.0e7],
                oil_formation_volume_factor=[1.1, 1.2],
                oil_viscosity=[1e-3, 1e-3],
                water_formation_volume_factor=[1.0, 1.0],
            )
        )


def test_strict_tables_reject_extrapolation():
    tables = BlackOilTables(
        BlackOilTableData(
            pressures=[1.0e7, 2.0e7],
            oil_formation_volume_factor=[1.1, 1.2],
            oil_viscosity=[1e-3, 1e-3],
        ),
        extrapolate=False,
    )
    with pytest.raises(PropertyEvaluationError):
        tables.formation_volume_factor(FluidPhase.OIL, 3.0e7, T)
