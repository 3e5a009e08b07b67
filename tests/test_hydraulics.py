import math

import pytest

from mswell.ad import Evaluation
from mswell.constants import c
from mswell.wells import (
    compute_fanning_friction_factor,
    compute_haaland_friction_factor,
    frictional_pressure_loss,
    hydrostatic_pressure_loss,
    velocity_head,
)

ROUGHNESS = 1e-5
DIAMETER = 0.1


def test_laminar_and_zero_flow():
    assert compute_fanning_friction_factor(100.0, ROUGHNESS, DIAMETER) == pytest.approx(0.16)
    assert compute_fanning_friction_factor(0.0, ROUGHNESS, DIAMETER) == 0.0


def test_transition_zone_is_continuous():
    laminar = c.LAMINAR_REYNOLDS_LIMIT
    turbulent = c.TURBULENT_REYNOLDS_LIMIT
    below = compute_fanning_friction_factor(laminar * (1 - 1e-9), ROUGHNESS, DIAMETER)
    above = compute_fanning_friction_factor(laminar * (1 + 1e-9), ROUGHNESS, DIAMETER)
    assert below == pytest.approx(above, rel=1e-6)

    haaland, _ = compute_haaland_friction_factor(turbulent, ROUGHNESS, DIAMETER)
    near = compute_fanning_friction_factor(turbulent * (1 - 1e-9), ROUGHNESS, DIAMETER)
    assert near == pytest.approx(haaland, rel=1e-6)


def test_transition_zone_is_linear():
    laminar = c.LAMINAR_REYNOLDS_LIMIT
    turbulent = c.TURBULENT_REYNOLDS_LIMIT
    f_laminar = 16.0 / laminar
    f_turbulent, _ = compute_haaland_friction_factor(turbulent, ROUGHNESS, DIAMETER)
    slope = (f_turbulent - f_laminar) / (turbulent - laminar)

    midpoint = 0.5 * (laminar + turbulent)
    f = compute_fanning_friction_factor(Evaluation.variable(midpoint, 0, 1), ROUGHNESS, DIAMETER)
    assert f.value == pytest.approx(0.5 * (f_laminar + f_turbulent), rel=1e-12)
    assert f.derivatives[0] == pytest.approx(slope, rel=1e-12)


def test_haaland_derivative_matches_finite_difference():
    re = 5.0e4
    f = compute_fanning_friction_factor(Evaluation.variable(re, 0, 1), ROUGHNESS, DIAMETER)
    h = 1.0
    forward = compute_fanning_friction_factor(re + h, ROUGHNESS, DIAMETER)
    backward = compute_fanning_friction_factor(re - h, ROUGHNESS, DIAMETER)
    assert f.derivative(0) == pytest.approx((forward - backward) / (2 * h), rel=1e-5)
    assert 0.001 < f.value < 0.01


def test_laminar_friction_loss_matches_poiseuille():
    area = math.pi * DIAMETER**2 / 4.0
    length, density, viscosity, mass_rate = 10.0, 800.0, 1e-3, 0.01
    loss = frictional_pressure_loss(
        length, DIAMETER, area, ROUGHNESS, density, mass_rate, viscosity
    )
    expected = 32.0 * viscosity * length * mass_rate / (area * DIAMETER**2 * density)
    assert loss == pytest.approx(expected)

    reverse = frictional_pressure_loss(
        length, DIAMETER, area, ROUGHNESS, density, -mass_rate, viscosity
    )
    assert reverse == pytest.approx(loss)
    assert frictional_pressure_loss(length, DIAMETER, area, ROUGHNESS, density, 0.0, viscosity) == 0.0


def test_hydrostatic_and_velocity_head():
    assert hydrostatic_pressure_loss(1000.0, 10.0, 9.80665) == pytest.approx(98066.5)
    mass_rate = Evaluation.variable(2.0, 0, 1)
    head = velocity_head(0.5, mass_rate, 1000.0)
    assert head.value == pytest.approx(0.5 * 4.0 / (0.25 * 1000.0))
    assert head.derivative(0) == pytest.approx(2.0 / (0.25 * 1000.0))
