"""Pressure-drop correlations for well segments."""

import math
import typing

import numba

from mswell.ad import Evaluation, FloatOrEvaluation, value_of
from mswell.constants import c

__all__ = [
    "compute_haaland_friction_factor",
    "compute_fanning_friction_factor",
    "frictional_pressure_loss",
    "hydrostatic_pressure_loss",
    "velocity_head",
]

_LN10 = math.log(10.0)


@numba.njit(cache=True)
def compute_haaland_friction_factor(
    reynolds_number: float, roughness: float, diameter: float
) -> typing.Tuple[float, float]:
    """
    Haaland explicit approximation of the Fanning friction factor.

    :param reynolds_number: Reynolds number (> 0).
    :param roughness: Absolute pipe roughness (m).
    :param diameter: Pipe diameter (m).
    :return: `(f, df/dRe)`.
    """
    relative = (roughness / (3.7 * diameter)) ** (10.0 / 9.0)
    inner = 6.9 / reynolds_number + relative
    value = -3.6 * math.log10(inner)
    dvalue = -3.6 / (inner * _LN10) * (-6.9 / (reynolds_number * reynolds_number))
    f = 1.0 / (value * value)
    return f, -2.0 * dvalue / (value * value * value)


@numba.njit(cache=True)
def _fanning_friction_factor(
    reynolds_number: float,
    roughness: float,
    diameter: float,
    laminar_limit: float,
    turbulent_limit: float,
) -> typing.Tuple[float, float]:
    if reynolds_number <= 0.0:
        return 0.0, 0.0
    if reynolds_number < laminar_limit:
        return 16.0 / reynolds_number, -16.0 / (reynolds_number * reynolds_number)
    if reynolds_number > turbulent_limit:
        return compute_haaland_friction_factor(reynolds_number, roughness, diameter)

    # Transition zone: linear between the laminar and turbulent end points
    f_laminar = 16.0 / laminar_limit
    f_turbulent = compute_haaland_friction_factor(turbulent_limit, roughness, diameter)[0]
    slope = (f_turbulent - f_laminar) / (turbulent_limit - laminar_limit)
    return f_laminar + slope * (reynolds_number - laminar_limit), slope


def compute_fanning_friction_factor(
    reynolds_number: FloatOrEvaluation,
    roughness: float,
    diameter: float,
    laminar_limit: typing.Optional[float] = None,
    turbulent_limit: typing.Optional[float] = None,
) -> FloatOrEvaluation:
    """
    Fanning friction factor of pipe flow.

    `16/Re` below the laminar limit, the Haaland correlation above the
    turbulent limit and linear interpolation between the two in the
    transition zone. Zero at zero Reynolds number.

    :param reynolds_number: Reynolds number.
    :param roughness: Absolute pipe roughness (m).
    :param diameter: Pipe diameter (m).
    :param laminar_limit: Upper Reynolds number of laminar flow. Defaults to the constant.
    :param turbulent_limit: Lower Reynolds number of turbulent flow. Defaults to the constant.
    :return: The friction factor, as an `Evaluation` if the Reynolds number is one.
    """
    if laminar_limit is None:
        laminar_limit = c.LAMINAR_REYNOLDS_LIMIT
    if turbulent_limit is None:
        turbulent_limit = c.TURBULENT_REYNOLDS_LIMIT
    f, dfdre = _fanning_friction_factor(
        value_of(reynolds_number), roughness, diameter, laminar_limit, turbulent_limit
    )
    if isinstance(reynolds_number, Evaluation):
        return Evaluation(f, reynolds_number.derivatives * dfdre)
    return f


def frictional_pressure_loss(
    length: float,
    diameter: float,
    area: float,
    roughness: float,
    density: FloatOrEvaluation,
    mass_rate: FloatOrEvaluation,
    viscosity: FloatOrEvaluation,
) -> FloatOrEvaluation:
    """
    Frictional pressure loss over a segment, `2 f L w² / (A² D ρ)`.

    The loss is always non-negative; the caller applies the flow direction.

    :param length: Segment length (m).
    :param diameter: Segment diameter (m).
    :param area: Cross-sectional area (m²).
    :param roughness: Absolute roughness (m).
    :param density: Mixture density (kg/m³).
    :param mass_rate: Mixture mass rate (kg/s).
    :param viscosity: Mixture viscosity (Pa·s).
    :return: Pressure loss (Pa).
    """
    reynolds_number = abs(diameter * mass_rate / (area * viscosity))
    f = compute_fanning_friction_factor(reynolds_number, roughness, diameter)
    return 2.0 * f * length * mass_rate * mass_rate / (area * area * diameter * density)


def hydrostatic_pressure_loss(
    density: FloatOrEvaluation, depth_difference: float, gravity: float
) -> FloatOrEvaluation:
    """Hydrostatic pressure difference `ρ g Δz` (Pa)."""
    return density * gravity * depth_difference


def velocity_head(
    area: float, mass_rate: FloatOrEvaluation, density: FloatOrEvaluation
) -> FloatOrEvaluation:
    """Kinetic pressure `0.5 w² / (A² ρ)` (Pa)."""
    return 0.5 * mass_rate * mass_rate / (area * area * density)
