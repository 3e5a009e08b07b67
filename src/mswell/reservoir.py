"""Reservoir-side quantities seen by well perforations."""

import logging
import typing

import attrs
import numpy as np

from mswell._precision import get_dtype
from mswell.ad import Evaluation, FloatOrEvaluation, value_of
from mswell.errors import ValidationError
from mswell.pvt.core import PropertyOracle
from mswell.types import FluidPhase, PhaseUsage

logger = logging.getLogger(__name__)

__all__ = [
    "ReservoirState",
    "CoreyRelativePermeability",
    "CellQuantities",
    "reservoir_unknown_index",
    "num_reservoir_unknowns",
    "compute_cell_quantities",
]


def _as_optional_array(value: typing.Any) -> typing.Optional[np.ndarray]:
    if value is None:
        return None
    return np.atleast_1d(np.asarray(value, dtype=get_dtype()))


@attrs.define
class ReservoirState:
    """
    Cell-wise reservoir state at the current outer iteration.

    Oil saturation is implied by the water and gas saturations. Missing
    dissolved/vaporized ratios mean the oil/gas is taken as saturated at the
    cell pressure.
    """

    pressure: np.ndarray = attrs.field(converter=_as_optional_array)
    """Oil phase pressure per cell (Pa)."""
    temperature: np.ndarray = attrs.field(converter=_as_optional_array)
    """Temperature per cell (K)."""
    water_saturation: typing.Optional[np.ndarray] = attrs.field(
        default=None, converter=_as_optional_array
    )
    """Water saturation per cell. Required when water is active."""
    gas_saturation: typing.Optional[np.ndarray] = attrs.field(
        default=None, converter=_as_optional_array
    )
    """Gas saturation per cell. Required when gas is active."""
    dissolved_gas_oil_ratio: typing.Optional[np.ndarray] = attrs.field(
        default=None, converter=_as_optional_array
    )
    """Dissolved gas-oil ratio Rs per cell (sm³/sm³)."""
    vaporized_oil_gas_ratio: typing.Optional[np.ndarray] = attrs.field(
        default=None, converter=_as_optional_array
    )
    """Vaporized oil-gas ratio Rv per cell (sm³/sm³)."""

    def __attrs_post_init__(self) -> None:
        num_cells = self.pressure.shape[0]
        if self.temperature.shape[0] == 1 and num_cells > 1:
            self.temperature = np.full(num_cells, self.temperature[0], dtype=get_dtype())
        for name in (
            "temperature",
            "water_saturation",
            "gas_saturation",
            "dissolved_gas_oil_ratio",
            "vaporized_oil_gas_ratio",
        ):
            value = getattr(self, name)
            if value is not None and value.shape[0] != num_cells:
                raise ValidationError(
                    f"Reservoir state field {name!r} has {value.shape[0]} entries, expected {num_cells}"
                )
        if np.any(self.pressure <= 0.0):
            raise ValidationError("Reservoir pressures must be positive")

    @property
    def num_cells(self) -> int:
        return int(self.pressure.shape[0])

    def saturation(self, phase: FluidPhase, cell: int) -> float:
        sw = 0.0 if self.water_saturation is None else float(self.water_saturation[cell])
        sg = 0.0 if self.gas_saturation is None else float(self.gas_saturation[cell])
        if phase is FluidPhase.WATER:
            return sw
        if phase is FluidPhase.GAS:
            return sg
        return 1.0 - sw - sg


def _corey(
    saturation: FloatOrEvaluation, residual: float, movable: float, exponent: float
) -> FloatOrEvaluation:
    if movable <= 1e-6:
        return 0.0 * saturation
    effective = (saturation - residual) / movable
    if value_of(effective) <= 0.0:
        return 0.0 * saturation
    if value_of(effective) >= 1.0:
        return 0.0 * saturation + 1.0
    return effective**exponent


@attrs.frozen
class CoreyRelativePermeability:
    """
    Corey-type relative permeabilities for a water-wet rock.

    Each phase uses its own normalized saturation, so the model applies to
    any active phase combination. Inputs may be `Evaluation`s.
    """

    irreducible_water_saturation: float = attrs.field(
        default=0.0, validator=attrs.validators.and_(attrs.validators.ge(0.0), attrs.validators.lt(1.0))
    )
    """Irreducible water saturation (Swc)."""
    residual_oil_saturation: float = attrs.field(
        default=0.0, validator=attrs.validators.and_(attrs.validators.ge(0.0), attrs.validators.lt(1.0))
    )
    """Residual oil saturation (Sor)."""
    residual_gas_saturation: float = attrs.field(
        default=0.0, validator=attrs.validators.and_(attrs.validators.ge(0.0), attrs.validators.lt(1.0))
    )
    """Residual gas saturation (Sgr)."""
    water_exponent: float = attrs.field(default=2.0, validator=attrs.validators.gt(0.0))
    """Corey exponent for water relative permeability."""
    oil_exponent: float = attrs.field(default=2.0, validator=attrs.validators.gt(0.0))
    """Corey exponent for oil relative permeability."""
    gas_exponent: float = attrs.field(default=2.0, validator=attrs.validators.gt(0.0))
    """Corey exponent for gas relative permeability."""

    def __call__(
        self,
        water_saturation: FloatOrEvaluation,
        oil_saturation: FloatOrEvaluation,
        gas_saturation: FloatOrEvaluation,
    ) -> typing.Dict[FluidPhase, FloatOrEvaluation]:
        """
        Compute relative permeabilities.

        :param water_saturation: Water saturation.
        :param oil_saturation: Oil saturation.
        :param gas_saturation: Gas saturation.
        :return: Relative permeability per phase.
        """
        swc = self.irreducible_water_saturation
        sor = self.residual_oil_saturation
        sgr = self.residual_gas_saturation
        return {
            FluidPhase.WATER: _corey(
                water_saturation, swc, 1.0 - swc - sor, self.water_exponent
            ),
            FluidPhase.OIL: _corey(
                oil_saturation, sor, 1.0 - swc - sor - sgr, self.oil_exponent
            ),
            FluidPhase.GAS: _corey(
                gas_saturation, sgr, 1.0 - swc - sor - sgr, self.gas_exponent
            ),
        }


def num_reservoir_unknowns(phase_usage: PhaseUsage) -> int:
    """Number of reservoir unknowns per cell: pressure plus water and gas saturations."""
    return phase_usage.num_phases


def reservoir_unknown_index(phase_usage: PhaseUsage, phase: FluidPhase) -> int:
    """
    Position of a saturation unknown among the reservoir unknowns of a cell.

    :return: The position, or -1 if the saturation is not an unknown (oil, inactive phases).
    """
    if phase is FluidPhase.WATER and phase_usage.has_water:
        return 1
    if phase is FluidPhase.GAS and phase_usage.has_gas:
        return 2 if phase_usage.has_water else 1
    return -1


@attrs.frozen
class CellQuantities:
    """
    Quantities of a perforated cell, with derivatives in a well's local layout.

    Per-phase tuples follow the active phase order.
    """

    cell: int
    """Cell index."""
    pressure: Evaluation
    """Cell pressure, seeded as reservoir unknown 0."""
    temperature: float
    """Cell temperature (K)."""
    mobilities: typing.Tuple[Evaluation, ...]
    """Phase mobilities kr/μ (1/(Pa·s))."""
    inverse_formation_volume_factors: typing.Tuple[Evaluation, ...]
    """Phase `b = 1/B`."""
    dissolved_gas_oil_ratio: float
    """Rs of the cell, treated as a constant."""
    vaporized_oil_gas_ratio: float
    """Rv of the cell, treated as a constant."""
    densities: typing.Tuple[float, ...]
    """Phase densities at cell conditions (kg/m³)."""
    relative_permeabilities: typing.Tuple[float, ...]
    """Phase relative permeabilities."""
    saturations: typing.Tuple[float, ...]
    """Phase saturations."""

    @property
    def total_mobility(self) -> Evaluation:
        total = self.mobilities[0]
        for mobility in self.mobilities[1:]:
            total = total + mobility
        return total

    def average_density(self) -> float:
        """
        Relative-permeability weighted density of the cell fluid.

        Falls back to saturation weighting when no phase is mobile.
        """
        sum_kr = sum(self.relative_permeabilities)
        if sum_kr > 0.0:
            return (
                sum(kr * rho for kr, rho in zip(self.relative_permeabilities, self.densities))
                / sum_kr
            )
        return sum(s * rho for s, rho in zip(self.saturations, self.densities))


def compute_cell_quantities(
    cell: int,
    state: ReservoirState,
    oracle: PropertyOracle,
    relative_permeability: CoreyRelativePermeability,
    phase_usage: PhaseUsage,
    size: int,
) -> CellQuantities:
    """
    Evaluate the quantities of a perforated cell.

    Reservoir unknowns are seeded in slots `0 .. num_eq - 1` of a derivative
    vector of length `size`: pressure first, then the active water and gas
    saturations.

    :param cell: Cell index.
    :param state: Reservoir state.
    :param oracle: Property oracle.
    :param relative_permeability: Relative permeability model.
    :param phase_usage: Active phases.
    :param size: Length of the derivative vectors.
    :return: The cell quantities.
    """
    if not 0 <= cell < state.num_cells:
        raise ValidationError(f"Cell {cell} is outside the reservoir ({state.num_cells} cells)")

    pressure = Evaluation.variable(float(state.pressure[cell]), 0, size)
    temperature = float(state.temperature[cell])

    saturations: typing.Dict[FluidPhase, FloatOrEvaluation] = {}
    oil_saturation: FloatOrEvaluation = Evaluation.constant(1.0, size)
    for phase in (FluidPhase.WATER, FluidPhase.GAS):
        index = reservoir_unknown_index(phase_usage, phase)
        if index < 0:
            saturations[phase] = Evaluation.constant(0.0, size)
            continue
        saturations[phase] = Evaluation.variable(state.saturation(phase, cell), index, size)
        oil_saturation = oil_saturation - saturations[phase]
    saturations[FluidPhase.OIL] = oil_saturation

    kr = relative_permeability(
        saturations[FluidPhase.WATER], saturations[FluidPhase.OIL], saturations[FluidPhase.GAS]
    )

    rs = 0.0
    rv = 0.0
    if phase_usage.has_gas:
        if state.dissolved_gas_oil_ratio is not None:
            rs = float(state.dissolved_gas_oil_ratio[cell])
        else:
            rs = value_of(oracle.saturation_limit(FluidPhase.OIL, pressure.value, temperature, cell))
        if state.vaporized_oil_gas_ratio is not None:
            rv = float(state.vaporized_oil_gas_ratio[cell])

    mobilities = []
    inverse_fvfs = []
    densities = []
    for phase in phase_usage:
        composition = rs if phase is FluidPhase.OIL else rv if phase is FluidPhase.GAS else 0.0
        fvf = oracle.formation_volume_factor(phase, pressure, temperature, composition, cell)
        mu = oracle.viscosity(phase, pressure, temperature, composition, cell)
        mobilities.append(kr[phase] / mu)
        b = 1.0 / fvf
        inverse_fvfs.append(b)

        rho = oracle.surface_density(phase, cell)
        if phase is FluidPhase.OIL:
            rho += rs * oracle.surface_density(FluidPhase.GAS, cell)
        elif phase is FluidPhase.GAS:
            rho += rv * oracle.surface_density(FluidPhase.OIL, cell)
        densities.append(value_of(b) * rho)

    return CellQuantities(
        cell=cell,
        pressure=pressure,
        temperature=temperature,
        mobilities=tuple(mobilities),
        inverse_formation_volume_factors=tuple(inverse_fvfs),
        dissolved_gas_oil_ratio=rs,
        vaporized_oil_gas_ratio=rv,
        densities=tuple(densities),
        relative_permeabilities=tuple(value_of(kr[phase]) for phase in phase_usage),
        saturations=tuple(value_of(saturations[phase]) for phase in phase_usage),
    )
