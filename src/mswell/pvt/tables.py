import logging
import typing

import attrs
import numpy as np

from mswell.ad import FloatOrEvaluation, exp, value_of
from mswell.errors import PropertyEvaluationError, ValidationError
from mswell.pvt.core import TableInterpolator
from mswell.types import FluidPhase

logger = logging.getLogger(__name__)

__all__ = ["BlackOilTableData", "BlackOilTables"]


def _as_array(value: typing.Any) -> typing.Optional[np.ndarray]:
    if value is None:
        return None
    return np.asarray(value, dtype=np.float64)


@attrs.frozen
class BlackOilTableData:
    """
    Raw black-oil tables as functions of pressure.

    Saturated oil properties are tabulated against the pressure grid together
    with the saturated dissolved gas-oil ratio. Undersaturated oil (pressure
    above the bubble point of its dissolved gas) is compressed from the
    bubble point value with a constant compressibility and viscosibility.
    """

    pressures: np.ndarray = attrs.field(converter=_as_array)
    """Pressure grid (Pa), strictly increasing."""
    oil_formation_volume_factor: np.ndarray = attrs.field(converter=_as_array)
    """Saturated oil formation volume factor Bo(P) (rm³/sm³)."""
    oil_viscosity: np.ndarray = attrs.field(converter=_as_array)
    """Saturated oil viscosity μo(P) (Pa·s)."""
    oil_surface_density: float = 850.0
    """Oil density at surface conditions (kg/m³)."""
    solution_gas_oil_ratio: typing.Optional[np.ndarray] = attrs.field(
        default=None, converter=_as_array
    )
    """Saturated dissolved gas-oil ratio Rs,sat(P) (sm³/sm³). None for dead oil."""
    undersaturated_oil_compressibility: float = 0.0
    """Oil compressibility above the bubble point (1/Pa)."""
    undersaturated_oil_viscosibility: float = 0.0
    """Relative viscosity increase per unit pressure above the bubble point (1/Pa)."""
    water_formation_volume_factor: typing.Optional[np.ndarray] = attrs.field(
        default=None, converter=_as_array
    )
    """Water formation volume factor Bw(P) (rm³/sm³)."""
    water_viscosity: typing.Optional[np.ndarray] = attrs.field(
        default=None, converter=_as_array
    )
    """Water viscosity μw(P) (Pa·s)."""
    water_surface_density: float = 1000.0
    """Water density at surface conditions (kg/m³)."""
    gas_formation_volume_factor: typing.Optional[np.ndarray] = attrs.field(
        default=None, converter=_as_array
    )
    """Gas formation volume factor Bg(P) (rm³/sm³)."""
    gas_viscosity: typing.Optional[np.ndarray] = attrs.field(
        default=None, converter=_as_array
    )
    """Gas viscosity μg(P) (Pa·s)."""
    gas_surface_density: float = 1.0
    """Gas density at surface conditions (kg/m³)."""
    vaporized_oil_gas_ratio: typing.Optional[np.ndarray] = attrs.field(
        default=None, converter=_as_array
    )
    """Saturated vaporized oil-gas ratio Rv,sat(P) (sm³/sm³). None for dry gas."""


class BlackOilTables:
    """
    Table-based property oracle for black-oil fluids.

    Lookups are piecewise linear in pressure and propagate derivatives when
    queried with `Evaluation`s. Temperature is accepted for interface
    compatibility; the tables are isothermal.
    """

    def __init__(self, data: BlackOilTableData, extrapolate: bool = True) -> None:
        """
        :param data: Raw table data.
        :param extrapolate: Whether pressures outside the table are extrapolated.
            If False, such queries raise `PropertyEvaluationError`.
        """
        self._validate(data)
        self.data = data
        self.extrapolate = extrapolate
        self._interpolators: typing.Dict[str, TableInterpolator] = {}
        self._build_interpolators(data)
        logger.debug(
            f"Black-oil tables initialized: P ∈ [{data.pressures[0]:.4g}, {data.pressures[-1]:.4g}] Pa, "
            f"live oil={data.solution_gas_oil_ratio is not None}, "
            f"wet gas={data.vaporized_oil_gas_ratio is not None}"
        )

    def _build_interpolators(self, data: BlackOilTableData) -> None:
        """Build one interpolator per provided pressure table."""
        property_map = {
            "Bo": data.oil_formation_volume_factor,
            "μo": data.oil_viscosity,
            "Rs": data.solution_gas_oil_ratio,
            "Bw": data.water_formation_volume_factor,
            "μw": data.water_viscosity,
            "Bg": data.gas_formation_volume_factor,
            "μg": data.gas_viscosity,
            "Rv": data.vaporized_oil_gas_ratio,
        }
        for name, table in property_map.items():
            if table is not None:
                self._interpolators[name] = TableInterpolator(
                    data.pressures, table, extrapolate=self.extrapolate, name=name
                )
        if data.solution_gas_oil_ratio is not None:
            # Inverse table, always extrapolated: a dissolved gas ratio beyond
            # the table is legitimate input
            self._interpolators["bubble point pressure"] = TableInterpolator(
                data.solution_gas_oil_ratio, data.pressures, name="bubble point pressure"
            )

    @staticmethod
    def _validate(data: BlackOilTableData) -> None:
        pressures = data.pressures
        if pressures.ndim != 1 or pressures.size < 2:
            raise ValidationError("Pressure grid must be a 1D array of at least two points")
        if np.any(np.diff(pressures) <= 0.0):
            raise ValidationError("Pressure grid must be strictly increasing")

        for field in attrs.fields(BlackOilTableData):
            value = getattr(data, field.name)
            if field.name == "pressures" or not isinstance(value, np.ndarray):
                continue
            if value.shape != pressures.shape:
                raise ValidationError(
                    f"Table {field.name!r} has shape {value.shape}, expected {pressures.shape}"
                )
            if field.name in ("solution_gas_oil_ratio", "vaporized_oil_gas_ratio"):
                if np.any(value < 0.0):
                    raise ValidationError(f"Table {field.name!r} must be non-negative")
            elif np.any(value <= 0.0):
                raise ValidationError(f"Table {field.name!r} must be positive")

        rs = data.solution_gas_oil_ratio
        if rs is not None and np.any(np.diff(rs) <= 0.0):
            raise ValidationError(
                "Saturated dissolved gas-oil ratio must increase strictly with pressure"
            )
        if (data.water_formation_volume_factor is None) != (data.water_viscosity is None):
            raise ValidationError("Water tables require both formation volume factor and viscosity")
        if (data.gas_formation_volume_factor is None) != (data.gas_viscosity is None):
            raise ValidationError("Gas tables require both formation volume factor and viscosity")

    def _lookup(self, pressure: FloatOrEvaluation, name: str) -> FloatOrEvaluation:
        interpolator = self._interpolators.get(name)
        if interpolator is None:
            raise PropertyEvaluationError(f"No table provided for {name}")
        return interpolator(pressure)

    def _bubble_point_pressure(self, rs: FloatOrEvaluation) -> FloatOrEvaluation:
        return self._interpolators["bubble point pressure"](rs)

    def _is_undersaturated(
        self, pressure: FloatOrEvaluation, composition: FloatOrEvaluation
    ) -> bool:
        if self.data.solution_gas_oil_ratio is None:
            return False
        rs_sat = self._lookup(pressure, "Rs")
        return value_of(composition) < value_of(rs_sat)

    def formation_volume_factor(
        self,
        phase: FluidPhase,
        pressure: FloatOrEvaluation,
        temperature: float,
        composition: FloatOrEvaluation = 0.0,
        cell: int = 0,
    ) -> FloatOrEvaluation:
        data = self.data
        if phase is FluidPhase.WATER:
            return self._lookup(pressure, "Bw")
        if phase is FluidPhase.GAS:
            return self._lookup(pressure, "Bg")

        if not self._is_undersaturated(pressure, composition):
            return self._lookup(pressure, "Bo")
        # Bo(P) = Bob * exp(-co * (P - Pb))
        bubble_point = self._bubble_point_pressure(composition)
        bob = self._lookup(bubble_point, "Bo")
        compression = exp(
            -data.undersaturated_oil_compressibility * (pressure - bubble_point)
        )
        return bob * compression

    def viscosity(
        self,
        phase: FluidPhase,
        pressure: FloatOrEvaluation,
        temperature: float,
        composition: FloatOrEvaluation = 0.0,
        cell: int = 0,
    ) -> FloatOrEvaluation:
        data = self.data
        if phase is FluidPhase.WATER:
            return self._lookup(pressure, "μw")
        if phase is FluidPhase.GAS:
            return self._lookup(pressure, "μg")

        if not self._is_undersaturated(pressure, composition):
            return self._lookup(pressure, "μo")
        bubble_point = self._bubble_point_pressure(composition)
        mu_b = self._lookup(bubble_point, "μo")
        return mu_b * exp(
            data.undersaturated_oil_viscosibility * (pressure - bubble_point)
        )

    def saturation_limit(
        self,
        phase: FluidPhase,
        pressure: FloatOrEvaluation,
        temperature: float,
        cell: int = 0,
    ) -> FloatOrEvaluation:
        if phase is FluidPhase.OIL and self.data.solution_gas_oil_ratio is not None:
            return self._lookup(pressure, "Rs")
        if phase is FluidPhase.GAS and self.data.vaporized_oil_gas_ratio is not None:
            return self._lookup(pressure, "Rv")
        return 0.0 * pressure

    def surface_density(self, phase: FluidPhase, cell: int = 0) -> float:
        if phase is FluidPhase.WATER:
            return float(self.data.water_surface_density)
        if phase is FluidPhase.GAS:
            return float(self.data.gas_surface_density)
        return float(self.data.oil_surface_density)
