"""Physical constants and numerical thresholds used by the well model."""

from contextvars import ContextVar
import typing

import attrs


__all__ = ["Constant", "Constants", "c", "ConstantsContext"]


@attrs.frozen(slots=True)
class Constant:
    """A constant value with optional description and unit."""

    value: typing.Any
    """The actual value of the constant."""

    description: typing.Optional[str] = None
    """Optional description of what this constant represents."""

    unit: typing.Optional[str] = None
    """Optional unit of measurement for this constant."""

    def __str__(self) -> str:
        return f"{self.value}{self.unit or ''}"


DEFAULT_CONSTANTS: typing.Dict[str, Constant] = {
    "ACCELERATION_DUE_TO_GRAVITY": Constant(
        value=9.80665, description="Standard acceleration due to gravity", unit="m/s²"
    ),
    "STANDARD_PRESSURE": Constant(
        value=101325.0, description="Standard atmospheric pressure", unit="Pa"
    ),
    "STANDARD_TEMPERATURE": Constant(
        value=288.7056, description="Standard temperature (15.6°C)", unit="K"
    ),
    "LAMINAR_REYNOLDS_LIMIT": Constant(
        value=200.0,
        description="Reynolds number below which the laminar friction factor 16/Re is used",
    ),
    "TURBULENT_REYNOLDS_LIMIT": Constant(
        value=4000.0,
        description="Reynolds number above which the Haaland correlation is used",
    ),
    "MAX_WELL_RESIDUAL": Constant(
        value=1e7,
        description="Scaled flux residual above which a well solution is considered diverged",
    ),
    "DEFAULT_WATER_SCALING_FACTOR": Constant(
        value=1.0, description="Weight of water in the total rate primary variable"
    ),
    "DEFAULT_OIL_SCALING_FACTOR": Constant(
        value=1.0, description="Weight of oil in the total rate primary variable"
    ),
    "DEFAULT_GAS_SCALING_FACTOR": Constant(
        value=0.01, description="Weight of gas in the total rate primary variable"
    ),
    "MIN_FRACTION_DENOMINATOR": Constant(
        value=1e-12,
        description="Smallest denominator accepted when renormalizing phase fractions",
    ),
    "INITIAL_WELL_RATE": Constant(
        value=1e-4,
        description="Magnitude of the seed surface rate of a well started without a state",
        unit="sm³/s",
    ),
}


class Constants:
    """
    Container of named constants.

    Use attribute access for raw values and item access for the `Constant` object.
    """

    __slots__ = ("_store",)

    def __init__(
        self, overrides: typing.Optional[typing.Mapping[str, typing.Any]] = None
    ) -> None:
        store = dict(DEFAULT_CONSTANTS)
        for name, value in (overrides or {}).items():
            store[name] = value if isinstance(value, Constant) else Constant(value)
        object.__setattr__(self, "_store", store)

    def __getattr__(self, name: str) -> typing.Any:
        if name.startswith("_"):
            return object.__getattribute__(self, name)
        try:
            return self._store[name].value
        except KeyError:
            raise AttributeError(
                f"'{type(self).__name__}' object has no attribute '{name}'"
            ) from None

    def __setattr__(self, name: str, value: typing.Any) -> None:
        self._store[name] = value if isinstance(value, Constant) else Constant(value)

    def __getitem__(self, name: str) -> Constant:
        return self._store[name]

    def __contains__(self, name: str) -> bool:
        return name in self._store

    def __len__(self) -> int:
        return len(self._store)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(constants={len(self._store)})"

    def __call__(self) -> "ConstantsContext":
        """
        Create a context manager that makes this instance the one seen through `c`.
        """
        return ConstantsContext(self)


_constants_context: ContextVar[Constants] = ContextVar(
    "constants_context", default=Constants()
)


class ConstantsContext:
    """Context manager for temporary global `Constants` overrides."""

    def __init__(self, constants: Constants) -> None:
        self._new_constants = constants
        self._token = None

    def __enter__(self) -> Constants:
        self._token = _constants_context.set(self._new_constants)
        return self._new_constants

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if self._token is not None:
            _constants_context.reset(self._token)


class _ConstantsProxy:
    """Proxy to the `Constants` instance of the current context."""

    @property
    def _constants(self) -> Constants:
        return _constants_context.get()

    def __getattr__(self, name: str) -> typing.Any:
        return getattr(self._constants, name)

    def __getitem__(self, name: str) -> Constant:
        return self._constants[name]


c = _ConstantsProxy()
"""Global proxy to access physical constants and thresholds."""
