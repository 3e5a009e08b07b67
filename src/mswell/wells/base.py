"""Collections of wells and their combined coupling to the reservoir system."""

from concurrent.futures import ThreadPoolExecutor
import logging
import threading
import typing

import numpy as np
from scipy.sparse.linalg import LinearOperator  # type: ignore[import-untyped]

from mswell.errors import ValidationError
from mswell.reservoir import ReservoirState
from mswell.wells.multisegment import InnerIterationResult, MultisegmentWell
from mswell.wells.state import WellState

logger = logging.getLogger(__name__)

__all__ = ["WellModel", "Wells"]

T = typing.TypeVar("T")


@typing.runtime_checkable
class WellModel(typing.Protocol):
    """Operations a well offers to the outer reservoir solver."""

    name: str
    well_state: WellState

    def assemble(
        self,
        reservoir: ReservoirState,
        dt: typing.Optional[float] = None,
        average_formation_volume_factors: typing.Optional[typing.Sequence[float]] = None,
    ) -> InnerIterationResult: ...

    def apply(self, x: np.ndarray, Ax: np.ndarray) -> None: ...

    def apply_residual(self, r: np.ndarray) -> None: ...

    def recover_well_solution_and_update_well_state(self, x: np.ndarray) -> np.ndarray: ...

    def add_reservoir_contributions(
        self, residual: np.ndarray, jacobian: typing.Optional[typing.Any] = None
    ) -> None: ...


class Wells:
    """
    The wells of a reservoir model.

    Wells are independent of one another, so their assemblies run
    concurrently. Contributions to shared reservoir buffers are merged
    under a lock.
    """

    def __init__(
        self,
        wells: typing.Iterable[WellModel] = (),
        max_workers: typing.Optional[int] = None,
    ) -> None:
        """
        :param wells: Wells of the model. Names must be unique.
        :param max_workers: Worker threads used for assembly and the Schur products. Defaults to one per well, up to 8.
        """
        self._wells: typing.Dict[str, WellModel] = {}
        for well in wells:
            self.add(well)
        self.max_workers = max_workers
        self._lock = threading.Lock()

    def add(self, well: WellModel) -> None:
        if well.name in self._wells:
            raise ValidationError(f"Duplicate well name {well.name!r}")
        self._wells[well.name] = well

    def __getitem__(self, name: str) -> WellModel:
        return self._wells[name]

    def __contains__(self, name: object) -> bool:
        return name in self._wells

    def __iter__(self) -> typing.Iterator[WellModel]:
        return iter(self._wells.values())

    def __len__(self) -> int:
        return len(self._wells)

    @property
    def names(self) -> typing.List[str]:
        return list(self._wells)

    def _map(self, func: typing.Callable[[WellModel], T]) -> typing.List[T]:
        """Run `func` on every well in a thread pool, in insertion order."""
        if not self._wells:
            return []
        max_workers = self.max_workers or min(8, len(self._wells))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(func, self._wells.values()))

    def assemble(
        self,
        reservoir: ReservoirState,
        dt: typing.Optional[float] = None,
        average_formation_volume_factors: typing.Optional[typing.Sequence[float]] = None,
    ) -> typing.Dict[str, InnerIterationResult]:
        """
        Assemble every well for the current outer iteration.

        :param reservoir: Current reservoir state.
        :param dt: Time step size (s), or None for steady-state equations.
        :param average_formation_volume_factors: Per-component residual scaling.
        :return: Inner iteration results by well name.
        """
        def _assemble(well: WellModel) -> InnerIterationResult:
            return well.assemble(reservoir, dt, average_formation_volume_factors)

        wells = list(self._wells.values())
        results = self._map(_assemble)

        unconverged = [
            well.name for well, result in zip(wells, results) if not result.converged
        ]
        if unconverged:
            logger.warning(f"Wells not converged after assembly: {', '.join(unconverged)}")
        return {well.name: result for well, result in zip(wells, results)}

    def begin_time_step(self, reservoir: ReservoirState) -> None:
        for well in self._wells.values():
            if isinstance(well, MultisegmentWell):
                well.begin_time_step(reservoir)

    def apply(self, x: np.ndarray, Ax: np.ndarray) -> None:
        """Subtract the Schur complement contributions of all wells from `Ax` (in-place)."""

        def _apply(well: WellModel) -> None:
            contribution = np.zeros_like(Ax)
            well.apply(x, contribution)
            with self._lock:
                Ax[...] += contribution

        self._map(_apply)

    def apply_residual(self, r: np.ndarray) -> None:
        """Subtract `C D⁻¹ r_w` of all wells from the reservoir residual `r` (in-place)."""

        def _apply_residual(well: WellModel) -> None:
            contribution = np.zeros_like(r)
            well.apply_residual(contribution)
            with self._lock:
                r[...] += contribution

        self._map(_apply_residual)

    def add_reservoir_contributions(
        self, residual: np.ndarray, jacobian: typing.Optional[typing.Any] = None
    ) -> None:
        with self._lock:
            for well in self._wells.values():
                well.add_reservoir_contributions(residual, jacobian)

    def recover_well_solution_and_update_well_state(
        self, x: np.ndarray
    ) -> typing.Dict[str, np.ndarray]:
        """
        Recover and apply the well increments for a reservoir increment.

        :param x: Reservoir increment from the global linear solve.
        :return: Well increments by well name.
        """
        return {
            name: well.recover_well_solution_and_update_well_state(x)
            for name, well in self._wells.items()
        }

    def reduce_operator(self, A: typing.Any) -> LinearOperator:
        """
        Reservoir operator with all wells eliminated, `x -> A x - sum C D⁻¹ B x`.

        :param A: Reservoir matrix (sparse or dense).
        :return: A SciPy `LinearOperator` for iterative solvers.
        """

        def _matvec(x: np.ndarray) -> np.ndarray:
            x = np.asarray(x, dtype=np.float64).ravel()
            Ax = np.asarray(A @ x, dtype=np.float64).ravel()
            self.apply(x, Ax)
            return Ax

        return LinearOperator(shape=A.shape, matvec=_matvec, dtype=np.float64)  # type: ignore[arg-type]

    def well_states(self) -> typing.Dict[str, WellState]:
        return {name: well.well_state for name, well in self._wells.items()}
