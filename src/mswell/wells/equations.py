"""
Local linear system of a well and its elimination from the reservoir system.

The coupled system reads

    [ A  C ] [ x  ]   [ r   ]
    [ B  D ] [ xw ] = [ r_w ]

with reservoir unknowns `x` and well unknowns `xw`. `B` holds the
derivatives of the well equations with respect to reservoir unknowns, `C`
those of the reservoir equations with respect to well unknowns, and `D` the
derivatives of the well equations with respect to well unknowns. Eliminating
`xw` leaves `(A - C D⁻¹ B) x = r - C D⁻¹ r_w`.
"""

import logging
import typing

import numpy as np
from scipy.sparse import csc_matrix, csr_matrix  # type: ignore[import-untyped]
from scipy.sparse.linalg import splu  # type: ignore[import-untyped]

from mswell.ad import Evaluation
from mswell.errors import SingularLocalSystemError, ValidationError
from mswell.types import FloatArray

logger = logging.getLogger(__name__)

__all__ = ["WellEquations"]


BlockKey = typing.Tuple[int, int]


def _assemble_blocks(
    blocks: typing.Mapping[BlockKey, FloatArray],
    shape: typing.Tuple[int, int],
    row_block: int,
    col_block: int,
) -> csr_matrix:
    rows = []
    cols = []
    data = []
    local_rows, local_cols = np.meshgrid(
        np.arange(row_block), np.arange(col_block), indexing="ij"
    )
    for (i, j), block in blocks.items():
        rows.append(i * row_block + local_rows.ravel())
        cols.append(j * col_block + local_cols.ravel())
        data.append(block.ravel())
    if not data:
        return csr_matrix(shape, dtype=np.float64)
    return csr_matrix(
        (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
        shape=shape,
        dtype=np.float64,
    )


class WellEquations:
    """
    Residual and Jacobian blocks of one well.

    Blocks are accumulated in dictionaries keyed by (row, column) owner and
    converted to sparse matrices by `finalize`, which also factorizes `D`.
    Global reservoir vectors are laid out cell by cell, `num_eq` entries per
    cell. The object is scratch state of its well and is not safe for
    concurrent use.
    """

    def __init__(
        self,
        num_segments: int,
        num_well_eq: int,
        num_eq: int,
        num_cells: int,
    ) -> None:
        """
        :param num_segments: Number of segments.
        :param num_well_eq: Equations (and unknowns) per segment.
        :param num_eq: Reservoir unknowns (and equations) per cell.
        :param num_cells: Number of cells of the reservoir system.
        """
        self.num_segments = num_segments
        self.num_well_eq = num_well_eq
        self.num_eq = num_eq
        self.num_cells = num_cells

        self.residual = np.zeros((num_segments, num_well_eq), dtype=np.float64)
        self.d_blocks: typing.Dict[BlockKey, FloatArray] = {}
        self.b_blocks: typing.Dict[BlockKey, FloatArray] = {}
        self.c_blocks: typing.Dict[BlockKey, FloatArray] = {}
        self.reservoir_residual: typing.Dict[int, FloatArray] = {}
        self.reservoir_jacobian: typing.Dict[int, FloatArray] = {}

        self._D: typing.Optional[csc_matrix] = None
        self._B: typing.Optional[csr_matrix] = None
        self._C: typing.Optional[csr_matrix] = None
        self._lu = None

    @property
    def num_well_unknowns(self) -> int:
        return self.num_segments * self.num_well_eq

    @property
    def num_reservoir_unknowns(self) -> int:
        return self.num_cells * self.num_eq

    def clear(self) -> None:
        self.residual[...] = 0.0
        self.d_blocks.clear()
        self.b_blocks.clear()
        self.c_blocks.clear()
        self.reservoir_residual.clear()
        self.reservoir_jacobian.clear()
        self._D = self._B = self._C = None
        self._lu = None

    def _block(
        self, blocks: typing.Dict[BlockKey, FloatArray], key: BlockKey, shape: typing.Tuple[int, int]
    ) -> FloatArray:
        block = blocks.get(key)
        if block is None:
            block = np.zeros(shape, dtype=np.float64)
            blocks[key] = block
        return block

    def d_block(self, row_segment: int, col_segment: int) -> FloatArray:
        return self._block(
            self.d_blocks, (row_segment, col_segment), (self.num_well_eq, self.num_well_eq)
        )

    def b_block(self, segment: int, cell: int) -> FloatArray:
        return self._block(self.b_blocks, (segment, cell), (self.num_well_eq, self.num_eq))

    def c_block(self, cell: int, segment: int) -> FloatArray:
        return self._block(self.c_blocks, (cell, segment), (self.num_eq, self.num_well_eq))

    def add_well_derivatives(
        self,
        row_segment: int,
        equation: int,
        col_segment: int,
        value: Evaluation,
        scale: float = 1.0,
    ) -> None:
        """Add the well-unknown derivatives of `value` to a row of `D`."""
        self.d_block(row_segment, col_segment)[equation, :] += (
            scale * value.derivatives[self.num_eq :]
        )

    def set_well_derivatives(
        self, row_segment: int, equation: int, col_segment: int, value: Evaluation
    ) -> None:
        """Overwrite a row of a `D` block with the well-unknown derivatives of `value`."""
        self.d_block(row_segment, col_segment)[equation, :] = value.derivatives[self.num_eq :]

    def add_reservoir_derivatives(
        self, segment: int, equation: int, cell: int, value: Evaluation, scale: float = 1.0
    ) -> None:
        """Add the reservoir-unknown derivatives of `value` to a row of `B`."""
        self.b_block(segment, cell)[equation, :] += scale * value.derivatives[: self.num_eq]

    def add_perforation_coupling(
        self,
        cell: int,
        segment: int,
        component: int,
        rate: Evaluation,
        efficiency_factor: float = 1.0,
    ) -> None:
        """
        Record the contribution of a perforation rate to the reservoir equations.

        The reservoir residual of the component loses the rate. Derivatives with
        respect to the segment unknowns go to `C`, those with respect to the
        cell's own unknowns are kept for the reservoir diagonal.
        """
        scaled = efficiency_factor * rate
        residual = self.reservoir_residual.setdefault(
            cell, np.zeros(self.num_eq, dtype=np.float64)
        )
        residual[component] -= scaled.value
        jacobian = self.reservoir_jacobian.setdefault(
            cell, np.zeros((self.num_eq, self.num_eq), dtype=np.float64)
        )
        jacobian[component, :] -= scaled.derivatives[: self.num_eq]
        self.c_block(cell, segment)[component, :] -= scaled.derivatives[self.num_eq :]

    def finalize(self) -> None:
        """
        Build the sparse blocks and factorize `D`.

        :raises SingularLocalSystemError: If `D` is singular or not finite.
        """
        nw = self.num_well_unknowns
        nr = self.num_reservoir_unknowns
        D = _assemble_blocks(self.d_blocks, (nw, nw), self.num_well_eq, self.num_well_eq)
        self._B = _assemble_blocks(self.b_blocks, (nw, nr), self.num_well_eq, self.num_eq)
        self._C = _assemble_blocks(self.c_blocks, (nr, nw), self.num_eq, self.num_well_eq)
        self._D = D.tocsc()

        if not np.all(np.isfinite(self._D.data)):
            logger.error("Well block D contains non-finite entries")
            raise SingularLocalSystemError("Well block D contains non-finite entries")
        try:
            self._lu = splu(self._D)
        except RuntimeError as exc:
            logger.error(f"Factorization of the well block D failed: {exc}")
            raise SingularLocalSystemError(f"Well block D is singular: {exc}") from exc

    def _factor(self):
        if self._lu is None:
            self.finalize()
        return self._lu

    @property
    def D(self) -> csc_matrix:
        self._factor()
        return self._D

    @property
    def B(self) -> csr_matrix:
        self._factor()
        return self._B

    @property
    def C(self) -> csr_matrix:
        self._factor()
        return self._C

    def solve(self, rhs: FloatArray) -> FloatArray:
        """Solve `D y = rhs` for a flat vector of well unknowns."""
        y = self._factor().solve(np.asarray(rhs, dtype=np.float64).ravel())
        if not np.all(np.isfinite(y)):
            logger.error("Solving the well block D produced non-finite values")
            raise SingularLocalSystemError("Well block D is numerically singular")
        return y

    def solve_local(self) -> FloatArray:
        """Newton increment of the well unknowns with reservoir unknowns held fixed, `D⁻¹ r_w`."""
        return self.solve(self.residual).reshape(self.num_segments, self.num_well_eq)

    def _check_reservoir_vector(self, x: FloatArray, name: str) -> FloatArray:
        x = np.asarray(x)
        if x.shape != (self.num_reservoir_unknowns,):
            raise ValidationError(
                f"{name} must have shape ({self.num_reservoir_unknowns},), got {x.shape}"
            )
        return x

    def apply(self, x: FloatArray, Ax: FloatArray) -> None:
        """
        Subtract the well's Schur complement contribution `C D⁻¹ B x` from `Ax` (in-place).

        :param x: Reservoir vector.
        :param Ax: Accumulator of the global matrix-vector product.
        """
        x = self._check_reservoir_vector(x, "x")
        Ax = self._check_reservoir_vector(Ax, "Ax")
        Bx = self.B @ x
        Ax -= self.C @ self.solve(Bx)

    def apply_residual(self, r: FloatArray) -> None:
        """Subtract `C D⁻¹ r_w` from the global residual `r` (in-place)."""
        r = self._check_reservoir_vector(r, "r")
        r -= self.C @ self.solve(self.residual)

    def recover_solution(self, x: FloatArray) -> FloatArray:
        """
        Well increment `xw = D⁻¹ (r_w - B x)` for a reservoir increment `x`.

        :return: Increments of shape `(num_segments, num_well_eq)`.
        """
        x = self._check_reservoir_vector(x, "x")
        rhs = self.residual.ravel() - self.B @ x
        return self.solve(rhs).reshape(self.num_segments, self.num_well_eq)

    def add_reservoir_contributions(
        self, residual: FloatArray, jacobian: typing.Optional[typing.Any] = None
    ) -> None:
        """
        Add the perforation terms of the reservoir equations to global buffers (in-place).

        :param residual: Global reservoir residual.
        :param jacobian: Global reservoir matrix supporting 2D item assignment
            (dense array or `lil_matrix`), or None.
        """
        residual = self._check_reservoir_vector(residual, "residual")
        n = self.num_eq
        for cell, values in self.reservoir_residual.items():
            residual[cell * n : (cell + 1) * n] += values
        if jacobian is None:
            return
        for cell, block in self.reservoir_jacobian.items():
            start = cell * n
            jacobian[start : start + n, start : start + n] += block
