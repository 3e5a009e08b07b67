"""
Multisegment well model.

Assembles the mass-balance, pressure-drop and control equations of a well
whose wellbore is discretized into a tree of segments, converges them with
a local Newton iteration, and couples them to the reservoir system through
Schur complement elimination.
"""

import enum
import logging
import typing

import attrs
import numpy as np

from mswell._precision import get_dtype
from mswell.config import Config
from mswell.constants import c
from mswell.errors import ValidationError
from mswell.pvt.core import PropertyOracle
from mswell.rates import SurfaceToReservoirVoidage
from mswell.reservoir import (
    CellQuantities,
    CoreyRelativePermeability,
    ReservoirState,
    compute_cell_quantities,
    num_reservoir_unknowns,
)
from mswell.types import FluidPhase, PhaseUsage, WellRole
from mswell.wells.controls import (
    BHPControl,
    ReservoirVoidageControl,
    WellControl,
    _default_distribution,
)
from mswell.wells.equations import WellEquations
from mswell.wells.fluids import FluidStateEvaluator, SegmentFluidProperties
from mswell.wells.hydraulics import (
    frictional_pressure_loss,
    hydrostatic_pressure_loss,
    velocity_head,
)
from mswell.wells.segments import SegmentNetwork
from mswell.wells.state import WellState
from mswell.wells.variables import PrimaryVariableLayout, PrimaryVariables

logger = logging.getLogger(__name__)

__all__ = [
    "InnerIterationStatus",
    "ConvergenceReport",
    "InnerIterationResult",
    "MultisegmentWell",
]


class InnerIterationStatus(enum.Enum):
    ASSEMBLING = "assembling"
    CONVERGED = "converged"
    MAX_ITERATIONS_EXCEEDED = "max_iterations_exceeded"


@attrs.frozen
class ConvergenceReport:
    """Convergence of the well equations after an assembly."""

    flux_residuals: typing.Tuple[float, ...]
    """Largest scaled mass-balance residual per component."""
    pressure_residual: float
    """Largest pressure-drop equation residual (Pa)."""
    control_residual: float
    """Absolute control equation residual."""
    nan_residual: bool = False
    """Whether any residual is NaN or infinite."""
    too_large_residual: bool = False
    """Whether a scaled mass-balance residual exceeds the allowed maximum."""
    converged: bool = False

    @property
    def max_flux_residual(self) -> float:
        return max(self.flux_residuals) if self.flux_residuals else 0.0

    @property
    def diverged(self) -> bool:
        return self.nan_residual or self.too_large_residual


@attrs.frozen
class InnerIterationResult:
    status: InnerIterationStatus
    iterations: int
    """Number of Newton updates performed."""
    report: typing.Optional[ConvergenceReport] = None
    """Convergence report of the last assembly."""

    @property
    def converged(self) -> bool:
        return self.status is InnerIterationStatus.CONVERGED


class MultisegmentWell:
    """
    A well discretized into a tree of segments.

    Each segment carries the primary variables total rate, water and gas
    fractions and pressure, and the equations

    - one mass balance per component,
      `acc - Q_seg + sum(Q_inlets) + sum(q_perforations) = 0`,
    - a pressure-drop relation to its outlet, replaced for the top segment by
      the control equation.

    Rates are positive for injection. The model owns its local linear
    system and scratch state, so one instance must not be assembled from
    several threads at once. Different wells are independent.
    """

    def __init__(
        self,
        name: str,
        network: SegmentNetwork,
        phase_usage: PhaseUsage,
        oracle: PropertyOracle,
        control: WellControl,
        role: WellRole,
        num_cells: int,
        config: typing.Optional[Config] = None,
        relative_permeability: typing.Optional[CoreyRelativePermeability] = None,
        injected_phase: typing.Optional[FluidPhase] = None,
        allow_crossflow: bool = True,
        efficiency_factor: float = 1.0,
        rate_converter: typing.Optional[SurfaceToReservoirVoidage] = None,
        region: int = 0,
        well_state: typing.Optional[WellState] = None,
    ) -> None:
        """
        :param name: Well name.
        :param network: Segment network.
        :param phase_usage: Active phases.
        :param oracle: Property oracle shared with the reservoir model.
        :param control: Operating control. The top segment's pressure equation
            is replaced by its equation.
        :param role: Injector or producer.
        :param num_cells: Number of cells in the reservoir system.
        :param config: Well model parameters.
        :param relative_permeability: Relative permeability model of the perforated cells.
        :param injected_phase: Injected phase, required for injectors.
        :param allow_crossflow: Whether perforations may flow against the well's role.
        :param efficiency_factor: Factor applied to the rates seen by the reservoir.
        :param rate_converter: Surface to reservoir voidage converter, required
            for reservoir voidage control.
        :param region: Fluid-in-place region used by the rate converter.
        :param well_state: Initial well state. Defaults to zero rates at the
            control pressure (or standard pressure).
        """
        if role is WellRole.INJECTOR and (
            injected_phase is None or phase_usage.position(injected_phase) < 0
        ):
            raise ValidationError(f"Injector {name!r} needs an active injected phase")
        if efficiency_factor < 0.0:
            raise ValidationError("Efficiency factor must be non-negative")
        for perforation in network.perforations:
            if perforation.cell >= num_cells:
                raise ValidationError(
                    f"Well {name!r} perforates cell {perforation.cell}, "
                    f"but the reservoir has {num_cells} cells"
                )
        if isinstance(control, ReservoirVoidageControl) and rate_converter is None:
            raise ValidationError(
                f"Well {name!r} uses reservoir voidage control but has no rate converter"
            )

        self.name = name
        self.network = network
        self.phase_usage = phase_usage
        self.oracle = oracle
        self.control = control
        self.role = role
        self.num_cells = num_cells
        self.config = config or Config()
        self.relative_permeability = relative_permeability or CoreyRelativePermeability()
        self.injected_phase = injected_phase
        self.allow_crossflow = allow_crossflow
        self.efficiency_factor = float(efficiency_factor)
        self.rate_converter = rate_converter
        self.region = region

        num_eq = num_reservoir_unknowns(phase_usage)
        self.layout = PrimaryVariableLayout.from_config(phase_usage, num_eq, self.config)
        self.variables = PrimaryVariables(self.layout, network.num_segments)
        self.equations = WellEquations(
            network.num_segments, self.layout.num_well_eq, num_eq, num_cells
        )
        self.evaluator = FluidStateEvaluator(
            self.layout, network, oracle, self.config.gravity
        )

        if well_state is None:
            bhp = (
                control.bottom_hole_pressure
                if isinstance(control, BHPControl)
                else c.STANDARD_PRESSURE
            )
            # A zero total rate leaves the fractions undetermined when more than
            # one phase is active, so start from a small rate in the flow direction
            rates = (
                role.sign
                * c.INITIAL_WELL_RATE
                * _default_distribution(phase_usage, role, injected_phase)
            )
            well_state = WellState.initial(
                network, phase_usage.num_phases, bhp, well_rates=rates
            )
        self.well_state = well_state

        # Scratch state of the current outer iteration
        self._cells: typing.List[CellQuantities] = []
        self._cell_perforation_pressure_differences: typing.List[float] = []
        self._segment_properties: typing.List[SegmentFluidProperties] = []
        self._perforation_rates = np.zeros(
            (network.num_perforations, phase_usage.num_phases), dtype=get_dtype()
        )
        self._crossflow_suppressed = 0
        self._initial_composition: typing.Optional[np.ndarray] = None

        self.update_primary_variables(self.well_state)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, role={self.role.value}, "
            f"segments={self.network.num_segments}, perforations={self.network.num_perforations}, "
            f"control={self.control})"
        )

    @property
    def num_segments(self) -> int:
        return self.network.num_segments

    @property
    def temperature(self) -> float:
        """Well fluid temperature, taken from the first perforated cell."""
        if self._cells:
            return self._cells[0].temperature
        return c.STANDARD_TEMPERATURE

    def calculate_explicit_quantities(self, reservoir: ReservoirState) -> None:
        """
        Evaluate the perforated cells and the frozen cell to perforation pressure differences.

        Called once per outer iteration; the results stay fixed through the
        inner iterations.
        """
        if reservoir.num_cells != self.num_cells:
            raise ValidationError(
                f"Reservoir state has {reservoir.num_cells} cells, well {self.name!r} expects {self.num_cells}"
            )
        self._cells = [
            compute_cell_quantities(
                perforation.cell,
                reservoir,
                self.oracle,
                self.relative_permeability,
                self.phase_usage,
                self.layout.size,
            )
            for perforation in self.network.perforations
        ]
        self._cell_perforation_pressure_differences = (
            self.evaluator.cell_perforation_pressure_differences(self._cells)
        )

    def begin_time_step(self, reservoir: ReservoirState) -> None:
        """
        Capture the segment fluid content at the start of a time step.

        Subsequent assemblies with a time step size include the accumulation
        term relative to this content.
        """
        self.calculate_explicit_quantities(reservoir)
        properties = self.evaluator.segment_properties(self.variables, self.temperature)
        initial = np.zeros((self.num_segments, self.phase_usage.num_phases), dtype=np.float64)
        for seg, props in enumerate(properties):
            volume = self.network.segment(seg).volume
            for comp in range(self.phase_usage.num_phases):
                initial[seg, comp] = (
                    volume / props.volume_ratio.value * props.surface_fractions[comp].value
                )
        self._initial_composition = initial

    def voidage_coefficients(self) -> typing.Optional[np.ndarray]:
        """Surface to reservoir conversion coefficients for the current well rates."""
        if self.rate_converter is None:
            return None
        rates = self.variables.segment_rates()[0]
        return self.rate_converter.calc_coefficients(rates, self.region)

    def _assemble_control_equation(self, coefficients: typing.Optional[np.ndarray]) -> None:
        control_equation = self.control.residual(self.variables, self.role, coefficients)
        spres = self.layout.spres
        self.equations.residual[0, spres] = control_equation.value
        self.equations.set_well_derivatives(0, spres, 0, control_equation)

    def _assemble_pressure_equation(self, seg: int) -> None:
        config = self.config
        equations = self.equations
        spres = self.layout.spres
        segment = self.network.segment(seg)
        props = self._segment_properties[seg]

        pressure_equation = self.variables.segment_pressure(seg) - hydrostatic_pressure_loss(
            props.density, self.network.depth_difference(seg), config.gravity
        )
        if config.include_friction:
            # Losses oppose the flow: production flows towards the outlet
            sign = 1.0 if props.mass_rate.value < 0.0 else -1.0
            pressure_equation = pressure_equation - sign * frictional_pressure_loss(
                segment.length,
                segment.diameter,
                segment.area,
                segment.roughness,
                props.density,
                props.mass_rate,
                props.viscosity,
            )
        equations.residual[seg, spres] = pressure_equation.value
        equations.add_well_derivatives(seg, spres, seg, pressure_equation)

        outlet_pressure = self.variables.segment_pressure(segment.outlet)
        equations.residual[seg, spres] -= outlet_pressure.value
        equations.add_well_derivatives(seg, spres, segment.outlet, outlet_pressure, scale=-1.0)

        if config.include_acceleration:
            self._assemble_acceleration_loss(seg)

    def _assemble_acceleration_loss(self, seg: int) -> None:
        equations = self.equations
        spres = self.layout.spres
        area = self.network.segment(seg).area
        props = self._segment_properties[seg]

        outlet_head = velocity_head(area, props.mass_rate, props.density)
        equations.residual[seg, spres] -= outlet_head.value
        equations.add_well_derivatives(seg, spres, seg, outlet_head, scale=-1.0)
        for inlet in self.network.inlets(seg):
            inlet_props = self._segment_properties[inlet]
            inlet_head = velocity_head(area, inlet_props.mass_rate, inlet_props.density)
            equations.residual[seg, spres] += inlet_head.value
            equations.add_well_derivatives(seg, spres, inlet, inlet_head)

    def _assemble_without_iteration(self, dt: typing.Optional[float]) -> None:
        if len(self._cells) != self.network.num_perforations:
            raise ValidationError(
                f"Well {self.name!r} has no reservoir quantities; call calculate_explicit_quantities() first"
            )
        pu = self.phase_usage
        network = self.network
        variables = self.variables
        equations = self.equations
        equations.clear()

        self._segment_properties = self.evaluator.segment_properties(variables, self.temperature)
        self._crossflow_suppressed = 0
        use_accumulation = dt is not None and self._initial_composition is not None
        if dt is not None and dt <= 0.0:
            raise ValidationError(f"Time step size must be positive, got {dt}")

        for seg in range(network.num_segments):
            segment = network.segment(seg)
            props = self._segment_properties[seg]

            if use_accumulation:
                surface_volume = segment.volume / props.volume_ratio
                for comp in range(pu.num_phases):
                    accumulation = (
                        surface_volume * props.surface_fractions[comp]
                        - self._initial_composition[seg, comp]
                    ) / dt
                    equations.residual[seg, comp] += accumulation.value
                    equations.add_well_derivatives(seg, comp, seg, accumulation)

            for comp, phase in enumerate(pu):
                segment_rate = variables.segment_rate(seg, phase)
                equations.residual[seg, comp] -= segment_rate.value
                equations.add_well_derivatives(seg, comp, seg, segment_rate, scale=-1.0)

                for inlet in segment.inlets:
                    inlet_rate = variables.segment_rate(inlet, phase)
                    equations.residual[seg, comp] += inlet_rate.value
                    equations.add_well_derivatives(seg, comp, inlet, inlet_rate)

            for perf in segment.perforations:
                cell = self._cells[perf]
                flow = self.evaluator.perforation_rates(
                    variables,
                    self._segment_properties,
                    perf,
                    cell,
                    self._cell_perforation_pressure_differences[perf],
                    self.role,
                    self.allow_crossflow,
                )
                if flow.crossflow_suppressed:
                    self._crossflow_suppressed += 1
                for comp, rate in enumerate(flow.rates):
                    self._perforation_rates[perf, comp] = rate.value
                    equations.residual[seg, comp] += rate.value
                    equations.add_well_derivatives(seg, comp, seg, rate)
                    equations.add_reservoir_derivatives(seg, comp, cell.cell, rate)
                    equations.add_perforation_coupling(
                        cell.cell, seg, comp, rate, self.efficiency_factor
                    )

            if seg == 0:
                coefficients = (
                    self.voidage_coefficients()
                    if isinstance(self.control, ReservoirVoidageControl)
                    else None
                )
                self._assemble_control_equation(coefficients)
            else:
                self._assemble_pressure_equation(seg)

    def get_well_convergence(
        self, average_formation_volume_factors: typing.Optional[typing.Sequence[float]] = None
    ) -> ConvergenceReport:
        """
        Check the residuals of the last assembly.

        Mass-balance residuals are scaled by the per-component average formation
        volume factor and compared with `tolerance_wells`. Pressure-drop and
        control residuals are compared with
        `tolerance_wells * pressure_tolerance_factor`.

        :param average_formation_volume_factors: Per-component scaling, defaults to ones.
        :return: The convergence report.
        """
        pu = self.phase_usage
        config = self.config
        if average_formation_volume_factors is None:
            b_avg = np.ones(pu.num_phases)
        else:
            b_avg = np.asarray(average_formation_volume_factors, dtype=np.float64)
            if b_avg.shape != (pu.num_phases,):
                raise ValidationError(
                    f"Expected {pu.num_phases} average formation volume factors, got shape {b_avg.shape}"
                )

        residual = self.equations.residual
        spres = self.layout.spres
        flux = np.abs(residual[:, : pu.num_phases]) * b_avg
        flux_residuals = tuple(float(value) for value in flux.max(axis=0))
        pressure_residual = (
            float(np.max(np.abs(residual[1:, spres]))) if self.num_segments > 1 else 0.0
        )
        control_residual = float(abs(residual[0, spres]))

        nan_residual = not bool(np.all(np.isfinite(residual)))
        too_large = any(value > config.max_residual_allowed for value in flux_residuals)
        pressure_tolerance = config.tolerance_wells * config.pressure_tolerance_factor
        converged = (
            not nan_residual
            and not too_large
            and all(value < config.tolerance_wells for value in flux_residuals)
            and pressure_residual < pressure_tolerance
            and control_residual < pressure_tolerance
        )
        return ConvergenceReport(
            flux_residuals=flux_residuals,
            pressure_residual=pressure_residual,
            control_residual=control_residual,
            nan_residual=nan_residual,
            too_large_residual=too_large,
            converged=converged,
        )

    def iterate_well_equations(
        self,
        dt: typing.Optional[float] = None,
        average_formation_volume_factors: typing.Optional[typing.Sequence[float]] = None,
    ) -> InnerIterationResult:
        """
        Converge the well equations with the reservoir unknowns held fixed.

        Each iteration assembles the well equations, checks convergence, and
        otherwise solves `D dx = r_w` and applies the limited update. Running
        out of iterations is reported in the result, not raised.

        :param dt: Time step size (s). None assembles the steady-state equations.
        :param average_formation_volume_factors: Per-component residual scaling.
        :return: The outcome of the inner iterations.
        """
        max_iterations = self.config.max_inner_iterations
        iterations = 0
        status = InnerIterationStatus.ASSEMBLING
        report = None
        while status is InnerIterationStatus.ASSEMBLING:
            self._assemble_without_iteration(dt)
            report = self.get_well_convergence(average_formation_volume_factors)
            logger.debug(
                f"Well {self.name!r} inner iteration {iterations}: "
                f"flux={report.max_flux_residual:.3e}, pressure={report.pressure_residual:.3e}, "
                f"control={report.control_residual:.3e}"
            )
            if report.converged:
                status = InnerIterationStatus.CONVERGED
                break
            if report.diverged or iterations >= max_iterations:
                status = InnerIterationStatus.MAX_ITERATIONS_EXCEEDED
                break
            self.variables.apply_update(self.equations.solve_local(), self.config)
            iterations += 1

        self.update_well_state_from_primary_variables()
        if status is InnerIterationStatus.CONVERGED:
            logger.info(f"Well {self.name!r} converged in {iterations} inner iterations")
        else:
            logger.warning(
                f"Well {self.name!r} did not converge in {iterations} inner iterations "
                f"(nan={report.nan_residual}, too large={report.too_large_residual})"
            )
        return InnerIterationResult(status=status, iterations=iterations, report=report)

    def assemble(
        self,
        reservoir: ReservoirState,
        dt: typing.Optional[float] = None,
        average_formation_volume_factors: typing.Optional[typing.Sequence[float]] = None,
    ) -> InnerIterationResult:
        """
        Assemble the well equations for the current outer iteration.

        Evaluates the perforated cells, optionally converges the well locally,
        and performs the final assembly whose blocks are used by `apply`,
        `apply_residual` and `recover_well_solution_and_update_well_state`.

        :param reservoir: Current reservoir state.
        :param dt: Time step size (s). None assembles the steady-state equations.
        :param average_formation_volume_factors: Per-component residual scaling.
        :return: The outcome of the inner iterations, or of the single assembly.
        """
        with self.config.constants():
            self.calculate_explicit_quantities(reservoir)
            if self.config.use_inner_iterations:
                result = self.iterate_well_equations(dt, average_formation_volume_factors)
            else:
                result = InnerIterationResult(
                    status=InnerIterationStatus.ASSEMBLING, iterations=0
                )
            self._assemble_without_iteration(dt)
            self.equations.finalize()
        self.well_state.perforation_rates = self._perforation_rates.copy()

        if self._crossflow_suppressed:
            logger.warning(
                f"Well {self.name!r}: flow against the {self.role.value} role was suppressed "
                f"in {self._crossflow_suppressed} perforation(s)"
            )
        if not self.config.use_inner_iterations:
            report = self.get_well_convergence(average_formation_volume_factors)
            status = (
                InnerIterationStatus.CONVERGED
                if report.converged
                else InnerIterationStatus.ASSEMBLING
            )
            result = InnerIterationResult(status=status, iterations=0, report=report)
        return result

    def solve_eq_and_update_well_state(self) -> np.ndarray:
        """Solve the well equations alone and apply the update. Returns the increment."""
        dx = self.equations.solve_local()
        self.variables.apply_update(dx, self.config)
        self.update_well_state_from_primary_variables()
        return dx

    def apply(self, x: np.ndarray, Ax: np.ndarray) -> None:
        """Subtract `C D⁻¹ B x` from the global matrix-vector product `Ax` (in-place)."""
        self.equations.apply(x, Ax)

    def apply_residual(self, r: np.ndarray) -> None:
        """Subtract `C D⁻¹ r_w` from the global residual `r` (in-place)."""
        self.equations.apply_residual(r)

    def recover_well_solution_and_update_well_state(self, x: np.ndarray) -> np.ndarray:
        """
        Recover the well increment from a reservoir increment and update the well.

        :param x: Reservoir increment from the global linear solve.
        :return: The well increment `D⁻¹ (r_w - B x)`, shape `(num_segments, num_well_eq)`.
        """
        xw = self.equations.recover_solution(x)
        self.variables.apply_update(xw, self.config)
        self.update_well_state_from_primary_variables()
        return xw

    def add_reservoir_contributions(
        self, residual: np.ndarray, jacobian: typing.Optional[typing.Any] = None
    ) -> None:
        """Add the perforation source terms to the global reservoir residual and diagonal."""
        self.equations.add_reservoir_contributions(residual, jacobian)

    def update_primary_variables(self, well_state: WellState) -> None:
        """Set the primary variables from segment rates and pressures of a well state."""
        self.variables.set_from_rates(
            well_state.segment_rates,
            well_state.segment_pressures,
            self.role,
            self.injected_phase,
        )

    def update_well_state_from_primary_variables(self) -> None:
        state = self.well_state
        segment_rates = self.variables.segment_rates()
        state.segment_rates = segment_rates
        state.segment_pressures = self.variables.segment_pressures()
        state.well_rates = segment_rates[0].copy()
        state.bhp = float(state.segment_pressures[0])
        state.perforation_rates = self._perforation_rates.copy()

    def update_well_state_with_target(self) -> None:
        """Move the well state onto the control target and reinitialize the primary variables."""
        coefficients = None
        if isinstance(self.control, ReservoirVoidageControl):
            coefficients = self.rate_converter.calc_coefficients(
                self.well_state.well_rates, self.region
            )
        self.control.update_well_state(
            self.well_state,
            self.network,
            self.phase_usage,
            self.role,
            self.injected_phase,
            coefficients,
        )
        self.update_primary_variables(self.well_state)

    def with_control(self, control: WellControl) -> "MultisegmentWell":
        """A copy of this well under another control, starting from a copy of its state."""
        return MultisegmentWell(
            name=self.name,
            network=self.network,
            phase_usage=self.phase_usage,
            oracle=self.oracle,
            control=control,
            role=self.role,
            num_cells=self.num_cells,
            config=self.config,
            relative_permeability=self.relative_permeability,
            injected_phase=self.injected_phase,
            allow_crossflow=self.allow_crossflow,
            efficiency_factor=self.efficiency_factor,
            rate_converter=self.rate_converter,
            region=self.region,
            well_state=self.well_state.copy(),
        )

    def compute_well_potentials(
        self, reservoir: ReservoirState, bhp: float
    ) -> np.ndarray:
        """
        Surface rates the well would deliver at a given bottom-hole pressure.

        :param reservoir: Current reservoir state.
        :param bhp: Bottom-hole pressure limit (Pa).
        :return: Potential surface rates per phase.
        """
        well = self.with_control(BHPControl(bhp))
        with self.config.constants():
            well.update_well_state_with_target()
            well.calculate_explicit_quantities(reservoir)
            result = well.iterate_well_equations()
        if not result.converged:
            logger.warning(
                f"Well potentials of {self.name!r} at BHP={bhp:.6g} Pa did not converge"
            )
        return well.well_state.well_rates.copy()
