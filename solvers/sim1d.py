"""
Sim1D: owns the state vector of a [boundary, flow, boundary] problem and drives it to a steady
solution.

solve(refine_grid) loop:
1) finalize the domains, apply any pending continuation rescale;
2) damped Newton on the steady residual;
   - failure -> pseudo-time steps (schedule entry per attempt, last entry repeats), checkpoint
     x_last_ts, retry Newton;
   - time stepping failure -> roll back to the pre-refinement steady state when a refinement
     preceded it (bounded by max_refine_failures), else report failure;
3) on convergence: store the steady Jacobian + LU (jacobian(), solve_adjoint()), checkpoint
   x_last_ss, refine; new points -> reset dt and go to 2.

Continuation: the trailing scalar chi rescales u and V of every flow and the inlet mass fluxes
when it moves by more than the amplification threshold (set_strain_rate).
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from assembly.build_fd_jacobian import build_fd_jacobian
from assembly.residual_global import ContinuationState, GlobalResidual, apply_bound_penalty
from core.remap import profile_on_grid, remap_points
from core.snapshot import build_mapping, load_snapshot, save_snapshot
from core.types import (
    FloatArray,
    RefineCriteria,
    SetupError,
    SolutionSnapshot,
    SolveResult,
    SolverConfig,
)
from physics.boundaries import Inlet
from physics.initial import build_initial_guess
from solvers.linear_types import LinearSolveError
from solvers.newton_damped import DampedNewton
from solvers.refine import MAX_POINTS_REACHED, Refiner
from solvers.scipy_linear import LUFactorization
from solvers.timestepper import PseudoTimeStepper

logger = logging.getLogger(__name__)

ComponentKey = Union[int, str]


class Sim1D:
    def __init__(self, domains: Sequence, cfg: Optional[SolverConfig] = None) -> None:
        self.cfg = cfg if cfg is not None else SolverConfig()
        self.domains = list(domains)
        for d, dom in enumerate(self.domains):
            if getattr(dom, "domain_type", None) != "flow":
                continue
            if d == 0 or d == len(self.domains) - 1:
                raise SetupError(f"flow '{dom.name}' needs a boundary on both sides")
            for side, nb in (("left", self.domains[d - 1]), ("right", self.domains[d + 1])):
                if getattr(nb, "domain_type", None) != "boundary":
                    raise SetupError(f"domain '{nb.name}' next to flow '{dom.name}' is not a boundary")
                nb.link(dom, side)
            dom.refine_criteria = dataclasses.replace(self.cfg.refine)

        cont = self.cfg.continuation
        self.continuation = ContinuationState(value=float(cont.parameter), threshold=float(cont.threshold))
        self.residual = GlobalResidual(self.domains, self.continuation)
        self.newton = DampedNewton(self.residual, self.cfg.newton)
        self.stepper = PseudoTimeStepper(self.residual, self.newton, self.cfg.timestep)

        self._x = np.zeros(self.residual.size)
        self.reset_initial_guess()
        self._x_work = self._x.copy()

        self._x_last_ts: Optional[FloatArray] = None
        self._last_ss: Optional[SolutionSnapshot] = None
        self._ss_jacobian = None
        self._ss_lu: Optional[LUFactorization] = None
        self._steady_callback: Optional[Callable[[FloatArray], None]] = None
        self.lower_bound, self.upper_bound = self.update_bounds()

    # ------------------------------------------------------------------
    # Domains, layout and values
    # ------------------------------------------------------------------
    @property
    def system_size(self) -> int:
        return self.residual.size

    @property
    def n_domains(self) -> int:
        return len(self.domains)

    def domain(self, d: int):
        if not (0 <= d < len(self.domains)):
            raise IndexError(f"domain index {d} out of range [0, {len(self.domains)})")
        return self.domains[d]

    def domain_index(self, name: str) -> int:
        for d, dom in enumerate(self.domains):
            if dom.name == name:
                return d
        raise KeyError(f"no domain named '{name}'")

    def _flow(self, d: int):
        dom = self.domain(d)
        if getattr(dom, "domain_type", None) != "flow":
            raise SetupError(f"domain '{dom.name}' is not a flow domain")
        return dom

    def _view(self, x: FloatArray, d: int) -> FloatArray:
        return self.residual.layout.view(x, d)

    def _component(self, d: int, comp: ComponentKey) -> int:
        flow = self._flow(d)
        if isinstance(comp, str):
            return flow.component_index(comp)
        flow.component_name(int(comp))
        return int(comp)

    @property
    def solution(self) -> FloatArray:
        return self._x.copy()

    def set_solution(self, x: Sequence[float]) -> None:
        x = np.asarray(x, dtype=np.float64)
        if x.shape != (self.system_size,):
            raise ValueError(f"solution shape {x.shape} does not match system size {self.system_size}")
        self._x = x.copy()

    def value(self, d: int, comp: ComponentKey, j: int) -> float:
        return float(self._x[self.residual.layout.index(d, self._component(d, comp), j)])

    def work_value(self, d: int, comp: ComponentKey, j: int) -> float:
        """Value in the last solver iterate (differs from value() after a failed solve)."""
        return float(self._x_work[self.residual.layout.index(d, self._component(d, comp), j)])

    def set_value(self, d: int, comp: ComponentKey, j: int, v: float) -> None:
        self._x[self.residual.layout.index(d, self._component(d, comp), j)] = float(v)

    def set_profile(self, d: int, comp: ComponentKey, pos: Sequence[float], values: Sequence[float]) -> None:
        n = self._component(d, comp)
        z = self._flow(d).grid
        self._view(self._x, d)[:, n] = profile_on_grid(z, pos, values)

    def set_flat_profile(self, d: int, comp: ComponentKey, v: float) -> None:
        n = self._component(d, comp)
        self._view(self._x, d)[:, n] = float(v)

    def set_initial_guess(self, component: str, locs: Sequence[float], values: Sequence[float]) -> None:
        """Profile at relative positions for every flow domain that has the component."""
        for d, flow in self.residual.flows():
            if flow.components.has_component(component):
                self.set_profile(d, component, locs, values)

    def reset_initial_guess(
        self, *, temperature: Optional[float] = None, profile: str = "linear", width: float = 0.2
    ) -> None:
        """Rebuild every flow block from its inlets (see physics.initial)."""
        for d, flow in self.residual.flows():
            self._view(self._x, d)[:] = build_initial_guess(
                flow, self.domains[d - 1], self.domains[d + 1],
                temperature=temperature, profile=profile, width=width,
            )
        self._x[-1] = self.continuation.value

    def set_tolerances(
        self, d: int, rtol: float, atol: float, *, transient: bool = False, component: Optional[str] = None
    ) -> None:
        self._flow(d).components.set_tolerances(rtol, atol, transient=transient, name=component)

    def update_bounds(self) -> Tuple[FloatArray, FloatArray]:
        self.lower_bound, self.upper_bound = self.residual.bounds()
        return self.lower_bound, self.upper_bound

    def show_solution(self) -> None:
        for d, dom in enumerate(self.domains):
            if getattr(dom, "domain_type", None) == "flow":
                dom.show_solution(self._view(self._x, d))
            else:
                logger.info("%s", dom.describe())
        logger.info("continuation parameter: %.6g", self._x[-1])

    # ------------------------------------------------------------------
    # Residual and Jacobian access
    # ------------------------------------------------------------------
    def eval(self, rdt: float = 0.0) -> FloatArray:
        if rdt != 0.0:
            self.residual.init_time_integration(self._x)
        try:
            f, _ = self.residual.eval(self._x, rdt=rdt)
        finally:
            if rdt != 0.0:
                self.residual.clear_time_integration()
        return f

    def get_residual(self, rdt: float = 0.0) -> FloatArray:
        return self.eval(rdt)

    def eval_ss_jacobian(self):
        """Fresh steady Jacobian at the current state; its LU is kept for solve_adjoint."""
        J, _ = build_fd_jacobian(self.residual, self._x, rtol=self.newton.cfg.fd_rtol)
        self._ss_jacobian = J
        try:
            self._ss_lu = LUFactorization(J)
        except LinearSolveError as exc:
            logger.warning("steady Jacobian is singular: %s", exc)
            self._ss_lu = None
        return J

    def jacobian(self, i: int, j: int) -> float:
        if self._ss_jacobian is None:
            self.eval_ss_jacobian()
        n = self.system_size
        if not (0 <= i < n and 0 <= j < n):
            raise IndexError(f"jacobian entry ({i}, {j}) out of range for size {n}")
        return float(self._ss_jacobian[i, j])

    def solve_adjoint(self, b: Sequence[float]) -> FloatArray:
        """Solve J^T lam = b with the stored steady factors."""
        if self._ss_jacobian is None:
            self.eval_ss_jacobian()
        if self._ss_lu is None:
            raise LinearSolveError("no factorization of the steady Jacobian is available")
        return self._ss_lu.solve_transpose(b)

    # ------------------------------------------------------------------
    # Time-stepping settings and callbacks
    # ------------------------------------------------------------------
    def set_time_step(self, dt: float, steps: Sequence[int]) -> None:
        ts = self.stepper.cfg
        self.stepper.cfg = dataclasses.replace(ts, dt0=float(dt), steps=tuple(steps))

    def set_min_time_step(self, dt_min: float) -> None:
        self.stepper.cfg = dataclasses.replace(self.stepper.cfg, dt_min=float(dt_min))

    def set_max_time_step(self, dt_max: float) -> None:
        self.stepper.cfg = dataclasses.replace(self.stepper.cfg, dt_max=float(dt_max))

    def set_time_step_factor(self, factor: float) -> None:
        self.stepper.cfg = dataclasses.replace(self.stepper.cfg, factor=float(factor))

    def set_max_time_step_count(self, n: int) -> None:
        if int(n) <= 0:
            raise ValueError("max time step count must be > 0.")
        self.stepper.cfg = dataclasses.replace(self.stepper.cfg, max_steps=int(n))

    def set_jacobian_age(self, ss_age: int, ts_age: Optional[int] = None) -> None:
        ts_age = ss_age if ts_age is None else ts_age
        self.newton.cfg = dataclasses.replace(self.newton.cfg, jac_max_age=int(ss_age))
        self.stepper.cfg = dataclasses.replace(self.stepper.cfg, jac_max_age=int(ts_age))

    def set_steady_callback(self, fn: Optional[Callable[[FloatArray], None]]) -> None:
        self._steady_callback = fn

    def set_time_step_callback(self, fn: Optional[Callable[[FloatArray], None]]) -> None:
        self.stepper.callback = fn

    # ------------------------------------------------------------------
    # Continuation
    # ------------------------------------------------------------------
    @property
    def continuation_parameter(self) -> float:
        return self.continuation.value

    def set_continuation_value(self, a: float) -> None:
        """Set chi (and the trailing unknown) without rescaling the solution."""
        if a < 0.0:
            raise ValueError("continuation parameter must be non-negative.")
        self.continuation.value = float(a)
        self._x[-1] = float(a)

    def set_amplify_threshold(self, threshold: float) -> None:
        if threshold < 0.0:
            raise ValueError("amplify threshold must be non-negative.")
        self.continuation.threshold = float(threshold)

    def inlets(self) -> List[Inlet]:
        return [dom for dom in self.domains if isinstance(dom, Inlet)]

    def set_inlet_reference(self, boundary: Union[int, Inlet], velocity: float, density: float) -> None:
        inlet = self.domain(boundary) if isinstance(boundary, int) else boundary
        if not isinstance(inlet, Inlet):
            raise SetupError(f"domain '{inlet.name}' is not an inlet")
        inlet.set_reference_flow(velocity, density)

    def _edge_inlet(self, index: int) -> Inlet:
        dom = self.domains[index]
        if not isinstance(dom, Inlet):
            raise SetupError(f"domain '{dom.name}' is not an inlet")
        return dom

    def set_fuel_velocity(self, u: float) -> None:
        inlet = self._edge_inlet(0)
        inlet.set_reference_flow(u, inlet.density)

    def set_oxidizer_velocity(self, u: float) -> None:
        inlet = self._edge_inlet(-1)
        inlet.set_reference_flow(u, inlet.density)

    def set_fuel_density(self, rho: float) -> None:
        inlet = self._edge_inlet(0)
        inlet.set_reference_flow(inlet.velocity, rho)

    def set_oxidizer_density(self, rho: float) -> None:
        inlet = self._edge_inlet(-1)
        inlet.set_reference_flow(inlet.velocity, rho)

    def set_strain_rate(self, x: FloatArray) -> None:
        """Rescale u, V and the inlet mass fluxes when x[-1] moved away from chi."""
        a1 = float(x[-1])
        chi = self.continuation.value
        if abs(chi - a1) > self.continuation.threshold and chi != 0.0:
            ratio = a1 / chi
            for d, flow in self.residual.flows():
                x2d = self._view(x, d)
                x2d[:, flow.iU] *= ratio
                x2d[:, flow.iV] *= ratio
            for inlet in self.inlets():
                inlet.velocity *= ratio
                inlet.set_mdot(inlet.density * inlet.velocity)
            logger.info("continuation: chi %.6g -> %.6g (ratio %.6g)", chi, a1, ratio)
        self.continuation.value = a1

    rescale_continuation = set_strain_rate

    def unbounded_residual(self, x: Sequence[float]) -> FloatArray:
        self.set_solution(x)
        self.set_strain_rate(self._x)
        f, _ = self.residual.eval(self._x)
        return f

    def bounded_residual(self, x: Sequence[float]) -> FloatArray:
        x = np.asarray(x, dtype=np.float64)
        lb, ub = self.update_bounds()
        xc = np.clip(x, lb, ub)
        excess = float(np.sum(np.abs(x - xc)))
        f = self.unbounded_residual(xc)
        return apply_bound_penalty(f, excess, self.newton.cfg.penalty_increment)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def _snapshot(self, x: Optional[FloatArray] = None) -> SolutionSnapshot:
        return SolutionSnapshot(
            x=np.array(self._x if x is None else x, dtype=np.float64, copy=True),
            grids=[np.array(dom.grid, dtype=np.float64, copy=True) for dom in self.domains],
            meta={"continuation": float(self.continuation.value)},
        )

    def _install_grids(self, grids: Sequence[FloatArray]) -> None:
        for d, flow in self.residual.flows():
            if grids[d].size != flow.n_points or np.any(grids[d] != flow.grid):
                flow.setup_grid(grids[d])
        self._after_grid_change()

    def _after_grid_change(self) -> None:
        self.residual.rebuild()
        self.newton.reset_jacobian()
        self._ss_jacobian = None
        self._ss_lu = None
        self.update_bounds()

    def restore_time_stepping_solution(self) -> None:
        if self._x_last_ts is None:
            raise RuntimeError("no time-stepping solution has been saved")
        if self._x_last_ts.size != self.system_size:
            raise RuntimeError("the saved time-stepping solution belongs to a different grid")
        self._x = self._x_last_ts.copy()

    def restore_steady_solution(self) -> None:
        if self._last_ss is None:
            raise RuntimeError("no steady solution has been saved")
        snap = self._last_ss.copy()
        self._install_grids(snap.grids)
        self._x = snap.x
        self.continuation.value = float(snap.meta.get("continuation", snap.x[-1]))
        self.residual.finalize(self._x)

    def _mapping(self) -> Dict:
        names = [dom.component_names() for dom in self.domains]
        types = [dom.domain_type for dom in self.domains]
        return build_mapping(self.residual.layout, names, types)

    def save(self, path: Union[str, Path], sol_id: str, desc: str = "") -> Path:
        return save_snapshot(path, sol_id, self._snapshot(), self._mapping(), desc=desc)

    def save_residual(self, path: Union[str, Path], sol_id: str, desc: str = "") -> Path:
        return save_snapshot(path, sol_id, self._snapshot(self.eval()), self._mapping(), desc=desc)

    def restore(self, path: Union[str, Path], sol_id: str) -> None:
        snap, mapping = load_snapshot(path, sol_id)
        doms = mapping["domains"]
        if len(doms) != len(self.domains):
            raise SetupError(f"solution '{sol_id}' has {len(doms)} domains, this problem has {len(self.domains)}")
        for entry, dom in zip(doms, self.domains):
            if list(entry["components"]) != list(dom.component_names()):
                raise SetupError(f"solution '{sol_id}': components of domain '{dom.name}' do not match")
        self._install_grids(snap.grids)
        if snap.x.size != self.system_size:
            raise SetupError(f"solution '{sol_id}' size {snap.x.size} != system size {self.system_size}")
        self._x = snap.x.copy()
        self.continuation.value = float(snap.meta.get("continuation", snap.x[-1]))
        self.residual.finalize(self._x)
        logger.info("Solution '%s' restored (%d unknowns)", sol_id, self.system_size)

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------
    def _flow_indices(self, dom: int) -> List[int]:
        if dom == -1:
            return [d for d, _ in self.residual.flows()]
        self._flow(dom)
        return [dom]

    def set_refine_criteria(
        self,
        dom: int = -1,
        ratio: float = 10.0,
        slope: float = 0.8,
        curve: float = 0.8,
        prune: float = 0.0,
    ) -> None:
        for d in self._flow_indices(dom):
            flow = self._flow(d)
            flow.refine_criteria = dataclasses.replace(
                flow.refine_criteria, ratio=ratio, slope=slope, curve=curve, prune=prune
            )

    def get_refine_criteria(self, dom: int) -> Tuple[float, float, float, float]:
        c = self._flow(dom).refine_criteria
        return c.ratio, c.slope, c.curve, c.prune

    def set_max_grid_points(self, dom: int, n: int) -> None:
        for d in self._flow_indices(dom):
            flow = self._flow(d)
            flow.refine_criteria = dataclasses.replace(flow.refine_criteria, max_points=int(n))

    def max_grid_points(self, dom: int) -> int:
        return int(self._flow(dom).refine_criteria.max_points)

    def set_grid_min(self, dom: int, gridmin: float) -> None:
        for d in self._flow_indices(dom):
            flow = self._flow(d)
            flow.refine_criteria = dataclasses.replace(flow.refine_criteria, grid_min=float(gridmin))

    def refine(self) -> int:
        """Refine every flow domain; returns the number of new points or -2 at max points."""
        self._last_ss = self._snapshot()
        new_blocks: Dict[int, Tuple[FloatArray, FloatArray]] = {}
        added = 0
        for d, flow in self.residual.flows():
            x2d = self._view(self._x, d)
            refiner = Refiner(flow.refine_criteria)
            n_new = refiner.analyze(
                flow.grid, x2d, flow.components.refine_active(), flow.component_names(), z_fixed=flow.z_fixed
            )
            if n_new == MAX_POINTS_REACHED:
                return MAX_POINTS_REACHED
            if n_new == 0:
                continue
            # pruning only happens alongside insertions
            z_new = refiner.new_grid(flow.grid)
            logger.info("Refine '%s': %d new points (%s)", flow.name, n_new, ", ".join(sorted(refiner.triggers)))
            new_blocks[d] = (z_new, remap_points(flow.grid, x2d, z_new))
            added += n_new
        if new_blocks:
            self._apply_blocks(new_blocks)
        return added

    def _apply_blocks(self, blocks: Dict[int, Tuple[FloatArray, FloatArray]]) -> None:
        old_layout = self.residual.layout
        old_x = self._x
        saved = {d: (blocks[d][1] if d in blocks else self._view(old_x, d).copy())
                 for d, _ in self.residual.flows()}
        for d, (z_new, _) in blocks.items():
            self._flow(d).setup_grid(z_new)
        self._after_grid_change()
        x = np.zeros(self.system_size)
        for d, block in saved.items():
            self._view(x, d)[:] = block
        x[-1] = old_x[old_layout.continuation_index]
        self._x = x
        self.residual.finalize(self._x)
        logger.info("Grid sizes: %s", [dom.n_points for dom in self.domains])

    # ------------------------------------------------------------------
    # Fixed temperature (free flames)
    # ------------------------------------------------------------------
    def set_fixed_temperature(self, t: float) -> int:
        """Anchor every free flame at temperature t, inserting a grid point when needed."""
        blocks: Dict[int, Tuple[FloatArray, FloatArray]] = {}
        n_added = 0
        for d, flow in self.residual.flows():
            if flow.variant.name != "free":
                continue
            x2d = self._view(self._x, d)
            z = flow.grid
            T = x2d[:, flow.iT]
            m_fixed = -1
            for m in range(flow.n_points - 1):
                t1, t2 = float(T[m]), float(T[m + 1])
                z1, z2 = float(z[m]), float(z[m + 1])
                thresh = min(1.0, 0.1 * (t2 - t1))
                if abs(t - t1) <= thresh:
                    z_fixed = z1
                elif abs(t2 - t) <= thresh:
                    z_fixed = z2
                elif t1 < t < t2:
                    m_fixed = m
                    z_fixed = (z1 - z2) / (t1 - t2) * (t - t2) + z2
                else:
                    continue
                flow.set_fixed_point(z_fixed, t)
                break
            if m_fixed >= 0:
                z1, z2 = z[m_fixed], z[m_fixed + 1]
                zf = flow.z_fixed
                x_mid = (x2d[m_fixed + 1] - x2d[m_fixed]) / (z2 - z1) * (zf - z2) + x2d[m_fixed + 1]
                z_new = np.insert(z, m_fixed + 1, zf)
                x_new = np.insert(x2d, m_fixed + 1, x_mid, axis=0)
                blocks[d] = (z_new, x_new)
                n_added += 1
        if blocks:
            self._apply_blocks(blocks)
        else:
            self.residual.finalize(self._x)
        return n_added

    @property
    def fixed_temperature(self) -> float:
        for _, flow in self.residual.flows():
            if flow.variant.name == "free":
                return float(flow.t_fixed)
        return float("nan")

    @property
    def fixed_temperature_location(self) -> float:
        for _, flow in self.residual.flows():
            if flow.variant.name == "free":
                return float(flow.z_fixed)
        return float("nan")

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------
    def _check_setup(self) -> None:
        for _, flow in self.residual.flows():
            if flow.variant.name == "free" and not np.isfinite(flow.z_fixed):
                raise SetupError(
                    f"free flame '{flow.name}' has no fixed temperature point; call set_fixed_temperature()"
                )

    def _store_steady_jacobian(self) -> None:
        try:
            self.eval_ss_jacobian()
        except LinearSolveError as exc:
            logger.warning("could not store steady Jacobian: %s", exc)

    def _last_valid_snapshot(self) -> SolutionSnapshot:
        if self._last_ss is not None:
            return self._last_ss.copy()
        if self._x_last_ts is not None and self._x_last_ts.size == self.system_size:
            return self._snapshot(self._x_last_ts)
        return self._snapshot()

    def solve(self, refine_grid: bool = True) -> SolveResult:
        self._check_setup()
        self.set_strain_rate(self._x)
        self.residual.finalize(self._x)
        self.stepper.reset_count()

        ts_cfg = self.stepper.cfg
        dt = ts_cfg.dt0
        dt_restart = ts_cfg.dt0
        soln_number = 0
        n_newton = 0
        n_ts = 0
        n_refine = 0
        refine_failures = 0
        just_refined = False
        history: List[str] = []

        new_points = 1
        while new_points > 0:
            while True:
                n_newton += 1
                logger.info("Attempt Newton solution of steady-state problem (%d unknowns)", self.system_size)
                res = self.newton.solve(self._x, 0.0)
                self._x_work = res.u.copy()
                if res.success:
                    self._x = res.u
                    logger.info("Newton steady-state solve succeeded (%d iterations)", res.diag.n_iter)
                    history.append(f"newton ok ({res.diag.n_iter} it)")
                    if self._steady_callback is not None:
                        self._steady_callback(self._x)
                    break

                logger.info("Newton steady-state solve failed (%s); taking time steps", res.diag.message)
                history.append(f"newton failed: {res.diag.message}")
                steps = self.stepper.cfg.steps
                nsteps = steps[min(soln_number, len(steps) - 1)]
                soln_number += 1
                tres = self.stepper.advance(self._x, dt, nsteps)
                n_ts += tres.n_steps
                self._x_work = tres.x.copy()
                if tres.success:
                    self._x = tres.x
                    dt = tres.dt
                    self._x_last_ts = self._x.copy()
                    history.append(f"time steps ok ({tres.n_steps}, dt={dt:.3e})")
                    continue

                history.append(f"time stepping failed: {tres.message}")
                if just_refined and refine_failures < self.cfg.max_refine_failures:
                    refine_failures += 1
                    logger.warning(
                        "Solve failed after refinement (%s); rolling back to the previous steady grid (%d/%d)",
                        tres.message, refine_failures, self.cfg.max_refine_failures,
                    )
                    self.restore_steady_solution()
                    dt_restart *= ts_cfg.factor
                    dt = dt_restart
                    just_refined = False
                    break

                if just_refined and self._last_ss is not None:
                    # leave the last steady grid and state installed
                    self.restore_steady_solution()
                else:
                    self._x = tres.x
                logger.info("Solve failed: %s", tres.message)
                return SolveResult(
                    success=False,
                    reason=tres.message or "time stepping failed",
                    n_newton_solves=n_newton,
                    n_timesteps=n_ts,
                    n_refine_passes=n_refine,
                    grid_sizes=tuple(dom.n_points for dom in self.domains),
                    snapshot=self._last_valid_snapshot(),
                    history=history,
                )

            self._store_steady_jacobian()
            if not refine_grid:
                self._last_ss = self._snapshot()
                break
            new_points = self.refine()
            if new_points == MAX_POINTS_REACHED:
                logger.warning("Maximum number of grid points reached; stopping refinement")
                new_points = 0
            if new_points > 0:
                n_refine += 1
                just_refined = True
                dt = dt_restart
                history.append(f"refined (+{new_points} points)")
            else:
                just_refined = False

        logger.info("Solve converged on grid sizes %s", [dom.n_points for dom in self.domains])
        return SolveResult(
            success=True,
            reason="converged",
            n_newton_solves=n_newton,
            n_timesteps=n_ts,
            n_refine_passes=n_refine,
            grid_sizes=tuple(dom.n_points for dom in self.domains),
            snapshot=self._snapshot(),
            history=history,
        )
