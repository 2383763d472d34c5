"""
Damped, bound-constrained Newton iteration on the global residual.

Per iteration:
- nonphysical points are reset to the last valid state (InvalidStateError -> failure);
- the FD Jacobian is re-evaluated when older than jac_max_age or when forced, and LU-factored
  (J - rdt * diag(mask) for transient solves);
- undamped step s0 = -J^-1 f, measured in the weighted norm
  ||s|| = sqrt(mean((s / (rtol * mean|x_c| + atol))^2));
- fbound keeps x0 + fbound * s0 inside [lb, ub]; when fbound < fbound_min the step is projected
  onto the bounds instead and the residual rows of the projected unknowns stay penalized in the
  following iterations until an accepted step needs no projection;
- damping alpha = 1, 1/f, 1/f^2, ... (n_damp tries): x1 = clip(x0 + fbound * alpha * s0), s1 at x1
  with the same factors; accept when ||s1|| < 1e-5 or ||s1|| < ||s0||; converged when the accepted
  ||s1|| <= 1;
- no accepted damping: re-evaluate an old Jacobian (at most max_jac_reeval times) or fail.

Status 100 means converged without evaluating a new Jacobian in this solve.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import numpy as np

from assembly.build_fd_jacobian import build_fd_jacobian, transient_jacobian
from assembly.jacobian_pattern import JacobianPattern, build_jacobian_pattern
from assembly.residual_flow import InvalidStateError
from assembly.residual_global import GlobalResidual, apply_bound_penalty
from core.types import FloatArray, NewtonConfig
from solvers.linear_types import LinearSolveError
from solvers.nonlinear_types import (
    STATUS_CONVERGED,
    STATUS_CONVERGED_NO_JAC,
    STATUS_FAILED,
    STATUS_INVALID_STATE,
    STATUS_LINEAR_FAILURE,
    STATUS_MAX_ITER,
    NonlinearDiagnostics,
    NonlinearSolveResult,
)
from solvers.scipy_linear import LUFactorization

logger = logging.getLogger(__name__)

ACCEPT_NORM = 1.0e-5


def bound_fraction(x: FloatArray, s: FloatArray, lb: FloatArray, ub: FloatArray) -> float:
    """Largest fraction in [0, 1] of step s that keeps x + f*s inside [lb, ub]."""
    new = x + s
    fbound = 1.0
    hi = new > ub
    if np.any(hi):
        fbound = min(fbound, float(np.min((ub[hi] - x[hi]) / (new[hi] - x[hi]))))
    lo = new < lb
    if np.any(lo):
        fbound = min(fbound, float(np.min((x[lo] - lb[lo]) / (x[lo] - new[lo]))))
    return max(fbound, 0.0)


class DampedNewton:
    def __init__(self, residual: GlobalResidual, cfg: Optional[NewtonConfig] = None) -> None:
        self.residual = residual
        self.cfg = cfg if cfg is not None else NewtonConfig()
        self.n_jac_total = 0
        self.steady_jacobian = None
        self._lu: Optional[LUFactorization] = None
        self._lu_rdt = 0.0
        self._mask: Optional[FloatArray] = None
        self._pattern: Optional[JacobianPattern] = None
        self._pattern_size = -1
        self._jac_age = 0
        self._penalty_rows: Optional[np.ndarray] = None
        self._penalty_excess = 0.0
        self.reset_jacobian()

    def reset_jacobian(self) -> None:
        """Drop the stored factors (after a grid change or a solution reset)."""
        self._lu = None
        self.steady_jacobian = None
        self._mask = None
        self._jac_age = 10**9

    def _get_pattern(self) -> JacobianPattern:
        size = self.residual.size
        if self._pattern is None or self._pattern_size != size:
            self._pattern = build_jacobian_pattern(self.residual.layout)
            self._pattern_size = size
        return self._pattern

    # ------------------------------------------------------------------
    def _eval_residual(self, x: FloatArray, rdt: float) -> FloatArray:
        f, mask = self.residual.eval(x, rdt=rdt)
        self._mask = mask
        if self._penalty_rows is not None:
            apply_bound_penalty(f, self._penalty_excess, self.cfg.penalty_increment, self._penalty_rows)
        return f

    def eval_jacobian(self, x: FloatArray, rdt: float) -> None:
        J, _ = build_fd_jacobian(self.residual, x, pattern=self._get_pattern(), rtol=self.cfg.fd_rtol)
        _, mask = self.residual.eval(x, rdt=rdt)
        self.steady_jacobian = J
        self._mask = mask
        self._lu = LUFactorization(transient_jacobian(J, rdt, mask))
        self._lu_rdt = rdt
        self._jac_age = 0
        self.n_jac_total += 1

    def _refactor_transient(self, rdt: float) -> None:
        self._lu = LUFactorization(transient_jacobian(self.steady_jacobian, rdt, self._mask))
        self._lu_rdt = rdt

    def _step(self, x: FloatArray, rdt: float) -> FloatArray:
        f = self._eval_residual(x, rdt)
        return -self._lu.solve(f)

    def _damp_step(
        self, x0: FloatArray, s0: FloatArray, norm0: float, rdt: float, transient: bool,
        lb: FloatArray, ub: FloatArray,
    ) -> Tuple[int, FloatArray, float]:
        """0: accepted, 1: accepted and converged, -2: no damping accepted."""
        cfg = self.cfg
        fbound = bound_fraction(x0, s0, lb, ub)
        projected = fbound < cfg.fbound_min
        if projected:
            target = x0 + s0
            clipped = np.clip(target, lb, ub)
            rows = np.flatnonzero(clipped != target)
            self._penalty_rows = rows
            self._penalty_excess = float(np.sum(np.abs(target - clipped)))
            logger.debug("Newton: fbound=%.3e, projecting %d components (excess=%.3e)",
                         fbound, rows.size, self._penalty_excess)
            fbound = 1.0

        alpha = 1.0
        for m in range(cfg.n_damp):
            x1 = np.clip(x0 + fbound * alpha * s0, lb, ub)
            try:
                s1 = self._step(x1, rdt)
                norm1 = self.residual.weighted_norm(x1, s1, transient)
            except LinearSolveError:
                norm1 = np.inf
            logger.debug("Newton damp %d: alpha=%.4g fbound=%.4g |s0|=%.4e |s1|=%.4e", m, alpha, fbound, norm0, norm1)
            if norm1 < ACCEPT_NORM or norm1 < norm0:
                if not projected:
                    self._penalty_rows = None
                    self._penalty_excess = 0.0
                return (1 if norm1 <= 1.0 else 0), x1, norm1
            alpha /= cfg.damp_factor
        return -2, x0, norm0

    def solve(self, x0: FloatArray, rdt: float = 0.0, *, jac_max_age: Optional[int] = None) -> NonlinearSolveResult:
        cfg = self.cfg
        max_age = int(jac_max_age if jac_max_age is not None else cfg.jac_max_age)
        transient = rdt != 0.0
        x = np.array(x0, dtype=np.float64, copy=True)
        lb, ub = self.residual.bounds()
        x = np.clip(x, lb, ub)
        self._penalty_rows = None
        self._penalty_excess = 0.0

        history: List[float] = []
        n_jac = 0
        n_reeval = 0
        force_new = False
        status = STATUS_FAILED
        message = ""
        norm0 = np.inf

        n_iter = 0
        for it in range(1, cfg.max_iter + 1):
            n_iter = it
            try:
                n_fixed = self.residual.correct_invalid_values(x)
                if n_fixed:
                    logger.debug("Newton iter %d: corrected %d invalid points", it, n_fixed)
                if force_new or self._lu is None or self._jac_age > max_age:
                    self.eval_jacobian(x, rdt)
                    n_jac += 1
                    force_new = False
                elif self._lu_rdt != rdt:
                    self._refactor_transient(rdt)
                s0 = self._step(x, rdt)
            except InvalidStateError as exc:
                status, message = STATUS_INVALID_STATE, str(exc)
                break
            except LinearSolveError as exc:
                self.reset_jacobian()
                status, message = STATUS_LINEAR_FAILURE, str(exc)
                logger.warning("Newton: linear solve failed: %s", exc)
                break

            norm0 = self.residual.weighted_norm(x, s0, transient)
            m, x1, norm1 = self._damp_step(x, s0, norm0, rdt, transient, lb, ub)
            history.append(norm0)
            logger.debug("Newton iter %d: |s0|=%.4e jac_age=%d result=%d", it, norm0, self._jac_age, m)
            self._jac_age += 1

            if m >= 0:
                x = x1
                if m == 1:
                    history.append(norm1)
                    status = STATUS_CONVERGED_NO_JAC if n_jac == 0 else STATUS_CONVERGED
                    break
                continue

            if self._jac_age > 1 and n_reeval < cfg.max_jac_reeval:
                force_new = True
                n_reeval += 1
                continue
            status, message = STATUS_FAILED, "damping failed"
            break
        else:
            status, message = STATUS_MAX_ITER, f"no convergence in {cfg.max_iter} iterations"

        success = status > 0
        if success:
            self.residual.store_valid(x)
        diag = NonlinearDiagnostics(
            converged=success,
            method="damped_newton",
            n_iter=n_iter,
            n_jac=n_jac,
            step_norm=float(history[-1]) if history else float(norm0),
            history_step_norm=history,
            message=message or None,
            extra={"rdt": rdt},
        )
        return NonlinearSolveResult(u=x if success else np.array(x0, dtype=np.float64, copy=True), status=status, diag=diag)
