"""
Pseudo-time-stepping fallback (backward Euler on the differential rows).

Each step stores x_prev, sets rdt = 1/dt and runs damped Newton on the transient residual
F(x) - rdt * mask * (x - x_prev) with the transient Jacobian age:
- success: dt *= growth when Newton needed no new Jacobian, then dt = min(dt, dt_max);
- failure: after more than two successive failures the mass fractions are clipped and
  renormalized (reset_bad_values) and the counter restarts; otherwise dt *= factor and the step
  fails once dt < dt_min;
- the total number of attempted steps per Sim1D solve is capped at max_steps.

Numerical failure is reported through TimeStepResult, never raised.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Optional

import numpy as np

from assembly.residual_global import GlobalResidual
from core.types import FloatArray, TimeStepConfig, TimeStepResult
from solvers.newton_damped import DampedNewton
from solvers.nonlinear_types import STATUS_CONVERGED_NO_JAC

logger = logging.getLogger(__name__)


class PseudoTimeStepper:
    def __init__(
        self,
        residual: GlobalResidual,
        newton: DampedNewton,
        cfg: Optional[TimeStepConfig] = None,
    ) -> None:
        self.residual = residual
        self.newton = newton
        self.cfg = cfg if cfg is not None else TimeStepConfig()
        self.total_steps = 0
        self.callback: Optional[Callable[[FloatArray], None]] = None

    def reset_count(self) -> None:
        self.total_steps = 0

    def _steady_log_norm(self, x: FloatArray) -> float:
        f, _ = self.residual.eval(x)
        fmax = float(np.max(np.abs(f))) if f.size else 0.0
        return math.log10(fmax) if fmax > 0.0 else -np.inf

    def advance(self, x0: FloatArray, dt: float, nsteps: int) -> TimeStepResult:
        cfg = self.cfg
        x = np.array(x0, dtype=np.float64, copy=True)
        n = 0
        failures = 0
        try:
            while n < nsteps:
                if self.total_steps >= cfg.max_steps:
                    return TimeStepResult(False, x, dt, n, f"max time steps ({cfg.max_steps}) exceeded")
                self.residual.init_time_integration(x)
                res = self.newton.solve(x, 1.0 / dt, jac_max_age=cfg.jac_max_age)
                self.total_steps += 1
                if res.success:
                    x = res.u
                    n += 1
                    failures = 0
                    logger.debug("time step %d: dt=%.3e newton_iters=%d", n, dt, res.diag.n_iter)
                    if self.callback is not None:
                        self.callback(x)
                    if res.status == STATUS_CONVERGED_NO_JAC:
                        dt *= cfg.growth
                    dt = min(dt, cfg.dt_max)
                    continue

                failures += 1
                if failures > 2:
                    logger.debug("time step: %d successive failures, resetting mass fractions", failures)
                    self.residual.reset_bad_values(x)
                    failures = 0
                else:
                    dt *= cfg.factor
                    logger.debug("time step failed (%s); trying dt=%.3e", res.diag.message, dt)
                    if dt < cfg.dt_min:
                        return TimeStepResult(False, x, dt, n, f"time step fell below dt_min={cfg.dt_min:g}")
        finally:
            self.residual.clear_time_integration()

        logger.info("Time stepping: %d steps, dt=%.3e, log10(ss residual)=%.3f", n, dt, self._steady_log_norm(x))
        return TimeStepResult(True, x, dt, n, None)
