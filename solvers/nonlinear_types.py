"""
Shared nonlinear solver result types.

Goal:
- One result structure for steady and transient Newton solves.
- Keep the time stepper and Sim1D independent of Newton internals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

# status codes
STATUS_CONVERGED = 1
STATUS_CONVERGED_NO_JAC = 100
STATUS_FAILED = -1
STATUS_MAX_ITER = -2
STATUS_LINEAR_FAILURE = -3
STATUS_INVALID_STATE = -4


@dataclass(slots=True)
class NonlinearDiagnostics:
    converged: bool
    method: str
    n_iter: int
    n_jac: int
    step_norm: float
    history_step_norm: List[float] = field(default_factory=list)
    message: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class NonlinearSolveResult:
    u: np.ndarray
    status: int
    diag: NonlinearDiagnostics

    @property
    def success(self) -> bool:
        return self.status > 0
