"""
SciPy sparse LU backend for the Newton corrections and the adjoint solve.

Design goals:
- Factor once per Jacobian evaluation, back-substitute for every damped trial step.
- Transposed solves reuse the same factors (adjoint systems).
- Singular or non-finite factorizations surface as LinearSolveError, never as a bare
  RuntimeError from SuperLU.
"""

from __future__ import annotations

import logging

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from solvers.linear_types import LinearSolveError

logger = logging.getLogger(__name__)


def _as_csc(A) -> sp.csc_matrix:
    """Ensure matrix is CSC sparse format."""
    if sp.issparse(A):
        return A.tocsc()
    if isinstance(A, np.ndarray):
        if A.ndim != 2:
            raise TypeError(f"Expected 2D array for A, got ndim={A.ndim}")
        return sp.csc_matrix(A)
    raise TypeError(f"Unsupported matrix type for A: {type(A)}")


class LUFactorization:
    """SuperLU factors of a square sparse matrix."""

    def __init__(self, A) -> None:
        A_csc = _as_csc(A)
        if A_csc.shape[0] != A_csc.shape[1]:
            raise ValueError(f"A must be square, got shape {A_csc.shape}")
        if not np.all(np.isfinite(A_csc.data)):
            raise LinearSolveError("matrix contains non-finite entries")
        self.shape = A_csc.shape
        self.matrix = A_csc
        try:
            self._lu = spla.splu(A_csc)
        except RuntimeError as exc:
            raise LinearSolveError(f"LU factorization failed: {exc}") from exc

    def _check_rhs(self, b) -> np.ndarray:
        b = np.asarray(b, dtype=np.float64)
        if b.shape != (self.shape[0],):
            raise ValueError(f"b shape {b.shape} does not match A dimension {self.shape[0]}")
        return b

    def solve(self, b) -> np.ndarray:
        x = self._lu.solve(self._check_rhs(b))
        if not np.all(np.isfinite(x)):
            raise LinearSolveError("LU solve produced non-finite values")
        return x

    def solve_transpose(self, b) -> np.ndarray:
        x = self._lu.solve(self._check_rhs(b), trans="T")
        if not np.all(np.isfinite(x)):
            raise LinearSolveError("transposed LU solve produced non-finite values")
        return x

