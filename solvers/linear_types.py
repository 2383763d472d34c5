"""
Shared linear solver error type.
"""

from __future__ import annotations


class LinearSolveError(RuntimeError):
    """Factorization or back-substitution failed (e.g. singular Jacobian)."""
