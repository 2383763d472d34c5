"""
Upwind convective derivatives on the axial point grid.

Convention:
- For a quantity q carried by velocity v at point j, the stencil is chosen by the sign of v_j:
    v_j > 0  -> (q[j]   - q[j-1]) / dz[j-1]
    v_j <= 0 -> (q[j+1] - q[j])   / dz[j]
- Gas quantities are carried by u; droplet quantities by the droplet axial velocity vl.
- q may be 1-D (points,) or 2-D (points, k); the result then has shape () or (k,).
"""

from __future__ import annotations

import numpy as np

from core.types import FloatArray


def upwind_index(velocity: float, j: int) -> int:
    """Right end of the one-sided stencil used at point j."""
    return j if velocity > 0.0 else j + 1


def upwind_gradient(q: FloatArray, velocity: float, dz: FloatArray, j: int):
    jloc = upwind_index(velocity, j)
    return (q[jloc] - q[jloc - 1]) / dz[jloc - 1]


def upwind_gradients(q: FloatArray, velocity: FloatArray, dz: FloatArray, j0: int, j1: int) -> FloatArray:
    """Vectorized upwind derivatives for interior points j0..j1 (inclusive)."""
    j = np.arange(j0, j1 + 1)
    jloc = np.where(np.asarray(velocity)[j] > 0.0, j, j + 1)
    num = q[jloc] - q[jloc - 1]
    den = dz[jloc - 1]
    if num.ndim == 2:
        den = den[:, None]
    return num / den
