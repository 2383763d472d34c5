from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from core.grid import relative_positions
from core.types import FloatArray

logger = logging.getLogger(__name__)


def _interp_linear(z_old: np.ndarray, v_old: np.ndarray, z_new: np.ndarray) -> np.ndarray:
    """Simple 1D linear interpolation of point values."""
    return np.interp(z_new, z_old, v_old)


def remap_points(z_old: FloatArray, x2d_old: FloatArray, z_new: FloatArray) -> FloatArray:
    """
    Reinterpolate a (points, components) block onto a new grid by relative position.

    Both grids are mapped onto [0, 1]; every component is interpolated linearly, so points
    shared by both grids keep their values exactly and new points get the linear interpolate
    of their neighbours.
    """
    z_old = np.asarray(z_old, dtype=np.float64)
    z_new = np.asarray(z_new, dtype=np.float64)
    x2d_old = np.asarray(x2d_old, dtype=np.float64)
    if x2d_old.ndim != 2 or x2d_old.shape[0] != z_old.size:
        raise ValueError(f"x2d_old shape {x2d_old.shape} does not match old grid size {z_old.size}")

    nc = x2d_old.shape[1]
    out = np.empty((z_new.size, nc), dtype=np.float64)
    if z_old.size == 1:
        out[:] = x2d_old[0]
        return out

    s_old = relative_positions(z_old)
    s_new = relative_positions(z_new)
    for n in range(nc):
        out[:, n] = _interp_linear(s_old, x2d_old[:, n], s_new)
    # pin exact copies where a new point coincides with an old one
    common, i_new, i_old = np.intersect1d(z_new, z_old, assume_unique=True, return_indices=True)
    if common.size:
        out[i_new] = x2d_old[i_old]
    return out


def profile_on_grid(z: FloatArray, pos: Sequence[float], values: Sequence[float]) -> FloatArray:
    """Evaluate a profile given at relative positions pos (0..1) on grid z."""
    pos = np.asarray(pos, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    if pos.shape != values.shape or pos.ndim != 1 or pos.size == 0:
        raise ValueError(f"profile positions {pos.shape} and values {values.shape} must be equal 1-D")
    if pos.size > 1 and np.any(np.diff(pos) < 0.0):
        raise ValueError("profile positions must be non-decreasing.")
    return _interp_linear(pos, values, relative_positions(z))
