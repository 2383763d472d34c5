"""
Flow-grid construction and checks.

Builds the initial 1D axial point grid from GridConfig (uniform or tanh-stretched) and
provides the monotonicity / spacing helpers used by the assembler and the refiner.
"""

from __future__ import annotations

import logging
import numpy as np

from .types import FloatArray, GridConfig

logger = logging.getLogger(__name__)


def _build_segment_tanh(L: float, N: int, *, beta: float = 3.0, center_bias: float = 0.0) -> FloatArray:
    """
    Generate positive interval widths on [0, L] using a tanh mapping.

    center_bias > 0 -> cluster toward the right end; center_bias < 0 -> left end.
    Returns an array of length N whose sum is L.

    For large |beta| the tanh mapping saturates in float64; node positions are forced
    strictly increasing to avoid zero widths.
    """
    N = int(N)
    L = float(L)
    beta = float(beta)
    center_bias = float(center_bias)

    if N <= 0:
        return np.array([], dtype=np.float64)
    if not np.isfinite(L) or L <= 0.0:
        raise ValueError("Segment length L must be positive and finite.")
    if not np.isfinite(beta) or not np.isfinite(center_bias):
        raise ValueError("beta and center_bias must be finite.")

    if abs(beta) < 1.0e-14:
        return np.full(N, L / N, dtype=np.float64)

    s = np.linspace(-1.0, 1.0, N + 1, dtype=np.float64)
    y = np.tanh(beta * (s + center_bias)).astype(np.float64)
    for i in range(1, y.size):
        if not (y[i] > y[i - 1]):
            y[i] = np.nextafter(y[i - 1], np.inf)

    den = float(y[-1] - y[0])
    if (not np.isfinite(den)) or den <= 0.0:
        raise ValueError("tanh grid mapping is degenerate; try smaller |beta|.")

    xi = (y - y[0]) / den
    widths = np.diff(L * xi)
    if np.any(~np.isfinite(widths)) or np.any(widths <= 0.0):
        raise ValueError("tanh grid produced non-positive or non-finite widths.")

    widths *= L / float(np.sum(widths))
    return widths


def build_grid(cfg: GridConfig) -> FloatArray:
    """Point coordinates z[0..n-1] spanning [z0, z0 + length]."""
    n = int(cfg.n_points)
    if cfg.method == "uniform":
        z = np.linspace(cfg.z0, cfg.z0 + cfg.length, n, dtype=np.float64)
    else:
        widths = _build_segment_tanh(cfg.length, n - 1, beta=cfg.beta, center_bias=cfg.center_bias)
        z = cfg.z0 + np.concatenate(([0.0], np.cumsum(widths)))
        z[-1] = cfg.z0 + cfg.length
    validate_grid(z)
    logger.debug("build_grid: method=%s n=%d dz_min=%.3e dz_max=%.3e", cfg.method, n,
                 float(np.min(np.diff(z))), float(np.max(np.diff(z))))
    return z


def validate_grid(z: FloatArray, *, min_points: int = 1) -> FloatArray:
    """Require a finite, strictly increasing grid with at least min_points entries."""
    z = np.asarray(z, dtype=np.float64)
    if z.ndim != 1:
        raise ValueError(f"grid must be 1-D, got shape {z.shape}")
    if z.size < min_points:
        raise ValueError(f"grid needs at least {min_points} points, got {z.size}")
    if not np.all(np.isfinite(z)):
        raise ValueError("grid contains non-finite coordinates.")
    if z.size > 1 and np.any(np.diff(z) <= 0.0):
        bad = int(np.argmin(np.diff(z)))
        raise ValueError(f"grid must be strictly increasing (violated at interval {bad}).")
    return z


def grid_spacing(z: FloatArray) -> FloatArray:
    """dz[j] = z[j+1] - z[j], length n-1."""
    return np.diff(np.asarray(z, dtype=np.float64))


def relative_positions(z: FloatArray) -> FloatArray:
    """Map z to [0, 1] by position between the first and last point."""
    z = np.asarray(z, dtype=np.float64)
    if z.size == 1:
        return np.zeros(1, dtype=np.float64)
    return (z - z[0]) / (z[-1] - z[0])
