"""
Initial guesses for a flow domain between its two boundaries.

Profiles are blended between the left and right inlet states with a weight w(s) on the relative
position s in [0, 1]:
- "linear": w = 1 - s
- "erfc":   w = erfc((s - 0.5) / width) / 2 (mixing-layer shape centered in the domain)

Velocity is linear between the inlet speeds (right inlet flows toward -z). With two inlets the
spread rate is the potential-flow value (u_L - u_R) / (2 L) and lambda = -rho V^2; free flames
get V = lambda = 0. Droplet components start from the spray inlet state.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
from scipy import special

from core.grid import relative_positions
from core.types import FloatArray
from physics.boundaries import Inlet, SprayInlet


def _blend_weight(s: FloatArray, profile: str, width: float) -> FloatArray:
    if profile == "linear":
        return 1.0 - s
    if profile == "erfc":
        if width <= 0.0:
            raise ValueError(f"erfc profile width must be positive, got {width}")
        return 0.5 * special.erfc((s - 0.5) / width)
    raise ValueError(f"unknown initial profile {profile!r}; expected 'linear' or 'erfc'")


def build_initial_guess(
    flow,
    left,
    right,
    *,
    temperature: Optional[float] = None,
    profile: str = "linear",
    width: float = 0.2,
) -> FloatArray:
    """Return an (n_points, n_components) starting state for flow linked to left/right."""
    inlets = [b for b in (left, right) if isinstance(b, Inlet)]
    if not inlets:
        raise ValueError(f"flow '{flow.name}': an initial guess needs at least one inlet")
    in_left = left if isinstance(left, Inlet) else inlets[0]
    in_right = right if isinstance(right, Inlet) else inlets[0]

    z = flow.grid
    s = relative_positions(z)
    w = _blend_weight(s, profile, width)
    x2d = np.zeros((flow.n_points, flow.n_components), dtype=np.float64)

    Y = w[:, None] * in_left.Y[None, :] + (1.0 - w[:, None]) * in_right.Y[None, :]
    Y /= np.sum(Y, axis=1, keepdims=True)
    x2d[:, flow.iY] = Y
    if temperature is not None:
        x2d[:, flow.iT] = float(temperature)
    else:
        x2d[:, flow.iT] = w * in_left.temperature + (1.0 - w) * in_right.temperature

    u_left = in_left.mdot / in_left.density if isinstance(left, Inlet) else 0.0
    u_right = -in_right.mdot / in_right.density if isinstance(right, Inlet) else 0.0
    if not isinstance(right, Inlet):
        u_right = u_left
    if not isinstance(left, Inlet):
        u_left = u_right
    x2d[:, flow.iU] = u_left + (u_right - u_left) * s

    if flow.variant.fixed_mdot:
        if isinstance(left, Inlet) and isinstance(right, Inlet):
            V = np.full(flow.n_points, (u_left - u_right) / (2.0 * (z[-1] - z[0])))
        else:
            V = w * in_left.spread_rate + (1.0 - w) * in_right.spread_rate
        x2d[:, flow.iV] = V
        rho = np.array([flow.density_at(x2d[j, flow.iT], Y[j]) for j in range(flow.n_points)])
        x2d[:, flow.iL] = -float(np.mean(rho)) * V**2

    if flow.variant.spray:
        sprays = [b for b in (left, right) if isinstance(b, SprayInlet)]
        if sprays:
            drops = sprays[0].droplets
            x2d[:, flow.iUl] = drops["Ul"]
            x2d[:, flow.ivl] = drops["vl"]
            x2d[:, flow.iTl] = drops["Tl"]
            x2d[:, flow.iml] = drops["ml"]
            x2d[:, flow.inl] = drops["nl"]
        else:
            x2d[:, flow.iUl] = x2d[:, flow.iV]
            x2d[:, flow.ivl] = x2d[:, flow.iU]
            x2d[:, flow.iTl] = x2d[:, flow.iT]
    return x2d
