"""
Flow-type strategy table.

Each FlowVariant selects the three flavor-specific hooks of the flow assembler:
- continuity(flow, x, rsd, diag, j): continuity row at interior point j
- right_boundary(flow, x, rsd, diag): all gas rows at the last point
- type_tag: human-readable flow type
plus the flags that differ between variants (fixed mass flux, viscous momentum, spray rows,
bounds of the spread rate).

The hooks only read the flow through its public helpers (component indices, property cache,
forward/backward continuity, energy flags, fixed-point data).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Tuple

import numpy as np

from core.layout import BIG

ContinuityHook = Callable[..., None]
BoundaryHook = Callable[..., None]


@dataclass(frozen=True, slots=True)
class FlowVariant:
    name: str
    type_tag: str
    continuity: ContinuityHook
    right_boundary: BoundaryHook
    fixed_mdot: bool
    viscous: bool
    spray: bool
    v_bounds: Tuple[float, float]


def _stagnation_continuity(flow, x, rsd, diag, j: int) -> None:
    rsd[j, flow.iU] = flow.forward_continuity(x, j)
    diag[j, flow.iU] = 0


def _free_continuity(flow, x, rsd, diag, j: int) -> None:
    zj = flow.z[j]
    z_fixed = flow.z_fixed
    if not np.isfinite(z_fixed) or zj > z_fixed:
        rsd[j, flow.iU] = flow.backward_continuity(x, j)
    elif zj == z_fixed:
        if flow.do_energy[j]:
            rsd[j, flow.iU] = x[j, flow.iT] - flow.t_fixed
        else:
            rsd[j, flow.iU] = flow.rho_u(x, j) - flow.props.rho[0] * 0.3
    else:
        rsd[j, flow.iU] = flow.forward_continuity(x, j)
    diag[j, flow.iU] = 0


def _stagnation_right_boundary(flow, x, rsd, diag) -> None:
    j = flow.n_points - 1
    flow.right_boundary_common(x, rsd, diag)
    rsd[j, flow.iU] = flow.rho_u(x, j)
    if flow.do_energy[j]:
        rsd[j, flow.iT] = x[j, flow.iT]
    else:
        rsd[j, flow.iT] = x[j, flow.iT] - flow.T_fixed[j]


def _free_right_boundary(flow, x, rsd, diag) -> None:
    j = flow.n_points - 1
    flow.right_boundary_common(x, rsd, diag)
    rsd[j, flow.iU] = flow.rho_u(x, j) - flow.rho_u(x, j - 1)
    rsd[j, flow.iT] = x[j, flow.iT] - x[j - 1, flow.iT]


FLOW_VARIANTS: Dict[str, FlowVariant] = {
    "stagnation": FlowVariant(
        name="stagnation",
        type_tag="Axisymmetric Stagnation",
        continuity=_stagnation_continuity,
        right_boundary=_stagnation_right_boundary,
        fixed_mdot=True,
        viscous=True,
        spray=False,
        v_bounds=(-BIG, BIG),
    ),
    "free": FlowVariant(
        name="free",
        type_tag="Free Flame",
        continuity=_free_continuity,
        right_boundary=_free_right_boundary,
        fixed_mdot=False,
        viscous=False,
        spray=False,
        v_bounds=(-1.0e-5, 1.0e-5),
    ),
    "spray": FlowVariant(
        name="spray",
        type_tag="Axisymmetric Spray Stagnation",
        continuity=_stagnation_continuity,
        right_boundary=_stagnation_right_boundary,
        fixed_mdot=True,
        viscous=True,
        spray=True,
        v_bounds=(-BIG, BIG),
    ),
}


def get_flow_variant(flow_type: str) -> FlowVariant:
    try:
        return FLOW_VARIANTS[flow_type]
    except KeyError:
        raise ValueError(f"Unknown flow type {flow_type!r}; known: {sorted(FLOW_VARIANTS)}") from None
