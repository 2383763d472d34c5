"""
Component layout and global solution-vector layout.

Tests:
1. Flow components are ordered u, V, T, lambda, species, then droplet components
2. Aliases resolve; unknown names raise KeyError, bad indices raise IndexError
3. SolutionLayout offsets are domain -> point -> component with a trailing scalar
4. Bounds are tiled per point and the continuation scalar gets its own bounds
5. The Jacobian pattern is banded (3-point stencil) plus the continuation diagonal
"""

from __future__ import annotations

from types import SimpleNamespace

import numpy as np
import pytest

from assembly.jacobian_pattern import build_jacobian_pattern
from core.layout import CONTINUATION_BOUNDS, SolutionLayout, build_bounds, build_flow_components


def _domains(*specs):
    return [SimpleNamespace(name=name, n_points=npts, n_components=nc) for name, npts, nc in specs]


# =============================================================================
# Component layout
# =============================================================================
def test_flow_component_order():
    comps = build_flow_components(["H2", "O2", "N2"])
    assert comps.names == ["velocity", "spread_rate", "T", "lambda", "H2", "O2", "N2"]

    spray = build_flow_components(["C2H5OH", "N2"], spray=True)
    assert spray.names[-5:] == ["Ul", "vl", "Tl", "ml", "nl"]
    assert spray.n_components == 4 + 2 + 5


def test_component_lookup_errors():
    comps = build_flow_components(["N2"])
    assert comps.component_index("u") == comps.component_index("velocity") == 0
    assert comps.component_index("L") == 3
    with pytest.raises(KeyError):
        comps.component_index("CH4")
    with pytest.raises(IndexError):
        comps.component_name(5)


def test_species_name_collision_rejected():
    with pytest.raises(ValueError):
        build_flow_components(["T", "N2"])


# =============================================================================
# Solution layout
# =============================================================================
def test_solution_layout_offsets():
    layout = SolutionLayout.build(_domains(("left", 1, 0), ("flow", 4, 5), ("right", 1, 0)))
    assert layout.size == 4 * 5 + 1
    assert layout.continuation_index == 20
    assert layout.index(1, 0, 0) == 0
    assert layout.index(1, 2, 3) == 3 * 5 + 2
    assert layout.locate(17) == (1, 3, 2)

    x = np.arange(layout.size, dtype=float)
    view = layout.view(x, 1)
    assert view.shape == (4, 5)
    view[2, 1] = -1.0
    assert x[2 * 5 + 1] == -1.0

    with pytest.raises(IndexError):
        layout.index(1, 5, 0)
    with pytest.raises(IndexError):
        layout.index(1, 0, 4)
    with pytest.raises(IndexError):
        layout.domain(3)


def test_bounds_tiled_per_point():
    comps = build_flow_components(["N2", "O2"])
    layout = SolutionLayout.build(_domains(("left", 1, 0), ("flow", 3, comps.n_components), ("right", 1, 0)))
    lb, ub = build_bounds([None, comps, None], layout)
    assert lb.size == layout.size
    T_idx = [layout.index(1, 2, j) for j in range(3)]
    assert np.all(lb[T_idx] == 200.0)
    Y_idx = [layout.index(1, 4, j) for j in range(3)]
    assert np.all(lb[Y_idx] == -1.0e-7)
    assert (lb[-1], ub[-1]) == CONTINUATION_BOUNDS


def test_set_bounds_and_tolerances_validate():
    comps = build_flow_components(["N2"])
    with pytest.raises(ValueError):
        comps.set_bounds("T", 500.0, 400.0)
    with pytest.raises(ValueError):
        comps.set_tolerances(-1.0, 1.0e-9)
    comps.set_tolerances(1.0e-6, 1.0e-12, transient=True, name="T")
    rtol, atol = comps.tolerances(transient=True)
    assert rtol[2] == 1.0e-6 and atol[2] == 1.0e-12
    assert rtol[0] == 1.0e-4


# =============================================================================
# Jacobian pattern
# =============================================================================
def test_jacobian_pattern_is_banded():
    nc = 3
    layout = SolutionLayout.build(_domains(("left", 1, 0), ("flow", 4, nc), ("right", 1, 0)))
    pattern = build_jacobian_pattern(layout)

    # interior point: rows of points j-1..j+1
    rows = pattern.column_rows(layout.index(1, 1, 2))
    assert rows.tolist() == list(range(1 * nc, 4 * nc))
    # edge point: rows of points 0..1
    rows = pattern.column_rows(layout.index(1, 0, 0))
    assert rows.tolist() == list(range(0, 2 * nc))
    # continuation column only touches its own row
    assert pattern.column_rows(layout.continuation_index).tolist() == [layout.continuation_index]
    assert pattern.nnz == nc * (2 * 2 * nc + 2 * 3 * nc) + 1
