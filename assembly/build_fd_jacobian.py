"""
Finite-difference Jacobian of the global residual, one column per unknown.

Each column perturbs a single unknown by dx = x * rtol + sign(x) * sqrt(eps) and re-assembles
only the 3-point stencil around its point (GlobalResidual.eval_point); rows outside the banded
pattern are never read. The steady Jacobian is returned; the transient one is J - rdt * diag(mask).
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Optional, Tuple

import numpy as np
import scipy.sparse as sp

from assembly.jacobian_pattern import JacobianPattern, build_jacobian_pattern
from assembly.residual_global import GlobalResidual
from core.types import FloatArray

logger = logging.getLogger(__name__)

FD_ATOL = math.sqrt(np.finfo(float).eps)


def build_fd_jacobian(
    residual: GlobalResidual,
    x0: FloatArray,
    *,
    f0: Optional[FloatArray] = None,
    pattern: Optional[JacobianPattern] = None,
    rtol: float = 1.0e-5,
) -> Tuple[sp.csc_matrix, Dict[str, Any]]:
    """Steady FD Jacobian at x0; f0 must be the steady residual at x0 if given."""
    x = np.array(x0, dtype=np.float64, copy=True)
    layout = residual.layout
    if x.size != layout.size:
        raise ValueError(f"x0 size {x.size} does not match layout size {layout.size}")
    if pattern is None:
        pattern = build_jacobian_pattern(layout)
    if f0 is None:
        f0, _ = residual.eval(x)
    f0 = np.asarray(f0, dtype=np.float64)

    r = f0.copy()
    work_mask = np.zeros(layout.size)
    data = np.zeros(pattern.nnz, dtype=np.float64)
    indptr = pattern.indptr

    n_cols = 0
    for d, _flow in residual.flows():
        ds = layout.domain(d)
        nc = ds.n_components
        for j in range(ds.n_points):
            for n in range(nc):
                col = ds.start + j * nc + n
                xsave = x[col]
                x[col] = xsave + (xsave * rtol + math.copysign(FD_ATOL, xsave))
                dx = x[col] - xsave
                residual.eval_point(x, r, work_mask, d, j)
                rows = pattern.column_rows(col)
                data[indptr[col]:indptr[col + 1]] = (r[rows] - f0[rows]) / dx
                x[col] = xsave
                n_cols += 1

    # continuation row: x[-1] - chi
    c = layout.continuation_index
    data[indptr[c]] = 1.0

    # restore the cached properties to the unperturbed state
    residual.eval(x)

    J = sp.csc_matrix((data, pattern.indices, indptr), shape=pattern.shape)
    diag = {"n_cols": n_cols + 1, "nnz": pattern.nnz}
    logger.debug("FD Jacobian: size=%d nnz=%d", layout.size, pattern.nnz)
    return J, diag


def transient_jacobian(J: sp.csc_matrix, rdt: float, mask: FloatArray) -> sp.csc_matrix:
    if rdt == 0.0:
        return J
    return (J - rdt * sp.diags(np.asarray(mask, dtype=np.float64), format="csc")).tocsc()
