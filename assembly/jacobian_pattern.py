"""
Banded sparsity pattern of the global Jacobian.

A component at point j of a flow domain enters the rows of points j-1..j+1 of the same domain
(all components). The continuation scalar only enters its own row. The pattern is stored
column-compressed so the FD Jacobian can fill one column per perturbation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np

from core.layout import SolutionLayout


@dataclass(slots=True)
class JacobianPattern:
    """CSC pattern for the global Jacobian."""

    indptr: np.ndarray
    indices: np.ndarray
    shape: Tuple[int, int]
    meta: Dict[str, float]

    def column_rows(self, col: int) -> np.ndarray:
        return self.indices[self.indptr[col]:self.indptr[col + 1]]

    @property
    def nnz(self) -> int:
        return int(self.indices.size)


def build_jacobian_pattern(layout: SolutionLayout) -> JacobianPattern:
    N = layout.size
    indptr = np.zeros(N + 1, dtype=np.int64)
    chunks = []

    for ds in layout.domains:
        nc = ds.n_components
        if nc == 0:
            continue
        for j in range(ds.n_points):
            jmin = max(j - 1, 0)
            jmax = min(j + 1, ds.n_points - 1)
            rows = np.arange(ds.start + jmin * nc, ds.start + (jmax + 1) * nc, dtype=np.int64)
            for n in range(nc):
                col = ds.start + j * nc + n
                indptr[col + 1] = rows.size
                chunks.append(rows)

    col = layout.continuation_index
    indptr[col + 1] = 1
    chunks.append(np.array([col], dtype=np.int64))

    indptr = np.cumsum(indptr)
    indices = np.concatenate(chunks) if chunks else np.zeros(0, dtype=np.int64)
    meta = {
        "nnz": float(indices.size),
        "density": float(indices.size) / float(N * N),
    }
    return JacobianPattern(indptr=indptr, indices=indices, shape=(N, N), meta=meta)
