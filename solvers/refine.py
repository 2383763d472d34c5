"""
Grid refinement policy for one flow domain.

analyze(z, x2d, active, z_fixed) decides, per interval, whether a midpoint is inserted and, per
point, whether it is kept:
- value criterion: |v_{j+1} - v_j| > slope * (vmax - vmin) + thresh for a component whose range
  exceeds min_range * max|v|;
- slope criterion: |s_{j+1} - s_j| > curve * (smax - smin) + thresh / dz_j on the interval slopes;
- grid ratio: neighbouring intervals may not differ by more than `ratio` (checked both ways);
- intervals narrower than 2 * grid_min are never split;
- endpoints and the free-flame fixed point are always kept; pruning (prune > 0) never removes two
  adjacent points in one pass.

Returns the number of intervals to split, or -2 when the domain already has max_points or the
requested insertions would take it past max_points (no points are added then).
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Set

import numpy as np

from core.types import FloatArray, RefineCriteria

logger = logging.getLogger(__name__)

MAX_POINTS_REACHED = -2


class Refiner:
    def __init__(self, criteria: RefineCriteria) -> None:
        self.criteria = criteria
        self.loc: Set[int] = set()
        self.keep: Dict[int, int] = {}
        self.triggers: Set[str] = set()
        self.n_points = 0

    def analyze(
        self,
        z: FloatArray,
        x2d: FloatArray,
        active: Sequence[bool],
        names: Sequence[str],
        *,
        z_fixed: float = np.nan,
    ) -> int:
        crit = self.criteria
        z = np.asarray(z, dtype=np.float64)
        n = z.size
        self.n_points = n
        self.loc = set()
        self.keep = {}
        self.triggers = set()
        if n >= crit.max_points:
            return MAX_POINTS_REACHED
        if n < 3:
            return 0

        keep = self.keep
        keep[0] = 1
        keep[n - 1] = 1
        thresh = crit.threshold
        gmin2 = 2.0 * crit.grid_min
        dz = np.diff(z)

        for i, on in enumerate(active):
            if not on:
                continue
            v = x2d[:, i]
            s = np.diff(v) / dz
            vmin, vmax = float(np.min(v)), float(np.max(v))
            smin, smax = float(np.min(s)), float(np.max(s))
            aa = max(abs(vmax), abs(vmin))
            ss = max(abs(smax), abs(smin))

            if vmax - vmin > crit.min_range * aa:
                dmax = crit.slope * (vmax - vmin) + thresh
                for j in range(n - 1):
                    r = abs(v[j + 1] - v[j]) / dmax
                    if r > 1.0 and dz[j] >= gmin2:
                        self.loc.add(j)
                        self.triggers.add(names[i])
                    if r >= crit.prune:
                        keep[j] = 1
                        keep[j + 1] = 1
                    elif keep.get(j, 0) == 0:
                        keep[j] = -1

            if smax - smin > crit.min_range * ss:
                dmax = crit.curve * (smax - smin)
                for j in range(n - 2):
                    r = abs(s[j + 1] - s[j]) / (dmax + thresh / dz[j])
                    if r > 1.0 and dz[j] >= gmin2 and dz[j + 1] >= gmin2:
                        self.triggers.add(names[i])
                        self.loc.add(j)
                        self.loc.add(j + 1)
                    if r >= crit.prune:
                        keep[j + 1] = 1
                    elif keep.get(j + 1, 0) == 0:
                        keep[j + 1] = -1

        for j in range(1, n - 1):
            if dz[j] > crit.ratio * dz[j - 1]:
                self.loc.add(j)
                self.triggers.add(f"point {j}")
                for k in (j - 1, j, j + 1, j + 2):
                    keep[k] = 1
            if dz[j] < dz[j - 1] / crit.ratio:
                self.loc.add(j - 1)
                self.triggers.add(f"point {j}")
                for k in (j - 2, j - 1, j, j + 1):
                    keep[k] = 1
            if j > 1 and z[j + 1] - z[j - 1] > crit.ratio * dz[j - 2]:
                keep[j] = 1
            if j < n - 2 and z[j + 1] - z[j - 1] > crit.ratio * dz[j + 1]:
                keep[j] = 1
            if z[j] == z_fixed:
                keep[j] = 1

        for j in range(2, n - 1):
            if keep.get(j, 0) == -1 and keep.get(j - 1, 0) == -1:
                keep[j] = 1

        n_removed = sum(1 for v in keep.values() if v == -1)
        if self.loc and n + len(self.loc) - n_removed > crit.max_points:
            logger.warning(
                "Refine: %d new points would exceed max_points=%d (grid has %d)", len(self.loc), crit.max_points, n
            )
            self.loc = set()
            return MAX_POINTS_REACHED
        return len(self.loc)

    def keep_point(self, j: int) -> bool:
        return self.keep.get(j, 0) != -1

    def new_point_needed(self, j: int) -> bool:
        return j in self.loc

    def new_grid(self, z: FloatArray) -> FloatArray:
        """Kept points plus the midpoint of every flagged interval."""
        out: List[float] = []
        n = z.size
        for j in range(n):
            if not self.keep_point(j):
                logger.debug("refine: discarding point %d (z=%.6g)", j, z[j])
                continue
            out.append(float(z[j]))
            if self.new_point_needed(j) and j + 1 < n:
                out.append(0.5 * (z[j] + z[j + 1]))
        return np.asarray(out, dtype=np.float64)
