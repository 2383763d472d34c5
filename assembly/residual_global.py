"""
Global residual F(x) over all domains plus the trailing continuation row.

Current status:
- Domains are ordered [boundary, flow, boundary, ...]; every flow must sit between the two
  boundaries linked to it, boundaries own no unknowns.
- eval(x) assembles every flow (all points) and lets each linked boundary edit the edge rows.
- eval_point(x, d, j) re-assembles only rows j-1..j+1 of flow d (the FD Jacobian stencil),
  reusing the excess-species choice of the last full evaluation.
- The continuation row is x[-1] - chi with an algebraic mask entry; the flows never read x[-1].
- Bound projection penalty: f += (f + sign(f) * increment) * excess on selected rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from core.layout import SolutionLayout, build_bounds
from core.types import FloatArray, SetupError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ContinuationState:
    """Current continuation parameter chi and the amplification threshold."""

    value: float = 0.0
    threshold: float = 0.0


def apply_bound_penalty(
    f: FloatArray,
    excess: float,
    increment: float,
    rows: Optional[np.ndarray] = None,
) -> FloatArray:
    """Add (f + sign(f) * increment) * excess to f (all rows, or the masked ones)."""
    if excess <= 0.0:
        return f
    sel = slice(None) if rows is None else rows
    fs = f[sel]
    f[sel] = fs + (fs + np.where(fs >= 0.0, increment, -increment)) * excess
    return f


class GlobalResidual:
    def __init__(self, domains: Sequence, continuation: ContinuationState) -> None:
        self.domains = list(domains)
        self.continuation = continuation
        self._flows: List[Tuple[int, object, object, object]] = []
        for d, dom in enumerate(self.domains):
            if getattr(dom, "domain_type", None) != "flow":
                continue
            if d == 0 or d == len(self.domains) - 1:
                raise SetupError(f"flow '{dom.name}' needs a boundary on both sides")
            left, right = self.domains[d - 1], self.domains[d + 1]
            if left.flow is not dom or right.flow is not dom:
                raise SetupError(f"flow '{dom.name}' is not linked to its adjacent boundaries")
            self._flows.append((d, dom, left, right))
        if not self._flows:
            raise SetupError("at least one flow domain is required")
        self.rebuild()

    def rebuild(self) -> None:
        """Recompute the domain-to-slice map after any grid change."""
        self.layout = SolutionLayout.build(self.domains)
        self._flow_index = {d: (flow, left, right) for d, flow, left, right in self._flows}
        logger.debug("layout rebuilt: size=%d grids=%s", self.layout.size,
                     [ds.n_points for ds in self.layout.domains])

    @property
    def size(self) -> int:
        return self.layout.size

    def flows(self):
        """(domain index, flow) pairs."""
        return [(d, flow) for d, flow, _, _ in self._flows]

    def component_layouts(self):
        return [getattr(dom, "components", None) for dom in self.domains]

    def bounds(self) -> Tuple[FloatArray, FloatArray]:
        return build_bounds(self.component_layouts(), self.layout)

    # ------------------------------------------------------------------
    # Residual evaluation
    # ------------------------------------------------------------------
    def _eval_flow(self, x, rsd, mask, d: int, rdt: float, j: Optional[int]) -> None:
        flow, left, right = self._flow_index[d]
        x2d = self.layout.view(x, d)
        r2d = self.layout.view(rsd, d)
        m2d = self.layout.view(mask, d)
        flow.eval(x2d, r2d, m2d, rdt, j)
        N = flow.n_points
        if j is None:
            jmin, jmax = 0, N - 1
        else:
            jmin, jmax = max(j - 1, 0), min(j + 1, N - 1)
        left.eval(x2d, r2d, m2d, jmin, jmax)
        right.eval(x2d, r2d, m2d, jmin, jmax)

    def eval(
        self,
        x: FloatArray,
        rsd: Optional[FloatArray] = None,
        mask: Optional[FloatArray] = None,
        rdt: float = 0.0,
    ) -> Tuple[FloatArray, FloatArray]:
        """Full residual and differential-row mask at x."""
        if rsd is None:
            rsd = np.zeros(self.size)
        if mask is None:
            mask = np.zeros(self.size)
        for d, _flow, _l, _r in self._flows:
            self._eval_flow(x, rsd, mask, d, rdt, None)
        rsd[-1] = x[-1] - self.continuation.value
        mask[-1] = 0.0
        return rsd, mask

    def eval_point(self, x: FloatArray, rsd: FloatArray, mask: FloatArray, d: int, j: int) -> None:
        """Steady rows j-1..j+1 of flow domain d (in place)."""
        self._eval_flow(x, rsd, mask, d, 0.0, j)

    # ------------------------------------------------------------------
    # Per-flow state hygiene
    # ------------------------------------------------------------------
    def correct_invalid_values(self, x: FloatArray) -> int:
        return sum(flow.correct_invalid_values(self.layout.view(x, d)) for d, flow in self.flows())

    def reset_bad_values(self, x: FloatArray) -> None:
        for d, flow in self.flows():
            flow.reset_bad_values(self.layout.view(x, d))

    def store_valid(self, x: FloatArray) -> None:
        for d, flow in self.flows():
            flow.store_valid(self.layout.view(x, d))

    def init_time_integration(self, x: FloatArray) -> None:
        for d, flow in self.flows():
            flow.init_time_integration(self.layout.view(x, d))

    def clear_time_integration(self) -> None:
        for _, flow in self.flows():
            flow.clear_time_integration()

    def finalize(self, x: FloatArray) -> None:
        for d, flow in self.flows():
            flow.finalize(self.layout.view(x, d))

    def error_weights(self, x: FloatArray, transient: bool) -> FloatArray:
        """ewt = rtol * mean|x_c| + atol per component and domain (1.0 for the trailing scalar)."""
        ewt = np.ones(self.size)
        for d, flow in self.flows():
            rtol, atol = flow.components.tolerances(transient)
            x2d = self.layout.view(x, d)
            w2d = self.layout.view(ewt, d)
            w2d[:] = (rtol * np.mean(np.abs(x2d), axis=0) + atol)[None, :]
        return ewt

    def weighted_norm(self, x: FloatArray, step: FloatArray, transient: bool) -> float:
        n = self.layout.continuation_index
        if n == 0:
            return 0.0
        ewt = self.error_weights(x, transient)
        r = step[:n] / ewt[:n]
        return float(np.sqrt(np.mean(r * r)))
