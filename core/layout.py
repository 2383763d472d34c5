"""
Component layout descriptors and the global solution-vector layout.

Principles:
- Each domain owns one ComponentLayout (ordered component list with bounds, tolerances and
  refine flags), built once and shared by the assembler, bounds and introspection.
- The global vector is domain-by-domain, point-by-point, component-by-component, followed by a
  single continuation scalar.
- Offsets come only from SolutionLayout (domain-to-slice map) which is rebuilt whenever any grid
  changes; assembly works on 2-D (points, components) views and never computes flat offsets.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import logging
import numpy as np

from .types import FloatArray

logger = logging.getLogger(__name__)

BIG = 1.0e20
CONTINUATION_BOUNDS = (0.0, 1.0e10)

GAS_COMPONENTS = ("velocity", "spread_rate", "T", "lambda")
SPRAY_COMPONENTS = ("Ul", "vl", "Tl", "ml", "nl")
COMPONENT_ALIASES = {"u": "velocity", "V": "spread_rate", "L": "lambda"}


@dataclass(slots=True)
class Component:
    """Single per-point solution component."""

    name: str
    lower: float
    upper: float
    rtol_ss: float = 1.0e-4
    atol_ss: float = 1.0e-9
    rtol_ts: float = 1.0e-4
    atol_ts: float = 1.0e-11
    refine: bool = True

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("component name must be non-empty.")
        if not (self.lower < self.upper):
            raise ValueError(
                f"component '{self.name}': lower bound {self.lower} must be < upper bound {self.upper}"
            )


@dataclass(slots=True)
class ComponentLayout:
    """Ordered component list of one domain."""

    components: List[Component] = field(default_factory=list)
    aliases: Dict[str, str] = field(default_factory=dict)
    _index: Dict[str, int] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        for i, comp in enumerate(self.components):
            if comp.name in self._index:
                raise ValueError(f"duplicate component name '{comp.name}'")
            self._index[comp.name] = i

    @property
    def n_components(self) -> int:
        return len(self.components)

    @property
    def names(self) -> List[str]:
        return [c.name for c in self.components]

    def has_component(self, name: str) -> bool:
        return self.aliases.get(name, name) in self._index

    def component_index(self, name: str) -> int:
        key = self.aliases.get(name, name)
        if key not in self._index:
            raise KeyError(f"Unknown component '{name}'. Known: {self.names}")
        return self._index[key]

    def component_name(self, n: int) -> str:
        if not (0 <= n < self.n_components):
            raise IndexError(f"component index {n} out of range [0, {self.n_components})")
        return self.components[n].name

    def component(self, name_or_index) -> Component:
        if isinstance(name_or_index, str):
            return self.components[self.component_index(name_or_index)]
        return self.components[self._check_index(int(name_or_index))]

    def _check_index(self, n: int) -> int:
        if not (0 <= n < self.n_components):
            raise IndexError(f"component index {n} out of range [0, {self.n_components})")
        return n

    def set_bounds(self, name: str, lower: float, upper: float) -> None:
        if not (lower < upper):
            raise ValueError(f"set_bounds('{name}'): lower {lower} must be < upper {upper}")
        comp = self.component(name)
        comp.lower = float(lower)
        comp.upper = float(upper)

    def set_tolerances(
        self, rtol: float, atol: float, *, transient: bool = False, name: Optional[str] = None
    ) -> None:
        if rtol <= 0.0 or atol <= 0.0:
            raise ValueError("tolerances must be positive.")
        targets = self.components if name is None else [self.component(name)]
        for comp in targets:
            if transient:
                comp.rtol_ts, comp.atol_ts = float(rtol), float(atol)
            else:
                comp.rtol_ss, comp.atol_ss = float(rtol), float(atol)

    def lower_bounds(self) -> FloatArray:
        return np.array([c.lower for c in self.components], dtype=np.float64)

    def upper_bounds(self) -> FloatArray:
        return np.array([c.upper for c in self.components], dtype=np.float64)

    def tolerances(self, transient: bool) -> Tuple[FloatArray, FloatArray]:
        if transient:
            rtol = [c.rtol_ts for c in self.components]
            atol = [c.atol_ts for c in self.components]
        else:
            rtol = [c.rtol_ss for c in self.components]
            atol = [c.atol_ss for c in self.components]
        return np.asarray(rtol, dtype=np.float64), np.asarray(atol, dtype=np.float64)

    def refine_active(self) -> List[bool]:
        return [bool(c.refine) for c in self.components]


def build_flow_components(
    species_names: Sequence[str],
    *,
    spray: bool = False,
    v_bounds: Tuple[float, float] = (-BIG, BIG),
) -> ComponentLayout:
    """Build the flow-domain layout: gas components, species, then optional droplet components."""
    if not species_names:
        raise ValueError("flow layout needs at least one species.")
    comps: List[Component] = [
        Component("velocity", -BIG, BIG),
        Component("spread_rate", float(v_bounds[0]), float(v_bounds[1])),
        Component("T", 200.0, 1.0e9),
        Component("lambda", -BIG, BIG),
    ]
    for name in species_names:
        if name in GAS_COMPONENTS or name in SPRAY_COMPONENTS:
            raise ValueError(f"species name '{name}' collides with a flow component name.")
        comps.append(Component(str(name), -1.0e-7, 1.0e5))
    if spray:
        comps.extend(
            [
                Component("Ul", -BIG, BIG),
                Component("vl", -BIG, BIG),
                Component("Tl", 200.0, 1.0e9),
                Component("ml", 0.0, BIG),
                Component("nl", 0.0, BIG),
            ]
        )
    return ComponentLayout(components=comps, aliases=dict(COMPONENT_ALIASES))


class DomainLike(Protocol):
    name: str

    @property
    def n_points(self) -> int: ...

    @property
    def n_components(self) -> int: ...


@dataclass(frozen=True, slots=True)
class DomainSlice:
    """Index range of one domain inside the global arena."""

    index: int
    name: str
    start: int
    n_points: int
    n_components: int

    @property
    def size(self) -> int:
        return self.n_points * self.n_components

    @property
    def stop(self) -> int:
        return self.start + self.size

    @property
    def slice(self) -> slice:
        return slice(self.start, self.stop)


@dataclass(slots=True)
class SolutionLayout:
    """Domain-to-slice map of the global state vector (plus trailing continuation scalar)."""

    domains: List[DomainSlice]
    size: int

    @classmethod
    def build(cls, domains: Sequence[DomainLike]) -> "SolutionLayout":
        slices: List[DomainSlice] = []
        start = 0
        for i, dom in enumerate(domains):
            npts = int(dom.n_points)
            nc = int(dom.n_components)
            if npts < 1:
                raise ValueError(f"domain '{dom.name}' must have at least one point.")
            ds = DomainSlice(index=i, name=str(dom.name), start=start, n_points=npts, n_components=nc)
            slices.append(ds)
            start = ds.stop
        return cls(domains=slices, size=start + 1)

    @property
    def n_domains(self) -> int:
        return len(self.domains)

    @property
    def continuation_index(self) -> int:
        return self.size - 1

    def domain(self, d: int) -> DomainSlice:
        if not (0 <= d < len(self.domains)):
            raise IndexError(f"domain index {d} out of range [0, {len(self.domains)})")
        return self.domains[d]

    def view(self, x: FloatArray, d: int) -> FloatArray:
        """2-D (points, components) view of domain d inside x (no copy)."""
        ds = self.domain(d)
        return x[ds.slice].reshape(ds.n_points, ds.n_components)

    def index(self, d: int, comp: int, j: int) -> int:
        ds = self.domain(d)
        if not (0 <= comp < ds.n_components):
            raise IndexError(f"component {comp} out of range for domain '{ds.name}'")
        if not (0 <= j < ds.n_points):
            raise IndexError(f"point {j} out of range for domain '{ds.name}' (n_points={ds.n_points})")
        return ds.start + j * ds.n_components + comp

    def locate(self, i: int) -> Tuple[int, int, int]:
        """Inverse of index(): global index -> (domain, point, component)."""
        if not (0 <= i < self.continuation_index):
            raise IndexError(f"global index {i} is not a domain entry")
        for ds in self.domains:
            if ds.start <= i < ds.stop:
                local = i - ds.start
                return ds.index, local // ds.n_components, local % ds.n_components
        raise IndexError(f"global index {i} not owned by any domain")


def build_bounds(
    layouts: Sequence[ComponentLayout], sol: SolutionLayout
) -> Tuple[FloatArray, FloatArray]:
    """Concatenate per-component bounds to match the state vector; trailing scalar included."""
    lb = np.empty(sol.size, dtype=np.float64)
    ub = np.empty(sol.size, dtype=np.float64)
    for ds, comp_layout in zip(sol.domains, layouts):
        if ds.n_components == 0:
            continue
        lb[ds.slice] = np.tile(comp_layout.lower_bounds(), ds.n_points)
        ub[ds.slice] = np.tile(comp_layout.upper_bounds(), ds.n_points)
    lb[-1], ub[-1] = CONTINUATION_BOUNDS
    return lb, ub
