"""
Strongly typed containers for case configuration, solver settings, snapshots and results.

Global conventions (law of the land):
- Flow-domain state is viewed as x2d.shape == (n_points, n_components)  # rows are space
- Component order per point: velocity u, spread_rate V, T, lambda, Y_0..Y_{K-1},
  then (spray only) Ul, vl, Tl, ml, nl
- Global state vector: domain-by-domain, point-by-point, component-by-component,
  plus one trailing continuation scalar
- Axial coordinate z increases left -> right; u > 0 means flow toward +z
- Units are SI with Cantera's kmol convention (W in kg/kmol, wdot in kmol/m^3/s)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

FloatArray = NDArray[np.float64]

# Physical constants (CODATA 2018, Cantera values)
GAS_CONSTANT = 8314.46261815324  # J/kmol/K
STEFAN_BOLTZMANN = 5.670374419e-8  # W/m^2/K^4
ONE_ATM = 101325.0  # Pa
MMHG_TO_PA = 133.322365
BAR_TO_PA = 1.0e5

FLOW_TYPES = ("stagnation", "free", "spray")
TRANSPORT_MODELS = ("mixture-averaged", "multicomponent")


class SetupError(ValueError):
    """Configuration or domain-linkage error detected before any solve."""


def _require_positive(name: str, value: float) -> None:
    if not np.isfinite(value) or value <= 0.0:
        raise ValueError(f"{name} must be positive and finite, got {value!r}")


# ----------------------------------------------------------------------------
# Physics configuration
# ----------------------------------------------------------------------------
@dataclass(slots=True)
class FlowConfig:
    """Flow-domain options (YAML 'flow' block)."""

    flow_type: str = "stagnation"
    pressure: float = ONE_ATM
    transport_model: str = "mixture-averaged"
    soret: bool = False
    radiation: bool = False
    emissivity_left: float = 0.0
    emissivity_right: float = 0.0
    energy: bool = False

    def __post_init__(self) -> None:
        if self.flow_type not in FLOW_TYPES:
            raise ValueError(f"flow_type must be one of {FLOW_TYPES}, got {self.flow_type!r}")
        if self.transport_model not in TRANSPORT_MODELS:
            raise ValueError(
                f"transport_model must be one of {TRANSPORT_MODELS}, got {self.transport_model!r}"
            )
        _require_positive("pressure", float(self.pressure))
        for name in ("emissivity_left", "emissivity_right"):
            v = float(getattr(self, name))
            if not (0.0 <= v <= 1.0):
                raise ValueError(f"{name} must lie in [0, 1], got {v}")
        if self.soret and self.transport_model != "multicomponent":
            raise ValueError("soret requires transport_model='multicomponent'.")


@dataclass(slots=True)
class SprayConfig:
    """Liquid-fuel closure parameters for spray flames.

    Attributes
    ----------
    fuel : str
        Gas-phase species receiving the evaporated mass.
    rhol_A, rhol_B, rhol_C, rhol_D : float
        DIPPR-105 liquid density coefficients; B = C = D = 0 means constant density A.
    prs_A, prs_B, prs_C : float
        Antoine coefficients (log10 form).
    prs_units : str
        "mmHg" (C given in K-offset form, shifted by -273.15) or "bar".
    boiling_temperature : float
        Temperature at which the Antoine vapor pressure is evaluated [K].
    cpl : float
        Liquid heat capacity [J/kg/K].
    av_coefficients : tuple
        Artificial-viscosity coefficients ordered (ml, nl, Tl, Ul, vl).
    """

    fuel: str
    rhol_A: float
    prs_A: float
    prs_B: float
    prs_C: float
    boiling_temperature: float
    cpl: float
    rhol_B: float = 0.0
    rhol_C: float = 0.0
    rhol_D: float = 0.0
    prs_units: str = "mmHg"
    av_coefficients: Tuple[float, float, float, float, float] = (0.0, 0.0, 0.0, 0.0, 0.0)

    def __post_init__(self) -> None:
        if not self.fuel:
            raise ValueError("spray fuel species must be provided.")
        _require_positive("rhol_A", float(self.rhol_A))
        _require_positive("cpl", float(self.cpl))
        _require_positive("boiling_temperature", float(self.boiling_temperature))
        if self.prs_units not in ("mmHg", "bar"):
            raise ValueError(f"prs_units must be 'mmHg' or 'bar', got {self.prs_units!r}")
        av = tuple(float(v) for v in self.av_coefficients)
        if len(av) != 5:
            raise ValueError(f"av_coefficients needs 5 entries (ml, nl, Tl, Ul, vl), got {len(av)}")
        if any(v < 0.0 for v in av):
            raise ValueError("av_coefficients must be non-negative.")
        self.av_coefficients = av


@dataclass(slots=True)
class GridConfig:
    """Initial flow grid (YAML 'grid' block)."""

    n_points: int
    length: float
    z0: float = 0.0
    method: str = "uniform"
    beta: float = 3.0
    center_bias: float = 0.0

    def __post_init__(self) -> None:
        if int(self.n_points) < 3:
            raise ValueError(f"grid n_points must be >= 3, got {self.n_points}")
        _require_positive("grid length", float(self.length))
        if self.method not in ("uniform", "tanh"):
            raise ValueError(f"grid method must be 'uniform' or 'tanh', got {self.method!r}")


@dataclass(slots=True)
class InletConfig:
    """Inlet boundary definition; exactly one of mdot / velocity is used."""

    side: str
    temperature: float
    composition: Any
    mdot: Optional[float] = None
    velocity: Optional[float] = None
    spread_rate: float = 0.0
    droplets: Optional[Mapping[str, float]] = None

    def __post_init__(self) -> None:
        if self.side not in ("left", "right"):
            raise ValueError(f"inlet side must be 'left' or 'right', got {self.side!r}")
        _require_positive("inlet temperature", float(self.temperature))
        if self.mdot is not None and self.velocity is not None:
            raise ValueError("inlet: provide only one of 'mdot' or 'velocity'.")
        if self.mdot is not None and float(self.mdot) < 0.0:
            raise ValueError("inlet mdot must be non-negative (direction follows the side).")


# ----------------------------------------------------------------------------
# Solver configuration
# ----------------------------------------------------------------------------
@dataclass(slots=True)
class RefineCriteria:
    """Grid refinement thresholds (per flow domain)."""

    ratio: float = 10.0
    slope: float = 0.8
    curve: float = 0.8
    prune: float = -0.001
    min_range: float = 0.01
    grid_min: float = 1.0e-10
    max_points: int = 1000

    def __post_init__(self) -> None:
        if self.ratio < 2.0:
            raise ValueError(f"refine ratio must be >= 2, got {self.ratio}")
        if not (0.0 < self.slope <= 1.0):
            raise ValueError(f"refine slope must lie in (0, 1], got {self.slope}")
        if not (0.0 < self.curve <= 1.0):
            raise ValueError(f"refine curve must lie in (0, 1], got {self.curve}")
        if self.prune > self.curve or self.prune > self.slope:
            raise ValueError("refine prune must not exceed slope or curve.")
        if int(self.max_points) < 3:
            raise ValueError("max_points must be >= 3.")
        _require_positive("grid_min", float(self.grid_min))

    @property
    def threshold(self) -> float:
        return math.sqrt(np.finfo(float).eps)


@dataclass(slots=True)
class NewtonConfig:
    """Damped Newton options (YAML 'solver.newton' block)."""

    max_iter: int = 100
    jac_max_age: int = 20
    damp_factor: float = math.sqrt(2.0)
    n_damp: int = 7
    max_jac_reeval: int = 3
    fbound_min: float = 1.0e-10
    penalty_increment: float = 1.0e-3
    fd_rtol: float = 1.0e-5

    def __post_init__(self) -> None:
        if int(self.max_iter) <= 0:
            raise ValueError("newton max_iter must be > 0.")
        if int(self.jac_max_age) <= 0:
            raise ValueError("newton jac_max_age must be > 0.")
        if self.damp_factor <= 1.0:
            raise ValueError("newton damp_factor must be > 1.")
        if int(self.n_damp) <= 0:
            raise ValueError("newton n_damp must be > 0.")
        _require_positive("fbound_min", float(self.fbound_min))
        _require_positive("penalty_increment", float(self.penalty_increment))


@dataclass(slots=True)
class TimeStepConfig:
    """Pseudo-time-stepping fallback schedule."""

    dt0: float = 1.0e-5
    steps: Tuple[int, ...] = (10,)
    dt_min: float = 1.0e-16
    dt_max: float = 1.0e8
    factor: float = 0.5
    growth: float = 1.5
    max_steps: int = 500
    jac_max_age: int = 20

    def __post_init__(self) -> None:
        _require_positive("dt0", float(self.dt0))
        steps = tuple(int(n) for n in self.steps)
        if not steps or any(n <= 0 for n in steps):
            raise ValueError(f"time-step schedule must be non-empty positive ints, got {self.steps!r}")
        self.steps = steps
        if not (0.0 < self.factor < 1.0):
            raise ValueError(f"time-step factor must lie in (0, 1), got {self.factor}")
        if self.growth < 1.0:
            raise ValueError("time-step growth must be >= 1.")
        if self.dt_min >= self.dt_max:
            raise ValueError("dt_min must be smaller than dt_max.")


@dataclass(slots=True)
class ContinuationConfig:
    """Continuation parameter (e.g. strain rate) folded into the state vector."""

    parameter: float = 0.0
    threshold: float = 0.0

    def __post_init__(self) -> None:
        if self.parameter < 0.0:
            raise ValueError("continuation parameter must be non-negative.")
        if self.threshold < 0.0:
            raise ValueError("continuation threshold must be non-negative.")


@dataclass(slots=True)
class SolverConfig:
    newton: NewtonConfig = field(default_factory=NewtonConfig)
    timestep: TimeStepConfig = field(default_factory=TimeStepConfig)
    refine: RefineCriteria = field(default_factory=RefineCriteria)
    continuation: ContinuationConfig = field(default_factory=ContinuationConfig)
    max_refine_failures: int = 2

    def __post_init__(self) -> None:
        if int(self.max_refine_failures) < 0:
            raise ValueError("max_refine_failures must be >= 0.")


@dataclass(slots=True)
class CaseMeta:
    """Metadata for the case block."""

    id: str
    title: str = ""
    notes: Optional[str] = None


@dataclass(slots=True)
class CasePaths:
    """Case-level paths (resolved by the driver).

    Attributes
    ----------
    mechanism : str
        Mechanism file name or path (Cantera search path applies), or "ideal".
    output_dir : Path
        Directory for snapshots written after the solve.
    """

    mechanism: str
    output_dir: Path
    phase: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.mechanism:
            raise ValueError("mechanism must be provided.")
        if not isinstance(self.output_dir, Path):
            raise TypeError("output_dir must be pathlib.Path (loader must convert str -> Path).")


@dataclass(slots=True)
class CaseConfig:
    case: CaseMeta
    paths: CasePaths
    flow: FlowConfig
    grid: GridConfig
    inlets: List[InletConfig]
    solver: SolverConfig = field(default_factory=SolverConfig)
    spray: Optional[SprayConfig] = None
    initial_temperature: Optional[float] = None
    initial_profile: str = "linear"
    initial_width: float = 0.2
    initial_profiles: Dict[str, Tuple[Tuple[float, ...], Tuple[float, ...]]] = field(default_factory=dict)
    fixed_temperature: Optional[float] = None
    refine_grid: bool = True

    def __post_init__(self) -> None:
        if self.initial_profile not in ("linear", "erfc"):
            raise ValueError(f"initial profile must be 'linear' or 'erfc', got {self.initial_profile!r}")
        for comp, (pos, values) in self.initial_profiles.items():
            if len(pos) != len(values) or len(pos) < 2:
                raise ValueError(f"initial profile for '{comp}' needs matching pos/values with >= 2 entries")
        if self.fixed_temperature is not None and self.flow.flow_type != "free":
            raise ValueError("fixed_temperature only applies to flow_type='free'.")
        if self.flow.flow_type == "free" and self.fixed_temperature is None:
            raise ValueError("flow_type='free' requires fixed_temperature.")
        if self.flow.flow_type == "spray" and self.spray is None:
            raise ValueError("flow_type='spray' requires a 'spray' block.")
        sides = [inlet.side for inlet in self.inlets]
        if len(set(sides)) != len(sides):
            raise ValueError(f"duplicate inlet sides: {sides}")


# ----------------------------------------------------------------------------
# Snapshots and results
# ----------------------------------------------------------------------------
@dataclass(slots=True)
class SolutionSnapshot:
    """Copy of a solution: state vector, per-domain grids and free-form metadata."""

    x: FloatArray
    grids: List[FloatArray]
    meta: Dict[str, Any] = field(default_factory=dict)

    def copy(self) -> "SolutionSnapshot":
        return SolutionSnapshot(
            x=np.array(self.x, dtype=np.float64, copy=True),
            grids=[np.array(g, dtype=np.float64, copy=True) for g in self.grids],
            meta=dict(self.meta),
        )


@dataclass(slots=True)
class TimeStepResult:
    success: bool
    x: FloatArray
    dt: float
    n_steps: int
    message: Optional[str] = None


@dataclass(slots=True)
class SolveResult:
    """Outcome of Sim1D.solve; failures carry the last valid snapshot."""

    success: bool
    reason: str
    n_newton_solves: int = 0
    n_timesteps: int = 0
    n_refine_passes: int = 0
    grid_sizes: Tuple[int, ...] = ()
    snapshot: Optional[SolutionSnapshot] = None
    history: List[str] = field(default_factory=list)


def as_float_tuple(values: Sequence[float]) -> Tuple[float, ...]:
    return tuple(float(v) for v in values)
