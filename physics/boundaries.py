"""
Boundary collaborators: zero-component domains attached to one edge of a flow domain.

The flow assembler writes default rows at its first/last point (zero-flux species, V, T, mass
flux relation); a boundary then edits those rows in place, e.g. subtracting the inlet values so
that the rows pin the solution to them. Boundaries own no unknowns.

- Inlet: prescribed mass flux (or velocity), temperature, composition and spread rate.
- SprayInlet: Inlet plus prescribed droplet state (Ul, vl, Tl, ml, nl).
- Outlet: zero-gradient outflow.
- Symmetry: zero gradient of V and T.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import numpy as np

from core.layout import SPRAY_COMPONENTS
from core.types import FloatArray, SetupError
from properties.gas import parse_composition

logger = logging.getLogger(__name__)


class Boundary:
    domain_type = "boundary"

    def __init__(self, name: str) -> None:
        self.name = name
        self.flow = None
        self.side: Optional[str] = None

    @property
    def n_points(self) -> int:
        return 1

    @property
    def n_components(self) -> int:
        return 0

    def component_names(self):
        return []

    @property
    def grid(self) -> FloatArray:
        if self.flow is None:
            return np.zeros(1)
        z = self.flow.grid
        return np.array([z[0] if self.side == "left" else z[-1]])

    def link(self, flow, side: str) -> None:
        if side not in ("left", "right"):
            raise SetupError(f"boundary '{self.name}': side must be 'left' or 'right', got {side!r}")
        if self.flow is not None and self.flow is not flow:
            raise SetupError(f"boundary '{self.name}' is already linked to flow '{self.flow.name}'")
        self.flow = flow
        self.side = side
        self._on_link(flow)

    def _on_link(self, flow) -> None:
        return None

    def edge_point(self) -> int:
        if self.flow is None:
            raise SetupError(f"boundary '{self.name}' is not linked to a flow domain")
        return 0 if self.side == "left" else self.flow.n_points - 1

    def eval(self, x: FloatArray, rsd: FloatArray, diag: FloatArray, jmin: int, jmax: int) -> None:
        """Edit the linked flow's rows (2-D views) if its edge point lies in [jmin, jmax]."""
        j = self.edge_point()
        if not (jmin <= j <= jmax):
            return
        if self.side == "left":
            self._eval_left(self.flow, x, rsd, diag)
        else:
            self._eval_right(self.flow, x, rsd, diag)

    def _eval_left(self, flow, x, rsd, diag) -> None:
        raise NotImplementedError

    def _eval_right(self, flow, x, rsd, diag) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return f"{type(self).__name__}('{self.name}', side={self.side})"


class Inlet(Boundary):
    """Inlet with prescribed mass flux, temperature, composition and spread rate."""

    def __init__(
        self,
        name: str = "inlet",
        *,
        temperature: float = 300.0,
        composition: Any = None,
        mdot: Optional[float] = None,
        velocity: Optional[float] = None,
        spread_rate: float = 0.0,
    ) -> None:
        super().__init__(name)
        if mdot is not None and velocity is not None:
            raise SetupError(f"inlet '{name}': provide only one of mdot or velocity")
        if temperature <= 0.0:
            raise SetupError(f"inlet '{name}': temperature must be positive")
        self.temperature = float(temperature)
        self.spread_rate = float(spread_rate)
        self._composition = composition
        self.Y: Optional[FloatArray] = None
        self._mdot = float(mdot) if mdot is not None else 0.0
        self.velocity: Optional[float] = float(velocity) if velocity is not None else None
        self.density: Optional[float] = None

    @property
    def mdot(self) -> float:
        return self._mdot

    def set_mdot(self, mdot: float) -> None:
        if mdot < 0.0:
            raise ValueError(f"inlet '{self.name}': mdot must be non-negative, got {mdot}")
        self._mdot = float(mdot)

    def set_temperature(self, T: float) -> None:
        if T <= 0.0:
            raise ValueError(f"inlet '{self.name}': temperature must be positive")
        self.temperature = float(T)
        if self.flow is not None:
            self._update_density()

    def set_spread_rate(self, V0: float) -> None:
        self.spread_rate = float(V0)

    def set_mass_fractions(self, composition: Any) -> None:
        self._composition = composition
        if self.flow is not None:
            self._resolve_composition(self.flow)
            self._update_density()

    def set_reference_flow(self, velocity: float, density: float) -> None:
        """Reference speed/density used when a continuation rescale updates mdot."""
        if density <= 0.0:
            raise ValueError("reference density must be positive.")
        self.velocity = abs(float(velocity))
        self.density = float(density)

    def _resolve_composition(self, flow) -> None:
        if self._composition is None:
            raise SetupError(f"inlet '{self.name}': composition is required")
        self.Y = parse_composition(self._composition, flow.species_names)

    def _update_density(self) -> None:
        self.density = self.flow.density_at(self.temperature, self.Y)
        if self.velocity is not None:
            self._mdot = self.density * self.velocity

    def _on_link(self, flow) -> None:
        self._resolve_composition(flow)
        if self.velocity is not None:
            self.velocity = abs(self.velocity)
        self._update_density()
        if self.velocity is None:
            self.velocity = self._mdot / self.density
        logger.debug("%s: mdot=%.6g rho=%.6g u=%.6g T=%.6g", self.describe(), self._mdot,
                     self.density, self.velocity, self.temperature)

    def _eval_left(self, flow, x, rsd, diag) -> None:
        if flow.variant.fixed_mdot:
            # the flow wrote -rho*u; adding mdot pins the inlet mass flux
            rsd[0, flow.iL] += self._mdot
        else:
            # free flame: mass flux follows the solution, lambda is zero
            self._mdot = flow.props.rho[0] * x[0, flow.iU]
            rsd[0, flow.iL] = x[0, flow.iL]
        rsd[0, flow.iV] -= self.spread_rate
        if flow.do_energy[0]:
            rsd[0, flow.iT] -= self.temperature
        k_skip = flow.k_excess_left
        for k in range(flow.n_species):
            if k != k_skip:
                rsd[0, flow.iY0 + k] += self._mdot * self.Y[k]

    def _eval_right(self, flow, x, rsd, diag) -> None:
        j = flow.n_points - 1
        rsd[j, flow.iV] -= self.spread_rate
        if flow.do_energy[j]:
            rsd[j, flow.iT] -= self.temperature
        rsd[j, flow.iU] += self._mdot
        k_skip = flow.k_excess_right
        for k in range(flow.n_species):
            if k != k_skip:
                rsd[j, flow.iY0 + k] += self._mdot * self.Y[k]


class SprayInlet(Inlet):
    """Inlet that also injects droplets with a prescribed state."""

    def __init__(self, name: str = "spray_inlet", *, droplets: Optional[Mapping[str, float]] = None, **kwargs) -> None:
        super().__init__(name, **kwargs)
        droplets = dict(droplets or {})
        unknown = set(droplets) - set(SPRAY_COMPONENTS)
        if unknown:
            raise SetupError(f"spray inlet '{name}': unknown droplet components {sorted(unknown)}")
        self.droplets = {c: float(droplets.get(c, 0.0)) for c in SPRAY_COMPONENTS}
        if self.droplets["ml"] < 0.0 or self.droplets["nl"] < 0.0:
            raise SetupError(f"spray inlet '{name}': droplet mass and number density must be >= 0")
        if self.droplets["Tl"] <= 0.0:
            self.droplets["Tl"] = self.temperature

    def _on_link(self, flow) -> None:
        if not flow.variant.spray:
            raise SetupError(f"spray inlet '{self.name}' requires a spray flow, got '{flow.variant.name}'")
        super()._on_link(flow)

    def _pin_droplets(self, flow, rsd, diag, x, j: int) -> None:
        for name, value in self.droplets.items():
            n = flow.components.component_index(name)
            rsd[j, n] = x[j, n] - value
            diag[j, n] = 0

    def _eval_left(self, flow, x, rsd, diag) -> None:
        super()._eval_left(flow, x, rsd, diag)
        self._pin_droplets(flow, rsd, diag, x, 0)

    def _eval_right(self, flow, x, rsd, diag) -> None:
        super()._eval_right(flow, x, rsd, diag)
        self._pin_droplets(flow, rsd, diag, x, flow.n_points - 1)


class Outlet(Boundary):
    """Zero-gradient outflow."""

    def __init__(self, name: str = "outlet") -> None:
        super().__init__(name)

    def _eval_right(self, flow, x, rsd, diag) -> None:
        j = flow.n_points - 1
        if flow.variant.fixed_mdot:
            rsd[j, flow.iU] = x[j, flow.iL]
        if flow.do_energy[j]:
            rsd[j, flow.iT] = x[j, flow.iT] - x[j - 1, flow.iT]
        k_skip = flow.k_excess_right
        for k in range(flow.n_species):
            if k != k_skip:
                n = flow.iY0 + k
                rsd[j, n] = x[j, n] - x[j - 1, n]
                diag[j, n] = 0

    def _eval_left(self, flow, x, rsd, diag) -> None:
        rsd[0, flow.iL] = x[0, flow.iL]
        if flow.do_energy[0]:
            rsd[0, flow.iT] = x[0, flow.iT] - x[1, flow.iT]
        k_skip = flow.k_excess_left
        for k in range(flow.n_species):
            if k != k_skip:
                n = flow.iY0 + k
                rsd[0, n] = x[0, n] - x[1, n]
                diag[0, n] = 0


class Symmetry(Boundary):
    """Symmetry plane: zero gradient of spread rate and temperature."""

    def __init__(self, name: str = "symmetry") -> None:
        super().__init__(name)

    def _eval_left(self, flow, x, rsd, diag) -> None:
        rsd[0, flow.iV] = x[0, flow.iV] - x[1, flow.iV]
        if flow.do_energy[0]:
            rsd[0, flow.iT] = x[0, flow.iT] - x[1, flow.iT]

    def _eval_right(self, flow, x, rsd, diag) -> None:
        j = flow.n_points - 1
        rsd[j, flow.iV] = x[j, flow.iV] - x[j - 1, flow.iV]
        if flow.do_energy[j]:
            rsd[j, flow.iT] = x[j, flow.iT] - x[j - 1, flow.iT]
