"""
Flow-domain residual assembler for axisymmetric stagnation, free and spray flames.

Direction and sign conventions (must match core.types):
- z increases left -> right; u > 0 means flow toward +z.
- x2d / rsd2d / diag2d are (n_points, n_components) views of the global vectors.
- Diffusive species fluxes live on midpoints: flux[m, k] is the flux of k between points m and
  m+1 (positive toward +z).

Per call of eval(x2d, rsd2d, diag2d, rdt, j):
- Rows are written for points jmin..jmax (all points when j is None, else j-1..j+1 clipped).
- Point properties are synced on j0..j1 = max(jmin,1)-1 .. min(jmax+1,N-1) and midpoint
  transport / fluxes on j0..j1-1; nothing outside that window is read.
- diag marks differential rows (1) and algebraic rows (0); with rdt != 0 the transient term
  -rdt * diag * (x - x_prev) is added to the written rows.
- The excess species of each edge (largest Y there) is recomputed only on full evaluations.

Flow-type differences (continuity row, right-edge rows, fixed mass flux, viscous momentum,
spray rows) come from physics.flow_types.FLOW_VARIANTS.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import numpy as np

from core.grid import grid_spacing, relative_positions, validate_grid
from core.layout import SPRAY_COMPONENTS, build_flow_components
from core.remap import profile_on_grid
from core.types import GAS_CONSTANT, FloatArray, RefineCriteria, SetupError, TRANSPORT_MODELS
from physics.flow_types import FlowVariant, get_flow_variant
from physics.flux_convective import upwind_gradient
from physics.flux_diffusive import (
    artificial_viscosity,
    div_heat_flux,
    mixture_averaged_fluxes,
    mole_fractions,
    multicomponent_fluxes,
    shear,
    soret_correction,
)
from physics.radiation import radiative_heat_loss
from physics.spray import SprayModel
from properties.aggregator import PropertyCache
from properties.gas import _sanitize_mass_fractions

logger = logging.getLogger(__name__)


class InvalidStateError(RuntimeError):
    """A nonphysical trial state has no valid reference to fall back to."""


class FlowDomain:
    domain_type = "flow"

    def __init__(
        self,
        gas: Any,
        z: Sequence[float],
        *,
        flow_type: str = "stagnation",
        name: str = "flow",
        pressure: Optional[float] = None,
        transport_model: str = "mixture-averaged",
        soret: bool = False,
        radiation: bool = False,
        emissivity_left: float = 0.0,
        emissivity_right: float = 0.0,
        spray: Optional[SprayModel] = None,
        energy: bool = False,
    ) -> None:
        self.gas = gas
        self.name = name
        self.variant: FlowVariant = get_flow_variant(flow_type)
        if self.variant.spray and spray is None:
            raise SetupError(f"flow '{name}': flow_type 'spray' requires a SprayModel")
        if transport_model not in TRANSPORT_MODELS:
            raise ValueError(f"transport_model must be one of {TRANSPORT_MODELS}, got {transport_model!r}")

        self.species_names: List[str] = list(gas.species_names)
        self.n_species = len(self.species_names)
        self.W = np.asarray(gas.molecular_weights, dtype=np.float64)
        self.components = build_flow_components(
            self.species_names, spray=self.variant.spray, v_bounds=self.variant.v_bounds
        )
        self.iU = self.components.component_index("velocity")
        self.iV = self.components.component_index("spread_rate")
        self.iT = self.components.component_index("T")
        self.iL = self.components.component_index("lambda")
        self.iY0 = self.iL + 1
        self.iY = slice(self.iY0, self.iY0 + self.n_species)

        self.spray = spray
        self.k_fuel = -1
        if self.variant.spray:
            self.iUl, self.ivl, self.iTl, self.iml, self.inl = (
                self.components.component_index(c) for c in SPRAY_COMPONENTS
            )
            self.set_fuel_species(spray.fuel)

        self.pressure = float(pressure if pressure is not None else gas.P)
        self.transport_model = transport_model
        self.soret = bool(soret)
        self.radiation = bool(radiation)
        self.emissivity_left = 0.0
        self.emissivity_right = 0.0
        self.set_boundary_emissivities(emissivity_left, emissivity_right)
        self.viscous = self.variant.viscous

        self.z_fixed = np.nan
        self.t_fixed = np.nan
        self.k_excess_left = 0
        self.k_excess_right = 0
        self.refine_criteria = RefineCriteria()

        self.z: Optional[FloatArray] = None
        self.do_energy = np.zeros(0, dtype=bool)
        self.T_fixed = np.zeros(0)
        self._fixed_profile: Optional[tuple] = None
        self.x_prev: Optional[FloatArray] = None
        self.last_valid: Optional[FloatArray] = None
        self._energy_default = bool(energy)
        self.setup_grid(z)
        if not energy:
            self.components.component("T").refine = False

    # ------------------------------------------------------------------
    # Geometry and layout
    # ------------------------------------------------------------------
    @property
    def n_points(self) -> int:
        return int(self.z.size)

    @property
    def n_components(self) -> int:
        return self.components.n_components

    @property
    def grid(self) -> FloatArray:
        return self.z

    @property
    def flow_type(self) -> str:
        return self.variant.type_tag

    def component_names(self) -> List[str]:
        return self.components.names

    def component_name(self, n: int) -> str:
        return self.components.component_name(n)

    def component_index(self, name: str) -> int:
        return self.components.component_index(name)

    def setup_grid(self, z: Sequence[float]) -> None:
        """Install a new grid; energy flags and the fixed-temperature profile follow by position."""
        z = np.array(validate_grid(z, min_points=3), dtype=np.float64, copy=True)
        n = z.size
        if self.z is None:
            self.do_energy = np.full(n, self._energy_default, dtype=bool)
            self.T_fixed = np.full(n, float(self.gas.T))
        else:
            self.T_fixed = np.interp(relative_positions(z), relative_positions(self.z), self.T_fixed)
            self.do_energy = np.full(n, bool(self.do_energy[0]), dtype=bool)
        self.z = z
        self.dz = grid_spacing(z)
        self._build_property_cache()
        self.flux = np.zeros((n - 1, self.n_species))
        self._X = np.zeros((n, self.n_species))
        self.qrad = np.zeros(n)
        self.spray_d = np.zeros(n)
        self.spray_mdot = np.zeros(n)
        self.spray_q = np.zeros(n)
        self.spray_source = np.zeros(n)
        self.x_prev = None
        self.last_valid = None

    def _build_property_cache(self) -> None:
        self.props = PropertyCache(
            self.gas,
            self.pressure,
            self.z.size,
            transport_model=self.transport_model,
            soret=self.soret,
            viscous=self.viscous,
            point_transport=self.variant.spray,
        )

    def density_at(self, T: float, Y: FloatArray) -> float:
        self.gas.TPY = float(T), self.pressure, _sanitize_mass_fractions(Y)
        return float(self.gas.density)

    # ------------------------------------------------------------------
    # Physics options
    # ------------------------------------------------------------------
    def solve_energy_equation(self, j: Optional[int] = None) -> None:
        if j is None:
            self.do_energy[:] = True
        else:
            self.do_energy[self._check_point(j)] = True
        self.components.component("T").refine = True

    def fix_temperature(self, j: Optional[int] = None) -> None:
        if j is None:
            self.do_energy[:] = False
        else:
            self.do_energy[self._check_point(j)] = False
        if not np.any(self.do_energy):
            self.components.component("T").refine = False

    def set_fixed_temp_profile(self, z_rel: Sequence[float], T: Sequence[float]) -> None:
        """Fixed-temperature profile given at relative positions 0..1 (kept across regrids)."""
        self._fixed_profile = (np.asarray(z_rel, dtype=np.float64), np.asarray(T, dtype=np.float64))
        self.T_fixed = profile_on_grid(self.z, z_rel, T)

    def set_temperature(self, j: int, t: float) -> None:
        """Pin T at point j to t (the energy equation is switched off there)."""
        j = self._check_point(j)
        self.T_fixed[j] = float(t)
        self.do_energy[j] = False

    def set_fixed_point(self, z: float, t: float) -> None:
        if self.variant.name != "free":
            raise SetupError(f"flow '{self.name}': a fixed temperature point needs a free flame")
        self.z_fixed = float(z)
        self.t_fixed = float(t)

    def enable_radiation(self, flag: bool = True) -> None:
        self.radiation = bool(flag)

    def set_boundary_emissivities(self, e_left: float, e_right: float) -> None:
        for label, e in (("left", e_left), ("right", e_right)):
            if not (0.0 <= e <= 1.0):
                raise ValueError(f"{label} boundary emissivity must lie in [0, 1], got {e}")
        self.emissivity_left = float(e_left)
        self.emissivity_right = float(e_right)

    def enable_soret(self, flag: bool = True) -> None:
        self.soret = bool(flag)
        self._build_property_cache()

    def set_transport_model(self, model: str) -> None:
        if model not in TRANSPORT_MODELS:
            raise ValueError(f"transport_model must be one of {TRANSPORT_MODELS}, got {model!r}")
        self.gas.transport_model = model
        self.transport_model = model
        self._build_property_cache()

    def set_pressure(self, pressure: float) -> None:
        if pressure <= 0.0:
            raise ValueError(f"pressure must be positive, got {pressure}")
        self.pressure = float(pressure)
        self.props.pressure = self.pressure

    def set_viscosity_flag(self, flag: bool) -> None:
        self.viscous = bool(flag)
        self._build_property_cache()

    # spray parameters
    def _require_spray(self) -> SprayModel:
        if self.spray is None:
            raise SetupError(f"flow '{self.name}' has no droplet phase")
        return self.spray

    def set_fuel_species(self, name: str) -> None:
        spray = self._require_spray()
        if name not in self.species_names:
            raise SetupError(f"fuel species '{name}' is not in the gas mechanism")
        spray.fuel = name
        self.k_fuel = self.species_names.index(name)

    def set_liquid_density_params(self, A: float, B: float = 0.0, C: float = 0.0, D: float = 0.0) -> None:
        self._require_spray().set_liquid_density_params(A, B, C, D)

    def set_liquid_vapor_pressure_params(self, A: float, B: float, C: float, Tb: float, units: str = "mmHg") -> None:
        self._require_spray().set_vapor_pressure_params(A, B, C, Tb, units=units)

    def set_liquid_cp(self, cpl: float) -> None:
        self._require_spray().set_liquid_cp(cpl)

    def set_av_coefficients(self, coeffs) -> None:
        self._require_spray().set_av_coefficients(coeffs)

    def _check_point(self, j: int) -> int:
        if not (0 <= j < self.n_points):
            raise IndexError(f"point {j} out of range for flow '{self.name}' (n_points={self.n_points})")
        return int(j)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    def update_properties(self, x2d: FloatArray, j0: int, j1: int) -> None:
        """Sync cached thermo on points j0..j1 and transport/fluxes on midpoints j0..j1-1."""
        T = x2d[:, self.iT]
        Y = x2d[:, self.iY]
        props = self.props
        props.update_thermo(T, Y, j0, j1)
        props.update_transport(T, Y, j0, j1)

        self._X[j0:j1 + 1] = mole_fractions(Y[j0:j1 + 1], props.wtm[j0:j1 + 1], self.W)
        if self.transport_model == "multicomponent":
            multicomponent_fluxes(self._X, props.rho, props.wtm, self.W, props.binary, self.z, j0, j1, self.flux)
        else:
            mixture_averaged_fluxes(Y, self._X, props.rho, props.wtm, self.W, props.diff, self.z, j0, j1, self.flux)
        if self.soret:
            soret_correction(T, self.z, props.dthermal, j0, j1, self.flux)

        if self.radiation:
            self._update_radiation(T, j0, j1)
        if self.variant.spray:
            self._update_spray(x2d, j0, j1)

    def _species_fraction(self, name: str, j0: int, j1: int) -> Optional[FloatArray]:
        if name not in self.species_names:
            return None
        return self._X[j0:j1 + 1, self.species_names.index(name)]

    def _update_radiation(self, T: FloatArray, j0: int, j1: int) -> None:
        self.qrad[j0:j1 + 1] = radiative_heat_loss(
            T[j0:j1 + 1],
            self.pressure,
            self._species_fraction("CO2", j0, j1),
            self._species_fraction("H2O", j0, j1),
            T_left=float(T[0]),
            T_right=float(T[-1]),
            emissivity_left=self.emissivity_left,
            emissivity_right=self.emissivity_right,
        )

    def _update_spray(self, x2d: FloatArray, j0: int, j1: int) -> None:
        spray = self.spray
        props = self.props
        kF = self.k_fuel
        W_fuel = float(self.W[kF])
        for j in range(j0, j1 + 1):
            d = spray.diameter(float(x2d[j, self.iml]), float(x2d[j, self.iTl]))
            D_fuel = float(props.diff_point[j, kF])
            mdot = spray.evaporation_rate(
                d, float(props.rho[j]), D_fuel, float(x2d[j, self.iY0 + kF]), self.pressure, W_fuel,
                float(props.wtm[j]),
            )
            self.spray_d[j] = d
            self.spray_mdot[j] = mdot
            self.spray_source[j] = float(x2d[j, self.inl]) * mdot
            self.spray_q[j] = spray.heat_exchange(
                mdot, d, float(props.rho[j]), D_fuel, float(props.cp[j]), float(x2d[j, self.iT]),
                float(x2d[j, self.iTl]),
            )

    def _update_excess(self, x2d: FloatArray) -> None:
        Y = x2d[:, self.iY]
        self.k_excess_left = int(np.argmax(Y[0]))
        self.k_excess_right = int(np.argmax(Y[-1]))

    # ------------------------------------------------------------------
    # Shared row helpers (used by the flow-type hooks)
    # ------------------------------------------------------------------
    def rho_u(self, x2d: FloatArray, j: int) -> float:
        return float(self.props.rho[j] * x2d[j, self.iU])

    def forward_continuity(self, x2d: FloatArray, j: int) -> float:
        rho = self.props.rho
        iV = self.iV
        res = -(self.rho_u(x2d, j + 1) - self.rho_u(x2d, j)) / self.dz[j] - (
            rho[j + 1] * x2d[j + 1, iV] + rho[j] * x2d[j, iV]
        )
        if self.variant.spray:
            res += 0.5 * (self.spray_source[j] + self.spray_source[j + 1])
        return float(res)

    def backward_continuity(self, x2d: FloatArray, j: int) -> float:
        rho = self.props.rho
        iV = self.iV
        res = -(self.rho_u(x2d, j) - self.rho_u(x2d, j - 1)) / self.dz[j - 1] - (
            rho[j] * x2d[j, iV] + rho[j - 1] * x2d[j - 1, iV]
        )
        if self.variant.spray:
            res += 0.5 * (self.spray_source[j - 1] + self.spray_source[j])
        return float(res)

    def right_boundary_common(self, x2d: FloatArray, rsd2d: FloatArray, diag2d: FloatArray) -> None:
        j = self.n_points - 1
        rsd2d[j, self.iV] = x2d[j, self.iV]
        rsd2d[j, self.iL] = x2d[j, self.iL] - x2d[j - 1, self.iL]
        Y = x2d[j, self.iY]
        rsd2d[j, self.iY] = self.flux[j - 1] + self.rho_u(x2d, j) * Y
        rsd2d[j, self.iY0 + self.k_excess_right] = 1.0 - float(np.sum(Y))

    # ------------------------------------------------------------------
    # Residual
    # ------------------------------------------------------------------
    def eval(
        self,
        x2d: FloatArray,
        rsd2d: FloatArray,
        diag2d: FloatArray,
        rdt: float = 0.0,
        j: Optional[int] = None,
    ) -> None:
        N = self.n_points
        if j is None:
            jmin, jmax = 0, N - 1
        else:
            jmin, jmax = max(j - 1, 0), min(j + 1, N - 1)
        j0 = max(jmin, 1) - 1
        j1 = min(jmax + 1, N - 1)

        self.update_properties(x2d, j0, j1)
        if j is None:
            self._update_excess(x2d)
        diag2d[jmin:jmax + 1] = 0
        for jj in range(jmin, jmax + 1):
            if jj == 0:
                self._eval_left_edge(x2d, rsd2d, diag2d)
            elif jj == N - 1:
                self.variant.right_boundary(self, x2d, rsd2d, diag2d)
            else:
                self._eval_interior(x2d, rsd2d, diag2d, jj)
            if self.variant.spray:
                self._eval_spray(x2d, rsd2d, diag2d, jj)

        if rdt != 0.0 and self.x_prev is not None:
            rows = slice(jmin, jmax + 1)
            rsd2d[rows] -= rdt * diag2d[rows] * (x2d[rows] - self.x_prev[rows])

    def _eval_left_edge(self, x2d: FloatArray, rsd2d: FloatArray, diag2d: FloatArray) -> None:
        rsd2d[0, self.iU] = self.forward_continuity(x2d, 0)
        rsd2d[0, self.iV] = x2d[0, self.iV]
        if self.do_energy[0]:
            rsd2d[0, self.iT] = x2d[0, self.iT]
        else:
            rsd2d[0, self.iT] = x2d[0, self.iT] - self.T_fixed[0]
        rho_u0 = self.rho_u(x2d, 0)
        rsd2d[0, self.iL] = -rho_u0
        Y = x2d[0, self.iY]
        rsd2d[0, self.iY] = -(self.flux[0] + rho_u0 * Y)
        rsd2d[0, self.iY0 + self.k_excess_left] = 1.0 - float(np.sum(Y))

    def _eval_interior(self, x2d: FloatArray, rsd2d: FloatArray, diag2d: FloatArray, j: int) -> None:
        props = self.props
        z = self.z
        dz = self.dz
        rho = float(props.rho[j])
        u = x2d[:, self.iU]
        V = x2d[:, self.iV]
        T = x2d[:, self.iT]
        rho_u = rho * u[j]

        self.variant.continuity(self, x2d, rsd2d, diag2d, j)

        # momentum
        if self.variant.viscous:
            dVdz = upwind_gradient(V, u[j], dz, j)
            rsd2d[j, self.iV] = (
                shear(props.visc, V, z, j) - x2d[j, self.iL] - rho_u * dVdz - rho * V[j] ** 2
            ) / rho
            diag2d[j, self.iV] = 1
        else:
            rsd2d[j, self.iV] = V[j]

        rsd2d[j, self.iL] = x2d[j, self.iL] - x2d[j - 1, self.iL]

        # energy
        if self.do_energy[j]:
            cp = float(props.cp[j])
            dTdz = upwind_gradient(T, u[j], dz, j)
            heat_release = GAS_CONSTANT * T[j] * float(np.dot(props.wdot[j], props.h_RT[j]))
            enthalpy_flux = GAS_CONSTANT * dTdz * float(
                np.sum(0.5 * (self.flux[j - 1] + self.flux[j]) * props.cp_R[j] / self.W)
            )
            res = (-cp * rho_u * dTdz - div_heat_flux(props.tcon, T, z, j) - heat_release - enthalpy_flux) / (rho * cp)
            if self.radiation:
                res -= self.qrad[j] / (rho * cp)
            rsd2d[j, self.iT] = res
            diag2d[j, self.iT] = 1
        else:
            rsd2d[j, self.iT] = T[j] - self.T_fixed[j]

        # species
        Y = x2d[:, self.iY]
        dYdz = upwind_gradient(Y, u[j], dz, j)
        diffus = 2.0 * (self.flux[j] - self.flux[j - 1]) / (z[j + 1] - z[j - 1])
        rsd2d[j, self.iY] = (self.W * props.wdot[j] - rho_u * dYdz - diffus) / rho
        diag2d[j, self.iY] = 1

    def _eval_spray(self, x2d: FloatArray, rsd2d: FloatArray, diag2d: FloatArray, j: int) -> None:
        N = self.n_points
        iUl, ivl, iTl, iml, inl = self.iUl, self.ivl, self.iTl, self.iml, self.inl
        Ul = x2d[:, iUl]
        vl = x2d[:, ivl]
        nl = x2d[:, inl]

        if j == 0 or j == N - 1:
            # zero-gradient droplet state; one-sided number-density conservation
            nb = 1 if j == 0 else N - 2
            for n in (iUl, ivl, iTl, iml):
                rsd2d[j, n] = x2d[j, n] - x2d[nb, n]
            lo, hi = (0, 1) if j == 0 else (N - 2, N - 1)
            rsd2d[j, inl] = -(nl[hi] * vl[hi] - nl[lo] * vl[lo]) / self.dz[lo] - (nl[lo] * Ul[lo] + nl[hi] * Ul[hi])
            return

        spray = self.spray
        props = self.props
        z = self.z
        dz = self.dz
        av_ml, av_nl, av_Tl, av_Ul, av_vl = spray.av_coefficients()
        rho = float(props.rho[j])
        ml = float(x2d[j, iml])
        d = float(self.spray_d[j])
        mdot = float(self.spray_mdot[j])
        q = float(self.spray_q[j])
        S = nl[j] * mdot
        v = vl[j]

        Fr = 0.0
        if d > 0.0:
            mu = float(props.visc_point[j])
            Fr = spray.radial_drag(d, mu, x2d[j, self.iV], Ul[j])
            fz = spray.axial_drag(d, mu, x2d[j, self.iU], v)
            Lv = spray.latent_heat(float(self.W[self.k_fuel]))
            rsd2d[j, iUl] = (
                Fr / ml - v * upwind_gradient(Ul, v, dz, j) - Ul[j] ** 2 + artificial_viscosity(av_Ul, Ul, z, j)
            )
            rsd2d[j, ivl] = fz / ml - v * upwind_gradient(vl, v, dz, j) + artificial_viscosity(av_vl, vl, z, j)
            rsd2d[j, iTl] = (
                mdot * (q - Lv) / (ml * spray.cpl)
                - v * upwind_gradient(x2d[:, iTl], v, dz, j)
                + artificial_viscosity(av_Tl, x2d[:, iTl], z, j)
            )
            diag2d[j, iUl] = 1
            diag2d[j, ivl] = 1
            diag2d[j, iTl] = 1
        else:
            rsd2d[j, iUl] = x2d[j, self.iV] - Ul[j]
            rsd2d[j, ivl] = x2d[j, self.iU] - v
            rsd2d[j, iTl] = x2d[j, self.iT] - x2d[j, iTl]

        m = x2d[:, iml]
        rsd2d[j, iml] = -mdot - v * upwind_gradient(m, v, dz, j) + artificial_viscosity(av_ml, m, z, j)
        rsd2d[j, inl] = -(
            v * upwind_gradient(nl, v, dz, j) + nl[j] * upwind_gradient(vl, v, dz, j) + 2.0 * nl[j] * Ul[j]
        ) + artificial_viscosity(av_nl, nl, z, j)
        diag2d[j, iml] = 1
        diag2d[j, inl] = 1

        # coupling into the gas rows
        rsd2d[j, self.iV] += (-nl[j] * Fr + S * (Ul[j] - x2d[j, self.iV])) / rho
        if self.do_energy[j]:
            rsd2d[j, self.iT] -= nl[j] * mdot * q / (rho * float(props.cp[j]))
        src = -S * x2d[j, self.iY] / rho
        src[self.k_fuel] += S / rho
        rsd2d[j, self.iY] += src

    # ------------------------------------------------------------------
    # State hygiene and lifecycle
    # ------------------------------------------------------------------
    def _invalid_points(self, x2d: FloatArray) -> np.ndarray:
        Y = x2d[:, self.iY]
        y_floor = self.components.component(self.iY0).lower
        return (
            ~np.all(np.isfinite(x2d), axis=1)
            | (x2d[:, self.iT] <= 0.0)
            | (np.sum(Y, axis=1) <= 0.0)
            | np.any(Y < y_floor, axis=1)
        )

    def correct_invalid_values(self, x2d: FloatArray) -> int:
        """Reset points with nonphysical values to the last valid state; returns the count."""
        bad = self._invalid_points(x2d)
        n_bad = int(np.count_nonzero(bad))
        if n_bad == 0:
            return 0
        if self.last_valid is None or self.last_valid.shape != x2d.shape:
            raise InvalidStateError(
                f"flow '{self.name}': {n_bad} invalid points and no valid reference state"
            )
        x2d[bad] = self.last_valid[bad]
        logger.debug("flow '%s': reset %d invalid points %s", self.name, n_bad, np.flatnonzero(bad).tolist())
        return n_bad

    def reset_bad_values(self, x2d: FloatArray) -> None:
        """Clip negative mass fractions and renormalize at every point."""
        for j in range(self.n_points):
            x2d[j, self.iY] = _sanitize_mass_fractions(x2d[j, self.iY])

    def store_valid(self, x2d: FloatArray) -> None:
        self.last_valid = np.array(x2d, dtype=np.float64, copy=True)

    def init_time_integration(self, x2d: FloatArray) -> None:
        self.x_prev = np.array(x2d, dtype=np.float64, copy=True)

    def clear_time_integration(self) -> None:
        self.x_prev = None

    def finalize(self, x2d: FloatArray) -> None:
        """Refresh bookkeeping from the current state before a solve or after a grid change."""
        if self.soret and self.transport_model != "multicomponent":
            raise SetupError(f"flow '{self.name}': Soret diffusion requires multicomponent transport")
        T = x2d[:, self.iT]
        if self.do_energy[0] or self._fixed_profile is None:
            self.T_fixed = np.array(T, dtype=np.float64, copy=True)
        else:
            self.T_fixed = profile_on_grid(self.z, *self._fixed_profile)
        if self.do_energy[0]:
            self.solve_energy_equation()
        if self.variant.name == "free" and np.isfinite(self.t_fixed):
            self._relocate_fixed_point(T)
        self._update_excess(x2d)
        self.store_valid(x2d)

    def _relocate_fixed_point(self, T: FloatArray) -> None:
        if np.any(self.z == self.z_fixed):
            return
        for j in range(self.n_points - 1):
            if (T[j] - self.t_fixed) * (T[j + 1] - self.t_fixed) <= 0.0:
                self.t_fixed = float(T[j + 1])
                self.z_fixed = float(self.z[j + 1])
                logger.debug("flow '%s': fixed point moved to z=%.6g T=%.6g", self.name, self.z_fixed, self.t_fixed)
                return

    def show_solution(self, x2d: FloatArray) -> None:
        names = self.components.names
        logger.info("Flow domain '%s' (%s), %d points", self.name, self.flow_type, self.n_points)
        for n0 in range(0, len(names), 5):
            cols = names[n0:n0 + 5]
            logger.info("%s", "%12s" % "z" + "".join("%14s" % c for c in cols))
            for j in range(self.n_points):
                row = "".join("%14.6g" % x2d[j, n0 + i] for i in range(len(cols)))
                logger.info("%12.6g%s", self.z[j], row)
