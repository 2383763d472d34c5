"""
Droplet closures for spray flames (film theory, single fuel component).

- Liquid density: DIPPR-105, rho_l = A / B^(1 + (1 - Tl/C)^D); constant A when B = C = D = 0.
- Diameter from droplet mass: d_l = (6 m_l / (pi rho_l))^(1/3); zero below sqrt(tiny).
- Vapor pressure: Antoine, p_s = 10^(A - B/(C + T_b)) * cvt, evaluated at the boiling temperature.
- Latent heat: Clausius-Clapeyron, L_v = B R / W_fuel.
- Evaporation: mdot = 2 pi d_l rho D_f ln(1 + B_m), B_m = (Y_s - Y_f) / max(1 - Y_s, tiny).
- Heat exchange per unit evaporated mass: q = cp (T - Tl) / (exp(mdot/(2 pi rho D_f d_l)) - 1).
- Stokes drag: F_r = 3 pi d_l mu (V - Ul), f_z = 3 pi d_l mu (u - vl).

All functions are scalar-in/scalar-out and safe at zero droplet mass: the diameter, evaporation
rate and heat exchange collapse to zero instead of dividing by zero.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from core.types import BAR_TO_PA, GAS_CONSTANT, MMHG_TO_PA, SprayConfig

TINY = math.sqrt(np.finfo(float).tiny)


@dataclass(slots=True)
class SprayModel:
    fuel: str
    rhol_A: float
    rhol_B: float
    rhol_C: float
    rhol_D: float
    prs_A: float
    prs_B: float
    prs_C: float
    boiling_temperature: float
    pressure_conversion: float
    cpl: float
    av_ml: float = 0.0
    av_nl: float = 0.0
    av_Tl: float = 0.0
    av_Ul: float = 0.0
    av_vl: float = 0.0

    @classmethod
    def from_config(cls, cfg: SprayConfig) -> "SprayModel":
        model = cls(
            fuel=cfg.fuel,
            rhol_A=0.0, rhol_B=0.0, rhol_C=0.0, rhol_D=0.0,
            prs_A=0.0, prs_B=0.0, prs_C=0.0,
            boiling_temperature=0.0, pressure_conversion=MMHG_TO_PA,
            cpl=float(cfg.cpl),
        )
        model.set_liquid_density_params(cfg.rhol_A, cfg.rhol_B, cfg.rhol_C, cfg.rhol_D)
        model.set_vapor_pressure_params(
            cfg.prs_A, cfg.prs_B, cfg.prs_C, cfg.boiling_temperature, units=cfg.prs_units
        )
        model.set_av_coefficients(cfg.av_coefficients)
        return model

    # ------------------------------------------------------------------
    # Parameter setters
    # ------------------------------------------------------------------
    def set_liquid_density_params(self, A: float, B: float = 0.0, C: float = 0.0, D: float = 0.0) -> None:
        if A <= 0.0:
            raise ValueError("liquid density coefficient A must be positive.")
        self.rhol_A, self.rhol_B, self.rhol_C, self.rhol_D = float(A), float(B), float(C), float(D)

    def set_vapor_pressure_params(self, A: float, B: float, C: float, Tb: float, *, units: str = "mmHg") -> None:
        if units == "mmHg":
            self.prs_C = float(C) - 273.15
            self.pressure_conversion = MMHG_TO_PA
        elif units == "bar":
            self.prs_C = float(C)
            self.pressure_conversion = BAR_TO_PA
        else:
            raise ValueError(f"vapor pressure units must be 'mmHg' or 'bar', got {units!r}")
        self.prs_A, self.prs_B = float(A), float(B)
        self.boiling_temperature = float(Tb)

    def set_liquid_cp(self, cpl: float) -> None:
        if cpl <= 0.0:
            raise ValueError("liquid cp must be positive.")
        self.cpl = float(cpl)

    def set_av_coefficients(self, coeffs) -> None:
        """Artificial-viscosity coefficients ordered (ml, nl, Tl, Ul, vl)."""
        c = [float(v) for v in coeffs]
        if len(c) != 5:
            raise ValueError(f"expected 5 AV coefficients (ml, nl, Tl, Ul, vl), got {len(c)}")
        self.av_ml, self.av_nl, self.av_Tl, self.av_Ul, self.av_vl = c

    def av_coefficients(self) -> Tuple[float, float, float, float, float]:
        return (self.av_ml, self.av_nl, self.av_Tl, self.av_Ul, self.av_vl)

    # ------------------------------------------------------------------
    # Closures
    # ------------------------------------------------------------------
    def liquid_density(self, Tl: float) -> float:
        if abs(self.rhol_B) < TINY and abs(self.rhol_C) < TINY and abs(self.rhol_D) < TINY:
            return self.rhol_A
        return self.rhol_A / self.rhol_B ** (1.0 + (1.0 - Tl / self.rhol_C) ** self.rhol_D)

    def diameter(self, ml: float, Tl: float) -> float:
        if ml < TINY:
            return 0.0
        return (6.0 * ml / (math.pi * self.liquid_density(Tl))) ** (1.0 / 3.0)

    def vapor_pressure(self) -> float:
        return 10.0 ** (self.prs_A - self.prs_B / (self.prs_C + self.boiling_temperature)) * self.pressure_conversion

    def latent_heat(self, W_fuel: float) -> float:
        return self.prs_B * GAS_CONSTANT / W_fuel

    def surface_mass_fraction(self, pressure: float, W_fuel: float, wtm: float) -> float:
        Xs = self.vapor_pressure() / pressure
        return W_fuel * Xs / (W_fuel * Xs + (1.0 - Xs) * wtm)

    def evaporation_rate(
        self, d: float, rho: float, D_fuel: float, Y_fuel: float, pressure: float, W_fuel: float, wtm: float
    ) -> float:
        if d <= 0.0:
            return 0.0
        Ys = self.surface_mass_fraction(pressure, W_fuel, wtm)
        Bm = (Ys - Y_fuel) / max(1.0 - Ys, TINY)
        return 2.0 * math.pi * d * rho * D_fuel * math.log(max(1.0 + Bm, TINY))

    def heat_exchange(self, mdot: float, d: float, rho: float, D_fuel: float, cp: float, T: float, Tl: float) -> float:
        if mdot <= TINY or d <= 0.0:
            return 0.0
        BT = math.expm1(mdot / (2.0 * math.pi * rho * D_fuel * d))
        return cp * (T - Tl) / BT

    @staticmethod
    def radial_drag(d: float, mu: float, V: float, Ul: float) -> float:
        return 3.0 * math.pi * d * mu * (V - Ul)

    @staticmethod
    def axial_drag(d: float, mu: float, u: float, vl: float) -> float:
        return 3.0 * math.pi * d * mu * (u - vl)
