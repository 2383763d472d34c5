"""
Derived per-point property cache of a flow domain.

Scope:
- Point properties for j0..j1 (inclusive): rho, mean molecular weight, cp, wdot, h_RT, cp_R,
  and (when requested) point viscosity / mixture diffusivities for droplet closures.
- Midpoint transport for m in j0..j1-1: viscosity (zero for non-viscous flows), conductivity,
  mixture-averaged diffusivities, binary diffusivities (multicomponent) and thermal diffusion
  coefficients (Soret).

The cache is never authoritative: every assembly re-syncs it from the state vector right before
use. Mass fractions are sanitized (clipped and normalized) before each collaborator call and the
temperature is floored at T_FLOOR so trial iterates can always be evaluated. Non-finite
production rates (overflowing kinetics at extreme trial temperatures) are stored as zero.

Array convention: rows are space, e.g. wdot.shape == (n_points, K), diff.shape == (n_points-1, K).
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from core.types import FloatArray
from properties.gas import _sanitize_mass_fractions

logger = logging.getLogger(__name__)

T_FLOOR = 1.0


class PropertyCache:
    def __init__(
        self,
        gas: Any,
        pressure: float,
        n_points: int,
        *,
        transport_model: str = "mixture-averaged",
        soret: bool = False,
        viscous: bool = True,
        point_transport: bool = False,
    ) -> None:
        self.gas = gas
        self.pressure = float(pressure)
        self.transport_model = transport_model
        self.soret = bool(soret)
        self.viscous = bool(viscous)
        self.point_transport = bool(point_transport)
        self.n_species = int(gas.n_species)
        self.resize(n_points)

    def resize(self, n_points: int) -> None:
        n = int(n_points)
        K = self.n_species
        self.n_points = n
        self.rho = np.zeros(n)
        self.wtm = np.zeros(n)
        self.cp = np.zeros(n)
        self.wdot = np.zeros((n, K))
        self.h_RT = np.zeros((n, K))
        self.cp_R = np.zeros((n, K))
        self.visc_point = np.zeros(n)
        self.diff_point = np.zeros((n, K))

        m = max(n - 1, 0)
        self.visc = np.zeros(m)
        self.tcon = np.zeros(m)
        self.diff = np.zeros((m, K))
        self.binary = np.zeros((m, K, K)) if self.transport_model == "multicomponent" else None
        self.dthermal = np.zeros((m, K)) if self.soret else None

    def _set_state(self, T: float, Y: FloatArray) -> None:
        self.gas.TPY = max(float(T), T_FLOOR), self.pressure, _sanitize_mass_fractions(Y)

    def update_thermo(self, T: FloatArray, Y: FloatArray, j0: int, j1: int) -> None:
        """Sync point properties for points j0..j1 (inclusive)."""
        gas = self.gas
        for j in range(j0, j1 + 1):
            self._set_state(T[j], Y[j])
            self.rho[j] = gas.density
            self.wtm[j] = gas.mean_molecular_weight
            self.cp[j] = gas.cp_mass
            wdot = np.asarray(gas.net_production_rates, dtype=np.float64)
            if not np.all(np.isfinite(wdot)):
                logger.debug("point %d: non-finite production rates at T=%.6g set to zero", j, T[j])
                wdot = np.where(np.isfinite(wdot), wdot, 0.0)
            self.wdot[j] = wdot
            self.h_RT[j] = gas.standard_enthalpies_RT
            self.cp_R[j] = gas.standard_cp_R
            if self.point_transport:
                self.visc_point[j] = gas.viscosity if self.viscous else 0.0
                self.diff_point[j] = gas.mix_diff_coeffs

    def update_transport(self, T: FloatArray, Y: FloatArray, j0: int, j1: int) -> None:
        """Sync midpoint transport for midpoints j0..j1-1 from averaged T and Y."""
        gas = self.gas
        for m in range(j0, j1):
            self._set_state(0.5 * (T[m] + T[m + 1]), 0.5 * (Y[m] + Y[m + 1]))
            self.visc[m] = gas.viscosity if self.viscous else 0.0
            self.tcon[m] = gas.thermal_conductivity
            self.diff[m] = gas.mix_diff_coeffs
            if self.binary is not None:
                self.binary[m] = gas.binary_diff_coeffs
            if self.dthermal is not None:
                self.dthermal[m] = gas.thermal_diff_coeffs
