"""
Optically thin radiative heat loss (Liu & Rogg two-band model).

The Planck mean absorption coefficient is built from CO2 and H2O partial pressures only:
    k_P = sum_i P * X_i * k_i(T) / k_ref,   k_ref = 1 atm
    q_rad = 2 k_P (2 sigma T^4 - eps_L sigma T_L^4 - eps_R sigma T_R^4)
where T_L, T_R are the temperatures at the domain ends.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from core.types import FloatArray, ONE_ATM, STEFAN_BOLTZMANN

C_H2O = np.array([-0.23093, -1.12390, 9.41530, -2.99880, 0.51382, -1.86840e-5])
C_CO2 = np.array([18.741, -121.310, 273.500, -194.050, 56.310, -5.8169])
K_P_REF = 1.0 * ONE_ATM


def absorption_h2o(T: FloatArray) -> FloatArray:
    """Planck mean absorption of H2O per unit partial pressure, polynomial in 1000/T."""
    t = 1000.0 / np.asarray(T, dtype=np.float64)
    return np.polynomial.polynomial.polyval(t, C_H2O) / K_P_REF


def absorption_co2(T: FloatArray) -> FloatArray:
    """Planck mean absorption of CO2 per unit partial pressure, polynomial in T/1000."""
    t = np.asarray(T, dtype=np.float64) / 1000.0
    return np.polynomial.polynomial.polyval(t, C_CO2) / K_P_REF


def planck_mean_absorption(
    T: FloatArray,
    pressure: float,
    X_co2: Optional[FloatArray],
    X_h2o: Optional[FloatArray],
) -> FloatArray:
    k_P = np.zeros_like(np.asarray(T, dtype=np.float64))
    if X_h2o is not None:
        k_P += pressure * np.asarray(X_h2o) * absorption_h2o(T)
    if X_co2 is not None:
        k_P += pressure * np.asarray(X_co2) * absorption_co2(T)
    return k_P


def radiative_heat_loss(
    T: FloatArray,
    pressure: float,
    X_co2: Optional[FloatArray],
    X_h2o: Optional[FloatArray],
    *,
    T_left: float,
    T_right: float,
    emissivity_left: float,
    emissivity_right: float,
) -> FloatArray:
    """Volumetric radiative loss [W/m^3] at the given points."""
    T = np.asarray(T, dtype=np.float64)
    k_P = planck_mean_absorption(T, pressure, X_co2, X_h2o)
    rad_left = emissivity_left * STEFAN_BOLTZMANN * T_left**4
    rad_right = emissivity_right * STEFAN_BOLTZMANN * T_right**4
    return 2.0 * k_P * (2.0 * STEFAN_BOLTZMANN * T**4 - rad_left - rad_right)
