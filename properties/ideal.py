"""
Constant-property ideal-gas collaborator with frozen chemistry.

Implements the subset of the Cantera Solution interface that the flow assembler reads:
TPY, density, mean_molecular_weight, cp_mass, standard_enthalpies_RT, standard_cp_R,
net_production_rates, viscosity, thermal_conductivity, mix_diff_coeffs, binary_diff_coeffs,
thermal_diff_coeffs, molecular_weights, species_names, species_index, n_species.

Used by tests and by cases declaring mechanism "ideal"; no mechanism file is needed.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence

import numpy as np

from core.types import FloatArray, GAS_CONSTANT, ONE_ATM

T_REF = 298.15


class ConstantPropertyGas:
    """Ideal-gas mixture with constant cp_R per species and constant transport coefficients."""

    def __init__(
        self,
        species: Sequence[str],
        molecular_weights: Sequence[float],
        *,
        cp_R: Optional[Sequence[float]] = None,
        viscosity: float = 1.8e-5,
        thermal_conductivity: float = 0.026,
        diffusivity: float = 2.0e-5,
        thermal_diffusivity: float = 0.0,
        pressure: float = ONE_ATM,
    ) -> None:
        self._names = [str(s) for s in species]
        if not self._names:
            raise ValueError("ConstantPropertyGas needs at least one species.")
        if len(set(self._names)) != len(self._names):
            raise ValueError(f"duplicate species names: {self._names}")
        self._W = np.asarray(molecular_weights, dtype=np.float64)
        if self._W.shape != (len(self._names),) or np.any(self._W <= 0.0):
            raise ValueError("molecular_weights must be positive, one per species.")
        K = len(self._names)
        self._cp_R = np.full(K, 3.5) if cp_R is None else np.asarray(cp_R, dtype=np.float64)
        if self._cp_R.shape != (K,):
            raise ValueError(f"cp_R shape {self._cp_R.shape} does not match {K} species")
        for name, v in (("viscosity", viscosity), ("thermal_conductivity", thermal_conductivity),
                        ("diffusivity", diffusivity)):
            if v <= 0.0:
                raise ValueError(f"{name} must be positive, got {v}")
        self._mu = float(viscosity)
        self._k = float(thermal_conductivity)
        self._D = float(diffusivity)
        self._DT = float(thermal_diffusivity)
        self._index: Dict[str, int] = {n: i for i, n in enumerate(self._names)}
        self._transport_model = "mixture-averaged"
        self._T = 300.0
        self._P = float(pressure)
        self._Y = np.zeros(K)
        self._Y[0] = 1.0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def TPY(self):
        return self._T, self._P, self._Y.copy()

    @TPY.setter
    def TPY(self, values) -> None:
        T, P, Y = values
        if not (np.isfinite(T) and T > 0.0):
            raise ValueError(f"temperature must be positive, got {T}")
        self._T = float(T)
        self._P = float(P)
        self._Y = self._mass_fractions(Y)

    def _mass_fractions(self, Y) -> FloatArray:
        if isinstance(Y, Mapping):
            arr = np.zeros(self.n_species)
            for name, v in Y.items():
                arr[self.species_index(name)] = float(v)
        else:
            arr = np.array(Y, dtype=np.float64, copy=True)
        if arr.shape != (self.n_species,):
            raise ValueError(f"Y shape {arr.shape} does not match {self.n_species} species")
        arr = np.maximum(arr, 0.0)
        s = float(np.sum(arr))
        if s <= 0.0:
            raise ValueError("mass fractions must have a positive sum.")
        return arr / s

    @property
    def T(self) -> float:
        return self._T

    @property
    def P(self) -> float:
        return self._P

    @property
    def Y(self) -> FloatArray:
        return self._Y.copy()

    @property
    def X(self) -> FloatArray:
        return self._Y * self.mean_molecular_weight / self._W

    # ------------------------------------------------------------------
    # Thermo / kinetics
    # ------------------------------------------------------------------
    @property
    def species_names(self):
        return list(self._names)

    @property
    def n_species(self) -> int:
        return len(self._names)

    def species_index(self, name: str) -> int:
        if name not in self._index:
            raise ValueError(f"species '{name}' not in {self._names}")
        return self._index[name]

    @property
    def molecular_weights(self) -> FloatArray:
        return self._W.copy()

    @property
    def mean_molecular_weight(self) -> float:
        return 1.0 / float(np.sum(self._Y / self._W))

    @property
    def density(self) -> float:
        return self._P * self.mean_molecular_weight / (GAS_CONSTANT * self._T)

    @property
    def cp_mass(self) -> float:
        return GAS_CONSTANT * float(np.sum(self._Y * self._cp_R / self._W))

    @property
    def standard_cp_R(self) -> FloatArray:
        return self._cp_R.copy()

    @property
    def standard_enthalpies_RT(self) -> FloatArray:
        return self._cp_R * (self._T - T_REF) / self._T

    @property
    def net_production_rates(self) -> FloatArray:
        return np.zeros(self.n_species)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    @property
    def transport_model(self) -> str:
        return self._transport_model

    @transport_model.setter
    def transport_model(self, model: str) -> None:
        self._transport_model = str(model)

    @property
    def viscosity(self) -> float:
        return self._mu

    @property
    def thermal_conductivity(self) -> float:
        return self._k

    @property
    def mix_diff_coeffs(self) -> FloatArray:
        return np.full(self.n_species, self._D)

    @property
    def binary_diff_coeffs(self) -> FloatArray:
        return np.full((self.n_species, self.n_species), self._D)

    @property
    def thermal_diff_coeffs(self) -> FloatArray:
        return np.full(self.n_species, self._DT)
