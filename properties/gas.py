"""
Gas-phase collaborator construction:
- Cantera Solution from a mechanism file (mixture-averaged or multicomponent transport).
- Constant-property ideal gas when the mechanism is "ideal" (no Cantera needed).
- Composition parsing ("N2:0.79, O2:0.21", mapping, or array) into mass-fraction arrays.
- Mass-fraction sanitizing used before every property call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

import logging
import numpy as np

try:
    import cantera as ct
except Exception as e:  # pragma: no cover - environment dependent
    ct = None
    _ct_import_error = e
else:
    _ct_import_error = None

from core.types import FloatArray, FlowConfig
from properties.ideal import ConstantPropertyGas

logger = logging.getLogger(__name__)

_CANTERA_TRANSPORT = {"mixture-averaged": "mixture-averaged", "multicomponent": "multicomponent"}


def _sanitize_mass_fractions(Y: np.ndarray, eps: float = 1.0e-30) -> np.ndarray:
    Y = np.array(Y, dtype=np.float64, copy=True)
    Y = np.maximum(Y, 0.0)
    s = float(np.sum(Y))
    if s <= eps or not np.isfinite(s):
        j = int(np.argmax(Y)) if np.any(Y > 0.0) else (Y.size - 1)
        Y[:] = 0.0
        Y[j] = 1.0
        return Y
    Y /= s
    return Y


@dataclass(slots=True)
class GasPropertiesModel:
    gas: Any
    P_ref: float
    gas_names: Tuple[str, ...]
    name_to_idx: Dict[str, int]
    backend: str


def build_gas_model(
    mechanism: str,
    flow: FlowConfig,
    *,
    phase: Optional[str] = None,
    ideal_species: Optional[Mapping[str, float]] = None,
    ideal_options: Optional[Mapping[str, float]] = None,
) -> GasPropertiesModel:
    """
    Construct the gas collaborator.

    mechanism == "ideal" builds ConstantPropertyGas from ideal_species (name -> W [kg/kmol]);
    anything else is passed to cantera.Solution with the configured transport model.
    """
    if mechanism == "ideal":
        if not ideal_species:
            raise ValueError("mechanism 'ideal' requires an 'ideal_species' mapping name -> W.")
        gas = ConstantPropertyGas(
            list(ideal_species.keys()),
            list(ideal_species.values()),
            pressure=float(flow.pressure),
            **dict(ideal_options or {}),
        )
        backend = "ideal"
    else:
        if ct is None:
            raise ImportError(f"Cantera is required for gas properties: {_ct_import_error}")
        transport = _CANTERA_TRANSPORT[flow.transport_model]
        if phase:
            gas = ct.Solution(str(mechanism), phase, transport_model=transport)
        else:
            gas = ct.Solution(str(mechanism), transport_model=transport)
        backend = "cantera"

    gas_names = tuple(gas.species_names)
    name_to_idx = {name: i for i, name in enumerate(gas_names)}
    logger.info("Gas model: backend=%s species=%d P=%.6g Pa", backend, len(gas_names), flow.pressure)
    return GasPropertiesModel(
        gas=gas,
        P_ref=float(flow.pressure),
        gas_names=gas_names,
        name_to_idx=name_to_idx,
        backend=backend,
    )


def parse_composition(composition: Any, species_names) -> FloatArray:
    """
    Mass fractions in mechanism order from a "A:0.5, B:0.5" string, a mapping or an array.

    Values are normalized; unknown species names raise KeyError.
    """
    names = list(species_names)
    index = {n: i for i, n in enumerate(names)}
    Y = np.zeros(len(names), dtype=np.float64)
    if isinstance(composition, str):
        items = {}
        for part in composition.split(","):
            part = part.strip()
            if not part:
                continue
            name, sep, value = part.partition(":")
            if not sep:
                raise ValueError(f"bad composition entry {part!r}; expected 'NAME:value'")
            items[name.strip()] = float(value)
        composition = items
    if isinstance(composition, Mapping):
        for name, value in composition.items():
            if name not in index:
                raise KeyError(f"Unknown species '{name}' in composition. Known: {names}")
            Y[index[name]] = float(value)
    else:
        arr = np.asarray(composition, dtype=np.float64)
        if arr.shape != Y.shape:
            raise ValueError(f"composition shape {arr.shape} does not match {Y.size} species")
        Y[:] = arr
    if np.any(Y < 0.0) or float(np.sum(Y)) <= 0.0:
        raise ValueError("composition must be non-negative with a positive sum.")
    return Y / float(np.sum(Y))
