"""
Shared builders for the flame-solver tests.

All cases use ConstantPropertyGas, so no mechanism file (and no Cantera) is needed:
- make_gas: ideal-gas mixture with constant transport
- make_counterflow: inert opposed-jet problem [Inlet, stagnation flow, Inlet] whose exact
  solution is the potential flow u = a L (1 - 2 z / L), V = a, lambda = -rho a^2
- make_free_flame: [Inlet, free flow, Outlet] with a prescribed temperature ramp
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Sequence

import numpy as np
import pytest

from assembly.residual_flow import FlowDomain
from core.types import ContinuationConfig, SolverConfig
from physics.boundaries import Inlet, Outlet
from properties.gas import parse_composition
from properties.ideal import ConstantPropertyGas
from solvers.sim1d import Sim1D


def make_gas(species: Sequence[str] = ("N2",), weights: Sequence[float] = (28.014,), **kwargs) -> ConstantPropertyGas:
    return ConstantPropertyGas(list(species), list(weights), **kwargs)


def make_counterflow(
    n_points: int = 6,
    length: float = 0.02,
    strain: float = 100.0,
    *,
    threshold: float = 0.0,
    species: Sequence[str] = ("N2",),
    weights: Sequence[float] = (28.014,),
    composition="N2:1.0",
    composition_right=None,
    cfg: SolverConfig | None = None,
) -> SimpleNamespace:
    gas = make_gas(species, weights)
    z = np.linspace(0.0, length, n_points)
    flow = FlowDomain(gas, z, flow_type="stagnation", name="flow")
    T = 300.0
    comp_right = composition if composition_right is None else composition_right
    rho = flow.density_at(T, parse_composition(composition, flow.species_names))
    rho_right = flow.density_at(T, parse_composition(comp_right, flow.species_names))
    mdot = rho * strain * length
    left = Inlet("fuel", temperature=T, composition=composition, mdot=mdot, spread_rate=strain)
    right = Inlet("oxidizer", temperature=T, composition=comp_right, mdot=rho_right * strain * length,
                  spread_rate=strain)
    if cfg is None:
        cfg = SolverConfig(continuation=ContinuationConfig(parameter=strain, threshold=threshold))
    sim = Sim1D([left, flow, right], cfg)
    return SimpleNamespace(sim=sim, flow=flow, left=left, right=right, rho=rho, a=strain, L=length, mdot=mdot)


def make_free_flame(n_points: int = 5, length: float = 0.01, T_hot: float = 2000.0) -> SimpleNamespace:
    gas = make_gas()
    z = np.linspace(0.0, length, n_points)
    flow = FlowDomain(gas, z, flow_type="free", name="flame", energy=True)
    inlet = Inlet("reactants", temperature=300.0, composition="N2:1.0", mdot=0.1)
    outlet = Outlet("products")
    sim = Sim1D([inlet, flow, outlet])
    sim.set_profile(1, "T", [0.0, 1.0], [300.0, T_hot])
    return SimpleNamespace(sim=sim, flow=flow, inlet=inlet, outlet=outlet)


@pytest.fixture
def counterflow() -> SimpleNamespace:
    return make_counterflow()


@pytest.fixture
def free_flame() -> SimpleNamespace:
    return make_free_flame()
