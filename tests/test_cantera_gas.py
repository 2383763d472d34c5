"""
Gas collaborator construction and a reacting opposed-jet residual on a Cantera mechanism.

Tests:
1. parse_composition: strings, mappings, arrays, unknown species, normalization
2. The 'ideal' backend requires species weights
3. Cantera backend (h2o2.yaml, bundled with Cantera): H2/air opposed jets with energy on give a
   finite residual, a banded FD Jacobian of full size, and an edge T row pinned to the inlet
"""

from __future__ import annotations

import numpy as np
import pytest

from assembly.build_fd_jacobian import build_fd_jacobian
from assembly.residual_flow import FlowDomain
from core.types import FlowConfig
from physics.boundaries import Inlet
from properties.gas import build_gas_model, parse_composition
from solvers.sim1d import Sim1D


# =============================================================================
# Composition parsing and the ideal backend
# =============================================================================
def test_parse_composition_forms():
    names = ("H2", "O2", "N2")
    np.testing.assert_allclose(parse_composition("H2:1, N2:3", names), [0.25, 0.0, 0.75])
    np.testing.assert_allclose(parse_composition({"O2": 2.0, "N2": 2.0}, names), [0.0, 0.5, 0.5])
    np.testing.assert_allclose(parse_composition([1.0, 1.0, 2.0], names), [0.25, 0.25, 0.5])

    with pytest.raises(KeyError):
        parse_composition("AR:1", names)
    with pytest.raises(ValueError):
        parse_composition("H2=1", names)
    with pytest.raises(ValueError):
        parse_composition([1.0, 0.0], names)
    with pytest.raises(ValueError):
        parse_composition({"H2": 0.0}, names)


def test_ideal_backend_needs_species():
    with pytest.raises(ValueError):
        build_gas_model("ideal", FlowConfig())
    model = build_gas_model("ideal", FlowConfig(), ideal_species={"N2": 28.014, "O2": 31.998})
    assert model.backend == "ideal"
    assert model.gas_names == ("N2", "O2")
    assert model.name_to_idx["O2"] == 1


# =============================================================================
# Cantera backend
# =============================================================================
def _h2_air_sim():
    pytest.importorskip("cantera")
    model = build_gas_model("h2o2.yaml", FlowConfig(energy=True))
    assert model.backend == "cantera"
    z = np.linspace(0.0, 0.02, 8)
    flow = FlowDomain(model.gas, z, energy=True)
    fuel = Inlet("fuel", temperature=300.0, composition="H2:0.1, N2:0.9", mdot=0.5)
    oxidizer = Inlet("oxidizer", temperature=600.0, composition="O2:0.23, N2:0.77", mdot=0.5)
    return Sim1D([fuel, flow, oxidizer]), flow


def test_cantera_reacting_residual_is_finite():
    sim, flow = _h2_air_sim()
    assert flow.n_components == 4 + flow.n_species
    f = sim.eval()
    assert f.shape == (sim.system_size,)
    assert np.all(np.isfinite(f))

    # energy on: the edge temperature rows are T - T_inlet
    sim.set_value(1, "T", 0, 310.0)
    f = sim.residual.layout.view(sim.eval(), 1)
    assert f[0, flow.iT] == pytest.approx(10.0)
    assert f[-1, flow.iT] == pytest.approx(sim.value(1, "T", flow.n_points - 1) - 600.0)


def test_cantera_fd_jacobian_shape():
    sim, _ = _h2_air_sim()
    J, info = build_fd_jacobian(sim.residual, sim.solution)
    assert J.shape == (sim.system_size, sim.system_size)
    assert info["n_cols"] == sim.system_size
    assert np.all(np.isfinite(J.toarray()))
