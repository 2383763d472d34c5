"""
Flow-domain residual assembly (stagnation, free and spray variants).

Tests:
1. The potential-flow state of an inert opposed-jet problem has a zero residual
2. Repeated evaluations at the same state give identical residuals (property sync)
3. eval_point rewrites exactly rows j-1..j+1 and matches a full evaluation there
4. Edge species rows: the excess species carries 1 - sum(Y)
5. Transient term -rdt * (x - x_prev) only enters differential rows
6. Invalid points are reset to the last valid state, or raise without one
7. A spray flow without droplet mass reproduces the gas rows of the plain stagnation flow;
   with droplets, the droplet rows and the evaporation, drag and heat-exchange terms in the gas
   rows match the film-theory closures evaluated by hand
8. Radiation subtracts q_rad / (rho cp) from the interior energy rows
9. Multicomponent transport: fluxes sum to zero and the solved species sum to one
10. Non-finite production rates are stored as zero and the residual stays finite
11. Setup errors: unknown flow type, spray without model, Soret without multicomponent
"""

from __future__ import annotations

import math
import warnings

import numpy as np
import pytest

from assembly.residual_flow import FlowDomain, InvalidStateError
from core.types import GAS_CONSTANT, MMHG_TO_PA, STEFAN_BOLTZMANN, SetupError, SprayConfig
from physics.boundaries import Inlet, SprayInlet
from physics.radiation import absorption_co2, absorption_h2o
from physics.spray import SprayModel
from properties.ideal import ConstantPropertyGas
from solvers.sim1d import Sim1D

from conftest import make_counterflow, make_gas


def _point_rows(layout, d: int, nc: int, j0: int, j1: int) -> np.ndarray:
    start = layout.index(d, 0, j0)
    stop = layout.index(d, nc - 1, j1) + 1
    return np.arange(start, stop)


# =============================================================================
# Steady residual
# =============================================================================
def test_potential_flow_is_a_steady_solution(counterflow):
    sim = counterflow.sim
    u = [sim.value(1, "velocity", j) for j in range(counterflow.flow.n_points)]
    z = counterflow.flow.grid
    np.testing.assert_allclose(u, counterflow.a * counterflow.L * (1.0 - 2.0 * z / counterflow.L), atol=1e-12)

    f = sim.eval()
    assert f.shape == (sim.system_size,)
    np.testing.assert_allclose(f, 0.0, atol=1e-8)


def test_repeated_evaluation_is_idempotent():
    case = make_counterflow(
        species=("H2", "N2"), weights=(2.016, 28.014),
        composition="H2:0.2, N2:0.8", composition_right="N2:1.0",
    )
    res = case.sim.residual
    x = case.sim.solution
    f1, m1 = res.eval(x)
    f1 = f1.copy()
    f2, m2 = res.eval(x)
    np.testing.assert_array_equal(f1, f2)
    np.testing.assert_array_equal(m1, m2)


def test_eval_point_matches_full_evaluation():
    case = make_counterflow(
        species=("H2", "N2"), weights=(2.016, 28.014),
        composition="H2:0.2, N2:0.8", composition_right="N2:1.0",
    )
    res = case.sim.residual
    flow = case.flow
    layout = res.layout
    d, j, nc = 1, 2, flow.n_components

    x0 = case.sim.solution
    f0, m0 = res.eval(x0)
    f0 = f0.copy()

    x1 = x0.copy()
    x1[layout.index(d, flow.iY0, j)] += 0.01
    x1[layout.index(d, flow.iU, j)] *= 1.1

    r = f0.copy()
    mask = m0.copy()
    res.eval_point(x1, r, mask, d, j)
    f1, _ = res.eval(x1)

    rows = _point_rows(layout, d, nc, j - 1, j + 1)
    np.testing.assert_allclose(r[rows], f1[rows], rtol=1e-12, atol=1e-12)
    outside = np.setdiff1d(np.arange(res.size), rows)
    np.testing.assert_array_equal(r[outside], f0[outside])


def test_edge_excess_species_row():
    case = make_counterflow(
        species=("H2", "N2"), weights=(2.016, 28.014),
        composition="H2:0.2, N2:0.8", composition_right="N2:1.0",
    )
    sim, flow = case.sim, case.flow
    sim.eval()
    assert flow.k_excess_left == 1
    assert flow.k_excess_right == 1

    sim.set_value(1, "N2", 0, sim.value(1, "N2", 0) - 0.1)
    f = sim.eval()
    row = sim.residual.layout.index(1, flow.iY0 + 1, 0)
    assert f[row] == pytest.approx(0.1)


# =============================================================================
# Transient term and state hygiene
# =============================================================================
def test_transient_term_on_differential_rows(counterflow):
    res = counterflow.sim.residual
    flow = counterflow.flow
    layout = res.layout
    x0 = counterflow.sim.solution
    res.init_time_integration(x0)
    try:
        x1 = x0.copy()
        iV = layout.index(1, flow.iV, 2)
        iU = layout.index(1, flow.iU, 2)
        x1[iV] += 1.0
        x1[iU] += 1.0
        f_t, mask = res.eval(x1, rdt=10.0)
        f_t = f_t.copy()
        f_s, _ = res.eval(x1)
    finally:
        res.clear_time_integration()

    assert mask[iV] == 1.0 and mask[iU] == 0.0
    assert f_t[iV] - f_s[iV] == pytest.approx(-10.0)
    assert f_t[iU] == pytest.approx(f_s[iU])


def test_invalid_points_are_reset(counterflow):
    sim, flow = counterflow.sim, counterflow.flow
    x2d = sim.residual.layout.view(sim.solution, 1).copy()
    bad = x2d.copy()
    bad[3, flow.iT] = -5.0

    flow.last_valid = None
    with pytest.raises(InvalidStateError):
        flow.correct_invalid_values(bad.copy())

    flow.store_valid(x2d)
    assert flow.correct_invalid_values(bad) == 1
    np.testing.assert_array_equal(bad, x2d)


def test_reset_bad_values_renormalizes():
    case = make_counterflow(species=("H2", "N2"), weights=(2.016, 28.014), composition="H2:0.2, N2:0.8")
    flow = case.flow
    x2d = case.sim.residual.layout.view(case.sim.solution, 1).copy()
    x2d[1, flow.iY] = [-0.1, 0.5]
    flow.reset_bad_values(x2d)
    np.testing.assert_allclose(x2d[1, flow.iY], [0.0, 1.0])


# =============================================================================
# Spray flow
# =============================================================================
def _spray_model() -> SprayModel:
    return SprayModel.from_config(
        SprayConfig(fuel="C2H5OH", rhol_A=785.0, prs_A=8.20417, prs_B=1642.89, prs_C=230.3,
                    boiling_temperature=351.4, cpl=2570.0)
    )


def _opposed_sim(flow_type: str, gas, energy: bool = False) -> Sim1D:
    z = np.linspace(0.0, 0.01, 5)
    kwargs = {"spray": _spray_model()} if flow_type == "spray" else {}
    flow = FlowDomain(gas, z, flow_type=flow_type, name=flow_type, energy=energy, **kwargs)
    inlet_kw = dict(temperature=300.0, composition="N2:1.0", mdot=0.5, spread_rate=50.0)
    if flow_type == "spray":
        left = SprayInlet("fuel", droplets={"ml": 0.0, "nl": 0.0, "Tl": 300.0}, **inlet_kw)
    else:
        left = Inlet("fuel", **inlet_kw)
    right = Inlet("oxidizer", **inlet_kw)
    return Sim1D([left, flow, right])


def test_spray_without_droplets_matches_gas_rows():
    gas = make_gas(("C2H5OH", "N2"), (46.07, 28.014))
    plain = _opposed_sim("stagnation", gas)
    spray = _opposed_sim("spray", gas)

    f_plain = plain.residual.layout.view(plain.eval(), 1)
    f_spray = spray.residual.layout.view(spray.eval(), 1)
    n_gas = plain.domain(1).n_components
    assert spray.domain(1).n_components == n_gas + 5
    np.testing.assert_allclose(f_spray[:, :n_gas], f_plain, rtol=1e-12, atol=1e-12)

    flow = spray.domain(1)
    # zero droplet mass: droplets relax to the gas velocity and temperature
    x2d = spray.residual.layout.view(spray.solution, 1)
    j = 2
    assert f_spray[j, flow.iUl] == pytest.approx(x2d[j, flow.iV] - x2d[j, flow.iUl])
    assert f_spray[j, flow.iTl] == pytest.approx(x2d[j, flow.iT] - x2d[j, flow.iTl])
    assert np.all(flow.spray_mdot == 0.0)


def test_spray_inlet_pins_droplet_state():
    gas = make_gas(("C2H5OH", "N2"), (46.07, 28.014))
    sim = _opposed_sim("spray", gas)
    flow = sim.domain(1)
    sim.set_value(1, "ml", 0, 1.0e-9)
    f = sim.residual.layout.view(sim.eval(), 1)
    assert f[0, flow.iml] == pytest.approx(1.0e-9)
    assert f[0, flow.iTl] == pytest.approx(0.0)


def test_spray_droplet_rows_and_gas_coupling():
    gas = make_gas(("C2H5OH", "N2"), (46.07, 28.014))
    plain = _opposed_sim("stagnation", gas, energy=True)
    spray = _opposed_sim("spray", gas, energy=True)
    flow = spray.domain(1)
    ml, nl, Ul, vl, Tl = 1.0e-12, 1.0e9, 20.0, 0.5, 290.0
    for name, value in (("ml", ml), ("nl", nl), ("Ul", Ul), ("vl", vl), ("Tl", Tl)):
        spray.set_flat_profile(1, name, value)

    f_gas = plain.residual.layout.view(plain.eval().copy(), 1)
    f = spray.residual.layout.view(spray.eval().copy(), 1)
    x2d = spray.residual.layout.view(spray.solution, 1)

    j, kF = 2, flow.k_fuel
    props = flow.props
    rho, cp, wtm = props.rho[j], props.cp[j], props.wtm[j]
    mu, D = props.visc_point[j], props.diff_point[j, kF]
    u, V, T = x2d[j, flow.iU], x2d[j, flow.iV], x2d[j, flow.iT]
    W_fuel = 46.07
    assert x2d[j, flow.iY0 + kF] == 0.0

    # film evaporation with Antoine vapor pressure at the boiling point
    d = (6.0 * ml / (math.pi * 785.0)) ** (1.0 / 3.0)
    Xs = 10.0 ** (8.20417 - 1642.89 / (230.3 - 273.15 + 351.4)) * MMHG_TO_PA / flow.pressure
    Ys = W_fuel * Xs / (W_fuel * Xs + (1.0 - Xs) * wtm)
    Bm = Ys / (1.0 - Ys)
    mdot = 2.0 * math.pi * d * rho * D * math.log1p(Bm)
    q = cp * (T - Tl) / Bm
    Fr = 3.0 * math.pi * d * mu * (V - Ul)
    fz = 3.0 * math.pi * d * mu * (u - vl)
    Lv = 1642.89 * GAS_CONSTANT / W_fuel
    S = nl * mdot

    assert flow.spray_d[j] == pytest.approx(d, rel=1e-12)
    assert flow.spray_mdot[j] == pytest.approx(mdot, rel=1e-9)
    assert mdot > 0.0

    # droplet rows on flat droplet profiles
    assert f[j, flow.iUl] == pytest.approx(Fr / ml - Ul**2, rel=1e-9)
    assert f[j, flow.ivl] == pytest.approx(fz / ml, rel=1e-9)
    assert f[j, flow.iTl] == pytest.approx(mdot * (q - Lv) / (ml * 2570.0), rel=1e-9)
    assert f[j, flow.iml] == pytest.approx(-mdot, rel=1e-9)
    assert f[j, flow.inl] == pytest.approx(-2.0 * nl * Ul, rel=1e-12)

    # source terms fed back into the gas rows
    assert f[j, flow.iU] - f_gas[j, flow.iU] == pytest.approx(S, rel=1e-8)
    assert f[j, flow.iV] - f_gas[j, flow.iV] == pytest.approx((-nl * Fr + S * (Ul - V)) / rho, rel=1e-8)
    assert f[j, flow.iT] - f_gas[j, flow.iT] == pytest.approx(-nl * mdot * q / (rho * cp), rel=1e-8)
    np.testing.assert_allclose(f[j, flow.iY] - f_gas[j, flow.iY], [S / rho, -S / rho], rtol=1e-8)
    assert f[j, flow.iL] == pytest.approx(f_gas[j, flow.iL])


# =============================================================================
# Radiation, multicomponent transport and production rates
# =============================================================================
def test_radiation_enters_the_energy_rows():
    gas = make_gas(("CO2", "H2O", "N2"), (44.01, 18.015, 28.014))
    flow = FlowDomain(gas, np.linspace(0.0, 0.01, 5), energy=True)
    kw = dict(composition="CO2:0.1, H2O:0.2, N2:0.7", mdot=0.5)
    sim = Sim1D([Inlet("left", temperature=300.0, **kw), flow, Inlet("right", temperature=400.0, **kw)])
    sim.set_profile(1, "T", [0.0, 0.5, 1.0], [300.0, 1500.0, 400.0])
    layout = sim.residual.layout

    f_off = layout.view(sim.eval().copy(), 1)
    flow.enable_radiation()
    flow.set_boundary_emissivities(0.5, 0.2)
    f_on = layout.view(sim.eval().copy(), 1)

    x2d = layout.view(sim.solution, 1)
    T = x2d[:, flow.iT]
    Y = x2d[:, flow.iY]
    X = (Y / flow.W) / np.sum(Y / flow.W, axis=1, keepdims=True)
    k_P = flow.pressure * (X[:, 0] * absorption_co2(T) + X[:, 1] * absorption_h2o(T))
    sigma = STEFAN_BOLTZMANN
    q_rad = 2.0 * k_P * (2.0 * sigma * T**4 - 0.5 * sigma * T[0] ** 4 - 0.2 * sigma * T[-1] ** 4)
    assert np.all(q_rad[1:-1] > 0.0)

    expected = np.zeros_like(f_on)
    expected[1:-1, flow.iT] = -q_rad[1:-1] / (flow.props.rho[1:-1] * flow.props.cp[1:-1])
    np.testing.assert_allclose(f_on - f_off, expected, rtol=1e-9, atol=1e-12)


def test_multicomponent_flow_keeps_species_sum():
    case = make_counterflow(
        species=("H2", "N2"), weights=(2.016, 28.014),
        composition="H2:0.2, N2:0.8", composition_right="N2:1.0",
    )
    sim, flow = case.sim, case.flow
    flow.set_transport_model("multicomponent")
    assert flow.props.binary is not None

    f = sim.residual.layout.view(sim.eval().copy(), 1)
    np.testing.assert_allclose(flow.flux.sum(axis=1), 0.0, atol=1e-12)
    assert np.any(np.abs(flow.flux) > 0.0)
    # with sum(Y) = 1 the interior species rows cancel
    np.testing.assert_allclose(f[1:-1, flow.iY].sum(axis=1), 0.0, atol=1e-9)

    result = sim.solve(refine_grid=False)
    assert result.success, result.history
    Y = sim.residual.layout.view(sim.solution, 1)[:, flow.iY]
    np.testing.assert_allclose(Y[[0, -1]].sum(axis=1), 1.0, atol=1e-6)
    np.testing.assert_allclose(Y.sum(axis=1), 1.0, atol=1e-6)
    assert np.all(Y >= -1e-7)


class _OverflowingGas(ConstantPropertyGas):
    @property
    def net_production_rates(self):
        return np.array([np.nan, np.inf])


def test_nonfinite_production_rates_are_screened():
    gas = _OverflowingGas(["H2", "N2"], [2.016, 28.014])
    flow = FlowDomain(gas, np.linspace(0.0, 0.01, 5), energy=True)
    kw = dict(temperature=300.0, composition="H2:0.1, N2:0.9", mdot=0.5)
    sim = Sim1D([Inlet("left", **kw), flow, Inlet("right", **kw)])
    sim.set_profile(1, "T", [0.0, 0.5, 1.0], [300.0, 900.0, 300.0])

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        f = sim.eval()
    assert np.all(np.isfinite(f))
    np.testing.assert_array_equal(flow.props.wdot, 0.0)


# =============================================================================
# Setup errors
# =============================================================================
def test_flow_setup_errors():
    gas = make_gas()
    z = np.linspace(0.0, 0.01, 4)
    with pytest.raises(ValueError):
        FlowDomain(gas, z, flow_type="premixed")
    with pytest.raises(SetupError):
        FlowDomain(gas, z, flow_type="spray")
    with pytest.raises(ValueError):
        FlowDomain(gas, z, transport_model="unity-Lewis")
    with pytest.raises(ValueError):
        FlowDomain(gas, [0.0, 0.01])

    flow = FlowDomain(gas, z, soret=True)
    x2d = np.zeros((4, flow.n_components))
    x2d[:, flow.iT] = 300.0
    x2d[:, flow.iY0] = 1.0
    with pytest.raises(SetupError):
        flow.finalize(x2d)
    with pytest.raises(SetupError):
        flow.set_fixed_point(0.005, 900.0)
