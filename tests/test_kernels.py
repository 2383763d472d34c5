"""
Discretization kernels and physical closures.

Tests:
1. Upwind differences pick the one-sided stencil from the sign of u
2. Central divergence is exact on a quadratic
3. Mixture-averaged fluxes sum to zero; Stefan-Maxwell reduces to Fick for a binary mixture
4. Soret correction adds -D_T * dlnT/dz
5. Radiation: no absorbers -> no loss; black walls at the gas temperature -> no loss
6. Spray closures: zero mass -> zero diameter/evaporation/heat; DIPPR constant-density case;
   Antoine vapor pressure of ethanol at its boiling point is ~1 atm
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from core.types import ONE_ATM, STEFAN_BOLTZMANN, SprayConfig
from physics.flux_convective import upwind_gradient, upwind_gradients
from physics.flux_diffusive import (
    central_divergence,
    mixture_averaged_fluxes,
    multicomponent_fluxes,
    soret_correction,
    stefan_maxwell_flux,
)
from physics.radiation import C_CO2, C_H2O, absorption_co2, absorption_h2o, radiative_heat_loss
from physics.spray import SprayModel


# =============================================================================
# Convective and diffusive stencils
# =============================================================================
def test_upwind_direction():
    z = np.array([0.0, 1.0, 3.0, 4.0])
    q = z**2
    dz = np.diff(z)
    # u > 0: backward difference (q_j - q_{j-1}) / dz_{j-1}
    assert upwind_gradient(q, 2.0, dz, 2) == pytest.approx((9.0 - 1.0) / 2.0)
    # u < 0: forward difference (q_{j+1} - q_j) / dz_j
    assert upwind_gradient(q, -2.0, dz, 2) == pytest.approx((16.0 - 9.0) / 1.0)
    # u == 0 is treated as non-positive
    assert upwind_gradient(q, 0.0, dz, 1) == pytest.approx((9.0 - 1.0) / 2.0)


def test_upwind_constant_sign_matches_vectorized():
    z = np.linspace(0.0, 1.0, 7)
    dz = np.diff(z)
    q = np.sin(z)
    for sign in (1.0, -1.0):
        u = np.full(z.size, sign)
        vec = upwind_gradients(q, u, dz, 1, z.size - 2)
        scalar = [upwind_gradient(q, sign, dz, j) for j in range(1, z.size - 1)]
        np.testing.assert_allclose(vec, scalar)
    # a linear profile has the same gradient whichever side is used
    lin = 3.0 * z + 1.0
    assert upwind_gradient(lin, 1.0, dz, 3) == pytest.approx(upwind_gradient(lin, -1.0, dz, 3))


def test_central_divergence_quadratic():
    z = np.linspace(0.0, 2.0, 9)
    q = z**2
    coef = np.full(z.size - 1, 0.5)
    for j in range(1, z.size - 1):
        assert central_divergence(coef, q, z, j) == pytest.approx(2.0 * 0.5)
        assert central_divergence(0.5, q, z, j) == pytest.approx(1.0)


# =============================================================================
# Species diffusion
# =============================================================================
def _binary_state():
    W = np.array([2.016, 28.014])
    X = np.array([[0.2, 0.8], [0.6, 0.4]])
    wtm = X @ W
    Y = X * W[None, :] / wtm[:, None]
    rho = np.array([0.9, 0.5])
    z = np.array([0.0, 1.0e-3])
    return W, X, Y, wtm, rho, z


def test_mixture_averaged_fluxes_sum_to_zero():
    W, X, Y, wtm, rho, z = _binary_state()
    diff = np.array([[3.0e-5, 1.0e-5]])
    out = np.zeros((1, 2))
    mixture_averaged_fluxes(Y, X, rho, wtm, W, diff, z, 0, 1, out)
    assert abs(out[0].sum()) < 1e-14 * np.abs(out[0]).max()
    # species 0 is richer on the right, so its flux points toward -z
    assert out[0, 0] < 0.0


def test_stefan_maxwell_binary_reduces_to_fick():
    W, X, Y, wtm, rho, z = _binary_state()
    D = 4.0e-5
    binary = np.full((1, 2, 2), D)
    sm = np.zeros((1, 2))
    multicomponent_fluxes(X, rho, wtm, W, binary, z, 0, 1, sm)

    # mixture-averaged coefficients of a binary: D_km = D * W_other / W_mix
    Xmid = 0.5 * (X[0] + X[1])
    wmid = float(Xmid @ W)
    diff = np.array([[D * W[1] / wmid, D * W[0] / wmid]])
    fick = np.zeros((1, 2))
    mixture_averaged_fluxes(Y, X, rho, wtm, W, diff, z, 0, 1, fick)

    np.testing.assert_allclose(sm, fick, rtol=1e-10)
    assert sm[0].sum() == pytest.approx(0.0, abs=1e-12 * np.abs(sm).max())


def test_stefan_maxwell_single_species_is_zero():
    flux = stefan_maxwell_flux(np.array([1.0]), np.array([0.0]), 1.0, 28.0, np.array([28.0]), np.ones((1, 1)))
    assert flux.tolist() == [0.0]


def test_soret_correction():
    T = np.array([300.0, 500.0])
    z = np.array([0.0, 0.01])
    DT = np.array([[1.0e-6, -1.0e-6]])
    out = np.zeros((1, 2))
    soret_correction(T, z, DT, 0, 1, out)
    grad = 2.0 * 200.0 / (800.0 * 0.01)
    np.testing.assert_allclose(out[0], [-1.0e-6 * grad, 1.0e-6 * grad])


# =============================================================================
# Radiation
# =============================================================================
def test_absorption_polynomials_at_1000K():
    assert absorption_co2(np.array([1000.0]))[0] * ONE_ATM == pytest.approx(float(np.sum(C_CO2)))
    assert absorption_h2o(np.array([1000.0]))[0] * ONE_ATM == pytest.approx(float(np.sum(C_H2O)))


def test_radiation_without_absorbers_is_zero():
    T = np.array([300.0, 1500.0, 2000.0])
    q = radiative_heat_loss(T, ONE_ATM, None, None, T_left=300.0, T_right=300.0,
                            emissivity_left=0.0, emissivity_right=0.0)
    assert np.all(q == 0.0)


def test_radiation_black_walls_at_gas_temperature():
    T = np.full(3, 1200.0)
    X = np.full(3, 0.1)
    q = radiative_heat_loss(T, ONE_ATM, X, X, T_left=1200.0, T_right=1200.0,
                            emissivity_left=1.0, emissivity_right=1.0)
    np.testing.assert_allclose(q, 0.0, atol=1e-9)


def test_radiation_loss_scales_with_absorber():
    T = np.array([1000.0])
    q1 = radiative_heat_loss(T, ONE_ATM, np.array([0.1]), None, T_left=300.0, T_right=300.0,
                             emissivity_left=0.0, emissivity_right=0.0)
    q2 = radiative_heat_loss(T, ONE_ATM, np.array([0.2]), None, T_left=300.0, T_right=300.0,
                             emissivity_left=0.0, emissivity_right=0.0)
    expected = 2.0 * (0.1 * float(np.sum(C_CO2))) * 2.0 * STEFAN_BOLTZMANN * 1000.0**4
    assert q1[0] == pytest.approx(expected)
    assert q2[0] == pytest.approx(2.0 * q1[0])


# =============================================================================
# Spray closures
# =============================================================================
def _ethanol() -> SprayModel:
    cfg = SprayConfig(
        fuel="C2H5OH",
        rhol_A=785.0,
        prs_A=8.20417,
        prs_B=1642.89,
        prs_C=230.3,
        boiling_temperature=351.4,
        cpl=2570.0,
    )
    return SprayModel.from_config(cfg)


def test_spray_zero_mass_closures():
    spray = _ethanol()
    d = spray.diameter(0.0, 300.0)
    assert d == 0.0
    assert spray.evaporation_rate(d, 1.0, 1.0e-5, 0.0, ONE_ATM, 46.07, 28.0) == 0.0
    assert spray.heat_exchange(0.0, d, 1.0, 1.0e-5, 1000.0, 500.0, 300.0) == 0.0


def test_spray_constant_density_diameter():
    spray = _ethanol()
    assert spray.liquid_density(250.0) == spray.liquid_density(340.0) == 785.0
    ml = 1.0e-12
    assert spray.diameter(ml, 300.0) == pytest.approx((6.0 * ml / (math.pi * 785.0)) ** (1.0 / 3.0))


def test_spray_dippr_density():
    spray = _ethanol()
    spray.set_liquid_density_params(99.3974, 0.31, 513.92, 0.2331)
    Tl = 300.0
    expected = 99.3974 / 0.31 ** (1.0 + (1.0 - Tl / 513.92) ** 0.2331)
    assert spray.liquid_density(Tl) == pytest.approx(expected)


def test_spray_antoine_boiling_point():
    spray = _ethanol()
    assert spray.vapor_pressure() == pytest.approx(ONE_ATM, rel=0.01)
    spray.set_vapor_pressure_params(5.37229, 1670.409, -40.191, 351.4, units="bar")
    p_bar = 10.0 ** (5.37229 - 1670.409 / (-40.191 + 351.4)) * 1.0e5
    assert spray.vapor_pressure() == pytest.approx(p_bar)


def test_spray_no_driving_force_no_evaporation():
    spray = _ethanol()
    Ys = spray.surface_mass_fraction(ONE_ATM, 46.07, 28.0)
    assert spray.evaporation_rate(1.0e-5, 1.0, 1.0e-5, Ys, ONE_ATM, 46.07, 28.0) == pytest.approx(0.0, abs=1e-20)
    assert spray.evaporation_rate(1.0e-5, 1.0, 1.0e-5, 0.0, ONE_ATM, 46.07, 28.0) > 0.0


def test_spray_config_validation():
    with pytest.raises(ValueError):
        SprayConfig(fuel="C2H5OH", rhol_A=785.0, prs_A=8.2, prs_B=1642.0, prs_C=230.3,
                    boiling_temperature=351.4, cpl=2570.0, prs_units="psi")
    with pytest.raises(ValueError):
        SprayConfig(fuel="C2H5OH", rhol_A=785.0, prs_A=8.2, prs_B=1642.0, prs_C=230.3,
                    boiling_temperature=351.4, cpl=2570.0, av_coefficients=(0.0, 0.0, 0.0))
