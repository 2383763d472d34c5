"""
Central-difference diffusion terms and species diffusive mass fluxes.

Midpoint convention:
- Midpoint m sits between points m and m+1; transport coefficients (mu, lambda, D) and the
  species fluxes j_k are stored per midpoint, arrays of length n_points - 1.
- flux[m, k] > 0 means species k diffuses toward +z across midpoint m.

Closures:
- Mixture-averaged: Fickian flux in mole-fraction gradient form plus a correction flux
  (-sum_k j_k) * Y_k so that the fluxes sum to zero.
- Multicomponent: dense Stefan-Maxwell solve per midpoint; the row of the most abundant species
  is replaced by sum_k j_k = 0.
- Soret: j_k -= D_T,k * dlnT/dz, multicomponent only.
"""

from __future__ import annotations

import numpy as np

from core.types import FloatArray


def central_divergence(coef_mid, q: FloatArray, z: FloatArray, j: int):
    """
    2 * (c_j (q_{j+1}-q_j)/dz_j - c_{j-1} (q_j-q_{j-1})/dz_{j-1}) / (z_{j+1}-z_{j-1}).

    coef_mid is a per-midpoint array or a scalar (artificial viscosity).
    """
    if np.ndim(coef_mid) == 0:
        c_lo = c_hi = float(coef_mid)
    else:
        c_lo, c_hi = coef_mid[j - 1], coef_mid[j]
    c1 = c_lo * (q[j] - q[j - 1])
    c2 = c_hi * (q[j + 1] - q[j])
    return 2.0 * (c2 / (z[j + 1] - z[j]) - c1 / (z[j] - z[j - 1])) / (z[j + 1] - z[j - 1])


def shear(visc_mid: FloatArray, V: FloatArray, z: FloatArray, j: int) -> float:
    return float(central_divergence(visc_mid, V, z, j))


def div_heat_flux(tcon_mid: FloatArray, T: FloatArray, z: FloatArray, j: int) -> float:
    return -float(central_divergence(tcon_mid, T, z, j))


def artificial_viscosity(coef: float, q: FloatArray, z: FloatArray, j: int) -> float:
    return float(central_divergence(float(coef), q, z, j))


def mole_fractions(Y: FloatArray, wtm: FloatArray, W: FloatArray) -> FloatArray:
    """X_k = W_bar * Y_k / W_k for a (points, K) block."""
    return Y * (np.asarray(wtm)[:, None] / W[None, :])


def mixture_averaged_fluxes(
    Y: FloatArray,
    X: FloatArray,
    rho: FloatArray,
    wtm: FloatArray,
    W: FloatArray,
    diff_mid: FloatArray,
    z: FloatArray,
    m0: int,
    m1: int,
    out: FloatArray,
) -> None:
    """Fill out[m] for midpoints m0 <= m < m1 (point values at m, D at the midpoint)."""
    for m in range(m0, m1):
        dz = z[m + 1] - z[m]
        flux = W * (rho[m] * diff_mid[m] / wtm[m]) * (X[m] - X[m + 1]) / dz
        flux += -float(np.sum(flux)) * Y[m]
        out[m] = flux


def stefan_maxwell_flux(
    X: FloatArray,
    dXdz: FloatArray,
    rho: float,
    wtm: float,
    W: FloatArray,
    D_bin: FloatArray,
) -> FloatArray:
    """
    Solve (W_bar/rho) * sum_{i!=k} (X_k j_i/W_i - X_i j_k/W_k) / D_ki = dX_k/dz for j.

    The equations sum to zero, so the row of the most abundant species is replaced by
    sum_k j_k = 0.
    """
    K = X.size
    if K == 1:
        return np.zeros(1, dtype=np.float64)
    inv_d = 1.0 / np.asarray(D_bin, dtype=np.float64)
    np.fill_diagonal(inv_d, 0.0)

    A = (X[:, None] / W[None, :]) * inv_d
    A[np.diag_indices(K)] -= (inv_d @ X) / W
    A *= wtm / rho
    b = np.array(dXdz, dtype=np.float64, copy=True)

    k_closure = int(np.argmax(X))
    A[k_closure, :] = 1.0
    b[k_closure] = 0.0
    return np.linalg.solve(A, b)


def multicomponent_fluxes(
    X: FloatArray,
    rho: FloatArray,
    wtm: FloatArray,
    W: FloatArray,
    binary_mid: FloatArray,
    z: FloatArray,
    m0: int,
    m1: int,
    out: FloatArray,
) -> None:
    """Fill out[m] with Stefan-Maxwell fluxes for midpoints m0 <= m < m1."""
    for m in range(m0, m1):
        dz = z[m + 1] - z[m]
        Xmid = 0.5 * (X[m] + X[m + 1])
        dXdz = (X[m + 1] - X[m]) / dz
        out[m] = stefan_maxwell_flux(Xmid, dXdz, rho[m], wtm[m], W, binary_mid[m])


def soret_correction(
    T: FloatArray, z: FloatArray, dthermal_mid: FloatArray, m0: int, m1: int, out: FloatArray
) -> None:
    for m in range(m0, m1):
        grad_log_T = 2.0 * (T[m + 1] - T[m]) / ((T[m + 1] + T[m]) * (z[m + 1] - z[m]))
        out[m] -= dthermal_mid[m] * grad_log_T
