"""Delta-method propagation of a parameter covariance into derived quantities."""

from __future__ import annotations

from typing import Any, Callable, Optional, Tuple

import numpy as np
from uncertainties import correlated_values
from uncertainties import unumpy as unp

__all__ = ["delta_method", "covariance_is_usable", "numdiff_jacobian"]

METHODS = ("linear", "numdiff")


def covariance_is_usable(cov: Optional[np.ndarray], size: int) -> bool:
    if cov is None:
        return False
    c = np.asarray(cov, dtype=float)
    if c.shape != (size, size):
        return False
    if not np.all(np.isfinite(c)):
        return False
    return bool(np.all(np.diag(c) >= 0.0))


def _as_float(x: Any):
    a = np.asarray(unp.nominal_values(x), dtype=float)
    return float(a) if a.shape == () else a


def numdiff_jacobian(
    fn: Callable[[np.ndarray], Any], x0: np.ndarray, rel_step: float = 1e-6
) -> np.ndarray:
    """Central-difference Jacobian of fn at x0, shape (M, P)."""
    x0 = np.asarray(x0, dtype=float)
    eps = rel_step * (np.abs(x0) + 1.0)
    cols = []
    for i in range(x0.shape[0]):
        xp = x0.copy()
        xm = x0.copy()
        xp[i] += eps[i]
        xm[i] -= eps[i]
        fp = np.atleast_1d(np.asarray(_as_float(fn(xp)), dtype=float))
        fm = np.atleast_1d(np.asarray(_as_float(fn(xm)), dtype=float))
        cols.append((fp - fm) / (2.0 * eps[i]))
    return np.stack(cols, axis=-1)


def delta_method(
    estimate_fn: Callable[[Any], Any],
    params: Any,
    covariance: Optional[np.ndarray],
    method: str = "linear",
    rel_step: float = 1e-6,
) -> Tuple[Any, Any]:
    """Return (value, stderr) for estimate_fn(params).

    stderr = sqrt(diag(J C Jᵀ)) with J the Jacobian of estimate_fn.

    method:
      "linear"   estimate_fn receives correlated `uncertainties` values and
                 the Jacobian comes from exact linear propagation. The
                 function must use operators or umath/unumpy functions.
      "numdiff"  estimate_fn receives a float array; J by central differences.

    When the covariance is undefined (None, wrong shape, non-finite entries,
    negative variances) stderr is None.
    """
    if method not in METHODS:
        raise ValueError(f"method must be one of {METHODS}, got {method!r}.")

    x0 = np.asarray(params, dtype=float).reshape((-1,))
    if not covariance_is_usable(covariance, x0.shape[0]):
        return _as_float(estimate_fn(x0)), None
    cov = np.asarray(covariance, dtype=float)

    if method == "linear":
        uvars = np.empty(x0.shape, dtype=object)
        uvars[:] = correlated_values(list(x0), cov)
        out = estimate_fn(uvars)
        value = _as_float(out)
        stderr = np.asarray(unp.std_devs(out), dtype=float)
        return value, (float(stderr) if stderr.shape == () else stderr)

    value = _as_float(estimate_fn(x0))
    J = numdiff_jacobian(estimate_fn, x0, rel_step=rel_step)
    var = np.einsum("mi,ij,mj->m", J, cov, J)
    stderr = np.sqrt(np.clip(var, 0.0, None))
    if np.ndim(value) == 0:
        return value, float(stderr[0])
    return value, stderr.reshape(np.shape(value))
