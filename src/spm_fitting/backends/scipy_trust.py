from __future__ import annotations

from typing import Any

import numpy as np
from scipy.optimize import BFGS, Bounds, minimize

from .common import ObjectiveFn, OptimizerResult


class ScipyTrustRegionOptimizer:
    """Trust-region (trust-constr) with BFGS Hessian updates.

    Back-end options:
    - options: dict forwarded to scipy.optimize.minimize (maxiter, gtol, xtol)
    - bounds: optional (lo, hi) arrays over the free entries
    """

    name = "scipy.trust-constr"

    def minimize(
        self,
        *,
        fun: ObjectiveFn,
        x0: np.ndarray,
        options: dict[str, Any],
    ) -> OptimizerResult:
        scipy_opts = {"maxiter": 2000, "gtol": 1e-6}
        scipy_opts.update(options.get("options", None) or {})

        bounds = options.get("bounds", None)
        if bounds is not None:
            bounds = Bounds(
                np.asarray(bounds[0], dtype=float), np.asarray(bounds[1], dtype=float)
            )

        res = minimize(
            fun,
            np.asarray(x0, dtype=float),
            method="trust-constr",
            jac=True,
            hess=BFGS(),
            bounds=bounds,
            options=scipy_opts,
        )

        # status 1: gradient tolerance, 2: step tolerance; 0 means maxiter.
        success = int(res.status) in (1, 2) and bool(np.isfinite(res.fun))
        return OptimizerResult(
            x=np.asarray(res.x, dtype=float),
            fun=float(res.fun),
            jac=np.asarray(res.grad, dtype=float),
            success=success,
            message=str(res.message),
            stats={"nit": int(res.nit), "nfev": int(res.nfev)},
        )
