from __future__ import annotations

from typing import Any

import numpy as np
from scipy.optimize import minimize

from .common import ObjectiveFn, OptimizerResult, finite_bounds


class ScipyLBFGSBOptimizer:
    """Line-search quasi-Newton (L-BFGS-B) via scipy.optimize.minimize.

    Back-end options:
    - options: dict forwarded to scipy.optimize.minimize (maxiter, gtol, ...)
    - bounds: optional (lo, hi) arrays over the free entries
    """

    name = "scipy.lbfgsb"

    def minimize(
        self,
        *,
        fun: ObjectiveFn,
        x0: np.ndarray,
        options: dict[str, Any],
    ) -> OptimizerResult:
        scipy_opts = {"maxiter": 1000, "gtol": 1e-6}
        scipy_opts.update(options.get("options", None) or {})

        res = minimize(
            fun,
            np.asarray(x0, dtype=float),
            method="L-BFGS-B",
            jac=True,
            bounds=finite_bounds(x0, options),
            options=scipy_opts,
        )

        return OptimizerResult(
            x=np.asarray(res.x, dtype=float),
            fun=float(res.fun),
            jac=np.asarray(res.jac, dtype=float) if res.jac is not None else None,
            success=bool(res.success) and bool(np.isfinite(res.fun)),
            message=str(res.message),
            stats={"nit": int(res.nit), "nfev": int(res.nfev)},
        )
