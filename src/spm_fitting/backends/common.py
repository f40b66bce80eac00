from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import numpy as np


ObjectiveFn = Callable[[np.ndarray], Tuple[float, np.ndarray]]


@dataclass(frozen=True)
class OptimizerResult:
    """Normalized result returned by any optimizer back-end."""

    x: np.ndarray  # free parameters, shape (P,)
    fun: float = float("nan")
    jac: Optional[np.ndarray] = None
    success: bool = True
    message: str = ""
    stats: Dict[str, Any] = field(default_factory=dict)


class Optimizer(Protocol):
    """Back-end protocol: minimize one smooth objective over the free entries.

    `fun` returns (value, gradient); the back-end must not assume anything
    about how the objective is computed.
    """

    name: str

    def minimize(
        self,
        *,
        fun: ObjectiveFn,
        x0: np.ndarray,
        options: dict[str, Any],
    ) -> OptimizerResult: ...


def finite_bounds(x0: np.ndarray, options: dict[str, Any]):
    """Box bounds from options["bounds"] as (lo, hi) arrays, or None."""
    bounds = options.get("bounds", None)
    if bounds is None:
        return None
    lo, hi = bounds
    n = int(np.asarray(x0).shape[0])
    lo = np.broadcast_to(np.asarray(lo, dtype=float), (n,))
    hi = np.broadcast_to(np.asarray(hi, dtype=float), (n,))
    out = []
    for i in range(n):
        lo_b = None if not np.isfinite(lo[i]) else float(lo[i])
        hi_b = None if not np.isfinite(hi[i]) else float(hi[i])
        out.append((lo_b, hi_b))
    return out
