"""MSY reference points of the generalized (Pella-Tomlinson) production curve.

All functions accept plain floats or `uncertainties` values, so the same code
gives point estimates and first-order standard errors.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Optional

from .errors import DerivedQuantityDomainError

__all__ = [
    "production",
    "rate_from_yield",
    "yield_from_rate",
    "reference_points",
    "CONVENTIONS",
]

CONVENTIONS = ("deterministic", "stochastic", "both")


def _nominal(x: Any) -> float:
    return float(getattr(x, "nominal_value", x))


def _check_shape(K: Any, n: Any) -> None:
    k = _nominal(K)
    nn = _nominal(n)
    if not math.isfinite(k) or k <= 0.0:
        raise DerivedQuantityDomainError(f"K must be positive, got {k}.")
    if not math.isfinite(nn) or nn <= 0.0:
        raise DerivedQuantityDomainError(f"n must be positive, got {nn}.")
    if nn == 1.0:
        raise DerivedQuantityDomainError("n = 1 has no finite MSY reference points.")


def _check_output(name: str, x: Any) -> Any:
    v = _nominal(x)
    if not math.isfinite(v) or v <= 0.0:
        raise DerivedQuantityDomainError(f"{name} is not positive and finite ({v}).")
    return x


def production(B: Any, K: Any, r: Any, n: Any) -> Any:
    """Surplus production r·B·(1 − (B/K)^(n−1))."""
    return r * B * (1.0 - (B / K) ** (n - 1.0))


def rate_from_yield(m: Any, K: Any, n: Any) -> Any:
    """Intrinsic rate r that gives maximum yield m for carrying capacity K."""
    _check_shape(K, n)
    return m * n ** (n / (n - 1.0)) / (K * (n - 1.0))


def yield_from_rate(r: Any, K: Any, n: Any) -> Any:
    """Maximum yield m of the production curve with rate r."""
    _check_shape(K, n)
    return r * K * (n - 1.0) / n ** (n / (n - 1.0))


def _deterministic(K: Any, n: Any, r: Any) -> Dict[str, Any]:
    bmsy = K * n ** (-1.0 / (n - 1.0))
    fmsy = r * (n - 1.0) / n
    return {"Bmsyd": bmsy, "Fmsyd": fmsy, "MSYd": bmsy * fmsy}


def _stochastic(det: Dict[str, Any], n: Any, sdb: Any) -> Dict[str, Any]:
    # Bordet & Rivest (2014), first-order in the biomass process variance.
    p = n - 1.0
    rr = n * det["Fmsyd"]
    rrv = _nominal(rr)
    if not (0.0 < rrv < 2.0):
        raise DerivedQuantityDomainError(
            f"Stochastic correction needs 0 < n·Fmsy < 2, got {rrv}."
        )
    s2 = sdb**2
    bmsy = det["Bmsyd"] * (1.0 - (1.0 + rr * (p - 1.0) / 2.0) / (rr * (2.0 - rr) ** 2) * s2)
    fmsy = det["Fmsyd"] - p * (1.0 - rr) * s2 / (2.0 - rr) ** 2
    msy = det["MSYd"] * (1.0 - ((p + 1.0) / 2.0) * s2 / (1.0 - (1.0 - rr) ** 2))
    return {"Bmsys": bmsy, "Fmsys": fmsy, "MSYs": msy}


def reference_points(
    K: Any,
    n: Any,
    value: Any,
    *,
    parameterization: str = "rate",
    convention: str = "deterministic",
    sdb: Optional[Any] = None,
) -> Dict[str, Any]:
    """Bmsy, Fmsy and MSY for the production curve (K, n, r|m).

    `value` is r for parameterization="rate" and m for "yield". The result
    keys carry the convention: Bmsyd/Fmsyd/MSYd (deterministic) and
    Bmsys/Fmsys/MSYs (stochastic, which requires `sdb`); "both" returns all
    six. Out-of-domain inputs raise DerivedQuantityDomainError.
    """
    if parameterization not in ("rate", "yield"):
        raise ValueError(
            f"parameterization must be 'rate' or 'yield', got {parameterization!r}."
        )
    if convention not in CONVENTIONS:
        raise ValueError(f"convention must be one of {CONVENTIONS}, got {convention!r}.")

    _check_shape(K, n)
    v = _nominal(value)
    if not math.isfinite(v) or v <= 0.0:
        raise DerivedQuantityDomainError(
            f"{'r' if parameterization == 'rate' else 'm'} must be positive, got {v}."
        )
    r = value if parameterization == "rate" else rate_from_yield(value, K, n)

    det = _deterministic(K, n, r)
    for name, x in det.items():
        _check_output(name, x)
    if convention == "deterministic":
        return det

    if sdb is None:
        raise DerivedQuantityDomainError("Stochastic reference points need sdb.")
    s = _nominal(sdb)
    if not math.isfinite(s) or s < 0.0:
        raise DerivedQuantityDomainError(f"sdb must be non-negative, got {s}.")
    sto = _stochastic(det, n, sdb)
    for name, x in sto.items():
        _check_output(name, x)
    if convention == "stochastic":
        return sto
    return {**det, **sto}
