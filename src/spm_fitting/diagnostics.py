"""Prager's nearness and coverage statistics.

Both describe how informative the biomass trajectory is about Bmsy:

- nearness is 1 when the trajectory crosses (or touches) Bmsy, otherwise
  1 minus the closest approach relative to Bmsy;
- coverage is the span of the trajectory, capped by K, relative to Bmsy
  and capped at 2.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from .errors import DerivedQuantityDomainError

__all__ = ["PragerStatistics", "prager_statistics"]


@dataclass(frozen=True)
class PragerStatistics:
    nearness: float
    coverage: float


def prager_statistics(
    bmsy: float,
    biomass: Any,
    K: float,
    estimation_mask: Optional[Any] = None,
) -> PragerStatistics:
    """Compute nearness and coverage over the estimation range.

    Raises DerivedQuantityDomainError for undefined inputs (NaN trajectory,
    non-positive Bmsy, undefined K, empty estimation range).
    """
    bmsy = float(bmsy)
    K = float(K)
    B = np.asarray(biomass, dtype=float).reshape((-1,))
    if estimation_mask is not None:
        mask = np.asarray(estimation_mask, dtype=bool).reshape((-1,))
        if mask.shape != B.shape:
            raise ValueError(
                f"estimation_mask has shape {mask.shape}, biomass has {B.shape}."
            )
        B = B[mask]

    if not np.isfinite(bmsy) or bmsy <= 0.0:
        raise DerivedQuantityDomainError(f"Bmsy must be finite and positive, got {bmsy}.")
    if not np.isfinite(K):
        raise DerivedQuantityDomainError(f"K must be finite, got {K}.")
    if B.size == 0:
        raise DerivedQuantityDomainError("Empty estimation range.")
    if not np.all(np.isfinite(B)):
        raise DerivedQuantityDomainError("Biomass trajectory contains non-finite values.")

    diff = bmsy - B
    # A zero difference changes the sign relative to its neighbours.
    if np.any(np.diff(np.sign(diff)) != 0):
        nearness = 1.0
    else:
        # Without a sign change a trajectory lying on Bmsy still gives 1.
        nearness = max(0.0, 1.0 - float(np.min(np.abs(diff))) / bmsy)

    span = min(K, float(np.max(B))) - float(np.min(B))
    coverage = min(2.0, max(0.0, span / bmsy))

    return PragerStatistics(nearness=float(nearness), coverage=float(coverage))
