"""Optimizer back-ends + registry."""

from __future__ import annotations

from typing import Dict

from .common import Optimizer, OptimizerResult
from .scipy_lbfgsb import ScipyLBFGSBOptimizer
from .scipy_trust import ScipyTrustRegionOptimizer

_BACKENDS: Dict[str, Optimizer] = {
    "scipy.lbfgsb": ScipyLBFGSBOptimizer(),
    "scipy.trust-constr": ScipyTrustRegionOptimizer(),
}


def get_backend(name: str) -> Optimizer:
    """Return an optimizer back-end by name."""
    try:
        return _BACKENDS[name]
    except KeyError as e:
        raise ValueError(
            f"Unknown backend {name!r}. Available: {tuple(_BACKENDS.keys())}"
        ) from e


AVAILABLE_BACKENDS = tuple(_BACKENDS.keys())

__all__ = ["Optimizer", "OptimizerResult", "get_backend", "AVAILABLE_BACKENDS"]
