"""Exception types raised by the fitting pipeline and the ASPIC adapters."""

from __future__ import annotations

from typing import Any, Optional, Tuple

import numpy as np

__all__ = [
    "OptimizationFailure",
    "CovarianceFailure",
    "DerivedQuantityDomainError",
    "FormatError",
]


class OptimizationFailure(RuntimeError):
    """The optimizer could not converge in some phase; the fit is aborted.

    Carries the last state the optimizer saw so the caller can retry with
    different initial values.
    """

    def __init__(
        self,
        message: str,
        *,
        phase: int,
        objective: float = float("nan"),
        gradient: Optional[np.ndarray] = None,
        params: Any = None,
        phases: Tuple[Any, ...] = (),
    ):
        super().__init__(message)
        self.phase = int(phase)
        self.objective = float(objective)
        self.gradient = gradient
        self.params = params
        self.phases = tuple(phases)

    def __str__(self) -> str:
        base = super().__str__()
        return f"phase {self.phase}: {base} (objective={self.objective:.6g})"


class CovarianceFailure(RuntimeError):
    """The point estimate exists but its covariance could not be computed."""


class DerivedQuantityDomainError(ValueError):
    """A reference-point or diagnostic input lies outside its valid domain."""


class FormatError(ValueError):
    """Malformed legacy (ASPIC) input or result file."""
