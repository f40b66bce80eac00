from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

import numpy as np

from .diagnostics import PragerStatistics
from .params import ParameterVector, ParamsView, ParamView


def _frozen(a: Any) -> np.ndarray:
    out = np.array(a, dtype=float)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class PhaseStatus:
    """Outcome of one optimization phase."""

    index: int
    success: bool
    objective: float
    message: str = ""
    nfree: int = 0
    stats: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "stats", MappingProxyType(dict(self.stats)))


@dataclass(frozen=True)
class Converged:
    """Every phase converged; `params` is the final full vector."""

    params: ParameterVector
    objective: float
    phases: Tuple[PhaseStatus, ...]


@dataclass(frozen=True)
class OptimizerFailed:
    """Some phase failed; later phases never ran.

    `params` is the full vector the failed phase was working on, `gradient`
    the full-length gradient at the last evaluated point.
    """

    phase: int
    message: str
    objective: float
    gradient: np.ndarray
    params: ParameterVector
    phases: Tuple[PhaseStatus, ...]


@dataclass(frozen=True)
class LatentTrajectory:
    """Latent log-biomass and log-fishing-mortality on the model grid."""

    time: np.ndarray
    logB: np.ndarray
    logF: np.ndarray
    est_mask: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, "time", _frozen(self.time))
        object.__setattr__(self, "logB", _frozen(self.logB))
        object.__setattr__(self, "logF", _frozen(self.logF))
        m = np.array(self.est_mask, dtype=bool)
        m.setflags(write=False)
        object.__setattr__(self, "est_mask", m)

    @property
    def B(self) -> np.ndarray:
        return np.exp(self.logB)

    @property
    def F(self) -> np.ndarray:
        return np.exp(self.logF)


@dataclass(frozen=True)
class FitResult:
    """Everything a successful (possibly degraded) fit produced.

    status:
      "converged"          point estimates and covariance available
      "covariance_failed"  point estimates only; `cov` is all NaN and every
                           stderr is None
    """

    params: ParameterVector
    latent: LatentTrajectory
    cov: Optional[np.ndarray]
    cov_names: Tuple[str, ...]
    estimates: ParamsView
    derived: ParamsView
    stats: Optional[PragerStatistics]
    phases: Tuple[PhaseStatus, ...]
    status: str
    warnings: Tuple[str, ...] = ()
    unavailable: Mapping[str, str] = field(default_factory=dict)
    objective: float = float("nan")
    optimizer: str = ""
    msy_convention: str = "stochastic"

    def __post_init__(self):
        if self.cov is not None:
            object.__setattr__(self, "cov", _frozen(self.cov))
        object.__setattr__(self, "unavailable", MappingProxyType(dict(self.unavailable)))

    def __getitem__(self, key: str) -> ParamView:
        """res["Bmsy"] / res["logK"]: derived quantities, then estimates."""
        if key in self.derived:
            return self.derived[key]
        if key in self.estimates:
            return self.estimates[key]
        if key in self.unavailable:
            raise KeyError(f"{key!r} is unavailable: {self.unavailable[key]}")
        raise KeyError(key)

    @property
    def ok(self) -> bool:
        return self.status == "converged"

    @property
    def cov_fixed(self) -> Optional[np.ndarray]:
        """Covariance block over the free fixed effects."""
        if self.cov is None:
            return None
        k = sum(1 for n in self.cov_names if not n.startswith(("logB[", "logF[")))
        return self.cov[:k, :k]

    def summary(self, digits: int = 4) -> str:
        """Return a human-readable summary string for the fit."""
        lines = [
            f"FitResult(optimizer={self.optimizer!r}, status={self.status!r}, "
            f"objective={self.objective:.{digits + 2}g})"
        ]

        def _row(name: str, pv: ParamView) -> str:
            v = np.asarray(pv.value, dtype=float)
            if v.shape != ():
                return f"  {name:>12s}: <array shape={v.shape}>"
            if pv.stderr is None:
                return f"  {name:>12s}: {float(v):.{digits}g}"
            return f"  {name:>12s}: {float(v):.{digits}g} ± {float(pv.stderr):.{digits}g}"

        lines.append("Fixed effects (log scale)")
        for name, pv in self.estimates.items():
            lines.append(_row(name, pv))

        lines.append(f"Reference points ({self.msy_convention})")
        for name in ("Bmsy", "Fmsy", "MSY"):
            if name in self.derived:
                lines.append(_row(name, self.derived[name]))

        if self.stats is not None:
            lines.append(f"  {'nearness':>12s}: {self.stats.nearness:.{digits}g}")
            lines.append(f"  {'coverage':>12s}: {self.stats.coverage:.{digits}g}")

        for name, reason in self.unavailable.items():
            lines.append(f"  {name:>12s}: unavailable ({reason})")
        for w in self.warnings:
            lines.append(f"  warning: {w}")
        return "\n".join(lines)
