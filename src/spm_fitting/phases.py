"""Multi-phase optimization: estimate parameter groups in successive stages."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .backends import Optimizer, get_backend
from .objective import ObjectiveAdapter
from .params import ParameterSpec, ParameterVector, Phase
from .results import Converged, OptimizerFailed, PhaseStatus

__all__ = ["PhasedOptimizationController", "build_phases", "validate_phases"]

logger = logging.getLogger(__name__)


def build_phases(specs: Sequence[ParameterSpec]) -> Tuple[Phase, ...]:
    """Phases from per-parameter phase numbers.

    A parameter with phase p is free in phases p..N and fixed before; phase
    -1 keeps it fixed throughout. N is the largest phase number (at least 1).
    """
    nphase = max([1] + [s.phase for s in specs if s.phase > 0])
    out = []
    for i in range(1, nphase + 1):
        fixed = frozenset(s.name for s in specs if s.phase < 0 or s.phase > i)
        out.append(Phase(index=i, fixed=fixed))
    return tuple(out)


def validate_phases(phases: Sequence[Phase], specs: Sequence[ParameterSpec]) -> None:
    """Raise ValueError unless every free parameter stays free in later phases."""
    if not phases:
        raise ValueError("At least one phase is required.")
    names = {s.name for s in specs}
    for ph in phases:
        unknown = set(ph.fixed) - names
        if unknown:
            raise ValueError(f"Phase {ph.index} fixes unknown parameters {sorted(unknown)}.")
        if not (names - set(ph.fixed)):
            raise ValueError(f"Phase {ph.index} has no free parameters.")
    for prev, nxt in zip(phases[:-1], phases[1:]):
        refixed = (names - set(prev.fixed)) & set(nxt.fixed)
        if refixed:
            raise ValueError(
                f"Parameters {sorted(refixed)} are free in phase {prev.index} "
                f"but fixed again in phase {nxt.index}."
            )


class _Deadline(Exception):
    pass


class _MaskedObjective:
    """View of the full objective over the free entries of one phase.

    Remembers the last evaluated point so a failure can report it.
    """

    def __init__(
        self,
        objective: ObjectiveAdapter,
        base: ParameterVector,
        mask: np.ndarray,
        deadline: Optional[float],
    ):
        self.objective = objective
        self.base = base
        self.mask = mask
        self.deadline = deadline
        self.last_params = base
        self.last_value = float("nan")
        self.last_gradient = np.full(base.values.shape, np.nan)
        self.nfev = 0

    def __call__(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise _Deadline()
        params = self.base.replace(self.mask, x)
        value, grad = self.objective.evaluate(params.values)
        grad = np.asarray(grad, dtype=float)
        self.nfev += 1
        self.last_params = params
        self.last_value = float(value)
        self.last_gradient = grad
        return float(value), grad[self.mask]


class PhasedOptimizationController:
    """Run an optimizer back-end over a sequence of phases.

    Free values found in phase i seed phase i+1; pinned values pass through
    unchanged. A failing phase aborts the run: later phases are not invoked.
    """

    def __init__(
        self,
        optimizer: Union[str, Optimizer] = "scipy.lbfgsb",
        options: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ):
        self.optimizer = get_backend(optimizer) if isinstance(optimizer, str) else optimizer
        self.options = dict(options or {})
        if timeout is not None and float(timeout) <= 0.0:
            raise ValueError("timeout must be positive.")
        self.timeout = None if timeout is None else float(timeout)

    def run(
        self,
        initial: ParameterVector,
        phases: Sequence[Phase],
        objective: ObjectiveAdapter,
    ) -> Union[Converged, OptimizerFailed]:
        validate_phases(phases, initial.specs)
        deadline = None if self.timeout is None else time.monotonic() + self.timeout

        current = initial
        done: List[PhaseStatus] = []
        value = float("nan")
        for ph in phases:
            free = ph.free_names(initial.specs)
            mask = current.mask(free)
            logger.info(
                "Estimating - phase %d/%d (%d free)", ph.index, len(phases), int(mask.sum())
            )
            fun = _MaskedObjective(objective, current, mask, deadline)
            try:
                res = self.optimizer.minimize(
                    fun=fun, x0=current.values[mask], options=dict(self.options)
                )
            except _Deadline:
                logger.info("Phase %d timed out", ph.index)
                return self._failed(ph, f"timed out after {self.timeout:g} s", fun, done)

            if not res.success or not np.isfinite(res.fun):
                logger.info("Phase %d failed: %s", ph.index, res.message)
                return self._failed(ph, res.message or "optimizer did not converge", fun, done)

            current = current.replace(mask, res.x)
            value = float(res.fun)
            done.append(
                PhaseStatus(
                    index=ph.index,
                    success=True,
                    objective=value,
                    message=res.message,
                    nfree=int(mask.sum()),
                    stats={**res.stats, "nfev_total": fun.nfev},
                )
            )
            logger.debug("Phase %d objective %.10g", ph.index, value)

        return Converged(params=current, objective=value, phases=tuple(done))

    @staticmethod
    def _failed(
        ph: Phase, message: str, fun: _MaskedObjective, done: List[PhaseStatus]
    ) -> OptimizerFailed:
        status = PhaseStatus(
            index=ph.index,
            success=False,
            objective=fun.last_value,
            message=message,
            nfree=int(fun.mask.sum()),
        )
        return OptimizerFailed(
            phase=ph.index,
            message=message,
            objective=fun.last_value,
            gradient=fun.last_gradient,
            params=fun.last_params,
            phases=tuple(done) + (status,),
        )
