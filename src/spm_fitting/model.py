from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
from warnings import warn

import numpy as np
from uncertainties import umath
from uncertainties import unumpy as unp

from .backends import Optimizer
from .data import Observations, default_guesses
from .diagnostics import PragerStatistics, prager_statistics
from .errors import CovarianceFailure, DerivedQuantityDomainError, OptimizationFailure
from .objective import EngineConfig, LaplaceObjective, ObjectiveAdapter
from .params import ParameterSpec, ParameterVector, ParamsView, ParamView, Phase
from .phases import PhasedOptimizationController, build_phases, validate_phases
from .refpoints import rate_from_yield, reference_points, yield_from_rate
from .results import Converged, FitResult, LatentTrajectory, OptimizerFailed
from .uncertainty import covariance_is_usable, delta_method

PARAMETERIZATIONS = ("rate", "yield")
PROPAGATION = ("linear", "numdiff")


@dataclass(frozen=True)
class ModelSpecification:
    """Fixed effects of the stochastic surplus-production model.

    Every parameter lives on the log scale. Builders (`fix`, `guess`,
    `phase`, ...) return new specifications; nothing is mutated.
    """

    nindex: int
    params: Tuple[ParameterSpec, ...]
    parameterization: str = "yield"
    msy_convention: str = "stochastic"
    dteuler: float = 1.0
    forecast: float = 0.0
    explicit_phases: Optional[Tuple[Phase, ...]] = None

    # ---- constructor ----
    @classmethod
    def default(cls, nindex: int = 1, parameterization: str = "yield") -> "ModelSpecification":
        """Standard layout: shape n, alpha and beta held fixed, the rest free."""
        if parameterization not in PARAMETERIZATIONS:
            raise ValueError(
                f"parameterization must be one of {PARAMETERIZATIONS}, got {parameterization!r}."
            )
        nindex = int(nindex)
        if nindex < 1:
            raise ValueError("At least one index series is required.")
        specs = (
            ParameterSpec("logm" if parameterization == "yield" else "logr"),
            ParameterSpec("logK"),
            ParameterSpec("logq", size=nindex),
            ParameterSpec("logn", phase=-1),
            ParameterSpec("logsdb"),
            ParameterSpec("logsdf"),
            ParameterSpec("logalpha", phase=-1),
            ParameterSpec("logbeta", phase=-1),
            ParameterSpec("logbkfrac"),
        )
        return cls(nindex=nindex, params=specs, parameterization=parameterization)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.params)

    # ---- builders (pure; return new specification) ----
    def _update(self, changes: Dict[str, Callable[[ParameterSpec], ParameterSpec]]):
        m = {p.name: p for p in self.params}
        for k, fn in changes.items():
            if k not in m:
                raise KeyError(k)
            m[k] = fn(m[k])
        return replace(self, params=tuple(m[n] for n in self.names))

    @staticmethod
    def _as_guess(spec: ParameterSpec, value: Any) -> Tuple[float, ...]:
        v = np.asarray(value, dtype=float).reshape((-1,))
        if v.shape == (1,):
            v = np.repeat(v, spec.size)
        if v.shape != (spec.size,):
            raise ValueError(f"{spec.name!r} expects {spec.size} value(s), got {v.shape[0]}.")
        return tuple(float(x) for x in v)

    def fix(self, **values: Any) -> "ModelSpecification":
        """Hold parameters at the given (log-scale) values in every phase."""
        return self._update(
            {
                k: (lambda s, v=v: replace(s, phase=-1, guess=self._as_guess(s, v)))
                for k, v in values.items()
            }
        )

    def guess(self, **values: Any) -> "ModelSpecification":
        """Set (log-scale) starting values."""
        return self._update(
            {k: (lambda s, v=v: replace(s, guess=self._as_guess(s, v))) for k, v in values.items()}
        )

    def phase(self, **phases: int) -> "ModelSpecification":
        """Set the phase in which each parameter is first estimated (-1: never)."""
        for k, p in phases.items():
            if int(p) == 0 or int(p) < -1:
                raise ValueError(f"Phase of {k!r} must be -1 or a positive integer, got {p}.")
        return self._update(
            {k: (lambda s, p=p: replace(s, phase=int(p))) for k, p in phases.items()}
        )

    def with_phases(self, phases: Sequence[Phase]) -> "ModelSpecification":
        """Use an explicit phase list instead of per-parameter phase numbers."""
        phases = tuple(phases)
        validate_phases(phases, self.params)
        return replace(self, explicit_phases=phases)

    def with_msy_convention(self, convention: str) -> "ModelSpecification":
        """Choose which reference points Bmsy/Fmsy/MSY refer to."""
        if convention not in ("deterministic", "stochastic"):
            raise ValueError(
                f"convention must be 'deterministic' or 'stochastic', got {convention!r}."
            )
        return replace(self, msy_convention=convention)

    def with_time_step(self, dteuler: float, forecast: float = 0.0) -> "ModelSpecification":
        if float(dteuler) <= 0.0:
            raise ValueError("dteuler must be positive.")
        return replace(self, dteuler=float(dteuler), forecast=float(forecast))

    def phases(self) -> Tuple[Phase, ...]:
        if self.explicit_phases is not None:
            return self.explicit_phases
        return build_phases(self.params)

    def initial(self, observations: Observations) -> ParameterVector:
        """Starting vector: explicit guesses over data-driven defaults."""
        if observations.nindex != self.nindex:
            raise ValueError(
                f"Specification has {self.nindex} index series, data has {observations.nindex}."
            )
        values = default_guesses(observations, self.parameterization)
        for p in self.params:
            if p.guess is not None:
                values[p.name] = np.asarray(p.guess, dtype=float)
        return ParameterVector.from_mapping(self.params, values)

    # ---- fitting ----
    def fit(
        self,
        observations: Observations,
        *,
        optimizer: Union[str, Optimizer] = "scipy.lbfgsb",
        optimizer_options: Optional[Dict[str, Any]] = None,
        engine: EngineConfig = EngineConfig(),
        compute_covariance: bool = True,
        report_all: bool = True,
        propagation: str = "linear",
        timeout: Optional[float] = None,
        objective: Optional[ObjectiveAdapter] = None,
    ) -> FitResult:
        """Fit the model and return a FitResult.

        Raises OptimizationFailure if any phase fails to converge. A failed
        covariance computation does not raise: the result carries point
        estimates only, status "covariance_failed" and a warning.

        Options:
        - optimizer: back-end name ("scipy.lbfgsb", "scipy.trust-constr") or
          an object with a compatible `minimize` method
        - optimizer_options: dict forwarded to the back-end
        - compute_covariance: False skips uncertainty entirely
        - report_all: also compute Prager's nearness and coverage
        - propagation: "linear" (uncertainties) or "numdiff" delta method
        - timeout: wall-clock limit in seconds over all phases
        - objective: custom ObjectiveAdapter (default: LaplaceObjective)
        """
        if propagation not in PROPAGATION:
            raise ValueError(f"propagation must be one of {PROPAGATION}, got {propagation!r}.")

        data = observations.align(dteuler=self.dteuler, forecast=self.forecast)
        initial = self.initial(observations)
        if objective is None:
            objective = LaplaceObjective(
                data, initial, parameterization=self.parameterization, config=engine
            )

        phases = self.phases()
        controller = PhasedOptimizationController(optimizer, optimizer_options, timeout)
        outcome = controller.run(initial, phases, objective)

        match outcome:
            case OptimizerFailed(phase=ph, message=msg, objective=obj, gradient=grad,
                                 params=last, phases=statuses):
                raise OptimizationFailure(
                    msg, phase=ph, objective=obj, gradient=grad, params=last, phases=statuses
                )
            case Converged(params=theta, objective=value, phases=statuses):
                pass
            case _:
                raise TypeError(f"Unexpected optimization outcome {outcome!r}.")

        free_mask = theta.mask(phases[-1].free_names(self.params))
        logB, logF = objective.latent(theta.values)
        logB = np.asarray(logB, dtype=float)
        logF = np.asarray(logF, dtype=float)
        latent = LatentTrajectory(time=data.time, logB=logB, logF=logF, est_mask=data.est_mask)

        free_names = tuple(n for n, f in zip(theta.flat_names, free_mask) if f)
        ngrid = logB.shape[0]
        cov_names = (
            free_names
            + tuple(f"logB[{j}]" for j in range(ngrid))
            + tuple(f"logF[{j}]" for j in range(ngrid))
        )

        messages: List[str] = []
        status = "converged"
        cov: Optional[np.ndarray] = None
        if compute_covariance:
            try:
                cov = np.asarray(objective.covariance(theta.values, free_mask), dtype=float)
                if cov.shape != (len(cov_names), len(cov_names)):
                    raise CovarianceFailure(
                        f"Covariance has shape {cov.shape}, expected "
                        f"{(len(cov_names), len(cov_names))}."
                    )
                if not covariance_is_usable(cov, len(cov_names)):
                    raise CovarianceFailure("Covariance matrix has undefined entries.")
            except CovarianceFailure as e:
                msg = f"Could not calculate covariance: {e}"
                warn(msg, UserWarning)
                messages.append(msg)
                status = "covariance_failed"
                cov = np.full((len(cov_names), len(cov_names)), np.nan)

        z0 = np.concatenate([theta.values[free_mask], logB, logF])
        usable_cov = cov if covariance_is_usable(cov, z0.shape[0]) else None

        estimates = _estimates(theta, free_mask, usable_cov)

        unavailable: Dict[str, str] = {}
        derived: Dict[str, ParamView] = {}
        for name, fn, is_log in _quantities(self, theta, free_mask, ngrid, data.catch_map):
            try:
                v, e = delta_method(fn, z0, usable_cov, method=propagation)
            except DerivedQuantityDomainError as err:
                unavailable[name] = str(err)
                continue
            derived[name] = ParamView(name=name, value=v, stderr=e, log=is_log, derived=True)

        if unavailable:
            msg = f"Unavailable derived quantities: {', '.join(sorted(unavailable))}"
            warn(msg, UserWarning)
            messages.append(msg)

        stats: Optional[PragerStatistics] = None
        if report_all:
            try:
                if "Bmsy" not in derived:
                    raise DerivedQuantityDomainError(
                        f"Bmsy is unavailable: {unavailable.get('Bmsy', 'not computed')}"
                    )
                stats = prager_statistics(
                    derived["Bmsy"].value,
                    np.exp(logB),
                    float(np.exp(theta.scalar("logK"))),
                    data.est_mask,
                )
            except DerivedQuantityDomainError as err:
                unavailable["nearness"] = str(err)
                unavailable["coverage"] = str(err)
                msg = f"Prager statistics unavailable: {err}"
                warn(msg, UserWarning)
                messages.append(msg)

        return FitResult(
            params=theta,
            latent=latent,
            cov=cov,
            cov_names=cov_names,
            estimates=estimates,
            derived=ParamsView(derived),
            stats=stats,
            phases=statuses,
            status=status,
            warnings=tuple(messages),
            unavailable=unavailable,
            objective=float(value),
            optimizer=str(getattr(controller.optimizer, "name", type(controller.optimizer).__name__)),
            msy_convention=self.msy_convention,
        )


def _estimates(
    theta: ParameterVector, free_mask: np.ndarray, cov: Optional[np.ndarray]
) -> ParamsView:
    """Fixed effects with stderrs for the free entries (None when fixed)."""
    sd_full = np.full(theta.values.shape, np.nan)
    if cov is not None:
        k = int(free_mask.sum())
        sd_full[free_mask] = np.sqrt(np.diag(cov)[:k])

    items: Dict[str, ParamView] = {}
    for spec in theta.specs:
        sl = theta.slice_of(spec.name)
        value = theta.values[sl]
        sd = sd_full[sl]
        stderr: Any = None
        if cov is not None and np.all(free_mask[sl]):
            stderr = float(sd[0]) if spec.size == 1 else sd.copy()
        items[spec.name] = ParamView(
            name=spec.name,
            value=float(value[0]) if spec.size == 1 else value.copy(),
            stderr=stderr,
            log=True,
        )
    return ParamsView(items)


def _quantities(
    spec: ModelSpecification,
    theta: ParameterVector,
    free_mask: np.ndarray,
    ngrid: int,
    catch_map: np.ndarray,
) -> List[Tuple[str, Callable[[Any], Any], bool]]:
    """(name, fn(z), is_log) for every reported derived quantity.

    z is [free fixed effects, logB, logF]; each fn works on floats and on
    `uncertainties` values.
    """
    free_idx = np.flatnonzero(free_mask)
    k = free_idx.shape[0]
    base = theta.values

    def full(z):
        th = np.array(base, dtype=object)
        th[free_idx] = z[:k]
        return th

    def par(z, name):
        return full(z)[theta.slice_of(name)]

    def nat(z, name):
        return umath.exp(par(z, name)[0])

    def K(z):
        return nat(z, "logK")

    def n(z):
        return nat(z, "logn")

    def sdb(z):
        return nat(z, "logsdb")

    def sdf(z):
        return nat(z, "logsdf")

    def r(z):
        if spec.parameterization == "rate":
            return nat(z, "logr")
        return rate_from_yield(nat(z, "logm"), K(z), n(z))

    def m(z):
        if spec.parameterization == "yield":
            return nat(z, "logm")
        return yield_from_rate(r(z), K(z), n(z))

    def refpoints(convention):
        def fn(z):
            value = r(z) if spec.parameterization == "rate" else nat(z, "logm")
            return reference_points(
                K(z),
                n(z),
                value,
                parameterization=spec.parameterization,
                convention=convention,
                sdb=sdb(z),
            )

        return fn

    det = refpoints("deterministic")
    sto = refpoints("stochastic")
    chosen = det if spec.msy_convention == "deterministic" else sto
    suffix = "d" if spec.msy_convention == "deterministic" else "s"

    def logB(z):
        return z[k : k + ngrid]

    def logF(z):
        return z[k + ngrid : k + 2 * ngrid]

    out: List[Tuple[str, Callable[[Any], Any], bool]] = [
        ("r", r, False),
        ("m", m, False),
        ("K", K, False),
        ("q", lambda z: unp.exp(par(z, "logq")), False),
        ("n", n, False),
        ("sdb", sdb, False),
        ("sdf", sdf, False),
        ("sdi", lambda z: nat(z, "logalpha") * sdb(z), False),
        ("sdc", lambda z: nat(z, "logbeta") * sdf(z), False),
        ("bkfrac", lambda z: nat(z, "logbkfrac"), False),
    ]
    for name in ("Bmsyd", "Fmsyd", "MSYd"):
        out.append((name, lambda z, name=name: det(z)[name], False))
    for name in ("Bmsys", "Fmsys", "MSYs"):
        out.append((name, lambda z, name=name: sto(z)[name], False))
    for name in ("Bmsy", "Fmsy", "MSY"):
        out.append((name, lambda z, name=name: chosen(z)[name + suffix], False))
    out.extend(
        [
            ("logBmsy", lambda z: umath.log(chosen(z)["Bmsy" + suffix]), True),
            ("logFmsy", lambda z: umath.log(chosen(z)["Fmsy" + suffix]), True),
            ("B", lambda z: unp.exp(logB(z)), False),
            ("F", lambda z: unp.exp(logF(z)), False),
            ("BBmsy", lambda z: unp.exp(logB(z)) / chosen(z)["Bmsy" + suffix], False),
            ("FFmsy", lambda z: unp.exp(logF(z)) / chosen(z)["Fmsy" + suffix], False),
            ("Cp", lambda z: np.dot(catch_map, unp.exp(logB(z) + logF(z))), False),
        ]
    )
    return out
