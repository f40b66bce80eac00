"""Objective adapters: the boundary between the fit pipeline and a likelihood.

`LaplaceObjective` is the concrete engine: a JAX implementation of the
Euler-discretized stochastic surplus-production model whose latent log-biomass
and log-fishing-mortality processes are integrated out with the Laplace
approximation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

import jax

jax.config.update("jax_enable_x64", True)

import jax.numpy as jnp
import numpy as np
from jax.scipy.linalg import cho_solve as jcho_solve
from jax.scipy.stats import norm
from scipy.linalg import LinAlgError, cho_factor, cho_solve
from scipy.optimize import minimize

from .data import ModelData
from .errors import CovarianceFailure
from .params import ParameterVector

__all__ = ["ObjectiveAdapter", "EngineConfig", "LaplaceObjective"]

logger = logging.getLogger(__name__)

_LOG2PI = float(np.log(2.0 * np.pi))


class ObjectiveAdapter(Protocol):
    """What the pipeline needs from a likelihood engine.

    All methods take the full fixed-effect vector (log scale).
    """

    def evaluate(self, theta: np.ndarray) -> Tuple[float, np.ndarray]: ...

    def covariance(self, theta: np.ndarray, free_mask: np.ndarray) -> np.ndarray: ...

    def latent(self, theta: np.ndarray) -> Tuple[np.ndarray, np.ndarray]: ...


@dataclass(frozen=True)
class EngineConfig:
    """Likelihood-engine settings.

    inner_gtol / inner_maxiter : convergence of the latent-mode solver
    hessian_step : relative step for the finite-difference outer Hessian
    trace : emit a DEBUG record per objective evaluation
    """

    inner_gtol: float = 1e-9
    inner_maxiter: int = 500
    hessian_step: float = 1e-4
    trace: bool = False


class LaplaceObjective:
    """Marginal negative log-likelihood of the fixed effects.

    L(θ) = J(θ, û) + ½ log det H_uu − (n_u/2) log 2π, where J is the joint
    negative log-likelihood, û its minimizer over the latent states and
    H_uu the latent Hessian at û.
    """

    def __init__(
        self,
        data: ModelData,
        layout: ParameterVector,
        *,
        parameterization: str = "yield",
        config: EngineConfig = EngineConfig(),
    ):
        if parameterization not in ("rate", "yield"):
            raise ValueError(
                f"parameterization must be 'rate' or 'yield', got {parameterization!r}."
            )
        rate_name = "logr" if parameterization == "rate" else "logm"
        for name in (rate_name, "logK", "logq", "logn", "logsdb", "logsdf",
                     "logalpha", "logbeta", "logbkfrac"):
            if name not in layout:
                raise ValueError(f"Parameter layout lacks {name!r}.")
        if layout["logq"].shape[0] != data.nindex:
            raise ValueError(
                f"logq has {layout['logq'].shape[0]} entries for {data.nindex} index series."
            )

        self.data = data
        self.config = config
        self.parameterization = parameterization
        self._layout = layout
        self.ngrid = data.ngrid
        self.nlatent = 2 * data.ngrid
        self._u_hat: Optional[np.ndarray] = None
        self._build(layout, rate_name)

    # ---- model definition ----
    def _build(self, layout: ParameterVector, rate_name: str) -> None:
        d = self.data
        N = d.ngrid
        dt = jnp.asarray(d.dt[:-1])
        catch_map = jnp.asarray(d.catch_map)
        log_catch = jnp.asarray(d.log_catch)
        log_index = jnp.asarray(d.log_index)
        igrid = jnp.asarray(d.index_grid)
        iseries = jnp.asarray(d.index_series)
        sl = {name: layout.slice_of(name) for name in layout}
        yield_form = rate_name == "logm"

        def unpack(theta):
            K = jnp.exp(theta[sl["logK"]][0])
            n = jnp.exp(theta[sl["logn"]][0])
            if yield_form:
                m = jnp.exp(theta[sl["logm"]][0])
                r = m * n ** (n / (n - 1.0)) / (K * (n - 1.0))
            else:
                r = jnp.exp(theta[sl["logr"]][0])
            sdb = jnp.exp(theta[sl["logsdb"]][0])
            sdf = jnp.exp(theta[sl["logsdf"]][0])
            sdi = jnp.exp(theta[sl["logalpha"]][0]) * sdb
            sdc = jnp.exp(theta[sl["logbeta"]][0]) * sdf
            bkfrac = jnp.exp(theta[sl["logbkfrac"]][0])
            return K, n, r, sdb, sdf, sdi, sdc, bkfrac, theta[sl["logq"]]

        def joint_nll(theta, u):
            K, n, r, sdb, sdf, sdi, sdc, bkfrac, logq = unpack(theta)
            logB = u[:N]
            logF = u[N:]

            nll = -norm.logpdf(logB[0], jnp.log(bkfrac * K), sdb)

            growth = r * (1.0 - jnp.exp((n - 1.0) * (logB[:-1] - jnp.log(K))))
            mean_b = logB[:-1] + (growth - jnp.exp(logF[:-1]) - 0.5 * sdb**2) * dt
            nll -= jnp.sum(norm.logpdf(logB[1:], mean_b, sdb * jnp.sqrt(dt)))
            nll -= jnp.sum(norm.logpdf(logF[1:], logF[:-1], sdf * jnp.sqrt(dt)))

            pred_c = catch_map @ jnp.exp(logF + logB)
            nll -= jnp.sum(norm.logpdf(log_catch, jnp.log(pred_c), sdc))

            pred_i = logq[iseries] + logB[igrid]
            nll -= jnp.sum(norm.logpdf(log_index, pred_i, sdi))
            return nll

        grad_u = jax.grad(joint_nll, argnums=1)
        hess_uu = jax.hessian(joint_nll, argnums=1)

        def half_logdet(theta, u):
            L = jnp.linalg.cholesky(hess_uu(theta, u))
            return jnp.sum(jnp.log(jnp.diag(L)))

        def marginal(theta, u):
            j, j_theta = jax.value_and_grad(joint_nll, argnums=0)(theta, u)
            g, (g_theta, g_u) = jax.value_and_grad(half_logdet, argnums=(0, 1))(theta, u)
            H = hess_uu(theta, u)
            H_ut = jax.jacfwd(grad_u, argnums=0)(theta, u)
            L = jnp.linalg.cholesky(H)
            correction = H_ut.T @ jcho_solve((L, True), g_u)
            value = j + g - N * _LOG2PI
            return value, j_theta + g_theta - correction

        def latent_blocks(theta, u):
            return hess_uu(theta, u), jax.jacfwd(grad_u, argnums=0)(theta, u)

        self._joint = jax.jit(joint_nll)
        self._grad_u = jax.jit(grad_u)
        self._hess_uu = jax.jit(hess_uu)
        self._marginal = jax.jit(marginal)
        self._latent_blocks = jax.jit(latent_blocks)

    def initial_latent(self, theta: np.ndarray) -> np.ndarray:
        """Flat starting trajectory: B at bkfrac·K, F matching the mean catch."""
        theta = np.asarray(theta, dtype=float)
        v = ParameterVector(self._layout.specs, theta)
        logB0 = v.scalar("logbkfrac") + v.scalar("logK")
        annual = np.exp(self.data.log_catch).sum() / max(
            float(self.data.catch_map.sum()), 1e-12
        )
        logF0 = float(np.log(max(annual, 1e-12))) - logB0
        return np.concatenate(
            [np.full(self.ngrid, logB0), np.full(self.ngrid, logF0)]
        )

    # ---- inner problem ----
    def _solve_latent(self, theta: np.ndarray) -> Optional[np.ndarray]:
        theta_j = jnp.asarray(theta)
        starts = []
        if self._u_hat is not None:
            starts.append(self._u_hat)
        starts.append(self.initial_latent(theta))

        for u0 in starts:
            res = minimize(
                lambda u: float(self._joint(theta_j, u)),
                u0,
                method="trust-exact",
                jac=lambda u: np.asarray(self._grad_u(theta_j, u)),
                hess=lambda u: np.asarray(self._hess_uu(theta_j, u)),
                options={"gtol": self.config.inner_gtol, "maxiter": self.config.inner_maxiter},
            )
            if np.isfinite(res.fun) and np.all(np.isfinite(res.x)):
                gnorm = float(np.max(np.abs(self._grad_u(theta_j, res.x))))
                if res.success or gnorm < 1e3 * self.config.inner_gtol:
                    u_hat = np.asarray(res.x, dtype=float)
                    self._u_hat = u_hat
                    return u_hat
            logger.debug("latent solve failed from a start: %s", res.message)
        return None

    # ---- adapter protocol ----
    def evaluate(self, theta: np.ndarray) -> Tuple[float, np.ndarray]:
        theta = np.asarray(theta, dtype=float)
        u_hat = self._solve_latent(theta)
        if u_hat is None:
            if self.config.trace:
                logger.debug("theta=%s objective=inf (latent solve failed)", theta)
            return float("inf"), np.zeros_like(theta)

        value, grad = self._marginal(jnp.asarray(theta), jnp.asarray(u_hat))
        value = float(value)
        grad = np.asarray(grad, dtype=float)
        if not np.isfinite(value) or not np.all(np.isfinite(grad)):
            value, grad = float("inf"), np.zeros_like(theta)
        if self.config.trace:
            logger.debug("theta=%s objective=%.10g", np.array2string(theta, precision=6), value)
        return value, grad

    def latent(self, theta: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        u_hat = self._solve_latent(np.asarray(theta, dtype=float))
        if u_hat is None:
            nan = np.full(self.ngrid, np.nan)
            return nan, nan.copy()
        return u_hat[: self.ngrid].copy(), u_hat[self.ngrid :].copy()

    def covariance(self, theta: np.ndarray, free_mask: np.ndarray) -> np.ndarray:
        """Joint covariance over the free fixed effects then logB, logF."""
        theta = np.asarray(theta, dtype=float)
        free = np.flatnonzero(np.asarray(free_mask, dtype=bool))
        k = free.shape[0]

        eps = self.config.hessian_step * (np.abs(theta[free]) + 1.0)
        hess = np.empty((k, k), dtype=float)
        for col, (i, h) in enumerate(zip(free, eps)):
            tp = theta.copy()
            tm = theta.copy()
            tp[i] += h
            tm[i] -= h
            fp, gp = self.evaluate(tp)
            fm, gm = self.evaluate(tm)
            if not (np.isfinite(fp) and np.isfinite(fm)):
                raise CovarianceFailure(
                    f"Objective is not finite near the optimum along {self._layout.flat_names[i]}."
                )
            hess[:, col] = (gp[free] - gm[free]) / (2.0 * h)
        hess = 0.5 * (hess + hess.T)

        try:
            cf = cho_factor(hess)
        except (LinAlgError, ValueError) as e:
            raise CovarianceFailure(
                "Hessian of the marginal likelihood is not positive definite."
            ) from e
        cov_theta = cho_solve(cf, np.eye(k))

        u_hat = self._solve_latent(theta)
        if u_hat is None:
            raise CovarianceFailure("Latent mode could not be located at the optimum.")
        H_uu, H_ut = self._latent_blocks(jnp.asarray(theta), jnp.asarray(u_hat))
        H_uu = np.asarray(H_uu, dtype=float)
        H_ut = np.asarray(H_ut, dtype=float)[:, free]
        try:
            cu = cho_factor(H_uu)
        except (LinAlgError, ValueError) as e:
            raise CovarianceFailure("Latent Hessian is not positive definite.") from e
        H_uu_inv = cho_solve(cu, np.eye(H_uu.shape[0]))
        J_u = -H_uu_inv @ H_ut

        cross = J_u @ cov_theta
        joint = np.block(
            [
                [cov_theta, cross.T],
                [cross, H_uu_inv + cross @ J_u.T],
            ]
        )
        joint = 0.5 * (joint + joint.T)
        if not np.all(np.isfinite(joint)) or np.any(np.diag(joint) < 0.0):
            raise CovarianceFailure("Covariance matrix has invalid entries.")
        return joint
