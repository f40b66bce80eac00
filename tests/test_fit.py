import numpy as np
import pytest

from spm_fitting import (
    CovarianceFailure,
    EngineConfig,
    LaplaceObjective,
    ModelSpecification,
    Observations,
    OptimizationFailure,
    simulate,
)
from spm_fitting.backends import OptimizerResult


def _observations():
    years = np.arange(2000.0, 2020.0)
    return Observations(
        time_catch=years,
        obs_catch=np.full(years.size, 60.0),
        time_index=(years,),
        obs_index=(np.linspace(2.0, 1.0, years.size),),
    )


class FakeAdapter:
    """Quadratic objective around a known parameter vector."""

    def __init__(self, target, ngrid, fail_covariance=False, nan_covariance=False, biomass=None):
        self.target = np.asarray(target, dtype=float)
        self.ngrid = ngrid
        self.fail_covariance = fail_covariance
        self.nan_covariance = nan_covariance
        self.biomass = (
            np.linspace(300.0, 700.0, ngrid) if biomass is None else np.asarray(biomass)
        )

    def evaluate(self, theta):
        d = np.asarray(theta) - self.target
        return 0.5 * float(d @ d), d

    def covariance(self, theta, free_mask):
        if self.fail_covariance:
            raise CovarianceFailure("Hessian is not positive definite.")
        k = int(np.sum(free_mask))
        if self.nan_covariance:
            return np.full((k + 2 * self.ngrid, k + 2 * self.ngrid), np.nan)
        return np.diag(np.full(k + 2 * self.ngrid, 0.01))

    def latent(self, theta):
        return np.log(self.biomass), np.full(self.ngrid, np.log(0.1))


def _setup(**kw):
    obs = _observations()
    spec = ModelSpecification.default(nindex=1, parameterization="rate").with_msy_convention(
        "deterministic"
    )
    init = spec.initial(obs)
    target = init.as_dict()
    target["logr"] = np.array([np.log(0.3)])
    target["logK"] = np.array([np.log(1000.0)])
    flat = np.concatenate([target[n] for n in init])
    ngrid = obs.align().ngrid
    return obs, spec, FakeAdapter(flat, ngrid, **kw)


def test_fit_assembles_result():
    obs, spec, adapter = _setup()
    res = spec.fit(obs, objective=adapter)

    assert res.status == "converged"
    assert res.optimizer == "scipy.lbfgsb"
    assert res["Bmsy"].value == pytest.approx(500.0, rel=1e-4)
    assert res["Fmsy"].value == pytest.approx(0.15, rel=1e-4)
    assert res["MSY"].value == pytest.approx(75.0, rel=1e-4)
    assert res["Bmsy"].stderr > 0.0
    assert res["Bmsyd"].value == res["Bmsy"].value
    assert res["Bmsys"].value < res["Bmsyd"].value
    assert res["logBmsy"].log
    assert res["logK"].value == pytest.approx(np.log(1000.0), abs=1e-4)
    assert res["logK"].stderr == pytest.approx(0.1)
    # held fixed: no standard error
    assert res["logn"].stderr is None

    ngrid = adapter.ngrid
    assert res.cov.shape == (len(res.cov_names), len(res.cov_names))
    assert res.cov_names[-1] == f"logF[{ngrid - 1}]"
    assert res.cov_fixed.shape == (6, 6)
    assert res.derived["B"].value.shape == (ngrid,)
    np.testing.assert_allclose(res.derived["BBmsy"].value, adapter.biomass / 500.0, rtol=1e-4)
    assert res.derived["Cp"].value.shape == (obs.obs_catch.size,)
    assert res.stats.nearness == 1.0
    assert 0.0 <= res.stats.coverage <= 2.0
    assert res.warnings == ()
    assert "Bmsy" in res.summary()

    with pytest.raises(ValueError):
        res.cov[0, 0] = 1.0
    with pytest.raises(KeyError):
        res["nothing"]


def test_covariance_failure_degrades_result():
    obs, spec, adapter = _setup(fail_covariance=True)
    with pytest.warns(UserWarning, match="covariance"):
        res = spec.fit(obs, objective=adapter)

    assert res.status == "covariance_failed"
    assert res.cov.shape == (len(res.cov_names), len(res.cov_names))
    assert np.all(np.isnan(res.cov))
    assert all(pv.stderr is None for pv in res.derived.values())
    assert all(pv.stderr is None for pv in res.estimates.values())
    assert res["Bmsy"].value == pytest.approx(500.0, rel=1e-4)
    assert res.stats is not None
    assert res.warnings


def test_undefined_covariance_degrades_result():
    obs, spec, adapter = _setup(nan_covariance=True)
    with pytest.warns(UserWarning, match="undefined entries"):
        res = spec.fit(obs, objective=adapter)

    assert res.status == "covariance_failed"
    assert not res.ok
    assert np.all(np.isnan(res.cov))
    assert res["Bmsy"].stderr is None
    assert any("covariance" in w for w in res.warnings)


def test_result_is_read_only():
    obs, spec, adapter = _setup()
    res = spec.fit(obs, objective=adapter)

    with pytest.raises(ValueError):
        res.derived["B"].value[0] = -1.0
    with pytest.raises(ValueError):
        res.derived["B"].stderr[0] = 0.0
    with pytest.raises(ValueError):
        res.derived["F"].value[0] = 0.0
    with pytest.raises(TypeError):
        res.unavailable["x"] = "y"
    with pytest.raises(TypeError):
        res.phases[0].stats["nit"] = 0
    assert res.derived["B"].value[0] == pytest.approx(300.0, rel=1e-6)


def test_no_covariance_requested():
    obs, spec, adapter = _setup(fail_covariance=True)
    res = spec.fit(obs, objective=adapter, compute_covariance=False, report_all=False)
    assert res.status == "converged"
    assert res.cov is None
    assert res["MSY"].stderr is None
    assert res.stats is None
    assert res.warnings == ()


def test_numdiff_propagation_matches_linear():
    obs, spec, adapter = _setup()
    lin = spec.fit(obs, objective=adapter, propagation="linear")
    num = spec.fit(obs, objective=adapter, propagation="numdiff")
    assert num["Bmsy"].stderr == pytest.approx(lin["Bmsy"].stderr, rel=1e-4)
    np.testing.assert_allclose(num.derived["B"].stderr, lin.derived["B"].stderr, rtol=1e-4)


def test_domain_error_disables_only_reference_points():
    obs, spec, adapter = _setup()
    spec = spec.fix(logn=0.0)
    adapter.target[list(spec.initial(obs).flat_names).index("logn")] = 0.0
    with pytest.warns(UserWarning):
        res = spec.fit(obs, objective=adapter)

    assert res.status == "converged"
    assert res["K"].value == pytest.approx(1000.0, rel=1e-4)
    for name in ("Bmsy", "Fmsy", "MSY", "Bmsyd", "m", "nearness", "coverage"):
        assert name in res.unavailable
    assert res.stats is None
    with pytest.raises(KeyError, match="unavailable"):
        res["Bmsy"]


class AlwaysFails:
    name = "always-fails"

    def minimize(self, *, fun, x0, options):
        fun(x0)
        return OptimizerResult(x=np.asarray(x0), fun=float("nan"), success=False, message="no")


def test_optimizer_failure_raises():
    obs, spec, adapter = _setup()
    with pytest.raises(OptimizationFailure) as info:
        spec.fit(obs, objective=adapter, optimizer=AlwaysFails())
    err = info.value
    assert err.phase == 1
    assert err.params is not None
    assert err.gradient.shape == (9,)
    assert "phase 1" in str(err)


def test_invalid_propagation():
    obs, spec, adapter = _setup()
    with pytest.raises(ValueError):
        spec.fit(obs, objective=adapter, propagation="bootstrap")


def test_laplace_gradient_matches_finite_differences():
    pytest.importorskip("jax")
    obs = simulate(years=12, rng=np.random.default_rng(3))
    spec = ModelSpecification.default(nindex=1, parameterization="rate")
    init = spec.initial(obs)
    obj = LaplaceObjective(obs.align(), init, parameterization="rate", config=EngineConfig(inner_gtol=1e-10))

    theta = init.values.copy()
    value, grad = obj.evaluate(theta)
    assert np.isfinite(value)

    h = 1e-5
    fd = np.empty_like(theta)
    for i in range(theta.size):
        tp = theta.copy()
        tm = theta.copy()
        tp[i] += h
        tm[i] -= h
        fd[i] = (obj.evaluate(tp)[0] - obj.evaluate(tm)[0]) / (2.0 * h)
    np.testing.assert_allclose(grad, fd, rtol=1e-3, atol=1e-4)


def test_simulated_fit_end_to_end():
    pytest.importorskip("jax")
    obs = simulate(K=1000.0, r=0.6, sdf=0.3, years=30, rng=np.random.default_rng(0))
    spec = ModelSpecification.default(nindex=1)
    res = spec.fit(obs)

    assert np.isfinite(res.objective)
    assert res.status in ("converged", "covariance_failed")
    assert res["Bmsy"].value > 0.0
    assert res.latent.logB.shape == (obs.align().ngrid,)
    assert res.latent.est_mask.all()
    assert [s.index for s in res.phases] == [1]
