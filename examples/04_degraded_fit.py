import warnings

import numpy as np

from spm_fitting import CovarianceFailure, ModelSpecification, Observations

# A stand-in likelihood: a quadratic bowl whose curvature cannot be inverted.


class FlatObjective:
    def __init__(self, target, ngrid):
        self.target = np.asarray(target, dtype=float)
        self.ngrid = ngrid

    def evaluate(self, theta):
        d = np.asarray(theta) - self.target
        return 0.5 * float(d @ d), d

    def covariance(self, theta, free_mask):
        raise CovarianceFailure("Hessian is singular.")

    def latent(self, theta):
        return np.log(np.linspace(200.0, 600.0, self.ngrid)), np.full(self.ngrid, -2.0)


years = np.arange(2000.0, 2015.0)
obs = Observations(
    time_catch=years,
    obs_catch=np.full(years.size, 40.0),
    time_index=(years,),
    obs_index=(np.linspace(1.5, 1.0, years.size),),
)
spec = ModelSpecification.default(nindex=1)
objective = FlatObjective(spec.initial(obs).values, obs.align().ngrid)

with warnings.catch_warnings(record=True) as caught:
    warnings.simplefilter("always")
    res = spec.fit(obs, objective=objective)

print("status:", res.status)
print("Bmsy:", res["Bmsy"].value, "stderr:", res["Bmsy"].stderr)
print("nearness:", res.stats.nearness, "coverage:", res.stats.coverage)
print("warnings:", [str(w.message) for w in caught])
