import logging

import numpy as np

from spm_fitting import ModelSpecification, simulate

logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

rng = np.random.default_rng(0)
obs = simulate(K=1000.0, r=0.6, sdb=0.1, sdf=0.3, q=(0.01,), years=30, rng=rng)

spec = (
    ModelSpecification.default(nindex=1, parameterization="yield")
    .phase(logsdb=2, logsdf=2)
    .with_msy_convention("stochastic")
)
res = spec.fit(obs)

print(res.summary())
print("B/Bmsy (last year):", res.derived["BBmsy"].value[-1])
