import tempfile
from pathlib import Path

import numpy as np

from spm_fitting import ModelSpecification, read_aspic, simulate, write_aspic

obs = simulate(years=25, q=(0.01, 0.002), rng=np.random.default_rng(1))

with tempfile.TemporaryDirectory() as tmp:
    path = Path(tmp) / "simulated.a7inp"
    write_aspic(obs, path, title="Simulated stock")
    inp = read_aspic(path)

print("series types:", inp.types)
print("catches identical:", np.array_equal(inp.obs_catch, obs.obs_catch))
for s in range(inp.nseries):
    print(f"index {s + 1} identical:", np.array_equal(inp.obs_index[s], obs.obs_index[s]))

# Header initial values become starting guesses for a fit
spec = ModelSpecification.default(nindex=inp.nseries, parameterization="rate").guess(
    **inp.guesses("rate")
)
print(spec.initial(inp.to_observations()))
