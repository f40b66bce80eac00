from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from .data import Observations


def simulate(
    *,
    K: float = 1000.0,
    r: float = 0.6,
    n: float = 2.0,
    sdb: float = 0.1,
    sdf: float = 0.1,
    sdi: float = 0.1,
    sdc: float = 0.05,
    q: Sequence[float] = (0.01,),
    years: int = 30,
    F: Optional[float] = None,
    bkfrac: float = 0.8,
    dteuler: float = 1.0 / 16.0,
    t0: float = 0.0,
    rng: Optional[np.random.Generator] = None,
) -> Observations:
    """Simulate annual catches and indices from the Euler-discretized model.

    Biomass follows the stochastic Pella-Tomlinson dynamics on a grid of step
    `dteuler`; log F is a random walk starting at `F` (default Fmsy).
    Catches are the integrated F·B over each year, indices are q·B at the
    start of each year; both carry lognormal observation noise.
    """
    if rng is None:
        rng = np.random.default_rng()
    if K <= 0.0 or r <= 0.0 or n <= 0.0 or n == 1.0:
        raise ValueError("K, r and n must be positive and n != 1.")
    years = int(years)
    if years < 2:
        raise ValueError("years must be at least 2.")
    steps = int(round(1.0 / dteuler))
    if steps < 1 or not np.isclose(steps * dteuler, 1.0):
        raise ValueError("dteuler must divide one year.")

    nstep = years * steps
    F0 = r * (n - 1.0) / n if F is None else float(F)

    logB = np.empty(nstep + 1)
    logF = np.empty(nstep + 1)
    logB[0] = np.log(bkfrac * K) + sdb * rng.normal()
    logF[0] = np.log(F0)
    sq = np.sqrt(dteuler)
    for j in range(nstep):
        B = np.exp(logB[j])
        growth = r * (1.0 - (B / K) ** (n - 1.0))
        logB[j + 1] = (
            logB[j]
            + (growth - np.exp(logF[j]) - 0.5 * sdb**2) * dteuler
            + sdb * sq * rng.normal()
        )
        logF[j + 1] = logF[j] + sdf * sq * rng.normal()

    flow = np.exp(logB[:-1] + logF[:-1]) * dteuler
    catch = flow.reshape(years, steps).sum(axis=1)
    obs_catch = catch * np.exp(sdc * rng.normal(size=years))

    time = t0 + np.arange(years, dtype=float)
    at_year = np.exp(logB[::steps][:years])
    obs_index = tuple(
        float(qs) * at_year * np.exp(sdi * rng.normal(size=years)) for qs in q
    )

    return Observations(
        time_catch=time,
        obs_catch=obs_catch,
        time_index=tuple(time.copy() for _ in q),
        obs_index=obs_index,
    )
