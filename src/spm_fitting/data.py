from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple

import numpy as np

__all__ = ["Observations", "ModelData", "default_guesses"]

_TIME_DECIMALS = 9


def _as_1d(name: str, a: Any) -> np.ndarray:
    out = np.asarray(a, dtype=float).reshape((-1,))
    if not np.all(np.isfinite(out)):
        raise ValueError(f"{name} contains non-finite values.")
    return out


def _readonly(a: np.ndarray) -> np.ndarray:
    a = np.array(a)
    a.setflags(write=False)
    return a


@dataclass(frozen=True)
class Observations:
    """Raw catch and index series.

    time_catch[i] is the start of catch interval i, of length dtc (scalar or
    per observation). Each index series has its own (time, value) arrays.
    All observations must be strictly positive.
    """

    time_catch: np.ndarray
    obs_catch: np.ndarray
    time_index: Tuple[np.ndarray, ...]
    obs_index: Tuple[np.ndarray, ...]
    dtc: Any = 1.0

    def __post_init__(self):
        tc = _as_1d("time_catch", self.time_catch)
        oc = _as_1d("obs_catch", self.obs_catch)
        if tc.shape != oc.shape:
            raise ValueError(
                f"time_catch and obs_catch lengths differ: {tc.shape[0]} vs {oc.shape[0]}."
            )
        if tc.size == 0:
            raise ValueError("At least one catch observation is required.")
        if np.any(oc <= 0.0):
            raise ValueError("Catch observations must be positive.")

        ti = self.time_index
        oi = self.obs_index
        if isinstance(ti, np.ndarray) and ti.ndim == 1:
            ti, oi = (ti,), (oi,)
        ti = tuple(_as_1d(f"time_index[{s}]", t) for s, t in enumerate(ti))
        oi = tuple(_as_1d(f"obs_index[{s}]", o) for s, o in enumerate(oi))
        if len(ti) != len(oi):
            raise ValueError("time_index and obs_index must have the same number of series.")
        if len(ti) == 0:
            raise ValueError("At least one index series is required.")
        for s, (t, o) in enumerate(zip(ti, oi)):
            if t.shape != o.shape:
                raise ValueError(f"Index series {s}: time and value lengths differ.")
            if t.size == 0:
                raise ValueError(f"Index series {s} is empty.")
            if np.any(o <= 0.0):
                raise ValueError(f"Index series {s}: observations must be positive.")

        dtc = np.broadcast_to(np.asarray(self.dtc, dtype=float), tc.shape)
        if np.any(dtc <= 0.0):
            raise ValueError("dtc must be positive.")

        object.__setattr__(self, "time_catch", _readonly(tc))
        object.__setattr__(self, "obs_catch", _readonly(oc))
        object.__setattr__(self, "time_index", tuple(_readonly(t) for t in ti))
        object.__setattr__(self, "obs_index", tuple(_readonly(o) for o in oi))
        object.__setattr__(self, "dtc", _readonly(dtc))

    @property
    def nindex(self) -> int:
        return len(self.time_index)

    @property
    def last_time(self) -> float:
        """End of the observed period (last catch interval end or index time)."""
        ends = [float(np.max(self.time_catch + self.dtc))]
        ends.extend(float(np.max(t)) for t in self.time_index)
        return max(ends)

    @property
    def first_time(self) -> float:
        starts = [float(np.min(self.time_catch))]
        starts.extend(float(np.min(t)) for t in self.time_index)
        return min(starts)

    def align(self, dteuler: float = 1.0, forecast: float = 0.0) -> "ModelData":
        """Build the model time grid and observation maps.

        The grid holds regular steps of `dteuler` from the first observation
        plus every observation time and catch-interval boundary, each once.
        Grid points up to the last observation time form the estimation
        range; `forecast` extends the grid beyond it.
        """
        dteuler = float(dteuler)
        forecast = float(forecast)
        if dteuler <= 0.0:
            raise ValueError("dteuler must be positive.")
        if forecast < 0.0:
            raise ValueError("forecast must be non-negative.")

        t0 = self.first_time
        tobs = self.last_time
        tend = tobs + forecast

        nsteps = int(np.floor((tend - t0) / dteuler + 1e-9))
        points = [t0 + dteuler * np.arange(nsteps + 1), [tend]]
        points.append(self.time_catch)
        points.append(self.time_catch + self.dtc)
        points.extend(self.time_index)
        grid = np.unique(np.round(np.concatenate(points), _TIME_DECIMALS))

        dt = np.empty_like(grid)
        dt[:-1] = np.diff(grid)
        dt[-1] = dteuler

        tol = 10.0 ** (-_TIME_DECIMALS + 1)
        catch_map = np.zeros((self.time_catch.shape[0], grid.shape[0]), dtype=float)
        for i, (tc, w) in enumerate(zip(self.time_catch, self.dtc)):
            inside = (grid >= tc - tol) & (grid < tc + w - tol)
            catch_map[i, inside] = dt[inside]

        index_grid = []
        index_series = []
        log_index = []
        for s, (t, o) in enumerate(zip(self.time_index, self.obs_index)):
            pos = np.searchsorted(grid, np.round(t, _TIME_DECIMALS) - tol)
            index_grid.append(pos)
            index_series.append(np.full(t.shape, s, dtype=int))
            log_index.append(np.log(o))

        return ModelData(
            time=grid,
            dt=dt,
            catch_map=catch_map,
            log_catch=np.log(self.obs_catch),
            index_grid=np.concatenate(index_grid).astype(int),
            index_series=np.concatenate(index_series),
            log_index=np.concatenate(log_index),
            est_mask=grid <= tobs + tol,
            nindex=self.nindex,
        )


@dataclass(frozen=True)
class ModelData:
    """Aligned observations on the model time grid."""

    time: np.ndarray
    dt: np.ndarray
    catch_map: np.ndarray  # (n_catch, n_grid) integration weights
    log_catch: np.ndarray
    index_grid: np.ndarray  # grid position of each index observation
    index_series: np.ndarray  # series id of each index observation
    log_index: np.ndarray
    est_mask: np.ndarray
    nindex: int

    def __post_init__(self):
        for name in (
            "time",
            "dt",
            "catch_map",
            "log_catch",
            "index_grid",
            "index_series",
            "log_index",
            "est_mask",
        ):
            object.__setattr__(self, name, _readonly(getattr(self, name)))

    @property
    def ngrid(self) -> int:
        return int(self.time.shape[0])


def default_guesses(
    observations: Observations, parameterization: str = "yield"
) -> Dict[str, Any]:
    """Data-driven starting values for every fixed effect (log scale)."""
    if parameterization not in ("rate", "yield"):
        raise ValueError(
            f"parameterization must be 'rate' or 'yield', got {parameterization!r}."
        )
    annual_catch = observations.obs_catch / observations.dtc
    logK = float(np.log(4.0 * np.max(annual_catch)))
    r = 0.8
    out: Dict[str, Any] = {}
    if parameterization == "rate":
        out["logr"] = float(np.log(r))
    else:
        out["logm"] = float(np.log(r * np.exp(logK) / 4.0))
    out["logK"] = logK
    out["logq"] = np.array(
        [float(np.log(np.max(o))) - logK for o in observations.obs_index]
    )
    out["logn"] = float(np.log(2.0))
    out["logsdb"] = float(np.log(0.2))
    out["logsdf"] = float(np.log(0.2))
    out["logalpha"] = 0.0
    out["logbeta"] = 0.0
    out["logbkfrac"] = float(np.log(0.8))
    return out
