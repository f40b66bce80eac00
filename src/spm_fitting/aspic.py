"""Reader/writer for the ASPIC 7 interchange format and ASPIC result files.

Input file layout (non-comment lines, '#' starts a comment):

  1  format version (ASPIC-V7)
  2  title
  3  program mode, verbosity, bootstraps, percentile
  4  model shape, conditioning, objective function
  5  number of years, number of series
  6-9  Monte Carlo, convergence, maximum F, random seed
  10 B1K line, 11 MSY line, 12 Fmsy line, then one q line per series
  DATA, then per series: quoted name, type code, one line per year.

A negative value marks a missing observation.
"""

from __future__ import annotations

import datetime
import logging
import math
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from warnings import warn

import numpy as np

from .data import Observations, default_guesses
from .errors import FormatError

__all__ = [
    "AspicInput",
    "AspicResult",
    "read_aspic",
    "write_aspic",
    "read_aspic_result",
]

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

CATCH_TYPES = ("CC", "CE")
INDEX_TYPES = ("I0", "I1", "I2", "B0", "B1", "B2")
STATE_COLUMNS = (
    "obs", "time", "Fest", "B0est", "Best", "Catch", "Cest", "Pest", "FFmsy", "BBmsy",
)
_NUMBER = re.compile(r"[0-9.]*E[+-][0-9]*")


@dataclass(frozen=True)
class AspicInput:
    """Contents of an ASPIC input file."""

    version: str
    title: str
    nobs: int
    b1k: float
    msy: float
    fmsy: float
    q: Tuple[float, ...]
    names: Tuple[str, ...]
    types: Tuple[str, ...]
    time_catch: np.ndarray
    obs_catch: np.ndarray
    time_index: Tuple[np.ndarray, ...]
    obs_index: Tuple[np.ndarray, ...]

    @property
    def nseries(self) -> int:
        return len(self.types)

    def to_observations(self) -> Observations:
        return Observations(
            time_catch=self.time_catch,
            obs_catch=self.obs_catch,
            time_index=self.time_index,
            obs_index=self.obs_index,
        )

    def guesses(self, parameterization: str = "rate") -> Dict[str, Any]:
        """Log-scale starting values from the header (logistic curve)."""
        if parameterization == "rate":
            out: Dict[str, Any] = {"logr": math.log(2.0 * self.fmsy)}
        elif parameterization == "yield":
            out = {"logm": math.log(self.msy)}
        else:
            raise ValueError(
                f"parameterization must be 'rate' or 'yield', got {parameterization!r}."
            )
        out["logK"] = math.log(2.0 * self.msy / self.fmsy)
        out["logq"] = np.log(np.asarray(self.q, dtype=float))
        return out


@dataclass(frozen=True)
class AspicResult:
    """Parameter estimates and trajectory table of an ASPIC result file."""

    nobs: int
    params: Mapping[str, float]
    states: Mapping[str, np.ndarray] = field(default_factory=dict)


# ---- writer ----
def _fmt_header(x: float) -> str:
    return f"{x:.2E}"


def _fmt_value(x: float) -> str:
    return f"{x: .16E}"


def write_aspic(
    observations: Observations,
    filename: PathLike,
    *,
    ini: Optional[Mapping[str, Any]] = None,
    title: str = "Unknown stock",
    mode: str = "BOT",
    estimate_bkfrac: bool = True,
) -> None:
    """Write observations as an ASPIC 7 input file.

    The first index series is paired with the catches in a `CC` series,
    further index series are written as `I1`. Observation times are floored
    to integers (with a UserWarning when that changes any time). `ini`
    holds log-scale initial values (logr, logK, logq, logbkfrac); missing
    entries fall back to data-driven defaults.
    """
    times = [observations.time_catch, *observations.time_index]
    if any(np.any(np.mod(t, 1.0) != 0.0) for t in times):
        warn(
            "Observation times were rounded down (floored) to integers. "
            "Consider providing only integer observation times.",
            UserWarning,
        )

    tc = np.floor(observations.time_catch).astype(int)
    ti = [np.floor(t).astype(int) for t in observations.time_index]
    years = np.unique(np.concatenate([tc, *ti]))
    nobs = years.shape[0]

    def column(t: np.ndarray, values: np.ndarray, what: str) -> np.ndarray:
        if np.unique(t).shape[0] != t.shape[0]:
            raise FormatError(f"{what} has more than one observation in a year after flooring.")
        col = np.full(nobs, -1.0)
        col[np.searchsorted(years, t)] = values
        return col

    catch = column(tc, observations.obs_catch, "Catch series")
    indices = [
        column(t, o, f"Index series {s + 1}")
        for s, (t, o) in enumerate(zip(ti, observations.obs_index))
    ]

    guesses = default_guesses(observations, "rate")
    guesses.update(dict(ini or {}))
    r = math.exp(float(np.asarray(guesses["logr"]).reshape(-1)[0]))
    K = math.exp(float(np.asarray(guesses["logK"]).reshape(-1)[0]))
    q = np.exp(np.broadcast_to(np.asarray(guesses["logq"], dtype=float), (observations.nindex,)))
    bkfrac = math.exp(float(np.asarray(guesses["logbkfrac"]).reshape(-1)[0]))
    msy = r * K / 4.0
    fmsy = r / 2.0

    stamp = datetime.datetime.now().isoformat(timespec="seconds")
    lines: List[str] = [
        "ASPIC-V7",
        f"# File generated by spm_fitting.write_aspic at {stamp}",
        f'"{title}"',
        "# Program mode (FIT/BOT), verbosity, N bootstraps, [opt] user percentile:",
        f"{mode}  102  1000  95",
        "# Model shape, conditioning (YLD/EFT), obj. fn. (SSE/LAV/MLE/MAP):",
        "LOGISTIC  YLD  SSE",
        "# N years, N series:",
        f"{nobs}  {observations.nindex}",
        "# Monte Carlo mode (0/1/2), N trials:",
        "0  30000",
        "# Convergence criteria (3 values):",
        "1.00E-08  3.00E-08  1.00E-04",
        "# Maximum F, N restarts, [gen. model] N steps/yr:",
        "8.00E+00  6  24",
        "# Random seed (large integer):",
        "1234",
        "# Initial guesses and bounds follow:",
        f"B1K   {_fmt_header(bkfrac)}  {int(estimate_bkfrac)}  "
        f"{_fmt_header(0.01 * bkfrac)}  {_fmt_header(100 * bkfrac)}  penalty  {_fmt_header(0.0)}",
        f"MSY   {_fmt_header(msy)}  1  {_fmt_header(0.03 * msy)}  {_fmt_header(5000 * msy)}",
        f"Fmsy  {_fmt_header(fmsy)}  1  {_fmt_header(0.01 * fmsy)}  {_fmt_header(100 * fmsy)}",
    ]
    for qs in q:
        lines.append(
            f"q     {_fmt_header(qs)}  1  {_fmt_header(1.0)}  "
            f"{_fmt_header(0.001 * qs)}  {_fmt_header(100 * qs)}"
        )

    lines.append("DATA")
    lines.append('"Combined-Fleet Index, Total Landings"')
    lines.append("CC")
    for y, i1, c in zip(years, indices[0], catch):
        lines.append(f"  {y:4d}    {_fmt_value(i1)}    {_fmt_value(c)}")
    for s, col in enumerate(indices[1:], start=1):
        lines.append(f'"Index{s}"')
        lines.append("I1")
        for y, v in zip(years, col):
            lines.append(f"  {y:4d}    {_fmt_value(v)}")

    logger.info("Writing ASPIC input to %s", os.fspath(filename))
    with open(filename, "w", encoding="utf-8") as fh:
        fh.write("\n".join(lines) + "\n")


# ---- reader ----
def _floats(line: str, lineno: int) -> List[float]:
    try:
        return [float(tok) for tok in line.split()]
    except ValueError as e:
        raise FormatError(f"line {lineno}: expected numbers, got {line.strip()!r}") from e


def _field(line: str, pos: int, lineno: int) -> float:
    toks = line.split()
    if len(toks) <= pos:
        raise FormatError(f"line {lineno}: missing field {pos + 1} in {line.strip()!r}")
    try:
        return float(toks[pos])
    except ValueError as e:
        raise FormatError(f"line {lineno}: field {pos + 1} is not a number") from e


def read_aspic(filename: PathLike) -> AspicInput:
    """Read an ASPIC 7 input file.

    Series types: CC (time, cpue, catch), CE (time, effort, catch; the index
    is catch/effort) and I0/I1/I2/B0/B1/B2 (time, index). Negative values
    are missing. The catches come from the first CC/CE series.

    Header fields, series names and series types are found by position among
    the lines not starting with "#", blank lines included. Blank lines
    between data rows are skipped.
    """
    with open(filename, "r", encoding="utf-8") as fh:
        raw = fh.read().splitlines()

    content = [
        (i + 1, line)
        for i, line in enumerate(raw)
        if not line.startswith("#")
    ]
    try:
        data_pos = next(k for k, (_, line) in enumerate(content) if line.strip() == "DATA")
    except StopIteration:
        raise FormatError("No DATA marker found.") from None
    header = content[:data_pos]
    if len(header) < 12:
        raise FormatError(f"Header has {len(header)} lines, expected at least 12.")

    version = header[0][1].strip()
    title = header[1][1].strip().strip('"')
    nobs = int(_field(header[4][1], 0, header[4][0]))
    nseries = int(_field(header[4][1], 1, header[4][0]))
    if nobs < 1 or nseries < 1:
        raise FormatError("Number of years and number of series must be positive.")
    if len(header) < 12 + nseries:
        raise FormatError(f"Expected {nseries} q lines in the header.")
    b1k = _field(header[9][1], 1, header[9][0])
    msy = _field(header[10][1], 1, header[10][0])
    fmsy = _field(header[11][1], 1, header[11][0])
    q = tuple(_field(line, 1, no) for no, line in header[12 : 12 + nseries])

    body = content[data_pos + 1 :]
    pos = 0
    names: List[str] = []
    types: List[str] = []
    tables: List[np.ndarray] = []
    for s in range(nseries):
        if pos + 2 > len(body):
            raise FormatError(f"Series {s + 1} is truncated.")
        names.append(body[pos][1].strip().strip('"'))
        kind = body[pos + 1][1].strip()
        if kind not in CATCH_TYPES + INDEX_TYPES:
            raise FormatError(f"line {body[pos + 1][0]}: unknown series type {kind!r}.")
        types.append(kind)
        ncol = 3 if kind in CATCH_TYPES else 2
        pos += 2
        rows = []
        while len(rows) < nobs:
            if pos >= len(body):
                raise FormatError(f"Series {s + 1} is truncated.")
            no, line = body[pos]
            pos += 1
            if line.strip() == "":
                continue
            vals = _floats(line, no)
            if len(vals) < ncol:
                raise FormatError(f"line {no}: {kind} rows need {ncol} columns.")
            rows.append(vals[:ncol])
        tables.append(np.array(rows, dtype=float))

    catch_series = [s for s, kind in enumerate(types) if kind in CATCH_TYPES]
    if not catch_series:
        raise FormatError("No catch series (CC or CE) found.")

    time_index = []
    obs_index = []
    for kind, tab in zip(types, tables):
        t = tab[:, 0]
        if kind == "CC":
            idx = tab[:, 1]
        elif kind == "CE":
            effort, catch = tab[:, 1], tab[:, 2]
            valid = (effort > 0) & (catch >= 0)
            idx = np.where(valid, catch / np.where(valid, effort, 1.0), -1.0)
        else:
            idx = tab[:, 1]
        keep = idx >= 0
        time_index.append(t[keep])
        obs_index.append(idx[keep])

    ctab = tables[catch_series[0]]
    ckeep = ctab[:, 2] >= 0
    return AspicInput(
        version=version,
        title=title,
        nobs=nobs,
        b1k=b1k,
        msy=msy,
        fmsy=fmsy,
        q=q,
        names=tuple(names),
        types=tuple(types),
        time_catch=ctab[ckeep, 0],
        obs_catch=ctab[ckeep, 2],
        time_index=tuple(time_index),
        obs_index=tuple(obs_index),
    )


def read_aspic_result(filename: PathLike) -> AspicResult:
    """Read parameter estimates and the trajectory table of an ASPIC result file.

    Parameter lines are located by their leading label (B1/K, MSY, Fmsy, q);
    the value is the first E-notation number on the line. The trajectory
    table starts 7 lines below "ESTIMATED POPULATION TRAJECTORY".
    """
    with open(filename, "r", encoding="utf-8") as fh:
        lines = fh.read().splitlines()

    def first_line(pattern: str) -> Tuple[int, str]:
        rx = re.compile(pattern)
        for i, line in enumerate(lines):
            if rx.search(line):
                return i, line
        raise FormatError(f"No line matching {pattern!r}.")

    _, years_line = first_line(r"Number of years analyzed")
    ints = re.findall(r"[0-9]+", years_line)
    if not ints:
        raise FormatError("Number of years analyzed has no value.")
    nobs = int(ints[0])

    def number(label: str) -> float:
        no, line = first_line(label)
        found = [m for m in _NUMBER.findall(line) if m[:1].isdigit() or m[:1] == "."]
        if not found:
            raise FormatError(f"line {no + 1}: no E-notation number after {label!r}.")
        return float(found[0])

    bkfrac = number(r"^B1/K")
    msy = number(r"^MSY")
    fmsy = number(r"^Fmsy")
    q = number(r"^q")
    bmsy = msy / fmsy
    params = {
        "r": 2.0 * fmsy,
        "K": 2.0 * bmsy,
        "q": q,
        "Fmsy": fmsy,
        "Bmsy": bmsy,
        "MSY": msy,
        "bkfrac": bkfrac,
    }

    start, _ = first_line(r"ESTIMATED POPULATION TRAJECTORY")
    rows = []
    for i in range(start + 7, len(lines)):
        if len(rows) == nobs:
            break
        if not lines[i].strip():
            continue
        vals = _floats(lines[i], i + 1)
        if len(vals) < len(STATE_COLUMNS):
            raise FormatError(
                f"line {i + 1}: trajectory rows need {len(STATE_COLUMNS)} columns."
            )
        rows.append(vals[: len(STATE_COLUMNS)])
    if len(rows) != nobs:
        raise FormatError(f"Trajectory table has {len(rows)} rows, expected {nobs}.")

    table = np.array(rows, dtype=float)
    states = {}
    for j, name in enumerate(STATE_COLUMNS):
        col = table[:, j].copy()
        col.setflags(write=False)
        states[name] = col
    return AspicResult(nobs=nobs, params=params, states=states)
