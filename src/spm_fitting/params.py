from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np
from uncertainties import ufloat
from uncertainties import unumpy as unp


__all__ = [
    "ParameterSpec",
    "ParameterVector",
    "Phase",
    "ParamView",
    "ParamsView",
]


@dataclass(frozen=True)
class ParameterSpec:
    """A fixed-effect parameter, always stored in log space.

    phase:
      -1  never estimated (held at its guess)
      p   free from phase p onwards
    """

    name: str
    size: int = 1
    phase: int = 1
    guess: Optional[Tuple[float, ...]] = None

    @property
    def fixed(self) -> bool:
        return self.phase < 0


@dataclass(frozen=True)
class Phase:
    """One estimation stage: `fixed` names are pinned at their current value."""

    index: int
    fixed: frozenset

    def free_names(self, specs: Sequence[ParameterSpec]) -> Tuple[str, ...]:
        return tuple(s.name for s in specs if s.name not in self.fixed)


class ParameterVector(Mapping[str, np.ndarray]):
    """Ordered name -> value mapping over a flat float vector.

    Values are log-transformed; `natural(name)` back-transforms with exp.
    Instances are immutable: updates return a new vector.
    """

    def __init__(self, specs: Sequence[ParameterSpec], values: Any):
        self._specs = tuple(specs)
        vals = np.array(values, dtype=float).reshape((-1,))
        size = sum(int(s.size) for s in self._specs)
        if vals.shape != (size,):
            raise ValueError(
                f"ParameterVector expects {size} values for layout "
                f"{[s.name for s in self._specs]}, got {vals.shape[0]}."
            )
        vals.setflags(write=False)
        self._values = vals
        self._slices: Dict[str, slice] = {}
        start = 0
        for s in self._specs:
            self._slices[s.name] = slice(start, start + int(s.size))
            start += int(s.size)

    @classmethod
    def from_mapping(
        cls, specs: Sequence[ParameterSpec], values: Mapping[str, Any]
    ) -> "ParameterVector":
        flat = []
        for s in specs:
            if s.name not in values:
                raise KeyError(f"Missing value for parameter {s.name!r}.")
            v = np.asarray(values[s.name], dtype=float).reshape((-1,))
            if v.shape == (1,) and s.size > 1:
                v = np.repeat(v, s.size)
            if v.shape != (s.size,):
                raise ValueError(
                    f"Parameter {s.name!r} expects {s.size} value(s), got {v.shape[0]}."
                )
            flat.append(v)
        return cls(specs, np.concatenate(flat) if flat else np.empty((0,)))

    # ---- mapping protocol ----
    def __getitem__(self, name: str) -> np.ndarray:
        return self._values[self._slices[name]]

    def __iter__(self):
        return iter(self._slices)

    def __len__(self) -> int:
        return len(self._slices)

    def __repr__(self) -> str:
        inner = ", ".join(
            f"{n}={np.array2string(self[n], precision=4)}" for n in self._slices
        )
        return f"ParameterVector({inner})"

    # ---- layout helpers ----
    @property
    def specs(self) -> Tuple[ParameterSpec, ...]:
        return self._specs

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def flat_names(self) -> Tuple[str, ...]:
        """Names per flat entry, vectors expanded as name[i]."""
        out = []
        for s in self._specs:
            if s.size == 1:
                out.append(s.name)
            else:
                out.extend(f"{s.name}[{i}]" for i in range(s.size))
        return tuple(out)

    def slice_of(self, name: str) -> slice:
        return self._slices[name]

    def scalar(self, name: str) -> float:
        v = self[name]
        if v.shape != (1,):
            raise ValueError(f"Parameter {name!r} is not scalar.")
        return float(v[0])

    def natural(self, name: str) -> np.ndarray:
        return np.exp(self[name])

    def mask(self, names: Iterable[str]) -> np.ndarray:
        """Boolean mask over the flat vector selecting whole parameters."""
        m = np.zeros(self._values.shape, dtype=bool)
        for n in names:
            if n not in self._slices:
                raise KeyError(n)
            m[self._slices[n]] = True
        return m

    def replace(self, mask: np.ndarray, values: Any) -> "ParameterVector":
        """Return a new vector with entries under `mask` set to `values`."""
        out = self._values.copy()
        out[np.asarray(mask, dtype=bool)] = np.asarray(values, dtype=float)
        return ParameterVector(self._specs, out)

    def as_dict(self) -> Dict[str, np.ndarray]:
        return {n: self[n].copy() for n in self._slices}


def _readonly_array(x: Any) -> Any:
    if not isinstance(x, np.ndarray):
        return x
    out = np.array(x)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class ParamView:
    """A single estimate or derived quantity.

    `stderr is None` means no standard error is available (no covariance was
    requested, or it could not be computed).
    """

    name: str
    value: Any
    stderr: Any = None
    log: bool = False
    derived: bool = False

    def __post_init__(self):
        object.__setattr__(self, "value", _readonly_array(self.value))
        object.__setattr__(self, "stderr", _readonly_array(self.stderr))

    @property
    def has_stderr(self) -> bool:
        return self.stderr is not None

    @property
    def u(self):
        """Return an uncertainties ufloat/uarray (uncorrelated view)."""
        if self.stderr is None:
            raise ValueError(f"No stderr available for {self.name!r}.")
        v = np.asarray(self.value, dtype=float)
        e = np.asarray(self.stderr, dtype=float)
        if v.shape == ():
            return ufloat(float(v), float(e))
        return unp.uarray(v, e)

    def __getitem__(self, key: str) -> Any:
        if key == "value":
            return self.value
        if key in ("error", "stderr"):
            return self.stderr
        if key == "log":
            return self.log
        if key == "derived":
            return self.derived
        raise KeyError(key)


class ParamsView(Mapping[str, ParamView]):
    """Mapping name -> ParamView, with positional access."""

    def __init__(self, items: Mapping[str, ParamView]):
        self._items = dict(items)
        self._names = tuple(self._items.keys())

    def __getitem__(self, key):  # type: ignore[override]
        if isinstance(key, str):
            return self._items[key]
        if isinstance(key, int):
            return self._items[self._names[key]]
        raise KeyError(key)

    def __iter__(self):
        return iter(self._items)

    def __len__(self):
        return len(self._items)

    def items(self):
        return self._items.items()

    def as_dict(self) -> Dict[str, Any]:
        """Return name->value (extracting .value)."""
        return {k: v.value for k, v in self._items.items()}
