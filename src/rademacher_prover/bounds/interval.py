"""
Intervals with Directed Rounding

Every numeric bound that feeds a proof passes through this module.
The convention is fixed: lower bounds are rounded down, upper bounds are
rounded up, one ulp at a time via numpy.nextafter. Sums are rounded after
every addition, so sum_down/sum_up always enclose the real-valued sum.

Rounding is never applied to values that are only copied or compared
(box bounds read from a case file, bin edges that are exactly
representable), so exact inputs stay exact.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Union
import numpy as np


ArrayLike = Union[float, np.ndarray]


def round_down(x: ArrayLike) -> ArrayLike:
    """Next representable value towards -inf (elementwise for arrays)."""
    result = np.nextafter(x, -np.inf)
    if np.ndim(result) == 0:
        return float(result)
    return result


def round_up(x: ArrayLike) -> ArrayLike:
    """Next representable value towards +inf (elementwise for arrays)."""
    result = np.nextafter(x, np.inf)
    if np.ndim(result) == 0:
        return float(result)
    return result


def sum_down(values: Iterable[float]) -> float:
    """Lower bound on sum(values); the empty sum is 0."""
    total = 0.0
    for v in values:
        total = round_down(total + float(v))
    return total


def sum_up(values: Iterable[float]) -> float:
    """Upper bound on sum(values); the empty sum is 0."""
    total = 0.0
    for v in values:
        total = round_up(total + float(v))
    return total


@dataclass(frozen=True)
class Interval:
    """
    A closed interval [lo, hi].

    The canonical empty interval is [inf, -inf]; any other lo > hi is a
    programming error.
    """
    lo: float
    hi: float

    def __post_init__(self):
        if self.lo > self.hi and not (self.lo == float('inf') and self.hi == float('-inf')):
            raise ValueError(f"Invalid interval: [{self.lo}, {self.hi}]")

    @classmethod
    def empty(cls) -> 'Interval':
        return cls(float('inf'), float('-inf'))

    @property
    def is_empty(self) -> bool:
        return self.lo > self.hi

    def contains(self, x: float) -> bool:
        return self.lo <= x <= self.hi

    def intersect(self, other: 'Interval') -> 'Interval':
        """Intersection of two intervals (exact, no rounding needed)."""
        new_lo = max(self.lo, other.lo)
        new_hi = min(self.hi, other.hi)
        if new_lo > new_hi:
            return Interval.empty()
        return Interval(new_lo, new_hi)

    def to_canonical(self) -> Dict[str, Any]:
        return {"lo": self.lo, "hi": self.hi}

    def __repr__(self) -> str:
        return f"[{self.lo:.6g}, {self.hi:.6g}]"
