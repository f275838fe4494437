"""
Discretizer

Partitions [0, 1] into d equal-width bins. Bin i is the closed interval
[i/d, (i+1)/d]; the float endpoints handed out are enclosures of the
exact rationals, so a bin interval always contains every real it stands
for.

The same class indexes the axes of the bound table, where the rule is
the opposite one: a value is mapped to the cell whose bound is the
weakest among the cells it could belong to. Every table lookup goes
through `conservative_index`.
"""

from fractions import Fraction
from typing import Tuple, Union
import math
import numpy as np

from .interval import Interval, round_down, round_up
from ..exceptions import InvariantViolation


_INDEX_LIMIT = float(2 ** 53)


class Discretizer:
    """
    Equal-width discretization of [0, 1] at resolution d.

    Attributes:
        resolution: Number of bins d
        lower_edges: lower_edges[i] <= i/d (float, rounded down when inexact)
        upper_edges: upper_edges[i] >= i/d (float, rounded up when inexact)
    """

    def __init__(self, resolution: int):
        if int(resolution) != resolution or resolution < 1:
            raise InvariantViolation(f"Resolution must be a positive integer, got {resolution}")
        self.resolution = int(resolution)

        lower = []
        upper = []
        for i in range(self.resolution + 1):
            exact = Fraction(i, self.resolution)
            nearest = float(exact)
            lower.append(nearest if Fraction(nearest) <= exact else round_down(nearest))
            upper.append(nearest if Fraction(nearest) >= exact else round_up(nearest))
        self.lower_edges = np.array(lower, dtype=np.float64)
        self.upper_edges = np.array(upper, dtype=np.float64)

    @property
    def n_bins(self) -> int:
        return self.resolution

    def bin_of(self, v: float) -> int:
        """Index of the bin containing v: floor(v * d), clamped to [0, d-1]."""
        index = math.floor(v * self.resolution)
        return min(max(index, 0), self.resolution - 1)

    def bin_interval(self, index: int) -> Interval:
        """Closed enclosure of [index/d, (index+1)/d]."""
        if not 0 <= index < self.resolution:
            raise InvariantViolation(f"Bin {index} outside [0, {self.resolution - 1}]")
        return Interval(float(self.lower_edges[index]), float(self.upper_edges[index + 1]))

    def bin_range(self, lo: float, hi: float) -> Tuple[int, int]:
        """
        First and last bin overlapping the closed interval [lo, hi].

        bin_of works on the rounded product v * d; the edge checks widen the
        range by one bin where that product landed on the wrong side of a
        bin boundary.
        """
        first = self.bin_of(lo)
        if first > 0 and self.lower_edges[first] > lo:
            first -= 1
        last = self.bin_of(hi)
        if last < self.resolution - 1 and self.upper_edges[last + 1] < hi:
            last += 1
        return first, last

    def conservative_index(
        self,
        v: Union[float, np.ndarray],
        offset: int = 0
    ) -> Union[int, np.ndarray]:
        """
        Cell index for a bound-table axis: floor(v * d) + offset, with the
        product rounded up first.

        A value lying exactly on a cell boundary (or within rounding of
        one) lands in the upper neighbour, which carries the weaker bound.
        """
        scaled = round_up(np.asarray(v, dtype=np.float64) * self.resolution)
        # keep the int64 cast defined for huge or infinite arguments
        scaled = np.clip(scaled, -_INDEX_LIMIT, _INDEX_LIMIT)
        index = np.floor(scaled).astype(np.int64) + offset
        if np.ndim(index) == 0:
            return int(index)
        return index

    def __repr__(self) -> str:
        return f"Discretizer(d={self.resolution})"
