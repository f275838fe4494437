"""
Counterexample Search

Depth-first enumeration of bin sequences n_0 >= n_1 >= ... >= n_{k-1}
over the d-bin discretization of [0, 1]. Cell i is the bin interval
[n_i/d, (n_i+1)/d] intersected with the box of coefficient i.

A partial sequence of depth j is discarded when

- every point of its cells violates a prefix/range bound, or the
  variance of the fixed coefficients already exceeds 1, or
- it cannot be a counterexample: averaging the oracle over the 2^j sign
  patterns of the fixed coefficients proves P[X >= s] >= p.

For a sign pattern eps, X >= s holds whenever the remaining sum R
satisfies R >= s - sum eps_i a_i; the worst case over the cells is
s + sum_{eps_i = -1} hi_i - sum_{eps_i = +1} lo_i. The remaining
coefficients are at most hi_{j-1}, with variance in
[1 - sum hi_i^2, 1 - sum lo_i^2].

Full-depth sequences that survive are folded into Extrema.
"""

from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, List, Optional, Sequence, Tuple
import time
import numpy as np

from ..bounds.bound_table import BoundTable
from ..bounds.discretizer import Discretizer
from ..bounds.interval import Interval, round_down, round_up, sum_down, sum_up
from ..case import CaseParameters
from .constraint_set import ConstraintSnapshot


# To mitigate floating-point error in the probability comparison
PROBABILITY_SLACK = 1e-10


class _BudgetExhausted(Exception):
    pass


@dataclass
class Extrema:
    """
    Per-coordinate hull of the surviving cells, plus the exact minimum of
    each requested linear form over them.
    """
    k: int
    linear_forms: Tuple[Tuple[int, ...], ...] = ()
    lower: np.ndarray = None
    upper: np.ndarray = None
    count: int = 0
    linear_minima: Dict[Tuple[int, ...], Fraction] = field(default_factory=dict)

    def __post_init__(self):
        if self.lower is None:
            self.lower = np.full(self.k, np.inf)
        if self.upper is None:
            self.upper = np.full(self.k, -np.inf)

    @property
    def empty(self) -> bool:
        return self.count == 0

    def include(self, lows: Sequence[float], highs: Sequence[float]):
        np.minimum(self.lower, lows, out=self.lower)
        np.maximum(self.upper, highs, out=self.upper)
        self.count += 1
        for coefs in self.linear_forms:
            # Exact: the cell ends are binary fractions.
            value = sum(
                (c * Fraction(float(lows[i]) if c > 0 else float(highs[i]))
                 for i, c in enumerate(coefs) if c != 0),
                Fraction(0)
            )
            best = self.linear_minima.get(coefs)
            if best is None or value < best:
                self.linear_minima[coefs] = value

    def intervals(self) -> List[Interval]:
        if self.empty:
            return [Interval.empty() for _ in range(self.k)]
        return [Interval(float(lo), float(hi)) for lo, hi in zip(self.lower, self.upper)]

    def linear_minimum(self, coefs: Tuple[int, ...]) -> Optional[Fraction]:
        return self.linear_minima.get(tuple(coefs))

    def to_canonical(self) -> Dict:
        return {
            "count": self.count,
            "intervals": [iv.to_canonical() for iv in self.intervals()] if not self.empty else [],
        }


@dataclass
class SearchResult:
    """
    Result of one counterexample search.

    Attributes:
        extrema: Hull of the surviving cells
        explored: Cells visited (at any depth)
        pruned_constraints: Cells discarded by prefix/range/variance bounds
        pruned_oracle: Cells discarded by the oracle
        budget_exhausted: True if max_nodes stopped the search early
        cells: Surviving cells as (lows, highs), when collected
        duration: Wall-clock seconds
    """
    extrema: Extrema
    explored: int = 0
    pruned_constraints: int = 0
    pruned_oracle: int = 0
    budget_exhausted: bool = False
    cells: List[Tuple[Tuple[float, ...], Tuple[float, ...]]] = field(default_factory=list)
    duration: float = 0.0

    @property
    def survivors(self) -> int:
        return self.extrema.count

    def to_canonical(self) -> Dict:
        return {
            "explored": self.explored,
            "pruned_constraints": self.pruned_constraints,
            "pruned_oracle": self.pruned_oracle,
            "survivors": self.survivors,
            "budget_exhausted": self.budget_exhausted,
        }


class CounterexampleSearch:
    """
    Searches one constraint region for potential counterexamples.

    The table is only read and may be shared; a search object keeps
    per-run state, so each thread needs its own.
    """

    def __init__(
        self,
        table: BoundTable,
        params: CaseParameters,
        probability_slack: float = PROBABILITY_SLACK,
        max_nodes: Optional[int] = None,
        verbose: bool = False,
        log_frequency: int = 100_000
    ):
        self.table = table
        self.params = params
        self.discretizer = Discretizer(params.denominator)
        self.probability_slack = probability_slack
        self.max_nodes = max_nodes
        self.verbose = verbose
        self.log_frequency = log_frequency

    def run(
        self,
        snapshot: ConstraintSnapshot,
        linear_forms: Sequence[Tuple[int, ...]] = (),
        collect_cells: bool = False
    ) -> SearchResult:
        """
        Enumerate the cells of the region and keep those the oracle cannot
        rule out.

        Args:
            snapshot: Region to search (an EMPTY snapshot has no cells)
            linear_forms: Coefficient tuples whose minimum over survivors is wanted
            collect_cells: Also return every surviving cell

        Returns:
            SearchResult
        """
        k = self.params.max_depth
        if snapshot.k != k:
            raise ValueError(f"Snapshot dimension {snapshot.k} does not match case dimension {k}")

        result = SearchResult(extrema=Extrema(k, tuple(tuple(c) for c in linear_forms)))
        if snapshot.empty:
            return result

        self._snapshot = snapshot
        self._result = result
        self._collect = collect_cells
        self._boxes = snapshot.boxes()
        self._bin_ranges = [self.discretizer.bin_range(b.lo, b.hi) for b in self._boxes]
        self._prefix_lower = snapshot.prefix_lower
        self._prefix_upper = snapshot.prefix_upper
        self._ranges = snapshot.range_upper
        self._start_time = time.time()

        lows = np.zeros(k)
        highs = np.zeros(k)
        thresholds = np.array([float(self.params.threshold)])

        first, last = self._bin_ranges[0]
        try:
            for n in range(first, last + 1):
                if self.verbose:
                    print(f"{100.0 * (n - first) / (1 + last - first):.1f}% ", end="", flush=True)
                self._visit(0, n, lows, highs, thresholds, 0.0, 0.0)
        except _BudgetExhausted:
            result.budget_exhausted = True
        if self.verbose:
            print("100.0%", flush=True)

        result.duration = time.time() - self._start_time
        return result

    def _visit(self, depth: int, n: int, lows: np.ndarray, highs: np.ndarray,
               thresholds: np.ndarray, sum_lo2: float, sum_hi2: float):
        result = self._result
        if self.max_nodes is not None and result.explored >= self.max_nodes:
            raise _BudgetExhausted()

        cell = self.discretizer.bin_interval(n).intersect(self._boxes[depth])
        if cell.is_empty:
            return
        result.explored += 1
        if self.verbose and result.explored % self.log_frequency == 0:
            self._log_progress()

        lo, hi = cell.lo, cell.hi
        lows[depth] = lo
        highs[depth] = hi
        sum_lo2 = round_down(sum_lo2 + round_down(lo * lo))
        sum_hi2 = round_up(sum_hi2 + round_up(hi * hi))

        if sum_lo2 > 1.0 or not self._satisfies_sums(depth + 1, lows, highs):
            result.pruned_constraints += 1
            return

        thresholds = np.concatenate([round_up(thresholds - lo), round_up(thresholds + hi)])
        if not self._could_be_counterexample(hi, thresholds, sum_lo2, sum_hi2):
            result.pruned_oracle += 1
            return

        if depth + 1 == self.params.max_depth:
            result.extrema.include(lows, highs)
            if self._collect:
                result.cells.append((tuple(float(v) for v in lows), tuple(float(v) for v in highs)))
            return

        first, last = self._bin_ranges[depth + 1]
        for m in range(first, min(last, n) + 1):
            self._visit(depth + 1, m, lows, highs, thresholds, sum_lo2, sum_hi2)

    def _satisfies_sums(self, depth: int, lows: np.ndarray, highs: np.ndarray) -> bool:
        """False if every point of the first `depth` cells violates a prefix/range bound."""
        for l in range(1, self.params.max_depth + 1):
            upper = self._prefix_upper[l]
            if upper < l and sum_down(lows[:min(depth, l)]) > upper:
                return False
            lower = self._prefix_lower[l]
            if depth >= l and lower > 0.0 and sum_up(highs[:l]) < lower:
                return False
        for (l, m), upper in self._ranges:
            if depth > l and sum_down(lows[l:min(depth, m)]) > upper:
                return False
        return True

    def _could_be_counterexample(self, tail_coef: float, thresholds: np.ndarray,
                                 sum_lo2: float, sum_hi2: float) -> bool:
        min_remaining_var = round_down(1.0 - sum_hi2)
        max_remaining_var = round_up(1.0 - sum_lo2)
        probs = self.table.get_with_var(tail_coef, thresholds, min_remaining_var, max_remaining_var)
        prob_lower_bound = round_down(float(np.sum(probs)) / len(thresholds))
        return prob_lower_bound < self.params.prob_cutoff + self.probability_slack

    def _log_progress(self):
        elapsed = time.time() - self._start_time
        result = self._result
        print(
            f"\nCells: {result.explored:,} | "
            f"Pruned: {result.pruned_constraints + result.pruned_oracle:,} | "
            f"Survivors: {result.survivors:,} | "
            f"Time: {elapsed:.2f}s",
            flush=True
        )
