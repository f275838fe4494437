"""
Bound Table: the discretized oracle D(a, x)

A[a][y] lower-bounds Pr[X >= (y - K + 1) / N] for every Rademacher sum X
with Var(X) = 1 and largest coefficient <= (a + 1) / M, where M is the
coefficient granularity, N the threshold granularity and K = span * N.

Construction (BoundTable.build):

1. Precomputation #1: every cell gets the Prawitz bound at a rounded-up
   (coefficient, threshold) pair. Rounding to a stride lets many cells
   share one evaluation; it only ever weakens the cell. Negative
   thresholds additionally get 1/2 by symmetry. The evaluations are
   independent and run in a process pool.
2. Precomputation #2: repeated sweeps of the elimination recursion.
   For a_1 in [a/M, (a+1)/M], condition on the sign of a_1 and bound the
   rescaled remainder with the table itself; if t <= a_1 the bound 1/4
   holds outright; the case a_1 <= a/M is row a-1. Cells only increase.

After each phase the table is closed under monotonicity: every row and
every column is non-increasing.

The table is read-only after construction and may be shared freely.
"""

from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Tuple, Union
import time
import numpy as np

from .discretizer import Discretizer
from .interval import round_down, round_up
from .prawitz import INTEGRATORS, RIGOROUS_INTEGRATORS, prawitz_bound
from ..exceptions import InvariantViolation


# Below this threshold Bernstein's inequality may beat the table
BERNSTEIN_CUTOFF = -3.0

ArrayLike = Union[float, np.ndarray]


@dataclass
class TableConfig:
    """
    Configuration for bound table generation.

    Attributes:
        coef_gran: Coefficient granularity M (rows)
        thresh_gran: Threshold granularity N
        threshold_span: Thresholds cover [-span, span]
        iterations: Sweeps of the elimination recursion
        epsilon: Integration error allowance in the Prawitz bound
        coef_stride: Rows are evaluated at multiples of this stride
        thresh_stride: Columns are evaluated at multiples of this stride
        min_coefficient: Coefficients below this are raised to it
        integrator: "lipschitz" (rigorous) or "quad" (scipy, estimate only)
        workers: Process pool size for precomputation #1 (None: all cores, 1: in-process)
        verbose: Print progress to stdout
    """
    coef_gran: int = 400
    thresh_gran: int = 400
    threshold_span: int = 3
    iterations: int = 10
    epsilon: float = 1e-3
    coef_stride: int = 16
    thresh_stride: int = 8
    min_coefficient: float = 0.1
    integrator: str = "lipschitz"
    workers: Optional[int] = None
    verbose: bool = False

    def __post_init__(self):
        for name in ("coef_gran", "thresh_gran", "threshold_span", "coef_stride", "thresh_stride"):
            if getattr(self, name) < 1:
                raise InvariantViolation(f"TableConfig.{name} must be >= 1")
        if self.iterations < 0:
            raise InvariantViolation("TableConfig.iterations must be >= 0")
        if not 0 < self.epsilon < 0.5:
            raise InvariantViolation("TableConfig.epsilon must lie in (0, 0.5)")
        if self.integrator not in INTEGRATORS:
            raise InvariantViolation(f"Unknown integrator {self.integrator!r}")

    @property
    def max_bound(self) -> int:
        return self.threshold_span * self.thresh_gran

    @classmethod
    def fast(cls) -> 'TableConfig':
        """Coarse table that builds in seconds; still rigorous."""
        return cls(
            coef_gran=40,
            thresh_gran=40,
            iterations=5,
            epsilon=1e-2,
            coef_stride=4,
            thresh_stride=4,
            min_coefficient=0.2,
        )

    @classmethod
    def reference(cls) -> 'TableConfig':
        """The resolution used for the published cases (slow)."""
        return cls(
            coef_gran=2000,
            thresh_gran=2000,
            iterations=1000,
        )

    def to_canonical(self) -> Dict[str, Any]:
        return asdict(self)


def _round_to_stride(v: int, stride: int) -> int:
    """Round v up to the next multiple of stride (also for negative v)."""
    return (v + stride - 1) // stride * stride


def _prawitz_row(a: float, xs: List[float], epsilon: float, integrator: str,
                 min_coefficient: float) -> List[float]:
    """One coefficient value against many thresholds; runs in a worker process."""
    return [prawitz_bound(a, x, epsilon, integrator, min_coefficient) for x in xs]


class BoundTable:
    """
    Precomputed lower bounds D(a, x) on tail probabilities of normalised
    Rademacher sums.

    Attributes:
        bounds: Read-only array of shape (coef_gran, 2 * max_bound)
        coef_axis: Discretizer indexing rows
        thresh_axis: Discretizer indexing columns (offset by max_bound)
        config: The TableConfig used to build the table, if known
    """

    def __init__(
        self,
        bounds: np.ndarray,
        coef_gran: int,
        thresh_gran: int,
        max_bound: int,
        config: Optional[TableConfig] = None
    ):
        bounds = np.array(bounds, dtype=np.float64)
        if bounds.shape != (coef_gran, 2 * max_bound):
            raise InvariantViolation(
                f"Table shape {bounds.shape} does not match ({coef_gran}, {2 * max_bound})"
            )
        if np.any(bounds < 0.0) or np.any(bounds > 1.0):
            raise InvariantViolation("Table entries must be probabilities")
        bounds.setflags(write=False)

        self.bounds = bounds
        self.max_bound = int(max_bound)
        self.coef_axis = Discretizer(coef_gran)
        self.thresh_axis = Discretizer(thresh_gran)
        self.config = config

    @property
    def coef_gran(self) -> int:
        return self.coef_axis.resolution

    @property
    def thresh_gran(self) -> int:
        return self.thresh_axis.resolution

    @property
    def shape(self) -> Tuple[int, int]:
        return self.bounds.shape

    @property
    def rigorous(self) -> bool:
        """
        True when the build is known to use a rigorous integrator.

        A table whose config was not recorded has unknown provenance and
        counts as not rigorous.
        """
        return self.config is not None and self.config.integrator in RIGOROUS_INTEGRATORS

    # Construction

    @classmethod
    def baseline(cls, config: Optional[TableConfig] = None) -> 'BoundTable':
        """
        The table that knows only symmetry: Pr[X >= t] >= 1/2 for t <= 0.

        Column y stands for t = (y - K + 1) / N, so y < K means t <= 0.
        """
        config = config or TableConfig()
        bounds = cls._baseline_array(config)
        return cls(bounds, config.coef_gran, config.thresh_gran, config.max_bound, config=config)

    @staticmethod
    def _baseline_array(config: TableConfig) -> np.ndarray:
        bounds = np.zeros((config.coef_gran, 2 * config.max_bound), dtype=np.float64)
        bounds[:, :config.max_bound] = 0.5
        return bounds

    @classmethod
    def build(cls, config: Optional[TableConfig] = None) -> 'BoundTable':
        """Run both precomputations. This is the expensive step."""
        config = config or TableConfig()
        start = time.time()

        bounds = cls._prawitz_phase(config)
        cls._monotone_closure(bounds)
        cls._elimination_phase(bounds, config)
        cls._monotone_closure(bounds)

        if config.verbose:
            print(f"Precomputation complete. Duration: {time.time() - start:.1f}s", flush=True)
        return cls(bounds, config.coef_gran, config.thresh_gran, config.max_bound, config=config)

    @staticmethod
    def _prawitz_phase(config: TableConfig) -> np.ndarray:
        """Precomputation #1: Prawitz bounds at stride-rounded cells."""
        M, N, K = config.coef_gran, config.thresh_gran, config.max_bound

        a_keys = np.array([(_round_to_stride(a, config.coef_stride) + 1) / M for a in range(M)])
        x_keys = np.array([(_round_to_stride(y - K, config.thresh_stride) + 1) / N for y in range(2 * K)])
        distinct_a = np.unique(a_keys)
        distinct_x = np.unique(x_keys)

        if config.verbose:
            print(f"Precomputation #1, {len(distinct_a)} x {len(distinct_x)} evaluations: ",
                  end="", flush=True)

        xs = distinct_x.tolist()
        args = (xs, config.epsilon, config.integrator, config.min_coefficient)
        rows = []
        if config.workers == 1:
            for i, a in enumerate(distinct_a):
                rows.append(_prawitz_row(float(a), *args))
                BoundTable._log_row(config, i, len(distinct_a))
        else:
            with ProcessPoolExecutor(max_workers=config.workers) as executor:
                futures = [executor.submit(_prawitz_row, float(a), *args) for a in distinct_a]
                for i, future in enumerate(futures):
                    rows.append(future.result())
                    BoundTable._log_row(config, i, len(distinct_a))
        if config.verbose:
            print(flush=True)

        grid = np.array(rows, dtype=np.float64)
        bounds = grid[np.ix_(np.searchsorted(distinct_a, a_keys), np.searchsorted(distinct_x, x_keys))]
        # If threshold <= 0, then Pr[X >= threshold] >= 1/2.
        bounds[:, :K] = np.maximum(bounds[:, :K], 0.5)
        return np.ascontiguousarray(bounds)

    @staticmethod
    def _monotone_closure(bounds: np.ndarray):
        """
        Make the table non-increasing along both axes.

        A bound for a larger threshold or a larger coefficient cap also
        holds for cell (a, y), so the cell takes the maximum over all
        cells (a', y') with a' >= a and y' >= y.
        """
        bounds[:] = np.maximum.accumulate(bounds[:, ::-1], axis=1)[:, ::-1]
        bounds[:] = np.maximum.accumulate(bounds[::-1, :], axis=0)[::-1, :]

    @staticmethod
    def _log_row(config: TableConfig, i: int, total: int):
        if config.verbose and (i * 10) // total != ((i + 1) * 10) // total:
            print(f"{((i + 1) * 100) // total}% ", end="", flush=True)

    @staticmethod
    def _elimination_phase(bounds: np.ndarray, config: TableConfig):
        """Precomputation #2: in-place sweeps of the elimination recursion."""
        M, N, K = config.coef_gran, config.thresh_gran, config.max_bound
        coef_axis = Discretizer(M)
        thresh_axis = Discretizer(N)

        # t[y] >= (y - K + 1) / N
        t = round_up((np.arange(2 * K, dtype=np.float64) - K + 1) / N)

        if config.verbose:
            print(f"Precomputation #2, {config.iterations} sweeps: ", end="", flush=True)

        for i in range(config.iterations):
            for a in range(M):
                min_a1 = round_down(a / M)
                max_a1 = round_up((a + 1) / M)
                # Pr[X >= t] >= 1/4 when t <= a_1: both a_1 and the rest are positive.
                candidate = np.where(t <= min_a1, 0.25, 0.0)
                # Row M-1 contains a_1 = 1, which leaves nothing to eliminate into.
                if a + 1 < M:
                    min_sigma = round_down(float(np.sqrt(round_down(1.0 - round_up(max_a1 * max_a1)))))
                    max_sigma = round_up(float(np.sqrt(round_up(1.0 - round_down(min_a1 * min_a1)))))
                    scaled_a = round_up(max_a1 / min_sigma)
                    low = BoundTable._table_lookup(
                        bounds, coef_axis, thresh_axis, K, scaled_a,
                        _rescale_threshold(round_up(t - min_a1), min_sigma, max_sigma))
                    high = BoundTable._table_lookup(
                        bounds, coef_axis, thresh_axis, K, scaled_a,
                        _rescale_threshold(round_up(t + max_a1), min_sigma, max_sigma))
                    candidate = np.maximum(candidate, round_down((low + high) / 2.0))
                # The case a_1 <= a/M is covered by row a-1; take the weaker of the two.
                if a > 0:
                    candidate = np.minimum(candidate, bounds[a - 1])
                np.maximum(bounds[a], candidate, out=bounds[a])

            if config.verbose and i % max(1, config.iterations // 20) == 0:
                print(f"{(i * 100) // max(1, config.iterations)}% ", end="", flush=True)
        if config.verbose:
            print(flush=True)

    # Queries

    @staticmethod
    def _table_lookup(
        bounds: np.ndarray,
        coef_axis: Discretizer,
        thresh_axis: Discretizer,
        max_bound: int,
        a: float,
        cutoff: ArrayLike
    ) -> np.ndarray:
        row = min(max(coef_axis.conservative_index(a), 0), bounds.shape[0] - 1)
        cols = np.asarray(thresh_axis.conservative_index(cutoff, offset=max_bound))
        cols = np.maximum(cols, 0)
        inside = cols < bounds.shape[1]
        # Beyond the last column 0 is a clear lower bound.
        return np.where(inside, bounds[row][np.minimum(cols, bounds.shape[1] - 1)], 0.0)

    def cell_of(self, a: float, cutoff: float) -> Tuple[int, int]:
        """(row, column) consulted by lookup(a, cutoff), before the out-of-range check."""
        row = min(max(self.coef_axis.conservative_index(a), 0), self.coef_gran - 1)
        col = max(self.thresh_axis.conservative_index(cutoff, offset=self.max_bound), 0)
        return row, col

    def lookup(self, a: float, cutoff: ArrayLike) -> ArrayLike:
        """
        Table value for Pr[X >= cutoff] given largest coefficient <= a.

        Never interpolates: the cell chosen is the weakest one that could
        contain (a, cutoff).
        """
        result = self._table_lookup(self.bounds, self.coef_axis, self.thresh_axis,
                                    self.max_bound, a, cutoff)
        if np.ndim(result) == 0:
            return float(result)
        return result

    @staticmethod
    def bernstein(a: float, cutoff: ArrayLike) -> ArrayLike:
        """
        Bernstein's inequality for Pr[X >= t], t < 0, coefficients <= a.

        1 - exp(-t^2 / (2 (1 - a t / 3))), rounded down.
        """
        cutoff = np.asarray(cutoff, dtype=np.float64)
        with np.errstate(over='ignore', invalid='ignore', divide='ignore'):
            exponent = round_up(-(cutoff * cutoff) / (2.0 * (1.0 - a * cutoff / 3.0)))
            value = round_down(1.0 - round_up(np.exp(exponent)))
        value = np.where(np.isfinite(value), np.maximum(value, 0.0), 0.0)
        if np.ndim(value) == 0:
            return float(value)
        return value

    def get(self, a: float, cutoff: ArrayLike) -> ArrayLike:
        """Best lower bound on Pr[X >= cutoff]: the table, plus Bernstein far left."""
        d = np.asarray(self.lookup(a, cutoff))
        cutoff_arr = np.asarray(cutoff, dtype=np.float64)
        result = np.where(cutoff_arr < BERNSTEIN_CUTOFF,
                          np.maximum(d, self.bernstein(a, cutoff_arr)), d)
        if np.ndim(result) == 0:
            return float(result)
        return result

    def get_with_var(
        self,
        a: float,
        cutoff: ArrayLike,
        min_remaining_var: float,
        max_remaining_var: float
    ) -> ArrayLike:
        """
        Lower bound on Pr[R >= cutoff] for a Rademacher sum R (not
        normalised) whose coefficients are <= a and whose variance lies in
        [min_remaining_var, max_remaining_var].
        """
        cutoff = np.asarray(cutoff, dtype=np.float64)

        if max_remaining_var <= 0.0:
            # R is identically zero.
            result = np.where(cutoff <= 0.0, 1.0, 0.0)
        elif min_remaining_var > 0.0:
            min_sd = round_down(float(np.sqrt(min_remaining_var)))
            max_sd = round_up(float(np.sqrt(max_remaining_var)))
            scaled_a = round_up(a / min_sd)
            # Make the cutoff as large as the variance range allows.
            result = np.asarray(self.get(scaled_a, _rescale_threshold(cutoff, min_sd, max_sd)))
        else:
            # The variance may be arbitrarily small: only cutoff < 0 says anything,
            # and then the normalised coefficient can be as large as 1.
            max_sd = round_up(float(np.sqrt(max_remaining_var)))
            with np.errstate(divide='ignore'):
                scaled = round_up(cutoff / max_sd)
            result = np.where(cutoff < 0.0, np.asarray(self.get(1.0, np.minimum(scaled, 0.0))), 0.0)

        if np.ndim(result) == 0:
            return float(result)
        return result

    def evaluate(self, a: float, x: float) -> float:
        """
        Direct, ungridded evaluation of the Prawitz bound: the D(a, x)
        entry point used for spot checks.
        """
        config = self.config or TableConfig()
        return prawitz_bound(a, x, config.epsilon, config.integrator, config.min_coefficient)

    def __repr__(self) -> str:
        return (f"BoundTable(coef_gran={self.coef_gran}, thresh_gran={self.thresh_gran}, "
                f"max_bound={self.max_bound})")


def _rescale_threshold(numerator: ArrayLike, min_sd: float, max_sd: float) -> np.ndarray:
    """
    numerator / sd for an unknown sd in [min_sd, max_sd], rounded to the
    largest possible value: positive numerators divide by min_sd, negative
    ones by max_sd.
    """
    numerator = np.asarray(numerator, dtype=np.float64)
    return round_up(np.where(numerator >= 0.0, numerator / min_sd, numerator / max_sd))
