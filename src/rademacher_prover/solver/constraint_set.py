"""
Constraint Set with Bound Propagation

Holds, for one node of the case tree, everything known about the leading
coefficients a_0 >= ... >= a_{k-1}:

- a box [lo_i, hi_i] per coefficient (initially [0, 1])
- prefix bounds L_l <= a_0 + ... + a_{l-1} <= U_l  (l = 0..k, L_0 = U_0 = 0)
- range bounds a_l + ... + a_{m-1} <= R(l, m)

Constraints are folded in with tighten(); each fold runs the cheap
derivations below to a fixed point:

1. Sorted order: hi_i <= hi_{i-1}, lo_i >= lo_{i+1}
2. Unit variance: sum lo_i^2 <= 1, hi_i <= sqrt(1 - sum_{j != i} lo_j^2)
3. Prefix/range sums against the box, in both directions
4. Range and prefix bounds against each other: U_m <= U_l + R(l, m),
   L_l >= L_m - R(l, m), and prefix monotonicity

Derived values are rounded outward. Box bounds taken from constraints are
stored exactly. Inconsistency is reported as status EMPTY, never raised.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import math
import numpy as np

from ..bounds.interval import Interval, round_down, round_up, sum_down, sum_up
from ..case import BoxBound, Constraint, PrefixSumBound, RangeSumBound
from ..exceptions import InvariantViolation


class PropagationStatus(Enum):
    """Outcome of folding one constraint into a ConstraintSet."""
    CONTRACTED = "contracted"   # Some bound was tightened
    UNCHANGED = "unchanged"     # Already implied
    EMPTY = "empty"             # No coefficient vector satisfies the set


@dataclass
class PropagationResult:
    """Result of tighten()."""
    status: PropagationStatus
    iterations: int = 0
    reason: Dict[str, Any] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return self.status == PropagationStatus.EMPTY


def validate_constraint(constraint: Constraint, k: int):
    """Raise InvariantViolation if the constraint does not fit dimension k."""
    if isinstance(constraint, BoxBound):
        if not 0 <= constraint.index < k:
            raise InvariantViolation(f"Bounds index {constraint.index} outside [0, {k - 1}]")
    elif isinstance(constraint, PrefixSumBound):
        if not 1 <= constraint.length <= k:
            raise InvariantViolation(f"Prefix length {constraint.length} outside [1, {k}]")
    elif isinstance(constraint, RangeSumBound):
        if not 0 <= constraint.start < constraint.end <= k:
            raise InvariantViolation(
                f"Range [{constraint.start}, {constraint.end}) needs 0 <= l < m <= {k}"
            )
    else:
        raise InvariantViolation(f"Not a constraint: {constraint!r}")


def cell_satisfies(constraint: Constraint, lows: np.ndarray, highs: np.ndarray) -> bool:
    """True if every point of the cell prod [lows_i, highs_i] satisfies the constraint."""
    if isinstance(constraint, BoxBound):
        i = constraint.index
        return constraint.lo <= lows[i] and highs[i] <= constraint.hi
    if isinstance(constraint, PrefixSumBound):
        l = constraint.length
        if constraint.upper is not None and sum_up(highs[:l]) > constraint.upper:
            return False
        if constraint.lower is not None and sum_down(lows[:l]) < constraint.lower:
            return False
        return True
    if isinstance(constraint, RangeSumBound):
        return sum_up(highs[constraint.start:constraint.end]) <= constraint.upper
    raise InvariantViolation(f"Not a constraint: {constraint!r}")


def cell_covered(
    constraint_lists: Sequence[Sequence[Constraint]],
    lows: Sequence[float],
    highs: Sequence[float],
    max_splits: int = 8
) -> bool:
    """
    True if every point of the cell satisfies some whole constraint list.

    A cell no single list contains is cut at a box bound lying strictly
    inside it and both closed pieces are checked again. Only box bounds
    are used as cuts, so a cell straddling a sum constraint stays uncovered.
    """
    if any(all(cell_satisfies(c, lows, highs) for c in constraints)
           for constraints in constraint_lists):
        return True
    if max_splits <= 0:
        return False
    for constraints in constraint_lists:
        for c in constraints:
            if not isinstance(c, BoxBound):
                continue
            i = c.index
            for cut in (c.lo, c.hi):
                if lows[i] < cut < highs[i]:
                    left_highs = np.array(highs, dtype=np.float64)
                    left_highs[i] = cut
                    right_lows = np.array(lows, dtype=np.float64)
                    right_lows[i] = cut
                    return (cell_covered(constraint_lists, lows, left_highs, max_splits - 1)
                            and cell_covered(constraint_lists, right_lows, highs, max_splits - 1))
    return False


@dataclass(frozen=True)
class ConstraintSnapshot:
    """
    Immutable copy of a ConstraintSet.

    Handed to the counterexample search and to child subcases; children
    rebuild a mutable set with ConstraintSet.from_snapshot.
    """
    k: int
    lower: Tuple[float, ...]
    upper: Tuple[float, ...]
    prefix_lower: Tuple[float, ...]
    prefix_upper: Tuple[float, ...]
    range_upper: Tuple[Tuple[Tuple[int, int], float], ...]
    constraints: Tuple[Constraint, ...]
    empty: bool = False
    reason: Tuple[Tuple[str, Any], ...] = ()
    sorted_coefficients: bool = True
    unit_variance: bool = True

    def box(self, index: int) -> Interval:
        if self.empty:
            return Interval.empty()
        return Interval(self.lower[index], self.upper[index])

    def boxes(self) -> List[Interval]:
        return [self.box(i) for i in range(self.k)]

    def tighten(self, constraint: Constraint):
        raise InvariantViolation("Snapshots are immutable; tighten a ConstraintSet.from_snapshot copy")

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "k": self.k,
            "empty": self.empty,
            "lower": list(self.lower),
            "upper": list(self.upper),
            "prefix_lower": list(self.prefix_lower),
            "prefix_upper": list(self.prefix_upper),
            "range_upper": [[l, m, r] for (l, m), r in self.range_upper],
            "constraints": [c.to_canonical() for c in self.constraints],
        }


class ConstraintSet:
    """
    Box, prefix-sum and range-sum bounds on k sorted coefficients.

    Once a set is EMPTY it stays EMPTY: later tighten() calls only record
    the constraint.
    """

    def __init__(
        self,
        k: int,
        sorted_coefficients: bool = True,
        unit_variance: bool = True,
        max_iterations: int = 20,
        tol: float = 1e-12
    ):
        """
        Initialize an unconstrained set.

        Args:
            k: Number of coefficients
            sorted_coefficients: Assume a_0 >= a_1 >= ... >= a_{k-1}
            unit_variance: Assume sum a_i^2 <= 1
            max_iterations: Bound on propagation sweeps per tighten()
            tol: Derived tightenings smaller than this are ignored
        """
        if k < 1:
            raise InvariantViolation(f"Dimension must be >= 1, got {k}")
        self.k = k
        self.sorted_coefficients = sorted_coefficients
        self.unit_variance = unit_variance
        self.max_iterations = max_iterations
        self.tol = tol

        self.lower = np.zeros(k, dtype=np.float64)
        self.upper = np.ones(k, dtype=np.float64)
        self.prefix_lower = np.zeros(k + 1, dtype=np.float64)
        self.prefix_upper = np.arange(k + 1, dtype=np.float64)
        self.range_upper: Dict[Tuple[int, int], float] = {}

        self.constraints: List[Constraint] = []
        self.empty = False
        self.reason: Dict[str, Any] = {}

    # Construction

    @classmethod
    def from_constraints(cls, k: int, constraints: Iterable[Constraint], **kwargs) -> 'ConstraintSet':
        cs = cls(k, **kwargs)
        cs.tighten_all(constraints)
        return cs

    @classmethod
    def from_snapshot(cls, snapshot: ConstraintSnapshot) -> 'ConstraintSet':
        cs = cls(
            snapshot.k,
            sorted_coefficients=snapshot.sorted_coefficients,
            unit_variance=snapshot.unit_variance,
        )
        cs.lower = np.array(snapshot.lower, dtype=np.float64)
        cs.upper = np.array(snapshot.upper, dtype=np.float64)
        cs.prefix_lower = np.array(snapshot.prefix_lower, dtype=np.float64)
        cs.prefix_upper = np.array(snapshot.prefix_upper, dtype=np.float64)
        cs.range_upper = dict(snapshot.range_upper)
        cs.constraints = list(snapshot.constraints)
        cs.empty = snapshot.empty
        cs.reason = dict(snapshot.reason)
        return cs

    def copy(self) -> 'ConstraintSet':
        cs = ConstraintSet.from_snapshot(self.snapshot())
        cs.max_iterations = self.max_iterations
        cs.tol = self.tol
        return cs

    def snapshot(self) -> ConstraintSnapshot:
        return ConstraintSnapshot(
            k=self.k,
            lower=tuple(float(v) for v in self.lower),
            upper=tuple(float(v) for v in self.upper),
            prefix_lower=tuple(float(v) for v in self.prefix_lower),
            prefix_upper=tuple(float(v) for v in self.prefix_upper),
            range_upper=tuple(sorted(self.range_upper.items())),
            constraints=tuple(self.constraints),
            empty=self.empty,
            reason=tuple(sorted(self.reason.items())),
            sorted_coefficients=self.sorted_coefficients,
            unit_variance=self.unit_variance,
        )

    # Queries

    def box(self, index: int) -> Interval:
        if self.empty:
            return Interval.empty()
        return Interval(float(self.lower[index]), float(self.upper[index]))

    def boxes(self) -> List[Interval]:
        return [self.box(i) for i in range(self.k)]

    def prefix_bounds(self, length: int) -> Tuple[float, float]:
        return float(self.prefix_lower[length]), float(self.prefix_upper[length])

    def to_canonical(self) -> Dict[str, Any]:
        return self.snapshot().to_canonical()

    # Tightening

    def tighten(self, constraint: Constraint) -> PropagationResult:
        """
        Fold one constraint into the set and propagate.

        Raises:
            InvariantViolation: if the constraint does not fit dimension k
        """
        validate_constraint(constraint, self.k)
        self.constraints.append(constraint)
        if self.empty:
            return PropagationResult(PropagationStatus.EMPTY, reason=dict(self.reason))

        before = self._state()

        if isinstance(constraint, BoxBound):
            i = constraint.index
            self.lower[i] = max(self.lower[i], constraint.lo)
            self.upper[i] = min(self.upper[i], constraint.hi)
            if self.lower[i] > self.upper[i]:
                return self._mark_empty("box", index=i, lo=float(self.lower[i]), hi=float(self.upper[i]))
        elif isinstance(constraint, PrefixSumBound):
            l = constraint.length
            if constraint.lower is not None:
                self.prefix_lower[l] = max(self.prefix_lower[l], constraint.lower)
            if constraint.upper is not None:
                self.prefix_upper[l] = min(self.prefix_upper[l], constraint.upper)
        else:
            key = (constraint.start, constraint.end)
            self.range_upper[key] = min(self.range_upper.get(key, float('inf')), constraint.upper)

        iterations = self._propagate()
        if self.empty:
            return PropagationResult(PropagationStatus.EMPTY, iterations, dict(self.reason))

        changed = any(not np.array_equal(a, b) for a, b in zip(before, self._state()))
        status = PropagationStatus.CONTRACTED if changed else PropagationStatus.UNCHANGED
        return PropagationResult(status, iterations)

    def tighten_all(self, constraints: Iterable[Constraint]) -> PropagationResult:
        """Fold constraints in order; the result is CONTRACTED if any step was."""
        status = PropagationStatus.UNCHANGED
        iterations = 0
        for constraint in constraints:
            result = self.tighten(constraint)
            iterations += result.iterations
            if result.status != PropagationStatus.UNCHANGED:
                status = result.status
        if self.empty:
            return PropagationResult(PropagationStatus.EMPTY, iterations, dict(self.reason))
        return PropagationResult(status, iterations)

    def _state(self) -> Tuple[np.ndarray, ...]:
        ranges = np.array([self.range_upper[key] for key in sorted(self.range_upper)])
        return (self.lower.copy(), self.upper.copy(),
                self.prefix_lower.copy(), self.prefix_upper.copy(), ranges)

    def _mark_empty(self, rule: str, **details) -> PropagationResult:
        self.empty = True
        self.reason = {"rule": rule, **details}
        return PropagationResult(PropagationStatus.EMPTY, reason=dict(self.reason))

    # Propagation

    def _set_lower(self, i: int, value: float) -> bool:
        if value > self.lower[i] + self.tol:
            self.lower[i] = value
            return True
        return False

    def _set_upper(self, i: int, value: float) -> bool:
        if value < self.upper[i] - self.tol:
            self.upper[i] = value
            return True
        return False

    def _set_prefix_lower(self, l: int, value: float) -> bool:
        if value > self.prefix_lower[l] + self.tol:
            self.prefix_lower[l] = value
            return True
        return False

    def _set_prefix_upper(self, l: int, value: float) -> bool:
        if value < self.prefix_upper[l] - self.tol:
            self.prefix_upper[l] = value
            return True
        return False

    def _propagate(self) -> int:
        """Run derivation sweeps until nothing changes (or max_iterations)."""
        for iteration in range(1, self.max_iterations + 1):
            changed = False
            for rule in (self._propagate_order, self._propagate_variance,
                         self._propagate_prefix, self._propagate_ranges):
                changed |= rule()
                if self._check_empty():
                    return iteration
            if not changed:
                return iteration
        return self.max_iterations

    def _check_empty(self) -> bool:
        if self.empty:
            return True
        bad = np.nonzero(self.lower > self.upper)[0]
        if len(bad):
            i = int(bad[0])
            self._mark_empty("box", index=i, lo=float(self.lower[i]), hi=float(self.upper[i]))
            return True
        bad = np.nonzero(self.prefix_lower > self.prefix_upper)[0]
        if len(bad):
            l = int(bad[0])
            self._mark_empty("prefix", length=l,
                             lower=float(self.prefix_lower[l]), upper=float(self.prefix_upper[l]))
            return True
        return False

    def _propagate_order(self) -> bool:
        if not self.sorted_coefficients:
            return False
        changed = False
        for i in range(1, self.k):
            changed |= self._set_upper(i, self.upper[i - 1])
        for i in range(self.k - 2, -1, -1):
            changed |= self._set_lower(i, self.lower[i + 1])
        return changed

    def _propagate_variance(self) -> bool:
        if not self.unit_variance:
            return False
        squares = [round_down(float(v) * float(v)) for v in self.lower]
        total = sum_down(squares)
        if total > 1.0:
            self._mark_empty("variance", sum_lower_squares=total)
            return False
        changed = False
        for i in range(self.k):
            others = sum_down(squares[:i] + squares[i + 1:])
            slack = round_up(1.0 - others)
            changed |= self._set_upper(i, round_up(math.sqrt(slack)))
        return changed

    def _propagate_prefix(self) -> bool:
        changed = False
        for l in range(1, self.k + 1):
            lows = [float(v) for v in self.lower[:l]]
            highs = [float(v) for v in self.upper[:l]]

            # The box bounds the sum.
            changed |= self._set_prefix_lower(l, sum_down(lows))
            changed |= self._set_prefix_upper(l, sum_up(highs))
            lower, upper = self.prefix_lower[l], self.prefix_upper[l]
            if lower > upper:
                return changed

            # The sum bounds the box.
            for i in range(l):
                rest_lo = sum_down(lows[:i] + lows[i + 1:])
                rest_hi = sum_up(highs[:i] + highs[i + 1:])
                changed |= self._set_upper(i, round_up(upper - rest_lo))
                changed |= self._set_lower(i, round_down(lower - rest_hi))
            if self.sorted_coefficients:
                changed |= self._set_upper(l - 1, round_up(upper / l))
                changed |= self._set_lower(0, round_down(lower / l))

        # Coefficients are non-negative, so prefix sums are monotone in l.
        for l in range(1, self.k + 1):
            changed |= self._set_prefix_lower(l, self.prefix_lower[l - 1])
        for l in range(self.k - 1, -1, -1):
            changed |= self._set_prefix_upper(l, self.prefix_upper[l + 1])
        return changed

    def _propagate_ranges(self) -> bool:
        changed = False
        for (l, m), bound in sorted(self.range_upper.items()):
            lows = [float(v) for v in self.lower[l:m]]
            total = sum_down(lows)
            if total > bound:
                self._mark_empty("range", start=l, end=m, upper=bound, sum_lower=total)
                return changed
            for offset in range(m - l):
                rest_lo = sum_down(lows[:offset] + lows[offset + 1:])
                changed |= self._set_upper(l + offset, round_up(bound - rest_lo))
            if self.sorted_coefficients:
                changed |= self._set_upper(m - 1, round_up(bound / (m - l)))

            # a_0 + ... + a_{m-1} = (a_0 + ... + a_{l-1}) + (a_l + ... + a_{m-1})
            changed |= self._set_prefix_upper(m, round_up(self.prefix_upper[l] + bound))
            changed |= self._set_prefix_lower(l, round_down(self.prefix_lower[m] - bound))
        return changed

    def __repr__(self) -> str:
        if self.empty:
            return f"ConstraintSet(k={self.k}, EMPTY: {self.reason})"
        boxes = ", ".join(f"[{lo:.4g}, {hi:.4g}]" for lo, hi in zip(self.lower, self.upper))
        return f"ConstraintSet(k={self.k}, {boxes})"
