"""
Goal Evaluation

Decides a leaf goal from the surviving cells of a counterexample search.
Comparisons against the goal thresholds are exact (fractions.Fraction):
cell ends are binary fractions, and a bound that holds with equality
must be reported as proved.
"""

from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Dict, Optional, Tuple

from ..case import Contradiction, Goal, ProvesBound, ProvesSumLowerBound
from ..exceptions import InvariantViolation
from .constraint_set import ConstraintSnapshot
from .search import Extrema, SearchResult


# To mitigate floating-point error in the delta comparison
DELTA_SLACK = 1e-6


@dataclass
class GoalOutcome:
    """
    Outcome of evaluating a goal on one region.

    Attributes:
        proved: The goal holds for every surviving cell
        vacuous: Proved because nothing survived (or the region is empty)
        value: Measured quantity (max delta or min sum), if any
        reason: Short machine-readable explanation
    """
    proved: bool
    vacuous: bool = False
    value: Optional[float] = None
    reason: str = ""

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "proved": self.proved,
            "vacuous": self.vacuous,
            "value": self.value,
            "reason": self.reason,
        }


def padded_coefficients(goal: ProvesSumLowerBound, k: int) -> Tuple[int, ...]:
    """Coefficients of the linear form, zero-padded to length k."""
    coefs = goal.coefficients
    if len(coefs) > k:
        raise InvariantViolation(
            f"ProvesSumLowerBound has {len(coefs)} coefficients but the case tracks only {k}"
        )
    return tuple(coefs) + (0,) * (k - len(coefs))


def linear_forms_for(goal: Goal, k: int) -> Tuple[Tuple[int, ...], ...]:
    """Linear forms the search must minimise for this goal."""
    if isinstance(goal, ProvesSumLowerBound):
        return (padded_coefficients(goal, k),)
    return ()


def max_delta(extrema: Extrema, target: float) -> Fraction:
    """
    Largest, over coordinates, of the worst-case distance from the
    coordinate's surviving interval to the nearer of target and 2*target.
    """
    targets = (Fraction(target), 2 * Fraction(target))
    worst = Fraction(0)
    for lo, hi in zip(extrema.lower, extrema.upper):
        lo, hi = Fraction(float(lo)), Fraction(float(hi))
        nearest = min(max(abs(t - lo), abs(hi - t)) for t in targets)
        worst = max(worst, nearest)
    return worst


def _prefix_length(coefs: Tuple[int, ...]) -> Optional[int]:
    """l if coefs is the indicator of {0, ..., l-1}, else None."""
    length = 0
    while length < len(coefs) and coefs[length] == 1:
        length += 1
    if length == 0 or any(c != 0 for c in coefs[length:]):
        return None
    return length


def evaluate_goal(
    goal: Goal,
    snapshot: ConstraintSnapshot,
    search: Optional[SearchResult],
    delta_slack: float = DELTA_SLACK,
    oracle_contradiction: bool = False
) -> GoalOutcome:
    """
    Decide a goal.

    Args:
        goal: The leaf goal
        snapshot: Region after propagation
        search: Counterexample search over the region (None if the region is empty)
        delta_slack: Margin added to the measured delta
        oracle_contradiction: Also accept Contradiction when no cell survives the oracle

    Returns:
        GoalOutcome
    """
    if snapshot.empty:
        return GoalOutcome(proved=True, vacuous=True, reason="infeasible")

    if search is None:
        raise InvariantViolation("A feasible region needs a search result")
    if search.budget_exhausted:
        return GoalOutcome(proved=False, reason="budget_exhausted")

    extrema = search.extrema

    if isinstance(goal, Contradiction):
        if oracle_contradiction and extrema.empty:
            return GoalOutcome(proved=True, vacuous=True, reason="no_survivors")
        return GoalOutcome(proved=False, reason="feasible")

    if extrema.empty:
        return GoalOutcome(proved=True, vacuous=True, reason="no_survivors")

    if isinstance(goal, ProvesBound):
        measured = max_delta(extrema, goal.target)
        proved = measured + Fraction(delta_slack) <= Fraction(goal.delta)
        return GoalOutcome(
            proved=proved,
            value=float(measured),
            reason="delta_within_bound" if proved else "delta_too_large",
        )

    if isinstance(goal, ProvesSumLowerBound):
        coefs = padded_coefficients(goal, snapshot.k)
        minimum = extrema.linear_minimum(coefs)
        if minimum is None:
            raise InvariantViolation("The search did not track the goal's linear form")
        length = _prefix_length(coefs)
        if length is not None:
            minimum = max(minimum, Fraction(snapshot.prefix_lower[length]))
        proved = minimum >= Fraction(goal.bound)
        return GoalOutcome(
            proved=proved,
            value=float(minimum),
            reason="sum_above_bound" if proved else "sum_below_bound",
        )

    raise InvariantViolation(f"Unknown goal: {goal!r}")
