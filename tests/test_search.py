"""
Tests for the Counterexample Search and Goal Evaluation
"""

from fractions import Fraction

import numpy as np
import pytest
from rademacher_prover.bounds.bound_table import BoundTable
from rademacher_prover.case import (
    BoxBound,
    CaseParameters,
    Contradiction,
    PrefixSumBound,
    ProvesBound,
    ProvesSumLowerBound,
)
from rademacher_prover.exceptions import InvariantViolation
from rademacher_prover.solver.constraint_set import ConstraintSet
from rademacher_prover.solver.goals import (
    evaluate_goal,
    linear_forms_for,
    max_delta,
    padded_coefficients,
)
from rademacher_prover.solver.search import CounterexampleSearch, Extrema


@pytest.fixture(scope="module")
def table():
    return BoundTable.baseline()


def search_region(table, params, constraints=(), **kwargs):
    snapshot = ConstraintSet.from_constraints(params.max_depth, constraints).snapshot()
    return CounterexampleSearch(table, params).run(snapshot, **kwargs)


class TestSearch:
    """Test cell enumeration and pruning."""

    def test_nothing_pruned_at_p_one(self, table):
        """With p = 1 the oracle never refutes, so every cell of [0, 1] survives."""
        params = CaseParameters(0.0, 1.0, 1, 4)
        result = search_region(table, params)
        assert result.explored == 4
        assert result.survivors == 4
        assert result.pruned_oracle == 0
        hull = result.extrema.intervals()[0]
        assert hull.lo == 0.0 and hull.hi >= 1.0

    def test_sorted_sequences_only(self, table):
        """k = 2 over 4 bins: 10 non-increasing pairs, (3, 3) breaks unit variance."""
        params = CaseParameters(0.0, 1.0, 2, 4)
        result = search_region(table, params)
        assert result.explored == 14
        assert result.pruned_constraints == 1
        assert result.survivors == 9

    def test_oracle_pruning(self, table):
        """
        For P[X >= -1] >= 0.4 only a_0 near 1 can fail: every other cell
        leaves both sign patterns a negative threshold worth 1/2.
        """
        params = CaseParameters(-1.0, 0.4, 1, 4)
        result = search_region(table, params, collect_cells=True)
        assert result.survivors == 1
        assert result.pruned_oracle == 3
        lows, highs = result.cells[0]
        assert lows[0] <= 0.75 <= highs[0]
        assert highs[0] >= 1.0

    def test_exact_unit_coefficient_survives(self, table):
        """a_0 = 1 gives P[X >= 0] = 1/2 exactly, which is not below p = 1/2."""
        params = CaseParameters(0.0, 0.5, 1, 4)
        result = search_region(table, params, [BoxBound(0, 1.0, 1.0)])
        assert result.survivors == 1
        assert result.extrema.intervals()[0].lo == 1.0

    def test_prefix_bound_respected(self, table):
        """Survivors never lie wholly outside a_0 + a_1 <= 0.5."""
        params = CaseParameters(0.0, 1.0, 2, 8)
        result = search_region(table, params, [PrefixSumBound(2, upper=0.5)], collect_cells=True)
        assert result.survivors > 0
        assert len(result.cells) == result.survivors
        for lows, highs in result.cells:
            assert lows[0] + lows[1] <= 0.5 + 1e-12
            assert lows[1] <= lows[0]

    def test_empty_region(self, table):
        """An infeasible region has no cells."""
        params = CaseParameters(0.0, 0.5, 2, 4)
        result = search_region(table, params, [BoxBound(0, 0.9, 1.0), BoxBound(1, 0.9, 1.0)])
        assert result.explored == 0
        assert result.extrema.empty

    def test_dimension_mismatch(self, table):
        """The region must have k coefficients."""
        params = CaseParameters(0.0, 0.5, 2, 4)
        with pytest.raises(ValueError):
            CounterexampleSearch(table, params).run(ConstraintSet(3).snapshot())

    def test_budget(self, table):
        """max_nodes stops the search and flags it."""
        params = CaseParameters(0.0, 1.0, 2, 4)
        snapshot = ConstraintSet(2).snapshot()
        result = CounterexampleSearch(table, params, max_nodes=3).run(snapshot)
        assert result.budget_exhausted
        assert result.explored == 3

    def test_linear_minimum(self, table):
        """Minimum of a_0 + a_1 over all cells is 0 (the first bin)."""
        params = CaseParameters(0.0, 1.0, 2, 4)
        result = search_region(table, params, linear_forms=[(1, 1)])
        assert result.extrema.linear_minimum((1, 1)) == Fraction(0)
        assert result.extrema.linear_minimum((1, 0)) is None

    def test_search_is_deterministic(self, table):
        """Two runs give identical results."""
        params = CaseParameters(-1.0, 0.4, 2, 8)
        first = search_region(table, params)
        second = search_region(table, params)
        assert first.to_canonical() == second.to_canonical()
        assert np.array_equal(first.extrema.lower, second.extrema.lower)


class TestExtrema:
    """Test the survivor hull."""

    def test_include(self):
        """Hull and linear minimum over two cells."""
        extrema = Extrema(2, linear_forms=((1, -1),))
        extrema.include([0.5, 0.25], [0.75, 0.5])
        extrema.include([0.25, 0.0], [0.5, 0.25])
        assert extrema.count == 2
        intervals = extrema.intervals()
        assert intervals[0].lo == 0.25 and intervals[0].hi == 0.75
        # min over cells of lo_0 - hi_1
        assert extrema.linear_minimum((1, -1)) == Fraction(0)

    def test_empty(self):
        """No cells gives empty intervals."""
        extrema = Extrema(3)
        assert extrema.empty
        assert all(iv.is_empty for iv in extrema.intervals())


class TestGoals:
    """Test goal evaluation on search results."""

    def test_padded_coefficients(self):
        """Short coefficient lists are zero-padded."""
        goal = ProvesSumLowerBound((1, 1), 0.5)
        assert padded_coefficients(goal, 4) == (1, 1, 0, 0)
        assert linear_forms_for(goal, 3) == ((1, 1, 0),)
        assert linear_forms_for(Contradiction(), 3) == ()

    def test_too_many_coefficients(self):
        """More coefficients than k is a caller error."""
        with pytest.raises(InvariantViolation):
            padded_coefficients(ProvesSumLowerBound((1, 1, 1), 0.5), 2)

    def test_max_delta_uses_nearer_target(self):
        """[0.55, 0.6] is 0.1 from target 0.3 doubled, not 0.3 from 0.3."""
        extrema = Extrema(1)
        extrema.include([0.55], [0.6])
        assert float(max_delta(extrema, 0.3)) == pytest.approx(0.05, abs=1e-12)

    def test_infeasible_region_proves_anything(self):
        """An empty region satisfies any goal vacuously."""
        cs = ConstraintSet.from_constraints(1, [BoxBound(0, 0.5, 0.6), BoxBound(0, 0.7, 0.8)])
        outcome = evaluate_goal(ProvesBound(0.01, 0.5), cs.snapshot(), None)
        assert outcome.proved and outcome.vacuous
        assert outcome.reason == "infeasible"

    def test_contradiction_needs_empty_region(self, table):
        """Surviving cells leave a contradiction open."""
        params = CaseParameters(-1.0, 0.4, 1, 4)
        snapshot = ConstraintSet(1).snapshot()
        result = CounterexampleSearch(table, params).run(snapshot)
        outcome = evaluate_goal(Contradiction(), snapshot, result)
        assert not outcome.proved
        assert outcome.reason == "feasible"

    def test_oracle_contradiction(self, table):
        """With the option, a region the oracle clears counts as a contradiction."""
        params = CaseParameters(-1.0, 0.4, 1, 4)
        snapshot = ConstraintSet.from_constraints(1, [BoxBound(0, 0.0, 0.5)]).snapshot()
        result = CounterexampleSearch(table, params).run(snapshot)
        assert result.extrema.empty
        assert evaluate_goal(Contradiction(), snapshot, result, oracle_contradiction=True).proved
        assert not evaluate_goal(Contradiction(), snapshot, result).proved

    def test_sum_lower_bound_exact(self, table):
        """A bound that holds with equality is proved."""
        params = CaseParameters(0.0, 0.5, 1, 4)
        snapshot = ConstraintSet.from_constraints(1, [BoxBound(0, 1.0, 1.0)]).snapshot()
        goal = ProvesSumLowerBound((1,), 1.0)
        result = CounterexampleSearch(table, params).run(snapshot, linear_forms_for(goal, 1))
        outcome = evaluate_goal(goal, snapshot, result)
        assert outcome.proved
        assert outcome.value == 1.0

    def test_sum_lower_bound_fails(self, table):
        """a_0 may be near 0, so the sum bound fails."""
        params = CaseParameters(0.0, 1.0, 1, 4)
        snapshot = ConstraintSet(1).snapshot()
        goal = ProvesSumLowerBound((1,), 0.5)
        result = CounterexampleSearch(table, params).run(snapshot, linear_forms_for(goal, 1))
        outcome = evaluate_goal(goal, snapshot, result)
        assert not outcome.proved
        assert outcome.reason == "sum_below_bound"

    def test_budget_exhausted_is_unresolved(self, table):
        """A search cut short proves nothing."""
        params = CaseParameters(0.0, 1.0, 2, 4)
        snapshot = ConstraintSet(2).snapshot()
        result = CounterexampleSearch(table, params, max_nodes=2).run(snapshot)
        outcome = evaluate_goal(ProvesBound(1.0, 0.5), snapshot, result)
        assert not outcome.proved
        assert outcome.reason == "budget_exhausted"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
