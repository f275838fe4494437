"""
Solver Module - Propagation, Search and the Proof Engine

Provides:
- ConstraintSet: box/prefix/range bounds with propagation
- CounterexampleSearch: oracle-pruned enumeration of discretized cells
- evaluate_goal: goal checks on the surviving cells
- ProofEngine: branch-and-bound over the case tree
"""

from .constraint_set import (
    ConstraintSet,
    ConstraintSnapshot,
    PropagationResult,
    PropagationStatus,
    cell_covered,
    cell_satisfies,
    validate_constraint,
)
from .search import (
    CounterexampleSearch,
    Extrema,
    SearchResult,
    PROBABILITY_SLACK,
)
from .goals import (
    GoalOutcome,
    evaluate_goal,
    linear_forms_for,
    max_delta,
    DELTA_SLACK,
)
from .proof_engine import (
    ProofEngine,
    EngineConfig,
)

__all__ = [
    'ConstraintSet',
    'ConstraintSnapshot',
    'PropagationResult',
    'PropagationStatus',
    'cell_covered',
    'cell_satisfies',
    'validate_constraint',
    'CounterexampleSearch',
    'Extrema',
    'SearchResult',
    'PROBABILITY_SLACK',
    'GoalOutcome',
    'evaluate_goal',
    'linear_forms_for',
    'max_delta',
    'DELTA_SLACK',
    'ProofEngine',
    'EngineConfig',
]
