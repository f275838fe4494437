"""
Rademacher Prover - Certified Tail Bounds for Rademacher Sums

For X = sum a_i eps_i with independent signs eps_i and sum a_i^2 = 1,
proves lower bounds on P[X >= s] case by case. Each case constrains the
leading sorted coefficients; the engine returns one of:
- PROVED: every potential counterexample satisfies the case's goal
- CONTRADICTION: no coefficient vector satisfies the constraints
- UNRESOLVED: the surviving region is reported for refinement

Key Features:
- Precomputed oracle table D(a, x) from Prawitz' smoothing inequality,
  improved by an elimination recursion
- Outward-rounded interval arithmetic over a d-bin discretization
- Constraint propagation over box, prefix-sum and range-sum bounds
- Certificates validated by an output gate, with a receipt chain for replay
"""

from .exceptions import (
    ProverError,
    MalformedCase,
    MalformedTable,
    InvariantViolation,
)
from .case import (
    Case,
    CaseParameters,
    BoxBound,
    PrefixSumBound,
    RangeSumBound,
    ProvesBound,
    ProvesSumLowerBound,
    Contradiction,
    LeafCase,
    BranchCase,
)
from .bounds import (
    BoundTable,
    TableConfig,
    Discretizer,
    Interval,
    prawitz_bound,
)
from .solver import (
    ConstraintSet,
    ConstraintSnapshot,
    PropagationStatus,
    CounterexampleSearch,
    ProofEngine,
    EngineConfig,
)
from .core import (
    NodeStatus,
    Verdict,
    NodeCertificate,
    CaseCertificate,
    CertificateGate,
)
from .receipts import (
    Receipt,
    ReceiptChain,
    ActionType,
    canonical_dumps,
    canonical_hash,
)
from .persistence import (
    parse_case,
    load_case,
    save_table,
    load_table,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    'ProverError',
    'MalformedCase',
    'MalformedTable',
    'InvariantViolation',
    # Cases
    'Case',
    'CaseParameters',
    'BoxBound',
    'PrefixSumBound',
    'RangeSumBound',
    'ProvesBound',
    'ProvesSumLowerBound',
    'Contradiction',
    'LeafCase',
    'BranchCase',
    # Oracle
    'BoundTable',
    'TableConfig',
    'Discretizer',
    'Interval',
    'prawitz_bound',
    # Solver
    'ConstraintSet',
    'ConstraintSnapshot',
    'PropagationStatus',
    'CounterexampleSearch',
    'ProofEngine',
    'EngineConfig',
    # Certificates
    'NodeStatus',
    'Verdict',
    'NodeCertificate',
    'CaseCertificate',
    'CertificateGate',
    # Receipts
    'Receipt',
    'ReceiptChain',
    'ActionType',
    'canonical_dumps',
    'canonical_hash',
    # Persistence
    'parse_case',
    'load_case',
    'save_table',
    'load_table',
]
