"""
Bounds Module - Certified Numeric Primitives

Provides:
- Interval, sum_down, sum_up: directed rounding (all rounding lives here)
- Discretizer: the d-bin partition of [0, 1] and conservative table indexing
- prawitz_bound: the closed-form oracle formula D(a, x)
- BoundTable: the precomputed, read-only oracle table
"""

from .interval import (
    Interval,
    sum_down,
    sum_up,
    round_down,
    round_up,
)
from .discretizer import Discretizer
from .prawitz import (
    prawitz_bound,
    prawitz_f,
    lipschitz_integrate,
    INTEGRATORS,
)
from .bound_table import (
    BoundTable,
    TableConfig,
    BERNSTEIN_CUTOFF,
)

__all__ = [
    # Directed rounding
    'Interval',
    'sum_down',
    'sum_up',
    'round_down',
    'round_up',
    # Discretization
    'Discretizer',
    # Oracle formula
    'prawitz_bound',
    'prawitz_f',
    'lipschitz_integrate',
    'INTEGRATORS',
    # Oracle table
    'BoundTable',
    'TableConfig',
    'BERNSTEIN_CUTOFF',
]
