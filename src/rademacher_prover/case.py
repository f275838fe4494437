"""
Case Definition

A case asks: for every normalised Rademacher sum X whose leading
coefficients a_0 >= a_1 >= ... >= a_{k-1} satisfy the case's constraints,
is P[X >= s] >= p? Coefficient vectors for which the oracle cannot show
this are potential counterexamples; the goal of a case states something
every potential counterexample must satisfy.

Defines:
- CaseParameters: s, p, k, d (immutable for a case and all its subcases)
- Constraints: BoxBound, PrefixSumBound, RangeSumBound
- Goals: ProvesBound, ProvesSumLowerBound, Contradiction
- The case tree: LeafCase | BranchCase, and Case (parameters + root)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from .exceptions import InvariantViolation


def _fmt(x: float) -> str:
    """Shortest round-tripping text for a float (case files are re-read)."""
    return repr(float(x))


@dataclass(frozen=True)
class CaseParameters:
    """
    Parameters shared by a case and every subcase below it.

    Attributes:
        threshold: s, the tail multiplier in P[X >= s]
        prob_cutoff: p, the probability to be proved
        max_depth: k, number of leading coefficients tracked
        denominator: d, resolution of the discretization of [0, 1]
    """
    threshold: float
    prob_cutoff: float
    max_depth: int
    denominator: int

    def __post_init__(self):
        if self.max_depth < 1:
            raise InvariantViolation(f"max_depth must be >= 1, got {self.max_depth}")
        if self.denominator < 1:
            raise InvariantViolation(f"denominator must be >= 1, got {self.denominator}")
        if not 0.0 <= self.prob_cutoff <= 1.0:
            raise InvariantViolation(f"prob_cutoff must lie in [0, 1], got {self.prob_cutoff}")

    def to_case_line(self) -> str:
        return f"{_fmt(self.threshold)}, {_fmt(self.prob_cutoff)}, {self.max_depth}, {self.denominator}"

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "threshold": self.threshold,
            "prob_cutoff": self.prob_cutoff,
            "max_depth": self.max_depth,
            "denominator": self.denominator,
        }


# Constraints

@dataclass(frozen=True)
class BoxBound:
    """lo <= a_index <= hi. Written `Bounds(i, lo, hi)` in case files."""
    index: int
    lo: float
    hi: float

    kind = "box"

    def to_case_line(self) -> str:
        return f"Bounds({self.index}, {_fmt(self.lo)}, {_fmt(self.hi)})"

    def to_canonical(self) -> Dict[str, Any]:
        return {"kind": self.kind, "index": self.index, "lo": self.lo, "hi": self.hi}


@dataclass(frozen=True)
class PrefixSumBound:
    """
    lower <= a_0 + ... + a_{length-1} <= upper.

    Either side may be None. Case files state one side per line:
    `InitialSumLowerBound(l, x)` or `InitialSumUpperBound(l, x)`.
    """
    length: int
    lower: Optional[float] = None
    upper: Optional[float] = None

    kind = "prefix"

    def __post_init__(self):
        if self.lower is None and self.upper is None:
            raise InvariantViolation("PrefixSumBound needs a lower or an upper bound")

    def to_case_line(self) -> str:
        lines = []
        if self.lower is not None:
            lines.append(f"InitialSumLowerBound({self.length}, {_fmt(self.lower)})")
        if self.upper is not None:
            lines.append(f"InitialSumUpperBound({self.length}, {_fmt(self.upper)})")
        return "\n".join(lines)

    def to_canonical(self) -> Dict[str, Any]:
        return {"kind": self.kind, "length": self.length, "lower": self.lower, "upper": self.upper}


@dataclass(frozen=True)
class RangeSumBound:
    """a_start + ... + a_{end-1} <= upper. Written `MidSumUpperBound(l, m, x)`."""
    start: int
    end: int
    upper: float

    kind = "range"

    def to_case_line(self) -> str:
        return f"MidSumUpperBound({self.start}, {self.end}, {_fmt(self.upper)})"

    def to_canonical(self) -> Dict[str, Any]:
        return {"kind": self.kind, "start": self.start, "end": self.end, "upper": self.upper}


Constraint = Union[BoxBound, PrefixSumBound, RangeSumBound]


# Goals

@dataclass(frozen=True)
class ProvesBound:
    """Every coefficient of a potential counterexample is within delta of target or 2*target."""
    delta: float
    target: float

    kind = "proves_bound"

    def to_case_line(self) -> str:
        return f"ProvesBound({_fmt(self.delta)}, {_fmt(self.target)})"

    def to_canonical(self) -> Dict[str, Any]:
        return {"kind": self.kind, "delta": self.delta, "target": self.target}


@dataclass(frozen=True)
class ProvesSumLowerBound:
    """sum_i coefficients[i] * a_i >= bound for every potential counterexample."""
    coefficients: Tuple[int, ...]
    bound: float

    kind = "proves_sum_lower_bound"

    def __post_init__(self):
        object.__setattr__(self, "coefficients", tuple(int(c) for c in self.coefficients))
        if not self.coefficients:
            raise InvariantViolation("ProvesSumLowerBound needs at least one coefficient")

    def to_case_line(self) -> str:
        coefs = ", ".join(str(c) for c in self.coefficients)
        return f"ProvesSumLowerBound([{coefs}], {_fmt(self.bound)})"

    def to_canonical(self) -> Dict[str, Any]:
        return {"kind": self.kind, "coefficients": list(self.coefficients), "bound": self.bound}


@dataclass(frozen=True)
class Contradiction:
    """No coefficient vector satisfies the constraints."""

    kind = "contradiction"

    def to_case_line(self) -> str:
        return "Contradiction()"

    def to_canonical(self) -> Dict[str, Any]:
        return {"kind": self.kind}


Goal = Union[ProvesBound, ProvesSumLowerBound, Contradiction]


# Case tree

@dataclass(frozen=True)
class LeafCase:
    """Constraints added at this node, and the goal to prove under them."""
    constraints: Tuple[Constraint, ...]
    goal: Goal
    label: str = "root"


@dataclass(frozen=True)
class BranchCase:
    """Constraints added at this node, and the subcases that split it."""
    constraints: Tuple[Constraint, ...]
    children: Tuple['CaseNode', ...]
    label: str = "root"

    def __post_init__(self):
        if not self.children:
            raise InvariantViolation("A branch needs at least one subcase")


CaseNode = Union[LeafCase, BranchCase]


def subcase_label(index: int) -> str:
    """A, B, ..., Z, AA, AB, ..."""
    label = ""
    index += 1
    while index > 0:
        index, rem = divmod(index - 1, 26)
        label = chr(ord('A') + rem) + label
    return label


def iter_nodes(node: CaseNode):
    """Pre-order walk over a case tree."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        if isinstance(current, BranchCase):
            stack.extend(reversed(current.children))


@dataclass(frozen=True)
class Case:
    """
    One case file: parameters plus the case tree.

    Attributes:
        name: Case name (file stem)
        params: CaseParameters
        root: Root of the case tree
        source: Case text the tree was parsed from, if any
    """
    name: str
    params: CaseParameters
    root: CaseNode
    source: Optional[str] = field(default=None, compare=False, repr=False)

    @property
    def goal(self) -> Goal:
        """The goal shared by the leaves (subcases inherit their parent's goal)."""
        for node in iter_nodes(self.root):
            if isinstance(node, LeafCase):
                return node.goal
        raise InvariantViolation(f"Case {self.name!r} has no goal")

    @property
    def constraints(self) -> Tuple[Constraint, ...]:
        """Constraints of the root node."""
        return self.root.constraints
