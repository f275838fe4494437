"""
Certificates and Output Gate

A proof run produces one NodeCertificate per node of the case tree and
a CaseCertificate wrapping the root. Only three verdicts are admissible:

- PROVED: every leaf's goal holds on its surviving region
- CONTRADICTION: the case's constraints are infeasible
- UNRESOLVED: some node is EXHAUSTED_UNRESOLVED (a finer
  discretization or another subcase is needed)

The gate validates every certificate before it leaves the engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..bounds.interval import Interval
from ..case import CaseParameters, Constraint, Goal, ProvesBound, ProvesSumLowerBound
from ..exceptions import InvariantViolation
from ..receipts import canonical_hash


class NodeStatus(Enum):
    """State of one node of the case tree."""
    OPEN = "open"
    PROVED = "proved"
    CONTRADICTION_FOUND = "contradiction_found"
    EXHAUSTED_UNRESOLVED = "exhausted_unresolved"

    @property
    def closed(self) -> bool:
        return self in (NodeStatus.PROVED, NodeStatus.CONTRADICTION_FOUND)


class Verdict(Enum):
    """The three admissible case verdicts."""
    PROVED = "proved"
    CONTRADICTION = "contradiction"
    UNRESOLVED = "unresolved"


@dataclass
class NodeCertificate:
    """
    Certificate for one node.

    Attributes:
        label: "root", "A", "B", ... ("remainder" for uncovered cells)
        status: Final NodeStatus
        constraints: Constraints this node added to its parent's region
        region: The node's region after propagation (canonical form)
        goal: Goal evaluated at this node (leaves only)
        vacuous: Closed because nothing could be a counterexample
        value: Measured max delta or min sum (leaves only)
        intervals: Per-coordinate hull of surviving cells
        search: Search statistics (leaves only)
        reason: Short machine-readable explanation
        children: Subcase certificates
    """
    label: str
    status: NodeStatus
    constraints: Tuple[Constraint, ...] = ()
    region: Dict[str, Any] = field(default_factory=dict)
    goal: Optional[Goal] = None
    vacuous: bool = False
    value: Optional[float] = None
    intervals: List[Interval] = field(default_factory=list)
    search: Optional[Dict[str, Any]] = None
    reason: str = ""
    children: List['NodeCertificate'] = field(default_factory=list)

    @property
    def closed(self) -> bool:
        return self.status.closed

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def iter_nodes(self) -> Iterator['NodeCertificate']:
        """Pre-order walk."""
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def unresolved_leaves(self) -> List['NodeCertificate']:
        return [n for n in self.iter_nodes()
                if n.is_leaf and n.status == NodeStatus.EXHAUSTED_UNRESOLVED]

    def to_canonical(self, include_children: bool = True) -> Dict[str, Any]:
        data = {
            "label": self.label,
            "status": self.status.value,
            "constraints": [c.to_canonical() for c in self.constraints],
            "region": self.region,
            "goal": self.goal.to_canonical() if self.goal is not None else None,
            "vacuous": self.vacuous,
            "value": self.value,
            "intervals": [iv.to_canonical() for iv in self.intervals],
            "search": self.search,
            "reason": self.reason,
        }
        if include_children:
            data["children"] = [c.to_canonical() for c in self.children]
        return data


@dataclass
class CaseCertificate:
    """
    Certificate for a whole case.

    Attributes:
        name: Case name
        params: CaseParameters
        root: Root NodeCertificate
        verdict: Derived from the root status
        table: Description of the bound table used
        source: Case text, if known
        cert_hash: SHA-256 of the canonical form
    """
    name: str
    params: CaseParameters
    root: NodeCertificate
    table: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None
    verdict: Verdict = None
    cert_hash: str = ""

    def __post_init__(self):
        if self.verdict is None:
            self.verdict = verdict_for(self.root.status)
        if not self.cert_hash:
            self.cert_hash = self.compute_hash()

    @property
    def proved(self) -> bool:
        """True when the case is closed (proved outright or infeasible)."""
        return self.verdict != Verdict.UNRESOLVED

    @property
    def rigorous(self) -> bool:
        """True when the table behind the verdict was built rigorously."""
        return bool(self.table.get("rigorous", False))

    def compute_hash(self) -> str:
        return canonical_hash(self._body())

    def _body(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "params": self.params.to_canonical(),
            "table": self.table,
            "verdict": self.verdict.value,
            "root": self.root.to_canonical(),
        }

    def to_canonical(self) -> Dict[str, Any]:
        data = self._body()
        data["cert_hash"] = self.cert_hash
        return data


def verdict_for(status: NodeStatus) -> Verdict:
    if status == NodeStatus.PROVED:
        return Verdict.PROVED
    if status == NodeStatus.CONTRADICTION_FOUND:
        return Verdict.CONTRADICTION
    return Verdict.UNRESOLVED


class CertificateGate:
    """
    Validates and enforces the output contract.

    Any attempt to emit an inconsistent certificate raises
    InvariantViolation.
    """

    def validate_node(self, node: NodeCertificate) -> bool:
        """
        Validate one node and its subtree.

        Checks:
        - no node is left OPEN
        - CONTRADICTION_FOUND nodes are vacuous and have no children
        - a branch is PROVED exactly when all of its children are closed
        - a non-vacuous PROVED leaf carries a measured value meeting its goal
        """
        if node.status == NodeStatus.OPEN:
            raise InvariantViolation(f"Node {node.label!r} is still OPEN")

        if node.status == NodeStatus.CONTRADICTION_FOUND:
            if not node.vacuous:
                raise InvariantViolation(f"Node {node.label!r}: contradiction must be vacuous")
            if node.children:
                raise InvariantViolation(f"Node {node.label!r}: contradiction with subcases")

        if node.children:
            for child in node.children:
                self.validate_node(child)
            all_closed = all(child.closed for child in node.children)
            if (node.status == NodeStatus.PROVED) != all_closed:
                raise InvariantViolation(
                    f"Node {node.label!r} is {node.status.value} but its children "
                    f"{'are' if all_closed else 'are not'} all closed"
                )
            return True

        if node.status == NodeStatus.PROVED and not node.vacuous:
            self._validate_measured(node)
        return True

    def _validate_measured(self, node: NodeCertificate):
        goal = node.goal
        if not isinstance(goal, (ProvesBound, ProvesSumLowerBound)):
            raise InvariantViolation(f"Leaf {node.label!r}: non-vacuous proof of {goal!r}")
        if node.value is None:
            raise InvariantViolation(f"Leaf {node.label!r} is PROVED without a measured value")
        # The measured value is a rounded report of an exact comparison.
        if isinstance(goal, ProvesBound) and node.value > goal.delta:
            raise InvariantViolation(
                f"Leaf {node.label!r}: delta {node.value} exceeds bound {goal.delta}"
            )
        if isinstance(goal, ProvesSumLowerBound) and node.value < goal.bound:
            raise InvariantViolation(
                f"Leaf {node.label!r}: sum {node.value} below bound {goal.bound}"
            )

    def validate(self, certificate: CaseCertificate) -> bool:
        self.validate_node(certificate.root)
        if certificate.verdict != verdict_for(certificate.root.status):
            raise InvariantViolation(
                f"Verdict {certificate.verdict.value} does not match root status "
                f"{certificate.root.status.value}"
            )
        if certificate.cert_hash != certificate.compute_hash():
            raise InvariantViolation("Certificate hash mismatch")
        return True

    def emit(self, certificate: CaseCertificate) -> CaseCertificate:
        """
        Validate and emit a certificate through the output gate.

        This is the only way certificates should leave the engine.
        """
        self.validate(certificate)
        return certificate
