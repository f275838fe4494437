"""
Receipt Chain for Auditable Proofs

Canonical JSON + SHA-256 chain over a proof's certificate tree. Each
node of the tree becomes one receipt (pre-order), so replaying a case
with the same table and the same inputs reproduces the chain bit for bit.
"""

import json
import hashlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List
from enum import Enum
from pathlib import Path

if TYPE_CHECKING:
    from .core.certificate import CaseCertificate, NodeCertificate


def canonical_dumps(obj: Any, indent: int = None) -> str:
    """
    Canonical JSON serialization with sorted keys.

    This ensures identical objects produce identical JSON strings.
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(',', ':') if indent is None else None,
        indent=indent,
        default=str
    )


def canonical_hash(obj: Any) -> str:
    """Compute SHA-256 hash of canonical JSON."""
    return hashlib.sha256(canonical_dumps(obj).encode()).hexdigest()


class ActionType(Enum):
    """Proof events that generate receipts."""
    CASE_START = "case_start"
    PROPAGATE_EMPTY = "propagate_empty"
    LEAF_SEARCH = "leaf_search"
    BRANCH = "branch"
    COVERAGE_GAP = "coverage_gap"
    VERDICT = "verdict"


@dataclass
class Receipt:
    """
    A single receipt in the chain.

    Each receipt contains:
    - Sequence number
    - Action type and parameters
    - Input/output hashes for verification
    - Link to previous receipt
    - Self-hash for chain integrity
    """
    sequence: int
    action: ActionType
    params: Dict[str, Any]
    input_hash: str
    output_hash: str
    prev_hash: str
    receipt_hash: str = ""

    def __post_init__(self):
        if not self.receipt_hash:
            self.receipt_hash = self._compute_hash()

    def _compute_hash(self) -> str:
        data = {
            "sequence": self.sequence,
            "action": self.action.value,
            "params": self.params,
            "input_hash": self.input_hash,
            "output_hash": self.output_hash,
            "prev_hash": self.prev_hash
        }
        return canonical_hash(data)

    def verify(self) -> bool:
        """Verify the receipt hash is correct."""
        return self.receipt_hash == self._compute_hash()

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "action": self.action.value,
            "params": self.params,
            "input_hash": self.input_hash,
            "output_hash": self.output_hash,
            "prev_hash": self.prev_hash,
            "receipt_hash": self.receipt_hash
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Receipt':
        return cls(
            sequence=data["sequence"],
            action=ActionType(data["action"]),
            params=data["params"],
            input_hash=data["input_hash"],
            output_hash=data["output_hash"],
            prev_hash=data["prev_hash"],
            receipt_hash=data["receipt_hash"]
        )


class ReceiptChain:
    """
    A chain of receipts forming an audit trail of one proof.

    Each receipt's hash depends on the previous receipt, so any edit to a
    recorded node breaks every later link.
    """

    def __init__(self):
        self.receipts: List[Receipt] = []
        self._prev_hash: str = "genesis"

    def add_receipt(
        self,
        action: ActionType,
        params: Dict[str, Any],
        input_hash: str,
        output_hash: str
    ) -> Receipt:
        receipt = Receipt(
            sequence=len(self.receipts),
            action=action,
            params=params,
            input_hash=input_hash,
            output_hash=output_hash,
            prev_hash=self._prev_hash
        )
        self.receipts.append(receipt)
        self._prev_hash = receipt.receipt_hash
        return receipt

    @classmethod
    def from_certificate(cls, certificate: 'CaseCertificate') -> 'ReceiptChain':
        """
        Record a certificate tree: a CASE_START receipt, one receipt per
        node in pre-order, and a closing VERDICT receipt.
        """
        chain = cls()
        chain.add_receipt(
            ActionType.CASE_START,
            {"name": certificate.name, "params": certificate.params.to_canonical()},
            input_hash=canonical_hash(certificate.source or ""),
            output_hash=canonical_hash(certificate.table),
        )
        stack = [certificate.root]
        while stack:
            node = stack.pop()
            chain.add_receipt(
                _action_for(node),
                {"label": node.label, "status": node.status.value, "reason": node.reason},
                input_hash=canonical_hash([c.to_canonical() for c in node.constraints]),
                output_hash=canonical_hash(node.to_canonical(include_children=False)),
            )
            stack.extend(reversed(node.children))
        chain.add_receipt(
            ActionType.VERDICT,
            {"verdict": certificate.verdict.value},
            input_hash=chain.final_hash,
            output_hash=certificate.cert_hash,
        )
        return chain

    def verify_chain(self) -> bool:
        """
        Verify the entire chain is valid.

        Checks:
        1. Each receipt's hash is correct
        2. Chain linking is correct (prev_hash matches)
        """
        prev_hash = "genesis"
        for receipt in self.receipts:
            if not receipt.verify():
                return False
            if receipt.prev_hash != prev_hash:
                return False
            prev_hash = receipt.receipt_hash
        return True

    @property
    def final_hash(self) -> str:
        """Get the hash of the last receipt."""
        if not self.receipts:
            return "genesis"
        return self.receipts[-1].receipt_hash

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "receipts": [r.to_canonical() for r in self.receipts],
            "final_hash": self.final_hash
        }

    def save_json(self, path: Path) -> None:
        """Save chain to JSON file."""
        with open(path, 'w') as f:
            f.write(canonical_dumps(self.to_canonical(), indent=2))

    @classmethod
    def load_json(cls, path: Path) -> 'ReceiptChain':
        """Load chain from JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)

        chain = cls()
        for r_data in data["receipts"]:
            receipt = Receipt.from_dict(r_data)
            chain.receipts.append(receipt)
            chain._prev_hash = receipt.receipt_hash

        return chain


def _action_for(node: 'NodeCertificate') -> ActionType:
    if node.label.endswith("remainder"):
        return ActionType.COVERAGE_GAP
    if node.children:
        return ActionType.BRANCH
    if node.reason == "infeasible":
        return ActionType.PROPAGATE_EMPTY
    return ActionType.LEAF_SEARCH
