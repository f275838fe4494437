"""
Reports

Renders a CaseCertificate three ways:

- format_report: human-readable tree with surviving intervals per leaf
- format_machine: for every unresolved leaf, case text that can be saved
  and run again (parameters, constraints, tightened Bounds lines, goal)
- to_json: canonical JSON, optionally with the receipt chain
"""

from typing import List, Optional

from .case import BoxBound, ProvesBound, ProvesSumLowerBound
from .core.certificate import CaseCertificate, NodeCertificate, NodeStatus
from .receipts import ReceiptChain, canonical_dumps


def _describe_outcome(node: NodeCertificate) -> str:
    if node.status == NodeStatus.CONTRADICTION_FOUND:
        return "no coefficient vector satisfies the constraints"
    if node.children:
        closed = sum(1 for c in node.children if c.closed)
        return f"{closed}/{len(node.children)} subcases closed"
    if node.vacuous:
        return "no surviving cells"
    goal = node.goal
    if isinstance(goal, ProvesBound) and node.value is not None:
        op = "<=" if node.closed else ">"
        return f"max delta {node.value:.6g} {op} {goal.delta:g} (targets {goal.target:g}, {2 * goal.target:g})"
    if isinstance(goal, ProvesSumLowerBound) and node.value is not None:
        op = ">=" if node.closed else "<"
        return f"min sum {node.value:.6g} {op} {goal.bound:g} for coefficients {list(goal.coefficients)}"
    return node.reason


def format_report(certificate: CaseCertificate) -> str:
    """Human-readable certificate tree."""
    p = certificate.params
    lines = [
        f"Case {certificate.name}: s={p.threshold:g}, p={p.prob_cutoff:g}, "
        f"k={p.max_depth}, d={p.denominator}",
        f"Verdict: {certificate.verdict.value.upper()}",
    ]
    if not certificate.rigorous:
        lines.append("Table: not known to be rigorous (estimate-only integrator or unrecorded build)")
    lines.append("")
    _format_node(certificate.root, lines, indent=0)
    lines.append("")
    lines.append(f"Certificate hash: {certificate.cert_hash}")
    return "\n".join(lines)


def _format_node(node: NodeCertificate, lines: List[str], indent: int):
    pad = "  " * indent
    lines.append(f"{pad}[{node.label}] {node.status.value}: {_describe_outcome(node)}")
    for constraint in node.constraints:
        for text in constraint.to_case_line().splitlines():
            lines.append(f"{pad}    {text}")
    if node.intervals and not node.children:
        for i, iv in enumerate(node.intervals):
            lines.append(f"{pad}    {iv.lo:.6g} <= a_{i} <= {iv.hi:.6g}")
    if node.search:
        s = node.search
        lines.append(
            f"{pad}    cells explored {s['explored']:,}, pruned {s['pruned_constraints'] + s['pruned_oracle']:,}, "
            f"surviving {s['survivors']:,}"
        )
    for child in node.children:
        _format_node(child, lines, indent + 1)


def format_machine(certificate: CaseCertificate) -> str:
    """Re-runnable case text for each unresolved leaf (empty if none)."""
    blocks = []
    root = certificate.root
    for leaf in root.unresolved_leaves():
        lines = [f"# Subcase {leaf.label} of {certificate.name}", certificate.params.to_case_line()]
        constraints = list(root.constraints)
        if leaf is not root:
            constraints += list(leaf.constraints)
        for constraint in constraints:
            lines.extend(constraint.to_case_line().splitlines())
        for i, iv in enumerate(leaf.intervals):
            lines.append(BoxBound(i, iv.lo, iv.hi).to_case_line())
        goal = leaf.goal if leaf.goal is not None else _first_goal(root)
        if goal is not None:
            lines.append(goal.to_case_line())
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _first_goal(node: NodeCertificate):
    for n in node.iter_nodes():
        if n.goal is not None:
            return n.goal
    return None


def to_json(certificate: CaseCertificate, receipts: Optional[ReceiptChain] = None) -> str:
    data = {"certificate": certificate.to_canonical()}
    if receipts is not None:
        data["receipts"] = receipts.to_canonical()
    return canonical_dumps(data, indent=2)
