"""
Proof Engine: Branch-and-Bound over the Case Tree

Walks a case tree and closes every node:

- On entry the node's constraints are folded into a copy of the parent's
  region. An EMPTY region is CONTRADICTION_FOUND (it satisfies any goal).
- A leaf runs the counterexample search over its region and evaluates
  its goal on the survivors: PROVED or EXHAUSTED_UNRESOLVED.
- A branch recurses into every subcase. It is PROVED iff every subcase
  is PROVED or CONTRADICTION_FOUND.

Subcases are trusted to cover their parent unless check_coverage is set;
then the parent region is searched too, and surviving cells that lie in
no single subcase become an unresolved "remainder" node.

The engine is deterministic. The bound table is shared read-only, so
sibling subcases may run on a thread pool.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional
import time

from ..bounds.bound_table import BoundTable
from ..case import BranchCase, Case, CaseNode, CaseParameters, LeafCase
from ..core.certificate import (
    CaseCertificate,
    CertificateGate,
    NodeCertificate,
    NodeStatus,
)
from ..exceptions import InvariantViolation
from .constraint_set import ConstraintSet, ConstraintSnapshot, cell_covered
from .goals import DELTA_SLACK, evaluate_goal, linear_forms_for
from .search import PROBABILITY_SLACK, CounterexampleSearch, Extrema


@dataclass
class EngineConfig:
    """Configuration for the proof engine."""
    max_workers: int = 1
    short_circuit: bool = False
    check_coverage: bool = False
    oracle_contradiction: bool = False

    max_depth: Optional[int] = None     # Case-tree depth guard
    max_nodes: Optional[int] = None     # Search cells per leaf

    probability_slack: float = PROBABILITY_SLACK
    delta_slack: float = DELTA_SLACK

    verbose: bool = False
    log_frequency: int = 100_000

    def to_canonical(self) -> Dict[str, Any]:
        return asdict(self)


class ProofEngine:
    """
    Proves cases against one bound table.

    Usage:
        engine = ProofEngine(table, EngineConfig(check_coverage=True))
        certificate = engine.prove(case)
    """

    def __init__(self, table: BoundTable, config: EngineConfig = None):
        self.table = table
        self.config = config or EngineConfig()
        self.gate = CertificateGate()

    def prove(self, case: Case) -> CaseCertificate:
        """
        Prove a case and emit its certificate through the output gate.

        Raises:
            InvariantViolation: on caller errors in the case (fail fast)
        """
        start = time.time()
        root = ConstraintSet(case.params.max_depth).snapshot()
        node = self.prove_node(case.root, root, case.params)

        certificate = CaseCertificate(
            name=case.name,
            params=case.params,
            root=node,
            table=self._table_info(),
            source=case.source,
        )
        if self.config.verbose:
            print(f"Case {case.name}: {certificate.verdict.value} "
                  f"({time.time() - start:.2f}s)", flush=True)
        return self.gate.emit(certificate)

    def prove_node(
        self,
        node: CaseNode,
        parent: ConstraintSnapshot,
        params: CaseParameters,
        depth: int = 0
    ) -> NodeCertificate:
        """Close one node of the case tree (recursively for branches)."""
        if self.config.max_depth is not None and depth > self.config.max_depth:
            raise InvariantViolation(
                f"Case tree deeper than max_depth={self.config.max_depth} at {node.label!r}"
            )

        region = ConstraintSet.from_snapshot(parent)
        region.tighten_all(node.constraints)
        snapshot = region.snapshot()
        goal = node.goal if isinstance(node, LeafCase) else None

        if snapshot.empty:
            if self.config.verbose:
                print(f"  [{node.label}] infeasible: {dict(snapshot.reason)}", flush=True)
            return NodeCertificate(
                label=node.label,
                status=NodeStatus.CONTRADICTION_FOUND,
                constraints=node.constraints,
                region=snapshot.to_canonical(),
                goal=goal,
                vacuous=True,
                reason="infeasible",
            )

        if isinstance(node, LeafCase):
            return self._prove_leaf(node, snapshot, params)
        if isinstance(node, BranchCase):
            return self._prove_branch(node, snapshot, params, depth)
        raise InvariantViolation(f"Not a case node: {node!r}")

    def _search(self, params: CaseParameters) -> CounterexampleSearch:
        return CounterexampleSearch(
            self.table,
            params,
            probability_slack=self.config.probability_slack,
            max_nodes=self.config.max_nodes,
            verbose=self.config.verbose,
            log_frequency=self.config.log_frequency,
        )

    def _prove_leaf(
        self,
        node: LeafCase,
        snapshot: ConstraintSnapshot,
        params: CaseParameters
    ) -> NodeCertificate:
        if self.config.verbose:
            print(f"  [{node.label}] searching {snapshot.boxes()}", flush=True)

        result = self._search(params).run(snapshot, linear_forms_for(node.goal, params.max_depth))
        outcome = evaluate_goal(
            node.goal,
            snapshot,
            result,
            delta_slack=self.config.delta_slack,
            oracle_contradiction=self.config.oracle_contradiction,
        )
        status = NodeStatus.PROVED if outcome.proved else NodeStatus.EXHAUSTED_UNRESOLVED

        if self.config.verbose:
            print(f"  [{node.label}] {status.value} ({outcome.reason}, "
                  f"{result.survivors} surviving cells)", flush=True)
        return NodeCertificate(
            label=node.label,
            status=status,
            constraints=node.constraints,
            region=snapshot.to_canonical(),
            goal=node.goal,
            vacuous=outcome.vacuous,
            value=outcome.value,
            intervals=[] if result.extrema.empty else result.extrema.intervals(),
            search=result.to_canonical(),
            reason=outcome.reason,
        )

    def _prove_branch(
        self,
        node: BranchCase,
        snapshot: ConstraintSnapshot,
        params: CaseParameters,
        depth: int
    ) -> NodeCertificate:
        children = self._prove_children(node.children, snapshot, params, depth + 1)

        if self.config.check_coverage:
            remainder = self._coverage_gap(node, snapshot, params)
            if remainder is not None:
                children.append(remainder)

        all_closed = all(child.closed for child in children)
        return NodeCertificate(
            label=node.label,
            status=NodeStatus.PROVED if all_closed else NodeStatus.EXHAUSTED_UNRESOLVED,
            constraints=node.constraints,
            region=snapshot.to_canonical(),
            reason="all_subcases_closed" if all_closed else "unresolved_subcases",
            children=children,
        )

    def _prove_children(
        self,
        children: List[CaseNode],
        snapshot: ConstraintSnapshot,
        params: CaseParameters,
        depth: int
    ) -> List[NodeCertificate]:
        if self.config.max_workers > 1 and len(children) > 1 and not self.config.short_circuit:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                futures = [executor.submit(self.prove_node, child, snapshot, params, depth)
                           for child in children]
                return [future.result() for future in futures]

        results = []
        for child in children:
            certificate = self.prove_node(child, snapshot, params, depth)
            results.append(certificate)
            if self.config.short_circuit and not certificate.closed:
                break
        return results

    def _coverage_gap(
        self,
        node: BranchCase,
        snapshot: ConstraintSnapshot,
        params: CaseParameters
    ) -> Optional[NodeCertificate]:
        """
        Search the parent region and collect surviving cells the
        subcases do not cover.
        """
        result = self._search(params).run(snapshot, collect_cells=True)

        child_constraints = []
        for child in node.children:
            child_set = ConstraintSet.from_snapshot(snapshot)
            child_set.tighten_all(child.constraints)
            # An empty subcase covers nothing.
            if not child_set.empty:
                child_constraints.append(child.constraints)

        uncovered = Extrema(params.max_depth)
        for lows, highs in result.cells:
            if not cell_covered(child_constraints, lows, highs):
                uncovered.include(lows, highs)

        if uncovered.empty and not result.budget_exhausted:
            return None

        if self.config.verbose:
            print(f"  [{node.label}] {uncovered.count} cells outside every subcase", flush=True)
        stats = result.to_canonical()
        stats["uncovered"] = uncovered.count
        return NodeCertificate(
            label="remainder",
            status=NodeStatus.EXHAUSTED_UNRESOLVED,
            region=snapshot.to_canonical(),
            intervals=uncovered.intervals() if not uncovered.empty else [],
            search=stats,
            reason="budget_exhausted" if result.budget_exhausted else "uncovered_cells",
        )

    def _table_info(self) -> Dict[str, Any]:
        info = {
            "coef_gran": self.table.coef_gran,
            "thresh_gran": self.table.thresh_gran,
            "max_bound": self.table.max_bound,
            "rigorous": self.table.rigorous,
        }
        if self.table.config is not None:
            info["config"] = self.table.config.to_canonical()
        return info
