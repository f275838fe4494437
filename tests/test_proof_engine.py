"""
Tests for the Proof Engine, Certificates and Receipts
"""

import pytest
from rademacher_prover.bounds.bound_table import BoundTable, TableConfig
from rademacher_prover.case import (
    BoxBound,
    BranchCase,
    Case,
    CaseParameters,
    Contradiction,
    LeafCase,
    ProvesBound,
    ProvesSumLowerBound,
)
from rademacher_prover.core.certificate import (
    CaseCertificate,
    CertificateGate,
    NodeCertificate,
    NodeStatus,
    Verdict,
)
from rademacher_prover.exceptions import InvariantViolation
from rademacher_prover.receipts import ActionType, ReceiptChain
from rademacher_prover.solver.proof_engine import EngineConfig, ProofEngine


@pytest.fixture(scope="module")
def table():
    return BoundTable.baseline()


def split_case(params, goal, children, name="split"):
    """A case whose root splits a_0 into the given box subcases."""
    leaves = tuple(
        LeafCase((BoxBound(0, lo, hi),), goal, label=label)
        for label, (lo, hi) in zip("ABCD", children)
    )
    return Case(name, params, BranchCase((), leaves))


class TestLeaves:
    """Test single-node cases."""

    def test_fixed_unit_coefficient(self, table):
        """a_0 = 1 is the only vector; its sum is exactly 1."""
        case = Case(
            "unit",
            CaseParameters(0.0, 0.5, 1, 4),
            LeafCase((BoxBound(0, 1.0, 1.0),), ProvesSumLowerBound((1,), 1.0)),
        )
        certificate = ProofEngine(table).prove(case)
        assert certificate.verdict == Verdict.PROVED
        assert certificate.root.status == NodeStatus.PROVED
        assert not certificate.root.vacuous
        assert certificate.root.value == 1.0

    def test_conflicting_bounds(self, table):
        """[0, 0.3] and [0.7, 1] on the same coefficient do not intersect."""
        case = Case(
            "empty",
            CaseParameters(0.0, 0.5, 1, 4),
            LeafCase((BoxBound(0, 0.0, 0.3), BoxBound(0, 0.7, 1.0)), ProvesBound(0.01, 0.5)),
        )
        certificate = ProofEngine(table).prove(case)
        assert certificate.verdict == Verdict.CONTRADICTION
        assert certificate.root.status == NodeStatus.CONTRADICTION_FOUND
        assert certificate.root.vacuous
        assert certificate.proved

    def test_unresolved_leaf(self, table):
        """The symmetry-only table cannot bound a_0 for P[X >= 0] >= 1/2."""
        case = Case(
            "weak",
            CaseParameters(0.0, 0.5, 1, 4),
            LeafCase((), ProvesSumLowerBound((1,), 0.5)),
        )
        certificate = ProofEngine(table).prove(case)
        assert certificate.verdict == Verdict.UNRESOLVED
        assert not certificate.proved
        assert certificate.root.reason == "sum_below_bound"
        assert len(certificate.root.intervals) == 1


class TestBranches:
    """Test subcase resolution."""

    def test_both_children_unresolved(self, table):
        """A Contradiction goal on feasible subcases stays unresolved."""
        case = split_case(CaseParameters(0.0, 0.5, 1, 4), Contradiction(),
                          [(0.0, 0.5), (0.5, 1.0)])
        certificate = ProofEngine(table).prove(case)
        assert certificate.root.status == NodeStatus.EXHAUSTED_UNRESOLVED
        assert [n.label for n in certificate.root.unresolved_leaves()] == ["A", "B"]

    def test_one_child_unresolved(self, table):
        """One open subcase keeps the parent open."""
        case = split_case(CaseParameters(-1.0, 0.4, 1, 4), Contradiction(),
                          [(0.0, 0.5), (0.5, 1.0)])
        engine = ProofEngine(table, EngineConfig(oracle_contradiction=True))
        certificate = engine.prove(case)
        first, second = certificate.root.children
        assert first.status == NodeStatus.PROVED
        assert first.vacuous
        assert second.status == NodeStatus.EXHAUSTED_UNRESOLVED
        assert certificate.verdict == Verdict.UNRESOLVED

    def test_infeasible_and_proved_children(self, table):
        """An infeasible child and a proved child close the branch."""
        params = CaseParameters(0.0, 0.5, 1, 4)
        goal = ProvesSumLowerBound((1,), 1.0)
        root = BranchCase((), (
            LeafCase((BoxBound(0, 1.0, 1.0),), goal, label="A"),
            LeafCase((BoxBound(0, 0.0, 0.3), BoxBound(0, 0.7, 1.0)), goal, label="B"),
        ))
        certificate = ProofEngine(table).prove(Case("mixed", params, root))
        assert certificate.verdict == Verdict.PROVED
        assert certificate.root.children[1].status == NodeStatus.CONTRADICTION_FOUND

    def test_short_circuit(self, table):
        """Evaluation stops at the first unresolved subcase."""
        case = split_case(CaseParameters(0.0, 0.5, 1, 4), Contradiction(),
                          [(0.0, 0.5), (0.5, 1.0)])
        certificate = ProofEngine(table, EngineConfig(short_circuit=True)).prove(case)
        assert len(certificate.root.children) == 1
        assert certificate.verdict == Verdict.UNRESOLVED

    def test_threads_match_serial(self, table):
        """Subcases on a thread pool give the identical certificate."""
        case = split_case(CaseParameters(-1.0, 0.4, 2, 8), ProvesBound(0.5, 0.5),
                          [(0.0, 0.25), (0.25, 0.5), (0.5, 0.75), (0.75, 1.0)])
        serial = ProofEngine(table).prove(case)
        threaded = ProofEngine(table, EngineConfig(max_workers=4)).prove(case)
        assert serial.cert_hash == threaded.cert_hash

    def test_max_depth(self, table):
        """A tree deeper than max_depth fails fast."""
        case = split_case(CaseParameters(0.0, 0.5, 1, 4), Contradiction(), [(0.0, 1.0)])
        with pytest.raises(InvariantViolation):
            ProofEngine(table, EngineConfig(max_depth=0)).prove(case)


class TestCoverage:
    """Test the optional exhaustiveness check."""

    def test_gap_is_reported(self, table):
        """Subcases covering only [0, 0.7] leave the cell near a_0 = 1 uncovered."""
        case = split_case(CaseParameters(-1.0, 0.4, 1, 4), Contradiction(),
                          [(0.0, 0.5), (0.5, 0.7)])
        trusted = ProofEngine(table, EngineConfig(oracle_contradiction=True)).prove(case)
        assert trusted.verdict == Verdict.PROVED

        checked = ProofEngine(
            table, EngineConfig(oracle_contradiction=True, check_coverage=True)
        ).prove(case)
        assert checked.verdict == Verdict.UNRESOLVED
        remainder = checked.root.children[-1]
        assert remainder.label == "remainder"
        assert remainder.search["uncovered"] == 1
        assert remainder.intervals[0].hi >= 1.0

    def test_complete_split(self, table):
        """When every surviving cell lies in a subcase no remainder is added."""
        case = split_case(CaseParameters(0.0, 1.0, 1, 4), ProvesBound(1.0, 0.5),
                          [(0.0, 0.5), (0.5, 1.0)])
        certificate = ProofEngine(table, EngineConfig(check_coverage=True)).prove(case)
        assert certificate.verdict == Verdict.PROVED
        assert [c.label for c in certificate.root.children] == ["A", "B"]

    def test_split_at_decimal_point(self, table):
        """A split at 0.7, which has no exact float, still covers the parent."""
        case = split_case(CaseParameters(0.0, 1.0, 1, 20), ProvesBound(1.0, 0.5),
                          [(0.0, 0.5), (0.5, 0.7), (0.7, 1.0)])
        certificate = ProofEngine(table, EngineConfig(check_coverage=True)).prove(case)
        assert certificate.verdict == Verdict.PROVED
        assert [c.label for c in certificate.root.children] == ["A", "B", "C"]


class TestCertificateGate:
    """Test the output contract."""

    def test_open_node_rejected(self):
        """OPEN nodes never leave the gate."""
        with pytest.raises(InvariantViolation):
            CertificateGate().validate_node(NodeCertificate("root", NodeStatus.OPEN))

    def test_contradiction_must_be_vacuous(self):
        """A contradiction node must be flagged vacuous."""
        node = NodeCertificate("root", NodeStatus.CONTRADICTION_FOUND)
        with pytest.raises(InvariantViolation):
            CertificateGate().validate_node(node)

    def test_branch_status_matches_children(self):
        """A proved branch cannot hold an unresolved child."""
        child = NodeCertificate("A", NodeStatus.EXHAUSTED_UNRESOLVED)
        node = NodeCertificate("root", NodeStatus.PROVED, children=[child])
        with pytest.raises(InvariantViolation):
            CertificateGate().validate_node(node)

    def test_measured_value_checked(self):
        """A proved leaf's value must meet its goal."""
        node = NodeCertificate("root", NodeStatus.PROVED, goal=ProvesBound(0.1, 0.5), value=0.2)
        with pytest.raises(InvariantViolation):
            CertificateGate().validate_node(node)

    def test_tampered_hash(self, table):
        """A certificate whose hash does not match is rejected."""
        case = Case(
            "unit",
            CaseParameters(0.0, 0.5, 1, 4),
            LeafCase((BoxBound(0, 1.0, 1.0),), ProvesSumLowerBound((1,), 1.0)),
        )
        certificate = ProofEngine(table).prove(case)
        forged = CaseCertificate(
            name=certificate.name,
            params=certificate.params,
            root=certificate.root,
            table=certificate.table,
            cert_hash="0" * 64,
        )
        with pytest.raises(InvariantViolation):
            CertificateGate().validate(forged)


class TestTableProvenance:
    """Test that certificates record how their table was built."""

    UNIT = Case(
        "unit",
        CaseParameters(0.0, 0.5, 1, 4),
        LeafCase((BoxBound(0, 1.0, 1.0),), ProvesSumLowerBound((1,), 1.0)),
    )

    def test_rigorous_table(self, table):
        """The baseline table is rigorous and says so."""
        certificate = ProofEngine(table).prove(self.UNIT)
        assert certificate.table["rigorous"] is True
        assert certificate.rigorous

    def test_estimate_only_table(self):
        """A quad-built table still proves the case but is marked."""
        quad = BoundTable.baseline(TableConfig(coef_gran=4, thresh_gran=4, integrator="quad"))
        certificate = ProofEngine(quad).prove(self.UNIT)
        assert certificate.verdict == Verdict.PROVED
        assert not certificate.rigorous
        assert certificate.table["config"]["integrator"] == "quad"

    def test_provenance_is_hashed(self, table):
        """Rigorous and estimate-only runs give different certificate hashes."""
        quad = BoundTable.baseline(TableConfig(integrator="quad"))
        rigorous = ProofEngine(table).prove(self.UNIT)
        estimate = ProofEngine(quad).prove(self.UNIT)
        assert rigorous.cert_hash != estimate.cert_hash


class TestReceipts:
    """Test the receipt chain over certificates."""

    def test_chain_shape(self, table):
        """One receipt per node, between start and verdict."""
        case = split_case(CaseParameters(0.0, 0.5, 1, 4), Contradiction(),
                          [(0.0, 0.5), (0.5, 1.0)])
        chain = ReceiptChain.from_certificate(ProofEngine(table).prove(case))
        actions = [r.action for r in chain.receipts]
        assert actions == [
            ActionType.CASE_START,
            ActionType.BRANCH,
            ActionType.LEAF_SEARCH,
            ActionType.LEAF_SEARCH,
            ActionType.VERDICT,
        ]
        assert chain.verify_chain()

    def test_chain_is_reproducible(self, table):
        """Replaying a case gives the same final hash."""
        case = split_case(CaseParameters(0.0, 0.5, 1, 4), Contradiction(),
                          [(0.0, 0.5), (0.5, 1.0)])
        first = ReceiptChain.from_certificate(ProofEngine(table).prove(case))
        second = ReceiptChain.from_certificate(ProofEngine(table).prove(case))
        assert first.final_hash == second.final_hash

    def test_tampering_breaks_chain(self, table):
        """Editing a receipt breaks verification."""
        case = split_case(CaseParameters(0.0, 0.5, 1, 4), Contradiction(),
                          [(0.0, 0.5), (0.5, 1.0)])
        chain = ReceiptChain.from_certificate(ProofEngine(table).prove(case))
        chain.receipts[2].params["status"] = "proved"
        assert not chain.verify_chain()

    def test_save_and_load(self, table, tmp_path):
        """Chains survive a JSON round trip."""
        case = Case(
            "empty",
            CaseParameters(0.0, 0.5, 1, 4),
            LeafCase((BoxBound(0, 0.0, 0.3), BoxBound(0, 0.7, 1.0)), Contradiction()),
        )
        chain = ReceiptChain.from_certificate(ProofEngine(table).prove(case))
        assert chain.receipts[1].action == ActionType.PROPAGATE_EMPTY
        path = tmp_path / "receipts.json"
        chain.save_json(path)
        loaded = ReceiptChain.load_json(path)
        assert loaded.verify_chain()
        assert loaded.final_hash == chain.final_hash


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
