"""
Tests for zk_merkle.py: the position circuit evaluated off-circuit.
"""
from dataclasses import replace

import pytest

from conftest import make_leaves
from hash_utils import CHUNK_SIZE, FIELD_MODULUS, bytes_to_field
from merkle_errors import PredicateViolation
from merkle_tree import InclusionProof, WeightedMerkleTree
from zk_merkle import (
    ArithmeticAPI,
    BranchFreeAPI,
    NativeAPI,
    check_inclusion,
    leaf_to_field,
    merkle_position_circuit,
    opening_to_field,
    verify_inclusion,
)


def _flip_bit(data: bytes, bit: int) -> bytes:
    buf = bytearray(data)
    buf[bit // 8] ^= 1 << (bit % 8)
    return bytes(buf)


def _replace_step(proof: InclusionProof, position: int, **changes) -> InclusionProof:
    steps = list(proof.steps)
    steps[position] = replace(steps[position], **changes)
    return replace(proof, steps=tuple(steps))


class TestAcceptance:
    @pytest.mark.parametrize("count", [4, 8, 16])
    def test_every_index_accepts(self, count):
        leaves = make_leaves(count)
        tree = WeightedMerkleTree(leaves)
        for i in range(count):
            assert verify_inclusion(leaves[i], tree.opening(i), tree.root, i)

    def test_padded_tree_accepts_every_index(self):
        # Weights assume 2**level leaves per node even where padding
        # duplicated a node; the path still encodes the original index.
        leaves = make_leaves(5)
        tree = WeightedMerkleTree(leaves)
        for i in range(5):
            assert verify_inclusion(leaves[i], tree.opening(i), tree.root, i)

    def test_multi_chunk_leaves(self):
        leaves = make_leaves(4, leaf_size=96)
        tree = WeightedMerkleTree(leaves)
        assert leaf_to_field(leaves[3]) == [
            bytes_to_field(leaves[3][i:i + 32]) for i in range(0, 96, 32)
        ]
        assert verify_inclusion(leaves[3], tree.opening(3), tree.root, 3)

    def test_single_leaf_tree(self):
        leaf = make_leaves(1)[0]
        tree = WeightedMerkleTree([leaf])
        assert verify_inclusion(leaf, tree.opening(0), tree.root, 0)


class TestRejection:
    def test_wrong_index_rejected(self, leaves4, tree4):
        with pytest.raises(PredicateViolation) as excinfo:
            check_inclusion(leaves4[2], tree4.opening(2), tree4.root, 1)
        assert excinfo.value.check == "index"

    def test_wrong_root_rejected(self, leaves4, tree4):
        other_root = WeightedMerkleTree(make_leaves(4, seed=99)).root
        with pytest.raises(PredicateViolation) as excinfo:
            check_inclusion(leaves4[2], tree4.opening(2), other_root, 2)
        assert excinfo.value.check == "root"

    def test_wrong_leaf_rejected(self, leaves4, tree4):
        assert not verify_inclusion(leaves4[1], tree4.opening(2), tree4.root, 2)

    def test_duplicate_leaf_cannot_claim_other_position(self):
        leaf = make_leaves(1)[0]
        leaves = [leaf, leaf] + make_leaves(2, seed=3)
        tree = WeightedMerkleTree(leaves)
        proof = tree.opening(0)
        with pytest.raises(PredicateViolation) as excinfo:
            check_inclusion(leaf, proof, tree.root, 1)
        assert excinfo.value.check == "index"

    # bits from byte 8 on keep a digest below the field modulus
    @pytest.mark.parametrize("bit", [70, 100, 200, 255])
    def test_sibling_bit_flip_rejected(self, bit):
        leaves = make_leaves(8)
        tree = WeightedMerkleTree(leaves)
        for i in (0, 5):
            proof = tree.opening(i)
            for position, step in enumerate(proof.steps):
                tampered = _replace_step(proof, position, sibling=_flip_bit(step.sibling, bit))
                with pytest.raises(PredicateViolation) as excinfo:
                    check_inclusion(leaves[i], tampered, tree.root, i)
                assert excinfo.value.check == "root"

    def test_direction_flip_changes_root_or_index(self):
        leaves = make_leaves(8)
        tree = WeightedMerkleTree(leaves)
        for i in range(8):
            proof = tree.opening(i)
            for position, step in enumerate(proof.steps):
                tampered = _replace_step(proof, position, direction=1 - step.direction)
                assert tampered.reconstructed_index() != i
                with pytest.raises(PredicateViolation) as excinfo:
                    check_inclusion(leaves[i], tampered, tree.root, i)
                assert excinfo.value.check in ("root", "index")

    def test_non_boolean_direction_rejected(self, leaves4, tree4):
        tampered = _replace_step(tree4.opening(2), 0, direction=2)
        with pytest.raises(PredicateViolation) as excinfo:
            check_inclusion(leaves4[2], tampered, tree4.root, 2)
        assert excinfo.value.check == "direction"

    def test_wrong_weight_rejected(self, leaves4, tree4):
        tampered = _replace_step(tree4.opening(2), 1, weight=3)
        with pytest.raises(PredicateViolation) as excinfo:
            check_inclusion(leaves4[2], tampered, tree4.root, 2)
        assert excinfo.value.check == "index"

    def test_truncated_opening_rejected(self, leaves4, tree4):
        proof = tree4.opening(2)
        truncated = replace(proof, steps=proof.steps[:1])
        assert not verify_inclusion(leaves4[2], truncated, tree4.root, 2)


class TestCircuit:
    def test_length_mismatch(self, tree4):
        siblings, directions, tags, weights = opening_to_field(tree4.opening(0))
        with pytest.raises(ValueError):
            merkle_position_circuit(
                NativeAPI(), [1], siblings, directions[:1], tags, weights, 0, 0
            )

    def test_native_select_semantics(self):
        api = NativeAPI()
        assert api.select(1, "right", "left") == "right"
        assert api.select(0, "right", "left") == "left"

    def test_non_canonical_sibling_rejected(self, leaves4, tree4):
        tampered = _replace_step(tree4.opening(2), 0, sibling=b"\xff" * CHUNK_SIZE)
        with pytest.raises(PredicateViolation) as excinfo:
            check_inclusion(leaves4[2], tampered, tree4.root, 2)
        assert excinfo.value.check == "encoding"

    def test_aliased_leaf_rejected(self):
        leaves = [(5).to_bytes(CHUNK_SIZE, "big")] + make_leaves(3)
        tree = WeightedMerkleTree(leaves)
        alias = (5 + FIELD_MODULUS).to_bytes(CHUNK_SIZE, "big")
        with pytest.raises(PredicateViolation) as excinfo:
            check_inclusion(alias, tree.opening(0), tree.root, 0)
        assert excinfo.value.check == "encoding"
        assert verify_inclusion(leaves[0], tree.opening(0), tree.root, 0)


class _Var:
    """
    Stand-in for a circuit variable: like a LinComb it takes constants only
    on its right (`var + 3`, never `3 + var`) and records assert_zero().
    """

    def __init__(self, value, log):
        self.value = value % FIELD_MODULUS
        self.log = log

    @staticmethod
    def _raw(other):
        return other.value if isinstance(other, _Var) else other

    def __add__(self, other):
        return _Var(self.value + self._raw(other), self.log)

    def __sub__(self, other):
        return _Var(self.value - self._raw(other), self.log)

    def __mul__(self, other):
        if isinstance(other, _Var):
            self.log.append("mul")
        return _Var(self.value * self._raw(other), self.log)

    def assert_zero(self):
        assert self.value == 0
        self.log.append("zero")


class RecordingAPI(BranchFreeAPI):
    name = "recording"

    def __init__(self):
        self.log = []

    def private(self, value):
        return _Var(value, self.log)

    def public(self, value):
        return _Var(value, self.log)

    def _assert_zero(self, x):
        if not isinstance(x, int):
            x.assert_zero()


def _verdict(api, leaf, proof, root, index):
    """Run the circuit through `api`; the failing check, or None on acceptance."""
    try:
        siblings, directions, tags, weights = opening_to_field(proof)
        merkle_position_circuit(
            api,
            [api.private(c) for c in leaf_to_field(leaf)],
            [api.private(s) for s in siblings],
            [api.private(d) for d in directions],
            [api.private(t) for t in tags],
            [api.private(w) for w in weights],
            api.public(leaf_to_field(root)[0]),
            api.public(index),
        )
    except PredicateViolation as exc:
        return exc.check
    return None


class TestBranchFreeArithmetic:
    @pytest.mark.parametrize("api", [ArithmeticAPI(), RecordingAPI()], ids=["ints", "variables"])
    @pytest.mark.parametrize("bit", [0, 1])
    def test_select_matches_native(self, api, bit):
        native = NativeAPI()
        if_one, if_zero = 1111, FIELD_MODULUS - 2222
        expected = native.select(bit, if_one, if_zero)
        got = api.select(api.private(bit), api.private(if_one), api.private(if_zero))
        assert api.value(got) == expected

    def test_select_with_constant_operands(self):
        api = RecordingAPI()
        assert api.value(api.select(api.private(1), 7, api.private(9))) == 7
        assert api.value(api.select(api.private(0), api.private(7), 9)) == 9

    def test_constant_moves_to_the_right(self):
        api = RecordingAPI()
        x = api.private(10)
        assert api.value(api.add(3, x)) == 13
        assert api.value(api.mul(3, x)) == 30
        assert api.value(api.sub(3, x)) == FIELD_MODULUS - 7
        assert api.value(api.sub(x, 3)) == 7

    def test_int_operands_are_reduced(self):
        api = ArithmeticAPI()
        assert api.add(FIELD_MODULUS - 1, 2) == 1
        assert api.mul(FIELD_MODULUS - 1, FIELD_MODULUS - 1) == 1
        assert api.sub(0, 1) == FIELD_MODULUS - 1

    def test_boolean_check(self):
        api = RecordingAPI()
        api.assert_boolean(api.private(0))
        api.assert_boolean(api.private(1))
        assert api.log.count("zero") == 2
        with pytest.raises(PredicateViolation) as excinfo:
            api.assert_boolean(api.private(2))
        assert excinfo.value.check == "direction"

    def test_failed_check_records_no_constraint(self):
        api = RecordingAPI()
        with pytest.raises(PredicateViolation):
            api.assert_equal(api.private(4), api.private(5), "root")
        assert "zero" not in api.log

    def test_accepting_run_records_constraints(self, leaves4, tree4):
        api = RecordingAPI()
        assert _verdict(api, leaves4[2], tree4.opening(2), tree4.root, 2) is None
        # one boolean check per level, then root and index
        assert api.log.count("zero") == tree4.depth + 2
        assert api.log.count("mul") > 0


class TestEngineAgreement:
    ENGINES = [NativeAPI, ArithmeticAPI, RecordingAPI]

    def _cases(self):
        leaves = make_leaves(8)
        tree = WeightedMerkleTree(leaves)
        other_root = WeightedMerkleTree(make_leaves(8, seed=99)).root
        proof = tree.opening(5)
        return [
            (leaves[5], proof, tree.root, 5),
            (leaves[5], proof, tree.root, 4),
            (leaves[5], proof, other_root, 5),
            (leaves[4], proof, tree.root, 5),
            (leaves[5], _replace_step(proof, 0, direction=0), tree.root, 5),
            (leaves[5], _replace_step(proof, 1, direction=2), tree.root, 5),
            (leaves[5], _replace_step(proof, 2, weight=3), tree.root, 5),
            (leaves[5], _replace_step(proof, 1, sibling=_flip_bit(proof.steps[1].sibling, 200)), tree.root, 5),
        ]

    def test_verdicts_agree(self):
        for leaf, proof, root, index in self._cases():
            verdicts = {cls.name: _verdict(cls(), leaf, proof, root, index) for cls in self.ENGINES}
            assert len(set(verdicts.values())) == 1, verdicts

    def test_expected_verdicts(self):
        verdicts = [_verdict(ArithmeticAPI(), *case) for case in self._cases()]
        assert verdicts[0] is None
        assert verdicts[1] == "index"
        assert verdicts[2] == "root"
        assert verdicts[3] == "root"
        assert verdicts[4] in ("root", "index")
        assert verdicts[5] == "direction"
        assert verdicts[6] == "index"
        assert verdicts[7] == "root"

    def test_padded_tree_agrees(self):
        leaves = make_leaves(5)
        tree = WeightedMerkleTree(leaves)
        for i in range(5):
            for cls in self.ENGINES:
                assert _verdict(cls(), leaves[i], tree.opening(i), tree.root, i) is None
