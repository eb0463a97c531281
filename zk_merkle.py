# zk_merkle.py
"""
Merkle position verification as a circuit.

Given a leaf, an opening (siblings, direction bits, level tags and level
weights), we recompute INSIDE THE CIRCUIT both
- the root, which must equal the public root, and
- the leaf index, which must equal the public index.

The index is rebuilt from the path alone: every level where our node is a
RIGHT child contributes that level's weight. A prover holding a genuine leaf
therefore cannot pass it off as sitting at another position.

The circuit is written once against an arithmetic API:
- NativeAPI: plain ints, branching select, library Poseidon (conventional
  verification)
- ArithmeticAPI: plain ints evaluated exactly as the circuit is, branch-free
  select and the constraint-level Poseidon permutation
- PysnarkAPI: the same arithmetic over PrivVal/PubVal LinComb values, every
  operation recorded as constraints by the pysnark runtime
"""

from typing import List, Sequence, Tuple

from hash_utils import (
    CHUNK_SIZE,
    FIELD_MODULUS,
    FieldArithmetic,
    bytes_to_field,
    circuit_hash,
    poseidon_hash,
    split_chunks,
)
from merkle_errors import BackendError, PredicateViolation
from merkle_tree import InclusionProof


class NativeAPI(FieldArithmetic):
    """Off-circuit evaluation of the circuit on Python ints."""

    name = "native"

    def private(self, value: int) -> int:
        return value % self.modulus

    def public(self, value: int) -> int:
        return value % self.modulus

    def sub(self, a, b):
        return (a - b) % self.modulus

    def hash(self, *elements):
        return poseidon_hash(*elements)

    def select(self, bit, if_one, if_zero):
        return if_one if bit == 1 else if_zero

    def assert_boolean(self, bit, check: str = "direction") -> None:
        if bit not in (0, 1):
            raise PredicateViolation(check, f"Direction bit must be 0 or 1, got {bit}")

    def assert_equal(self, a, b, check: str) -> None:
        if (a - b) % self.modulus != 0:
            raise PredicateViolation(check)


class BranchFreeAPI:
    """
    Circuit arithmetic where operands are either constants (int) or circuit
    variables.

    - constants are moved to the right of + and *, the side LinComb accepts
    - select(bit, a, b) = b + bit * (a - b): no data-dependent branch
    - every check is done on the witness values first, then handed to
      _assert_zero() so a backend can record it as a constraint
    """

    modulus = FIELD_MODULUS

    def add(self, a, b):
        if isinstance(a, int):
            a, b = b, a
        return self._reduce(a + b)

    def mul(self, a, b):
        if isinstance(a, int):
            a, b = b, a
        return self._reduce(a * b)

    def sub(self, a, b):
        if isinstance(a, int) and not isinstance(b, int):
            return self.add(self.mul(b, -1), a)
        return self._reduce(a - b)

    def hash(self, *elements):
        return circuit_hash(self, *elements)

    def select(self, bit, if_one, if_zero):
        return self.add(if_zero, self.mul(bit, self.sub(if_one, if_zero)))

    def assert_boolean(self, bit, check: str = "direction") -> None:
        product = self.mul(bit, self.sub(bit, 1))
        if self.value(product) != 0:
            raise PredicateViolation(
                check, f"Direction bit must be 0 or 1, got {self.value(bit)}"
            )
        self._assert_zero(product)

    def assert_equal(self, a, b, check: str) -> None:
        diff = self.sub(a, b)
        if self.value(diff) != 0:
            raise PredicateViolation(check)
        self._assert_zero(diff)

    def value(self, x) -> int:
        return getattr(x, "value", x) % self.modulus

    def _reduce(self, x):
        return x % self.modulus if isinstance(x, int) else x

    def _assert_zero(self, x) -> None:
        pass


class ArithmeticAPI(BranchFreeAPI):
    """The circuit's arithmetic on plain ints, without a constraint recorder."""

    name = "arithmetic"

    def private(self, value: int) -> int:
        return value % self.modulus

    def public(self, value: int) -> int:
        return value % self.modulus


class PysnarkAPI(BranchFreeAPI):
    """
    In-circuit evaluation through the pysnark runtime.

    PySNARK Semantics:
    - PrivVal / PubVal create witness / public input variables
    - multiplying two LinComb values records a constraint
    - assert_zero() records the equality constraint
    """

    name = "pysnark"

    def __init__(self) -> None:
        try:
            from pysnark import runtime
        except ImportError as exc:
            raise BackendError(
                "pysnark is not installed. Install PySNARK: pip install pysnark"
            ) from exc
        self._runtime = runtime

    def private(self, value: int):
        return self._runtime.PrivVal(value % self.modulus)

    def public(self, value: int):
        return self._runtime.PubVal(value % self.modulus)

    def _assert_zero(self, x) -> None:
        if not isinstance(x, int):
            x.assert_zero()


def merkle_position_circuit(
    api,
    leaf_chunks: Sequence,
    siblings: Sequence,
    directions: Sequence,
    tags: Sequence,
    weights: Sequence,
    public_root,
    public_index,
) -> None:
    """
    Merkle position circuit.

    Inputs (already converted by `api.private` / `api.public`):
    - leaf_chunks: the leaf as 32-byte field elements (private)
    - siblings, directions, tags, weights: one entry per level, bottom-up (private)
    - public_root, public_index: the claim being proven (public)

    Circuit Logic:
    1. needle = H(leaf_chunks...), index = 0
    2. For each level h (bottom-up)
        a) direction[h] must be 0 or 1
        b) compute BOTH H(tag || needle || sibling) and H(tag || sibling || needle)
        c) direction 1 selects the second (sibling is the LEFT operand)
        d) index += direction[h] * weight[h]
    3. Assert needle == public_root
    4. Assert index == public_index

    Both candidates are hashed at every level because a circuit has no
    data-dependent branching; only the selection depends on the bit.
    """
    if not (len(siblings) == len(directions) == len(tags) == len(weights)):
        raise ValueError(
            f"Length mismatch: {len(siblings)} siblings, {len(directions)} directions, "
            f"{len(tags)} tags, {len(weights)} weights"
        )

    needle = api.hash(*leaf_chunks)
    index = 0

    for h in range(len(siblings)):
        bit = directions[h]
        api.assert_boolean(bit)

        left_hash = api.hash(tags[h], needle, siblings[h])
        right_hash = api.hash(tags[h], siblings[h], needle)

        needle = api.select(bit, right_hash, left_hash)
        index = api.select(bit, api.add(index, weights[h]), index)

    api.assert_equal(needle, public_root, "root")
    api.assert_equal(index, public_index, "index")


def opening_to_field(proof: InclusionProof) -> Tuple[List[int], List[int], List[int], List[int]]:
    """
    Split an opening into (siblings, directions, tags, weights) field elements.

    A sibling or tag that is not a canonical field element cannot come from
    a tree, so the opening is rejected as an encoding violation.
    """
    try:
        siblings = [bytes_to_field(step.sibling) for step in proof.steps]
        tags = [bytes_to_field(step.tag) for step in proof.steps]
    except ValueError as exc:
        raise PredicateViolation("encoding", str(exc)) from exc
    directions = [step.direction for step in proof.steps]
    weights = [step.weight for step in proof.steps]
    return siblings, directions, tags, weights


def leaf_to_field(leaf: bytes, width: int = CHUNK_SIZE) -> List[int]:
    """The leaf as the field elements the circuit absorbs."""
    try:
        return [bytes_to_field(chunk) for chunk in split_chunks(leaf, width)]
    except ValueError as exc:
        raise PredicateViolation("encoding", str(exc)) from exc


def check_inclusion(leaf: bytes, proof: InclusionProof, root: bytes, leaf_index: int, api=None) -> None:
    """Evaluate the circuit on ints; raises PredicateViolation on rejection."""
    api = api or NativeAPI()
    siblings, directions, tags, weights = opening_to_field(proof)
    merkle_position_circuit(
        api,
        leaf_to_field(leaf),
        siblings,
        directions,
        tags,
        weights,
        leaf_to_field(root)[0],
        leaf_index,
    )


def verify_inclusion(leaf: bytes, proof: InclusionProof, root: bytes, leaf_index: int, api=None) -> bool:
    try:
        check_inclusion(leaf, proof, root, leaf_index, api)
    except PredicateViolation:
        return False
    return True
