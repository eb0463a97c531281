# proof_backend.py
"""
Proof backend boundary: compile -> setup -> prove -> verify.

The pipeline only talks to ProofBackend. EvaluatingBackend is the bundled
implementation: it evaluates the position circuit on the witness (natively
or through the pysnark runtime, which records the constraints) and, when
every assertion holds, seals the public inputs with a key produced at setup.

It plays the role pysnark's `nobackend` mode plays for PySNARK programs:
the circuit is really executed and checked, but the resulting proof is not
zero-knowledge. The seal is an Ed25519 signature made with the proving key;
the verifying key only holds the public half, so it can check seals but not
produce them. A Groth16 backend fits the same four calls.
"""

import logging
import secrets
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from hash_utils import CHUNK_SIZE, hash_bytes, split_chunks
from merkle_errors import BackendError, VerificationError
from merkle_tree import InclusionProof, WeightedMerkleTree
from zk_merkle import ArithmeticAPI, NativeAPI, PysnarkAPI, leaf_to_field, merkle_position_circuit, opening_to_field

logger = logging.getLogger(__name__)

ENGINES = {
    NativeAPI.name: NativeAPI,
    ArithmeticAPI.name: ArithmeticAPI,
    PysnarkAPI.name: PysnarkAPI,
}

_CIRCUIT_DOMAIN = b"weighted-merkle-position/v1".rjust(CHUNK_SIZE, b"\0")
_NONCE_SIZE = 16
_DIGEST_SIZE = 32
_SIGNATURE_SIZE = 64

# The pysnark runtime records into a single process-wide constraint system
_PYSNARK_LOCK = threading.Lock()


@dataclass(frozen=True)
class PublicWitness:
    root: bytes
    leaf_index: int

    def to_bytes(self) -> bytes:
        return self.root + self.leaf_index.to_bytes(8, byteorder="big")


@dataclass(frozen=True)
class Witness:
    """Full assignment: the leaf and its opening (private), root and index (public)."""
    leaf: bytes
    proof: InclusionProof
    root: bytes
    leaf_index: int

    @classmethod
    def from_tree(cls, tree: WeightedMerkleTree, index: int) -> "Witness":
        return cls(
            leaf=tree.leaf(index),
            proof=tree.opening(index),
            root=tree.root,
            leaf_index=index,
        )

    @property
    def depth(self) -> int:
        return len(self.proof.steps)

    @property
    def chunk_count(self) -> int:
        return len(split_chunks(self.leaf))

    def public(self) -> PublicWitness:
        return PublicWitness(root=self.root, leaf_index=self.leaf_index)


@dataclass(frozen=True)
class ConstraintSystem:
    depth: int
    chunk_count: int
    engine: str
    circuit_id: bytes


@dataclass(frozen=True)
class ProvingKey:
    circuit_id: bytes
    signing_key: Ed25519PrivateKey


@dataclass(frozen=True)
class VerifyingKey:
    circuit_id: bytes
    public_key: Ed25519PublicKey


@dataclass(frozen=True)
class Proof:
    circuit_id: bytes
    nonce: bytes
    seal: bytes

    def to_bytes(self) -> bytes:
        return self.circuit_id + self.nonce + self.seal

    @classmethod
    def from_bytes(cls, data: bytes) -> "Proof":
        expected = _DIGEST_SIZE + _NONCE_SIZE + _SIGNATURE_SIZE
        if len(data) != expected:
            raise BackendError(f"Proof blob must be {expected} bytes, got {len(data)}")
        return cls(
            circuit_id=data[:_DIGEST_SIZE],
            nonce=data[_DIGEST_SIZE:_DIGEST_SIZE + _NONCE_SIZE],
            seal=data[_DIGEST_SIZE + _NONCE_SIZE:],
        )


class ProofBackend(ABC):
    @abstractmethod
    def compile(self, depth: int, chunk_count: int) -> ConstraintSystem:
        ...

    @abstractmethod
    def setup(self, cs: ConstraintSystem) -> Tuple[ProvingKey, VerifyingKey]:
        ...

    @abstractmethod
    def prove(self, cs: ConstraintSystem, pk: ProvingKey, witness: Witness) -> Proof:
        ...

    @abstractmethod
    def verify(self, proof: Proof, vk: VerifyingKey, public_witness: PublicWitness) -> None:
        """Return normally on success, raise VerificationError otherwise."""


def _sealed_message(circuit_id: bytes, nonce: bytes, public_witness: PublicWitness) -> bytes:
    return circuit_id + nonce + public_witness.to_bytes()


class EvaluatingBackend(ProofBackend):
    def __init__(self, engine: str = "native") -> None:
        if engine not in ENGINES:
            raise BackendError(f"Unknown engine {engine!r}, expected one of {sorted(ENGINES)}")
        self.engine = engine

    def compile(self, depth: int, chunk_count: int) -> ConstraintSystem:
        if depth < 0 or chunk_count < 1:
            raise BackendError(
                f"Cannot compile circuit with depth {depth} and {chunk_count} leaf chunks"
            )
        circuit_id = hash_bytes(
            _CIRCUIT_DOMAIN,
            depth.to_bytes(32, byteorder="big"),
            chunk_count.to_bytes(32, byteorder="big"),
        )
        return ConstraintSystem(
            depth=depth, chunk_count=chunk_count, engine=self.engine, circuit_id=circuit_id
        )

    def setup(self, cs: ConstraintSystem) -> Tuple[ProvingKey, VerifyingKey]:
        signing_key = Ed25519PrivateKey.generate()
        return (
            ProvingKey(circuit_id=cs.circuit_id, signing_key=signing_key),
            VerifyingKey(circuit_id=cs.circuit_id, public_key=signing_key.public_key()),
        )

    def prove(self, cs: ConstraintSystem, pk: ProvingKey, witness: Witness) -> Proof:
        if pk.circuit_id != cs.circuit_id:
            raise BackendError("Proving key was not generated for this constraint system")
        if witness.depth != cs.depth or witness.chunk_count != cs.chunk_count:
            raise BackendError(
                f"Witness shape (depth {witness.depth}, {witness.chunk_count} chunks) does not "
                f"match circuit (depth {cs.depth}, {cs.chunk_count} chunks)"
            )

        if self.engine == PysnarkAPI.name:
            with _PYSNARK_LOCK:
                self._evaluate(witness)
        else:
            self._evaluate(witness)

        logger.debug("circuit satisfied for leaf %d (%s engine)", witness.leaf_index, self.engine)
        nonce = secrets.token_bytes(_NONCE_SIZE)
        return Proof(
            circuit_id=cs.circuit_id,
            nonce=nonce,
            seal=pk.signing_key.sign(_sealed_message(cs.circuit_id, nonce, witness.public())),
        )

    def verify(self, proof: Proof, vk: VerifyingKey, public_witness: PublicWitness) -> None:
        if proof.circuit_id != vk.circuit_id:
            raise VerificationError("Proof was produced for a different circuit")
        try:
            vk.public_key.verify(
                proof.seal, _sealed_message(proof.circuit_id, proof.nonce, public_witness)
            )
        except InvalidSignature:
            raise VerificationError("Proof does not match the public witness") from None

    def _evaluate(self, witness: Witness) -> None:
        api = ENGINES[self.engine]()
        siblings, directions, tags, weights = opening_to_field(witness.proof)

        merkle_position_circuit(
            api,
            [api.private(c) for c in leaf_to_field(witness.leaf)],
            [api.private(s) for s in siblings],
            [api.private(d) for d in directions],
            [api.private(t) for t in tags],
            [api.private(w) for w in weights],
            api.public(leaf_to_field(witness.root)[0]),
            api.public(witness.leaf_index),
        )
