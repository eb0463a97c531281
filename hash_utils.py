# hash_utils.py
"""
Utilities for hashing.

One hash, two evaluation contexts:
1. OFF-CIRCUIT (merkle_tree.py): Poseidon from the poseidon-hash library
2. IN-CIRCUIT (zk_merkle.py): the same Poseidon permutation, built from the
   library's own round constants and MDS matrix, over pysnark LinComb values

Both use one parameter set (BN254 scalar field, t = 4, rate = 3, x^5), so a
digest computed while building the tree is exactly the value the circuit
recomputes.
"""

import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Sequence, Tuple

import poseidon

# BN254 field modulus (used by PySNARK and most backends)
FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617

# Width of one field element when serialized, and of every digest
CHUNK_SIZE = 32

POSEIDON_SECURITY_LEVEL = 128
POSEIDON_ALPHA = 5
POSEIDON_RATE = 3
POSEIDON_WIDTH = POSEIDON_RATE + 1

# run_hash() keeps its state on the instance
_POSEIDON_LOCK = threading.Lock()


@lru_cache(maxsize=None)
def get_poseidon() -> poseidon.Poseidon:
    return poseidon.Poseidon(
        FIELD_MODULUS,
        POSEIDON_SECURITY_LEVEL,
        POSEIDON_ALPHA,
        POSEIDON_RATE,
        POSEIDON_WIDTH,
    )


@dataclass(frozen=True)
class PoseidonParameters:
    round_constants: Tuple[int, ...]
    mds: Tuple[Tuple[int, ...], ...]
    full_rounds: int
    partial_rounds: int


@lru_cache(maxsize=None)
def poseidon_parameters() -> PoseidonParameters:
    """The library's parameters as plain ints, for the in-circuit permutation."""
    hasher = get_poseidon()
    return PoseidonParameters(
        round_constants=tuple(int(c) for c in hasher.rc_field),
        mds=tuple(tuple(int(x) for x in row) for row in hasher.mds_matrix),
        full_rounds=int(hasher.full_round),
        partial_rounds=int(hasher.partial_round),
    )


class FieldArithmetic:
    """
    Modular arithmetic on plain ints.

    This is the off-circuit counterpart of pysnark's LinComb operators:
    circuit_hash() below only ever calls add() and mul().
    """

    modulus = FIELD_MODULUS

    def add(self, a, b):
        return (a + b) % self.modulus

    def mul(self, a, b):
        return (a * b) % self.modulus


FIELD = FieldArithmetic()


def bytes_to_field(block: bytes) -> int:
    """
    Read a big-endian block (at most CHUNK_SIZE bytes) as a field element.

    Raises:
        ValueError: block is wider than CHUNK_SIZE, or its value is not
            below FIELD_MODULUS (two byte strings must never share a value)
    """
    if len(block) > CHUNK_SIZE:
        raise ValueError(f"Block of {len(block)} bytes exceeds {CHUNK_SIZE}")
    value = int.from_bytes(block, byteorder="big")
    if value >= FIELD_MODULUS:
        raise ValueError("Block is not a canonical field element")
    return value


def field_to_bytes(value: int) -> bytes:
    return (value % FIELD_MODULUS).to_bytes(CHUNK_SIZE, byteorder="big")


def split_chunks(data: bytes, width: int = CHUNK_SIZE) -> List[bytes]:
    """Split data into consecutive `width`-byte chunks (the last may be short)."""
    return [data[i:i + width] for i in range(0, len(data), width)]


def _blocks(elements: Sequence) -> List[Sequence]:
    return [elements[i:i + POSEIDON_RATE] for i in range(0, len(elements), POSEIDON_RATE)] or [()]


def poseidon_hash(*elements: int) -> int:
    """
    Hash field elements with the library Poseidon (OFF-CIRCUIT).

    Elements are absorbed RATE at a time, chained through the first state
    word, which starts as the element count so inputs of different lengths
    never share a padded state.

    Returns:
        integer in [0, FIELD_MODULUS)
    """
    hasher = get_poseidon()
    acc = len(elements)
    for block in _blocks(elements):
        state = [acc, *block]
        with _POSEIDON_LOCK:
            acc = int(hasher.run_hash(state))
    return acc


def _permutation(api, state: list):
    params = poseidon_parameters()
    rc = iter(params.round_constants)
    half = params.full_rounds // 2

    def sbox(x):
        x2 = api.mul(x, x)
        x4 = api.mul(x2, x2)
        return api.mul(x4, x)

    def mix(words):
        mixed = []
        for row in params.mds:
            acc = 0
            for coefficient, word in zip(row, words):
                acc = api.add(acc, api.mul(word, coefficient))
            mixed.append(acc)
        return mixed

    def full_round(words):
        return mix([sbox(api.add(w, next(rc))) for w in words])

    def partial_round(words):
        words = [api.add(w, next(rc)) for w in words]
        words[-1] = sbox(words[-1])
        return mix(words)

    for _ in range(half):
        state = full_round(state)
    for _ in range(params.partial_rounds):
        state = partial_round(state)
    for _ in range(half):
        state = full_round(state)
    return state


def circuit_hash(api, *elements):
    """
    Poseidon written against an arithmetic API (IN-CIRCUIT).

    IMPORTANT: `api` decides where this runs.
    - FIELD (FieldArithmetic): plain ints, equal to poseidon_hash()
    - a circuit API (zk_merkle.py): returns a LinComb and records
      constraints for every S-box

    Args:
        api: object exposing add(a, b) and mul(a, b)
        *elements: field elements to absorb, in order
    """
    acc = len(elements)
    for block in _blocks(elements):
        state = [acc, *block]
        state += [0] * (POSEIDON_WIDTH - len(state))
        acc = _permutation(api, state)[1]
    return acc


def hash_bytes(*parts: bytes) -> bytes:
    """
    The hash oracle over byte strings (OFF-CIRCUIT).

    The parts are concatenated, split into 32-byte blocks and absorbed as
    field elements. Callers that need the in-circuit hash to agree must keep
    every part a multiple of CHUNK_SIZE, except a single trailing short part.

    Raises:
        ValueError: a 32-byte block is not below FIELD_MODULUS

    Returns:
        32-byte big-endian digest
    """
    data = b"".join(parts)
    elements = [bytes_to_field(chunk) for chunk in split_chunks(data)]
    return field_to_bytes(poseidon_hash(*elements))


def weighted_parent(tag: bytes, left: bytes, right: bytes) -> bytes:
    """
    Parent digest for arity=2 with a level weight tag (OFF-CIRCUIT).

    parent = H(tag || left || right)

    The tag changes per level, so a node cannot be replayed at another
    height, and the order of left/right matters.
    """
    return hash_bytes(tag, left, right)
