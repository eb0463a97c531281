# leaf_weights.py
"""
Per-level weights for the weighted Merkle tree.

A node at combination level i nominally covers 2**i leaves on each side.
That count (the "weight") does two jobs:
- its tag is mixed into every parent hash produced at that level
- summing the weights of the levels where our node is a RIGHT child gives
  back the leaf index, which is how the circuit checks the position
"""

import logging
import struct
from dataclasses import dataclass
from typing import List

from hash_utils import hash_bytes

logger = logging.getLogger(__name__)

_INT32_MAX = 2 ** 31 - 1


@dataclass(frozen=True)
class LevelWeight:
    weight: int
    tag: bytes


def weight_tag(weight: int) -> bytes:
    """Tag for a level: H(int32 big-endian(2 * weight))."""
    encoded = 2 * weight
    if encoded > _INT32_MAX:
        raise ValueError(f"Weight {weight} does not fit the int32 tag encoding")
    return hash_bytes(struct.pack(">i", encoded))


def calculate_leaf_weights(depth: int) -> List[LevelWeight]:
    """
    Weights and tags for a tree with `depth` combination levels.

    Returned bottom-up: entry 0 is used when hashing leaf pairs into the
    first internal layer, entry depth-1 produces the root.
    """
    if depth < 0:
        raise ValueError(f"Tree depth must be non-negative, got {depth}")

    weights: List[LevelWeight] = []
    current = 1  # a leaf reaches only itself
    for level in range(depth):
        weights.append(LevelWeight(weight=current, tag=weight_tag(current)))
        logger.debug("level %d covers %d leaves", level, current)
        current *= 2
    return weights


def tree_depth(leaf_count: int) -> int:
    """
    Number of combination levels above `leaf_count` leaves when odd layers
    are padded by duplicating their last node. Equals ceil(log2(leaf_count)).
    """
    if leaf_count < 1:
        raise ValueError("Tree must have at least one leaf")
    depth = 0
    n = leaf_count
    while n > 1:
        n = (n + 1) // 2
        depth += 1
    return depth
