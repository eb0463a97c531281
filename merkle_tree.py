# merkle_tree.py
"""
Binary Merkle tree with weight-tagged parents.

This is the "off-chain" / non-ZK part: we build the tree and compute Merkle
openings in plain Python. Every parent is H(tag_level || left || right),
where tag_level comes from leaf_weights.calculate_leaf_weights().
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from hash_utils import bytes_to_field, hash_bytes, split_chunks, weighted_parent
from leaf_weights import LevelWeight, calculate_leaf_weights, tree_depth
from merkle_errors import ConstructionError, IndexOutOfRange

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProofStep:
    """
    One level of an opening.

    direction = 1: the sibling is the LEFT operand, our node the RIGHT one.
    direction = 0: our node is LEFT, the sibling RIGHT.
    """
    sibling: bytes
    direction: int
    level: int
    weight: int
    tag: bytes


@dataclass(frozen=True)
class InclusionProof:
    leaf_index: int
    steps: Tuple[ProofStep, ...]
    root: bytes

    def reconstructed_index(self) -> int:
        """Sum of the weights of every level where our node is a right child."""
        return sum(step.weight for step in self.steps if step.direction == 1)

    def to_dict(self) -> dict:
        return {
            "leaf_index": self.leaf_index,
            "root": self.root.hex(),
            "steps": [
                {
                    "sibling": step.sibling.hex(),
                    "direction": step.direction,
                    "level": step.level,
                    "weight": step.weight,
                    "tag": step.tag.hex(),
                }
                for step in self.steps
            ],
        }


class WeightedMerkleTree:
    """
    Binary Merkle tree (arity = 2) over fixed-width byte leaves.

    - layers[0] = leaf hashes (padded to even length)
    - layers[1] = parents of leaf hashes, tagged with weights[0]
    - ...
    - layers[-1][0] = root

    Every layer but the root one has even length: an odd layer gets its last
    node duplicated before being combined. The tree is immutable once built.
    """

    def __init__(
        self,
        leaves: Sequence[bytes],
        weights: Optional[Sequence[LevelWeight]] = None,
    ) -> None:
        if len(leaves) == 0:
            raise ConstructionError("Tree must have at least one leaf")
        width = len(leaves[0])
        if width == 0:
            raise ConstructionError("Leaves must not be empty byte strings")
        for i, leaf in enumerate(leaves):
            if len(leaf) != width:
                raise ConstructionError(
                    f"Leaf {i} has {len(leaf)} bytes, expected {width}"
                )
            for chunk in split_chunks(leaf):
                try:
                    bytes_to_field(chunk)
                except ValueError:
                    raise ConstructionError(
                        f"Leaf {i} holds a chunk that is not a canonical field element"
                    ) from None

        depth = tree_depth(len(leaves))
        if weights is None:
            weights = calculate_leaf_weights(depth)
        if len(weights) < depth:
            raise ConstructionError(
                f"Need {depth} level weights for {len(leaves)} leaves, got {len(weights)}"
            )

        self._leaves: Tuple[bytes, ...] = tuple(bytes(leaf) for leaf in leaves)
        self._weights: Tuple[LevelWeight, ...] = tuple(weights[:depth])
        self._layers: Tuple[Tuple[bytes, ...], ...] = self._build_tree()
        logger.debug(
            "built weighted tree: %d leaves, depth %d", len(self._leaves), depth
        )

    def _build_tree(self) -> Tuple[Tuple[bytes, ...], ...]:
        """
        Build the full tree bottom-up.

        For odd number of nodes, duplicate the last node (like typical Merkle).
        A layer of a single node is the root and is left alone.
        """
        layers: List[Tuple[bytes, ...]] = []
        level = [hash_bytes(leaf) for leaf in self._leaves]

        height = 0
        while len(level) > 1:
            if len(level) % 2 == 1:
                level.append(level[-1])
            layers.append(tuple(level))

            tag = self._weights[height].tag
            level = [
                weighted_parent(tag, level[i], level[i + 1])
                for i in range(0, len(level), 2)
            ]
            height += 1

        layers.append(tuple(level))
        return tuple(layers)

    @property
    def root(self) -> bytes:
        return self._layers[-1][0]

    @property
    def layers(self) -> Tuple[Tuple[bytes, ...], ...]:
        return self._layers

    @property
    def weights(self) -> Tuple[LevelWeight, ...]:
        return self._weights

    @property
    def depth(self) -> int:
        return len(self._layers) - 1

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    def leaf(self, index: int) -> bytes:
        self._check_index(index)
        return self._leaves[index]

    def opening(self, index: int) -> InclusionProof:
        """
        Compute the Merkle opening for a given leaf index.

        Example for a tree with leaves [A, B, C, D] and opening(2):
                    root
                   /    \\
                 N1       N2
                /  \\     /  \\
               A    B   C    D

        - level 0: sibling = D, direction 0 (C is LEFT child of N2), weight 1
        - level 1: sibling = N1, direction 1 (N2 is RIGHT child of root), weight 2

        Reconstructed index = 2 (only level 1 has direction 1).
        """
        self._check_index(index)

        steps: List[ProofStep] = []
        idx = index
        # We go from leaf level up to just before the root
        for level in range(len(self._layers) - 1):
            layer = self._layers[level]
            # Sibling index: flip the last bit (idx ^ 1)
            sib_idx = idx ^ 1
            if sib_idx < len(layer):
                weight = self._weights[level]
                steps.append(
                    ProofStep(
                        sibling=layer[sib_idx],
                        direction=idx % 2,
                        level=level,
                        weight=weight.weight,
                        tag=weight.tag,
                    )
                )
            else:
                # Padded layers are even, so this only guards malformed input
                logger.warning("no sibling for node %d at level %d", idx, level)

            # Move up one level: integer division by 2
            idx //= 2

        return InclusionProof(leaf_index=index, steps=tuple(steps), root=self.root)

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= len(self._leaves):
            raise IndexOutOfRange(index, len(self._leaves))
