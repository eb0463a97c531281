# merkle_errors.py
"""
Error kinds raised while committing to leaves and proving leaf positions.

- ConstructionError:  the tree cannot be built (no leaves, too few weight tags)
- IndexOutOfRange:    a proof was requested for a leaf that does not exist
- PredicateViolation: recomputed root or index differs from the public claim,
                      or an input is not a canonical field element
- BackendError:       anything coming out of the proof backend, passed through
"""


class MerkleProofError(Exception):
    """Base class for every error raised by this package."""


class ConstructionError(MerkleProofError):
    pass


class IndexOutOfRange(MerkleProofError, IndexError):
    def __init__(self, index: int, leaf_count: int) -> None:
        super().__init__(
            f"Leaf index {index} out of range for {leaf_count} leaves"
        )
        self.index = index
        self.leaf_count = leaf_count


class PredicateViolation(MerkleProofError):
    """
    The inclusion predicate rejected its inputs.

    `check` names the failing assertion: "root", "index", "direction", or
    "encoding" for a block that is not a canonical field element.
    """

    def __init__(self, check: str, message: str = "") -> None:
        super().__init__(message or f"Inclusion predicate failed: {check} mismatch")
        self.check = check


class BackendError(MerkleProofError):
    pass


class VerificationError(BackendError):
    pass
