# main_prove_verify.py
"""
Example driver that ties everything together:

- Generate random fixed-width leaves.
- Build the weighted Merkle tree.
- Open one leaf and check the opening off-circuit.
- Prove its position for a batch of challenges and verify them concurrently.

Usage:
    python main_prove_verify.py [--leaves N] [--leaf-size BYTES] [--index I]
                                [--challenges N] [--workers N]
                                [--engine native|arithmetic|pysnark] [--seed S] [--json]

Exit codes: 0 batch accepted, 1 runtime error, 2 batch rejected.
"""

from __future__ import annotations

import argparse
import json
import logging
import random
import sys
from typing import List, Optional, Sequence

from hash_utils import CHUNK_SIZE, FIELD_MODULUS
from merkle_errors import MerkleProofError
from merkle_tree import WeightedMerkleTree
from proof_backend import EvaluatingBackend, Witness
from proof_pipeline import ProofPipeline
from run_config import ENGINE_CHOICES, RunConfig
from zk_merkle import check_inclusion

EXIT_SUCCESS = 0
EXIT_RUNTIME_ERROR = 1
EXIT_VERIFICATION_FAILED = 2

logger = logging.getLogger("main_prove_verify")


def generate_random_leaves(
    num_leaves: int, leaf_size: int = CHUNK_SIZE, rng: Optional[random.Random] = None
) -> List[bytes]:
    """
    Generate random leaves of `leaf_size` bytes.

    Each 32-byte chunk is a field element below the modulus, zero-padded on
    the left, so chunks are read back unchanged by the circuit.
    """
    rng = rng or random.Random()
    chunks_per_leaf = leaf_size // CHUNK_SIZE
    return [
        b"".join(
            rng.randrange(FIELD_MODULUS).to_bytes(CHUNK_SIZE, byteorder="big")
            for _ in range(chunks_per_leaf)
        )
        for _ in range(num_leaves)
    ]


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Prove and verify the position of a leaf in a weighted Merkle tree"
    )
    parser.add_argument("--leaves", type=int, dest="leaf_count", help="number of leaves")
    parser.add_argument("--leaf-size", type=int, dest="leaf_size", help="bytes per leaf")
    parser.add_argument("--index", type=int, dest="leaf_index", help="leaf to prove")
    parser.add_argument("--challenges", type=int, help="proofs to generate and verify")
    parser.add_argument("--workers", type=int, dest="max_workers", help="verification threads")
    parser.add_argument("--engine", choices=ENGINE_CHOICES, help="circuit engine")
    parser.add_argument("--seed", type=int, help="seed for leaf generation")
    parser.add_argument("--log-level", dest="log_level", help="log level")
    parser.add_argument("--json", action="store_true", help="print a JSON summary")
    return parser


def load_config(args: argparse.Namespace) -> RunConfig:
    config = RunConfig.from_env()
    for attr in (
        "leaf_count",
        "leaf_size",
        "leaf_index",
        "challenges",
        "max_workers",
        "engine",
        "seed",
        "log_level",
    ):
        value = getattr(args, attr)
        if value is not None:
            setattr(config, attr, value)
    config.validate()
    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    setup_logging(config.log_level)
    rng = random.Random(config.seed)

    try:
        # ============================================================
        # OFF-CIRCUIT: Build tree, extract opening
        # ============================================================
        leaves = generate_random_leaves(config.leaf_count, config.leaf_size, rng)
        tree = WeightedMerkleTree(leaves)
        index = config.leaf_index if config.leaf_index is not None else rng.randrange(config.leaf_count)

        witness = Witness.from_tree(tree, index)
        check_inclusion(witness.leaf, witness.proof, tree.root, index)
        logger.info("merkle root: %s", tree.root.hex())
        for step in witness.proof.steps:
            logger.debug(
                "level %d: direction %d, weight %d, sibling %s",
                step.level, step.direction, step.weight, step.sibling.hex(),
            )

        # ============================================================
        # IN-CIRCUIT: prove for every challenge, verify concurrently
        # ============================================================
        pipeline = ProofPipeline(EvaluatingBackend(config.engine), max_workers=config.max_workers)
        result = pipeline.run(witness, config.challenges)
    except MerkleProofError as exc:
        logger.error("run failed: %s", exc)
        return EXIT_RUNTIME_ERROR

    if args.json:
        print(json.dumps({
            "root": tree.root.hex(),
            "leaf_index": index,
            "depth": tree.depth,
            "engine": config.engine,
            "proof": witness.proof.to_dict(),
            "outcomes": result.outcomes,
            "accepted": result.accepted,
        }, indent=2))
    else:
        print(f"Merkle Root: {tree.root.hex()}")
        print(f"Leaf {index}: {len(witness.proof.steps)} levels, "
              f"reconstructed index {witness.proof.reconstructed_index()}")
        if result.accepted:
            print(f"All {len(result.outcomes)} proofs verified")
        else:
            print(f"{result.failures} of {len(result.outcomes)} proofs failed verification")

    return EXIT_SUCCESS if result.accepted else EXIT_VERIFICATION_FAILED


if __name__ == "__main__":
    sys.exit(main())
