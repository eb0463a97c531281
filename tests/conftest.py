"""
Pytest configuration and shared fixtures.

Adds the project root to sys.path so the top-level modules import without
an editable install.
"""

import random
import sys
from pathlib import Path

import pytest

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from main_prove_verify import generate_random_leaves  # noqa: E402
from merkle_tree import WeightedMerkleTree  # noqa: E402


def make_leaves(count: int, seed: int = 7, leaf_size: int = 32):
    return generate_random_leaves(count, leaf_size, random.Random(seed))


@pytest.fixture
def leaves4():
    return make_leaves(4)


@pytest.fixture
def tree4(leaves4):
    return WeightedMerkleTree(leaves4)


@pytest.fixture
def tree16():
    return WeightedMerkleTree(make_leaves(16))
