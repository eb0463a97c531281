# run_config.py
"""
Run configuration for the prove/verify driver.

Values come from (lowest to highest priority): dataclass defaults,
WMZK_* environment variables (a .env file is honoured), command-line flags.

Environment Variables:
    WMZK_LEAF_COUNT     number of leaves in the tree (default: 16)
    WMZK_LEAF_SIZE      bytes per leaf, a multiple of 32 (default: 32)
    WMZK_LEAF_INDEX     leaf to prove (default: random)
    WMZK_CHALLENGES     proofs generated and verified per run (default: 8)
    WMZK_MAX_WORKERS    verification threads (default: executor default)
    WMZK_ENGINE         circuit engine: native, arithmetic or pysnark (default: native)
    WMZK_SEED           seed for leaf generation (default: unseeded)
    WMZK_LOG_LEVEL      log level (default: INFO)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from hash_utils import CHUNK_SIZE

ENGINE_CHOICES = ("native", "arithmetic", "pysnark")


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class RunConfig:
    leaf_count: int = 16
    leaf_size: int = CHUNK_SIZE
    leaf_index: Optional[int] = None
    challenges: int = 8
    max_workers: Optional[int] = None
    engine: str = "native"
    seed: Optional[int] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> RunConfig:
        if load_dotenv_file:
            load_dotenv()

        config = cls()
        for attr, name in (
            ("leaf_count", "WMZK_LEAF_COUNT"),
            ("leaf_size", "WMZK_LEAF_SIZE"),
            ("leaf_index", "WMZK_LEAF_INDEX"),
            ("challenges", "WMZK_CHALLENGES"),
            ("max_workers", "WMZK_MAX_WORKERS"),
            ("seed", "WMZK_SEED"),
        ):
            value = _env_int(name)
            if value is not None:
                setattr(config, attr, value)

        config.engine = os.getenv("WMZK_ENGINE", config.engine)
        config.log_level = os.getenv("WMZK_LOG_LEVEL", config.log_level)
        return config

    def validate(self) -> None:
        if self.leaf_count < 1:
            raise ValueError(f"leaf_count must be positive, got {self.leaf_count}")
        if self.leaf_size < CHUNK_SIZE or self.leaf_size % CHUNK_SIZE != 0:
            raise ValueError(
                f"leaf_size must be a positive multiple of {CHUNK_SIZE}, got {self.leaf_size}"
            )
        if self.leaf_index is not None and not 0 <= self.leaf_index < self.leaf_count:
            raise ValueError(
                f"leaf_index {self.leaf_index} out of range for {self.leaf_count} leaves"
            )
        if self.challenges < 1:
            raise ValueError(f"challenges must be positive, got {self.challenges}")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be positive, got {self.max_workers}")
        if self.engine not in ENGINE_CHOICES:
            raise ValueError(f"engine must be one of {ENGINE_CHOICES}, got {self.engine!r}")
