# proof_pipeline.py
"""
Compile/setup once, then prove and verify many challenges.

Verification fans out one task per proof over a thread pool. Every task
gets read-only access to the same verifying key; the batch is accepted only
if every task reports success, and all tasks run to completion before the
outcome is read.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import List, Optional, Sequence

from merkle_errors import BackendError, VerificationError
from proof_backend import (
    ConstraintSystem,
    Proof,
    ProofBackend,
    ProvingKey,
    PublicWitness,
    VerifyingKey,
    Witness,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchResult:
    outcomes: List[bool]

    @property
    def accepted(self) -> bool:
        return all(self.outcomes)

    @property
    def failures(self) -> int:
        return self.outcomes.count(False)


class ProofPipeline:
    def __init__(self, backend: ProofBackend, max_workers: Optional[int] = None) -> None:
        self.backend = backend
        self.max_workers = max_workers
        self.constraint_system: Optional[ConstraintSystem] = None
        self.proving_key: Optional[ProvingKey] = None
        self.verifying_key: Optional[VerifyingKey] = None

    def prepare(self, witness: Witness) -> None:
        start = time.perf_counter()
        self.constraint_system = self.backend.compile(witness.depth, witness.chunk_count)
        logger.info("compile time: %.4fs", time.perf_counter() - start)

        start = time.perf_counter()
        self.proving_key, self.verifying_key = self.backend.setup(self.constraint_system)
        logger.info("setup time: %.4fs", time.perf_counter() - start)

    def generate(self, witness: Witness, count: int) -> List[Proof]:
        """
        Produce `count` proofs, one per challenge.

        Every challenge reuses the same witness here; a deployment would open
        a different leaf per challenge.
        """
        self._require_prepared()
        start = time.perf_counter()
        proofs = [
            self.backend.prove(self.constraint_system, self.proving_key, witness)
            for _ in range(count)
        ]
        logger.info("prove time: %.4fs (%d proofs)", time.perf_counter() - start, count)
        return proofs

    def verify_batch(
        self, proofs: Sequence[Proof], public_witnesses: Sequence[PublicWitness]
    ) -> BatchResult:
        self._require_prepared()
        if len(proofs) != len(public_witnesses):
            raise ValueError(
                f"Got {len(proofs)} proofs but {len(public_witnesses)} public witnesses"
            )

        start = time.perf_counter()
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [
                executor.submit(self._verify_one, i, proof, public)
                for i, (proof, public) in enumerate(zip(proofs, public_witnesses))
            ]
            wait(futures)
        # Results are read only after every task finished
        outcomes = [future.result() for future in futures]
        logger.info("verify time: %.4fs (%d proofs)", time.perf_counter() - start, len(proofs))

        result = BatchResult(outcomes=outcomes)
        if result.accepted:
            logger.info("all %d proofs verified", len(outcomes))
        else:
            logger.warning("%d of %d proofs failed verification", result.failures, len(outcomes))
        return result

    def run(self, witness: Witness, challenges: int) -> BatchResult:
        self.prepare(witness)
        proofs = self.generate(witness, challenges)
        public = witness.public()
        return self.verify_batch(proofs, [public] * challenges)

    def _verify_one(self, position: int, proof: Proof, public: PublicWitness) -> bool:
        try:
            self.backend.verify(proof, self.verifying_key, public)
        except VerificationError as exc:
            logger.debug("proof %d rejected: %s", position, exc)
            return False
        return True

    def _require_prepared(self) -> None:
        if self.constraint_system is None:
            raise BackendError("Pipeline not prepared: call prepare() first")
