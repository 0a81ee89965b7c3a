import hashlib
import logging
import random
import time
import uuid
from typing import Protocol

logger = logging.getLogger("nightlife.biometric")

MATCH_THRESHOLD = 0.85


class BiometricVerifier(Protocol):
    async def capture(self) -> str:
        ...

    async def compare(self, stored_hash: str, captured: str) -> bool:
        ...


class SimulatedBiometricVerifier:
    """Stand-in for a face scanner. Not a biometric algorithm.

    Capture hashes random data. Compare accepts an exact match, otherwise a
    positional character similarity with +/-10% jitter against the threshold.
    """

    def __init__(self, threshold: float = MATCH_THRESHOLD, rng: random.Random | None = None):
        self.threshold = threshold
        self._rng = rng or random.Random()

    async def capture(self) -> str:
        seed = f"{time.time_ns()}_{uuid.uuid4().hex}_face_data"
        biometric_hash = hashlib.sha256(seed.encode("utf-8")).hexdigest()
        logger.debug("Biometric capture completed: %s...", biometric_hash[:16])
        return biometric_hash

    async def compare(self, stored_hash: str, captured: str) -> bool:
        if not stored_hash or not captured:
            return False
        if stored_hash == captured:
            return True
        similarity = self.similarity(stored_hash, captured)
        matched = similarity >= self.threshold
        logger.info("Biometric verification: %s (similarity %.2f)", "MATCH" if matched else "NO MATCH", similarity)
        return matched

    def similarity(self, first: str, second: str) -> float:
        length = min(len(first), len(second))
        if length == 0:
            return 0.0
        matches = sum(1 for a, b in zip(first, second) if a == b)
        variance = (self._rng.random() - 0.5) * 0.2
        return max(0.0, min(1.0, matches / length + variance))
