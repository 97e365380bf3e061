"""Order and payment number allocation.

Numbers look like ``ORD-20250124-7QX2KD``. The exists-check loop only
reduces collisions; the unique constraints on ``orders.order_number`` and
``payments.payment_number`` are what guarantee uniqueness, so callers
retry the insert with a fresh number when it hits the constraint.
"""
import random
import string
from typing import Callable

import structlog

from core.clock import Clock, utcnow
from core.errors import NumberAllocationError

logger = structlog.get_logger(__name__)

ALPHABET = string.ascii_uppercase + string.digits
SUFFIX_LENGTH = 6


class NumberGenerator:
    def __init__(self, clock: Clock = utcnow, rng: random.Random | None = None, max_attempts: int = 10):
        self._clock = clock
        self._rng = rng or random.SystemRandom()
        self.max_attempts = max_attempts

    def candidate(self, prefix: str) -> str:
        date_part = self._clock().strftime("%Y%m%d")
        suffix = "".join(self._rng.choice(ALPHABET) for _ in range(SUFFIX_LENGTH))
        return f"{prefix}-{date_part}-{suffix}"

    def generate(self, prefix: str, exists_check: Callable[[str], bool]) -> str:
        for attempt in range(1, self.max_attempts + 1):
            number = self.candidate(prefix)
            if not exists_check(number):
                return number
            logger.debug("number_collision", prefix=prefix, number=number, attempt=attempt)
        raise NumberAllocationError(prefix, self.max_attempts)
