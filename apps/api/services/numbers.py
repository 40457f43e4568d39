"""Human facing ticket number generation."""

from __future__ import annotations

import random
import re
from datetime import datetime, timezone

TICKET_NUMBER_PREFIX = "TCK"
TICKET_NUMBER_PATTERN = re.compile(r"^TCK\d{8}-\d{4}$")


class TicketNumberGenerator:
    """Produce ``TCK<DDMMYYYY>-<NNNN>`` identifiers.

    The four digit suffix is random, so two calls on the same day can collide.
    Uniqueness is enforced by the repository, which retries with a fresh number.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.SystemRandom()

    def generate(self, now: datetime | None = None) -> str:
        moment = now or datetime.now(timezone.utc)
        suffix = self._rng.randint(1000, 9999)
        return f"{TICKET_NUMBER_PREFIX}{moment:%d%m%Y}-{suffix}"

    @staticmethod
    def normalize(value: str) -> str:
        return (value or "").strip().upper()

    @staticmethod
    def is_valid(value: str) -> bool:
        return bool(TICKET_NUMBER_PATTERN.match(TicketNumberGenerator.normalize(value)))
