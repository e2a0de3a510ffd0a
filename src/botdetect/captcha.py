"""Arithmetic CAPTCHA challenges: one active challenge per identifier.

Lifecycle of a challenge::

    generate ──▶ active ──correct──────────────▶ deleted
                   │ ──wrong (attempts < max)──▶ active
                   │ ──call after max wrong────▶ deleted ("max attempts exceeded")
                   └──TTL passed, observed─────▶ deleted ("challenge expired")

Operands are drawn from a dedicated ``random.Random`` so a seeded replay
issues the same questions every run.
"""

from __future__ import annotations

import dataclasses
import logging
import random
import re
import string
from dataclasses import dataclass
from typing import Any

from src.contracts.enums import CaptchaOutcome
from src.contracts.verdict import CaptchaVerification
from src.shared.clock import Clock, now_ms
from src.shared.seed import init_seed
from src.shared.settings import BotSettings
from src.shared.store import InMemoryStore, StateStore

log = logging.getLogger(__name__)

_KEY = "captcha:"
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_ID_ALPHABET = string.ascii_lowercase + string.digits

# operator → ((a_min, a_max), (b_min, b_max)); subtraction keeps a >= b
OPERAND_RANGES: dict[str, tuple[tuple[int, int], tuple[int, int]]] = {
    "+": ((1, 10), (1, 10)),
    "-": ((5, 14), (1, 5)),
    "*": ((1, 5), (1, 5)),
}


@dataclass(frozen=True, slots=True)
class CaptchaChallenge:
    id: str
    identifier: str
    question: str
    answer: int
    issued_at: int
    ttl_ms: int
    max_attempts: int = 3
    attempts: int = 0
    type: str = "math"

    @property
    def expires_at(self) -> int:
        return self.issued_at + self.ttl_ms

    def is_expired(self, now: int) -> bool:
        return now >= self.expires_at

    def public(self) -> dict[str, Any]:
        """What may be sent to the client: everything except the answer."""
        return {
            "id": self.id,
            "type": self.type,
            "question": self.question,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
        }


def parse_answer(answer: Any) -> int | None:
    """Leading integer of *answer* (``" 12"``, ``"12abc"`` → 12), else None."""
    if answer is None or isinstance(answer, bool):
        return None
    if isinstance(answer, int):
        return answer
    match = _LEADING_INT.match(str(answer))
    return int(match.group(1)) if match else None


def make_question(rng: random.Random) -> tuple[str, int]:
    operator = rng.choice(list(OPERAND_RANGES))
    (a_lo, a_hi), (b_lo, b_hi) = OPERAND_RANGES[operator]
    a = rng.randint(a_lo, a_hi)
    b = rng.randint(b_lo, b_hi)
    if operator == "+":
        result = a + b
    elif operator == "-":
        result = a - b
    else:
        result = a * b
    return f"{a} {operator} {b} = ?", result


class CaptchaIssuer:
    """Issues and verifies challenges; state lives in its own store."""

    def __init__(
        self,
        settings: BotSettings | None = None,
        store: StateStore | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings or BotSettings()
        self.store = store if store is not None else InMemoryStore()
        self.clock = clock or now_ms
        self.rng = rng or init_seed()

    def generate(self, identifier: str) -> CaptchaChallenge:
        """Issue a new challenge for *identifier*, replacing any earlier one."""
        key = _KEY + identifier
        with self.store.lock(key):
            now = self.clock()
            question, answer = make_question(self.rng)
            token = "".join(self.rng.choices(_ID_ALPHABET, k=9))
            challenge = CaptchaChallenge(
                id=f"captcha_{now}_{token}",
                identifier=identifier,
                question=question,
                answer=answer,
                issued_at=now,
                ttl_ms=self.settings.captcha_ttl_ms,
                max_attempts=self.settings.captcha_max_attempts,
            )
            self.store.set(key, challenge)
        log.debug("Issued captcha %s for %s", challenge.id, identifier)
        return challenge

    def get(self, identifier: str) -> CaptchaChallenge | None:
        return self.store.get(_KEY + identifier)

    def verify(self, identifier: str, answer: Any) -> CaptchaVerification:
        key = _KEY + identifier
        with self.store.lock(key):
            challenge: CaptchaChallenge | None = self.store.get(key)
            if challenge is None:
                return CaptchaVerification(valid=False, reason=CaptchaOutcome.NO_CHALLENGE.value)

            if challenge.is_expired(self.clock()):
                self.store.delete(key)
                return CaptchaVerification(
                    valid=False, reason=CaptchaOutcome.EXPIRED.value, attempts=challenge.attempts
                )

            if challenge.attempts >= challenge.max_attempts:
                self.store.delete(key)
                log.warning("Captcha attempts exhausted for %s", identifier)
                return CaptchaVerification(
                    valid=False, reason=CaptchaOutcome.MAX_ATTEMPTS.value, attempts=challenge.attempts
                )

            challenge = dataclasses.replace(challenge, attempts=challenge.attempts + 1)
            if parse_answer(answer) == challenge.answer:
                self.store.delete(key)
                return CaptchaVerification(
                    valid=True, reason=CaptchaOutcome.CORRECT.value, attempts=challenge.attempts
                )

            self.store.set(key, challenge)
            return CaptchaVerification(
                valid=False, reason=CaptchaOutcome.INCORRECT.value, attempts=challenge.attempts
            )

    def active_count(self) -> int:
        now = self.clock()
        return sum(1 for _, ch in self.store.scan_prefix(_KEY) if not ch.is_expired(now))

    def sweep(self) -> int:
        now = self.clock()
        removed = 0
        for key, challenge in self.store.scan_prefix(_KEY):
            if challenge.is_expired(now):
                self.store.delete(key)
                removed += 1
        return removed

    def clear(self) -> None:
        for key in self.store.keys(_KEY):
            self.store.delete(key)
