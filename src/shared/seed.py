"""Seeded random source for challenge generation."""

from __future__ import annotations

import logging
import random

log = logging.getLogger(__name__)


def init_seed(seed: int | None = None) -> random.Random:
    """Return a dedicated ``random.Random`` for CAPTCHA operands.

    With ``seed=None`` the instance is seeded from the OS, which is what a
    live deployment wants.  Replays and tests pass an integer so the issued
    questions are reproducible.  The global ``random`` module is left alone.
    """
    if seed is None:
        return random.Random()
    log.info("Challenge RNG seeded: %d", seed)
    return random.Random(seed)
