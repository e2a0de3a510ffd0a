"""Tests for src.botdetect.captcha — arithmetic challenge lifecycle."""

from __future__ import annotations

import random
import re

import pytest

from src.botdetect.captcha import (
    OPERAND_RANGES,
    CaptchaIssuer,
    make_question,
    parse_answer,
)
from src.shared.settings import BotSettings
from src.shared.store import InMemoryStore
from tests.conftest import T0

ID = "192.0.2.44"
TTL = 5 * 60_000


def _issuer(clock, seed: int = 7, **kw) -> CaptchaIssuer:
    return CaptchaIssuer(BotSettings(**kw), clock=clock, rng=random.Random(seed))


class TestParseAnswer:
    @pytest.mark.parametrize(
        "raw,expected",
        [("12", 12), (" 12", 12), ("12abc", 12), ("-3", -3), (7, 7), ("abc", None), ("", None), (None, None), (True, None)],
    )
    def test_leading_integer(self, raw, expected):
        assert parse_answer(raw) == expected


class TestMakeQuestion:
    def test_operands_in_range_and_answer_correct(self):
        rng = random.Random(1)
        pattern = re.compile(r"^(\d+) ([+\-*]) (\d+) = \?$")
        for _ in range(300):
            question, answer = make_question(rng)
            m = pattern.match(question)
            assert m, question
            a, op, b = int(m.group(1)), m.group(2), int(m.group(3))
            (a_lo, a_hi), (b_lo, b_hi) = OPERAND_RANGES[op]
            assert a_lo <= a <= a_hi
            assert b_lo <= b <= b_hi
            assert answer == {"+": a + b, "-": a - b, "*": a * b}[op]
            if op == "-":
                assert answer >= 0

    def test_seeded_rng_is_reproducible(self):
        first = [make_question(random.Random(42)) for _ in range(3)]
        again = [make_question(random.Random(42)) for _ in range(3)]
        assert first == again


# ═══════════════════════════════════════════════════════════════════════════
#  Lifecycle
# ═══════════════════════════════════════════════════════════════════════════


class TestGenerate:
    def test_challenge_fields(self, clock):
        challenge = _issuer(clock).generate(ID)
        assert re.fullmatch(rf"captcha_{T0}_[a-z0-9]{{9}}", challenge.id)
        assert challenge.identifier == ID
        assert challenge.issued_at == T0
        assert challenge.expires_at == T0 + TTL
        assert challenge.attempts == 0
        assert challenge.max_attempts == 3

    def test_public_view_hides_answer(self, clock):
        public = _issuer(clock).generate(ID).public()
        assert "answer" not in public
        assert public["type"] == "math"
        assert public["question"].endswith("= ?")

    def test_regenerate_replaces(self, clock):
        issuer = _issuer(clock)
        first = issuer.generate(ID)
        clock.advance(1)
        second = issuer.generate(ID)
        assert issuer.get(ID) == second
        assert first.id != second.id


class TestVerify:
    def test_no_challenge(self, clock):
        result = _issuer(clock).verify(ID, "1")
        assert not result.valid
        assert result.reason == "no active challenge"

    def test_correct_answer_consumes_challenge(self, clock):
        issuer = _issuer(clock)
        challenge = issuer.generate(ID)
        result = issuer.verify(ID, str(challenge.answer))
        assert result.valid
        assert result.reason == "correct answer"
        assert result.attempts == 1
        assert issuer.get(ID) is None

    def test_answer_with_trailing_text(self, clock):
        issuer = _issuer(clock)
        challenge = issuer.generate(ID)
        assert issuer.verify(ID, f" {challenge.answer} apples").valid

    def test_wrong_answers_then_lockout(self, clock):
        issuer = _issuer(clock)
        challenge = issuer.generate(ID)
        wrong = str(challenge.answer + 1000)
        results = [issuer.verify(ID, wrong) for _ in range(3)]
        assert [r.reason for r in results] == ["incorrect answer"] * 3
        assert [r.attempts for r in results] == [1, 2, 3]
        assert issuer.get(ID).attempts == 3

        # Even the right answer is refused once attempts are spent.
        final = issuer.verify(ID, str(challenge.answer))
        assert not final.valid
        assert final.reason == "max attempts exceeded"
        assert issuer.get(ID) is None

    def test_expiry_is_inclusive(self, clock):
        issuer = _issuer(clock)
        challenge = issuer.generate(ID)
        clock.advance(TTL - 1)
        assert issuer.verify(ID, "nope").reason == "incorrect answer"
        clock.advance(1)
        result = issuer.verify(ID, str(challenge.answer))
        assert not result.valid
        assert result.reason == "challenge expired"
        assert result.attempts == 1
        assert issuer.get(ID) is None

    def test_custom_limits(self, clock):
        issuer = _issuer(clock, captcha_max_attempts=1, captcha_ttl_ms=1000)
        challenge = issuer.generate(ID)
        assert challenge.expires_at == T0 + 1000
        issuer.verify(ID, str(challenge.answer + 1))
        assert issuer.verify(ID, str(challenge.answer)).reason == "max attempts exceeded"


class TestMaintenance:
    def test_active_count_and_sweep(self, clock):
        issuer = _issuer(clock)
        issuer.generate("a")
        clock.advance(TTL)
        issuer.generate("b")
        assert issuer.active_count() == 1
        assert issuer.sweep() == 1
        assert issuer.get("a") is None

    def test_clear_only_touches_challenges(self, clock):
        store = InMemoryStore()
        store.set("other", 1)
        issuer = CaptchaIssuer(store=store, clock=clock, rng=random.Random(0))
        issuer.generate("a")
        issuer.clear()
        assert store.keys() == ["other"]
