"""BruteForceGuard — failed-login accounting, backoff and attack patterns.

Per credential key (``identifier`` or ``identifier:username``)::

    Clear ──fail──▶ Accumulating ──max_attempts──▶ Blocked ──success──▶ Clear
                         │
                         └──rapid fire──▶ Elevated (2× block)

Pattern heuristics run on every recorded failure and are counted per
``(identifier, pattern)``; once a pattern repeats more than
``pattern_repeat_threshold`` times the bare identifier is blocked, which
also covers every ``identifier:username`` key derived from it.

Progressive delay is advisory: ``min(2^(min(n,5)-1) * 1s, max_delay)`` for
``n`` recent failures.  The guard never sleeps.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from src.contracts.enums import DenialReason
from src.contracts.verdict import AuthAttemptResult
from src.limiter.window import WindowedCounter
from src.shared.clock import Clock, now_ms
from src.shared.settings import BruteForceSettings
from src.shared.store import InMemoryStore, StateStore

log = logging.getLogger(__name__)

_SEQUENTIAL_PASSWORD = re.compile(r"^password\d+$", re.IGNORECASE)

_REC = "attempts:"
_USERS = "usernames:"
_PATTERN = "pattern:"

SEQUENTIAL_PASSWORDS = "sequential_passwords"
COMMON_PASSWORD = "common_password_attempt"
MULTIPLE_USERNAMES = "multiple_usernames"


def credential_key(identifier: str, username: str | None = None) -> str:
    return f"{identifier}:{username}" if username else identifier


@dataclass(slots=True)
class FailedAttemptRecord:
    """Failure history of one credential key."""

    attempts: list[int] = field(default_factory=list)
    last_attempt: int = 0
    passwords: list[str] = field(default_factory=list)
    elevated: bool = False

    def recent(self, now: int, window_ms: int) -> list[int]:
        start = now - window_ms
        return [t for t in self.attempts if t > start]

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempts": list(self.attempts),
            "last_attempt": self.last_attempt,
            "passwords": list(self.passwords),
            "elevated": self.elevated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FailedAttemptRecord:
        return cls(
            attempts=[int(t) for t in data.get("attempts", [])],
            last_attempt=int(data.get("last_attempt", 0)),
            passwords=list(data.get("passwords", [])),
            elevated=bool(data.get("elevated", False)),
        )


class BruteForceGuard:
    """Failed-attempt quotas, progressive delay and pattern escalation."""

    def __init__(
        self,
        settings: BruteForceSettings | None = None,
        store: StateStore | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings or BruteForceSettings()
        self.store = store if store is not None else InMemoryStore()
        self.clock = clock or now_ms
        # Blocks share the store under their own namespace.
        self.blocks = WindowedCounter(store=self.store, clock=self.clock)

    # ═══════════════════════════════════════════════════════════════════════
    #  Record access
    # ═══════════════════════════════════════════════════════════════════════

    def get_record(self, key: str) -> FailedAttemptRecord | None:
        return self.store.get(_REC + key)

    def get_failed_attempts(self, key: str) -> list[int]:
        record = self.get_record(key)
        return list(record.attempts) if record else []

    def _recent_failures(self, key: str, now: int) -> list[int]:
        record = self.get_record(key)
        if record is None:
            return []
        recent = record.recent(now, self.settings.window_ms)
        if not recent and now - record.last_attempt > self.settings.window_ms:
            with self.store.lock(_REC + key):
                current = self.get_record(key)
                if current is record:
                    self.store.delete(_REC + key)
        return recent

    def _delay_for(self, failures: int) -> int:
        if failures <= 0:
            return 0
        cfg = self.settings
        exponent = min(failures, cfg.max_delay_exponent) - 1
        return min((2**exponent) * cfg.base_delay_ms, cfg.max_delay_ms)

    def calculate_progressive_delay(self, key: str) -> int:
        """Advisory wait (ms) before the next attempt on *key*."""
        return self._delay_for(len(self._recent_failures(key, self.clock())))

    # ═══════════════════════════════════════════════════════════════════════
    #  Blocks
    # ═══════════════════════════════════════════════════════════════════════

    def is_blocked(self, key: str) -> bool:
        return self.blocks.is_blocked(key)

    def block_time_remaining(self, key: str) -> int:
        return self.blocks.block_remaining(key)

    def block_account(self, key: str, duration_ms: int) -> int:
        return self.blocks.block(key, duration_ms)

    def unblock_account(self, key: str) -> None:
        self.blocks.unblock(key)

    def _active_block(self, identifier: str, key: str) -> int:
        remaining = self.blocks.block_remaining(key)
        if key != identifier:
            remaining = max(remaining, self.blocks.block_remaining(identifier))
        return remaining

    # ═══════════════════════════════════════════════════════════════════════
    #  Public API
    # ═══════════════════════════════════════════════════════════════════════

    def check_auth_attempt(
        self,
        identifier: str,
        username: str | None = None,
        endpoint: str = "login",
    ) -> AuthAttemptResult:
        """Decide whether an authentication attempt may proceed."""
        if not identifier:
            raise ValueError("identifier must be a non-empty string")
        cfg = self.settings
        key = credential_key(identifier, username)
        now = self.clock()
        recent = self._recent_failures(key, now)
        delay = self._delay_for(len(recent)) if cfg.progressive_delay else 0

        retry = self._active_block(identifier, key)
        if retry > 0:
            return AuthAttemptResult(
                allowed=False,
                attempts=len(recent),
                progressive_delay=delay,
                retry_after=retry,
                reason=DenialReason.ACCOUNT_BLOCKED.value,
            )

        if len(recent) >= cfg.max_attempts:
            self.block_account(key, cfg.block_duration_ms)
            self._log_suspicious(identifier, username, endpoint, DenialReason.MAX_ATTEMPTS_EXCEEDED.value)
            return AuthAttemptResult(
                allowed=False,
                attempts=len(recent),
                progressive_delay=delay,
                retry_after=cfg.block_duration_ms,
                reason=DenialReason.MAX_ATTEMPTS_EXCEEDED.value,
            )

        return AuthAttemptResult(
            allowed=True,
            attempts=len(recent),
            remaining=cfg.max_attempts - len(recent),
            progressive_delay=delay,
            reset_time=min(recent) + cfg.window_ms if recent else None,
        )

    def record_failed_attempt(
        self,
        identifier: str,
        username: str | None = None,
        password: str | None = None,
        reason: str = "invalid_credentials",
        endpoint: str = "login",
    ) -> FailedAttemptRecord:
        """Record one failure, run the pattern heuristics and rapid-fire check.

        Returns a copy of the updated record.
        """
        if not identifier:
            raise ValueError("identifier must be a non-empty string")
        cfg = self.settings
        key = credential_key(identifier, username)
        rkey = _REC + key

        with self.store.lock(rkey):
            now = self.clock()
            current = self.get_record(key) or FailedAttemptRecord()
            # Keep only what any window can still see.
            horizon = now - max(cfg.window_ms, cfg.rapid_fire_window_ms)
            record = FailedAttemptRecord(
                attempts=[t for t in current.attempts if t > horizon] + [now],
                last_attempt=now,
                passwords=list(current.passwords),
                elevated=current.elevated,
            )
            if password:
                record.passwords = (record.passwords + [password])[-cfg.password_history:]
            rapid = sum(1 for t in record.attempts if t > now - cfg.rapid_fire_window_ms)
            if rapid > cfg.rapid_fire_threshold:
                record.elevated = True
            self.store.set(rkey, record)

        self._log_suspicious(identifier, username, endpoint, reason)
        self._analyze_patterns(identifier, username, password, record)

        if rapid > cfg.rapid_fire_threshold:
            self.block_account(key, cfg.block_duration_ms * cfg.rapid_fire_block_multiplier)
            self._log_suspicious(identifier, username, endpoint, "rapid_fire_attack")

        return FailedAttemptRecord.from_dict(record.to_dict())

    def record_successful_attempt(self, identifier: str, username: str | None = None) -> None:
        """Full reset of the credential key: history and block both go.

        The identifier-wide block and pattern counters are cleared as well,
        so the next ``check_auth_attempt`` for this key starts from scratch.
        """
        key = credential_key(identifier, username)
        with self.store.lock(_REC + key):
            self.store.delete(_REC + key)
        self.unblock_account(key)
        if key != identifier:
            self.unblock_account(identifier)
        for pkey, _ in self.store.scan_prefix(f"{_PATTERN}{identifier}:"):
            self.store.delete(pkey)
        log.debug("Reset failed-attempt state for %s", key)

    # ═══════════════════════════════════════════════════════════════════════
    #  Pattern heuristics
    # ═══════════════════════════════════════════════════════════════════════

    def _analyze_patterns(
        self,
        identifier: str,
        username: str | None,
        password: str | None,
        record: FailedAttemptRecord,
    ) -> None:
        cfg = self.settings

        if password:
            run = 0
            for pw in reversed(record.passwords):
                if not _SEQUENTIAL_PASSWORD.match(pw):
                    break
                run += 1
            if run >= cfg.sequential_run_length:
                self.flag_suspicious_pattern(identifier, SEQUENTIAL_PASSWORDS)

            if password.lower() in cfg.common_passwords:
                self.flag_suspicious_pattern(identifier, COMMON_PASSWORD)

        if username:
            ukey = _USERS + identifier
            with self.store.lock(ukey):
                seen: frozenset[str] = self.store.get(ukey) or frozenset()
                if username not in seen and len(seen) < cfg.username_history:
                    seen = seen | {username}
                    self.store.set(ukey, seen)
            if len(seen) > cfg.max_distinct_usernames:
                self.flag_suspicious_pattern(identifier, MULTIPLE_USERNAMES)

    def flag_suspicious_pattern(self, identifier: str, pattern: str) -> int:
        """Bump the ``(identifier, pattern)`` counter; block on repetition.

        Returns the new count.
        """
        pkey = f"{_PATTERN}{identifier}:{pattern}"
        with self.store.lock(pkey):
            count = (self.store.get(pkey) or 0) + 1
            self.store.set(pkey, count)
        if count > self.settings.pattern_repeat_threshold:
            self.block_account(identifier, self.settings.block_duration_ms)
            log.warning("Pattern %s repeated %d times from %s, identifier blocked", pattern, count, identifier)
        return count

    def pattern_count(self, identifier: str, pattern: str) -> int:
        return self.store.get(f"{_PATTERN}{identifier}:{pattern}") or 0

    def distinct_usernames(self, identifier: str) -> frozenset[str]:
        return self.store.get(_USERS + identifier) or frozenset()

    def _log_suspicious(self, identifier: str, username: str | None, endpoint: str, reason: str) -> None:
        log.warning(
            "Suspicious auth activity: identifier=%s username=%s endpoint=%s reason=%s",
            identifier,
            username or "-",
            endpoint,
            reason,
        )

    # ═══════════════════════════════════════════════════════════════════════
    #  Stats / maintenance
    # ═══════════════════════════════════════════════════════════════════════

    def get_stats(self, identifier: str | None = None) -> dict[str, Any]:
        cfg = self.settings
        now = self.clock()
        if identifier:
            failed = len(self._recent_failures(identifier, now))
            return {
                "identifier": identifier,
                "failed_attempts": failed,
                "max_attempts": cfg.max_attempts,
                "remaining": max(0, cfg.max_attempts - failed),
                "is_blocked": self.is_blocked(identifier),
                "block_time_remaining": self.block_time_remaining(identifier),
                "progressive_delay": self._delay_for(failed),
            }

        total = 0
        for _, record in self.store.scan_prefix(_REC):
            total += len(record.recent(now, cfg.window_ms))
        return {
            "total_failed_attempts": total,
            "blocked_accounts": self.blocks.blocked_count(),
            "suspicious_patterns": len(self.store.scan_prefix(_PATTERN)),
            "window_ms": cfg.window_ms,
            "max_attempts": cfg.max_attempts,
        }

    def sweep(self) -> int:
        """Drop records with no failure inside any window, and expired blocks."""
        cfg = self.settings
        now = self.clock()
        horizon = max(cfg.window_ms, cfg.rapid_fire_window_ms)
        removed = 0
        for rkey, record in self.store.scan_prefix(_REC):
            if now - record.last_attempt > horizon:
                with self.store.lock(rkey):
                    current = self.store.get(rkey)
                    if current is not None and now - current.last_attempt > horizon:
                        self.store.delete(rkey)
                        removed += 1
        return removed + self.blocks.sweep(horizon)

    def clear(self) -> None:
        self.store.clear()
