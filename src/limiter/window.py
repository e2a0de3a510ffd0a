"""WindowedCounter — sliding-window hit counter with sticky blocks.

State per key lives in the store under two namespaces:

    win:<key>    ascending list of hit timestamps (epoch ms)
    block:<key>  block expiry (epoch ms)

Both expire lazily.  A timestamp is inside the window iff
``ts > now - window_ms``; a block is active iff ``expiry > now`` and is
deleted the first time it is observed expired.  Lists are replaced, never
mutated in place, so snapshot readers always see a consistent list.
"""

from __future__ import annotations

import logging

from src.contracts.enums import DenialReason
from src.contracts.verdict import RateLimitResult
from src.shared.clock import Clock, now_ms
from src.shared.store import InMemoryStore, StateStore

log = logging.getLogger(__name__)

_WIN = "win:"
_BLOCK = "block:"


class WindowedCounter:
    """Generic per-key sliding-window counter."""

    def __init__(self, store: StateStore | None = None, clock: Clock | None = None) -> None:
        self.store = store if store is not None else InMemoryStore()
        self.clock = clock or now_ms

    # ── blocks ───────────────────────────────────────────────────────────

    def is_blocked(self, key: str) -> bool:
        return self.block_remaining(key) > 0

    def block_remaining(self, key: str) -> int:
        """Milliseconds left on the block for *key*; 0 when not blocked."""
        bkey = _BLOCK + key
        with self.store.lock(bkey):
            expiry = self.store.get(bkey)
            if expiry is None:
                return 0
            now = self.clock()
            if expiry > now:
                return expiry - now
            self.store.delete(bkey)
            return 0

    def block(self, key: str, duration_ms: int) -> int:
        """Block *key* for *duration_ms*; an existing longer block is kept.

        Returns the effective expiry.
        """
        bkey = _BLOCK + key
        with self.store.lock(bkey):
            expiry = self.clock() + duration_ms
            current = self.store.get(bkey)
            if current is not None and current > expiry:
                expiry = current
            self.store.set(bkey, expiry)
        log.debug("Blocked %s until %d", key, expiry)
        return expiry

    def unblock(self, key: str) -> None:
        self.store.delete(_BLOCK + key)

    def blocked_count(self) -> int:
        now = self.clock()
        return sum(1 for _, expiry in self.store.scan_prefix(_BLOCK) if expiry > now)

    # ── windows ──────────────────────────────────────────────────────────

    def _pruned(self, key: str, window_start: int) -> list[int]:
        """Return the in-window timestamps of *key*, persisting the pruned list.

        Caller must hold the key lock.
        """
        wkey = _WIN + key
        stamps = self.store.get(wkey)
        if not stamps:
            return []
        kept = [t for t in stamps if t > window_start]
        if not kept:
            self.store.delete(wkey)
        elif len(kept) != len(stamps):
            self.store.set(wkey, kept)
        return kept

    def check(
        self,
        key: str,
        window_ms: int,
        max_count: int,
        block_duration_ms: int,
    ) -> RateLimitResult:
        """Count one hit for *key* unless it is blocked or over quota.

        Returns
        ───────
        allowed   — ``remaining = max_count - hits_in_window`` (after this hit)
        denied    — ``reason`` is ``blocked`` (sticky block still active) or
                    ``rate_limit_exceeded`` (this call set a new block)
        """
        retry = self.block_remaining(key)
        if retry > 0:
            return RateLimitResult(
                allowed=False,
                limit=max_count,
                retry_after=retry,
                reason=DenialReason.BLOCKED.value,
            )

        wkey = _WIN + key
        with self.store.lock(wkey):
            now = self.clock()
            recent = self._pruned(key, now - window_ms)
            if len(recent) >= max_count:
                exceeded = True
            else:
                exceeded = False
                recent = [*recent, now]
                self.store.set(wkey, recent)

        if exceeded:
            self.block(key, block_duration_ms)
            log.info("Rate limit exceeded for %s (%d/%d in %d ms)", key, len(recent), max_count, window_ms)
            return RateLimitResult(
                allowed=False,
                limit=max_count,
                retry_after=block_duration_ms,
                reason=DenialReason.RATE_LIMIT_EXCEEDED.value,
            )

        return RateLimitResult(
            allowed=True,
            limit=max_count,
            remaining=max_count - len(recent),
            reset_time=recent[0] + window_ms,
        )

    def record(self, key: str) -> int:
        """Append a hit without any quota check; returns the new in-window size."""
        wkey = _WIN + key
        with self.store.lock(wkey):
            stamps = self.store.get(wkey) or []
            stamps = [*stamps, self.clock()]
            self.store.set(wkey, stamps)
            return len(stamps)

    def count(self, key: str, window_ms: int) -> int:
        with self.store.lock(_WIN + key):
            return len(self._pruned(key, self.clock() - window_ms))

    def timestamps(self, key: str) -> list[int]:
        return list(self.store.get(_WIN + key) or [])

    def total_in_window(self, window_ms: int) -> int:
        """Hits across every key inside the trailing window (snapshot scan)."""
        start = self.clock() - window_ms
        total = 0
        for _, stamps in self.store.scan_prefix(_WIN):
            total += sum(1 for t in stamps if t > start)
        return total

    def active_keys(self, window_ms: int) -> list[str]:
        start = self.clock() - window_ms
        return [
            k[len(_WIN):]
            for k, stamps in self.store.scan_prefix(_WIN)
            if any(t > start for t in stamps)
        ]

    # ── maintenance ──────────────────────────────────────────────────────

    def sweep(self, window_ms: int) -> int:
        """Drop windows with nothing newer than *window_ms* and expired blocks.

        Best-effort memory hygiene; correctness never depends on it.
        Returns the number of entries removed.
        """
        now = self.clock()
        removed = 0
        for k, stamps in self.store.scan_prefix(_WIN):
            if not stamps or stamps[-1] <= now - window_ms:
                with self.store.lock(k):
                    current = self.store.get(k)
                    if not current or current[-1] <= now - window_ms:
                        self.store.delete(k)
                        removed += 1
        for k, expiry in self.store.scan_prefix(_BLOCK):
            if expiry <= now:
                self.store.delete(k)
                removed += 1
        if removed:
            log.debug("Sweep removed %d stale entries", removed)
        return removed

    def clear(self) -> None:
        self.store.clear()
