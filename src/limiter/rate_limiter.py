"""RateLimiter — layered request quotas on top of WindowedCounter.

Layers (each independent, each its own key namespace):

    ip:<id>                     default rule
    endpoint:<id>:<endpoint>    per-endpoint rule (falls back to default)
    auth:<id>[:<username>]      authentication rule
    form:<id>:<form_type>       per-form rule (falls back to default)

plus one cross-identifier global check that scans every active window.
"""

from __future__ import annotations

import logging
from typing import Any

from src.contracts.enums import DenialReason
from src.contracts.verdict import GlobalRateLimitResult, RateLimitResult
from src.limiter.window import WindowedCounter
from src.shared.clock import Clock
from src.shared.settings import LimitRule, RateLimitSettings
from src.shared.store import StateStore

log = logging.getLogger(__name__)


def _require(identifier: str) -> None:
    if not identifier:
        raise ValueError("identifier must be a non-empty string")


class RateLimiter:
    """Per-identifier, per-endpoint, per-auth-key, per-form and global quotas."""

    def __init__(
        self,
        settings: RateLimitSettings | None = None,
        store: StateStore | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings or RateLimitSettings()
        self.counter = WindowedCounter(store=store, clock=clock)

    @property
    def clock(self) -> Clock:
        return self.counter.clock

    def _check(self, key: str, rule: LimitRule) -> RateLimitResult:
        return self.counter.check(key, rule.window_ms, rule.max_requests, rule.block_duration_ms)

    # ═══════════════════════════════════════════════════════════════════════
    #  Checks
    # ═══════════════════════════════════════════════════════════════════════

    def check_rate_limit(
        self,
        identifier: str,
        *,
        window_ms: int | None = None,
        max_requests: int | None = None,
        block_duration_ms: int | None = None,
    ) -> RateLimitResult:
        """Default per-identifier quota; keyword overrides replace rule fields."""
        _require(identifier)
        rule = self.settings.default.override(
            window_ms=window_ms, max_requests=max_requests, block_duration_ms=block_duration_ms
        )
        return self._check(f"ip:{identifier}", rule)

    def check_endpoint_rate_limit(
        self,
        identifier: str,
        endpoint: str,
        *,
        window_ms: int | None = None,
        max_requests: int | None = None,
        block_duration_ms: int | None = None,
    ) -> RateLimitResult:
        _require(identifier)
        rule = self.settings.endpoint_rule(endpoint).override(
            window_ms=window_ms, max_requests=max_requests, block_duration_ms=block_duration_ms
        )
        return self._check(f"endpoint:{identifier}:{endpoint}", rule)

    def check_auth_rate_limit(self, identifier: str, username: str | None = None) -> RateLimitResult:
        _require(identifier)
        key = f"auth:{identifier}:{username}" if username else f"auth:{identifier}"
        return self._check(key, self.settings.auth)

    def check_form_rate_limit(self, identifier: str, form_type: str) -> RateLimitResult:
        _require(identifier)
        return self._check(f"form:{identifier}:{form_type}", self.settings.form_rule(form_type))

    def check_global_rate_limit(self) -> GlobalRateLimitResult:
        """Sum every active window and compare with the global cap.

        Costs O(active keys); nothing is recorded and no block is set.
        """
        rule = self.settings.global_
        total = self.counter.total_in_window(rule.window_ms)
        if total >= rule.max_requests:
            log.warning("Global rate limit exceeded: %d/%d", total, rule.max_requests)
            return GlobalRateLimitResult(
                allowed=False,
                total_requests=total,
                retry_after=rule.window_ms,
                reason=DenialReason.GLOBAL_RATE_LIMIT_EXCEEDED.value,
            )
        return GlobalRateLimitResult(
            allowed=True,
            total_requests=total,
            remaining=rule.max_requests - total,
        )

    # ═══════════════════════════════════════════════════════════════════════
    #  Blocks
    # ═══════════════════════════════════════════════════════════════════════

    def is_blocked(self, identifier: str) -> bool:
        return self.counter.is_blocked(f"ip:{identifier}")

    def block(self, identifier: str, duration_ms: int | None = None) -> int:
        duration = self.settings.default.block_duration_ms if duration_ms is None else duration_ms
        return self.counter.block(f"ip:{identifier}", duration)

    def unblock(self, identifier: str) -> None:
        self.counter.unblock(f"ip:{identifier}")

    def block_time_remaining(self, identifier: str) -> int:
        return self.counter.block_remaining(f"ip:{identifier}")

    # ═══════════════════════════════════════════════════════════════════════
    #  Stats / maintenance
    # ═══════════════════════════════════════════════════════════════════════

    def get_stats(self, identifier: str | None = None) -> dict[str, Any]:
        rule = self.settings.default
        if identifier:
            in_window = self.counter.count(f"ip:{identifier}", rule.window_ms)
            return {
                "identifier": identifier,
                "requests_in_window": in_window,
                "max_requests": rule.max_requests,
                "remaining": max(0, rule.max_requests - in_window),
                "is_blocked": self.is_blocked(identifier),
                "block_time_remaining": self.block_time_remaining(identifier),
            }

        return {
            "total_requests": self.counter.total_in_window(rule.window_ms),
            "active_keys": len(self.counter.active_keys(rule.window_ms)),
            "blocked_keys": self.counter.blocked_count(),
            "window_ms": rule.window_ms,
            "max_requests": rule.max_requests,
        }

    def sweep(self) -> int:
        longest = max(
            [self.settings.default.window_ms, self.settings.auth.window_ms, self.settings.global_.window_ms]
            + [r.window_ms for r in self.settings.endpoints.values()]
            + [r.window_ms for r in self.settings.forms.values()]
        )
        return self.counter.sweep(longest)

    def clear(self) -> None:
        self.counter.clear()
