"""BotScorer — fuse the signal sub-scores into one suspicion score.

    raw   = user_agent + behaviour + fingerprint + request_pattern
    score = min(1, raw / score_divisor)
    confidence = min(1, len(reasons) * confidence_per_reason)

    score >= auto_block_threshold   → is_bot, should_block
    score >= suspicious_threshold   → requires_captcha

The request-pattern sub-score looks at the identifier's earlier analyses
only; the current request joins the history after it has been scored.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from src.botdetect.captcha import CaptchaChallenge, CaptchaIssuer
from src.botdetect.signals import (
    SignalScore,
    analyze_behavior,
    analyze_fingerprint,
    analyze_user_agent,
)
from src.contracts.request import RequestData
from src.contracts.verdict import BotAnalysis, CaptchaVerification
from src.shared.clock import Clock, now_ms
from src.shared.settings import BotSettings
from src.shared.store import InMemoryStore, StateStore

log = logging.getLogger(__name__)

_REC = "suspicion:"
_SUSPICIOUS = "suspicious:"


@dataclass(frozen=True, slots=True)
class AnalysisEntry:
    """What the pattern heuristics need to remember about one request."""

    timestamp: int
    suspicion_score: float
    user_agent: str
    accept_language: str


@dataclass(frozen=True, slots=True)
class SuspicionRecord:
    identifier: str
    analyses: tuple[AnalysisEntry, ...] = ()
    suspicion_score: float = 0.0
    last_activity: int = 0


@dataclass(frozen=True, slots=True)
class SuspiciousEntry:
    score: float
    last_seen: int
    reasons: list[str] = field(default_factory=list)


class BotScorer:
    """Per-identifier bot analysis plus the CAPTCHA challenge lifecycle."""

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
        self.captcha = CaptchaIssuer(self.settings, store=self.store, clock=self.clock, rng=rng)

    # ═══════════════════════════════════════════════════════════════════════
    #  Analysis
    # ═══════════════════════════════════════════════════════════════════════

    def analyze_request(
        self,
        identifier: str,
        request: RequestData | Mapping[str, Any] | None = None,
    ) -> BotAnalysis:
        """Score one request from *identifier*.

        Parameters
        ──────────
        identifier
            Requester key; must be non-empty.
        request
            A ``RequestData`` or the raw request bag.  Missing fields take
            their documented defaults.
        """
        if not identifier:
            raise ValueError("identifier must be a non-empty string")
        cfg = self.settings
        req = request if isinstance(request, RequestData) else RequestData.from_mapping(request)

        signals = analyze_user_agent(req.user_agent, cfg)
        if cfg.enable_behavioral_analysis:
            signals.merge(analyze_behavior(req, cfg))
        if cfg.enable_fingerprinting:
            signals.merge(analyze_fingerprint(req, cfg))

        key = _REC + identifier
        with self.store.lock(key):
            now = self.clock()
            record: SuspicionRecord = self.store.get(key) or SuspicionRecord(identifier=identifier)
            signals.merge(self._request_patterns(record, req))

            analysis = self._decide(signals)
            entry = AnalysisEntry(
                timestamp=now,
                suspicion_score=analysis.suspicion_score,
                user_agent=req.user_agent,
                accept_language=req.accept_language,
            )
            self.store.set(
                key,
                SuspicionRecord(
                    identifier=identifier,
                    analyses=(record.analyses + (entry,))[-cfg.history_size:],
                    suspicion_score=analysis.suspicion_score,
                    last_activity=now,
                ),
            )

        if analysis.suspicion_score > cfg.suspicious_record_score:
            self.store.set(
                _SUSPICIOUS + identifier,
                SuspiciousEntry(score=analysis.suspicion_score, last_seen=now, reasons=list(analysis.reasons)),
            )

        if analysis.should_block:
            log.warning("Bot detected: %s score=%.2f (%s)", identifier, analysis.suspicion_score, "; ".join(analysis.reasons))
        else:
            log.debug("Bot analysis for %s: score=%.2f reasons=%d", identifier, analysis.suspicion_score, len(analysis.reasons))
        return analysis

    def _decide(self, signals: SignalScore) -> BotAnalysis:
        cfg = self.settings
        score = min(1.0, signals.score / cfg.score_divisor)
        analysis = BotAnalysis(
            suspicion_score=score,
            reasons=list(signals.reasons),
            confidence=min(1.0, len(signals.reasons) * cfg.confidence_per_reason),
        )
        if score >= cfg.auto_block_threshold:
            analysis.is_bot = True
            analysis.should_block = True
        elif score >= cfg.suspicious_threshold:
            analysis.requires_captcha = True
        return analysis

    def _request_patterns(self, record: SuspicionRecord, req: RequestData) -> SignalScore:
        cfg = self.settings
        w = cfg.weights
        result = SignalScore()
        recent = record.analyses[-cfg.pattern_lookback:]

        if len(recent) >= cfg.rapid_request_count:
            if recent[-1].timestamp - recent[0].timestamp < cfg.rapid_request_span_ms:
                result.hit(w.rapid_requests, "Rapid request pattern")

        identical = sum(
            1
            for e in recent
            if e.user_agent == req.user_agent and e.accept_language == req.accept_language
        )
        if identical > cfg.identical_request_limit:
            result.hit(w.identical_requests, "Identical request patterns")

        return result

    # ═══════════════════════════════════════════════════════════════════════
    #  CAPTCHA
    # ═══════════════════════════════════════════════════════════════════════

    def generate_captcha(self, identifier: str) -> CaptchaChallenge:
        return self.captcha.generate(identifier)

    def verify_captcha(self, identifier: str, answer: Any) -> CaptchaVerification:
        return self.captcha.verify(identifier, answer)

    # ═══════════════════════════════════════════════════════════════════════
    #  Queries / maintenance
    # ═══════════════════════════════════════════════════════════════════════

    def get_suspicion_record(self, identifier: str) -> SuspicionRecord | None:
        return self.store.get(_REC + identifier)

    def get_suspicious_identifiers(self) -> dict[str, SuspiciousEntry]:
        return {k[len(_SUSPICIOUS):]: v for k, v in self.store.scan_prefix(_SUSPICIOUS)}

    def get_stats(self) -> dict[str, Any]:
        cfg = self.settings
        start = self.clock() - cfg.stats_window_ms
        total = 0
        detections = 0
        for _, record in self.store.scan_prefix(_REC):
            total += sum(1 for e in record.analyses if e.timestamp > start)
            if record.suspicion_score > cfg.bot_stats_score:
                detections += 1
        return {
            "total_requests": total,
            "bot_detections": detections,
            "captcha_challenges": self.captcha.active_count(),
            "suspicious_identifiers": len(self.store.scan_prefix(_SUSPICIOUS)),
        }

    def sweep(self, idle_ms: int | None = None) -> int:
        """Forget identifiers idle for longer than *idle_ms* and expired challenges."""
        idle = self.settings.stats_window_ms if idle_ms is None else idle_ms
        cutoff = self.clock() - idle
        removed = 0
        for key, record in self.store.scan_prefix(_REC):
            if record.last_activity <= cutoff:
                self.store.delete(key)
                removed += 1
        for key, entry in self.store.scan_prefix(_SUSPICIOUS):
            if entry.last_seen <= cutoff:
                self.store.delete(key)
                removed += 1
        return removed + self.captcha.sweep()

    def clear(self) -> None:
        self.store.clear()
