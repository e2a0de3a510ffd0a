"""Bot detection — signal fusion and CAPTCHA challenges.

Modules
───────
  signals — pure analysers: user agent, behaviour, fingerprint
  scorer  — BotScorer: sub-score fusion, suspicion records, decisions
  captcha — arithmetic challenges with bounded attempts and a TTL
"""
