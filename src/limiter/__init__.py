"""Request quotas and credential-attack protection.

Modules
───────
  window       — WindowedCounter: sliding-window hits + sticky blocks
  rate_limiter — per-identifier, endpoint, auth, form and global quotas
  brute_force  — failed-login accounting, progressive delay, attack patterns
"""
