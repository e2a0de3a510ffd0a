"""Abuse-mitigation engine — composition root and offline replay.

Modules
───────
  orchestrator — SecurityGuard: fixed detector order → one SecurityDecision
  replay       — drive a SecurityGuard from a JSONL request log
  cli          — argparse entry-point (``python -m src.engine.cli``)
"""
