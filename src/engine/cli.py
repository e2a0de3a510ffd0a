"""CLI entry-point for the abuse-mitigation engine.

Usage examples
--------------
# Replay a request log with the default configuration:
python -m src.engine.cli --input data/requests.jsonl

# Custom config, per-minute timeline, reproducible challenges:
python -m src.engine.cli --input data/requests.jsonl --config config/guard.yaml \
    --group-by minute --seed 42
"""

from __future__ import annotations

import argparse

from src.engine.replay import run_replay
from src.monitor.aggregation import BUCKET_INTERVALS
from src.shared.logger import setup_logging


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="abuse-guard",
        description="Abuse-mitigation engine — replay a request log, write events, alerts and a report",
    )
    p.add_argument(
        "--input",
        default="data/requests.jsonl",
        help="Input JSONL request log. Default: data/requests.jsonl",
    )
    p.add_argument(
        "--out-dir",
        default="out",
        help="Output directory. Default: out/",
    )
    p.add_argument(
        "--config",
        default="config/guard.yaml",
        help="YAML configuration file. Default: config/guard.yaml",
    )
    p.add_argument(
        "--group-by",
        default="hour",
        choices=list(BUCKET_INTERVALS),
        help="Timeline bucket size. Default: hour",
    )
    p.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for CAPTCHA questions (overrides the config file).",
    )
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level. Default: INFO",
    )
    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    run_replay(
        input_path=args.input,
        out_dir=args.out_dir,
        config_path=args.config,
        group_by=args.group_by,
        seed=args.seed,
    )


if __name__ == "__main__":
    main()
