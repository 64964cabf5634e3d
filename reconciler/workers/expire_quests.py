"""Expire active quests whose endDate has passed.

Usage:
    python -m reconciler.workers.expire_quests [--now ISO] [--concurrency N]
"""
from reconciler.workers.common import run_cli

JOB_NAME = "expire_quests"


def expire_quests() -> int:
    """Zero-argument entry point for the external scheduler."""
    return run_cli(JOB_NAME, [])


def main() -> int:
    return run_cli(JOB_NAME)


if __name__ == "__main__":
    raise SystemExit(main())
