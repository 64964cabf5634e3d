"""Reset lapsed user streaks to zero.

Usage:
    python -m reconciler.workers.reset_streaks [--now ISO] [--concurrency N]
"""
from reconciler.workers.common import run_cli

JOB_NAME = "reset_streaks"


def reset_streaks() -> int:
    """Zero-argument entry point for the external scheduler."""
    return run_cli(JOB_NAME, [])


def main() -> int:
    return run_cli(JOB_NAME)


if __name__ == "__main__":
    raise SystemExit(main())
