"""Delete notifications past the retention window.

Usage:
    python -m reconciler.workers.prune_notifications [--now ISO] [--concurrency N]
"""
from reconciler.workers.common import run_cli

JOB_NAME = "prune_notifications"


def prune_notifications() -> int:
    """Zero-argument entry point for the external scheduler."""
    return run_cli(JOB_NAME, [])


def main() -> int:
    return run_cli(JOB_NAME)


if __name__ == "__main__":
    raise SystemExit(main())
