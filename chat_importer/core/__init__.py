"""Core execution logic: jobs, plan, ledger, pacing and the delivery loop."""

__all__ = [
    "config",
    "context",
    "executor",
    "job",
    "ledger",
    "pacing",
    "plan",
    "run_logging",
]
