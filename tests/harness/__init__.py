"""Test harness utilities for driving runs end to end."""

from .adapter_harness import RunOutcome, build_run_input, run, run_async

__all__ = [
    "RunOutcome",
    "build_run_input",
    "run",
    "run_async",
]
