"""Retry tooling."""

from .retry import RetryManager, compare_and_swap_loop

__all__ = ["RetryManager", "compare_and_swap_loop"]
