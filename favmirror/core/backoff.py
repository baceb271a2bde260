"""Linear backoff shared by the source fetcher.

The source throttles by request rate rather than by burst, so delays grow
linearly with the attempt number instead of exponentially.
"""

from __future__ import annotations


def linear_delay(attempt: int, step: float) -> float:
    """Return ``attempt * step`` seconds (attempt is 1-indexed)."""
    return max(0, attempt) * max(0.0, step)
