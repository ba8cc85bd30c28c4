
from __future__ import annotations

def calc_next_delay(attempts: int, base_seconds: float = 1.0, max_seconds: float = 60.0) -> float:
    """
    Exponential backoff: first failure -> base, then doubling, capped at max_seconds.
    attempts: failures so far (1-based)
    """
    attempts = max(1, attempts)
    delay = base_seconds * (2 ** (attempts - 1))
    return min(max_seconds, delay)
