"""Live elapsed-seconds computation for a timer record.

All inputs are plain values: a banked base in seconds, the epoch-ms instant the
timer was started (or None when stopped), and the epoch-ms instant to evaluate
at. Nothing here reads a clock or mutates its arguments.
"""


def elapsed_seconds(running_since: int | None, now: int) -> int:
    """Whole seconds since running_since, never negative.

    A running_since in the future (clock skew between writers) yields 0.
    """
    if running_since is None:
        return 0
    return max(0, (now - running_since) // 1000)


def compute_display_seconds(base: int, running_since: int | None, now: int) -> int:
    if running_since is None:
        return base
    return max(0, base + elapsed_seconds(running_since, now))


def fold_elapsed(base: int, running_since: int | None, now: int) -> int:
    """Base seconds after absorbing the running session, as done on stop."""
    return compute_display_seconds(base, running_since, now)
