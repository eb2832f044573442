"""
Resolution constants and interval arithmetic.

Single source of truth for resolution strings used by the engine, the
store and the datafeed endpoints.
"""

from ..config.constants import SUPPORTED_RESOLUTIONS


# Charting-library resolution -> interval length in milliseconds
RESOLUTION_MS = {
    "1": 60_000,
    "5": 5 * 60_000,
    "15": 15 * 60_000,
    "60": 60 * 60_000,
    "1D": 24 * 60 * 60_000,
}


def validate_resolution(resolution: str) -> str:
    """
    Validate and normalize a resolution string.

    Args:
        resolution: Resolution string (e.g., "1", "15", "1D", "D")

    Returns:
        Normalized resolution

    Raises:
        ValueError: If resolution is not supported
    """
    res = str(resolution).strip().upper()
    if res in ("D", "1D"):
        return "1D"
    if res in RESOLUTION_MS:
        return res
    raise ValueError(
        f"Invalid resolution: '{resolution}'. "
        f"Must be one of: {SUPPORTED_RESOLUTIONS}"
    )


def resolution_to_ms(resolution: str) -> int:
    """Interval length of a resolution in milliseconds."""
    return RESOLUTION_MS[validate_resolution(resolution)]


def floor_to_interval(ts_ms: int, interval_ms: int) -> int:
    """Floor an epoch-ms timestamp to the start of its interval."""
    return (int(ts_ms) // interval_ms) * interval_ms


def next_boundary(ts_ms: int, interval_ms: int) -> int:
    """First interval boundary strictly after ts_ms."""
    return floor_to_interval(ts_ms, interval_ms) + interval_ms


def seconds_remaining(ts_ms: int, interval_ms: int) -> int:
    """Whole seconds left until the interval containing ts_ms closes."""
    remaining_ms = next_boundary(ts_ms, interval_ms) - int(ts_ms)
    return max(0, remaining_ms // 1000)
