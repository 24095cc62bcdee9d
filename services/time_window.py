"""Turn relative or absolute window requests into concrete key bounds."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from datastore.keys import as_utc, prefix_upper_bound, reading_key, reading_prefix
from models.records import Between, Since, TimeSpec, TimeWindow, WindowSpec
from services.errors import InvalidWindowError


def resolve_side(side: TimeSpec, now: datetime) -> Optional[datetime]:
    """Resolve one window side against ``now``.

    A ``timedelta`` means "this long before now"; a ``datetime`` passes
    through (naive values are taken as UTC); ``None`` stays unbounded.
    """
    if side is None:
        return None
    if isinstance(side, timedelta):
        return now - side
    if isinstance(side, datetime):
        return as_utc(side)
    raise TypeError(f"Unsupported window side {side!r}.")


def build_window(spec: WindowSpec, now: Optional[datetime] = None) -> TimeWindow:
    current = as_utc(now) if now is not None else datetime.now(timezone.utc)

    if isinstance(spec, Since):
        start, end = resolve_side(spec.start, current), current
    elif isinstance(spec, Between):
        start, end = resolve_side(spec.start, current), resolve_side(spec.end, current)
    else:
        raise TypeError(f"Unsupported window spec {spec!r}.")

    if start is not None and end is not None and start > end:
        raise InvalidWindowError(
            f"Window start {start.isoformat()} is after end {end.isoformat()}."
        )
    return TimeWindow(start=start, end=end)


def window_bounds(window: TimeWindow, sensor_id: str) -> Tuple[str, str]:
    """Key range ``[lower, upper)`` covering ``window`` for one sensor.

    Unbounded sides fall back to the edges of the sensor's key prefix.
    """
    prefix = reading_prefix(sensor_id)
    lower = prefix if window.start is None else reading_key(sensor_id, window.start)
    upper = (
        prefix_upper_bound(prefix)
        if window.end is None
        else reading_key(sensor_id, window.end)
    )
    return lower, upper
