"""Human-readable duration strings used across reports."""

from __future__ import annotations

from datetime import timedelta


def format_age(delta: timedelta) -> str:
    """Compact age: ``45s``, ``12m``, ``3h``/``3h20m``, ``2d``/``2d5h``."""
    seconds = int(delta.total_seconds())
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        hours, minutes = seconds // 3600, (seconds // 60) % 60
        return f"{hours}h{minutes}m" if minutes else f"{hours}h"
    days, hours = seconds // 86400, (seconds // 3600) % 24
    return f"{days}d{hours}h" if hours else f"{days}d"


def format_uptime(delta: timedelta) -> str:
    """Spaced uptime: ``2d 3h 4m``, ``3h 4m`` or ``4m``."""
    seconds = max(int(delta.total_seconds()), 0)
    days = seconds // 86400
    hours = (seconds // 3600) % 24
    minutes = (seconds // 60) % 60
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
