"""Display helpers for distances, durations and backend address records."""

from typing import Optional


def format_distance(meters: float) -> str:
    """'850 m' below one kilometer, '12.3 km' above."""
    if meters < 1000:
        return f"{round(meters)} m"
    return f"{meters / 1000:.1f} km"


def format_duration(seconds: float) -> str:
    """'1h 5m' when an hour or more, otherwise '42m'."""
    seconds = int(seconds)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_address(address: Optional[dict]) -> str:
    """Collapse a structured address (road, house number, neighbourhood, city)
    into a single comma-separated line. Missing parts are skipped."""
    if not address:
        return ""

    parts = []
    if address.get("road"):
        parts.append(address["road"])
    if address.get("house_number"):
        parts.append(f"#{address['house_number']}")
    if address.get("neighbourhood"):
        parts.append(address["neighbourhood"])
    if address.get("city"):
        parts.append(address["city"])
    return ", ".join(parts)
