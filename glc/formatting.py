"""Display helpers shared by CLI tables (rich markup strings)."""

from __future__ import annotations

import re

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([a-zA-Z]*)")
_UNIT_SECONDS = {
    "": 1,
    "s": 1,
    "sec": 1,
    "secs": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "minutes": 60,
    "h": 3600,
    "hr": 3600,
    "hrs": 3600,
    "hour": 3600,
    "hours": 3600,
    "d": 86400,
    "day": 86400,
    "days": 86400,
    "w": 604800,
    "week": 604800,
    "weeks": 604800,
}

_STATUS_STYLES = {
    "success": ("✅", "Success", "green"),
    "failed": ("❌", "Failed", "red"),
    "running": ("⏳", "Running", "yellow"),
    "created": ("🌱", "Created", ""),
}


def parse_max_age(value: str) -> float:
    """Parse ``"24h"``, ``"10m"``, ``"4d"``, ``"1h30m"`` or plain seconds."""

    text = value.strip().lower()
    if not text:
        raise ValueError("Duration is empty")
    total = 0.0
    position = 0
    for match in _DURATION_RE.finditer(text):
        if text[position : match.start()].strip():
            break
        unit = match.group(2)
        if unit not in _UNIT_SECONDS:
            raise ValueError(f"Unknown duration unit {unit!r} in {value!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[unit]
        position = match.end()
    if position == 0 or text[position:].strip():
        raise ValueError(f"Invalid duration {value!r}")
    return total


def format_bytes(size: int) -> str:
    kilobytes = size / 1024
    megabytes = kilobytes / 1024
    gigabytes = megabytes / 1024
    terabytes = gigabytes / 1024
    if terabytes >= 1:
        return f"[bold bright_white on red]{terabytes:6.2f} TB[/]"
    if gigabytes >= 5:
        return f"[bold bright_white on red]{gigabytes:6.2f} GB[/]"
    if gigabytes >= 2:
        return f"[bright_red]{gigabytes:6.2f} GB[/]"
    if gigabytes >= 1:
        return f"[yellow]{gigabytes:6.2f} GB[/]"
    if megabytes >= 200:
        return f"[yellow]{megabytes:6.1f} MB[/]"
    if megabytes >= 1:
        return f"{megabytes:6.1f} MB"
    if kilobytes >= 1:
        return f"{kilobytes:6.1f} KB"
    if size >= 1:
        return f"{float(size):6.1f} B"
    return f"{'-':>6}"


def format_seconds(seconds: float | None) -> str:
    sec = int(seconds or 0)
    minutes, secs = divmod(sec, 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)
    if days:
        return f"{days}d {hours}h:{minutes}m.{secs}s"
    if hours:
        return f"{hours}h:{minutes}m.{secs}s"
    if minutes:
        return f"{minutes}m.{secs}s"
    return f"{secs}s"


def status_label(status: str) -> str:
    icon, label, style = _STATUS_STYLES.get(status, ("❓", status, ""))
    text = f"{icon} {label}"
    return f"[{style}]{text}[/]" if style else text
