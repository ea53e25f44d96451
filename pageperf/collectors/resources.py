"""Resource timing summary (byte volume, script share) for scoring."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit

from ..models import ResourceFacts
from .base import safe_number

SLOW_RESOURCE_MS = 1000
_SCRIPT_SUFFIXES = (".js", ".jsx", ".mjs")


def is_script_resource(entry: dict[str, Any]) -> bool:
    if str(entry.get("initiatorType") or "").lower() == "script":
        return True
    name = str(entry.get("name") or "")
    try:
        path = urlsplit(name).path or name
    except ValueError:
        path = name
    return path.lower().endswith(_SCRIPT_SUFFIXES)


def summarize_resources(entries: list[dict[str, Any]]) -> ResourceFacts:
    total_bytes = 0
    script_bytes = 0
    total = 0
    scripts = 0
    slow = 0
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        total += 1
        size = safe_number(entry.get("transferSize"))
        size_i = int(size) if size is not None and size > 0 else 0
        total_bytes += size_i
        if is_script_resource(entry):
            scripts += 1
            script_bytes += size_i
        duration = safe_number(entry.get("duration"))
        if duration is not None and duration > SLOW_RESOURCE_MS:
            slow += 1
    return ResourceFacts(
        total_bytes=total_bytes,
        script_bytes=script_bytes,
        total_resources=total,
        script_resource_count=scripts,
        slow_resources=slow,
    )
