"""Client device metadata derived from the incoming request."""

from __future__ import annotations

import re
from dataclasses import dataclass

from starlette.requests import Request

_MAX_USER_AGENT = 512

# Order matters: mobile user agents also mention desktop platforms
_PLATFORMS: tuple[tuple[str, str], ...] = (
    ("Android", "Android"),
    ("iPhone", "iOS"),
    ("iPad", "iOS"),
    ("Windows", "Windows"),
    ("Mac", "macOS"),
    ("Linux", "Linux"),
)

# Edge and Chrome both advertise "Chrome/", and Chrome advertises "Safari/"
_BROWSERS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Edge", re.compile(r"Edg(?:e|A|iOS)?/(\d+)")),
    ("Firefox", re.compile(r"Firefox/(\d+)")),
    ("Chrome", re.compile(r"Chrome/(\d+)")),
    ("Safari", re.compile(r"Version/(\d+).*Safari/")),
)


@dataclass(frozen=True)
class DeviceInfo:
    ip_address: str | None = None
    user_agent: str | None = None
    platform: str | None = None
    browser: str | None = None


def parse_user_agent(user_agent: str) -> tuple[str, str]:
    """Return a coarse ``(platform, browser)`` pair for display in session lists."""
    platform = next((name for marker, name in _PLATFORMS if marker in user_agent), "Unknown")
    browser = "Unknown"
    for name, pattern in _BROWSERS:
        match = pattern.search(user_agent)
        if match:
            browser = f"{name} {match.group(1)}"
            break
    return platform, browser


def device_info_from_request(request: Request) -> DeviceInfo:
    user_agent = (request.headers.get("user-agent") or "")[:_MAX_USER_AGENT]
    platform, browser = parse_user_agent(user_agent) if user_agent else (None, None)
    return DeviceInfo(
        ip_address=request.client.host if request.client else None,
        user_agent=user_agent or None,
        platform=platform,
        browser=browser,
    )
