"""
Best-effort device/browser/OS detection from a User-Agent header.

These are substring heuristics, not a user-agent grammar: each dimension is
resolved by the first rule that matches, in the order listed below.
"""
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from fastapi import Request

MOBILE_MARKERS = ("Mobile", "Android", "iPhone", "iPad")

BROWSER_RULES: Sequence[Tuple[Tuple[str, ...], str]] = (
    (("Chrome",), "Chrome"),
    (("Firefox",), "Firefox"),
    (("Safari",), "Safari"),
)

OS_RULES: Sequence[Tuple[Tuple[str, ...], str]] = (
    (("Windows",), "Windows"),
    (("Mac",), "MacOS"),
    (("Linux",), "Linux"),
    (("Android",), "Android"),
    (("iOS", "iPhone", "iPad"), "iOS"),
)

OTHER = "Other"


@dataclass(frozen=True)
class DeviceInfo:
    device_type: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None


def _first_match(user_agent: str, rules) -> str:
    for markers, label in rules:
        if any(marker in user_agent for marker in markers):
            return label
    return OTHER


def parse_user_agent(user_agent: Optional[str]) -> DeviceInfo:
    if not user_agent:
        return DeviceInfo()

    is_mobile = any(marker in user_agent for marker in MOBILE_MARKERS)
    return DeviceInfo(
        device_type="mobile" if is_mobile else "desktop",
        browser=_first_match(user_agent, BROWSER_RULES),
        os=_first_match(user_agent, OS_RULES),
    )


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"
