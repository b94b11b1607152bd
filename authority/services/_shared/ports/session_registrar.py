from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol
from uuid import uuid4


@dataclass(frozen=True, slots=True)
class DeviceInfo:
    """Coarse device label derived from a User-Agent header."""

    device_type: str
    browser: str
    operating_system: str


def describe_user_agent(user_agent: str | None) -> DeviceInfo:
    """
    Classify a User-Agent string into device type, browser and OS.

    Only the handful of families worth showing in a "your sessions" list are
    recognised; everything else is ``Unknown``.
    """
    ua = (user_agent or "").lower()
    if not ua:
        return DeviceInfo("Unknown", "Unknown", "Unknown")

    if "ipad" in ua or "tablet" in ua:
        device = "Tablet"
    elif "mobile" in ua or "iphone" in ua or "android" in ua:
        device = "Mobile"
    else:
        device = "Desktop"

    # Order matters: Edge and Chrome UAs also contain "safari"/"chrome"
    if "edg/" in ua:
        browser = "Edge"
    elif "firefox/" in ua:
        browser = "Firefox"
    elif "chrome/" in ua:
        browser = "Chrome"
    elif "safari/" in ua:
        browser = "Safari"
    else:
        browser = "Unknown"

    if "windows" in ua:
        os_name = "Windows"
    elif "iphone" in ua or "ipad" in ua or "ios" in ua:
        os_name = "iOS"
    elif "android" in ua:
        os_name = "Android"
    elif "mac os" in ua or "macintosh" in ua:
        os_name = "macOS"
    elif "linux" in ua:
        os_name = "Linux"
    else:
        os_name = "Unknown"

    return DeviceInfo(device, browser, os_name)


@dataclass(frozen=True, slots=True)
class SessionRecord:
    session_id: str
    user_id: str
    ip: str
    user_agent: str | None
    device: DeviceInfo
    created_at: datetime


class SessionRegistrar(Protocol):
    """
    Best-effort session/device tracking.

    Called after a successful login; any exception it raises is logged and
    swallowed by the caller.
    """

    def register(self, user_id: str, ip: str, user_agent: str | None) -> str:
        """Record a new session and return its identifier."""


class InMemorySessionRegistrar(SessionRegistrar):
    """Process-local registrar for tests and single-process development."""

    def __init__(self) -> None:
        self.sessions: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def register(self, user_id: str, ip: str, user_agent: str | None) -> str:
        record = SessionRecord(
            session_id=uuid4().hex,
            user_id=user_id,
            ip=ip,
            user_agent=user_agent,
            device=describe_user_agent(user_agent),
            created_at=datetime.now(UTC),
        )
        with self._lock:
            self.sessions[record.session_id] = record
        return record.session_id

    def for_user(self, user_id: str) -> list[SessionRecord]:
        return [s for s in self.sessions.values() if s.user_id == user_id]
