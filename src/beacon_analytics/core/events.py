"""
Normalization of tracking payloads.

Beacons arrive as arbitrary key/value maps from untrusted clients. Each
``normalize_*`` function resolves field aliases and coerces types, producing
a typed record that the recorder persists. The whole original payload is
kept as ``metadata`` for later dimension queries.
"""
import json
import math
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from ..user_agent import parse_user_agent
from .timeutil import parse_timestamp, utc_now

Payload = dict[str, Any]

SESSION_ID_ALIASES = ("sessionId", "session_id", "id")
GOAL_SESSION_ID_ALIASES = ("sessionId", "session_id")


def as_string(value: Any) -> str | None:
    """Non-blank strings only."""
    if isinstance(value, str) and value.strip():
        return value
    return None


def as_number(value: Any) -> float | None:
    """Finite numbers, including numeric strings."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            parsed = float(value)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def as_int(value: Any) -> int | None:
    number = as_number(value)
    return int(number) if number is not None else None


def first_string(payload: Payload, *keys: str) -> str | None:
    for key in keys:
        value = as_string(payload.get(key))
        if value is not None:
            return value
    return None


def first_timestamp(payload: Payload, *keys: str) -> datetime | None:
    for key in keys:
        value = parse_timestamp(payload.get(key))
        if value is not None:
            return value
    return None


def resolve_session_id(payload: Payload) -> str:
    """Client session id by alias priority, or a freshly generated one."""
    return first_string(payload, *SESSION_ID_ALIASES) or uuid.uuid4().hex


def to_metadata(payload: Payload) -> str:
    """Serialize the original payload for the metadata column."""
    return json.dumps(payload, default=str, separators=(",", ":"))


# =============================================================================
# Records
# =============================================================================

class SessionUpsert(BaseModel):
    """Session fields derived from any event referencing a session.

    ``start_time``/``last_ping_time``/``duration`` are used on creation;
    the ``reported_*`` values are what the payload actually carried and are
    the only ones applied to an existing session.
    """
    id: str
    start_time: datetime
    last_ping_time: datetime
    duration: int = 0
    reported_last_ping_time: datetime | None = None
    reported_duration: int | None = None
    user_agent: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None
    country: str | None = None
    city: str | None = None
    ip_address: str | None = None


class PageViewRecord(BaseModel):
    session_id: str
    path: str
    timestamp: datetime
    metadata: str


class PingRecord(BaseModel):
    session_id: str
    duration: int
    page_path: str | None = None
    timestamp: datetime
    metadata: str


class ClickRecord(BaseModel):
    session_id: str
    element_tag: str | None = None
    element_id: str | None = None
    element_class: str | None = None
    element_text: str | None = None
    x: int = 0
    y: int = 0
    page_path: str
    timestamp: datetime
    metadata: str


class GoalRecord(BaseModel):
    session_id: str | None = None
    name: str
    value: float | None = None
    path: str | None = None
    timestamp: datetime
    metadata: str


# =============================================================================
# Normalizers
# =============================================================================

def normalize_session(session_id: str, payload: Payload, now: datetime | None = None) -> SessionUpsert:
    """Build the session upsert for any event carrying ``session_id``."""
    now = now or utc_now()
    start_time = first_timestamp(payload, "startTime", "timestamp") or now
    reported_ping = first_timestamp(payload, "lastPingTime", "timestamp")
    reported_duration = as_int(payload.get("duration"))

    user_agent = as_string(payload.get("userAgent"))
    browser = as_string(payload.get("browser"))
    os_name = as_string(payload.get("os"))
    if user_agent and (browser is None or os_name is None):
        info = parse_user_agent(user_agent)
        if browser is None and info.browser != "Unknown":
            browser = info.browser
        if os_name is None and info.os != "Unknown":
            os_name = info.os

    return SessionUpsert(
        id=session_id,
        start_time=start_time,
        last_ping_time=reported_ping or start_time,
        duration=max(reported_duration or 0, 0),
        reported_last_ping_time=reported_ping,
        reported_duration=max(reported_duration, 0) if reported_duration is not None else None,
        user_agent=user_agent,
        device_type=as_string(payload.get("deviceType")),
        browser=browser,
        os=os_name,
        country=as_string(payload.get("country")),
        city=as_string(payload.get("city")),
        ip_address=first_string(payload, "ipAddress", "ip"),
    )


def normalize_page_view(session_id: str, payload: Payload, now: datetime | None = None) -> PageViewRecord:
    return PageViewRecord(
        session_id=session_id,
        path=first_string(payload, "path", "pagePath") or "/",
        timestamp=first_timestamp(payload, "timestamp", "viewedAt") or now or utc_now(),
        metadata=to_metadata(payload),
    )


def normalize_ping(session_id: str, payload: Payload, now: datetime | None = None) -> PingRecord:
    return PingRecord(
        session_id=session_id,
        duration=max(as_int(payload.get("duration")) or 0, 0),
        page_path=first_string(payload, "pagePath", "path"),
        timestamp=first_timestamp(payload, "timestamp", "lastPingTime") or now or utc_now(),
        metadata=to_metadata(payload),
    )


def normalize_click(session_id: str, payload: Payload, now: datetime | None = None) -> ClickRecord:
    return ClickRecord(
        session_id=session_id,
        element_tag=as_string(payload.get("elementTag")),
        element_id=as_string(payload.get("elementId")),
        element_class=as_string(payload.get("elementClass")),
        element_text=as_string(payload.get("elementText")),
        x=as_int(payload.get("x")) or 0,
        y=as_int(payload.get("y")) or 0,
        page_path=first_string(payload, "pagePath", "path") or "/",
        timestamp=first_timestamp(payload, "timestamp", "clickedAt") or now or utc_now(),
        metadata=to_metadata(payload),
    )


def normalize_goal(payload: Payload, now: datetime | None = None) -> GoalRecord:
    """Goals may be anonymous: only explicit session aliases link them."""
    return GoalRecord(
        session_id=first_string(payload, *GOAL_SESSION_ID_ALIASES),
        name=first_string(payload, "name", "goalName") or "goal",
        value=as_number(payload.get("value")),
        path=first_string(payload, "path", "pagePath"),
        timestamp=first_timestamp(payload, "timestamp", "convertedAt") or now or utc_now(),
        metadata=to_metadata(payload),
    )
