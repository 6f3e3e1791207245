"""
Event recorder: the write path for tracking beacons.

Every ``track_*`` call is applied as a single atomic batch:

1. conditional ``sessions`` rollup increment (only for a new session)
2. session upsert
3. immutable event insert
4. rollup increment for the event's metric on its UTC day
5. (pings only) session ``last_ping_time`` / ``duration`` update

Either every statement applies or none does. Storage failures propagate
to the caller; nothing is retried.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from .events import (
    Payload,
    SessionUpsert,
    normalize_click,
    normalize_goal,
    normalize_page_view,
    normalize_ping,
    normalize_session,
    resolve_session_id,
)
from .models import Metric
from .rollups import RollupStore
from .storage import Database, Statement
from .timeutil import format_timestamp, utc_date, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackResult:
    """Outcome of one tracking call."""
    session_id: str | None
    session_created: bool = False


def _ts(value: datetime | None) -> str | None:
    return format_timestamp(value) if value is not None else None


class EventRecorder:
    """Persists beacons and keeps the daily rollups in step."""

    def __init__(self, db: Database, rollups: RollupStore | None = None):
        self.db = db
        self.rollups = rollups or RollupStore(db)

    def _session_statements(self, session: SessionUpsert, now: datetime) -> list[Statement]:
        """Conditional sessions increment followed by the session upsert."""
        updated_at = format_timestamp(now)
        upsert = (
            """
            INSERT INTO sessions (
                id, start_time, last_ping_time, duration,
                user_agent, device_type, browser, os, country, city, ip_address,
                created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                last_ping_time = COALESCE(?, sessions.last_ping_time),
                duration = COALESCE(?, sessions.duration),
                user_agent = COALESCE(excluded.user_agent, sessions.user_agent),
                device_type = COALESCE(excluded.device_type, sessions.device_type),
                browser = COALESCE(excluded.browser, sessions.browser),
                os = COALESCE(excluded.os, sessions.os),
                country = COALESCE(excluded.country, sessions.country),
                city = COALESCE(excluded.city, sessions.city),
                ip_address = COALESCE(excluded.ip_address, sessions.ip_address),
                updated_at = excluded.updated_at
            """,
            [
                session.id,
                format_timestamp(session.start_time),
                format_timestamp(session.last_ping_time),
                session.duration,
                session.user_agent,
                session.device_type,
                session.browser,
                session.os,
                session.country,
                session.city,
                session.ip_address,
                updated_at,
                updated_at,
                _ts(session.reported_last_ping_time),
                session.reported_duration,
            ],
        )
        return [
            RollupStore.new_session_statement(session.id, utc_date(session.start_time)),
            upsert,
        ]

    async def _apply(
        self,
        kind: str,
        session: SessionUpsert | None,
        statements: list[Statement],
    ) -> TrackResult:
        """Run session statements (if any) plus event statements atomically."""
        now = utc_now()
        batch = self._session_statements(session, now) if session else []
        results = await self.db.batch(batch + statements)

        created = bool(session and results[0])
        if created:
            logger.debug(f"New session {session.id} ({kind})")
        return TrackResult(session_id=session.id if session else None, session_created=created)

    # -------------------------------------------------------------------------
    # Public tracking operations
    # -------------------------------------------------------------------------

    async def track_session(self, payload: Payload) -> TrackResult:
        """Create or refresh a session. Only creation bumps the sessions rollup."""
        session_id = resolve_session_id(payload)
        session = normalize_session(session_id, payload)
        return await self._apply("session", session, [])

    async def track_page_view(self, payload: Payload) -> TrackResult:
        now = utc_now()
        session_id = resolve_session_id(payload)
        session = normalize_session(session_id, payload, now)
        view = normalize_page_view(session_id, payload, now)

        return await self._apply("view", session, [
            (
                "INSERT INTO page_views (session_id, path, timestamp, metadata) VALUES (?, ?, ?, ?)",
                [view.session_id, view.path, format_timestamp(view.timestamp), view.metadata],
            ),
            RollupStore.increment_statement(Metric.PAGE_VIEWS, utc_date(view.timestamp)),
        ])

    async def track_ping(self, payload: Payload) -> TrackResult:
        """Record a heartbeat; the session takes the ping's time and duration."""
        now = utc_now()
        session_id = resolve_session_id(payload)
        session = normalize_session(session_id, payload, now)
        ping = normalize_ping(session_id, payload, now)
        ping_time = format_timestamp(ping.timestamp)

        return await self._apply("ping", session, [
            (
                """
                INSERT INTO pings (session_id, duration, page_path, timestamp, metadata)
                VALUES (?, ?, ?, ?, ?)
                """,
                [ping.session_id, ping.duration, ping.page_path, ping_time, ping.metadata],
            ),
            RollupStore.increment_statement(Metric.PINGS, utc_date(ping.timestamp)),
            (
                "UPDATE sessions SET last_ping_time = ?, duration = ?, updated_at = ? WHERE id = ?",
                [ping_time, ping.duration, format_timestamp(now), session_id],
            ),
        ])

    async def track_click(self, payload: Payload) -> TrackResult:
        now = utc_now()
        session_id = resolve_session_id(payload)
        session = normalize_session(session_id, payload, now)
        click = normalize_click(session_id, payload, now)

        return await self._apply("click", session, [
            (
                """
                INSERT INTO clicks (
                    session_id, element_tag, element_id, element_class, element_text,
                    x, y, page_path, timestamp, metadata
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    click.session_id, click.element_tag, click.element_id,
                    click.element_class, click.element_text, click.x, click.y,
                    click.page_path, format_timestamp(click.timestamp), click.metadata,
                ],
            ),
            RollupStore.increment_statement(Metric.CLICKS, utc_date(click.timestamp)),
        ])

    async def track_goal(self, payload: Payload) -> TrackResult:
        """Record a goal conversion; anonymous goals skip the session upsert."""
        now = utc_now()
        goal = normalize_goal(payload, now)
        session = normalize_session(goal.session_id, payload, now) if goal.session_id else None

        return await self._apply("goal", session, [
            (
                """
                INSERT INTO goals (session_id, name, value, path, timestamp, metadata)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    goal.session_id, goal.name, goal.value, goal.path,
                    format_timestamp(goal.timestamp), goal.metadata,
                ],
            ),
            RollupStore.increment_statement(Metric.GOALS, utc_date(goal.timestamp)),
        ])
