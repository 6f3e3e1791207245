"""
Admin users and opaque bearer-token sessions.

Only a SHA-256 hash of each token is stored, so a leaked database does not
leak usable tokens.
"""
import hashlib
import logging
import secrets
from datetime import timedelta

from pydantic import BaseModel

from ..config import hash_password, verify_password
from .storage import Database
from .timeutil import format_timestamp, utc_now

logger = logging.getLogger(__name__)


class AdminUser(BaseModel):
    id: int
    email: str


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class AdminStore:
    """Admin credential checks and session token lifecycle."""

    def __init__(self, db: Database, session_ttl_hours: int = 168):
        self.db = db
        self.session_ttl_hours = session_ttl_hours

    async def upsert_admin_user(self, email: str, password: str) -> AdminUser:
        """Create the admin user, or reset its password and reactivate it."""
        now = format_timestamp(utc_now())
        rows = await self.db.query(
            """
            INSERT INTO admin_users (email, password_hash, is_active, created_at, updated_at)
            VALUES (?, ?, 1, ?, ?)
            ON CONFLICT(email) DO UPDATE SET
                password_hash = excluded.password_hash,
                is_active = 1,
                updated_at = excluded.updated_at
            RETURNING id, email
            """,
            [normalize_email(email), hash_password(password), now, now],
        )
        user = AdminUser(id=rows[0]["id"], email=rows[0]["email"])
        logger.info(f"Admin user ready: {user.email}")
        return user

    async def verify_credentials(self, email: str, password: str) -> AdminUser | None:
        """Return the admin user for valid credentials, else None."""
        rows = await self.db.query(
            "SELECT id, email, password_hash, is_active FROM admin_users WHERE email = ?",
            [normalize_email(email)],
        )
        if not rows or not rows[0]["is_active"]:
            return None

        if not verify_password(rows[0]["password_hash"], password):
            return None

        return AdminUser(id=rows[0]["id"], email=rows[0]["email"])

    async def create_session(self, admin_user_id: int) -> str:
        """Issue a new opaque token for an authenticated admin."""
        token = secrets.token_urlsafe(32)
        now = utc_now()
        await self.db.execute(
            """
            INSERT INTO admin_sessions (token_hash, admin_user_id, created_at, expires_at)
            VALUES (?, ?, ?, ?)
            """,
            [
                hash_token(token),
                admin_user_id,
                format_timestamp(now),
                format_timestamp(now + timedelta(hours=self.session_ttl_hours)),
            ],
        )
        return token

    async def validate_token(self, token: str | None) -> bool:
        """Check that a token is known and unexpired."""
        if not token:
            return False
        rows = await self.db.query(
            "SELECT token_hash FROM admin_sessions WHERE token_hash = ? AND expires_at > ?",
            [hash_token(token), format_timestamp(utc_now())],
        )
        return bool(rows)

    async def revoke(self, token: str) -> None:
        """Delete a session. Unknown tokens are ignored."""
        await self.db.execute(
            "DELETE FROM admin_sessions WHERE token_hash = ?",
            [hash_token(token)],
        )

    async def cleanup_expired(self) -> int:
        """Remove expired sessions. Returns count deleted."""
        rows = await self.db.query(
            "DELETE FROM admin_sessions WHERE expires_at <= ? RETURNING token_hash",
            [format_timestamp(utc_now())],
        )
        return len(rows)
