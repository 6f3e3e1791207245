"""
Configuration for Beacon Analytics.
"""
import hashlib
import logging
import os
import secrets
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Password hashing constants
PBKDF2_ITERATIONS = 100_000
MIN_PASSWORD_LENGTH = 8

DATABASE_BACKENDS = ("sqlite", "d1")


class ConfigError(ValueError):
    """Raised when configuration values are missing or inconsistent."""
    pass


def hash_password(password: str) -> str:
    """Hash an admin password using PBKDF2-SHA256.

    Returns a string in format: pbkdf2:iterations:salt_hex:hash_hex
    """
    salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, PBKDF2_ITERATIONS)
    return f"pbkdf2:{PBKDF2_ITERATIONS}:{salt.hex()}:{dk.hex()}"


def verify_password(stored: str, provided: str) -> bool:
    """Verify a password against a stored hash using timing-safe comparison.

    Malformed stored hashes never verify.
    """
    try:
        scheme, iterations_str, salt_hex, hash_hex = stored.split(":")
        if scheme != "pbkdf2":
            return False
        iterations = int(iterations_str)
        salt = bytes.fromhex(salt_hex)
        expected_hash = bytes.fromhex(hash_hex)
    except (ValueError, TypeError, AttributeError):
        return False

    dk = hashlib.pbkdf2_hmac("sha256", provided.encode(), salt, iterations)
    return secrets.compare_digest(dk, expected_hash)


def _env_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class AnalyticsConfig:
    """Configuration for the analytics service."""

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    # Storage
    database_backend: str = "sqlite"  # sqlite or d1
    database_path: str = "analytics.db"
    d1_database_id: str | None = None
    cf_account_id: str | None = None
    cf_api_token: str | None = None

    # Admin authentication
    admin_email: str | None = None
    admin_password: str | None = None
    admin_session_ttl_hours: int = 168  # 7 days

    # Reads
    query_timeout_seconds: float = 8.0

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.database_backend not in DATABASE_BACKENDS:
            raise ConfigError(
                f"Unknown database backend {self.database_backend!r}. "
                f"Use one of: {', '.join(DATABASE_BACKENDS)}"
            )

        if self.database_backend == "d1" and not self.has_d1_credentials:
            raise ConfigError(
                "The d1 backend needs D1_DATABASE_ID, CF_ACCOUNT_ID and CF_API_TOKEN"
            )

        if self.query_timeout_seconds <= 0:
            raise ConfigError("Query timeout must be positive")

        if self.admin_session_ttl_hours <= 0:
            raise ConfigError("Admin session TTL must be positive")

        self._validate_admin()

    def _validate_admin(self) -> None:
        """Warn about half-configured or weak admin bootstrap credentials."""
        if bool(self.admin_email) != bool(self.admin_password):
            logger.warning("ADMIN_EMAIL and ADMIN_PASSWORD must both be set; admin bootstrap skipped")
        elif self.admin_password and len(self.admin_password) < MIN_PASSWORD_LENGTH:
            logger.warning(
                f"Admin password is shorter than recommended {MIN_PASSWORD_LENGTH} characters"
            )

    @property
    def has_d1_credentials(self) -> bool:
        return bool(self.d1_database_id and self.cf_account_id and self.cf_api_token)

    @property
    def has_admin_bootstrap(self) -> bool:
        """Check if an admin user should be created at startup."""
        return bool(self.admin_email and self.admin_password)

    @classmethod
    def from_env(cls) -> "AnalyticsConfig":
        """Load configuration from environment variables."""
        try:
            return cls(
                host=os.getenv("HOST", "0.0.0.0"),
                port=int(os.getenv("PORT", "3000")),
                cors_origins=_env_list(os.getenv("CORS_ORIGINS", "*")),
                log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
                database_backend=os.getenv("DATABASE_BACKEND", "sqlite").lower(),
                database_path=os.getenv("DATABASE_PATH", "analytics.db"),
                d1_database_id=os.getenv("D1_DATABASE_ID") or None,
                cf_account_id=os.getenv("CF_ACCOUNT_ID") or None,
                cf_api_token=os.getenv("CF_API_TOKEN") or None,
                admin_email=os.getenv("ADMIN_EMAIL") or None,
                admin_password=os.getenv("ADMIN_PASSWORD") or None,
                admin_session_ttl_hours=int(os.getenv("ADMIN_SESSION_TTL_HOURS", "168")),
                query_timeout_seconds=float(os.getenv("QUERY_TIMEOUT_SECONDS", "8")),
            )
        except ValueError as exc:
            if isinstance(exc, ConfigError):
                raise
            raise ConfigError(f"Invalid numeric setting: {exc}") from exc
