"""
Configuration for site analytics.
"""
import hashlib
import logging
import os
import secrets
import warnings
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Passkey security constants
MIN_PASSKEY_LENGTH = 16

DEFAULT_GEOLOCATION_URL = "https://ipapi.co/{ip}/json/"


class PasskeyTooShortError(ValueError):
    """Raised when a passkey doesn't meet minimum length requirements."""
    pass


def validate_passkey_strength(passkey: str) -> None:
    """Validate passkey meets security requirements.

    Raises:
        PasskeyTooShortError: If passkey is shorter than MIN_PASSKEY_LENGTH
    """
    if len(passkey) < MIN_PASSKEY_LENGTH:
        raise PasskeyTooShortError(
            f"Passkey must be at least {MIN_PASSKEY_LENGTH} characters. "
            f"Got {len(passkey)} characters."
        )


def hash_passkey(passkey: str, validate: bool = True) -> str:
    """Hash a passkey using PBKDF2-SHA256.

    Returns a string in format: pbkdf2:iterations:salt_hex:hash_hex

    Use this function to generate a hashed passkey for the config:

        from site_analytics.config import hash_passkey
        print(hash_passkey("your-secret-passkey"))

    Raises:
        PasskeyTooShortError: If validate=True and passkey is too short
    """
    if validate:
        validate_passkey_strength(passkey)

    salt = os.urandom(16)
    iterations = 100_000
    dk = hashlib.pbkdf2_hmac("sha256", passkey.encode(), salt, iterations)
    return f"pbkdf2:{iterations}:{salt.hex()}:{dk.hex()}"


def verify_passkey(stored: str, provided: str) -> bool:
    """Verify a passkey using timing-safe comparison.

    Handles both hashed (pbkdf2:...) and legacy plaintext passkeys.
    """
    if stored.startswith("pbkdf2:"):
        try:
            _, iterations_str, salt_hex, hash_hex = stored.split(":")
            iterations = int(iterations_str)
            salt = bytes.fromhex(salt_hex)
            expected_hash = bytes.fromhex(hash_hex)

            dk = hashlib.pbkdf2_hmac("sha256", provided.encode(), salt, iterations)
            return secrets.compare_digest(dk, expected_hash)
        except (ValueError, TypeError):
            return False
    else:
        # Legacy plaintext passkey
        return secrets.compare_digest(stored.encode(), provided.encode())


def _env_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class AnalyticsConfig:
    """Configuration for a single analytics instance."""

    # Required
    site_name: str  # Domain identifier (e.g., "example.dev")

    # Storage: Cloudflare D1 when all three ids are set, local SQLite otherwise
    d1_database_id: str | None = None
    cf_account_id: str | None = None
    cf_api_token: str | None = None
    sqlite_path: str = "analytics.sqlite3"

    # Shared-secret gate for the read endpoints
    passkey: str | None = None

    # Session settings
    session_timeout_minutes: int = 30

    # IP geolocation collaborator
    geolocation_url: str = DEFAULT_GEOLOCATION_URL
    geolocation_timeout_seconds: float = 3.0

    # HTTP surface
    api_prefix: str = "/api/analytics"
    cors_origins: list[str] = field(default_factory=list)
    default_period: str = "7d"

    debug: bool = False

    @property
    def has_auth(self) -> bool:
        """Check if the read endpoints are gated."""
        return bool(self.passkey)

    @property
    def uses_d1(self) -> bool:
        """Check if Cloudflare D1 storage is configured."""
        return bool(self.d1_database_id and self.cf_account_id and self.cf_api_token)

    @property
    def is_passkey_hashed(self) -> bool:
        """Check if the passkey is properly hashed."""
        return bool(self.passkey and self.passkey.startswith("pbkdf2:"))

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.session_timeout_minutes <= 0:
            raise ValueError(
                f"session_timeout_minutes must be positive, got {self.session_timeout_minutes}"
            )
        self._validate_passkey()

    def _validate_passkey(self) -> None:
        """Warn about plaintext or short passkeys."""
        if not self.passkey:
            return

        if self.passkey.startswith("pbkdf2:"):
            logger.debug(f"Site {self.site_name}: Using hashed passkey")
        else:
            warnings.warn(
                f"Site {self.site_name}: Using plaintext passkey is deprecated. "
                f"Use hash_passkey() to generate a hashed passkey:\n"
                f"  from site_analytics.config import hash_passkey\n"
                f"  print(hash_passkey('your-passkey'))",
                DeprecationWarning,
                stacklevel=3
            )
            if len(self.passkey) < MIN_PASSKEY_LENGTH:
                logger.warning(
                    f"Site {self.site_name}: Passkey is shorter than "
                    f"recommended {MIN_PASSKEY_LENGTH} characters"
                )

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "AnalyticsConfig":
        """Build a config from ANALYTICS_* environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            site_name=env.get("ANALYTICS_SITE_NAME", "localhost"),
            d1_database_id=env.get("ANALYTICS_D1_DATABASE_ID") or None,
            cf_account_id=env.get("ANALYTICS_CF_ACCOUNT_ID") or None,
            cf_api_token=env.get("ANALYTICS_CF_API_TOKEN") or None,
            sqlite_path=env.get("ANALYTICS_DB", "analytics.sqlite3"),
            passkey=env.get("ANALYTICS_PASSKEY") or None,
            session_timeout_minutes=int(env.get("ANALYTICS_SESSION_TIMEOUT_MINUTES", "30")),
            geolocation_url=env.get("ANALYTICS_GEOLOCATION_URL", DEFAULT_GEOLOCATION_URL),
            geolocation_timeout_seconds=float(env.get("ANALYTICS_GEOLOCATION_TIMEOUT", "3.0")),
            api_prefix=env.get("ANALYTICS_API_PREFIX", "/api/analytics"),
            cors_origins=_env_list(env.get("ANALYTICS_CORS_ALLOW_ORIGINS")),
            default_period=env.get("ANALYTICS_DEFAULT_PERIOD", "7d"),
            debug=env.get("ANALYTICS_DEBUG", "").lower() in ("1", "true", "yes"),
        )
