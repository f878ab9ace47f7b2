"""Application configuration loaded from environment variables.

Settings for database, API, signed credentials, mail delivery, and the
validation-token flows. Uses pydantic-settings for validation and .env file
support.
"""

from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "tokengate_dev_password"  # nosec B105

# Minimum length for signing secrets (256 bits = 32 bytes)
_MIN_SIGNING_SECRET_LENGTH = 32

# Refresh credentials live between 5 and 7 days
_MIN_REFRESH_TTL_DAYS = 5
_MAX_REFRESH_TTL_DAYS = 7


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "tokengate"
    database_user: str = "tokengate_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000

    # CORS (Security)
    # CRITICAL: Never set to ["*"] when allow_credentials=True
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    app_name: str = "Tokengate"
    environment: str = "development"
    log_level: str = "INFO"

    # Signed credentials
    # Access and refresh credentials must be signed with different secrets
    access_token_secret: SecretStr = SecretStr("")
    refresh_token_secret: SecretStr = SecretStr("")
    jwt_algorithm: Literal["HS256", "HS384", "HS512"] = "HS512"
    jwt_issuer: str = "tokengate"
    jwt_audience: str = "tokengate-users"
    access_token_ttl_minutes: int = 15
    refresh_token_ttl_days: int = 7

    # Refresh cookie
    refresh_cookie_name: str = "tokengate.refresh-token"
    refresh_cookie_secure: bool = True
    refresh_cookie_samesite: Literal["lax", "strict", "none"] = "strict"
    refresh_cookie_domain: str = ""

    # Email
    email_from: str = "noreply@tokengate.dev"
    resend_api_key: SecretStr = SecretStr("")
    email_timeout_seconds: float = 10.0

    # Frontend URL (links in emails point at frontend pages)
    frontend_url: str = "http://localhost:3000"

    # Flow toggles
    require_verified_email: bool = True
    password_breach_check_enabled: bool = True
    geo_lookup_enabled: bool = True

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "5/15minute")
    rate_limit_credentials: str = "5/15minute"  # login, register, reset
    rate_limit_codes: str = "10/15minute"  # verify-code, resend
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate security requirements.

        Security: Prevents deployment with known insecure defaults.
        Checks:
        - Refresh TTL must stay within 5..7 days (all environments)
        - Access TTL must be positive (all environments)
        - CORS must not use wildcard origin (incompatible with credentials)
        - SameSite=None requires Secure flag (browser requirement)
        - Database password must not be the default in production
        - Signing secrets must be set, >= 32 chars and distinct in production
        """
        if self.refresh_cookie_samesite == "none" and not self.refresh_cookie_secure:
            msg = (
                "REFRESH_COOKIE_SECURE must be true when REFRESH_COOKIE_SAMESITE=none. "
                "Browsers reject SameSite=None cookies without the Secure flag."
            )
            raise ValueError(msg)

        if not (
            _MIN_REFRESH_TTL_DAYS <= self.refresh_token_ttl_days <= _MAX_REFRESH_TTL_DAYS
        ):
            msg = (
                f"REFRESH_TOKEN_TTL_DAYS must be between {_MIN_REFRESH_TTL_DAYS} "
                f"and {_MAX_REFRESH_TTL_DAYS}. Got: {self.refresh_token_ttl_days}"
            )
            raise ValueError(msg)

        if self.access_token_ttl_minutes <= 0:
            msg = (
                "ACCESS_TOKEN_TTL_MINUTES must be positive. "
                f"Got: {self.access_token_ttl_minutes}"
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "The refresh cookie requires credentialed CORS, which is "
                "incompatible with wildcard origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            access = self.access_token_secret.get_secret_value()
            refresh = self.refresh_token_secret.get_secret_value()
            for name, value in (
                ("ACCESS_TOKEN_SECRET", access),
                ("REFRESH_TOKEN_SECRET", refresh),
            ):
                if len(value) < _MIN_SIGNING_SECRET_LENGTH:
                    msg = (
                        f"{name} must be at least {_MIN_SIGNING_SECRET_LENGTH} "
                        'characters in production. Generate with: python -c "import '
                        'secrets; print(secrets.token_hex(32))"'
                    )
                    raise ValueError(msg)
            if access == refresh:
                msg = (
                    "ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ. "
                    "A shared secret lets a leaked refresh credential sign access "
                    "credentials."
                )
                raise ValueError(msg)

        return self


settings = Settings()
