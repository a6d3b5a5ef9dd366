"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Comma-separated, e.g. http://localhost:5173,https://shop.example.com. Empty = built-in list.
    cors_origins: str = ""
    # Trusted proxy IPs (comma-separated). Used for X-Forwarded-For in production.
    trusted_proxy_ips: str = ""
    public_base_url: str = "http://localhost:5173"

    # ===========================================
    # DATABASE
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS
    # ===========================================
    redis_url: str  # Required, no default

    # ===========================================
    # SESSIONS
    # ===========================================
    session_secret: str  # Required, no default
    session_cookie_name: str = "storefront_session"
    session_ttl: int = 7 * 24 * 3600
    session_cookie_secure: bool = False  # Set True in production (HTTPS)
    session_cookie_samesite: str = "lax"

    # Login rate limit (brute-force protection)
    login_rate_limit_attempts: int = 5
    login_rate_limit_window_seconds: int = 900  # 15 min

    # ===========================================
    # CAPTCHA
    # ===========================================
    captcha_store_backend: str = "redis"  # redis, memory
    captcha_challenge_ttl_seconds: int = 300  # 5 min
    captcha_grid_size: int = 9
    captcha_min_matches: int = 2
    captcha_max_matches: int = 4
    captcha_clearance_ttl_seconds: int = 600

    # ===========================================
    # PRICING & ENTITLEMENTS
    # ===========================================
    yearly_discount: float = 0.85
    monthly_period_days: int = 30
    yearly_period_days: int = 365

    # ===========================================
    # CHECKOUT PROVIDER (Stripe-compatible REST API)
    # ===========================================
    checkout_api_key: str = ""  # Empty = payments disabled
    checkout_currency: str = "eur"
    checkout_webhook_secret: str = ""
    checkout_webhook_tolerance_seconds: int = 300

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30
    cb_state_backend: str = "memory"  # memory, redis

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("captcha_store_backend", "cb_state_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("redis", "memory"):
            raise ValueError("backend must be 'redis' or 'memory'")
        return v

    @field_validator("captcha_grid_size")
    @classmethod
    def validate_grid_size(cls, v: int) -> int:
        """A grid needs room for at least one match and one distractor."""
        if v < 2:
            raise ValueError("captcha_grid_size must be at least 2")
        return v

    @field_validator("session_secret")
    @classmethod
    def validate_session_secret(cls, v: str) -> str:
        """Ensure session secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("session_secret must be at least 16 characters")
        if v in ("changeme", "secret", "password", "admin"):
            raise ValueError("session_secret is too weak, please change it")
        return v

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @property
    def payments_enabled(self) -> bool:
        return bool(self.checkout_api_key)

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
