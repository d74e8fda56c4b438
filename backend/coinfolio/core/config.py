"""
Configuration management.
Loads from config_local.py (gitignored) for secrets, falling back to
COINFOLIO_* environment variables and then to defaults.
"""
import os
from typing import Optional


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"COINFOLIO_{name}", default)


def _env_int(name: str, default: int) -> int:
    value = _env(name)
    return int(value) if value not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: list[str]) -> list[str]:
    value = _env(name)
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_TITLE = "Coinfolio API"
APP_VERSION = "1.0.0"

# Try to import local config (gitignored)
try:
    from coinfolio.config_local import (
        DATABASE_DSN,
        SESSION_COOKIE_NAME,
        SESSION_SECRET,
        MARKET_DATA_BASE_URL,
        CORS_ORIGINS,
        DEBUG,
    )
    # Tuning knobs are optional in config_local
    try:
        from coinfolio.config_local import (
            DB_POOL_SIZE,
            DB_MAX_OVERFLOW,
            DB_POOL_TIMEOUT,
            SESSION_EXPIRY_HOURS,
            SESSION_REMEMBER_ME_DAYS,
            SESSION_COOKIE_SECURE,
            PASSWORD_BCRYPT_ROUNDS,
            TOKEN_HASH_ITERATIONS,
            MARKET_DATA_TIMEOUT_SECONDS,
            MARKET_DATA_CACHE_TTL_SECONDS,
            MARKET_DATA_CACHE_MAX_ENTRIES,
            MARKET_DATA_RATE_PER_MINUTE,
            MARKET_DATA_RATE_BURST,
            MARKET_DATA_RATE_MAX_WAIT_SECONDS,
            API_RATE_LIMIT,
            API_RATE_WINDOW_SECONDS,
            AUTH_RATE_LIMIT,
            AUTH_RATE_WINDOW_SECONDS,
            PRICE_REFRESH_INTERVAL_MINUTES,
            SESSION_CLEANUP_INTERVAL_MINUTES,
            ENABLE_SCHEDULER,
            LOG_LEVEL,
        )
    except ImportError:
        DB_POOL_SIZE = 10
        DB_MAX_OVERFLOW = 0
        DB_POOL_TIMEOUT = 30
        SESSION_EXPIRY_HOURS = 24
        SESSION_REMEMBER_ME_DAYS = 30
        SESSION_COOKIE_SECURE = not DEBUG
        PASSWORD_BCRYPT_ROUNDS = 12
        TOKEN_HASH_ITERATIONS = 1
        MARKET_DATA_TIMEOUT_SECONDS = 10.0
        MARKET_DATA_CACHE_TTL_SECONDS = 300
        MARKET_DATA_CACHE_MAX_ENTRIES = 1024
        MARKET_DATA_RATE_PER_MINUTE = 60
        MARKET_DATA_RATE_BURST = 10
        MARKET_DATA_RATE_MAX_WAIT_SECONDS = 10.0
        API_RATE_LIMIT = 100
        API_RATE_WINDOW_SECONDS = 900
        AUTH_RATE_LIMIT = 10
        AUTH_RATE_WINDOW_SECONDS = 900
        PRICE_REFRESH_INTERVAL_MINUTES = 5
        SESSION_CLEANUP_INTERVAL_MINUTES = 60
        ENABLE_SCHEDULER = True
        LOG_LEVEL = "INFO"
except ImportError:
    # Environment-driven defaults (suitable for local development and tests)
    DATABASE_DSN: str = _env("DATABASE_DSN", "sqlite:///./coinfolio.db")
    DB_POOL_SIZE: int = _env_int("DB_POOL_SIZE", 10)  # Bounded pool, bursts queue for a free connection
    DB_MAX_OVERFLOW: int = _env_int("DB_MAX_OVERFLOW", 0)
    DB_POOL_TIMEOUT: int = _env_int("DB_POOL_TIMEOUT", 30)
    SESSION_COOKIE_NAME: str = _env("SESSION_COOKIE_NAME", "coinfolio_session")
    SESSION_SECRET: Optional[str] = _env("SESSION_SECRET")
    SESSION_EXPIRY_HOURS: int = _env_int("SESSION_EXPIRY_HOURS", 24)
    SESSION_REMEMBER_ME_DAYS: int = _env_int("SESSION_REMEMBER_ME_DAYS", 30)
    DEBUG: bool = _env_bool("DEBUG", False)
    SESSION_COOKIE_SECURE: bool = _env_bool("SESSION_COOKIE_SECURE", not DEBUG)
    PASSWORD_BCRYPT_ROUNDS: int = _env_int("PASSWORD_BCRYPT_ROUNDS", 12)
    TOKEN_HASH_ITERATIONS: int = _env_int("TOKEN_HASH_ITERATIONS", 1)  # Tokens are high-entropy, one round is enough
    MARKET_DATA_BASE_URL: str = _env("MARKET_DATA_BASE_URL", "https://api.coinpaprika.com/v1")
    MARKET_DATA_TIMEOUT_SECONDS: float = float(_env("MARKET_DATA_TIMEOUT_SECONDS", "10"))
    MARKET_DATA_CACHE_TTL_SECONDS: int = _env_int("MARKET_DATA_CACHE_TTL_SECONDS", 300)
    MARKET_DATA_CACHE_MAX_ENTRIES: int = _env_int("MARKET_DATA_CACHE_MAX_ENTRIES", 1024)
    MARKET_DATA_RATE_PER_MINUTE: int = _env_int("MARKET_DATA_RATE_PER_MINUTE", 60)
    MARKET_DATA_RATE_BURST: int = _env_int("MARKET_DATA_RATE_BURST", 10)
    MARKET_DATA_RATE_MAX_WAIT_SECONDS: float = float(_env("MARKET_DATA_RATE_MAX_WAIT_SECONDS", "10"))
    API_RATE_LIMIT: int = _env_int("API_RATE_LIMIT", 100)
    API_RATE_WINDOW_SECONDS: int = _env_int("API_RATE_WINDOW_SECONDS", 900)
    AUTH_RATE_LIMIT: int = _env_int("AUTH_RATE_LIMIT", 10)
    AUTH_RATE_WINDOW_SECONDS: int = _env_int("AUTH_RATE_WINDOW_SECONDS", 900)
    PRICE_REFRESH_INTERVAL_MINUTES: int = _env_int("PRICE_REFRESH_INTERVAL_MINUTES", 5)
    SESSION_CLEANUP_INTERVAL_MINUTES: int = _env_int("SESSION_CLEANUP_INTERVAL_MINUTES", 60)
    ENABLE_SCHEDULER: bool = _env_bool("ENABLE_SCHEDULER", True)
    CORS_ORIGINS: list[str] = _env_list(
        "CORS_ORIGINS",
        [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
    )
    LOG_LEVEL: str = _env("LOG_LEVEL", "INFO")


def get_settings():
    """Return settings object (for FastAPI dependency injection if needed)."""
    return type("Settings", (), {
        "app_title": APP_TITLE,
        "app_version": APP_VERSION,
        "database_dsn": DATABASE_DSN,
        "db_pool_size": DB_POOL_SIZE,
        "db_max_overflow": DB_MAX_OVERFLOW,
        "db_pool_timeout": DB_POOL_TIMEOUT,
        "session_cookie_name": SESSION_COOKIE_NAME,
        "session_secret": SESSION_SECRET,
        "session_expiry_hours": SESSION_EXPIRY_HOURS,
        "session_remember_me_days": SESSION_REMEMBER_ME_DAYS,
        "session_cookie_secure": SESSION_COOKIE_SECURE,
        "password_bcrypt_rounds": PASSWORD_BCRYPT_ROUNDS,
        "token_hash_iterations": TOKEN_HASH_ITERATIONS,
        "market_data_base_url": MARKET_DATA_BASE_URL,
        "market_data_timeout_seconds": MARKET_DATA_TIMEOUT_SECONDS,
        "market_data_cache_ttl_seconds": MARKET_DATA_CACHE_TTL_SECONDS,
        "market_data_cache_max_entries": MARKET_DATA_CACHE_MAX_ENTRIES,
        "market_data_rate_per_minute": MARKET_DATA_RATE_PER_MINUTE,
        "market_data_rate_burst": MARKET_DATA_RATE_BURST,
        "market_data_rate_max_wait_seconds": MARKET_DATA_RATE_MAX_WAIT_SECONDS,
        "api_rate_limit": API_RATE_LIMIT,
        "api_rate_window_seconds": API_RATE_WINDOW_SECONDS,
        "auth_rate_limit": AUTH_RATE_LIMIT,
        "auth_rate_window_seconds": AUTH_RATE_WINDOW_SECONDS,
        "price_refresh_interval_minutes": PRICE_REFRESH_INTERVAL_MINUTES,
        "session_cleanup_interval_minutes": SESSION_CLEANUP_INTERVAL_MINUTES,
        "enable_scheduler": ENABLE_SCHEDULER,
        "cors_origins": CORS_ORIGINS,
        "debug": DEBUG,
        "log_level": LOG_LEVEL,
    })()
