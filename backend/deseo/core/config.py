import json
import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Deseo API"
    # Public origin used in magic links, short links and redirects.
    # Empty means "derive from the incoming request".
    app_url: str = ""
    environment: str = "local"
    backend_cors_origins_raw: str = ""  # Comma-separated or JSON array

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "allow",
    }

    @property
    def backend_cors_origins(self) -> list[str]:
        """Parse CORS origins from raw string."""
        raw = os.getenv("BACKEND_CORS_ORIGINS", self.backend_cors_origins_raw).strip()
        if not raw:
            return ["http://localhost:3000", "http://127.0.0.1:3000"]
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
                if isinstance(parsed, list):
                    return [str(item).strip() for item in parsed if str(item).strip()]
            except ValueError:
                pass
        return [item.strip() for item in raw.split(",") if item.strip()]

    # Database: sqlite+aiosqlite:///./deseo.db (dev) | postgresql+asyncpg://... (prod)
    database_url: str = "sqlite+aiosqlite:///./deseo.db"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800
    db_pool_timeout: int = 30

    # SECURITY: override via JWT_SECRET_KEY env var
    jwt_secret_key: str = "CHANGE_ME"
    jwt_algorithm: str = "HS256"
    magic_link_expire_minutes: int = 15
    session_token_expire_minutes: int = 15
    session_cookie_max_age_days: int = 7
    anonymous_cookie_max_age_days: int = 365

    # SMTP settings (optional; without a host mails are only logged)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "no-reply@deseo.app"
    smtp_use_tls: bool = True
    email_from_name: str = "Deseo App"

    rate_limit_enabled: bool = True
    rate_limit_backend: str = "memory"  # memory | redis
    redis_dsn: str = "redis://localhost:6379/0"
    rate_limit_requests: int = 10
    rate_limit_window_seconds: int = 60
    magic_link_rate_limit_requests: int = 5
    magic_link_rate_limit_window_seconds: int = 15 * 60

    log_level: str = "INFO"
    log_file: str = ""

    @property
    def is_local(self) -> bool:
        return (self.environment or "local").lower() == "local"


settings = Settings()
