import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class Settings:
    """Application settings loaded from environment."""

    # Database
    database_url: str = "sqlite:///./elibrary.db"
    database_echo: bool = False

    # JWT
    jwt_key: str = "YourSuperSecretKeyThatIsAtLeast32CharactersLong!"
    jwt_issuer: str = "E-Library-API"
    jwt_audience: str = "E-Library-Client"
    jwt_algorithm: str = "HS256"
    access_token_expire_days: int = 7

    # Email
    smtp_server: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    from_email: str | None = None
    from_name: str = "Libro Library"
    mail_suppress_send: bool = False

    # Storage
    supabase_url: str = ""
    supabase_service_role_key: str | None = None

    # App
    frontend_urls: list[str] = field(default_factory=lambda: [
        "http://localhost:3000",
        "http://localhost:5173",
    ])
    email_verification_expiry_hours: int = 24
    invalidate_previous_codes: bool = True
    log_level: str = "INFO"

    @property
    def email_configured(self) -> bool:
        return bool(self.smtp_server and self.smtp_username and self.smtp_password and self.from_email)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        frontend_urls = os.getenv("FRONTEND_URLS")
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_echo=_env_bool("DATABASE_ECHO", "false"),
            jwt_key=os.getenv("JWT_KEY", cls.jwt_key),
            jwt_issuer=os.getenv("JWT_ISSUER", cls.jwt_issuer),
            jwt_audience=os.getenv("JWT_AUDIENCE", cls.jwt_audience),
            access_token_expire_days=int(os.getenv("ACCESS_TOKEN_EXPIRE_DAYS", cls.access_token_expire_days)),
            smtp_server=os.getenv("SMTP_SERVER"),
            smtp_port=int(os.getenv("SMTP_PORT", cls.smtp_port)),
            smtp_username=os.getenv("SMTP_USERNAME"),
            smtp_password=os.getenv("SMTP_PASSWORD"),
            from_email=os.getenv("FROM_EMAIL"),
            from_name=os.getenv("FROM_NAME", cls.from_name),
            mail_suppress_send=_env_bool("MAIL_SUPPRESS_SEND", "false"),
            supabase_url=os.getenv("SUPABASE_URL", cls.supabase_url).rstrip("/"),
            supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
            frontend_urls=(
                [url.strip() for url in frontend_urls.split(",") if url.strip()]
                if frontend_urls
                else cls().frontend_urls
            ),
            email_verification_expiry_hours=int(
                os.getenv("EMAIL_VERIFICATION_EXPIRY_HOURS", cls.email_verification_expiry_hours)
            ),
            invalidate_previous_codes=_env_bool("INVALIDATE_PREVIOUS_CODES", "true"),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings.from_env()
