from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    database_url: str = "sqlite:///./runclub.db"
    log_level: str = "INFO"

    # Identity provider token verification
    jwt_secret: str = "dev-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"
    admin_emails: list[str] = []

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    currency: str = "mxn"

    vapid_public_key: str = ""
    vapid_private_key: str = ""
    vapid_email: str = "mailto:admin@runclub.local"
    push_max_workers: int = 8

    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    club_name: str = "Run Club"

    frontend_url: str = "http://localhost:3000"
    success_path: str = "/pago/exito"
    cancel_path: str = "/pago/cancelado"

    reconciliation_interval_seconds: int = 300
    rate_limit_enabled: bool = True
    allowed_hosts: list[str] = ["*"]

    @property
    def success_url(self) -> str:
        return f"{self.frontend_url}{self.success_path}?session_id={{CHECKOUT_SESSION_ID}}"

    @property
    def cancel_url(self) -> str:
        return f"{self.frontend_url}{self.cancel_path}"

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
