"""Application configuration."""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Twilio
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_phone_number: str

    # Caller ID used for SMS when the request does not name a sender
    spoof_caller_id: Optional[str] = None

    # When set, direct calls ring this line first and bridge to the target
    operator_phone_number: Optional[str] = None

    # Public URL Twilio uses to reach our webhooks
    base_url: str = "http://localhost:8000"

    # Call sessions
    provider_timeout_seconds: float = 10.0
    session_ttl_seconds: int = 3600
    eviction_interval_seconds: int = 60

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def webhook_base_url(self) -> str:
        """Base URL of the provider webhook routes."""
        return f"{self.base_url.rstrip('/')}/api/spoof/webhook"

    @property
    def default_sender(self) -> str:
        """Sender number for outbound SMS."""
        return self.spoof_caller_id or self.twilio_phone_number


settings = Settings()
