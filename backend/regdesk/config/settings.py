# /regdesk/config/settings.py

import sys
from typing import Annotated, List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode


class Settings(BaseSettings):
    # Twilio WhatsApp transport
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_messaging_service_sid: str
    twilio_api_base_url: str = "https://api.twilio.com/2010-04-01"
    twilio_validate_signature: bool = True
    whatsapp_address_prefix: str = "whatsapp:"
    public_base_url: Optional[str] = None
    status_callback_url: Optional[str] = None

    # Downstream application services (one creation endpoint per service type)
    applications_api_url: str = "http://localhost:3000/api/v1"
    submission_timeout_seconds: float = 10.0
    submission_max_attempts: int = 3
    submission_retry_backoff_seconds: float = 1.0

    # Outbound delivery
    delivery_timeout_seconds: float = 15.0
    operator_whatsapp_number: Optional[str] = None

    # Session state
    session_backend: str = "memory"
    redis_url: str = "redis://localhost:6379"
    session_ttl_seconds: int = 1800
    session_sweep_interval_seconds: int = 300
    duplicate_window_seconds: int = 300
    session_lock_timeout_seconds: Optional[int] = None

    # Security
    api_key: Optional[str] = None

    # Deployment
    environment: str = "production"
    workers: int = 1
    cors_allowed_origins: Annotated[List[str], NoDecode] = Field(
        default=[
            "https://company-reg-admin.vercel.app",
            "http://localhost:5173",
        ]
    )

    # Observability
    alerting_webhook_url: Optional[str] = None

    # App Metadata & Limits
    api_version: str = "v1"
    rate_limit_per_minute: int = 120

    # ---------------- Validators ---------------- #

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def parse_cors_allowed_origins(cls, v):
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("twilio_account_sid")
    @classmethod
    def account_sid_shape(cls, v):
        if not v.startswith("AC"):
            raise ValueError("TWILIO_ACCOUNT_SID must start with 'AC'")
        return v

    @field_validator("twilio_messaging_service_sid")
    @classmethod
    def messaging_service_sid_shape(cls, v):
        if not v.startswith("MG"):
            raise ValueError("TWILIO_MESSAGING_SERVICE_SID must start with 'MG'")
        return v

    @field_validator("session_backend")
    @classmethod
    def known_session_backend(cls, v):
        v = v.lower().strip()
        if v not in ("memory", "redis"):
            raise ValueError("SESSION_BACKEND must be 'memory' or 'redis'")
        return v

    @field_validator("session_ttl_seconds", "session_sweep_interval_seconds", "submission_max_attempts")
    @classmethod
    def must_be_positive(cls, v):
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    # ---------------- Derived values ---------------- #

    @property
    def lock_timeout_seconds(self) -> int:
        """
        How long a sender's shared lock may be held. Covers the slowest
        message: every submission attempt timing out with backoff in between,
        then a template send and its plain-text fallback both timing out, with
        room left for the apology sent when handling fails.
        """
        if self.session_lock_timeout_seconds:
            return self.session_lock_timeout_seconds
        attempts = self.submission_max_attempts
        backoff = sum(min(self.submission_retry_backoff_seconds * 2 ** n, 10) for n in range(attempts - 1))
        submission = attempts * self.submission_timeout_seconds + backoff
        delivery = 2 * self.delivery_timeout_seconds
        return int(submission + 2 * delivery)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


def validate_environment(settings_obj: Settings):
    try:
        if settings_obj.environment == "production":
            if not settings_obj.twilio_validate_signature:
                raise ValueError("TWILIO_VALIDATE_SIGNATURE cannot be disabled in production")
            if settings_obj.session_backend == "memory" and settings_obj.workers > 1:
                raise ValueError("The in-memory session backend requires a single worker")
        return settings_obj

    except Exception as e:
        print(f"--- [ERROR] Environment validation failed: {e}")
        sys.exit(1)


settings = Settings()
validate_environment(settings)
