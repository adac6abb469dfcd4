"""Application configuration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseModel):
    """Polling scheduler configuration."""

    enabled: bool = True

    # Schedule slippage is bounded by this interval
    poll_interval_seconds: float = 30.0

    # Pause after an unexpected loop error before polling again
    error_backoff_seconds: float = 5.0


class RetentionSettings(BaseModel):
    """Bounded-memory cleanup configuration."""

    enabled: bool = True
    interval_seconds: float = 300.0

    # Age rules, measured from call_at for scheduled calls
    claimed_max_age_minutes: int = 60
    failed_max_age_minutes: int = 60
    scheduled_max_age_hours: int = 24

    # Age rule for active calls, measured from creation
    active_max_age_hours: int = 2

    # Hard caps
    max_scheduled_calls: int = 1000
    max_active_calls: int = 500


class ScheduleSettings(BaseModel):
    """Submission rules."""

    # How far in the past callAt may be and still be accepted
    max_past_skew_seconds: int = 300

    snooze_minutes: int = 5

    # Timezone used to render spoken due-time labels
    timezone: str = "UTC"


class TwilioSettings(BaseModel):
    """Twilio voice configuration."""

    account_sid: str = ""
    auth_token: str = ""
    from_number: str = ""

    # Public base URL Twilio uses to reach our webhooks and audio
    base_url: str = "http://localhost:8080"

    voice: str = "Polly.Joanna"
    language: str = "en-US"
    alert_audio_path: str = "/audio/alert.mp3"
    gather_timeout_seconds: int = 10
    timeout_seconds: float = 30.0


class WebhookSettings(BaseModel):
    """Webhook security configuration."""

    validate_signatures: bool = True


class TelephonySettings(BaseModel):
    """Telephony subsystem configuration."""

    # Call dispatcher: mock, twilio
    provider: str = "mock"
    twilio: TwilioSettings = Field(default_factory=TwilioSettings)
    webhooks: WebhookSettings = Field(default_factory=WebhookSettings)


class Settings(BaseSettings):
    """Application settings.

    Loaded from:
    1. Environment variables (RD_*)
    2. configs/{environment}.yaml
    3. configs/default.yaml
    """

    model_config = SettingsConfigDict(
        env_prefix="RD_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    instance_id: str = ""

    # Environment
    environment: str = "development"
    debug: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Subsystems
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    telephony: TelephonySettings = Field(default_factory=TelephonySettings)

    @property
    def webhook_validate_signatures(self) -> bool:
        """Whether to validate webhook signatures."""
        return self.telephony.webhooks.validate_signatures

    @property
    def twilio_auth_token(self) -> str | None:
        """Twilio auth token for signature validation."""
        return self.telephony.twilio.auth_token or None


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings object loaded from config files and environment.
    """
    import os
    from dynaconf import Dynaconf

    config_dir = Path("configs")
    env = os.getenv("RD_ENV", "development")

    settings_files = []
    if (config_dir / "default.yaml").exists():
        settings_files.append(str(config_dir / "default.yaml"))
    if (config_dir / f"{env}.yaml").exists():
        settings_files.append(str(config_dir / f"{env}.yaml"))

    dynaconf = Dynaconf(
        envvar_prefix="RD",
        settings_files=settings_files,
        load_dotenv=True,
    )

    config_dict: dict[str, Any] = {}
    for key in dynaconf.keys():
        if not key.startswith("_"):
            config_dict[key.lower()] = dynaconf[key]

    config_dict["environment"] = env

    if not config_dict.get("instance_id"):
        config_dict["instance_id"] = _generate_instance_id()

    return Settings(**config_dict)


def _generate_instance_id() -> str:
    """Derive an instance ID from the hostname."""
    import socket

    return f"rd-{socket.gethostname()}"


def validate_production_settings(settings: Settings) -> list[str]:
    """Validate settings for production readiness.

    Args:
        settings: Application settings to validate.

    Returns:
        List of validation error messages (empty if all valid).
    """
    errors: list[str] = []

    if settings.environment not in ("production", "staging", "prod"):
        return errors

    if settings.telephony.provider != "twilio":
        errors.append("RD_TELEPHONY__PROVIDER must be 'twilio' in production")
        return errors

    twilio = settings.telephony.twilio
    if not twilio.account_sid:
        errors.append("RD_TELEPHONY__TWILIO__ACCOUNT_SID must be set")
    if not twilio.auth_token:
        errors.append("RD_TELEPHONY__TWILIO__AUTH_TOKEN must be set")
    if not twilio.from_number:
        errors.append("RD_TELEPHONY__TWILIO__FROM_NUMBER must be set")
    if twilio.base_url.startswith("http://localhost"):
        errors.append("RD_TELEPHONY__TWILIO__BASE_URL must be a public URL")

    return errors


def require_valid_settings() -> Settings:
    """Get settings and raise if production validation fails.

    Raises:
        ValueError: If production settings are invalid.

    Returns:
        Validated settings.
    """
    settings = get_settings()
    errors = validate_production_settings(settings)

    if errors:
        error_list = "\n  - ".join(errors)
        raise ValueError(
            f"Production configuration errors:\n  - {error_list}"
        )

    return settings
