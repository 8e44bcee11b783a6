"""
Telephony provider configuration.

Credentials are read from the standard Twilio variables
(TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN) or their TELEPHONY_-prefixed form.
"""

from enum import Enum

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported telephony provider types."""

    TWILIO = "twilio"
    MOCK = "mock"


class TelephonyConfig(BaseSettings):
    """Telephony provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="TELEPHONY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Provider selection
    provider_type: ProviderType = Field(default=ProviderType.TWILIO)

    # Provider credentials
    twilio_account_sid: str = Field(
        default="",
        validation_alias=AliasChoices(
            "twilio_account_sid", "TWILIO_ACCOUNT_SID", "TELEPHONY_TWILIO_ACCOUNT_SID"
        ),
    )
    twilio_auth_token: str = Field(
        default="",
        validation_alias=AliasChoices(
            "twilio_auth_token", "TWILIO_AUTH_TOKEN", "TELEPHONY_TWILIO_AUTH_TOKEN"
        ),
    )

    # REST API
    api_base_url: str = Field(default="https://api.twilio.com/2010-04-01")
    request_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    # Retry policy for 5xx / network failures
    max_attempts: int = Field(default=3, ge=1, le=10)
    initial_retry_delay_seconds: float = Field(default=1.0, ge=0)

    @property
    def is_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token)

    def account_url(self, path: str = "") -> str:
        base = self.api_base_url.rstrip("/")
        return f"{base}/Accounts/{self.twilio_account_sid}{path}"


def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
