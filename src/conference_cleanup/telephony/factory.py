"""
Telephony provider factory.

Single source of truth for configuration: TelephonyConfig (Pydantic Settings),
never raw os.getenv("TWILIO_*") here.
"""

from __future__ import annotations

from functools import lru_cache

from conference_cleanup.shared.logging import get_logger
from conference_cleanup.telephony.config import ProviderType, TelephonyConfig
from conference_cleanup.telephony.config import get_telephony_config as _load_telephony_config
from conference_cleanup.telephony.interface import ConferenceProvider
from conference_cleanup.telephony.mock_adapter import MockConferenceAdapter
from conference_cleanup.telephony.twilio_adapter import TwilioConferenceAdapter, _mask

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_telephony_config() -> TelephonyConfig:
    """Return cached TelephonyConfig loaded from OS env + .env."""
    return _load_telephony_config()


def build_conference_provider(cfg: TelephonyConfig) -> ConferenceProvider:
    logger.info(
        "Telephony config resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "twilio_account_sid": _mask(cfg.twilio_account_sid),
            "configured": cfg.is_configured,
            "request_timeout_seconds": cfg.request_timeout_seconds,
            "max_attempts": cfg.max_attempts,
        },
    )

    if cfg.provider_type == ProviderType.TWILIO:
        return TwilioConferenceAdapter(cfg)

    if cfg.provider_type == ProviderType.MOCK:
        return MockConferenceAdapter()

    raise ValueError(f"Unsupported telephony provider_type: {cfg.provider_type}")


@lru_cache(maxsize=1)
def get_conference_provider() -> ConferenceProvider:
    """Create and cache the conference provider."""
    return build_conference_provider(get_telephony_config())
