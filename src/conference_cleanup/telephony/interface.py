"""
Telephony provider interface for conference control.

Conferences are owned by the voice provider; this service only lists the
in-progress ones and can force them into a terminal state.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ConferenceStatus(str, Enum):
    """Conference status values."""

    INIT = "init"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Conference:
    """Read-only view of a provider conference."""

    sid: str
    friendly_name: str
    status: ConferenceStatus = ConferenceStatus.IN_PROGRESS
    date_created: datetime | None = None
    participant_count: int = 0
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def name(self) -> str:
        """Correlation key against call logs; falls back to the sid."""
        return self.friendly_name or self.sid

    def elapsed_seconds(self, now: datetime) -> int:
        """Seconds since creation; 0 when the provider omitted the timestamp."""
        if self.date_created is None:
            return 0
        return max(0, int((now - self.date_created).total_seconds()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "sid": self.sid,
            "friendly_name": self.friendly_name,
            "status": self.status.value,
            "date_created": self.date_created.isoformat() if self.date_created else None,
            "participant_count": self.participant_count,
        }


class TelephonyProviderError(Exception):
    """Base exception for telephony provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.provider_response = provider_response or {}

    @property
    def retryable(self) -> bool:
        return self.status_code is not None and self.status_code >= 500


class ConferenceListError(TelephonyProviderError):
    """Error listing in-progress conferences."""


class ConferenceTerminationError(TelephonyProviderError):
    """Error transitioning a conference to completed."""


class TelephonyRequestError(TelephonyProviderError):
    """Network or timeout failure that outlived every retry attempt."""


class ConferenceProvider(ABC):
    """Abstract interface for conference-capable telephony providers."""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when credentials are present."""
        ...

    @abstractmethod
    async def list_active_conferences(self) -> list[Conference]:
        """Return every in-progress conference, following pagination.

        Returns an empty list when the provider is not configured.
        """
        ...

    @abstractmethod
    async def terminate_conference(self, conference_sid: str) -> bool:
        """Set a conference to completed.

        Returns False (without contacting the provider) when not configured.

        Raises:
            TelephonyProviderError: On a non-retryable failure or once
                retries are exhausted.
        """
        ...

    async def close(self) -> None:
        """Release any held resources."""
        return None
