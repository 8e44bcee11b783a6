"""
Mock conference provider for local runs and testing.

Holds conferences in memory; terminating one removes it from the active set.
"""

from datetime import datetime, timezone

from conference_cleanup.shared.logging import get_logger
from conference_cleanup.telephony.interface import (
    Conference,
    ConferenceListError,
    ConferenceProvider,
    ConferenceStatus,
    ConferenceTerminationError,
)

logger = get_logger(__name__)


class MockConferenceAdapter(ConferenceProvider):
    """Mock conference provider for testing."""

    def __init__(self, configured: bool = True) -> None:
        self._configured = configured
        self._conferences: dict[str, Conference] = {}
        self._terminated: list[str] = []
        self._list_calls: int = 0
        self._terminate_attempts: list[str] = []
        self._fail_sids: dict[str, str] = {}
        self._list_error: str | None = None

    def reset(self) -> None:
        self._conferences.clear()
        self._terminated.clear()
        self._terminate_attempts.clear()
        self._fail_sids.clear()
        self._list_error = None
        self._list_calls = 0

    def add_conference(
        self,
        sid: str,
        friendly_name: str | None = None,
        date_created: datetime | None = None,
        participant_count: int = 2,
    ) -> Conference:
        conference = Conference(
            sid=sid,
            friendly_name=friendly_name or sid,
            status=ConferenceStatus.IN_PROGRESS,
            date_created=date_created or datetime.now(timezone.utc),
            participant_count=participant_count,
        )
        self._conferences[sid] = conference
        return conference

    def configure_failure(self, conference_sid: str, error_message: str = "Mock failure") -> None:
        self._fail_sids[conference_sid] = error_message

    def configure_list_failure(self, error_message: str | None = "Mock list failure") -> None:
        self._list_error = error_message

    @property
    def is_configured(self) -> bool:
        return self._configured

    @property
    def terminated(self) -> list[str]:
        return self._terminated.copy()

    @property
    def terminate_attempts(self) -> list[str]:
        return self._terminate_attempts.copy()

    @property
    def list_calls(self) -> int:
        return self._list_calls

    async def list_active_conferences(self) -> list[Conference]:
        if not self._configured:
            return []
        self._list_calls += 1
        if self._list_error is not None:
            raise ConferenceListError(message=self._list_error, error_code="MOCK_ERROR")
        return list(self._conferences.values())

    async def terminate_conference(self, conference_sid: str) -> bool:
        if not self._configured:
            return False
        self._terminate_attempts.append(conference_sid)
        logger.info("Mock: terminating conference", extra={"conference_sid": conference_sid})

        if conference_sid in self._fail_sids:
            raise ConferenceTerminationError(
                message=self._fail_sids[conference_sid],
                error_code="MOCK_ERROR",
                status_code=500,
            )

        self._conferences.pop(conference_sid, None)
        self._terminated.append(conference_sid)
        return True
