"""
Twilio conference adapter.

Lists in-progress conferences and completes them through the Twilio REST API.
Server-side failures (5xx) and transport errors are retried with exponential
backoff; client errors propagate on the first attempt.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import urljoin

import httpx

from conference_cleanup.shared.logging import get_logger
from conference_cleanup.telephony.config import TelephonyConfig, get_telephony_config
from conference_cleanup.telephony.interface import (
    Conference,
    ConferenceListError,
    ConferenceProvider,
    ConferenceStatus,
    ConferenceTerminationError,
    TelephonyProviderError,
    TelephonyRequestError,
)

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

TWILIO_CONFERENCE_STATUS_MAP: dict[str, ConferenceStatus] = {
    "init": ConferenceStatus.INIT,
    "in-progress": ConferenceStatus.IN_PROGRESS,
    "completed": ConferenceStatus.COMPLETED,
}


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep:
        return "*" * len(s)
    return f"{s[:keep]}***"


def parse_twilio_datetime(value: str | None) -> datetime | None:
    """Parse Twilio's RFC 2822 timestamps (ISO 8601 accepted as well)."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unparseable Twilio timestamp", extra={"value": value})
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def conference_from_payload(payload: dict[str, Any]) -> Conference:
    sid = payload.get("sid") or ""
    participants = payload.get("participants_count") or payload.get("participant_count") or 0
    try:
        participant_count = int(participants)
    except (TypeError, ValueError):
        participant_count = 0
    return Conference(
        sid=sid,
        friendly_name=payload.get("friendly_name") or sid,
        status=TWILIO_CONFERENCE_STATUS_MAP.get(
            str(payload.get("status", "")).lower(), ConferenceStatus.IN_PROGRESS
        ),
        date_created=parse_twilio_datetime(payload.get("date_created")),
        participant_count=participant_count,
        raw=payload,
    )


class TwilioConferenceAdapter(ConferenceProvider):
    """Twilio conference adapter backed by an httpx.AsyncClient."""

    def __init__(
        self,
        config: TelephonyConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._config = config or get_telephony_config()
        self._http_client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep

    @property
    def is_configured(self) -> bool:
        return self._config.is_configured

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.request_timeout_seconds),
            )
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _get_auth(self) -> tuple[str, str]:
        return (self._config.twilio_account_sid, self._config.twilio_auth_token)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        error_cls: type[TelephonyProviderError],
        data: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request, retrying 5xx and transport errors with backoff."""
        client = self._get_client()
        max_attempts = self._config.max_attempts
        delay = self._config.initial_retry_delay_seconds

        for attempt in range(1, max_attempts + 1):
            try:
                response = await client.request(method, url, data=data, auth=self._get_auth())
            except httpx.TransportError as e:
                if attempt >= max_attempts:
                    logger.error(
                        "Twilio request failed after retries",
                        extra={"url": url, "attempts": attempt, "error": str(e)},
                    )
                    raise TelephonyRequestError(
                        message=f"Twilio request failed: {e}",
                        error_code="HTTP_ERROR",
                    ) from e
                logger.warning(
                    "Twilio request error; retrying",
                    extra={"url": url, "attempt": attempt, "delay_seconds": delay, "error": str(e)},
                )
                await self._sleep(delay)
                delay *= 2
                continue

            if response.status_code >= 500 and attempt < max_attempts:
                logger.warning(
                    "Twilio server error; retrying",
                    extra={
                        "url": url,
                        "attempt": attempt,
                        "status_code": response.status_code,
                        "delay_seconds": delay,
                    },
                )
                await self._sleep(delay)
                delay *= 2
                continue

            if response.is_error:
                raise self._api_error(error_cls, response)
            return response

        # Unreachable: the loop either returns or raises on the last attempt.
        raise error_cls(message="Twilio retry loop exhausted")

    @staticmethod
    def _api_error(
        error_cls: type[TelephonyProviderError],
        response: httpx.Response,
    ) -> TelephonyProviderError:
        error_data: dict[str, Any] = {}
        try:
            body = response.json()
            if isinstance(body, dict):
                error_data = body
        except ValueError:
            pass

        message = error_data.get("message") or f"Twilio API error: {response.status_code}"
        logger.error(
            "Twilio API error",
            extra={"status_code": response.status_code, "error": error_data},
        )
        return error_cls(
            message=message,
            error_code=str(error_data.get("code", response.status_code)),
            status_code=response.status_code,
            provider_response=error_data,
        )

    async def list_active_conferences(self) -> list[Conference]:
        if not self.is_configured:
            logger.warning("Twilio credentials not configured; no conferences listed")
            return []

        conferences: list[Conference] = []
        next_url: str | None = self._config.account_url("/Conferences.json?Status=in-progress")
        pages = 0

        while next_url:
            response = await self._request("GET", next_url, error_cls=ConferenceListError)
            data = response.json()
            conferences.extend(conference_from_payload(c) for c in data.get("conferences") or [])
            pages += 1

            next_page_uri = data.get("next_page_uri")
            # next_page_uri is host-relative (it already carries the API version)
            next_url = urljoin(self._config.api_base_url, next_page_uri) if next_page_uri else None

        logger.debug(
            "Fetched active conferences",
            extra={"count": len(conferences), "pages": pages},
        )
        return conferences

    async def terminate_conference(self, conference_sid: str) -> bool:
        if not self.is_configured:
            logger.warning(
                "Twilio credentials not configured; termination skipped",
                extra={"conference_sid": conference_sid},
            )
            return False

        url = self._config.account_url(f"/Conferences/{conference_sid}.json")
        logger.info(
            "Terminating Twilio conference",
            extra={
                "conference_sid": conference_sid,
                "account_sid": _mask(self._config.twilio_account_sid),
            },
        )
        await self._request(
            "POST",
            url,
            data={"Status": ConferenceStatus.COMPLETED.value},
            error_cls=ConferenceTerminationError,
        )
        return True
