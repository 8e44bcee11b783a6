"""
Pydantic schemas for the conference cleanup admin API.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class CleanupRequest(BaseModel):
    """Optional body for a manual cleanup run."""

    conference_sid: str | None = Field(
        default=None,
        description="Terminate only this conference instead of sweeping all",
    )


class SweepErrorResponse(BaseModel):
    conference_sid: str
    error: str


class SweepDetailResponse(BaseModel):
    conference_sid: str
    conference_name: str
    duration: int = Field(..., description="Seconds since the conference was created")
    action: str


class SweepResultResponse(BaseModel):
    """Outcome of a cleanup run."""

    total_conferences: int
    cleaned_conferences: int
    active_conferences: int
    errors: list[SweepErrorResponse]
    details: list[SweepDetailResponse]


class CleanupStatsResponse(BaseModel):
    last_cleanup: datetime | None = None
    total_cleaned: int = 0
    errors: int = 0


class LongestRunningResponse(BaseModel):
    conference_sid: str
    duration: int
    participant_count: int


class ConferenceResponse(BaseModel):
    sid: str
    friendly_name: str
    status: str
    date_created: datetime | None = None
    participant_count: int = 0


class ActiveConferencesResponse(BaseModel):
    active_count: int
    conferences: list[ConferenceResponse]
    longest_running: LongestRunningResponse | None = None


class ConferenceStatsResponse(BaseModel):
    """Metrics snapshot plus scheduler status."""

    active_count: int
    total_today: int
    average_duration: int
    longest_running: LongestRunningResponse | None = None
    stale_count: int
    cleanup_stats: CleanupStatsResponse
    scheduler_running: bool
    scheduled_cleanups_count: int


class TerminateConferenceResponse(BaseModel):
    conference_sid: str
    terminated: bool
    errors: list[SweepErrorResponse]


class MaxDurationResponse(BaseModel):
    max_conference_duration_hours: float


class SchedulerStatusResponse(BaseModel):
    is_running: bool
    scheduled_cleanups_count: int


class ScheduledCleanupResponse(BaseModel):
    conference_sid: str
    scheduled_at: datetime
    fires_at: datetime

