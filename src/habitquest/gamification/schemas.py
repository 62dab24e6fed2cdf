"""Pydantic request/response models for gamification endpoints."""

from __future__ import annotations

from datetime import date, datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from habitquest.gamification.enums import ChallengeDifficulty, ChallengeTargetType


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- Habit completion ---


class CompleteHabitRequest(BaseModel):
    on_date: date | None = None
    value: int = Field(default=1, ge=1)
    notes: str | None = Field(default=None, max_length=2000)

    @field_validator("on_date")
    @classmethod
    def _not_in_future(cls, v: date | None) -> date | None:
        if v is not None and v > datetime.now(timezone.utc).date():
            raise ValueError("on_date cannot be in the future")
        return v


class HabitLogResponse(_FromAttributes):
    id: int
    habit_id: int
    log_date: date
    value: int
    completed: bool
    notes: str | None = None
    xp_earned: int
    created_at: datetime


class StreakResponse(BaseModel):
    current: int
    longest: int


class BadgeSummary(_FromAttributes):
    id: int
    name: str
    tier: str
    rarity: str
    xp_reward: int
    icon: str | None = None
    color: str | None = None


class CompletionResponse(BaseModel):
    log: HabitLogResponse | None
    streak: StreakResponse
    xp_earned: int
    new_total_xp: int
    new_level: int
    new_badges: list[BadgeSummary]
    already_completed: bool


# --- Badges ---


class BadgeStatusResponse(_FromAttributes):
    id: int
    name: str
    description: str
    category: str
    tier: str
    rarity: str
    threshold: int
    xp_reward: int
    icon: str | None = None
    color: str | None = None
    sort_order: int
    state: str
    progress: int
    progress_percent: int
    earned_at: datetime | None = None


class BadgeDetailResponse(BadgeStatusResponse):
    tier_index: int


class BadgeStats(BaseModel):
    total: int
    earned: int
    in_progress: int


class UserBadgesResponse(BaseModel):
    badges: list[BadgeStatusResponse]
    by_category: dict[str, list[BadgeStatusResponse]]
    stats: BadgeStats


class BadgeListResponse(BaseModel):
    badges: list[BadgeStatusResponse]


# --- Challenges ---


class CreateChallengeRequest(BaseModel):
    title: str = Field(min_length=3, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    target_type: ChallengeTargetType
    target_value: int = Field(ge=1, le=365)
    difficulty: ChallengeDifficulty = ChallengeDifficulty.MEDIUM
    xp_reward: int = Field(default=50, ge=0, le=1000)
    start_date: datetime
    end_date: datetime | None = None


class ChallengeResponse(_FromAttributes):
    id: int
    title: str
    description: str | None = None
    type: str
    target_type: str
    target_value: int
    difficulty: str
    xp_reward: int
    start_date: datetime
    end_date: datetime | None = None
    status: str
    participant_count: int
    joined: bool
    user_state: str | None = None
    user_progress: int
    user_completed_at: datetime | None = None
    progress_percent: int
    time_remaining: int | None = None
    days_remaining: int | None = None


class ChallengeStats(BaseModel):
    active: int
    joined: int
    completed: int


class ChallengeListResponse(BaseModel):
    challenges: list[ChallengeResponse]
    stats: ChallengeStats


class ParticipationResponse(BaseModel):
    challenge_id: int
    state: str
    changed: bool


class LeaderboardEntryResponse(_FromAttributes):
    rank: int
    user_id: int
    display_name: str | None = None
    progress: int
    state: str
    completed_at: datetime | None = None
    is_tied: bool
    is_current_user: bool


class LeaderboardResponse(BaseModel):
    challenge_id: int
    entries: list[LeaderboardEntryResponse]


class ParticipationHistoryEntry(_FromAttributes):
    challenge_id: int
    title: str
    target_type: str
    target_value: int
    xp_reward: int
    state: str
    progress: int
    joined_at: datetime
    completed_at: datetime | None = None
    updated_at: datetime


class ChallengeHistoryResponse(BaseModel):
    items: list[ParticipationHistoryEntry]
    total: int
    limit: int
    offset: int


# --- XP ---


class XPResponse(BaseModel):
    user_id: int
    total_xp: int
    level: int
    level_floor_xp: int
    next_level_xp: int
    xp_into_level: int
    xp_for_level: int
    xp_to_next_level: int
    progress_percent: int


class XPHistoryEntry(_FromAttributes):
    id: int
    amount: int
    source: str
    source_id: str | None = None
    created_at: datetime


class XPHistoryResponse(BaseModel):
    entries: list[XPHistoryEntry]
    total: int
    page: int
    per_page: int
