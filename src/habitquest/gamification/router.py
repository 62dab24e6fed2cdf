"""Gamification API endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query

from habitquest.config import get_settings
from habitquest.dependencies import get_current_user_id, get_engine
from habitquest.gamification.engine import GamificationEngine
from habitquest.gamification.enums import BadgeState, ChallengeStatus, ParticipantState
from habitquest.gamification.schemas import (
    BadgeDetailResponse,
    BadgeListResponse,
    BadgeStats,
    BadgeStatusResponse,
    BadgeSummary,
    ChallengeHistoryResponse,
    ChallengeListResponse,
    ChallengeResponse,
    ChallengeStats,
    CompleteHabitRequest,
    CompletionResponse,
    CreateChallengeRequest,
    HabitLogResponse,
    LeaderboardEntryResponse,
    LeaderboardResponse,
    ParticipationHistoryEntry,
    ParticipationResponse,
    StreakResponse,
    UserBadgesResponse,
    XPHistoryEntry,
    XPHistoryResponse,
    XPResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


# ── Habits ──


@router.post("/habits/{habit_id}/complete", response_model=CompletionResponse)
async def complete_habit(
    habit_id: int,
    body: CompleteHabitRequest | None = None,
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    """Mark a habit done for a day and return the rewards it produced."""
    body = body or CompleteHabitRequest()
    today = datetime.now(timezone.utc).date()
    result = await engine.completions.complete_habit(
        user_id,
        habit_id,
        body.on_date or today,
        value=body.value,
        notes=body.notes,
    )
    return CompletionResponse(
        log=HabitLogResponse.model_validate(result.log) if result.log is not None else None,
        streak=StreakResponse(current=result.streak.current, longest=result.streak.longest),
        xp_earned=result.xp_earned,
        new_total_xp=result.new_total_xp,
        new_level=result.new_level,
        new_badges=[BadgeSummary.model_validate(b) for b in result.new_badges],
        already_completed=result.already_completed,
    )


# ── Badges ──


@router.get("/badges", response_model=UserBadgesResponse)
async def list_badges(
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    """All active badges with the caller's progress, grouped by category."""
    statuses = await engine.badges.get_user_badges(user_id)
    badges = [BadgeStatusResponse.model_validate(s) for s in statuses]

    by_category: dict[str, list[BadgeStatusResponse]] = {}
    for badge in badges:
        by_category.setdefault(badge.category, []).append(badge)

    return UserBadgesResponse(
        badges=badges,
        by_category=by_category,
        stats=BadgeStats(
            total=len(badges),
            earned=sum(1 for b in badges if b.state == BadgeState.EARNED),
            in_progress=sum(1 for b in badges if b.state == BadgeState.IN_PROGRESS),
        ),
    )


@router.get("/badges/recent", response_model=BadgeListResponse)
async def recent_badges(
    days: int | None = Query(None, ge=1, le=365),
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    """Badges the caller earned recently."""
    statuses = await engine.badges.get_recent_badges(
        user_id, days=days or get_settings().recent_badge_days
    )
    return BadgeListResponse(badges=[BadgeStatusResponse.model_validate(s) for s in statuses])


@router.get("/badges/next-goal", response_model=BadgeListResponse)
async def next_goal(
    limit: int = Query(3, ge=1, le=10),
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    """Unearned badges closest to completion."""
    statuses = await engine.badges.get_next_goals(user_id, limit=limit)
    return BadgeListResponse(badges=[BadgeStatusResponse.model_validate(s) for s in statuses])


@router.get("/badges/{badge_id}", response_model=BadgeDetailResponse)
async def get_badge(
    badge_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    """Single badge with the caller's progress and tier position."""
    status = await engine.badges.get_badge_detail(user_id, badge_id)
    return BadgeDetailResponse.model_validate(status)


# ── Challenges ──


@router.get("/challenges", response_model=ChallengeListResponse)
async def list_challenges(
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    """Upcoming and active challenges, after settling any that expired."""
    views = await engine.challenges.list_challenges(user_id)
    challenges = [ChallengeResponse.model_validate(v) for v in views]
    return ChallengeListResponse(
        challenges=challenges,
        stats=ChallengeStats(
            active=sum(1 for c in challenges if c.status == ChallengeStatus.ACTIVE),
            joined=sum(1 for c in challenges if c.user_state == ParticipantState.ACTIVE),
            completed=sum(1 for c in challenges if c.user_state == ParticipantState.COMPLETED),
        ),
    )


@router.post("/challenges", response_model=ChallengeResponse, status_code=201)
async def create_challenge(
    body: CreateChallengeRequest,
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    """Create a group challenge; the caller joins it automatically."""
    challenge = await engine.challenges.create_challenge(
        user_id,
        body.title,
        body.target_type,
        body.target_value,
        body.start_date,
        end_date=body.end_date,
        description=body.description,
        difficulty=body.difficulty,
        xp_reward=body.xp_reward,
    )
    view = await engine.challenges.get_challenge_detail(user_id, challenge.id)
    return ChallengeResponse.model_validate(view)


@router.get("/challenges/history", response_model=ChallengeHistoryResponse)
async def challenge_history(
    limit: int = Query(20, ge=1, le=50),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    """The caller's finished challenge participations."""
    records, total = await engine.challenges.get_challenge_history(user_id, limit=limit, offset=offset)
    return ChallengeHistoryResponse(
        items=[ParticipationHistoryEntry.model_validate(r) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/challenges/{challenge_id}", response_model=ChallengeResponse)
async def get_challenge(
    challenge_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    view = await engine.challenges.get_challenge_detail(user_id, challenge_id)
    return ChallengeResponse.model_validate(view)


@router.post("/challenges/{challenge_id}/join", response_model=ParticipationResponse)
async def join_challenge(
    challenge_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    changed = await engine.challenges.join_challenge(user_id, challenge_id)
    return ParticipationResponse(
        challenge_id=challenge_id,
        state=ParticipantState.ACTIVE.value,
        changed=changed,
    )


@router.post("/challenges/{challenge_id}/leave", response_model=ParticipationResponse)
async def leave_challenge(
    challenge_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    state = await engine.challenges.leave_challenge(user_id, challenge_id)
    return ParticipationResponse(
        challenge_id=challenge_id,
        state=state,
        changed=state == ParticipantState.WITHDRAWN,
    )


@router.get("/challenges/{challenge_id}/leaderboard", response_model=LeaderboardResponse)
async def challenge_leaderboard(
    challenge_id: int,
    limit: int = Query(50, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    entries = await engine.challenges.get_challenge_leaderboard(challenge_id, user_id=user_id, limit=limit)
    return LeaderboardResponse(
        challenge_id=challenge_id,
        entries=[LeaderboardEntryResponse.model_validate(e) for e in entries],
    )


# ── XP ──


@router.get("/xp", response_model=XPResponse)
async def get_xp(
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    """Total XP, level and progress to the next level."""
    return XPResponse(**await engine.ledger.get_xp_summary(user_id))


@router.get("/xp/history", response_model=XPHistoryResponse)
async def get_xp_history(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    engine: GamificationEngine = Depends(get_engine),
):
    """Paginated XP ledger, newest first."""
    entries, total = await engine.ledger.get_xp_history(user_id, page=page, per_page=per_page)
    return XPHistoryResponse(
        entries=[XPHistoryEntry.model_validate(e) for e in entries],
        total=total,
        page=page,
        per_page=per_page,
    )
