"""Wiring for the gamification services.

The API lifespan and the arq worker each build one ``GamificationEngine``
around the global session factory; tests build one per database.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from habitquest.gamification.badge_service import BadgeEvaluator
from habitquest.gamification.challenge_scheduler import ChallengeScheduler
from habitquest.gamification.challenge_service import ChallengeTracker
from habitquest.gamification.completion_service import HabitCompletionService
from habitquest.gamification.events import EventChannel
from habitquest.gamification.unit_of_work import UnitOfWorkFactory
from habitquest.gamification.xp_service import XpLedger


class GamificationEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        channel: EventChannel | None = None,
        history_window: int = 100,
    ) -> None:
        self.channel = channel if channel is not None else EventChannel()
        self.uow = UnitOfWorkFactory(session_factory, self.channel)
        self.ledger = XpLedger(self.uow)
        self.badges = BadgeEvaluator(self.uow, self.ledger)
        self.scheduler = ChallengeScheduler(self.uow, self.ledger)
        self.challenges = ChallengeTracker(self.uow, self.ledger, self.scheduler)
        self.completions = HabitCompletionService(
            self.uow,
            self.ledger,
            self.badges,
            self.challenges,
            history_window=history_window,
        )
