"""Per-actor composition of the readiness tracker and email workflow."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from app.config import settings
from app.services.email import EmailDeliveryProvider, HTTPEmailDeliveryProvider
from app.services.email_settings import (
    EmailConfigWorkflow,
    EmailSettingsRepository,
    SQLEmailSettingsRepository,
)
from app.services.readiness import (
    ConfigurationLookup,
    ReadinessTracker,
    SQLConfigurationLookup,
)

logger = logging.getLogger("clinicflow.session")


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class ActorSession:
    """State owned by one signed-in actor; discarded on sign-out."""

    actor_id: str
    readiness: ReadinessTracker
    email: EmailConfigWorkflow
    last_used: datetime = field(default_factory=_utcnow)
    started: bool = False
    _start_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def start(self) -> bool:
        """Point the tracker at this actor once; returns True on the first call."""
        async with self._start_lock:
            if self.started:
                return False
            await self.readiness.set_actor(self.actor_id)
            self.started = True
            return True


class ActorSessionRegistry:
    """Creates and hands out one ActorSession per actor id.

    Sessions idle for longer than ``idle_seconds`` are dropped, together with
    any unsaved draft, the next time the registry is consulted.
    """

    def __init__(
        self,
        lookup: ConfigurationLookup,
        repository: EmailSettingsRepository,
        provider: EmailDeliveryProvider,
        tracker_factory: Callable[[ConfigurationLookup], ReadinessTracker] = ReadinessTracker,
        idle_seconds: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.lookup = lookup
        self.repository = repository
        self.provider = provider
        self.tracker_factory = tracker_factory
        self.idle_seconds = (
            settings.settings_session_idle_seconds if idle_seconds is None else idle_seconds
        )
        self.clock = clock
        self._sessions: dict[str, ActorSession] = {}

    def __contains__(self, actor_id: str) -> bool:
        return actor_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def expire_idle(self) -> int:
        """Drop every session unused for longer than the idle window."""
        cutoff = self.clock() - timedelta(seconds=self.idle_seconds)
        expired = [
            actor_id
            for actor_id, session in self._sessions.items()
            if session.last_used < cutoff
        ]
        for actor_id in expired:
            del self._sessions[actor_id]
        if expired:
            logger.info("Expired %d idle settings sessions", len(expired))
        return len(expired)

    def get_or_create(self, actor_id: str) -> ActorSession:
        if not actor_id:
            raise RuntimeError("An authenticated actor is required")
        self.expire_idle()
        now = self.clock()
        session = self._sessions.get(actor_id)
        if session is None:
            session = ActorSession(
                actor_id=actor_id,
                readiness=self.tracker_factory(self.lookup),
                email=EmailConfigWorkflow(actor_id, self.repository, self.provider),
                last_used=now,
            )
            self._sessions[actor_id] = session
            logger.info("Opened settings session")
        session.last_used = now
        return session

    async def open(self, actor_id: str) -> ActorSession:
        session = self.get_or_create(actor_id)
        await session.start()
        return session

    async def discard(self, actor_id: str) -> bool:
        session = self._sessions.pop(actor_id, None)
        if session is None:
            return False
        await session.readiness.set_actor(None)
        logger.info("Discarded settings session")
        return True


def build_default_registry() -> ActorSessionRegistry:
    """Registry wired to the SQL store and the HTTP delivery provider."""
    return ActorSessionRegistry(
        lookup=SQLConfigurationLookup(),
        repository=SQLEmailSettingsRepository(),
        provider=HTTPEmailDeliveryProvider(),
    )
