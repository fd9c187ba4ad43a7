"""Configuration readiness tracking across the four practice-setup domains.

An actor is ready once their profile, clinic, doctor and region records are
minimally populated. Every lookup failure folds to "incomplete" so an actor
is never reported ready when the store could not confirm it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.database import get_db_context
from app.models import Clinic, Doctor, Profile, UserRegion
from app.services.errors import LookupDegraded

logger = logging.getLogger("clinicflow.readiness")

EPOCH = datetime.fromtimestamp(0, UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ReadinessStatus:
    """Derived readiness flags. ``all_complete`` is never stored."""

    profile_complete: bool = False
    clinic_complete: bool = False
    doctor_complete: bool = False
    region_complete: bool = False
    last_checked: datetime = field(default=EPOCH)

    @property
    def all_complete(self) -> bool:
        return (
            self.profile_complete
            and self.clinic_complete
            and self.doctor_complete
            and self.region_complete
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "profile_complete": self.profile_complete,
            "clinic_complete": self.clinic_complete,
            "doctor_complete": self.doctor_complete,
            "region_complete": self.region_complete,
            "all_complete": self.all_complete,
            "last_checked": self.last_checked,
        }


class ConfigurationLookup(Protocol):
    """Record lookups needed for readiness; each returns None when absent."""

    async def profile(self, actor_id: str) -> Any | None:
        ...

    async def clinic(self, actor_id: str) -> Any | None:
        ...

    async def doctor(self, actor_id: str) -> Any | None:
        ...

    async def region(self, actor_id: str) -> Any | None:
        ...


def profile_complete(record: Any | None) -> bool:
    return bool(record is not None and record.full_name)


def clinic_complete(record: Any | None) -> bool:
    return bool(record is not None and record.name and record.address)


def doctor_complete(record: Any | None) -> bool:
    return bool(record is not None and record.full_name and record.specialization)


def region_complete(record: Any | None) -> bool:
    return record is not None and record.region_id is not None


class SQLConfigurationLookup:
    """Readiness lookups backed by SQLAlchemy, one session per lookup."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory

    async def _one(self, query) -> Any | None:
        async with get_db_context(self.session_factory) as db:
            result = await db.execute(query)
            return result.scalar_one_or_none()

    async def profile(self, actor_id: str) -> Profile | None:
        return await self._one(select(Profile).where(Profile.id == actor_id))

    async def clinic(self, actor_id: str) -> Clinic | None:
        return await self._one(select(Clinic).where(Clinic.user_id == actor_id))

    async def doctor(self, actor_id: str) -> Doctor | None:
        return await self._one(select(Doctor).where(Doctor.user_id == actor_id))

    async def region(self, actor_id: str) -> UserRegion | None:
        return await self._one(select(UserRegion).where(UserRegion.user_id == actor_id))


class InMemoryConfigurationLookup:
    """In-memory lookup for tests and local demos."""

    DOMAINS = ("profile", "clinic", "doctor", "region")

    def __init__(self):
        self.records: dict[str, dict[str, Any]] = {domain: {} for domain in self.DOMAINS}
        self.failures: dict[str, Exception] = {}
        self.calls: dict[str, int] = {domain: 0 for domain in self.DOMAINS}

    def put(self, domain: str, actor_id: str, **values: Any) -> None:
        self.records[domain][actor_id] = SimpleNamespace(**values)

    async def _get(self, domain: str, actor_id: str) -> Any | None:
        self.calls[domain] += 1
        if domain in self.failures:
            raise self.failures[domain]
        return self.records[domain].get(actor_id)

    async def profile(self, actor_id: str) -> Any | None:
        return await self._get("profile", actor_id)

    async def clinic(self, actor_id: str) -> Any | None:
        return await self._get("clinic", actor_id)

    async def doctor(self, actor_id: str) -> Any | None:
        return await self._get("doctor", actor_id)

    async def region(self, actor_id: str) -> Any | None:
        return await self._get("region", actor_id)


class ReadinessTracker:
    """Cached readiness status with actor-change and visibility triggers."""

    def __init__(
        self,
        lookup: ConfigurationLookup,
        debounce_seconds: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.lookup = lookup
        self.debounce_seconds = (
            settings.readiness_debounce_seconds
            if debounce_seconds is None
            else debounce_seconds
        )
        self.clock = clock
        self.actor_id: str | None = None
        self._status = ReadinessStatus()
        self._issued_generation = 0
        self._applied_generation = 0
        self._in_flight = 0

    @property
    def last_checked(self) -> datetime:
        return self._status.last_checked

    def get_status(self) -> ReadinessStatus:
        return self._status

    async def _check(
        self,
        domain: str,
        fetch: Callable[[str], Any],
        predicate: Callable[[Any | None], bool],
        actor_id: str,
    ) -> bool:
        try:
            record = await fetch(actor_id)
        except Exception as exc:
            logger.warning(
                "Readiness check degraded: %s lookup failed: %s",
                domain,
                exc,
                extra={"readiness_error": LookupDegraded(str(exc), field=domain).to_dict()},
            )
            return False
        return predicate(record)

    async def refresh(self, actor_id: str | None = None) -> ReadinessStatus:
        """Run the four lookups concurrently and replace the cached status."""
        actor_id = actor_id or self.actor_id
        if not actor_id:
            raise RuntimeError("Readiness refresh requires an authenticated actor")

        self._issued_generation += 1
        generation = self._issued_generation
        self._in_flight += 1
        try:
            profile, clinic, doctor, region = await asyncio.gather(
                self._check("profile", self.lookup.profile, profile_complete, actor_id),
                self._check("clinic", self.lookup.clinic, clinic_complete, actor_id),
                self._check("doctor", self.lookup.doctor, doctor_complete, actor_id),
                self._check("region", self.lookup.region, region_complete, actor_id),
            )
        finally:
            self._in_flight -= 1

        status = ReadinessStatus(
            profile_complete=profile,
            clinic_complete=clinic,
            doctor_complete=doctor,
            region_complete=region,
            last_checked=self.clock(),
        )
        if generation > self._applied_generation:
            self._applied_generation = generation
            self._status = status
            logger.debug("Readiness refreshed all_complete=%s", status.all_complete)
        return self._status

    async def set_actor(self, actor_id: str | None) -> bool:
        """Track the active actor; returns True when a refresh ran."""
        if actor_id == self.actor_id:
            return False
        self.actor_id = actor_id
        self._status = ReadinessStatus()
        # Results still in flight for the previous actor must not land.
        self._applied_generation = self._issued_generation
        if actor_id is None:
            return False
        await self.refresh(actor_id)
        return True

    async def on_visibility_resumed(self) -> bool:
        """Refresh on foreground regain when the last check is stale."""
        if not self.actor_id or self._in_flight:
            return False
        elapsed = (self.clock() - self.last_checked).total_seconds()
        if elapsed <= self.debounce_seconds:
            return False
        await self.refresh(self.actor_id)
        return True
