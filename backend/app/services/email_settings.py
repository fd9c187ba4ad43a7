"""Draft/persisted workflow for an actor's transactional email settings.

The workflow keeps two pieces of state: the editable draft and a snapshot of
the last row loaded from or written to the store. Test sends always use the
draft so credentials can be verified before they are saved.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import get_db_context
from app.models import EmailSettings
from app.services.email import EmailDeliveryProvider, build_test_message
from app.services.errors import (
    DeliveryError,
    OperationResult,
    PersistenceError,
    ValidationError,
)

logger = logging.getLogger("clinicflow.email_settings")

DRAFT_FIELDS = frozenset(
    {"provider_api_key", "from_address", "from_display_name"}
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class EmailConfig:
    """Persisted email configuration for one actor."""

    actor_id: str
    enabled: bool = False
    provider_api_key: str = ""
    from_address: str = ""
    from_display_name: str | None = None
    updated_at: datetime | None = None


@dataclass
class EmailConfigDraft:
    """Editable, unpersisted copy of the configuration."""

    enabled: bool = False
    provider_api_key: str = ""
    from_address: str = ""
    from_display_name: str | None = None

    @classmethod
    def from_config(cls, config: EmailConfig) -> "EmailConfigDraft":
        return cls(
            enabled=config.enabled,
            provider_api_key=config.provider_api_key,
            from_address=config.from_address,
            from_display_name=config.from_display_name,
        )


class WorkflowState(StrEnum):
    unloaded = "unloaded"
    loaded = "loaded"
    saving = "saving"


class SendState(StrEnum):
    idle = "idle"
    sending = "sending"


class EmailSettingsRepository(Protocol):
    async def get(self, actor_id: str) -> EmailConfig | None:
        ...

    async def upsert(self, config: EmailConfig) -> EmailConfig:
        ...


class SQLEmailSettingsRepository:
    """Email settings repository backed by SQLAlchemy.

    Each call opens its own session so a workflow can live across requests.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory

    async def get(self, actor_id: str) -> EmailConfig | None:
        async with get_db_context(self.session_factory) as db:
            result = await db.execute(
                select(EmailSettings).where(EmailSettings.user_id == actor_id)
            )
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return EmailConfig(
            actor_id=row.user_id,
            enabled=bool(row.enabled),
            provider_api_key=row.provider_api_key or "",
            from_address=row.from_email or "",
            from_display_name=row.from_name or None,
            updated_at=row.updated_at,
        )

    async def upsert(self, config: EmailConfig) -> EmailConfig:
        values = {
            "user_id": config.actor_id,
            "enabled": config.enabled,
            "provider_api_key": config.provider_api_key,
            "from_email": config.from_address,
            "from_name": config.from_display_name,
            "updated_at": config.updated_at or _utcnow(),
        }
        statement = insert(EmailSettings).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=[EmailSettings.user_id],
            set_={key: value for key, value in values.items() if key != "user_id"},
        )
        async with get_db_context(self.session_factory) as db:
            await db.execute(statement)
        return config


class InMemoryEmailSettingsRepository:
    """In-memory repository for tests and local demos."""

    def __init__(self):
        self._rows: dict[str, EmailConfig] = {}
        self.get_calls = 0
        self.upsert_calls = 0
        self.fail_with: Exception | None = None

    async def get(self, actor_id: str) -> EmailConfig | None:
        self.get_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return self._rows.get(actor_id)

    async def upsert(self, config: EmailConfig) -> EmailConfig:
        self.upsert_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self._rows[config.actor_id] = config
        return config

    def clear(self) -> None:
        self._rows.clear()
        self.get_calls = 0
        self.upsert_calls = 0


class EmailConfigWorkflow:
    """Load, edit, validate, save and test-send one actor's email settings."""

    def __init__(
        self,
        actor_id: str | None,
        repository: EmailSettingsRepository,
        provider: EmailDeliveryProvider,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.actor_id = actor_id
        self.repository = repository
        self.provider = provider
        self.clock = clock
        self.state = WorkflowState.unloaded
        self.send_state = SendState.idle
        self.draft = EmailConfigDraft()
        self.persisted: EmailConfig | None = None
        self.test_recipient = ""

    def _require_actor(self) -> str:
        if not self.actor_id:
            raise RuntimeError("EmailConfigWorkflow requires an authenticated actor")
        return self.actor_id

    async def load(self) -> OperationResult:
        """Fetch the stored row; a missing row loads the default draft."""
        actor_id = self._require_actor()
        try:
            config = await self.repository.get(actor_id)
        except Exception as exc:
            logger.exception("Error fetching email settings")
            return OperationResult.failure(PersistenceError(str(exc)))

        self.persisted = config
        self.draft = (
            EmailConfigDraft.from_config(config) if config else EmailConfigDraft()
        )
        self.state = WorkflowState.loaded
        return OperationResult.success(self.draft)

    async def ensure_loaded(self) -> OperationResult:
        """Load the stored row unless a load already succeeded."""
        if self.state is WorkflowState.unloaded:
            return await self.load()
        return OperationResult.success(self.draft)

    def set_field(self, name: str, value: str | None) -> None:
        if name == "test_recipient":
            self.test_recipient = value or ""
            return
        if name not in DRAFT_FIELDS:
            raise ValueError(f"Unknown email settings field: {name}")
        if name == "from_display_name":
            setattr(self.draft, name, value or None)
        else:
            setattr(self.draft, name, value or "")

    def set_enabled(self, enabled: bool) -> None:
        self.draft.enabled = bool(enabled)

    def validate_draft(self) -> ValidationError | None:
        """First failing requirement for an enabled draft, or None."""
        if not self.draft.enabled:
            return None
        if not self.draft.provider_api_key:
            return ValidationError("providerApiKey required", field="provider_api_key")
        if not self.draft.from_address:
            return ValidationError("fromAddress required", field="from_address")
        return None

    async def save(self) -> OperationResult:
        """Validate and persist the draft. Only a loaded workflow may save."""
        actor_id = self._require_actor()
        if self.state is not WorkflowState.loaded:
            return OperationResult.failure(
                ValidationError(f"email settings not loaded (state={self.state.value})")
            )
        error = self.validate_draft()
        if error is not None:
            return OperationResult.failure(error)

        config = EmailConfig(
            actor_id=actor_id,
            enabled=self.draft.enabled,
            provider_api_key=self.draft.provider_api_key,
            from_address=self.draft.from_address,
            from_display_name=self.draft.from_display_name,
            updated_at=self.clock(),
        )
        previous_state = self.state
        self.state = WorkflowState.saving
        try:
            await self.repository.upsert(config)
        except Exception as exc:
            logger.exception("Error saving email settings")
            self.state = previous_state
            return OperationResult.failure(PersistenceError(str(exc)))

        self.persisted = config
        self.state = WorkflowState.loaded
        logger.info("Email settings saved enabled=%s", config.enabled)
        return OperationResult.success(config)

    async def send_test(self, test_recipient: str | None = None) -> OperationResult:
        """Send the verification email using the current draft credentials."""
        self._require_actor()
        if test_recipient is not None:
            self.test_recipient = test_recipient
        if not self.test_recipient:
            return OperationResult.failure(
                ValidationError("test recipient required", field="test_recipient")
            )
        if not self.draft.provider_api_key:
            return OperationResult.failure(
                ValidationError("providerApiKey required", field="provider_api_key")
            )
        if not self.draft.from_address:
            return OperationResult.failure(
                ValidationError("fromAddress required", field="from_address")
            )

        draft = replace(self.draft)
        message = build_test_message(
            draft.from_address, draft.from_display_name, self.test_recipient
        )
        self.send_state = SendState.sending
        try:
            result = await self.provider.send(draft.provider_api_key, message)
        except Exception as exc:
            logger.exception("Error sending test email")
            return OperationResult.failure(DeliveryError(str(exc)))
        finally:
            self.send_state = SendState.idle

        if not result.success:
            return OperationResult.failure(
                DeliveryError(result.error or "Failed to send test email")
            )
        return OperationResult.success(result.id)
