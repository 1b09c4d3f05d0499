from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Protocol

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core import fernet_crypto
from app.models.agent_draft import AgentDraft
from app.schemas.application import ApplicationDraftData, normalize_email

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DraftStoreError(RuntimeError):
    """The draft backend could not be read."""


@dataclass(frozen=True, slots=True)
class SavedDraft:
    email: str
    data: ApplicationDraftData
    step_index: int
    saved_at: datetime
    submission_token: str | None = None


@dataclass(frozen=True, slots=True)
class DraftSaveResult:
    ok: bool
    saved_at: datetime | None = None
    error: str | None = None


class DraftStore(Protocol):
    async def load(self, email: str) -> SavedDraft | None: ...

    async def save(
        self,
        email: str,
        data: ApplicationDraftData,
        step_index: int,
        *,
        submission_token: str | None = None,
    ) -> DraftSaveResult: ...

    async def delete(self, email: str) -> bool: ...


def _checked_key(email: str, data: ApplicationDraftData) -> str:
    key = normalize_email(email)
    if normalize_email(data.email) != key:
        raise ValueError("Draft email does not match the store key")
    return key


def serialize_draft(
    email: str,
    data: ApplicationDraftData,
    step_index: int,
    saved_at: datetime,
    submission_token: str | None = None,
) -> str:
    return json.dumps(
        {
            "email": email,
            "step_index": step_index,
            "submission_token": submission_token,
            "saved_at": saved_at.isoformat(),
            "data": data.model_dump(mode="json"),
        }
    )


def deserialize_draft(raw: str) -> SavedDraft:
    payload = json.loads(raw)
    return SavedDraft(
        email=payload["email"],
        data=ApplicationDraftData.model_validate(payload["data"]),
        step_index=int(payload.get("step_index") or 0),
        saved_at=datetime.fromisoformat(payload["saved_at"]),
        submission_token=payload.get("submission_token"),
    )


# ---------------------------------------------------------------------------
# Key-value media
# ---------------------------------------------------------------------------


class KeyValueMedium(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None: ...

    async def remove(self, key: str) -> None: ...


class InMemoryMedium:
    """Process-local medium; drafts live only as long as the process."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._items.get(key)

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        self._items[key] = value

    async def remove(self, key: str) -> None:
        self._items.pop(key, None)


class RedisMedium:
    def __init__(self, client: Redis) -> None:
        self._client = client

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def remove(self, key: str) -> None:
        await self._client.delete(key)


class KeyValueDraftStore:
    def __init__(
        self,
        medium: KeyValueMedium,
        *,
        encrypt: bool = False,
        ttl_seconds: int | None = None,
        key_prefix: str = "agent-draft:",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._medium = medium
        self._encrypt = encrypt
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix
        self._clock = clock

    def _key(self, email: str) -> str:
        return f"{self._key_prefix}{email}"

    async def load(self, email: str) -> SavedDraft | None:
        key = normalize_email(email)
        try:
            raw = await self._medium.get(self._key(key))
        except (RedisError, OSError) as exc:
            raise DraftStoreError(str(exc)) from exc
        if raw is None:
            return None
        try:
            if self._encrypt:
                raw = fernet_crypto.decrypt_text(raw)
            return deserialize_draft(raw)
        except (ValueError, KeyError, ValidationError) as exc:
            raise DraftStoreError(f"Stored draft is unreadable: {exc}") from exc

    async def save(
        self,
        email: str,
        data: ApplicationDraftData,
        step_index: int,
        *,
        submission_token: str | None = None,
    ) -> DraftSaveResult:
        key = _checked_key(email, data)
        saved_at = self._clock()
        try:
            raw = serialize_draft(key, data, step_index, saved_at, submission_token)
            if self._encrypt:
                raw = fernet_crypto.encrypt_text(raw)
            await self._medium.set(self._key(key), raw, ttl_seconds=self._ttl_seconds)
        except (RedisError, OSError, TypeError, ValueError) as exc:
            logger.warning("Draft save failed: %s", exc)
            return DraftSaveResult(ok=False, error=str(exc) or type(exc).__name__)
        return DraftSaveResult(ok=True, saved_at=saved_at)

    async def delete(self, email: str) -> bool:
        key = normalize_email(email)
        try:
            await self._medium.remove(self._key(key))
        except (RedisError, OSError) as exc:
            logger.warning("Draft delete failed: %s", exc)
            return False
        return True


# ---------------------------------------------------------------------------
# Database-backed store (follows the applicant across devices)
# ---------------------------------------------------------------------------


class DatabaseDraftStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | Callable[[], Awaitable[AsyncSession]],
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def load(self, email: str) -> SavedDraft | None:
        key = normalize_email(email)
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(AgentDraft).where(AgentDraft.email == key))
                row = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise DraftStoreError(str(exc)) from exc
        if row is None:
            return None
        try:
            data = ApplicationDraftData.model_validate(row.form_data or {})
        except ValidationError as exc:
            raise DraftStoreError(f"Stored draft is unreadable: {exc}") from exc
        return SavedDraft(
            email=key,
            data=data,
            step_index=row.step_index or 0,
            saved_at=row.saved_at,
            submission_token=row.submission_token,
        )

    async def save(
        self,
        email: str,
        data: ApplicationDraftData,
        step_index: int,
        *,
        submission_token: str | None = None,
    ) -> DraftSaveResult:
        key = _checked_key(email, data)
        saved_at = self._clock()
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(AgentDraft).where(AgentDraft.email == key))
                row = result.scalar_one_or_none()
                if row is None:
                    row = AgentDraft(email=key)
                row.step_index = step_index
                row.form_data = data.model_dump(mode="json")
                row.saved_at = saved_at
                row.submission_token = submission_token
                session.add(row)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.warning("Draft save failed: %s", exc)
            return DraftSaveResult(ok=False, error="Draft storage is unavailable")
        return DraftSaveResult(ok=True, saved_at=saved_at)

    async def delete(self, email: str) -> bool:
        key = normalize_email(email)
        try:
            async with self._session_factory() as session:
                await session.execute(delete(AgentDraft).where(AgentDraft.email == key))
                await session.commit()
        except SQLAlchemyError as exc:
            logger.warning("Draft delete failed: %s", exc)
            return False
        return True
