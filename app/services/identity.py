from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass

from redis.exceptions import RedisError

from app.schemas.application import normalize_email
from app.services.draft_store import KeyValueMedium

logger = logging.getLogger(__name__)

MARKER_PREFIX = "current-applicant:"


@dataclass(frozen=True, slots=True)
class ApplicantIdentity:
    email: str
    display_name: str | None = None


class ApplicantMarkerStore:
    """Remembers which applicant a browser session belongs to (set at pre-registration)."""

    def __init__(self, medium: KeyValueMedium, *, ttl_seconds: int | None = None) -> None:
        self._medium = medium
        self._ttl_seconds = ttl_seconds

    async def remember(self, identity: ApplicantIdentity, session_id: str | None = None) -> str:
        session_id = session_id or secrets.token_urlsafe(24)
        payload = json.dumps(
            {"email": normalize_email(identity.email), "display_name": identity.display_name}
        )
        await self._medium.set(f"{MARKER_PREFIX}{session_id}", payload, ttl_seconds=self._ttl_seconds)
        return session_id

    async def lookup(self, session_id: str) -> ApplicantIdentity | None:
        raw = await self._medium.get(f"{MARKER_PREFIX}{session_id}")
        if not raw:
            return None
        payload = json.loads(raw)
        return ApplicantIdentity(email=payload["email"], display_name=payload.get("display_name"))


class IdentityResolver:
    """Works out which applicant a request acts for.

    The session marker written at pre-registration is the only proof of
    identity an anonymous request carries, so a supplied email is honoured
    only when it names the same applicant as the marker. Callers that have
    already verified the email themselves (a signed-in user, a back-office
    job) pass ``trust_explicit_email=True``.
    """

    def __init__(self, markers: ApplicantMarkerStore, *, trust_explicit_email: bool = False) -> None:
        self._markers = markers
        self._trust_explicit_email = trust_explicit_email

    async def resolve(
        self, explicit_email: str | None = None, session_id: str | None = None
    ) -> ApplicantIdentity | None:
        marker = await self._safe_lookup(session_id)
        if not (explicit_email and explicit_email.strip()):
            return marker

        email = normalize_email(explicit_email)
        if marker is not None and marker.email == email:
            return marker
        if self._trust_explicit_email:
            return ApplicantIdentity(email=email)
        logger.warning("Supplied applicant email does not match the session; refusing it")
        return None

    async def _safe_lookup(self, session_id: str | None) -> ApplicantIdentity | None:
        if not session_id:
            return None
        try:
            return await self._markers.lookup(session_id)
        except (RedisError, OSError, ValueError, KeyError) as exc:
            logger.warning("Applicant marker lookup failed: %s", exc)
            return None
