import pytest

from app.services.draft_store import InMemoryMedium
from app.services.identity import ApplicantIdentity, ApplicantMarkerStore, IdentityResolver

from tests.conftest import FailingMedium


async def _markers_with(email: str, display_name: str | None = None) -> tuple[ApplicantMarkerStore, str]:
    markers = ApplicantMarkerStore(InMemoryMedium())
    session_id = await markers.remember(ApplicantIdentity(email=email, display_name=display_name))
    return markers, session_id


@pytest.mark.asyncio
async def test_session_marker_identifies_applicant() -> None:
    markers, session_id = await _markers_with("Ana@X.com", "Ana Reyes")

    identity = await IdentityResolver(markers).resolve(None, session_id)

    assert identity == ApplicantIdentity(email="ana@x.com", display_name="Ana Reyes")


@pytest.mark.asyncio
async def test_supplied_email_matching_session_is_accepted() -> None:
    markers, session_id = await _markers_with("a@x.com", "Ana Reyes")

    identity = await IdentityResolver(markers).resolve(" A@X.com ", session_id)

    assert identity.email == "a@x.com"
    assert identity.display_name == "Ana Reyes"


@pytest.mark.asyncio
async def test_supplied_email_without_session_is_refused() -> None:
    resolver = IdentityResolver(ApplicantMarkerStore(InMemoryMedium()))

    assert await resolver.resolve("a@x.com", None) is None


@pytest.mark.asyncio
async def test_supplied_email_for_another_applicant_is_refused() -> None:
    markers, session_id = await _markers_with("b@x.com", "Ben Cruz")

    assert await IdentityResolver(markers).resolve("a@x.com", session_id) is None


@pytest.mark.asyncio
async def test_trusted_caller_may_name_any_applicant() -> None:
    markers, session_id = await _markers_with("b@x.com", "Ben Cruz")
    resolver = IdentityResolver(markers, trust_explicit_email=True)

    identity = await resolver.resolve("A@x.com", session_id)

    assert identity == ApplicantIdentity(email="a@x.com")


@pytest.mark.asyncio
async def test_unknown_session_resolves_to_none() -> None:
    resolver = IdentityResolver(ApplicantMarkerStore(InMemoryMedium()))

    assert await resolver.resolve(None, "missing") is None
    assert await resolver.resolve("  ", None) is None


@pytest.mark.asyncio
async def test_marker_backend_failure_resolves_to_none() -> None:
    resolver = IdentityResolver(ApplicantMarkerStore(FailingMedium(fail_get=True)))

    assert await resolver.resolve(None, "session-1") is None
