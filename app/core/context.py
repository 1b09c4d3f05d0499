import contextvars
import hashlib

_applicant_ref: contextvars.ContextVar[str] = contextvars.ContextVar("applicant_ref", default="-")
_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


def applicant_reference(email: str) -> str:
    """Stable, non-reversible tag for an applicant email, safe to log."""
    digest = hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()
    return digest[:12]


def set_applicant(email: str | None) -> None:
    _applicant_ref.set(applicant_reference(email) if email else "-")


def get_applicant_ref() -> str:
    return _applicant_ref.get()


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> str:
    return _request_id.get()


def clear_context() -> None:
    _applicant_ref.set("-")
    _request_id.set("-")
