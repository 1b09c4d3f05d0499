from starlette.types import ASGIApp, Receive, Scope, Send, Message

from app.core.settings import settings

_BASE_HEADERS: tuple[tuple[bytes, bytes], ...] = (
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"DENY"),
    (b"referrer-policy", b"no-referrer"),
    (b"x-xss-protection", b"0"),
    (b"cross-origin-opener-policy", b"same-origin"),
    (b"cross-origin-resource-policy", b"same-origin"),
    (b"cache-control", b"no-store"),
)
_HSTS = (b"strict-transport-security", b"max-age=63072000; includeSubDomains; preload")


def default_security_headers(enable_hsts: bool) -> list[tuple[bytes, bytes]]:
    headers = list(_BASE_HEADERS)
    if enable_hsts:
        headers.append(_HSTS)
    if settings.content_security_policy:
        header_name = (
            b"content-security-policy-report-only"
            if settings.content_security_policy_report_only
            else b"content-security-policy"
        )
        headers.append((header_name, settings.content_security_policy.encode()))
    return headers


class SecurityHeadersMiddleware:
    """Apply safe default security headers; applicant data is never cached by intermediaries."""

    def __init__(self, app: ASGIApp, enable_hsts: bool = True) -> None:
        self.app = app
        self.enable_hsts = enable_hsts

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                # Route-level headers win over the defaults.
                present = {key.lower() for key, _ in headers}
                for key, value in default_security_headers(self.enable_hsts):
                    if key not in present:
                        headers.append((key, value))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_headers)
