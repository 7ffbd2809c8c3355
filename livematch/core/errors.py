from __future__ import annotations

import httpx


class ValidationFailure(Exception):
    """Missing or malformed identifier; carries an HTTP-style status."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = int(status)


class UpstreamUnavailable(RuntimeError):
    pass


def validate_id(value, kind: str) -> str:
    raw = "" if value is None else str(value).strip()
    if not raw or raw.lower() in {"none", "null", "undefined"}:
        raise ValidationFailure(f"{kind} ID is required")
    return raw


def error_payload(exc: BaseException) -> dict:
    code = getattr(exc, "status", None)
    message = "Internal Server Error"
    if isinstance(exc, ValidationFailure):
        message = exc.message
    elif isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            message = str(body["message"])
    elif isinstance(exc, UpstreamUnavailable):
        code = 503
        message = str(exc) or "Upstream unavailable"
    return {"status": "error", "message": message, "code": int(code or 500)}
