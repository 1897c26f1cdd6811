import base64
import secrets

from fastapi import HTTPException, Request
from fastapi.security.utils import get_authorization_scheme_param

from crm_migrator.core.settings import settings


OPEN_PATHS = {"/health"}


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Basic"},
    )


def _credentials_match(username: str, password: str) -> bool:
    username_ok = secrets.compare_digest(username, settings.basic_auth_username or "")
    password_ok = secrets.compare_digest(password, settings.basic_auth_password or "")
    return username_ok and password_ok


def enforce_basic_auth_for_request(request: Request) -> None:
    if not settings.basic_auth_enabled:
        return

    if settings.basic_auth_username is None or settings.basic_auth_password is None:
        raise RuntimeError("Basic Auth enabled but credentials are not set")

    if request.url.path in OPEN_PATHS:
        return

    auth_header = request.headers.get("authorization")
    scheme, param = get_authorization_scheme_param(auth_header)
    if scheme.lower() != "basic" or not param:
        raise _unauthorized("Authentication required")

    try:
        decoded = base64.b64decode(param).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        raise _unauthorized("Invalid credentials")

    username, sep, password = decoded.partition(":")
    if not sep or not _credentials_match(username, password):
        raise _unauthorized("Invalid credentials")
