from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Iterable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from hue_mirror.config import AppConfig


@dataclass(frozen=True)
class AuthContext:
    credential: str | None
    scheme: str  # "bearer" | "api_key" | "anonymous"


ANONYMOUS = AuthContext(credential=None, scheme="anonymous")


def _matches(value: str | None, allowed: Iterable[str]) -> bool:
    if not value:
        return False
    return any(secrets.compare_digest(value, item) for item in allowed)


def authenticate(config: AppConfig, *, bearer_token: str | None, api_key: str | None) -> AuthContext | None:
    """Returns None when credentials are configured and none of the given ones match."""
    if not config.auth_tokens and not config.api_keys:
        return ANONYMOUS
    token = bearer_token.strip() if bearer_token else None
    if _matches(token, config.auth_tokens):
        return AuthContext(credential=token, scheme="bearer")
    if _matches(api_key, config.api_keys):
        return AuthContext(credential=api_key, scheme="api_key")
    return None


_bearer = HTTPBearer(auto_error=False)
_api_key = APIKeyHeader(name="X-API-Key", auto_error=False)


async def require_auth(
    request: Request,
    bearer: HTTPAuthorizationCredentials | None = Depends(_bearer),
    api_key: str | None = Depends(_api_key),
) -> AuthContext:
    token = bearer.credentials if bearer and bearer.scheme.lower() == "bearer" else None
    auth = authenticate(request.app.state.state.config, bearer_token=token, api_key=api_key)
    if auth is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail={"error": "unauthorized"})
    return auth
