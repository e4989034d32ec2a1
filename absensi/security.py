from __future__ import annotations

from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from absensi.errors import ApiError
from absensi.services.scope import ActingUser
from absensi.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")
    return payload


def acting_user_from_claims(claims: dict[str, Any]) -> ActingUser:
    raw_branch_id = claims.get("branch_id")
    branch_id: int | None = None
    if isinstance(raw_branch_id, int) and not isinstance(raw_branch_id, bool):
        branch_id = raw_branch_id
    elif isinstance(raw_branch_id, str) and raw_branch_id.strip().isdigit():
        branch_id = int(raw_branch_id.strip())

    # Role is validated later by the scope resolver so an unknown role
    # surfaces as UNKNOWN_ROLE rather than as a token error.
    return ActingUser(
        user_id=str(claims["sub"]),
        role=str(claims.get("role") or ""),
        branch_id=branch_id,
    )


def require_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> ActingUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    user = acting_user_from_claims(decode_token(credentials.credentials))
    request.state.actor = user.role or "unknown"
    request.state.actor_id = user.user_id
    return user
