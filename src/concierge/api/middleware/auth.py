from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from concierge.api.dependencies import AppSettings, Store
from concierge.api.middleware.exception_handlers import AuthenticationError
from concierge.api.middleware.request_context import update_request_context
from concierge.core.constants import Settings
from concierge.models.chat_models import UserInfo
from concierge.models.error_models import ErrorCode

bearer_scheme = HTTPBearer(auto_error=False)


def decode_identity_token(token: str, settings: Settings) -> dict[str, Any]:
    """Verify an identity provider token and return its claims.

    Raises:
        ExpiredSignatureError: If the token has expired.
        ValueError: If the signature or subject is invalid.
    """
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"verify_aud": False},
        )
    except ExpiredSignatureError:
        raise
    except JWTError as exc:
        raise ValueError("Invalid token") from exc

    if not payload.get("sub"):
        raise ValueError("Token has no subject")
    return payload


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    store: Store,
    settings: AppSettings,
) -> UserInfo:
    """Authenticate the request and resolve the principal to an account."""
    if credentials is None:
        raise AuthenticationError(
            message="Authentication required",
            code=ErrorCode.AUTH_REQUIRED,
        )

    try:
        payload = decode_identity_token(credentials.credentials, settings)
    except ExpiredSignatureError as exc:
        raise AuthenticationError(
            message="Token expired",
            code=ErrorCode.AUTH_EXPIRED_TOKEN,
        ) from exc
    except ValueError as exc:
        raise AuthenticationError(
            message="Invalid token",
            code=ErrorCode.AUTH_INVALID_TOKEN,
        ) from exc

    user = await store.get_user_by_external_id(payload["sub"])
    if not user:
        raise AuthenticationError(
            message="User not found",
            code=ErrorCode.AUTH_USER_NOT_FOUND,
        )

    update_request_context(user_id=user.id)
    return user


CurrentUser = Annotated[UserInfo, Depends(get_current_user)]
