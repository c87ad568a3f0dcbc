import secrets
from typing import Any, Optional

from fastapi import Depends, Header, Request

from storymint.core import config
from storymint.core.errors import ErrorKind, ServiceError

INTERNAL_KEY_HEADER = "x-internal-api-key"


def get_session(request: Request) -> Optional[Any]:
    """
    The authenticated session, if any. Authentication itself happens upstream;
    the auth middleware in front of this service stores the session on
    request.state.
    """
    return getattr(request.state, "session", None)


def is_internal_call(api_key: Optional[str]) -> bool:
    expected = config.INTERNAL_API_KEY
    if not expected or not api_key:
        return False
    return secrets.compare_digest(api_key.encode(), expected.encode())


def require_session(session: Optional[Any] = Depends(get_session)) -> Any:
    if not session:
        raise ServiceError(ErrorKind.UNAUTHORIZED, "Unauthorized")
    return session


def require_session_or_internal_key(
    session: Optional[Any] = Depends(get_session),
    api_key: Optional[str] = Header(None, alias=INTERNAL_KEY_HEADER),
) -> Any:
    """Lets in either a signed-in user or another service holding the internal key."""
    if session:
        return session
    if is_internal_call(api_key):
        return "internal"
    raise ServiceError(ErrorKind.UNAUTHORIZED, "Unauthorized")


def require_internal_key(api_key: Optional[str] = Header(None, alias=INTERNAL_KEY_HEADER)) -> str:
    if not is_internal_call(api_key):
        raise ServiceError(ErrorKind.UNAUTHORIZED, "Unauthorized")
    return "internal"
