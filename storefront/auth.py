"""Session resolution for requests."""
import logging
from typing import Optional

from fastapi import Depends, Request

from storefront.config import SESSION_COOKIE_NAME
from storefront.exceptions import AuthenticationRequired
from storefront.services.identity_service import Session

logger = logging.getLogger(__name__)

_UNRESOLVED = object()


def extract_access_token(request: Request) -> Optional[str]:
    """
    Read the access token from the Authorization header or session cookie.

    Args:
        request: Incoming request

    Returns:
        Token, or None if the request carries none
    """
    authorization = request.headers.get("authorization")
    if authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]
    return request.cookies.get(SESSION_COOKIE_NAME)


async def resolve_session(request: Request) -> Optional[Session]:
    """
    Resolve the request's session once and remember it on ``request.state``.

    Returns:
        The session, or None when the request is anonymous or the token is invalid
    """
    session = getattr(request.state, "session", _UNRESOLVED)
    if session is not _UNRESOLVED:
        return session

    token = extract_access_token(request)
    session = None
    if token:
        result = await request.app.state.identity_service.get_session(token)
        if result.error:
            logger.warning("Rejected access token", extra={"error": result.error})
        session = result.session
    request.state.session = session
    return session


async def get_current_session(request: Request) -> Session:
    """Dependency returning the caller's session, 401 when there is none."""
    session = await resolve_session(request)
    if session is None:
        raise AuthenticationRequired()
    return session


async def get_current_user_id(session: Session = Depends(get_current_session)) -> str:
    """Dependency returning the caller's user id."""
    return session.user.id
