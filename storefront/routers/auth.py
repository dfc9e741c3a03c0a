"""Authentication API router."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from storefront.auth import get_current_session
from storefront.config import SESSION_COOKIE_NAME
from storefront.dependencies import get_identity_service
from storefront.schemas import CredentialsRequest, SessionResponse
from storefront.services.identity_service import IdentityService, Session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["authentication"])


def _set_session_cookie(response: Response, session: Session) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        session.access_token,
        httponly=True,
        samesite="lax"
    )


@router.post("/register", response_model=SessionResponse)
async def register(
    request: CredentialsRequest,
    response: Response,
    identity: IdentityService = Depends(get_identity_service)
):
    """
    Create an account.

    If the identity provider requires email confirmation, no session is
    started and the response says so.
    """
    result = await identity.sign_up(request.email, request.password)
    if result.error:
        raise HTTPException(status_code=400, detail=result.error)

    session = result.session
    if not session.access_token:
        return SessionResponse(
            user_id=session.user.id,
            email=session.user.email,
            message="Check your email to confirm your account"
        )

    _set_session_cookie(response, session)
    return SessionResponse(
        access_token=session.access_token,
        user_id=session.user.id,
        email=session.user.email,
        message="Account created"
    )


@router.post("/login", response_model=SessionResponse)
async def login(
    request: CredentialsRequest,
    response: Response,
    identity: IdentityService = Depends(get_identity_service)
):
    """Sign in with email and password; the session token is also set as a cookie."""
    result = await identity.sign_in(request.email, request.password)
    if result.error:
        logger.warning("Login failed", extra={"error": result.error})
        raise HTTPException(status_code=401, detail=result.error)

    session = result.session
    _set_session_cookie(response, session)
    return SessionResponse(
        access_token=session.access_token,
        user_id=session.user.id,
        email=session.user.email,
        message="Signed in"
    )


@router.post("/logout", response_model=SessionResponse)
async def logout(
    response: Response,
    session: Session = Depends(get_current_session),
    identity: IdentityService = Depends(get_identity_service)
):
    """End the session; the caller's cached cart and product pages are dropped."""
    await identity.sign_out(session)
    response.delete_cookie(SESSION_COOKIE_NAME)
    return SessionResponse(user_id=session.user.id, email=session.user.email, message="Signed out")
