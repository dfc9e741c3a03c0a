"""Identity provider client (GoTrue-compatible REST API)."""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, NamedTuple, Optional

import httpx

from storefront.config import SUPABASE_ANON_KEY, SUPABASE_URL
from storefront.monitoring import (
    auth_attempts_counter,
    auth_failures_counter,
    external_identity_duration_histogram,
)

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"


@dataclass(frozen=True)
class User:
    id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class Session:
    access_token: Optional[str]
    user: User


class AuthResult(NamedTuple):
    """Outcome of an identity call: ``session`` on success, ``error`` otherwise."""
    session: Optional[Session] = None
    error: Optional[str] = None


AuthListener = Callable[[str, Optional[Session]], None]


class IdentityService:
    """Client for the hosted identity provider."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = SUPABASE_URL,
        api_key: str = SUPABASE_ANON_KEY
    ):
        """
        Initialize identity client.

        Args:
            http_client: Async HTTP client
            base_url: Backend base URL
            api_key: Public API key sent with every call
        """
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._listeners: List[AuthListener] = []

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {"apikey": self.api_key}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _call(
        self,
        action: str,
        method: str,
        path: str,
        access_token: Optional[str] = None,
        **kwargs: Any
    ) -> httpx.Response:
        start = time.time()
        try:
            return await self.http_client.request(
                method,
                f"{self.base_url}/auth/v1{path}",
                headers=self._headers(access_token),
                **kwargs
            )
        finally:
            external_identity_duration_histogram.record(time.time() - start, {"action": action})

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"identity provider returned {response.status_code}"
        return (
            body.get("error_description")
            or body.get("msg")
            or body.get("message")
            or f"identity provider returned {response.status_code}"
        )

    @staticmethod
    def _parse_user(payload: Dict[str, Any]) -> User:
        return User(id=str(payload["id"]), email=payload.get("email"))

    def _emit(self, event: str, session: Optional[Session]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception as e:
                logger.error("Auth state listener failed", extra={"event": event, "error": str(e)})

    def on_auth_state_change(self, callback: AuthListener) -> Callable[[], None]:
        """
        Subscribe to sign-in / sign-out events.

        Returns:
            Function that removes the subscription
        """
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def get_session(self, access_token: Optional[str]) -> AuthResult:
        """
        Resolve an access token to its session.

        Args:
            access_token: Bearer token issued at sign-in

        Returns:
            AuthResult with the session, or an error when the token is invalid
        """
        if not access_token:
            return AuthResult(error="missing access token")
        try:
            response = await self._call("get_user", "GET", "/user", access_token=access_token)
        except httpx.HTTPError as e:
            logger.error("Failed to resolve session", extra={"error": str(e)})
            return AuthResult(error=str(e))

        if response.status_code != 200:
            auth_failures_counter.add(1, {"reason": "invalid_token"})
            return AuthResult(error=self._error_message(response))
        return AuthResult(session=Session(access_token=access_token, user=self._parse_user(response.json())))

    async def sign_in(self, email: str, password: str) -> AuthResult:
        """Sign in with email and password."""
        auth_attempts_counter.add(1, {"type": "password"})
        try:
            response = await self._call(
                "sign_in", "POST", "/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password}
            )
        except httpx.HTTPError as e:
            logger.error("Identity provider unreachable during sign-in", extra={"error": str(e)})
            return AuthResult(error="identity provider unavailable")

        if response.status_code != 200:
            auth_failures_counter.add(1, {"reason": "invalid_credentials"})
            logger.warning("Sign-in failed", extra={"status_code": response.status_code})
            return AuthResult(error=self._error_message(response))

        body = response.json()
        session = Session(access_token=body.get("access_token"), user=self._parse_user(body["user"]))
        logger.info("User signed in", extra={"user_id": session.user.id})
        self._emit(SIGNED_IN, session)
        return AuthResult(session=session)

    async def sign_up(self, email: str, password: str) -> AuthResult:
        """
        Register a new account.

        When the provider requires email confirmation no access token is
        returned; the session then carries only the user.
        """
        auth_attempts_counter.add(1, {"type": "sign_up"})
        try:
            response = await self._call(
                "sign_up", "POST", "/signup",
                json={"email": email, "password": password}
            )
        except httpx.HTTPError as e:
            logger.error("Identity provider unreachable during sign-up", extra={"error": str(e)})
            return AuthResult(error="identity provider unavailable")

        if response.status_code not in (200, 201):
            auth_failures_counter.add(1, {"reason": "sign_up_rejected"})
            return AuthResult(error=self._error_message(response))

        body = response.json()
        user_payload = body.get("user") or body
        session = Session(access_token=body.get("access_token"), user=self._parse_user(user_payload))
        logger.info("User signed up", extra={
            "user_id": session.user.id,
            "confirmed": session.access_token is not None
        })
        if session.access_token:
            self._emit(SIGNED_IN, session)
        return AuthResult(session=session)

    async def sign_out(self, session: Session) -> AuthResult:
        """Revoke the session's token; listeners are notified either way."""
        error = None
        try:
            response = await self._call("sign_out", "POST", "/logout", access_token=session.access_token)
            if response.status_code not in (200, 204):
                error = self._error_message(response)
        except httpx.HTTPError as e:
            error = str(e)

        if error:
            logger.warning("Sign-out was not confirmed by provider", extra={
                "user_id": session.user.id,
                "error": error
            })
        self._emit(SIGNED_OUT, session)
        return AuthResult(error=error)
