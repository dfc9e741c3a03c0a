"""Route guard for pages that need (or must not have) a session."""
import logging

from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.auth import resolve_session
from storefront.config import AUTH_PAGES, HOME_PATH, LOGIN_PATH, PROTECTED_PATHS

logger = logging.getLogger(__name__)


class RouteGuardMiddleware(BaseHTTPMiddleware):
    """
    Redirect navigation based on the caller's session.

    - Protected paths (dashboard, cart, checkout) without a session go to the login page
    - Login and registration with a session go to the dashboard
    """

    def __init__(
        self,
        app,
        protected_paths=PROTECTED_PATHS,
        auth_pages=AUTH_PAGES,
        login_path: str = LOGIN_PATH,
        home_path: str = HOME_PATH
    ):
        super().__init__(app)
        self.protected_paths = tuple(protected_paths)
        self.auth_pages = tuple(auth_pages)
        self.login_path = login_path
        self.home_path = home_path

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        is_protected = any(path.startswith(prefix) for prefix in self.protected_paths)
        is_auth_page = path in self.auth_pages

        if is_protected or is_auth_page:
            session = await resolve_session(request)

            if is_protected and session is None:
                logger.info("Redirecting anonymous request to login", extra={"path": path})
                return RedirectResponse(self.login_path, status_code=303)

            if is_auth_page and session is not None:
                return RedirectResponse(self.home_path, status_code=303)

        return await call_next(request)
