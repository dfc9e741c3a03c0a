import json
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from storefront.models import Base
from storefront.services.cart_service import CartService
from storefront.services.product_service import ProductService
from storefront.sync.query_client import QueryClient


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'storefront.db'}",
        connect_args={"check_same_thread": False}
    )

    @event.listens_for(engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def query_client(clock):
    return QueryClient(stale_time=60, retry=1, retry_delay=0, clock=clock)


@pytest.fixture
def product_service(session_factory):
    return ProductService(session_factory)


@pytest.fixture
def cart_service(session_factory):
    return CartService(session_factory)


@pytest.fixture
def make_product(product_service):
    """Insert a product directly through the data-access layer."""
    def make(user_id="seller", name="Desk lamp", price=Decimal("10.00"), category="Home", **kwargs):
        result = product_service.create_product(
            user_id,
            name,
            kwargs.pop("description", ""),
            price,
            kwargs.pop("image_urls", ["https://cdn.example/lamp.png"]),
            category,
            kwargs.pop("tags", None),
        )
        assert result.ok, result.error
        return result.data
    return make


ACCOUNTS = {
    "ann@example.com": ("tok-ann", "ann"),
    "bo@example.com": ("tok-bo", "bo"),
}
PASSWORD = "secret1"


def backend_handler(request):
    """Stand-in for the hosted identity and storage APIs."""
    path = request.url.path
    if path == "/auth/v1/user":
        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        for email, (account_token, user_id) in ACCOUNTS.items():
            if token == account_token:
                return httpx.Response(200, json={"id": user_id, "email": email})
        return httpx.Response(401, json={"msg": "invalid JWT"})
    if path == "/auth/v1/token":
        body = json.loads(request.content)
        account = ACCOUNTS.get(body["email"])
        if account is None or body["password"] != PASSWORD:
            return httpx.Response(400, json={"error_description": "Invalid login credentials"})
        return httpx.Response(200, json={
            "access_token": account[0],
            "user": {"id": account[1], "email": body["email"]},
        })
    if path == "/auth/v1/signup":
        body = json.loads(request.content)
        return httpx.Response(200, json={"id": "new-user", "email": body["email"]})
    if path == "/auth/v1/logout":
        return httpx.Response(204)
    if path.startswith("/storage/v1/object/"):
        return httpx.Response(200, json={"Key": path})
    return httpx.Response(404)


@pytest.fixture
def app(session_factory):
    from storefront.main import build_state, create_app

    app = create_app()
    build_state(
        app,
        session_factory=session_factory,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(backend_handler)),
        query_client=QueryClient(retry_delay=0),
        checkout_delay=0,
    )
    return app


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def ann():
    return {"Authorization": "Bearer tok-ann"}


@pytest.fixture
def bo():
    return {"Authorization": "Bearer tok-bo"}
