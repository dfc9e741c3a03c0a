"""Main application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import redis
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from sqlalchemy.orm import sessionmaker

from storefront.config import (
    API_VERSION,
    CHECKOUT_PROCESSING_DELAY,
    OTEL_ENABLED,
    PROFILING_ENABLED,
    QUERY_GC_INTERVAL,
    REDIS_URL,
)
from storefront.database import SessionLocal, engine, init_db
from storefront.exceptions import StoreError
from storefront.logging_config import setup_logging
from storefront.monitoring import init_metrics, init_profiling, init_tracing
from storefront.redis_rate_limiter import RedisRateLimiter
from storefront.routers import auth as auth_router
from storefront.routers import cart, checkout, dashboard, products, share
from storefront.security import RouteGuardMiddleware
from storefront.services.cart_service import CartService
from storefront.services.checkout_service import CheckoutService
from storefront.services.identity_service import SIGNED_OUT, IdentityService
from storefront.services.product_service import ProductService
from storefront.services.storage_service import StorageService
from storefront.sync import keys
from storefront.sync.query_client import QueryClient
from storefront.views.cart import CartView
from storefront.views.products import ProductListingView

# Setup structured logging
setup_logging()
logger = logging.getLogger(__name__)


def build_state(
    app: FastAPI,
    *,
    session_factory: sessionmaker,
    http_client: httpx.AsyncClient,
    redis_client: Optional[redis.Redis] = None,
    query_client: Optional[QueryClient] = None,
    checkout_delay: float = CHECKOUT_PROCESSING_DELAY
) -> None:
    """
    Wire the services, the query cache and the views onto ``app.state``.

    The query cache forgets a user's cart and product pages when they sign out.
    """
    query_client = query_client or QueryClient()
    identity_service = IdentityService(http_client)

    def drop_user_queries(event, session):
        if event == SIGNED_OUT and session is not None:
            for prefix in keys.user_scoped(session.user.id):
                query_client.remove_queries(prefix)
            logger.info("Dropped cached queries for signed-out user", extra={"user_id": session.user.id})

    identity_service.on_auth_state_change(drop_user_queries)

    cart_view = CartView(query_client, CartService(session_factory))
    app.state.query_client = query_client
    app.state.redis_client = redis_client
    app.state.http_client = http_client
    app.state.identity_service = identity_service
    app.state.storage_service = StorageService(http_client)
    app.state.cart_view = cart_view
    app.state.product_view = ProductListingView(query_client, ProductService(session_factory))
    app.state.checkout_service = CheckoutService(cart_view, processing_delay=checkout_delay)


async def run_query_gc(client: QueryClient, interval: float = QUERY_GC_INTERVAL) -> None:
    """Evict inactive query cache entries every ``interval`` seconds."""
    while True:
        await asyncio.sleep(interval)
        evicted = client.gc()
        if evicted:
            logger.debug("Query cache gc", extra={"evicted": evicted, "remaining": len(client)})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting application...")

    if OTEL_ENABLED:
        init_tracing()
        init_metrics()
        SQLAlchemyInstrumentor().instrument(engine=engine)

    # Initialize database
    init_db()

    # Sync client for middleware (rate limiter must be sync)
    redis_client = redis.from_url(REDIS_URL, decode_responses=True)
    if OTEL_ENABLED:
        RedisInstrumentor().instrument(redis_client=redis_client)

    # Initialize HTTP client
    http_client = httpx.AsyncClient(timeout=30.0)
    if OTEL_ENABLED:
        HTTPXClientInstrumentor().instrument_client(http_client)
    logger.info("HTTP client initialized")

    build_state(app, session_factory=SessionLocal, http_client=http_client, redis_client=redis_client)
    gc_task = asyncio.create_task(run_query_gc(app.state.query_client))

    # Initialize profiling
    if PROFILING_ENABLED:
        init_profiling()

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    gc_task.cancel()
    try:
        await gc_task
    except asyncio.CancelledError:
        pass
    app.state.query_client.clear()
    await http_client.aclose()
    redis_client.close()
    logger.info("Application shutdown complete")


async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store error", extra={
        "path": request.url.path,
        "operation": exc.operation,
        "error": str(exc.error)
    })
    return JSONResponse(
        status_code=502,
        content={"detail": "Storefront backend unavailable, please try again"}
    )


def create_app() -> FastAPI:
    """Create the FastAPI application with middleware and routers."""
    app = FastAPI(
        title="Storefront Service",
        version=API_VERSION,
        lifespan=lifespan
    )

    # Innermost first: the route guard sees requests after rate limiting
    app.add_middleware(RouteGuardMiddleware)
    app.add_middleware(RedisRateLimiter)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StoreError, store_error_handler)

    if OTEL_ENABLED:
        FastAPIInstrumentor.instrument_app(app)

    # Health check endpoint
    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    # Include routers
    app.include_router(auth_router.router)
    app.include_router(dashboard.router)
    app.include_router(products.router)
    app.include_router(share.router)
    app.include_router(cart.router)
    app.include_router(checkout.router)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
