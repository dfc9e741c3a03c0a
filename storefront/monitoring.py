"""Monitoring and observability setup.

Instruments are created on the global OpenTelemetry meter at import time.
Until ``init_metrics`` installs a provider they record nothing, so modules and
tests can import them freely; the exporters are only wired up at application
startup when ``OTEL_ENABLED`` is set.
"""
import logging
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
import pyroscope

from storefront.config import OTEL_EXPORTER_OTLP_ENDPOINT, PYROSCOPE_SERVER, SERVICE_NAME

logger = logging.getLogger(__name__)


def init_tracing() -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing.

    Returns:
        Tracer instance
    """
    resource = Resource.create({"service.name": SERVICE_NAME})

    tracer_provider = TracerProvider(resource=resource)
    otlp_span_exporter = OTLPSpanExporter(
        endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=True
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))
    trace.set_tracer_provider(tracer_provider)

    logger.info(f"Tracing initialized with endpoint: {OTEL_EXPORTER_OTLP_ENDPOINT}")

    return trace.get_tracer(__name__)


def init_metrics() -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Returns:
        Meter instance
    """
    resource = Resource.create({"service.name": SERVICE_NAME})

    otlp_metric_exporter = OTLPMetricExporter(
        endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=True
    )
    otlp_metric_reader = PeriodicExportingMetricReader(
        otlp_metric_exporter,
        export_interval_millis=5000
    )

    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[otlp_metric_reader]
    )
    metrics.set_meter_provider(meter_provider)

    logger.info("Metrics initialized with OTLP exporter")

    return metrics.get_meter(__name__)


def init_profiling() -> None:
    """Initialize Pyroscope profiling."""
    try:
        pyroscope.configure(
            application_name=SERVICE_NAME,
            server_address=PYROSCOPE_SERVER,
            tags={"env": "demo"}
        )
        logger.info(f"Profiling initialized with server: {PYROSCOPE_SERVER}")
    except Exception as e:
        logger.warning(f"Failed to initialize profiling: {e}")


meter = metrics.get_meter(SERVICE_NAME)

# Catalog metrics
product_views_counter = meter.create_counter(
    "storefront.products.views",
    description="Product list and detail reads",
    unit="1"
)

share_link_views_counter = meter.create_counter(
    "storefront.products.share_views",
    description="Public share-link resolutions by outcome",
    unit="1"
)

products_created_counter = meter.create_counter(
    "storefront.products.created",
    description="Products created",
    unit="1"
)

likes_toggled_counter = meter.create_counter(
    "storefront.products.likes_toggled",
    description="Like toggles by resulting state",
    unit="1"
)

image_uploads_counter = meter.create_counter(
    "storefront.products.image_uploads",
    description="Product image uploads by outcome",
    unit="1"
)

# Cart metrics
cart_additions_counter = meter.create_counter(
    "storefront.cart.additions",
    description="Total number of items added to cart",
    unit="1"
)

cart_mutations_counter = meter.create_counter(
    "storefront.cart.mutations",
    description="Cart mutations by operation and outcome",
    unit="1"
)

checkout_counter = meter.create_counter(
    "storefront.checkouts",
    description="Total number of checkouts",
    unit="1"
)

checkout_amount_histogram = meter.create_histogram(
    "storefront.checkout.amount",
    description="Checkout amount",
    unit="USD"
)

# Query cache metrics
cache_reads_counter = meter.create_counter(
    "storefront.query_cache.reads",
    description="Query cache reads by outcome (hit, stale, miss)",
    unit="1"
)

cache_fetch_failures_counter = meter.create_counter(
    "storefront.query_cache.fetch_failures",
    description="Fetches that failed after the automatic retry",
    unit="1"
)

cache_discarded_results_counter = meter.create_counter(
    "storefront.query_cache.discarded_results",
    description="Fetch results dropped because a newer write superseded them",
    unit="1"
)

optimistic_rollbacks_counter = meter.create_counter(
    "storefront.query_cache.rollbacks",
    description="Optimistic patches restored after a failed mutation",
    unit="1"
)

cache_evictions_counter = meter.create_counter(
    "storefront.query_cache.evictions",
    description="Inactive query cache entries evicted",
    unit="1"
)

# Security monitoring metrics
auth_failures_counter = meter.create_counter(
    "storefront.auth.failures",
    description="Total number of authentication failures",
    unit="1"
)

auth_attempts_counter = meter.create_counter(
    "storefront.auth.attempts",
    description="Total number of authentication attempts",
    unit="1"
)

rate_limit_exceeded_counter = meter.create_counter(
    "storefront.rate_limit.exceeded",
    description="Total number of rate limit violations",
    unit="1"
)

# External service call metrics
external_identity_duration_histogram = meter.create_histogram(
    "storefront.external.identity.duration",
    description="Duration of identity provider calls",
    unit="s"
)

external_storage_duration_histogram = meter.create_histogram(
    "storefront.external.storage.duration",
    description="Duration of object storage calls",
    unit="s"
)
