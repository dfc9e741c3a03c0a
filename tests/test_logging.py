import json
import logging

from opentelemetry.sdk.trace import TracerProvider

from storefront.logging_config import CustomJsonFormatter


def _format(formatter, **extra):
    record = logging.LogRecord("storefront.views.cart", logging.INFO, __file__, 1, "Cart cleared", None, None)
    for name, value in extra.items():
        setattr(record, name, value)
    return json.loads(formatter.format(record))


class TestCustomJsonFormatter:

    def test_record_fields(self):
        formatter = CustomJsonFormatter(
            '%(levelname)s %(name)s %(message)s',
            rename_fields={'levelname': 'level', 'name': 'logger'}
        )

        payload = _format(formatter, user_id="u1")

        assert payload["msg"] == "Cart cleared"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "storefront.views.cart"
        assert payload["service"] == "storefront"
        assert payload["user_id"] == "u1"
        assert "message" not in payload
        assert "trace_id" not in payload

    def test_trace_ids_added_inside_span(self):
        formatter = CustomJsonFormatter('%(message)s')
        tracer = TracerProvider().get_tracer(__name__)

        with tracer.start_as_current_span("checkout") as span:
            payload = _format(formatter)
            context = span.get_span_context()

        assert payload["trace_id"] == format(context.trace_id, '032x')
        assert payload["span_id"] == format(context.span_id, '016x')
