# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for tracing and logging setup.
"""

import logging
from unittest.mock import patch

from opentelemetry.sdk.trace import TracerProvider

from custody_api.config import Settings
from custody_api.observability.config import (
    TraceContextFilter,
    setup_observability,
    setup_structured_logging
)


class TestTraceContextFilter:
    """Test trace ids on log records."""

    def _record(self):
        return logging.LogRecord("custody_api", logging.INFO, __file__, 1, "message", None, None)

    def test_without_span(self):
        record = self._record()

        assert TraceContextFilter().filter(record) is True
        assert record.trace_id == "-"
        assert record.span_id == "-"

    def test_inside_span(self):
        tracer = TracerProvider().get_tracer(__name__)
        record = self._record()

        with tracer.start_as_current_span("test") as span:
            TraceContextFilter().filter(record)
            context = span.get_span_context()

        assert record.trace_id == format(context.trace_id, "032x")
        assert record.span_id == format(context.span_id, "016x")


class TestSetup:
    """Test environment-specific setup."""

    @patch("custody_api.observability.config.logging.basicConfig")
    def test_production_logging_levels(self, basic_config):
        setup_structured_logging("production")

        assert basic_config.call_args.kwargs["level"] == logging.WARNING
        assert logging.getLogger("pymongo").level == logging.WARNING
        assert logging.getLogger("custody_api.services.lifecycle").level == logging.INFO

    @patch("custody_api.observability.config.trace.set_tracer_provider")
    @patch("custody_api.observability.config.setup_structured_logging")
    def test_tracing_disabled(self, setup_logging, set_provider):
        installed = setup_observability(Settings(environment="test", otel_enabled=False))

        assert installed is False
        setup_logging.assert_called_once_with("test")
        set_provider.assert_not_called()

    @patch("custody_api.observability.config.trace.set_tracer_provider")
    @patch("custody_api.observability.config.setup_structured_logging")
    def test_tracing_enabled(self, setup_logging, set_provider):
        installed = setup_observability(Settings(environment="staging"))

        assert installed is True
        provider = set_provider.call_args.args[0]
        assert provider.resource.attributes["service.name"] == "custody-agreement-changes"
        assert provider.resource.attributes["deployment.environment"] == "staging"
