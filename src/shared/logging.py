import logging
import sys

from opentelemetry._logs import set_logger_provider
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, ConsoleLogRecordExporter
from opentelemetry.sdk.resources import Resource

from .config import Settings, settings

# Attributes every LogRecord carries; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "otelSpanID", "otelTraceID", "otelTraceSampled", "otelServiceName"}


class EventFormatter(logging.Formatter):
    """Render event-style records as ``<event> key=value ...``.

    Issuance code logs a short event name (``certificate_issued``) and puts the
    details in ``extra``; the default formatter would drop them.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        if not fields:
            return line
        return line + " " + " ".join(f"{k}={v}" for k, v in sorted(fields.items()))


def setup_logging(config: Settings = settings) -> LoggerProvider:
    """Send stdlib logging to OpenTelemetry and to stdout."""

    resource = Resource.create(
        {"service.name": config.APP_NAME, "deployment.environment": config.APP_ENV}
    )
    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(ConsoleLogRecordExporter()))
    set_logger_provider(logger_provider)

    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(LoggingHandler(level=level, logger_provider=logger_provider))

    # The batch exporter flushes late; issuance events should be visible at once
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(
        EventFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root.addHandler(stream_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return logger_provider
