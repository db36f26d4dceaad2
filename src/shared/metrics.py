from opentelemetry import metrics
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource


def setup_metrics(app_name: str, environment: str = "development") -> MeterProvider:
    """Configure the OpenTelemetry meter provider for the issuance metrics.

    Prometheus always gets a reader. Console export is only wired up in
    development, where nobody scrapes the registry.
    """

    resource = Resource.create({"service.name": app_name, "deployment.environment": environment})

    readers: list[MetricReader] = [PrometheusMetricReader()]
    if environment == "development":
        readers.append(PeriodicExportingMetricReader(ConsoleMetricExporter()))

    provider = MeterProvider(resource=resource, metric_readers=readers)
    metrics.set_meter_provider(provider)
    return provider
