"""OpenTelemetry metrics for credential issuance."""

from collections.abc import Iterator

from opentelemetry import metrics

meter = metrics.get_meter("kubeaccess")

# Leaf certificate counters
certificates_issued_total = meter.create_counter(
    name="kubeaccess_certificates_issued_total",
    description="Total leaf certificates signed by the CA",
    unit="1",
)

certificates_reused_total = meter.create_counter(
    name="kubeaccess_certificates_reused_total",
    description="Total issuance requests answered from an existing artifact pair",
    unit="1",
)

certificate_issuance_duration = meter.create_histogram(
    name="kubeaccess_certificate_issuance_duration_seconds",
    description="Leaf certificate generation and signing duration in seconds",
    unit="s",
)

identity_conflicts_total = meter.create_counter(
    name="kubeaccess_identity_conflicts_total",
    description="Total issuance attempts that lost the per-identity lock",
    unit="1",
)

# Address resolution
api_url_resolutions_total = meter.create_counter(
    name="kubeaccess_api_url_resolutions_total",
    description="Total API URL resolutions by selected source",
    unit="1",
)

kubeconfigs_created_total = meter.create_counter(
    name="kubeaccess_kubeconfigs_created_total",
    description="Total kubeconfig documents assembled",
    unit="1",
)

# CA loaded gauge, labelled with where the CA came from
_ca_source: str | None = None


def _get_ca_loaded(
    options: metrics.CallbackOptions,
) -> Iterator[metrics.Observation]:
    """Callback to report CA loaded status."""
    if _ca_source:
        yield metrics.Observation(1, {"source": _ca_source})
    else:
        yield metrics.Observation(0, {"source": "none"})


ca_loaded_gauge = meter.create_observable_gauge(
    name="kubeaccess_ca_loaded",
    description="CA material loaded (1=yes, 0=no)",
    unit="1",
    callbacks=[_get_ca_loaded],
)


class KubeaccessMetrics:
    """Facade for issuance metrics with proper labels."""

    def record_certificate_issued(self, duration_seconds: float, mode: str) -> None:
        """Record a signed leaf certificate. Labels: mode=new|reissue"""
        certificates_issued_total.add(1, {"mode": mode})
        certificate_issuance_duration.record(duration_seconds)

    def record_certificate_reused(self) -> None:
        """Record an idempotent hit on an existing artifact pair."""
        certificates_reused_total.add(1)

    def record_identity_conflict(self, operation: str) -> None:
        """Record a lost lock race. Labels: operation=ensure|reissue"""
        identity_conflicts_total.add(1, {"operation": operation})

    def record_api_url_resolved(self, source: str) -> None:
        """Record URL resolution. Labels: source=external_address|internal_address|address"""
        api_url_resolutions_total.add(1, {"source": source})

    def record_kubeconfig_created(self) -> None:
        kubeconfigs_created_total.add(1)

    def record_ca_loaded(self, source: str) -> None:
        """Record CA loaded. Labels: source=file|generated"""
        global _ca_source
        _ca_source = source


# Singleton instance
kubeaccess_metrics = KubeaccessMetrics()
