from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from kubeaccess.api import kubeconfigs as kubeconfigs_api
from kubeaccess.ca.certificate_manager import CertificateManager
from kubeaccess.ca.store import PKIStore
from kubeaccess.cluster.config import ClusterConfig, load_cluster_config
from kubeaccess.services.kubeconfig_service import KubeconfigService
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from shared.config import Settings, settings
from shared.logging import setup_logging
from shared.metrics import setup_metrics


def setup_tracing() -> None:
    resource = Resource.create({"service.name": settings.APP_NAME})
    provider = TracerProvider(resource=resource)

    processor = BatchSpanProcessor(ConsoleSpanExporter())
    provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)


def build_kubeconfig_service(config: Settings) -> KubeconfigService:
    """Wire store, certificate manager and cluster config from settings."""
    store = PKIStore(config.CERT_ROOT_DIR, lock_timeout=config.ISSUANCE_LOCK_TIMEOUT_SECONDS)
    if config.CA_AUTO_GENERATE:
        store.ensure_ca(config.CA_CERT_FILE, config.CA_KEY_FILE)

    manager = CertificateManager(store, validity=timedelta(hours=config.CERT_VALIDITY_HOURS))

    if config.CLUSTER_CONFIG_PATH:
        cluster_config = load_cluster_config(config.CLUSTER_CONFIG_PATH)
    else:
        cluster_config = ClusterConfig()

    return KubeconfigService(
        manager,
        cluster_config,
        ca_cert=config.CA_CERT_FILE,
        ca_key=config.CA_KEY_FILE,
        owner=config.CERT_OWNER,
        cluster_name=config.KUBECONFIG_CLUSTER_NAME,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    setup_logging(settings)
    setup_tracing()
    setup_metrics(settings.APP_NAME, settings.APP_ENV)

    LoggingInstrumentor().instrument(set_logging_format=True)

    kubeconfigs_api.set_kubeconfig_service(build_kubeconfig_service(settings))

    yield
    # Shutdown
    kubeconfigs_api.set_kubeconfig_service(None)


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

FastAPIInstrumentor.instrument_app(app)

app.include_router(kubeconfigs_api.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok", "service": settings.APP_NAME}
