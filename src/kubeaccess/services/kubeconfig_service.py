"""Kubeconfig service: issue a user certificate and bundle it into a kubeconfig."""

import logging
from collections.abc import Sequence
from pathlib import Path

from opentelemetry import trace

from kubeaccess.ca.certificate_manager import CertificateManager
from kubeaccess.cluster.api_url import resolve_api_url, select_address
from kubeaccess.cluster.config import ClusterConfig
from kubeaccess.domain.models import CertificateRequest, CredentialDocument
from kubeaccess.kubeconfig.assembler import assemble
from kubeaccess.kubeconfig.render import DEFAULT_CLUSTER_NAME, render_kubeconfig
from kubeaccess.metrics import kubeaccess_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class KubeconfigService:
    """Creates client kubeconfigs for named users."""

    def __init__(
        self,
        manager: CertificateManager,
        cluster_config: ClusterConfig,
        ca_cert: str | Path = "ca.crt",
        ca_key: str | Path = "ca.key",
        owner: str | None = None,
        cluster_name: str = DEFAULT_CLUSTER_NAME,
    ):
        self.manager = manager
        self.cluster_config = cluster_config
        self.ca_cert = ca_cert
        self.ca_key = ca_key
        self.owner = owner
        self.cluster_name = cluster_name

    def resolve_server_url(self) -> str:
        address_config = self.cluster_config.spec.api.to_address_config()
        server_url = resolve_api_url(address_config)
        source, _ = select_address(address_config)
        kubeaccess_metrics.record_api_url_resolved(source)
        return server_url

    def create_user_kubeconfig(
        self,
        username: str,
        groups: Sequence[str] = (),
        reissue: bool = False,
    ) -> tuple[CredentialDocument, str]:
        """Issue (or reuse) a certificate for ``username`` and render its kubeconfig.

        The server URL is resolved before any certificate is written, so a
        misconfigured cluster address leaves the store untouched.

        Args:
            username: Identity name and certificate common name.
            groups: Certificate organizations, in order.
            reissue: Replace an existing certificate instead of reusing it.

        Returns:
            Tuple of (document, kubeconfig_yaml).
        """
        with tracer.start_as_current_span("KubeconfigService.create_user_kubeconfig") as span:
            span.set_attribute("user", username)
            span.set_attribute("reissue", reissue)

            server_url = self.resolve_server_url()
            span.set_attribute("server_url", server_url)

            request = CertificateRequest(
                name=username,
                common_name=username,
                organizations=tuple(groups),
                ca_cert=self.ca_cert,
                ca_key=self.ca_key,
            )
            if reissue:
                issued = self.manager.reissue_certificate(request, self.owner)
            else:
                issued = self.manager.ensure_certificate(request, self.owner)

            ca = self.manager.store.load_ca(self.ca_cert, self.ca_key)
            document = assemble(ca, issued, username, server_url)
            kubeconfig = render_kubeconfig(document, self.cluster_name)

            kubeaccess_metrics.record_kubeconfig_created()
            logger.info(
                "kubeconfig_created",
                extra={"user": username, "groups": list(groups), "server_url": server_url},
            )

            return document, kubeconfig
