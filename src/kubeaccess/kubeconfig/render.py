"""Kubeconfig YAML rendering."""

import yaml

from kubeaccess.domain.models import CredentialDocument

DEFAULT_CLUSTER_NAME = "k0s"


def kubeconfig_dict(document: CredentialDocument, cluster_name: str = DEFAULT_CLUSTER_NAME) -> dict:
    return {
        "apiVersion": "v1",
        "clusters": [
            {
                "cluster": {
                    "server": document.server_url,
                    "certificate-authority-data": document.ca_cert_b64,
                },
                "name": cluster_name,
            }
        ],
        "contexts": [
            {
                "context": {"cluster": cluster_name, "user": document.user},
                "name": cluster_name,
            }
        ],
        "current-context": cluster_name,
        "kind": "Config",
        "preferences": {},
        "users": [
            {
                "name": document.user,
                "user": {
                    "client-certificate-data": document.client_cert_b64,
                    "client-key-data": document.client_key_b64,
                },
            }
        ],
    }


def render_kubeconfig(document: CredentialDocument, cluster_name: str = DEFAULT_CLUSTER_NAME) -> str:
    """Serialize ``document`` as a single-cluster, single-user kubeconfig."""
    return yaml.safe_dump(
        kubeconfig_dict(document, cluster_name),
        default_flow_style=False,
        sort_keys=False,
        width=float("inf"),
    )
