"""Value types passed between the issuance, resolution and assembly steps."""

from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509

DEFAULT_API_PORT = 6443


@dataclass(frozen=True)
class CertificateRequest:
    """Identity to issue a leaf certificate for.

    ``ca_cert`` and ``ca_key`` locate the signing CA. Relative locators are
    resolved against the PKI root of the store the request is issued against.
    """

    name: str
    common_name: str
    organizations: tuple[str, ...] = ()
    ca_cert: str | Path = "ca.crt"
    ca_key: str | Path = "ca.key"
    hostnames: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Accept any sequence from callers but keep the request hashable
        object.__setattr__(self, "organizations", tuple(self.organizations))
        object.__setattr__(self, "hostnames", tuple(self.hostnames))


@dataclass(frozen=True)
class IssuedCertificate:
    """PEM-encoded leaf certificate and its private key."""

    cert_pem: bytes
    key_pem: bytes = field(repr=False)

    @property
    def certificate(self) -> x509.Certificate:
        return x509.load_pem_x509_certificate(self.cert_pem)


@dataclass(frozen=True)
class ClusterAddressConfig:
    """Address fields of the cluster API, in resolution order."""

    external_address: str | None = None
    internal_address: str | None = None
    address: str | None = None
    port: int | None = DEFAULT_API_PORT


@dataclass(frozen=True)
class CredentialDocument:
    """Data fields of a client kubeconfig.

    The three ``*_b64`` fields hold single-line standard base64 of the PEM bytes.
    """

    ca_cert_b64: str
    client_cert_b64: str
    client_key_b64: str = field(repr=False)
    user: str
    server_url: str
