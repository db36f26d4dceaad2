"""Composition of issued material into kubeconfig data fields."""

import base64
import re

from kubeaccess.ca.store import CAKeyPair
from kubeaccess.domain.models import CredentialDocument, IssuedCertificate

_PEM_BLOCK = re.compile(rb"-----BEGIN ([A-Z0-9 ]+)-----\r?\n.+?\r?\n-----END \1-----", re.DOTALL)


class InvalidEncodingError(Exception):
    """Raised when material handed to the assembler is not PEM text."""

    def __init__(self, field_name: str, reason: str) -> None:
        super().__init__(f"{field_name} is not valid PEM: {reason}")
        self.field_name = field_name


def _checked_pem(field_name: str, data: bytes) -> bytes:
    if not isinstance(data, (bytes, bytearray)):
        raise InvalidEncodingError(field_name, f"expected bytes, got {type(data).__name__}")
    data = bytes(data)
    try:
        data.decode("ascii")
    except UnicodeDecodeError as e:
        raise InvalidEncodingError(field_name, f"non-ASCII byte at offset {e.start}") from e
    if not _PEM_BLOCK.search(data):
        raise InvalidEncodingError(field_name, "no PEM block found")
    return data


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def assemble(
    ca: IssuedCertificate | CAKeyPair | bytes,
    client: IssuedCertificate,
    user: str,
    server_url: str,
) -> CredentialDocument:
    """Build the data fields of a client kubeconfig.

    ``ca`` may be the CA as an issued pair, a loaded CA handle, or raw
    certificate PEM bytes. ``server_url`` is taken as-is.

    Raises:
        InvalidEncodingError: If any byte sequence is not ASCII PEM.
    """
    if isinstance(ca, IssuedCertificate):
        ca_pem = ca.cert_pem
    elif isinstance(ca, CAKeyPair):
        ca_pem = ca.cert_pem
    else:
        ca_pem = ca

    ca_pem = _checked_pem("CA certificate", ca_pem)
    cert_pem = _checked_pem("client certificate", client.cert_pem)
    key_pem = _checked_pem("client key", client.key_pem)

    return CredentialDocument(
        ca_cert_b64=_b64(ca_pem),
        client_cert_b64=_b64(cert_pem),
        client_key_b64=_b64(key_pem),
        user=user,
        server_url=server_url,
    )
