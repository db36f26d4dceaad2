"""Cryptographic helpers shared by the PKI store and the certificate manager.

Covers PEM serialization, key/certificate pairing and thumbprints.
"""

import hashlib

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed448, ed25519
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificateIssuerPrivateKeyTypes,
    PrivateKeyTypes,
    PublicKeyTypes,
)


class CryptoError(Exception):
    """Raised when a cryptographic helper operation fails."""

    pass


def private_key_to_pem(private_key: PrivateKeyTypes) -> bytes:
    """Serialize a private key as unencrypted PKCS#8 PEM."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def certificate_to_pem(certificate: x509.Certificate) -> bytes:
    return certificate.public_bytes(serialization.Encoding.PEM)


def _spki(public_key: PublicKeyTypes) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def key_matches_certificate(private_key: PrivateKeyTypes, certificate: x509.Certificate) -> bool:
    """Check that the certificate carries the public half of ``private_key``."""
    return _spki(private_key.public_key()) == _spki(certificate.public_key())


def pem_pair_matches(cert_pem: bytes, key_pem: bytes) -> bool:
    """PEM variant of :func:`key_matches_certificate`.

    Raises:
        CryptoError: If either PEM blob cannot be parsed.
    """
    try:
        certificate = x509.load_pem_x509_certificate(cert_pem)
        private_key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError) as e:
        raise CryptoError(f"Failed to parse certificate/key pair: {e}") from e
    return key_matches_certificate(private_key, certificate)


def signature_hash_for(private_key: CertificateIssuerPrivateKeyTypes) -> hashes.HashAlgorithm | None:
    """Digest to sign with. EdDSA keys sign without a separate digest."""
    if isinstance(private_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return None
    return hashes.SHA256()


def is_issued_by(certificate: x509.Certificate, issuer: x509.Certificate) -> bool:
    """Check issuer name and signature of ``certificate`` against ``issuer``."""
    try:
        certificate.verify_directly_issued_by(issuer)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


def compute_thumbprint(cert_pem: bytes) -> str:
    """Compute SHA-256 thumbprint of a certificate.

    Args:
        cert_pem: Certificate in PEM format.

    Returns:
        Lowercase hexadecimal SHA-256 thumbprint.

    Raises:
        CryptoError: If thumbprint computation fails.
    """
    try:
        cert = x509.load_pem_x509_certificate(cert_pem)
        der_bytes = cert.public_bytes(serialization.Encoding.DER)
        return hashlib.sha256(der_bytes).hexdigest().lower()
    except Exception as e:
        raise CryptoError(f"Failed to compute certificate thumbprint: {e}") from e
