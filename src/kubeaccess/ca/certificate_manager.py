"""Leaf certificate issuance against a PKI store.

Issues client certificates signed by a CA, at most once per identity name.
"""

import ipaddress
import logging
import time
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from opentelemetry import trace

from kubeaccess.ca.crypto import (
    CryptoError,
    certificate_to_pem,
    compute_thumbprint,
    pem_pair_matches,
    private_key_to_pem,
    signature_hash_for,
)
from kubeaccess.ca.store import (
    CAKeyPair,
    IdentityConflictError,
    InvalidCAError,
    InvalidRequestError,
    PKIStore,
)
from kubeaccess.domain.models import CertificateRequest, IssuedCertificate
from kubeaccess.metrics import kubeaccess_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class SigningFailureError(Exception):
    """Raised when key generation or certificate signing fails."""

    pass


class SubjectMismatchError(IdentityConflictError):
    """Raised when the stored certificate's subject differs from the request."""

    pass


class CertificateManager:
    """Issues X.509 leaf certificates signed by a CA and keeps them in a store.

    Certificate attributes:
    - Subject: O=<organizations...>, CN=<common_name>
    - Validity: now() to now() + validity, capped at the CA's not_after
    - Key Usage: Digital Signature, Key Encipherment
    - Extended Key Usage: Client Authentication, Server Authentication
    - Key: RSA 2048
    """

    DEFAULT_VALIDITY = timedelta(hours=8760)
    LEAF_KEY_SIZE = 2048

    def __init__(self, store: PKIStore, validity: timedelta = DEFAULT_VALIDITY) -> None:
        self.store = store
        self.validity = validity

    def ensure_certificate(self, request: CertificateRequest, owner: str | None) -> IssuedCertificate:
        """Return the certificate for ``request.name``, issuing it on first use.

        An existing pair is returned byte-for-byte when its subject matches the
        request. A pair with another subject is never returned or replaced here;
        use :meth:`reissue_certificate` to replace it.

        Args:
            request: Identity and CA to issue for.
            owner: Account that should own the written files, if it exists.

        Raises:
            InvalidRequestError: If the name is unusable or reserved for the CA.
            StoreUnavailableError: If the store cannot be created or written.
            InvalidCAError: If the CA material is invalid.
            SigningFailureError: If signing fails.
            SubjectMismatchError: If the stored certificate has another subject.
            IdentityConflictError: If another writer holds the identity for longer
                than the store's lock timeout, or the stored pair is inconsistent.
        """
        with tracer.start_as_current_span("CertificateManager.ensure_certificate") as span:
            span.set_attribute("identity", request.name)
            self._validate(request)

            try:
                existing = self.store.read_pair(request.name)
                if existing is not None and self._pair_consistent(existing):
                    span.set_attribute("reused", True)
                    return self._reuse(request, existing)

                self.store.ensure_root()
                ca = self.store.load_ca(request.ca_cert, request.ca_key)

                with self.store.identity_lock(request.name, timeout=self.store.lock_timeout):
                    # Another writer may have published, or finished replacing an
                    # inconsistent pair, while we waited for the lock
                    existing = self.store.read_pair(request.name)
                    if existing is not None:
                        span.set_attribute("reused", True)
                        return self._reuse(request, existing)

                    issued = self._issue(request, ca, mode="new")
                    self.store.write_pair(request.name, issued, owner)
            except IdentityConflictError:
                kubeaccess_metrics.record_identity_conflict("ensure")
                raise

            span.set_attribute("reused", False)
            return issued

    def reissue_certificate(self, request: CertificateRequest, owner: str | None) -> IssuedCertificate:
        """Sign a fresh pair for ``request.name``, replacing any stored pair.

        Raises:
            IdentityConflictError: If another writer currently holds the identity.
            Plus everything :meth:`ensure_certificate` raises.
        """
        with tracer.start_as_current_span("CertificateManager.reissue_certificate") as span:
            span.set_attribute("identity", request.name)
            self._validate(request)

            self.store.ensure_root()
            ca = self.store.load_ca(request.ca_cert, request.ca_key)

            try:
                with self.store.identity_lock(request.name, timeout=0):
                    issued = self._issue(request, ca, mode="reissue")
                    self.store.write_pair(request.name, issued, owner)
            except IdentityConflictError:
                kubeaccess_metrics.record_identity_conflict("reissue")
                raise

            return issued

    def _validate(self, request: CertificateRequest) -> None:
        if not request.name:
            raise InvalidRequestError("Certificate request name must not be empty")
        if not request.common_name:
            raise InvalidRequestError(f"Certificate request {request.name!r} has no common name")
        if any(not org for org in request.organizations):
            raise InvalidRequestError(
                f"Certificate request {request.name!r} contains an empty organization"
            )
        self.store.check_identity_name(request.name, request.ca_cert, request.ca_key)

    @staticmethod
    def _pair_consistent(existing: IssuedCertificate) -> bool:
        try:
            return pem_pair_matches(existing.cert_pem, existing.key_pem)
        except CryptoError:
            return False

    def _reuse(self, request: CertificateRequest, existing: IssuedCertificate) -> IssuedCertificate:
        try:
            consistent = pem_pair_matches(existing.cert_pem, existing.key_pem)
        except CryptoError as e:
            raise IdentityConflictError(
                request.name, f"Stored artifacts for {request.name!r} are unreadable: {e}"
            ) from e
        if not consistent:
            raise IdentityConflictError(
                request.name,
                f"Stored certificate and key for {request.name!r} do not match and no "
                "writer holds the identity; reissue required",
            )

        subject = existing.certificate.subject
        stored_cn = [a.value for a in subject.get_attributes_for_oid(NameOID.COMMON_NAME)]
        stored_orgs = [a.value for a in subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)]
        if stored_cn != [request.common_name] or stored_orgs != list(request.organizations):
            logger.warning(
                "certificate_subject_differs",
                extra={
                    "identity": request.name,
                    "stored_subject": subject.rfc4514_string(),
                    "requested_common_name": request.common_name,
                    "requested_organizations": list(request.organizations),
                },
            )
            raise SubjectMismatchError(
                request.name,
                f"Stored certificate for {request.name!r} has subject "
                f"{subject.rfc4514_string()!r}, which differs from the request; "
                "reissue the certificate to change it",
            )

        kubeaccess_metrics.record_certificate_reused()
        logger.debug("certificate_reused", extra={"identity": request.name})
        return existing

    def _subject(self, request: CertificateRequest) -> x509.Name:
        attributes = [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, org) for org in request.organizations
        ]
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, request.common_name))
        return x509.Name(attributes)

    @staticmethod
    def _san_entries(hostnames: tuple[str, ...]) -> list[x509.GeneralName]:
        entries: list[x509.GeneralName] = []
        for host in hostnames:
            try:
                entries.append(x509.IPAddress(ipaddress.ip_address(host)))
            except ValueError:
                entries.append(x509.DNSName(host))
        return entries

    def _issue(self, request: CertificateRequest, ca: CAKeyPair, mode: str) -> IssuedCertificate:
        start_time = time.time()

        try:
            subject = self._subject(request)
        except ValueError as e:
            raise InvalidRequestError(f"Invalid subject for {request.name!r}: {e}") from e

        now = datetime.now(timezone.utc)
        not_after = min(now + self.validity, ca.certificate.not_valid_after_utc)
        if not_after <= now:
            raise InvalidCAError(f"CA {ca.cert_path} has no remaining validity")

        try:
            leaf_key = rsa.generate_private_key(public_exponent=65537, key_size=self.LEAF_KEY_SIZE)

            builder = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(ca.certificate.subject)
                .public_key(leaf_key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now)
                .not_valid_after(not_after)
                .add_extension(
                    x509.BasicConstraints(ca=False, path_length=None),
                    critical=True,
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        key_encipherment=True,
                        key_cert_sign=False,
                        crl_sign=False,
                        content_commitment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.ExtendedKeyUsage(
                        [ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH]
                    ),
                    critical=False,
                )
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(
                        ca.private_key.public_key()  # type: ignore[arg-type]
                    ),
                    critical=False,
                )
            )
            if request.hostnames:
                builder = builder.add_extension(
                    x509.SubjectAlternativeName(self._san_entries(request.hostnames)),
                    critical=False,
                )

            certificate = builder.sign(ca.private_key, signature_hash_for(ca.private_key))
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            logger.error(
                "certificate_signing_failed",
                extra={"identity": request.name, "error": str(e)},
            )
            raise SigningFailureError(f"Failed to sign certificate for {request.name!r}: {e}") from e

        cert_pem = certificate_to_pem(certificate)
        issued = IssuedCertificate(cert_pem=cert_pem, key_pem=private_key_to_pem(leaf_key))

        duration = time.time() - start_time
        kubeaccess_metrics.record_certificate_issued(duration, mode)

        logger.info(
            "certificate_issued",
            extra={
                "identity": request.name,
                "mode": mode,
                "serial": format(certificate.serial_number, "x"),
                "thumbprint": compute_thumbprint(cert_pem),
                "not_after": not_after.isoformat(),
                "duration_seconds": duration,
            },
        )

        return issued
