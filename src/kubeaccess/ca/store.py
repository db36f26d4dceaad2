"""PKI store: CA material and issued identity artifacts under one root directory.

Layout (all relative to the root):
- ``<name>.crt`` / ``<name>.key``: PEM certificate and private key of an identity
- ``<name>.lock``: exclusive per-identity lock, present only while a writer runs

Identity names that would land on the CA files (or the CA bootstrap lock) are
rejected, see :meth:`PKIStore.check_identity_name`.

Artifact pairs are published with write-to-temp + ``os.replace``, key first and
certificate last. A pair counts as present only when both files exist.
"""

import logging
import os
import re
import shutil
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes
from cryptography.x509.oid import NameOID
from opentelemetry import trace

from kubeaccess.ca.crypto import (
    certificate_to_pem,
    key_matches_certificate,
    private_key_to_pem,
    signature_hash_for,
)
from kubeaccess.domain.models import IssuedCertificate
from kubeaccess.metrics import kubeaccess_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_@:][A-Za-z0-9._@:-]*$")

CERT_FILE_MODE = 0o644
KEY_FILE_MODE = 0o640


class StoreUnavailableError(Exception):
    """Raised when the PKI root cannot be created, read or written."""

    pass


class InvalidCAError(Exception):
    """Raised when CA material is missing, unparsable or not a matching CA pair."""

    pass


class IdentityConflictError(Exception):
    """Raised when another writer holds the identity and did not finish in time."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(message)
        self.name = name


class InvalidRequestError(ValueError):
    """Raised when an identity name or request field is unusable."""

    pass


@dataclass(frozen=True)
class CAKeyPair:
    """Loaded CA certificate and key, plus the bytes and locations they came from."""

    certificate: x509.Certificate
    private_key: CertificateIssuerPrivateKeyTypes = field(repr=False)
    cert_pem: bytes
    cert_path: Path
    key_path: Path
    source: str  # "file" or "generated"

    @property
    def certificate_pem(self) -> str:
        """Get CA certificate as PEM string."""
        return self.cert_pem.decode("ascii")


class PKIStore:
    """File-system backed store for CA material and issued identities."""

    DEFAULT_CA_COMMON_NAME = "kubernetes-ca"
    DEFAULT_CA_VALIDITY = timedelta(hours=87600)
    CA_KEY_SIZE = 2048

    def __init__(
        self,
        root_dir: str | Path,
        lock_timeout: float = 5.0,
        poll_interval: float = 0.05,
    ) -> None:
        self.root_dir = Path(root_dir)
        self.lock_timeout = lock_timeout
        self.poll_interval = poll_interval
        self._ca_cache: dict[tuple[Path, int, Path, int], CAKeyPair] = {}

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def resolve(self, locator: str | Path) -> Path:
        """Resolve a CA locator; relative locators live under the root."""
        path = Path(locator)
        if not path.is_absolute():
            path = self.root_dir / path
        return path

    def cert_path(self, name: str) -> Path:
        return self.root_dir / f"{self._checked_name(name)}.crt"

    def key_path(self, name: str) -> Path:
        return self.root_dir / f"{self._checked_name(name)}.key"

    def lock_path(self, name: str) -> Path:
        return self.root_dir / f"{self._checked_name(name)}.lock"

    @staticmethod
    def _checked_name(name: str) -> str:
        if not name:
            raise InvalidRequestError("Identity name must not be empty")
        if not _NAME_PATTERN.match(name):
            raise InvalidRequestError(f"Identity name {name!r} is not a valid file name component")
        return name

    def check_identity_name(
        self, name: str, cert_locator: str | Path, key_locator: str | Path
    ) -> None:
        """Reject identity names whose artifacts or lock would alias the CA's.

        Raises:
            InvalidRequestError: If the name is unusable or reserved for the CA.
        """
        ca_cert_path = self.resolve(cert_locator)
        ca_paths = {ca_cert_path.resolve(), self.resolve(key_locator).resolve()}
        own_paths = {self.cert_path(name).resolve(), self.key_path(name).resolve()}

        # ensure_ca locks on the certificate's stem
        if own_paths & ca_paths or name == ca_cert_path.stem:
            logger.warning("identity_name_reserved", extra={"identity": name})
            raise InvalidRequestError(f"Identity name {name!r} is reserved for the CA")

    def ensure_root(self) -> None:
        """Create the root directory if needed and check it is writable.

        Raises:
            StoreUnavailableError: If the directory cannot be created or written.
        """
        try:
            self.root_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
        except OSError as e:
            logger.error(
                "pki_root_unavailable",
                extra={"root_dir": str(self.root_dir), "error": str(e)},
            )
            raise StoreUnavailableError(
                f"Cannot create PKI root {self.root_dir}: {e}"
            ) from e

        if not os.access(self.root_dir, os.W_OK | os.X_OK):
            logger.error("pki_root_unavailable", extra={"root_dir": str(self.root_dir)})
            raise StoreUnavailableError(f"PKI root {self.root_dir} is not writable")

    # ------------------------------------------------------------------
    # CA material
    # ------------------------------------------------------------------

    def load_ca(self, cert_locator: str | Path, key_locator: str | Path) -> CAKeyPair:
        """Load and validate a CA certificate/key pair.

        Results are cached per store instance, keyed by path and mtime, so a
        replaced CA file is picked up on the next call.

        Raises:
            InvalidCAError: If the material is missing, unparsable, not a CA,
                expired, or the key does not belong to the certificate.
            StoreUnavailableError: If the files exist but cannot be read.
        """
        cert_path = self.resolve(cert_locator)
        key_path = self.resolve(key_locator)

        with tracer.start_as_current_span("PKIStore.load_ca") as span:
            span.set_attribute("ca_cert_path", str(cert_path))

            try:
                cache_key = (
                    cert_path,
                    cert_path.stat().st_mtime_ns,
                    key_path,
                    key_path.stat().st_mtime_ns,
                )
            except FileNotFoundError as e:
                raise InvalidCAError(f"CA material not found: {e.filename}") from e
            except OSError as e:
                raise StoreUnavailableError(f"Cannot access CA material: {e}") from e

            cached = self._ca_cache.get(cache_key)
            if cached is not None:
                return cached

            try:
                cert_pem = cert_path.read_bytes()
                key_pem = key_path.read_bytes()
            except FileNotFoundError as e:
                raise InvalidCAError(f"CA material not found: {e.filename}") from e
            except OSError as e:
                raise StoreUnavailableError(f"Cannot read CA material: {e}") from e

            key_pair = self._parse_ca(cert_pem, key_pem, cert_path, key_path, source="file")
            self._ca_cache[cache_key] = key_pair

            span.set_attribute("ca_cert_expires", key_pair.certificate.not_valid_after_utc.isoformat())
            logger.info(
                "ca_loaded",
                extra={
                    "ca_cert_path": str(cert_path),
                    "subject": key_pair.certificate.subject.rfc4514_string(),
                    "ca_cert_expires": key_pair.certificate.not_valid_after_utc.isoformat(),
                },
            )
            kubeaccess_metrics.record_ca_loaded(key_pair.source)
            return key_pair

    @staticmethod
    def _parse_ca(
        cert_pem: bytes,
        key_pem: bytes,
        cert_path: Path,
        key_path: Path,
        source: str,
    ) -> CAKeyPair:
        try:
            certificate = x509.load_pem_x509_certificate(cert_pem)
        except ValueError as e:
            logger.error("ca_load_failed", extra={"ca_cert_path": str(cert_path), "error": str(e)})
            raise InvalidCAError(f"Failed to parse CA certificate {cert_path}: {e}") from e

        try:
            private_key = serialization.load_pem_private_key(key_pem, password=None)
        except (ValueError, TypeError) as e:
            logger.error("ca_load_failed", extra={"ca_key_path": str(key_path), "error": str(e)})
            raise InvalidCAError(f"Failed to parse CA key {key_path}: {e}") from e

        if not key_matches_certificate(private_key, certificate):
            raise InvalidCAError(f"CA key {key_path} does not match CA certificate {cert_path}")

        try:
            constraints = certificate.extensions.get_extension_for_class(x509.BasicConstraints)
        except x509.ExtensionNotFound:
            constraints = None
        if constraints is not None and not constraints.value.ca:
            raise InvalidCAError(f"Certificate {cert_path} is not a CA certificate")

        if certificate.not_valid_after_utc <= datetime.now(timezone.utc):
            raise InvalidCAError(
                f"CA certificate {cert_path} expired at "
                f"{certificate.not_valid_after_utc.isoformat()}"
            )

        return CAKeyPair(
            certificate=certificate,
            private_key=private_key,  # type: ignore[arg-type]
            cert_pem=cert_pem,
            cert_path=cert_path,
            key_path=key_path,
            source=source,
        )

    def ensure_ca(
        self,
        cert_locator: str | Path = "ca.crt",
        key_locator: str | Path = "ca.key",
        common_name: str = DEFAULT_CA_COMMON_NAME,
    ) -> CAKeyPair:
        """Load the CA pair, generating a self-signed one when both files are absent."""
        cert_path = self.resolve(cert_locator)
        key_path = self.resolve(key_locator)

        if cert_path.exists() or key_path.exists():
            return self.load_ca(cert_path, key_path)

        self.ensure_root()
        with self.identity_lock(cert_path.stem, timeout=self.lock_timeout):
            if cert_path.exists() and key_path.exists():
                return self.load_ca(cert_path, key_path)

            logger.info("Generating new CA key pair", extra={"common_name": common_name})

            private_key = rsa.generate_private_key(public_exponent=65537, key_size=self.CA_KEY_SIZE)
            now = datetime.now(timezone.utc)
            subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])

            certificate = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(issuer)
                .public_key(private_key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now)
                .not_valid_after(now + self.DEFAULT_CA_VALIDITY)
                .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        key_cert_sign=True,
                        crl_sign=True,
                        key_encipherment=False,
                        content_commitment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()),
                    critical=False,
                )
                .sign(private_key, signature_hash_for(private_key))
            )

            cert_pem = certificate_to_pem(certificate)
            self._publish(key_path, private_key_to_pem(private_key), KEY_FILE_MODE, owner=None)
            self._publish(cert_path, cert_pem, CERT_FILE_MODE, owner=None)

            logger.info(
                "ca_generated",
                extra={"ca_cert_path": str(cert_path), "common_name": common_name},
            )
            kubeaccess_metrics.record_ca_loaded("generated")

            return CAKeyPair(
                certificate=certificate,
                private_key=private_key,
                cert_pem=cert_pem,
                cert_path=cert_path,
                key_path=key_path,
                source="generated",
            )

    # ------------------------------------------------------------------
    # Identity artifacts
    # ------------------------------------------------------------------

    def read_pair(self, name: str) -> IssuedCertificate | None:
        """Return the stored pair for ``name``, or None when it is not complete."""
        cert_path = self.cert_path(name)
        key_path = self.key_path(name)
        try:
            cert_pem = cert_path.read_bytes()
            key_pem = key_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreUnavailableError(f"Cannot read artifacts for {name!r}: {e}") from e
        return IssuedCertificate(cert_pem=cert_pem, key_pem=key_pem)

    def write_pair(self, name: str, issued: IssuedCertificate, owner: str | None) -> None:
        """Publish an artifact pair. Callers must hold the identity lock."""
        self._publish(self.key_path(name), issued.key_pem, KEY_FILE_MODE, owner)
        self._publish(self.cert_path(name), issued.cert_pem, CERT_FILE_MODE, owner)

    def _publish(self, target: Path, data: bytes, mode: int, owner: str | None) -> None:
        try:
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        except OSError as e:
            raise StoreUnavailableError(f"Cannot write to {target.parent}: {e}") from e

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, mode)
            if owner:
                self._chown(Path(tmp_name), owner)
            os.replace(tmp_name, target)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StoreUnavailableError(f"Cannot write {target}: {e}") from e

    @staticmethod
    def _chown(path: Path, owner: str) -> None:
        if not hasattr(os, "geteuid") or os.geteuid() != 0:
            logger.debug("skipping_chown", extra={"path": str(path), "owner": owner})
            return
        try:
            shutil.chown(path, user=owner)
        except LookupError:
            logger.warning("owner_not_found", extra={"path": str(path), "owner": owner})

    @contextmanager
    def identity_lock(self, name: str, timeout: float) -> Iterator[None]:
        """Hold the exclusive lock file for ``name``.

        Polls every ``poll_interval`` seconds while another writer holds it.

        Raises:
            IdentityConflictError: If the lock is still held after ``timeout``.
            StoreUnavailableError: If the lock file cannot be created.
        """
        lock_path = self.lock_path(name)
        deadline = time.monotonic() + timeout

        while True:
            try:
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
                break
            except FileExistsError:
                if time.monotonic() >= deadline:
                    logger.warning(
                        "identity_lock_timeout",
                        extra={"identity": name, "lock_path": str(lock_path)},
                    )
                    raise IdentityConflictError(
                        name,
                        f"Identity {name!r} is being issued by another writer "
                        f"(lock {lock_path} held for more than {timeout}s)",
                    ) from None
                time.sleep(self.poll_interval)
            except OSError as e:
                raise StoreUnavailableError(f"Cannot create lock {lock_path}: {e}") from e

        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
        except OSError as e:
            lock_path.unlink(missing_ok=True)
            raise StoreUnavailableError(f"Cannot write lock {lock_path}: {e}") from e
        finally:
            os.close(fd)

        try:
            yield
        finally:
            lock_path.unlink(missing_ok=True)
