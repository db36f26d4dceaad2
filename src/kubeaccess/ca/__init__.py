"""Certificate authority module.

This module provides:
- PKI store access (CA material, identity artifacts, per-identity locking)
- Leaf certificate issuance with at-most-once semantics per identity
- Cryptographic helpers for key/certificate pairing
"""

from kubeaccess.ca.certificate_manager import (
    CertificateManager,
    SigningFailureError,
    SubjectMismatchError,
)
from kubeaccess.ca.store import (
    CAKeyPair,
    IdentityConflictError,
    InvalidCAError,
    InvalidRequestError,
    PKIStore,
    StoreUnavailableError,
)

__all__ = [
    "CAKeyPair",
    "CertificateManager",
    "IdentityConflictError",
    "InvalidCAError",
    "InvalidRequestError",
    "PKIStore",
    "SigningFailureError",
    "StoreUnavailableError",
    "SubjectMismatchError",
]
