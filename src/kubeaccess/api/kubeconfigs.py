"""Kubeconfig API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from kubeaccess.api.schemas import CreateKubeconfigRequest, KubeconfigResponse
from kubeaccess.ca.certificate_manager import SigningFailureError
from kubeaccess.ca.store import (
    IdentityConflictError,
    InvalidCAError,
    InvalidRequestError,
    StoreUnavailableError,
)
from kubeaccess.cluster.api_url import MalformedAddressError, NoAddressConfiguredError
from kubeaccess.services.kubeconfig_service import KubeconfigService

router = APIRouter(prefix="/api/kubeconfigs", tags=["kubeconfigs"])

# Global service instance, injected at application startup
_kubeconfig_service: KubeconfigService | None = None


def set_kubeconfig_service(service: KubeconfigService | None) -> None:
    """Set the global kubeconfig service instance."""
    global _kubeconfig_service
    _kubeconfig_service = service


def get_kubeconfig_service() -> KubeconfigService:
    """Get the global kubeconfig service instance."""
    if _kubeconfig_service is None:
        raise RuntimeError("KubeconfigService not initialized")
    return _kubeconfig_service


@router.post("", status_code=status.HTTP_201_CREATED, response_model=KubeconfigResponse)
def create_kubeconfig(
    body: CreateKubeconfigRequest,
    service: KubeconfigService = Depends(get_kubeconfig_service),
) -> KubeconfigResponse:
    """
    Create a kubeconfig for a user.

    - Reuses the user's existing certificate unless reissue=true
    - Returns: 201 Created with the rendered kubeconfig
    - Errors: 400 (invalid or reserved name), 409 (concurrent issuance or a
      stored certificate with other groups), 503 (PKI store
      unavailable), 500 (CA, signing or cluster address problems)
    """
    try:
        document, kubeconfig = service.create_user_kubeconfig(
            username=body.username,
            groups=body.groups,
            reissue=body.reissue,
        )
    except InvalidRequestError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None
    except IdentityConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except StoreUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)
        ) from None
    except (
        InvalidCAError,
        SigningFailureError,
        NoAddressConfiguredError,
        MalformedAddressError,
    ) as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
        ) from None

    return KubeconfigResponse(
        user=document.user,
        server=document.server_url,
        kubeconfig=kubeconfig,
    )
