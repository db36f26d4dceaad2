"""Pydantic schemas for the kubeconfig API."""

from pydantic import BaseModel, Field


class CreateKubeconfigRequest(BaseModel):
    """Request body for creating a user kubeconfig."""

    username: str = Field(..., min_length=1, max_length=64)
    groups: list[str] = Field(default_factory=list)
    reissue: bool = False


class KubeconfigResponse(BaseModel):
    """Rendered kubeconfig for a user."""

    user: str
    server: str
    kubeconfig: str

