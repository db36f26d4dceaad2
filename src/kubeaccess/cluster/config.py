"""Cluster configuration documents.

Only the API section is interpreted; everything else in the document is ignored.

Example::

    apiVersion: k0s.k0sproject.io/v1beta1
    kind: ClusterConfig
    spec:
      api:
        externalAddress: 1.2.3.4
        port: 6443
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kubeaccess.domain.models import DEFAULT_API_PORT, ClusterAddressConfig

logger = logging.getLogger(__name__)

CLUSTER_CONFIG_KIND = "ClusterConfig"
CLUSTER_CONFIG_API_VERSION = "k0s.k0sproject.io/v1beta1"


class ClusterConfigError(Exception):
    """Raised when a cluster configuration document cannot be read or parsed."""

    pass


class APISpec(BaseModel):
    """``spec.api`` of a cluster configuration."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    external_address: str | None = Field(None, alias="externalAddress")
    internal_address: str | None = Field(None, alias="internalAddress")
    address: str | None = None
    port: int = Field(DEFAULT_API_PORT, ge=0, le=65535)
    sans: list[str] = Field(default_factory=list)

    def to_address_config(self) -> ClusterAddressConfig:
        return ClusterAddressConfig(
            external_address=self.external_address,
            internal_address=self.internal_address,
            address=self.address,
            port=self.port,
        )


class ClusterSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api: APISpec = Field(default_factory=APISpec)

    @field_validator("api", mode="before")
    @classmethod
    def empty_api(cls, value: Any) -> Any:
        return {} if value is None else value


class ClusterConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_version: str = Field(CLUSTER_CONFIG_API_VERSION, alias="apiVersion")
    kind: str = CLUSTER_CONFIG_KIND
    spec: ClusterSpec = Field(default_factory=ClusterSpec)

    @field_validator("spec", mode="before")
    @classmethod
    def empty_spec(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("kind")
    @classmethod
    def check_kind(cls, value: str) -> str:
        if value != CLUSTER_CONFIG_KIND:
            raise ValueError(f"expected kind {CLUSTER_CONFIG_KIND}, got {value}")
        return value


def cluster_config_from_string(text: str) -> ClusterConfig:
    """Parse a YAML cluster configuration document.

    Raises:
        ClusterConfigError: If the text is not YAML or does not describe a ClusterConfig.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ClusterConfigError(f"Invalid cluster config YAML: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ClusterConfigError("Cluster config must be a mapping")

    try:
        return ClusterConfig.model_validate(data)
    except ValidationError as e:
        raise ClusterConfigError(f"Invalid cluster config: {e}") from e


def load_cluster_config(path: str | Path) -> ClusterConfig:
    """Read and parse the cluster configuration file at ``path``."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        logger.error("cluster_config_unreadable", extra={"path": str(path), "error": str(e)})
        raise ClusterConfigError(f"Cannot read cluster config {path}: {e}") from e

    config = cluster_config_from_string(text)
    logger.debug("cluster_config_loaded", extra={"path": str(path)})
    return config
