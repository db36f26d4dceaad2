from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    APP_NAME: str = "Kubeconfig Issuer"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # PKI root and CA material (file names are relative to CERT_ROOT_DIR)
    CERT_ROOT_DIR: str = "/var/lib/k0s/pki"
    CA_CERT_FILE: str = "ca.crt"
    CA_KEY_FILE: str = "ca.key"
    CA_AUTO_GENERATE: bool = False

    # Leaf issuance
    CERT_OWNER: str = "root"
    CERT_VALIDITY_HOURS: int = 8760
    ISSUANCE_LOCK_TIMEOUT_SECONDS: float = 5.0

    # Cluster
    CLUSTER_CONFIG_PATH: Optional[str] = None
    KUBECONFIG_CLUSTER_NAME: str = "k0s"


settings = Settings()
