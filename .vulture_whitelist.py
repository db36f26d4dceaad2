from kubeaccess.api.kubeconfigs import create_kubeconfig
from kubeaccess.ca.crypto import is_issued_by
from kubeaccess.cluster.config import APISpec, ClusterConfig, ClusterSpec
from kubeaccess.kubeconfig.render import kubeconfig_dict
from main import health_check, lifespan
from shared.config import Settings

# Pydantic Settings
Settings.model_config
Settings.APP_ENV
Settings.LOG_LEVEL
Settings.CA_AUTO_GENERATE
Settings.ISSUANCE_LOCK_TIMEOUT_SECONDS

# Cluster config models (fields populated from YAML aliases)
APISpec.model_config
APISpec.sans
ClusterSpec.model_config
ClusterSpec.empty_api
ClusterConfig.model_config
ClusterConfig.api_version
ClusterConfig.kind
ClusterConfig.empty_spec
ClusterConfig.check_kind

# FastAPI
health_check
lifespan
create_kubeconfig

# Public helpers
is_issued_by
kubeconfig_dict
