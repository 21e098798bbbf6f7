"""
Configuration module for the RHMI operator.

Every setting is read from the environment with a sensible default so the same
image runs unchanged in a dev cluster and in production.
"""
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    # Kubernetes
    KUBECONFIG: str = os.environ.get("KUBECONFIG", "")
    IN_CLUSTER: bool = os.environ.get("IN_CLUSTER", "true").lower() == "true"
    API_TIMEOUT: int = int(os.environ.get("API_TIMEOUT", "10"))

    # CRDs
    CRD_GROUP: str = "integreatly.org"
    CRD_VERSION: str = "v1alpha1"
    RHMI_PLURAL: str = "rhmis"
    RHMI_CONFIG_PLURAL: str = "rhmiconfigs"

    # Installation
    INSTALLATION_NAME: str = os.environ.get("INSTALLATION_NAME", "rhmi")
    OPERATOR_NAMESPACE: str = os.environ.get("WATCH_NAMESPACE", "redhat-rhmi-operator")
    INSTALLATION_TYPE: str = os.environ.get("INSTALLATION_TYPE", "managed-api")
    NAMESPACE_PREFIX: str = os.environ.get("NAMESPACE_PREFIX", "redhat-rhmi-")
    INSTALLATION_CONFIG_MAP: str = os.environ.get("INSTALLATION_CONFIG_MAP", "")
    RHMI_CONFIG_NAME: str = os.environ.get("RHMI_CONFIG_NAME", "rhmi-config")
    PLATFORM_TYPE: str = os.environ.get("PLATFORM_TYPE", "AWS")
    OPERATOR_VERSION: str = os.environ.get("OPERATOR_VERSION", "2.8.0")

    # OLM
    SUBSCRIPTION_NAME: str = os.environ.get("SUBSCRIPTION_NAME", "integreatly")
    CATALOG_SOURCE: str = os.environ.get("CATALOG_SOURCE", "rhmi-registry-cs")
    CATALOG_SOURCE_NAMESPACE: str = os.environ.get("CATALOG_SOURCE_NAMESPACE", "openshift-marketplace")

    # Requeue timings (seconds)
    REQUEUE_DELAY: int = int(os.environ.get("REQUEUE_DELAY", "10"))
    COMPLETE_RESYNC_INTERVAL: int = int(os.environ.get("COMPLETE_RESYNC_INTERVAL", "300"))
    UPGRADE_REQUEUE_DELAY: int = int(os.environ.get("UPGRADE_REQUEUE_DELAY", "60"))

    # Runtime
    METRICS_PORT: int = int(os.environ.get("METRICS_PORT", "8383"))
    MAX_WORKERS: int = int(os.environ.get("MAX_WORKERS", "3"))

    def config_map_name(self, namespace_prefix: str) -> str:
        """Name of the shared config store record for an installation."""
        return self.INSTALLATION_CONFIG_MAP or f"{namespace_prefix}installation-config"


settings = Settings()
