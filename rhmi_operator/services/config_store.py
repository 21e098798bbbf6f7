"""
Config store: per-product key/value configuration kept in one shared ConfigMap.

Layout:
  data:
    rhsso: |
      NAMESPACE: redhat-rhmi-rhsso
      HOST: https://keycloak-...
    3scale: |
      ...

Each entry is a YAML map keyed by product name. A writer always reads the latest
record and replaces only its own entry; concurrent writers are resolved by the
API server's resourceVersion check.
"""

import logging
from typing import Optional

import yaml
from kubernetes.client import ApiException

from .cluster import CONFIG_MAP, ClusterClient, is_conflict, is_not_found

logger = logging.getLogger("rhmi-operator.config-store")


class ProductConfigError(ValueError):
    """Raised when a product's configuration is missing a required value."""


class ProductConfig(dict):
    """Key/value configuration of one product."""

    NAMESPACE = "NAMESPACE"
    OPERATOR_NAMESPACE = "OPERATOR_NAMESPACE"
    HOST = "HOST"
    VERSION = "VERSION"
    OPERATOR_VERSION = "OPERATOR"

    def __init__(self, product_name: str, values: Optional[dict] = None):
        super().__init__(values or {})
        self.product_name = product_name

    def get_namespace(self) -> str:
        return self.get(self.NAMESPACE, "")

    def set_namespace(self, ns: str):
        self[self.NAMESPACE] = ns

    def get_operator_namespace(self) -> str:
        return self.get(self.OPERATOR_NAMESPACE, "")

    def set_operator_namespace(self, ns: str):
        self[self.OPERATOR_NAMESPACE] = ns

    def get_host(self) -> str:
        return self.get(self.HOST, "")

    def set_host(self, host: str):
        self[self.HOST] = host

    def get_version(self) -> str:
        return self.get(self.VERSION, "")

    def set_version(self, version: str):
        self[self.VERSION] = version

    def get_operator_version(self) -> str:
        return self.get(self.OPERATOR_VERSION, "")

    def set_operator_version(self, version: str):
        self[self.OPERATOR_VERSION] = version

    def validate(self):
        if not self.product_name:
            raise ProductConfigError("config has no product name")
        if not self.get_namespace():
            raise ProductConfigError(f"config for {self.product_name} has no namespace")
        for key, value in self.items():
            if not isinstance(value, str):
                raise ProductConfigError(
                    f"config for {self.product_name}: {key} must be a string, got {type(value).__name__}"
                )


class ConfigManager:
    """Reads and writes ProductConfig entries of one installation."""

    def __init__(self, client: ClusterClient, namespace: str, name: str):
        self.client = client
        self.namespace = namespace
        self.name = name

    def _get(self) -> Optional[dict]:
        try:
            return self.client.get(CONFIG_MAP, self.name, self.namespace)
        except ApiException as e:
            if is_not_found(e):
                return None
            raise

    def read_product(self, product_name: str) -> ProductConfig:
        """Return the product's config, empty if it has never been written."""
        cm = self._get()
        raw = ((cm or {}).get("data") or {}).get(product_name)
        if not raw:
            return ProductConfig(product_name)
        values = yaml.safe_load(raw) or {}
        if not isinstance(values, dict):
            raise ProductConfigError(f"config entry for {product_name} is not a map")
        return ProductConfig(product_name, {str(k): _as_str(v) for k, v in values.items()})

    def write_config(self, product_config: ProductConfig, retries: int = 3):
        entry = yaml.safe_dump(dict(product_config), default_flow_style=False)
        for attempt in range(1, retries + 1):
            cm = self._get()
            try:
                if cm is None:
                    self.client.create(CONFIG_MAP, {
                        "metadata": {"name": self.name, "namespace": self.namespace},
                        "data": {product_config.product_name: entry},
                    })
                    logger.info(f"Created config store {self.namespace}/{self.name}")
                else:
                    data = cm.get("data") or {}
                    if data.get(product_config.product_name) == entry:
                        return
                    data[product_config.product_name] = entry
                    cm["data"] = data
                    self.client.update(CONFIG_MAP, cm)
                return
            except ApiException as e:
                # 409 covers both a racing create and a stale update
                if not is_conflict(e) or attempt == retries:
                    raise
                logger.info(f"Conflict writing {product_config.product_name} config, retrying")

    def delete(self):
        """Remove the whole record. Used once every product has been uninstalled."""
        try:
            self.client.delete(CONFIG_MAP, self.name, self.namespace)
            logger.info(f"Deleted config store {self.namespace}/{self.name}")
        except ApiException as e:
            if not is_not_found(e):
                raise


def _as_str(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
