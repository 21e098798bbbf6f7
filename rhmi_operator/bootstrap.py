"""
Bootstrap stage: cluster discovery and operator-owned objects that come before any product.

Install:
  1. Discover the console host and router domain from the console route and store
     them on the installation spec (masterURL, routingSubdomain) when unset
  2. Ensure the default RHMIConfig (upgrade schedule) exists

Uninstall (last stage): delete the config store record once every product is gone.
"""

import logging

from kubernetes.client import ApiException

from .config import settings
from .models import (
    DEFAULT_BACKUP_APPLY_ON, DEFAULT_MAINTENANCE_APPLY_FROM, Installation, RHMIConfig, StatusPhase,
)
from .services.cluster import RHMI, RHMI_CONFIG, ROUTE, ClusterClient, is_already_exists, is_not_found
from .services.config_store import ConfigManager

CONSOLE_ROUTE = "console"
CONSOLE_NAMESPACE = "openshift-console"


class BootstrapError(RuntimeError):
    pass


class BootstrapReconciler:
    def __init__(self, config_manager: ConfigManager, recorder, logger: logging.Logger,
                 rhmi_config_name: str = settings.RHMI_CONFIG_NAME):
        self.config_manager = config_manager
        self.recorder = recorder
        self.logger = logger
        self.rhmi_config_name = rhmi_config_name

    def reconcile(self, installation: Installation, client: ClusterClient) -> StatusPhase:
        self.retrieve_console_url_and_subdomain(installation, client)
        self.reconcile_rhmi_config(installation, client)
        self.logger.info("Bootstrap stage reconciled successfully")
        return StatusPhase.COMPLETED

    def uninstall(self, installation: Installation, client: ClusterClient) -> StatusPhase:
        self.config_manager.delete()
        return StatusPhase.COMPLETED

    def retrieve_console_url_and_subdomain(self, installation: Installation, client: ClusterClient):
        if installation.spec.masterURL and installation.spec.routingSubdomain:
            return
        try:
            route = client.get(ROUTE, CONSOLE_ROUTE, CONSOLE_NAMESPACE)
        except ApiException as e:
            if is_not_found(e):
                raise BootstrapError("could not find console route") from e
            raise
        ingress = (route.get("status") or {}).get("ingress") or []
        if not ingress:
            raise BootstrapError("console route has no ingress status")
        master_url = ingress[0].get("host", "")
        subdomain = ingress[0].get("routerCanonicalHostname", "")

        def edit(obj):
            spec = obj.setdefault("spec", {})
            changed = False
            if not spec.get("masterURL"):
                spec["masterURL"] = master_url
                changed = True
            if not spec.get("routingSubdomain"):
                spec["routingSubdomain"] = subdomain
                changed = True
            return changed

        latest = client.mutate(RHMI, installation.name, installation.namespace, edit)
        installation.spec.masterURL = latest["spec"].get("masterURL", "")
        installation.spec.routingSubdomain = latest["spec"].get("routingSubdomain", "")
        installation.metadata["resourceVersion"] = latest["metadata"].get("resourceVersion")
        self.logger.info(f"Discovered master URL {installation.spec.masterURL}, "
                         f"routing subdomain {installation.spec.routingSubdomain}")

    def reconcile_rhmi_config(self, installation: Installation, client: ClusterClient):
        config = RHMIConfig(metadata={"name": self.rhmi_config_name, "namespace": installation.namespace})
        config.spec.maintenance.applyFrom = DEFAULT_MAINTENANCE_APPLY_FROM
        config.spec.backup.applyOn = DEFAULT_BACKUP_APPLY_ON
        body = config.to_dict()
        body.pop("status", None)
        try:
            client.create(RHMI_CONFIG, body)
            self.logger.info(f"Created RHMIConfig {installation.namespace}/{self.rhmi_config_name}")
        except ApiException as e:
            if not is_already_exists(e):
                raise
