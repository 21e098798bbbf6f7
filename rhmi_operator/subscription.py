"""
Operator self-upgrade: watches the operator's own OLM subscription and approves
the pending install plan when the upgrade schedule allows it.

Flow (one pass):
  1. Force Manual approval on the subscription, upgrades are only ever approved here
  2. No upgrade available (currentCSV == installedCSV) -> nothing to do
  3. Install plan missing -> reset the subscription status so OLM recreates it
  4. Service affecting upgrade -> publish the upgrade window / schedule on RHMIConfig
  5. Not service affecting, or inside the scheduled window -> approve the plan and
     record the target version on the installation
"""

import logging
from datetime import datetime
from typing import Optional

from kubernetes.client import ApiException

from .config import settings
from .models import RHMIConfig
from .services.cluster import INSTALL_PLAN, RHMI, RHMI_CONFIG, SUBSCRIPTION, ClusterClient, is_not_found
from .services.marketplace import APPROVAL_MANUAL
from .upgrades import (
    ScheduleValidationError, approve_upgrade, can_upgrade_now, get_csv_from_install_plan,
    is_upgrade_available, is_upgrade_service_affecting, update_status,
)

logger = logging.getLogger("rhmi-operator.subscription")

AT_LATEST_KNOWN = "AtLatestKnown"


class SubscriptionUpgradeReconciler:
    def __init__(self, client: ClusterClient, recorder,
                 namespace: str = settings.OPERATOR_NAMESPACE,
                 rhmi_config_name: str = settings.RHMI_CONFIG_NAME,
                 installation_name: str = settings.INSTALLATION_NAME,
                 requeue_delay: int = settings.REQUEUE_DELAY,
                 upgrade_requeue_delay: int = settings.UPGRADE_REQUEUE_DELAY,
                 log: Optional[logging.Logger] = None):
        self.client = client
        self.recorder = recorder
        self.namespace = namespace
        self.rhmi_config_name = rhmi_config_name
        self.installation_name = installation_name
        self.requeue_delay = requeue_delay
        self.upgrade_requeue_delay = upgrade_requeue_delay
        self.logger = log or logger

    def handle_upgrades(self, subscription: dict, now: Optional[datetime] = None) -> Optional[int]:
        """Run one pass. Returns the requeue delay in seconds, or None for no requeue."""
        md = subscription["metadata"]
        subscription = self.ensure_manual_approval(subscription)

        if not is_upgrade_available(subscription):
            self.logger.debug(f"No upgrade available for subscription {md['name']}")
            return None

        install_plan = self.get_latest_install_plan(subscription)
        if install_plan is None:
            self.logger.info(f"Install plan for {md['name']} not found, resetting subscription status")
            self.reset_subscription_status(subscription)
            return self.requeue_delay

        csv = get_csv_from_install_plan(install_plan)
        config = self.get_rhmi_config()
        service_affecting = is_upgrade_service_affecting(csv)

        try:
            if service_affecting:
                update_status(config, install_plan, now)
                self.write_config_status(config)
            ready = not service_affecting or can_upgrade_now(config, now)
        except ScheduleValidationError as e:
            self.logger.warning(f"Upgrade schedule of {self.rhmi_config_name} is invalid: {e}")
            return self.upgrade_requeue_delay

        if not ready:
            self.logger.info(f"Upgrade to {subscription['status'].get('currentCSV')} is not scheduled yet")
            return self.upgrade_requeue_delay

        if not approve_upgrade(self.client, install_plan, self.recorder):
            return self.upgrade_requeue_delay

        if csv is not None:
            self.set_installation_to_version((csv.get("spec") or {}).get("version", ""))
        if config.status.upgrade.scheduled is not None or config.status.upgrade.window:
            config.status.upgrade.scheduled = None
            config.status.upgrade.window = ""
            self.write_config_status(config)
        return self.requeue_delay

    # ---------------------------------------------------------------------------
    # Steps
    # ---------------------------------------------------------------------------

    def ensure_manual_approval(self, subscription: dict) -> dict:
        if subscription.get("spec", {}).get("installPlanApproval") == APPROVAL_MANUAL:
            return subscription

        def edit(sub):
            if sub["spec"].get("installPlanApproval") == APPROVAL_MANUAL:
                return False
            sub["spec"]["installPlanApproval"] = APPROVAL_MANUAL

        md = subscription["metadata"]
        self.logger.info(f"Setting install plan approval of {md['name']} to {APPROVAL_MANUAL}")
        return self.client.mutate(SUBSCRIPTION, md["name"], md.get("namespace"), edit)

    def get_latest_install_plan(self, subscription: dict) -> Optional[dict]:
        ref = (subscription.get("status") or {}).get("installPlanRef")
        if not ref:
            return None
        try:
            return self.client.get(INSTALL_PLAN, ref["name"], ref.get("namespace") or self.namespace)
        except ApiException as e:
            if is_not_found(e):
                return None
            raise

    def reset_subscription_status(self, subscription: dict):
        """Make OLM think the subscription is up to date so it generates a new install plan."""
        md = subscription["metadata"]

        def edit(sub):
            status = sub.setdefault("status", {})
            status["state"] = AT_LATEST_KNOWN
            status.pop("installPlanRef", None)
            status.pop("install", None)
            status["currentCSV"] = status.get("installedCSV", "")

        self.client.mutate(SUBSCRIPTION, md["name"], md.get("namespace"), edit, status=True)

    def get_rhmi_config(self) -> RHMIConfig:
        try:
            obj = self.client.get(RHMI_CONFIG, self.rhmi_config_name, self.namespace)
        except ApiException as e:
            if not is_not_found(e):
                raise
            self.logger.info(f"RHMIConfig {self.rhmi_config_name} not found, using defaults")
            return RHMIConfig(metadata={"name": self.rhmi_config_name, "namespace": self.namespace})
        return RHMIConfig.model_validate(obj)

    def write_config_status(self, config: RHMIConfig):
        if not config.metadata.get("resourceVersion"):
            # defaults only, nothing stored on the cluster
            return
        status = config.to_dict()["status"]

        def edit(obj):
            if obj.get("status") == status:
                return False
            obj["status"] = status

        self.client.mutate(RHMI_CONFIG, self.rhmi_config_name, self.namespace, edit, status=True)

    def set_installation_to_version(self, version: str):
        if not version:
            return

        def edit(obj):
            status = obj.setdefault("status", {})
            if status.get("toVersion") == version:
                return False
            status["toVersion"] = version

        try:
            self.client.mutate(RHMI, self.installation_name, self.namespace, edit, status=True)
            self.logger.info(f"Installation {self.installation_name} upgrading to {version}")
        except ApiException as e:
            if not is_not_found(e):
                raise
            self.logger.warning(f"Installation {self.installation_name} not found, toVersion not set")
