"""
Package installer: brings a product's own operator onto the cluster through OLM.

install_operator creates an OperatorGroup scoped to the target namespace and a
Subscription to the package. OLM then produces an InstallPlan, which is what
reconcile_subscription waits on.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from kubernetes.client import ApiException

from ..config import settings
from .cluster import INSTALL_PLAN, OPERATOR_GROUP, SUBSCRIPTION, ClusterClient, is_already_exists

logger = logging.getLogger("rhmi-operator.marketplace")

INTEGREATLY_CHANNEL = "integreatly"
APPROVAL_MANUAL = "Manual"
APPROVAL_AUTOMATIC = "Automatic"


@dataclass(frozen=True)
class Target:
    package: str
    channel: str
    namespace: str
    subscription_name: str = ""

    @property
    def name(self) -> str:
        return self.subscription_name or self.package


class MarketplaceManager:
    def __init__(self, client: ClusterClient,
                 catalog_source: str = settings.CATALOG_SOURCE,
                 catalog_source_namespace: str = settings.CATALOG_SOURCE_NAMESPACE):
        self.client = client
        self.catalog_source = catalog_source
        self.catalog_source_namespace = catalog_source_namespace

    def install_operator(self, target: Target, approval: str = APPROVAL_MANUAL):
        """Create the operator group and subscription. Existing objects are left alone."""
        operator_group = {
            "metadata": {
                "name": f"{target.namespace}-integreatly",
                "namespace": target.namespace,
                "labels": {"integreatly": target.package},
            },
            "spec": {"targetNamespaces": [target.namespace]},
        }
        subscription = {
            "metadata": {"name": target.name, "namespace": target.namespace},
            "spec": {
                "name": target.package,
                "channel": target.channel,
                "installPlanApproval": approval,
                "source": self.catalog_source,
                "sourceNamespace": self.catalog_source_namespace,
            },
        }
        for res, body in ((OPERATOR_GROUP, operator_group), (SUBSCRIPTION, subscription)):
            try:
                self.client.create(res, body)
                logger.info(f"Created {res.kind} {body['metadata']['name']} in {target.namespace}")
            except ApiException as e:
                if not is_already_exists(e):
                    raise

    def get_subscription_install_plan(self, name: str, namespace: str) -> Tuple[Optional[dict], dict]:
        """Return (install_plan, subscription).

        The install plan is None while OLM has not referenced one from the
        subscription yet. A missing subscription raises the 404 ApiException.
        """
        subscription = self.client.get(SUBSCRIPTION, name, namespace)
        ref = (subscription.get("status") or {}).get("installPlanRef")
        if not ref:
            return None, subscription
        install_plan = self.client.get(
            INSTALL_PLAN, ref["name"], ref.get("namespace") or namespace,
        )
        return install_plan, subscription

    def delete_subscription(self, target: Target):
        """Drop the subscription so OLM starts over with a fresh install plan."""
        try:
            self.client.delete(SUBSCRIPTION, target.name, target.namespace)
        except ApiException as e:
            if e.status != 404:
                raise
