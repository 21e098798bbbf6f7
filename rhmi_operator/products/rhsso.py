"""Identity (RH-SSO): Keycloak plus the realm every other product authenticates against."""

from kubernetes.client import ApiException

from ..models import Installation, ProductName, StatusPhase
from ..resources import owner_labels
from ..services.cluster import ClusterClient, is_not_found
from . import register
from .base import OperatorProductReconciler, ProductFailedError
from .catalog import DECLARATIONS, KEYCLOAK, KEYCLOAK_REALM

REALM_NAME = "openshift"
REALM_KEY = "REALM"


class RHSSOReconciler(OperatorProductReconciler):

    def reconcile_components(self, installation: Installation, client: ClusterClient) -> StatusPhase:
        phase = super().reconcile_components(installation, client)
        if phase is not StatusPhase.COMPLETED:
            return phase
        return self._reconcile_realm(installation, client)

    def _reconcile_realm(self, installation: Installation, client: ClusterClient) -> StatusPhase:
        ns = self.config.get_namespace()
        try:
            realm = client.get(KEYCLOAK_REALM, REALM_NAME, ns)
        except ApiException as e:
            if not is_not_found(e):
                raise
            realm = client.create(KEYCLOAK_REALM, {
                "metadata": {"name": REALM_NAME, "namespace": ns, "labels": owner_labels(installation)},
                "spec": {
                    "realm": {
                        "id": REALM_NAME,
                        "realm": REALM_NAME,
                        "displayName": REALM_NAME,
                        "enabled": True,
                    },
                    "instanceSelector": {"matchLabels": {"sso": "integreatly"}},
                },
            })
            self.logger.info(f"Created KeycloakRealm {ns}/{REALM_NAME}")

        status = realm.get("status") or {}
        if status.get("phase") == "failing":
            raise ProductFailedError(f"KeycloakRealm {REALM_NAME} failed: {status.get('message', '')}")
        if status.get("phase") == "reconciled":
            return StatusPhase.COMPLETED
        self.logger.info(f"KeycloakRealm status phase is: {status.get('phase', '')}")
        return StatusPhase.AWAITING_COMPONENTS

    def discover_host(self, client: ClusterClient):
        kc = client.get(KEYCLOAK, self.declaration.component.name, self.config.get_namespace())
        return (kc.get("status") or {}).get("externalURL") or None

    def export_config(self, client: ClusterClient):
        self.config[REALM_KEY] = REALM_NAME


@register(ProductName.RHSSO)
def new_rhsso(name, config_manager, installation, installer, recorder, logger):
    return RHSSOReconciler.build(
        DECLARATIONS[name], config_manager, installation, installer, recorder, logger,
    )
