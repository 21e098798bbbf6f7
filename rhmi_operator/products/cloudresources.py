"""Cloud resources: provisions Postgres/Redis/blob storage for the other products.

It is uninstalled after every product that holds a claim on it, and it refuses to
remove its own namespace while any claim is still being torn down.
"""

from ..models import Installation, ProductName, StatusPhase
from ..services.cluster import BLOB_STORAGE, POSTGRES, REDIS, ClusterClient
from . import register
from .base import OperatorProductReconciler
from .catalog import DECLARATIONS

CLAIM_RESOURCES = (POSTGRES, REDIS, BLOB_STORAGE)


class CloudResourcesReconciler(OperatorProductReconciler):

    def cleanup(self, installation: Installation, client: ClusterClient) -> StatusPhase:
        self.logger.info("ensuring cloud resources are cleaned up")
        for res in CLAIM_RESOURCES:
            remaining = client.list(res)
            if remaining:
                self.logger.info(f"deletion of {len(remaining)} {res.kind} instances in progress")
                return StatusPhase.IN_PROGRESS
        return super().cleanup(installation, client)


@register(ProductName.CLOUD_RESOURCES)
def new_cloud_resources(name, config_manager, installation, installer, recorder, logger):
    return CloudResourcesReconciler.build(
        DECLARATIONS[name], config_manager, installation, installer, recorder, logger,
    )
