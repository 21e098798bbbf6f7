"""
Pydantic models for the RHMI installation and its upgrade schedule.

Field names follow the camelCase keys stored on the cluster so that a model can be
built straight from a custom object and dumped back without a translation layer.
"""
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class StatusPhase(str, Enum):
    """Lifecycle phase of a product or stage.

    The phases are totally ordered from NONE to COMPLETED. FAILED sits outside
    that order: it can be entered from anywhere and left again to retry.
    """
    NONE = ""
    ACCEPTED = "accepted"
    CREATING_SUBSCRIPTION = "creating subscription"
    AWAITING_OPERATOR = "awaiting operator"
    CREATING_COMPONENTS = "creating components"
    AWAITING_COMPONENTS = "awaiting components"
    IN_PROGRESS = "in progress"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value

    @property
    def rank(self) -> int:
        """Position in the forward order. FAILED has no position and ranks -1."""
        if self is StatusPhase.FAILED:
            return -1
        return _PHASE_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self is StatusPhase.COMPLETED

    def can_transition(self, to: "StatusPhase") -> bool:
        """Whether moving from this phase to `to` respects the forward-only rule."""
        if self is StatusPhase.FAILED:
            return True
        if to is StatusPhase.FAILED:
            return True
        if to in _PHASE_ORDER:
            return to.rank >= self.rank
        raise ValueError(f"unhandled phase: {to!r}")


_PHASE_ORDER = (
    StatusPhase.NONE,
    StatusPhase.ACCEPTED,
    StatusPhase.CREATING_SUBSCRIPTION,
    StatusPhase.AWAITING_OPERATOR,
    StatusPhase.CREATING_COMPONENTS,
    StatusPhase.AWAITING_COMPONENTS,
    StatusPhase.IN_PROGRESS,
    StatusPhase.COMPLETED,
)


class InstallationType(str, Enum):
    MANAGED = "managed"
    WORKSHOP = "workshop"
    MANAGED_API = "managed-api"
    MULTITENANT_MANAGED_API = "multitenant-managed-api"


class StageName:
    BOOTSTRAP = "bootstrap"
    CLOUD_RESOURCES = "cloud-resources"
    MONITORING = "monitoring"
    AUTHENTICATION = "authentication"
    PRODUCTS = "products"
    SOLUTION_EXPLORER = "solution-explorer"
    INSTALLATION = "installation"
    UNINSTALL_PRODUCTS = "uninstall - products"
    UNINSTALL_MONITORING = "uninstall - monitoring"
    UNINSTALL_CLOUD_RESOURCES = "uninstall - cloud-resources"
    UNINSTALL_BOOTSTRAP = "uninstall - bootstrap"
    COMPLETE = "complete"


class ProductName:
    RHSSO = "rhsso"
    RHSSO_USER = "rhssouser"
    THREESCALE = "3scale"
    CLOUD_RESOURCES = "cloud-resources"
    MARIN3R = "marin3r"
    GRAFANA = "grafana"
    OBSERVABILITY = "observability"
    MCG = "mcg"
    AMQ_STREAMS = "amqstreams"
    AMQ_ONLINE = "amqonline"
    SOLUTION_EXPLORER = "solution-explorer"
    CODEREADY_WORKSPACES = "codeready-workspaces"
    FUSE = "fuse"
    FUSE_ON_OPENSHIFT = "fuse-on-openshift"
    UPS = "ups"
    APICURIO_REGISTRY = "apicurio-registry"
    APICURITO = "apicurito"
    MONITORING = "middleware-monitoring"
    DATASYNC = "datasync"
    MONITORING_SPEC = "monitoring-spec"


# ---------------------------------------------------------------------------
# RHMI (installation)
# ---------------------------------------------------------------------------

class ProductStatus(BaseModel):
    name: str = ""
    version: str = ""
    operator: str = ""
    host: str = ""
    status: StatusPhase = StatusPhase.NONE
    lastError: str = ""


class StageStatus(BaseModel):
    name: str = ""
    phase: StatusPhase = StatusPhase.NONE
    products: Dict[str, ProductStatus] = Field(default_factory=dict)


class PullSecretSpec(BaseModel):
    name: str = ""
    namespace: str = ""


class InstallationSpec(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = InstallationType.MANAGED_API.value
    namespacePrefix: str = ""
    routingSubdomain: str = ""
    masterURL: str = ""
    selfSignedCerts: bool = False
    pullSecret: PullSecretSpec = Field(default_factory=PullSecretSpec)


class InstallationStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    stages: Dict[str, StageStatus] = Field(default_factory=dict)
    stage: str = ""
    lastError: str = ""
    version: str = ""
    toVersion: str = ""


class Installation(BaseModel):
    apiVersion: str = "integreatly.org/v1alpha1"
    kind: str = "RHMI"
    metadata: dict = Field(default_factory=dict)
    spec: InstallationSpec = Field(default_factory=InstallationSpec)
    status: InstallationStatus = Field(default_factory=InstallationStatus)

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace", "")

    @property
    def uid(self) -> str:
        return self.metadata.get("uid", "")

    @property
    def finalizers(self) -> list:
        return list(self.metadata.get("finalizers") or [])

    @property
    def is_uninstalling(self) -> bool:
        return bool(self.metadata.get("deletionTimestamp"))

    def get_pull_secret_spec(self) -> PullSecretSpec:
        """Pull secret reference, defaulting to the cluster-wide pull secret."""
        ps = self.spec.pullSecret
        return PullSecretSpec(
            name=ps.name or "pull-secret",
            namespace=ps.namespace or "openshift-config",
        )

    def get_stage_status(self, stage: str) -> StageStatus:
        if stage not in self.status.stages:
            self.status.stages[stage] = StageStatus(name=stage)
        return self.status.stages[stage]

    def get_product_status(self, stage: str, product: str) -> ProductStatus:
        """Return the mutable status record of a product, creating it on first use."""
        stage_status = self.get_stage_status(stage)
        if product not in stage_status.products:
            stage_status.products[product] = ProductStatus(name=product)
        return stage_status.products[product]

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


# ---------------------------------------------------------------------------
# RHMIConfig (upgrade schedule)
# ---------------------------------------------------------------------------

DATE_FORMAT = "%d %b %Y %H:%M"
MAINTENANCE_STATUS_FORMAT = "%d-%m-%Y %H:%M"
DEFAULT_MAINTENANCE_APPLY_FROM = "Thu 02:00"
DEFAULT_BACKUP_APPLY_ON = "03:01"


class Upgrade(BaseModel):
    contacts: str = ""
    alwaysImmediately: bool = False
    duringNextMaintenance: bool = False
    applyOn: str = ""


class Maintenance(BaseModel):
    applyFrom: str = ""


class Backup(BaseModel):
    applyOn: str = ""


class RHMIConfigSpec(BaseModel):
    upgrade: Upgrade = Field(default_factory=Upgrade)
    maintenance: Maintenance = Field(default_factory=Maintenance)
    backup: Backup = Field(default_factory=Backup)


class MaintenanceStatus(BaseModel):
    applyFrom: str = ""
    duration: str = ""


class UpgradeSchedule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    for_: str = Field(default="", alias="for")
    calculatedFrom: str = ""


class UpgradeStatus(BaseModel):
    window: str = ""
    scheduled: Optional[UpgradeSchedule] = None


class RHMIConfigStatus(BaseModel):
    maintenance: MaintenanceStatus = Field(default_factory=MaintenanceStatus)
    upgrade: UpgradeStatus = Field(default_factory=UpgradeStatus)


class RHMIConfig(BaseModel):
    apiVersion: str = "integreatly.org/v1alpha1"
    kind: str = "RHMIConfig"
    metadata: dict = Field(default_factory=dict)
    spec: RHMIConfigSpec = Field(default_factory=RHMIConfigSpec)
    status: RHMIConfigStatus = Field(default_factory=RHMIConfigStatus)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
