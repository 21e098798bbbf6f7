"""
Product reconciler contract and the generic, declaration-driven implementation.

A reconciler performs one idempotent, non-blocking step towards its product's
desired state and returns the phase it reached. Waiting is a returned phase, never
a sleep. Unrecoverable problems are raised; the orchestrator turns them into a
FAILED phase plus lastError.

Install flow of OperatorProductReconciler:
  1. Product finalizer on the installation
  2. Operator namespace + product namespace
  3. OLM subscription, wait for the install plan
  4. Component custom resource (optional), wait until ready
  5. Host discovery, config store write, status fields

Uninstall flow: the finalizer's cleanup deletes both namespaces and reports
COMPLETED once they are gone, at which point the finalizer is released.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from kubernetes.client import ApiException

from ..models import Installation, ProductStatus, StatusPhase
from ..resources import (
    delete_namespace, finalizer_for, owner_labels, reconcile_finalizer, reconcile_namespace,
    reconcile_subscription,
)
from ..services.cluster import ROUTE, ClusterClient, Resource, is_not_found
from ..services.config_store import ConfigManager, ProductConfig
from ..services.marketplace import INTEGREATLY_CHANNEL, MarketplaceManager, Target


class ProductFailedError(RuntimeError):
    """A downstream resource reported an explicit failure."""


@dataclass(frozen=True)
class ComponentSpec:
    """The custom resource a product operator turns into a running product."""
    resource: Resource
    name: str
    spec: dict = field(default_factory=dict)
    ready_phases: tuple = ("reconciled", "complete", "completed", "ready")
    failed_phases: tuple = ("failed", "error")


@dataclass(frozen=True)
class ProductDeclaration:
    name: str
    namespace: str
    package: str
    channel: str = INTEGREATLY_CHANNEL
    version: str = ""
    operator_version: str = ""
    component: Optional[ComponentSpec] = None
    host_route: str = ""


class ProductReconciler(ABC):
    """Contract every product implements."""

    def __init__(self, product_name: str, config: ProductConfig, config_manager: ConfigManager,
                 installer: MarketplaceManager, recorder, logger: logging.Logger):
        self.product_name = product_name
        self.config = config
        self.config_manager = config_manager
        self.installer = installer
        self.recorder = recorder
        self.logger = logger

    @abstractmethod
    def reconcile(self, installation: Installation, product_status: ProductStatus,
                  client: ClusterClient) -> StatusPhase:
        """Advance the product one step and return the phase reached."""

    def verify_version(self, installation: Installation) -> bool:
        return True


class OperatorProductReconciler(ProductReconciler):
    """A product installed through its own OLM operator plus one component resource."""

    declaration: ProductDeclaration

    def __init__(self, declaration: ProductDeclaration, config: ProductConfig,
                 config_manager: ConfigManager, installer: MarketplaceManager, recorder,
                 logger: logging.Logger):
        super().__init__(declaration.name, config, config_manager, installer, recorder, logger)
        self.declaration = declaration

    @classmethod
    def build(cls, declaration: ProductDeclaration, config_manager: ConfigManager,
              installation: Installation, installer: MarketplaceManager, recorder,
              logger: logging.Logger) -> "OperatorProductReconciler":
        """Read the product's config, default its namespaces and validate it.

        Invalid config fails here, at construction, rather than mid-reconcile.
        """
        config = config_manager.read_product(declaration.name)
        if not config.get_namespace():
            config.set_namespace(installation.spec.namespacePrefix + declaration.namespace)
        if not config.get_operator_namespace():
            config.set_operator_namespace(config.get_namespace() + "-operator")
        config.validate()
        return cls(declaration, config, config_manager, installer, recorder, logger)

    # -- contract -------------------------------------------------------------

    def reconcile(self, installation: Installation, product_status: ProductStatus,
                  client: ClusterClient) -> StatusPhase:
        phase = reconcile_finalizer(
            client, installation, finalizer_for(self.product_name),
            lambda: self.cleanup(installation, client), self.logger,
        )
        if installation.is_uninstalling or phase is not StatusPhase.COMPLETED:
            return phase

        for ns in (self.config.get_operator_namespace(), self.config.get_namespace()):
            phase = reconcile_namespace(client, ns, installation, self.logger)
            if phase is not StatusPhase.COMPLETED:
                return StatusPhase.ACCEPTED

        phase = reconcile_subscription(client, self.installer, self.target(), self.logger)
        if phase is not StatusPhase.COMPLETED:
            return StatusPhase.AWAITING_OPERATOR

        phase = self.reconcile_components(installation, client)
        if phase is not StatusPhase.COMPLETED:
            return phase

        host = self.discover_host(client)
        if host is None:
            return StatusPhase.AWAITING_COMPONENTS

        self.config.set_host(host)
        self.config.set_version(self.declaration.version)
        self.config.set_operator_version(self.declaration.operator_version)
        self.export_config(client)
        self.config_manager.write_config(self.config)

        product_status.host = host
        product_status.version = self.declaration.version
        product_status.operator = self.declaration.operator_version
        self.logger.info(f"{self.product_name} has reconciled successfully")
        return StatusPhase.COMPLETED

    def verify_version(self, installation: Installation) -> bool:
        for stage in installation.status.stages.values():
            status = stage.products.get(self.product_name)
            if status is not None:
                return status.version == self.declaration.version
        return False

    # -- steps ----------------------------------------------------------------

    def target(self) -> Target:
        return Target(
            package=self.declaration.package,
            channel=self.declaration.channel,
            namespace=self.config.get_operator_namespace(),
        )

    def reconcile_components(self, installation: Installation, client: ClusterClient) -> StatusPhase:
        component = self.declaration.component
        if component is None:
            return StatusPhase.COMPLETED
        ns = self.config.get_namespace()
        try:
            cr = client.get(component.resource, component.name, ns)
        except ApiException as e:
            if not is_not_found(e):
                raise
            cr = client.create(component.resource, {
                "metadata": {
                    "name": component.name,
                    "namespace": ns,
                    "labels": owner_labels(installation),
                },
                "spec": dict(component.spec),
            })
            self.logger.info(f"Created {component.resource.kind} {ns}/{component.name}")
        return self._component_phase(component, cr)

    def _component_phase(self, component: ComponentSpec, cr: dict) -> StatusPhase:
        phase = str((cr.get("status") or {}).get("phase", "")).lower()
        if phase in component.failed_phases:
            message = (cr.get("status") or {}).get("message", "")
            raise ProductFailedError(
                f"{component.resource.kind} {component.name} failed" + (f": {message}" if message else "")
            )
        if phase in component.ready_phases:
            return StatusPhase.COMPLETED
        return StatusPhase.AWAITING_COMPONENTS

    def discover_host(self, client: ClusterClient) -> Optional[str]:
        """Externally reachable host, "" when the product has none, None while pending."""
        if not self.declaration.host_route:
            return ""
        try:
            route = client.get(ROUTE, self.declaration.host_route, self.config.get_namespace())
        except ApiException as e:
            if is_not_found(e):
                return None
            raise
        host = route.get("spec", {}).get("host")
        return f"https://{host}" if host else None

    def export_config(self, client: ClusterClient):
        """Hook for product-specific config store keys."""

    def cleanup(self, installation: Installation, client: ClusterClient) -> StatusPhase:
        phases = [
            delete_namespace(client, ns, self.logger)
            for ns in (self.config.get_namespace(), self.config.get_operator_namespace())
        ]
        if all(p is StatusPhase.COMPLETED for p in phases):
            return StatusPhase.COMPLETED
        return StatusPhase.IN_PROGRESS
