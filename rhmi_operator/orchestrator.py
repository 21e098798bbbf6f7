"""
Installation orchestrator: walks the stage tables and drives every product reconciler.

Install walk:
  for each install stage, in order:
    - bootstrap is handled by the BootstrapReconciler
    - every other stage invokes each of its product reconcilers in sequence
    - the stage is COMPLETED only when all its products are, FAILED if any failed,
      IN_PROGRESS otherwise
    - an incomplete stage ends the pass; later stages are not touched

Uninstall walk: the same algorithm over the uninstall stages, where a product
whose finalizer is already gone counts as removed.

Nothing here blocks. A pass ends with a ReconcileResult and the hosting runtime
invokes the orchestrator again after `retry_after` seconds.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from .bootstrap import BootstrapReconciler
from .config import settings
from .metrics import set_available, set_installation_metrics
from .models import Installation, StageName, StatusPhase
from .products import UnknownProductError, new_reconciler
from .resources import finalizer_for
from .services.cluster import RHMI, ClusterClient
from .services.config_store import ConfigManager, ProductConfigError
from .services.marketplace import MarketplaceManager
from .stages import Stage, Type

DELETION_STAGE = "deletion"

# rewritten by every pass; other status fields are kept from the latest object
OWNED_STATUS_FIELDS = ("stages", "stage", "lastError")


@dataclass
class ReconcileResult:
    phase: StatusPhase
    retry_after: Optional[int] = None
    error: str = ""
    permanent: bool = False

    @property
    def requeue(self) -> bool:
        return self.retry_after is not None


class Orchestrator:
    def __init__(self, client: ClusterClient, installer: MarketplaceManager,
                 config_manager: ConfigManager, stage_type: Type, recorder,
                 logger: logging.Logger,
                 reconciler_factory: Callable = new_reconciler,
                 bootstrap: Optional[BootstrapReconciler] = None,
                 requeue_delay: int = settings.REQUEUE_DELAY,
                 operator_version: str = settings.OPERATOR_VERSION):
        self.client = client
        self.installer = installer
        self.config_manager = config_manager
        self.stage_type = stage_type
        self.recorder = recorder
        self.logger = logger
        self.reconciler_factory = reconciler_factory
        self.bootstrap = bootstrap or BootstrapReconciler(config_manager, recorder, logger)
        self.requeue_delay = requeue_delay
        self.operator_version = operator_version

    # ---------------------------------------------------------------------------
    # Install
    # ---------------------------------------------------------------------------

    def reconcile(self, installation: Installation) -> ReconcileResult:
        if installation.is_uninstalling:
            return self.uninstall(installation)

        status = installation.status
        errors: List[str] = []
        config_error = False
        version_mismatch = False
        overall = StatusPhase.COMPLETED

        for stage in self.stage_type.get_install_stages():
            stage_status = installation.get_stage_status(stage.name)
            previous = stage_status.phase
            status.stage = stage.name

            if stage.name == StageName.BOOTSTRAP:
                phase = self._run_bootstrap(installation, errors)
            else:
                phase, mismatch, bad_config = self._process_stage(installation, stage, errors)
                version_mismatch = version_mismatch or mismatch
                config_error = config_error or bad_config

            stage_status.phase = phase
            if phase == StatusPhase.COMPLETED:
                for product in stage_status.products.values():
                    product.lastError = ""
                self.recorder.stage_complete(installation, stage.name, previous)
                continue

            self.logger.info(f"Stage {stage.name} is {phase.value or 'pending'}, not proceeding")
            overall = StatusPhase.FAILED if phase == StatusPhase.FAILED else StatusPhase.IN_PROGRESS
            break

        if overall == StatusPhase.COMPLETED:
            status.stage = StageName.COMPLETE
            status.lastError = ""
            self.logger.info("All install stages completed")
        elif errors:
            status.lastError = "; ".join(errors)

        self._write_status(installation, completed=overall == StatusPhase.COMPLETED,
                           version_mismatch=version_mismatch)
        set_installation_metrics(installation)
        set_available(overall == StatusPhase.COMPLETED)

        if overall == StatusPhase.COMPLETED:
            return ReconcileResult(overall)
        return ReconcileResult(
            overall, retry_after=self.requeue_delay, error=status.lastError, permanent=config_error,
        )

    def _run_bootstrap(self, installation: Installation, errors: List[str]) -> StatusPhase:
        try:
            return self.bootstrap.reconcile(installation, self.client)
        except Exception as e:
            self.logger.error(f"Bootstrap failed: {e}")
            errors.append(f"failed bootstrap: {e}")
            return StatusPhase.FAILED

    def _process_stage(self, installation: Installation, stage: Stage,
                       errors: List[str]) -> tuple:
        """Reconcile every product of one install stage.

        Returns (stage phase, version mismatch seen, config error seen). While the
        stage has not completed, products already COMPLETED in it are not invoked
        again.
        """
        retrying = installation.get_stage_status(stage.name).phase != StatusPhase.COMPLETED
        phases = []
        mismatch = False
        config_error = False

        for product in stage.product_names:
            product_status = installation.get_product_status(stage.name, product)
            if retrying and product_status.status == StatusPhase.COMPLETED:
                self.logger.debug(f"Skipping completed product {product}")
                phases.append(StatusPhase.COMPLETED)
                continue

            reconciler = self._build_reconciler(installation, product, product_status, errors)
            if reconciler is None:
                config_error = True
                phases.append(StatusPhase.FAILED)
                continue
            phase = self._reconcile_product(installation, stage, reconciler, product_status, errors)
            if phase == StatusPhase.COMPLETED and not reconciler.verify_version(installation):
                mismatch = True
            phases.append(phase)

        return _aggregate(phases), mismatch, config_error

    # ---------------------------------------------------------------------------
    # Uninstall
    # ---------------------------------------------------------------------------

    def uninstall(self, installation: Installation) -> ReconcileResult:
        """Walk the uninstall stages. COMPLETED means every product has been removed."""
        status = installation.status
        status.stage = DELETION_STAGE
        errors: List[str] = []
        set_available(False)

        for stage in self.stage_type.get_uninstall_stages():
            stage_status = installation.get_stage_status(stage.name)
            if stage.name == StageName.UNINSTALL_BOOTSTRAP:
                phase = self._run_bootstrap_uninstall(installation, errors)
            else:
                phase = self._process_uninstall_stage(installation, stage, errors)
            stage_status.phase = phase

            if phase != StatusPhase.COMPLETED:
                self.logger.info(f"Uninstall stage {stage.name} is {phase.value or 'pending'}")
                if errors:
                    status.lastError = "; ".join(errors)
                self._write_status(installation)
                return ReconcileResult(
                    StatusPhase.FAILED if phase == StatusPhase.FAILED else StatusPhase.IN_PROGRESS,
                    retry_after=self.requeue_delay, error=status.lastError,
                )

        status.lastError = ""
        self._write_status(installation)
        self.logger.info("All uninstall stages completed")
        return ReconcileResult(StatusPhase.COMPLETED)

    def _run_bootstrap_uninstall(self, installation: Installation, errors: List[str]) -> StatusPhase:
        try:
            return self.bootstrap.uninstall(installation, self.client)
        except Exception as e:
            self.logger.error(f"Bootstrap uninstall failed: {e}")
            errors.append(f"failed bootstrap uninstall: {e}")
            return StatusPhase.FAILED

    def _process_uninstall_stage(self, installation: Installation, stage: Stage,
                                 errors: List[str]) -> StatusPhase:
        phases = []
        for product in stage.product_names:
            product_status = installation.get_product_status(stage.name, product)
            if finalizer_for(product) not in installation.finalizers:
                product_status.status = StatusPhase.COMPLETED
                phases.append(StatusPhase.COMPLETED)
                continue
            self.logger.info(f"Uninstalling {product} in stage {stage.name}")
            reconciler = self._build_reconciler(installation, product, product_status, errors)
            if reconciler is None:
                phases.append(StatusPhase.FAILED)
                continue
            phases.append(self._reconcile_product(installation, stage, reconciler, product_status, errors))
        return _aggregate(phases)

    # ---------------------------------------------------------------------------
    # Shared
    # ---------------------------------------------------------------------------

    def _build_reconciler(self, installation: Installation, product: str, product_status,
                          errors: List[str]):
        try:
            return self.reconciler_factory(
                product, self.config_manager, installation, self.installer, self.recorder, self.logger,
            )
        except (ProductConfigError, UnknownProductError) as e:
            message = f"failed to build a reconciler for {product}: {e}"
            self.logger.error(message)
            product_status.status = StatusPhase.FAILED
            product_status.lastError = message
            errors.append(message)
            return None

    def _reconcile_product(self, installation: Installation, stage: Stage, reconciler,
                           product_status, errors: List[str]) -> StatusPhase:
        product = reconciler.product_name
        previous = StatusPhase(product_status.status)
        try:
            phase = reconciler.reconcile(installation, product_status, self.client)
        except Exception as e:
            message = f"failed installation of {product}: {e}"
            self.logger.error(message)
            self.recorder.product_error(installation, product, e)
            errors.append(message)
            phase = StatusPhase.FAILED
            product_status.lastError = message

        if not previous.can_transition(phase):
            self.logger.warning(f"{product} moved back from {previous.value} to {phase.value}")
        product_status.status = phase
        if phase == StatusPhase.COMPLETED and not installation.is_uninstalling:
            self.recorder.product_complete(installation, stage.name, product, previous)
        self.logger.info(f"{product} phase: {phase.value or 'none'}")
        return phase

    def _write_status(self, installation: Installation, completed: bool = False,
                      version_mismatch: bool = False):
        """Merge this pass's stage fields into the latest status, read-modify-write.

        version and toVersion are decided against the latest object, so a toVersion
        written meanwhile by the upgrade controller is kept.
        """
        owned = installation.status.model_dump(mode="json", include=set(OWNED_STATUS_FIELDS))
        track_version = not installation.is_uninstalling

        def edit(obj):
            status = dict(obj.get("status") or {})
            before = dict(status)
            status.update(owned)
            if track_version:
                self._advance_version(status, completed, version_mismatch)
            if status == before:
                return False
            obj["status"] = status

        latest = self.client.mutate(RHMI, installation.name, installation.namespace, edit, status=True)
        installation.metadata["resourceVersion"] = latest["metadata"].get("resourceVersion")
        latest_status = latest.get("status") or {}
        installation.status.version = latest_status.get("version", "")
        installation.status.toVersion = latest_status.get("toVersion", "")

    def _advance_version(self, status: dict, completed: bool, version_mismatch: bool):
        status.setdefault("version", "")
        status.setdefault("toVersion", "")
        if not status["toVersion"] and status["version"] != self.operator_version:
            self.logger.info(f"Setting toVersion to {self.operator_version}")
            status["toVersion"] = self.operator_version
        if completed and not version_mismatch and status["toVersion"] == self.operator_version:
            status["version"] = self.operator_version
            status["toVersion"] = ""


def _aggregate(phases: List[StatusPhase]) -> StatusPhase:
    if any(p == StatusPhase.FAILED for p in phases):
        return StatusPhase.FAILED
    if all(p == StatusPhase.COMPLETED for p in phases):
        return StatusPhase.COMPLETED
    return StatusPhase.IN_PROGRESS
