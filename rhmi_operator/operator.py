"""
RHMI Operator: kopf handlers wiring the orchestrator to the cluster.

Architecture:
  RHMI CR -> Operator watches -> Orchestrator pass:
    1. Resolve the stage tables for spec.type (and the cluster platform)
    2. Walk the install stages, one product reconciler at a time
    3. Write status (stages, products, lastError, version) to the RHMI CR
    4. Incomplete -> TemporaryError, kopf retries after REQUEUE_DELAY

  On Delete (finalizer integreatly.org/deletion):
    Walk the uninstall stages until every product finalizer is gone,
    then kopf releases its own finalizer.

  On Update (spec):
    The install passes restart, so a corrected configuration is retried.

  Resync (Timer):
    Installations are re-reconciled every COMPLETE_RESYNC_INTERVAL seconds so
    drift is repaired; an incomplete pass retries after REQUEUE_DELAY.

  RHMIConfig:
    The maintenance window status is recomputed whenever the schedule changes.

  Operator upgrades (Timer on the operator's own Subscription):
    Pending install plans are approved according to the RHMIConfig schedule.

Run with: kopf run -m rhmi_operator.operator
"""

import logging

import kopf
from kubernetes.client import ApiException
from prometheus_client import start_http_server

from .config import settings as cfg
from .events import EventRecorder
from .models import Installation, RHMIConfig, StageName
from .orchestrator import Orchestrator
from .services.cluster import INFRASTRUCTURE, ClusterClient, is_not_found
from .services.config_store import ConfigManager
from .services.marketplace import MarketplaceManager
from .stages import UnknownInstallationTypeError, type_for_flavor
from .subscription import SubscriptionUpgradeReconciler
from .upgrades import ScheduleValidationError, update_status

logger = logging.getLogger("rhmi-operator")

DELETION_FINALIZER = f"{cfg.CRD_GROUP}/deletion"

_client = None


def cluster_client() -> ClusterClient:
    """Shared client; the dynamic client discovers API resources once."""
    global _client
    if _client is None:
        _client = ClusterClient()
    return _client


def cluster_platform(client: ClusterClient) -> str:
    """Platform type from the cluster Infrastructure object, PLATFORM_TYPE when absent."""
    try:
        infra = client.get(INFRASTRUCTURE, "cluster")
    except ApiException as e:
        if not is_not_found(e):
            raise
        return cfg.PLATFORM_TYPE
    status = infra.get("status") or {}
    return (status.get("platformStatus") or {}).get("type") or status.get("platform") or cfg.PLATFORM_TYPE


def build_orchestrator(installation: Installation, client: ClusterClient, log) -> Orchestrator:
    """Assemble an orchestrator for one installation. Unknown types are permanent errors."""
    if not installation.spec.namespacePrefix:
        installation.spec.namespacePrefix = cfg.NAMESPACE_PREFIX
    try:
        stage_type = type_for_flavor(installation.spec.type, cluster_platform(client))
    except UnknownInstallationTypeError as e:
        raise kopf.PermanentError(str(e)) from e

    config_manager = ConfigManager(
        client, installation.namespace, cfg.config_map_name(installation.spec.namespacePrefix),
    )
    return Orchestrator(
        client=client,
        installer=MarketplaceManager(client),
        config_manager=config_manager,
        stage_type=stage_type,
        recorder=EventRecorder(),
        logger=log,
    )


# ---------------------------------------------------------------------------
# Kopf operator settings
# ---------------------------------------------------------------------------

@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **kwargs):
    settings.posting.enabled = True
    settings.persistence.finalizer = DELETION_FINALIZER
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=cfg.CRD_GROUP)
    settings.execution.max_workers = cfg.MAX_WORKERS
    start_http_server(cfg.METRICS_PORT)
    logger.info(
        f"RHMI Operator {cfg.OPERATOR_VERSION} started (namespace={cfg.OPERATOR_NAMESPACE}, "
        f"max_workers={cfg.MAX_WORKERS}, metrics_port={cfg.METRICS_PORT})"
    )


# ---------------------------------------------------------------------------
# RHMI: install / resume
# ---------------------------------------------------------------------------

@kopf.on.create(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.RHMI_PLURAL)
@kopf.on.resume(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.RHMI_PLURAL)
@kopf.on.update(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.RHMI_PLURAL, field="spec")
def reconcile_installation(body, name, logger, **kwargs):
    """
    Run install passes until every install stage is complete.

    Each pass is idempotent: completed stages are re-checked, not redone, and the
    walk stops at the first incomplete stage. A spec edit starts the passes again,
    including after an invalid configuration stopped them.
    """
    installation = Installation.model_validate(dict(body))
    orchestrator = build_orchestrator(installation, cluster_client(), logger)
    result = orchestrator.reconcile(installation)

    if result.permanent:
        raise kopf.PermanentError(f"Installation {name} has invalid configuration: {result.error}")
    if result.requeue:
        raise kopf.TemporaryError(
            f"Installation {name} is {result.phase.value}: {result.error or 'waiting on stages'}",
            delay=result.retry_after,
        )
    logger.info(f"Installation {name} complete")


@kopf.timer(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.RHMI_PLURAL,
            interval=cfg.COMPLETE_RESYNC_INTERVAL, idle=cfg.COMPLETE_RESYNC_INTERVAL)
def resync_installation(body, name, logger, **kwargs):
    """
    Periodic pass to repair drift and to pick up installations whose handler gave up.

    A pass that leaves the installation incomplete raises TemporaryError, so kopf
    retries this tick after REQUEUE_DELAY instead of waiting a full interval.
    Invalid configuration is only logged; the next tick checks it again.
    """
    if body.get("metadata", {}).get("deletionTimestamp"):
        return

    installation = Installation.model_validate(dict(body))
    was_complete = installation.status.stage == StageName.COMPLETE
    try:
        orchestrator = build_orchestrator(installation, cluster_client(), logger)
    except kopf.PermanentError as e:
        logger.error(f"Installation {name} cannot be reconciled: {e}")
        return
    result = orchestrator.reconcile(installation)

    if result.permanent:
        logger.error(f"Installation {name} has invalid configuration: {result.error}")
        return
    if result.requeue:
        if was_complete:
            logger.warning(f"Installation {name} drifted, now {result.phase.value}: {result.error}")
        raise kopf.TemporaryError(
            f"Installation {name} is {result.phase.value}: {result.error or 'waiting on stages'}",
            delay=result.retry_after,
        )


# ---------------------------------------------------------------------------
# RHMI: delete
# ---------------------------------------------------------------------------

@kopf.on.delete(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.RHMI_PLURAL)
def delete_installation(body, name, logger, **kwargs):
    """
    Uninstall every product, in the uninstall stage order.

    kopf keeps its finalizer on the RHMI CR until this handler returns, so the CR
    outlives everything it installed.
    """
    installation = Installation.model_validate(dict(body))
    result = build_orchestrator(installation, cluster_client(), logger).uninstall(installation)
    if result.requeue:
        raise kopf.TemporaryError(
            f"Uninstall of {name} is {result.phase.value}: {result.error or 'waiting on stages'}",
            delay=result.retry_after,
        )
    logger.info(f"Installation {name} uninstalled")


# ---------------------------------------------------------------------------
# RHMIConfig: maintenance window status
# ---------------------------------------------------------------------------

@kopf.on.create(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.RHMI_CONFIG_PLURAL)
@kopf.on.update(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.RHMI_CONFIG_PLURAL)
def reconcile_rhmi_config(body, name, patch, logger, **kwargs):
    config = RHMIConfig.model_validate(dict(body))
    try:
        update_status(config, None)
    except ScheduleValidationError as e:
        raise kopf.PermanentError(f"RHMIConfig {name} has an invalid maintenance window: {e}") from e
    patch.status["maintenance"] = config.status.maintenance.model_dump()
    logger.info(f"RHMIConfig {name} next maintenance: {config.status.maintenance.applyFrom}")


# ---------------------------------------------------------------------------
# Subscription: operator upgrades
# ---------------------------------------------------------------------------

def _is_operator_subscription(name, namespace, **_):
    return name == cfg.SUBSCRIPTION_NAME and namespace == cfg.OPERATOR_NAMESPACE


@kopf.timer("operators.coreos.com", "v1alpha1", "subscriptions",
            interval=cfg.UPGRADE_REQUEUE_DELAY, when=_is_operator_subscription)
def check_operator_upgrade(body, name, logger, **kwargs):
    reconciler = SubscriptionUpgradeReconciler(cluster_client(), EventRecorder(), log=logger)
    delay = reconciler.handle_upgrades(dict(body))
    if delay is not None:
        logger.debug(f"Upgrade of {name} pending, next check in {delay}s")
