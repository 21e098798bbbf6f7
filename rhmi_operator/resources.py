"""
Idempotent resource primitives shared by every product reconciler.

Each primitive performs one step of convergence and returns a StatusPhase. None of
them wait: "not there yet" is a non-terminal phase and the caller is re-invoked
later. "Already exists" and "not found" are steady state; any other API error is
raised to the caller uninterpreted.
"""

import logging
from typing import Callable

from kubernetes.client import ApiException

from .models import Installation, StatusPhase
from .services.cluster import (
    CSV, INSTALL_PLAN, NAMESPACE, RHMI, SECRET, ClusterClient, is_already_exists, is_not_found,
)
from .services.marketplace import APPROVAL_MANUAL, MarketplaceManager, Target

OWNER_LABEL_KEY = "integreatly.org/installation-uid"

NS_ACTIVE = "Active"
NS_TERMINATING = "Terminating"

PLAN_COMPLETE = "Complete"
PLAN_FAILED = "Failed"
PLAN_INSTALLING = "Installing"


def owner_labels(installation: Installation) -> dict:
    return {
        "integreatly": "true",
        OWNER_LABEL_KEY: installation.uid,
        "monitoring-key": "middleware",
        "openshift.io/user-monitoring": "false",
    }


def finalizer_for(product: str) -> str:
    return f"{product}.integreatly.org/finalizer"


# ---------------------------------------------------------------------------
# Namespace
# ---------------------------------------------------------------------------

def _namespace_phase(ns: dict) -> StatusPhase:
    phase = (ns.get("status") or {}).get("phase")
    if phase == NS_ACTIVE:
        return StatusPhase.COMPLETED
    return StatusPhase.IN_PROGRESS


def reconcile_namespace(client: ClusterClient, name: str, installation: Installation,
                        logger: logging.Logger) -> StatusPhase:
    """Get-or-create a namespace labelled with the installation's identity.

    A terminating namespace is never forced: the caller keeps getting IN_PROGRESS
    until it is gone and can be recreated.
    """
    labels = owner_labels(installation)
    try:
        ns = client.get(NAMESPACE, name)
    except ApiException as e:
        # a restricted service account sees 403 for namespaces that do not exist yet
        if not (is_not_found(e) or e.status == 403):
            raise
        try:
            ns = client.create(NAMESPACE, {"metadata": {"name": name, "labels": labels}})
            logger.info(f"Namespace {name} created")
        except ApiException as ce:
            if not is_already_exists(ce):
                raise
            ns = client.get(NAMESPACE, name)
        if installation.spec.pullSecret.name:
            copy_pull_secret(client, installation, name, logger)
        return _namespace_phase(ns)

    if (ns.get("status") or {}).get("phase") == NS_TERMINATING:
        logger.debug(f"Namespace {name} is terminating, will try again")
        return StatusPhase.IN_PROGRESS

    if installation.spec.pullSecret.name:
        copy_pull_secret(client, installation, name, logger)

    current = ns.get("metadata", {}).get("labels") or {}
    if any(current.get(k) != v for k, v in labels.items()):
        ns["metadata"]["labels"] = {**current, **labels}
        ns = client.update(NAMESPACE, ns)
        logger.info(f"Namespace {name} labels updated")

    return _namespace_phase(ns)


def delete_namespace(client: ClusterClient, name: str, logger: logging.Logger) -> StatusPhase:
    """Start deletion of a namespace and report COMPLETED once it is gone."""
    try:
        ns = client.get(NAMESPACE, name)
    except ApiException as e:
        if is_not_found(e):
            return StatusPhase.COMPLETED
        raise
    if (ns.get("status") or {}).get("phase") != NS_TERMINATING:
        try:
            client.delete(NAMESPACE, name)
            logger.info(f"Namespace {name} deletion initiated")
        except ApiException as e:
            if is_not_found(e):
                return StatusPhase.COMPLETED
            raise
    return StatusPhase.IN_PROGRESS


def copy_pull_secret(client: ClusterClient, installation: Installation, namespace: str,
                     logger: logging.Logger):
    """Copy the installation's image pull secret into a product namespace."""
    ref = installation.get_pull_secret_spec()
    src = client.get(SECRET, ref.name, ref.namespace)
    body = {
        "metadata": {"name": ref.name, "namespace": namespace},
        "type": src.get("type", "kubernetes.io/dockerconfigjson"),
        "data": src.get("data") or {},
    }
    try:
        client.create(SECRET, body)
        logger.info(f"Pull secret {ref.name} copied to {namespace}")
    except ApiException as e:
        if not is_already_exists(e):
            raise
        dest = client.get(SECRET, ref.name, namespace)
        if dest.get("data") != body["data"]:
            dest["data"] = body["data"]
            client.update(SECRET, dest)


# ---------------------------------------------------------------------------
# Subscription
# ---------------------------------------------------------------------------

def reconcile_subscription(client: ClusterClient, installer: MarketplaceManager, target: Target,
                           logger: logging.Logger) -> StatusPhase:
    """Subscribe to a product operator and wait for its install plan to complete."""
    logger.info(f"Reconciling subscription {target.name} in {target.namespace}")
    installer.install_operator(target, APPROVAL_MANUAL)

    try:
        install_plan, subscription = installer.get_subscription_install_plan(
            target.name, target.namespace,
        )
    except ApiException as e:
        if is_not_found(e):
            return StatusPhase.AWAITING_OPERATOR
        raise
    if install_plan is None:
        return StatusPhase.AWAITING_OPERATOR

    phase = (install_plan.get("status") or {}).get("phase", "")
    if phase == PLAN_FAILED:
        return _retry_installation(client, installer, target, subscription, logger)

    if not install_plan.get("spec", {}).get("approved"):
        plan_md = install_plan["metadata"]

        def approve(ip):
            ip["spec"]["approved"] = True

        client.mutate(
            INSTALL_PLAN, plan_md["name"], plan_md.get("namespace"), approve,
        )
        logger.info(f"Approved install plan {plan_md['name']} for {target.name}")
        return StatusPhase.IN_PROGRESS

    if phase != PLAN_COMPLETE:
        logger.info(f"Install plan for {target.name} is not complete yet ({phase or 'pending'})")
        return StatusPhase.IN_PROGRESS

    for csv_name in install_plan.get("spec", {}).get("clusterServiceVersionNames", []):
        try:
            client.get(CSV, csv_name, target.namespace)
        except ApiException as e:
            if is_not_found(e):
                logger.info(f"Waiting for CSV {csv_name} after install plan completion")
                return StatusPhase.IN_PROGRESS
            raise
    return StatusPhase.COMPLETED


def _retry_installation(client: ClusterClient, installer: MarketplaceManager, target: Target,
                        subscription: dict, logger: logging.Logger) -> StatusPhase:
    installed = (subscription.get("status") or {}).get("installedCSV")
    if installed:
        logger.warning(f"Deleting CSV {installed} for re-install after failed install plan")
        try:
            client.delete(CSV, installed, target.namespace)
        except ApiException as e:
            if not is_not_found(e):
                raise
    logger.warning(f"Deleting subscription {target.name} for re-install after failed install plan")
    installer.delete_subscription(target)
    return StatusPhase.AWAITING_OPERATOR


# ---------------------------------------------------------------------------
# Finalizer
# ---------------------------------------------------------------------------

def _set_finalizer(client: ClusterClient, installation: Installation, finalizer: str, present: bool):
    def edit(obj):
        finalizers = list(obj["metadata"].get("finalizers") or [])
        if (finalizer in finalizers) == present:
            return False
        if present:
            finalizers.append(finalizer)
        else:
            finalizers.remove(finalizer)
        obj["metadata"]["finalizers"] = finalizers

    latest = client.mutate(RHMI, installation.name, installation.namespace, edit)
    installation.metadata["finalizers"] = list(latest["metadata"].get("finalizers") or [])
    installation.metadata["resourceVersion"] = latest["metadata"].get("resourceVersion")


def reconcile_finalizer(client: ClusterClient, installation: Installation, finalizer: str,
                        cleanup: Callable[[], StatusPhase], logger: logging.Logger) -> StatusPhase:
    """Guard the installation with `finalizer` and run `cleanup` before releasing it.

    While the installation is live, the finalizer is added (once). When it is being
    deleted, `cleanup` is invoked on every pass until it returns COMPLETED; only then
    is the finalizer removed. The key stays on the object across restarts, so an
    interrupted cleanup resumes on the next pass.
    """
    if installation.is_uninstalling:
        if finalizer in installation.finalizers:
            phase = cleanup()
            if phase is not StatusPhase.COMPLETED:
                return phase
            logger.info(f"Removing finalizer {finalizer}")
            _set_finalizer(client, installation, finalizer, present=False)
        return StatusPhase.COMPLETED

    if finalizer not in installation.finalizers:
        _set_finalizer(client, installation, finalizer, present=True)
        logger.info(f"Added finalizer {finalizer}")
    return StatusPhase.COMPLETED
