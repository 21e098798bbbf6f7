"""Shared fixtures: an in-memory cluster and helpers that play the part of OLM."""

import copy
import json
import logging
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from kubernetes.client import ApiException

from rhmi_operator.events import EventRecorder
from rhmi_operator.models import Installation
from rhmi_operator.services.cluster import (
    CSV, INSTALL_PLAN, NAMESPACE, RHMI, SUBSCRIPTION, ClusterClient, Resource,
)
from rhmi_operator.services.config_store import ConfigManager
from rhmi_operator.services.marketplace import MarketplaceManager

OPERATOR_NS = "redhat-rhmi-operator"
PREFIX = "redhat-rhmi-"


class FakeClusterClient(ClusterClient):
    """In-memory API server keyed by (kind, namespace, name).

    Mirrors the behaviour the reconcilers rely on: 404/409 ApiExceptions,
    resourceVersion checks on writes, status written only through update_status,
    and deletion deferred while finalizers remain.
    """

    def __init__(self):
        super().__init__(dynamic_client=None)
        self.objects = {}
        self._rv = 0
        # when True, deleted namespaces linger in Terminating until finish_deletions()
        self.hold_namespaces = False

    # -- helpers ---------------------------------------------------------------

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    @staticmethod
    def _key(res: Resource, name: str, namespace):
        return res.kind, (namespace or None) if res.namespaced else None, name

    def _stored(self, res: Resource, name: str, namespace) -> dict:
        key = self._key(res, name, namespace)
        if key not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        return self.objects[key]

    def set_status(self, res: Resource, name: str, namespace, status: dict):
        """Act as the owning controller and overwrite an object's status."""
        obj = self._stored(res, name, namespace)
        obj["status"] = copy.deepcopy(status)
        obj["metadata"]["resourceVersion"] = self._next_rv()

    def finish_deletions(self):
        for key in [k for k, o in self.objects.items()
                    if k[0] == "Namespace" and o.get("status", {}).get("phase") == "Terminating"]:
            del self.objects[key]

    def count(self, res: Resource) -> int:
        return sum(1 for k in self.objects if k[0] == res.kind)

    # -- ClusterClient ---------------------------------------------------------

    def get(self, res, name, namespace=None):
        return copy.deepcopy(self._stored(res, name, namespace))

    def list(self, res, namespace=None, label_selector=None):
        wanted = {}
        for term in (label_selector or "").split(","):
            if "=" in term:
                k, v = term.split("=", 1)
                wanted[k] = v
        items = []
        for (kind, ns, _), obj in self.objects.items():
            if kind != res.kind or (namespace and ns != namespace):
                continue
            labels = obj["metadata"].get("labels") or {}
            if all(labels.get(k) == v for k, v in wanted.items()):
                items.append(copy.deepcopy(obj))
        return items

    def create(self, res, body, namespace=None):
        body = copy.deepcopy(body)
        body.setdefault("apiVersion", res.api_version)
        body.setdefault("kind", res.kind)
        md = body.setdefault("metadata", {})
        if res.namespaced:
            md["namespace"] = namespace or md.get("namespace")
        key = self._key(res, md["name"], md.get("namespace"))
        if key in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        md["resourceVersion"] = self._next_rv()
        md.setdefault("uid", f"uid-{md['resourceVersion']}")
        md.setdefault("creationTimestamp", datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"))
        if res.kind == NAMESPACE.kind:
            body["status"] = {"phase": "Active"}
        self.objects[key] = body
        return copy.deepcopy(body)

    def _check_rv(self, stored: dict, body: dict):
        rv = body.get("metadata", {}).get("resourceVersion")
        if rv and rv != stored["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")

    def update(self, res, body):
        md = body["metadata"]
        stored = self._stored(res, md["name"], md.get("namespace"))
        self._check_rv(stored, body)
        new = copy.deepcopy(body)
        new.setdefault("apiVersion", res.api_version)
        new.setdefault("kind", res.kind)
        if "status" in stored:
            new["status"] = stored["status"]
        else:
            new.pop("status", None)
        new["metadata"]["resourceVersion"] = self._next_rv()
        key = self._key(res, md["name"], md.get("namespace"))
        if new["metadata"].get("deletionTimestamp") and not new["metadata"].get("finalizers"):
            del self.objects[key]
        else:
            self.objects[key] = new
        return copy.deepcopy(new)

    def update_status(self, res, body):
        md = body["metadata"]
        stored = self._stored(res, md["name"], md.get("namespace"))
        self._check_rv(stored, body)
        stored["status"] = copy.deepcopy(body.get("status") or {})
        stored["metadata"]["resourceVersion"] = self._next_rv()
        return copy.deepcopy(stored)

    def delete(self, res, name, namespace=None):
        key = self._key(res, name, namespace)
        obj = self._stored(res, name, namespace)
        if obj["metadata"].get("finalizers"):
            obj["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
            obj["metadata"]["resourceVersion"] = self._next_rv()
        elif res.kind == NAMESPACE.kind and self.hold_namespaces:
            obj["status"] = {"phase": "Terminating"}
        else:
            del self.objects[key]


# ---------------------------------------------------------------------------
# OLM simulation
# ---------------------------------------------------------------------------

def olm_create_install_plan(fake: FakeClusterClient, subscription: str, namespace: str,
                            csv_name: str = "", phase: str = "RequiresApproval",
                            approved: bool = False, csv_manifest: dict = None,
                            created: str = "2024-01-01T09:30:00Z") -> dict:
    """Do what OLM does after a subscription appears: resolve it into an install plan."""
    csv_name = csv_name or f"{subscription}.v1.0.0"
    plan_name = f"install-{subscription}"
    steps = []
    if csv_manifest is not None:
        steps.append({"resource": {"kind": "ClusterServiceVersion", "manifest": json.dumps(csv_manifest)}})
    fake.create(INSTALL_PLAN, {
        "metadata": {"name": plan_name, "namespace": namespace, "creationTimestamp": created},
        "spec": {"approved": approved, "clusterServiceVersionNames": [csv_name]},
    })
    fake.set_status(INSTALL_PLAN, plan_name, namespace, {"phase": phase, "plan": steps})
    sub = fake.get(SUBSCRIPTION, subscription, namespace)
    status = dict(sub.get("status") or {})
    status.update({"installPlanRef": {"name": plan_name, "namespace": namespace}, "currentCSV": csv_name})
    fake.set_status(SUBSCRIPTION, subscription, namespace, status)
    return fake.get(INSTALL_PLAN, plan_name, namespace)


def olm_complete(fake: FakeClusterClient, subscription: str, namespace: str):
    """Finish an approved install plan and materialise its CSV."""
    sub = fake.get(SUBSCRIPTION, subscription, namespace)
    ref = sub["status"]["installPlanRef"]
    plan = fake.get(INSTALL_PLAN, ref["name"], namespace)
    fake.set_status(INSTALL_PLAN, ref["name"], namespace, {"phase": "Complete"})
    for csv_name in plan["spec"]["clusterServiceVersionNames"]:
        fake.create(CSV, {"metadata": {"name": csv_name, "namespace": namespace}, "spec": {}})
    status = dict(sub["status"])
    status["installedCSV"] = status["currentCSV"]
    fake.set_status(SUBSCRIPTION, subscription, namespace, status)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake():
    return FakeClusterClient()


@pytest.fixture
def emit():
    return Mock()


@pytest.fixture
def recorder(emit):
    return EventRecorder(emit=emit)


@pytest.fixture
def log():
    return logging.getLogger("rhmi-operator.tests")


@pytest.fixture
def installer(fake):
    return MarketplaceManager(fake, catalog_source="rhmi-registry-cs",
                              catalog_source_namespace="openshift-marketplace")


@pytest.fixture
def config_manager(fake):
    return ConfigManager(fake, OPERATOR_NS, f"{PREFIX}installation-config")


def make_installation(fake: FakeClusterClient, type_: str = "managed-api", **spec) -> Installation:
    body = {
        "apiVersion": RHMI.api_version,
        "kind": RHMI.kind,
        "metadata": {"name": "rhmi", "namespace": OPERATOR_NS, "finalizers": ["integreatly.org/deletion"]},
        "spec": {"type": type_, "namespacePrefix": PREFIX, **spec},
    }
    return Installation.model_validate(fake.create(RHMI, body))


def reload_installation(fake: FakeClusterClient) -> Installation:
    return Installation.model_validate(fake.get(RHMI, "rhmi", OPERATOR_NS))


@pytest.fixture
def installation(fake):
    return make_installation(fake)
