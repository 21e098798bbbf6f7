"""
Cluster client: generic get/list/create/update/delete over any object kind.

Objects travel as plain dicts, exactly as the API server returns them. Status is
written through the status subresource, independently of spec.

Error handling:
  - Everything the API server rejects surfaces as kubernetes ApiException.
  - 404 (not found) and 409 (already exists / conflict) are the two statuses callers
    routinely treat as steady state; use the helpers below rather than comparing codes.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from kubernetes import client, config
from kubernetes.client import ApiException
from kubernetes.dynamic import DynamicClient

from ..config import settings

logger = logging.getLogger("rhmi-operator.cluster")


@dataclass(frozen=True)
class Resource:
    api_version: str
    kind: str
    namespaced: bool = True


NAMESPACE = Resource("v1", "Namespace", namespaced=False)
CONFIG_MAP = Resource("v1", "ConfigMap")
SECRET = Resource("v1", "Secret")
RHMI = Resource("integreatly.org/v1alpha1", "RHMI")
RHMI_CONFIG = Resource("integreatly.org/v1alpha1", "RHMIConfig")
SUBSCRIPTION = Resource("operators.coreos.com/v1alpha1", "Subscription")
OPERATOR_GROUP = Resource("operators.coreos.com/v1", "OperatorGroup")
INSTALL_PLAN = Resource("operators.coreos.com/v1alpha1", "InstallPlan")
CSV = Resource("operators.coreos.com/v1alpha1", "ClusterServiceVersion")
ROUTE = Resource("route.openshift.io/v1", "Route")
INFRASTRUCTURE = Resource("config.openshift.io/v1", "Infrastructure", namespaced=False)
POSTGRES = Resource("integreatly.org/v1alpha1", "Postgres")
REDIS = Resource("integreatly.org/v1alpha1", "Redis")
BLOB_STORAGE = Resource("integreatly.org/v1alpha1", "BlobStorage")


def is_not_found(e: Exception) -> bool:
    return isinstance(e, ApiException) and e.status == 404


def is_already_exists(e: Exception) -> bool:
    return isinstance(e, ApiException) and e.status == 409


is_conflict = is_already_exists


_k8s_loaded = False


def _ensure_k8s():
    """Load Kubernetes config exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    if settings.IN_CLUSTER:
        config.load_incluster_config()
    else:
        config.load_kube_config(config_file=settings.KUBECONFIG or None)
    _k8s_loaded = True


class ClusterClient:
    """Thin dict-in/dict-out wrapper over the kubernetes dynamic client.

    Every call carries a bounded request timeout so a slow control plane cannot
    hang a reconciliation pass.
    """

    def __init__(self, dynamic_client: Optional[DynamicClient] = None,
                 timeout: int = settings.API_TIMEOUT):
        self._dynamic = dynamic_client
        self.timeout = timeout

    @property
    def dynamic(self) -> DynamicClient:
        if self._dynamic is None:
            _ensure_k8s()
            self._dynamic = DynamicClient(client.ApiClient())
        return self._dynamic

    def _api(self, res: Resource):
        return self.dynamic.resources.get(api_version=res.api_version, kind=res.kind)

    def get(self, res: Resource, name: str, namespace: Optional[str] = None) -> dict:
        obj = self._api(res).get(name=name, namespace=namespace, _request_timeout=self.timeout)
        return obj.to_dict()

    def list(self, res: Resource, namespace: Optional[str] = None,
             label_selector: Optional[str] = None) -> list[dict]:
        kwargs = {"_request_timeout": self.timeout}
        if namespace:
            kwargs["namespace"] = namespace
        if label_selector:
            kwargs["label_selector"] = label_selector
        result = self._api(res).get(**kwargs)
        return result.to_dict().get("items", [])

    def create(self, res: Resource, body: dict, namespace: Optional[str] = None) -> dict:
        body = _with_type(res, body)
        namespace = namespace or body.get("metadata", {}).get("namespace")
        obj = self._api(res).create(body=body, namespace=namespace, _request_timeout=self.timeout)
        logger.debug(f"created {res.kind} {_key(body)}")
        return obj.to_dict()

    def update(self, res: Resource, body: dict) -> dict:
        """Replace an object. A stale resourceVersion fails with 409."""
        body = _with_type(res, body)
        obj = self._api(res).replace(
            body=body, namespace=body["metadata"].get("namespace"), _request_timeout=self.timeout,
        )
        return obj.to_dict()

    def update_status(self, res: Resource, body: dict) -> dict:
        body = _with_type(res, body)
        obj = self._api(res).status.replace(
            body=body, namespace=body["metadata"].get("namespace"), _request_timeout=self.timeout,
        )
        return obj.to_dict()

    def delete(self, res: Resource, name: str, namespace: Optional[str] = None):
        self._api(res).delete(name=name, namespace=namespace, _request_timeout=self.timeout)
        logger.debug(f"deleted {res.kind} {namespace or ''}/{name}")

    def mutate(self, res: Resource, name: str, namespace: Optional[str],
               fn: Callable[[dict], Optional[bool]], status: bool = False,
               retries: int = 3) -> dict:
        """Read-modify-write against the latest version of an object.

        `fn` edits the object in place; returning False skips the write. A 409
        conflict re-reads and re-applies `fn`, up to `retries` attempts.
        """
        for attempt in range(1, retries + 1):
            obj = self.get(res, name, namespace)
            if fn(obj) is False:
                return obj
            try:
                if status:
                    return self.update_status(res, obj)
                return self.update(res, obj)
            except ApiException as e:
                if not is_conflict(e) or attempt == retries:
                    raise
                logger.info(f"conflict writing {res.kind} {namespace or ''}/{name}, retrying")
        raise RuntimeError("unreachable")


def _with_type(res: Resource, body: dict) -> dict:
    body = dict(body)
    body.setdefault("apiVersion", res.api_version)
    body.setdefault("kind", res.kind)
    return body


def _key(body: dict) -> str:
    md = body.get("metadata", {})
    return f"{md.get('namespace', '')}/{md.get('name', '')}"
