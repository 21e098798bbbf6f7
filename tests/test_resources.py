from rhmi_operator.models import StatusPhase
from rhmi_operator.resources import (
    OWNER_LABEL_KEY, delete_namespace, finalizer_for, reconcile_finalizer, reconcile_namespace,
    reconcile_subscription,
)
from rhmi_operator.services.cluster import (
    CSV, INSTALL_PLAN, NAMESPACE, OPERATOR_GROUP, RHMI, SECRET, SUBSCRIPTION,
)
from rhmi_operator.services.marketplace import Target

from .conftest import OPERATOR_NS, make_installation, olm_complete, olm_create_install_plan, reload_installation

NS = "redhat-rhmi-3scale-operator"
TARGET = Target(package="integreatly-3scale", channel="integreatly", namespace=NS)


class TestNamespace:
    def test_created_with_owner_labels(self, fake, installation, log):
        assert reconcile_namespace(fake, NS, installation, log) is StatusPhase.COMPLETED
        labels = fake.get(NAMESPACE, NS)["metadata"]["labels"]
        assert labels["integreatly"] == "true"
        assert labels[OWNER_LABEL_KEY] == installation.uid

    def test_missing_labels_are_restored(self, fake, installation, log):
        fake.create(NAMESPACE, {"metadata": {"name": NS, "labels": {"team": "x"}}})
        reconcile_namespace(fake, NS, installation, log)
        labels = fake.get(NAMESPACE, NS)["metadata"]["labels"]
        assert labels["team"] == "x"
        assert labels["integreatly"] == "true"

    def test_idempotent(self, fake, installation, log):
        reconcile_namespace(fake, NS, installation, log)
        rv = fake.get(NAMESPACE, NS)["metadata"]["resourceVersion"]
        assert reconcile_namespace(fake, NS, installation, log) is StatusPhase.COMPLETED
        assert fake.get(NAMESPACE, NS)["metadata"]["resourceVersion"] == rv

    def test_terminating_namespace_is_waited_on(self, fake, installation, log):
        fake.hold_namespaces = True
        reconcile_namespace(fake, NS, installation, log)
        fake.delete(NAMESPACE, NS)
        assert reconcile_namespace(fake, NS, installation, log) is StatusPhase.IN_PROGRESS
        fake.finish_deletions()
        assert reconcile_namespace(fake, NS, installation, log) is StatusPhase.COMPLETED

    def test_pull_secret_is_copied(self, fake, log):
        fake.create(SECRET, {
            "metadata": {"name": "pull-secret", "namespace": "openshift-config"},
            "type": "kubernetes.io/dockerconfigjson",
            "data": {".dockerconfigjson": "e30="},
        })
        installation = make_installation(fake, pullSecret={"name": "pull-secret", "namespace": "openshift-config"})
        reconcile_namespace(fake, NS, installation, log)
        copied = fake.get(SECRET, "pull-secret", NS)
        assert copied["data"] == {".dockerconfigjson": "e30="}

    def test_delete(self, fake, installation, log):
        reconcile_namespace(fake, NS, installation, log)
        assert delete_namespace(fake, NS, log) is StatusPhase.IN_PROGRESS
        assert delete_namespace(fake, NS, log) is StatusPhase.COMPLETED


class TestSubscription:
    def test_full_flow(self, fake, installer, log):
        assert reconcile_subscription(fake, installer, TARGET, log) is StatusPhase.AWAITING_OPERATOR
        assert fake.get(SUBSCRIPTION, "integreatly-3scale", NS)["spec"]["installPlanApproval"] == "Manual"
        assert fake.get(OPERATOR_GROUP, f"{NS}-integreatly", NS)["spec"]["targetNamespaces"] == [NS]

        olm_create_install_plan(fake, "integreatly-3scale", NS)
        assert reconcile_subscription(fake, installer, TARGET, log) is StatusPhase.IN_PROGRESS
        assert fake.get(INSTALL_PLAN, "install-integreatly-3scale", NS)["spec"]["approved"] is True

        assert reconcile_subscription(fake, installer, TARGET, log) is StatusPhase.IN_PROGRESS

        olm_complete(fake, "integreatly-3scale", NS)
        assert reconcile_subscription(fake, installer, TARGET, log) is StatusPhase.COMPLETED
        assert fake.count(SUBSCRIPTION) == 1

    def test_failed_plan_restarts_installation(self, fake, installer, log):
        reconcile_subscription(fake, installer, TARGET, log)
        olm_create_install_plan(fake, "integreatly-3scale", NS, approved=True, phase="Failed")
        sub = fake.get(SUBSCRIPTION, "integreatly-3scale", NS)
        fake.set_status(SUBSCRIPTION, "integreatly-3scale", NS, {**sub["status"], "installedCSV": "3scale.v1"})
        fake.create(CSV, {"metadata": {"name": "3scale.v1", "namespace": NS}})

        assert reconcile_subscription(fake, installer, TARGET, log) is StatusPhase.AWAITING_OPERATOR
        assert fake.count(CSV) == 0
        assert fake.count(SUBSCRIPTION) == 0

        assert reconcile_subscription(fake, installer, TARGET, log) is StatusPhase.AWAITING_OPERATOR
        assert "status" not in fake.get(SUBSCRIPTION, "integreatly-3scale", NS)


class TestFinalizer:
    def test_added_once(self, fake, installation, log):
        cleanup = lambda: StatusPhase.COMPLETED  # noqa: E731
        finalizer = finalizer_for("3scale")
        assert reconcile_finalizer(fake, installation, finalizer, cleanup, log) is StatusPhase.COMPLETED
        assert reconcile_finalizer(fake, installation, finalizer, cleanup, log) is StatusPhase.COMPLETED
        assert fake.get(RHMI, "rhmi", OPERATOR_NS)["metadata"]["finalizers"].count(finalizer) == 1

    def test_released_after_cleanup(self, fake, installation, log):
        finalizer = finalizer_for("3scale")
        reconcile_finalizer(fake, installation, finalizer, lambda: StatusPhase.COMPLETED, log)
        fake.delete(RHMI, "rhmi", OPERATOR_NS)
        installation = reload_installation(fake)

        phases = iter([StatusPhase.IN_PROGRESS, StatusPhase.COMPLETED])
        assert reconcile_finalizer(fake, installation, finalizer, lambda: next(phases), log) \
            is StatusPhase.IN_PROGRESS
        assert finalizer in reload_installation(fake).finalizers
        assert reconcile_finalizer(fake, installation, finalizer, lambda: next(phases), log) \
            is StatusPhase.COMPLETED
        assert finalizer not in reload_installation(fake).finalizers
