from unittest.mock import Mock

import pytest

from rhmi_operator.models import ProductStatus, StatusPhase
from rhmi_operator.orchestrator import Orchestrator
from rhmi_operator.products import UnknownProductError
from rhmi_operator.resources import _set_finalizer, finalizer_for
from rhmi_operator.services.cluster import RHMI
from rhmi_operator.stages import Stage, Type

from .conftest import OPERATOR_NS, reload_installation

STAGES = Type(
    install_stages=(
        Stage("bootstrap"),
        Stage("first", {"p1": ProductStatus(name="p1")}),
        Stage("second", {"p2": ProductStatus(name="p2"), "p3": ProductStatus(name="p3")}),
    ),
    uninstall_stages=(
        Stage("uninstall - products", {"p2": ProductStatus(name="p2"), "p3": ProductStatus(name="p3")}),
        Stage("uninstall - cloud-resources", {"p1": ProductStatus(name="p1")}),
        Stage("uninstall - bootstrap"),
    ),
)


def product(name, *phases):
    reconciler = Mock()
    reconciler.product_name = name
    reconciler.verify_version.return_value = True
    reconciler.reconcile.side_effect = list(phases)
    return reconciler


@pytest.fixture
def bootstrap():
    b = Mock()
    b.reconcile.return_value = StatusPhase.COMPLETED
    b.uninstall.return_value = StatusPhase.COMPLETED
    return b


@pytest.fixture
def products():
    return {}


@pytest.fixture
def factory(products):
    def build(name, *args):
        if name not in products:
            raise UnknownProductError(name)
        return products[name]
    return Mock(side_effect=build)


@pytest.fixture
def orchestrator(fake, recorder, log, factory, bootstrap):
    return Orchestrator(
        client=fake, installer=Mock(), config_manager=Mock(), stage_type=STAGES,
        recorder=recorder, logger=log, reconciler_factory=factory, bootstrap=bootstrap,
        requeue_delay=7, operator_version="2.8.0",
    )


def reasons(emit):
    return [c.kwargs["reason"] for c in emit.call_args_list]


class TestInstall:
    def test_all_stages_complete(self, fake, orchestrator, installation, products, emit):
        products.update(
            p1=product("p1", StatusPhase.COMPLETED),
            p2=product("p2", StatusPhase.COMPLETED),
            p3=product("p3", StatusPhase.COMPLETED),
        )
        result = orchestrator.reconcile(installation)

        assert result.phase is StatusPhase.COMPLETED
        assert not result.requeue
        status = fake.get(RHMI, "rhmi", OPERATOR_NS)["status"]
        assert status["stage"] == "complete"
        assert status["version"] == "2.8.0"
        assert status["toVersion"] == ""
        assert status["lastError"] == ""
        assert {s["phase"] for s in status["stages"].values()} == {"completed"}
        assert reasons(emit).count("InstallationStageCompleted") == 3
        assert reasons(emit).count("ProductCompleted") == 3

    def test_next_stage_waits_for_previous(self, fake, orchestrator, installation, products, factory):
        products.update(p1=product("p1", StatusPhase.AWAITING_OPERATOR), p2=product("p2"), p3=product("p3"))
        result = orchestrator.reconcile(installation)

        assert result.phase is StatusPhase.IN_PROGRESS
        assert result.retry_after == 7
        assert [c.args[0] for c in factory.call_args_list] == ["p1"]
        products["p2"].reconcile.assert_not_called()
        status = fake.get(RHMI, "rhmi", OPERATOR_NS)["status"]
        assert status["stage"] == "first"
        assert status["stages"]["first"]["products"]["p1"]["status"] == "awaiting operator"
        assert "second" not in status["stages"]

    def test_toversion_set_while_installing(self, fake, orchestrator, installation, products):
        products.update(p1=product("p1", StatusPhase.IN_PROGRESS))
        orchestrator.reconcile(installation)
        assert fake.get(RHMI, "rhmi", OPERATOR_NS)["status"]["toVersion"] == "2.8.0"

    def test_completed_products_are_not_revisited(self, orchestrator, installation, products):
        products.update(
            p1=product("p1", StatusPhase.COMPLETED),
            p2=product("p2", StatusPhase.COMPLETED),
            p3=product("p3", StatusPhase.IN_PROGRESS, StatusPhase.COMPLETED),
        )
        assert orchestrator.reconcile(installation).requeue
        # first is complete and is checked again; p2 completed inside the pending stage and is skipped
        products["p1"].reconcile.side_effect = [StatusPhase.COMPLETED]
        result = orchestrator.reconcile(installation)

        assert result.phase is StatusPhase.COMPLETED
        assert products["p2"].reconcile.call_count == 1
        assert products["p3"].reconcile.call_count == 2

    def test_product_failure(self, fake, orchestrator, installation, products, emit):
        products.update(p1=product("p1", RuntimeError("boom"), StatusPhase.COMPLETED),
                        p2=product("p2", StatusPhase.COMPLETED), p3=product("p3", StatusPhase.COMPLETED))
        result = orchestrator.reconcile(installation)

        assert result.phase is StatusPhase.FAILED
        assert result.requeue
        assert not result.permanent
        assert "boom" in result.error
        status = fake.get(RHMI, "rhmi", OPERATOR_NS)["status"]
        assert status["stages"]["first"]["products"]["p1"]["status"] == "failed"
        assert "boom" in status["stages"]["first"]["products"]["p1"]["lastError"]
        assert "boom" in status["lastError"]
        assert "ProcessingError" in reasons(emit)

        result = orchestrator.reconcile(installation)
        assert result.phase is StatusPhase.COMPLETED
        status = fake.get(RHMI, "rhmi", OPERATOR_NS)["status"]
        assert status["lastError"] == ""
        assert status["stages"]["first"]["products"]["p1"]["lastError"] == ""

    def test_unknown_product_is_permanent(self, orchestrator, installation, products):
        result = orchestrator.reconcile(installation)
        assert result.phase is StatusPhase.FAILED
        assert result.permanent

    def test_version_mismatch_keeps_to_version(self, fake, orchestrator, installation, products):
        products.update(p1=product("p1", StatusPhase.COMPLETED), p2=product("p2", StatusPhase.COMPLETED),
                        p3=product("p3", StatusPhase.COMPLETED))
        products["p2"].verify_version.return_value = False
        orchestrator.reconcile(installation)
        status = fake.get(RHMI, "rhmi", OPERATOR_NS)["status"]
        assert status["stage"] == "complete"
        assert status["version"] == ""
        assert status["toVersion"] == "2.8.0"

    def test_version_recorded_in_the_completing_pass(self, fake, orchestrator, installation, products):
        def installs(name):
            def reconcile(installation, product_status, client):
                product_status.version = "1.0"
                return StatusPhase.COMPLETED

            reconciler = product(name)
            reconciler.reconcile.side_effect = reconcile
            reconciler.verify_version.side_effect = lambda inst: any(
                s.products[name].version == "1.0" for s in inst.status.stages.values() if name in s.products
            )
            return reconciler

        products.update(p1=installs("p1"), p2=installs("p2"), p3=installs("p3"))
        orchestrator.reconcile(installation)
        status = fake.get(RHMI, "rhmi", OPERATOR_NS)["status"]
        assert status["version"] == "2.8.0"
        assert status["toVersion"] == ""

    def test_concurrent_to_version_is_kept(self, fake, orchestrator, installation, products):
        products.update(p1=product("p1", StatusPhase.COMPLETED), p2=product("p2", StatusPhase.COMPLETED),
                        p3=product("p3", StatusPhase.COMPLETED))
        # the upgrade controller writes after this pass read the object
        fake.set_status(RHMI, "rhmi", OPERATOR_NS, {"version": "2.8.0", "toVersion": "2.9.0"})

        result = orchestrator.reconcile(installation)
        assert result.phase is StatusPhase.COMPLETED
        status = fake.get(RHMI, "rhmi", OPERATOR_NS)["status"]
        assert status["toVersion"] == "2.9.0"
        assert status["version"] == "2.8.0"
        assert status["stage"] == "complete"
        assert installation.status.toVersion == "2.9.0"

    def test_concurrent_fields_survive_an_incomplete_pass(self, fake, orchestrator, installation, products):
        products.update(p1=product("p1", StatusPhase.IN_PROGRESS))
        fake.set_status(RHMI, "rhmi", OPERATOR_NS, {"toVersion": "2.9.0", "preflightStatus": "successful"})

        orchestrator.reconcile(installation)
        status = fake.get(RHMI, "rhmi", OPERATOR_NS)["status"]
        assert status["toVersion"] == "2.9.0"
        assert status["preflightStatus"] == "successful"
        assert status["stage"] == "first"

    def test_stage_with_one_product_pending_blocks_the_next(self, fake, orchestrator, installation,
                                                            products, factory):
        two_products = Type(
            install_stages=(
                Stage("bootstrap"),
                Stage("first", {"p1": ProductStatus(name="p1"), "p4": ProductStatus(name="p4")}),
                Stage("second", {"p2": ProductStatus(name="p2")}),
            ),
            uninstall_stages=STAGES.uninstall_stages,
        )
        orchestrator.stage_type = two_products
        products.update(p1=product("p1", StatusPhase.COMPLETED), p4=product("p4", StatusPhase.IN_PROGRESS),
                        p2=product("p2", StatusPhase.COMPLETED))

        result = orchestrator.reconcile(installation)
        assert result.phase is StatusPhase.IN_PROGRESS
        assert [c.args[0] for c in factory.call_args_list] == ["p1", "p4"]
        products["p2"].reconcile.assert_not_called()
        status = fake.get(RHMI, "rhmi", OPERATOR_NS)["status"]
        assert status["stages"]["first"]["phase"] == "in progress"
        assert status["stages"]["first"]["products"]["p1"]["status"] == "completed"
        assert "second" not in status["stages"]

    def test_failed_bootstrap_stops_the_walk(self, orchestrator, installation, bootstrap, factory):
        bootstrap.reconcile.side_effect = RuntimeError("no console route")
        result = orchestrator.reconcile(installation)
        assert result.phase is StatusPhase.FAILED
        assert "no console route" in result.error
        factory.assert_not_called()


class TestUninstall:
    @pytest.fixture
    def deleting(self, fake, installation):
        _set_finalizer(fake, installation, finalizer_for("p2"), present=True)
        fake.delete(RHMI, "rhmi", OPERATOR_NS)
        return reload_installation(fake)

    def test_stage_order_and_completion(self, fake, orchestrator, deleting, products, bootstrap, factory):
        products.update(p2=product("p2", StatusPhase.IN_PROGRESS, StatusPhase.COMPLETED))

        result = orchestrator.reconcile(deleting)
        assert result.phase is StatusPhase.IN_PROGRESS
        assert result.retry_after == 7
        bootstrap.uninstall.assert_not_called()
        assert fake.get(RHMI, "rhmi", OPERATOR_NS)["status"]["stage"] == "deletion"

        result = orchestrator.reconcile(deleting)
        assert result.phase is StatusPhase.COMPLETED
        bootstrap.uninstall.assert_called_once()
        # products without a finalizer were never installed and are not built
        assert [c.args[0] for c in factory.call_args_list] == ["p2", "p2"]

    def test_uninstall_failure_requeues(self, orchestrator, deleting, products, bootstrap):
        products.update(p2=product("p2", RuntimeError("namespace stuck")))
        result = orchestrator.uninstall(deleting)
        assert result.phase is StatusPhase.FAILED
        assert result.requeue
        assert "namespace stuck" in result.error
        bootstrap.uninstall.assert_not_called()
