import pytest

from rhmi_operator.bootstrap import BootstrapError, BootstrapReconciler
from rhmi_operator.models import StatusPhase
from rhmi_operator.services.cluster import CONFIG_MAP, RHMI, RHMI_CONFIG, ROUTE
from rhmi_operator.services.config_store import ProductConfig

from .conftest import OPERATOR_NS, make_installation


@pytest.fixture
def bootstrap(config_manager, recorder, log):
    return BootstrapReconciler(config_manager, recorder, log, rhmi_config_name="rhmi-config")


@pytest.fixture
def console_route(fake):
    fake.create(ROUTE, {"metadata": {"name": "console", "namespace": "openshift-console"}, "spec": {}})
    fake.set_status(ROUTE, "console", "openshift-console", {"ingress": [{
        "host": "console-openshift-console.apps.example.com",
        "routerCanonicalHostname": "apps.example.com",
    }]})


def test_discovers_cluster_urls(fake, bootstrap, installation, console_route):
    assert bootstrap.reconcile(installation, fake) is StatusPhase.COMPLETED
    spec = fake.get(RHMI, "rhmi", OPERATOR_NS)["spec"]
    assert spec["masterURL"] == "console-openshift-console.apps.example.com"
    assert spec["routingSubdomain"] == "apps.example.com"
    assert installation.spec.routingSubdomain == "apps.example.com"


def test_user_values_are_kept(fake, bootstrap, console_route):
    installation = make_installation(fake, routingSubdomain="custom.example.com")
    bootstrap.reconcile(installation, fake)
    spec = fake.get(RHMI, "rhmi", OPERATOR_NS)["spec"]
    assert spec["routingSubdomain"] == "custom.example.com"
    assert spec["masterURL"] == "console-openshift-console.apps.example.com"


def test_default_rhmi_config(fake, bootstrap, installation, console_route):
    bootstrap.reconcile(installation, fake)
    config = fake.get(RHMI_CONFIG, "rhmi-config", OPERATOR_NS)
    assert config["spec"]["maintenance"]["applyFrom"] == "Thu 02:00"
    assert config["spec"]["backup"]["applyOn"] == "03:01"

    # an edited schedule is never reset
    config["spec"]["maintenance"]["applyFrom"] = "Sun 22:00"
    fake.update(RHMI_CONFIG, config)
    assert bootstrap.reconcile(installation, fake) is StatusPhase.COMPLETED
    assert fake.get(RHMI_CONFIG, "rhmi-config", OPERATOR_NS)["spec"]["maintenance"]["applyFrom"] == "Sun 22:00"


def test_missing_console_route(fake, bootstrap, installation):
    with pytest.raises(BootstrapError):
        bootstrap.reconcile(installation, fake)


def test_uninstall_removes_config_store(fake, bootstrap, installation, config_manager):
    config_manager.write_config(ProductConfig("rhsso", {"NAMESPACE": "ns"}))
    assert bootstrap.uninstall(installation, fake) is StatusPhase.COMPLETED
    assert fake.count(CONFIG_MAP) == 0
