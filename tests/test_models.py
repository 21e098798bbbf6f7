import pytest

from rhmi_operator.models import Installation, RHMIConfig, StatusPhase, UpgradeSchedule


@pytest.mark.parametrize("src,dst,ok", [
    (StatusPhase.NONE, StatusPhase.ACCEPTED, True),
    (StatusPhase.ACCEPTED, StatusPhase.AWAITING_OPERATOR, True),
    (StatusPhase.IN_PROGRESS, StatusPhase.IN_PROGRESS, True),
    (StatusPhase.IN_PROGRESS, StatusPhase.COMPLETED, True),
    (StatusPhase.COMPLETED, StatusPhase.IN_PROGRESS, False),
    (StatusPhase.AWAITING_COMPONENTS, StatusPhase.ACCEPTED, False),
    (StatusPhase.COMPLETED, StatusPhase.FAILED, True),
    (StatusPhase.FAILED, StatusPhase.ACCEPTED, True),
])
def test_phase_transitions(src, dst, ok):
    assert src.can_transition(dst) is ok


def test_phase_is_its_value():
    assert str(StatusPhase.AWAITING_OPERATOR) == "awaiting operator"
    assert StatusPhase("completed") is StatusPhase.COMPLETED
    assert StatusPhase.COMPLETED.is_terminal
    assert not StatusPhase.FAILED.is_terminal


def test_installation_from_stored_object():
    installation = Installation.model_validate({
        "metadata": {"name": "rhmi", "namespace": "ns", "finalizers": ["a"]},
        "spec": {"type": "managed-api", "namespacePrefix": "redhat-rhmi-", "extraField": 1},
        "status": {
            "stage": "installation",
            "stages": {"installation": {"name": "installation", "phase": "in progress",
                                        "products": {"rhsso": {"name": "rhsso", "status": "completed"}}}},
        },
    })
    assert installation.name == "rhmi"
    assert installation.finalizers == ["a"]
    assert not installation.is_uninstalling
    assert installation.get_product_status("installation", "rhsso").status == StatusPhase.COMPLETED
    assert installation.to_dict()["spec"]["extraField"] == 1


def test_product_status_created_on_first_use():
    installation = Installation()
    status = installation.get_product_status("installation", "3scale")
    status.status = StatusPhase.ACCEPTED
    assert installation.status.stages["installation"].products["3scale"].status == StatusPhase.ACCEPTED
    assert installation.to_dict()["status"]["stages"]["installation"]["products"]["3scale"]["status"] == "accepted"


def test_pull_secret_defaults():
    ps = Installation().get_pull_secret_spec()
    assert (ps.name, ps.namespace) == ("pull-secret", "openshift-config")


def test_rhmi_config_schedule_alias():
    config = RHMIConfig.model_validate({
        "status": {"upgrade": {"scheduled": {"for": "4 Jan 2024 02:00", "calculatedFrom": "NextMaintenance"}}},
    })
    assert config.status.upgrade.scheduled.for_ == "4 Jan 2024 02:00"
    assert UpgradeSchedule(for_="x").model_dump(by_alias=True) == {"for": "x", "calculatedFrom": ""}
