"""Prometheus gauges describing installation progress."""

from prometheus_client import Gauge

from .models import Installation, StatusPhase

RHMI_STATUS_AVAILABLE = Gauge(
    "rhmi_status_available",
    "1 when every install stage of the installation has completed",
)
RHMI_STAGE_PHASE = Gauge(
    "rhmi_stage_phase",
    "1 for the current phase of each stage",
    ["stage", "phase"],
)
RHMI_PRODUCT_PHASE = Gauge(
    "rhmi_product_phase",
    "1 for the current phase of each product",
    ["stage", "product", "phase"],
)
RHMI_VERSION = Gauge(
    "rhmi_version",
    "Installed and target version of the installation",
    ["stage", "version", "to_version"],
)


def set_installation_metrics(installation: Installation):
    status = installation.status
    for stage_name, stage in status.stages.items():
        for phase in StatusPhase:
            RHMI_STAGE_PHASE.labels(stage=stage_name, phase=phase.value).set(
                1 if stage.phase == phase else 0
            )
        for product_name, product in stage.products.items():
            for phase in StatusPhase:
                RHMI_PRODUCT_PHASE.labels(stage=stage_name, product=product_name, phase=phase.value).set(
                    1 if product.status == phase else 0
                )
    RHMI_VERSION.clear()
    RHMI_VERSION.labels(stage=status.stage, version=status.version, to_version=status.toVersion).set(1)


def set_available(available: bool):
    RHMI_STATUS_AVAILABLE.set(1 if available else 0)
