"""Kubernetes events for installation progress, posted through kopf."""

import logging
from typing import Callable, Optional

import kopf

from .models import Installation, StatusPhase

logger = logging.getLogger("rhmi-operator.events")

NORMAL = "Normal"
WARNING = "Warning"


class EventRecorder:
    """Posts events against an object body (a dict with apiVersion/kind/metadata).

    `emit` defaults to kopf.event; tests pass a mock.
    """

    def __init__(self, emit: Optional[Callable] = None):
        self._emit = emit or kopf.event

    def event(self, body: dict, type_: str, reason: str, message: str):
        logger.debug(f"event {type_}/{reason}: {message}")
        self._emit(body, type=type_, reason=reason, message=message)

    def normal(self, body: dict, reason: str, message: str):
        self.event(body, NORMAL, reason, message)

    def warning(self, body: dict, reason: str, message: str):
        self.event(body, WARNING, reason, message)

    def stage_complete(self, installation: Installation, stage: str, previous: StatusPhase):
        """Announce a stage the first time it completes."""
        if previous == StatusPhase.COMPLETED:
            return
        self.normal(installation.to_dict(), "InstallationStageCompleted",
                    f"{stage} stage has reconciled successfully")

    def product_complete(self, installation: Installation, stage: str, product: str,
                         previous: StatusPhase):
        if previous == StatusPhase.COMPLETED:
            return
        self.normal(installation.to_dict(), "ProductCompleted",
                    f"{product} was installed successfully in the {stage} stage")

    def product_error(self, installation: Installation, product: str, err: Exception):
        self.warning(installation.to_dict(), "ProcessingError",
                     f"Failed to reconcile {product}: {err}")
