"""
RHMIConfig admission routes.

  POST /validate-rhmiconfig
    UPDATE: backup and maintenance blocks must not overlap, applyOn must be a
    future date and cannot be combined with the other upgrade policies.
    CREATE and DELETE are always allowed.

  POST /mutate-rhmiconfig
    Defaults maintenance.applyFrom and backup.applyOn, and stamps who last edited
    the schedule (unless it was the operator itself). Answers with a JSONPatch.
"""

import base64
import json
import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter
from prometheus_client import Counter
from pydantic import ValidationError

from rhmi_operator.models import DEFAULT_BACKUP_APPLY_ON, DEFAULT_MAINTENANCE_APPLY_FROM, RHMIConfig
from rhmi_operator.upgrades import (
    ScheduleValidationError, format_date, validate_backup_and_maintenance, validate_upgrade,
)

from ..config import settings
from ..models import AdmissionRequest, AdmissionResponse, AdmissionReview, ResponseStatus

logger = logging.getLogger("rhmiconfig-webhook")

router = APIRouter(tags=["rhmiconfig"])

ADMISSION_REVIEWS = Counter(
    "rhmi_webhook_admission_reviews_total",
    "Admission reviews handled for RHMIConfig",
    ["webhook", "operation", "allowed"],
)

LAST_EDIT_USERNAME = "lastEditUsername"
LAST_EDIT_TIMESTAMP = "lastEditTimestamp"


def _respond(webhook: str, request: AdmissionRequest, response: AdmissionResponse) -> AdmissionReview:
    ADMISSION_REVIEWS.labels(
        webhook=webhook, operation=request.operation, allowed=str(response.allowed).lower(),
    ).inc()
    return AdmissionReview(response=response)


def _deny(request: AdmissionRequest, message: str) -> AdmissionResponse:
    logger.info(f"Denied {request.operation} of RHMIConfig {request.namespace}/{request.name}: {message}")
    return AdmissionResponse(uid=request.uid, allowed=False, status=ResponseStatus(code=403, message=message))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

@router.post("/validate-rhmiconfig", response_model=AdmissionReview, response_model_exclude_none=True)
async def validate_rhmiconfig(review: AdmissionReview):
    request = review.request
    if request is None:
        return AdmissionReview()
    if request.operation != "UPDATE":
        return _respond("validate", request, AdmissionResponse(uid=request.uid, allowed=True))

    try:
        config = RHMIConfig.model_validate(request.object or {})
        validate_backup_and_maintenance(config.spec.backup.applyOn, config.spec.maintenance.applyFrom)
        validate_upgrade(config.spec.upgrade)
    except ScheduleValidationError as e:
        return _respond("validate", request, _deny(request, str(e)))
    except ValidationError as e:
        return _respond("validate", request, _deny(request, f"malformed RHMIConfig: {e}"))

    return _respond("validate", request, AdmissionResponse(uid=request.uid, allowed=True))


# ---------------------------------------------------------------------------
# Mutation
# ---------------------------------------------------------------------------

def _escape(segment: str) -> str:
    return segment.replace("~", "~0").replace("/", "~1")


def set_path(patch: List[dict], obj: dict, path: List[str], value):
    """Append the JSONPatch op setting obj[path] = value, creating missing parents."""
    current = obj
    for i, segment in enumerate(path[:-1]):
        if not isinstance(current.get(segment), dict):
            nested = value
            for key in reversed(path[i + 1:]):
                nested = {key: nested}
            patch.append({"op": "add", "path": "/" + "/".join(map(_escape, path[:i + 1])), "value": nested})
            return
        current = current[segment]
    patch.append({"op": "add", "path": "/" + "/".join(map(_escape, path)), "value": value})


def build_patch(obj: dict, username: str, now: datetime = None) -> List[dict]:
    patch: List[dict] = []
    spec = obj.get("spec") or {}

    if username != settings.OPERATOR_SERVICE_ACCOUNT:
        stamp = format_date(now or datetime.now(timezone.utc))
        annotations = (obj.get("metadata") or {}).get("annotations")
        if annotations is None:
            set_path(patch, obj, ["metadata", "annotations"],
                     {LAST_EDIT_USERNAME: username, LAST_EDIT_TIMESTAMP: stamp})
        else:
            set_path(patch, obj, ["metadata", "annotations", LAST_EDIT_USERNAME], username)
            set_path(patch, obj, ["metadata", "annotations", LAST_EDIT_TIMESTAMP], stamp)

    if not (spec.get("maintenance") or {}).get("applyFrom"):
        set_path(patch, obj, ["spec", "maintenance", "applyFrom"], DEFAULT_MAINTENANCE_APPLY_FROM)
        # later ops must see the parents created above
        obj = json.loads(json.dumps(obj))
        obj.setdefault("spec", {}).setdefault("maintenance", {})["applyFrom"] = DEFAULT_MAINTENANCE_APPLY_FROM
    if not (spec.get("backup") or {}).get("applyOn"):
        set_path(patch, obj, ["spec", "backup", "applyOn"], DEFAULT_BACKUP_APPLY_ON)
    return patch


@router.post("/mutate-rhmiconfig", response_model=AdmissionReview, response_model_exclude_none=True)
async def mutate_rhmiconfig(review: AdmissionReview):
    request = review.request
    if request is None:
        return AdmissionReview()
    if request.operation not in ("CREATE", "UPDATE") or request.object is None:
        return _respond("mutate", request, AdmissionResponse(uid=request.uid, allowed=True))

    patch = build_patch(request.object, request.userInfo.username)
    response = AdmissionResponse(uid=request.uid, allowed=True)
    if patch:
        response.patchType = "JSONPatch"
        response.patch = base64.b64encode(json.dumps(patch).encode()).decode()
    logger.info(f"Mutated RHMIConfig {request.namespace}/{request.name} with {len(patch)} ops")
    return _respond("mutate", request, response)
