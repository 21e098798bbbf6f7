"""
Upgrade scheduler: decides when a pending operator upgrade may be approved.

Everything here is a pure function of the upgrade schedule (RHMIConfig) and the
observed Subscription / InstallPlan, except approve_upgrade, which persists the
approval. Functions that look at the clock take an optional `now` (aware UTC
datetime) so the schedule can be evaluated at any instant.

Formats:
  spec.upgrade.applyOn          "2 Jan 2006 15:04"
  spec.maintenance.applyFrom    "<day> HH:MM"        weekly, UTC, day in sun..sat
  spec.backup.applyOn           "HH:MM"              daily, UTC
  status.maintenance.applyFrom  "<d>-<m>-<yyyy> HH:MM"
  status.maintenance.duration   "<N>hrs"
  status.upgrade.window         "<d> <Mon> <yyyy> - <d> <Mon> <yyyy>"
"""

import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from .models import (
    DATE_FORMAT, DEFAULT_BACKUP_APPLY_ON, DEFAULT_MAINTENANCE_APPLY_FROM,
    MAINTENANCE_STATUS_FORMAT, MaintenanceStatus, RHMIConfig, Upgrade, UpgradeSchedule,
)
from .resources import PLAN_INSTALLING
from .services.cluster import INSTALL_PLAN, ClusterClient

logger = logging.getLogger("rhmi-operator.upgrades")

WINDOW = 6
WINDOW_MARGIN = 1
UPGRADE_WINDOW_DAYS = 14

SHORT_DAYS = {"sun": 0, "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6}

EVENT_UPGRADE_APPROVED = "UpgradeApproved"

# status.upgrade.scheduled.calculatedFrom
NEXT_MAINTENANCE = "NextMaintenance"
APPLY_ON = "ApplyOn"
DEFAULT_TWO_WEEKS = "DefaultTwoWeeks"
TWO_WEEKS_MAINTENANCE_WINDOW = "TwoWeeksMaintenanceWindow"

_HHMM = re.compile(r"^(\d{2}):(\d{2})$")
_DURATION = re.compile(r"^(\d+)hrs$")


class ScheduleValidationError(ValueError):
    """An upgrade schedule value is malformed or inconsistent."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Parsing / formatting
# ---------------------------------------------------------------------------

def parse_hhmm(value: str) -> Tuple[int, int]:
    m = _HHMM.match(value or "")
    if not m:
        raise ScheduleValidationError(f"expected format HH:mm, found {value!r}")
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        raise ScheduleValidationError(f"time out of range: {value!r}")
    return hour, minute


def parse_weekly(value: str) -> Tuple[int, int, int]:
    """Parse "<day> HH:MM" into (weekday sun=0, hour, minute)."""
    segments = (value or "").split(" ")
    if len(segments) != 2:
        raise ScheduleValidationError(f"expected format DDD HH:mm, found {value!r}")
    day = segments[0].lower()
    if day not in SHORT_DAYS:
        raise ScheduleValidationError(f"invalid day {segments[0]!r}, expected one of {', '.join(SHORT_DAYS)}")
    hour, minute = parse_hhmm(segments[1])
    return SHORT_DAYS[day], hour, minute


def parse_date(value: str) -> datetime:
    """Parse a DATE_FORMAT string as UTC."""
    try:
        return datetime.strptime(value, DATE_FORMAT).replace(tzinfo=timezone.utc)
    except (TypeError, ValueError) as e:
        raise ScheduleValidationError(f"{value!r} must be a date with the format 2 Jan 2006 15:04") from e


def format_date(d: datetime) -> str:
    return f"{d.day} {d:%b %Y %H:%M}"


def format_day(d: datetime) -> str:
    return f"{d.day} {d:%b %Y}"


def parse_maintenance_status(value: str) -> datetime:
    try:
        return datetime.strptime(value, MAINTENANCE_STATUS_FORMAT).replace(tzinfo=timezone.utc)
    except (TypeError, ValueError) as e:
        raise ScheduleValidationError(f"invalid maintenance status applyFrom {value!r}") from e


def format_maintenance_status(d: datetime) -> str:
    return f"{d.day}-{d.month}-{d.year} {d:%H:%M}"


def parse_duration_hours(value: str) -> int:
    m = _DURATION.match(value or "")
    if not m:
        raise ScheduleValidationError(f"invalid maintenance duration {value!r}, expected <N>hrs")
    return int(m.group(1))


def _parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=timezone.utc)


def _weekday(d: datetime) -> int:
    """Weekday with sunday as 0."""
    return (d.weekday() + 1) % 7


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------

def get_weekly_window_from(start: datetime, window_spec: str,
                           duration: timedelta) -> Tuple[datetime, datetime]:
    """Occurrence of `window_spec` in the week starting on the day of `start`."""
    day, hour, minute = parse_weekly(window_spec)
    day_diff = day - _weekday(start)
    if day_diff < 0:
        day_diff += 7
    window_start = datetime(start.year, start.month, start.day, hour, minute, tzinfo=timezone.utc)
    # timedelta arithmetic carries over month and year boundaries
    window_start += timedelta(days=day_diff)
    return window_start, window_start + duration


def get_weekly_window(window_spec: str, duration: timedelta,
                      now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Next occurrence of a "<day> HH:MM" weekly window relative to now (today included)."""
    return get_weekly_window_from(now or _utcnow(), window_spec, duration)


def _in_window(start: datetime, end: datetime, now: datetime, inclusive_end: bool) -> bool:
    if inclusive_end:
        return start <= now <= end
    return start <= now < end


# ---------------------------------------------------------------------------
# Upgrade availability / approval
# ---------------------------------------------------------------------------

def is_upgrade_available(subscription: Optional[dict]) -> bool:
    if subscription is None:
        return False
    status = subscription.get("status") or {}
    return status.get("currentCSV", "") != status.get("installedCSV", "")


def is_upgrade_service_affecting(csv: Optional[dict]) -> bool:
    """Upgrades are service affecting unless the CSV says serviceAffecting: "false"."""
    if csv is None:
        return True
    annotations = (csv.get("metadata") or {}).get("annotations") or {}
    return annotations.get("serviceAffecting") != "false"


def get_csv_from_install_plan(install_plan: dict) -> Optional[dict]:
    """The target CSV, which only the install plan carries while it awaits approval."""
    csv = None
    for step in (install_plan.get("status") or {}).get("plan") or []:
        resource = step.get("resource") or {}
        if resource.get("kind") == "ClusterServiceVersion":
            try:
                csv = json.loads(resource.get("manifest") or "")
            except ValueError as e:
                raise ValueError(f"failed to decode CSV manifest: {e}") from e
    return csv


def can_upgrade_now(config: RHMIConfig, now: Optional[datetime] = None) -> bool:
    """Whether the schedule allows approving an upgrade at `now`.

    - alwaysImmediately: always
    - duringNextMaintenance: inside the maintenance window from status, minus its
      last hour
    - applyOn: from applyOn until WINDOW - WINDOW_MARGIN hours later
    - nothing set: never, even once the published default schedule has passed
    """
    now = now or _utcnow()
    upgrade = config.spec.upgrade
    if upgrade.alwaysImmediately:
        return True

    if upgrade.duringNextMaintenance:
        start = parse_maintenance_status(config.status.maintenance.applyFrom)
        duration = parse_duration_hours(config.status.maintenance.duration)
        end = start + timedelta(hours=duration - WINDOW_MARGIN)
        return _in_window(start, end, now, inclusive_end=True)

    if upgrade.applyOn:
        start = parse_date(upgrade.applyOn)
        end = start + timedelta(hours=WINDOW - WINDOW_MARGIN)
        return _in_window(start, end, now, inclusive_end=False)

    return False


def update_status(config: RHMIConfig, install_plan: Optional[dict],
                  now: Optional[datetime] = None) -> RHMIConfig:
    """Recompute the maintenance window, upgrade window and upgrade schedule in place.

    With no upgrade policy set, the DefaultTwoWeeks and TwoWeeksMaintenanceWindow
    schedules are informational only: can_upgrade_now never approves on them, and
    the plan waits until a policy is chosen.
    """
    status = config.status
    spec = config.spec

    if spec.maintenance.applyFrom:
        start, _ = get_weekly_window(spec.maintenance.applyFrom, timedelta(hours=WINDOW), now)
        status.maintenance = MaintenanceStatus(
            applyFrom=format_maintenance_status(start), duration=f"{WINDOW}hrs",
        )

    if install_plan is None:
        return config

    created = _parse_timestamp(install_plan["metadata"]["creationTimestamp"])
    if install_plan.get("spec", {}).get("approved"):
        status.upgrade.window = ""
    else:
        end = created + timedelta(days=UPGRADE_WINDOW_DAYS)
        status.upgrade.window = f"{format_day(created)} - {format_day(end)}"

    if spec.upgrade.alwaysImmediately:
        status.upgrade.scheduled = None
    elif spec.upgrade.duringNextMaintenance and status.maintenance.applyFrom:
        start = parse_maintenance_status(status.maintenance.applyFrom)
        status.upgrade.scheduled = UpgradeSchedule(for_=format_date(start), calculatedFrom=NEXT_MAINTENANCE)
    elif spec.upgrade.applyOn:
        status.upgrade.scheduled = UpgradeSchedule(for_=spec.upgrade.applyOn, calculatedFrom=APPLY_ON)
    else:
        start = created + timedelta(days=UPGRADE_WINDOW_DAYS)
        calculated_from = DEFAULT_TWO_WEEKS
        if spec.maintenance.applyFrom:
            start, _ = get_weekly_window_from(start, spec.maintenance.applyFrom, timedelta(hours=WINDOW))
            calculated_from = TWO_WEEKS_MAINTENANCE_WINDOW
        status.upgrade.scheduled = UpgradeSchedule(for_=format_date(start), calculatedFrom=calculated_from)
    return config


def approve_upgrade(client: ClusterClient, install_plan: dict, recorder) -> bool:
    """Approve an install plan. A plan that is already installing is left alone.

    Returns True when the plan was approved by this call.
    """
    if (install_plan.get("status") or {}).get("phase") == PLAN_INSTALLING:
        return False

    md = install_plan["metadata"]
    csv_names = install_plan.get("spec", {}).get("clusterServiceVersionNames") or [""]
    recorder.normal(install_plan, EVENT_UPGRADE_APPROVED,
                    f"Approving {md['name']} install plan: {csv_names[0]}")

    def approve(ip):
        ip["spec"]["approved"] = True

    latest = client.mutate(INSTALL_PLAN, md["name"], md.get("namespace"), approve)
    install_plan["spec"] = latest["spec"]
    logger.info(f"Approved install plan {md['name']}")
    return True


# ---------------------------------------------------------------------------
# Admission validation
# ---------------------------------------------------------------------------

def validate_backup_and_maintenance(backup_apply_on: str,
                                    maintenance_apply_from: str) -> Tuple[str, str]:
    """Check formats and that the one-hour backup and maintenance blocks do not overlap.

    Blank values are validated as their defaults. Returns the effective values.
    """
    maintenance_apply_from = maintenance_apply_from or DEFAULT_MAINTENANCE_APPLY_FROM
    backup_apply_on = backup_apply_on or DEFAULT_BACKUP_APPLY_ON

    backup_start = _time_on_day(*parse_hhmm(backup_apply_on))
    _, hour, minute = parse_weekly(maintenance_apply_from)
    maintenance_start = _time_on_day(hour, minute)

    backup_end = backup_start + timedelta(hours=1)
    maintenance_end = maintenance_start + timedelta(hours=1)

    if backup_start <= maintenance_end and backup_end >= maintenance_start:
        raise ScheduleValidationError(
            "backup and maintenance times cannot overlap, each time is parsed as a 1 hour window, "
            f"current backup applyOn window : {backup_start:%H:%M}-{backup_end:%H:%M} "
            f"overlaps with current maintenance window : {maintenance_start:%H:%M}-{maintenance_end:%H:%M}"
        )
    return backup_apply_on, maintenance_apply_from


def _time_on_day(hour: int, minute: int) -> datetime:
    return datetime(2000, 1, 1, hour, minute, tzinfo=timezone.utc)


def validate_upgrade(upgrade: Upgrade, now: Optional[datetime] = None):
    if not upgrade.applyOn:
        return
    if upgrade.alwaysImmediately or upgrade.duringNextMaintenance:
        raise ScheduleValidationError(
            "spec.upgrade.applyOn shouldn't be set when spec.upgrade.alwaysImmediately "
            "or spec.upgrade.duringNextMaintenance are true"
        )
    apply_on = parse_date(upgrade.applyOn)
    if apply_on <= (now or _utcnow()):
        raise ScheduleValidationError(
            f"invalid value for spec.upgrade.applyOn: {format_date(apply_on)}. It must be a future date"
        )
