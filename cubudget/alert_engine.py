"""
Budget evaluation: time ranges, entry filters and snapshots
"""

import calendar
import math
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

from .models import AlertConfig, AlertSnapshot, DashboardSummary, TimeEntry, TimeRange, UiPreferences

MS_PER_HOUR = 3_600_000


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def round_hours(value: float) -> float:
    """Round half up to two decimals"""
    return math.floor(value * 100 + 0.5) / 100


def dedupe_ids(ids: Optional[Iterable[str]]) -> List[str]:
    """Trim task ids, drop blanks and duplicates, keep first-seen order"""
    return list(dict.fromkeys(item.strip() for item in (ids or []) if item and item.strip()))


def _to_ms(moment: datetime) -> int:
    # Naive datetimes are interpreted in local time
    return int(round(moment.timestamp() * 1000))


def _start_of_day(day: date) -> datetime:
    return datetime(day.year, day.month, day.day)


def _end_of_day(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, 23, 59, 59, 999000)


def compute_time_range(alert: AlertConfig, now: Optional[datetime] = None) -> TimeRange:
    """Resolve the alert's time range mode into local-time epoch ms bounds"""
    if alert.time_range_mode == "none":
        return TimeRange()

    if alert.time_range_mode == "monthly":
        now = now or datetime.now()
        if now.tzinfo is not None:
            now = now.astimezone().replace(tzinfo=None)
        last_day = calendar.monthrange(now.year, now.month)[1]
        return TimeRange(
            start_ms=_to_ms(_start_of_day(date(now.year, now.month, 1))),
            end_ms=_to_ms(_end_of_day(date(now.year, now.month, last_day))),
        )

    if not alert.start_date or not alert.end_date:
        return TimeRange()

    return TimeRange(
        start_ms=_to_ms(_start_of_day(date.fromisoformat(alert.start_date[:10]))),
        end_ms=_to_ms(_end_of_day(date.fromisoformat(alert.end_date[:10]))),
    )


def resolve_status(alert: AlertConfig, percent_used: float) -> str:
    if not alert.active:
        return "inactive"
    if percent_used >= alert.critical_threshold_pct:
        return "red"
    if percent_used >= alert.warning_threshold_pct:
        return "yellow"
    return "green"


def resolve_scope_summary(alert: AlertConfig) -> str:
    if alert.time_range_mode == "monthly":
        mode_label = "Current month"
    elif alert.time_range_mode == "custom":
        mode_label = f"Custom ({alert.start_date or 'n/a'} to {alert.end_date or 'n/a'})"
    else:
        mode_label = "Cumulative"

    if alert.type == "folder":
        return f"Folder: {alert.folder_name or alert.folder_id or 'Unknown'} | {mode_label}"

    if alert.type == "list":
        return f"List: {alert.list_name or alert.list_id or 'Unknown'} | {mode_label}"

    if alert.custom_scope_type == "folder":
        scope_name = alert.folder_name or alert.folder_id or "Unknown folder"
    else:
        scope_name = alert.list_name or alert.list_id or "Unknown list"

    return f"Custom {alert.custom_scope_type or 'scope'}: {scope_name} | {mode_label}"


def apply_entry_filters(alert: AlertConfig, entries: List[TimeEntry]) -> List[TimeEntry]:
    """Apply the alert's excluded and include-only task id sets"""
    excluded = set(dedupe_ids(alert.excluded_task_ids))
    include_only = set(dedupe_ids(alert.include_only_task_ids))

    kept = []
    for entry in entries:
        if not entry.task_id:
            # Cannot be matched against an include-only set
            if not include_only:
                kept.append(entry)
            continue
        if entry.task_id in excluded:
            continue
        if include_only and entry.task_id not in include_only:
            continue
        kept.append(entry)
    return kept


def build_snapshot(alert: AlertConfig, entries: List[TimeEntry], warning_message: Optional[str] = None) -> AlertSnapshot:
    hours_used = round_hours(sum(entry.duration_ms / MS_PER_HOUR for entry in entries))
    budget = alert.budget_hours
    # Percent shares the two-decimal hour rounding
    percent_used = round_hours(hours_used / budget * 100 if budget > 0 else 0)

    return AlertSnapshot(
        status=resolve_status(alert, percent_used),
        hours_used=hours_used,
        budget_hours=budget,
        remaining_hours=round_hours(max(0, budget - hours_used)),
        over_by_hours=round_hours(max(0, hours_used - budget)),
        percent_used=percent_used,
        entry_count=len(entries),
        last_refreshed_at=utc_now_iso(),
        scope_summary=resolve_scope_summary(alert),
        warning_message=warning_message,
    )


def build_error_snapshot(alert: AlertConfig, error_message: str) -> AlertSnapshot:
    """Error snapshot that keeps the previous numbers instead of zeroing them"""
    previous = alert.last_snapshot

    return AlertSnapshot(
        status="error",
        hours_used=previous.hours_used if previous else 0,
        budget_hours=alert.budget_hours,
        remaining_hours=previous.remaining_hours if previous else alert.budget_hours,
        over_by_hours=previous.over_by_hours if previous else 0,
        percent_used=previous.percent_used if previous else 0,
        entry_count=previous.entry_count if previous else 0,
        last_refreshed_at=utc_now_iso(),
        scope_summary=previous.scope_summary if previous else resolve_scope_summary(alert),
        error_message=error_message,
    )


def compute_summary(alerts: Iterable[AlertConfig]) -> DashboardSummary:
    summary = DashboardSummary()

    for alert in alerts:
        if not alert.active:
            continue

        summary.active_alerts += 1
        snapshot = alert.last_snapshot
        status = snapshot.status if snapshot else None
        if status == "green":
            summary.green += 1
        elif status == "yellow":
            summary.yellow += 1
        elif status == "red":
            summary.red += 1
        if snapshot and snapshot.over_by_hours > 0:
            summary.over_budget += 1

    return summary


def _refreshed_sort_key(alert: AlertConfig) -> float:
    if not alert.last_refreshed_at:
        return 0
    try:
        return datetime.fromisoformat(alert.last_refreshed_at.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0


def get_visible_alerts(alerts: Iterable[AlertConfig], prefs: UiPreferences) -> List[AlertConfig]:
    """Filter alerts by status and search text, then sort per the preferences"""
    query = prefs.search.strip().lower()
    visible = []

    for alert in alerts:
        status = alert.last_snapshot.status if alert.last_snapshot else "inactive"
        if prefs.status_filter != "all" and prefs.status_filter != status:
            continue

        if query:
            haystack = " ".join([
                alert.name,
                alert.description or "",
                alert.folder_name or "",
                alert.list_name or "",
                alert.type,
                alert.last_snapshot.scope_summary if alert.last_snapshot else "",
            ]).lower()
            if query not in haystack:
                continue

        visible.append(alert)

    if prefs.sort_by == "name":
        return sorted(visible, key=lambda alert: alert.name.lower())
    if prefs.sort_by == "lastRefreshed":
        return sorted(visible, key=_refreshed_sort_key, reverse=True)
    return sorted(visible, key=lambda alert: alert.last_snapshot.percent_used if alert.last_snapshot else 0, reverse=True)
