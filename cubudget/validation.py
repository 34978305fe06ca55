"""
Validation of alert drafts before they reach the store or the network
"""

import math
import re
from datetime import date
from typing import Any, Dict, List

from .alert_engine import dedupe_ids
from .models import ALERT_TYPES, SCOPE_TYPES, TIME_RANGE_MODES, AlertDraft

TASK_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


class AlertValidationError(ValueError):
    """Raised when an alert draft is malformed"""

    def __init__(self, issues: List[str]):
        super().__init__("; ".join(issues))
        self.issues = issues


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _optional_str(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip() or None
    return value


def _check_date(value: Any, label: str, issues: List[str]) -> None:
    try:
        date.fromisoformat(str(value)[:10])
    except ValueError:
        issues.append(f"{label} must be a YYYY-MM-DD date")


def validate_alert_draft(data: Dict[str, Any]) -> AlertDraft:
    """Validate raw draft data (camelCase keys) and return a normalized AlertDraft"""
    issues = []

    name = str(data.get("name") or "").strip()
    if not name:
        issues.append("Alert name is required")
    elif len(name) > 120:
        issues.append("Name too long")

    description = _optional_str(data.get("description"))
    if description and len(description) > 300:
        issues.append("Description too long")

    alert_type = data.get("type")
    if alert_type not in ALERT_TYPES:
        issues.append(f"Type must be one of: {', '.join(ALERT_TYPES)}")

    team_id = str(data.get("teamId") or "").strip()
    if not team_id:
        issues.append("Team is required")

    folder_id = _optional_str(data.get("folderId"))
    list_id = _optional_str(data.get("listId"))
    custom_scope_type = data.get("customScopeType")

    if custom_scope_type is not None and custom_scope_type not in SCOPE_TYPES:
        issues.append("Custom scope type must be folder or list")

    if alert_type == "folder" and not folder_id:
        issues.append("Folder is required")
    if alert_type == "list" and not list_id:
        issues.append("List is required")
    if alert_type == "custom":
        if not custom_scope_type:
            issues.append("Custom scope type is required")
        if custom_scope_type == "folder" and not folder_id:
            issues.append("Folder is required")
        if custom_scope_type == "list" and not list_id:
            issues.append("List is required")

    time_range_mode = data.get("timeRangeMode")
    start_date = _optional_str(data.get("startDate"))
    end_date = _optional_str(data.get("endDate"))
    if time_range_mode not in TIME_RANGE_MODES:
        issues.append(f"Time range mode must be one of: {', '.join(TIME_RANGE_MODES)}")
    elif time_range_mode == "custom":
        if not start_date:
            issues.append("Start date required")
        else:
            _check_date(start_date, "Start date", issues)
        if not end_date:
            issues.append("End date required")
        else:
            _check_date(end_date, "End date", issues)
        if start_date and end_date and start_date > end_date:
            issues.append("End date must be on or after start date")

    budget_hours = data.get("budgetHours")
    if not _is_number(budget_hours) or budget_hours <= 0:
        issues.append("Budget hours must be greater than 0")

    warning = data.get("warningThresholdPct")
    critical = data.get("criticalThresholdPct")
    if not _is_number(warning) or not 0 <= warning <= 1000:
        issues.append("Warning threshold must be between 0 and 1000")
    if not _is_number(critical) or not 1 <= critical <= 1000:
        issues.append("Critical threshold must be between 1 and 1000")
    if _is_number(warning) and _is_number(critical) and warning >= critical:
        issues.append("Warning threshold must be lower than critical threshold")

    task_ids = {}
    for key in ("excludedTaskIds", "includeOnlyTaskIds"):
        raw_ids = data.get(key) or []
        if not isinstance(raw_ids, list):
            issues.append(f"{key} must be a list")
            raw_ids = []
        ids = dedupe_ids(str(item) for item in raw_ids)
        if any(not TASK_ID_PATTERN.match(item) for item in ids):
            issues.append("Invalid task ID format")
        task_ids[key] = ids

    refresh_minutes = data.get("refreshFrequencyMinutes", 0)
    if not _is_number(refresh_minutes) or not 0 <= refresh_minutes <= 720:
        issues.append("Refresh frequency must be between 0 and 720 minutes")

    active = data.get("active", True)
    if not isinstance(active, bool):
        issues.append("Active must be true or false")

    if issues:
        raise AlertValidationError(issues)

    return AlertDraft(
        name=name,
        description=description,
        type=alert_type,
        team_id=team_id,
        folder_id=folder_id,
        folder_name=_optional_str(data.get("folderName")),
        list_id=list_id,
        list_name=_optional_str(data.get("listName")),
        custom_scope_type=custom_scope_type,
        time_range_mode=time_range_mode,
        start_date=start_date,
        end_date=end_date,
        budget_hours=budget_hours,
        warning_threshold_pct=warning,
        critical_threshold_pct=critical,
        excluded_task_ids=task_ids["excludedTaskIds"],
        include_only_task_ids=task_ids["includeOnlyTaskIds"],
        refresh_frequency_minutes=int(refresh_minutes),
        active=active,
    )
