"""
Data models for the ClickUp budget monitor
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ALERT_TYPES = ("folder", "list", "custom")
SCOPE_TYPES = ("folder", "list")
TIME_RANGE_MODES = ("monthly", "custom", "none")
ALERT_STATUSES = ("green", "yellow", "red", "inactive", "error")
STATUS_FILTERS = ("all",) + ALERT_STATUSES
SORT_KEYS = ("percentUsed", "name", "lastRefreshed")


@dataclass
class Config:
    """Configuration settings"""
    clickup_base_url: str = "https://api.clickup.com/api/v2"
    state_dir: str = "."
    log_level: str = "INFO"
    log_file: str = "cu-budget.log"
    scheduler_poll_seconds: int = 60
    # Only read from the environment, never written to config.json
    api_token: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        """Validate configuration after initialization"""
        if not self.clickup_base_url.startswith(('http://', 'https://')):
            raise ValueError("Invalid ClickUp base URL format. Must start with http:// or https://")

        if self.scheduler_poll_seconds <= 0:
            raise ValueError("Scheduler poll interval must be positive")


@dataclass
class TimeEntry:
    """One logged time record as returned by the time entries endpoint"""
    id: str
    duration_ms: int
    task_id: Optional[str] = None
    start_ms: Optional[int] = None
    end_ms: Optional[int] = None
    user_id: Optional[str] = None
    raw: Optional[Dict[str, Any]] = field(default=None, repr=False)

    def __post_init__(self):
        if self.duration_ms < 0:
            raise ValueError("Duration must not be negative")


@dataclass
class TeamInfo:
    id: str
    name: str


@dataclass
class FolderInfo:
    id: str
    name: str
    team_id: str


@dataclass
class ListInfo:
    id: str
    name: str
    folder_id: str
    team_id: str


@dataclass
class TaskInfo:
    id: str
    name: str
    list_id: str


@dataclass
class ScopeTreeFolder:
    id: str
    name: str
    team_id: str
    lists: List[ListInfo] = field(default_factory=list)


@dataclass
class ScopeTreeTeam:
    """A workspace with its folders and their lists"""
    id: str
    name: str
    folders: List[ScopeTreeFolder] = field(default_factory=list)

    def find_folder(self, folder_id: Optional[str]) -> Optional[ScopeTreeFolder]:
        for folder in self.folders:
            if folder.id == folder_id:
                return folder
        return None

    def find_list(self, list_id: Optional[str]) -> Optional[ListInfo]:
        for folder in self.folders:
            for item in folder.lists:
                if item.id == list_id:
                    return item
        return None


@dataclass
class TimeRange:
    """Epoch millisecond bounds; None means unbounded"""
    start_ms: Optional[int] = None
    end_ms: Optional[int] = None


@dataclass(frozen=True)
class AlertSnapshot:
    """Immutable result of one alert evaluation"""
    status: str
    hours_used: float
    budget_hours: float
    remaining_hours: float
    over_by_hours: float
    percent_used: float
    entry_count: int
    last_refreshed_at: str
    scope_summary: str
    warning_message: Optional[str] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        if self.status not in ALERT_STATUSES:
            raise ValueError(f"Invalid alert status: {self.status}")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "status": self.status,
            "hoursUsed": self.hours_used,
            "budgetHours": self.budget_hours,
            "remainingHours": self.remaining_hours,
            "overByHours": self.over_by_hours,
            "percentUsed": self.percent_used,
            "entryCount": self.entry_count,
            "lastRefreshedAt": self.last_refreshed_at,
            "scopeSummary": self.scope_summary,
        }
        if self.warning_message is not None:
            data["warningMessage"] = self.warning_message
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertSnapshot":
        return cls(
            status=data.get("status", "inactive"),
            hours_used=data.get("hoursUsed", 0),
            budget_hours=data.get("budgetHours", 0),
            remaining_hours=data.get("remainingHours", 0),
            over_by_hours=data.get("overByHours", 0),
            percent_used=data.get("percentUsed", 0),
            entry_count=data.get("entryCount", 0),
            last_refreshed_at=data.get("lastRefreshedAt", ""),
            scope_summary=data.get("scopeSummary", ""),
            warning_message=data.get("warningMessage"),
            error_message=data.get("errorMessage"),
        )


@dataclass
class AlertDraft:
    """User-editable fields of an alert, as submitted from a form or file"""
    name: str
    type: str
    team_id: str
    time_range_mode: str
    budget_hours: float
    warning_threshold_pct: float
    critical_threshold_pct: float
    refresh_frequency_minutes: int = 0
    active: bool = True
    description: Optional[str] = None
    folder_id: Optional[str] = None
    folder_name: Optional[str] = None
    list_id: Optional[str] = None
    list_name: Optional[str] = None
    custom_scope_type: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    excluded_task_ids: List[str] = field(default_factory=list)
    include_only_task_ids: List[str] = field(default_factory=list)


@dataclass
class AlertConfig:
    """A budget rule for one folder or list, with its last computed snapshot"""
    id: str
    order: int
    name: str
    type: str
    team_id: str
    time_range_mode: str
    budget_hours: float
    warning_threshold_pct: float
    critical_threshold_pct: float
    created_at: str
    updated_at: str
    refresh_frequency_minutes: int = 0
    active: bool = True
    description: Optional[str] = None
    folder_id: Optional[str] = None
    folder_name: Optional[str] = None
    list_id: Optional[str] = None
    list_name: Optional[str] = None
    custom_scope_type: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    excluded_task_ids: List[str] = field(default_factory=list)
    include_only_task_ids: List[str] = field(default_factory=list)
    last_refreshed_at: Optional[str] = None
    last_snapshot: Optional[AlertSnapshot] = None

    @property
    def uses_folder_scope(self) -> bool:
        return self.type == "folder" or (self.type == "custom" and self.custom_scope_type == "folder")

    @property
    def uses_list_scope(self) -> bool:
        return self.type == "list" or (self.type == "custom" and self.custom_scope_type == "list")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "order": self.order,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "teamId": self.team_id,
            "folderId": self.folder_id,
            "folderName": self.folder_name,
            "listId": self.list_id,
            "listName": self.list_name,
            "customScopeType": self.custom_scope_type,
            "timeRangeMode": self.time_range_mode,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "budgetHours": self.budget_hours,
            "warningThresholdPct": self.warning_threshold_pct,
            "criticalThresholdPct": self.critical_threshold_pct,
            "excludedTaskIds": list(self.excluded_task_ids),
            "includeOnlyTaskIds": list(self.include_only_task_ids),
            "refreshFrequencyMinutes": self.refresh_frequency_minutes,
            "active": self.active,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "lastRefreshedAt": self.last_refreshed_at,
            "lastSnapshot": self.last_snapshot.to_dict() if self.last_snapshot else None,
        }
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertConfig":
        snapshot = data.get("lastSnapshot")
        return cls(
            id=str(data["id"]),
            order=int(data.get("order", 0)),
            name=data.get("name", ""),
            description=data.get("description"),
            type=data.get("type", "folder"),
            team_id=str(data.get("teamId", "")),
            folder_id=data.get("folderId"),
            folder_name=data.get("folderName"),
            list_id=data.get("listId"),
            list_name=data.get("listName"),
            custom_scope_type=data.get("customScopeType"),
            time_range_mode=data.get("timeRangeMode", "none"),
            start_date=data.get("startDate"),
            end_date=data.get("endDate"),
            budget_hours=data.get("budgetHours", 0),
            warning_threshold_pct=data.get("warningThresholdPct", 0),
            critical_threshold_pct=data.get("criticalThresholdPct", 0),
            excluded_task_ids=list(data.get("excludedTaskIds") or []),
            include_only_task_ids=list(data.get("includeOnlyTaskIds") or []),
            refresh_frequency_minutes=int(data.get("refreshFrequencyMinutes", 0)),
            active=bool(data.get("active", True)),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
            last_refreshed_at=data.get("lastRefreshedAt"),
            last_snapshot=AlertSnapshot.from_dict(snapshot) if isinstance(snapshot, dict) else None,
        )


@dataclass
class RefreshAlertResult:
    """Outcome of refreshing one alert; the alert always carries a new snapshot"""
    alert: AlertConfig
    success: bool
    error_message: Optional[str] = None


@dataclass
class UiPreferences:
    search: str = ""
    status_filter: str = "all"
    sort_by: str = "percentUsed"

    def __post_init__(self):
        if self.status_filter not in STATUS_FILTERS:
            raise ValueError(f"Invalid status filter: {self.status_filter}")

        if self.sort_by not in SORT_KEYS:
            raise ValueError(f"Invalid sort key: {self.sort_by}")

    def to_dict(self) -> Dict[str, Any]:
        return {"search": self.search, "statusFilter": self.status_filter, "sortBy": self.sort_by}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UiPreferences":
        return cls(
            search=data.get("search", ""),
            status_filter=data.get("statusFilter", "all"),
            sort_by=data.get("sortBy", "percentUsed"),
        )


@dataclass
class DashboardSummary:
    active_alerts: int = 0
    green: int = 0
    yellow: int = 0
    red: int = 0
    over_budget: int = 0
