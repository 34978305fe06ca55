"""
Main alert manager for the ClickUp budget monitor
"""

import logging
import time
import uuid
from dataclasses import asdict, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

import schedule

from .alert_engine import compute_summary, get_visible_alerts, utc_now_iso
from .clickup_client import ClickUpApiError, ClickUpClient
from .config_manager import load_config, setup_logging
from .models import AlertConfig, AlertDraft, Config, DashboardSummary, RefreshAlertResult, ScopeTreeTeam, TeamInfo
from .refresh import refresh_all_alerts, refresh_single_alert, sort_alerts
from .storage import LocalStore
from .validation import validate_alert_draft

logger = logging.getLogger(__name__)


class MissingTokenError(Exception):
    """Raised when an operation needs ClickUp but no token is configured"""

    def __init__(self, message: str = "No ClickUp token configured. Add a token in settings first."):
        super().__init__(message)


class AlertNotFoundError(KeyError):
    """Raised when an alert id does not exist in the store"""

    def __str__(self):
        return "Alert not found."


def hydrate_draft_names(draft: AlertDraft, scope_tree: List[ScopeTreeTeam]) -> AlertDraft:
    """Fill folder and list display names from the current scope tree"""
    team = next((item for item in scope_tree if item.id == draft.team_id), None)
    if team is None:
        return draft

    folder = team.find_folder(draft.folder_id) if draft.folder_id else None
    found_list = team.find_list(draft.list_id) if draft.list_id else None
    return replace(
        draft,
        folder_name=folder.name if folder else None,
        list_name=found_list.name if found_list else None,
    )


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    # Stored timestamps without an offset are UTC
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def is_refresh_due(alert: AlertConfig, now: datetime) -> bool:
    """An active alert with a refresh frequency is due once that many minutes have passed"""
    if not alert.active or alert.refresh_frequency_minutes <= 0:
        return False

    last = _parse_iso(alert.last_refreshed_at)
    if last is None:
        return True
    return now - last >= timedelta(minutes=alert.refresh_frequency_minutes)


class AlertManager:
    """Coordinates the store, the ClickUp client and alert refreshes"""

    def __init__(
        self,
        config: Config,
        store: Optional[LocalStore] = None,
        client_factory: Optional[Callable[[str], ClickUpClient]] = None,
    ):
        self.config = config
        self.store = store or LocalStore(config.state_dir)
        self._client_factory = client_factory or (
            lambda token: ClickUpClient(token, base_url=config.clickup_base_url)
        )

    @classmethod
    def from_config_file(cls, config_file: str = "config.json") -> "AlertManager":
        config = load_config(config_file)
        setup_logging(config)
        manager = cls(config)
        logger.info("AlertManager initialized successfully")
        return manager

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def make_client(self, token: Optional[str] = None) -> ClickUpClient:
        token = (token or "").strip() or self.store.get_token() or self.config.api_token
        if not token:
            raise MissingTokenError()
        return self._client_factory(token)

    def set_token(self, token: str) -> None:
        if not token or not token.strip():
            raise ValueError("Token cannot be empty.")
        self.store.set_token(token)
        logger.info("ClickUp token saved")

    def clear_token(self) -> None:
        self.store.clear_token()
        logger.info("ClickUp token cleared")

    def test_connection(self, token: Optional[str] = None) -> Tuple[bool, List[TeamInfo], Optional[str]]:
        """Return (ok, teams, message) for the given or stored token"""
        try:
            client = self.make_client(token)
        except MissingTokenError:
            return False, [], "Provide a ClickUp token first."

        try:
            teams = client.test_connection()
        except ClickUpApiError as e:
            logger.error(f"Connection test failed: {e}")
            return False, [], e.message

        message = None if teams else "Connected, but no accessible workspaces were found."
        return True, teams, message

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------
    def list_alerts(self) -> List[AlertConfig]:
        return get_visible_alerts(self.store.get_alerts(), self.store.get_ui_preferences())

    def summary(self) -> DashboardSummary:
        return compute_summary(self.store.get_alerts())

    def get_alert(self, alert_id: str) -> AlertConfig:
        for alert in self.store.get_alerts():
            if alert.id == alert_id:
                return alert
        raise AlertNotFoundError(alert_id)

    def _hydrated(self, data: Dict) -> AlertDraft:
        draft = validate_alert_draft(data)
        scope_tree = self.make_client().get_scope_tree()
        return hydrate_draft_names(draft, scope_tree)

    def create_alert(self, data: Dict) -> AlertConfig:
        draft = self._hydrated(data)
        alerts = self.store.get_alerts()
        now = utc_now_iso()

        alert = AlertConfig(
            id=str(uuid.uuid4()),
            order=len(alerts),
            created_at=now,
            updated_at=now,
            **asdict(draft)
        )
        self.store.set_alerts(alerts + [alert])
        logger.info(f"Created alert '{alert.name}' ({alert.id})")
        return alert

    def update_alert(self, alert_id: str, data: Dict) -> AlertConfig:
        draft = self._hydrated(data)
        alerts = self.store.get_alerts()
        current = next((item for item in alerts if item.id == alert_id), None)
        if current is None:
            raise AlertNotFoundError(alert_id)

        updated = replace(current, updated_at=utc_now_iso(), **asdict(draft))
        self.store.set_alerts([updated if item.id == alert_id else item for item in alerts])
        logger.info(f"Updated alert '{updated.name}' ({alert_id})")
        return updated

    def delete_alert(self, alert_id: str) -> None:
        alerts = self.store.get_alerts()
        remaining = [item for item in alerts if item.id != alert_id]
        if len(remaining) == len(alerts):
            raise AlertNotFoundError(alert_id)

        self.store.set_alerts([replace(item, order=index) for index, item in enumerate(remaining)])
        logger.info(f"Deleted alert {alert_id}")

    def duplicate_alert(self, alert_id: str) -> AlertConfig:
        alerts = self.store.get_alerts()
        existing = next((item for item in alerts if item.id == alert_id), None)
        if existing is None:
            raise AlertNotFoundError(alert_id)

        now = utc_now_iso()
        copy = replace(
            existing,
            id=str(uuid.uuid4()),
            order=len(alerts),
            name=f"{existing.name} (Copy)",
            created_at=now,
            updated_at=now,
        )
        self.store.set_alerts(alerts + [copy])
        return copy

    def reorder_alerts(self, alert_ids: List[str]) -> List[AlertConfig]:
        """Put the given ids first, in that order, followed by the remaining alerts"""
        alerts = self.store.get_alerts()
        by_id = {alert.id: alert for alert in alerts}

        ordered = [by_id[alert_id] for alert_id in dict.fromkeys(alert_ids) if alert_id in by_id]
        ordered += [alert for alert in alerts if alert.id not in set(alert_ids)]

        now = utc_now_iso()
        return self.store.set_alerts([
            replace(alert, order=index, updated_at=now) for index, alert in enumerate(ordered)
        ])

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------
    def refresh_alert(self, alert_id: str) -> RefreshAlertResult:
        alerts = self.store.get_alerts()
        target = next((item for item in alerts if item.id == alert_id), None)
        if target is None:
            raise AlertNotFoundError(alert_id)

        client = self.make_client()
        try:
            team_member_ids = client.get_team_member_ids(target.team_id)
        except ClickUpApiError as e:
            logger.warning(f"Could not load members of team {target.team_id}: {e}")
            team_member_ids = []

        result = refresh_single_alert(client, target, team_member_ids=team_member_ids)
        self.store.set_alerts([result.alert if item.id == alert_id else item for item in alerts])
        return result

    def refresh_all(self) -> List[RefreshAlertResult]:
        return refresh_all_alerts(self.store, self.make_client)

    def refresh_due_alerts(self, now: Optional[datetime] = None) -> List[RefreshAlertResult]:
        now = now or datetime.now(timezone.utc)
        due = [alert.id for alert in sort_alerts(self.store.get_alerts()) if is_refresh_due(alert, now)]
        if not due:
            logger.debug("No alerts due for refresh")
            return []

        logger.info(f"Refreshing {len(due)} due alert(s)")
        return refresh_all_alerts(self.store, self.make_client, alert_ids=due)

    def build_scheduler(self) -> schedule.Scheduler:
        scheduler = schedule.Scheduler()
        scheduler.every(self.config.scheduler_poll_seconds).seconds.do(self.refresh_due_alerts)
        return scheduler

    def start_scheduler(self):
        """Refresh alerts on their configured frequency until interrupted"""
        logger.info("Starting automated scheduler")
        scheduler = self.build_scheduler()

        logger.info(f"Scheduler started. Checking for due alerts every {self.config.scheduler_poll_seconds}s")
        self.refresh_due_alerts()

        try:
            while True:
                scheduler.run_pending()
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Scheduler stopped by user")
