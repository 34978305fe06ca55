"""
Alert refresh: single-alert evaluation and batch refresh
"""

import logging
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

from .alert_engine import (
    apply_entry_filters, build_error_snapshot, build_snapshot, compute_time_range, dedupe_ids, utc_now_iso
)
from .clickup_client import ClickUpApiError, ClickUpClient
from .models import AlertConfig, AlertSnapshot, RefreshAlertResult, ScopeTreeTeam

logger = logging.getLogger(__name__)

MISSING_TEAM_MESSAGE = "Selected workspace is no longer accessible."
MISSING_FOLDER_MESSAGE = "Selected folder is missing or inaccessible."
MISSING_LIST_MESSAGE = "Selected list is missing or inaccessible."
UNEXPECTED_REFRESH_MESSAGE = "Failed to refresh alert due to an unexpected error."
BATCH_FAILURE_MESSAGE = "Failed to refresh alerts."


def sort_alerts(alerts: Iterable[AlertConfig]) -> List[AlertConfig]:
    return sorted(alerts, key=lambda alert: (alert.order, alert.created_at))


def get_scope_warning(alert: AlertConfig, scope_tree: List[ScopeTreeTeam]) -> Optional[str]:
    """Return a user-facing message when the alert's scope no longer exists"""
    team = next((item for item in scope_tree if item.id == alert.team_id), None)
    if team is None:
        return MISSING_TEAM_MESSAGE

    if alert.uses_folder_scope and team.find_folder(alert.folder_id) is None:
        return MISSING_FOLDER_MESSAGE

    if alert.uses_list_scope and team.find_list(alert.list_id) is None:
        return MISSING_LIST_MESSAGE

    return None


def _with_snapshot(alert: AlertConfig, snapshot: AlertSnapshot, **changes) -> AlertConfig:
    return replace(
        alert,
        last_refreshed_at=snapshot.last_refreshed_at,
        last_snapshot=snapshot,
        updated_at=utc_now_iso(),
        **changes
    )


def _failed(alert: AlertConfig, message: str) -> RefreshAlertResult:
    snapshot = build_error_snapshot(alert, message)
    return RefreshAlertResult(alert=_with_snapshot(alert, snapshot), success=False, error_message=message)


def refresh_single_alert(
    client: ClickUpClient,
    alert: AlertConfig,
    scope_tree_override: Optional[List[ScopeTreeTeam]] = None,
    team_member_ids: Optional[List[str]] = None,
) -> RefreshAlertResult:
    """Evaluate one alert against ClickUp.

    Never raises: scope problems and request failures come back as a failed
    result whose alert carries an error snapshot.
    """
    if not alert.active:
        snapshot = build_snapshot(alert, [])
        return RefreshAlertResult(alert=_with_snapshot(alert, snapshot), success=True)

    try:
        scope_tree = scope_tree_override if scope_tree_override is not None else client.get_scope_tree()
        warning = get_scope_warning(alert, scope_tree)
        if warning:
            logger.warning(f"Alert '{alert.name}' ({alert.id}): {warning}")
            return _failed(alert, warning)

        time_range = compute_time_range(alert)
        entries = client.get_time_entries(
            team_id=alert.team_id,
            start_ms=time_range.start_ms,
            end_ms=time_range.end_ms,
            folder_id=alert.folder_id if alert.uses_folder_scope else None,
            list_id=alert.list_id if alert.uses_list_scope else None,
            assignee_ids=team_member_ids or None,
        )

        filtered = apply_entry_filters(alert, entries)
        snapshot = build_snapshot(alert, filtered)
        logger.info(
            f"Alert '{alert.name}': {snapshot.hours_used:.2f}h of {snapshot.budget_hours}h "
            f"({snapshot.percent_used}%) -> {snapshot.status}"
        )

        return RefreshAlertResult(
            alert=_with_snapshot(
                alert,
                snapshot,
                excluded_task_ids=dedupe_ids(alert.excluded_task_ids),
                include_only_task_ids=dedupe_ids(alert.include_only_task_ids),
            ),
            success=True,
        )

    except ClickUpApiError as e:
        logger.error(f"ClickUp error refreshing alert '{alert.name}': {e}")
        return _failed(alert, e.message)
    except Exception as e:
        logger.error(f"Unexpected error refreshing alert '{alert.name}': {e}")
        return _failed(alert, UNEXPECTED_REFRESH_MESSAGE)


def _refresh_sequentially(client: ClickUpClient, alerts: List[AlertConfig]) -> List[RefreshAlertResult]:
    results = []
    team_member_cache: Dict[str, List[str]] = {}

    for alert in sort_alerts(alerts):
        team_member_ids = None
        if alert.active:
            if alert.team_id not in team_member_cache:
                try:
                    team_member_cache[alert.team_id] = client.get_team_member_ids(alert.team_id)
                except Exception as e:
                    logger.warning(f"Could not load members of team {alert.team_id}: {e}")
                    team_member_cache[alert.team_id] = []
            team_member_ids = team_member_cache[alert.team_id]

        results.append(refresh_single_alert(client, alert, team_member_ids=team_member_ids))

    return results


def refresh_all_alerts(
    store,
    client_factory: Callable[[], ClickUpClient],
    alert_ids: Optional[Iterable[str]] = None,
) -> List[RefreshAlertResult]:
    """Refresh stored alerts in order and persist the whole set once.

    ``alert_ids`` limits the batch to those alerts; the rest are written back
    unchanged. Always returns one result per refreshed alert. When the batch
    cannot even start (no token, for example) every targeted alert gets an
    error snapshot carrying that failure.
    """
    alerts = store.get_alerts()
    wanted = set(alert_ids) if alert_ids is not None else None
    targets = [alert for alert in alerts if wanted is None or alert.id in wanted]
    if not targets:
        return []

    try:
        client = client_factory()
        results = _refresh_sequentially(client, targets)

        refreshed_by_id = {result.alert.id: result.alert for result in results}
        store.set_alerts(sort_alerts(refreshed_by_id.get(alert.id, alert) for alert in alerts))

        failures = sum(1 for result in results if not result.success)
        logger.info(f"Refreshed {len(results)} alert(s), {failures} failed")
        return results

    except Exception as e:
        message = str(e) or BATCH_FAILURE_MESSAGE
        logger.error(f"Batch refresh failed: {message}")

        now = utc_now_iso()
        failed = []
        for alert in targets:
            failed_alert = replace(
                alert,
                last_refreshed_at=now,
                updated_at=now,
                last_snapshot=build_error_snapshot(alert, message),
            )
            failed.append(RefreshAlertResult(alert=failed_alert, success=False, error_message=message))

        failed_by_id = {result.alert.id: result.alert for result in failed}
        try:
            store.set_alerts(sort_alerts(failed_by_id.get(alert.id, alert) for alert in alerts))
        except Exception as store_error:
            logger.error(f"Could not persist failed refresh results: {store_error}")

        return failed
