"""
Tests for single-alert refresh and batch refresh
"""

from cubudget.clickup_client import ClickUpApiError, ClickUpClient
from cubudget.models import AlertSnapshot, TimeEntry
from cubudget.refresh import (
    MISSING_FOLDER_MESSAGE, MISSING_LIST_MESSAGE, MISSING_TEAM_MESSAGE, UNEXPECTED_REFRESH_MESSAGE,
    get_scope_warning, refresh_all_alerts, refresh_single_alert,
)

from conftest import FakeClient, FakeResponse, FakeSession, MemoryStore, build_alert, build_scope_tree

HOUR_MS = 3_600_000


def previous_snapshot():
    return AlertSnapshot(
        status="green", hours_used=12.5, budget_hours=50, remaining_hours=37.5, over_by_hours=0,
        percent_used=25, entry_count=3, last_refreshed_at="2024-01-01T00:00:00.000Z",
        scope_summary="Folder: Website | Cumulative",
    )


def test_inactive_alert_makes_no_calls():
    client = FakeClient()
    alert = build_alert(active=False, last_snapshot=previous_snapshot())

    result = refresh_single_alert(client, alert)

    assert result.success
    assert client.calls == []
    assert result.alert.last_snapshot.status == "inactive"
    assert result.alert.last_snapshot.entry_count == 0
    assert result.alert.last_refreshed_at == result.alert.last_snapshot.last_refreshed_at


def test_refresh_builds_snapshot_from_filtered_entries():
    entries = [
        TimeEntry(id="a", duration_ms=30 * HOUR_MS, task_id="t1"),
        TimeEntry(id="b", duration_ms=10 * HOUR_MS, task_id="t2"),
        TimeEntry(id="c", duration_ms=5 * HOUR_MS),
    ]
    client = FakeClient(scope_tree=build_scope_tree(), entries=entries)
    alert = build_alert(excluded_task_ids=["t2", " t2", "t2 "])

    result = refresh_single_alert(client, alert, team_member_ids=["u1", "u2"])

    assert result.success
    assert result.error_message is None
    snapshot = result.alert.last_snapshot
    assert snapshot.hours_used == 35
    assert snapshot.entry_count == 2
    assert snapshot.status == "green"
    assert result.alert.excluded_task_ids == ["t2"]
    assert result.alert.include_only_task_ids == []

    fetch = [call for call in client.calls if call[0] == "get_time_entries"][0][1]
    assert fetch["team_id"] == "team-1"
    assert fetch["folder_id"] == "folder-1"
    assert fetch["list_id"] is None
    assert fetch["assignee_ids"] == ["u1", "u2"]
    assert fetch["start_ms"] is None and fetch["end_ms"] is None


def test_original_alert_is_not_mutated():
    client = FakeClient(scope_tree=build_scope_tree(), entries=[TimeEntry(id="a", duration_ms=HOUR_MS)])
    alert = build_alert(excluded_task_ids=["x", "x"])

    refresh_single_alert(client, alert)

    assert alert.last_snapshot is None
    assert alert.excluded_task_ids == ["x", "x"]


def test_list_scope_passes_list_id():
    client = FakeClient(scope_tree=build_scope_tree())
    alert = build_alert(type="custom", custom_scope_type="list", list_id="list-1")

    assert refresh_single_alert(client, alert).success

    fetch = [call for call in client.calls if call[0] == "get_time_entries"][0][1]
    assert fetch["list_id"] == "list-1"
    assert fetch["folder_id"] is None


def test_scope_tree_override_skips_fetch():
    client = FakeClient()
    result = refresh_single_alert(client, build_alert(), scope_tree_override=build_scope_tree())

    assert result.success
    assert ("get_scope_tree",) not in client.calls


def test_get_scope_warning_messages():
    tree = build_scope_tree()

    assert get_scope_warning(build_alert(team_id="gone"), tree) == MISSING_TEAM_MESSAGE
    assert get_scope_warning(build_alert(folder_id="gone"), tree) == MISSING_FOLDER_MESSAGE
    assert get_scope_warning(build_alert(type="list", list_id="gone"), tree) == MISSING_LIST_MESSAGE
    assert get_scope_warning(build_alert(type="list", list_id="list-1"), tree) is None
    assert get_scope_warning(build_alert(), tree) is None


def test_missing_scope_becomes_error_snapshot():
    client = FakeClient(scope_tree=build_scope_tree())
    alert = build_alert(folder_id="deleted", last_snapshot=previous_snapshot())

    result = refresh_single_alert(client, alert)

    assert not result.success
    assert result.error_message == MISSING_FOLDER_MESSAGE
    snapshot = result.alert.last_snapshot
    assert snapshot.status == "error"
    assert snapshot.error_message == MISSING_FOLDER_MESSAGE
    assert snapshot.hours_used == 12.5
    assert not any(call[0] == "get_time_entries" for call in client.calls)


def test_api_error_message_is_surfaced():
    client = FakeClient(
        scope_tree=build_scope_tree(),
        entries_error=ClickUpApiError("Invalid or revoked ClickUp token.", 401, "UNAUTHORIZED"),
    )
    alert = build_alert(last_snapshot=previous_snapshot())

    result = refresh_single_alert(client, alert)

    assert not result.success
    assert result.error_message == "Invalid or revoked ClickUp token."
    assert result.alert.last_snapshot.percent_used == 25
    assert result.alert.last_snapshot.entry_count == 3


def test_malformed_response_body_keeps_previous_numbers():
    session = FakeSession(lambda url, params: FakeResponse(200, ValueError("truncated")))
    client = ClickUpClient("pk_test", session=session, sleep=lambda seconds: None)
    alert = build_alert(last_snapshot=previous_snapshot())

    result = refresh_single_alert(client, alert, scope_tree_override=build_scope_tree())

    assert not result.success
    assert result.error_message == "Network error while contacting ClickUp API."
    assert result.alert.last_snapshot.status == "error"
    assert result.alert.last_snapshot.hours_used == 12.5
    assert len(session.calls) == 4


def test_unexpected_error_uses_generic_message():
    client = FakeClient(scope_tree=build_scope_tree(), entries_error=KeyError("data"))

    result = refresh_single_alert(client, build_alert())

    assert not result.success
    assert result.error_message == UNEXPECTED_REFRESH_MESSAGE
    assert result.alert.last_snapshot.status == "error"


def test_batch_isolates_missing_folder():
    alerts = [
        build_alert(id="a1", order=0),
        build_alert(id="a2", order=1, folder_id="deleted"),
        build_alert(id="a3", order=2, folder_id="folder-2"),
    ]
    store = MemoryStore(alerts)
    client = FakeClient(scope_tree=build_scope_tree(), entries=[TimeEntry(id="e", duration_ms=HOUR_MS)])

    results = refresh_all_alerts(store, lambda: client)

    assert [result.alert.id for result in results] == ["a1", "a2", "a3"]
    assert [result.success for result in results] == [True, False, True]
    assert results[1].alert.last_snapshot.error_message == MISSING_FOLDER_MESSAGE
    assert results[0].alert.last_snapshot.status == "green"
    assert results[2].alert.last_snapshot.status == "green"

    assert len(store.set_calls) == 1
    persisted = store.set_calls[0]
    assert [alert.id for alert in persisted] == ["a1", "a2", "a3"]
    assert all(alert.last_snapshot is not None for alert in persisted)


def test_batch_looks_up_each_team_once():
    alerts = [
        build_alert(id="a1", order=0),
        build_alert(id="a2", order=1),
        build_alert(id="a3", order=2, team_id="team-2"),
        build_alert(id="a4", order=3, active=False, team_id="team-3"),
    ]
    client = FakeClient(scope_tree=build_scope_tree(), members={"team-1": ["u1"]})

    refresh_all_alerts(MemoryStore(alerts), lambda: client)

    lookups = [call[1] for call in client.calls if call[0] == "get_team_member_ids"]
    assert lookups == ["team-1", "team-2"]
    fetches = [call[1] for call in client.calls if call[0] == "get_time_entries"]
    assert fetches[0]["assignee_ids"] == ["u1"]
    assert fetches[1]["assignee_ids"] == ["u1"]


def test_batch_membership_failure_degrades_to_unfiltered():
    client = FakeClient(scope_tree=build_scope_tree(), members_error=ClickUpApiError("nope", 403, "FORBIDDEN"))

    results = refresh_all_alerts(MemoryStore([build_alert()]), lambda: client)

    assert results[0].success
    fetch = [call[1] for call in client.calls if call[0] == "get_time_entries"][0]
    assert fetch["assignee_ids"] is None


def test_batch_refreshes_in_order():
    alerts = [
        build_alert(id="late", order=1, created_at="2024-01-01T00:00:00.000Z"),
        build_alert(id="tie-b", order=0, created_at="2024-02-01T00:00:00.000Z"),
        build_alert(id="tie-a", order=0, created_at="2024-01-15T00:00:00.000Z"),
    ]
    client = FakeClient(scope_tree=build_scope_tree())

    results = refresh_all_alerts(MemoryStore(alerts), lambda: client)

    assert [result.alert.id for result in results] == ["tie-a", "tie-b", "late"]


def test_batch_setup_failure_marks_every_alert():
    alerts = [build_alert(id="a1", order=0, last_snapshot=previous_snapshot()), build_alert(id="a2", order=1)]
    store = MemoryStore(alerts)

    def no_token():
        raise RuntimeError("No ClickUp token configured. Add a token in settings first.")

    results = refresh_all_alerts(store, no_token)

    assert len(results) == 2
    assert all(not result.success for result in results)
    assert {result.error_message for result in results} == {
        "No ClickUp token configured. Add a token in settings first."
    }
    assert results[0].alert.last_snapshot.hours_used == 12.5
    assert len(store.set_calls) == 1
    assert all(alert.last_snapshot.status == "error" for alert in store.set_calls[0])


def test_batch_with_no_alerts_does_nothing():
    store = MemoryStore([])
    assert refresh_all_alerts(store, lambda: FakeClient()) == []
    assert store.set_calls == []


def test_batch_subset_leaves_other_alerts_untouched():
    alerts = [build_alert(id="a1", order=0), build_alert(id="a2", order=1)]
    store = MemoryStore(alerts)

    results = refresh_all_alerts(store, lambda: FakeClient(scope_tree=build_scope_tree()), alert_ids=["a2"])

    assert [result.alert.id for result in results] == ["a2"]
    persisted = {alert.id: alert for alert in store.set_calls[0]}
    assert persisted["a1"].last_snapshot is None
    assert persisted["a2"].last_snapshot is not None
