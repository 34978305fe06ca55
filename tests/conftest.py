"""
Shared fixtures: fake HTTP session, fake ClickUp client and in-memory store
"""

import logging
from dataclasses import replace

import pytest

from cubudget.models import AlertConfig, ListInfo, ScopeTreeFolder, ScopeTreeTeam


class FakeResponse:
    def __init__(self, status_code=200, payload=None, content_type="application/json", url="https://example.test"):
        self.status_code = status_code
        self._payload = payload
        self.headers = {"Content-Type": content_type} if content_type else {}
        self.url = url

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Stands in for requests.Session; answers from a list or a callable"""

    def __init__(self, responder):
        self.headers = {}
        self.calls = []
        self._responder = responder

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        if callable(self._responder):
            outcome = self._responder(url, params or {})
        else:
            outcome = self._responder.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeClient:
    """Records calls made by the refresh code instead of talking to ClickUp"""

    def __init__(self, scope_tree=None, entries=None, members=None, entries_error=None, members_error=None):
        self.scope_tree = scope_tree if scope_tree is not None else []
        self.entries = entries or []
        self.members = members or {}
        self.entries_error = entries_error
        self.members_error = members_error
        self.calls = []

    def get_scope_tree(self):
        self.calls.append(("get_scope_tree",))
        return self.scope_tree

    def get_team_member_ids(self, team_id):
        self.calls.append(("get_team_member_ids", team_id))
        if self.members_error:
            raise self.members_error
        return self.members.get(team_id, [])

    def get_time_entries(self, **kwargs):
        self.calls.append(("get_time_entries", kwargs))
        if self.entries_error:
            raise self.entries_error
        if callable(self.entries):
            return self.entries(**kwargs)
        return list(self.entries)


class MemoryStore:
    def __init__(self, alerts=None):
        self.alerts = list(alerts or [])
        self.set_calls = []

    def get_alerts(self):
        return list(self.alerts)

    def set_alerts(self, alerts):
        alerts = sorted(alerts, key=lambda alert: (alert.order, alert.created_at))
        self.set_calls.append(alerts)
        self.alerts = alerts
        return alerts


def build_alert(**overrides) -> AlertConfig:
    alert = AlertConfig(
        id="alert-1",
        order=0,
        name="Website retainer",
        type="folder",
        team_id="team-1",
        folder_id="folder-1",
        folder_name="Website",
        time_range_mode="none",
        budget_hours=50,
        warning_threshold_pct=75,
        critical_threshold_pct=100,
        created_at="2024-01-01T00:00:00.000Z",
        updated_at="2024-01-01T00:00:00.000Z",
    )
    return replace(alert, **overrides)


def build_scope_tree():
    return [
        ScopeTreeTeam(
            id="team-1",
            name="Agency",
            folders=[
                ScopeTreeFolder(
                    id="folder-1",
                    name="Website",
                    team_id="team-1",
                    lists=[ListInfo(id="list-1", name="Sprint", folder_id="folder-1", team_id="team-1")],
                ),
                ScopeTreeFolder(id="folder-2", name="Mobile", team_id="team-1", lists=[]),
            ],
        )
    ]


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    package_logger = logging.getLogger("cubudget")
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)
