"""
ClickUp API integration for time tracking budgets
"""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import requests

from .models import FolderInfo, ListInfo, ScopeTreeFolder, ScopeTreeTeam, TaskInfo, TeamInfo, TimeEntry

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.clickup.com/api/v2"
REQUEST_TIMEOUT_SECONDS = 15
MAX_ATTEMPTS = 4
BASE_RETRY_DELAY_MS = 250
MAX_PAGES = 200
MAX_FAN_OUT_WORKERS = 8

# Assignee value the time entries endpoint uses for entries on unassigned tasks
UNASSIGNED_ASSIGNEE = "0"

# Team payload fields that carry user lists
MEMBERSHIP_FIELDS = ("members", "guests", "users", "member_guests", "member_invites")


class ClickUpApiError(Exception):
    """Raised when a ClickUp request fails after retries or with a non-retriable status"""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_ms: int = 0


def classify_status(status: Optional[int]) -> Optional[str]:
    """Map an HTTP status (None for transport failures) to an error kind"""
    if status is None:
        return "NETWORK"
    if status == 401:
        return "UNAUTHORIZED"
    if status == 403:
        return "FORBIDDEN"
    if status == 429:
        return "RATE_LIMITED"
    if status >= 500:
        return "SERVER_ERROR"
    return None


def retry_decision(attempt: int, status: Optional[int] = None) -> RetryDecision:
    """Decide whether a failed attempt should be retried.

    ``attempt`` is 1-based. ``status`` is the HTTP status of the failed
    response, or None when the request never produced one (connection
    error, timeout).
    """
    if attempt >= MAX_ATTEMPTS:
        return RetryDecision(retry=False)

    if classify_status(status) not in ("NETWORK", "RATE_LIMITED", "SERVER_ERROR"):
        return RetryDecision(retry=False)

    return RetryDecision(retry=True, delay_ms=BASE_RETRY_DELAY_MS * 2 ** (attempt - 1))


def normalize_error_message(payload: Any, fallback: str) -> str:
    if not isinstance(payload, dict):
        return fallback
    if isinstance(payload.get("err"), str):
        return payload["err"]
    if isinstance(payload.get("message"), str):
        return payload["message"]
    return fallback


def build_query(query: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Drop unset values and stringify the rest the way the API expects"""
    params = {}
    for key, value in (query or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            params[key] = "true" if value else "false"
        else:
            params[key] = str(value)
    return params


# ----------------------------------------------------------------------
# Response parsing
# ----------------------------------------------------------------------

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _as_id(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


def parse_optional_ms(value: Any) -> Optional[int]:
    if _is_number(value):
        return int(value)
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return None
        if math.isfinite(parsed):
            return int(parsed)
    return None


def parse_duration_ms(value: Any) -> int:
    parsed = parse_optional_ms(value)
    return abs(parsed) if parsed is not None else 0


def extract_task_id(raw: Dict[str, Any]) -> Optional[str]:
    if isinstance(raw.get("task_id"), str):
        return raw["task_id"]
    task = raw.get("task")
    if isinstance(task, dict) and isinstance(task.get("id"), str):
        return task["id"]
    return None


def fallback_entry_id(raw: Dict[str, Any]) -> str:
    """Stable identity for an entry the provider returned without an id"""
    task_id = extract_task_id(raw) or "no-task"
    user_id = _as_id(raw.get("userid")) or "no-user"
    start = parse_optional_ms(raw.get("start")) or 0
    end = parse_optional_ms(raw.get("end")) or 0
    duration = parse_duration_ms(raw.get("duration"))
    return f"{task_id}:{user_id}:{start}:{end}:{duration}"


def parse_time_entry(raw: Any) -> Optional[TimeEntry]:
    if not isinstance(raw, dict):
        return None

    return TimeEntry(
        id=_as_id(raw.get("id")) or fallback_entry_id(raw),
        task_id=extract_task_id(raw),
        duration_ms=parse_duration_ms(raw.get("duration")),
        start_ms=parse_optional_ms(raw.get("start")),
        end_ms=parse_optional_ms(raw.get("end")),
        user_id=_as_id(raw.get("userid")),
        raw=raw,
    )


def extract_entry_payloads(payload: Any) -> List[Any]:
    if not isinstance(payload, dict):
        return []
    for key in ("data", "time_entries"):
        if isinstance(payload.get(key), list):
            return payload[key]
    return []


def extract_user_ids(value: Any) -> List[str]:
    """Collect user ids from a membership list of ``{user: {id}}`` or ``{id}`` records"""
    if not isinstance(value, list):
        return []

    ids = []
    for record in value:
        if not isinstance(record, dict):
            continue
        user = record.get("user")
        user_id = _as_id(user.get("id")) if isinstance(user, dict) else None
        if user_id is None:
            user_id = _as_id(record.get("id"))
        if user_id:
            ids.append(user_id)
    return unique(ids)


def unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


def _records(payload: Any, key: str) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict) or not isinstance(payload.get(key), list):
        return []
    return [item for item in payload[key] if isinstance(item, dict) and _as_id(item.get("id"))]


def parse_teams(payload: Any) -> List[TeamInfo]:
    return [TeamInfo(id=_as_id(team["id"]), name=str(team.get("name", ""))) for team in _records(payload, "teams")]


def parse_folders(payload: Any, team_id: str) -> List[FolderInfo]:
    return [
        FolderInfo(id=_as_id(folder["id"]), name=str(folder.get("name", "")), team_id=team_id)
        for folder in _records(payload, "folders")
    ]


def parse_lists(payload: Any, folder_id: str, team_id: str) -> List[ListInfo]:
    return [
        ListInfo(id=_as_id(item["id"]), name=str(item.get("name", "")), folder_id=folder_id, team_id=team_id)
        for item in _records(payload, "lists")
    ]


def parse_tasks_page(payload: Any, list_id: str) -> Tuple[List[TaskInfo], bool]:
    tasks = [
        TaskInfo(id=_as_id(task["id"]), name=str(task.get("name", "")), list_id=list_id)
        for task in _records(payload, "tasks")
    ]
    last_page = isinstance(payload, dict) and payload.get("last_page") is True
    return tasks, last_page


# ----------------------------------------------------------------------
# Pagination signals
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CursorToken:
    token: str


@dataclass(frozen=True)
class PageNumber:
    page: int


@dataclass(frozen=True)
class LastPageCount:
    last_page: int


@dataclass(frozen=True)
class Exhausted:
    pass


PaginationCursor = Union[CursorToken, PageNumber, LastPageCount, Exhausted]


def decode_pagination(payload: Any) -> PaginationCursor:
    """Read the "is there more" signal of a time entries page.

    A cursor token wins over a numeric next page, which wins over a last
    page count.
    """
    if not isinstance(payload, dict):
        return Exhausted()

    next_cursor = payload.get("next_cursor")
    if isinstance(next_cursor, str) and next_cursor:
        return CursorToken(next_cursor)

    if _is_number(payload.get("next_page")):
        return PageNumber(int(payload["next_page"]))

    if _is_number(payload.get("last_page")):
        return LastPageCount(int(payload["last_page"]))

    return Exhausted()


def build_assignee_query_values(assignee_ids: Optional[Iterable[str]]) -> List[Optional[str]]:
    """Assignee values to query, one scan each; None means no assignee filter.

    Named assignees are followed by an unassigned pass and an unfiltered pass
    because the provider omits entries from combined assignee queries.
    """
    normalized = unique(item.strip() for item in (assignee_ids or []) if item and item.strip())
    if not normalized:
        return [None]
    return normalized + [UNASSIGNED_ASSIGNEE, None]


class ClickUpClient:
    """Read-only ClickUp API client with retries and error classification"""

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._sleep = sleep
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': token,
            'Content-Type': 'application/json',
            'Accept': 'application/json'
        })

    def _wait(self, decision: RetryDecision, reason: str, attempt: int):
        logger.warning(f"{reason}; retrying in {decision.delay_ms}ms (attempt {attempt}/{MAX_ATTEMPTS})")
        self._sleep(decision.delay_ms / 1000)

    @staticmethod
    def _read_payload(response: requests.Response) -> Any:
        """Decode a JSON body; raises ValueError when a JSON body is malformed"""
        if 'application/json' not in response.headers.get('Content-Type', ''):
            return None
        return response.json()

    def request(self, path: str, query: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``path`` and return the decoded JSON payload"""
        url = f"{self.base_url}{path}"
        params = build_query(query)

        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                logger.debug(f"GET {url} {params}")
                response = self.session.get(url, params=params, timeout=self.timeout)
                # A truncated or mangled body counts as a transport failure
                payload = self._read_payload(response)
            except (requests.exceptions.RequestException, ValueError) as e:
                decision = retry_decision(attempt)
                if decision.retry:
                    self._wait(decision, f"Network error for GET {path}: {e}", attempt)
                    continue
                raise ClickUpApiError("Network error while contacting ClickUp API.", code="NETWORK") from e

            status = response.status_code

            if 200 <= status < 300:
                return payload

            if status == 401:
                raise ClickUpApiError("Invalid or revoked ClickUp token.", 401, "UNAUTHORIZED")

            if status == 403:
                raise ClickUpApiError(
                    "Token is valid but lacks required permissions for this scope.", 403, "FORBIDDEN"
                )

            decision = retry_decision(attempt, status)
            if decision.retry:
                self._wait(decision, f"HTTP {status} for GET {path}", attempt)
                continue

            message = normalize_error_message(payload, f"ClickUp API request failed ({status})")
            raise ClickUpApiError(message, status, classify_status(status))

        raise ClickUpApiError("Unexpected API error.")

    def get_teams(self) -> List[TeamInfo]:
        return parse_teams(self.request("/team"))

    def test_connection(self) -> List[TeamInfo]:
        """Fetch accessible workspaces; raises ClickUpApiError when the token is unusable"""
        teams = self.get_teams()
        logger.info(f"Connected to ClickUp, {len(teams)} workspace(s) accessible")
        return teams

    def get_team_member_ids(self, team_id: str) -> List[str]:
        payload = self.request("/team")
        teams = payload.get("teams") if isinstance(payload, dict) else None

        for team in teams if isinstance(teams, list) else []:
            if isinstance(team, dict) and _as_id(team.get("id")) == str(team_id):
                ids = []
                for field_name in MEMBERSHIP_FIELDS:
                    ids.extend(extract_user_ids(team.get(field_name)))
                return unique(ids)

        return []

    def get_folders(self, team_id: str) -> List[FolderInfo]:
        payload = self.request(f"/team/{team_id}/folder", {"archived": False})
        return parse_folders(payload, team_id)

    def get_lists(self, folder_id: str, team_id: str) -> List[ListInfo]:
        payload = self.request(f"/folder/{folder_id}/list", {"archived": False})
        return parse_lists(payload, folder_id, team_id)

    def get_all_lists_by_team(self, team_id: str) -> List[ListInfo]:
        folders = self.get_folders(team_id)
        with ThreadPoolExecutor(max_workers=MAX_FAN_OUT_WORKERS) as executor:
            nested = list(executor.map(lambda folder: self.get_lists(folder.id, team_id), folders))
        return [item for lists in nested for item in lists]

    def get_tasks(self, list_id: str) -> List[TaskInfo]:
        tasks = []
        page = 0

        while page < MAX_PAGES:
            payload = self.request(
                f"/list/{list_id}/task",
                {"archived": False, "include_closed": True, "page": page},
            )
            chunk, last_page = parse_tasks_page(payload, list_id)
            tasks.extend(chunk)

            if last_page or not chunk:
                break
            page += 1

        return tasks

    def get_scope_tree(self) -> List[ScopeTreeTeam]:
        """Fetch every accessible team with its folders and lists"""
        teams = self.get_teams()

        with ThreadPoolExecutor(max_workers=MAX_FAN_OUT_WORKERS) as executor:
            folders_by_team = list(executor.map(lambda team: self.get_folders(team.id), teams))
            pending = [folder for folders in folders_by_team for folder in folders]
            lists_by_folder = list(executor.map(lambda folder: self.get_lists(folder.id, folder.team_id), pending))

        lists_iter = iter(lists_by_folder)
        tree = []
        for team, folders in zip(teams, folders_by_team):
            tree.append(ScopeTreeTeam(
                id=team.id,
                name=team.name,
                folders=[
                    ScopeTreeFolder(id=folder.id, name=folder.name, team_id=folder.team_id, lists=next(lists_iter))
                    for folder in folders
                ],
            ))

        logger.debug(f"Loaded scope tree with {len(tree)} team(s)")
        return tree

    def get_time_entries(
        self,
        team_id: str,
        start_ms: Optional[int] = None,
        end_ms: Optional[int] = None,
        folder_id: Optional[str] = None,
        list_id: Optional[str] = None,
        assignee_ids: Optional[Iterable[str]] = None,
    ) -> List[TimeEntry]:
        """Fetch time entries for a scope, merged and de-duplicated across assignee scans"""
        entries = []
        seen_ids = set()

        for assignee in build_assignee_query_values(assignee_ids):
            page = 0
            cursor = None

            for _ in range(MAX_PAGES):
                query = {
                    "start_date": start_ms,
                    "end_date": end_ms,
                    "folder_id": folder_id,
                    "list_id": list_id,
                    "assignee": assignee,
                    "include_task_tags": True,
                }
                if cursor:
                    query["cursor"] = cursor
                else:
                    query["page"] = page

                payload = self.request(f"/team/{team_id}/time_entries", query)

                for raw in extract_entry_payloads(payload):
                    entry = parse_time_entry(raw)
                    if entry is None or entry.id in seen_ids:
                        continue
                    seen_ids.add(entry.id)
                    entries.append(entry)

                signal = decode_pagination(payload)
                if isinstance(signal, CursorToken):
                    cursor = signal.token
                    continue
                if isinstance(signal, PageNumber):
                    # A non-advancing next_page would loop forever
                    if signal.page <= page:
                        break
                    page = signal.page
                    continue
                if isinstance(signal, LastPageCount) and page < signal.last_page:
                    page += 1
                    continue
                break

        logger.info(f"Fetched {len(entries)} unique time entries for team {team_id}")
        return entries
