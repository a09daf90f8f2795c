"""
Asana side of the sync.

Reads the user's "My Tasks" list through the Asana REST API and marks tasks
complete. Only tasks with a due date are considered.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import requests

from snapshot import TaskSnapshot
from sync_errors import AsanaAPIError, MissingDueDateError, UnsupportedPaginationError

logger = logging.getLogger(__name__)

ASANA_BASE_URL = "https://app.asana.com/api/1.0"
TASK_FIELDS = ['name', 'notes', 'due_on', 'due_at', 'completed_at']
DEFAULT_WINDOW_HOURS = 24
DEFAULT_PAGE_LIMIT = 100
REQUEST_TIMEOUT = 30

# Calendar dates for timed due dates are taken in this zone, not UTC.
REFERENCE_TIMEZONE = ZoneInfo('America/Chicago')


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return datetime.strptime(value, '%Y-%m-%d').date()


@dataclass(frozen=True)
class ForeignTask:
    """An Asana task as seen by the sync."""
    gid: str
    name: str
    notes: str = ''
    due_on: Optional[date] = None
    due_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ForeignTask":
        """Build from an Asana task record (opt_fields as in TASK_FIELDS)."""
        return cls(
            gid=str(data['gid']),
            name=data.get('name') or '',
            notes=data.get('notes') or '',
            due_on=_parse_date(data.get('due_on')),
            due_at=_parse_timestamp(data.get('due_at')),
            completed_at=_parse_timestamp(data.get('completed_at')),
        )

    @property
    def has_due_date(self) -> bool:
        return self.due_on is not None or self.due_at is not None

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None


def due_to_canonical_string(task: ForeignTask, tz: tzinfo = REFERENCE_TIMEZONE) -> str:
    """Render the task's due date the way Google Tasks stores due dates.

    Google Tasks keeps only a date, as midnight UTC. A timed due date
    (due_at) wins over due_on and is reduced to its calendar date in tz;
    the time of day is dropped.

    Raises:
        MissingDueDateError: if the task has neither due_on nor due_at
    """
    if task.due_at is not None:
        due_date = task.due_at.astimezone(tz).date()
    elif task.due_on is not None:
        due_date = task.due_on
    else:
        raise MissingDueDateError(
            f"Asana task {task.gid} ('{task.name}') has no due date; it should have been filtered out"
        )
    return f"{due_date.isoformat()}T00:00:00Z"


class AsanaClient:
    """Minimal Asana REST client for one user task list."""

    def __init__(self, token: str, user_task_list_gid: str, base_url: str = ASANA_BASE_URL,
                 window_hours: int = DEFAULT_WINDOW_HOURS, page_limit: int = DEFAULT_PAGE_LIMIT,
                 timeout: float = REQUEST_TIMEOUT, session: Optional[requests.Session] = None):
        """
        Args:
            token: Asana Personal Access Token
            user_task_list_gid: GID of the user task list to sync
            base_url: Asana API base URL
            window_hours: How far back completed tasks are still fetched
            page_limit: Records requested per page
            timeout: Per-request timeout in seconds
            session: Optional pre-built requests session
        """
        self.user_task_list_gid = user_task_list_gid
        self.base_url = base_url.rstrip('/')
        self.window_hours = window_hours
        self.page_limit = page_limit
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers['Authorization'] = f"Bearer {token}"
        self._session.headers['Accept'] = 'application/json'

    def _request(self, method: str, path: str, operation: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise AsanaAPIError(f"Failed to {operation}: {e}", operation) from e

        if not response.ok:
            raise AsanaAPIError(
                f"Failed to {operation}. Status: {response.status_code}",
                operation,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise AsanaAPIError(
                f"Failed to {operation}: malformed response body",
                operation,
                status_code=response.status_code,
            ) from e

    def list_tasks(self, window_hours: Optional[int] = None) -> TaskSnapshot[ForeignTask]:
        """Fetch tasks touched within the trailing window.

        Incomplete tasks are always returned; completed ones only if they were
        completed within the window. Tasks without a due date are dropped.

        Raises:
            UnsupportedPaginationError: if Asana reports another page
            AsanaAPIError: on any failed request
        """
        operation = "list Asana tasks"
        hours = self.window_hours if window_hours is None else window_hours
        completed_since = datetime.now(timezone.utc) - timedelta(hours=hours)
        params = {
            'opt_fields': ','.join(TASK_FIELDS),
            'completed_since': completed_since.isoformat(),
            'limit': self.page_limit,
        }

        body = self._request('GET', f"/user_task_lists/{self.user_task_list_gid}/tasks", operation, params=params)

        if not isinstance(body, dict):
            raise AsanaAPIError(f"Failed to {operation}: malformed response body", operation)

        if body.get('next_page'):
            raise UnsupportedPaginationError(
                f"Failed to {operation}: more than {self.page_limit} tasks in the window, "
                "and following further pages is not supported",
                operation,
            )

        try:
            tasks = [ForeignTask.from_api(record) for record in body['data']]
        except (KeyError, TypeError, ValueError) as e:
            raise AsanaAPIError(f"Failed to {operation}: malformed task record ({e})", operation) from e

        dated = [task for task in tasks if task.has_due_date]
        if len(dated) != len(tasks):
            logger.debug(f"Skipping {len(tasks) - len(dated)} Asana task(s) without due date")

        return TaskSnapshot.partition(dated, lambda task: task.is_complete)

    def complete_task(self, task_gid: str):
        """Mark an Asana task as completed."""
        self._request(
            'PUT',
            f"/tasks/{task_gid}",
            f"complete Asana task {task_gid}",
            json={'data': {'completed': True}},
        )
