"""
Google Tasks side of the sync.

All mirror tasks live in one Google Tasks list (by default the list titled
"Asana"). Mirrors are created and deleted, never edited in place.
"""

import logging
import os
from dataclasses import dataclass
from datetime import tzinfo
from typing import Any, Dict, List, Optional

import httplib2
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from asana_tasks import REFERENCE_TIMEZONE, ForeignTask, due_to_canonical_string
from correlation import CorrelationCodec
from snapshot import TaskSnapshot
from sync_errors import ConfigurationError, GoogleTasksAPIError

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/tasks']
DEFAULT_LIST_TITLE = 'Asana'
PAGE_SIZE = 100

# Answered with an error status, or never answered (connection reset, timeout)
REQUEST_ERRORS = (HttpError, OSError, httplib2.HttpLib2Error)


@dataclass(frozen=True)
class MirrorTask:
    """A Google Task in the mirror list."""
    id: str
    title: Optional[str] = None
    notes: Optional[str] = None
    due: Optional[str] = None
    completed: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "MirrorTask":
        return cls(
            id=data['id'],
            title=data.get('title'),
            notes=data.get('notes'),
            due=data.get('due'),
            completed=data.get('completed'),
        )

    def to_api(self) -> Dict[str, Any]:
        """Insert body with only the populated fields."""
        body = {}
        for key in ('title', 'notes', 'due'):
            value = getattr(self, key)
            if value is not None:
                body[key] = value
        return body

    @property
    def is_complete(self) -> bool:
        return self.completed is not None


def _api_error(operation: str, error: Exception) -> GoogleTasksAPIError:
    if not isinstance(error, HttpError):
        return GoogleTasksAPIError(f"Failed to {operation}: {error}", operation)

    status = getattr(error.resp, 'status', None)
    return GoogleTasksAPIError(
        f"Failed to {operation}. Status: {status} ({error})",
        operation,
        status_code=int(status) if status is not None else None,
    )


def build_tasks_service(credentials_file: str, token_file: str):
    """Authorize with OAuth2 (installed app flow) and build a Tasks v1 client.

    The token is cached in token_file and refreshed when expired. The browser
    flow only runs when there is no usable token.
    """
    creds = None

    if os.path.exists(token_file):
        creds = Credentials.from_authorized_user_file(token_file, SCOPES)

    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            logger.info("Refreshing expired Google credentials...")
            creds.refresh(Request())
        else:
            if not os.path.exists(credentials_file):
                raise ConfigurationError(
                    f"Google credentials file not found: {credentials_file}\n"
                    "Please download OAuth client credentials from Google Cloud Console."
                )
            logger.info("No valid Google credentials, starting OAuth flow...")
            flow = InstalledAppFlow.from_client_secrets_file(credentials_file, SCOPES)
            creds = flow.run_local_server(port=0)

        with open(token_file, 'w') as token:
            token.write(creds.to_json())
        logger.info(f"Saved Google credentials to {token_file}")

    return build('tasks', 'v1', credentials=creds)


def resolve_list_id(service, title: str) -> str:
    """Find the id of the task list with exactly this title.

    Raises:
        ConfigurationError: if no list has this title
    """
    operation = "list Google task lists"
    page_token = None
    seen = []
    while True:
        try:
            results = service.tasklists().list(maxResults=PAGE_SIZE, pageToken=page_token).execute()
        except REQUEST_ERRORS as e:
            raise _api_error(operation, e) from e

        for task_list in results.get('items', []):
            seen.append(task_list.get('title'))
            if task_list.get('title') == title:
                logger.info(f"Using Google Tasks list '{title}' (ID: {task_list['id']})")
                return task_list['id']

        page_token = results.get('nextPageToken')
        if not page_token:
            break

    raise ConfigurationError(
        f"Google Tasks list '{title}' not found (available: {', '.join(str(t) for t in seen) or 'none'})"
    )


class GoogleTasksMirror:
    """Mirror list in Google Tasks."""

    def __init__(self, service, list_id: str, reference_tz: tzinfo = REFERENCE_TIMEZONE,
                 codec: Optional[CorrelationCodec] = None):
        self.service = service
        self.list_id = list_id
        self.reference_tz = reference_tz
        self.codec = codec or CorrelationCodec()

    @classmethod
    def connect(cls, credentials_file: str, token_file: str, list_title: str = DEFAULT_LIST_TITLE,
                reference_tz: tzinfo = REFERENCE_TIMEZONE) -> "GoogleTasksMirror":
        """Authorize, then resolve the mirror list once."""
        service = build_tasks_service(credentials_file, token_file)
        list_id = resolve_list_id(service, list_title)
        return cls(service, list_id, reference_tz=reference_tz)

    def list_tasks(self) -> TaskSnapshot[MirrorTask]:
        """Fetch every task in the mirror list, completed and hidden included."""
        operation = "list Google Tasks"
        tasks: List[MirrorTask] = []
        page_token = None

        while True:
            try:
                result = self.service.tasks().list(
                    tasklist=self.list_id,
                    maxResults=PAGE_SIZE,
                    showCompleted=True,
                    showHidden=True,
                    pageToken=page_token,
                ).execute()
            except REQUEST_ERRORS as e:
                raise _api_error(operation, e) from e

            try:
                tasks.extend(MirrorTask.from_api(item) for item in result.get('items', []))
            except (KeyError, TypeError) as e:
                raise GoogleTasksAPIError(f"Failed to {operation}: malformed task record ({e})", operation) from e

            page_token = result.get('nextPageToken')
            if not page_token:
                break

        return TaskSnapshot.partition(tasks, lambda task: task.is_complete)

    def build_mirror(self, foreign: ForeignTask) -> MirrorTask:
        """Mirror task fields for an Asana task (id is assigned by Google)."""
        return MirrorTask(
            id='',
            title=foreign.name,
            due=due_to_canonical_string(foreign, self.reference_tz),
            notes=self.codec.encode(foreign.notes, foreign.gid),
        )

    def create_task_from_foreign(self, foreign: ForeignTask) -> MirrorTask:
        """Create the mirror of an Asana task and return it as stored by Google."""
        body = self.build_mirror(foreign).to_api()
        try:
            result = self.service.tasks().insert(tasklist=self.list_id, body=body).execute()
        except REQUEST_ERRORS as e:
            raise _api_error(f"create Google Task for Asana task {foreign.gid}", e) from e
        return MirrorTask.from_api(result)

    def delete_task(self, task_id: str):
        try:
            self.service.tasks().delete(tasklist=self.list_id, task=task_id).execute()
        except REQUEST_ERRORS as e:
            raise _api_error(f"delete Google Task {task_id}", e) from e
