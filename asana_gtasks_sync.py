"""
Asana - Google Tasks Sync

Mirrors incomplete Asana tasks (with a due date) from "My Tasks" into a
dedicated Google Tasks list and propagates completions both ways:

- completing a mirror in Google Tasks completes the Asana task, after which
  the mirror is deleted
- completing a task in Asana deletes its mirror

There is no local database. Each mirror carries its Asana gid at the end of
its notes, and every cycle rebuilds the state from both services.

Setup:
1. Create an Asana Personal Access Token and look up the gid of your user
   task list; export them as ASANA_PAT and PROJECT_ME_GID (or put them in
   .env or the config file)
2. Create a Google Tasks list titled "Asana"
3. Download OAuth client credentials ("Desktop application") from Google
   Cloud Console as client_secret.json
4. Run once interactively to authorize Google; the token is cached in
   token_cache.json. Set PAUSE_SYNC=true to keep a deployed instance idle
   while authorizing out of band.
"""

import argparse
import logging
import os
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import tzinfo
from typing import Any, Callable, Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from asana_tasks import ASANA_BASE_URL, AsanaClient
from confparser import create_default_config, load_config
from gtasks_mirror import GoogleTasksMirror
from reconciler import Reconciler, SyncReport
from sync_errors import ConfigurationError, ErrorPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = 'asana-gtasks-sync.conf'

DEFAULT_CONFIG_TEMPLATE = """# Asana - Google Tasks Sync Configuration

# Asana Personal Access Token (or set ASANA_PAT)
asana_token =

# GID of your Asana user task list (or set PROJECT_ME_GID)
asana_user_task_list =

# Completed Asana tasks are picked up for this many hours
completed_window_hours = 24

# Zone whose calendar date is used for timed Asana due dates
reference_timezone = America/Chicago

# Google API credentials - download from Google Cloud Console
google_credentials_file = client_secret.json
google_token_file = token_cache.json

# Google Tasks list holding the mirrored tasks
target_gtasks_list = Asana

# Seconds between sync cycles
sync_interval_seconds = 10

# Exit on any remote error instead of retrying on the next cycle
exit_on_error = false
"""

DEFAULTS: Dict[str, Any] = {
    'asana_token': '',
    'asana_user_task_list': '',
    'asana_base_url': ASANA_BASE_URL,
    'completed_window_hours': 24,
    'asana_request_timeout': 30,
    'reference_timezone': 'America/Chicago',
    'google_credentials_file': 'client_secret.json',
    'google_token_file': 'token_cache.json',
    'target_gtasks_list': 'Asana',
    'sync_interval_seconds': 10,
    'pause_sync': False,
    'exit_on_error': False,
}

ENV_KEYS = {
    'asana_token': 'ASANA_PAT',
    'asana_user_task_list': 'PROJECT_ME_GID',
    'asana_base_url': 'ASANA_BASE_URL',
    'reference_timezone': 'REFERENCE_TIMEZONE',
    'google_credentials_file': 'GOOGLE_CREDENTIALS_FILE',
    'google_token_file': 'GOOGLE_TOKEN_FILE',
    'pause_sync': 'PAUSE_SYNC',
}

STRING_KEYS = ('asana_token', 'asana_user_task_list', 'target_gtasks_list')

REQUIRED_KEYS = ('asana_token', 'asana_user_task_list')


class StdoutFilter(logging.Filter):
    """Pass DEBUG, INFO and WARNING records."""
    def filter(self, record):
        return record.levelno < logging.ERROR


class StderrFilter(logging.Filter):
    """Pass ERROR and CRITICAL records."""
    def filter(self, record):
        return record.levelno >= logging.ERROR


def setup_logging(verbose=False):
    """Configure root logging: INFO/WARNING to stdout, ERROR/CRITICAL to stderr."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.addFilter(StdoutFilter())
    stdout_handler.setFormatter(formatter)
    root.addHandler(stdout_handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.addFilter(StderrFilter())
    stderr_handler.setFormatter(formatter)
    root.addHandler(stderr_handler)

    # discovery client logs every request at INFO
    logging.getLogger('googleapiclient.discovery_cache').setLevel(logging.ERROR)


@dataclass(frozen=True)
class SyncSettings:
    asana_token: str
    asana_user_task_list: str
    asana_base_url: str = ASANA_BASE_URL
    completed_window_hours: int = 24
    asana_request_timeout: float = 30
    reference_timezone: tzinfo = ZoneInfo('America/Chicago')
    google_credentials_file: str = 'client_secret.json'
    google_token_file: str = 'token_cache.json'
    target_gtasks_list: str = 'Asana'
    sync_interval_seconds: float = 10
    pause_sync: bool = False
    exit_on_error: bool = False


def _number(config: Dict[str, Any], key: str, kind: Callable[[Any], Any]):
    value = config[key]
    if isinstance(value, bool):
        raise ConfigurationError(f"{key} must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from e


def load_settings(config_file: str = DEFAULT_CONFIG_FILE,
                  environ: Optional[Mapping[str, str]] = None,
                  require_credentials: bool = True) -> SyncSettings:
    """Read settings from the config file and environment.

    Raises:
        ConfigurationError: on a missing or malformed setting
    """
    config = load_config(config_file, DEFAULTS, env_keys=ENV_KEYS, environ=environ, string_keys=STRING_KEYS)

    if require_credentials:
        for key in REQUIRED_KEYS:
            if not config.get(key):
                raise ConfigurationError(
                    f"{key} is not configured. Set {ENV_KEYS[key]} or add it to {config_file}"
                )

    try:
        reference_tz = ZoneInfo(str(config['reference_timezone']))
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown reference_timezone: {config['reference_timezone']}") from e

    return SyncSettings(
        asana_token=str(config['asana_token']),
        asana_user_task_list=str(config['asana_user_task_list']),
        asana_base_url=str(config['asana_base_url']),
        completed_window_hours=_number(config, 'completed_window_hours', int),
        asana_request_timeout=_number(config, 'asana_request_timeout', float),
        reference_timezone=reference_tz,
        google_credentials_file=str(config['google_credentials_file']),
        google_token_file=str(config['google_token_file']),
        target_gtasks_list=str(config['target_gtasks_list']),
        sync_interval_seconds=_number(config, 'sync_interval_seconds', float),
        pause_sync=bool(config['pause_sync']),
        exit_on_error=bool(config['exit_on_error']),
    )


class SyncDriver:
    """Runs sync cycles one after another with a fixed pause in between."""

    def __init__(self, asana, mirror_list, reconciler: Reconciler, interval: float = 10,
                 policy: Optional[ErrorPolicy] = None, dry_run: bool = False,
                 sleep: Callable[[float], None] = time.sleep):
        self.asana = asana
        self.mirror_list = mirror_list
        self.reconciler = reconciler
        self.interval = interval
        self.policy = policy or ErrorPolicy()
        self.dry_run = dry_run
        self.sleep = sleep

    def fetch_snapshots(self):
        """Fetch both sides at the same time."""
        with ThreadPoolExecutor(max_workers=2) as pool:
            foreign = pool.submit(self.asana.list_tasks)
            mirrors = pool.submit(self.mirror_list.list_tasks)
            return foreign.result(), mirrors.result()

    def run_cycle(self) -> SyncReport:
        foreign, mirrors = self.fetch_snapshots()
        logger.debug(
            f"Snapshot: Asana {len(foreign.incomplete)} incomplete / {len(foreign.complete)} complete, "
            f"Google {len(mirrors.incomplete)} incomplete / {len(mirrors.complete)} complete"
        )

        report = self.reconciler.reconcile(foreign, mirrors, dry_run=self.dry_run)
        if report.total:
            logger.info(f"Sync summary: {report}")
        else:
            logger.debug("Nothing to sync")
        return report

    def run_forever(self, max_cycles: Optional[int] = None):
        """Run cycles until interrupted, a fatal error occurs, or max_cycles is reached.

        Remote errors the policy deems retryable are logged and the next cycle
        runs after the usual interval. Anything else propagates.
        """
        logger.info(f"Starting continuous sync every {self.interval:g} seconds")
        cycles = 0
        try:
            while True:
                try:
                    self.run_cycle()
                except Exception as e:
                    if self.policy.is_fatal(e):
                        raise
                    logger.error(f"Sync cycle failed, retrying next cycle: {e}")
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                self.sleep(self.interval)
        except KeyboardInterrupt:
            logger.info("Synchronization stopped by user")


def pause_forever(sleep: Callable[[float], None] = time.sleep):
    """Idle without syncing, e.g. while Google is authorized out of band."""
    logger.warning("PAUSE_SYNC is set, not syncing. Unset it and restart to resume.")
    while True:
        sleep(3600)


def build_driver(settings: SyncSettings, dry_run: bool = False,
                 interval: Optional[float] = None) -> SyncDriver:
    """Connect to both services and wire up the driver."""
    asana = AsanaClient(
        settings.asana_token,
        settings.asana_user_task_list,
        base_url=settings.asana_base_url,
        window_hours=settings.completed_window_hours,
        timeout=settings.asana_request_timeout,
    )
    mirror_list = GoogleTasksMirror.connect(
        settings.google_credentials_file,
        settings.google_token_file,
        list_title=settings.target_gtasks_list,
        reference_tz=settings.reference_timezone,
    )
    reconciler = Reconciler(asana, mirror_list, reference_tz=settings.reference_timezone)
    return SyncDriver(
        asana,
        mirror_list,
        reconciler,
        interval=settings.sync_interval_seconds if interval is None else interval,
        policy=ErrorPolicy(exit_on_error=settings.exit_on_error),
        dry_run=dry_run,
    )


def main(argv=None):
    """Main function with CLI interface."""
    parser = argparse.ArgumentParser(description="Sync tasks between Asana and Google Tasks")
    parser.add_argument('--config', default=DEFAULT_CONFIG_FILE,
                        help=f'Config file path (default: {DEFAULT_CONFIG_FILE})')
    parser.add_argument('--once', action='store_true', help='Run a single sync cycle and exit')
    parser.add_argument('--interval', type=float, help='Override seconds between sync cycles')
    parser.add_argument('--dry-run', action='store_true', help='Show what would be done without making any changes')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose logging')
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)
    load_dotenv()

    if not os.path.exists(args.config):
        create_default_config(args.config, DEFAULT_CONFIG_TEMPLATE)
        logger.warning(f"Created default config file: {args.config}")

    try:
        settings = load_settings(args.config, require_credentials=False)
        if settings.pause_sync:
            pause_forever()

        settings = load_settings(args.config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except KeyboardInterrupt:
        return 0

    try:
        driver = build_driver(settings, dry_run=args.dry_run, interval=args.interval)
        if args.once:
            driver.run_cycle()
        else:
            driver.run_forever()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        if args.verbose:
            logger.exception("Full traceback")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
