"""Command-line interface for task/calendar synchronization."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from task_calendar.calendar import CalendarError, GoogleCalendarClient
from task_calendar.config import get_settings
from task_calendar.database import (
    DatabaseSyncMetadataStore,
    close_db,
    create_tables,
    init_db,
)
from task_calendar.models import ConflictChoice, Task
from task_calendar.sync import (
    ConflictPolicy,
    SyncResult,
    SyncSession,
    SyncStatus,
    keep_local_policy,
    keep_remote_policy,
    newest_wins_policy,
)

logger = logging.getLogger(__name__)

TASK_LIST = TypeAdapter(list[Task])

POLICIES: dict[str, ConflictPolicy | None] = {
    "prompt": None,
    "keep-local": keep_local_policy,
    "keep-remote": keep_remote_policy,
    "newest": newest_wins_policy,
}


def load_tasks(path: Path) -> list[Task]:
    """Load a task collection; a missing file is an empty collection."""
    if not path.exists():
        return []
    return TASK_LIST.validate_json(path.read_bytes())


def save_tasks(path: Path, tasks: list[Task]) -> None:
    path.write_bytes(TASK_LIST.dump_json(tasks, indent=2))


def ask_choice(description: str) -> ConflictChoice:
    """Ask on stdin which side of a conflict to keep."""
    while True:
        answer = input(f"{description}\nKeep [l]ocal or [r]emote? ").strip().lower()
        if answer in ("l", "local"):
            return ConflictChoice.KEEP_LOCAL
        if answer in ("r", "remote"):
            return ConflictChoice.KEEP_REMOTE


def print_result(result: SyncResult) -> None:
    print(f"{result.status.value}: {result.message}")
    if result.status == SyncStatus.SUCCESS:
        print(
            f"  created {result.created}, updated {result.updated}, "
            f"deleted {result.deleted}, imported {result.imported}, "
            f"merged {result.merged}, unlinked {result.unlinked}, "
            f"conflicts resolved {result.resolved}"
        )
    for warning in result.warnings:
        print(f"  warning: {warning}")


async def run_sync(args: argparse.Namespace) -> int:
    tasks_path = Path(args.tasks)
    try:
        tasks = load_tasks(tasks_path)
    except ValidationError as e:
        print(f"Invalid task file {tasks_path}: {e}", file=sys.stderr)
        return 2

    client = GoogleCalendarClient.from_authorized_user_file(
        args.credentials, calendar_id=args.calendar
    )

    await init_db()
    try:
        await create_tables()
        session = SyncSession(
            client,
            DatabaseSyncMetadataStore(),
            policy=POLICIES[args.on_conflict],
        )
        result = await session.sync(tasks, trigger="cli")

        while (
            result is not None
            and result.status == SyncStatus.CONFLICTS
            and session.pending_conflicts
        ):
            for conflict in session.pending_conflicts:
                result = await session.resolve(conflict, ask_choice(conflict.description))
    finally:
        await close_db()

    save_tasks(tasks_path, tasks)
    if result is not None:
        print_result(result)
        return 0 if result.success else 1
    return 1


async def run_status(args: argparse.Namespace) -> int:
    calendar_id = args.calendar or get_settings().default_calendar_id
    await init_db()
    try:
        await create_tables()
        state = await DatabaseSyncMetadataStore().get(calendar_id)
    finally:
        await close_db()

    if state.last_sync_at is None:
        print(f"Calendar {calendar_id} has never been synced")
    else:
        print(f"Calendar {calendar_id} last synced at {state.last_sync_at.isoformat()}")
    if state.last_error:
        print(f"Last error: {state.last_error}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Task Calendar Sync - Mirror a task list to Google Calendar"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {settings.app_version}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Run one sync pass")
    sync_parser.add_argument(
        "--tasks",
        required=True,
        help="JSON file holding the task list (rewritten after the sync)",
    )
    sync_parser.add_argument(
        "--credentials",
        required=True,
        help="Authorized-user JSON file with Google OAuth tokens",
    )
    sync_parser.add_argument(
        "--calendar",
        default=None,
        help="Calendar ID (default: DEFAULT_CALENDAR_ID)",
    )
    sync_parser.add_argument(
        "--on-conflict",
        choices=list(POLICIES),
        default="prompt",
        help="How conflicts are decided",
    )

    # Status command
    status_parser = subparsers.add_parser("status", help="Show the last sync time")
    status_parser.add_argument(
        "--calendar",
        default=None,
        help="Calendar ID (default: DEFAULT_CALENDAR_ID)",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "sync":
            return asyncio.run(run_sync(args))
        return asyncio.run(run_status(args))
    except CalendarError as e:
        logger.error(f"Calendar error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
