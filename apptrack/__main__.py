"""Main entry point for apptrack."""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

from apptrack import __version__
from apptrack.app import App, open_app
from apptrack.config.settings import Settings
from apptrack.errors import AppTrackError
from apptrack.jobs import JobCreate, JobStatus
from apptrack.scheduler import ScheduleStatus
from apptrack.tracker.models import parse_datetime_maybe
from apptrack.utils.logging import configure_logging


def _datetime_arg(value: str) -> datetime:
    parsed = parse_datetime_maybe(value)
    if parsed is None:
        raise argparse.ArgumentTypeError(f"not an ISO date or datetime: {value!r}")
    return parsed


def _load_json(path: Path) -> object:
    return json.loads(path.read_text(encoding="utf-8"))


def _print_json(payload: object) -> None:
    def _default(value: object):
        to_dict = getattr(value, "to_dict", None)
        if callable(to_dict):
            return to_dict()
        return str(value)

    print(json.dumps(payload, indent=2, default=_default))


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="apptrack",
        description="apptrack: application event import and submission scheduling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m apptrack --user alice import events.json
  python -m apptrack --user alice schedule create <job_id> --at 2024-03-01T09:00
  python -m apptrack sweep expired
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Set the log level (overrides settings)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Append log records to this file (overrides settings)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="SQLite database path (overrides settings)",
    )
    parser.add_argument(
        "--user",
        default="default",
        help="Owning user id for user-scoped commands",
    )

    subparsers = parser.add_subparsers(dest="mode", title="commands")

    # Import
    import_parser = subparsers.add_parser(
        "import", help="Import one application event or a list of events"
    )
    import_parser.add_argument("file", type=Path, help="JSON file with an event or a list")

    # Jobs
    jobs_parser = subparsers.add_parser("jobs", help="Manage the job store")
    jobs_sub = jobs_parser.add_subparsers(dest="jobs_cmd")
    jobs_add = jobs_sub.add_parser("add", help="Add a job")
    jobs_add.add_argument("--title", required=True)
    jobs_add.add_argument("--company", required=True)
    jobs_add.add_argument("--location", default="")
    jobs_add.add_argument(
        "--status",
        choices=[status.value for status in JobStatus],
        default=JobStatus.INTERESTED.value,
    )
    jobs_add.add_argument("--url", default="", help="Posting URL")
    jobs_add.add_argument("--deadline", type=_datetime_arg, default=None)
    jobs_list = jobs_sub.add_parser("list", help="List jobs")
    jobs_list.add_argument(
        "--status", choices=[status.value for status in JobStatus], default=None
    )

    # Schedules
    schedule_parser = subparsers.add_parser("schedule", help="Scheduled submissions")
    schedule_sub = schedule_parser.add_subparsers(dest="schedule_cmd")

    create = schedule_sub.add_parser("create", help="Schedule an 'interested' job")
    create.add_argument("job_id")
    create.add_argument("--at", type=_datetime_arg, required=True, dest="scheduled_at")
    create.add_argument("--deadline", type=_datetime_arg, default=None)
    create.add_argument("--email", default=None, help="Notification email")
    create.add_argument("--timezone", default=None)

    listing = schedule_sub.add_parser("list", help="List schedules")
    listing.add_argument(
        "--status", choices=[status.value for status in ScheduleStatus], default=None
    )
    listing.add_argument("--from", type=_datetime_arg, default=None, dest="start")
    listing.add_argument("--to", type=_datetime_arg, default=None, dest="end")

    reschedule = schedule_sub.add_parser("reschedule", help="Move a schedule")
    reschedule.add_argument("schedule_id")
    reschedule.add_argument("--at", type=_datetime_arg, required=True, dest="scheduled_at")
    reschedule.add_argument("--timezone", default=None)

    submit = schedule_sub.add_parser("submit", help="Mark a schedule submitted now")
    submit.add_argument("schedule_id")
    submit.add_argument("--source", default="manual")

    cancel = schedule_sub.add_parser("cancel", help="Cancel a schedule")
    cancel.add_argument("schedule_id")

    schedule_sub.add_parser("eligible", help="Jobs that can be scheduled")

    # Notification email
    email_parser = subparsers.add_parser("email", help="Default notification email")
    email_sub = email_parser.add_subparsers(dest="email_cmd")
    email_sub.add_parser("get", help="Show the effective default email")
    email_set = email_sub.add_parser("set", help="Store a default email")
    email_set.add_argument("email")

    # Background sweeps
    sweep_parser = subparsers.add_parser("sweep", help="Run a background sweep once")
    sweep_sub = sweep_parser.add_subparsers(dest="sweep_cmd")
    sweep_sub.add_parser("reminders", help="Send due reminders")
    expired = sweep_sub.add_parser("expired", help="Expire overdue schedules")
    expired.add_argument("--batch-size", type=int, default=None)

    # Platform links
    info = subparsers.add_parser("platform-info", help="Where a job was seen")
    info.add_argument("job_id")

    return parser


async def _run_import(app: App, parsed: argparse.Namespace) -> int:
    payload = _load_json(parsed.file)
    if isinstance(payload, list):
        results = await app.imports.import_events_bulk(parsed.user, payload)
        _print_json(results)
        return 0 if all(item.get("ok") for item in results) else 1

    result = await app.imports.import_event(parsed.user, payload)
    _print_json(result.to_dict())
    return 0


async def _run_jobs(app: App, parsed: argparse.Namespace) -> int:
    if parsed.jobs_cmd == "add":
        job = await app.jobs.create(
            parsed.user,
            JobCreate(
                title=parsed.title,
                company=parsed.company,
                status=parsed.status,
                location=parsed.location,
                posting_url=parsed.url,
                deadline_at=parsed.deadline,
            ),
        )
        _print_json(job.to_dict())
        return 0

    if parsed.jobs_cmd == "list":
        jobs = await app.jobs.find(parsed.user, status=parsed.status)
        for job in jobs:
            print(f"{job.id} {job.status} {job.company} {job.title}")
        return 0

    print("Unknown jobs command", file=sys.stderr)
    return 1


async def _run_schedule(app: App, parsed: argparse.Namespace) -> int:
    service = app.schedules
    cmd = parsed.schedule_cmd

    if cmd == "create":
        schedule = await service.create_schedule(
            parsed.user,
            parsed.job_id,
            parsed.scheduled_at,
            deadline_at=parsed.deadline,
            notification_email=parsed.email,
            timezone=parsed.timezone,
        )
        _print_json(schedule.to_dict())
        return 0

    if cmd == "list":
        items = await service.list_schedules(
            parsed.user, status=parsed.status, start=parsed.start, end=parsed.end
        )
        _print_json([item.to_dict() for item in items])
        return 0

    if cmd == "reschedule":
        schedule = await service.reschedule(
            parsed.user, parsed.schedule_id, parsed.scheduled_at, timezone=parsed.timezone
        )
        _print_json(schedule.to_dict())
        return 0

    if cmd == "submit":
        schedule = await service.submit_now(
            parsed.user, parsed.schedule_id, source=parsed.source
        )
        _print_json(schedule.to_dict())
        return 0 if schedule.status is ScheduleStatus.SUBMITTED else 1

    if cmd == "cancel":
        schedule = await service.cancel(parsed.user, parsed.schedule_id)
        _print_json(schedule.to_dict())
        return 0

    if cmd == "eligible":
        for job in await service.list_eligible_jobs(parsed.user):
            print(f"{job.id} {job.company} {job.title}")
        return 0

    print("Unknown schedule command", file=sys.stderr)
    return 1


async def _run_email(app: App, parsed: argparse.Namespace) -> int:
    if parsed.email_cmd == "get":
        email = await app.schedules.get_default_email(parsed.user)
        print(email or "")
        return 0 if email else 1

    if parsed.email_cmd == "set":
        print(await app.schedules.set_default_email(parsed.user, parsed.email))
        return 0

    print("Unknown email command", file=sys.stderr)
    return 1


async def _run_sweep(app: App, parsed: argparse.Namespace) -> int:
    if parsed.sweep_cmd == "reminders":
        result = await app.reminders.process_due_reminders()
        _print_json(result.to_dict())
        return 0

    if parsed.sweep_cmd == "expired":
        result = await app.sweeper.process_expired_schedules(batch_size=parsed.batch_size)
        _print_json(result.to_dict())
        return 0 if not result.failed else 1

    print("Unknown sweep command", file=sys.stderr)
    return 1


async def _run_platform_info(app: App, parsed: argparse.Namespace) -> int:
    link = await app.imports.get_platform_info(parsed.user, parsed.job_id)
    if link is None:
        print("Not found")
        return 1
    _print_json(link.to_dict())
    return 0


_COMMANDS = {
    "import": _run_import,
    "jobs": _run_jobs,
    "schedule": _run_schedule,
    "email": _run_email,
    "sweep": _run_sweep,
    "platform-info": _run_platform_info,
}


async def _run(settings: Settings, parsed: argparse.Namespace) -> int:
    async with open_app(settings, db_path=parsed.db) as app:
        return await _COMMANDS[parsed.mode](app, parsed)


def main(args: list[str] | None = None) -> int:
    """Main entry point for the application.

    Args:
        args: Command line arguments (defaults to sys.argv[1:]).

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = create_parser()
    parsed = parser.parse_args(args)

    # Load settings
    try:
        settings = Settings()
    except Exception as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    # Configure logging
    log_level = parsed.log_level or settings.log_level
    logger = configure_logging(level=log_level, log_file=parsed.log_file or settings.log_file)

    # If no command specified, show help
    if parsed.mode is None:
        parser.print_help()
        return 0

    logger.debug("apptrack v%s running %s", __version__, parsed.mode)

    try:
        return asyncio.run(_run(settings, parsed))
    except AppTrackError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
