"""Command-line interface for Mailbox Automation.

This module provides the main entry point for the CLI application. Jobs
created here run in the foreground: continuations are queued in memory and
delivered one after another until the job stops.
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

import structlog

from mailbox_automation import __version__
from mailbox_automation.config import Settings, get_settings
from mailbox_automation.exceptions import MailboxAutomationError, PersistenceError, UpstreamTransient
from mailbox_automation.jobs import InMemoryTaskQueue, JobStatusView
from mailbox_automation.models import ContinuationPayload, Job, RuleCriteria
from mailbox_automation.runtime import Runtime, build_runtime
from mailbox_automation.utils import configure_logging, retry_on_failure

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mailbox-automation", description="Mailbox Automation")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite document store (default: settings store_path)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser("scan", help="Scan the mailbox and build the contact snapshot")
    scan_parser.add_argument("--owner", required=True, help="Mailbox address that owns the job")
    scan_parser.add_argument(
        "--no-run",
        action="store_true",
        help="Only create the job; start it later with 'jobs resume' / 'jobs run'",
    )

    label_parser = subparsers.add_parser("label", help="Apply a rule's labels to existing messages")
    label_parser.add_argument("--owner", required=True, help="Mailbox address that owns the job")
    label_parser.add_argument("--filter-id", required=True, help="Id of the rule/filter being applied")
    label_parser.add_argument(
        "--label",
        dest="labels",
        action="append",
        required=True,
        help="Label id or name to apply (repeatable); missing labels are created",
    )
    label_parser.add_argument("--from", dest="from_", default=None, help="Match sender")
    label_parser.add_argument("--to", default=None, help="Match recipient")
    label_parser.add_argument("--subject", default=None, help="Match subject")
    label_parser.add_argument(
        "--query",
        default=None,
        help="Extra Gmail search terms (same syntax as Gmail search box)",
    )
    label_parser.add_argument("--archive", action="store_true", help="Remove INBOX from matched messages")
    label_parser.add_argument("--no-run", action="store_true", help="Only create the job")

    jobs_parser = subparsers.add_parser("jobs", help="Inspect and control jobs")
    jobs_sub = jobs_parser.add_subparsers(dest="jobs_command", required=True)

    list_parser = jobs_sub.add_parser("list", help="List an owner's jobs, newest first")
    list_parser.add_argument("--owner", required=True)

    for name, help_text in (
        ("show", "Show job status"),
        ("start", "Start a pending job and run it"),
        ("pause", "Pause a running job"),
        ("resume", "Resume a paused job and run it"),
        ("cancel", "Cancel a job; progress so far is kept"),
        ("delete", "Delete a finished or pending job"),
    ):
        p = jobs_sub.add_parser(name, help=help_text)
        p.add_argument("job_id")

    run_parser = jobs_sub.add_parser("run", help="Advance a running job")
    run_parser.add_argument("job_id")
    run_parser.add_argument(
        "--max-batches",
        type=int,
        default=None,
        help="Stop after this many batches (default: run until the job stops)",
    )

    purge_parser = jobs_sub.add_parser("purge", help="Delete expired finished jobs")
    purge_parser.add_argument("--owner", required=True)

    contacts_parser = subparsers.add_parser("contacts", help="Show the contact snapshot")
    contacts_parser.add_argument("--owner", required=True)
    contacts_parser.add_argument("--stats", action="store_true", help="Only print counts")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser


def _print_status(view: JobStatusView) -> None:
    job = view.job
    counters = ", ".join(f"{k}={v}" for k, v in job.counters.model_dump().items())
    eta = f" eta={view.eta_hint}" if view.eta_hint else ""
    print(f"{job.id}\t{job.kind.value}\t{job.status.value}\t{counters}\telapsed={view.elapsed_seconds:.0f}s{eta}")
    print(f"  {view.message}")
    if job.error:
        print(f"  error: {job.error}")


def _drive(runtime: Runtime) -> int:
    """Deliver queued continuations until none are left."""

    queue = runtime.queue
    if not isinstance(queue, InMemoryTaskQueue):
        return 0

    settings = runtime.settings

    @retry_on_failure(
        max_retries=settings.max_retries,
        delay=max(1.0, settings.continuation_delay_seconds),
        exceptions=(UpstreamTransient, PersistenceError),
    )
    def deliver(payload: ContinuationPayload) -> None:
        runtime.service.handle_continuation(payload)

    delivered = 0
    while True:
        task = queue.pop()
        if task is None:
            break
        if task.delay_seconds:
            time.sleep(task.delay_seconds)
        deliver(task.payload)
        delivered += 1

        job = runtime.jobs.get(task.payload.job_id)
        if job is not None:
            _print_status(runtime.service.describe(job))
    return delivered


def _run_job(runtime: Runtime, job: Job) -> int:
    _drive(runtime)
    view = runtime.service.status(job.id)
    _print_status(view)
    return 0 if view.job.error is None else 1


def _cmd_scan(runtime: Runtime, args: argparse.Namespace) -> int:
    service = runtime.service
    active = service.active_jobs(args.owner.lower(), None)
    for job in active:
        print(f"Note: {job.kind.value} job {job.id} is still {job.status.value}")

    job = service.create_scan_job(args.owner)
    print(f"Created scan job {job.id}")
    if args.no_run:
        return 0
    service.start(job.id)
    return _run_job(runtime, job)


def _cmd_label(runtime: Runtime, args: argparse.Namespace) -> int:
    criteria = RuleCriteria(
        from_=args.from_,
        to=args.to,
        subject=args.subject,
        query=args.query,
        archive=args.archive,
    )
    service = runtime.service
    job = service.create_label_job(args.owner, args.filter_id, criteria, args.labels)
    print(f"Created label job {job.id}")
    if args.no_run:
        return 0
    service.start(job.id)
    return _run_job(runtime, job)


def _cmd_jobs(runtime: Runtime, args: argparse.Namespace) -> int:
    service = runtime.service
    command = args.jobs_command

    if command == "list":
        jobs = service.list_for_owner(args.owner.lower())
        if not jobs:
            print("No jobs.")
        for job in jobs:
            _print_status(service.describe(job))
        return 0

    if command == "purge":
        purged = service.purge_expired(args.owner.lower())
        print(f"Purged {purged} expired job(s)")
        return 0

    if command == "show":
        _print_status(service.status(args.job_id))
        return 0
    if command == "start":
        service.start(args.job_id)
        return _run_job(runtime, service.get(args.job_id))
    if command == "pause":
        _print_status(service.describe(service.pause(args.job_id)))
        return 0
    if command == "resume":
        service.resume(args.job_id)
        return _run_job(runtime, service.get(args.job_id))
    if command == "cancel":
        _print_status(service.describe(service.cancel(args.job_id)))
        return 0
    if command == "delete":
        service.delete(args.job_id)
        print(f"Deleted {args.job_id}")
        return 0
    if command == "run":
        result = service.run_invocation(args.job_id, max_batches=args.max_batches)
        print(f"Ran {result.batches} batch(es)")
        if args.max_batches is None:
            return _run_job(runtime, result.job)
        _print_status(service.describe(result.job))
        return 0

    logger.error("unknown_command", command=command)
    return 2


def _cmd_contacts(runtime: Runtime, args: argparse.Namespace) -> int:
    snapshot = runtime.contacts.load(args.owner.lower())
    if snapshot is None:
        print("No contact snapshot yet. Run a scan first.")
        return 0

    print(
        f"Senders: {len(snapshot.senders)}  Recipients: {len(snapshot.recipients)}  "
        f"Merged: {len(snapshot.merged)}  Messages sampled: {snapshot.message_sample_count}"
    )
    if snapshot.updated_at:
        print(f"Updated: {snapshot.updated_at.isoformat()}")
    if not args.stats:
        for address in snapshot.merged:
            print(address)
    return 0


def _cmd_serve(settings: Settings, args: argparse.Namespace) -> int:
    import uvicorn

    from mailbox_automation.api import create_app
    from mailbox_automation.jobs import ThreadingTaskQueue

    queue = ThreadingTaskQueue(max_retries=settings.max_retries)
    app = create_app(build_runtime(settings, queue=queue))
    try:
        uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level.lower())
    finally:
        queue.shutdown()
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Mailbox Automation CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    parser = _build_parser()
    parsed = parser.parse_args(args)

    settings = get_settings()
    if parsed.db is not None:
        settings = settings.model_copy(update={"store_path": parsed.db})

    configure_logging(settings.log_level)
    logger.info("mailbox_automation_started", version=__version__, debug=settings.debug)

    try:
        if parsed.command == "serve":
            return _cmd_serve(settings, parsed)

        runtime = build_runtime(settings)
        if parsed.command == "scan":
            return _cmd_scan(runtime, parsed)
        if parsed.command == "label":
            return _cmd_label(runtime, parsed)
        if parsed.command == "jobs":
            return _cmd_jobs(runtime, parsed)
        if parsed.command == "contacts":
            return _cmd_contacts(runtime, parsed)
    except MailboxAutomationError as exc:
        logger.error("command_failed", command=parsed.command, error_type=type(exc).__name__, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    logger.error("unknown_command", command=parsed.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())
