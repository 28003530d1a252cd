"""Foreground job runner entrypoint."""
import argparse
import json
import sys

import structlog

from dealflow_sync_core.db import init_db
from dealflow_sync_core.jobs import JobKind, get_job, recover_interrupted_jobs
from dealflow_sync_core.util import AlreadyRunning, NotFound

from dealflow_sync_worker.tasks import retry_failed_record, run_job_now

logger = structlog.get_logger()


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="dealflow-sync-worker")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="start a job and run it to completion")
    run.add_argument("kind", choices=[k.value for k in JobKind])
    run.add_argument("--scope", default="all")
    run.add_argument("--direction", choices=["pull", "push", "both"], default="both")
    run.add_argument("--threshold", type=float, default=None)
    run.add_argument("--no-auto-fix", action="store_true")

    retry = sub.add_parser("retry", help="retry one failed record")
    retry.add_argument("record_id")

    recover = sub.add_parser("recover", help="fail jobs left active by a previous process")
    recover.add_argument(
        "--stale-after",
        type=float,
        default=None,
        help="seconds without a heartbeat before an active job counts as abandoned",
    )
    return parser.parse_args(argv)


def configure_logging():
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ]
    )


def main(argv: list[str] | None = None) -> int:
    """Run a job, retry a record or recover interrupted jobs."""
    configure_logging()
    args = _parse_args(argv)
    init_db()

    if args.command == "recover":
        ids = recover_interrupted_jobs(args.stale_after)
        print(json.dumps({"failed_jobs": ids}))
        return 0

    if args.command == "retry":
        try:
            record = retry_failed_record(args.record_id)
        except NotFound as e:
            logger.error("retry_not_found", record_id=args.record_id, error=str(e))
            return 1
        print(record.model_dump_json())
        return 0 if not record.is_open else 2

    options: dict = {}
    if args.kind == JobKind.CRM_SYNC.value:
        options["direction"] = args.direction
    elif args.kind == JobKind.URL_HEALTH.value:
        options["include_auto_fix"] = not args.no_auto_fix
        if args.threshold is not None:
            options["confidence_threshold"] = args.threshold
    try:
        job_id = run_job_now(args.kind, args.scope, options)
    except AlreadyRunning as e:
        logger.error("job_already_running", kind=args.kind, scope=args.scope, job_id=e.job_id)
        return 1
    job = get_job(job_id)
    print(job.model_dump_json())
    return 0 if job.status == "completed" else 1


if __name__ == "__main__":
    sys.exit(main())
