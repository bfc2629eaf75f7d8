from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from automated_tasks.core.config import get_settings
from automated_tasks.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from automated_tasks.jobs.base import JobFailedError
from automated_tasks.jobs.executor import JOBS, execute_job

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="automated-tasks",
        description="Run one scheduled DSi maintenance job.",
    )
    parser.add_argument("job_name", nargs="?", choices=sorted(JOBS), help="job to run")
    parser.add_argument("--invocation-id", help="correlation id passed to downstream APIs")
    parser.add_argument("--list", action="store_true", help="list the available jobs and exit")
    return parser


async def run_job(job_name: str, invocation_id: str | None = None) -> int:
    settings = get_settings()
    configure_logging(settings.debug)
    telemetry_runtime = setup_telemetry(settings)
    try:
        context = await execute_job(job_name, settings=settings, invocation_id=invocation_id)
    except JobFailedError as exc:
        logger.error("%s", exc, extra={"job_name": exc.job_name})
        return 1
    finally:
        shutdown_telemetry(telemetry_runtime)

    logger.info("%s completed (invocation id: %s)", job_name, context.invocation_id)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.list:
        for name in sorted(JOBS):
            print(name)
        return 0
    if args.job_name is None:
        parser.error("a job name is required")
    return asyncio.run(run_job(args.job_name, args.invocation_id))


if __name__ == "__main__":
    sys.exit(main())
