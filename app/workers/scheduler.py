import asyncio
from typing import Iterable, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from core.scheduler_decorators import SCHEDULED_TASKS, ScheduledTask

logger = structlog.get_logger(__name__)


def build_scheduler(tasks: Optional[Iterable[ScheduledTask]] = None) -> AsyncIOScheduler:
    """One APScheduler job per registered actor; each job only enqueues."""
    scheduler = AsyncIOScheduler(timezone="UTC")
    for task in (SCHEDULED_TASKS if tasks is None else tasks):
        scheduler.add_job(
            task.func.send,
            trigger=task.trigger,
            id=task.name,
            name=task.name,
            coalesce=True,
            misfire_grace_time=600,
            max_instances=1,
            replace_existing=True,
            **task.trigger_args,
        )
        logger.info("scheduled_job_registered", job=task.name, trigger=task.trigger, **task.trigger_args)
    return scheduler


async def start_scheduler():
    # importing the actors fills SCHEDULED_TASKS
    import workers.tasks  # noqa: F401

    scheduler = build_scheduler()
    scheduler.start()
    for job in scheduler.get_jobs():
        logger.info("scheduled_job_next_run", job=job.name, next_run=str(job.next_run_time))

    try:
        while True:
            await asyncio.sleep(3600)
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        scheduler.shutdown()
        logger.info("scheduler_stopped")


if __name__ == "__main__":
    asyncio.run(start_scheduler())
