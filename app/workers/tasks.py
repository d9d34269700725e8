import asyncio
from typing import Any, Dict

import dramatiq
import structlog

from core.config import settings
from core.database import database_session
from core.scheduler_decorators import run_every_day
from metrics.metrics import get_metrics
from services.email_services import create_email_service
from services.payment_scanner import PaymentDueScanner
from services.reminders import ReminderService
from services.rental_store import RentalTransactionStore
from services.scan_lock import build_scan_lock, create_redis_client
from workers import broker  # noqa: F401  (registers the broker before actors)

logger = structlog.get_logger(__name__)


# ---------------------------------------------------
# Async bodies; each actor call owns its event loop and
# therefore its own motor client.
# ---------------------------------------------------

async def run_payment_due_scan() -> Dict[str, Any]:
    metrics = get_metrics()
    redis = create_redis_client(settings.redis_url)
    try:
        async with database_session() as db:
            scanner = PaymentDueScanner(
                RentalTransactionStore(db),
                create_email_service(metrics=metrics),
                lock=build_scan_lock(redis, ttl=settings.payment_scan_lock_ttl),
                metrics=metrics,
            )
            report = await scanner.run_due_scan()
    finally:
        if redis is not None:
            await redis.aclose()
    return report.to_dict()


async def run_payment_reminders() -> Dict[str, Any]:
    metrics = get_metrics()
    async with database_session() as db:
        service = ReminderService(
            RentalTransactionStore(db),
            create_email_service(metrics=metrics),
            metrics=metrics,
        )
        report = await service.check_and_send_reminders()
    return report.to_dict()


async def run_payment_record_generation() -> Dict[str, Any]:
    async with database_session() as db:
        service = ReminderService(RentalTransactionStore(db), notifier=None, metrics=get_metrics())
        report = await service.generate_payment_records()
    return report.to_dict()


# ---------------------------------------------------
# Dramatiq entry points (sync context)
# ---------------------------------------------------

@run_every_day(hour=settings.payment_scan_hour)
@dramatiq.actor(max_retries=0, queue_name="payments")
def daily_payment_due_scan():
    report = asyncio.run(run_payment_due_scan())
    logger.info(
        "daily_payment_due_scan_finished",
        outcome=report["outcome"],
        payment_due_events=report["payment_due_events"],
        failures=report["failures"],
    )


@run_every_day(hour=settings.reminder_hour)
@dramatiq.actor(max_retries=0, queue_name="payments")
def daily_payment_reminders():
    report = asyncio.run(run_payment_reminders())
    logger.info("daily_payment_reminders_finished", **report)


@run_every_day(hour=settings.record_generation_hour)
@dramatiq.actor(max_retries=0, queue_name="payments")
def daily_payment_record_generation():
    report = asyncio.run(run_payment_record_generation())
    logger.info("daily_payment_record_generation_finished", **report)
