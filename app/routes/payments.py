from fastapi import APIRouter, Depends, Request

from core.config import settings
from services.payment_scanner import PaymentDueScanner
from services.reminders import ReminderService
from services.scan_lock import build_scan_lock

router = APIRouter(prefix="/admin", tags=["payments"])


def get_scanner(request: Request) -> PaymentDueScanner:
    state = request.app.state
    return PaymentDueScanner(
        state.rental_store,
        state.email_service,
        lock=build_scan_lock(state.redis, ttl=settings.payment_scan_lock_ttl),
        metrics=state.metrics,
    )


def get_reminder_service(request: Request) -> ReminderService:
    state = request.app.state
    return ReminderService(state.rental_store, state.email_service, metrics=state.metrics)


# --------------------------
# Payment due scan
# --------------------------
@router.post("/payments/scan")
async def trigger_payment_scan(scanner: PaymentDueScanner = Depends(get_scanner)):
    report = await scanner.run_due_scan()
    return report.to_dict()


# --------------------------
# Manual reminders
# --------------------------
@router.post("/rentals/{transaction_id}/reminders")
async def send_rental_reminders(
    transaction_id: str,
    reminders: ReminderService = Depends(get_reminder_service),
):
    sent = await reminders.send_reminders_for_rental(transaction_id)
    return {"transaction_id": transaction_id, "reminders_sent": sent}
