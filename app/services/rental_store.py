from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from models.rental import (
    SCAN_PAYMENT_STATUSES,
    Customer,
    PaymentRecord,
    PaymentStatus,
    Product,
    RentalStatus,
    RentalTransaction,
    TransactionType,
    can_transition,
)
from utils.exceptions import StorageError

logger = structlog.get_logger(__name__)

TRANSACTIONS_COLLECTION = "furniture_transactions"
USERS_COLLECTION = "users"
PRODUCTS_COLLECTION = "furniture"


def _sources_for(target: PaymentStatus) -> List[str]:
    """Record statuses allowed to move to `target`."""
    return [s.value for s in PaymentStatus if can_transition(s, target)]


def _as_object_id(ref: Any) -> Any:
    if isinstance(ref, ObjectId):
        return ref
    if isinstance(ref, dict):
        return _as_object_id(ref.get("_id"))
    try:
        return ObjectId(str(ref))
    except (InvalidId, TypeError):
        return ref


@asynccontextmanager
async def _driver_errors(operation: str, **context):
    try:
        yield
    except PyMongoError as e:
        logger.error("storage_operation_failed", operation=operation, error=str(e), **context)
        raise StorageError(f"{operation} failed: {e}") from e


class RentalTransactionStore:
    """Repository for rental transactions and their embedded payment records."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.transactions = db[TRANSACTIONS_COLLECTION]
        self.users = db[USERS_COLLECTION]
        self.products = db[PRODUCTS_COLLECTION]

    async def ensure_indexes(self) -> None:
        async with _driver_errors("ensure_indexes"):
            await self.transactions.create_index("transaction_id", unique=True)
            await self.transactions.create_index([
                ("transaction_type", ASCENDING),
                ("status", ASCENDING),
                ("payment_status", ASCENDING),
            ])
            await self.transactions.create_index("payment_records.status")

    # =====================================
    # READS
    # =====================================

    async def _load_many(self, query: Dict[str, Any], operation: str) -> List[RentalTransaction]:
        results = []
        async with _driver_errors(operation):
            async for doc in self.transactions.find(query):
                try:
                    results.append(RentalTransaction.model_validate(doc))
                except PydanticValidationError as e:
                    logger.warning(
                        "transaction_document_invalid",
                        transaction_id=doc.get("transaction_id"),
                        error=str(e),
                    )
        return results

    async def find_due_scan_candidates(self) -> List[RentalTransaction]:
        statuses = [s.value for s in SCAN_PAYMENT_STATUSES]
        query = {
            "transaction_type": TransactionType.RENT.value,
            "status": RentalStatus.ACTIVE.value,
            "$or": [
                {"payment_status": {"$in": statuses}},
                {"payment_records.status": {"$in": statuses}},
            ],
        }
        return await self._load_many(query, "find_due_scan_candidates")

    async def find_active_rentals(self) -> List[RentalTransaction]:
        query = {
            "transaction_type": TransactionType.RENT.value,
            "status": RentalStatus.ACTIVE.value,
        }
        return await self._load_many(query, "find_active_rentals")

    async def get_transaction(self, transaction_id: str) -> Optional[RentalTransaction]:
        async with _driver_errors("get_transaction", transaction_id=transaction_id):
            doc = await self.transactions.find_one({"transaction_id": transaction_id})
        return RentalTransaction.model_validate(doc) if doc else None

    async def get_customer(self, ref: Any) -> Optional[Customer]:
        if ref is None:
            return None
        async with _driver_errors("get_customer"):
            doc = await self.users.find_one({"_id": _as_object_id(ref)})
        return Customer.model_validate(doc) if doc else None

    async def get_product(self, ref: Any) -> Optional[Product]:
        if ref is None:
            return None
        async with _driver_errors("get_product"):
            doc = await self.products.find_one({
                "$or": [{"_id": _as_object_id(ref)}, {"furniture_id": str(ref)}]
            })
        return Product.model_validate(doc) if doc else None

    # =====================================
    # WRITES
    # =====================================

    async def mark_record_overdue(self, transaction_id: str, due_date: datetime) -> bool:
        """Flip one Pending record to Overdue; False when nothing matched."""
        async with _driver_errors("mark_record_overdue", transaction_id=transaction_id):
            result = await self.transactions.update_one(
                {"transaction_id": transaction_id},
                {"$set": {"payment_records.$[rec].status": PaymentStatus.OVERDUE.value}},
                array_filters=[{
                    "rec.dueDate": due_date,
                    "rec.status": {"$in": _sources_for(PaymentStatus.OVERDUE)},
                }],
            )
        return result.modified_count > 0

    async def append_payment_record(self, transaction_id: str, record: PaymentRecord) -> bool:
        """Append a billing record unless one already exists for its due date."""
        async with _driver_errors("append_payment_record", transaction_id=transaction_id):
            result = await self.transactions.update_one(
                {"transaction_id": transaction_id, "payment_records.dueDate": {"$ne": record.due_date}},
                {"$push": {"payment_records": record.to_mongo()}},
            )
        return result.modified_count > 0

    async def append_monthly_record(self, transaction_id: str, record: PaymentRecord) -> bool:
        """Append a calendar-month record unless that month already has one."""
        async with _driver_errors("append_monthly_record", transaction_id=transaction_id):
            result = await self.transactions.update_one(
                {"transaction_id": transaction_id, "payment_records.month": {"$ne": record.month}},
                {"$push": {"payment_records": record.to_mongo()}},
            )
        return result.modified_count > 0

    async def mark_record_paid(
        self,
        transaction_id: str,
        month: str,
        paid_date: datetime,
        payment_method: Optional[str] = None,
    ) -> bool:
        update = {
            "payment_records.$[rec].status": PaymentStatus.PAID.value,
            "payment_records.$[rec].paidDate": paid_date,
        }
        if payment_method:
            update["payment_records.$[rec].paymentMethod"] = payment_method

        async with _driver_errors("mark_record_paid", transaction_id=transaction_id):
            result = await self.transactions.update_one(
                {"transaction_id": transaction_id},
                {"$set": update},
                array_filters=[{
                    "rec.month": month,
                    "rec.status": {"$in": _sources_for(PaymentStatus.PAID)},
                }],
            )
        return result.modified_count > 0
