# tests/test_rental_store.py - query and update shapes sent to motor

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import Decimal128, ObjectId
from pymongo.errors import AutoReconnect

from models.rental import PaymentRecord, PaymentStatus, can_transition
from services.rental_store import RentalTransactionStore
from utils.exceptions import StorageError

DUE = datetime(2024, 6, 2, tzinfo=timezone.utc)


class AsyncCursor:
    def __init__(self, docs):
        self._docs = list(docs)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._docs:
            raise StopAsyncIteration
        return self._docs.pop(0)


def collection(**overrides):
    coll = MagicMock()
    coll.update_one = AsyncMock(return_value=MagicMock(modified_count=1))
    coll.find_one = AsyncMock(return_value=None)
    coll.create_index = AsyncMock()
    for name, value in overrides.items():
        setattr(coll, name, value)
    return coll


@pytest.fixture
def db():
    return {
        "furniture_transactions": collection(),
        "users": collection(),
        "furniture": collection(),
    }


@pytest.fixture
def mongo_store(db):
    return RentalTransactionStore(db)


class TestReads:

    @pytest.mark.asyncio
    async def test_candidate_query_and_decimal128(self, mongo_store, db):
        doc = {
            "transaction_id": "FTXN-1",
            "monthly_rent": Decimal128("1000"),
            "deposit_amount": 500.0,
            "total_paid": Decimal128("2500"),
            "rental_start_date": datetime(2024, 3, 12),
            "payment_records": [
                {"amount": 1000, "paymentMethod": "UPI"},
                {"month": "2024-06", "amount": Decimal128("1000"), "dueDate": DUE, "status": "Pending"},
            ],
        }
        coll = db["furniture_transactions"]
        coll.find = MagicMock(return_value=AsyncCursor([doc]))

        results = await mongo_store.find_due_scan_candidates()

        query = coll.find.call_args.args[0]
        assert query["transaction_type"] == "Rent"
        assert query["status"] == "Active"
        assert {"payment_status": {"$in": ["Pending", "Partial"]}} in query["$or"]
        assert {"payment_records.status": {"$in": ["Pending", "Partial"]}} in query["$or"]

        txn, = results
        assert txn.monthly_rent == Decimal("1000")
        assert txn.months_paid == 2
        assert txn.rental_start_date.tzinfo is not None
        assert len(txn.payment_records) == 1

    @pytest.mark.asyncio
    async def test_invalid_documents_skipped(self, mongo_store, db):
        db["furniture_transactions"].find = MagicMock(return_value=AsyncCursor([
            {"transaction_id": "FTXN-bad", "monthly_rent": -5},
            {"transaction_id": "FTXN-ok", "monthly_rent": 100},
        ]))

        results = await mongo_store.find_active_rentals()

        assert [t.transaction_id for t in results] == ["FTXN-ok"]

    @pytest.mark.asyncio
    async def test_customer_lookup_by_object_id(self, mongo_store, db):
        oid = ObjectId()
        db["users"].find_one.return_value = {"_id": oid, "fullName": "Asha Rao", "email": "asha@example.com"}

        customer = await mongo_store.get_customer(str(oid))

        assert db["users"].find_one.await_args.args[0] == {"_id": oid}
        assert customer.full_name == "Asha Rao"
        assert customer.email == "asha@example.com"

    @pytest.mark.asyncio
    async def test_missing_refs(self, mongo_store, db):
        assert await mongo_store.get_customer(None) is None
        assert await mongo_store.get_product(None) is None
        assert await mongo_store.get_transaction("FTXN-missing") is None
        db["users"].find_one.assert_not_awaited()


class TestWrites:

    @pytest.mark.asyncio
    async def test_mark_overdue_only_matches_pending(self, mongo_store, db):
        changed = await mongo_store.mark_record_overdue("FTXN-1", DUE)

        assert changed is True
        call = db["furniture_transactions"].update_one.await_args
        assert call.args[1] == {"$set": {"payment_records.$[rec].status": "Overdue"}}
        rec_filter, = call.kwargs["array_filters"]
        assert rec_filter["rec.dueDate"] == DUE
        assert rec_filter["rec.status"]["$in"] == ["Pending"]

    @pytest.mark.asyncio
    async def test_mark_overdue_reports_no_change(self, mongo_store, db):
        db["furniture_transactions"].update_one.return_value = MagicMock(modified_count=0)
        assert await mongo_store.mark_record_overdue("FTXN-1", DUE) is False

    @pytest.mark.asyncio
    async def test_append_guards_against_duplicates(self, mongo_store, db):
        record = PaymentRecord.for_due_date(DUE, Decimal("1000"), today=DUE)

        await mongo_store.append_payment_record("FTXN-1", record)

        query, update = db["furniture_transactions"].update_one.await_args.args
        assert query == {"transaction_id": "FTXN-1", "payment_records.dueDate": {"$ne": DUE}}
        pushed = update["$push"]["payment_records"]
        assert pushed["month"] == "2024-06"
        assert pushed["status"] == PaymentStatus.PENDING.value
        assert pushed["amount"] == Decimal128("1000")

    @pytest.mark.asyncio
    async def test_monthly_append_guards_on_month(self, mongo_store, db):
        db["furniture_transactions"].update_one.return_value = MagicMock(modified_count=0)
        record = PaymentRecord.for_due_date(DUE, Decimal("1000"), today=DUE)

        assert await mongo_store.append_monthly_record("FTXN-1", record) is False

        query, update = db["furniture_transactions"].update_one.await_args.args
        assert query == {"transaction_id": "FTXN-1", "payment_records.month": {"$ne": "2024-06"}}
        assert update["$push"]["payment_records"]["dueDate"] == DUE

    @pytest.mark.asyncio
    async def test_mark_paid(self, mongo_store, db):
        paid_at = datetime(2024, 6, 5, tzinfo=timezone.utc)

        await mongo_store.mark_record_paid("FTXN-1", "2024-06", paid_at, payment_method="UPI")

        call = db["furniture_transactions"].update_one.await_args
        assert call.args[1]["$set"]["payment_records.$[rec].paymentMethod"] == "UPI"
        rec_filter, = call.kwargs["array_filters"]
        assert sorted(rec_filter["rec.status"]["$in"]) == ["Overdue", "Pending"]

    @pytest.mark.asyncio
    async def test_driver_errors_wrapped(self, mongo_store, db):
        db["furniture_transactions"].update_one.side_effect = AutoReconnect("primary stepped down")

        with pytest.raises(StorageError) as excinfo:
            await mongo_store.mark_record_overdue("FTXN-1", DUE)

        assert "mark_record_overdue" in str(excinfo.value)
        assert isinstance(excinfo.value.__cause__, AutoReconnect)


class TestRecordTransitions:

    @pytest.mark.parametrize("current,target,allowed", [
        ("Pending", "Overdue", True),
        ("Pending", "Paid", True),
        ("Overdue", "Paid", True),
        ("Overdue", "Pending", False),
        ("Paid", "Overdue", False),
        ("Partial", "Overdue", False),
        ("Partial", "Paid", False),
    ])
    def test_record_state_machine(self, current, target, allowed):
        assert can_transition(PaymentStatus(current), PaymentStatus(target)) is allowed
