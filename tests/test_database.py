"""
Tests for the relational access layer.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from rental_rag.database import SourceDatabase, create_db_engine
from rental_rag.documents import SOURCE_KINDS
from rental_rag.errors import NotFoundError, StoreError
from rental_rag.models import ChartSpec, ConversationTurn, SourceRef


@pytest.fixture
def rentals(seeded, insert_rows):
    insert_rows(
        "rentals",
        {
            "id": "r1",
            "tenant_id": "t1",
            "rental_number": "R-1001",
            "status": "active",
            "start_date": date(2026, 1, 1),
            "monthly_amount": 650,
            "customer_id": "c1",
            "vehicle_id": "v1",
        },
        {
            "id": "r2",
            "tenant_id": "t1",
            "start_date": date(2026, 2, 1),
            "monthly_amount": 400,
            "customer_id": "c9",
            "vehicle_id": None,
        },
    )


@pytest.mark.asyncio
async def test_active_tenants(tenants, database):
    assert [t.id for t in await database.list_active_tenants()] == ["t1", "t2"]


@pytest.mark.asyncio
async def test_get_tenant_missing(tenants, database):
    with pytest.raises(NotFoundError):
        await database.get_tenant("nope")


@pytest.mark.asyncio
async def test_fetch_record_nests_joined_entities(rentals, database):
    record = await database.fetch_record("t1", SOURCE_KINDS["rentals"].selection, "r1")

    assert record["rental_number"] == "R-1001"
    assert record["customer"] == {"name": "Alice Smith", "email": "alice@example.com"}
    assert record["vehicle"] == {"reg": "AB12 CDE", "make": "Toyota", "model": "Corolla"}


@pytest.mark.asyncio
async def test_joins_never_cross_tenants(rentals, database):
    # r2 points at c9, which belongs to t2
    record = await database.fetch_record("t1", SOURCE_KINDS["rentals"].selection, "r2")

    assert record["customer"] is None
    assert record["vehicle"] is None


@pytest.mark.asyncio
async def test_fetch_records_scoped_and_ordered(seeded, database):
    records = await database.fetch_records("t1", SOURCE_KINDS["customers"].selection)
    assert [r["id"] for r in records] == ["c1", "c2", "c3"]


@pytest.mark.asyncio
async def test_fetch_record_missing(seeded, database):
    with pytest.raises(NotFoundError):
        await database.fetch_record("t1", SOURCE_KINDS["customers"].selection, "c9")


@pytest.mark.asyncio
async def test_change_queue_bookkeeping(enqueue, database):
    enqueue("t1", "customers", "c1", "INSERT")
    enqueue("t1", "customers", "c2", "DELETE")

    pending = await database.fetch_pending_changes("t1")
    assert [item.source_id for item in pending] == ["c1", "c2"]

    await database.mark_processed(pending[0].id)
    await database.mark_processed(pending[1].id, error_message="boom")

    assert (await database.get_change(pending[0].id)).state.value == "done"
    assert (await database.get_change(pending[1].id)).state.value == "failed"
    assert await database.fetch_pending_changes() == []

    assert await database.retry_failed() == 1
    assert [item.source_id for item in await database.fetch_pending_changes()] == ["c2"]


@pytest.mark.asyncio
async def test_turns_round_trip(database):
    start = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)
    chart = ChartSpec(type="line", title="Revenue", data=[{"name": "Jan", "value": 1200.5}])
    await database.save_turns([
        ConversationTurn(
            tenant_id="t1", user_id="u1", conversation_id="conv", role="user",
            content="revenue?", created_at=start,
        ),
        ConversationTurn(
            tenant_id="t1", user_id="u1", conversation_id="conv", role="assistant",
            content="Here you go.", sources=[SourceRef(source_kind="payments", source_id="p1")],
            chart=chart, created_at=start + timedelta(seconds=1),
        ),
        ConversationTurn(
            tenant_id="t2", user_id="u9", conversation_id="conv", role="user",
            content="other tenant", created_at=start + timedelta(seconds=2),
        ),
    ])

    turns = await database.recent_turns("t1", "conv", 10)

    assert [t.content for t in turns] == ["revenue?", "Here you go."]
    assert turns[1].sources == [SourceRef(source_kind="payments", source_id="p1")]
    assert turns[1].chart == chart
    assert await database.recent_turns("t1", "conv", 0) == []


@pytest.mark.asyncio
async def test_metrics(seeded, insert_rows, database):
    insert_rows(
        "payments",
        {"id": "p1", "tenant_id": "t1", "amount": 100, "payment_type": "rental",
         "payment_date": date(2026, 1, 1), "status": "pending"},
        {"id": "p2", "tenant_id": "t1", "amount": 50.5, "payment_type": "rental",
         "payment_date": date(2026, 1, 2), "status": "pending"},
        {"id": "p3", "tenant_id": "t1", "amount": 999, "payment_type": "rental",
         "payment_date": date(2026, 1, 3), "status": "paid"},
    )
    insert_rows(
        "fines",
        {"id": "f1", "tenant_id": "t1", "type": "PCN", "amount": 65, "issue_date": date(2026, 1, 1),
         "due_date": date(2026, 2, 1), "status": "paid"},
        {"id": "f2", "tenant_id": "t1", "type": "PCN", "amount": 65, "issue_date": date(2026, 1, 1),
         "due_date": date(2026, 2, 1), "status": "open"},
    )

    metrics = await database.get_metrics("t1")

    assert metrics["total_customers"] == 3
    assert metrics["active_customers"] == 2
    assert metrics["total_vehicles"] == 2
    assert metrics["available_vehicles"] == 1
    assert metrics["total_rentals"] == 0
    assert metrics["pending_payments"] == pytest.approx(150.5)
    assert (metrics["total_fines"], metrics["unpaid_fines"]) == (2, 1)


@pytest.mark.asyncio
async def test_database_errors_become_store_errors(tmp_path):
    # schema never created
    database = SourceDatabase(engine=create_db_engine(f"sqlite:///{tmp_path / 'empty.db'}"), timeout=5)

    with pytest.raises(StoreError):
        await database.list_active_tenants()
    assert await database.health_check() is True
