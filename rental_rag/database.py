"""
Relational access for the pipeline: tenants, source records with their joins,
the rag_sync_queue change queue, chat history, and business metrics.

Calls run on a worker thread with a timeout so the event loop never blocks on I/O.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    and_,
    create_engine,
    func,
    literal,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from rental_rag.config import settings
from rental_rag.documents import RecordSelection
from rental_rag.errors import NotFoundError, StoreError
from rental_rag.models import ChangeQueueItem, ChartSpec, ConversationTurn, SourceRef, Tenant


T = TypeVar("T")

metadata = MetaData()


def _money() -> Numeric:
    return Numeric(12, 2, asdecimal=False)


tenants = Table(
    "tenants", metadata,
    Column("id", String(64), primary_key=True),
    Column("company_name", String(255)),
    Column("status", String(32)),
)

customers = Table(
    "customers", metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(64), nullable=False, index=True),
    Column("name", String(255)),
    Column("email", String(255)),
    Column("phone", String(64)),
    Column("customer_type", String(64)),
    Column("type", String(64)),
    Column("status", String(32)),
    Column("is_blocked", Boolean),
    Column("blocked_reason", Text),
    Column("license_number", String(64)),
    Column("id_number", String(64)),
    Column("identity_verification_status", String(32)),
    Column("created_at", DateTime(timezone=True)),
)

vehicles = Table(
    "vehicles", metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(64), nullable=False, index=True),
    Column("reg", String(32)),
    Column("make", String(64)),
    Column("model", String(64)),
    Column("year", Integer),
    Column("color", String(32)),
    Column("colour", String(32)),
    Column("fuel_type", String(32)),
    Column("status", String(32)),
    Column("daily_rent", _money()),
    Column("weekly_rent", _money()),
    Column("monthly_rent", _money()),
    Column("acquisition_type", String(32)),
    Column("acquisition_date", Date),
    Column("mot_due_date", Date),
    Column("tax_due_date", Date),
    Column("is_disposed", Boolean),
    Column("vin", String(32)),
    Column("description", Text),
    Column("created_at", DateTime(timezone=True)),
)

rentals = Table(
    "rentals", metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(64), nullable=False, index=True),
    Column("rental_number", String(32)),
    Column("status", String(32)),
    Column("start_date", Date),
    Column("end_date", Date),
    Column("monthly_amount", _money()),
    Column("payment_mode", String(32)),
    Column("approval_status", String(32)),
    Column("payment_status", String(32)),
    Column("insurance_status", String(32)),
    Column("document_status", String(32)),
    Column("pickup_location", String(255)),
    Column("return_location", String(255)),
    Column("promo_code", String(64)),
    Column("discount_applied", _money()),
    Column("customer_id", String(64)),
    Column("vehicle_id", String(64)),
    Column("created_at", DateTime(timezone=True)),
)

payments = Table(
    "payments", metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(64), nullable=False, index=True),
    Column("amount", _money()),
    Column("payment_type", String(32)),
    Column("payment_date", Date),
    Column("status", String(32)),
    Column("method", String(32)),
    Column("verification_status", String(32)),
    Column("is_early", Boolean),
    Column("capture_status", String(32)),
    Column("refund_status", String(32)),
    Column("refund_amount", _money()),
    Column("customer_id", String(64)),
    Column("rental_id", String(64)),
    Column("vehicle_id", String(64)),
    Column("created_at", DateTime(timezone=True)),
)

fines = Table(
    "fines", metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(64), nullable=False, index=True),
    Column("type", String(64)),
    Column("amount", _money()),
    Column("issue_date", Date),
    Column("due_date", Date),
    Column("status", String(32)),
    Column("liability", String(32)),
    Column("reference_no", String(64)),
    Column("notes", Text),
    Column("vehicle_id", String(64)),
    Column("customer_id", String(64)),
    Column("created_at", DateTime(timezone=True)),
)

plates = Table(
    "plates", metadata,
    Column("id", String(64), primary_key=True),
    Column("tenant_id", String(64), nullable=False, index=True),
    Column("plate_number", String(32)),
    Column("status", String(32)),
    Column("cost", _money()),
    Column("order_date", Date),
    Column("supplier", String(255)),
    Column("notes", Text),
    Column("vehicle_id", String(64)),
    Column("assigned_vehicle_id", String(64)),
    Column("created_at", DateTime(timezone=True)),
)

rag_sync_queue = Table(
    "rag_sync_queue", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_id", String(64), nullable=False, index=True),
    Column("source_table", String(64), nullable=False),
    Column("source_id", String(64), nullable=False),
    Column("action", String(16), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("processed_at", DateTime(timezone=True)),
    Column("error_message", Text),
)

chat_messages = Table(
    "chat_messages", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_id", String(64), nullable=False, index=True),
    Column("user_id", String(64), nullable=False),
    Column("conversation_id", String(64), nullable=False, index=True),
    Column("role", String(16), nullable=False),
    Column("content", Text, nullable=False),
    Column("sources", JSON),
    Column("chart_data", JSON),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """Create an engine; SQLite connections are shared across worker threads."""
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:") or url.endswith(":memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


def _plain(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


class SourceDatabase:
    """SQLAlchemy-backed reads and queue bookkeeping, one method per operation."""

    def __init__(self, engine: Optional[Engine] = None, timeout: Optional[float] = None):
        self.engine = engine or create_db_engine()
        self.timeout = timeout or settings.store_timeout_seconds

    def create_schema(self) -> None:
        metadata.create_all(self.engine)

    async def health_check(self) -> bool:
        """Check if the database answers a trivial query."""
        try:
            await self._run(self._ping)
            return True
        except StoreError:
            return False

    def _ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(select(literal(1)))

    async def _run(self, fn: Callable[..., T], *args) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreError(f"Database call {fn.__name__} timed out after {self.timeout}s") from e
        except SQLAlchemyError as e:
            raise StoreError(f"Database call {fn.__name__} failed: {e}") from e

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    async def list_active_tenants(self) -> List[Tenant]:
        return await self._run(self._list_active_tenants)

    def _list_active_tenants(self) -> List[Tenant]:
        stmt = select(tenants).where(tenants.c.status == "active").order_by(tenants.c.id)
        with self.engine.connect() as conn:
            return [Tenant(**dict(row._mapping)) for row in conn.execute(stmt)]

    async def get_tenant(self, tenant_id: str) -> Tenant:
        return await self._run(self._get_tenant, tenant_id)

    def _get_tenant(self, tenant_id: str) -> Tenant:
        with self.engine.connect() as conn:
            row = conn.execute(select(tenants).where(tenants.c.id == tenant_id)).first()
        if row is None:
            raise NotFoundError(f"Tenant not found: {tenant_id}")
        return Tenant(**dict(row._mapping))

    # ------------------------------------------------------------------
    # Source records
    # ------------------------------------------------------------------

    def _select_records(self, selection: RecordSelection):
        base = metadata.tables[selection.table]
        columns = list(base.c)
        from_clause = base
        for join in selection.joins:
            related = metadata.tables[join.table].alias(join.name)
            columns.extend(related.c[col].label(f"{join.name}__{col}") for col in join.columns)
            from_clause = from_clause.outerjoin(
                related,
                and_(base.c[join.foreign_key] == related.c.id, related.c.tenant_id == base.c.tenant_id),
            )
        return select(*columns).select_from(from_clause), base

    @staticmethod
    def _row_to_record(row, selection: RecordSelection) -> Dict[str, Any]:
        record: Dict[str, Any] = {}
        nested: Dict[str, Dict[str, Any]] = {join.name: {} for join in selection.joins}
        for key, value in row._mapping.items():
            name, sep, column = key.partition("__")
            if sep and name in nested:
                nested[name][column] = _plain(value)
            else:
                record[key] = _plain(value)
        for name, values in nested.items():
            record[name] = values if any(v is not None for v in values.values()) else None
        return record

    async def fetch_records(self, tenant_id: str, selection: RecordSelection) -> List[Dict[str, Any]]:
        """All current rows of one source table for a tenant, with joined entities nested."""
        return await self._run(self._fetch_records, tenant_id, selection)

    def _fetch_records(self, tenant_id: str, selection: RecordSelection) -> List[Dict[str, Any]]:
        stmt, base = self._select_records(selection)
        stmt = stmt.where(base.c.tenant_id == tenant_id).order_by(base.c.id)
        with self.engine.connect() as conn:
            return [self._row_to_record(row, selection) for row in conn.execute(stmt)]

    async def fetch_record(self, tenant_id: str, selection: RecordSelection, record_id: str) -> Dict[str, Any]:
        """One row by id within the tenant; raises NotFoundError when it is gone."""
        return await self._run(self._fetch_record, tenant_id, selection, record_id)

    def _fetch_record(self, tenant_id: str, selection: RecordSelection, record_id: str) -> Dict[str, Any]:
        stmt, base = self._select_records(selection)
        stmt = stmt.where(base.c.tenant_id == tenant_id, base.c.id == record_id)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).first()
        if row is None:
            raise NotFoundError(f"{selection.table}/{record_id} not found for tenant {tenant_id}")
        return self._row_to_record(row, selection)

    # ------------------------------------------------------------------
    # Change queue
    # ------------------------------------------------------------------

    async def fetch_pending_changes(self, tenant_id: Optional[str] = None, limit: int = 100) -> List[ChangeQueueItem]:
        return await self._run(self._fetch_pending_changes, tenant_id, limit)

    def _fetch_pending_changes(self, tenant_id: Optional[str], limit: int) -> List[ChangeQueueItem]:
        stmt = (
            select(rag_sync_queue)
            .where(rag_sync_queue.c.processed_at.is_(None))
            .order_by(rag_sync_queue.c.created_at.asc(), rag_sync_queue.c.id.asc())
            .limit(limit)
        )
        if tenant_id:
            stmt = stmt.where(rag_sync_queue.c.tenant_id == tenant_id)
        with self.engine.connect() as conn:
            return [
                ChangeQueueItem(
                    id=row.id,
                    tenant_id=row.tenant_id,
                    source_kind=row.source_table,
                    source_id=row.source_id,
                    action=row.action,
                    created_at=row.created_at,
                    processed_at=row.processed_at,
                    error_message=row.error_message,
                )
                for row in conn.execute(stmt)
            ]

    async def mark_processed(self, item_id: int, error_message: Optional[str] = None) -> None:
        await self._run(self._mark_processed, item_id, error_message)

    def _mark_processed(self, item_id: int, error_message: Optional[str]) -> None:
        values: Dict[str, Any] = {"processed_at": datetime.now(timezone.utc)}
        if error_message is not None:
            values["error_message"] = error_message
        with self.engine.begin() as conn:
            conn.execute(update(rag_sync_queue).where(rag_sync_queue.c.id == item_id).values(**values))

    async def retry_failed(self, tenant_id: Optional[str] = None) -> int:
        """Return FAILED queue items to PENDING. Operator action only."""
        return await self._run(self._retry_failed, tenant_id)

    def _retry_failed(self, tenant_id: Optional[str]) -> int:
        stmt = (
            update(rag_sync_queue)
            .where(
                rag_sync_queue.c.processed_at.is_not(None),
                rag_sync_queue.c.error_message.is_not(None),
            )
            .values(processed_at=None, error_message=None)
        )
        if tenant_id:
            stmt = stmt.where(rag_sync_queue.c.tenant_id == tenant_id)
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount

    async def get_change(self, item_id: int) -> ChangeQueueItem:
        return await self._run(self._get_change, item_id)

    def _get_change(self, item_id: int) -> ChangeQueueItem:
        with self.engine.connect() as conn:
            row = conn.execute(select(rag_sync_queue).where(rag_sync_queue.c.id == item_id)).first()
        if row is None:
            raise NotFoundError(f"Queue item not found: {item_id}")
        return ChangeQueueItem(
            id=row.id,
            tenant_id=row.tenant_id,
            source_kind=row.source_table,
            source_id=row.source_id,
            action=row.action,
            created_at=row.created_at,
            processed_at=row.processed_at,
            error_message=row.error_message,
        )

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def recent_turns(self, tenant_id: str, conversation_id: str, limit: int) -> List[ConversationTurn]:
        """The `limit` most recent turns of a conversation, oldest first."""
        if limit <= 0:
            return []
        return await self._run(self._recent_turns, tenant_id, conversation_id, limit)

    def _recent_turns(self, tenant_id: str, conversation_id: str, limit: int) -> List[ConversationTurn]:
        stmt = (
            select(chat_messages)
            .where(
                chat_messages.c.tenant_id == tenant_id,
                chat_messages.c.conversation_id == conversation_id,
            )
            .order_by(chat_messages.c.created_at.desc(), chat_messages.c.id.desc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = list(conn.execute(stmt))
        rows.reverse()
        return [
            ConversationTurn(
                tenant_id=row.tenant_id,
                user_id=row.user_id,
                conversation_id=row.conversation_id,
                role=row.role,
                content=row.content,
                sources=[SourceRef(**s) for s in (row.sources or [])],
                chart=ChartSpec.model_validate(row.chart_data) if row.chart_data else None,
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def save_turns(self, turns: List[ConversationTurn]) -> None:
        await self._run(self._save_turns, turns)

    def _save_turns(self, turns: List[ConversationTurn]) -> None:
        rows = [
            {
                "tenant_id": turn.tenant_id,
                "user_id": turn.user_id,
                "conversation_id": turn.conversation_id,
                "role": turn.role,
                "content": turn.content,
                "sources": [s.model_dump() for s in turn.sources],
                "chart_data": turn.chart.model_dump() if turn.chart else None,
                "created_at": turn.created_at,
            }
            for turn in turns
        ]
        with self.engine.begin() as conn:
            # one statement per row keeps id order equal to list order
            for row in rows:
                conn.execute(chat_messages.insert().values(**row))

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    async def get_metrics(self, tenant_id: str) -> Dict[str, Any]:
        """Business metrics snapshot for the assistant's system prompt."""
        return await self._run(self._get_metrics, tenant_id)

    def _get_metrics(self, tenant_id: str) -> Dict[str, Any]:
        def count(table: Table, *conditions) -> Any:
            return (
                select(func.count())
                .select_from(table)
                .where(table.c.tenant_id == tenant_id, *conditions)
                .scalar_subquery()
            )

        stmt = select(
            count(customers).label("total_customers"),
            count(customers, customers.c.status == "active").label("active_customers"),
            count(vehicles).label("total_vehicles"),
            count(vehicles, vehicles.c.status == "available").label("available_vehicles"),
            count(rentals).label("total_rentals"),
            count(rentals, rentals.c.status == "active").label("active_rentals"),
            select(func.coalesce(func.sum(payments.c.amount), 0))
            .where(payments.c.tenant_id == tenant_id, payments.c.status == "pending")
            .scalar_subquery()
            .label("pending_payments"),
            count(fines).label("total_fines"),
            count(fines, fines.c.status != "paid").label("unpaid_fines"),
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).one()
        return dict(row._mapping)
