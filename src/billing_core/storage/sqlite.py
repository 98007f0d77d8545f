"""SQLite ledger store using stdlib ``sqlite3`` + ``asyncio.to_thread``.

Each entity lives in its own table as a JSON document keyed by id.
Versioned entities carry a ``version`` column checked inside the commit
transaction; the two transaction logs carry a normalized UTC
``created_date`` column indexed for range queries.
"""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from typing import Any

import structlog

from billing_core.core.constants import PriceChangeStatus
from billing_core.core.exceptions import StorageError
from billing_core.ledger.models import CostTransaction, CreditBalance, CreditTransaction
from billing_core.storage.base import LedgerStore, WriteBatch, version_conflict
from billing_core.workflows.models import PriceChangeRequest, Referral

logger = structlog.get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cost_transactions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    created_date TEXT NOT NULL,
    service_type TEXT NOT NULL,
    provider_name TEXT NOT NULL,
    doc TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_cost_transactions_created
    ON cost_transactions (created_date);

CREATE TABLE IF NOT EXISTS credit_transactions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    organization_id TEXT NOT NULL,
    created_date TEXT NOT NULL,
    doc TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_credit_transactions_org
    ON credit_transactions (organization_id, seq);
CREATE INDEX IF NOT EXISTS ix_credit_transactions_created
    ON credit_transactions (created_date);

CREATE TABLE IF NOT EXISTS credit_balances (
    organization_id TEXT PRIMARY KEY,
    version INTEGER NOT NULL,
    doc TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS price_change_requests (
    id TEXT PRIMARY KEY,
    provider_service_cost_id TEXT NOT NULL,
    status TEXT NOT NULL,
    detected_at TEXT NOT NULL,
    version INTEGER NOT NULL,
    doc TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS referrals (
    id TEXT PRIMARY KEY,
    referral_code TEXT NOT NULL UNIQUE,
    version INTEGER NOT NULL,
    doc TEXT NOT NULL
);
"""


def _ts(value: datetime) -> str:
    """Fixed-width UTC text so string order equals time order."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class SQLiteLedgerStore(LedgerStore):
    """SQLite-backed ledger store.

    Args:
        database: Path to the SQLite database file, or ``":memory:"``.

    Commits run as one ``BEGIN IMMEDIATE`` transaction; any version
    mismatch rolls the whole batch back.
    """

    def __init__(self, database: str = ":memory:") -> None:
        self._database = database
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    # -- lifecycle ----------------------------------------------------------

    async def connect(self) -> None:
        if self._conn is not None:
            return

        def _connect() -> sqlite3.Connection:
            conn = sqlite3.connect(
                self._database, check_same_thread=False, isolation_level=None
            )
            conn.executescript(_SCHEMA)
            return conn

        self._conn = await asyncio.to_thread(_connect)
        logger.info("sqlite_store_connected", database=self._database)

    async def close(self) -> None:
        if self._conn is not None:
            await asyncio.to_thread(self._conn.close)
            self._conn = None
            logger.info("sqlite_store_closed", database=self._database)

    async def _run(self, fn: Any, *args: Any) -> Any:
        if self._conn is None:
            await self.connect()
        async with self._lock:
            return await asyncio.to_thread(fn, self._conn, *args)

    async def _query(self, sql: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
        def _exec(conn: sqlite3.Connection) -> list[tuple[Any, ...]]:
            return conn.execute(sql, params).fetchall()

        return await self._run(_exec)

    # -- commit ---------------------------------------------------------------

    @staticmethod
    def _write_versioned(
        conn: sqlite3.Connection,
        table: str,
        key_column: str,
        key: str,
        version: int,
        doc: str,
        extra: dict[str, Any],
        kind: str,
    ) -> None:
        row = conn.execute(
            f"SELECT version FROM {table} WHERE {key_column} = ?", (key,)  # noqa: S608
        ).fetchone()
        current = row[0] if row else 0
        if version != current + 1:
            raise version_conflict(kind, key, current, version)
        columns = {key_column: key, "version": version, "doc": doc, **extra}
        if row is None:
            names = ", ".join(columns)
            marks = ", ".join("?" for _ in columns)
            conn.execute(
                f"INSERT INTO {table} ({names}) VALUES ({marks})",  # noqa: S608
                tuple(columns.values()),
            )
        else:
            assignments = ", ".join(f"{name} = ?" for name in columns if name != key_column)
            values = [v for name, v in columns.items() if name != key_column]
            conn.execute(
                f"UPDATE {table} SET {assignments} WHERE {key_column} = ?",  # noqa: S608
                (*values, key),
            )

    @classmethod
    def _apply(cls, conn: sqlite3.Connection, batch: WriteBatch) -> None:
        for balance in batch.balances:
            cls._write_versioned(
                conn,
                "credit_balances",
                "organization_id",
                balance.organization_id,
                balance.version,
                balance.model_dump_json(),
                {},
                "credit balance",
            )
        for request in batch.price_changes:
            cls._write_versioned(
                conn,
                "price_change_requests",
                "id",
                request.id,
                request.version,
                request.model_dump_json(),
                {
                    "provider_service_cost_id": request.provider_service_cost_id,
                    "status": str(request.status),
                    "detected_at": _ts(request.detected_at),
                },
                "price change",
            )
        for referral in batch.referrals:
            cls._write_versioned(
                conn,
                "referrals",
                "id",
                referral.id,
                referral.version,
                referral.model_dump_json(),
                {"referral_code": referral.referral_code},
                "referral",
            )
        conn.executemany(
            "INSERT INTO credit_transactions (id, organization_id, created_date, doc) "
            "VALUES (?, ?, ?, ?)",
            [
                (t.id, t.organization_id, _ts(t.created_date), t.model_dump_json())
                for t in batch.credit_transactions
            ],
        )
        conn.executemany(
            "INSERT INTO cost_transactions "
            "(id, created_date, service_type, provider_name, doc) VALUES (?, ?, ?, ?, ?)",
            [
                (t.id, _ts(t.created_date), t.service_type, t.provider_name, t.model_dump_json())
                for t in batch.cost_transactions
            ],
        )

    async def commit(self, batch: WriteBatch) -> None:
        def _commit(conn: sqlite3.Connection) -> None:
            conn.execute("BEGIN IMMEDIATE")
            try:
                self._apply(conn, batch)
            except sqlite3.IntegrityError as exc:
                conn.execute("ROLLBACK")
                raise StorageError(f"Integrity violation: {exc}", code="INTEGRITY") from exc
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

        await self._run(_commit)
        logger.debug("sqlite_store_committed", records=len(batch))

    # -- reads ----------------------------------------------------------------

    async def list_cost_transactions(
        self,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        service_type: str | None = None,
        provider_name: str | None = None,
    ) -> list[CostTransaction]:
        clauses: list[str] = []
        params: list[Any] = []
        if since is not None:
            clauses.append("created_date >= ?")
            params.append(_ts(since))
        if until is not None:
            clauses.append("created_date < ?")
            params.append(_ts(until))
        if service_type is not None:
            clauses.append("service_type = ?")
            params.append(service_type)
        if provider_name is not None:
            clauses.append("provider_name = ?")
            params.append(provider_name)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._query(
            f"SELECT doc FROM cost_transactions{where} ORDER BY seq",  # noqa: S608
            tuple(params),
        )
        return [CostTransaction.model_validate_json(row[0]) for row in rows]

    async def get_balance(self, organization_id: str) -> CreditBalance | None:
        rows = await self._query(
            "SELECT doc FROM credit_balances WHERE organization_id = ?", (organization_id,)
        )
        return CreditBalance.model_validate_json(rows[0][0]) if rows else None

    async def list_credit_transactions(self, organization_id: str) -> list[CreditTransaction]:
        rows = await self._query(
            "SELECT doc FROM credit_transactions WHERE organization_id = ? ORDER BY seq",
            (organization_id,),
        )
        return [CreditTransaction.model_validate_json(row[0]) for row in rows]

    async def get_price_change(self, request_id: str) -> PriceChangeRequest | None:
        rows = await self._query(
            "SELECT doc FROM price_change_requests WHERE id = ?", (request_id,)
        )
        return PriceChangeRequest.model_validate_json(rows[0][0]) if rows else None

    async def list_price_changes(
        self, status: PriceChangeStatus | None = None
    ) -> list[PriceChangeRequest]:
        if status is None:
            rows = await self._query(
                "SELECT doc FROM price_change_requests ORDER BY detected_at"
            )
        else:
            rows = await self._query(
                "SELECT doc FROM price_change_requests WHERE status = ? ORDER BY detected_at",
                (str(status),),
            )
        return [PriceChangeRequest.model_validate_json(row[0]) for row in rows]

    async def find_pending_price_change(self, cost_id: str) -> PriceChangeRequest | None:
        rows = await self._query(
            "SELECT doc FROM price_change_requests "
            "WHERE provider_service_cost_id = ? AND status = ? ORDER BY detected_at LIMIT 1",
            (cost_id, str(PriceChangeStatus.PENDING_REVIEW)),
        )
        return PriceChangeRequest.model_validate_json(rows[0][0]) if rows else None

    async def get_referral(self, referral_id: str) -> Referral | None:
        rows = await self._query("SELECT doc FROM referrals WHERE id = ?", (referral_id,))
        return Referral.model_validate_json(rows[0][0]) if rows else None

    async def get_referral_by_code(self, code: str) -> Referral | None:
        rows = await self._query(
            "SELECT doc FROM referrals WHERE referral_code = ?", (code,)
        )
        return Referral.model_validate_json(rows[0][0]) if rows else None
