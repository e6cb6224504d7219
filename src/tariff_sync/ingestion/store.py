"""Storage backend: Protocol definition, SQLite implementation, factory."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, date, datetime
from pathlib import Path
from typing import ClassVar, Protocol, runtime_checkable

import aiosqlite

from tariff_sync.core.config import StorageConfig
from tariff_sync.core.exceptions import PersistenceError
from tariff_sync.core.models import StorageBackend as StorageBackendEnum
from tariff_sync.core.models import TariffRecord

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


@runtime_checkable
class TariffStore(Protocol):
    """Abstract storage interface for tariff history."""

    async def upsert_all(self, records: Sequence[TariffRecord]) -> int: ...
    async def list_tariffs(
        self,
        on_date: date | None = None,
        warehouse: str | None = None,
        is_marketplace: bool | None = None,
    ) -> list[TariffRecord]: ...
    async def count(self, on_date: date | None = None) -> int: ...
    async def latest_date(self) -> date | None: ...
    async def initialize(self) -> None: ...
    async def close(self) -> None: ...
    async def health_check(self) -> bool: ...


_UPSERT_SQL = """INSERT INTO tariffs
       (date, box_size, coefficient, warehouse_name, geo_name,
        is_marketplace, updated_at)
       VALUES (?, ?, ?, ?, ?, ?, ?)
       ON CONFLICT(date, box_size, warehouse_name, is_marketplace)
       DO UPDATE SET coefficient = excluded.coefficient,
                     updated_at = excluded.updated_at"""


class SqliteTariffStore:
    """SQLite implementation of the tariff store.

    Uses aiosqlite for async access, WAL mode for concurrent reads, and a
    version-tracked migration system. The connection runs in autocommit
    mode; every write goes through an explicit ``BEGIN IMMEDIATE`` so a
    batch is committed or rolled back as a whole.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS tariffs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date TEXT NOT NULL,
                    box_size INTEGER NOT NULL,
                    coefficient NUMERIC(5, 2) NOT NULL
                        CHECK (coefficient >= 0 AND coefficient < 1000),
                    warehouse_name TEXT NOT NULL
                        CHECK (length(warehouse_name) > 0),
                    geo_name TEXT,
                    is_marketplace INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    UNIQUE(date, box_size, warehouse_name, is_marketplace)
                )""",
                "CREATE INDEX IF NOT EXISTS idx_tariffs_date ON tariffs(date)",
            ],
        ),
    }

    def __init__(
        self,
        config: StorageConfig,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._path = config.sqlite_path
        self._now = now
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection, enable WAL, run migrations."""
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self._path, isolation_level=None)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            current = await self._get_schema_version()
            await self._apply_migrations(current)
        except Exception as e:
            raise PersistenceError(
                f"Failed to initialize SQLite store: {e}",
                context={"operation": "initialize", "path": self._path},
            ) from e

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None
        except Exception:
            return False

    # --- Schema Migration ---

    async def _get_schema_version(self) -> int:
        try:
            async with self._db.execute(
                "SELECT MAX(version) FROM schema_version"
            ) as cursor:
                row = await cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except aiosqlite.OperationalError:
            return 0

    async def _apply_migrations(self, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            await self._db.execute("BEGIN IMMEDIATE")
            try:
                for sql in statements:
                    await self._db.execute(sql)
                await self._db.execute(
                    "INSERT INTO schema_version (version) VALUES (?)", (version,)
                )
            except Exception:
                await self._db.execute("ROLLBACK")
                raise
            await self._db.execute("COMMIT")

    # --- Tariff Operations ---

    async def upsert_all(self, records: Sequence[TariffRecord]) -> int:
        """Insert or merge every record inside one transaction.

        A row matching the natural key only has ``coefficient`` and
        ``updated_at`` replaced. Any failure rolls back the whole batch.

        Returns:
            Number of records written.

        Raises:
            PersistenceError: The transaction failed and was rolled back.
        """
        db = self._require_connection("upsert")
        if not records:
            return 0

        written_at = self._now().isoformat()
        current: TariffRecord | None = None
        commit: asyncio.Future | None = None
        try:
            await db.execute("BEGIN IMMEDIATE")
            for current in records:
                await db.execute(_UPSERT_SQL, self._record_params(current, written_at))
            # once issued, COMMIT runs to completion even if the caller is cancelled
            commit = asyncio.ensure_future(db.execute("COMMIT"))
            await asyncio.shield(commit)
        except asyncio.CancelledError:
            if commit is None:
                await self._rollback(db)
            else:
                logger.warning(
                    "Upsert of %d tariffs cancelled after COMMIT was issued; "
                    "the commit completes in the background",
                    len(records),
                )
            raise
        except Exception as e:
            await self._rollback(db)
            context: dict = {"operation": "upsert", "table": "tariffs"}
            if current is not None:
                context["key"] = [str(part) for part in current.natural_key]
            raise PersistenceError(
                f"Failed to upsert tariffs, batch rolled back: {e}",
                context=context,
            ) from e

        logger.info("Upserted %d tariffs", len(records))
        return len(records)

    async def list_tariffs(
        self,
        on_date: date | None = None,
        warehouse: str | None = None,
        is_marketplace: bool | None = None,
    ) -> list[TariffRecord]:
        db = self._require_connection("query")
        try:
            query = "SELECT * FROM tariffs WHERE 1=1"
            params: list = []
            if on_date is not None:
                query += " AND date = ?"
                params.append(on_date.isoformat())
            if warehouse is not None:
                query += " AND warehouse_name = ?"
                params.append(warehouse)
            if is_marketplace is not None:
                query += " AND is_marketplace = ?"
                params.append(int(is_marketplace))
            query += " ORDER BY date ASC, warehouse_name ASC, is_marketplace ASC"
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_record(r) for r in rows]
        except Exception as e:
            raise PersistenceError(
                f"Failed to list tariffs: {e}",
                context={"operation": "query", "table": "tariffs"},
            ) from e

    async def count(self, on_date: date | None = None) -> int:
        db = self._require_connection("query")
        try:
            if on_date is None:
                cursor = await db.execute("SELECT COUNT(*) FROM tariffs")
            else:
                cursor = await db.execute(
                    "SELECT COUNT(*) FROM tariffs WHERE date = ?",
                    (on_date.isoformat(),),
                )
            async with cursor:
                row = await cursor.fetchone()
            return int(row[0])
        except Exception as e:
            raise PersistenceError(
                f"Failed to count tariffs: {e}",
                context={"operation": "query", "table": "tariffs"},
            ) from e

    async def latest_date(self) -> date | None:
        db = self._require_connection("query")
        try:
            async with db.execute("SELECT MAX(date) FROM tariffs") as cursor:
                row = await cursor.fetchone()
            return date.fromisoformat(row[0]) if row[0] else None
        except Exception as e:
            raise PersistenceError(
                f"Failed to read latest tariff date: {e}",
                context={"operation": "query", "table": "tariffs"},
            ) from e

    # --- Helpers ---

    def _require_connection(self, operation: str) -> aiosqlite.Connection:
        if self._db is None:
            raise PersistenceError(
                "Store is not initialized",
                context={"operation": operation, "table": "tariffs"},
            )
        return self._db

    @staticmethod
    async def _rollback(db: aiosqlite.Connection) -> None:
        try:
            await db.execute("ROLLBACK")
        except aiosqlite.Error:
            # BEGIN itself failed; there is nothing to roll back
            logger.debug("Rollback skipped, no open transaction")

    @staticmethod
    def _record_params(record: TariffRecord, written_at: str) -> tuple:
        return (
            record.date.isoformat(),
            record.box_size,
            str(record.coefficient),
            record.warehouse_name,
            record.geo_name,
            int(record.is_marketplace),
            written_at,
        )

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> TariffRecord:
        return TariffRecord(
            date=date.fromisoformat(row["date"]),
            box_size=row["box_size"],
            coefficient=row["coefficient"],
            warehouse_name=row["warehouse_name"],
            geo_name=row["geo_name"],
            is_marketplace=bool(row["is_marketplace"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


async def create_store(config: StorageConfig) -> SqliteTariffStore:
    """Create and initialize a storage backend based on configuration."""
    if config.backend == StorageBackendEnum.SQLITE:
        store = SqliteTariffStore(config)
        await store.initialize()
        return store
    raise PersistenceError(
        f"Unsupported storage backend: {config.backend}",
        context={"operation": "create_store", "backend": str(config.backend)},
    )
