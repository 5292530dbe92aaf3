"""PostgreSQL database client for Stocklight."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Iterable

import psycopg
from psycopg.errors import UniqueViolation
import structlog

from stocklight.config import DatabaseSettings, get_settings
from stocklight.core.models import (
    InventorySnapshot,
    ItemStock,
    Ticket,
    TicketStatus,
    Warehouse,
)

logger = structlog.get_logger()

# Transaction-scoped advisory lock taken by every stock mutation
STOCK_LOCK_KEY = 7_150_301

_WAREHOUSE_COLUMNS = "id, name, country"

_ITEM_COLUMNS = "item_id, name, warehouse_id, quantity, type, mg, made_date"

_TICKET_COLUMNS = """
    id, item_id, from_warehouse_id, to_warehouse_id, quantity, status,
    request_date, collect_date, expected_ready, actual_ready, delay_reason,
    available_quantity, balance_needed, time_needed,
    created_by, created_at, updated_at
"""

# Fields a ticket update may touch
TICKET_UPDATE_FIELDS = (
    "status",
    "collect_date",
    "expected_ready",
    "actual_ready",
    "delay_reason",
    "available_quantity",
    "balance_needed",
    "time_needed",
)


class TicketConflictError(Exception):
    """Raised when a ticket change would create a second open ticket."""

    pass


def _row_to_warehouse(row) -> Warehouse:
    return Warehouse(id=row[0], name=row[1], country=row[2] or "")


def _row_to_item(row) -> ItemStock:
    return ItemStock(
        item_id=row[0],
        name=row[1],
        warehouse_id=row[2],
        quantity=row[3],
        type=row[4] or "",
        mg=row[5] or "",
        made_date=row[6] or "",
    )


def _row_to_ticket(row) -> Ticket:
    return Ticket(
        id=row[0],
        item_id=row[1],
        from_warehouse_id=row[2],
        to_warehouse_id=row[3],
        quantity=row[4],
        status=TicketStatus.parse(row[5]),
        request_date=row[6],
        collect_date=row[7],
        expected_ready=row[8] or "",
        actual_ready=row[9] or "",
        delay_reason=row[10] or "",
        available_quantity=row[11],
        balance_needed=row[12],
        time_needed=row[13] or "",
        created_by=row[14],
        created_at=row[15],
        updated_at=row[16],
    )


def _fetch_snapshot(cur) -> InventorySnapshot:
    cur.execute(f"SELECT {_WAREHOUSE_COLUMNS} FROM warehouses ORDER BY id")
    warehouses = [_row_to_warehouse(row) for row in cur.fetchall()]
    cur.execute(f"SELECT {_ITEM_COLUMNS} FROM item_stock ORDER BY id")
    items = [_row_to_item(row) for row in cur.fetchall()]
    cur.execute(f"SELECT {_TICKET_COLUMNS} FROM tickets ORDER BY id")
    tickets = [_row_to_ticket(row) for row in cur.fetchall()]
    return InventorySnapshot.of(warehouses, items, tickets)


def _upsert_items(cur, records: Iterable[ItemStock]) -> None:
    for record in records:
        cur.execute(
            """
            INSERT INTO item_stock (item_id, name, warehouse_id, quantity, type, mg, made_date)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (item_id, warehouse_id) DO UPDATE
            SET name = EXCLUDED.name,
                quantity = EXCLUDED.quantity,
                type = EXCLUDED.type,
                mg = EXCLUDED.mg,
                made_date = EXCLUDED.made_date,
                updated_at = NOW()
            """,
            (
                record.item_id,
                record.name,
                record.warehouse_id,
                record.quantity,
                record.type,
                record.mg,
                record.made_date,
            ),
        )


def _insert_tickets(cur, tickets: Iterable[Ticket]) -> list[Ticket]:
    stored = []
    for ticket in tickets:
        cur.execute(
            f"""
            INSERT INTO tickets
                (item_id, from_warehouse_id, to_warehouse_id, quantity,
                 status, request_date, collect_date, expected_ready,
                 actual_ready, delay_reason, available_quantity,
                 balance_needed, time_needed, created_by)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            RETURNING {_TICKET_COLUMNS}
            """,
            (
                ticket.item_id,
                ticket.from_warehouse_id,
                ticket.to_warehouse_id,
                ticket.quantity,
                ticket.status.value,
                ticket.request_date,
                ticket.collect_date,
                ticket.expected_ready,
                ticket.actual_ready,
                ticket.delay_reason,
                ticket.available_quantity,
                ticket.balance_needed,
                ticket.time_needed,
                ticket.created_by,
            ),
        )
        row = cur.fetchone()
        if row is None:
            # Partial unique index - an open ticket already exists
            logger.debug(
                "ticket_exists",
                item_id=ticket.item_id,
                to_warehouse_id=ticket.to_warehouse_id,
            )
            continue
        stored.append(_row_to_ticket(row))
    return stored


class StockTransaction:
    """Snapshot plus writes that share one locked database transaction."""

    def __init__(self, cur, snapshot: InventorySnapshot):
        self._cur = cur
        self.snapshot = snapshot
        self.created: list[Ticket] = []

    def save_items(self, records: Iterable[ItemStock]) -> None:
        """Insert or update stock records."""
        _upsert_items(self._cur, records)

    def append_tickets(self, tickets: Iterable[Ticket]) -> list[Ticket]:
        """Insert tickets, skipping any that collide with an open ticket.

        Returns:
            The tickets actually stored, with ids and timestamps set
        """
        stored = _insert_tickets(self._cur, tickets)
        self.created.extend(stored)
        return stored


class PostgresDB:
    """PostgreSQL database client using psycopg."""

    def __init__(self, settings: DatabaseSettings | None = None):
        """Initialize database client.

        Args:
            settings: Connection settings. If None, uses global settings.
        """
        self._settings = settings or get_settings().database

    @contextmanager
    def session(self) -> Generator[psycopg.Connection, None, None]:
        """Get a database connection context manager."""
        conn = psycopg.connect(self._settings.conninfo)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[StockTransaction, None, None]:
        """Read a snapshot and write stock and tickets in one transaction.

        The advisory lock is taken before anything is read, so writers in
        other processes run their read-modify-write cycles one at a time.
        It is released on commit or rollback; nothing is kept if the body
        raises.
        """
        with self.session() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT pg_advisory_xact_lock(%s)", (STOCK_LOCK_KEY,))
                tx = StockTransaction(cur, _fetch_snapshot(cur))
                yield tx

        for ticket in tx.created:
            logger.info(
                "ticket_created",
                ticket_id=ticket.id,
                item_id=ticket.item_id,
                to_warehouse_id=ticket.to_warehouse_id,
                status=ticket.status.value,
                created_by=ticket.created_by,
            )

    def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            with self.session() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
            return True
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            return False

    def execute_script(self, statements: Iterable[str]) -> None:
        """Run DDL statements in a single transaction."""
        with self.session() as conn:
            with conn.cursor() as cur:
                for statement in statements:
                    cur.execute(statement)

    def table_counts(self) -> dict[str, int]:
        """Row counts per table plus the number of open tickets."""
        open_values = [s.value for s in TicketStatus if s.is_open]
        with self.session() as conn:
            with conn.cursor() as cur:
                counts = {}
                for table in ("warehouses", "item_stock", "tickets"):
                    cur.execute(f"SELECT COUNT(*) FROM {table}")
                    counts[table] = cur.fetchone()[0]
                cur.execute(
                    "SELECT COUNT(*) FROM tickets WHERE status = ANY(%s)", (open_values,)
                )
                counts["open_tickets"] = cur.fetchone()[0]
        return counts

    # Snapshot

    def load_snapshot(self) -> InventorySnapshot:
        """Read warehouses, stock and tickets from one consistent transaction."""
        with self.session() as conn:
            with conn.cursor() as cur:
                cur.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ")
                return _fetch_snapshot(cur)

    # Warehouse operations

    def list_warehouses(self) -> list[Warehouse]:
        """Get all warehouses in creation order."""
        with self.session() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_WAREHOUSE_COLUMNS} FROM warehouses ORDER BY id")
                rows = cur.fetchall()
        return [_row_to_warehouse(row) for row in rows]

    def create_warehouse(self, name: str, country: str = "") -> Warehouse:
        """Create a new warehouse."""
        with self.session() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO warehouses (name, country) VALUES (%s, %s)
                    RETURNING {_WAREHOUSE_COLUMNS}
                    """,
                    (name, country),
                )
                row = cur.fetchone()
        logger.info("warehouse_created", warehouse_id=row[0], name=row[1])
        return _row_to_warehouse(row)

    # Stock operations

    def list_items(self, warehouse_id: int | None = None) -> list[ItemStock]:
        """Get stock records, optionally for a single warehouse."""
        with self.session() as conn:
            with conn.cursor() as cur:
                if warehouse_id is not None:
                    cur.execute(
                        f"""
                        SELECT {_ITEM_COLUMNS}
                        FROM item_stock
                        WHERE warehouse_id = %s
                        ORDER BY id
                        """,
                        (warehouse_id,),
                    )
                else:
                    cur.execute(f"SELECT {_ITEM_COLUMNS} FROM item_stock ORDER BY id")
                rows = cur.fetchall()
        return [_row_to_item(row) for row in rows]

    # Ticket operations

    def list_tickets(
        self, status: TicketStatus | None = None, limit: int = 200
    ) -> list[Ticket]:
        """Get tickets newest first, optionally filtered by status."""
        with self.session() as conn:
            with conn.cursor() as cur:
                if status:
                    cur.execute(
                        f"""
                        SELECT {_TICKET_COLUMNS}
                        FROM tickets
                        WHERE status = %s
                        ORDER BY id DESC
                        LIMIT %s
                        """,
                        (status.value, limit),
                    )
                else:
                    cur.execute(
                        f"""
                        SELECT {_TICKET_COLUMNS}
                        FROM tickets
                        ORDER BY id DESC
                        LIMIT %s
                        """,
                        (limit,),
                    )
                rows = cur.fetchall()
        return [_row_to_ticket(row) for row in rows]

    def update_ticket(self, ticket_id: int, **fields) -> Ticket | None:
        """Update production fields and/or status of a ticket."""
        unknown = set(fields) - set(TICKET_UPDATE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update ticket fields: {sorted(unknown)}")

        values = {k: v for k, v in fields.items() if v is not None}
        if "status" in values:
            values["status"] = TicketStatus.parse(values["status"]).value

        assignments = ", ".join(f"{name} = %s" for name in values)
        if assignments:
            assignments += ", "
        try:
            with self.session() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"""
                        UPDATE tickets
                        SET {assignments}updated_at = NOW()
                        WHERE id = %s
                        RETURNING {_TICKET_COLUMNS}
                        """,
                        (*values.values(), ticket_id),
                    )
                    row = cur.fetchone()
        except UniqueViolation as e:
            raise TicketConflictError(
                f"Ticket {ticket_id} would duplicate an open ticket"
            ) from e

        if row is None:
            return None
        return _row_to_ticket(row)

    def clear(self) -> None:
        """Delete all rows, tickets first to respect foreign keys."""
        with self.session() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM tickets")
                cur.execute("DELETE FROM item_stock")
                cur.execute("DELETE FROM warehouses")


# Global database instance
_db: PostgresDB | None = None


def get_db() -> PostgresDB:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = PostgresDB()
    return _db
