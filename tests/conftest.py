"""Shared fixtures: an in-memory store with the PostgresDB surface."""

from __future__ import annotations

import itertools
import os
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from stocklight.config import EngineSettings
from stocklight.core.health_engine import StockHealthEngine
from stocklight.core.inventory_service import InventoryService
from stocklight.core.models import InventorySnapshot, ItemStock, Ticket, TicketStatus, Warehouse
from stocklight.db.postgres import TICKET_UPDATE_FIELDS, TicketConflictError


class InMemoryTransaction:
    """Writes straight to the store; the store undoes them on error."""

    def __init__(self, db: InMemoryDB):
        self._db = db
        self.snapshot = db._snapshot()

    def save_items(self, records) -> None:
        self._db.save_items(records)

    def append_tickets(self, tickets) -> list[Ticket]:
        return self._db.append_tickets(tickets)


class InMemoryDB:
    """Stores warehouses, stock and tickets in lists, mirroring PostgresDB."""

    def __init__(self):
        self.warehouses: list[Warehouse] = []
        self.items: list[ItemStock] = []
        self.tickets: list[Ticket] = []
        self._warehouse_ids = itertools.count(1)
        self._ticket_ids = itertools.count(1)
        self.healthy = True
        # Plays the part of the advisory lock
        self._tx_lock = threading.Lock()

    def health_check(self) -> bool:
        return self.healthy

    @contextmanager
    def transaction(self):
        with self._tx_lock:
            saved = (list(self.items), list(self.tickets))
            try:
                yield InMemoryTransaction(self)
            except Exception:
                self.items, self.tickets = saved
                raise

    def table_counts(self) -> dict[str, int]:
        return {
            "warehouses": len(self.warehouses),
            "item_stock": len(self.items),
            "tickets": len(self.tickets),
            "open_tickets": sum(1 for t in self.tickets if t.is_open),
        }

    def load_snapshot(self) -> InventorySnapshot:
        return self._snapshot()

    def _snapshot(self) -> InventorySnapshot:
        return InventorySnapshot.of(
            self.warehouses, self.items, [replace(t) for t in self.tickets]
        )

    def list_warehouses(self) -> list[Warehouse]:
        return list(self.warehouses)

    def create_warehouse(self, name: str, country: str = "") -> Warehouse:
        warehouse = Warehouse(id=next(self._warehouse_ids), name=name, country=country)
        self.warehouses.append(warehouse)
        return warehouse

    def list_items(self, warehouse_id: int | None = None) -> list[ItemStock]:
        return [i for i in self.items if warehouse_id is None or i.warehouse_id == warehouse_id]

    def save_items(self, records) -> None:
        for record in records:
            for index, item in enumerate(self.items):
                if (item.item_id, item.warehouse_id) == (record.item_id, record.warehouse_id):
                    self.items[index] = record
                    break
            else:
                self.items.append(record)

    def list_tickets(self, status: TicketStatus | None = None, limit: int = 200) -> list[Ticket]:
        tickets = [t for t in reversed(self.tickets) if status is None or t.status == status]
        return tickets[:limit]

    def _open_conflict(self, ticket: Ticket, ignore_id: int | None = None) -> bool:
        return any(
            t.is_open
            and t.id != ignore_id
            and t.item_id == ticket.item_id
            and t.to_warehouse_id == ticket.to_warehouse_id
            for t in self.tickets
        )

    def append_tickets(self, tickets) -> list[Ticket]:
        stored = []
        now = datetime.now(timezone.utc)
        for ticket in tickets:
            if ticket.is_open and self._open_conflict(ticket):
                continue
            saved = replace(ticket, id=next(self._ticket_ids), created_at=now, updated_at=now)
            self.tickets.append(saved)
            stored.append(replace(saved))
        return stored

    def update_ticket(self, ticket_id: int, **fields) -> Ticket | None:
        assert set(fields) <= set(TICKET_UPDATE_FIELDS)
        values = {k: v for k, v in fields.items() if v is not None}
        if "status" in values:
            values["status"] = TicketStatus.parse(values["status"])
        for index, ticket in enumerate(self.tickets):
            if ticket.id == ticket_id:
                updated = replace(ticket, **values, updated_at=datetime.now(timezone.utc))
                if updated.is_open and self._open_conflict(updated, ignore_id=ticket_id):
                    raise TicketConflictError(f"Ticket {ticket_id} would duplicate an open ticket")
                self.tickets[index] = updated
                return replace(updated)
        return None


def make_engine(**overrides) -> StockHealthEngine:
    """Engine with default thresholds, ignoring the process environment."""
    return StockHealthEngine(EngineSettings(_env_file=None, **overrides))


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith(("ENGINE_", "INVENTORY_", "USER_")):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def engine() -> StockHealthEngine:
    return make_engine()


@pytest.fixture
def db() -> InMemoryDB:
    store = InMemoryDB()
    store.create_warehouse("Main Warehouse")  # id 1
    store.create_warehouse("Berlin")  # id 2
    store.create_warehouse("India")  # id 3
    return store


@pytest.fixture
def service(db, engine) -> InventoryService:
    return InventoryService(db=db, engine=engine, order_warehouse_id=3)


@pytest.fixture
def engine_with():
    """Factory for engines with overridden settings."""
    return make_engine
