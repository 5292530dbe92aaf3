"""Inventory service: stock mutations followed by automatic replenishment."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Iterable

import structlog

from stocklight.config import get_settings
from stocklight.core.health_engine import StockHealthEngine
from stocklight.core.models import (
    EngineResult,
    InventorySnapshot,
    ItemStock,
    StatusEntry,
    Ticket,
    TicketStatus,
    Warehouse,
)
from stocklight.db.postgres import PostgresDB, StockTransaction, TicketConflictError, get_db

logger = structlog.get_logger()


class WarehouseNotFoundError(Exception):
    """Raised when a warehouse id does not exist."""

    pass


class ItemNotFoundError(Exception):
    """Raised when no stock record exists for an item at a warehouse."""

    pass


class TicketNotFoundError(Exception):
    """Raised when a ticket id does not exist."""

    pass


class DuplicateWarehouseError(Exception):
    """Raised when a warehouse with the same name already exists."""

    pass


class DuplicateItemError(Exception):
    """Raised when the item already has a stock record at the warehouse."""

    pass


@dataclass
class OrderLine:
    """One line of an external order."""

    sku: str
    quantity: int


@dataclass
class MutationResult:
    """Stock records written by a mutation and the tickets it opened."""

    records: list[ItemStock] = field(default_factory=list)
    tickets: list[Ticket] = field(default_factory=list)


@dataclass
class TransferResult(MutationResult):
    """Outcome of moving stock between warehouses."""

    moved: int = 0


@dataclass
class OrderResult(MutationResult):
    """Outcome of deducting an external order."""

    # SKUs with no stock record at the order warehouse
    skipped: list[str] = field(default_factory=list)


def _with_records(snapshot: InventorySnapshot, records: list[ItemStock]) -> InventorySnapshot:
    """Return the snapshot with the given stock records inserted or replaced."""
    updated = {(r.item_id, r.warehouse_id): r for r in records}
    items = []
    for item in snapshot.items:
        key = (item.item_id, item.warehouse_id)
        items.append(updated.pop(key, item))
    items.extend(updated.values())
    return replace(snapshot, items=tuple(items))


def _find(snapshot: InventorySnapshot, item_id: str, warehouse_id: int) -> ItemStock | None:
    for item in snapshot.items:
        if item.item_id == item_id and item.warehouse_id == warehouse_id:
            return item
    return None


class InventoryService:
    """Business logic for inventory operations."""

    def __init__(
        self,
        db: PostgresDB | None = None,
        engine: StockHealthEngine | None = None,
        order_warehouse_id: int | None = None,
    ):
        """Initialize inventory service.

        Args:
            db: Database client. If None, uses global instance.
            engine: Stock health engine. If None, one is built from settings.
            order_warehouse_id: Warehouse external orders ship from.
                If None, uses INVENTORY_ORDER_WAREHOUSE_ID.
        """
        self.db = db or get_db()
        self.engine = engine or StockHealthEngine()
        if order_warehouse_id is None:
            order_warehouse_id = get_settings().inventory.order_warehouse_id
        self.order_warehouse_id = order_warehouse_id
        # Serializes mutations within this process; PostgresDB.transaction
        # serializes them across processes
        self._lock = threading.Lock()

    def _require_warehouse(self, snapshot: InventorySnapshot, warehouse_id: int) -> Warehouse:
        warehouse = snapshot.warehouse_by_id().get(warehouse_id)
        if warehouse is None:
            raise WarehouseNotFoundError(f"Warehouse not found: {warehouse_id}")
        return warehouse

    def _commit(self, tx: StockTransaction, records: list[ItemStock]) -> list[Ticket]:
        """Write stock changes and the tickets the resulting state needs.

        Both writes go through ``tx``, so a failed ticket insert also discards
        the stock change.
        """
        result = self.engine.evaluate(_with_records(tx.snapshot, records))
        if records:
            tx.save_items(records)
        if not result.new_tickets:
            return []
        return tx.append_tickets(result.new_tickets)

    # Warehouses

    def list_warehouses(self) -> list[Warehouse]:
        return self.db.list_warehouses()

    def add_warehouse(self, name: str, country: str = "") -> Warehouse:
        """Create a warehouse with a unique, non-blank name.

        Raises:
            ValueError: If the name is blank
            DuplicateWarehouseError: If the name exists, ignoring case
        """
        trimmed = (name or "").strip()
        if not trimmed:
            raise ValueError("Warehouse name is required.")

        with self._lock:
            existing = self.db.list_warehouses()
            if any(w.name.lower() == trimmed.lower() for w in existing):
                raise DuplicateWarehouseError(f"Warehouse already exists: {trimmed}")
            return self.db.create_warehouse(trimmed, country=(country or "").strip())

    # Stock

    def list_items(self, warehouse_id: int | None = None) -> list[ItemStock]:
        return self.db.list_items(warehouse_id=warehouse_id)

    def add_item(
        self,
        item_id: str,
        name: str,
        warehouse_id: int,
        quantity: int = 0,
        type: str = "",
        mg: str = "",
        made_date: str = "",
    ) -> MutationResult:
        """Create a stock record for an item at a warehouse.

        Raises:
            ValueError: If quantity is negative
            WarehouseNotFoundError: If the warehouse does not exist
            DuplicateItemError: If the record already exists
        """
        if quantity < 0:
            raise ValueError(f"Quantity must be non-negative, got: {quantity}")

        with self._lock, self.db.transaction() as tx:
            snapshot = tx.snapshot
            self._require_warehouse(snapshot, warehouse_id)
            if _find(snapshot, item_id, warehouse_id) is not None:
                raise DuplicateItemError(
                    f"Item {item_id} already stocked at warehouse {warehouse_id}"
                )
            record = ItemStock(
                item_id=item_id,
                name=name,
                warehouse_id=warehouse_id,
                quantity=quantity,
                type=type,
                mg=mg,
                made_date=made_date,
            )
            tickets = self._commit(tx, [record])

        logger.info(
            "item_added",
            item_id=item_id,
            warehouse_id=warehouse_id,
            quantity=quantity,
            tickets_created=len(tickets),
        )
        return MutationResult(records=[record], tickets=tickets)

    def set_quantity(
        self, item_id: str, warehouse_id: int, quantity: int, name: str | None = None
    ) -> MutationResult:
        """Overwrite the quantity (and optionally the name) of a stock record.

        Raises:
            ValueError: If quantity is negative
            WarehouseNotFoundError: If the warehouse does not exist
            ItemNotFoundError: If the item is not stocked at the warehouse
        """
        if quantity < 0:
            raise ValueError(f"Quantity must be non-negative, got: {quantity}")

        with self._lock, self.db.transaction() as tx:
            snapshot = tx.snapshot
            self._require_warehouse(snapshot, warehouse_id)
            current = _find(snapshot, item_id, warehouse_id)
            if current is None:
                raise ItemNotFoundError(
                    f"Item {item_id} not found at warehouse {warehouse_id}"
                )
            record = replace(
                current, quantity=quantity, name=name if name is not None else current.name
            )
            tickets = self._commit(tx, [record])

        logger.info(
            "item_quantity_updated",
            item_id=item_id,
            warehouse_id=warehouse_id,
            previous_qty=current.quantity,
            quantity=quantity,
            tickets_created=len(tickets),
        )
        return MutationResult(records=[record], tickets=tickets)

    def transfer(
        self, item_id: str, from_warehouse_id: int, to_warehouse_id: int, quantity: int
    ) -> TransferResult:
        """Move stock between warehouses.

        Moves at most what the source holds, so the source never goes negative.
        The destination record is created when missing.

        Raises:
            ValueError: If quantity is not positive or source equals destination
            WarehouseNotFoundError: If either warehouse does not exist
            ItemNotFoundError: If the source does not stock the item
        """
        if quantity <= 0:
            raise ValueError(f"Quantity must be positive, got: {quantity}")
        if from_warehouse_id == to_warehouse_id:
            raise ValueError("Source and destination warehouses must differ")

        with self._lock, self.db.transaction() as tx:
            snapshot = tx.snapshot
            self._require_warehouse(snapshot, from_warehouse_id)
            self._require_warehouse(snapshot, to_warehouse_id)
            source = _find(snapshot, item_id, from_warehouse_id)
            if source is None:
                raise ItemNotFoundError(
                    f"Item {item_id} not found at warehouse {from_warehouse_id}"
                )
            destination = _find(snapshot, item_id, to_warehouse_id) or replace(
                source, warehouse_id=to_warehouse_id, quantity=0
            )

            moved = min(quantity, source.quantity)
            records = [
                replace(source, quantity=source.quantity - moved),
                replace(destination, quantity=destination.quantity + moved),
            ]
            tickets = self._commit(tx, records)

        if moved < quantity:
            logger.warning(
                "transfer_clamped",
                item_id=item_id,
                requested=quantity,
                moved=moved,
                from_warehouse_id=from_warehouse_id,
            )
        logger.info(
            "stock_transferred",
            item_id=item_id,
            from_warehouse_id=from_warehouse_id,
            to_warehouse_id=to_warehouse_id,
            moved=moved,
            tickets_created=len(tickets),
        )
        return TransferResult(records=records, tickets=tickets, moved=moved)

    def apply_order(self, lines: Iterable[OrderLine]) -> OrderResult:
        """Deduct an external order from the order warehouse.

        Deductions clamp at zero. A SKU missing at the order warehouse but
        stocked at the reference warehouse gets a zero-quantity record so it
        shows up in the health report; other unknown SKUs are skipped.

        Raises:
            WarehouseNotFoundError: If no order warehouse is configured or it does not exist
        """
        if self.order_warehouse_id is None:
            raise WarehouseNotFoundError("No order warehouse configured")

        lines = [line for line in lines if line.sku and line.quantity > 0]

        with self._lock, self.db.transaction() as tx:
            snapshot = tx.snapshot
            self._require_warehouse(snapshot, self.order_warehouse_id)
            reference = self.engine.resolve_reference(snapshot.warehouses)

            pending: dict[str, ItemStock] = {}
            skipped: list[str] = []
            for line in lines:
                record = pending.get(line.sku) or _find(
                    snapshot, line.sku, self.order_warehouse_id
                )
                if record is None:
                    main_record = (
                        _find(snapshot, line.sku, reference.id) if reference else None
                    )
                    if main_record is None:
                        logger.warning("order_sku_unknown", sku=line.sku)
                        skipped.append(line.sku)
                        continue
                    # Created empty; the order itself cannot be served from here
                    pending[line.sku] = replace(
                        main_record, warehouse_id=self.order_warehouse_id, quantity=0
                    )
                    logger.info("order_item_record_created", sku=line.sku)
                    continue

                pending[line.sku] = replace(
                    record, quantity=max(record.quantity - line.quantity, 0)
                )

            records = list(pending.values())
            tickets = self._commit(tx, records)

        logger.info(
            "order_applied",
            lines=len(lines),
            records_updated=len(records),
            skipped=len(skipped),
            tickets_created=len(tickets),
        )
        return OrderResult(records=records, tickets=tickets, skipped=skipped)

    # Health & tickets

    def evaluate(self, apply: bool = True) -> EngineResult:
        """Run the engine on current state, optionally persisting new tickets."""
        if not apply:
            return self.engine.evaluate(self.db.load_snapshot())

        with self._lock, self.db.transaction() as tx:
            result = self.engine.evaluate(tx.snapshot)
            if result.new_tickets:
                result.new_tickets = tx.append_tickets(result.new_tickets)
        return result

    def status_report(self) -> list[StatusEntry]:
        return self.engine.status_report(self.db.load_snapshot())

    def list_tickets(self, status: TicketStatus | None = None, limit: int = 200) -> list[Ticket]:
        return self.db.list_tickets(status=status, limit=limit)

    def count_open_tickets(self) -> int:
        """Number of open tickets across the whole store."""
        return self.db.table_counts()["open_tickets"]

    def create_ticket(
        self,
        item_id: str,
        from_warehouse_id: int | None,
        to_warehouse_id: int | None,
        quantity: int,
        created_by: str,
        status: TicketStatus = TicketStatus.PENDING,
        collect_date: date | None = None,
    ) -> Ticket:
        """Open a ticket by hand.

        Raises:
            ValueError: If quantity is negative
            WarehouseNotFoundError: If a referenced warehouse does not exist
            TicketConflictError: If an open ticket already covers the item and destination
        """
        if quantity < 0:
            raise ValueError(f"Quantity must be non-negative, got: {quantity}")

        with self._lock, self.db.transaction() as tx:
            snapshot = tx.snapshot
            for warehouse_id in (from_warehouse_id, to_warehouse_id):
                if warehouse_id is not None:
                    self._require_warehouse(snapshot, warehouse_id)

            ticket = Ticket(
                item_id=item_id,
                from_warehouse_id=from_warehouse_id,
                to_warehouse_id=to_warehouse_id,
                quantity=quantity,
                status=status,
                request_date=datetime.now(timezone.utc).date(),
                collect_date=collect_date,
                created_by=created_by,
            )
            stored = tx.append_tickets([ticket])

        if not stored:
            raise TicketConflictError(
                f"An open ticket already exists for {item_id} -> {to_warehouse_id or 'Production'}"
            )
        return stored[0]

    def update_ticket(
        self,
        ticket_id: int,
        status: TicketStatus | None = None,
        collect_date: date | None = None,
        expected_ready: str | None = None,
        actual_ready: str | None = None,
        delay_reason: str | None = None,
        available_quantity: int | None = None,
        balance_needed: int | None = None,
        time_needed: str | None = None,
    ) -> Ticket:
        """Record production progress or a status change on a ticket.

        Raises:
            TicketNotFoundError: If the ticket does not exist
            TicketConflictError: If reopening would duplicate an open ticket
        """
        ticket = self.db.update_ticket(
            ticket_id,
            status=status,
            collect_date=collect_date,
            expected_ready=expected_ready,
            actual_ready=actual_ready,
            delay_reason=delay_reason,
            available_quantity=available_quantity,
            balance_needed=balance_needed,
            time_needed=time_needed,
        )
        if ticket is None:
            raise TicketNotFoundError(f"Ticket not found: {ticket_id}")

        logger.info("ticket_updated", ticket_id=ticket_id, status=ticket.status.value)
        return ticket


# Global service instance
_service: InventoryService | None = None


def get_service() -> InventoryService:
    """Get the global inventory service instance."""
    global _service
    if _service is None:
        _service = InventoryService()
    return _service
