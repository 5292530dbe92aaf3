"""Stock health classification and auto-ticket decisions.

The engine is a pure function of an ``InventorySnapshot``: it never touches
storage, never mutates stock records, and only proposes new tickets for the
caller to append. Running it twice on the same snapshot (with the first run's
tickets appended) proposes nothing new.
"""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from fractions import Fraction

import structlog

from stocklight.config import EngineSettings, get_settings
from stocklight.core.models import (
    PRODUCTION_DESTINATION,
    DedupKey,
    EngineResult,
    InventorySnapshot,
    ItemStock,
    ReferenceStatusMode,
    ReplenishmentPolicy,
    StatusEntry,
    StockStatus,
    Ticket,
    TicketStatus,
    Warehouse,
)

logger = structlog.get_logger()


def _valid_quantity(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


class StockHealthEngine:
    """Classifies stock against the reference warehouse and plans tickets."""

    def __init__(self, settings: EngineSettings | None = None):
        """Initialize the engine.

        Args:
            settings: Thresholds and policies. If None, uses global settings.
        """
        self._settings = settings or get_settings().engine

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    # Reference resolution

    def resolve_reference(
        self, warehouses: list[Warehouse] | tuple[Warehouse, ...]
    ) -> Warehouse | None:
        """Find the reference warehouse.

        A pinned ``reference_warehouse_id`` wins. Otherwise the first warehouse
        whose name contains the reference marker (case-insensitive) is used, so
        list order breaks ties when several names match.

        Returns:
            The reference warehouse, or None when nothing resolves.
        """
        pinned = self._settings.reference_warehouse_id
        if pinned is not None:
            for warehouse in warehouses:
                if warehouse.id == pinned:
                    return warehouse
            logger.warning("reference_warehouse_missing", reference_warehouse_id=pinned)
            return None

        marker = self._settings.reference_marker.lower()
        matches = [w for w in warehouses if marker in (w.name or "").lower()]
        if not matches:
            logger.warning("reference_warehouse_missing", marker=marker)
            return None
        if len(matches) > 1:
            logger.warning(
                "reference_warehouse_ambiguous",
                marker=marker,
                candidates=[w.id for w in matches],
                chosen=matches[0].id,
            )
        return matches[0]

    # Classification

    def _bucket(self, quantity: int, base: int) -> StockStatus:
        """Bucket quantity/base without floating point drift at the boundaries."""
        scaled = quantity * 100
        if scaled <= self._settings.red_threshold * base:
            return StockStatus.RED
        if scaled <= self._settings.orange_threshold * base:
            return StockStatus.ORANGE
        return StockStatus.GREEN

    def _is_urgent(self, quantity: int, base: int) -> bool:
        return quantity * 100 <= self._settings.urgent_threshold * base

    def _baseline_status(self, record: ItemStock) -> StockStatus:
        if self._settings.reference_status_mode == ReferenceStatusMode.ALWAYS_GREEN:
            return StockStatus.GREEN
        return self._bucket(record.quantity, self._settings.reference_baseline)

    def classify(
        self,
        record: ItemStock,
        reference_record: ItemStock | None,
        reference: Warehouse | None,
    ) -> StockStatus:
        """Classify one stock record against its reference counterpart."""
        if reference is None:
            return StockStatus.UNKNOWN
        if not _valid_quantity(record.quantity):
            logger.warning(
                "malformed_quantity",
                item_id=record.item_id,
                warehouse_id=record.warehouse_id,
                quantity=record.quantity,
            )
            return StockStatus.UNKNOWN

        if record.warehouse_id == reference.id:
            return self._baseline_status(record)

        if reference_record is None or not _valid_quantity(reference_record.quantity):
            logger.warning(
                "counterpart_missing",
                item_id=record.item_id,
                warehouse_id=record.warehouse_id,
                reference_warehouse_id=reference.id,
            )
            return StockStatus.UNKNOWN
        if reference_record.quantity == 0:
            logger.warning(
                "reference_quantity_zero",
                item_id=record.item_id,
                warehouse_id=record.warehouse_id,
            )
            return StockStatus.UNKNOWN

        return self._bucket(record.quantity, reference_record.quantity)

    def _ratio(
        self, record: ItemStock, reference_record: ItemStock | None, reference: Warehouse
    ) -> float | None:
        if record.warehouse_id == reference.id:
            if self._settings.reference_status_mode == ReferenceStatusMode.BASELINE:
                return record.quantity / self._settings.reference_baseline * 100
            return None
        if reference_record is None or not reference_record.quantity:
            return None
        return record.quantity / reference_record.quantity * 100

    def _reference_records(
        self, items: tuple[ItemStock, ...], reference: Warehouse
    ) -> dict[str, ItemStock]:
        records: dict[str, ItemStock] = {}
        for record in items:
            if record.warehouse_id != reference.id:
                continue
            if record.item_id in records:
                logger.warning(
                    "duplicate_stock_record",
                    item_id=record.item_id,
                    warehouse_id=record.warehouse_id,
                )
                continue
            records[record.item_id] = record
        return records

    def status_report(self, snapshot: InventorySnapshot) -> list[StatusEntry]:
        """Classify every stock record in the snapshot, in input order.

        Every record is reported ``unknown`` when no reference resolves.
        """
        return self._status_report(snapshot, self.resolve_reference(snapshot.warehouses))

    def _status_report(
        self, snapshot: InventorySnapshot, reference: Warehouse | None
    ) -> list[StatusEntry]:
        warehouses = snapshot.warehouse_by_id()
        reference_records = (
            self._reference_records(snapshot.items, reference) if reference else {}
        )

        report = []
        for record in snapshot.items:
            warehouse = warehouses.get(record.warehouse_id)
            reference_record = reference_records.get(record.item_id)
            if warehouse is None:
                # Same records the ticket planner skips
                logger.warning(
                    "warehouse_missing", item_id=record.item_id, warehouse_id=record.warehouse_id
                )
                status = StockStatus.UNKNOWN
            else:
                status = self.classify(record, reference_record, reference)
            ratio = None
            if reference is not None and status != StockStatus.UNKNOWN:
                ratio = self._ratio(record, reference_record, reference)
            report.append(
                StatusEntry(
                    warehouse_id=record.warehouse_id,
                    warehouse_name=warehouse.name if warehouse else None,
                    item_id=record.item_id,
                    name=record.name,
                    quantity=record.quantity,
                    status=status,
                    ratio=round(ratio, 2) if ratio is not None else None,
                )
            )
        return report

    # Auto-ticketing

    def replenishment_quantity(self, reference_quantity: int) -> int:
        """Quantity requested by an auto-created ticket."""
        policy = self._settings.replenishment_policy
        if policy == ReplenishmentPolicy.FIXED:
            return self._settings.fixed_replenishment_qty
        if policy == ReplenishmentPolicy.FRACTION_OF_REFERENCE:
            fraction = Fraction(str(self._settings.replenishment_fraction))
            return math.ceil(reference_quantity * fraction)
        return reference_quantity

    def _destination_key(
        self, to_warehouse_id: int | None, warehouses: dict[int, Warehouse]
    ) -> int | str | None:
        if self._settings.dedup_key == DedupKey.WAREHOUSE_NAME:
            if to_warehouse_id is None:
                return PRODUCTION_DESTINATION
            warehouse = warehouses.get(to_warehouse_id)
            return warehouse.name if warehouse else None
        return to_warehouse_id

    def _new_ticket(
        self,
        item_id: str,
        reference: Warehouse,
        to_warehouse_id: int | None,
        quantity: int,
        status: TicketStatus,
        today: date,
    ) -> Ticket:
        return Ticket(
            item_id=item_id,
            from_warehouse_id=reference.id,
            to_warehouse_id=to_warehouse_id,
            quantity=quantity,
            status=status,
            request_date=today,
            collect_date=today + timedelta(days=self._settings.lead_time_days),
            expected_ready="",
            actual_ready="",
            delay_reason="",
            created_by=self._settings.system_user,
        )

    def plan_tickets(
        self, snapshot: InventorySnapshot, now: datetime | None = None
    ) -> tuple[list[Ticket], list[tuple[str, int | None]]]:
        """Decide which replenishment tickets the snapshot requires.

        Args:
            snapshot: Warehouses, stock records and existing tickets
            now: Clock override; defaults to the current UTC time

        Returns:
            Tuple of (tickets to append, suppressed (item_id, to_warehouse_id) pairs)
        """
        reference = self.resolve_reference(snapshot.warehouses)
        if reference is None:
            return [], []
        return self._plan_tickets(snapshot, reference, now)

    def _plan_tickets(
        self,
        snapshot: InventorySnapshot,
        reference: Warehouse,
        now: datetime | None,
    ) -> tuple[list[Ticket], list[tuple[str, int | None]]]:
        today = (now or datetime.now(timezone.utc)).date()
        warehouses = snapshot.warehouse_by_id()

        open_keys = set()
        for ticket in snapshot.tickets:
            if ticket.is_open:
                open_keys.add(
                    (ticket.item_id, self._destination_key(ticket.to_warehouse_id, warehouses))
                )

        groups: dict[str, list[ItemStock]] = defaultdict(list)
        for record in snapshot.items:
            groups[record.item_id].append(record)

        new_tickets: list[Ticket] = []
        suppressed: list[tuple[str, int | None]] = []

        def propose(
            item_id: str, to_warehouse_id: int | None, quantity: int, status: TicketStatus
        ) -> None:
            key = (item_id, self._destination_key(to_warehouse_id, warehouses))
            if key in open_keys:
                logger.info(
                    "ticket_duplicate_suppressed",
                    item_id=item_id,
                    to_warehouse_id=to_warehouse_id,
                )
                suppressed.append((item_id, to_warehouse_id))
                return
            open_keys.add(key)
            new_tickets.append(
                self._new_ticket(item_id, reference, to_warehouse_id, quantity, status, today)
            )

        for item_id, group in groups.items():
            main_records = [r for r in group if r.warehouse_id == reference.id]
            if not main_records:
                continue
            main_record = main_records[0]
            if not _valid_quantity(main_record.quantity):
                logger.warning("malformed_quantity", item_id=item_id, warehouse_id=reference.id)
                continue

            for record in group:
                if record.warehouse_id == reference.id:
                    continue
                if record.warehouse_id not in warehouses:
                    logger.warning(
                        "warehouse_missing", item_id=item_id, warehouse_id=record.warehouse_id
                    )
                    continue
                status = self.classify(record, main_record, reference)
                if status not in (StockStatus.RED, StockStatus.ORANGE):
                    continue
                severity = (
                    TicketStatus.URGENT
                    if self._is_urgent(record.quantity, main_record.quantity)
                    else TicketStatus.PENDING
                )
                propose(
                    item_id,
                    record.warehouse_id,
                    self.replenishment_quantity(main_record.quantity),
                    severity,
                )

            if (
                self._settings.reference_status_mode == ReferenceStatusMode.BASELINE
                and self._baseline_status(main_record) == StockStatus.RED
            ):
                propose(item_id, None, main_record.quantity, TicketStatus.URGENT)

        return new_tickets, suppressed

    def evaluate(self, snapshot: InventorySnapshot, now: datetime | None = None) -> EngineResult:
        """Produce the status report and the tickets the snapshot requires."""
        reference = self.resolve_reference(snapshot.warehouses)
        statuses = self._status_report(snapshot, reference)
        if reference is None:
            return EngineResult(reference=None, statuses=statuses)

        new_tickets, suppressed = self._plan_tickets(snapshot, reference, now)
        if new_tickets:
            logger.info(
                "tickets_planned",
                count=len(new_tickets),
                suppressed=len(suppressed),
                reference_warehouse_id=reference.id,
            )
        return EngineResult(
            reference=reference,
            statuses=statuses,
            new_tickets=new_tickets,
            suppressed=suppressed,
        )
