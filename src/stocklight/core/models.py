"""Domain models for Stocklight."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

PRODUCTION_DESTINATION = "Production"


class StockStatus(str, Enum):
    """Traffic-light health of one stock record."""

    GREEN = "green"
    ORANGE = "orange"
    RED = "red"
    UNKNOWN = "unknown"


class TicketStatus(str, Enum):
    """Status of a replenishment ticket."""

    PENDING = "PENDING"
    URGENT = "URGENT"
    OPEN = "OPEN"
    IN_PRODUCTION = "IN_PRODUCTION"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"
    CLOSED = "CLOSED"

    @property
    def is_open(self) -> bool:
        """Open tickets block creation of another ticket for the same shortage."""
        return self in OPEN_TICKET_STATUSES

    @classmethod
    def parse(cls, value: str | TicketStatus) -> TicketStatus:
        """Parse a status string, accepting legacy spellings like 'Pending'."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().upper().replace(" ", "_").replace("-", "_")
        return cls(normalized)


OPEN_TICKET_STATUSES = frozenset(
    {
        TicketStatus.PENDING,
        TicketStatus.URGENT,
        TicketStatus.OPEN,
        TicketStatus.IN_PRODUCTION,
    }
)


class ReferenceStatusMode(str, Enum):
    """How the reference warehouse's own stock is classified."""

    ALWAYS_GREEN = "always_green"
    BASELINE = "baseline"


class ReplenishmentPolicy(str, Enum):
    """How much stock an auto-created ticket requests."""

    FULL_REFERENCE = "full_reference"
    FIXED = "fixed"
    FRACTION_OF_REFERENCE = "fraction_of_reference"


class DedupKey(str, Enum):
    """Which destination identity is used to match existing tickets."""

    WAREHOUSE_ID = "warehouse_id"
    # Legacy stores that only kept the warehouse display name
    WAREHOUSE_NAME = "warehouse_name"


@dataclass(frozen=True)
class Warehouse:
    """A stock location."""

    id: int
    name: str
    country: str = ""


@dataclass(frozen=True)
class ItemStock:
    """Quantity of one item held at one warehouse.

    ``type``, ``mg`` and ``made_date`` are free-text product attributes
    carried along with the record; the engine ignores them.
    """

    item_id: str
    warehouse_id: int
    quantity: int
    name: str = ""
    type: str = ""
    mg: str = ""
    made_date: str = ""


@dataclass
class Ticket:
    """Replenishment ticket moving stock between two locations.

    A ``to_warehouse_id`` of None targets the Production destination.
    """

    item_id: str
    from_warehouse_id: int | None
    to_warehouse_id: int | None
    quantity: int
    status: TicketStatus
    request_date: date
    collect_date: date | None = None
    expected_ready: str = ""
    actual_ready: str = ""
    delay_reason: str = ""
    # Production progress reported against the ticket
    available_quantity: int | None = None
    balance_needed: int | None = None
    time_needed: str = ""
    created_by: str = ""
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status.is_open

    @property
    def to_production(self) -> bool:
        return self.to_warehouse_id is None


@dataclass(frozen=True)
class InventorySnapshot:
    """Consistent view of warehouses, stock and tickets at one point in time."""

    warehouses: tuple[Warehouse, ...] = ()
    items: tuple[ItemStock, ...] = ()
    tickets: tuple[Ticket, ...] = ()

    @classmethod
    def of(cls, warehouses=(), items=(), tickets=()) -> InventorySnapshot:
        """Build a snapshot from any iterables."""
        return cls(tuple(warehouses), tuple(items), tuple(tickets))

    def warehouse_by_id(self) -> dict[int, Warehouse]:
        return {w.id: w for w in self.warehouses}


@dataclass(frozen=True)
class StatusEntry:
    """One row of the stock health report."""

    warehouse_id: int
    warehouse_name: str | None
    item_id: str
    name: str
    quantity: int
    status: StockStatus
    # Percentage of the reference quantity (or baseline), None when unknown
    ratio: float | None = None


@dataclass
class EngineResult:
    """Output of one engine evaluation."""

    reference: Warehouse | None
    statuses: list[StatusEntry] = field(default_factory=list)
    new_tickets: list[Ticket] = field(default_factory=list)
    # (item_id, destination) pairs skipped because an open ticket already exists
    suppressed: list[tuple[str, int | None]] = field(default_factory=list)
