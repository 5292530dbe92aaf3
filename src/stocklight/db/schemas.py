"""SQLAlchemy table definitions for Stocklight."""

from datetime import date, datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.schema import CreateIndex, CreateTable

from stocklight.core.models import OPEN_TICKET_STATUSES, TicketStatus


def _utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def _sql_list(values) -> str:
    return ", ".join(f"'{v}'" for v in sorted(values))


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


class WarehouseRow(Base):
    """A stock location."""

    __tablename__ = "warehouses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    country: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )

    __table_args__ = (
        Index("uq_warehouses_name_lower", text("lower(name)"), unique=True),
    )


class ItemStockRow(Base):
    """Quantity of one item at one warehouse."""

    __tablename__ = "item_stock"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    type: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    mg: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    made_date: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=""
    )
    warehouse_id: Mapped[int] = mapped_column(
        ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("item_id", "warehouse_id", name="uq_item_stock_item_warehouse"),
        CheckConstraint("quantity >= 0", name="ck_item_stock_quantity"),
        Index("idx_item_stock_warehouse", "warehouse_id"),
    )


class TicketRow(Base):
    """Replenishment ticket; a NULL destination targets Production."""

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[str] = mapped_column(Text, nullable=False)
    from_warehouse_id: Mapped[int | None] = mapped_column(
        ForeignKey("warehouses.id", ondelete="SET NULL"), nullable=True
    )
    to_warehouse_id: Mapped[int | None] = mapped_column(
        ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=TicketStatus.PENDING.value
    )
    request_date: Mapped[date] = mapped_column(Date, nullable=False)
    collect_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expected_ready: Mapped[str] = mapped_column(Text, default="", server_default="")
    actual_ready: Mapped[str] = mapped_column(Text, default="", server_default="")
    delay_reason: Mapped[str] = mapped_column(Text, default="", server_default="")
    available_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    balance_needed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_needed: Mapped[str] = mapped_column(Text, default="", server_default="")
    created_by: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_sql_list(s.value for s in TicketStatus)})",
            name="ck_ticket_status",
        ),
        CheckConstraint("quantity >= 0", name="ck_ticket_quantity"),
        # At most one open ticket per (item, destination)
        Index(
            "uq_tickets_open_item_destination",
            "item_id",
            text("COALESCE(to_warehouse_id, 0)"),
            unique=True,
            postgresql_where=text(
                f"status IN ({_sql_list(s.value for s in OPEN_TICKET_STATUSES)})"
            ),
        ),
        Index("idx_tickets_status", "status"),
    )


def create_schema_sql() -> list[str]:
    """Render CREATE TABLE / CREATE INDEX statements for PostgreSQL."""
    dialect = postgresql.dialect()
    statements = []
    for table in Base.metadata.sorted_tables:
        statements.append(str(CreateTable(table).compile(dialect=dialect)).strip())
        for index in sorted(table.indexes, key=lambda i: i.name):
            statements.append(str(CreateIndex(index).compile(dialect=dialect)).strip())
    return statements


def drop_schema_sql() -> list[str]:
    """Render DROP TABLE statements in dependency order."""
    return [
        f"DROP TABLE IF EXISTS {table.name} CASCADE"
        for table in reversed(Base.metadata.sorted_tables)
    ]
