"""Pydantic request/response schemas for Stocklight API."""

from datetime import date, datetime

from pydantic import BaseModel, Field

from stocklight.core.models import StockStatus, TicketStatus


# Request models


class WarehouseCreateRequest(BaseModel):
    """Request body for creating a warehouse."""

    name: str = Field(..., description="Warehouse display name")
    country: str = ""


class ItemCreateRequest(BaseModel):
    """Request body for stocking an item at a warehouse."""

    item_id: str = Field(..., min_length=1, description="Item / SKU identifier")
    name: str = Field(default="", description="Item display name")
    warehouse_id: int
    quantity: int = Field(default=0, ge=0)
    type: str = ""
    mg: str = Field(default="", description="Strength, e.g. '500mg'")
    made_date: str = ""


class QuantityUpdateRequest(BaseModel):
    """Request body for a manual stock edit."""

    quantity: int = Field(..., ge=0)
    name: str | None = None


class TransferRequest(BaseModel):
    """Request body for moving stock between warehouses."""

    item_id: str
    from_warehouse_id: int
    to_warehouse_id: int
    quantity: int = Field(..., ge=1)


class OrderLineItem(BaseModel):
    """A single order line from the commerce webhook."""

    sku: str | None = None
    quantity: int = 0


class OrderWebhookRequest(BaseModel):
    """Order payload; lines without a SKU or quantity are ignored."""

    order_id: str | None = None
    line_items: list[OrderLineItem] = Field(default_factory=list)


class TicketCreateRequest(BaseModel):
    """Request body for opening a ticket by hand."""

    item_id: str
    from_warehouse_id: int | None = None
    to_warehouse_id: int | None = Field(
        default=None, description="Destination warehouse; omit for Production"
    )
    quantity: int = Field(..., ge=0)
    status: TicketStatus = TicketStatus.PENDING
    collect_date: date | None = None


class TicketUpdateRequest(BaseModel):
    """Production update for a ticket."""

    status: TicketStatus | None = None
    collect_date: date | None = None
    expected_ready: str | None = None
    actual_ready: str | None = None
    delay_reason: str | None = None
    available_quantity: int | None = Field(default=None, ge=0)
    balance_needed: int | None = Field(default=None, ge=0)
    time_needed: str | None = None


# Response models


class WarehouseResponse(BaseModel):
    """Response for a warehouse."""

    id: int
    name: str
    country: str

    model_config = {"from_attributes": True}


class ItemStockResponse(BaseModel):
    """Response for a stock record."""

    item_id: str
    name: str
    warehouse_id: int
    quantity: int
    type: str
    mg: str
    made_date: str

    model_config = {"from_attributes": True}


class StatusEntryResponse(BaseModel):
    """One row of the stock health report."""

    warehouse_id: int
    warehouse_name: str | None
    item_id: str
    name: str
    quantity: int
    status: StockStatus
    ratio: float | None = Field(default=None, description="Percent of reference stock")

    model_config = {"from_attributes": True}


class InventoryStatusResponse(BaseModel):
    """Response for the stock health report."""

    reference_warehouse_id: int | None
    items: list[StatusEntryResponse]


class TicketResponse(BaseModel):
    """Response for a ticket, with warehouse names resolved."""

    id: int | None
    item_id: str
    from_warehouse_id: int | None
    from_warehouse: str | None
    to_warehouse_id: int | None
    to_warehouse: str | None
    quantity: int
    status: TicketStatus
    request_date: date
    collect_date: date | None
    expected_ready: str
    actual_ready: str
    delay_reason: str
    available_quantity: int | None = None
    balance_needed: int | None = None
    time_needed: str = ""
    created_by: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TicketListResponse(BaseModel):
    """Response for ticket list."""

    tickets: list[TicketResponse]
    # Across the whole store, regardless of the status filter and limit
    total_open: int


class MutationResponse(BaseModel):
    """Response for a stock mutation."""

    records: list[ItemStockResponse]
    tickets: list[TicketResponse]


class TransferResponse(MutationResponse):
    """Response for a transfer."""

    moved: int


class OrderResponse(MutationResponse):
    """Response for an applied order."""

    skipped: list[str]


class EvaluateResponse(BaseModel):
    """Response for an engine run."""

    reference_warehouse_id: int | None
    tickets: list[TicketResponse]
    suppressed: int


class HealthResponse(BaseModel):
    """Response for health check."""

    status: str
    version: str
    database: str


class CurrentUserResponse(BaseModel):
    """Response for current user info."""

    email: str | None
    name: str | None
    display_name: str
    is_authenticated: bool
    is_admin: bool
    warehouse_id: int | None = None
