"""FastAPI application for Stocklight."""

from typing import Iterable

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from stocklight import __version__
from stocklight.api.schemas import (
    CurrentUserResponse,
    EvaluateResponse,
    HealthResponse,
    InventoryStatusResponse,
    ItemCreateRequest,
    ItemStockResponse,
    MutationResponse,
    OrderResponse,
    OrderWebhookRequest,
    QuantityUpdateRequest,
    StatusEntryResponse,
    TicketCreateRequest,
    TicketListResponse,
    TicketResponse,
    TicketUpdateRequest,
    TransferRequest,
    TransferResponse,
    WarehouseCreateRequest,
    WarehouseResponse,
)
from stocklight.api.user import CurrentUser, get_current_user, require_admin
from stocklight.config import configure_logging
from stocklight.core.inventory_service import (
    DuplicateItemError,
    DuplicateWarehouseError,
    ItemNotFoundError,
    MutationResult,
    OrderLine,
    TicketNotFoundError,
    WarehouseNotFoundError,
    get_service,
)
from stocklight.core.models import PRODUCTION_DESTINATION, Ticket, TicketStatus
from stocklight.db.postgres import TicketConflictError

configure_logging()
logger = structlog.get_logger()

app = FastAPI(
    title="Stocklight API",
    description="Multi-warehouse stock health and replenishment tickets",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _warehouse_names() -> dict[int, str]:
    return {w.id: w.name for w in get_service().list_warehouses()}


def _ticket_response(ticket: Ticket, names: dict[int, str]) -> TicketResponse:
    if ticket.to_warehouse_id is None:
        to_name = PRODUCTION_DESTINATION
    else:
        to_name = names.get(ticket.to_warehouse_id)
    return TicketResponse(
        id=ticket.id,
        item_id=ticket.item_id,
        from_warehouse_id=ticket.from_warehouse_id,
        from_warehouse=names.get(ticket.from_warehouse_id),
        to_warehouse_id=ticket.to_warehouse_id,
        to_warehouse=to_name,
        quantity=ticket.quantity,
        status=ticket.status,
        request_date=ticket.request_date,
        collect_date=ticket.collect_date,
        expected_ready=ticket.expected_ready,
        actual_ready=ticket.actual_ready,
        delay_reason=ticket.delay_reason,
        available_quantity=ticket.available_quantity,
        balance_needed=ticket.balance_needed,
        time_needed=ticket.time_needed,
        created_by=ticket.created_by,
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
    )


def _ticket_responses(tickets: Iterable[Ticket]) -> list[TicketResponse]:
    tickets = list(tickets)
    if not tickets:
        return []
    names = _warehouse_names()
    return [_ticket_response(t, names) for t in tickets]


def _mutation_fields(result: MutationResult) -> dict:
    return {
        "records": [ItemStockResponse.model_validate(r) for r in result.records],
        "tickets": _ticket_responses(result.tickets),
    }


@app.get("/api/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint with database connectivity status."""
    db_status = "connected" if get_service().db.health_check() else "disconnected"
    return HealthResponse(status="ok", version=__version__, database=db_status)


@app.get("/api/me", response_model=CurrentUserResponse)
async def get_me(request: Request) -> CurrentUserResponse:
    """Get current user information."""
    user = get_current_user(request)
    return CurrentUserResponse(
        email=user.email,
        name=user.name,
        display_name=user.display_name,
        is_authenticated=user.is_authenticated,
        is_admin=user.is_admin,
        warehouse_id=user.warehouse_id,
    )


# Warehouses


@app.get("/api/warehouses", response_model=list[WarehouseResponse])
async def list_warehouses() -> list[WarehouseResponse]:
    """List warehouses in creation order."""
    return [WarehouseResponse.model_validate(w) for w in get_service().list_warehouses()]


@app.post("/api/warehouses", response_model=WarehouseResponse, status_code=201)
async def create_warehouse(
    request: WarehouseCreateRequest, user: CurrentUser = Depends(require_admin)
) -> WarehouseResponse:
    """Create a warehouse (admins only)."""
    try:
        warehouse = get_service().add_warehouse(request.name, country=request.country)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DuplicateWarehouseError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return WarehouseResponse.model_validate(warehouse)


# Stock


@app.get("/api/items", response_model=list[ItemStockResponse])
async def list_items(
    request: Request, warehouse_id: int | None = None
) -> list[ItemStockResponse]:
    """List stock records, optionally for one warehouse.

    Non-admins only see their home warehouse, whatever they ask for.
    """
    user = get_current_user(request)
    if not user.is_admin:
        if user.warehouse_id is None:
            return []
        warehouse_id = user.warehouse_id
    items = get_service().list_items(warehouse_id=warehouse_id)
    return [ItemStockResponse.model_validate(i) for i in items]


@app.post("/api/items", response_model=MutationResponse, status_code=201)
async def create_item(
    request: ItemCreateRequest, user: CurrentUser = Depends(require_admin)
) -> MutationResponse:
    """Stock a new item at a warehouse."""
    try:
        result = get_service().add_item(
            item_id=request.item_id,
            name=request.name,
            warehouse_id=request.warehouse_id,
            quantity=request.quantity,
            type=request.type,
            mg=request.mg,
            made_date=request.made_date,
        )
    except WarehouseNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DuplicateItemError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return MutationResponse(**_mutation_fields(result))


@app.put(
    "/api/items/{item_id}/warehouses/{warehouse_id}", response_model=MutationResponse
)
async def update_item_quantity(
    item_id: str,
    warehouse_id: int,
    request: QuantityUpdateRequest,
    user: CurrentUser = Depends(require_admin),
) -> MutationResponse:
    """Manually set the quantity of an item at a warehouse.

    Opens replenishment tickets if the new quantity leaves any warehouse short.
    """
    try:
        result = get_service().set_quantity(
            item_id=item_id,
            warehouse_id=warehouse_id,
            quantity=request.quantity,
            name=request.name,
        )
    except (WarehouseNotFoundError, ItemNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    return MutationResponse(**_mutation_fields(result))


@app.post("/api/transfers", response_model=TransferResponse)
async def create_transfer(request: TransferRequest) -> TransferResponse:
    """Move stock between two warehouses."""
    try:
        result = get_service().transfer(
            item_id=request.item_id,
            from_warehouse_id=request.from_warehouse_id,
            to_warehouse_id=request.to_warehouse_id,
            quantity=request.quantity,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (WarehouseNotFoundError, ItemNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    return TransferResponse(moved=result.moved, **_mutation_fields(result))


@app.post("/api/orders", response_model=OrderResponse)
async def order_webhook(request: OrderWebhookRequest) -> OrderResponse:
    """Deduct an external order from the order warehouse."""
    logger.info(
        "order_webhook_received",
        order_id=request.order_id,
        lines=len(request.line_items),
    )
    lines = [
        OrderLine(sku=line.sku, quantity=line.quantity)
        for line in request.line_items
        if line.sku and line.quantity > 0
    ]
    if not lines:
        return OrderResponse(records=[], tickets=[], skipped=[])

    try:
        result = get_service().apply_order(lines)
    except WarehouseNotFoundError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return OrderResponse(skipped=result.skipped, **_mutation_fields(result))


# Health report and tickets


@app.get("/api/inventory-status", response_model=InventoryStatusResponse)
async def inventory_status(request: Request) -> InventoryStatusResponse:
    """Traffic-light status of every stock record against the reference warehouse.

    Non-admins only see rows for their home warehouse.
    """
    user = get_current_user(request)
    result = get_service().evaluate(apply=False)
    statuses = result.statuses
    if not user.is_admin:
        statuses = [s for s in statuses if s.warehouse_id == user.warehouse_id]
    return InventoryStatusResponse(
        reference_warehouse_id=result.reference.id if result.reference else None,
        items=[StatusEntryResponse.model_validate(s) for s in statuses],
    )


@app.post("/api/evaluate", response_model=EvaluateResponse)
async def evaluate() -> EvaluateResponse:
    """Run the auto-ticket check on current stock and store any new tickets."""
    result = get_service().evaluate(apply=True)
    return EvaluateResponse(
        reference_warehouse_id=result.reference.id if result.reference else None,
        tickets=_ticket_responses(result.new_tickets),
        suppressed=len(result.suppressed),
    )


@app.get("/api/tickets", response_model=TicketListResponse)
async def list_tickets(status: str | None = None, limit: int = 200) -> TicketListResponse:
    """List tickets newest first, optionally filtered by status."""
    ticket_status = None
    if status:
        try:
            ticket_status = TicketStatus.parse(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown ticket status: {status}")

    service = get_service()
    tickets = service.list_tickets(status=ticket_status, limit=limit)
    return TicketListResponse(
        tickets=_ticket_responses(tickets), total_open=service.count_open_tickets()
    )


@app.post("/api/tickets", response_model=TicketResponse, status_code=201)
async def create_ticket(request: TicketCreateRequest, http_request: Request) -> TicketResponse:
    """Open a ticket by hand; omit to_warehouse_id to target Production."""
    user = get_current_user(http_request)
    try:
        ticket = get_service().create_ticket(
            item_id=request.item_id,
            from_warehouse_id=request.from_warehouse_id,
            to_warehouse_id=request.to_warehouse_id,
            quantity=request.quantity,
            created_by=user.ticket_author,
            status=request.status,
            collect_date=request.collect_date,
        )
    except WarehouseNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TicketConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _ticket_response(ticket, _warehouse_names())


@app.patch("/api/tickets/{ticket_id}", response_model=TicketResponse)
async def update_ticket(ticket_id: int, request: TicketUpdateRequest) -> TicketResponse:
    """Record production progress or change a ticket's status."""
    try:
        ticket = get_service().update_ticket(
            ticket_id,
            status=request.status,
            collect_date=request.collect_date,
            expected_ready=request.expected_ready,
            actual_ready=request.actual_ready,
            delay_reason=request.delay_reason,
            available_quantity=request.available_quantity,
            balance_needed=request.balance_needed,
            time_needed=request.time_needed,
        )
    except TicketNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TicketConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _ticket_response(ticket, _warehouse_names())
