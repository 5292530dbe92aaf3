"""CLI for Stocklight database management and stock health checks."""

from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stocklight.config import configure_logging, get_settings
from stocklight.core.models import PRODUCTION_DESTINATION, StockStatus
from stocklight.db.schemas import create_schema_sql, drop_schema_sql

app = typer.Typer(
    name="stocklight",
    help="Stocklight CLI - manage tables and run stock health checks",
    add_completion=False,
)
console = Console()

STATUS_STYLES = {
    StockStatus.GREEN: "green",
    StockStatus.ORANGE: "dark_orange",
    StockStatus.RED: "red",
    StockStatus.UNKNOWN: "dim",
}


def _connection_panel() -> Panel:
    settings = get_settings().database
    return Panel.fit(
        f"[bold]Database:[/bold] {settings.database}\n"
        f"[bold]Host:[/bold] {settings.host}:{settings.port}\n"
        f"[bold]User:[/bold] {settings.user}",
        title="PostgreSQL Connection",
    )


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    """Stocklight command line."""
    configure_logging(log_level)


@app.command()
def init_db(
    dry_run: bool = typer.Option(False, "--dry-run", help="Show SQL without executing"),
):
    """Create tables and indexes (drops existing ones first)."""
    statements = drop_schema_sql() + create_schema_sql()

    console.print(_connection_panel())

    if dry_run:
        console.print("\n[yellow]Dry run mode - SQL that would be executed:[/yellow]\n")
        for statement in statements:
            console.print(f"{statement};\n")
        return

    console.print("\n[blue]Initializing database tables...[/blue]")

    from stocklight.db.postgres import get_db

    try:
        get_db().execute_script(statements)
        console.print("[green]✓ Database tables initialized successfully![/green]")
    except Exception as e:
        console.print(f"[red]✗ Error initializing database: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def clear_db(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
):
    """Delete all warehouses, stock records and tickets."""
    console.print(_connection_panel())

    if not force:
        confirm = typer.confirm(
            "\n⚠️  This will DELETE ALL DATA from warehouses, item_stock and tickets. Continue?"
        )
        if not confirm:
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit(0)

    console.print("\n[blue]Clearing database tables...[/blue]")

    from stocklight.db.postgres import get_db

    try:
        get_db().clear()
        console.print("[green]✓ All data cleared successfully![/green]")
    except Exception as e:
        console.print(f"[red]✗ Error clearing database: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def status():
    """Check database connection and show table counts."""
    console.print(_connection_panel())
    console.print("\n[blue]Checking database connection...[/blue]")

    from stocklight.db.postgres import get_db

    try:
        counts = get_db().table_counts()
    except Exception as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(1)

    console.print("[green]✓ Database connected[/green]\n")
    console.print("[bold]Table Statistics:[/bold]")
    console.print(f"  warehouses: {counts['warehouses']} rows")
    console.print(f"  item_stock: {counts['item_stock']} rows")
    console.print(
        f"  tickets: {counts['tickets']} rows ({counts['open_tickets']} currently open)"
    )


@app.command()
def evaluate(
    apply: bool = typer.Option(
        False, "--apply", help="Store the planned tickets instead of only listing them"
    ),
):
    """Show stock health and the replenishment tickets current stock requires."""
    from stocklight.core.inventory_service import get_service

    service = get_service()
    try:
        result = service.evaluate(apply=apply)
    except Exception as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(1)

    if result.reference is None:
        console.print(
            "[yellow]No reference warehouse resolved - every item is unknown "
            "and no tickets are planned.[/yellow]"
        )
    else:
        console.print(
            f"Reference warehouse: [cyan]{result.reference.name}[/cyan] "
            f"(id {result.reference.id})"
        )

    health = Table(title="Stock Health")
    health.add_column("Warehouse")
    health.add_column("Item")
    health.add_column("Name")
    health.add_column("Qty", justify="right")
    health.add_column("Ratio", justify="right")
    health.add_column("Status")
    for entry in result.statuses:
        style = STATUS_STYLES[entry.status]
        health.add_row(
            entry.warehouse_name or str(entry.warehouse_id),
            entry.item_id,
            entry.name,
            str(entry.quantity),
            f"{entry.ratio:.1f}%" if entry.ratio is not None else "-",
            f"[{style}]{entry.status.value}[/{style}]",
        )
    console.print(health)

    names = {w.id: w.name for w in service.list_warehouses()} if result.new_tickets else {}
    tickets = Table(title="Stored Tickets" if apply else "Planned Tickets")
    tickets.add_column("Item")
    tickets.add_column("From")
    tickets.add_column("To")
    tickets.add_column("Qty", justify="right")
    tickets.add_column("Status")
    tickets.add_column("Collect by")
    for ticket in result.new_tickets:
        to_name = (
            PRODUCTION_DESTINATION
            if ticket.to_production
            else names.get(ticket.to_warehouse_id, str(ticket.to_warehouse_id))
        )
        tickets.add_row(
            ticket.item_id,
            names.get(ticket.from_warehouse_id, str(ticket.from_warehouse_id)),
            to_name,
            str(ticket.quantity),
            ticket.status.value,
            ticket.collect_date.isoformat() if ticket.collect_date else "",
        )
    console.print(tickets)
    if result.suppressed:
        console.print(
            f"[dim]{len(result.suppressed)} shortage(s) already covered by open tickets[/dim]"
        )


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("stocklight.api.main:app", host=host, port=port)


if __name__ == "__main__":
    app()
