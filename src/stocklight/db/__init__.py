"""Database layer for Stocklight."""

from stocklight.db.postgres import PostgresDB, TicketConflictError, get_db

__all__ = ["PostgresDB", "TicketConflictError", "get_db"]
