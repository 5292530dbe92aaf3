"""Tests for PostgresDB transaction handling against a mocked psycopg connection."""

from datetime import date
from unittest.mock import MagicMock

import pytest

from stocklight.config import DatabaseSettings
from stocklight.core.models import ItemStock, Ticket, TicketStatus
from stocklight.db import postgres
from stocklight.db.postgres import STOCK_LOCK_KEY, PostgresDB


@pytest.fixture
def connection(monkeypatch):
    conn = MagicMock()
    cur = conn.cursor.return_value.__enter__.return_value
    cur.fetchall.return_value = []
    cur.fetchone.return_value = None
    monkeypatch.setattr(postgres.psycopg, "connect", lambda conninfo: conn)
    return conn, cur


@pytest.fixture
def pg():
    return PostgresDB(DatabaseSettings(_env_file=None))


def executed(cur) -> list[str]:
    return [" ".join(c.args[0].split()) for c in cur.execute.call_args_list]


def test_transaction_locks_before_reading(connection, pg):
    conn, cur = connection
    with pg.transaction() as tx:
        tx.save_items([ItemStock("X", 1, 5, name="Widget")])

    statements = executed(cur)
    assert statements[0] == "SELECT pg_advisory_xact_lock(%s)"
    assert cur.execute.call_args_list[0].args[1] == (STOCK_LOCK_KEY,)
    assert [s.split()[0] for s in statements[1:4]] == ["SELECT"] * 3
    assert statements[4].startswith("INSERT INTO item_stock")
    conn.commit.assert_called_once()
    conn.rollback.assert_not_called()
    conn.close.assert_called_once()


def test_transaction_rolls_back_stock_when_body_fails(connection, pg):
    conn, cur = connection
    with pytest.raises(RuntimeError):
        with pg.transaction() as tx:
            tx.save_items([ItemStock("X", 1, 5, name="Widget")])
            raise RuntimeError("ticket insert failed")

    conn.commit.assert_not_called()
    conn.rollback.assert_called_once()


def test_conflicting_ticket_is_skipped(connection, pg):
    _, cur = connection
    ticket = Ticket(
        item_id="X",
        from_warehouse_id=1,
        to_warehouse_id=2,
        quantity=100,
        status=TicketStatus.URGENT,
        request_date=date(2024, 3, 1),
        created_by="auto-system",
    )
    with pg.transaction() as tx:
        assert tx.append_tickets([ticket]) == []

    assert executed(cur)[-1].startswith("INSERT INTO tickets")
    assert tx.created == []
