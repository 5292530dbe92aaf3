"""Tests for stock health classification and auto-ticket planning."""

from datetime import date, datetime, timezone

import pytest

from stocklight.core.models import (
    DedupKey,
    InventorySnapshot,
    ItemStock,
    ReferenceStatusMode,
    ReplenishmentPolicy,
    StockStatus,
    Ticket,
    TicketStatus,
    Warehouse,
)

MAIN = Warehouse(id=1, name="Main Warehouse")
BERLIN = Warehouse(id=2, name="Berlin")
INDIA = Warehouse(id=3, name="India")
NOW = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


def stock(item_id, warehouse, quantity, name="Widget"):
    return ItemStock(item_id=item_id, warehouse_id=warehouse.id, quantity=quantity, name=name)


def snapshot(items, tickets=(), warehouses=(MAIN, BERLIN, INDIA)):
    return InventorySnapshot.of(warehouses, items, tickets)


def open_ticket(item_id, to_warehouse_id, status=TicketStatus.PENDING):
    return Ticket(
        id=99,
        item_id=item_id,
        from_warehouse_id=MAIN.id,
        to_warehouse_id=to_warehouse_id,
        quantity=100,
        status=status,
        request_date=date(2024, 2, 1),
        created_by="auto-system",
    )


def status_of(report, warehouse):
    return next(e.status for e in report if e.warehouse_id == warehouse.id)


class TestReferenceResolution:
    def test_first_name_match_wins(self, engine):
        warehouses = [BERLIN, Warehouse(5, "MAIN depot"), Warehouse(6, "Mainz")]
        assert engine.resolve_reference(warehouses).id == 5

    def test_no_match_returns_none(self, engine):
        assert engine.resolve_reference([BERLIN, INDIA]) is None

    def test_pinned_id_beats_marker(self, engine_with):
        engine = engine_with(reference_warehouse_id=3)
        assert engine.resolve_reference([MAIN, BERLIN, INDIA]) == INDIA

    def test_pinned_id_missing_returns_none(self, engine_with):
        engine = engine_with(reference_warehouse_id=42)
        assert engine.resolve_reference([MAIN, BERLIN]) is None

    def test_custom_marker(self, engine_with):
        engine = engine_with(reference_marker="HQ")
        assert engine.resolve_reference([MAIN, Warehouse(7, "Lisbon hq")]).id == 7


class TestClassification:
    @pytest.mark.parametrize(
        "quantity, expected",
        [
            (0, StockStatus.RED),
            (5, StockStatus.RED),
            (10, StockStatus.RED),
            (11, StockStatus.ORANGE),
            (50, StockStatus.ORANGE),
            (60, StockStatus.ORANGE),
            (61, StockStatus.GREEN),
            (80, StockStatus.GREEN),
            (250, StockStatus.GREEN),
        ],
    )
    def test_thresholds_against_reference(self, engine, quantity, expected):
        status = engine.classify(stock("X", BERLIN, quantity), stock("X", MAIN, 100), MAIN)
        assert status == expected

    def test_boundaries_hold_for_non_round_reference(self, engine):
        # 6/10 and 1/10 are not exact in binary floating point
        main = stock("X", MAIN, 10)
        assert engine.classify(stock("X", BERLIN, 1), main, MAIN) == StockStatus.RED
        assert engine.classify(stock("X", BERLIN, 6), main, MAIN) == StockStatus.ORANGE
        assert engine.classify(stock("X", BERLIN, 7), main, MAIN) == StockStatus.GREEN

    def test_reference_is_green_by_default(self, engine):
        assert engine.classify(stock("X", MAIN, 1), stock("X", MAIN, 1), MAIN) == StockStatus.GREEN

    def test_reference_uses_baseline_in_baseline_mode(self, engine_with):
        engine = engine_with(reference_status_mode=ReferenceStatusMode.BASELINE)
        assert engine.classify(stock("X", MAIN, 100), None, MAIN) == StockStatus.RED
        assert engine.classify(stock("X", MAIN, 600), None, MAIN) == StockStatus.ORANGE
        assert engine.classify(stock("X", MAIN, 601), None, MAIN) == StockStatus.GREEN

    def test_missing_counterpart_is_unknown(self, engine):
        assert engine.classify(stock("X", BERLIN, 5), None, MAIN) == StockStatus.UNKNOWN

    def test_zero_reference_is_unknown(self, engine):
        status = engine.classify(stock("X", BERLIN, 5), stock("X", MAIN, 0), MAIN)
        assert status == StockStatus.UNKNOWN

    def test_malformed_quantity_is_unknown(self, engine):
        status = engine.classify(stock("X", BERLIN, -3), stock("X", MAIN, 100), MAIN)
        assert status == StockStatus.UNKNOWN

    def test_custom_thresholds(self, engine_with):
        engine = engine_with(red_threshold=25, orange_threshold=75)
        main = stock("X", MAIN, 100)
        assert engine.classify(stock("X", BERLIN, 25), main, MAIN) == StockStatus.RED
        assert engine.classify(stock("X", BERLIN, 75), main, MAIN) == StockStatus.ORANGE


class TestStatusReport:
    def test_reports_every_record_in_order(self, engine):
        items = [
            stock("X", MAIN, 100),
            stock("X", BERLIN, 5),
            stock("X", INDIA, 80),
            stock("Y", BERLIN, 3, name="Gadget"),
        ]
        report = engine.status_report(snapshot(items))

        assert [(e.item_id, e.warehouse_id, e.status) for e in report] == [
            ("X", 1, StockStatus.GREEN),
            ("X", 2, StockStatus.RED),
            ("X", 3, StockStatus.GREEN),
            ("Y", 2, StockStatus.UNKNOWN),
        ]
        assert report[1].warehouse_name == "Berlin"
        assert report[1].ratio == 5.0
        assert report[0].ratio is None
        assert report[3].ratio is None

    def test_no_reference_reports_unknown_everywhere(self, engine):
        items = [stock("X", BERLIN, 100), stock("X", INDIA, 1)]
        report = engine.status_report(snapshot(items, warehouses=(BERLIN, INDIA)))

        assert len(report) == 2
        assert all(e.status == StockStatus.UNKNOWN for e in report)

    def test_record_at_unlisted_warehouse_is_unknown(self, engine):
        lisbon = Warehouse(id=7, name="Lisbon")
        items = [stock("X", MAIN, 100), stock("X", lisbon, 1)]
        result = engine.evaluate(snapshot(items), now=NOW)

        stray = result.statuses[1]
        assert stray.status == StockStatus.UNKNOWN
        assert stray.warehouse_name is None
        assert stray.ratio is None
        assert result.new_tickets == []


class TestTicketPlanning:
    def test_scenario_red_opens_urgent_ticket(self, engine):
        result = engine.evaluate(snapshot([stock("X", MAIN, 100), stock("X", BERLIN, 5)]), now=NOW)

        assert status_of(result.statuses, BERLIN) == StockStatus.RED
        assert len(result.new_tickets) == 1
        ticket = result.new_tickets[0]
        assert ticket.item_id == "X"
        assert ticket.from_warehouse_id == MAIN.id
        assert ticket.to_warehouse_id == BERLIN.id
        assert ticket.status == TicketStatus.URGENT
        assert ticket.quantity == 100
        assert ticket.request_date == date(2024, 3, 1)
        assert ticket.collect_date == date(2024, 3, 6)
        assert ticket.expected_ready == ticket.actual_ready == ticket.delay_reason == ""
        assert ticket.created_by == "auto-system"

    def test_scenario_orange_opens_pending_ticket(self, engine):
        result = engine.evaluate(snapshot([stock("X", MAIN, 100), stock("X", BERLIN, 50)]), now=NOW)

        assert status_of(result.statuses, BERLIN) == StockStatus.ORANGE
        assert [t.status for t in result.new_tickets] == [TicketStatus.PENDING]

    def test_urgent_boundary_is_inclusive(self, engine):
        tickets, _ = engine.plan_tickets(
            snapshot([stock("X", MAIN, 100), stock("X", BERLIN, 20), stock("X", INDIA, 21)]),
            now=NOW,
        )
        by_destination = {t.to_warehouse_id: t.status for t in tickets}
        assert by_destination == {BERLIN.id: TicketStatus.URGENT, INDIA.id: TicketStatus.PENDING}

    def test_scenario_green_opens_nothing(self, engine):
        result = engine.evaluate(snapshot([stock("X", MAIN, 100), stock("X", BERLIN, 80)]), now=NOW)

        assert status_of(result.statuses, BERLIN) == StockStatus.GREEN
        assert result.new_tickets == []

    def test_scenario_existing_open_ticket_suppresses(self, engine):
        items = [stock("X", MAIN, 100), stock("X", BERLIN, 5)]
        result = engine.evaluate(snapshot(items, tickets=[open_ticket("X", BERLIN.id)]), now=NOW)

        assert result.new_tickets == []
        assert result.suppressed == [("X", BERLIN.id)]
        assert status_of(result.statuses, BERLIN) == StockStatus.RED

    def test_scenario_no_reference_is_inert(self, engine):
        items = [stock("X", BERLIN, 100), stock("X", INDIA, 1)]
        result = engine.evaluate(snapshot(items, warehouses=(BERLIN, INDIA)), now=NOW)

        assert result.reference is None
        assert result.new_tickets == []
        assert {e.status for e in result.statuses} == {StockStatus.UNKNOWN}

    def test_second_run_on_same_state_is_a_no_op(self, engine):
        items = [stock("X", MAIN, 100), stock("X", BERLIN, 5), stock("X", INDIA, 40)]
        first = engine.evaluate(snapshot(items), now=NOW)
        assert len(first.new_tickets) == 2

        second = engine.evaluate(snapshot(items, tickets=first.new_tickets), now=NOW)
        assert second.new_tickets == []
        assert len(second.suppressed) == 2

    @pytest.mark.parametrize(
        "terminal", [TicketStatus.FULFILLED, TicketStatus.CANCELLED, TicketStatus.CLOSED]
    )
    def test_terminal_ticket_does_not_suppress(self, engine, terminal):
        items = [stock("X", MAIN, 100), stock("X", BERLIN, 5)]
        tickets = [open_ticket("X", BERLIN.id, status=terminal)]
        result = engine.evaluate(snapshot(items, tickets=tickets), now=NOW)

        assert len(result.new_tickets) == 1

    def test_ticket_for_other_destination_does_not_suppress(self, engine):
        items = [stock("X", MAIN, 100), stock("X", BERLIN, 5)]
        result = engine.evaluate(snapshot(items, tickets=[open_ticket("X", INDIA.id)]), now=NOW)

        assert [t.to_warehouse_id for t in result.new_tickets] == [BERLIN.id]

    def test_dedup_follows_id_across_renames(self, engine):
        renamed = Warehouse(id=BERLIN.id, name="Berlin Nord")
        items = [stock("X", MAIN, 100), stock("X", BERLIN, 5)]
        result = engine.evaluate(
            snapshot(items, tickets=[open_ticket("X", BERLIN.id)], warehouses=(MAIN, renamed)),
            now=NOW,
        )
        assert result.new_tickets == []

    def test_legacy_name_dedup(self, engine_with):
        engine = engine_with(dedup_key=DedupKey.WAREHOUSE_NAME)
        # Two warehouses sharing a display name collapse onto one key
        twin = Warehouse(id=4, name="Berlin")
        items = [stock("X", MAIN, 100), stock("X", twin, 5)]
        result = engine.evaluate(
            snapshot(items, tickets=[open_ticket("X", BERLIN.id)], warehouses=(MAIN, BERLIN, twin)),
            now=NOW,
        )
        assert result.new_tickets == []

    def test_item_without_reference_record_is_skipped(self, engine):
        items = [stock("X", BERLIN, 1), stock("Y", MAIN, 100), stock("Y", BERLIN, 100)]
        assert engine.evaluate(snapshot(items), now=NOW).new_tickets == []

    def test_zero_reference_quantity_opens_nothing(self, engine):
        items = [stock("X", MAIN, 0), stock("X", BERLIN, 0)]
        assert engine.evaluate(snapshot(items), now=NOW).new_tickets == []

    def test_lead_time_is_configurable(self, engine_with):
        engine = engine_with(lead_time_days=2)
        tickets, _ = engine.plan_tickets(
            snapshot([stock("X", MAIN, 100), stock("X", BERLIN, 5)]), now=NOW
        )
        assert tickets[0].collect_date == date(2024, 3, 3)

    def test_does_not_touch_stock(self, engine):
        items = (stock("X", MAIN, 100), stock("X", BERLIN, 5))
        snap = snapshot(items)
        engine.evaluate(snap, now=NOW)
        assert snap.items == items


class TestReplenishmentPolicy:
    @pytest.mark.parametrize(
        "overrides, expected",
        [
            ({}, 70),
            ({"replenishment_policy": ReplenishmentPolicy.FIXED}, 100),
            (
                {"replenishment_policy": ReplenishmentPolicy.FIXED, "fixed_replenishment_qty": 25},
                25,
            ),
            ({"replenishment_policy": ReplenishmentPolicy.FRACTION_OF_REFERENCE}, 7),
            (
                {
                    "replenishment_policy": ReplenishmentPolicy.FRACTION_OF_REFERENCE,
                    "replenishment_fraction": 0.25,
                },
                18,
            ),
        ],
    )
    def test_requested_quantity(self, engine_with, overrides, expected):
        engine = engine_with(**overrides)
        tickets, _ = engine.plan_tickets(
            snapshot([stock("X", MAIN, 70), stock("X", BERLIN, 3)]), now=NOW
        )
        assert tickets[0].quantity == expected


class TestProductionEscalation:
    def test_red_reference_opens_production_ticket(self, engine_with):
        engine = engine_with(reference_status_mode=ReferenceStatusMode.BASELINE)
        result = engine.evaluate(snapshot([stock("X", MAIN, 80)]), now=NOW)

        assert status_of(result.statuses, MAIN) == StockStatus.RED
        assert len(result.new_tickets) == 1
        ticket = result.new_tickets[0]
        assert ticket.to_production
        assert ticket.from_warehouse_id == MAIN.id
        assert ticket.quantity == 80
        assert ticket.status == TicketStatus.URGENT

    def test_open_production_ticket_suppresses(self, engine_with):
        engine = engine_with(reference_status_mode=ReferenceStatusMode.BASELINE)
        result = engine.evaluate(
            snapshot([stock("X", MAIN, 80)], tickets=[open_ticket("X", None)]), now=NOW
        )
        assert result.new_tickets == []
        assert result.suppressed == [("X", None)]

    def test_healthy_reference_does_not_escalate(self, engine_with):
        engine = engine_with(reference_status_mode=ReferenceStatusMode.BASELINE)
        result = engine.evaluate(snapshot([stock("X", MAIN, 500)]), now=NOW)
        assert result.new_tickets == []

    def test_always_green_mode_never_escalates(self, engine):
        result = engine.evaluate(snapshot([stock("X", MAIN, 1)]), now=NOW)
        assert result.new_tickets == []

    def test_escalation_and_replenishment_together(self, engine_with):
        engine = engine_with(reference_status_mode=ReferenceStatusMode.BASELINE)
        result = engine.evaluate(
            snapshot([stock("X", MAIN, 50), stock("X", BERLIN, 2)]), now=NOW
        )
        destinations = sorted(
            (t.to_warehouse_id or 0) for t in result.new_tickets
        )
        assert destinations == [0, BERLIN.id]
