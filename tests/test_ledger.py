"""Ledger store tests."""
from __future__ import annotations

from datetime import date

import pytest

from conftest import make_tx
from fund_ledger.calculator import recompute
from fund_ledger.errors import BundleFormatError, LedgerValidationError
from fund_ledger.ledger import LedgerStore
from fund_ledger.models import AccountSummary, Holding, LedgerBundle, TradeSide, TransactionInput


def buy(fund_code: str = "000001", quantity: float = 100, price: float = 1.0, fee: float = 0.0) -> TransactionInput:
    return TransactionInput(
        fund_code=fund_code,
        fund_name=f"Fund {fund_code}",
        side=TradeSide.BUY,
        date=date(2024, 3, 1),
        price=price,
        quantity=quantity,
        fee=fee,
    )


def test_add_transaction_assigns_unique_ordered_ids_and_recomputes():
    store = LedgerStore()

    first = store.add_transaction(buy(quantity=100, price=1.0, fee=1))
    second = store.add_transaction(buy(quantity=50, price=1.2))

    assert first.id != second.id
    assert first.id < second.id
    assert first.amount == pytest.approx(100)
    assert [tx.id for tx in store.transactions] == [first.id, second.id]
    (holding,) = store.holdings
    assert holding.total_shares == pytest.approx(150)
    assert holding.total_cost == pytest.approx(161)
    assert holding.current_price == 1.2


def test_explicit_amount_is_kept():
    store = LedgerStore()
    payload = TransactionInput(
        fund_code="A",
        fund_name="A",
        side=TradeSide.BUY,
        date=None,
        price=1.0,
        quantity=100,
        amount=98.5,
    )

    assert store.add_transaction(payload).amount == 98.5


def test_delete_transaction_recomputes_and_ignores_unknown_ids():
    store = LedgerStore()
    tx = store.add_transaction(buy())

    assert store.delete_transaction("missing") is False
    assert len(store.holdings) == 1

    assert store.delete_transaction(tx.id) is True
    assert store.transactions == ()
    assert store.holdings == ()
    assert store.summary == AccountSummary()


def test_update_fee_replaces_fee_and_recomputes():
    store = LedgerStore()
    tx = store.add_transaction(buy(quantity=100, price=1.0, fee=1))

    updated = store.update_fee(tx.id, 3)

    assert updated is not None
    assert updated.id == tx.id
    assert updated.fee == 3
    assert store.holdings[0].total_cost == pytest.approx(103)
    assert store.summary.total_fees == pytest.approx(3)


def test_update_fee_rejects_negative_fee_and_keeps_state():
    store = LedgerStore()
    tx = store.add_transaction(buy(fee=2))
    before = store.export_data()

    with pytest.raises(LedgerValidationError):
        store.update_fee(tx.id, -5)

    assert store.export_data() == before


def test_update_fee_for_unknown_id_returns_none():
    store = LedgerStore()
    store.add_transaction(buy())

    assert store.update_fee("missing", 1.0) is None


def test_price_override_drives_valuation():
    store = LedgerStore()
    store.add_transaction(buy(quantity=100, price=1.0))

    store.set_price_override("000001", 1.5)

    assert store.fund_prices == {"000001": 1.5}
    holding = store.holdings[0]
    assert holding.current_value == pytest.approx(150)
    assert holding.profit_rate == pytest.approx(50)


def test_import_ignores_bundled_holdings_and_summary():
    stale_holding = Holding("X", "Stale", 1, 1, 1, 1, 1, 0, 0)
    bundle = LedgerBundle(
        transactions=(
            make_tx("a", "A", TradeSide.BUY, quantity=100, price=1.0, fee=1),
            make_tx("b", "B", TradeSide.BUY, quantity=10, price=3.0),
            make_tx("c", "A", TradeSide.SELL, quantity=50, price=1.1),
        ),
        holdings=(stale_holding,),
        account_summary=AccountSummary(total_investment=999999),
        fund_prices={},
    )
    store = LedgerStore()
    store.add_transaction(buy(fund_code="OLD"))

    store.import_data(bundle)

    exported = store.export_data()
    expected = recompute(bundle.transactions, {})
    assert exported.holdings == expected.holdings
    assert exported.account_summary == expected.summary
    assert {h.fund_code for h in exported.holdings} == {"A", "B"}


def test_export_after_import_round_trips_transactions_and_prices():
    bundle = LedgerBundle(
        transactions=(
            make_tx("t2", "B", TradeSide.BUY, quantity=10, price=3.0),
            make_tx("t1", "A", TradeSide.BUY, quantity=100, price=1.0, fee=0.5),
        ),
        fund_prices={"A": 1.1, "B": 2.9},
    )
    store = LedgerStore()

    store.import_data(bundle)
    exported = store.export_data()

    assert exported.transactions == bundle.transactions
    assert dict(exported.fund_prices) == {"A": 1.1, "B": 2.9}
    expected = recompute(bundle.transactions, bundle.fund_prices)
    assert exported.holdings == expected.holdings
    assert exported.account_summary == expected.summary


def test_import_assigns_ids_to_anonymous_transactions():
    bundle = LedgerBundle(
        transactions=(
            make_tx("", "A", TradeSide.BUY, quantity=1, price=1.0),
            make_tx("kept", "A", TradeSide.BUY, quantity=1, price=1.0),
            make_tx("", "A", TradeSide.BUY, quantity=1, price=1.0),
        )
    )
    store = LedgerStore()

    store.import_data(bundle)

    ids = [tx.id for tx in store.transactions]
    assert ids[1] == "kept"
    assert all(ids)
    assert len(set(ids)) == 3


def test_import_rejects_duplicate_ids_without_touching_state():
    store = LedgerStore()
    existing = store.add_transaction(buy())
    bundle = LedgerBundle(
        transactions=(
            make_tx("dup", "A", TradeSide.BUY, quantity=1, price=1.0),
            make_tx("dup", "B", TradeSide.BUY, quantity=1, price=1.0),
        )
    )

    with pytest.raises(BundleFormatError):
        store.import_data(bundle)

    assert [tx.id for tx in store.transactions] == [existing.id]


def test_clear_resets_everything():
    store = LedgerStore()
    store.add_transaction(buy())
    store.set_price_override("000001", 2.0)

    store.clear()

    assert store.transactions == ()
    assert store.holdings == ()
    assert store.fund_prices == {}


def test_transactions_for_fund_filters_by_code():
    store = LedgerStore()
    a = store.add_transaction(buy(fund_code="A"))
    store.add_transaction(buy(fund_code="B"))

    assert store.transactions_for_fund("A") == (a,)


def test_exported_snapshot_is_detached_from_later_mutations():
    store = LedgerStore()
    store.add_transaction(buy())
    snapshot = store.export_data()

    store.add_transaction(buy(fund_code="B"))
    store.set_price_override("B", 3.0)

    assert len(snapshot.transactions) == 1
    assert dict(snapshot.fund_prices) == {}


def test_signed_quantity_follows_side():
    assert make_tx("1", "A", TradeSide.BUY, quantity=5, price=1).signed_quantity() == 5
    assert make_tx("2", "A", TradeSide.SELL, quantity=5, price=1).signed_quantity() == -5
