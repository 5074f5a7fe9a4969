import json
from datetime import datetime, timedelta

import pytest

from possync.core.exceptions import InsufficientStockError, LocalStoreError
from possync.shared.database.models import (
    InventoryMovement, ProductVariant, Sale, SyncQueueEntry
)
from possync.terminal.schemas import CheckoutItem, CheckoutRequest, PaymentLine, ReturnLine


def checkout(store, cashier, variant, quantity=1, payments=None):
    return store.checkout(CheckoutRequest(
        user_id=cashier.id,
        items=[CheckoutItem(variant_id=variant.id, quantity=quantity)],
        payments=payments or []
    ))


def stock_of(store, variant_id):
    with store.session() as db:
        return db.get(ProductVariant, variant_id).stock


def queued(store):
    with store.session() as db:
        return [(e.action, e.record_id, json.loads(e.payload))
                for e in db.query(SyncQueueEntry).order_by(SyncQueueEntry.id).all()]


def test_checkout_is_recorded_with_stock_and_queue_entry(store, cashier, shirt):
    medium = shirt.variants[0]

    sale_id = checkout(store, cashier, medium, quantity=2)

    assert stock_of(store, medium.id) == 8
    with store.session() as db:
        sale = db.get(Sale, sale_id)
        assert sale.bill_no == 1
        assert (sale.subtotal, sale.tax_amount, sale.grand_total) == (1000, 50, 1050)
        assert sale.cgst + sale.sgst == 50
        assert sale.paid_amount == 1050
        assert sale.payment_method == "CASH"
        movement = db.query(InventoryMovement).one()
        assert (movement.type, movement.quantity, movement.reference) == ("OUT", 2, sale_id)

    [(action, record_id, payload)] = queued(store)
    assert action == "SALE_CHECKOUT"
    assert record_id == sale_id
    assert payload["billNo"] == 1
    assert payload["user"]["username"] == "cashier1"
    assert payload["items"][0]["variantId"] == medium.id


def test_insufficient_stock_aborts_whole_checkout(store, cashier, shirt):
    large = shirt.variants[1]

    with pytest.raises(InsufficientStockError):
        checkout(store, cashier, large, quantity=3)

    assert stock_of(store, large.id) == 2
    assert queued(store) == []
    with store.session() as db:
        assert db.query(Sale).count() == 0
        assert db.query(InventoryMovement).count() == 0


def test_unknown_user_cannot_check_out(store, shirt):
    with pytest.raises(LocalStoreError):
        store.checkout(CheckoutRequest(user_id="nobody", items=[CheckoutItem(variant_id=shirt.variants[0].id, quantity=1)]))


def test_bill_numbers_increase(store, cashier, shirt):
    first = checkout(store, cashier, shirt.variants[0])
    second = checkout(store, cashier, shirt.variants[0])

    with store.session() as db:
        assert [db.get(Sale, first).bill_no, db.get(Sale, second).bill_no] == [1, 2]


def test_partial_refund_returns_stock_and_money(store, cashier, shirt):
    medium = shirt.variants[0]
    sale_id = checkout(store, cashier, medium, quantity=2)
    with store.session() as db:
        item_id = db.get(Sale, sale_id).items[0].id

    store.refund(sale_id, [ReturnLine(sale_item_id=item_id, quantity=1)], reason="Wrong size")

    assert stock_of(store, medium.id) == 9
    with store.session() as db:
        sale = db.get(Sale, sale_id)
        assert sale.status == "PARTIALLY_REFUNDED"
        assert sale.grand_total == 525
        assert sale.paid_amount == 525
        assert sorted(p.amount for p in sale.payments) == [-525, 1050]
        assert sale.remarks == "Wrong size"
    assert [action for action, _, _ in queued(store)] == ["SALE_CHECKOUT", "REFUND"]


def test_full_refund_empties_sale(store, cashier, shirt):
    sale_id = checkout(store, cashier, shirt.variants[0])
    with store.session() as db:
        item_id = db.get(Sale, sale_id).items[0].id

    store.refund(sale_id, [ReturnLine(sale_item_id=item_id, quantity=1)])

    with store.session() as db:
        sale = db.get(Sale, sale_id)
        assert sale.status == "REFUNDED"
        assert sale.items == []
        assert sale.grand_total == 0
    with pytest.raises(LocalStoreError):
        store.refund(sale_id, [ReturnLine(sale_item_id=item_id, quantity=1)])


def test_exchange_swaps_lines(store, cashier, shirt):
    medium, large = shirt.variants
    sale_id = checkout(store, cashier, medium)
    with store.session() as db:
        item_id = db.get(Sale, sale_id).items[0].id

    store.exchange(
        sale_id,
        returned=[ReturnLine(sale_item_id=item_id, quantity=1)],
        new_items=[CheckoutItem(variant_id=large.id, quantity=1)]
    )

    assert stock_of(store, medium.id) == 10
    assert stock_of(store, large.id) == 1
    with store.session() as db:
        sale = db.get(Sale, sale_id)
        assert sale.status == "EXCHANGED"
        assert [item.variant_id for item in sale.items] == [large.id]
        assert len(sale.payments) == 1
    assert queued(store)[-1][0] == "EXCHANGE"


def test_update_payment_replaces_split(store, cashier, shirt):
    sale_id = checkout(store, cashier, shirt.variants[0])

    store.update_payment(sale_id, [
        PaymentLine(payment_mode="CARD", amount=300),
        PaymentLine(payment_mode="CASH", amount=225),
    ])

    with store.session() as db:
        sale = db.get(Sale, sale_id)
        assert sale.payment_method == "SPLIT"
        assert sorted(p.amount for p in sale.payments) == [225, 300]
    assert queued(store)[-1][0] == "PAYMENT_UPDATE"


def test_unsynced_records_and_mark_synced(store, cashier, shirt):
    users = store.unsynced_records("user")
    products = store.unsynced_records("product")

    assert [u["username"] for u in users] == ["cashier1"]
    assert products[0]["category"]["name"] == "Shirts"
    assert len(products[0]["variants"]) == 2

    assert store.mark_synced("user", [cashier.id]) == 1
    assert store.unsynced_records("user") == []


def test_mark_synced_skips_rows_changed_after_cutoff(store, cashier, shirt):
    cutoff = datetime.utcnow() - timedelta(minutes=5)

    assert store.mark_synced("product", [shirt.id], as_of=cutoff) == 0
    assert len(store.unsynced_records("product")) == 1


def test_checkout_marks_product_unsynced(store, cashier, shirt):
    store.mark_synced("product", [shirt.id])

    checkout(store, cashier, shirt.variants[0])

    [product] = store.unsynced_records("product")
    stock = {v["id"]: v["stock"] for v in product["variants"]}
    assert stock[shirt.variants[0].id] == 9


def test_settings_round_trip(store):
    assert store.get_setting("CLOUD_API_URL") is None

    store.set_setting("CLOUD_API_URL", "http://central")
    store.set_setting("CLOUD_API_URL", "http://central-2")

    assert store.get_setting("CLOUD_API_URL") == "http://central-2"
