import uuid

from possync.shared.database.models import (
    Category, InvoicePayment, Product, Provenance, Sale, SaleItem, SyncBatch, User
)


def post_sales(client, *sales):
    return client.post("/api/sync/sales", json={"sales": list(sales), "terminalId": "T1"})


def test_duplicate_delivery_leaves_one_copy(client, db_session, make_sale):
    sale = make_sale()

    first = post_sales(client, sale)
    second = post_sales(client, sale)

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["created"] == 1
    assert second.json()["created"] == 0
    assert second.json()["updated"] == 1
    assert db_session.query(Sale).count() == 1
    assert db_session.query(SaleItem).count() == 1
    assert db_session.query(InvoicePayment).count() == 1
    assert db_session.query(SyncBatch).count() == 2


def test_unknown_user_and_variant_get_placeholders(client, db_session, make_sale):
    user_id = str(uuid.uuid4())
    variant_id = str(uuid.uuid4())

    response = post_sales(client, make_sale(user_id=user_id, variant_id=variant_id, product_name="Linen Kurta"))

    assert response.status_code == 200
    body = response.json()
    assert body["placeholders"]["users"] == [user_id]
    assert len(body["placeholders"]["products"]) == 1

    user = db_session.get(User, user_id)
    assert user.origin == Provenance.PLACEHOLDER.value
    assert user.username == f"unsynced-{user_id}"

    product = db_session.query(Product).filter(Product.placeholder_for_variant_id == variant_id).one()
    assert product.origin == Provenance.PLACEHOLDER.value
    assert product.name == "Linen Kurta (Sync Placeholder)"
    assert product.variants == []
    assert db_session.get(Category, product.category_id).name == "Unsynced Inventory"

    sale = db_session.query(Sale).one()
    assert sale.user_id == user_id
    assert sale.items[0].variant_id == variant_id


def test_placeholder_is_reused_across_batches(client, db_session, make_sale):
    variant_id = str(uuid.uuid4())

    post_sales(client, make_sale(variant_id=variant_id, bill_no=1))
    response = post_sales(client, make_sale(variant_id=variant_id, bill_no=2))

    assert response.status_code == 200
    assert response.json()["placeholders"]["products"] == []
    assert db_session.query(Product).filter(Product.origin == Provenance.PLACEHOLDER.value).count() == 1


def test_known_variant_needs_no_placeholder(client, db_session, make_sale, make_product):
    product = make_product()
    variant_id = product["variants"][0]["id"]
    assert client.post("/api/sync/inventory", json={"products": [product]}).status_code == 200

    response = post_sales(client, make_sale(variant_id=variant_id))

    assert response.json()["placeholders"]["products"] == []
    assert db_session.query(Product).count() == 1


def test_unbalanced_sale_rejects_whole_batch(client, db_session, make_sale):
    good = make_sale(bill_no=1)
    bad = make_sale(bill_no=2)
    bad["grandTotal"] = bad["grandTotal"] + 5

    response = post_sales(client, good, bad)

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["details"]["index"] == 1
    assert detail["details"]["record_id"] == bad["id"]
    assert db_session.query(Sale).count() == 0
    assert db_session.query(User).count() == 0


def test_totals_within_tolerance_are_accepted(client, make_sale):
    sale = make_sale(price=99.99)
    sale["grandTotal"] = 99.995

    assert post_sales(client, sale).status_code == 200


def test_embedded_user_is_upserted(client, db_session, make_sale):
    user_id = str(uuid.uuid4())
    user = {"id": user_id, "username": "maria", "name": "Maria"}

    response = post_sales(client, make_sale(user_id=user_id, user=user))

    assert response.json()["placeholders"]["users"] == []
    stored = db_session.get(User, user_id)
    assert stored.username == "maria"
    assert stored.origin == Provenance.IMPORTED.value


def test_embedded_user_must_match_user_id(client, make_sale):
    sale = make_sale(user={"id": str(uuid.uuid4()), "username": "someone"})

    response = post_sales(client, sale)

    assert response.status_code == 422
    assert response.json()["detail"]["details"]["record_id"] == sale["id"]


def test_resend_replaces_items_and_payments(client, db_session, make_sale):
    sale = make_sale(quantity=2, price=50)
    post_sales(client, sale)

    # Partial refund at the terminal: one unit back, payment adjusted
    sale["items"][0]["quantity"] = 1
    sale["items"][0]["total"] = 50
    sale["subtotal"] = sale["grandTotal"] = sale["paidAmount"] = 50
    sale["status"] = "PARTIALLY_REFUNDED"
    sale["payments"].append({"id": f"{sale['id']}-p1", "paymentMode": "REFUND", "amount": -50})

    response = post_sales(client, sale)

    assert response.status_code == 200
    stored = db_session.query(Sale).one()
    assert stored.status == "PARTIALLY_REFUNDED"
    assert stored.grand_total == 50
    assert [item.quantity for item in stored.items] == [1]
    assert sorted(p.amount for p in stored.payments) == [-50, 100]


def test_batch_ledger_records_terminal(client, make_sale):
    post_sales(client, make_sale())

    response = client.get("/api/sync/batches", params={"model": "sale"})

    assert response.status_code == 200
    batches = response.json()
    assert len(batches) == 1
    assert batches[0]["terminal_id"] == "T1"
    assert batches[0]["record_count"] == 1
    assert batches[0]["placeholders_created"] == 2
