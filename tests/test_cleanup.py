import uuid

from possync.shared.database.models import Product, Provenance, SaleItem


def cleanup(client):
    response = client.post("/api/sync/cleanup-placeholders")
    assert response.status_code == 200
    return response.json()


def test_empty_placeholders_are_deleted(client, db_session, make_sale):
    variant_id = str(uuid.uuid4())
    client.post("/api/sync/sales", json={"sales": [make_sale(variant_id=variant_id)]})

    result = cleanup(client)

    assert result["scanned"] == 1
    assert [p["placeholder_for_variant_id"] for p in result["deleted"]] == [variant_id]
    assert result["needs_merge"] == []
    assert result["awaiting_inventory"] == [variant_id]
    assert db_session.query(Product).count() == 0
    # The sale line keeps its stable variant id
    assert db_session.query(SaleItem).one().variant_id == variant_id


def test_cleanup_is_idempotent(client, make_sale):
    client.post("/api/sync/sales", json={"sales": [make_sale()]})

    cleanup(client)
    second = cleanup(client)

    assert second == {"success": True, "scanned": 0, "deleted": [], "needs_merge": [], "awaiting_inventory": []}


def test_placeholder_with_variants_is_kept_for_merge(client, db_session, make_sale, make_product):
    real = make_product(name="Linen Kurta", category="Kurtas")
    client.post("/api/sync/inventory", json={"products": [real]})

    sold = client.post("/api/sync/sales", json={"sales": [make_sale(product_name="Linen Kurta")]}).json()
    placeholder_id = sold["placeholders"]["products"][0]

    # A terminal pushed stock under the placeholder's id
    client.post("/api/sync/inventory", json={"products": [
        make_product(product_id=placeholder_id, name="Linen Kurta (Sync Placeholder)", category=None)
    ]})

    result = cleanup(client)

    assert result["deleted"] == []
    assert len(result["needs_merge"]) == 1
    flagged = result["needs_merge"][0]
    assert flagged["id"] == placeholder_id
    assert flagged["variant_count"] == 1
    assert flagged["merge_candidate_id"] == real["id"]
    assert db_session.get(Product, placeholder_id).origin == Provenance.PLACEHOLDER.value


def test_placeholder_for_synced_variant_is_not_awaiting(client, make_sale, make_product):
    product = make_product()
    variant_id = product["variants"][0]["id"]
    client.post("/api/sync/sales", json={"sales": [make_sale(variant_id=variant_id)]})
    pending = make_sale()
    client.post("/api/sync/sales", json={"sales": [pending]})
    client.post("/api/sync/inventory", json={"products": [product]})

    result = cleanup(client)

    assert len(result["deleted"]) == 2
    assert result["awaiting_inventory"] == [pending["items"][0]["variantId"]]
