import uuid

from possync.shared.database.models import Category, Product, ProductVariant, Provenance


def post_inventory(client, *products):
    return client.post("/api/sync/inventory", json={"products": list(products)})


def test_products_are_upserted_by_id(client, db_session, make_product):
    product = make_product()
    assert post_inventory(client, product).json()["created"] == 1

    product["name"] = "Slim Denim Jeans"
    product["variants"][0]["stock"] = 9
    response = post_inventory(client, product)

    assert response.json()["updated"] == 1
    stored = db_session.get(Product, product["id"])
    assert stored.name == "Slim Denim Jeans"
    assert stored.origin == Provenance.IMPORTED.value
    assert stored.batch_id == response.json()["batch_id"]
    assert stored.variants[0].stock == 9
    assert db_session.query(Product).count() == 1


def test_product_with_new_id_matches_by_name_and_category(client, db_session, make_product):
    post_inventory(client, make_product(name="Polo", category="Shirts"))

    response = post_inventory(client, make_product(name="Polo", category="Shirts"))

    assert response.json()["updated"] == 1
    assert db_session.query(Product).count() == 1
    assert db_session.query(ProductVariant).count() == 2
    assert db_session.query(Category).count() == 1


def test_barcode_collision_within_batch_is_rejected(client, db_session, make_product):
    first = make_product(variants=[{"id": str(uuid.uuid4()), "barcode": "DUP"}])
    second = make_product(name="Other", variants=[{"id": str(uuid.uuid4()), "barcode": "DUP"}])

    response = post_inventory(client, first, second)

    assert response.status_code == 422
    assert response.json()["detail"]["details"]["index"] == 1
    assert db_session.query(Product).count() == 0


def test_barcode_held_by_active_variant_is_rejected(client, db_session, make_product):
    post_inventory(client, make_product(variants=[{"id": str(uuid.uuid4()), "barcode": "TAKEN"}]))
    newcomer_variant = str(uuid.uuid4())

    response = post_inventory(
        client, make_product(name="Other", variants=[{"id": newcomer_variant, "barcode": "TAKEN"}])
    )

    assert response.status_code == 422
    assert response.json()["detail"]["details"]["record_id"] == newcomer_variant
    assert db_session.query(Product).count() == 1


def test_inactive_variant_may_reuse_barcode(client, make_product):
    post_inventory(client, make_product(variants=[{"id": str(uuid.uuid4()), "barcode": "REUSED"}]))

    response = post_inventory(
        client,
        make_product(name="Retired", variants=[{"id": str(uuid.uuid4()), "barcode": "REUSED", "isActive": False}])
    )

    assert response.status_code == 200


def test_real_variant_arrival_empties_placeholder(client, db_session, make_sale, make_product):
    product = make_product()
    variant_id = product["variants"][0]["id"]
    client.post("/api/sync/sales", json={"sales": [make_sale(variant_id=variant_id, product_name=product["name"])]})

    post_inventory(client, product)

    placeholder = db_session.query(Product).filter(Product.origin == Provenance.PLACEHOLDER.value).one()
    assert placeholder.variants == []
    assert db_session.get(ProductVariant, variant_id).product_id == product["id"]


def test_barcode_can_move_between_variants_in_one_batch(client, db_session, make_product):
    variant_a, variant_b = str(uuid.uuid4()), str(uuid.uuid4())
    product = make_product(variants=[{"id": variant_a, "barcode": "X"}, {"id": variant_b, "barcode": "Y"}])
    assert post_inventory(client, product).status_code == 200

    # The new holder is listed before the old one
    product["variants"] = [{"id": variant_b, "barcode": "X"}, {"id": variant_a, "barcode": "Z"}]
    response = post_inventory(client, product)

    assert response.status_code == 200
    db_session.expire_all()
    assert db_session.get(ProductVariant, variant_b).barcode == "X"
    assert db_session.get(ProductVariant, variant_a).barcode == "Z"
    assert all(v.is_active for v in db_session.query(ProductVariant).all())


def test_barcode_swap_across_products(client, db_session, make_product):
    variant_a, variant_b = str(uuid.uuid4()), str(uuid.uuid4())
    first = make_product(name="First", variants=[{"id": variant_a, "barcode": "P"}])
    second = make_product(name="Second", variants=[{"id": variant_b, "barcode": "Q"}])
    post_inventory(client, first, second)

    first["variants"][0]["barcode"] = "Q"
    second["variants"][0]["barcode"] = "P"
    response = post_inventory(client, first, second)

    assert response.status_code == 200
    db_session.expire_all()
    assert db_session.get(ProductVariant, variant_a).barcode == "Q"
    assert db_session.get(ProductVariant, variant_b).barcode == "P"
