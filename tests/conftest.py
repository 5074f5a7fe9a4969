import os

# Settings are read at import time
os.environ.setdefault("MAINTENANCE_SECRET", "test-maintenance-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import uuid
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from possync.config.database import build_engine, get_db, init_db
from possync.main import app
from possync.modules.sync.schemas import CategorySync, ProductSync, UserSync, VariantSync
from possync.terminal.config import SyncConfig
from possync.terminal.local_store import LocalStore
from possync.terminal.transport import CentralClient

MAINTENANCE_SECRET = os.environ["MAINTENANCE_SECRET"]

# =============================================================================
# CENTRAL
# =============================================================================

@pytest.fixture
def central_session_factory():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()

@pytest.fixture
def db_session(central_session_factory):
    session = central_session_factory()
    yield session
    session.close()

@pytest.fixture
def client(central_session_factory):
    def override_get_db():
        db = central_session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()

@pytest.fixture
def secret():
    return MAINTENANCE_SECRET

# =============================================================================
# TERMINAL
# =============================================================================

@pytest.fixture
def store():
    return LocalStore.from_url("sqlite://", poolclass=StaticPool)

@pytest.fixture
def sync_config():
    return SyncConfig(
        endpoint_url="http://testserver",
        chunk_size=50,
        batch_delay_seconds=0,
        max_retries=3,
        backoff_base_seconds=30,
        backoff_max_seconds=600
    )

@pytest.fixture
def central_client(client, sync_config):
    """CentralClient talking to the in-process app"""
    return CentralClient.from_config(sync_config, session=client)

@pytest.fixture
def cashier(store):
    user = UserSync(id=str(uuid.uuid4()), username="cashier1", password="secret", name="Front Desk")
    store.save_user(user)
    return user

@pytest.fixture
def shirt(store):
    product = ProductSync(
        id=str(uuid.uuid4()),
        name="Cotton Shirt",
        tax_rate=5,
        category=CategorySync(name="Shirts"),
        variants=[
            VariantSync(id=str(uuid.uuid4()), barcode="SH-M", size="M", color="Blue",
                        mrp=600, selling_price=500, stock=10),
            VariantSync(id=str(uuid.uuid4()), barcode="SH-L", size="L", color="Blue",
                        mrp=600, selling_price=500, stock=2),
        ]
    )
    store.save_product(product)
    return product

# =============================================================================
# PAYLOADS
# =============================================================================

@pytest.fixture
def make_sale():
    """camelCase sale payload whose totals balance"""
    def _make_sale(sale_id=None, user_id=None, variant_id=None, bill_no=1,
                   quantity=1, price=100.0, product_name="Cotton Shirt", user=None):
        sale_id = sale_id or str(uuid.uuid4())
        subtotal = round(quantity * price, 2)
        payload = {
            "id": sale_id,
            "billNo": bill_no,
            "userId": user_id or str(uuid.uuid4()),
            "subtotal": subtotal,
            "discount": 0,
            "taxAmount": 0,
            "grandTotal": subtotal,
            "paymentMethod": "CASH",
            "paidAmount": subtotal,
            "status": "COMPLETED",
            "items": [{
                "id": f"{sale_id}-i0",
                "variantId": variant_id or str(uuid.uuid4()),
                "productName": product_name,
                "quantity": quantity,
                "sellingPrice": price,
                "total": subtotal,
            }],
            "payments": [{"id": f"{sale_id}-p0", "paymentMode": "CASH", "amount": subtotal}],
        }
        if user is not None:
            payload["user"] = user
        return payload
    return _make_sale

@pytest.fixture
def make_product():
    def _make_product(product_id=None, name="Denim Jeans", category="Jeans", variants=None):
        return {
            "id": product_id or str(uuid.uuid4()),
            "name": name,
            "taxRate": 12,
            "category": {"name": category} if category else None,
            "variants": variants if variants is not None else [
                {"id": str(uuid.uuid4()), "barcode": f"BC-{uuid.uuid4().hex[:8]}", "sellingPrice": 1200, "stock": 4}
            ],
        }
    return _make_product

# =============================================================================
# SCRIPTED HTTP
# =============================================================================

class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body if body is not None else {"success": True}
        self.text = str(self._body)

    def json(self):
        return self._body


class ScriptedSession:
    """requests-style session replaying a list of status codes or exceptions"""

    def __init__(self, outcomes=None, default=200):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, FakeResponse):
            return outcome
        return FakeResponse(outcome)


@pytest.fixture
def scripted_session():
    return ScriptedSession
