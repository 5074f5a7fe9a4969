import pytest

from possync.modules.sync.schemas import UserSync
from possync.shared.database.models import Product, Sale, User
from possync.terminal.batcher import Batcher, chunked
from possync.terminal.config import SyncConfig
from possync.terminal.schemas import CheckoutItem, CheckoutRequest
from possync.terminal.transport import CentralClient


@pytest.fixture
def many_users(store):
    for n in range(125):
        store.save_user(UserSync(id=f"user-{n:03d}", username=f"user{n:03d}"))


def test_chunked_splits_into_fixed_sizes():
    assert [len(chunk) for chunk in chunked(list(range(125)), 50)] == [50, 50, 25]
    assert list(chunked([], 50)) == []


def test_sweep_sends_chunks_sequentially(store, many_users, scripted_session):
    session = scripted_session()
    pauses = []
    config = SyncConfig(endpoint_url="http://central", chunk_size=50, batch_delay_seconds=0.5)
    batcher = Batcher(store, CentralClient.from_config(config, session=session), config, sleep=pauses.append)

    report = batcher.sync_model("user")

    assert [len(call["json"]["users"]) for call in session.calls] == [50, 50, 25]
    assert pauses == [0.5, 0.5]
    assert report.success
    assert (report.chunks_sent, report.chunks_failed, report.records_synced) == (3, 0, 125)
    assert store.unsynced_records("user") == []


def test_failed_chunk_does_not_stop_later_chunks(store, many_users, scripted_session, sync_config):
    session = scripted_session([200, 503, 200])
    batcher = Batcher(store, CentralClient.from_config(sync_config, session=session), sync_config)

    report = batcher.sync_model("user", chunk_size=50)

    assert len(session.calls) == 3
    assert not report.success
    assert (report.chunks_sent, report.chunks_failed, report.records_synced) == (2, 1, 75)
    assert len(report.errors) == 1

    failed_ids = [user["id"] for user in session.calls[1]["json"]["users"]]
    assert [user["id"] for user in store.unsynced_records("user")] == failed_ids


def test_nothing_to_send_makes_no_request(store, scripted_session, sync_config):
    session = scripted_session()
    batcher = Batcher(store, CentralClient.from_config(sync_config, session=session), sync_config)

    report = batcher.sync_model("sale")

    assert session.calls == []
    assert report.success
    assert report.chunks_sent == 0


def test_sync_all_replicates_to_central(store, cashier, shirt, central_client, sync_config, db_session):
    store.checkout(CheckoutRequest(user_id=cashier.id, items=[CheckoutItem(variant_id=shirt.variants[0].id, quantity=1)]))
    batcher = Batcher(store, central_client, sync_config)

    reports = batcher.sync_all()

    assert [r.model for r in reports] == ["user", "product", "sale"]
    assert all(r.success and r.records_synced == 1 for r in reports)
    assert db_session.get(User, cashier.id).username == "cashier1"
    assert db_session.get(Product, shirt.id).name == "Cotton Shirt"
    assert db_session.query(Sale).one().grand_total == 525

    again = batcher.sync_all()
    assert all(r.total_records == 0 for r in again)
