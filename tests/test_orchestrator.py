"""
Full sync run tests: sequencing, failure isolation, lock and deadline.
Run: pytest tests/test_orchestrator.py -v
"""

import pytest

from storesync.catalog.synchronizer import CatalogSynchronizer
from storesync.core.database import Database
from storesync.core.exceptions import SyncInProgressError
from storesync.inventory.reconciler import InventoryReconciler
from storesync.orders.importer import OrderImporter
from storesync.sync.orchestrator import SyncOrchestrator, RUN_LOCK
from storesync.sync.results import Deadline

from factories import FakePlatform, remote_category, remote_product, remote_order


def build(db, matcher, platform, **kwargs):
    return SyncOrchestrator(
        db=db,
        catalog=CatalogSynchronizer(db, platform),
        importer=OrderImporter(db, platform, matcher),
        reconciler=InventoryReconciler(db, platform),
        **kwargs
    )


@pytest.fixture
def platform():
    return FakePlatform(
        categories=[remote_category(5, "Pajamas")],
        products=[remote_product(100, "Pijama Seda", category_id=5, stock=8)],
        orders=[remote_order(999, email="nueva@example.com")],
    )


class TestEndToEnd:

    def test_single_run_materializes_everything(self, db, matcher, platform):
        report = build(db, matcher, platform).run()

        assert report.success
        assert [p.name for p in report.phases] == ["categories", "products", "orders", "inventory"]
        assert db.get_counts() == {
            'customers': 1,
            'product_categories': 1,
            'products': 1,
            'orders': 1,
            'order_items': 1,
        }

        category = db.get_category_by_external_id(5)
        product = db.get_product_by_external_id(100)
        order = db.get_order_by_external_id(999)
        customer = db.get_customer(order['customer_id'])
        item = db.get_order_items(order['id'])[0]

        assert product['category_id'] == category['id']
        assert customer['email'] == "nueva@example.com"
        assert item['product_id'] == product['id']
        assert platform.stock_updates == [(100, 8)]

    def test_second_run_adds_no_rows(self, db, matcher, platform):
        build(db, matcher, platform).run()
        before = db.get_counts()

        report = build(db, matcher, platform).run()

        assert report.success
        assert db.get_counts() == before
        assert report.phase("products").created == 0
        assert report.phase("orders").processed == 0


class TestFailureIsolation:

    def test_failed_listing_fails_phase_but_run_continues(self, db, matcher, platform):
        platform.fail_listing = {'orders'}
        report = build(db, matcher, platform).run()

        assert not report.success
        assert report.phase("orders").status == "failed"
        assert "status 503" in report.phase("orders").error
        assert report.phase("inventory").status == "completed"
        assert platform.stock_updates == [(100, 8)]

    def test_item_failures_do_not_fail_run(self, db, matcher, platform):
        platform.fail_stock_for = {100}
        report = build(db, matcher, platform).run()

        assert report.success
        assert report.phase("inventory").failed == 1


class TestRunLock:

    def test_lock_released_after_run(self, db, matcher, platform):
        build(db, matcher, platform).run()
        assert db.get_lock(RUN_LOCK) is None

    def test_overlapping_run_rejected(self, db, matcher, platform):
        db.acquire_lock(RUN_LOCK, "other-host:1")

        with pytest.raises(SyncInProgressError):
            build(db, matcher, platform).run()

        assert db.get_counts()['products'] == 0
        assert db.get_lock(RUN_LOCK)['owner'] == "other-host:1"

    def test_stale_lock_replaced(self, db, matcher, platform):
        with db._connection() as conn:
            conn.execute(
                "INSERT INTO sync_locks (name, owner, acquired_at) VALUES (?, ?, ?)",
                (RUN_LOCK, "crashed:1", "2020-01-01T00:00:00+00:00")
            )

        report = build(db, matcher, platform, lock_stale_seconds=60).run()

        assert report.success
        assert db.get_lock(RUN_LOCK) is None

    def test_stale_lock_already_replaced_by_another_run_is_kept(self, db, monkeypatch):
        stale = {'owner': "crashed:1", 'acquired_at': "2020-01-01T00:00:00+00:00"}
        with db._connection() as conn:
            conn.execute(
                "INSERT INTO sync_locks (name, owner, acquired_at) VALUES (?, ?, ?)",
                (RUN_LOCK, stale['owner'], stale['acquired_at'])
            )
        other = Database(db.db_path)

        db.acquire_lock(RUN_LOCK, "run-a", stale_after_seconds=60)

        # the other run read the stale row before run-a replaced it
        reads = iter([stale])
        read_lock = other._read_lock
        monkeypatch.setattr(other, "_read_lock", lambda cursor, name: next(reads, None) or read_lock(cursor, name))

        with pytest.raises(SyncInProgressError) as exc:
            other.acquire_lock(RUN_LOCK, "run-b", stale_after_seconds=60)

        assert exc.value.owner == "run-a"
        assert db.get_lock(RUN_LOCK)['owner'] == "run-a"

    def test_lock_released_when_step_raises_unexpectedly(self, db, matcher, platform, monkeypatch):
        orchestrator = build(db, matcher, platform)
        monkeypatch.setattr(orchestrator, "steps", lambda: 1 / 0)

        with pytest.raises(ZeroDivisionError):
            orchestrator.run()
        assert db.get_lock(RUN_LOCK) is None


class TestDeadline:

    def test_expired_deadline_aborts_and_skips_rest(self, db, matcher, platform, monkeypatch):
        # start, first category check, then time is up
        ticks = iter([0, 0, 1000])

        class FakeClockDeadline(Deadline):
            def __init__(self, seconds=None):
                super().__init__(seconds, clock=lambda: next(ticks, 1000))

        monkeypatch.setattr("storesync.sync.orchestrator.Deadline", FakeClockDeadline)
        report = build(db, matcher, platform, run_deadline_seconds=60).run()

        assert not report.success
        assert report.phase("categories").status == "completed"
        assert report.phase("products").status == "aborted"
        assert report.phase("orders").status == "skipped"
        assert report.phase("inventory").status == "skipped"
        assert db.get_lock(RUN_LOCK) is None

    def test_unlimited_deadline_never_expires(self):
        assert not Deadline(None).expired()
        assert Deadline(10, clock=lambda: 0).expired() is False
