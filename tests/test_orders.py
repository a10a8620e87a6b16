"""
Order import tests.
Run: pytest tests/test_orders.py -v
"""

import sqlite3

import pytest

from storesync.orders.importer import (
    OrderImporter, ORDERS_CURSOR, map_status, order_brand, billing_id_number,
)

from factories import FakePlatform, remote_order


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def importer(db, platform, matcher):
    return OrderImporter(db, platform, matcher)


@pytest.fixture
def mapped_product(db):
    product_id, _ = db.upsert_product(100, {'name': "Pijama Seda", 'sku': "PJ-100", 'stock': 5}, {})
    return product_id


class TestMapping:

    @pytest.mark.parametrize("remote, local", [
        ("pending", "new"),
        ("processing", "preparing"),
        ("on-hold", "pending"),
        ("completed", "completed"),
        ("cancelled", "cancelled"),
        ("refunded", "cancelled"),
        ("failed", "cancelled"),
        ("checkout-draft", "new"),
        (None, "new"),
    ])
    def test_status_map(self, remote, local):
        assert map_status(remote) == local

    def test_brand_from_line_items(self):
        assert order_brand(remote_order(1, line_items=[{'name': "Bata NOVIA encaje"}])) == "bride"
        assert order_brand(remote_order(1, line_items=[{'name': "Pijama"}])) == "sleepwear"
        assert order_brand(remote_order(1, line_items=[])) == "sleepwear"

    def test_id_number_from_meta(self):
        order = remote_order(1)
        order['meta_data'] = [{'key': '_billing_cedula', 'value': ' 1020304050 '}]
        assert billing_id_number(order) == "1020304050"
        assert billing_id_number(remote_order(2)) is None


class TestImport:

    def test_new_order_creates_customer_order_and_items(self, db, platform, importer, mapped_product):
        platform.orders = [remote_order(999, email="nueva@example.com")]
        result = importer.run()

        assert (result.created, result.failed) == (1, 0)
        order = db.get_order_by_external_id(999)
        assert order['order_number'] == "EXT-999"
        assert order['status'] == "preparing"
        assert order['payment_status'] == "paid"
        assert order['payment_method'] == "Tarjeta"
        assert order['source'] == "woocommerce"
        assert order['total_amount'] == 120.5
        assert order['created_at'] == "2024-03-01T10:00:00"
        assert order['billing_address']['email'] == "nueva@example.com"
        assert order['shipping_address']['city'] == "Medellín"

        customer = db.get_customer(order['customer_id'])
        assert customer['name'] == "Ana Gómez"
        assert customer['email'] == "nueva@example.com"
        assert customer['source'] == "woocommerce"
        assert customer['province'] == "ANT"

        items = db.get_order_items(order['id'])
        assert len(items) == 1
        assert items[0]['product_id'] == mapped_product
        assert items[0]['quantity'] == 2
        assert items[0]['unit_price'] == 60.25
        assert items[0]['subtotal'] == 120.5
        assert items[0]['attributes'] == {'Talla': 'M'}

    def test_reimport_only_refreshes_status(self, db, importer):
        remote = remote_order(999)
        assert importer.import_order(remote) is True

        remote['status'] = "completed"
        remote['payment_method_title'] = ""
        remote['total'] = "1.00"
        assert importer.import_order(remote) is False

        counts = db.get_counts()
        assert counts['orders'] == 1
        assert counts['order_items'] == 1
        assert counts['customers'] == 1
        order = db.get_order_by_external_id(999)
        assert order['status'] == "completed"
        assert order['payment_status'] == "pending"
        assert order['total_amount'] == 120.5

    def test_second_run_with_cursor_reset_creates_nothing(self, db, platform, importer):
        platform.orders = [remote_order(999), remote_order(1000, date_created="2024-03-02T09:00:00")]
        importer.run()
        with db._connection() as conn:
            conn.execute("DELETE FROM sync_cursors")

        result = importer.run()

        assert (result.created, result.updated) == (0, 2)
        assert db.get_counts()['orders'] == 2

    def test_existing_customer_matched_and_address_refreshed(self, db, platform, importer, add_customer):
        customer_id = add_customer(email="ana@example.com", phone="311 000 0000", city="Bogotá")
        platform.orders = [remote_order(5, email="ANA@example.com", phone="")]
        importer.run()

        assert db.get_counts()['customers'] == 1
        assert db.get_order_by_external_id(5)['customer_id'] == customer_id
        customer = db.get_customer(customer_id)
        assert customer['city'] == "Medellín"
        assert customer['phone'] == "311 000 0000"

    def test_customer_matched_by_formatted_phone(self, db, platform, importer, add_customer):
        customer_id = add_customer(phone="+57 300 123 4567")
        platform.orders = [remote_order(5, email="distinto@example.com", phone="300-123-4567")]
        importer.run()
        assert db.get_order_by_external_id(5)['customer_id'] == customer_id

    def test_unmapped_product_keeps_snapshot(self, db, platform, importer):
        platform.orders = [remote_order(7, line_items=[
            {'id': 1, 'product_id': 555, 'name': "Bata Novia", 'quantity': 1, 'price': "80", 'subtotal': "80"},
        ])]
        importer.run()

        order = db.get_order_by_external_id(7)
        assert order['brand'] == "bride"
        item = db.get_order_items(order['id'])[0]
        assert item['product_id'] is None
        assert item['product_name'] == "Bata Novia"

    def test_requested_statuses(self, platform, importer):
        platform.orders = [remote_order(1, status="pending"), remote_order(2, status="on-hold")]
        result = importer.run()

        assert platform.order_queries[0]['statuses'] == ("processing", "completed", "on-hold")
        assert result.processed == 1


class TestCursor:

    def test_watermark_saved_and_used(self, db, platform, importer):
        platform.orders = [
            remote_order(1, date_created="2024-03-01T10:00:00"),
            remote_order(2, date_created="2024-03-02T11:00:00"),
        ]
        importer.run()

        cursor = db.get_cursor(ORDERS_CURSOR)
        assert cursor['last_external_id'] == 2
        assert cursor['last_created_at'] == "2024-03-02T11:00:00"
        assert cursor['last_synced_at']

        platform.orders.append(remote_order(3, date_created="2024-03-03T08:00:00"))
        result = importer.run()

        assert platform.order_queries[0]['after'] is None
        assert platform.order_queries[1]['after'] == "2024-03-02T11:00:00"
        assert (result.processed, result.created) == (1, 1)

    def test_cursor_stops_before_failed_order(self, db, platform, importer, monkeypatch):
        platform.orders = [
            remote_order(1, date_created="2024-03-01T10:00:00"),
            remote_order(2, date_created="2024-03-02T10:00:00"),
            remote_order(3, date_created="2024-03-03T10:00:00"),
        ]
        create_order = db.create_order

        def failing_create(order, items, new_customer=None):
            if order['external_id'] == 2:
                raise sqlite3.OperationalError("database is locked")
            return create_order(order, items, new_customer=new_customer)

        monkeypatch.setattr(db, "create_order", failing_create)
        result = importer.run()

        assert (result.created, result.failed) == (2, 1)
        assert result.status == "completed"
        assert db.get_order_by_external_id(3) is not None
        assert db.get_cursor(ORDERS_CURSOR)['last_created_at'] == "2024-03-01T10:00:00"

    def test_order_promoted_after_watermark_passed_is_not_fetched(self, db, platform, importer):
        platform.orders = [
            remote_order(1, status="pending", date_created="2024-03-01T10:00:00"),
            remote_order(2, date_created="2024-03-02T10:00:00"),
        ]
        importer.run()
        platform.orders[0]['status'] = "processing"

        result = importer.run()

        assert result.processed == 0
        assert db.get_order_by_external_id(1) is None

    def test_no_cursor_when_nothing_imported(self, db, importer):
        importer.run()
        assert db.get_cursor(ORDERS_CURSOR) is None


class TestOrderAtomicity:

    def test_failed_item_rolls_back_order_and_customer(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            db.create_order(
                {'order_number': "EXT-1", 'external_id': 1, 'status': "new"},
                [{'product_id': 9999, 'product_name': "Fantasma", 'quantity': 1}],
                new_customer={'name': "Ana"},
            )

        counts = db.get_counts()
        assert counts['customers'] == 0
        assert counts['orders'] == 0
        assert counts['order_items'] == 0

    def test_importer_leaves_no_partial_order(self, db, platform, importer, monkeypatch):
        monkeypatch.setattr(db, "get_product_by_external_id", lambda external_id: {'id': 9999, 'name': "x"})
        platform.orders = [remote_order(1), remote_order(2, email="otro@example.com")]
        platform.orders[1]['line_items'] = []

        result = importer.run()

        assert (result.created, result.failed) == (1, 1)
        assert db.get_order_by_external_id(1) is None
        assert db.get_order_by_external_id(2) is not None
        assert db.get_counts()['customers'] == 1
