from __future__ import annotations

from datetime import date

import pytest

from catalog_desk.catalog.orders import OrderBook
from catalog_desk.catalog.settings import Preferences
from catalog_desk.domain.models import ProductRecord
from catalog_desk.errors import NotFoundError
from catalog_desk.store.records import ORDERS, RecordStore


def _seed(records: RecordStore) -> None:
    records.save(
        ORDERS,
        {
            "1": {"id": "1", "code": "A1", "customer": "张三", "quantity": 2, "timestamp": "2024-05-01T09:00:00.000"},
            "2": {"id": "2", "code": "B2", "customer": "李四", "quantity": 1, "timestamp": "2024-05-01T18:30:00.000"},
            "3": {"id": "3", "code": "A1", "customer": "王五", "quantity": 5, "timestamp": "2024-05-02T08:15:00.000"},
        },
    )


def test_submit_creates_order_with_defaults(records: RecordStore) -> None:
    book = OrderBook(records, username="alice")
    order = book.submit({"code": "A1", "customer": "张三", "price": 120.0})
    stored = records.load(ORDERS)[order.id]
    assert stored["quantity"] == 1
    assert stored["price"] == "120"
    assert stored["username"] == "alice"


def test_order_ids_strictly_increase(records: RecordStore) -> None:
    book = OrderBook(records)
    ids = [int(book.next_id()) for _ in range(50)]
    assert ids == sorted(set(ids))


def test_edit_overwrites_in_place(records: RecordStore) -> None:
    book = OrderBook(records)
    order = book.submit({"code": "A1", "quantity": 1})
    edited = book.submit({"code": "A1", "quantity": "3", "remark": "rush"}, edit_id=order.id)
    assert edited.id == order.id
    orders = records.load(ORDERS)
    assert len(orders) == 1
    assert orders[order.id]["quantity"] == 3
    assert orders[order.id]["remark"] == "rush"


def test_edit_of_missing_order_raises(records: RecordStore) -> None:
    with pytest.raises(NotFoundError):
        OrderBook(records).submit({"code": "A1"}, edit_id="404")


@pytest.mark.parametrize("quantity", [0, -2, "abc"])
def test_invalid_quantity_rejected(records: RecordStore, quantity) -> None:
    with pytest.raises(ValueError):
        OrderBook(records).submit({"code": "A1", "quantity": quantity})
    assert records.load(ORDERS) == {}


def test_code_and_field_names_validated(records: RecordStore) -> None:
    book = OrderBook(records)
    with pytest.raises(ValueError):
        book.submit({"customer": "张三"})
    with pytest.raises(ValueError):
        book.submit({"code": "A1", "colour": "red"})


def test_update_field_and_delete(records: RecordStore) -> None:
    _seed(records)
    book = OrderBook(records)
    assert book.update_field("1", "size", 42.0) is True
    assert book.get("1").size == "42"
    assert book.update_field("missing", "size", "40") is False
    with pytest.raises(ValueError):
        book.update_field("1", "timestamp", "x")

    assert book.delete("2") is True
    assert book.delete("2") is False
    assert book.get("2") is None


def test_list_search_and_recent(records: RecordStore) -> None:
    _seed(records)
    book = OrderBook(records)
    assert [o.id for o in book.list_orders()] == ["3", "2", "1"]
    assert [o.id for o in book.list_orders("a1")] == ["3", "1"]
    assert [o.id for o in book.list_orders("李四")] == ["2"]

    mine = OrderBook(records, username="bob")
    mine.submit({"code": "C3"})
    assert [o.code for o in mine.recent()] == ["C3"]


def test_orders_for_day_and_clear_day(records: RecordStore) -> None:
    _seed(records)
    book = OrderBook(records)
    assert [o.id for o in book.orders_for_day("2024-05-01")] == ["1", "2"]
    assert book.clear_day(date(2024, 5, 1)) == 2
    assert list(records.load(ORDERS)) == ["3"]
    assert book.clear_day("2024-05-01") == 0


def test_change_hook_runs_after_each_save(records: RecordStore) -> None:
    calls = []
    book = OrderBook(records, on_change=lambda: calls.append(len(records.load(ORDERS))))
    order = book.submit({"code": "A1"})
    book.delete(order.id)
    assert calls == [1, 0]


def test_draft_from_product() -> None:
    product = ProductRecord(code="A1", supplier="S1", name="Runner", cost="60", price="100")
    draft = OrderBook.draft_from_product(product, customer="张三")
    assert draft["supplier"] == "S1"
    assert draft["customer"] == "张三"
    assert draft["quantity"] == 1


def test_preferences(records: RecordStore) -> None:
    prefs = Preferences(records)
    assert prefs.grid_columns() == 6
    assert prefs.set_grid_columns(40) == 12
    assert prefs.grid_columns() == 12

    assert prefs.add_hidden_price_customer(" 张三 ") is True
    assert prefs.add_hidden_price_customer("张三") is False
    assert prefs.hides_price_for("张三")
    with pytest.raises(ValueError):
        prefs.add_hidden_price_customer("   ")
    assert prefs.remove_hidden_price_customer("张三") is True
    assert prefs.hidden_price_customers() == []
