from __future__ import annotations

import time
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..domain.models import OrderRecord, ProductRecord
from ..domain.normalize import cell_text, now_iso, parse_day, parse_quantity, timestamp_day
from ..errors import NotFoundError
from ..logging import get_logger
from ..store.records import ORDERS, RecordStore

LOG = get_logger("catalog-orders")

ORDER_FIELDS = ("code", "name", "supplier", "cost", "price", "customer", "size", "quantity", "remark")


class OrderBook:
    """Orders collection: submit, edit in place, delete, and per-day views.

    Every mutation re-loads the whole collection right before saving it.
    """

    def __init__(
        self,
        records: RecordStore,
        *,
        username: Optional[str] = None,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.records = records
        self.username = username
        self.on_change = on_change
        self._last_token = 0

    def next_id(self) -> str:
        """Millisecond timestamp token, strictly increasing within the process."""
        token = int(time.time() * 1000)
        if token <= self._last_token:
            token = self._last_token + 1
        self._last_token = token
        return str(token)

    @staticmethod
    def draft_from_product(product: ProductRecord, **extra: Any) -> Dict[str, Any]:
        """Pre-fill an order form from a catalog product."""
        draft: Dict[str, Any] = {
            "code": product.code,
            "name": product.name,
            "supplier": product.supplier,
            "cost": product.cost,
            "price": product.price,
            "size": "",
            "customer": "",
            "quantity": 1,
            "remark": "",
        }
        draft.update(extra)
        return draft

    def _load(self) -> Dict[str, Dict[str, Any]]:
        return self.records.load(ORDERS)

    def _save(self, orders: Dict[str, Dict[str, Any]]) -> None:
        self.records.save(ORDERS, orders)
        if self.on_change is not None:
            self.on_change()

    def submit(self, fields: Mapping[str, Any], *, edit_id: Optional[str] = None) -> OrderRecord:
        """Create an order, or overwrite `edit_id` in place when given."""
        unknown = set(fields) - set(ORDER_FIELDS) - {"username"}
        if unknown:
            raise ValueError(f"unknown order fields: {', '.join(sorted(unknown))}")
        code = cell_text(fields.get("code"))
        if not code:
            raise ValueError("order code is required")

        orders = self._load()
        if edit_id is not None and edit_id not in orders:
            raise NotFoundError(f"order {edit_id} does not exist")
        order_id = edit_id or self.next_id()
        order = OrderRecord(
            id=order_id,
            code=code,
            name=cell_text(fields.get("name")),
            supplier=cell_text(fields.get("supplier")),
            cost=cell_text(fields.get("cost")),
            price=cell_text(fields.get("price")),
            customer=cell_text(fields.get("customer")),
            size=cell_text(fields.get("size")),
            quantity=parse_quantity(fields.get("quantity")),
            remark=cell_text(fields.get("remark")),
            timestamp=now_iso(),
            username=fields.get("username") or self.username,
        )
        orders[order_id] = order.to_document()
        self._save(orders)
        LOG.info(f"{'Updated' if edit_id else 'Created'} order {order_id} ({order.code} x{order.quantity})")
        return order

    def update_field(self, order_id: str, field: str, value: Any) -> bool:
        """Inline edit of a single field; returns False when the order is gone."""
        if field not in ORDER_FIELDS:
            raise ValueError(f"order field cannot be edited: {field}")
        orders = self._load()
        doc = orders.get(order_id)
        if doc is None:
            LOG.warning(f"Order {order_id} not found; inline edit ignored")
            return False
        doc[field] = parse_quantity(value) if field == "quantity" else cell_text(value)
        self._save(orders)
        return True

    def delete(self, order_id: str) -> bool:
        orders = self._load()
        if orders.pop(order_id, None) is None:
            return False
        self._save(orders)
        LOG.info(f"Deleted order {order_id}")
        return True

    def get(self, order_id: str) -> Optional[OrderRecord]:
        doc = self._load().get(order_id)
        return OrderRecord.from_document(doc) if doc is not None else None

    def all_orders(self) -> List[OrderRecord]:
        return [OrderRecord.from_document(d) for d in self._load().values()]

    def list_orders(self, search: str = "") -> List[OrderRecord]:
        """Newest first, optionally filtered on customer + code + name."""
        needle = (search or "").strip().lower()
        orders = sorted(self.all_orders(), key=lambda o: o.timestamp, reverse=True)
        if not needle:
            return orders
        return [o for o in orders if needle in f"{o.customer}{o.code}{o.name}".lower()]

    def recent(self, username: Optional[str] = None, limit: int = 10) -> List[OrderRecord]:
        who = username if username is not None else self.username
        return [o for o in self.list_orders() if o.username == who][:limit]

    def orders_for_day(self, day: str | date | None = None) -> List[OrderRecord]:
        target = parse_day(day)
        picked = [o for o in self.all_orders() if timestamp_day(o.timestamp) == target]
        return sorted(picked, key=lambda o: o.timestamp)

    def clear_day(self, day: str | date | None = None) -> int:
        """Delete every order placed on `day` (default today); returns the count."""
        target = parse_day(day)
        orders = self._load()
        kept = {oid: doc for oid, doc in orders.items() if timestamp_day(doc.get("timestamp")) != target}
        removed = len(orders) - len(kept)
        self._save(kept)
        LOG.info(f"Cleared {removed} order(s) for {target.isoformat()}")
        return removed
