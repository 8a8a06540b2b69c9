from __future__ import annotations

from typing import List

from ..logging import get_logger
from ..store.records import SETTING_GRID_COLUMNS, SETTING_HIDE_PRICE_CUSTOMERS, RecordStore

LOG = get_logger("catalog-settings")

DEFAULT_GRID_COLUMNS = 6
MIN_GRID_COLUMNS = 1
MAX_GRID_COLUMNS = 12


class Preferences:
    """Small persisted UI preferences kept next to the collections."""

    def __init__(self, records: RecordStore) -> None:
        self.records = records

    def grid_columns(self) -> int:
        value = self.records.get_setting(SETTING_GRID_COLUMNS, DEFAULT_GRID_COLUMNS)
        try:
            return min(MAX_GRID_COLUMNS, max(MIN_GRID_COLUMNS, int(value)))
        except (TypeError, ValueError):
            return DEFAULT_GRID_COLUMNS

    def set_grid_columns(self, columns: int) -> int:
        columns = min(MAX_GRID_COLUMNS, max(MIN_GRID_COLUMNS, int(columns)))
        self.records.set_setting(SETTING_GRID_COLUMNS, columns)
        return columns

    def hidden_price_customers(self) -> List[str]:
        value = self.records.get_setting(SETTING_HIDE_PRICE_CUSTOMERS, [])
        if not isinstance(value, list):
            return []
        return [str(v) for v in value]

    def add_hidden_price_customer(self, customer: str) -> bool:
        customer = (customer or "").strip()
        if not customer:
            raise ValueError("customer name is required")
        current = self.hidden_price_customers()
        if customer in current:
            return False
        current.append(customer)
        self.records.set_setting(SETTING_HIDE_PRICE_CUSTOMERS, current)
        LOG.info(f"Prices hidden for customer {customer!r}")
        return True

    def remove_hidden_price_customer(self, customer: str) -> bool:
        current = self.hidden_price_customers()
        if customer not in current:
            return False
        current.remove(customer)
        self.records.set_setting(SETTING_HIDE_PRICE_CUSTOMERS, current)
        return True

    def hides_price_for(self, customer: str) -> bool:
        return customer in self.hidden_price_customers()
