from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from openpyxl import Workbook
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from ..domain.models import OrderRecord, ProductRecord
from ..domain.normalize import parse_day, size_sort_key, timestamp_day, to_number
from ..errors import ReportEmptyError
from ..logging import get_logger

LOG = get_logger("reports-export")

UNKNOWN_SUPPLIER = "未知供应商"
TOTAL_LABEL = "总计"
MAX_SHEET_TITLE = 31

ORDER_SHEET = "订单记录"
ORDER_COLUMNS: Sequence[Tuple[str, int]] = (
    ("客户", 15),
    ("商品编码", 15),
    ("商品名称", 30),
    ("尺码", 10),
    ("单价", 10),
    ("成本", 10),
    ("数量", 10),
    ("金额", 12),
    ("毛利", 12),
    ("供应商", 15),
    ("日期", 20),
    ("备注", 30),
)

SUMMARY_COLUMNS: Sequence[Tuple[str, int]] = (
    ("供应商", 20),
    ("总成本", 12),
    ("总数量", 10),
    ("总金额", 12),
    ("毛利", 12),
    ("毛利率", 10),
    ("订单数", 10),
)
# (sheet title, stat attribute, numeric); numeric sorts are descending.
SUMMARY_SORTS: Sequence[Tuple[str, str, bool]] = (
    ("按总成本排序", "total_cost", True),
    ("按供应商排序", "supplier", False),
    ("按总数量排序", "total_quantity", True),
    ("按总金额排序", "total_amount", True),
    ("按毛利率排序", "profit_rate", True),
)

DETAIL_COLUMNS: Sequence[Tuple[str, int]] = (
    ("时间", 20),
    ("商品编码", 15),
    ("商品名称", 30),
    ("客户", 15),
    ("数量", 10),
    ("单价", 10),
    ("金额", 12),
    ("成本", 10),
    ("毛利", 12),
    ("备注", 20),
)

PRODUCT_SHEET = "商品数据"
PRODUCT_COLUMNS: Sequence[Tuple[str, int]] = (
    ("商品编码", 15),
    ("商品名称", 30),
    ("供应商", 15),
    ("成本", 10),
    ("单价", 10),
    ("尺码", 10),
    ("备注", 30),
    ("最后更新时间", 20),
)

_INVALID_TITLE_CHARS = re.compile(r"[\[\]:*?/\\]")


@dataclass
class SupplierStat:
    supplier: str
    order_count: int = 0
    total_quantity: int = 0
    total_amount: float = 0.0
    total_cost: float = 0.0
    orders: List[OrderRecord] = field(default_factory=list)

    @property
    def gross_profit(self) -> float:
        return self.total_amount - self.total_cost

    @property
    def profit_rate(self) -> float:
        return 0.0 if self.total_amount == 0 else self.gross_profit / self.total_amount * 100

    def add(self, order: OrderRecord) -> None:
        qty = order.quantity
        self.order_count += 1
        self.total_quantity += qty
        self.total_amount += qty * to_number(order.price)
        self.total_cost += qty * to_number(order.cost)
        self.orders.append(order)


@dataclass
class SupplierOrderLine:
    """One product on the supplier order sheet: quantities per size."""

    code: str
    name: str
    supplier: str
    sizes: Dict[str, int] = field(default_factory=dict)
    total: int = 0

    def sorted_sizes(self) -> List[Tuple[str, int]]:
        return sorted(self.sizes.items(), key=lambda kv: size_sort_key(kv[0]))


def _display_time(timestamp: Optional[str]) -> str:
    if not timestamp:
        return ""
    try:
        dt = datetime.fromisoformat(str(timestamp).replace("Z", "+00:00"))
    except ValueError:
        return str(timestamp)
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def _sheet_title(name: str) -> str:
    title = _INVALID_TITLE_CHARS.sub("_", name or UNKNOWN_SUPPLIER)
    return title[:MAX_SHEET_TITLE] or UNKNOWN_SUPPLIER


def _write_sheet(ws: Worksheet, columns: Sequence[Tuple[str, int]], rows: Iterable[Sequence[Any]]) -> None:
    ws.append([title for title, _ in columns])
    for row in rows:
        ws.append(list(row))
    for idx, (_, width) in enumerate(columns, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = width


def orders_on(orders: Iterable[OrderRecord], day: str | date | None) -> List[OrderRecord]:
    """Orders placed on `day`, oldest first; raises ReportEmptyError when none."""
    target = parse_day(day)
    picked = sorted((o for o in orders if timestamp_day(o.timestamp) == target), key=lambda o: o.timestamp)
    if not picked:
        raise ReportEmptyError(f"no orders on {target.isoformat()}")
    return picked


def export_daily_orders(orders: Iterable[OrderRecord], day: str | date | None, path: str) -> int:
    """Write the day's order list; returns the number of rows written."""
    picked = orders_on(orders, day)
    rows = []
    for o in picked:
        price = to_number(o.price)
        cost = to_number(o.cost)
        amount = o.quantity * price
        profit = amount - o.quantity * cost
        rows.append(
            [
                o.customer,
                o.code,
                o.name,
                o.size,
                round(price),
                round(cost),
                o.quantity,
                round(amount),
                round(profit),
                o.supplier,
                _display_time(o.timestamp),
                o.remark,
            ]
        )
    wb = Workbook()
    ws = wb.active
    ws.title = ORDER_SHEET
    _write_sheet(ws, ORDER_COLUMNS, rows)
    wb.save(path)
    LOG.info(f"Exported {len(rows)} order(s) to {path}")
    return len(rows)


def supplier_stats(orders: Iterable[OrderRecord]) -> List[SupplierStat]:
    """Per-supplier totals in first-seen order."""
    stats: Dict[str, SupplierStat] = {}
    for order in orders:
        supplier = order.supplier or UNKNOWN_SUPPLIER
        stats.setdefault(supplier, SupplierStat(supplier)).add(order)
    return list(stats.values())


def _summary_row(stat: SupplierStat) -> List[Any]:
    return [
        stat.supplier,
        round(stat.total_cost),
        stat.total_quantity,
        round(stat.total_amount),
        round(stat.gross_profit),
        f"{stat.profit_rate:.2f}%",
        stat.order_count,
    ]


def export_supplier_stats(orders: Iterable[OrderRecord], day: str | date | None, path: str) -> List[SupplierStat]:
    """Write five sorted summary sheets plus one detail sheet per supplier."""
    stats = supplier_stats(orders_on(orders, day))
    totals = SupplierStat(TOTAL_LABEL)
    for stat in stats:
        totals.order_count += stat.order_count
        totals.total_quantity += stat.total_quantity
        totals.total_amount += stat.total_amount
        totals.total_cost += stat.total_cost

    wb = Workbook()
    wb.remove(wb.active)
    for title, attr, numeric in SUMMARY_SORTS:
        if numeric:
            ordered = sorted(stats, key=lambda s: getattr(s, attr), reverse=True)
        else:
            ordered = sorted(stats, key=lambda s: getattr(s, attr))
        rows = [_summary_row(s) for s in ordered]
        rows.append(_summary_row(totals))
        _write_sheet(wb.create_sheet(title), SUMMARY_COLUMNS, rows)

    for stat in stats:
        rows = []
        for o in stat.orders:
            qty = o.quantity
            price = to_number(o.price)
            cost = to_number(o.cost)
            rows.append(
                [
                    _display_time(o.timestamp),
                    o.code,
                    o.name,
                    o.customer,
                    qty,
                    o.price,
                    f"{qty * price:.2f}",
                    o.cost,
                    f"{qty * (price - cost):.2f}",
                    o.remark,
                ]
            )
        _write_sheet(wb.create_sheet(_sheet_title(stat.supplier)), DETAIL_COLUMNS, rows)

    wb.save(path)
    LOG.info(f"Exported statistics for {len(stats)} supplier(s) to {path}")
    return stats


def export_product_catalog(products: Iterable[ProductRecord], path: str) -> int:
    products = list(products)
    if not products:
        raise ReportEmptyError("no products to export")
    rows = [
        [p.code, p.name, p.supplier, p.cost, p.price, p.size, p.remark, _display_time(p.timestamp)]
        for p in products
    ]
    wb = Workbook()
    ws = wb.active
    ws.title = PRODUCT_SHEET
    _write_sheet(ws, PRODUCT_COLUMNS, rows)
    wb.save(path)
    LOG.info(f"Exported {len(rows)} product(s) to {path}")
    return len(rows)


def supplier_order_report(
    orders: Iterable[OrderRecord], day: str | date | None
) -> Dict[str, List[SupplierOrderLine]]:
    """Group a day's orders by supplier, then product code, summing per size."""
    report: Dict[str, Dict[str, SupplierOrderLine]] = {}
    for o in orders_on(orders, day):
        supplier = o.supplier or UNKNOWN_SUPPLIER
        lines = report.setdefault(supplier, {})
        line = lines.get(o.code)
        if line is None:
            line = lines[o.code] = SupplierOrderLine(code=o.code, name=o.name, supplier=supplier)
        size = o.size or "-"
        line.sizes[size] = line.sizes.get(size, 0) + o.quantity
        line.total += o.quantity
    return {supplier: list(lines.values()) for supplier, lines in report.items()}
