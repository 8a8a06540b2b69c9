from __future__ import annotations

import pytest
from openpyxl import load_workbook

from catalog_desk.domain.models import OrderRecord, ProductRecord
from catalog_desk.errors import ReportEmptyError
from catalog_desk.reports import (
    export_daily_orders,
    export_product_catalog,
    export_supplier_stats,
    supplier_order_report,
)

DAY = "2024-05-01"


def _orders():
    return [
        OrderRecord(id="1", code="A1", name="Runner", supplier="Nike", cost="60", price="100",
                    customer="张三", size="42", quantity=2, timestamp="2024-05-01T09:00:00.000"),
        OrderRecord(id="2", code="A1", name="Runner", supplier="Nike", cost="60", price="100",
                    customer="李四", size="40", quantity=1, timestamp="2024-05-01T10:00:00.000"),
        OrderRecord(id="3", code="B2", name="Walker", supplier="Adidas", cost="50", price="90",
                    customer="王五", size="M", quantity=4, timestamp="2024-05-01T11:00:00.000"),
        OrderRecord(id="4", code="C3", name="Sandal", supplier="", cost="10", price="30",
                    customer="赵六", size="", quantity=1, timestamp="2024-05-01T12:00:00.000"),
        OrderRecord(id="5", code="A1", name="Runner", supplier="Nike", cost="60", price="100",
                    customer="张三", size="42", quantity=9, timestamp="2024-05-02T09:00:00.000"),
    ]


def _rows(ws):
    return [list(r) for r in ws.iter_rows(values_only=True)]


def test_daily_orders_sheet(tmp_path) -> None:
    path = tmp_path / "orders.xlsx"
    count = export_daily_orders(_orders(), DAY, str(path))
    assert count == 4

    wb = load_workbook(path)
    assert wb.sheetnames == ["订单记录"]
    ws = wb["订单记录"]
    rows = _rows(ws)
    assert rows[0] == ["客户", "商品编码", "商品名称", "尺码", "单价", "成本", "数量", "金额", "毛利", "供应商", "日期", "备注"]
    first = rows[1]
    assert first[:9] == ["张三", "A1", "Runner", "42", 100, 60, 2, 200, 80]
    assert first[9] == "Nike"
    assert first[10] == "2024-05-01 09:00:00"
    assert ws.column_dimensions["C"].width == 30
    assert ws.column_dimensions["L"].width == 30
    assert ws.column_dimensions["H"].width == 12


def test_supplier_stats_workbook(tmp_path) -> None:
    path = tmp_path / "stats.xlsx"
    stats = export_supplier_stats(_orders(), DAY, str(path))
    assert [s.supplier for s in stats] == ["Nike", "Adidas", "未知供应商"]

    wb = load_workbook(path)
    assert wb.sheetnames == [
        "按总成本排序",
        "按供应商排序",
        "按总数量排序",
        "按总金额排序",
        "按毛利率排序",
        "Nike",
        "Adidas",
        "未知供应商",
    ]

    by_cost = _rows(wb["按总成本排序"])
    assert by_cost[0] == ["供应商", "总成本", "总数量", "总金额", "毛利", "毛利率", "订单数"]
    # Adidas cost 200, Nike 180, unknown 10
    assert [r[0] for r in by_cost[1:]] == ["Adidas", "Nike", "未知供应商", "总计"]
    assert by_cost[-1] == ["总计", 390, 8, 690, 300, "43.48%", 4]

    by_rate = _rows(wb["按毛利率排序"])
    # unknown 66.67%, Nike 40%, Adidas 44.44%
    assert [r[0] for r in by_rate[1:-1]] == ["未知供应商", "Adidas", "Nike"]

    nike = _rows(wb["Nike"])
    assert nike[0] == ["时间", "商品编码", "商品名称", "客户", "数量", "单价", "金额", "成本", "毛利", "备注"]
    assert len(nike) == 3
    assert nike[1][6] == "200.00"
    assert nike[1][8] == "80.00"
    assert wb["Nike"].column_dimensions["A"].width == 20


def test_long_supplier_names_are_truncated(tmp_path) -> None:
    name = "Very Long Supplier Name That Exceeds Limits"
    order = OrderRecord(id="1", code="A1", supplier=name, price="1", cost="1", timestamp="2024-05-01T09:00:00")
    path = tmp_path / "stats.xlsx"
    export_supplier_stats([order], DAY, str(path))
    assert load_workbook(path).sheetnames[-1] == name[:31]


def test_empty_day_raises(tmp_path) -> None:
    with pytest.raises(ReportEmptyError):
        export_daily_orders(_orders(), "2023-01-01", str(tmp_path / "x.xlsx"))
    with pytest.raises(ReportEmptyError):
        export_supplier_stats([], DAY, str(tmp_path / "y.xlsx"))
    with pytest.raises(ReportEmptyError):
        export_product_catalog([], str(tmp_path / "z.xlsx"))
    assert not (tmp_path / "x.xlsx").exists()


def test_product_catalog_sheet(tmp_path) -> None:
    products = [
        ProductRecord(code="A1", supplier="Nike", name="Runner", cost="60", price="100", size="42",
                      timestamp="2024-05-01T09:00:00.000"),
    ]
    path = tmp_path / "products.xlsx"
    assert export_product_catalog(products, str(path)) == 1
    ws = load_workbook(path)["商品数据"]
    rows = _rows(ws)
    assert rows[0] == ["商品编码", "商品名称", "供应商", "成本", "单价", "尺码", "备注", "最后更新时间"]
    assert rows[1][:6] == ["A1", "Runner", "Nike", "60", "100", "42"]
    assert rows[1][7] == "2024-05-01 09:00:00"
    assert ws.column_dimensions["H"].width == 20


def test_supplier_order_report_groups_sizes() -> None:
    orders = _orders() + [
        OrderRecord(id="6", code="A1", name="Runner", supplier="Nike", size="39.5", quantity=3,
                    timestamp="2024-05-01T13:00:00"),
        OrderRecord(id="7", code="A1", name="Runner", supplier="Nike", size="XL", quantity=1,
                    timestamp="2024-05-01T14:00:00"),
    ]
    report = supplier_order_report(orders, DAY)
    assert list(report) == ["Nike", "Adidas", "未知供应商"]
    (line,) = report["Nike"]
    assert line.code == "A1"
    assert line.total == 7
    assert line.sorted_sizes() == [("39.5", 3), ("40", 1), ("42", 2), ("XL", 1)]
    assert report["未知供应商"][0].sizes == {"-": 1}
