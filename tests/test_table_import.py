from __future__ import annotations

import pytest
from openpyxl import Workbook

from catalog_desk.catalog.table_import import check_header, field_for_column, normalize_row, read_workbook
from catalog_desk.errors import SchemaMismatchError


def test_header_titles_map_to_fields() -> None:
    assert field_for_column("商品编码") == "code"
    assert field_for_column(" 尺码 ") == "size"
    assert field_for_column("Price") == "price"
    assert field_for_column("颜色") is None
    assert field_for_column(None) is None


def test_check_header_lists_every_missing_column() -> None:
    with pytest.raises(SchemaMismatchError) as excinfo:
        check_header(["商品编码", "商品名称", "备注"])
    assert excinfo.value.missing == ["供应商(supplier)", "成本(cost)", "单价(price)", "尺码(size)"]
    check_header(["code", "name", "supplier", "cost", "price", "size"])


def test_normalize_row_drops_unknown_columns() -> None:
    row = normalize_row({"商品编码": "A1", "颜色": "red", "备注": None})
    assert row == {"code": "A1", "remark": None}


def test_read_workbook_skips_empty_rows(tmp_path) -> None:
    wb = Workbook()
    ws = wb.active
    ws.append(["商品编码", "商品名称", "供应商", "成本", "单价", "尺码"])
    ws.append(["A1", "Runner", "S1", 60, 100, 42])
    ws.append(["", "", "", "", "", ""])
    ws.append(["A2", "Walker", "S1", 50, 80, "M"])
    path = tmp_path / "t.xlsx"
    wb.save(path)

    rows = read_workbook(str(path))
    assert [r["商品编码"] for r in rows] == ["A1", "A2"]
    assert rows[1]["尺码"] == "M"


def test_read_workbook_rejects_bad_header(tmp_path) -> None:
    wb = Workbook()
    wb.active.append(["编码", "名称"])
    wb.active.append(["A1", "Runner"])
    path = tmp_path / "bad.xlsx"
    wb.save(path)
    with pytest.raises(SchemaMismatchError):
        read_workbook(str(path))
