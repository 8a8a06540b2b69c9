"""Product table parsing: header mapping, validation and .xlsx reading."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Sequence

import openpyxl

from ..errors import SchemaMismatchError
from ..logging import get_logger

LOG = get_logger("catalog-import")

# Spreadsheet column titles as exported by the shop, mapped onto record fields.
COLUMN_FIELDS: Dict[str, str] = {
    "商品编码": "code",
    "商品名称": "name",
    "供应商": "supplier",
    "成本": "cost",
    "单价": "price",
    "尺码": "size",
    "备注": "remark",
}
FIELD_COLUMNS: Dict[str, str] = {v: k for k, v in COLUMN_FIELDS.items()}

REQUIRED_FIELDS = ("code", "name", "supplier", "cost", "price", "size")
OPTIONAL_FIELDS = ("remark",)


def field_for_column(column: Any) -> str | None:
    """Map a header cell to a record field; accepts Chinese titles or field names."""
    if column is None:
        return None
    title = str(column).strip()
    if title in COLUMN_FIELDS:
        return COLUMN_FIELDS[title]
    lowered = title.lower()
    if lowered in REQUIRED_FIELDS or lowered in OPTIONAL_FIELDS:
        return lowered
    return None


def missing_fields(columns: Iterable[Any]) -> List[str]:
    present = {field_for_column(c) for c in columns}
    return [f for f in REQUIRED_FIELDS if f not in present]


def check_header(columns: Iterable[Any]) -> None:
    missing = missing_fields(columns)
    if missing:
        labels = [f"{FIELD_COLUMNS[f]}({f})" for f in missing]
        LOG.error(f"Table header is missing required columns: {', '.join(labels)}")
        raise SchemaMismatchError(labels)


def normalize_row(row: Mapping[Any, Any]) -> Dict[str, Any]:
    """Re-key a raw row by record field name, dropping unknown columns."""
    out: Dict[str, Any] = {}
    for column, value in row.items():
        name = field_for_column(column)
        if name is not None:
            out[name] = value
    return out


def read_workbook(path: str) -> List[Dict[str, Any]]:
    """Read the first sheet of an .xlsx file into header-keyed rows.

    The header row is validated before any data row is returned. Fully
    empty rows are dropped; blank cells are kept as None.
    """
    LOG.info(f"Reading product table {path}")
    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows = ws.iter_rows(values_only=True)
        try:
            header: Sequence[Any] = next(rows)
        except StopIteration:
            LOG.warning("Workbook is empty")
            return []
        check_header(header)
        titles = [str(h).strip() if h is not None else None for h in header]
        out: List[Dict[str, Any]] = []
        for values in rows:
            if values is None or all(v is None or (isinstance(v, str) and not v.strip()) for v in values):
                continue
            out.append({t: v for t, v in zip(titles, values) if t})
        LOG.info(f"Read {len(out)} data row(s) with columns {[t for t in titles if t]}")
        return out
    finally:
        wb.close()
