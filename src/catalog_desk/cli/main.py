from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any, Dict, List, Optional, Sequence

from ..catalog import CatalogService, SourceFile
from ..config import CatalogConfig, load_config
from ..domain.models import PATCHABLE_FIELDS, ProductKey, ProductRecord
from ..domain.normalize import parse_day
from ..errors import CatalogError, NotFoundError, ReportEmptyError, SchemaMismatchError
from ..logging import configure as configure_logging, get_logger
from ..paths import expand_abs
from ..reports import export_daily_orders, export_product_catalog, export_supplier_stats
from ..store import PRODUCTS
from ..sync import HttpSyncBridge

LOG = get_logger("cli-main")


def _config(ns: argparse.Namespace) -> CatalogConfig:
    cfg = load_config(os.getcwd())
    if getattr(ns, "data_dir", None):
        cfg.data_dir = expand_abs(ns.data_dir)
    return cfg


def _service(ns: argparse.Namespace, *, with_sync: bool = True) -> CatalogService:
    cfg = _config(ns)
    svc = CatalogService.from_config(cfg)
    if with_sync and cfg.sync_url:
        svc.attach_sync(HttpSyncBridge(cfg.sync_url, token=cfg.sync_token))
    return svc


def _print(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def _parse_key(text: str) -> ProductKey:
    """`CODE:SUPPLIER` (supplier optional)."""
    code, _, supplier = text.partition(":")
    if not code.strip():
        raise argparse.ArgumentTypeError(f"invalid product key: {text!r}")
    return ProductKey(code.strip(), supplier.strip())


def _collect_files(paths: Sequence[str]) -> List[SourceFile]:
    files: List[SourceFile] = []
    for raw in paths:
        path = expand_abs(raw)
        if os.path.isdir(path):
            for name in sorted(os.listdir(path)):
                full = os.path.join(path, name)
                if os.path.isfile(full):
                    files.append(SourceFile.from_path(full))
        elif os.path.isfile(path):
            files.append(SourceFile.from_path(path))
        else:
            LOG.warning(f"Not found, skipping: {path}")
    return files


def _product_summary(record: Optional[ProductRecord]) -> Dict[str, Any]:
    if record is None:
        return {}
    return {k: v for k, v in record.to_document().items() if k != "id"}


# --------------- catalog commands ---------------
def _init(ns: argparse.Namespace) -> int:
    svc = _service(ns, with_sync=False)

    async def _run() -> int:
        async with svc:
            return await svc.blobs.count()

    images = asyncio.run(_run())
    _print({"data_dir": os.path.dirname(svc.blobs.db_path), "images": images, "products": len(svc.products())})
    return 0


def _upload(ns: argparse.Namespace) -> int:
    svc = _service(ns)
    files = _collect_files(ns.paths)

    async def _run():
        async with svc:
            return await svc.upload_images(files, supplier_hint=ns.supplier or "")

    result = asyncio.run(_run())
    _print(result.summary())
    return 0 if not result.failed else 1


def _import_table(ns: argparse.Namespace) -> int:
    svc = _service(ns)

    async def _run():
        async with svc:
            return await svc.import_workbook(expand_abs(ns.path))

    try:
        result = asyncio.run(_run())
    except SchemaMismatchError as exc:
        LOG.error(f"Import aborted: {exc}")
        _print({"missing": exc.missing})
        return 2
    _print({"imported": result.imported, "skipped": result.skipped, "errors": result.errors})
    return 0 if not result.errors else 1


def _match_folder(ns: argparse.Namespace) -> int:
    svc = _service(ns)
    files = _collect_files([ns.folder])

    async def _run():
        async with svc:
            return await svc.match_folder_to_catalog(files)

    result = asyncio.run(_run())
    _print(
        {
            "matched": result.matched,
            "unmatched": result.unmatched,
            "unmatched_files": result.unmatched_files,
            "written": result.written,
            "errors": result.errors,
        }
    )
    return 0 if not result.errors else 1


def _list(ns: argparse.Namespace) -> int:
    svc = _service(ns, with_sync=False)

    async def _run():
        async with svc:
            return await svc.list_by_supplier()

    groups = asyncio.run(_run())
    out: Dict[str, List[Dict[str, Any]]] = {}
    for supplier, entries in groups.items():
        if ns.supplier and supplier != ns.supplier:
            continue
        out[supplier] = [
            {"id": e.key.storage_id, "has_image": e.image is not None, **_product_summary(e.product)}
            for e in entries
        ]
    _print(out)
    return 0


def _delete(ns: argparse.Namespace) -> int:
    svc = _service(ns)

    async def _run():
        async with svc:
            svc.select(ns.keys)
            return await svc.delete_selection()

    result = asyncio.run(_run())
    _print({"deleted": result.deleted, "errors": result.errors})
    return 0 if not result.errors else 1


def _edit(ns: argparse.Namespace) -> int:
    patch = {f: getattr(ns, f) for f in PATCHABLE_FIELDS if getattr(ns, f) is not None}
    if not patch:
        LOG.error("Nothing to change; pass at least one field option.")
        return 2
    svc = _service(ns)

    async def _run():
        async with svc:
            svc.select(ns.keys)
            return await svc.edit_selection(patch)

    updated = asyncio.run(_run())
    _print({"updated": updated})
    return 0


# --------------- orders ---------------
def _order_fields(ns: argparse.Namespace) -> Dict[str, Any]:
    names = ("code", "name", "supplier", "cost", "price", "customer", "size", "quantity", "remark")
    return {n: getattr(ns, n) for n in names if getattr(ns, n, None) is not None}


def _order_add(ns: argparse.Namespace) -> int:
    svc = _service(ns)
    fields = _order_fields(ns)
    if ns.product:
        doc = svc.records.load(PRODUCTS).get(ns.product.storage_id)
        if doc is None:
            LOG.error(f"Product {ns.product} not found")
            return 1
        draft = svc.orders.draft_from_product(ProductRecord.from_document(doc))
        draft.update(fields)
        fields = draft
    try:
        order = svc.orders.submit(fields)
    except ValueError as exc:
        LOG.error(f"Order rejected: {exc}")
        return 2
    _print(order.to_document())
    return 0


def _order_edit(ns: argparse.Namespace) -> int:
    svc = _service(ns)
    current = svc.orders.get(ns.order_id)
    if current is None:
        LOG.error(f"Order {ns.order_id} not found")
        return 1
    fields = {k: v for k, v in current.to_document().items() if k not in ("id", "timestamp")}
    fields.update(_order_fields(ns))
    try:
        order = svc.orders.submit(fields, edit_id=ns.order_id)
    except (ValueError, NotFoundError) as exc:
        LOG.error(f"Order edit rejected: {exc}")
        return 2
    _print(order.to_document())
    return 0


def _order_delete(ns: argparse.Namespace) -> int:
    svc = _service(ns)
    if not svc.orders.delete(ns.order_id):
        LOG.error(f"Order {ns.order_id} not found")
        return 1
    return 0


def _order_list(ns: argparse.Namespace) -> int:
    svc = _service(ns, with_sync=False)
    if ns.day:
        orders = svc.orders.orders_for_day(ns.day)
    else:
        orders = svc.orders.list_orders(ns.search or "")
    _print([o.to_document() for o in orders])
    return 0


def _order_clear_day(ns: argparse.Namespace) -> int:
    svc = _service(ns)
    removed = svc.orders.clear_day(ns.day)
    _print({"removed": removed})
    return 0


def _add_order_field_args(p: argparse.ArgumentParser, *, code_required: bool) -> None:
    p.add_argument("--code", required=code_required)
    p.add_argument("--name")
    p.add_argument("--supplier")
    p.add_argument("--cost")
    p.add_argument("--price")
    p.add_argument("--customer")
    p.add_argument("--size")
    p.add_argument("--quantity", type=int)
    p.add_argument("--remark")


# --------------- exports ---------------
def _default_output(prefix: str, day: Optional[str]) -> str:
    return os.path.join(os.getcwd(), f"{prefix}_{parse_day(day).isoformat()}.xlsx")


def _export_orders(ns: argparse.Namespace) -> int:
    svc = _service(ns, with_sync=False)
    out = expand_abs(ns.output) if ns.output else _default_output("订单记录", ns.day)
    try:
        count = export_daily_orders(svc.orders.all_orders(), ns.day, out)
    except ReportEmptyError as exc:
        LOG.warning(str(exc))
        return 1
    _print({"path": out, "rows": count})
    return 0


def _export_stats(ns: argparse.Namespace) -> int:
    svc = _service(ns, with_sync=False)
    out = expand_abs(ns.output) if ns.output else _default_output("供应商统计", ns.day)
    try:
        stats = export_supplier_stats(svc.orders.all_orders(), ns.day, out)
    except ReportEmptyError as exc:
        LOG.warning(str(exc))
        return 1
    _print({"path": out, "suppliers": [s.supplier for s in stats]})
    return 0


def _export_products(ns: argparse.Namespace) -> int:
    svc = _service(ns, with_sync=False)
    out = expand_abs(ns.output) if ns.output else os.path.join(os.getcwd(), "商品数据.xlsx")
    try:
        count = export_product_catalog(svc.products(), out)
    except ReportEmptyError as exc:
        LOG.warning(str(exc))
        return 1
    _print({"path": out, "rows": count})
    return 0


# --------------- sync ---------------
def _sync_bridge(ns: argparse.Namespace) -> Optional[HttpSyncBridge]:
    cfg = _config(ns)
    if not cfg.sync_url:
        LOG.error("CATALOG_SYNC_URL is not configured")
        return None
    return HttpSyncBridge(cfg.sync_url, token=cfg.sync_token)


def _sync_push(ns: argparse.Namespace) -> int:
    bridge = _sync_bridge(ns)
    if bridge is None:
        return 2
    svc = _service(ns, with_sync=False)
    bridge.push(svc.records.snapshot())
    return 0


def _sync_poll(ns: argparse.Namespace) -> int:
    bridge = _sync_bridge(ns)
    if bridge is None:
        return 2
    svc = _service(ns, with_sync=False)
    bridge.subscribe(svc.apply_remote_update)
    applied = bridge.poll()
    _print({"applied": applied})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalog-desk",
        description="Product catalog, image store and order book for a small shop.",
    )
    parser.add_argument("--data-dir", help="Override CATALOG_DATA_DIR for this run")
    parser.add_argument("--log-level", help="Override LOG_LEVEL for this run (debug, info, warning, error)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser("init", help="Create/ensure both local stores exist")
    init.set_defaults(handler=_init)

    upload = subparsers.add_parser("upload", help="Compress and store images (files or folders)")
    upload.add_argument("paths", nargs="+")
    upload.add_argument("--supplier", help="Supplier stored with every uploaded image")
    upload.set_defaults(handler=_upload)

    imp = subparsers.add_parser("import-table", help="Import products from an .xlsx table")
    imp.add_argument("path")
    imp.set_defaults(handler=_import_table)

    match = subparsers.add_parser("match-folder", help="Attach folder images to products by code")
    match.add_argument("folder")
    match.set_defaults(handler=_match_folder)

    lst = subparsers.add_parser("list", help="List catalog entries grouped by supplier")
    lst.add_argument("--supplier")
    lst.set_defaults(handler=_list)

    delete = subparsers.add_parser("delete", help="Delete products and their images")
    delete.add_argument("keys", nargs="+", type=_parse_key, help="CODE:SUPPLIER")
    delete.set_defaults(handler=_delete)

    edit = subparsers.add_parser("edit", help="Batch edit product fields")
    edit.add_argument("keys", nargs="+", type=_parse_key, help="CODE:SUPPLIER")
    for f in PATCHABLE_FIELDS:
        edit.add_argument(f"--{f}")
    edit.set_defaults(handler=_edit)

    order = subparsers.add_parser("order", help="Order book")
    order_sub = order.add_subparsers(dest="order_cmd", required=True)

    o_add = order_sub.add_parser("add", help="Submit a new order")
    _add_order_field_args(o_add, code_required=False)
    o_add.add_argument("--product", type=_parse_key, help="Pre-fill from catalog product CODE:SUPPLIER")
    o_add.set_defaults(handler=_order_add)

    o_edit = order_sub.add_parser("edit", help="Edit an existing order in place")
    o_edit.add_argument("order_id")
    _add_order_field_args(o_edit, code_required=False)
    o_edit.set_defaults(handler=_order_edit)

    o_del = order_sub.add_parser("delete", help="Delete one order")
    o_del.add_argument("order_id")
    o_del.set_defaults(handler=_order_delete)

    o_list = order_sub.add_parser("list", help="List orders, newest first")
    o_list.add_argument("--search")
    o_list.add_argument("--day", help="YYYY-MM-DD; restricts to one day")
    o_list.set_defaults(handler=_order_list)

    o_clear = order_sub.add_parser("clear-day", help="Delete every order of one day")
    o_clear.add_argument("--day", help="YYYY-MM-DD (default: today)")
    o_clear.set_defaults(handler=_order_clear_day)

    export = subparsers.add_parser("export", help="Write .xlsx reports")
    export_sub = export.add_subparsers(dest="export_cmd", required=True)
    for name, handler, help_text in (
        ("orders", _export_orders, "Daily order list"),
        ("stats", _export_stats, "Supplier statistics for one day"),
        ("products", _export_products, "Full product catalog"),
    ):
        p = export_sub.add_parser(name, help=help_text)
        p.add_argument("--output", help="Target .xlsx path")
        if name != "products":
            p.add_argument("--day", help="YYYY-MM-DD (default: today)")
        p.set_defaults(handler=handler)

    sync = subparsers.add_parser("sync", help="Push or poll the remote snapshot")
    sync_sub = sync.add_subparsers(dest="sync_cmd", required=True)
    sync_sub.add_parser("push", help="Upload local collections").set_defaults(handler=_sync_push)
    sync_sub.add_parser("poll", help="Apply a newer remote snapshot").set_defaults(handler=_sync_poll)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")

    parser = build_parser()
    args = parser.parse_args(provided)
    if args.log_level:
        configure_logging(level=args.log_level)
    try:
        code = args.handler(args)
    except CatalogError as exc:
        LOG.error(f"{type(exc).__name__}: {exc}")
        code = 1
    LOG.info(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
