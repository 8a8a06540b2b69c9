from .export import (
    SupplierOrderLine,
    SupplierStat,
    export_daily_orders,
    export_product_catalog,
    export_supplier_stats,
    supplier_order_report,
    supplier_stats,
)

__all__ = [
    "SupplierOrderLine",
    "SupplierStat",
    "export_daily_orders",
    "export_product_catalog",
    "export_supplier_stats",
    "supplier_order_report",
    "supplier_stats",
]
