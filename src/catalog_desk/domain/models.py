from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional

from .normalize import cell_text, now_iso, parse_quantity

KEY_SEPARATOR = "_"
PRODUCT_TEXT_FIELDS = ("name", "cost", "price", "size", "remark")
PATCHABLE_FIELDS = ("name", "supplier", "cost", "price", "size", "remark")


@dataclass(frozen=True, order=True)
class ProductKey:
    """Composite identity of a product variant and its image."""

    code: str
    supplier: str = ""

    @property
    def storage_id(self) -> str:
        return f"{self.code}{KEY_SEPARATOR}{self.supplier}"

    def __str__(self) -> str:
        return self.storage_id


@dataclass
class ProductRecord:
    code: str
    supplier: str = ""
    name: str = ""
    cost: str = ""
    price: str = ""
    size: str = ""
    remark: str = ""
    timestamp: str = field(default_factory=now_iso)

    @property
    def key(self) -> ProductKey:
        return ProductKey(self.code, self.supplier)

    @property
    def id(self) -> str:
        return self.key.storage_id

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "supplier": self.supplier,
            "cost": self.cost,
            "price": self.price,
            "size": self.size,
            "remark": self.remark,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ProductRecord":
        return cls(
            code=cell_text(doc.get("code")),
            supplier=cell_text(doc.get("supplier")),
            name=cell_text(doc.get("name")),
            cost=cell_text(doc.get("cost")),
            price=cell_text(doc.get("price")),
            size=cell_text(doc.get("size")),
            remark=cell_text(doc.get("remark")),
            timestamp=str(doc.get("timestamp") or now_iso()),
        )

    def patched(self, patch: "ProductPatch") -> "ProductRecord":
        changes = patch.changes()
        changes["timestamp"] = now_iso()
        return replace(self, **changes)


@dataclass
class ProductPatch:
    """Field patch for batch edits; None means "leave unchanged"."""

    name: Optional[str] = None
    supplier: Optional[str] = None
    cost: Optional[str] = None
    price: Optional[str] = None
    size: Optional[str] = None
    remark: Optional[str] = None

    def changes(self) -> Dict[str, str]:
        return {f.name: cell_text(getattr(self, f.name)) for f in fields(self) if getattr(self, f.name) is not None}

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "ProductPatch":
        unknown = set(data) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValueError(f"fields cannot be patched: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if v is not None})


@dataclass
class ImageBlob:
    key: ProductKey
    payload: bytes
    format: str = "jpeg"
    timestamp: str = field(default_factory=now_iso)


@dataclass
class OrderRecord:
    id: str
    code: str
    name: str = ""
    supplier: str = ""
    cost: str = ""
    price: str = ""
    customer: str = ""
    size: str = ""
    quantity: int = 1
    remark: str = ""
    timestamp: str = field(default_factory=now_iso)
    username: Optional[str] = None

    def __post_init__(self) -> None:
        self.quantity = parse_quantity(self.quantity)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "supplier": self.supplier,
            "cost": self.cost,
            "price": self.price,
            "customer": self.customer,
            "size": self.size,
            "quantity": self.quantity,
            "remark": self.remark,
            "timestamp": self.timestamp,
            "username": self.username,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "OrderRecord":
        try:
            quantity = parse_quantity(doc.get("quantity"))
        except ValueError:
            # Hand-edited quantities in older data; keep the order readable.
            quantity = 1
        return cls(
            id=str(doc.get("id")),
            code=cell_text(doc.get("code")),
            name=cell_text(doc.get("name")),
            supplier=cell_text(doc.get("supplier")),
            cost=cell_text(doc.get("cost")),
            price=cell_text(doc.get("price")),
            customer=cell_text(doc.get("customer")),
            size=cell_text(doc.get("size")),
            quantity=quantity,
            remark=cell_text(doc.get("remark")),
            timestamp=str(doc.get("timestamp") or now_iso()),
            username=doc.get("username") or None,
        )


@dataclass
class CatalogEntry:
    """Joined view of one composite key: image and/or product record."""

    key: ProductKey
    product: Optional[ProductRecord]
    image: Optional[ImageBlob]

    @property
    def supplier_group(self) -> str:
        if self.product is not None and self.product.supplier:
            return self.product.supplier
        return UNCLASSIFIED


UNCLASSIFIED = "unclassified"
