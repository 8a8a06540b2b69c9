"""Catalog orchestration over the image store, the record store and the compressor.

One `CatalogService` instance per process owns both stores, the batch
concurrency limit and the current selection of product keys.
"""

from __future__ import annotations

import asyncio
import mimetypes
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from ..config import CatalogConfig
from ..domain.models import CatalogEntry, ProductKey, ProductPatch, ProductRecord
from ..domain.normalize import cell_text, now_iso, to_number
from ..errors import CatalogError, KeyCollisionError, NotFoundError, SyncError
from ..imaging.compress import SizeEstimate, code_from_filename, compress, placeholder_image, target_budget
from ..logging import get_logger
from ..store.blobs import BlobStore
from ..store.records import PRODUCTS, RecordStore
from ..sync.bridge import SyncBridge
from .orders import OrderBook
from .settings import Preferences
from .table_import import check_header, normalize_row, read_workbook

LOG = get_logger("catalog-service")

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".tif", ".tiff")


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


@dataclass
class SourceFile:
    """An image handed to the service, either in memory or on disk."""

    name: str
    data: Optional[bytes] = None
    path: Optional[str] = None
    mime_type: Optional[str] = None

    @classmethod
    def from_path(cls, path: str) -> "SourceFile":
        mime, _ = mimetypes.guess_type(path)
        return cls(name=os.path.basename(path), path=path, mime_type=mime)

    @property
    def is_image(self) -> bool:
        if self.mime_type:
            return self.mime_type.startswith("image/")
        return os.path.splitext(self.name)[1].lower() in IMAGE_EXTENSIONS

    async def read(self) -> bytes:
        if self.data is not None:
            return self.data
        if not self.path:
            raise FileNotFoundError(f"{self.name}: no data and no path")
        return await asyncio.to_thread(_read_bytes, self.path)


class UploadState(str, Enum):
    IDLE = "idle"
    READING = "reading"
    COMPRESSING = "compressing"
    PERSISTING = "persisting"


@dataclass
class UploadOutcome:
    name: str
    key: Optional[ProductKey] = None
    ok: bool = False
    skipped: bool = False
    error: Optional[str] = None
    failed_at: Optional[UploadState] = None
    source_bytes: int = 0
    stored_bytes: int = 0


@dataclass
class BatchResult:
    outcomes: List[UploadOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> List[UploadOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[UploadOutcome]:
        return [o for o in self.outcomes if not o.ok and not o.skipped]

    @property
    def skipped(self) -> List[UploadOutcome]:
        return [o for o in self.outcomes if o.skipped]

    def summary(self) -> Dict[str, Any]:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "errors": [f"{o.name}: {o.error}" for o in self.failed],
        }


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class MatchResult:
    matched: int = 0
    unmatched_files: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    written: int = 0

    @property
    def unmatched(self) -> int:
        return len(self.unmatched_files)


@dataclass
class DeleteResult:
    deleted: int = 0
    errors: List[str] = field(default_factory=list)


class CatalogService:
    def __init__(
        self,
        blobs: BlobStore,
        records: RecordStore,
        *,
        concurrency: int = 4,
        size_estimate: SizeEstimate = SizeEstimate.EXACT,
        username: Optional[str] = None,
    ) -> None:
        self.blobs = blobs
        self.records = records
        self.concurrency = max(1, int(concurrency))
        self.size_estimate = SizeEstimate(size_estimate)
        self.username = username
        self.sync: Optional[SyncBridge] = None
        self.orders = OrderBook(records, username=username, on_change=self._push)
        self.preferences = Preferences(records)
        self._selection: Set[ProductKey] = set()

    @classmethod
    def from_config(cls, cfg: CatalogConfig) -> "CatalogService":
        return cls(
            BlobStore(cfg.data_dir),
            RecordStore(cfg.data_dir),
            concurrency=cfg.batch_concurrency,
            size_estimate=SizeEstimate(cfg.size_estimate),
            username=cfg.username,
        )

    # --------------- lifecycle ---------------
    async def open(self) -> None:
        await self.blobs.open()

    async def close(self) -> None:
        await self.blobs.close()

    async def __aenter__(self) -> "CatalogService":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # --------------- sync ---------------
    def attach_sync(self, bridge: SyncBridge) -> None:
        """Push after every record mutation and accept remote snapshots."""
        self.sync = bridge
        bridge.subscribe(self.apply_remote_update)

    def _push(self) -> None:
        if self.sync is None:
            return
        try:
            self.sync.push(self.records.snapshot())
        except SyncError as exc:
            # Local state is already saved; the next mutation pushes again.
            LOG.warning(f"Sync push failed: {exc}")

    def apply_remote_update(self, snapshot: Mapping[str, Any]) -> None:
        """Overwrite local collections with a remote snapshot (last write wins)."""
        self.records.restore(snapshot)
        LOG.info(f"Applied remote snapshot from {snapshot.get('timestamp')}")

    # --------------- selection ---------------
    @property
    def selection(self) -> List[ProductKey]:
        return sorted(self._selection)

    def select(self, keys: Iterable[ProductKey]) -> None:
        self._selection.update(keys)

    def toggle(self, key: ProductKey) -> bool:
        """Flip membership of `key`; returns True when it is now selected."""
        if key in self._selection:
            self._selection.discard(key)
            return False
        self._selection.add(key)
        return True

    def clear_selection(self) -> None:
        self._selection.clear()

    def _targets(self, keys: Optional[Iterable[ProductKey]]) -> List[ProductKey]:
        return list(keys) if keys is not None else sorted(self._selection)

    # --------------- uploads ---------------
    async def upload_image(self, file: SourceFile, supplier_hint: str = "") -> UploadOutcome:
        outcome = UploadOutcome(name=file.name)
        if not file.is_image:
            outcome.skipped = True
            LOG.info(f"Skipping non-image file {file.name}")
            return outcome

        state = UploadState.READING
        try:
            data = await file.read()
            outcome.source_bytes = len(data)

            state = UploadState.COMPRESSING
            compressed = await asyncio.to_thread(
                compress, data, target_budget(len(data)), estimate=self.size_estimate
            )

            state = UploadState.PERSISTING
            key = ProductKey(code_from_filename(file.name), cell_text(supplier_hint))
            outcome.key = key
            await self.blobs.put(key, compressed.payload, fmt=compressed.format)
        except (CatalogError, OSError) as exc:
            outcome.error = str(exc)
            outcome.failed_at = state
            LOG.error(f"Upload of {file.name} failed while {state.value}: {exc}")
            return outcome

        outcome.ok = True
        outcome.stored_bytes = len(compressed.payload)
        LOG.info(f"Uploaded {file.name} as {key} ({outcome.source_bytes}B -> {outcome.stored_bytes}B)")
        return outcome

    async def upload_images(self, files: Iterable[SourceFile], supplier_hint: str = "") -> BatchResult:
        sem = asyncio.Semaphore(self.concurrency)

        async def _one(file: SourceFile) -> UploadOutcome:
            async with sem:
                return await self.upload_image(file, supplier_hint)

        outcomes = await asyncio.gather(*(_one(f) for f in files))
        result = BatchResult(outcomes=list(outcomes))
        LOG.info(
            f"Upload batch done: {len(result.succeeded)} ok, "
            f"{len(result.failed)} failed, {len(result.skipped)} skipped"
        )
        return result

    # --------------- table import ---------------
    async def import_from_table(self, rows: Iterable[Mapping[Any, Any]]) -> ImportResult:
        """Upsert product rows keyed by (code, supplier).

        The first row's columns are validated before anything is written.
        Rows without a code are skipped. A placeholder image is staged for
        every imported key that has no image yet. Products are saved once.
        """
        rows = list(rows)
        result = ImportResult()
        if not rows:
            LOG.info("Nothing to import")
            return result
        check_header(rows[0].keys())

        pending: Dict[str, ProductRecord] = {}
        placeholder: Optional[bytes] = None
        for index, row in enumerate(rows, start=1):
            fields = normalize_row(row)
            code = cell_text(fields.get("code"))
            if not code:
                result.skipped += 1
                continue
            record = ProductRecord(
                code=code,
                supplier=cell_text(fields.get("supplier")),
                name=cell_text(fields.get("name")),
                cost=cell_text(fields.get("cost")),
                price=cell_text(fields.get("price")),
                size=cell_text(fields.get("size")),
                remark=cell_text(fields.get("remark")),
                timestamp=now_iso(),
            )
            pending[record.id] = record
            try:
                if await self.blobs.get(record.key) is None:
                    if placeholder is None:
                        placeholder = placeholder_image()
                    await self.blobs.put(record.key, placeholder)
            except CatalogError as exc:
                result.errors.append(f"row {index} ({record.id}): {exc}")
                LOG.warning(f"Placeholder for {record.id} not staged: {exc}")

        products = self.records.load(PRODUCTS)
        for rid, record in pending.items():
            existing = products.get(rid)
            if existing is not None and (cell_text(existing.get("code")), cell_text(existing.get("supplier"))) != (
                record.code,
                record.supplier,
            ):
                result.errors.append(f"{rid}: already used by another code/supplier pair")
                continue
            products[rid] = record.to_document()
            result.imported += 1
        self.records.save(PRODUCTS, products)
        self._push()
        LOG.info(f"Imported {result.imported} product(s), skipped {result.skipped}, errors {len(result.errors)}")
        return result

    async def import_workbook(self, path: str) -> ImportResult:
        rows = await asyncio.to_thread(read_workbook, path)
        return await self.import_from_table(rows)

    # --------------- folder matching ---------------
    async def match_folder_to_catalog(self, files: Iterable[SourceFile]) -> MatchResult:
        """Attach each image to every catalog product sharing its code.

        A file is compressed once no matter how many suppliers carry the code.
        """
        by_code: Dict[str, List[ProductKey]] = {}
        for doc in self.records.load(PRODUCTS).values():
            record = ProductRecord.from_document(doc)
            by_code.setdefault(record.code, []).append(record.key)

        result = MatchResult()
        sem = asyncio.Semaphore(self.concurrency)

        async def _one(file: SourceFile) -> None:
            if not file.is_image:
                return
            keys = by_code.get(code_from_filename(file.name))
            if not keys:
                result.unmatched_files.append(file.name)
                return
            result.matched += 1
            async with sem:
                try:
                    data = await file.read()
                    compressed = await asyncio.to_thread(
                        compress, data, target_budget(len(data)), estimate=self.size_estimate
                    )
                except (CatalogError, OSError) as exc:
                    result.errors.append(f"{file.name}: {exc}")
                    LOG.error(f"Cannot prepare {file.name}: {exc}")
                    return
                for key in keys:
                    try:
                        await self.blobs.put(key, compressed.payload, fmt=compressed.format)
                        result.written += 1
                    except CatalogError as exc:
                        result.errors.append(f"{file.name} -> {key}: {exc}")
                        LOG.error(f"Cannot store {file.name} as {key}: {exc}")

        await asyncio.gather(*(_one(f) for f in files))
        LOG.info(
            f"Folder match: {result.matched} matched, {result.unmatched} unmatched, "
            f"{result.written} image(s) written"
        )
        return result

    # --------------- batch edit / delete ---------------
    async def delete_selection(self, keys: Optional[Iterable[ProductKey]] = None) -> DeleteResult:
        """Delete image and record of each key; defaults to the current selection.

        A key whose image could not be deleted keeps its record so the delete
        can be retried. The selection is cleared once the batch settles.
        """
        targets = self._targets(keys)
        result = DeleteResult()
        failed: Set[ProductKey] = set()
        sem = asyncio.Semaphore(self.concurrency)

        async def _one(key: ProductKey) -> None:
            async with sem:
                try:
                    await self.blobs.delete(key)
                except CatalogError as exc:
                    failed.add(key)
                    result.errors.append(f"{key}: {exc}")
                    LOG.warning(f"Image delete failed for {key}: {exc}")

        try:
            await asyncio.gather(*(_one(k) for k in targets))
            products = self.records.load(PRODUCTS)
            for key in targets:
                if key in failed:
                    continue
                products.pop(key.storage_id, None)
                result.deleted += 1
            self.records.save(PRODUCTS, products)
        finally:
            self._selection.clear()
        self._push()
        LOG.info(f"Deleted {result.deleted} of {len(targets)} product(s)")
        return result

    @staticmethod
    def _patch_into(
        products: Dict[str, Any], key: ProductKey, patch: ProductPatch
    ) -> Optional[Tuple[ProductRecord, ProductRecord]]:
        """Patch `key`'s document inside `products`, re-keying on a supplier change.

        Returns (old, new), or None when the key has no product or the new id
        belongs to a different code/supplier pair.
        """
        doc = products.get(key.storage_id)
        if doc is None:
            return None
        record = ProductRecord.from_document(doc)
        new = record.patched(patch)
        if new.key != record.key:
            clash = products.get(new.id)
            if clash is not None and ProductRecord.from_document(clash).key != new.key:
                return None
            products.pop(record.id, None)
        products[new.id] = new.to_document()
        return record, new

    async def edit_selection(
        self,
        patch: Union[ProductPatch, Mapping[str, Any]],
        keys: Optional[Iterable[ProductKey]] = None,
    ) -> int:
        """Apply `patch` to each key's record; returns the number updated.

        A supplier change moves the record (and its image) to the new key.
        Image moves run first; records are re-read and saved afterwards in one
        step so concurrent writers are not overwritten.
        """
        if not isinstance(patch, ProductPatch):
            patch = ProductPatch.from_mapping(dict(patch))
        targets = self._targets(keys)
        updated = 0
        try:
            if not patch.changes():
                return 0
            staged = self.records.load(PRODUCTS)
            moves = []
            for key in targets:
                pair = self._patch_into(staged, key, patch)
                if pair is not None and pair[0].key != pair[1].key:
                    moves.append((pair[0].key, pair[1].key))

            for old, new_key in moves:
                try:
                    blob = await self.blobs.get(old)
                    if blob is not None:
                        await self.blobs.put(new_key, blob.payload, fmt=blob.format)
                        await self.blobs.delete(old)
                except CatalogError as exc:
                    LOG.warning(f"Image of {old} not moved to {new_key}: {exc}")

            products = self.records.load(PRODUCTS)
            for key in targets:
                if self._patch_into(products, key, patch) is None:
                    LOG.warning(f"Edit of {key} skipped: no product, or target id owned by another pair")
                    continue
                updated += 1
            self.records.save(PRODUCTS, products)
        finally:
            self._selection.clear()
        self._push()
        LOG.info(f"Edited {updated} product(s)")
        return updated

    # --------------- single products ---------------
    @staticmethod
    def _check_slot(products: Dict[str, Any], record: ProductRecord, overwrite: bool) -> None:
        existing = products.get(record.id)
        if existing is None:
            return
        if ProductRecord.from_document(existing).key != record.key:
            raise KeyCollisionError(f"id {record.id!r} already belongs to another code/supplier pair")
        if not overwrite:
            raise ValueError(f"product {record.id} already exists")

    async def add_product(
        self,
        record: ProductRecord,
        image: Optional[bytes] = None,
        *,
        overwrite: bool = True,
    ) -> ProductRecord:
        if not record.code or not record.supplier:
            raise ValueError("product code and supplier are required")
        compressed = None
        if image is not None:
            compressed = await asyncio.to_thread(
                compress, image, target_budget(len(image)), estimate=self.size_estimate
            )

        self._check_slot(self.records.load(PRODUCTS), record, overwrite)
        if compressed is not None:
            await self.blobs.put(record.key, compressed.payload, fmt=compressed.format)

        products = self.records.load(PRODUCTS)
        self._check_slot(products, record, overwrite=True)
        record.timestamp = now_iso()
        products[record.id] = record.to_document()
        self.records.save(PRODUCTS, products)
        self._push()
        LOG.info(f"Saved product {record.id}")
        return record

    async def get_entry(self, key: ProductKey) -> Optional[CatalogEntry]:
        doc = self.records.load(PRODUCTS).get(key.storage_id)
        product = ProductRecord.from_document(doc) if doc is not None else None
        if product is not None and product.key != key:
            product = None
        image = await self.blobs.get(key)
        if product is None and image is None:
            return None
        return CatalogEntry(key=key, product=product, image=image)

    def edit_size(self, key: ProductKey, size: str) -> ProductRecord:
        products = self.records.load(PRODUCTS)
        doc = products.get(key.storage_id)
        if doc is None:
            raise NotFoundError(f"product {key} does not exist")
        record = ProductRecord.from_document(doc).patched(ProductPatch(size=size))
        products[record.id] = record.to_document()
        self.records.save(PRODUCTS, products)
        self._push()
        return record

    def products(self) -> List[ProductRecord]:
        return [ProductRecord.from_document(d) for d in self.records.load(PRODUCTS).values()]

    def compare_prices(self, code: str) -> List[ProductRecord]:
        """All supplier versions of `code`, cheapest first."""
        matches = [p for p in self.products() if p.code == code]
        return sorted(matches, key=lambda p: (to_number(p.price), p.supplier))

    def suppliers(self) -> List[str]:
        return sorted({p.supplier for p in self.products() if p.supplier})

    async def clear_catalog(self) -> None:
        """Remove every product and image; orders are kept."""
        await self.blobs.delete_all()
        self.records.clear(PRODUCTS)
        self._selection.clear()
        self._push()
        LOG.info("Catalog cleared")

    # --------------- views ---------------
    async def list_by_supplier(self) -> Dict[str, List[CatalogEntry]]:
        """Join images and products, grouped by the product's supplier.

        Entries with an image come first in storage order, followed by
        products that have no image yet.
        """
        records = {rid: ProductRecord.from_document(doc) for rid, doc in self.records.load(PRODUCTS).items()}
        groups: Dict[str, List[CatalogEntry]] = {}
        seen: Set[str] = set()
        for blob in await self.blobs.list_all():
            product = records.get(blob.key.storage_id)
            if product is not None and product.key != blob.key:
                product = None
            entry = CatalogEntry(key=blob.key, product=product, image=blob)
            groups.setdefault(entry.supplier_group, []).append(entry)
            seen.add(blob.key.storage_id)
        for rid, product in records.items():
            if rid in seen:
                continue
            entry = CatalogEntry(key=product.key, product=product, image=None)
            groups.setdefault(entry.supplier_group, []).append(entry)
        return groups
