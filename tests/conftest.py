from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_ROOT))

from PIL import Image  # noqa: E402

from catalog_desk.catalog import CatalogService  # noqa: E402
from catalog_desk.store import BlobStore, RecordStore  # noqa: E402


def _make_image(width: int = 64, height: int = 48, color=(200, 30, 30), fmt: str = "JPEG", mode: str = "RGB") -> bytes:
    img = Image.new(mode, (width, height), color)
    out = io.BytesIO()
    img.save(out, format=fmt)
    return out.getvalue()


@pytest.fixture
def make_image():
    return _make_image


@pytest.fixture
def data_dir(tmp_path: Path) -> str:
    return str(tmp_path / "catalog")


@pytest.fixture
def blobs(data_dir: str) -> BlobStore:
    return BlobStore(data_dir)


@pytest.fixture
def records(data_dir: str) -> RecordStore:
    return RecordStore(data_dir)


@pytest.fixture
def service(blobs: BlobStore, records: RecordStore) -> CatalogService:
    return CatalogService(blobs, records, concurrency=2, username="alice")
