from __future__ import annotations

import os

import pytest

from catalog_desk.config import load_config

KEYS = (
    "CATALOG_DATA_DIR",
    "CATALOG_USERNAME",
    "CATALOG_SYNC_URL",
    "CATALOG_SYNC_TOKEN",
    "CATALOG_BATCH_CONCURRENCY",
    "CATALOG_SIZE_ESTIMATE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults_use_repo_var_dir(tmp_path) -> None:
    (tmp_path / "pyproject.toml").write_text("[project]\n", encoding="utf-8")
    sub = tmp_path / "src"
    sub.mkdir()
    cfg = load_config(str(sub))
    assert cfg.data_dir == os.path.join(str(tmp_path), "var", "catalog")
    assert cfg.batch_concurrency == 4
    assert cfg.size_estimate == "exact"
    assert cfg.sync_url is None


def test_dotenv_values_are_read(tmp_path) -> None:
    (tmp_path / ".env").write_text(
        "# catalog\n"
        "CATALOG_DATA_DIR=/srv/catalog\n"
        "CATALOG_USERNAME='alice'\n"
        'CATALOG_SYNC_URL="http://sync.local/api/"\n'
        "CATALOG_BATCH_CONCURRENCY=8\n"
        "CATALOG_SIZE_ESTIMATE=LEGACY\n",
        encoding="utf-8",
    )
    cfg = load_config(str(tmp_path))
    assert cfg.data_dir == os.path.abspath("/srv/catalog")
    assert cfg.username == "alice"
    assert cfg.sync_url == "http://sync.local/api"
    assert cfg.batch_concurrency == 8
    assert cfg.size_estimate == "legacy"
    assert cfg.env_file == str(tmp_path / ".env")


def test_dotenv_export_prefix_and_inline_comments(tmp_path) -> None:
    (tmp_path / ".env").write_text(
        "export CATALOG_USERNAME=carol\n"
        "CATALOG_BATCH_CONCURRENCY=6  # per upload batch\n"
        "CATALOG_SYNC_TOKEN='abc # not a comment'\n"
        "not a setting\n",
        encoding="utf-8",
    )
    sub = tmp_path / "nested" / "deeper"
    sub.mkdir(parents=True)
    cfg = load_config(str(sub))
    assert cfg.username == "carol"
    assert cfg.batch_concurrency == 6
    assert cfg.sync_token == "abc # not a comment"


def test_environment_wins_and_bad_values_fall_back(tmp_path, monkeypatch) -> None:
    (tmp_path / ".env").write_text("CATALOG_USERNAME=alice\n", encoding="utf-8")
    monkeypatch.setenv("CATALOG_USERNAME", "bob")
    monkeypatch.setenv("CATALOG_BATCH_CONCURRENCY", "many")
    monkeypatch.setenv("CATALOG_SIZE_ESTIMATE", "fuzzy")
    cfg = load_config(str(tmp_path))
    assert cfg.username == "bob"
    assert cfg.batch_concurrency == 4
    assert cfg.size_estimate == "exact"
