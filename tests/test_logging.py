from __future__ import annotations

import logging

import pytest

from catalog_desk.logging import ROOT_NAME, configure, get_logger, parse_level


@pytest.fixture(autouse=True)
def _reset_logging(monkeypatch):
    monkeypatch.delenv("LOG_FILE", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    yield
    configure()


def test_module_loggers_share_one_configured_parent() -> None:
    configure()
    first = get_logger("store-blobs")
    second = get_logger("catalog-service")
    root = logging.getLogger(ROOT_NAME)

    assert first.name == "catalog_desk.store-blobs"
    assert first.parent is root and second.parent is root
    assert first.handlers == [] and second.handlers == []
    assert len(root.handlers) == 1
    assert root.propagate is False


def test_configure_replaces_handlers_and_level() -> None:
    root = configure(level="debug")
    configure(level="debug")
    assert len(root.handlers) == 1
    assert get_logger("x").getEffectiveLevel() == logging.DEBUG


def test_relative_log_file_lands_under_project_var(tmp_path, monkeypatch) -> None:
    (tmp_path / "pyproject.toml").write_text("[project]\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    root = configure(log_file="catalog.log")
    get_logger("orders").info("order saved")
    for handler in root.handlers:
        handler.flush()

    text = (tmp_path / "var" / "log" / "catalog.log").read_text(encoding="utf-8")
    assert "[catalog_desk.orders] INFO: order saved" in text


def test_parse_level() -> None:
    assert parse_level("warn") == logging.WARNING
    assert parse_level(" Debug ") == logging.DEBUG
    assert parse_level("chatty") == logging.INFO
    assert parse_level(None) == logging.INFO
    assert parse_level(logging.ERROR) == logging.ERROR
