"""Process-wide logging for catalog_desk.

All module loggers are children of the ``catalog_desk`` logger. Only that
parent carries handlers; it is configured on first use from ``LOG_LEVEL``
and ``LOG_FILE`` and can be reconfigured later with :func:`configure`
(the CLI does so for ``--log-level``).
"""

import logging
import os
from typing import Optional, Union

ROOT_NAME = "catalog_desk"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_root: Optional[logging.Logger] = None


def parse_level(value: Union[str, int, None]) -> int:
    """Level number for a name such as ``debug`` or ``WARN``; INFO otherwise."""
    if isinstance(value, int):
        return value
    name = (value or "").strip().upper()
    if name == "WARN":
        name = "WARNING"
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def resolve_log_file(value: str) -> str:
    """Absolute path for ``LOG_FILE``; relative names go to ``<project>/var/log/``."""
    from .paths import expand_abs, find_project_root, var_dir

    if os.path.isabs(os.path.expanduser(value)):
        return expand_abs(value)
    return os.path.join(var_dir(find_project_root()), "log", value)


def configure(level: Union[str, int, None] = None, log_file: Optional[str] = None) -> logging.Logger:
    """(Re)build the handlers of the ``catalog_desk`` logger.

    Arguments left as None fall back to ``LOG_LEVEL`` / ``LOG_FILE``.
    An empty ``log_file`` disables file logging.
    """
    global _root
    root = logging.getLogger(ROOT_NAME)
    resolved = parse_level(level if level is not None else os.environ.get("LOG_LEVEL"))
    target = log_file if log_file is not None else os.environ.get("LOG_FILE", "")

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    root.addHandler(stream)
    root.setLevel(resolved)
    root.propagate = False
    _root = root

    if target:
        path = resolve_log_file(target)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            file_handler = logging.FileHandler(path, encoding="utf-8")
        except OSError as exc:
            root.warning(f"Cannot log to {path} ({exc}); continuing on stderr only")
        else:
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
    return root


def get_logger(name: str) -> logging.Logger:
    """Child logger ``catalog_desk.<name>``; the parent is configured once."""
    root = _root if _root is not None else configure()
    return root.getChild(name) if name else root
