import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from .logging import get_logger
from .paths import catalog_dir, expand_abs, find_project_root

log = get_logger("config")

DEFAULT_BATCH_CONCURRENCY = 4
SIZE_ESTIMATE_CHOICES = ("exact", "legacy")


def _parse_env_line(raw: str) -> Optional[Tuple[str, str]]:
    """`KEY=value` with optional `export`, quotes, or a trailing ` # comment`."""
    line = raw.strip()
    if not line or line[0] in "#;":
        return None
    if line.startswith("export "):
        line = line[len("export "):]
    key, sep, value = line.partition("=")
    key, value = key.strip(), value.strip()
    if not sep or not key:
        return None
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return key, value[1:-1]
    return key, value.split(" #", 1)[0].rstrip()


@dataclass
class DotEnv:
    """Values of the nearest `.env` at or above a directory, read without touching os.environ."""

    path: Optional[str] = None
    values: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def discover(cls, start_dir: str) -> "DotEnv":
        start = Path(expand_abs(start_dir))
        path = next((d / ".env" for d in (start, *start.parents) if (d / ".env").is_file()), None)
        if path is None:
            log.debug(f"No .env at or above {start}")
            return cls()
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            log.warning(f"Failed reading {path}: {exc}")
            return cls(path=str(path))
        values = dict(pair for pair in map(_parse_env_line, lines) if pair is not None)
        log.debug(f"Loaded {len(values)} key(s) from {path}")
        return cls(path=str(path), values=values)

    def get(self, name: str) -> Optional[str]:
        """Environment first, then the file; blank values count as unset."""
        value = os.environ.get(name)
        if value is None:
            value = self.values.get(name)
        return (value or "").strip() or None


@dataclass
class CatalogConfig:
    data_dir: str
    username: Optional[str] = None
    sync_url: Optional[str] = None
    sync_token: Optional[str] = None
    batch_concurrency: int = DEFAULT_BATCH_CONCURRENCY
    size_estimate: str = "exact"
    env_file: Optional[str] = None


def load_config(dotenv_dir: Optional[str] = None) -> CatalogConfig:
    """Build the runtime configuration from the environment and `.env`.

    Environment variables win over `.env` values. The data directory
    defaults to `<repo-root>/var/catalog`.
    """
    base = dotenv_dir or os.getcwd()
    env = DotEnv.discover(base)

    data_dir = env.get("CATALOG_DATA_DIR")
    data_dir = expand_abs(data_dir) if data_dir else catalog_dir(find_project_root(base))

    concurrency = DEFAULT_BATCH_CONCURRENCY
    raw_conc = env.get("CATALOG_BATCH_CONCURRENCY")
    if raw_conc:
        try:
            concurrency = max(1, int(raw_conc))
        except ValueError:
            log.warning(f"Ignoring invalid CATALOG_BATCH_CONCURRENCY={raw_conc!r}")

    estimate = (env.get("CATALOG_SIZE_ESTIMATE") or "exact").lower()
    if estimate not in SIZE_ESTIMATE_CHOICES:
        log.warning(f"Unknown CATALOG_SIZE_ESTIMATE={estimate!r}; using exact byte counts")
        estimate = "exact"

    sync_url = env.get("CATALOG_SYNC_URL")
    cfg = CatalogConfig(
        data_dir=data_dir,
        username=env.get("CATALOG_USERNAME"),
        sync_url=sync_url.rstrip("/") if sync_url else None,
        sync_token=env.get("CATALOG_SYNC_TOKEN"),
        batch_concurrency=concurrency,
        size_estimate=estimate,
        env_file=env.path,
    )
    log.debug(f"Catalog data directory: {cfg.data_dir}")
    return cfg
