"""Push/pull of the record collections to a remote peer (last write wins)."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol

import requests

from ..errors import SyncError
from ..logging import get_logger

LOG = get_logger("sync-bridge")

Snapshot = Dict[str, Any]
RemoteUpdateCallback = Callable[[Snapshot], None]


class SyncBridge(Protocol):
    def push(self, snapshot: Snapshot) -> None: ...

    def subscribe(self, callback: RemoteUpdateCallback) -> None: ...


class HttpSyncBridge:
    """Sync peer reached over plain HTTP.

    - `push` POSTs the whole snapshot to `<base_url>/snapshot`.
    - `poll` GETs the remote snapshot and hands it to subscribers when its
      timestamp differs from the last one seen or pushed.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.last_timestamp: Optional[str] = None
        self._subscribers: List[RemoteUpdateCallback] = []

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Token {self.token}"
        return headers

    def subscribe(self, callback: RemoteUpdateCallback) -> None:
        self._subscribers.append(callback)

    def push(self, snapshot: Snapshot) -> None:
        url = f"{self.base_url}/snapshot"
        try:
            r = self.session.post(url, json=snapshot, headers=self._headers(), timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as exc:
            raise SyncError(f"push to {url} failed: {exc}") from exc
        self.last_timestamp = snapshot.get("timestamp")
        LOG.info(
            f"Pushed snapshot ({len(snapshot.get('products') or {})} products, "
            f"{len(snapshot.get('orders') or {})} orders)"
        )

    def fetch(self) -> Optional[Snapshot]:
        url = f"{self.base_url}/snapshot"
        try:
            r = self.session.get(url, headers=self._headers(), timeout=self.timeout)
            if r.status_code == 404:
                return None
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as exc:
            raise SyncError(f"fetch from {url} failed: {exc}") from exc
        except ValueError as exc:
            raise SyncError(f"remote snapshot is not JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise SyncError("remote snapshot must be a JSON object")
        return data

    def poll(self) -> bool:
        """Deliver a newer remote snapshot to subscribers; True if one arrived."""
        snapshot = self.fetch()
        if snapshot is None:
            LOG.debug("Remote has no snapshot yet")
            return False
        ts = snapshot.get("timestamp")
        if ts is not None and ts == self.last_timestamp:
            return False
        self.last_timestamp = ts
        LOG.info(f"Remote update received (timestamp={ts})")
        for callback in list(self._subscribers):
            callback(snapshot)
        return True
