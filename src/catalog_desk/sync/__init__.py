from .bridge import HttpSyncBridge, SyncBridge

__all__ = ["HttpSyncBridge", "SyncBridge"]
