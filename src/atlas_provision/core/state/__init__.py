# src/atlas_provision/core/state/__init__.py
"""State persistido por workspace: modelo versionado e backends com lock."""

from .model import DEFAULT_WORKSPACE, STATE_VERSION, StateRecord, StateRecordSet, Workspace
from .store import InMemoryStateStore, LocalStateStore, StateBackend, open_store

__all__ = [
    "DEFAULT_WORKSPACE",
    "STATE_VERSION",
    "StateRecord",
    "StateRecordSet",
    "Workspace",
    "InMemoryStateStore",
    "LocalStateStore",
    "StateBackend",
    "open_store",
]
