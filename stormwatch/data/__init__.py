"""Feed adapters, parsers and snapshot storage."""

from .store import SnapshotStore, InMemorySnapshotStore
from .sql_store import SqlSnapshotStore
from .adapters import (
    SourceAdapter,
    NHCTrackAdapter,
    GFSAdapter,
    CMEMSAdapter,
    ActiveStormFeed,
)

__all__ = [
    'SnapshotStore',
    'InMemorySnapshotStore',
    'SqlSnapshotStore',
    'SourceAdapter',
    'NHCTrackAdapter',
    'GFSAdapter',
    'CMEMSAdapter',
    'ActiveStormFeed',
]
