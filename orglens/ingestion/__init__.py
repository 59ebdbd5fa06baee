"""
Ingestion module: snapshot adapters and the batch ingestion/resolution cycle
"""

from .cycle import CycleReport, CycleToken, IngestionCycle, SnapshotAdapter
from .file_snapshots import FileSnapshotAdapter, read_snapshot_file

__all__ = [
    'CycleReport',
    'CycleToken',
    'FileSnapshotAdapter',
    'IngestionCycle',
    'SnapshotAdapter',
    'read_snapshot_file',
]
