"""
OrgLens - File Snapshot Adapter
===============================
Reads source snapshots from CSV / Excel files, one file per source system.

CSV files are read with polars, every column as text so identifiers keep
their exact spelling. Excel files are read with pandas (openpyxl engine).
Empty cells become None.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import pandas as pd
import polars as pl

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ('.csv', '.xlsx')


def read_snapshot_file(file_path: Union[str, Path], sheet_name: Union[str, int] = 0) -> List[Dict[str, Any]]:
    """
    Read one snapshot file into raw record dicts.

    Args:
        file_path: Path to a .csv or .xlsx file
        sheet_name: Excel sheet to read (ignored for CSV)

    Returns:
        List of dicts, one per row, in file order
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Snapshot file not found: {path}")

    extension = path.suffix.lower()
    if extension == '.csv':
        df = pl.read_csv(path, infer_schema_length=0)
        rows = df.to_dicts()
    elif extension == '.xlsx':
        df_pandas = pd.read_excel(path, engine='openpyxl', sheet_name=sheet_name)
        df_pandas = df_pandas.astype(object).where(df_pandas.notna(), None)
        rows = df_pandas.to_dict('records')
    else:
        raise ValueError(f"Unsupported file extension: {extension} (expected one of {SUPPORTED_EXTENSIONS})")

    logger.info(f"Read snapshot {path.name}: {len(rows)} rows")
    return rows


class FileSnapshotAdapter:
    """
    SnapshotAdapter backed by local files.

    Usage:
        adapter = FileSnapshotAdapter({'ladder': 'data/ladder.csv'})
        rows = adapter.pull_snapshot('ladder')
    """

    def __init__(self, paths: Mapping[str, Union[str, Path]], sheet_name: Union[str, int] = 0):
        self.paths = {system: Path(p) for system, p in paths.items()}
        self.sheet_name = sheet_name

    @property
    def source_systems(self) -> List[str]:
        return list(self.paths)

    def pull_snapshot(self, source_system: str) -> List[Dict[str, Any]]:
        path: Optional[Path] = self.paths.get(source_system)
        if path is None:
            raise KeyError(f"No snapshot file configured for '{source_system}'")
        return read_snapshot_file(path, self.sheet_name)
