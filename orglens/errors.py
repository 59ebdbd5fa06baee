"""
OrgLens - Error Taxonomy
========================
Exceptions raised across the ingestion, indexing and serving layers.

Per-record problems (ValidationError) are isolated and aggregated into
reports. Structural problems (DuplicateIdentityError, SourcePullError)
abort only the affected source's contribution. Cycle-level problems
(CycleTimeoutError, CycleCancelledError) leave the published Index intact.
"""

from typing import Iterable, Optional


class OrgLensError(Exception):
    """Base class for all engine errors."""


class ConfigError(OrgLensError, ValueError):
    """Raised when engine configuration is missing or invalid."""


class ValidationError(OrgLensError):
    """A raw source record could not be normalized and is skipped."""

    def __init__(
        self,
        reason: str,
        source_system: Optional[str] = None,
        position: Optional[int] = None,
    ):
        self.reason = reason
        self.source_system = source_system
        self.position = position
        where = source_system or "unknown"
        if position is not None:
            where = f"{where}#{position}"
        super().__init__(f"[{where}] {reason}")


class DuplicateIdentityError(OrgLensError):
    """Two records in one source batch share the same (source_system, source_id)."""

    def __init__(self, source_system: str, duplicate_ids: Iterable[str]):
        self.source_system = source_system
        self.duplicate_ids = tuple(sorted(set(duplicate_ids)))
        shown = ", ".join(self.duplicate_ids[:10])
        super().__init__(
            f"Duplicate source ids in '{source_system}' batch: {shown}"
        )


class SourcePullError(OrgLensError):
    """The snapshot adapter for a source failed; that source is skipped."""

    def __init__(self, source_system: str, cause: BaseException):
        self.source_system = source_system
        self.cause = cause
        super().__init__(f"Snapshot pull failed for '{source_system}': {cause}")


class CycleTimeoutError(OrgLensError, TimeoutError):
    """An ingestion/resolution cycle exceeded its wall-clock budget."""


class CycleCancelledError(OrgLensError):
    """An ingestion/resolution cycle was cancelled before publishing."""


class QueryValidationError(OrgLensError, ValueError):
    """A query was given an unknown or malformed predicate."""


class UnknownViewError(OrgLensError, ValueError):
    """materialize_view() was called with an unrecognised view name."""
