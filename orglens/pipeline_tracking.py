"""
Pipeline Tracking Module
========================
Tracks ingestion/resolution cycle runs for the out-of-band diagnostics
channel. Cycle failures are visible here and nowhere else: they are never
raised on unrelated queries.

Features:
- Context manager for automatic run tracking
- Metrics update helpers
- Status management (RUNNING, SUCCESS, FAILED, PARTIAL, TIMEOUT, CANCELLED)

Usage:
    from orglens.pipeline_tracking import RunTracker, track_cycle_run, update_run_metrics

    tracker = RunTracker()
    with track_cycle_run(tracker, "cycle", sources=["ladder"]) as run_id:
        report = do_work()
        update_run_metrics(tracker, run_id, records_processed=report.total)
"""

import copy
import logging
import threading
import uuid
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Generator

from orglens.errors import CycleCancelledError, CycleTimeoutError

logger = logging.getLogger(__name__)

RUNNING = 'RUNNING'
SUCCESS = 'SUCCESS'
FAILED = 'FAILED'
PARTIAL = 'PARTIAL'
TIMEOUT = 'TIMEOUT'
CANCELLED = 'CANCELLED'

_METRIC_FIELDS = (
    'records_pulled',
    'records_processed',
    'records_skipped',
    'sources_failed',
    'cross_references',
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RunTracker:
    """
    Bounded in-memory history of pipeline runs.

    Thread-safe; callers always receive copies of the stored run dicts.
    """

    def __init__(self, history_size: int = 50):
        self._runs: deque = deque(maxlen=history_size)
        self._by_id: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def create(self, pipeline_name: str, sources: List[str], metadata: Dict[str, Any]) -> str:
        run_id = str(uuid.uuid4())
        run = {
            'run_id': run_id,
            'pipeline_name': pipeline_name,
            'sources': list(sources),
            'started_at': _now(),
            'completed_at': None,
            'status': RUNNING,
            'error_message': None,
            'metadata': dict(metadata),
        }
        for name in _METRIC_FIELDS:
            run[name] = None
        with self._lock:
            if len(self._runs) == self._runs.maxlen:
                evicted = self._runs[0]
                self._by_id.pop(evicted['run_id'], None)
            self._runs.append(run)
            self._by_id[run_id] = run
        return run_id

    def update(self, run_id: str, **changes: Any) -> bool:
        with self._lock:
            run = self._by_id.get(run_id)
            if run is None:
                return False
            metadata = changes.pop('metadata', None)
            if metadata:
                run['metadata'].update(metadata)
            run.update(changes)
            return True

    def get(self, run_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            run = self._by_id.get(run_id)
            return copy.deepcopy(run) if run else None

    def runs(self) -> List[Dict[str, Any]]:
        """All retained runs, oldest first."""
        with self._lock:
            return [copy.deepcopy(r) for r in self._runs]


@contextmanager
def track_cycle_run(
    tracker: RunTracker,
    pipeline_name: str,
    sources: Optional[List[str]] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> Generator[str, None, None]:
    """
    Context manager for tracking a cycle run.

    Creates a run record on entry and updates status on exit.
    On success: status = 'SUCCESS' (unless already marked PARTIAL)
    On CycleTimeoutError: status = 'TIMEOUT'
    On CycleCancelledError: status = 'CANCELLED'
    On any other exception: status = 'FAILED' with error_message

    Args:
        tracker: RunTracker instance
        pipeline_name: Name of the pipeline, e.g. 'cycle'
        sources: Source systems processed in this run
        metadata: Additional metadata to store

    Yields:
        run_id: UUID string of the created run record
    """
    run_id = tracker.create(pipeline_name, sources or [], metadata or {})
    logger.info(f"Pipeline run started: {pipeline_name} (run_id={run_id[:8]}...)")

    try:
        yield run_id
    except CycleTimeoutError as e:
        tracker.update(run_id, completed_at=_now(), status=TIMEOUT, error_message=str(e)[:1000])
        logger.error(f"Pipeline run timed out: {pipeline_name} (run_id={run_id[:8]}...) - {e}")
        raise
    except CycleCancelledError as e:
        tracker.update(run_id, completed_at=_now(), status=CANCELLED, error_message=str(e)[:1000])
        logger.warning(f"Pipeline run cancelled: {pipeline_name} (run_id={run_id[:8]}...)")
        raise
    except Exception as e:
        error_msg = str(e)[:1000]  # Truncate long errors
        tracker.update(run_id, completed_at=_now(), status=FAILED, error_message=error_msg)
        logger.error(f"Pipeline run failed: {pipeline_name} (run_id={run_id[:8]}...) - {error_msg}")
        raise

    run = tracker.get(run_id)
    status = PARTIAL if run and run['status'] == PARTIAL else SUCCESS
    tracker.update(run_id, completed_at=_now(), status=status)
    logger.info(f"Pipeline run completed: {pipeline_name} (run_id={run_id[:8]}...) - {status}")


def update_run_metrics(
    tracker: RunTracker,
    run_id: str,
    records_pulled: Optional[int] = None,
    records_processed: Optional[int] = None,
    records_skipped: Optional[int] = None,
    sources_failed: Optional[int] = None,
    cross_references: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Update metrics for a cycle run.

    Only non-None values are updated. This allows incremental updates
    while the cycle progresses.

    Args:
        tracker: RunTracker instance
        run_id: UUID string of the run to update
        records_pulled: Raw records received from adapters
        records_processed: Records successfully normalized
        records_skipped: Records rejected by validation
        sources_failed: Sources whose contribution was aborted
        cross_references: Cross-reference clusters produced
        metadata: Additional metadata (merged with existing)
    """
    changes: Dict[str, Any] = {}
    values = {
        'records_pulled': records_pulled,
        'records_processed': records_processed,
        'records_skipped': records_skipped,
        'sources_failed': sources_failed,
        'cross_references': cross_references,
    }
    for name, value in values.items():
        if value is not None:
            changes[name] = value
    if metadata is not None:
        changes['metadata'] = metadata

    if not changes:
        return  # Nothing to update

    if not tracker.update(run_id, **changes):
        logger.warning(f"Failed to update run metrics: unknown run_id {run_id[:8]}...")


def mark_run_partial(
    tracker: RunTracker,
    run_id: str,
    error_message: Optional[str] = None
) -> None:
    """
    Mark a cycle run as PARTIAL (some sources succeeded, some failed).

    The run keeps PARTIAL when the tracking context exits normally.
    """
    run = tracker.get(run_id)
    if run is None:
        logger.error(f"Failed to mark run as partial: unknown run_id {run_id[:8]}...")
        return
    message = '; '.join(m for m in (run['error_message'], error_message) if m)
    tracker.update(run_id, status=PARTIAL, error_message=message or None)
    logger.warning(f"Pipeline run marked as PARTIAL: {run_id[:8]}...")


def get_latest_run(
    tracker: RunTracker,
    pipeline_name: str
) -> Optional[Dict[str, Any]]:
    """
    Get the most recent run for a given pipeline.

    Returns:
        Dictionary with run details or None if no runs found
    """
    for run in reversed(tracker.runs()):
        if run['pipeline_name'] == pipeline_name:
            return run
    return None


def get_running_pipelines(tracker: RunTracker) -> List[Dict[str, Any]]:
    """
    Get all currently running pipelines.

    Useful for detecting stuck or superseded cycles.
    """
    return [
        {
            'run_id': run['run_id'],
            'pipeline_name': run['pipeline_name'],
            'started_at': run['started_at'],
            'sources': run['sources'],
        }
        for run in tracker.runs()
        if run['status'] == RUNNING
    ]
