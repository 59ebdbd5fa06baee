"""
OrgLens - Hierarchy Federation
==============================
Single entry point over the whole engine: run ingestion cycles, query
records, materialize views and list cross-references.

Every read leases the snapshot that is current when the call begins, so a
concurrent publish never changes results mid-call. Before the first
successful cycle, reads are served from an empty version-0 Index.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Mapping, Optional

from orglens.config import EngineConfig
from orglens.errors import QueryValidationError
from orglens.index.publisher import IndexPublisher
from orglens.ingestion.cycle import PIPELINE_NAME, CycleReport, CycleToken, IngestionCycle, SnapshotAdapter
from orglens.models import CrossReference, PersonRecord
from orglens.pipeline_tracking import RunTracker, get_latest_run, get_running_pipelines
from orglens.serving.query_engine import QueryEngine
from orglens.serving.views import ViewMaterializer

logger = logging.getLogger(__name__)


class HierarchyFederation:
    """
    Usage:
        federation = HierarchyFederation({'ladder': ladder_adapter, 'orgchart': org_adapter})
        federation.run_cycle(timeout_seconds=60)

        federation.query(department='Marketing', is_leadership=True)
        federation.materialize_view('source:ladder')
        federation.list_cross_references(min_confidence=0.9)
    """

    def __init__(
        self,
        adapters: Mapping[str, SnapshotAdapter],
        config: Optional[EngineConfig] = None,
        tracker: Optional[RunTracker] = None,
    ):
        self.config = config or EngineConfig()
        self.tracker = tracker or RunTracker(self.config.run_history_size)
        self.publisher = IndexPublisher()
        self.cycle = IngestionCycle(adapters, self.publisher, self.config, self.tracker)
        self._lock = threading.Lock()
        self._active_token: Optional[CycleToken] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def current_version(self) -> int:
        return self.publisher.current_version

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def run_cycle(
        self,
        timeout_seconds: Optional[float] = None,
        token: Optional[CycleToken] = None,
    ) -> CycleReport:
        """
        Run one ingestion/resolution cycle in the calling thread.

        Raises:
            CycleTimeoutError, CycleCancelledError: the previous Index stays published
        """
        token = token or CycleToken()
        with self._lock:
            # A cancelled token must not displace the cycle a later trigger should cancel
            if not token.cancelled:
                self._active_token = token
        return self._run(token, timeout_seconds)

    def _run(self, token: CycleToken, timeout_seconds: Optional[float]) -> CycleReport:
        try:
            return self.cycle.run(token=token, timeout_seconds=timeout_seconds)
        finally:
            with self._lock:
                if self._active_token is token:
                    self._active_token = None

    def trigger_cycle(self, timeout_seconds: Optional[float] = None) -> Future:
        """
        Start a cycle in the background, cancelling any cycle still running.

        Cycles execute one at a time; the returned Future resolves to the
        CycleReport or raises the cycle's error.
        """
        token = CycleToken()
        with self._lock:
            if self._active_token is not None:
                logger.info("Superseding running cycle")
                self._active_token.cancel()
            self._active_token = token
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='cycle')
            executor = self._executor
        # The token is registered here only; queued cycles never re-register on start
        return executor.submit(self._run, token, timeout_seconds)

    def close(self) -> None:
        with self._lock:
            if self._active_token is not None:
                self._active_token.cancel()
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(self, predicates: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> List[PersonRecord]:
        with self.publisher.lease() as snapshot:
            return QueryEngine(snapshot.index).query(predicates, **kwargs)

    def materialize_view(self, name: str):
        with self.publisher.lease() as snapshot:
            return ViewMaterializer(snapshot.index).materialize(name)

    def list_cross_references(self, min_confidence: Optional[float] = None) -> List[CrossReference]:
        if min_confidence is not None:
            if isinstance(min_confidence, bool) or not isinstance(min_confidence, (int, float)):
                raise QueryValidationError(f"min_confidence must be a number, got {min_confidence!r}")
            if not 0.0 <= min_confidence <= 1.0:
                raise QueryValidationError(f"min_confidence must be in [0, 1], got {min_confidence}")
        with self.publisher.lease() as snapshot:
            return snapshot.resolution.list(min_confidence)

    def diagnostics(self) -> Dict[str, Any]:
        """Out-of-band channel: cycle runs and data diagnostics of the current snapshot."""
        with self.publisher.lease() as snapshot:
            resolution = snapshot.resolution
            return {
                'current_version': snapshot.version,
                'published_at': snapshot.published_at,
                'retained_versions': self.publisher.retained_versions(),
                'latest_run': get_latest_run(self.tracker, PIPELINE_NAME),
                'running': get_running_pipelines(self.tracker),
                'runs': self.tracker.runs(),
                'resolver': [d.to_dict() for d in resolution.diagnostics],
                'resolution_summary': resolution.summary.to_dict(),
            }
