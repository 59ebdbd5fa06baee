"""
OrgLens - Ingestion Cycle
=========================
One batch cycle: pull snapshots, normalize, build a new Index, resolve
cross-references and publish the pair atomically.

Cycle guarantees:
- A failing adapter skips that source only (SourcePullError, PARTIAL run)
- Invalid records are skipped and counted (ValidationError)
- A source batch with duplicate identities is dropped (DuplicateIdentityError)
- Cancellation or timeout discards all partial work; the previously
  published Index stays authoritative
- A hung adapter cannot hold a cycle past its budget: pending pulls are
  abandoned when the token fires

Every run is recorded in the RunTracker diagnostics channel.
"""

import contextvars
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

from orglens.config import EngineConfig
from orglens.errors import CycleCancelledError, CycleTimeoutError, OrgLensError, SourcePullError
from orglens.identity.resolve_people import CrossReferenceResolver, ResolutionSummary
from orglens.index.build_index import BuildReport, build_index
from orglens.index.publisher import IndexPublisher, PublishedSnapshot
from orglens.logging_config import run_context
from orglens.models import PersonRecord
from orglens.pipeline_tracking import (
    RunTracker,
    mark_run_partial,
    track_cycle_run,
    update_run_metrics,
)
from orglens.standardization.normalize_people import NormalizationReport, Normalizer

logger = logging.getLogger(__name__)

PIPELINE_NAME = 'ingestion_cycle'

# Longest wait on a pending snapshot pull before re-checking the token
PULL_POLL_SECONDS = 0.05


@runtime_checkable
class SnapshotAdapter(Protocol):
    """Anything that can return the current raw records of a source system."""

    def pull_snapshot(self, source_system: str) -> Iterable[Mapping[str, Any]]:
        ...


class CycleToken:
    """
    Cooperative cancellation and wall-clock budget for one cycle.

    The cycle calls check() between stages and between resolver blocks,
    and keeps calling it while a snapshot pull is pending.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self._cancelled = threading.Event()
        self.timeout_seconds: Optional[float] = None
        self.deadline: Optional[float] = None
        if timeout_seconds is not None:
            self.set_timeout(timeout_seconds)

    def set_timeout(self, timeout_seconds: float) -> None:
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {timeout_seconds}")
        self.timeout_seconds = timeout_seconds
        self.deadline = time.monotonic() + timeout_seconds

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (never negative); None without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        if self._cancelled.is_set():
            raise CycleCancelledError('Cycle cancelled before publish')
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise CycleTimeoutError(
                f"Cycle exceeded its {self.timeout_seconds}s budget"
            )


@dataclass
class CycleReport:
    """Outcome of one completed cycle."""
    run_id: str
    version: int
    status: str = ''
    published: bool = False
    normalization: Dict[str, NormalizationReport] = field(default_factory=dict)
    failed_sources: Dict[str, str] = field(default_factory=dict)
    build: BuildReport = field(default_factory=BuildReport)
    resolution: ResolutionSummary = field(default_factory=ResolutionSummary)
    duration_seconds: float = 0.0

    @property
    def records_pulled(self) -> int:
        return sum(r.total for r in self.normalization.values())

    @property
    def records_skipped(self) -> int:
        return sum(r.skipped for r in self.normalization.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'version': self.version,
            'status': self.status,
            'published': self.published,
            'records_pulled': self.records_pulled,
            'records_skipped': self.records_skipped,
            'normalization': {s: r.to_dict() for s, r in self.normalization.items()},
            'failed_sources': dict(self.failed_sources),
            'build': self.build.to_dict(),
            'resolution': self.resolution.to_dict(),
            'duration_seconds': round(self.duration_seconds, 3),
        }


class IngestionCycle:
    """
    Runs ingestion/resolution cycles against a set of adapters.

    Usage:
        cycle = IngestionCycle({'ladder': adapter, 'orgchart': adapter}, publisher)
        report = cycle.run(timeout_seconds=30)
    """

    def __init__(
        self,
        adapters: Mapping[str, SnapshotAdapter],
        publisher: IndexPublisher,
        config: Optional[EngineConfig] = None,
        tracker: Optional[RunTracker] = None,
    ):
        self.adapters = dict(adapters)
        self.publisher = publisher
        self.config = config or EngineConfig()
        self.tracker = tracker or RunTracker(self.config.run_history_size)
        self.normalizer = Normalizer(self.config)
        self.resolver = CrossReferenceResolver(self.config)

    def run(
        self,
        token: Optional[CycleToken] = None,
        timeout_seconds: Optional[float] = None,
    ) -> CycleReport:
        """
        Execute one full cycle.

        Returns:
            CycleReport

        Raises:
            CycleTimeoutError: budget exceeded; nothing was published
            CycleCancelledError: token cancelled; nothing was published
            OrgLensError: every source failed; nothing was published
        """
        token = token or CycleToken()
        timeout = timeout_seconds or self.config.cycle_timeout_seconds
        if timeout is not None and token.deadline is None:
            token.set_timeout(timeout)

        start_time = time.time()
        sources = list(self.adapters)

        logger.info("=" * 60)
        logger.info(f"INGESTION CYCLE - sources: {', '.join(sources) or '(none)'}")
        logger.info("=" * 60)

        with track_cycle_run(self.tracker, PIPELINE_NAME, sources=sources) as run_id, run_context(run_id):
            report = CycleReport(run_id=run_id, version=0)
            records = self._pull_and_normalize(token, report)

            token.check()
            report.version = self.publisher.reserve_version()
            index, report.build = build_index(records, version=report.version)
            for source_system, error in report.build.failed_sources.items():
                report.failed_sources[source_system] = str(error)

            if sources and len(report.failed_sources) == len(sources):
                raise OrgLensError(
                    f"All {len(sources)} sources failed; keeping index "
                    f"v{self.publisher.current_version}"
                )

            resolution = self.resolver.resolve(index, checkpoint=token.check)
            report.resolution = resolution.summary

            token.check()
            report.published = self.publisher.publish(PublishedSnapshot(index, resolution))

            update_run_metrics(
                self.tracker, run_id,
                records_pulled=report.records_pulled,
                records_processed=len(index),
                records_skipped=report.records_skipped,
                sources_failed=len(report.failed_sources),
                cross_references=len(resolution.cross_references),
                metadata={'index_version': report.version, 'published': report.published},
            )
            if report.failed_sources:
                mark_run_partial(
                    self.tracker, run_id,
                    '; '.join(f"{s}: {e}" for s, e in report.failed_sources.items()),
                )

        report.duration_seconds = time.time() - start_time
        run = self.tracker.get(run_id)
        report.status = run['status'] if run else ''

        logger.info(
            f"Cycle complete: index v{report.version} {report.status} "
            f"in {report.duration_seconds:.2f}s"
        )
        return report

    def _pull_and_normalize(self, token: CycleToken, report: CycleReport) -> List[PersonRecord]:
        records: List[PersonRecord] = []
        for source_system, adapter in self.adapters.items():
            token.check()
            logger.info(f"Pulling snapshot: {source_system}")
            try:
                raws = self._pull(adapter, source_system, token)
            except SourcePullError as failure:
                report.failed_sources[source_system] = str(failure)
                logger.error(f"  {failure}")
                continue

            token.check()
            normalized, normalization = self.normalizer.normalize_batch(raws, source_system)
            report.normalization[source_system] = normalization
            records.extend(normalized)
            logger.info(
                f"  {source_system}: {normalization.normalized} normalized, "
                f"{normalization.skipped} skipped"
            )
        return records

    def _pull(self, adapter: SnapshotAdapter, source_system: str, token: CycleToken) -> List[Any]:
        """
        Pull one snapshot on a worker thread while watching the token.

        A pull still pending when the token is cancelled or its deadline
        passes is abandoned: its thread is left to finish on its own and the
        late result is discarded.

        Raises:
            SourcePullError: the adapter raised
            CycleTimeoutError, CycleCancelledError: the token fired first
        """
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"pull-{source_system}")
        context = contextvars.copy_context()
        future = executor.submit(
            context.run, lambda: list(adapter.pull_snapshot(source_system))
        )
        try:
            while True:
                token.check()
                remaining = token.remaining()
                poll = PULL_POLL_SECONDS if remaining is None else min(PULL_POLL_SECONDS, remaining)
                done, _ = wait([future], timeout=poll)
                if done:
                    break
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        try:
            return future.result()
        except Exception as e:
            raise SourcePullError(source_system, e) from e
