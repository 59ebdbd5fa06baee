"""
Identity Engine: Cross-Reference Resolution
===========================================
Infers which records from different source systems likely describe the
same individual, from one published Index.

Process:
1. Exclude records with an empty normalized name key (reported as a
   diagnostic, still queryable)
2. Partition the rest into blocks by blocking key (name initial +
   department); only records sharing a block are compared. Records without
   a department are compared against every department block sharing their
   initial, since their structural compatibility is 0.5 with anyone.
3. Score each cross-system pair on name, title and structural signals
4. Keep pairs scoring >= pair_threshold as edges
5. Merge edges with union-find into CrossReference clusters; cluster
   confidence is the minimum edge score inside the cluster

Known limitation: pairs whose name initial or department label diverge
sharply land in different blocks and are never compared.

Block comparison is read-only and may run on a thread pool; edges are
merged single-threaded in index order, so results do not depend on worker
scheduling.
"""

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from orglens.config import EngineConfig
from orglens.identity.scoring import PairScorer
from orglens.index.build_index import BLOCK_SEPARATOR, Index
from orglens.models import (
    UNBLOCKABLE_RECORD,
    CrossReference,
    PairScore,
    PersonRecord,
    ResolverDiagnostic,
)

logger = logging.getLogger(__name__)

Checkpoint = Callable[[], None]


@dataclass(frozen=True)
class ComparisonBlock:
    """
    One unit of comparison work.

    Every pair inside `members` is compared, plus every pair between
    `members` and `floating` (same-initial records lacking a department).
    """
    block_key: str
    members: Tuple[PersonRecord, ...]
    floating: Tuple[PersonRecord, ...] = ()


@dataclass
class ResolutionSummary:
    """Statistics from one resolver run"""
    records_considered: int = 0
    records_excluded: int = 0
    blocks: int = 0
    comparisons: int = 0
    edges: int = 0
    clusters: int = 0
    likely_clusters: int = 0
    workers: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'records_considered': self.records_considered,
            'records_excluded': self.records_excluded,
            'blocks': self.blocks,
            'comparisons': self.comparisons,
            'edges': self.edges,
            'clusters': self.clusters,
            'likely_clusters': self.likely_clusters,
            'workers': self.workers,
        }


@dataclass(frozen=True)
class ResolutionResult:
    """Cross-references computed from exactly one Index version."""
    index_version: int
    cross_references: Tuple[CrossReference, ...] = ()
    diagnostics: Tuple[ResolverDiagnostic, ...] = ()
    summary: ResolutionSummary = field(default_factory=ResolutionSummary)

    def list(self, min_confidence: Optional[float] = None) -> List[CrossReference]:
        """Cross-references with confidence >= min_confidence, in stable order."""
        if min_confidence is None:
            return list(self.cross_references)
        return [x for x in self.cross_references if x.confidence >= min_confidence]

    @classmethod
    def empty(cls, index_version: int = 0) -> 'ResolutionResult':
        return cls(index_version=index_version)


class _DisjointSet:
    """Union-find over index positions with path compression."""

    def __init__(self):
        self._parent: Dict[int, int] = {}

    def find(self, x: int) -> int:
        if x not in self._parent:
            self._parent[x] = x
        while self._parent[x] != x:
            self._parent[x] = self._parent[self._parent[x]]  # path compression
            x = self._parent[x]
        return x

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        # Lowest position becomes the root so roots are scheduling-independent
        if rb < ra:
            ra, rb = rb, ra
        self._parent[rb] = ra


def _cluster_id(members: Sequence[Any]) -> str:
    digest = hashlib.sha1('|'.join(sorted(str(m) for m in members)).encode('utf-8'))
    return digest.hexdigest()[:16]


def build_blocks(index: Index) -> List[ComparisonBlock]:
    """
    Group blockable records into comparison units, ordered by block key.

    Each candidate pair appears in exactly one unit.
    """
    by_initial: Dict[str, Dict[str, Tuple[PersonRecord, ...]]] = {}
    for key, records in index.by_blocking_key.items():
        initial, _, dept = key.partition(BLOCK_SEPARATOR)
        by_initial.setdefault(initial, {})[dept] = records

    blocks: List[ComparisonBlock] = []
    for initial in sorted(by_initial):
        departments = by_initial[initial]
        floating = departments.get('', ())
        for dept in sorted(departments):
            members = departments[dept]
            if dept == '':
                blocks.append(ComparisonBlock(f"{initial}{BLOCK_SEPARATOR}", members))
            else:
                blocks.append(
                    ComparisonBlock(f"{initial}{BLOCK_SEPARATOR}{dept}", members, floating)
                )
    return blocks


class CrossReferenceResolver:
    """
    Main engine for resolving person identities across source systems.

    Usage:
        resolver = CrossReferenceResolver(config)
        result = resolver.resolve(index)
        for xref in result.list(min_confidence=0.9):
            ...
    """

    def __init__(self, config: Optional[EngineConfig] = None, workers: Optional[int] = None):
        self.config = config or EngineConfig()
        self.workers = workers or self.config.resolver_workers
        self.scorer = PairScorer(self.config)

    def resolve(self, index: Index, checkpoint: Optional[Checkpoint] = None) -> ResolutionResult:
        """
        Execute resolution over one Index.

        Args:
            index: The Index to resolve
            checkpoint: Called between blocks; may raise to abort the run

        Returns:
            ResolutionResult
        """
        checkpoint = checkpoint or (lambda: None)
        summary = ResolutionSummary(workers=self.workers)

        logger.info("=" * 60)
        logger.info(f"Cross-Reference Resolution - Index v{index.version}")
        logger.info("=" * 60)

        diagnostics: List[ResolverDiagnostic] = []
        summary.records_excluded = len(index.unblockable)
        summary.records_considered = len(index) - summary.records_excluded
        if index.unblockable:
            diagnostics.append(ResolverDiagnostic(
                kind=UNBLOCKABLE_RECORD,
                count=len(index.unblockable),
                keys=tuple(r.key for r in index.unblockable),
                message='records with an empty normalized name key were excluded from resolution',
            ))
            logger.warning(f"  Excluded {len(index.unblockable)} unblockable records")

        blocks = build_blocks(index)
        summary.blocks = len(blocks)
        logger.info(f"  Blocks: {len(blocks)}")

        edges: List[PairScore] = []
        for block_edges, comparisons in self._compare_blocks(blocks, checkpoint):
            edges.extend(block_edges)
            summary.comparisons += comparisons
        checkpoint()

        edges.sort(key=lambda e: (index.position(e.left), index.position(e.right)))
        summary.edges = len(edges)

        cross_references = self._cluster(index, edges)
        summary.clusters = len(cross_references)
        summary.likely_clusters = sum(1 for x in cross_references if x.likely_same_person)

        logger.info(f"  Comparisons: {summary.comparisons:,}")
        logger.info(f"  Edges >= {self.config.pair_threshold}: {summary.edges:,}")
        logger.info(f"  Clusters: {summary.clusters:,} ({summary.likely_clusters:,} likely same person)")

        return ResolutionResult(
            index_version=index.version,
            cross_references=tuple(cross_references),
            diagnostics=tuple(diagnostics),
            summary=summary,
        )

    def compare_block(self, block: ComparisonBlock) -> Tuple[List[PairScore], int]:
        """
        Score every cross-system pair in one block.

        Returns:
            (edges at or above pair_threshold, number of pairs compared)
        """
        threshold = self.config.pair_threshold
        edges: List[PairScore] = []
        comparisons = 0

        members = block.members
        pairs = [
            (members[i], members[j])
            for i in range(len(members))
            for j in range(i + 1, len(members))
        ]
        pairs.extend((m, f) for m in members for f in block.floating)

        for left, right in pairs:
            if left.source_system == right.source_system:
                continue
            comparisons += 1
            scored = self.scorer.score(left, right)
            if scored.score >= threshold:
                edges.append(scored)
        return edges, comparisons

    def _compare_blocks(self, blocks: List[ComparisonBlock], checkpoint: Checkpoint):
        def run(block: ComparisonBlock):
            checkpoint()
            return self.compare_block(block)

        if self.workers <= 1 or len(blocks) <= 1:
            return [run(block) for block in blocks]

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix='resolver') as pool:
            futures = [pool.submit(run, block) for block in blocks]
            try:
                return [future.result() for future in futures]
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

    def _cluster(self, index: Index, edges: List[PairScore]) -> List[CrossReference]:
        disjoint = _DisjointSet()
        for edge in edges:
            disjoint.union(index.position(edge.left), index.position(edge.right))

        grouped: Dict[int, List[PairScore]] = {}
        for edge in edges:
            root = disjoint.find(index.position(edge.left))
            grouped.setdefault(root, []).append(edge)

        cross_references = []
        for root in sorted(grouped):
            cluster_edges = grouped[root]
            positions = sorted({
                index.position(key)
                for edge in cluster_edges
                for key in (edge.left, edge.right)
            })
            members = tuple(index.records[p].key for p in positions)
            confidence = min(edge.score for edge in cluster_edges)
            cross_references.append(CrossReference(
                cluster_id=_cluster_id(members),
                members=members,
                confidence=confidence,
                likely_same_person=confidence >= self.config.likely_threshold,
                evidence=tuple(cluster_edges),
            ))
        return cross_references
