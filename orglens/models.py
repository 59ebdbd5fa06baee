"""
OrgLens - Canonical Data Model
==============================
Shapes shared by every stage of the engine:

- PersonRecord       one normalized record from one source system
- CrossReference     a cluster of records believed to denote one person
- PairScore          the explainable signals behind one resolver edge
- ResolverDiagnostic a non-fatal data problem reported by a stage

All records are immutable once created. Relations between records are
expressed as RecordKey lookups, never as object references.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, NamedTuple, Optional, Tuple

# Source system tags known to the engine. Other tags are accepted as-is.
LADDER = 'ladder'
ORGCHART = 'orgchart'
DEPARTMENT = 'department'

KNOWN_SOURCE_SYSTEMS = (LADDER, ORGCHART, DEPARTMENT)

# Fixed 8-level agent/distributor ladder
LADDER_LEVELS = tuple(range(1, 9))
LADDER_TITLES: Dict[int, str] = {
    1: 'Master Agent',
    2: 'Senior Master Agent',
    3: 'Agent',
    4: 'Senior Agent',
    5: 'Sub-Agent',
    6: 'Senior Sub-Agent',
    7: 'Basic Agent',
    8: 'Clerk',
}

# Diagnostic kinds
UNBLOCKABLE_RECORD = 'unblockable_record'
DANGLING_REPORTS_TO = 'dangling_reports_to'
REPORTS_TO_CYCLE = 'reports_to_cycle'


class RecordKey(NamedTuple):
    """Globally unique identity of a record: (source_system, source_id)."""
    source_system: str
    source_id: str

    def __str__(self) -> str:
        return f"{self.source_system}:{self.source_id}"


@dataclass(frozen=True)
class PersonRecord:
    """
    One person as described by one source system.

    raw_source is kept for traceability only and takes no part in
    equality, hashing or any downstream decision.
    """
    source_system: str
    source_id: str
    canonical_name: str
    normalized_name_key: str
    title: str = ''
    department: Optional[str] = None
    level: Optional[int] = None
    reports_to: Optional[RecordKey] = None
    is_leadership: bool = False
    is_manager: bool = False
    raw_source: Any = field(default=None, compare=False, hash=False, repr=False)

    @property
    def key(self) -> RecordKey:
        return RecordKey(self.source_system, self.source_id)

    @property
    def is_contributor(self) -> bool:
        return not (self.is_leadership or self.is_manager)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_system': self.source_system,
            'source_id': self.source_id,
            'canonical_name': self.canonical_name,
            'normalized_name_key': self.normalized_name_key,
            'title': self.title,
            'department': self.department,
            'level': self.level,
            'reports_to': str(self.reports_to) if self.reports_to else None,
            'is_leadership': self.is_leadership,
            'is_manager': self.is_manager,
        }


@dataclass(frozen=True)
class PairScore:
    """Signals and weighted score for one compared pair of records."""
    left: RecordKey
    right: RecordKey
    name_similarity: float
    title_similarity: float
    structural_compatibility: float
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'left': str(self.left),
            'right': str(self.right),
            'name_similarity': self.name_similarity,
            'title_similarity': self.title_similarity,
            'structural_compatibility': self.structural_compatibility,
            'score': self.score,
        }


@dataclass(frozen=True)
class CrossReference:
    """
    A cluster of two or more records inferred to denote the same individual.

    confidence is the minimum edge score inside the cluster, so it never
    exceeds any contributing pairwise score.
    """
    cluster_id: str
    members: Tuple[RecordKey, ...]
    confidence: float
    likely_same_person: bool
    evidence: Tuple[PairScore, ...] = ()

    @property
    def signals(self) -> Tuple[str, ...]:
        """Names of the signals that contributed a non-zero value to any edge."""
        found = []
        if any(e.name_similarity > 0 for e in self.evidence):
            found.append('name')
        if any(e.title_similarity > 0 for e in self.evidence):
            found.append('title')
        if any(e.structural_compatibility > 0 for e in self.evidence):
            found.append('structure')
        return tuple(found)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cluster_id': self.cluster_id,
            'members': [str(m) for m in self.members],
            'confidence': self.confidence,
            'likely_same_person': self.likely_same_person,
            'signals': list(self.signals),
            'evidence': [e.to_dict() for e in self.evidence],
        }


@dataclass(frozen=True)
class ResolverDiagnostic:
    """A non-fatal problem reported as counts/lists, never raised."""
    kind: str
    count: int
    keys: Tuple[RecordKey, ...] = ()
    message: str = ''

    def to_dict(self) -> Mapping[str, Any]:
        return {
            'kind': self.kind,
            'count': self.count,
            'keys': [str(k) for k in self.keys],
            'message': self.message,
        }
