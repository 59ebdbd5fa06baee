"""
OrgLens - Index Builder
=======================
Assembles a complete, immutable Index from normalized PersonRecords.

Lookup structures:
- by key (source_system, source_id)
- by department (case-insensitive)
- by source system
- leadership / manager subsets
- by blocking key (name initial + department) used to bound resolver work
- direct reports derived from reports_to lookup keys

An Index is only ever returned fully assembled. Duplicate identities abort
the offending source batch only; other sources still build.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from orglens.errors import DuplicateIdentityError, ValidationError
from orglens.models import LADDER, LADDER_LEVELS, PersonRecord, RecordKey

logger = logging.getLogger(__name__)

BLOCK_SEPARATOR = '|'


def department_key(department: Optional[str]) -> str:
    """Case-insensitive, whitespace-collapsed department lookup key."""
    if not department:
        return ''
    return ' '.join(department.split()).casefold()


def blocking_key(record: PersonRecord) -> Optional[str]:
    """
    First letter of normalized_name_key + department key.

    Returns None for records with an empty normalized key; those cannot
    be blocked or scored.
    """
    initial = record.normalized_name_key[:1]
    if not initial:
        return None
    return f"{initial}{BLOCK_SEPARATOR}{department_key(record.department)}"


def _freeze(groups: Mapping[Any, List[Any]]) -> Mapping[Any, Tuple[Any, ...]]:
    return MappingProxyType({k: tuple(v) for k, v in groups.items()})


@dataclass(frozen=True)
class Index:
    """Immutable snapshot of every indexed record plus derived lookups."""
    version: int
    built_at: datetime
    records: Tuple[PersonRecord, ...]
    by_key: Mapping[RecordKey, PersonRecord]
    positions: Mapping[RecordKey, int]
    by_department: Mapping[str, Tuple[PersonRecord, ...]]
    department_labels: Mapping[str, str]
    by_source: Mapping[str, Tuple[PersonRecord, ...]]
    leadership: Tuple[PersonRecord, ...]
    managers: Tuple[PersonRecord, ...]
    by_blocking_key: Mapping[str, Tuple[PersonRecord, ...]]
    unblockable: Tuple[PersonRecord, ...]
    direct_reports: Mapping[RecordKey, Tuple[RecordKey, ...]]

    def __len__(self) -> int:
        return len(self.records)

    def get(self, key: RecordKey) -> Optional[PersonRecord]:
        return self.by_key.get(RecordKey(*key))

    def position(self, key: RecordKey) -> int:
        return self.positions[key]

    @property
    def source_counts(self) -> Dict[str, int]:
        return {source: len(records) for source, records in self.by_source.items()}

    @classmethod
    def empty(cls, version: int = 0) -> 'Index':
        return IndexBuilder().build(version=version)


@dataclass
class BuildReport:
    """Outcome of build_index(): per-source counts and aborted batches."""
    sources: Dict[str, int] = field(default_factory=dict)
    failed_sources: Dict[str, DuplicateIdentityError] = field(default_factory=dict)
    rejected: List[ValidationError] = field(default_factory=list)

    @property
    def total_records(self) -> int:
        return sum(self.sources.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sources': dict(self.sources),
            'failed_sources': {s: str(e) for s, e in self.failed_sources.items()},
            'rejected': [str(e) for e in self.rejected],
            'total_records': self.total_records,
        }


class IndexBuilder:
    """
    Stages source batches and assembles them into one Index.

    Usage:
        builder = IndexBuilder()
        builder.add_batch('ladder', ladder_records)
        builder.add_batch('orgchart', org_records)
        index = builder.build(version=3)
    """

    def __init__(self):
        self._records: List[PersonRecord] = []
        self._keys: set = set()

    @staticmethod
    def check_record(record: PersonRecord, position: Optional[int] = None) -> None:
        """
        Reject records the Index cannot hold.

        Ladder records must carry a level in 1..8; the ladder's native level
        map is built from it.

        Raises:
            ValidationError
        """
        if record.source_system == LADDER and record.level not in LADDER_LEVELS:
            raise ValidationError(
                f"ladder record {record.source_id} has level {record.level!r}, expected 1..8",
                record.source_system, position,
            )

    @classmethod
    def check_batch(cls, source_system: str, records: Sequence[PersonRecord]) -> None:
        """
        Validate one source batch.

        Raises:
            DuplicateIdentityError: if two records share (source_system, source_id)
            ValidationError: if a record fails check_record()
            ValueError: if a record belongs to a different source system
        """
        seen = set()
        duplicates = []
        for position, record in enumerate(records):
            if record.source_system != source_system:
                raise ValueError(
                    f"Record {record.key} does not belong to batch '{source_system}'"
                )
            cls.check_record(record, position)
            if record.source_id in seen:
                duplicates.append(record.source_id)
            seen.add(record.source_id)
        if duplicates:
            raise DuplicateIdentityError(source_system, duplicates)

    def add_batch(self, source_system: str, records: Sequence[PersonRecord]) -> None:
        """Stage a source batch. On failure nothing from the batch is staged."""
        records = list(records)
        self.check_batch(source_system, records)
        clashes = [r.source_id for r in records if r.key in self._keys]
        if clashes:
            raise DuplicateIdentityError(source_system, clashes)
        self._stage(records)

    def _stage(self, records: Iterable[PersonRecord]) -> None:
        for record in records:
            self._records.append(record)
            self._keys.add(record.key)

    def build(self, version: int = 0, built_at: Optional[datetime] = None) -> Index:
        """Assemble every staged record into a new immutable Index."""
        records = tuple(self._records)

        by_key: Dict[RecordKey, PersonRecord] = {}
        positions: Dict[RecordKey, int] = {}
        by_department: Dict[str, List[PersonRecord]] = OrderedDict()
        department_labels: Dict[str, str] = {}
        by_source: Dict[str, List[PersonRecord]] = OrderedDict()
        by_block: Dict[str, List[PersonRecord]] = OrderedDict()
        direct_reports: Dict[RecordKey, List[RecordKey]] = OrderedDict()
        leadership: List[PersonRecord] = []
        managers: List[PersonRecord] = []
        unblockable: List[PersonRecord] = []

        for position, record in enumerate(records):
            key = record.key
            by_key[key] = record
            positions[key] = position
            by_source.setdefault(record.source_system, []).append(record)

            dept = department_key(record.department)
            if dept:
                by_department.setdefault(dept, []).append(record)
                department_labels.setdefault(dept, ' '.join(record.department.split()))

            if record.is_leadership:
                leadership.append(record)
            if record.is_manager:
                managers.append(record)

            block = blocking_key(record)
            if block is None:
                unblockable.append(record)
            else:
                by_block.setdefault(block, []).append(record)

            if record.reports_to is not None:
                direct_reports.setdefault(record.reports_to, []).append(key)

        # Only keep report edges whose manager is actually indexed
        direct_reports = {k: v for k, v in direct_reports.items() if k in by_key}

        return Index(
            version=version,
            built_at=built_at or datetime.now(timezone.utc),
            records=records,
            by_key=MappingProxyType(by_key),
            positions=MappingProxyType(positions),
            by_department=_freeze(by_department),
            department_labels=MappingProxyType(department_labels),
            by_source=_freeze(by_source),
            leadership=tuple(leadership),
            managers=tuple(managers),
            by_blocking_key=_freeze(by_block),
            unblockable=tuple(unblockable),
            direct_reports=_freeze(direct_reports),
        )


def build_index(
    records: Iterable[PersonRecord],
    version: int = 0,
    built_at: Optional[datetime] = None,
) -> Tuple[Index, BuildReport]:
    """
    Build an Index from an ordered record sequence spanning any number of sources.

    Records keep their sequence order. A source whose batch contains a
    duplicate identity is dropped entirely and reported; all other sources
    are indexed. Records failing IndexBuilder.check_record() are left out
    one by one and listed in report.rejected.

    Returns:
        (Index, BuildReport)
    """
    records = list(records)
    report = BuildReport()

    grouped: Dict[str, List[PersonRecord]] = OrderedDict()
    accepted: List[PersonRecord] = []
    for record in records:
        batch = grouped.setdefault(record.source_system, [])
        try:
            IndexBuilder.check_record(record, len(batch))
        except ValidationError as e:
            report.rejected.append(e)
            logger.warning(f"  Index build: rejected record: {e}")
            continue
        batch.append(record)
        accepted.append(record)

    for source_system, batch in grouped.items():
        try:
            IndexBuilder.check_batch(source_system, batch)
        except DuplicateIdentityError as e:
            report.failed_sources[source_system] = e
            logger.error(f"  Index build: dropped source '{source_system}': {e}")
            continue
        report.sources[source_system] = len(batch)

    builder = IndexBuilder()
    builder._stage(r for r in accepted if r.source_system not in report.failed_sources)
    index = builder.build(version=version, built_at=built_at)

    logger.info(
        f"  Index v{version} built: {len(index)} records from {len(report.sources)} sources"
    )
    return index, report
