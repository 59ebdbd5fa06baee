"""
OrgLens - Normalizer
====================
Maps one raw source record into the canonical PersonRecord.

Features:
- Per-source field aliases (agentId, employeeId, role, parentId, ...)
- Schema validation of the extracted fields (pydantic)
- Deterministic name folding into normalized_name_key
- Keyword-based leadership/manager classification (non-exclusive)
- Ladder level validation (1..8) and level-derived titles/roles

Records without a source id or a name are rejected with ValidationError and
skipped; the Normalizer never invents an identity.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as SchemaValidationError

from orglens.config import EngineConfig
from orglens.errors import ValidationError
from orglens.identity.name_normalization import (
    contains_phrase,
    expand_synonyms,
    normalize_person_name,
    title_tokens,
)
from orglens.models import LADDER, LADDER_LEVELS, LADDER_TITLES, PersonRecord, RecordKey

logger = logging.getLogger(__name__)


def _coerce_identifier(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError('identifier must not be a boolean')
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    return value


class RawPersonFields(BaseModel):
    """Canonical fields extracted from a raw record, before folding/classification."""
    model_config = ConfigDict(str_strip_whitespace=True)

    source_id: str
    canonical_name: str
    title: Optional[str] = None
    department: Optional[str] = None
    level: Optional[int] = None
    reports_to: Optional[str] = None

    @field_validator('source_id', 'reports_to', mode='before')
    @classmethod
    def _identifiers(cls, value):
        return _coerce_identifier(value)

    @field_validator('title', 'department', 'reports_to', mode='after')
    @classmethod
    def _blank_to_none(cls, value):
        return value or None

    @field_validator('source_id', 'canonical_name', mode='after')
    @classmethod
    def _not_blank(cls, value):
        if not value:
            raise ValueError('must not be blank')
        return value


@dataclass
class NormalizationReport:
    """Per-source outcome of one normalize_batch() call."""
    source_system: str
    total: int = 0
    normalized: int = 0
    errors: List[ValidationError] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_system': self.source_system,
            'total': self.total,
            'normalized': self.normalized,
            'skipped': self.skipped,
            'errors': [
                {'position': e.position, 'reason': e.reason} for e in self.errors
            ],
        }


class Normalizer:
    """
    Pure, deterministic raw-record normalizer.

    Holds its configuration for its whole lifetime; build a new instance
    to pick up new keywords or aliases.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self._leadership = tuple(sorted(title_tokens(k) for k in self.config.leadership_keywords))
        self._manager = tuple(sorted(title_tokens(k) for k in self.config.manager_keywords))
        self._alias_cache: Dict[str, Mapping[str, Tuple[str, ...]]] = {}

    def normalize(
        self,
        raw: Any,
        source_system: str,
        position: Optional[int] = None,
    ) -> PersonRecord:
        """
        Normalize one raw record.

        Args:
            raw: Source-native record (a mapping)
            source_system: Tag of the originating system
            position: Index of the record in its snapshot, for error reports

        Returns:
            PersonRecord

        Raises:
            ValidationError: if the record is unidentifiable or malformed
        """
        if not source_system:
            raise ValidationError('source system tag is required', None, position)
        if not isinstance(raw, Mapping):
            raise ValidationError(
                f"raw record must be a mapping, got {type(raw).__name__}",
                source_system, position,
            )

        extracted = self._extract(raw, source_system)
        if extracted.get('source_id') is None:
            raise ValidationError('missing source id', source_system, position)
        if extracted.get('canonical_name') is None:
            raise ValidationError('missing name', source_system, position)

        try:
            fields_ = RawPersonFields(**extracted)
        except SchemaValidationError as e:
            problems = '; '.join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ValidationError(problems, source_system, position) from None

        title = fields_.title or ''
        level = fields_.level
        if source_system == LADDER:
            if level not in LADDER_LEVELS:
                raise ValidationError(
                    f"ladder level must be in 1..8, got {level!r}", source_system, position
                )
            title = title or LADDER_TITLES[level]

        is_leadership, is_manager = self.classify(title, level, source_system)

        return PersonRecord(
            source_system=source_system,
            source_id=fields_.source_id,
            canonical_name=fields_.canonical_name,
            normalized_name_key=normalize_person_name(
                fields_.canonical_name, self.config.honorifics
            ),
            title=title,
            department=fields_.department,
            level=level,
            reports_to=RecordKey(source_system, fields_.reports_to) if fields_.reports_to else None,
            is_leadership=is_leadership,
            is_manager=is_manager,
            raw_source=MappingProxyType(dict(raw)),
        )

    def normalize_batch(
        self,
        raws: Iterable[Any],
        source_system: str,
    ) -> Tuple[List[PersonRecord], NormalizationReport]:
        """
        Normalize a whole snapshot. Invalid records are skipped and reported.

        Returns:
            (records in snapshot order, NormalizationReport)
        """
        report = NormalizationReport(source_system=source_system)
        records: List[PersonRecord] = []

        for position, raw in enumerate(raws):
            report.total += 1
            try:
                records.append(self.normalize(raw, source_system, position))
            except ValidationError as e:
                report.errors.append(e)
                logger.debug(f"Skipped record: {e}")

        report.normalized = len(records)
        if report.errors:
            logger.warning(
                f"  {source_system}: skipped {report.skipped} of {report.total} records"
            )
        return records, report

    def classify(
        self,
        title: str,
        level: Optional[int] = None,
        source_system: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """
        Classify a title into (is_leadership, is_manager).

        Keyword matches are made on folded title tokens, before and after
        synonym expansion. Ladder records are additionally classified by
        level. The two flags are independent.
        """
        tokens = title_tokens(title)
        expanded = tuple(expand_synonyms(tokens, self.config.title_synonyms))

        def matches(keywords) -> bool:
            return any(
                contains_phrase(tokens, kw) or contains_phrase(expanded, kw)
                for kw in keywords
            )

        is_leadership = matches(self._leadership)
        is_manager = matches(self._manager)

        if source_system == LADDER and level is not None:
            is_leadership = is_leadership or level <= self.config.ladder_leadership_max_level
            is_manager = is_manager or level <= self.config.ladder_manager_max_level

        return is_leadership, is_manager

    def _extract(self, raw: Mapping[str, Any], source_system: str) -> Dict[str, Any]:
        aliases = self._alias_cache.get(source_system)
        if aliases is None:
            aliases = self.config.aliases_for(source_system)
            self._alias_cache[source_system] = aliases

        extracted: Dict[str, Any] = {}
        for name, candidates in aliases.items():
            for alias in candidates:
                value = raw.get(alias)
                if value is None or (isinstance(value, str) and not value.strip()):
                    continue
                extracted[name] = value
                break
        return extracted
