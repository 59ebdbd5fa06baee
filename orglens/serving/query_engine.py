"""
OrgLens - Query Engine
======================
Conjunctive predicate queries over one Index.

Supported predicates (camelCase spellings accepted):
    department          case-insensitive department match
    source_system       exact source system tag
    is_leadership       leadership flag
    is_manager          manager flag
    name_contains       case-insensitive substring of the canonical name
    has_direct_reports  record is some indexed record's reports_to target

All supplied predicates are ANDed; no predicates returns every record.
Results are new lists in Index insertion order.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaValidationError

from orglens.errors import QueryValidationError
from orglens.index.build_index import Index, department_key
from orglens.models import PersonRecord

logger = logging.getLogger(__name__)


class QueryPredicates(BaseModel):
    """Validated query predicates."""
    model_config = ConfigDict(extra='forbid', populate_by_name=True, frozen=True)

    department: Optional[str] = Field(None, min_length=1, description="Department name (case-insensitive)")
    source_system: Optional[str] = Field(None, alias='sourceSystem')
    is_leadership: Optional[bool] = Field(None, alias='isLeadership')
    is_manager: Optional[bool] = Field(None, alias='isManager')
    name_contains: Optional[str] = Field(None, alias='nameContains', min_length=1)
    has_direct_reports: Optional[bool] = Field(None, alias='hasDirectReports')

    def supplied(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def parse_predicates(
    predicates: Optional[Mapping[str, Any]] = None,
    **kwargs: Any,
) -> QueryPredicates:
    """
    Merge a predicate mapping and keyword predicates into QueryPredicates.

    Raises:
        QueryValidationError: on unknown predicates or wrong value types
    """
    if isinstance(predicates, QueryPredicates) and not kwargs:
        return predicates
    if isinstance(predicates, QueryPredicates):
        predicates = predicates.supplied()
    merged = {**dict(predicates or {}), **kwargs}
    try:
        return QueryPredicates(**merged)
    except SchemaValidationError as e:
        problems = '; '.join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise QueryValidationError(f"Invalid query: {problems}") from None


class QueryEngine:
    """
    Read-only query surface over a single Index.

    Usage:
        engine = QueryEngine(index)
        engine.query(department='Marketing', is_leadership=True)
    """

    def __init__(self, index: Index):
        self.index = index

    def query(
        self,
        predicates: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> List[PersonRecord]:
        parsed = parse_predicates(predicates, **kwargs)
        candidates = self._candidates(parsed)
        results = [r for r in candidates if self._matches(r, parsed)]
        logger.debug(f"Query {parsed.supplied()} -> {len(results)} records")
        return results

    def _candidates(self, p: QueryPredicates) -> Sequence[PersonRecord]:
        """Smallest precomputed lookup that covers the query."""
        index = self.index
        options: List[Sequence[PersonRecord]] = [index.records]
        if p.department is not None:
            options.append(index.by_department.get(department_key(p.department), ()))
        if p.source_system is not None:
            options.append(index.by_source.get(p.source_system, ()))
        if p.is_leadership:
            options.append(index.leadership)
        if p.is_manager:
            options.append(index.managers)
        return min(options, key=len)

    def _matches(self, record: PersonRecord, p: QueryPredicates) -> bool:
        if p.department is not None and department_key(record.department) != department_key(p.department):
            return False
        if p.source_system is not None and record.source_system != p.source_system:
            return False
        if p.is_leadership is not None and record.is_leadership != p.is_leadership:
            return False
        if p.is_manager is not None and record.is_manager != p.is_manager:
            return False
        if p.name_contains is not None and p.name_contains.casefold() not in record.canonical_name.casefold():
            return False
        if p.has_direct_reports is not None:
            has_reports = record.key in self.index.direct_reports
            if has_reports != p.has_direct_reports:
                return False
        return True
