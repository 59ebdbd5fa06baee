"""
OrgLens - View Materializer
===========================
Named, read-only projections recomputed from one Index on every call.

Views:
    source:<system>   records of one system in ingestion order; the ladder
                      additionally keeps its native level map 1..8
    organizational    orgchart parent/children tree resolved by key lookup
    department        department -> records, plus unassigned records
    leadership        is_leadership records
    managers          is_manager records
    contributors      records that are neither leadership nor manager

Views never mutate the Index or feed back into it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from orglens.errors import UnknownViewError
from orglens.index.build_index import Index
from orglens.models import (
    DANGLING_REPORTS_TO,
    LADDER,
    LADDER_LEVELS,
    ORGCHART,
    REPORTS_TO_CYCLE,
    PersonRecord,
    RecordKey,
    ResolverDiagnostic,
)
from orglens.serving.query_engine import QueryEngine

logger = logging.getLogger(__name__)

SOURCE_VIEW_PREFIX = 'source:'
VIEW_NAMES = ('organizational', 'department', 'leadership', 'managers', 'contributors')


@dataclass(frozen=True)
class SourceView:
    """A source system's records exactly as ingested."""
    source_system: str
    records: Tuple[PersonRecord, ...]
    levels: Optional[Mapping[int, Tuple[PersonRecord, ...]]] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'view': f"{SOURCE_VIEW_PREFIX}{self.source_system}",
            'records': [r.to_dict() for r in self.records],
        }
        if self.levels is not None:
            result['levels'] = {
                str(level): [str(r.key) for r in members]
                for level, members in self.levels.items()
            }
        return result


@dataclass
class OrgTreeNode:
    """One orgchart record and its resolved direct reports."""
    record: PersonRecord
    children: List['OrgTreeNode'] = field(default_factory=list)

    @property
    def key(self) -> RecordKey:
        return self.record.key


@dataclass(frozen=True)
class OrganizationalView:
    """Orgchart forest plus diagnostics for dangling or cyclic reports_to links."""
    roots: Tuple[OrgTreeNode, ...]
    diagnostics: Tuple[ResolverDiagnostic, ...] = ()

    def walk(self) -> Iterator[Tuple[int, OrgTreeNode]]:
        """Depth-first (depth, node) pairs, parents before children."""
        stack = [(0, node) for node in reversed(self.roots)]
        while stack:
            depth, node = stack.pop()
            yield depth, node
            stack.extend((depth + 1, child) for child in reversed(node.children))

    def find(self, key: RecordKey) -> Optional[OrgTreeNode]:
        for _, node in self.walk():
            if node.key == key:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        converted: Dict[int, Dict[str, Any]] = {}
        roots = []
        for _, node in self.walk():
            converted[id(node)] = {
                'key': str(node.key),
                'name': node.record.canonical_name,
                'title': node.record.title,
                'children': [],
            }
        for _, node in self.walk():
            entry = converted[id(node)]
            entry['children'] = [converted[id(c)] for c in node.children]
        for root in self.roots:
            roots.append(converted[id(root)])
        return {
            'view': 'organizational',
            'roots': roots,
            'diagnostics': [d.to_dict() for d in self.diagnostics],
        }


@dataclass(frozen=True)
class DepartmentView:
    """Department label -> records, in first-seen order."""
    departments: Mapping[str, Tuple[PersonRecord, ...]]
    unassigned: Tuple[PersonRecord, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'view': 'department',
            'departments': {
                label: [str(r.key) for r in members]
                for label, members in self.departments.items()
            },
            'unassigned': [str(r.key) for r in self.unassigned],
        }


@dataclass(frozen=True)
class GroupView:
    """A flat, named subset of records (leadership, managers, contributors)."""
    name: str
    records: Tuple[PersonRecord, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {'view': self.name, 'records': [r.to_dict() for r in self.records]}


class ViewMaterializer:
    """Builds views against a single Index."""

    def __init__(self, index: Index):
        self.index = index
        self.queries = QueryEngine(index)

    def materialize(self, name: str):
        """
        Build a view by name.

        Raises:
            UnknownViewError: if the name is not a known view
        """
        if not isinstance(name, str):
            raise UnknownViewError(f"View name must be a string, got {type(name).__name__}")
        if name.startswith(SOURCE_VIEW_PREFIX):
            system = name[len(SOURCE_VIEW_PREFIX):]
            if not system:
                raise UnknownViewError(f"Missing source system in view name '{name}'")
            return self.source_view(system)
        if name == 'organizational':
            return self.organizational_view()
        if name == 'department':
            return self.department_view()
        if name == 'leadership':
            return GroupView('leadership', tuple(self.queries.query(is_leadership=True)))
        if name == 'managers':
            return GroupView('managers', tuple(self.queries.query(is_manager=True)))
        if name == 'contributors':
            return GroupView(
                'contributors',
                tuple(self.queries.query(is_leadership=False, is_manager=False)),
            )
        raise UnknownViewError(
            f"Unknown view '{name}'. Expected one of {list(VIEW_NAMES)} or 'source:<system>'"
        )

    def source_view(self, source_system: str) -> SourceView:
        records = self.index.by_source.get(source_system, ())
        levels = None
        if source_system == LADDER:
            grouped: Dict[int, List[PersonRecord]] = {level: [] for level in LADDER_LEVELS}
            for record in records:
                grouped[record.level].append(record)
            levels = {level: tuple(members) for level, members in grouped.items()}
        return SourceView(source_system=source_system, records=tuple(records), levels=levels)

    def department_view(self) -> DepartmentView:
        departments = {
            self.index.department_labels[dept]: tuple(members)
            for dept, members in self.index.by_department.items()
        }
        unassigned = tuple(r for r in self.index.records if not r.department)
        return DepartmentView(departments=departments, unassigned=unassigned)

    def organizational_view(self) -> OrganizationalView:
        """
        Resolve orgchart reports_to links into a forest.

        A record whose manager is not an indexed orgchart record becomes a
        root and is reported as dangling. Records caught in a reports_to
        cycle are reported; each cycle is broken at its earliest-ingested
        member, which becomes a root.
        """
        records = self.index.by_source.get(ORGCHART, ())
        by_key = {r.key: r for r in records}

        children: Dict[RecordKey, List[RecordKey]] = {}
        roots: List[RecordKey] = []
        dangling: List[RecordKey] = []
        for record in records:
            parent = record.reports_to
            if parent is None:
                roots.append(record.key)
            elif parent not in by_key:
                roots.append(record.key)
                dangling.append(record.key)
            else:
                children.setdefault(parent, []).append(record.key)

        visited: set = set()
        nodes: List[OrgTreeNode] = []

        def grow(root_key: RecordKey) -> OrgTreeNode:
            root = OrgTreeNode(by_key[root_key])
            visited.add(root_key)
            stack = [root]
            while stack:
                node = stack.pop()
                for child_key in children.get(node.key, ()):
                    if child_key in visited:
                        continue
                    visited.add(child_key)
                    child = OrgTreeNode(by_key[child_key])
                    node.children.append(child)
                    stack.append(child)
            return root

        for key in roots:
            nodes.append(grow(key))

        cycles: List[RecordKey] = []
        positions = {r.key: i for i, r in enumerate(records)}
        for record in records:
            if record.key in visited:
                continue
            # Unreached from any root: the parent chain must end in a cycle
            chain: List[RecordKey] = []
            seen_at: Dict[RecordKey, int] = {}
            current = record.key
            while current not in seen_at and current not in visited:
                seen_at[current] = len(chain)
                chain.append(current)
                current = by_key[current].reports_to
            if current in visited:
                # Already attached under an earlier root
                continue
            members = sorted(chain[seen_at[current]:], key=positions.__getitem__)
            cycles.extend(members)
            nodes.append(grow(members[0]))

        diagnostics = []
        if dangling:
            diagnostics.append(ResolverDiagnostic(
                kind=DANGLING_REPORTS_TO,
                count=len(dangling),
                keys=tuple(dangling),
                message='reports_to points to a record that is not indexed; treated as root',
            ))
        if cycles:
            diagnostics.append(ResolverDiagnostic(
                kind=REPORTS_TO_CYCLE,
                count=len(cycles),
                keys=tuple(cycles),
                message='reports_to links form a cycle; broken at the earliest-ingested member',
            ))
        for diagnostic in diagnostics:
            logger.warning(f"  Organizational view: {diagnostic.count} {diagnostic.kind}")

        return OrganizationalView(roots=tuple(nodes), diagnostics=tuple(diagnostics))
