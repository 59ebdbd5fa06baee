"""
Serving module: predicate queries and materialized views over one Index
"""

from .query_engine import QueryEngine, QueryPredicates, parse_predicates
from .views import (
    DepartmentView,
    GroupView,
    OrganizationalView,
    OrgTreeNode,
    SourceView,
    ViewMaterializer,
)

__all__ = [
    'DepartmentView',
    'GroupView',
    'OrganizationalView',
    'OrgTreeNode',
    'QueryEngine',
    'QueryPredicates',
    'SourceView',
    'ViewMaterializer',
    'parse_predicates',
]
