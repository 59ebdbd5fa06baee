"""
OrgLens - View Materializer Tests
=================================
Tests for source-preserving, organizational, department and role views.
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from orglens.errors import UnknownViewError
from orglens.index.build_index import build_index
from orglens.models import DANGLING_REPORTS_TO, REPORTS_TO_CYCLE, RecordKey
from orglens.serving.query_engine import QueryEngine
from orglens.serving.views import ViewMaterializer
from orglens.standardization.normalize_people import Normalizer


LADDER = [
    {'id': 'L3', 'name': 'Carl Agent', 'level': 3},
    {'id': 'L1', 'name': 'Mia Master', 'level': 1},
    {'id': 'L8', 'name': 'Cleo Clerk', 'level': 8},
    {'id': 'L1b', 'name': 'Max Master', 'level': 1},
    {'id': 'L5', 'name': 'Sue Subagent', 'level': 5},
]

ORGCHART = [
    {'id': 'E1', 'name': 'Ada Lovelace', 'title': 'CEO'},
    {'id': 'E2', 'name': 'Grace Hopper', 'title': 'Engineering Manager', 'department': 'Engineering',
     'reportsTo': 'E1'},
    {'id': 'E3', 'name': 'Alan Turing', 'title': 'Engineer', 'department': 'Engineering',
     'reportsTo': 'E2'},
    {'id': 'E4', 'name': 'Orphan Annie', 'title': 'Analyst', 'reportsTo': 'X99'},
    {'id': 'E5', 'name': 'Loop One', 'title': 'Analyst', 'reportsTo': 'E6'},
    {'id': 'E6', 'name': 'Loop Two', 'title': 'Team Lead', 'reportsTo': 'E5'},
    {'id': 'E7', 'name': 'Self Boss', 'title': 'Analyst', 'reportsTo': 'E7'},
    {'id': 'E8', 'name': 'Under Loop', 'title': 'Analyst', 'reportsTo': 'E6'},
]

DEPARTMENT = [
    {'id': 'D1', 'name': 'Grace Hopper', 'title': 'Engineering Manager', 'department': 'engineering'},
    {'id': 'D2', 'name': 'Mary Marketer', 'title': 'Marketing Director', 'department': 'Marketing'},
]


@pytest.fixture
def index():
    normalizer = Normalizer()
    records = []
    for source_system, raws in (('ladder', LADDER), ('orgchart', ORGCHART), ('department', DEPARTMENT)):
        batch, report = normalizer.normalize_batch(raws, source_system)
        assert report.skipped == 0
        records.extend(batch)
    index, _ = build_index(records, version=1)
    return index


@pytest.fixture
def views(index):
    return ViewMaterializer(index)


def ids(records):
    return [r.source_id for r in records]


# ============================================================================
# SOURCE-PRESERVING VIEW
# ============================================================================

def test_ladder_view_round_trips_levels(views):
    view = views.materialize('source:ladder')

    assert ids(view.records) == ['L3', 'L1', 'L8', 'L1b', 'L5']
    assert list(view.levels) == [1, 2, 3, 4, 5, 6, 7, 8]
    assert ids(view.levels[1]) == ['L1', 'L1b']
    assert ids(view.levels[3]) == ['L3']
    assert ids(view.levels[5]) == ['L5']
    assert ids(view.levels[8]) == ['L8']
    assert view.levels[2] == ()
    assert view.to_dict()['levels']['1'] == ['ladder:L1', 'ladder:L1b']


def test_other_source_view_has_no_levels(views):
    view = views.materialize('source:department')
    assert ids(view.records) == ['D1', 'D2']
    assert view.levels is None

    assert views.materialize('source:payroll').records == ()


# ============================================================================
# ORGANIZATIONAL VIEW
# ============================================================================

def test_organizational_tree(views):
    view = views.materialize('organizational')

    assert [node.key.source_id for node in view.roots] == ['E1', 'E4', 'E5', 'E7']
    ceo = view.roots[0]
    assert [c.key.source_id for c in ceo.children] == ['E2']
    assert [c.key.source_id for c in ceo.children[0].children] == ['E3']

    # Only orgchart records take part
    walked = [node.key for _, node in view.walk()]
    assert all(key.source_system == 'orgchart' for key in walked)
    assert len(walked) == len(set(walked)) == 8


def test_organizational_view_reports_dangling_and_cycles(views):
    view = views.materialize('organizational')
    diagnostics = {d.kind: d for d in view.diagnostics}

    assert diagnostics[DANGLING_REPORTS_TO].keys == (RecordKey('orgchart', 'E4'),)
    assert diagnostics[REPORTS_TO_CYCLE].keys == (
        RecordKey('orgchart', 'E5'),
        RecordKey('orgchart', 'E6'),
        RecordKey('orgchart', 'E7'),
    )
    assert diagnostics[REPORTS_TO_CYCLE].count == 3

    loop = view.find(RecordKey('orgchart', 'E5'))
    assert [c.key.source_id for c in loop.children] == ['E6']
    assert [c.key.source_id for c in loop.children[0].children] == ['E8']
    assert view.find(RecordKey('orgchart', 'E7')).children == []


def test_organizational_view_to_dict(views):
    data = views.materialize('organizational').to_dict()
    assert data['roots'][0]['key'] == 'orgchart:E1'
    assert data['roots'][0]['children'][0]['children'][0]['name'] == 'Alan Turing'
    assert len(data['diagnostics']) == 2


# ============================================================================
# DEPARTMENT AND ROLE VIEWS
# ============================================================================

def test_department_view(views):
    view = views.materialize('department')

    assert list(view.departments) == ['Engineering', 'Marketing']
    assert ids(view.departments['Engineering']) == ['E2', 'E3', 'D1']
    assert ids(view.departments['Marketing']) == ['D2']
    assert ids(view.unassigned) == ['L3', 'L1', 'L8', 'L1b', 'L5', 'E1', 'E4', 'E5', 'E6', 'E7', 'E8']


def test_role_views_wrap_query_engine(views, index):
    engine = QueryEngine(index)

    leadership = views.materialize('leadership')
    assert list(leadership.records) == engine.query(is_leadership=True)
    assert ids(leadership.records) == ['L1', 'L1b', 'E1', 'D2']

    managers = views.materialize('managers')
    assert ids(managers.records) == ['L3', 'L1', 'L1b', 'E2', 'E6', 'D1']

    contributors = views.materialize('contributors')
    assert ids(contributors.records) == ['L8', 'L5', 'E3', 'E4', 'E5', 'E7', 'E8']


@pytest.mark.parametrize('name', ['everything', 'source:', '', 'Organizational'])
def test_unknown_view_names(views, name):
    with pytest.raises(UnknownViewError):
        views.materialize(name)
