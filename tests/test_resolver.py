"""
OrgLens - Cross-Reference Resolver Tests
========================================
Tests for pair scoring, blocking, clustering and determinism.
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from orglens.config import EngineConfig
from orglens.identity.resolve_people import CrossReferenceResolver, build_blocks
from orglens.identity.scoring import PairScorer, name_similarity, structural_compatibility
from orglens.index.build_index import build_index
from orglens.models import UNBLOCKABLE_RECORD, RecordKey
from orglens.standardization.normalize_people import Normalizer


def make_index(snapshots, config=None):
    normalizer = Normalizer(config)
    records = []
    for source_system, raws in snapshots.items():
        batch, _ = normalizer.normalize_batch(raws, source_system)
        records.extend(batch)
    index, _ = build_index(records, version=1)
    return index


SARAH_LADDER = {'id': 'L1', 'name': 'Sarah Johnson', 'title': 'Master Agent', 'level': 1}
SARAH_DEPARTMENT = {'id': 'D9', 'name': 'Sarah Johnson', 'title': 'Marketing Director',
                    'department': 'Marketing'}


# ============================================================================
# SIGNALS
# ============================================================================

def test_name_similarity():
    assert name_similarity('sarah johnson', 'sarah johnson') == 1.0
    assert name_similarity('johnson sarah', 'sarah johnson') == 1.0
    assert name_similarity('sarah ann johnson', 'sarah johnson') == 1.0
    assert name_similarity('', 'sarah johnson') == 0.0
    assert 0.9 < name_similarity('jon smith', 'john smith') < 1.0
    # A lone first name is not a full match
    assert name_similarity('sarah', 'sarah johnson') < 0.6


def test_structural_compatibility():
    index = make_index({
        'orgchart': [
            {'id': 'E1', 'name': 'A One', 'department': 'Sales'},
            {'id': 'E2', 'name': 'B Two', 'department': ' sales'},
            {'id': 'E3', 'name': 'C Three', 'department': 'Finance'},
            {'id': 'E4', 'name': 'D Four'},
        ],
    })
    e1, e2, e3, e4 = index.records
    assert structural_compatibility(e1, e2) == 1.0
    assert structural_compatibility(e1, e3) == 0.0
    assert structural_compatibility(e1, e4) == 0.5


def test_title_similarity_uses_synonyms():
    index = make_index({
        'orgchart': [
            {'id': 'E1', 'name': 'A One', 'title': 'VP Sales'},
            {'id': 'E2', 'name': 'B Two', 'title': 'Sr. Mgr'},
        ],
        'department': [
            {'id': 'D1', 'name': 'A One', 'title': 'Vice President, Sales'},
            {'id': 'D2', 'name': 'B Two', 'title': 'Senior Manager'},
            {'id': 'D3', 'name': 'C Three', 'title': 'Analyst'},
        ],
    })
    e1, e2, d1, d2, d3 = index.records
    scorer = PairScorer()

    assert scorer.title_similarity(e1, d1) == 1.0
    assert scorer.title_similarity(e2, d2) == 1.0
    # No shared words, no shared role
    assert scorer.title_similarity(e1, d3) == 0.0
    # Contributors share the contributor role
    assert scorer.title_similarity(d3, d3) == 1.0


def test_sarah_johnson_pair_scores_exactly_at_threshold():
    index = make_index({'ladder': [SARAH_LADDER], 'department': [SARAH_DEPARTMENT]})
    ladder, department = index.records

    scored = PairScorer().score(ladder, department)

    assert scored.name_similarity == 1.0
    assert scored.title_similarity == pytest.approx(0.3)
    assert scored.structural_compatibility == 0.5
    assert scored.score == 0.75


# ============================================================================
# RESOLUTION
# ============================================================================

def test_sarah_johnson_scenario():
    index = make_index({'ladder': [SARAH_LADDER], 'department': [SARAH_DEPARTMENT]})

    result = CrossReferenceResolver().resolve(index)

    assert len(result.cross_references) == 1
    xref = result.cross_references[0]
    assert xref.members == (RecordKey('ladder', 'L1'), RecordKey('department', 'D9'))
    assert xref.confidence == 0.75
    assert xref.likely_same_person is False
    assert xref.signals == ('name', 'title', 'structure')
    assert result.summary.comparisons == 1
    print(f"✓ Sarah Johnson cross-reference: confidence={xref.confidence}")


def test_transitive_cluster_confidence_is_minimum_edge():
    index = make_index({
        'ladder': [SARAH_LADDER],
        'orgchart': [{'id': 'E4', 'name': 'Sarah Johnson', 'title': 'Marketing Director',
                      'department': 'Marketing'}],
        'department': [SARAH_DEPARTMENT],
    })

    result = CrossReferenceResolver().resolve(index)

    assert len(result.cross_references) == 1
    xref = result.cross_references[0]
    assert xref.members == (
        RecordKey('ladder', 'L1'),
        RecordKey('orgchart', 'E4'),
        RecordKey('department', 'D9'),
    )
    assert sorted(e.score for e in xref.evidence) == [0.75, 0.75, 1.0]
    assert xref.confidence == 0.75
    assert all(xref.confidence <= e.score for e in xref.evidence)


def test_same_source_records_are_never_linked():
    index = make_index({
        'orgchart': [
            {'id': 'E1', 'name': 'Sarah Johnson', 'title': 'Director', 'department': 'Sales'},
            {'id': 'E2', 'name': 'Sarah Johnson', 'title': 'Director', 'department': 'Sales'},
        ],
    })
    result = CrossReferenceResolver().resolve(index)
    assert result.cross_references == ()
    assert result.summary.comparisons == 0


def test_different_people_are_not_linked():
    index = make_index({
        'orgchart': [{'id': 'E1', 'name': 'Sarah Johnson', 'title': 'Director', 'department': 'Sales'}],
        'department': [{'id': 'D1', 'name': 'Samuel Jackson', 'title': 'Clerk', 'department': 'Sales'}],
    })
    result = CrossReferenceResolver().resolve(index)
    assert result.cross_references == ()
    assert result.summary.comparisons == 1


def test_likely_same_person_and_min_confidence():
    index = make_index({
        'ladder': [SARAH_LADDER],
        'orgchart': [{'id': 'E7', 'name': 'Jon Smith', 'title': 'Sales Manager', 'department': 'Sales'}],
        'department': [
            SARAH_DEPARTMENT,
            {'id': 'D7', 'name': 'John Smith', 'title': 'Sales Mgr', 'department': 'Sales'},
        ],
    })

    result = CrossReferenceResolver().resolve(index)

    assert len(result.list()) == 2
    likely = result.list(min_confidence=0.9)
    assert len(likely) == 1
    assert likely[0].members == (RecordKey('orgchart', 'E7'), RecordKey('department', 'D7'))
    assert likely[0].likely_same_person is True
    assert result.summary.likely_clusters == 1


def test_clusters_are_disjoint():
    index = make_index({
        'ladder': [SARAH_LADDER, {'id': 'L2', 'name': 'John Smith', 'level': 4}],
        'orgchart': [{'id': 'E7', 'name': 'John Smith', 'title': 'Sales Manager', 'department': 'Sales'}],
        'department': [SARAH_DEPARTMENT],
    })
    result = CrossReferenceResolver().resolve(index)

    seen = set()
    for xref in result.cross_references:
        assert len(xref.members) >= 2
        assert seen.isdisjoint(xref.members)
        seen.update(xref.members)


def test_unblockable_records_are_reported():
    index = make_index({
        'ladder': [SARAH_LADDER],
        'department': [SARAH_DEPARTMENT, {'id': 'D2', 'name': 'Mr.'}],
    })

    result = CrossReferenceResolver().resolve(index)

    assert len(result.diagnostics) == 1
    diagnostic = result.diagnostics[0]
    assert diagnostic.kind == UNBLOCKABLE_RECORD
    assert diagnostic.count == 1
    assert diagnostic.keys == (RecordKey('department', 'D2'),)
    assert result.summary.records_excluded == 1
    assert len(result.cross_references) == 1


def test_blocks_cover_departmentless_records():
    index = make_index({'ladder': [SARAH_LADDER], 'department': [SARAH_DEPARTMENT]})
    blocks = build_blocks(index)
    assert [b.block_key for b in blocks] == ['s|', 's|marketing']
    assert [r.source_id for r in blocks[1].floating] == ['L1']


def test_pair_threshold_is_configurable():
    index = make_index({'ladder': [SARAH_LADDER], 'department': [SARAH_DEPARTMENT]})
    strict = EngineConfig(pair_threshold=0.8)
    assert CrossReferenceResolver(strict).resolve(index).cross_references == ()


def _population():
    first = ['Sarah', 'Sam', 'Tom', 'Tina', 'Alan', 'Ada', 'Grace', 'Greg']
    last = ['Johnson', 'Jones', 'Baker', 'Turing']
    departments = ['Sales', 'Marketing', None]
    ladder, orgchart, department = [], [], []
    n = 0
    for f in first:
        for l in last:
            n += 1
            name = f"{f} {l}"
            dept = departments[n % 3]
            ladder.append({'id': f"L{n}", 'name': name, 'level': n % 8 + 1})
            orgchart.append({'id': f"E{n}", 'name': name, 'title': 'Sales Manager', 'department': dept})
            department.append({'id': f"D{n}", 'name': name.upper(), 'title': 'Sales Mgr',
                               'department': dept or 'Sales'})
    return {'ladder': ladder, 'orgchart': orgchart, 'department': department}


def test_resolution_is_deterministic():
    index = make_index(_population())
    first = CrossReferenceResolver().resolve(index)
    second = CrossReferenceResolver().resolve(index)

    assert first.cross_references == second.cross_references
    assert [x.cluster_id for x in first.cross_references] == [x.cluster_id for x in second.cross_references]


def test_parallel_workers_match_serial():
    index = make_index(_population())
    serial = CrossReferenceResolver(workers=1).resolve(index)
    parallel = CrossReferenceResolver(workers=4).resolve(index)

    assert len(serial.cross_references) > 0
    assert parallel.cross_references == serial.cross_references
    assert parallel.summary.comparisons == serial.summary.comparisons
    print(f"✓ {len(serial.cross_references)} clusters identical across worker counts")


def test_checkpoint_can_abort_resolution():
    index = make_index(_population())
    calls = []

    def checkpoint():
        calls.append(1)
        if len(calls) > 2:
            raise RuntimeError('stop')

    with pytest.raises(RuntimeError):
        CrossReferenceResolver().resolve(index, checkpoint=checkpoint)
