"""
OrgLens - Pipeline Tracking Tests
=================================
Tests for the run tracker used as the out-of-band diagnostics channel.
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from orglens.errors import CycleCancelledError, CycleTimeoutError
from orglens.pipeline_tracking import (
    CANCELLED,
    FAILED,
    PARTIAL,
    RUNNING,
    SUCCESS,
    TIMEOUT,
    RunTracker,
    get_latest_run,
    get_running_pipelines,
    mark_run_partial,
    track_cycle_run,
    update_run_metrics,
)


@pytest.fixture
def tracker():
    return RunTracker(history_size=3)


def test_successful_run(tracker):
    with track_cycle_run(tracker, 'cycle', sources=['ladder']) as run_id:
        assert tracker.get(run_id)['status'] == RUNNING
        assert len(get_running_pipelines(tracker)) == 1
        update_run_metrics(tracker, run_id, records_pulled=10, records_processed=9, metadata={'v': 1})

    run = tracker.get(run_id)
    assert run['status'] == SUCCESS
    assert run['records_pulled'] == 10
    assert run['records_processed'] == 9
    assert run['records_skipped'] is None
    assert run['metadata'] == {'v': 1}
    assert run['completed_at'] is not None
    assert get_running_pipelines(tracker) == []


@pytest.mark.parametrize('error,status', [
    (CycleTimeoutError('too slow'), TIMEOUT),
    (CycleCancelledError('superseded'), CANCELLED),
    (RuntimeError('boom'), FAILED),
])
def test_failed_runs_record_status_and_reraise(tracker, error, status):
    with pytest.raises(type(error)):
        with track_cycle_run(tracker, 'cycle') as run_id:
            raise error

    run = tracker.get(run_id)
    assert run['status'] == status
    assert run['error_message'] == str(error)


def test_partial_run_keeps_partial_status(tracker):
    with track_cycle_run(tracker, 'cycle', sources=['ladder', 'orgchart']) as run_id:
        mark_run_partial(tracker, run_id, 'orgchart: unreachable')

    run = tracker.get(run_id)
    assert run['status'] == PARTIAL
    assert run['error_message'] == 'orgchart: unreachable'


def test_history_is_bounded(tracker):
    run_ids = []
    for i in range(5):
        with track_cycle_run(tracker, f"cycle-{i % 2}") as run_id:
            run_ids.append(run_id)

    assert [r['run_id'] for r in tracker.runs()] == run_ids[2:]
    assert tracker.get(run_ids[0]) is None
    assert get_latest_run(tracker, 'cycle-0')['run_id'] == run_ids[4]
    assert get_latest_run(tracker, 'cycle-1')['run_id'] == run_ids[3]
    assert get_latest_run(tracker, 'missing') is None


def test_returned_runs_are_copies(tracker):
    with track_cycle_run(tracker, 'cycle', metadata={'a': 1}) as run_id:
        pass
    tracker.get(run_id)['metadata']['a'] = 2
    assert tracker.get(run_id)['metadata'] == {'a': 1}


def test_updates_to_unknown_runs_are_ignored(tracker):
    update_run_metrics(tracker, 'no-such-run', records_pulled=1)
    mark_run_partial(tracker, 'no-such-run')
    assert tracker.runs() == []
