"""Tests for the pipeline status machine."""

import pytest

from session_report.exceptions import IllegalTransitionError
from session_report.models.pipeline_state import (
    ALLOWED_TRANSITIONS,
    PipelineStateMachine,
    PipelineStatus,
)

S = PipelineStatus


def test_starts_pending_and_reports_it(recording_sink):
    machine = PipelineStateMachine("sess-1", recording_sink)
    assert machine.status == S.PENDING
    assert recording_sink.statuses == [S.PENDING]


@pytest.mark.parametrize("path", [
    [S.ANALYZING, S.RESEARCHING, S.COMPLETED],
    [S.ANALYZING, S.RESEARCHING, S.CROSS_ANALYZING, S.COMPLETED],
    [S.ANALYZING, S.FAILED],
])
def test_legal_paths(recording_sink, path):
    machine = PipelineStateMachine("sess-1", recording_sink)
    for status in path:
        machine.transition(status)
    assert machine.history == [S.PENDING, *path]
    assert recording_sink.statuses == [S.PENDING, *path]


@pytest.mark.parametrize("path, illegal", [
    ([], S.RESEARCHING),
    ([], S.FAILED),
    ([S.ANALYZING], S.COMPLETED),
    ([S.ANALYZING, S.RESEARCHING], S.FAILED),
    ([S.ANALYZING, S.RESEARCHING, S.CROSS_ANALYZING], S.FAILED),
    ([S.ANALYZING, S.RESEARCHING, S.COMPLETED], S.ANALYZING),
    ([S.ANALYZING, S.FAILED], S.ANALYZING),
])
def test_illegal_transitions_raise(path, illegal):
    machine = PipelineStateMachine("sess-1")
    for status in path:
        machine.transition(status)

    with pytest.raises(IllegalTransitionError):
        machine.transition(illegal)
    assert machine.status == (path[-1] if path else S.PENDING)


def test_terminal_states_have_no_exits():
    assert ALLOWED_TRANSITIONS[S.COMPLETED] == frozenset()
    assert ALLOWED_TRANSITIONS[S.FAILED] == frozenset()


def test_failed_only_reachable_from_analyzing():
    sources = [src for src, targets in ALLOWED_TRANSITIONS.items() if S.FAILED in targets]
    assert sources == [S.ANALYZING]


def test_failing_sink_does_not_block():
    def broken_sink(status):
        raise RuntimeError("sink down")

    machine = PipelineStateMachine("sess-1", broken_sink)
    machine.transition(S.ANALYZING)
    assert machine.status == S.ANALYZING
