import itertools

import pytest

from crm.work_items.errors import IllegalTransitionError
from crm.work_items.state import WorkItemStateMachine, WorkItemStatus

LEGAL_EDGES = {
    (WorkItemStatus.DRAFT, WorkItemStatus.OPEN),
    (WorkItemStatus.DRAFT, WorkItemStatus.CANCELLED),
    (WorkItemStatus.OPEN, WorkItemStatus.IN_PROGRESS),
    (WorkItemStatus.OPEN, WorkItemStatus.CANCELLED),
    (WorkItemStatus.IN_PROGRESS, WorkItemStatus.RESOLVED),
    (WorkItemStatus.IN_PROGRESS, WorkItemStatus.CANCELLED),
    (WorkItemStatus.RESOLVED, WorkItemStatus.CLOSED),
    (WorkItemStatus.RESOLVED, WorkItemStatus.IN_PROGRESS),
}

ALL_PAIRS = list(itertools.product(WorkItemStatus, repeat=2))


def test_initial_state_is_draft():
    assert WorkItemStateMachine.initial_state() == WorkItemStatus.DRAFT


@pytest.mark.parametrize("current,target", ALL_PAIRS)
def test_can_transition_matches_edge_table(current, target):
    assert WorkItemStateMachine.can_transition(current, target) is ((current, target) in LEGAL_EDGES)


@pytest.mark.parametrize("status", list(WorkItemStatus))
def test_self_transitions_are_rejected(status):
    with pytest.raises(IllegalTransitionError) as excinfo:
        WorkItemStateMachine.assert_transition(status, status)
    assert excinfo.value.source == status
    assert excinfo.value.target == status


def test_terminal_states_have_no_successors():
    assert WorkItemStateMachine.is_terminal(WorkItemStatus.CLOSED)
    assert WorkItemStateMachine.is_terminal(WorkItemStatus.CANCELLED)
    assert not WorkItemStateMachine.is_terminal(WorkItemStatus.RESOLVED)
    assert WorkItemStateMachine.allowed_targets(WorkItemStatus.CLOSED) == frozenset()


def test_illegal_transition_message_names_both_states():
    with pytest.raises(IllegalTransitionError, match="Open to Resolved"):
        WorkItemStateMachine.assert_transition(WorkItemStatus.OPEN, WorkItemStatus.RESOLVED)


def test_transition_table_is_read_only():
    with pytest.raises(TypeError):
        WorkItemStateMachine._TRANSITIONS[WorkItemStatus.CLOSED] = frozenset({WorkItemStatus.OPEN})  # type: ignore[index]
