from datetime import datetime, timedelta, timezone

import pytest

from apps.api.services.errors import InvalidTransitionError
from apps.api.services.tickets import (
    TicketStateMachine,
    TicketStatus,
    TransitionPolicy,
    advance_timestamp,
)


def test_permissive_policy_allows_any_transition():
    machine = TicketStateMachine()

    assert machine.initial_state() == TicketStatus.OPEN
    for current in TicketStatus:
        for target in TicketStatus:
            assert machine.can_transition(current, target)


def test_strict_policy_blocks_leaving_closed_and_cancelled():
    machine = TicketStateMachine(TransitionPolicy.STRICT)

    assert machine.can_transition(TicketStatus.OPEN, TicketStatus.RESOLVED)
    assert machine.can_transition(TicketStatus.RESOLVED, TicketStatus.OPEN)
    assert machine.can_transition(TicketStatus.CLOSED, TicketStatus.CLOSED)
    assert not machine.can_transition(TicketStatus.CLOSED, TicketStatus.OPEN)
    with pytest.raises(InvalidTransitionError):
        machine.assert_transition(TicketStatus.CANCELLED, TicketStatus.IN_PROGRESS)


def test_assignment_blocked_only_for_closed_and_cancelled():
    machine = TicketStateMachine()

    assert machine.can_assign(TicketStatus.RESOLVED)
    assert not machine.can_assign(TicketStatus.CLOSED)
    with pytest.raises(InvalidTransitionError):
        machine.assert_assignable(TicketStatus.CANCELLED)


def test_status_parsing_accepts_new_alias():
    assert TicketStatus.parse("new") == TicketStatus.OPEN
    assert TicketStatus.parse(" In_Progress ") == TicketStatus.IN_PROGRESS
    assert TicketStatus.CLOSED.display_group == "resolved"
    assert TicketStatus.ASSIGNED.display_group == "in_progress"
    with pytest.raises(InvalidTransitionError):
        TicketStatus.parse("archived")


def test_advance_timestamp_is_strictly_increasing():
    previous = datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert advance_timestamp(None, previous) == previous
    assert advance_timestamp(previous, previous) == previous + timedelta(microseconds=1)
    assert advance_timestamp(previous, previous - timedelta(hours=1)) > previous
    assert advance_timestamp(previous, previous + timedelta(hours=1)) == previous + timedelta(hours=1)
