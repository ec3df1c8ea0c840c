"""
Tests for the reservation lifecycle table.
"""

import pytest

from app.domain.lifecycle import (
    LIVE_STATUSES,
    TERMINAL_STATUSES,
    ReservationStatus,
    can_transition,
    sources_for,
)

PENDING = ReservationStatus.PENDING
ACTIVE = ReservationStatus.ACTIVE
CANCELLED = ReservationStatus.CANCELLED
EXPIRED = ReservationStatus.EXPIRED
COMPLETED = ReservationStatus.COMPLETED


@pytest.mark.parametrize(
    "current,target",
    [
        (PENDING, ACTIVE),
        (PENDING, EXPIRED),
        (PENDING, CANCELLED),
        (ACTIVE, COMPLETED),
        (ACTIVE, EXPIRED),
        (ACTIVE, CANCELLED),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


def test_pending_cannot_complete():
    assert not can_transition(PENDING, COMPLETED)


def test_active_cannot_go_back_to_pending():
    assert not can_transition(ACTIVE, PENDING)


@pytest.mark.parametrize("terminal", [CANCELLED, EXPIRED, COMPLETED])
def test_terminal_statuses_have_no_outgoing_edges(terminal):
    assert terminal.is_terminal
    for target in ReservationStatus:
        assert not can_transition(terminal, target)


def test_live_and_terminal_partition_statuses():
    assert LIVE_STATUSES == {PENDING, ACTIVE}
    assert LIVE_STATUSES | TERMINAL_STATUSES == set(ReservationStatus)
    assert not LIVE_STATUSES & TERMINAL_STATUSES


def test_can_transition_accepts_raw_status_strings():
    assert can_transition("pending", ACTIVE)


def test_sources_for():
    assert sources_for(EXPIRED) == {PENDING, ACTIVE}
    assert sources_for(COMPLETED) == {ACTIVE}
    assert sources_for(PENDING) == frozenset()
