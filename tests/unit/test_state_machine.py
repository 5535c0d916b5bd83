"""Unit tests for the record lifecycle.

Tests the transition table, effective status of missing and expired records
and claimability.
"""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from idempotent_fetch.core.state_machine import (
    TRANSITIONS,
    LifecycleEvent,
    can_transition,
    effective_status,
    expiry_event,
    is_claimable,
    next_status,
)
from idempotent_fetch.exceptions import InvalidTransitionError
from idempotent_fetch.models import IdempotencyRecord, RecordStatus

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


def make_record(status: RecordStatus, **overrides) -> IdempotencyRecord:
    fields = {
        "key": "fetch-location#abc",
        "status": status,
        "result": '{"ok": true}' if status == RecordStatus.COMPLETED else None,
        "in_progress_expiry": (
            NOW + timedelta(seconds=60) if status == RecordStatus.IN_PROGRESS else None
        ),
        "result_expiry": NOW + timedelta(hours=1),
        "claim_token": str(uuid.uuid4()),
        "created_at": NOW,
    }
    fields.update(overrides)
    return IdempotencyRecord(**fields)


class TestTransitions:
    @pytest.mark.parametrize(
        ("current", "event", "expected"),
        [
            (RecordStatus.ABSENT, LifecycleEvent.CLAIM, RecordStatus.IN_PROGRESS),
            (RecordStatus.IN_PROGRESS, LifecycleEvent.COMPLETE, RecordStatus.COMPLETED),
            (RecordStatus.IN_PROGRESS, LifecycleEvent.RELEASE, RecordStatus.ABSENT),
            (RecordStatus.IN_PROGRESS, LifecycleEvent.RECLAIM, RecordStatus.ABSENT),
            (RecordStatus.COMPLETED, LifecycleEvent.EXPIRE, RecordStatus.ABSENT),
        ],
    )
    def test_legal_transitions(
        self, current: RecordStatus, event: LifecycleEvent, expected: RecordStatus
    ) -> None:
        assert can_transition(current, event)
        assert next_status(current, event) == expected

    @pytest.mark.parametrize(
        ("current", "event"),
        [
            (RecordStatus.IN_PROGRESS, LifecycleEvent.CLAIM),
            (RecordStatus.COMPLETED, LifecycleEvent.CLAIM),
            (RecordStatus.COMPLETED, LifecycleEvent.COMPLETE),
            (RecordStatus.COMPLETED, LifecycleEvent.RELEASE),
            (RecordStatus.ABSENT, LifecycleEvent.COMPLETE),
            (RecordStatus.ABSENT, LifecycleEvent.RELEASE),
        ],
    )
    def test_illegal_transitions(self, current: RecordStatus, event: LifecycleEvent) -> None:
        assert not can_transition(current, event)
        with pytest.raises(InvalidTransitionError) as exc_info:
            next_status(current, event)
        assert exc_info.value.current == current.value
        assert exc_info.value.event == event.value

    def test_error_message(self) -> None:
        with pytest.raises(InvalidTransitionError, match="Cannot claim a key in status COMPLETED"):
            next_status(RecordStatus.COMPLETED, LifecycleEvent.CLAIM)

    @given(
        current=st.sampled_from(list(RecordStatus)),
        event=st.sampled_from(list(LifecycleEvent)),
    )
    def test_completed_is_only_left_by_expiry(
        self, current: RecordStatus, event: LifecycleEvent
    ) -> None:
        """Test that nothing but expiry moves a key out of COMPLETED."""
        if current == RecordStatus.COMPLETED and event != LifecycleEvent.EXPIRE:
            assert not can_transition(current, event)

    @given(
        current=st.sampled_from(list(RecordStatus)),
        event=st.sampled_from(list(LifecycleEvent)),
    )
    def test_transition_table_agrees_with_next_status(
        self, current: RecordStatus, event: LifecycleEvent
    ) -> None:
        if (current, event) in TRANSITIONS:
            assert next_status(current, event) == TRANSITIONS[(current, event)]
        else:
            with pytest.raises(InvalidTransitionError):
                next_status(current, event)


class TestEffectiveStatus:
    def test_missing_record_is_absent(self) -> None:
        assert effective_status(None, NOW) == RecordStatus.ABSENT

    def test_live_records_keep_status(self) -> None:
        assert effective_status(make_record(RecordStatus.IN_PROGRESS), NOW) == RecordStatus.IN_PROGRESS
        assert effective_status(make_record(RecordStatus.COMPLETED), NOW) == RecordStatus.COMPLETED

    def test_expired_records_are_absent(self) -> None:
        later = NOW + timedelta(hours=2)
        assert effective_status(make_record(RecordStatus.IN_PROGRESS), later) == RecordStatus.ABSENT
        assert effective_status(make_record(RecordStatus.COMPLETED), later) == RecordStatus.ABSENT


class TestClaimability:
    def test_missing_key_is_claimable(self) -> None:
        assert is_claimable(None, NOW)

    def test_live_records_are_not_claimable(self) -> None:
        assert not is_claimable(make_record(RecordStatus.IN_PROGRESS), NOW)
        assert not is_claimable(make_record(RecordStatus.COMPLETED), NOW)

    def test_stale_in_progress_is_claimable(self) -> None:
        assert is_claimable(make_record(RecordStatus.IN_PROGRESS), NOW + timedelta(seconds=60))

    def test_expired_completed_is_claimable(self) -> None:
        assert is_claimable(make_record(RecordStatus.COMPLETED), NOW + timedelta(hours=1))


def test_expiry_event() -> None:
    assert expiry_event(make_record(RecordStatus.IN_PROGRESS)) == LifecycleEvent.RECLAIM
    assert expiry_event(make_record(RecordStatus.COMPLETED)) == LifecycleEvent.EXPIRE
