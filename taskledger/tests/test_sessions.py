"""
Unit Tests for the Task Session Controller

Tests cover:
1. Starting a session and its guards
2. Countdown completion and crediting
3. Cancellation and early close of the viewing surface
4. Late or duplicate events after a session resolved
"""

import pytest
from decimal import Decimal
from uuid import UUID

from taskledger.errors import (
    AlreadyActiveError,
    AlreadyCompletedError,
    UnknownTaskError,
    UnknownUserError,
)
from taskledger.models import SessionOutcome, TaskRequest
from taskledger.service import TaskLedgerService
from taskledger.sessions import InMemoryViewingSurface
from taskledger.store import InMemoryPersistence, LedgerStore


MISSING_ID = UUID("00000000-0000-0000-0000-000000000000")


def make_service(surface=None) -> TaskLedgerService:
    return TaskLedgerService(LedgerStore(InMemoryPersistence()), surface=surface or InMemoryViewingSurface())


def make_user(service: TaskLedgerService, username: str = "alice"):
    user = service.register(username, "secret")
    service.admin.approve_user(user.id)
    return user


def make_task(service: TaskLedgerService, reward: str = "50.00", duration: int = 5):
    return service.admin.create_task(TaskRequest(
        url="https://ads.example.com/watch", reward=Decimal(reward), duration_seconds=duration,
    ))


class TestStartSession:
    """Tests for starting a task session."""

    def test_start_session_creates_countdown(self):
        """Test that a new session counts down from the task duration."""
        surface = InMemoryViewingSurface()
        service = make_service(surface)
        user = make_user(service)
        task = make_task(service, duration=5)

        session = service.start_session(user.id, task.id)

        assert session.task_id == task.id
        assert session.seconds_remaining == 5
        assert session.reward == Decimal("50.00")
        assert service.get_active_session(user.id) == session
        # The ad is opened on the viewing surface
        assert surface.is_open(session.surface_handle)
        assert surface.opened[session.surface_handle] == "https://ads.example.com/watch"

    def test_cannot_start_while_active(self):
        """Test that a second session is refused while one is active."""
        service = make_service()
        user = make_user(service)
        first = make_task(service)
        second = make_task(service)

        service.start_session(user.id, first.id)

        with pytest.raises(AlreadyActiveError):
            service.start_session(user.id, second.id)
        assert service.get_active_session(user.id).task_id == first.id

    def test_cannot_restart_completed_task(self):
        """Test that a completed task cannot be started again."""
        service = make_service()
        user = make_user(service)
        task = make_task(service, duration=1)

        service.start_session(user.id, task.id)
        service.tick(user.id)

        with pytest.raises(AlreadyCompletedError):
            service.start_session(user.id, task.id)

    def test_unknown_task_fails(self):
        service = make_service()
        user = make_user(service)

        with pytest.raises(UnknownTaskError):
            service.start_session(user.id, MISSING_ID)
        assert service.get_active_session(user.id) is None

    def test_unknown_user_fails(self):
        service = make_service()
        task = make_task(service)

        with pytest.raises(UnknownUserError):
            service.start_session(MISSING_ID, task.id)


class TestCountdown:
    """Tests for ticking a session to completion."""

    def test_ticks_complete_task_and_credit_reward(self):
        """Scenario: five ticks on a five-second task pay the reward once."""
        surface = InMemoryViewingSurface()
        service = make_service(surface)
        user = make_user(service)
        task = make_task(service, reward="50", duration=5)
        session = service.start_session(user.id, task.id)

        for expected in (4, 3, 2, 1):
            state = service.tick(user.id)
            assert state.outcome == SessionOutcome.ACTIVE
            assert state.seconds_remaining == expected
            assert service.get_balance(user.id) == Decimal("0.00")

        state = service.tick(user.id)

        assert state.outcome == SessionOutcome.COMPLETED
        assert state.balance == Decimal("50.00")
        assert service.get_balance(user.id) == Decimal("50.00")
        assert service.get_active_session(user.id) is None
        assert len(service.list_completions(user.id)) == 1
        # The ad view is closed once the countdown finishes
        assert not surface.is_open(session.surface_handle)

    def test_reward_is_snapshotted_at_start(self):
        """Test that editing the task mid-session does not change the payout."""
        service = make_service()
        user = make_user(service)
        task = make_task(service, reward="50", duration=2)
        service.start_session(user.id, task.id)

        service.admin.edit_task(task.id, TaskRequest(
            url=task.url, reward=Decimal("80"), duration_seconds=2,
        ))
        service.tick(user.id)
        service.tick(user.id)

        assert service.get_balance(user.id) == Decimal("50.00")
        assert service.list_completions(user.id)[0].reward == Decimal("50.00")

    def test_deleting_task_mid_session_still_pays_started_reward(self):
        service = make_service()
        user = make_user(service)
        task = make_task(service, reward="25", duration=1)
        service.start_session(user.id, task.id)

        service.admin.delete_task(task.id)
        state = service.tick(user.id)

        assert state.outcome == SessionOutcome.COMPLETED
        assert service.get_balance(user.id) == Decimal("25.00")

    def test_run_drives_session_to_completion(self):
        """Test the one-tick-per-interval driver."""
        service = make_service()
        user = make_user(service)
        task = make_task(service, duration=3)
        service.start_session(user.id, task.id)
        sleeps = []

        state = service.sessions.run(user.id, sleep=sleeps.append)

        assert state.outcome == SessionOutcome.COMPLETED
        assert sleeps == [1.0, 1.0, 1.0]
        assert service.get_balance(user.id) == Decimal("50.00")


class TestCancellation:
    """Tests for abandoning a session."""

    def test_cancel_after_two_ticks_awards_nothing(self):
        """Scenario: cancelling part way leaves the balance untouched."""
        service = make_service()
        user = make_user(service)
        task = make_task(service, reward="50", duration=5)
        service.start_session(user.id, task.id)
        service.tick(user.id)
        service.tick(user.id)

        state = service.cancel(user.id)

        assert state.outcome == SessionOutcome.ABANDONED
        assert state.seconds_remaining == 3
        assert service.get_balance(user.id) == Decimal("0.00")
        assert service.list_completions(user.id) == []
        assert service.get_active_session(user.id) is None

    def test_cancelled_task_can_be_started_again(self):
        service = make_service()
        user = make_user(service)
        task = make_task(service, duration=1)
        service.start_session(user.id, task.id)
        service.cancel(user.id)

        session = service.start_session(user.id, task.id)

        assert session.seconds_remaining == 1

    def test_closed_surface_abandons_on_next_tick(self):
        """Test that closing the ad early cancels the session on the next tick."""
        surface = InMemoryViewingSurface()
        service = make_service(surface)
        user = make_user(service)
        task = make_task(service, duration=5)
        session = service.start_session(user.id, task.id)
        service.tick(user.id)

        surface.close(session.surface_handle)
        state = service.tick(user.id)

        assert state.outcome == SessionOutcome.ABANDONED
        assert service.get_balance(user.id) == Decimal("0.00")
        assert service.get_active_session(user.id) is None


class TestLateEvents:
    """Tests for duplicate or out-of-order events."""

    def test_cancel_after_completion_is_noop(self):
        service = make_service()
        user = make_user(service)
        task = make_task(service, duration=1)
        service.start_session(user.id, task.id)
        service.tick(user.id)

        state = service.cancel(user.id)

        assert state.outcome == SessionOutcome.IDLE
        assert service.get_balance(user.id) == Decimal("50.00")
        assert len(service.list_completions(user.id)) == 1

    def test_tick_after_completion_never_double_credits(self):
        service = make_service()
        user = make_user(service)
        task = make_task(service, duration=1)
        service.start_session(user.id, task.id)
        service.tick(user.id)

        for _ in range(3):
            assert service.tick(user.id).outcome == SessionOutcome.IDLE

        assert service.get_balance(user.id) == Decimal("50.00")
        assert len(service.list_completions(user.id)) == 1

    def test_tick_after_cancel_is_noop(self):
        service = make_service()
        user = make_user(service)
        task = make_task(service, duration=2)
        service.start_session(user.id, task.id)
        service.cancel(user.id)

        assert service.tick(user.id).outcome == SessionOutcome.IDLE
        assert service.cancel(user.id).outcome == SessionOutcome.IDLE
        assert service.get_balance(user.id) == Decimal("0.00")
