import logging
import time
from typing import Callable, Optional, Protocol
from uuid import UUID, uuid4

from .errors import AlreadyActiveError, AlreadyCompletedError, PersistenceError
from .models import SessionOutcome, SessionState, TaskSession, User, utcnow
from .rewards import RewardLedger
from .store import LedgerStore


logger = logging.getLogger(__name__)


class ViewingSurface(Protocol):
    def open(self, url: str) -> str: ...

    def is_open(self, handle: str) -> bool: ...

    def close(self, handle: str) -> None: ...


class InMemoryViewingSurface:
    """Tracks opened ad views by handle; whoever shows the ad reports a close through ``close``."""

    def __init__(self):
        self.opened: dict[str, str] = {}
        self.closed: set[str] = set()

    def open(self, url: str) -> str:
        handle = uuid4().hex
        self.opened[handle] = url
        return handle

    def is_open(self, handle: str) -> bool:
        return handle in self.opened and handle not in self.closed

    def close(self, handle: str) -> None:
        self.closed.add(handle)


class TaskSessionController:
    """Idle -> Active -> Completed | Cancelled, one attempt per user at a time.

    Both the countdown and the "viewing surface closed" observer resolve the
    same session. Each checks that the session still exists before acting, so
    whichever runs second is a no-op.
    """

    def __init__(self, store: LedgerStore, ledger: RewardLedger, surface: Optional[ViewingSurface] = None):
        self.store = store
        self.ledger = ledger
        self.surface = surface or InMemoryViewingSurface()

    def start_session(self, user_id: UUID, task_id: UUID) -> TaskSession:
        handle = None
        try:
            with self.store.transaction(user_id):
                user = self.store.get_user(user_id)
                if user.active_session is not None:
                    raise AlreadyActiveError("Please complete your current task before starting a new one")
                if user.has_completed(task_id):
                    raise AlreadyCompletedError(f"Task {task_id} has already been completed")
                task = self.store.get_task(task_id)

                handle = self.surface.open(task.url)
                session = TaskSession(
                    task_id=task.id,
                    started_at=utcnow(),
                    seconds_remaining=task.duration_seconds,
                    reward=task.reward,
                    surface_handle=handle,
                )
                user.active_session = session
        except PersistenceError:
            if handle is not None:
                self.surface.close(handle)
            raise

        logger.info("User %s started task %s (%ss)", user_id, task_id, session.seconds_remaining)
        return session

    def tick(self, user_id: UUID) -> SessionState:
        """Advance the countdown by one second; crediting happens only here.

        The viewing surface is closed only once the resolving command has been
        saved, so a failed save leaves the session and its surface as they were.
        """
        with self.store.transaction(user_id):
            user = self.store.get_user(user_id)
            session = user.active_session
            if session is None:
                logger.debug("Tick for user %s without an active session ignored", user_id)
                return self._idle(user)

            if session.surface_handle and not self.surface.is_open(session.surface_handle):
                state = self._abandon(user, session)
            else:
                session.seconds_remaining -= 1
                if session.seconds_remaining > 0:
                    return SessionState(
                        outcome=SessionOutcome.ACTIVE,
                        task_id=session.task_id,
                        seconds_remaining=session.seconds_remaining,
                        balance=user.balance,
                        message=f"Time remaining: {session.seconds_remaining}s",
                    )

                user.active_session = None
                balance = self.ledger.credit_completion(user_id, session.task_id, session.reward)
                state = SessionState(
                    outcome=SessionOutcome.COMPLETED,
                    task_id=session.task_id,
                    balance=balance,
                    message=f"Task completed successfully. You earned {session.reward}",
                )

        self._close_surface(session)
        if state.outcome == SessionOutcome.COMPLETED:
            logger.info("User %s completed task %s", user_id, session.task_id)
        else:
            logger.info("User %s abandoned task %s", user_id, session.task_id)
        return state

    def cancel(self, user_id: UUID) -> SessionState:
        with self.store.transaction(user_id):
            user = self.store.get_user(user_id)
            session = user.active_session
            if session is None:
                logger.debug("Cancel for user %s without an active session ignored", user_id)
                return self._idle(user)
            state = self._abandon(user, session)

        self._close_surface(session)
        logger.info("User %s abandoned task %s", user_id, session.task_id)
        return state

    def get_active_session(self, user_id: UUID) -> Optional[TaskSession]:
        return self.store.get_user(user_id).active_session

    def run(self, user_id: UUID, sleep: Callable[[float], None] = time.sleep, interval: float = 1.0) -> SessionState:
        """Drive the active session with one tick per interval until it resolves."""
        while True:
            sleep(interval)
            state = self.tick(user_id)
            if state.outcome != SessionOutcome.ACTIVE:
                return state

    def _close_surface(self, session: TaskSession) -> None:
        if session.surface_handle:
            self.surface.close(session.surface_handle)

    def _abandon(self, user: User, session: TaskSession) -> SessionState:
        user.active_session = None
        return SessionState(
            outcome=SessionOutcome.ABANDONED,
            task_id=session.task_id,
            seconds_remaining=session.seconds_remaining,
            balance=user.balance,
            message="Task cancelled! Keep the ad open for the entire duration to earn the reward.",
        )

    def _idle(self, user: User) -> SessionState:
        return SessionState(outcome=SessionOutcome.IDLE, balance=user.balance, message="No active task")
