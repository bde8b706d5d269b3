import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Union
from uuid import UUID

from pydantic import ValidationError

from .errors import (
    PersistenceError,
    UnknownTaskError,
    UnknownUserError,
    UnknownWithdrawalError,
)
from .models import LedgerEntry, LedgerSnapshot, Settings, Task, User, Withdrawal


logger = logging.getLogger(__name__)

CATALOG = "catalog"


class InMemoryPersistence:
    """Keeps the last saved snapshot as JSON text, so saved state never aliases live objects."""

    def __init__(self, initial: Optional[LedgerSnapshot] = None):
        self.saved: Optional[str] = initial.model_dump_json() if initial else None
        self.save_count = 0

    def load(self) -> Optional[LedgerSnapshot]:
        if self.saved is None:
            return None
        return LedgerSnapshot.model_validate_json(self.saved)

    def save(self, snapshot: LedgerSnapshot) -> None:
        self.saved = snapshot.model_dump_json()
        self.save_count += 1


class JsonFilePersistence:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[LedgerSnapshot]:
        if not self.path.exists():
            return None
        try:
            return LedgerSnapshot.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise PersistenceError(f"Cannot read ledger snapshot from {self.path}: {e}") from e

    def save(self, snapshot: LedgerSnapshot) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"Cannot write ledger snapshot to {self.path}: {e}") from e


class _Checkpoint:
    def __init__(self, store: "LedgerStore", key):
        self.key = key
        if key == CATALOG:
            self.user_ids = set(store.users)
            self.tasks = {k: v.model_copy(deep=True) for k, v in store.tasks.items()}
            self.settings = store.settings.model_copy(deep=True)
        else:
            user = store.users.get(key)
            self.user = user.model_copy(deep=True) if user else None
            self.withdrawals = {
                k: w.model_copy(deep=True) for k, w in store.withdrawals.items() if w.user_id == key
            }
            self.entry_ids = {k for k, e in store.ledger_entries.items() if e.user_id == key}

    def restore(self, store: "LedgerStore") -> None:
        if self.key == CATALOG:
            for user_id in set(store.users) - self.user_ids:
                del store.users[user_id]
            store.tasks.clear()
            store.tasks.update(self.tasks)
            store.settings = self.settings
            return

        if self.user is None:
            store.users.pop(self.key, None)
        else:
            store.users[self.key] = self.user
        for withdrawal_id in [k for k, w in store.withdrawals.items() if w.user_id == self.key]:
            if withdrawal_id not in self.withdrawals:
                del store.withdrawals[withdrawal_id]
        store.withdrawals.update(self.withdrawals)
        for entry_id in [k for k, e in store.ledger_entries.items() if e.user_id == self.key]:
            if entry_id not in self.entry_ids:
                del store.ledger_entries[entry_id]


class LedgerStore:
    """Owns every entity of the ledger and commits them through a persistence collaborator.

    Commands for one user run under that user's lock; catalog commands (tasks,
    settings, account creation) share a single catalog lock. A command's changes
    are only kept once the snapshot has been saved, and a save only ever writes
    the committing command's own records on top of what was already committed.
    """

    def __init__(self, persistence=None):
        self.persistence = persistence or InMemoryPersistence()
        self.users: dict[UUID, User] = {}
        self.tasks: dict[UUID, Task] = {}
        self.withdrawals: dict[UUID, Withdrawal] = {}
        self.ledger_entries: dict[UUID, LedgerEntry] = {}
        self.settings = Settings()
        self._committed = LedgerSnapshot()
        self._locks: dict[object, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._commit_lock = threading.RLock()
        self._local = threading.local()
        self.load()

    def load(self) -> None:
        try:
            snapshot = self.persistence.load()
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Ledger snapshot could not be loaded: {e}") from e
        if snapshot is None:
            logger.info("No stored ledger snapshot, starting empty")
            return
        self._committed = snapshot.model_copy(deep=True)
        self.users = {u.id: u for u in snapshot.users}
        self.tasks = {t.id: t for t in snapshot.tasks}
        self.withdrawals = {w.id: w for w in snapshot.withdrawals}
        self.ledger_entries = {e.id: e for e in snapshot.ledger_entries}
        self.settings = snapshot.settings
        logger.info(
            "Loaded ledger snapshot: %d users, %d tasks, %d withdrawals",
            len(self.users), len(self.tasks), len(self.withdrawals),
        )

    @property
    def is_empty(self) -> bool:
        return not self.users

    def snapshot(self) -> LedgerSnapshot:
        """The last successfully saved state."""
        with self._commit_lock:
            return self._committed.model_copy(deep=True)

    def commit(self, key=CATALOG) -> None:
        with self._commit_lock:
            snapshot = self._merge(key)
            try:
                self.persistence.save(snapshot)
            except PersistenceError:
                logger.error("Saving ledger snapshot failed", exc_info=True)
                raise
            except Exception as e:
                logger.error("Saving ledger snapshot failed", exc_info=True)
                raise PersistenceError(f"Ledger snapshot could not be saved: {e}") from e
            self._committed = snapshot

    def _merge(self, key) -> LedgerSnapshot:
        # Committed state with only the records owned by ``key`` taken from live state.
        committed = self._committed
        users = {u.id: u for u in committed.users}
        tasks = list(committed.tasks)
        settings = committed.settings
        withdrawals = list(committed.withdrawals)
        entries = list(committed.ledger_entries)

        if key == CATALOG:
            tasks = [t.model_copy(deep=True) for t in list(self.tasks.values())]
            settings = self.settings.model_copy(deep=True)
            for user_id, user in list(self.users.items()):
                if user_id not in users:
                    users[user_id] = user.model_copy(deep=True)
        else:
            user = self.users.get(key)
            if user is None:
                users.pop(key, None)
            else:
                users[key] = user.model_copy(deep=True)
            withdrawals = [w for w in withdrawals if w.user_id != key] + [
                w.model_copy(deep=True) for w in list(self.withdrawals.values()) if w.user_id == key
            ]
            entries = [e for e in entries if e.user_id != key] + [
                e.model_copy(deep=True) for e in list(self.ledger_entries.values()) if e.user_id == key
            ]

        return LedgerSnapshot(
            users=list(users.values()),
            tasks=tasks,
            withdrawals=withdrawals,
            ledger_entries=entries,
            settings=settings,
        )

    def lock_for(self, key) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def transaction(self, user_id: Optional[UUID] = None):
        """Serialize a read-modify-write for one user (or the catalog) and commit it.

        Nested transactions join the outermost one: they take their own lock but
        neither checkpoint nor commit.
        """
        key = user_id if user_id is not None else CATALOG
        depth = getattr(self._local, "depth", 0)
        with self.lock_for(key):
            if depth:
                self._local.depth = depth + 1
                try:
                    yield self
                finally:
                    self._local.depth = depth
                return

            checkpoint = _Checkpoint(self, key)
            self._local.depth = 1
            try:
                yield self
                self.commit(key)
            except Exception:
                checkpoint.restore(self)
                raise
            finally:
                self._local.depth = 0

    def get_user(self, user_id: UUID) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise UnknownUserError(f"User {user_id} not found")
        return user

    def find_user_by_username(self, username: str) -> Optional[User]:
        for user in self.users.values():
            if user.username == username:
                return user
        return None

    def get_task(self, task_id: UUID) -> Task:
        task = self.tasks.get(task_id)
        if task is None:
            raise UnknownTaskError(f"Task {task_id} not found")
        return task

    def get_withdrawal(self, withdrawal_id: UUID) -> Withdrawal:
        withdrawal = self.withdrawals.get(withdrawal_id)
        if withdrawal is None:
            raise UnknownWithdrawalError(f"Withdrawal {withdrawal_id} not found")
        return withdrawal
