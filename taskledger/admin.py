import logging
from uuid import UUID, uuid4

from .accounts import AccountService
from .errors import InvalidSettingsError
from .models import (
    DashboardStats,
    Role,
    Settings,
    SettingsRequest,
    Task,
    TaskRequest,
    User,
    UserStatus,
    WithdrawalStatus,
    to_money,
)
from .store import LedgerStore


logger = logging.getLogger(__name__)


class AdminModeration:
    """Direct moderation of users, the task catalog and settings.

    Deleting a user or task never rewrites history: completion records,
    ledger entries and withdrawals that reference it stay as they are.
    """

    def __init__(self, store: LedgerStore, accounts: AccountService):
        self.store = store
        self.accounts = accounts

    def add_user(self, username: str, password: str) -> User:
        return self.accounts.register(username, password, status=UserStatus.APPROVED)

    def approve_user(self, user_id: UUID) -> User:
        return self._set_status(user_id, UserStatus.APPROVED)

    def block_user(self, user_id: UUID) -> User:
        return self._set_status(user_id, UserStatus.PENDING)

    def delete_user(self, user_id: UUID) -> None:
        with self.store.transaction(user_id):
            user = self.store.get_user(user_id)
            del self.store.users[user_id]
        logger.info("Deleted user %s (%r)", user_id, user.username)

    def create_task(self, request: TaskRequest) -> Task:
        task = Task(
            id=uuid4(),
            url=request.url,
            reward=request.reward,
            duration_seconds=request.duration_seconds,
            title=request.title,
            description=request.description,
        )
        with self.store.transaction():
            self.store.tasks[task.id] = task
        logger.info("Created task %s (%s for %ss)", task.id, task.reward, task.duration_seconds)
        return task

    def edit_task(self, task_id: UUID, request: TaskRequest) -> Task:
        with self.store.transaction():
            task = self.store.get_task(task_id)
            task.url = request.url
            task.reward = request.reward
            task.duration_seconds = request.duration_seconds
            if request.title is not None:
                task.title = request.title
            if request.description is not None:
                task.description = request.description
        logger.info("Edited task %s", task_id)
        return task

    def delete_task(self, task_id: UUID) -> None:
        with self.store.transaction():
            self.store.get_task(task_id)
            del self.store.tasks[task_id]
        logger.info("Deleted task %s", task_id)

    def update_settings(self, request: SettingsRequest) -> Settings:
        for value in (request.min_withdrawal, request.max_withdrawal):
            if value is not None and value < 0:
                raise InvalidSettingsError("Withdrawal limits cannot be negative")

        with self.store.transaction():
            settings = self.store.settings
            if request.app_name:
                settings.app_name = request.app_name
            if request.logo_url is not None:
                settings.logo_url = request.logo_url.strip() or Settings().logo_url
            if request.min_withdrawal is not None:
                settings.min_withdrawal = to_money(request.min_withdrawal)
            if request.max_withdrawal is not None:
                settings.max_withdrawal = to_money(request.max_withdrawal)
            if settings.min_withdrawal > settings.max_withdrawal:
                settings.min_withdrawal, settings.max_withdrawal = settings.max_withdrawal, settings.min_withdrawal
        logger.info("Settings updated: min=%s max=%s", settings.min_withdrawal, settings.max_withdrawal)
        return settings

    def dashboard_stats(self) -> DashboardStats:
        users = [u for u in self.store.users.values() if u.role == Role.USER]
        return DashboardStats(
            total_users=len(users),
            pending_approvals=sum(1 for u in users if u.status == UserStatus.PENDING),
            total_tasks=len(self.store.tasks),
            pending_withdrawals=sum(
                1 for w in self.store.withdrawals.values() if w.status == WithdrawalStatus.PENDING
            ),
        )

    def _set_status(self, user_id: UUID, status: UserStatus) -> User:
        with self.store.transaction(user_id):
            user = self.store.get_user(user_id)
            user.status = status
        logger.info("User %s is now %s", user_id, status.value)
        return user
