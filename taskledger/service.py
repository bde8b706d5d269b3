from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from . import config
from .accounts import AccountService, AdminActor, UserActor, build_actor
from .admin import AdminModeration
from .models import (
    CompletionRecord,
    Decision,
    LedgerHistoryResponse,
    SessionState,
    Settings,
    SubmitWithdrawalRequest,
    Task,
    TaskSession,
    User,
    Withdrawal,
    WithdrawalResponse,
    WithdrawalStatus,
)
from .rewards import RewardLedger
from .sessions import TaskSessionController, ViewingSurface
from .store import InMemoryPersistence, JsonFilePersistence, LedgerStore
from .withdrawals import WithdrawalWorkflow


class TaskLedgerService:
    """One store shared by every component; the command surface the presentation layer calls."""

    def __init__(self, store: Optional[LedgerStore] = None, surface: Optional[ViewingSurface] = None,
                 admin_username: str = config.ADMIN_USERNAME, admin_password: str = config.ADMIN_PASSWORD):
        self.store = store or LedgerStore()
        self.accounts = AccountService(self.store)
        self.ledger = RewardLedger(self.store)
        self.sessions = TaskSessionController(self.store, self.ledger, surface)
        self.withdrawals = WithdrawalWorkflow(self.store, self.ledger)
        self.admin = AdminModeration(self.store, self.accounts)

        if self.store.is_empty:
            self.store.settings = Settings(
                min_withdrawal=config.MIN_WITHDRAWAL,
                max_withdrawal=config.MAX_WITHDRAWAL,
            )
            self.accounts.ensure_admin(admin_username, admin_password)

    @classmethod
    def from_config(cls, surface: Optional[ViewingSurface] = None) -> "TaskLedgerService":
        if config.STORE_PATH:
            persistence = JsonFilePersistence(config.STORE_PATH)
        else:
            persistence = InMemoryPersistence()
        return cls(LedgerStore(persistence), surface)

    # Identity

    def register(self, username: str, password: str, name: Optional[str] = None) -> User:
        return self.accounts.register(username, password, name)

    def login(self, username: str, password: str) -> Union[UserActor, AdminActor]:
        return build_actor(self, self.accounts.authenticate(username, password))

    def actor_for(self, user_id: UUID) -> Union[UserActor, AdminActor]:
        return build_actor(self, self.store.get_user(user_id))

    # Commands

    def start_session(self, user_id: UUID, task_id: UUID) -> TaskSession:
        return self.sessions.start_session(user_id, task_id)

    def tick(self, user_id: UUID) -> SessionState:
        return self.sessions.tick(user_id)

    def cancel(self, user_id: UUID) -> SessionState:
        return self.sessions.cancel(user_id)

    def credit_completion(self, user_id: UUID, task_id: UUID) -> Decimal:
        return self.ledger.credit_completion(user_id, task_id)

    def submit_withdrawal(self, user_id: UUID, request: SubmitWithdrawalRequest) -> WithdrawalResponse:
        return self.withdrawals.submit(user_id, request)

    def decide_withdrawal(self, withdrawal_id: UUID, decision: Decision) -> WithdrawalResponse:
        return self.withdrawals.decide(withdrawal_id, decision)

    # Queries

    def get_balance(self, user_id: UUID) -> Decimal:
        return self.store.get_user(user_id).balance

    def get_active_session(self, user_id: UUID) -> Optional[TaskSession]:
        return self.sessions.get_active_session(user_id)

    def list_completions(self, user_id: UUID) -> list[CompletionRecord]:
        return list(self.store.get_user(user_id).completed_tasks)

    def list_withdrawals(self, user_id: Optional[UUID] = None,
                         status: Optional[WithdrawalStatus] = None) -> list[Withdrawal]:
        return self.withdrawals.list_withdrawals(user_id, status)

    def list_tasks(self) -> list[Task]:
        return sorted(self.store.tasks.values(), key=lambda t: t.created_at)

    def list_available_tasks(self, user_id: UUID) -> list[Task]:
        user = self.store.get_user(user_id)
        return [t for t in self.list_tasks() if not user.has_completed(t.id)]

    def get_ledger_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        return self.ledger.get_ledger_history(user_id, limit, offset)
