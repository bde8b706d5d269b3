import logging
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID, uuid4

from passlib.context import CryptContext

from .errors import (
    AccountPendingError,
    InvalidCredentialsError,
    UsernameTakenError,
)
from .models import (
    CompletionRecord,
    Decision,
    DashboardStats,
    LedgerHistoryResponse,
    Role,
    SessionState,
    SettingsRequest,
    Settings,
    SubmitWithdrawalRequest,
    Task,
    TaskRequest,
    TaskSession,
    User,
    UserProfile,
    UserStatus,
    Withdrawal,
    WithdrawalResponse,
    WithdrawalStatus,
)
from .store import LedgerStore


logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_secret: str) -> bool:
    return pwd_context.verify(password, password_secret)


class AccountService:
    def __init__(self, store: LedgerStore):
        self.store = store

    def register(self, username: str, password: str, name: Optional[str] = None,
                 role: Role = Role.USER, status: UserStatus = UserStatus.PENDING) -> User:
        username = username.strip()
        if not username or not password:
            raise InvalidCredentialsError("Username and password are required")
        with self.store.transaction():
            if self.store.find_user_by_username(username) is not None:
                raise UsernameTakenError(f"Username {username!r} already exists")
            user = User(
                id=uuid4(),
                username=username,
                name=name or username,
                password_secret=hash_password(password),
                role=role,
                status=status,
            )
            self.store.users[user.id] = user
        logger.info("Registered %s account %r (%s)", role.value, username, status.value)
        return user

    def ensure_admin(self, username: str, password: str) -> Optional[User]:
        """Seed the bootstrap admin into an empty store; it needs no approval."""
        if not self.store.is_empty:
            return None
        return self.register(username, password, name="Admin", role=Role.ADMIN, status=UserStatus.APPROVED)

    def authenticate(self, username: str, password: str) -> User:
        user = self.store.find_user_by_username(username)
        if user is None or not verify_password(password, user.password_secret):
            raise InvalidCredentialsError("Invalid username or password")
        if user.status == UserStatus.PENDING:
            raise AccountPendingError("Your account is pending admin approval")
        return user

    def change_password(self, user_id: UUID, current_password: str, new_password: str) -> None:
        with self.store.transaction(user_id):
            user = self.store.get_user(user_id)
            if not verify_password(current_password, user.password_secret):
                raise InvalidCredentialsError("Current password is incorrect")
            user.password_secret = hash_password(new_password)
        logger.info("Password changed for user %s", user_id)


class Actor:
    """An authenticated participant; the role is fixed when the actor is built."""

    role: Role

    def __init__(self, service, user_id: UUID):
        self.service = service
        self.user_id = user_id

    def profile(self) -> UserProfile:
        return UserProfile.from_user(self.service.store.get_user(self.user_id))

    def change_password(self, current_password: str, new_password: str) -> None:
        self.service.accounts.change_password(self.user_id, current_password, new_password)


class UserActor(Actor):
    role = Role.USER

    def available_tasks(self) -> list[Task]:
        return self.service.list_available_tasks(self.user_id)

    def start_task(self, task_id: UUID) -> TaskSession:
        return self.service.start_session(self.user_id, task_id)

    def tick(self) -> SessionState:
        return self.service.tick(self.user_id)

    def cancel(self) -> SessionState:
        return self.service.cancel(self.user_id)

    def active_session(self) -> Optional[TaskSession]:
        return self.service.get_active_session(self.user_id)

    def request_withdrawal(self, request: SubmitWithdrawalRequest) -> WithdrawalResponse:
        return self.service.submit_withdrawal(self.user_id, request)

    def balance(self) -> Decimal:
        return self.service.get_balance(self.user_id)

    def completions(self) -> list[CompletionRecord]:
        return self.service.list_completions(self.user_id)

    def withdrawals(self) -> list[Withdrawal]:
        return self.service.list_withdrawals(user_id=self.user_id)

    def ledger_history(self, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        return self.service.get_ledger_history(self.user_id, limit, offset)


class AdminActor(Actor):
    role = Role.ADMIN

    def stats(self) -> DashboardStats:
        return self.service.admin.dashboard_stats()

    def list_users(self) -> list[UserProfile]:
        return [UserProfile.from_user(u) for u in self.service.store.users.values()]

    def add_user(self, username: str, password: str) -> User:
        return self.service.admin.add_user(username, password)

    def approve_user(self, user_id: UUID) -> User:
        return self.service.admin.approve_user(user_id)

    def block_user(self, user_id: UUID) -> User:
        return self.service.admin.block_user(user_id)

    def delete_user(self, user_id: UUID) -> None:
        self.service.admin.delete_user(user_id)

    def create_task(self, request: TaskRequest) -> Task:
        return self.service.admin.create_task(request)

    def edit_task(self, task_id: UUID, request: TaskRequest) -> Task:
        return self.service.admin.edit_task(task_id, request)

    def delete_task(self, task_id: UUID) -> None:
        self.service.admin.delete_task(task_id)

    def update_settings(self, request: SettingsRequest) -> Settings:
        return self.service.admin.update_settings(request)

    def decide_withdrawal(self, withdrawal_id: UUID, decision: Decision) -> WithdrawalResponse:
        return self.service.decide_withdrawal(withdrawal_id, decision)

    def withdrawals(self, status: Optional[WithdrawalStatus] = None) -> list[Withdrawal]:
        return self.service.list_withdrawals(status=status)


def build_actor(service, user: User) -> Union[UserActor, AdminActor]:
    if user.role == Role.ADMIN:
        return AdminActor(service, user.id)
    return UserActor(service, user.id)
