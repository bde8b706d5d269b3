from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, field_validator

from .errors import InvalidAmountError


CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise InvalidAmountError(f"Amount {value} is out of range") from e


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class UserStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class EntryType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    REFUND = "REFUND"


class SessionOutcome(str, Enum):
    IDLE = "IDLE"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


class Task(BaseModel):
    id: UUID
    url: str
    reward: Decimal
    duration_seconds: int
    title: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class CompletionRecord(BaseModel):
    task_id: UUID
    user_id: UUID
    reward: Decimal
    completed_at: datetime


class TaskSession(BaseModel):
    task_id: UUID
    started_at: datetime
    seconds_remaining: int
    reward: Decimal
    surface_handle: Optional[str] = None


class User(BaseModel):
    id: UUID
    username: str
    name: Optional[str] = None
    password_secret: str = Field(..., repr=False)
    role: Role = Role.USER
    balance: Decimal = Decimal("0.00")
    status: UserStatus = UserStatus.PENDING
    completed_tasks: list[CompletionRecord] = Field(default_factory=list)
    active_session: Optional[TaskSession] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    def has_completed(self, task_id: UUID) -> bool:
        return any(record.task_id == task_id for record in self.completed_tasks)


class Withdrawal(BaseModel):
    id: UUID
    user_id: UUID
    amount: Decimal
    method: Optional[str] = None
    destination_account: Optional[str] = None
    destinations: dict[str, str] = Field(default_factory=dict)
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    submitted_at: datetime
    decided_at: Optional[datetime] = None

    def is_pending(self) -> bool:
        return self.status == WithdrawalStatus.PENDING


class LedgerEntry(BaseModel):
    id: UUID
    user_id: UUID
    entry_type: EntryType
    amount: Decimal
    balance_after: Decimal
    task_id: Optional[UUID] = None
    withdrawal_id: Optional[UUID] = None
    description: str
    created_at: datetime


class Settings(BaseModel):
    app_name: str = "Monitack"
    logo_url: str = "logo.png"
    min_withdrawal: Decimal = Decimal("50.00")
    max_withdrawal: Decimal = Decimal("10000.00")


class LedgerSnapshot(BaseModel):
    """Everything the persistence collaborator stores, written as one document."""

    users: list[User] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
    withdrawals: list[Withdrawal] = Field(default_factory=list)
    ledger_entries: list[LedgerEntry] = Field(default_factory=list)
    settings: Settings = Field(default_factory=Settings)


# Requests

class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    name: Optional[str] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class StartSessionRequest(BaseModel):
    task_id: UUID


class SubmitWithdrawalRequest(BaseModel):
    amount: Decimal
    method: Optional[str] = None
    destination_account: Optional[str] = None
    destinations: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": 100.00,
            "method": "bkash",
            "destination_account": "01700000000"
        }
    })


class DecideWithdrawalRequest(BaseModel):
    decision: Decision


class TaskRequest(BaseModel):
    url: str = Field(..., min_length=1)
    reward: Decimal = Field(..., gt=0, max_digits=12)
    duration_seconds: int = Field(..., gt=0)
    title: Optional[str] = None
    description: Optional[str] = None

    @field_validator("reward")
    @classmethod
    def _quantize_reward(cls, value: Decimal) -> Decimal:
        return to_money(value)


class SettingsRequest(BaseModel):
    app_name: Optional[str] = None
    logo_url: Optional[str] = None
    min_withdrawal: Optional[Decimal] = None
    max_withdrawal: Optional[Decimal] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=1)


# Responses

class UserProfile(BaseModel):
    id: UUID
    username: str
    name: Optional[str] = None
    role: Role
    status: UserStatus
    balance: Decimal

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(
            id=user.id, username=user.username, name=user.name,
            role=user.role, status=user.status, balance=user.balance,
        )


class SessionState(BaseModel):
    outcome: SessionOutcome
    task_id: Optional[UUID] = None
    seconds_remaining: int = 0
    balance: Decimal
    message: str


class BalanceResponse(BaseModel):
    user_id: UUID
    balance: Decimal
    total_entries: int
    last_transaction_at: Optional[datetime] = None


class LedgerHistoryResponse(BaseModel):
    user_id: UUID
    entries: list[LedgerEntry]
    total_count: int
    current_balance: Decimal


class WithdrawalResponse(BaseModel):
    withdrawal: Withdrawal
    balance: Optional[Decimal] = None
    message: str


class DashboardStats(BaseModel):
    total_users: int
    pending_approvals: int
    total_tasks: int
    pending_withdrawals: int
