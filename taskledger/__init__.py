"""
Task Ledger: ad-viewing rewards with timed sessions

This module provides:
- Timed task sessions: idle → active → completed / cancelled
- Idempotent reward crediting, one payout per user and task
- Withdrawals debited on request and refunded on rejection
- Admin moderation of users, tasks and withdrawal limits
- An audit trail of immutable ledger entries
"""

from .errors import LedgerServiceError
from .models import (
    CompletionRecord,
    Decision,
    EntryType,
    LedgerEntry,
    Role,
    SessionOutcome,
    Task,
    TaskSession,
    User,
    Withdrawal,
    WithdrawalStatus,
)
from .service import TaskLedgerService

__all__ = [
    "CompletionRecord",
    "Decision",
    "EntryType",
    "LedgerEntry",
    "LedgerServiceError",
    "Role",
    "SessionOutcome",
    "Task",
    "TaskSession",
    "TaskLedgerService",
    "User",
    "Withdrawal",
    "WithdrawalStatus",
]
