import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .errors import InsufficientBalanceError, InvalidAmountError
from .models import (
    BalanceResponse,
    CompletionRecord,
    EntryType,
    LedgerEntry,
    LedgerHistoryResponse,
    User,
    to_money,
    utcnow,
)
from .store import LedgerStore


logger = logging.getLogger(__name__)


class RewardLedger:
    """Applies every balance-affecting operation and records it as an immutable entry.

    A user's balance always equals the sum of that user's entry amounts:
    credits and refunds are positive, withdrawal debits are negative.
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    def credit_completion(self, user_id: UUID, task_id: UUID, reward: Optional[Decimal] = None) -> Decimal:
        """Pay a task's reward once per (user, task).

        ``reward`` is the amount snapshotted when the session started; without it
        the task's current reward is used. Replays return the balance unchanged.
        """
        with self.store.transaction(user_id):
            user = self.store.get_user(user_id)
            if user.has_completed(task_id):
                logger.debug("Task %s already credited to user %s, ignoring replay", task_id, user_id)
                return user.balance

            if reward is None:
                reward = self.store.get_task(task_id).reward
            amount = to_money(reward)
            now = utcnow()

            user.completed_tasks.append(CompletionRecord(
                task_id=task_id, user_id=user_id, reward=amount, completed_at=now,
            ))
            self._apply(user, EntryType.CREDIT, amount, f"Reward for task {task_id}", task_id=task_id)
            logger.info("Credited %s to user %s for task %s", amount, user_id, task_id)
            return user.balance

    def debit_for_withdrawal(self, user_id: UUID, amount: Decimal, withdrawal_id: Optional[UUID] = None) -> Decimal:
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmountError("Withdrawal amount must be positive")

        with self.store.transaction(user_id):
            user = self.store.get_user(user_id)
            if amount > user.balance:
                raise InsufficientBalanceError(
                    f"Insufficient balance: requested {amount}, available {user.balance}"
                )
            self._apply(
                user, EntryType.DEBIT, -amount, "Withdrawal request", withdrawal_id=withdrawal_id,
            )
            return user.balance

    def refund(self, user_id: UUID, amount: Decimal, withdrawal_id: Optional[UUID] = None) -> Decimal:
        # Duplicate refunds are the caller's responsibility; see WithdrawalWorkflow.decide.
        amount = to_money(amount)
        with self.store.transaction(user_id):
            user = self.store.get_user(user_id)
            self._apply(user, EntryType.REFUND, amount, "Refund for rejected withdrawal", withdrawal_id=withdrawal_id)
            logger.info("Refunded %s to user %s", amount, user_id)
            return user.balance

    def get_balance(self, user_id: UUID) -> BalanceResponse:
        user = self.store.get_user(user_id)
        entries = self._entries_for(user_id)
        last_entry = entries[-1] if entries else None
        return BalanceResponse(
            user_id=user_id,
            balance=user.balance,
            total_entries=len(entries),
            last_transaction_at=last_entry.created_at if last_entry else None,
        )

    def get_ledger_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        user = self.store.get_user(user_id)
        all_entries = self._entries_for(user_id)
        all_entries.reverse()
        return LedgerHistoryResponse(
            user_id=user_id,
            entries=all_entries[offset:offset + limit],
            total_count=len(all_entries),
            current_balance=user.balance,
        )

    def reconcile(self, user_id: UUID) -> bool:
        user = self.store.get_user(user_id)
        total = sum((e.amount for e in self._entries_for(user_id)), Decimal("0.00"))
        return total == user.balance and user.balance >= 0

    def _entries_for(self, user_id: UUID) -> list[LedgerEntry]:
        # Insertion order is chronological.
        return [e for e in self.store.ledger_entries.values() if e.user_id == user_id]

    def _apply(self, user: User, entry_type: EntryType, amount: Decimal, description: str,
               task_id: Optional[UUID] = None, withdrawal_id: Optional[UUID] = None) -> LedgerEntry:
        user.balance = to_money(user.balance + amount)
        entry = LedgerEntry(
            id=uuid4(),
            user_id=user.id,
            entry_type=entry_type,
            amount=amount,
            balance_after=user.balance,
            task_id=task_id,
            withdrawal_id=withdrawal_id,
            description=description,
            created_at=utcnow(),
        )
        self.store.ledger_entries[entry.id] = entry
        return entry
