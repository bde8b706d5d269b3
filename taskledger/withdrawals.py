import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .errors import (
    AboveMaximumError,
    BelowMinimumError,
    InsufficientBalanceError,
    InvalidAmountError,
    MissingDestinationError,
    NotPendingError,
    UnknownUserError,
)
from .models import (
    Decision,
    SubmitWithdrawalRequest,
    Withdrawal,
    WithdrawalResponse,
    WithdrawalStatus,
    to_money,
    utcnow,
)
from .rewards import RewardLedger
from .store import LedgerStore


logger = logging.getLogger(__name__)


class WithdrawalWorkflow:
    """Withdrawals debit the balance when requested; a rejection refunds it."""

    def __init__(self, store: LedgerStore, ledger: RewardLedger):
        self.store = store
        self.ledger = ledger

    def submit(self, user_id: UUID, request: SubmitWithdrawalRequest) -> WithdrawalResponse:
        destinations = {k: v.strip() for k, v in request.destinations.items() if v and v.strip()}
        account = (request.destination_account or "").strip()

        with self.store.transaction(user_id):
            user = self.store.get_user(user_id)
            settings = self.store.settings

            if request.amount <= 0:
                raise InvalidAmountError("Please enter a valid amount")
            if request.amount > settings.max_withdrawal:
                raise AboveMaximumError(f"Amount must not exceed {settings.max_withdrawal}")
            amount = to_money(request.amount)
            if amount < settings.min_withdrawal:
                raise BelowMinimumError(f"Amount must be at least {settings.min_withdrawal}")
            if not account and not destinations:
                raise MissingDestinationError("Please provide at least one payment number")
            if amount > user.balance:
                raise InsufficientBalanceError("Insufficient balance")

            withdrawal_id = uuid4()
            balance = self.ledger.debit_for_withdrawal(user_id, amount, withdrawal_id)
            withdrawal = Withdrawal(
                id=withdrawal_id,
                user_id=user_id,
                amount=amount,
                method=request.method,
                destination_account=account or None,
                destinations=destinations,
                submitted_at=utcnow(),
            )
            self.store.withdrawals[withdrawal.id] = withdrawal

        logger.info("User %s requested withdrawal %s of %s", user_id, withdrawal.id, amount)
        return WithdrawalResponse(
            withdrawal=withdrawal,
            balance=balance,
            message="Withdrawal request submitted successfully",
        )

    def decide(self, withdrawal_id: UUID, decision: Decision) -> WithdrawalResponse:
        owner_id = self.store.get_withdrawal(withdrawal_id).user_id

        with self.store.transaction(owner_id):
            withdrawal = self.store.get_withdrawal(withdrawal_id)
            if not withdrawal.is_pending():
                raise NotPendingError(f"Withdrawal {withdrawal_id} is already {withdrawal.status.value}")

            balance: Optional[Decimal] = None
            if decision == Decision.APPROVE:
                withdrawal.status = WithdrawalStatus.COMPLETED
            else:
                withdrawal.status = WithdrawalStatus.REJECTED
                try:
                    balance = self.ledger.refund(owner_id, withdrawal.amount, withdrawal.id)
                except UnknownUserError:
                    logger.warning(
                        "Withdrawal %s rejected but its user %s no longer exists, nothing refunded",
                        withdrawal.id, owner_id,
                    )
            withdrawal.decided_at = utcnow()

        logger.info("Withdrawal %s marked %s", withdrawal_id, withdrawal.status.value)
        return WithdrawalResponse(
            withdrawal=withdrawal,
            balance=balance,
            message=f"Withdrawal marked as {withdrawal.status.value}",
        )

    def list_withdrawals(self, user_id: Optional[UUID] = None,
                         status: Optional[WithdrawalStatus] = None) -> list[Withdrawal]:
        withdrawals = [
            w for w in self.store.withdrawals.values()
            if (user_id is None or w.user_id == user_id) and (status is None or w.status == status)
        ]
        withdrawals.sort(key=lambda w: w.submitted_at, reverse=True)
        return withdrawals
