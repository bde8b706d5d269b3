"""
Unit Tests for the Withdrawal Workflow

Tests cover:
1. Submission validation order and limits
2. Debit on request
3. Approve / reject decisions and refunds
4. Concurrent submissions against one balance
"""

import threading

import pytest
from decimal import Decimal
from uuid import UUID

from taskledger.errors import (
    AboveMaximumError,
    BelowMinimumError,
    InsufficientBalanceError,
    InvalidAmountError,
    MissingDestinationError,
    NotPendingError,
    UnknownWithdrawalError,
)
from taskledger.models import (
    Decision,
    SettingsRequest,
    SubmitWithdrawalRequest,
    TaskRequest,
    WithdrawalStatus,
)
from taskledger.service import TaskLedgerService
from taskledger.store import InMemoryPersistence, LedgerStore


MISSING_ID = UUID("00000000-0000-0000-0000-000000000000")


def make_service() -> TaskLedgerService:
    service = TaskLedgerService(LedgerStore(InMemoryPersistence()))
    service.admin.update_settings(SettingsRequest(min_withdrawal=Decimal("50"), max_withdrawal=Decimal("10000")))
    return service


def funded_user(service: TaskLedgerService, balance: str = "100", username: str = "carol"):
    user = service.register(username, "secret")
    service.admin.approve_user(user.id)
    task = service.admin.create_task(TaskRequest(
        url="https://ads.example.com/watch", reward=Decimal(balance), duration_seconds=5,
    ))
    service.credit_completion(user.id, task.id)
    return user


def request(amount, account: str = "01700000000", **kwargs) -> SubmitWithdrawalRequest:
    return SubmitWithdrawalRequest(amount=Decimal(str(amount)), method="bkash", destination_account=account, **kwargs)


class TestSubmitWithdrawal:
    """Tests for submitting withdrawal requests."""

    def test_below_minimum_then_full_balance(self):
        """Scenario: 30 is below the minimum; the full balance of 100 goes through."""
        service = make_service()
        user = funded_user(service, "100")

        with pytest.raises(BelowMinimumError):
            service.submit_withdrawal(user.id, request(30))
        assert service.get_balance(user.id) == Decimal("100.00")

        response = service.submit_withdrawal(user.id, request(100))

        assert response.balance == Decimal("0.00")
        assert response.withdrawal.status == WithdrawalStatus.PENDING
        assert response.withdrawal.amount == Decimal("100.00")
        assert service.get_balance(user.id) == Decimal("0.00")

    def test_above_maximum_fails(self):
        service = make_service()
        service.admin.update_settings(SettingsRequest(max_withdrawal=Decimal("80")))
        user = funded_user(service, "100")

        with pytest.raises(AboveMaximumError):
            service.submit_withdrawal(user.id, request(90))

    def test_huge_amount_is_above_maximum(self):
        service = make_service()
        user = funded_user(service, "100")

        with pytest.raises(AboveMaximumError):
            service.submit_withdrawal(user.id, request("1e30"))
        assert service.get_balance(user.id) == Decimal("100.00")
        assert service.list_withdrawals() == []

    def test_non_positive_amount_fails(self):
        service = make_service()
        user = funded_user(service, "100")

        with pytest.raises(InvalidAmountError):
            service.submit_withdrawal(user.id, request(0))
        with pytest.raises(InvalidAmountError):
            service.submit_withdrawal(user.id, request(-10))

    def test_missing_destination_fails(self):
        service = make_service()
        user = funded_user(service, "100")

        with pytest.raises(MissingDestinationError):
            service.submit_withdrawal(user.id, request(60, account="   "))
        assert service.list_withdrawals(user_id=user.id) == []

    def test_any_destination_channel_is_enough(self):
        service = make_service()
        user = funded_user(service, "100")

        response = service.submit_withdrawal(
            user.id, request(60, account=None, destinations={"bkash": "", "nagad": "01800000000"}),
        )

        assert response.withdrawal.destinations == {"nagad": "01800000000"}

    def test_insufficient_balance_fails_without_debit(self):
        service = make_service()
        user = funded_user(service, "100")

        with pytest.raises(InsufficientBalanceError):
            service.submit_withdrawal(user.id, request(150))
        assert service.get_balance(user.id) == Decimal("100.00")
        assert service.ledger.get_balance(user.id).total_entries == 1

    def test_limits_checked_before_balance(self):
        """Test that validation follows amount, minimum, maximum, destination, balance."""
        service = make_service()
        user = funded_user(service, "10")

        with pytest.raises(BelowMinimumError):
            service.submit_withdrawal(user.id, request(20, account=""))

    def test_second_submission_sees_reduced_balance(self):
        service = make_service()
        user = funded_user(service, "100")
        service.submit_withdrawal(user.id, request(60))

        with pytest.raises(InsufficientBalanceError):
            service.submit_withdrawal(user.id, request(60))

    def test_concurrent_submissions_never_overdraw(self):
        """Test that parallel requests for one user are serialized on the balance."""
        service = make_service()
        user = funded_user(service, "100")
        barrier = threading.Barrier(8)
        outcomes = []

        def submit():
            barrier.wait()
            try:
                service.submit_withdrawal(user.id, request(60))
                outcomes.append("ok")
            except InsufficientBalanceError:
                outcomes.append("insufficient")

        threads = [threading.Thread(target=submit) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("insufficient") == 7
        assert service.get_balance(user.id) == Decimal("40.00")
        assert service.ledger.reconcile(user.id)


class TestDecideWithdrawal:
    """Tests for admin decisions on withdrawals."""

    def test_reject_refunds_once_then_not_pending(self):
        """Scenario: rejecting refunds the amount; a second decision fails."""
        service = make_service()
        user = funded_user(service, "100")
        withdrawal = service.submit_withdrawal(user.id, request(100)).withdrawal
        assert service.get_balance(user.id) == Decimal("0.00")

        response = service.decide_withdrawal(withdrawal.id, Decision.REJECT)

        assert response.withdrawal.status == WithdrawalStatus.REJECTED
        assert response.withdrawal.decided_at is not None
        assert service.get_balance(user.id) == Decimal("100.00")

        with pytest.raises(NotPendingError):
            service.decide_withdrawal(withdrawal.id, Decision.REJECT)
        with pytest.raises(NotPendingError):
            service.decide_withdrawal(withdrawal.id, Decision.APPROVE)
        assert service.get_balance(user.id) == Decimal("100.00")
        assert service.ledger.reconcile(user.id)

    def test_approve_leaves_balance_unchanged(self):
        service = make_service()
        user = funded_user(service, "100")
        withdrawal = service.submit_withdrawal(user.id, request(70)).withdrawal

        response = service.decide_withdrawal(withdrawal.id, Decision.APPROVE)

        assert response.withdrawal.status == WithdrawalStatus.COMPLETED
        assert service.get_balance(user.id) == Decimal("30.00")
        with pytest.raises(NotPendingError):
            service.decide_withdrawal(withdrawal.id, Decision.REJECT)
        assert service.get_balance(user.id) == Decimal("30.00")

    def test_reject_for_deleted_user_marks_rejected(self):
        service = make_service()
        user = funded_user(service, "100")
        withdrawal = service.submit_withdrawal(user.id, request(60)).withdrawal
        service.admin.delete_user(user.id)

        response = service.decide_withdrawal(withdrawal.id, Decision.REJECT)

        assert response.withdrawal.status == WithdrawalStatus.REJECTED
        assert response.balance is None

    def test_unknown_withdrawal_fails(self):
        service = make_service()

        with pytest.raises(UnknownWithdrawalError):
            service.decide_withdrawal(MISSING_ID, Decision.APPROVE)

    def test_list_withdrawals_filters(self):
        service = make_service()
        alice = funded_user(service, "200", username="alice")
        bob = funded_user(service, "200", username="bob")
        first = service.submit_withdrawal(alice.id, request(60)).withdrawal
        service.submit_withdrawal(alice.id, request(70))
        service.submit_withdrawal(bob.id, request(80))
        service.decide_withdrawal(first.id, Decision.APPROVE)

        assert len(service.list_withdrawals()) == 3
        assert len(service.list_withdrawals(user_id=alice.id)) == 2
        pending = service.list_withdrawals(status=WithdrawalStatus.PENDING)
        assert sorted(w.amount for w in pending) == [Decimal("70.00"), Decimal("80.00")]
