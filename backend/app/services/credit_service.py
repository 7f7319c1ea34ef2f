"""
Credit Service

Application service over the credit ledger. Every mutation is a
read-modify-write of one CreditBalance, committed with a versioned write
and retried on conflict, so two workers never spend the same credits.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple, TypeVar

from app.config.settings import get_settings
from app.domain import credit_ledger
from app.domain.entitlements import CreditBalance, Payment, utcnow
from app.domain.interfaces import EntitlementStore
from app.domain.schemas import (
    CreditBalanceSummary,
    CreditDeductionResult,
    CreditEligibility,
    CreditRefundResult,
    TransactionHistory,
)
from app.infrastructure.exceptions import (
    CreditBalanceNotFoundError,
    PlanNotFoundError,
)
from app.services.concurrency import retry_on_conflict


logger = logging.getLogger(__name__)

R = TypeVar("R")


class CreditService:
    """
    Credit balances for (client, brand) pairs.

    Args:
        store: EntitlementStore implementation
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(self, store: EntitlementStore, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._clock = clock

    # =========================================================================
    # Read-modify-write
    # =========================================================================

    async def _load(self, client_id: str, brand_id: str) -> CreditBalance:
        balance = await self._store.get_credit_balance(client_id, brand_id)
        if balance is None:
            raise CreditBalanceNotFoundError(
                "No credit balance found for this brand",
                {"client_id": client_id, "brand_id": brand_id},
            )
        return balance

    async def _mutate(
        self,
        client_id: str,
        brand_id: str,
        apply: Callable[[CreditBalance, datetime], R],
        operation_name: str,
        create: bool = False,
    ) -> Tuple[R, CreditBalance]:
        """
        Apply a ledger operation and persist it with a versioned write.

        Domain errors raised by apply propagate unchanged; only lost write
        races are retried.
        """

        async def attempt() -> Tuple[R, CreditBalance]:
            if create:
                balance = await self._store.get_or_create_credit_balance(client_id, brand_id)
            else:
                balance = await self._load(client_id, brand_id)
            expected_version = balance.version
            result = apply(balance, self._clock())
            stored = await self._store.update_credit_balance(balance, expected_version)
            return result, stored

        return await retry_on_conflict(attempt, operation_name)

    async def _refreshed(self, client_id: str, brand_id: str) -> CreditBalance:
        """Load a balance, persisting expiry cleanup if any package lapsed."""

        async def attempt() -> CreditBalance:
            balance = await self._load(client_id, brand_id)
            expected_version = balance.version
            if not credit_ledger.cleanup_expired(balance, self._clock()):
                return balance
            return await self._store.update_credit_balance(balance, expected_version)

        return await retry_on_conflict(attempt, "credit cleanup")

    # =========================================================================
    # Mutations
    # =========================================================================

    async def add_package_for_payment(self, payment: Payment) -> CreditBalance:
        """
        Credit the package bought by a succeeded payment.

        Idempotent per payment intent: a balance already holding a package
        for the intent is left unchanged.
        """
        plan = await self._store.get_credit_plan(payment.plan_id) if payment.plan_id else None
        if plan is None:
            raise PlanNotFoundError(
                "Credit plan not found",
                {"plan_id": payment.plan_id, "payment_id": payment.id},
            )

        def apply(balance: CreditBalance, now: datetime) -> bool:
            if any(pkg.payment_intent_id == payment.external_intent_id for pkg in balance.credit_packages):
                return False
            credit_ledger.add_package(balance, plan, payment.external_intent_id, now)
            return True

        added, balance = await self._mutate(
            payment.client_id, payment.brand_id, apply, "add credit package", create=True
        )
        if added:
            logger.info(
                f"Credited {plan.total_credits} credits to balance {balance.id} "
                f"for intent {payment.external_intent_id}"
            )
        else:
            logger.info(f"Package for intent {payment.external_intent_id} already credited")
        return balance

    async def deduct_credits(
        self,
        client_id: str,
        brand_id: str,
        amount: int = 1,
        booking_id: Optional[str] = None,
        class_id: Optional[str] = None,
    ) -> CreditDeductionResult:
        async def attempt() -> Tuple[list, CreditBalance]:
            balance = await self._load(client_id, brand_id)
            expected_version = balance.version
            plans = {}
            if class_id:
                # Plans for the packages in this snapshot
                plans = await self._store.get_credit_plans(pkg.plan_id for pkg in balance.credit_packages)
            written = credit_ledger.deduct(
                balance, amount, booking_id, self._clock(), class_id=class_id, plans=plans
            )
            stored = await self._store.update_credit_balance(balance, expected_version)
            return written, stored

        transactions, balance = await retry_on_conflict(attempt, "deduct credits")
        logger.info(
            f"Deducted {amount} credits from balance {balance.id} "
            f"(booking={booking_id}, remaining={balance.available_credits})"
        )
        return CreditDeductionResult(
            transactions=transactions,
            remaining_credits=balance.available_credits,
        )

    async def refund_credits(
        self,
        client_id: str,
        brand_id: str,
        amount: int,
        booking_id: Optional[str] = None,
    ) -> CreditRefundResult:
        def apply(balance: CreditBalance, now: datetime):
            return credit_ledger.refund(balance, amount, booking_id, now)

        transaction, balance = await self._mutate(client_id, brand_id, apply, "refund credits")
        logger.info(
            f"Refunded {transaction.amount}/{amount} credits to balance {balance.id} "
            f"(booking={booking_id})"
        )
        return CreditRefundResult(transaction=transaction, available_credits=balance.available_credits)

    async def cleanup_all_expired(self) -> Tuple[int, int]:
        """
        Expire lapsed packages across every balance.

        Returns:
            (balances changed, credits expired)
        """
        balances_changed = 0
        credits_expired = 0
        for balance in await self._store.list_credit_balances():
            if balance.available_credits == 0:
                continue

            def apply(current: CreditBalance, now: datetime):
                return credit_ledger.cleanup_expired(current, now)

            written, _ = await self._mutate(
                balance.client_id, balance.brand_id, apply, "expire credit packages"
            )
            if written:
                balances_changed += 1
                credits_expired += sum(t.amount for t in written)

        logger.info(f"Credit cleanup expired {credits_expired} credits on {balances_changed} balances")
        return balances_changed, credits_expired

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_credit_balance(self, client_id: str, brand_id: str) -> CreditBalanceSummary:
        balance = await self._refreshed(client_id, brand_id)
        now = self._clock()
        return CreditBalanceSummary(
            client_id=balance.client_id,
            brand_id=balance.brand_id,
            available_credits=balance.available_credits,
            total_credits_earned=balance.total_credits_earned,
            total_credits_used=balance.total_credits_used,
            active_packages=credit_ledger.active_packages(balance, now),
            expiring_packages=credit_ledger.expiring_packages(
                balance, get_settings().credit_expiry_warning_days, now
            ),
            last_activity_date=balance.last_activity_date,
        )

    async def list_client_balances(self, client_id: str) -> List[CreditBalanceSummary]:
        """Balances of a client that still hold credits."""
        summaries = []
        for balance in await self._store.list_credit_balances(client_id):
            summary = await self.get_credit_balance(balance.client_id, balance.brand_id)
            if summary.available_credits > 0:
                summaries.append(summary)
        return summaries

    async def get_expiring_credits(
        self, client_id: str, days: Optional[int] = None
    ) -> List[CreditBalanceSummary]:
        """Balances of a client with packages lapsing within the window."""
        days = days if days is not None else get_settings().credit_expiry_warning_days
        result = []
        for balance in await self._store.list_credit_balances(client_id):
            refreshed = await self._refreshed(balance.client_id, balance.brand_id)
            now = self._clock()
            expiring = credit_ledger.expiring_packages(refreshed, days, now)
            if expiring:
                result.append(
                    CreditBalanceSummary(
                        client_id=refreshed.client_id,
                        brand_id=refreshed.brand_id,
                        available_credits=refreshed.available_credits,
                        total_credits_earned=refreshed.total_credits_earned,
                        total_credits_used=refreshed.total_credits_used,
                        active_packages=credit_ledger.active_packages(refreshed, now),
                        expiring_packages=expiring,
                        last_activity_date=refreshed.last_activity_date,
                    )
                )
        return result

    async def get_transaction_history(
        self,
        client_id: str,
        brand_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> TransactionHistory:
        balance = await self._store.get_credit_balance(client_id, brand_id)
        transactions = balance.transactions if balance else []
        ordered = sorted(transactions, key=lambda t: t.timestamp, reverse=True)
        return TransactionHistory(
            transactions=ordered[offset:offset + limit],
            total=len(ordered),
            limit=limit,
            offset=offset,
        )

    async def get_available_credits_for_class(
        self, client_id: str, brand_id: str, class_id: str
    ) -> int:
        if await self._store.get_credit_balance(client_id, brand_id) is None:
            return 0
        balance = await self._refreshed(client_id, brand_id)
        plans = await self._store.get_credit_plans(pkg.plan_id for pkg in balance.credit_packages)
        return credit_ledger.available_credits_for_class(balance, class_id, plans, self._clock())

    async def validate_credit_eligibility(
        self,
        client_id: str,
        brand_id: str,
        class_id: str,
        amount: int = 1,
    ) -> CreditEligibility:
        available = await self.get_available_credits_for_class(client_id, brand_id, class_id)
        if available < amount:
            return CreditEligibility(
                eligible=False,
                available_credits=available,
                required_credits=amount,
                reason=(
                    f"Insufficient credits. You have {available} credits available, "
                    f"but need {amount}."
                ),
            )
        return CreditEligibility(eligible=True, available_credits=available, required_credits=amount)
