"""
Credit Ledger

Pure operations over a CreditBalance aggregate. Each function mutates the
balance in place and returns the ledger entries it wrote; persistence and
concurrency control belong to the caller (see app.services.credit_service).

After every operation:
    available_credits == sum(credits_remaining of active, unlapsed packages)
"""

import logging
from datetime import datetime, timedelta
from typing import Mapping, Optional

from app.domain.entitlements import (
    CreditBalance,
    CreditPackage,
    CreditPlan,
    CreditTransaction,
    PackageStatus,
    TransactionType,
    utcnow,
)
from app.infrastructure.exceptions import (
    CrossBrandPlanError,
    InsufficientCreditsError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Package status
# =============================================================================

def is_lapsed(package: CreditPackage, now: datetime) -> bool:
    """Whether the package's validity window has closed."""
    return package.expiry_date <= now


def compute_package_status(package: CreditPackage, now: datetime) -> PackageStatus:
    """
    Derive a package's status from its contents and the clock.

    A stored EXPIRED status is final: cleanup zeroes the package but the
    package stays expired rather than becoming consumed.
    """
    if package.status == PackageStatus.EXPIRED:
        return PackageStatus.EXPIRED
    if package.credits_remaining == 0:
        return PackageStatus.CONSUMED
    if is_lapsed(package, now):
        return PackageStatus.EXPIRED
    return PackageStatus.ACTIVE


def is_spendable(package: CreditPackage, now: datetime) -> bool:
    return (
        package.status == PackageStatus.ACTIVE
        and package.credits_remaining > 0
        and not is_lapsed(package, now)
    )


def spendable_credits(balance: CreditBalance, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    return sum(pkg.credits_remaining for pkg in balance.credit_packages if is_spendable(pkg, now))


def _touch(balance: CreditBalance, now: datetime) -> None:
    balance.last_activity_date = now
    balance.updated_at = now


def _validate_amount(amount: int, operation: str) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(
            f"{operation} amount must be a positive integer",
            {"amount": amount},
        )


# =============================================================================
# Mutating operations
# =============================================================================

def cleanup_expired(balance: CreditBalance, now: Optional[datetime] = None) -> list[CreditTransaction]:
    """
    Zero out lapsed packages that still hold credits.

    Emits one expiry entry per package. Running it again is a no-op because
    zeroed packages no longer hold credits.
    """
    now = now or utcnow()
    written: list[CreditTransaction] = []

    for package in balance.credit_packages:
        if package.credits_remaining > 0 and compute_package_status(package, now) == PackageStatus.EXPIRED:
            forfeited = package.credits_remaining
            package.credits_remaining = 0
            package.status = PackageStatus.EXPIRED
            balance.available_credits = max(0, balance.available_credits - forfeited)

            entry = CreditTransaction(
                type=TransactionType.EXPIRY,
                amount=forfeited,
                package_id=package.id,
                description=f"{forfeited} credits expired",
                timestamp=now,
            )
            balance.transactions.append(entry)
            written.append(entry)
        elif package.status != PackageStatus.EXPIRED:
            package.status = compute_package_status(package, now)

    if written:
        _touch(balance, now)
        logger.info(
            f"Expired {sum(t.amount for t in written)} credits across "
            f"{len(written)} packages on balance {balance.id}"
        )
    return written


def add_package(
    balance: CreditBalance,
    plan: CreditPlan,
    payment_intent_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CreditPackage:
    """Mint a package from a credit plan and credit it to the balance."""
    if plan.brand_id != balance.brand_id:
        raise CrossBrandPlanError(
            "Credit plan does not belong to the same brand",
            {"plan_brand_id": plan.brand_id, "balance_brand_id": balance.brand_id},
        )

    now = now or utcnow()
    cleanup_expired(balance, now)

    total = plan.total_credits
    package = CreditPackage(
        plan_id=plan.id,
        purchase_date=now,
        expiry_date=plan.expiry_date(now),
        original_credits=total,
        credits_remaining=total,
        status=PackageStatus.ACTIVE,
        payment_intent_id=payment_intent_id,
    )
    balance.credit_packages.append(package)
    balance.available_credits += total
    balance.total_credits_earned += total
    balance.transactions.append(
        CreditTransaction(
            type=TransactionType.PURCHASE,
            amount=total,
            package_id=package.id,
            description=f"Purchased {plan.name} package ({total} credits)",
            timestamp=now,
        )
    )
    _touch(balance, now)
    return package


def covers_class(
    package: CreditPackage,
    class_id: Optional[str],
    plans: Mapping[str, CreditPlan],
) -> bool:
    """Whether the package may pay for the class. No class means any package."""
    if not class_id:
        return True
    plan = plans.get(package.plan_id)
    return plan is None or plan.is_class_included(class_id)


def deduct(
    balance: CreditBalance,
    amount: int,
    booking_id: Optional[str] = None,
    now: Optional[datetime] = None,
    class_id: Optional[str] = None,
    plans: Optional[Mapping[str, CreditPlan]] = None,
) -> list[CreditTransaction]:
    """
    Spend credits oldest package first.

    With a class_id only packages whose plan covers the class are spent;
    plans maps plan ids to the plans of the balance's packages.

    All-or-nothing: the balance is untouched when the eligible packages
    cannot cover the amount.
    """
    _validate_amount(amount, "Deduction")
    now = now or utcnow()
    plans = plans or {}

    available = sum(
        pkg.credits_remaining for pkg in balance.credit_packages
        if is_spendable(pkg, now) and covers_class(pkg, class_id, plans)
    )
    if available < amount:
        raise InsufficientCreditsError(requested=amount, available=available)

    cleanup_expired(balance, now)

    written: list[CreditTransaction] = []
    outstanding = amount
    for package in sorted(balance.credit_packages, key=lambda pkg: pkg.purchase_date):
        if outstanding == 0:
            break
        if not is_spendable(package, now) or not covers_class(package, class_id, plans):
            continue

        taken = min(outstanding, package.credits_remaining)
        package.credits_remaining -= taken
        package.status = compute_package_status(package, now)
        outstanding -= taken

        entry = CreditTransaction(
            type=TransactionType.USAGE,
            amount=taken,
            package_id=package.id,
            related_booking_id=booking_id,
            description=f"Used {taken} credits for booking",
            timestamp=now,
        )
        balance.transactions.append(entry)
        written.append(entry)

    balance.available_credits -= amount
    balance.total_credits_used += amount
    _touch(balance, now)
    return written


def _refund_targets(
    balance: CreditBalance,
    booking_id: Optional[str],
    now: datetime,
) -> list[CreditPackage]:
    unlapsed = [
        pkg for pkg in balance.credit_packages
        if pkg.status != PackageStatus.EXPIRED and not is_lapsed(pkg, now)
    ]
    ordered = sorted(unlapsed, key=lambda pkg: pkg.purchase_date, reverse=True)

    if booking_id:
        usages = [
            t for t in balance.transactions
            if t.type == TransactionType.USAGE and t.related_booking_id == booking_id
        ]
        if usages:
            latest = max(usages, key=lambda t: t.timestamp)
            origin = next((pkg for pkg in ordered if pkg.id == latest.package_id), None)
            if origin is not None:
                ordered.remove(origin)
                ordered.insert(0, origin)

    return ordered


def refund(
    balance: CreditBalance,
    amount: int,
    booking_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CreditTransaction:
    """
    Restore credits from a cancelled booking.

    The booking's originating package is preferred while it is still valid,
    then the newest valid packages. No package is refilled beyond its
    original size; credits that fit nowhere are forfeited and recorded in
    the entry's description.
    """
    _validate_amount(amount, "Refund")
    now = now or utcnow()
    cleanup_expired(balance, now)

    targets = _refund_targets(balance, booking_id, now)
    outstanding = amount
    first_package_id = None
    for package in targets:
        if outstanding == 0:
            break
        room = package.original_credits - package.credits_remaining
        restored = min(room, outstanding)
        if restored <= 0:
            continue
        package.credits_remaining += restored
        package.status = PackageStatus.ACTIVE
        outstanding -= restored
        first_package_id = first_package_id or package.id

    restored_total = amount - outstanding
    balance.available_credits += restored_total
    balance.total_credits_used = max(0, balance.total_credits_used - restored_total)

    description = f"Refunded {restored_total} credits from cancelled booking"
    if outstanding:
        description += f" ({outstanding} forfeited, no valid package to restore into)"
        logger.warning(
            f"Refund on balance {balance.id} forfeited {outstanding} of {amount} credits"
        )

    entry = CreditTransaction(
        type=TransactionType.REFUND,
        amount=restored_total,
        package_id=first_package_id,
        related_booking_id=booking_id,
        description=description,
        timestamp=now,
    )
    balance.transactions.append(entry)
    _touch(balance, now)
    return entry


# =============================================================================
# Reads
# =============================================================================

def available_credits_for_class(
    balance: CreditBalance,
    class_id: str,
    plans: Mapping[str, CreditPlan],
    now: Optional[datetime] = None,
) -> int:
    """
    Sum spendable credits whose originating plan covers the class.

    Packages whose plan is no longer known are treated as covering every
    class.
    """
    now = now or utcnow()
    return sum(
        pkg.credits_remaining for pkg in balance.credit_packages
        if is_spendable(pkg, now) and covers_class(pkg, class_id, plans)
    )


def expiring_packages(
    balance: CreditBalance,
    within_days: int,
    now: Optional[datetime] = None,
) -> list[CreditPackage]:
    """Spendable packages that lapse within the given number of days."""
    now = now or utcnow()
    horizon = now + timedelta(days=within_days)
    return sorted(
        (pkg for pkg in balance.credit_packages if is_spendable(pkg, now) and pkg.expiry_date <= horizon),
        key=lambda pkg: pkg.expiry_date,
    )


def active_packages(balance: CreditBalance, now: Optional[datetime] = None) -> list[CreditPackage]:
    now = now or utcnow()
    return sorted(
        (pkg for pkg in balance.credit_packages if is_spendable(pkg, now)),
        key=lambda pkg: pkg.purchase_date,
    )


def check_invariant(balance: CreditBalance, now: Optional[datetime] = None) -> bool:
    return balance.available_credits == spendable_credits(balance, now)
