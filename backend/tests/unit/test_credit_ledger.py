"""
Unit tests for the credit ledger.

Covers FIFO spending, all-or-nothing deductions, refunds into the
originating package, expiry cleanup and the balance invariant.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.domain import credit_ledger
from app.domain.entitlements import (
    CreditBalance,
    CreditPlan,
    PackageStatus,
    TransactionType,
)
from app.infrastructure.exceptions import (
    CrossBrandPlanError,
    InsufficientCreditsError,
    ValidationError,
)


NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


def make_plan(plan_id="p10", credits=10, bonus=0, days=30, brand_id="brand-a", classes=None):
    return CreditPlan(
        id=plan_id,
        brand_id=brand_id,
        name=f"{credits} Pack",
        price=1000,
        credit_amount=credits,
        bonus_credits=bonus,
        validity_period_days=days,
        included_class_ids=classes or [],
    )


@pytest.fixture
def balance():
    return CreditBalance(client_id="client-1", brand_id="brand-a", last_activity_date=NOW)


class TestAddPackage:

    def test_adds_credits_and_purchase_entry(self, balance):
        package = credit_ledger.add_package(balance, make_plan(bonus=2), "pi_1", NOW)

        assert package.original_credits == 12
        assert package.expiry_date == NOW + timedelta(days=30)
        assert balance.available_credits == 12
        assert balance.total_credits_earned == 12
        assert balance.transactions[-1].type == TransactionType.PURCHASE
        assert balance.transactions[-1].amount == 12
        assert credit_ledger.check_invariant(balance, NOW)

    def test_rejects_plan_of_another_brand(self, balance):
        with pytest.raises(CrossBrandPlanError):
            credit_ledger.add_package(balance, make_plan(brand_id="brand-b"), "pi_1", NOW)
        assert balance.available_credits == 0
        assert balance.transactions == []


class TestDeduct:

    def test_spends_oldest_package_first(self, balance):
        older = credit_ledger.add_package(balance, make_plan("p10", 10), "pi_1", NOW)
        newer = credit_ledger.add_package(balance, make_plan("p5", 5), "pi_2", NOW + timedelta(hours=1))

        entries = credit_ledger.deduct(balance, 12, "booking-1", NOW + timedelta(hours=2))

        assert older.credits_remaining == 0
        assert older.status == PackageStatus.CONSUMED
        assert newer.credits_remaining == 3
        assert [(e.package_id, e.amount) for e in entries] == [(older.id, 10), (newer.id, 2)]
        assert balance.available_credits == 3
        assert balance.total_credits_used == 12
        assert credit_ledger.check_invariant(balance, NOW + timedelta(hours=2))

    def test_insufficient_credits_leaves_balance_untouched(self, balance):
        credit_ledger.add_package(balance, make_plan(credits=3), "pi_1", NOW)
        before = balance.model_copy(deep=True)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            credit_ledger.deduct(balance, 5, "booking-1", NOW)

        assert exc_info.value.requested == 5
        assert exc_info.value.available == 3
        assert balance == before

    def test_lapsed_packages_are_not_spendable(self, balance):
        credit_ledger.add_package(balance, make_plan(credits=10, days=1), "pi_1", NOW)

        with pytest.raises(InsufficientCreditsError):
            credit_ledger.deduct(balance, 1, None, NOW + timedelta(days=2))

    @pytest.mark.parametrize("amount", [0, -1, True, 1.5])
    def test_amount_must_be_positive_integer(self, balance, amount):
        credit_ledger.add_package(balance, make_plan(), "pi_1", NOW)
        with pytest.raises(ValidationError):
            credit_ledger.deduct(balance, amount, None, NOW)

    def test_exhausting_a_twelve_credit_package(self, balance):
        package = credit_ledger.add_package(balance, make_plan(credits=10, bonus=2), "pi_1", NOW)

        for i in range(12):
            credit_ledger.deduct(balance, 1, f"booking-{i}", NOW + timedelta(days=1))

        assert balance.available_credits == 0
        assert package.status == PackageStatus.CONSUMED
        with pytest.raises(InsufficientCreditsError):
            credit_ledger.deduct(balance, 1, "booking-13", NOW + timedelta(days=1))

    def test_class_deduction_skips_packages_excluding_the_class(self, balance):
        yoga_plan = make_plan("yoga", 5, classes=["yoga"])
        general_plan = make_plan("general", 10)
        yoga = credit_ledger.add_package(balance, yoga_plan, "pi_1", NOW)
        general = credit_ledger.add_package(balance, general_plan, "pi_2", NOW + timedelta(hours=1))
        plans = {"yoga": yoga_plan, "general": general_plan}

        entries = credit_ledger.deduct(
            balance, 3, "booking-1", NOW + timedelta(hours=2), class_id="spin", plans=plans
        )

        assert yoga.credits_remaining == 5
        assert general.credits_remaining == 7
        assert [(e.package_id, e.amount) for e in entries] == [(general.id, 3)]
        assert balance.available_credits == 12
        assert credit_ledger.check_invariant(balance, NOW + timedelta(hours=2))

    def test_class_deduction_counts_only_covering_packages(self, balance):
        yoga_plan = make_plan("yoga", 5, classes=["yoga"])
        general_plan = make_plan("general", 2)
        credit_ledger.add_package(balance, yoga_plan, "pi_1", NOW)
        credit_ledger.add_package(balance, general_plan, "pi_2", NOW)
        plans = {"yoga": yoga_plan, "general": general_plan}

        with pytest.raises(InsufficientCreditsError) as exc_info:
            credit_ledger.deduct(balance, 3, "booking-1", NOW, class_id="spin", plans=plans)

        assert exc_info.value.details == {"requested": 3, "available": 2}
        assert balance.available_credits == 7

    def test_class_deduction_spends_included_package_first(self, balance):
        yoga_plan = make_plan("yoga", 5, classes=["yoga"])
        general_plan = make_plan("general", 10)
        yoga = credit_ledger.add_package(balance, yoga_plan, "pi_1", NOW)
        general = credit_ledger.add_package(balance, general_plan, "pi_2", NOW + timedelta(hours=1))

        credit_ledger.deduct(
            balance, 6, "booking-1", NOW + timedelta(hours=2),
            class_id="yoga", plans={"yoga": yoga_plan, "general": general_plan},
        )

        assert yoga.credits_remaining == 0
        assert general.credits_remaining == 9


class TestRefund:

    def test_restores_into_originating_package(self, balance):
        package = credit_ledger.add_package(balance, make_plan(credits=10), "pi_1", NOW)
        credit_ledger.deduct(balance, 5, "booking-1", NOW)

        entry = credit_ledger.refund(balance, 3, "booking-1", NOW)

        assert package.credits_remaining == 8
        assert balance.available_credits == 8
        assert balance.total_credits_used == 2
        assert entry.type == TransactionType.REFUND
        assert entry.amount == 3
        assert entry.package_id == package.id
        assert credit_ledger.check_invariant(balance, NOW)

    def test_consumed_package_becomes_active_again(self, balance):
        package = credit_ledger.add_package(balance, make_plan(credits=2), "pi_1", NOW)
        credit_ledger.deduct(balance, 2, "booking-1", NOW)
        assert package.status == PackageStatus.CONSUMED

        credit_ledger.refund(balance, 1, "booking-1", NOW)

        assert package.status == PackageStatus.ACTIVE
        assert balance.available_credits == 1

    def test_never_overfills_a_package(self, balance):
        package = credit_ledger.add_package(balance, make_plan(credits=10), "pi_1", NOW)
        credit_ledger.deduct(balance, 2, "booking-1", NOW)

        entry = credit_ledger.refund(balance, 5, "booking-1", NOW)

        assert package.credits_remaining == 10
        assert entry.amount == 2
        assert "3 forfeited" in entry.description
        assert credit_ledger.check_invariant(balance, NOW)

    def test_refund_after_origin_expired_goes_to_newest_valid_package(self, balance):
        short = credit_ledger.add_package(balance, make_plan("short", 5, days=2), "pi_1", NOW)
        credit_ledger.deduct(balance, 3, "booking-1", NOW)
        one_hour_later = NOW + timedelta(hours=1)
        longer = credit_ledger.add_package(balance, make_plan("long", 5, days=60), "pi_2", one_hour_later)
        credit_ledger.deduct(balance, 4, "booking-2", one_hour_later)
        assert (short.credits_remaining, longer.credits_remaining) == (0, 2)

        later = NOW + timedelta(days=3)
        entry = credit_ledger.refund(balance, 3, "booking-1", later)

        assert short.credits_remaining == 0
        assert longer.credits_remaining == 5
        assert entry.amount == 3
        assert entry.package_id == longer.id
        assert balance.available_credits == 5
        assert credit_ledger.check_invariant(balance, later)


class TestCleanupExpired:

    def test_expires_once_per_package(self, balance):
        package = credit_ledger.add_package(balance, make_plan(credits=10, days=1), "pi_1", NOW)
        credit_ledger.deduct(balance, 4, "booking-1", NOW)
        later = NOW + timedelta(days=2)

        first = credit_ledger.cleanup_expired(balance, later)
        second = credit_ledger.cleanup_expired(balance, later)

        assert [e.amount for e in first] == [6]
        assert first[0].type == TransactionType.EXPIRY
        assert second == []
        assert package.status == PackageStatus.EXPIRED
        assert balance.available_credits == 0
        assert credit_ledger.check_invariant(balance, later)

    def test_expiry_is_inclusive_of_the_expiry_instant(self, balance):
        package = credit_ledger.add_package(balance, make_plan(days=1), "pi_1", NOW)

        credit_ledger.cleanup_expired(balance, package.expiry_date)

        assert package.status == PackageStatus.EXPIRED


class TestReads:

    def test_available_credits_for_class_filters_by_plan(self, balance):
        yoga = make_plan("yoga", 5, classes=["yoga"])
        general = make_plan("general", 3)
        credit_ledger.add_package(balance, yoga, "pi_1", NOW)
        credit_ledger.add_package(balance, general, "pi_2", NOW)
        plans = {"yoga": yoga, "general": general}

        assert credit_ledger.available_credits_for_class(balance, "yoga", plans, NOW) == 8
        assert credit_ledger.available_credits_for_class(balance, "spin", plans, NOW) == 3

    def test_unknown_plan_covers_every_class(self, balance):
        credit_ledger.add_package(balance, make_plan("gone", 4, classes=["yoga"]), "pi_1", NOW)

        assert credit_ledger.available_credits_for_class(balance, "spin", {}, NOW) == 4

    def test_expiring_packages_within_window(self, balance):
        soon = credit_ledger.add_package(balance, make_plan("soon", 2, days=5), "pi_1", NOW)
        credit_ledger.add_package(balance, make_plan("later", 2, days=40), "pi_2", NOW)

        assert credit_ledger.expiring_packages(balance, 7, NOW) == [soon]
