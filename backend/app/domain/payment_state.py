"""
Payment state machine.

pending -> processing -> {succeeded, failed, cancelled}; pending may jump
straight to a terminal state. succeeded -> refunded is the only edge out of
a terminal state.
"""

from app.domain.entitlements import PaymentStatus
from app.infrastructure.exceptions import InvalidPaymentTransitionError


ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PROCESSING,
        PaymentStatus.SUCCEEDED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.PROCESSING: frozenset({
        PaymentStatus.SUCCEEDED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.SUCCEEDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset({
    PaymentStatus.SUCCEEDED,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
    PaymentStatus.REFUNDED,
})

SUCCESS_STATUSES = frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED})


def is_terminal(status: PaymentStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def assert_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    """Raise InvalidPaymentTransitionError for an edge the machine forbids."""
    if not can_transition(current, target):
        raise InvalidPaymentTransitionError(
            f"Cannot move payment from {current.value} to {target.value}",
            {"from": current.value, "to": target.value},
        )
