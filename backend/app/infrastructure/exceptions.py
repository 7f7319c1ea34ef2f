"""
Custom Exceptions for the Entitlement Engine

Hierarchical exception classes for proper error handling across layers.
Every error carries a stable code so callers can branch without parsing
messages.
"""

from typing import Optional, Dict, Any


class EntitlementEngineError(Exception):
    """Base exception for all entitlement engine errors."""

    code: str = "SERVER_001"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class ValidationError(EntitlementEngineError):
    """Raised when input validation fails."""
    code = "VALIDATION_001"
    status_code = 400


class DatabaseError(EntitlementEngineError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


# =============================================================================
# Not Found
# =============================================================================

class NotFoundError(EntitlementEngineError):
    """Raised when a requested resource is not found."""
    code = "NOT_FOUND"
    status_code = 404


class ClientNotFoundError(NotFoundError):
    code = "CLIENT_001"


class BrandNotFoundError(NotFoundError):
    code = "BRAND_001"


class PlanNotFoundError(NotFoundError):
    code = "PLAN_001"


class PaymentNotFoundError(NotFoundError):
    code = "PAYMENT_001"


class CreditBalanceNotFoundError(NotFoundError):
    code = "CREDIT_001"


class SubscriptionNotFoundError(NotFoundError):
    code = "SUBSCRIPTION_002"


# =============================================================================
# Business Rules
# =============================================================================

class BusinessRuleViolation(EntitlementEngineError):
    """Raised when a request is well-formed but breaks a business rule."""
    code = "BUSINESS_RULE"
    status_code = 400


class InactiveClientError(BusinessRuleViolation):
    code = "CLIENT_002"


class InactivePlanError(BusinessRuleViolation):
    code = "PLAN_002"


class GatewayNotEnabledError(BusinessRuleViolation):
    """Raised when a brand cannot take payments through the gateway."""
    code = "STRIPE_001"


class GatewayCapabilityError(GatewayNotEnabledError):
    """Raised when the brand's gateway account cannot take charges right now."""
    code = "STRIPE_002"


class DuplicateSubscriptionError(BusinessRuleViolation):
    """Raised when a client already has an open subscription with a brand."""
    code = "SUBSCRIPTION_001"
    status_code = 409


class SubscriptionStateError(BusinessRuleViolation):
    code = "SUBSCRIPTION_003"


class SubscriptionNotEligibleError(BusinessRuleViolation):
    """Raised when a subscription cannot be used for a booking."""
    code = "SUBSCRIPTION_005"

    def __init__(self, message: str, reasons: Optional[list] = None):
        super().__init__(message, {"reasons": reasons or []})
        self.reasons = reasons or []


class InsufficientCreditsError(BusinessRuleViolation):
    code = "CREDIT_002"

    def __init__(self, requested: int, available: int):
        super().__init__(
            f"Insufficient credits. You have {available} credits available, "
            f"but need {requested}.",
            {"requested": requested, "available": available},
        )
        self.requested = requested
        self.available = available


class CrossBrandPlanError(BusinessRuleViolation):
    """Raised when a plan is applied to an entitlement of another brand."""
    code = "CREDIT_003"


class InvalidPaymentTransitionError(BusinessRuleViolation):
    code = "PAYMENT_003"
    status_code = 409


# =============================================================================
# External Gateway
# =============================================================================

class ExternalGatewayError(EntitlementEngineError):
    """Raised when the payment gateway fails or is unreachable."""
    code = "GATEWAY_001"
    status_code = 502

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details, original_error)


class GatewayTimeoutError(ExternalGatewayError):
    code = "GATEWAY_002"
    status_code = 504


class WebhookSignatureError(ExternalGatewayError):
    code = "GATEWAY_003"
    status_code = 400


# =============================================================================
# Integrity (benign under concurrent or duplicated delivery)
# =============================================================================

class IntegrityError(EntitlementEngineError):
    """Raised for expected races; callers log and treat these as no-ops."""
    code = "INTEGRITY"
    status_code = 409


class AlreadyProcessedError(IntegrityError):
    """Raised when a payment has already reached a terminal state."""
    code = "PAYMENT_002"

    def __init__(self, payment: Any):
        super().__init__(
            "Payment already processed",
            {"payment_id": payment.id, "status": payment.status.value},
        )
        self.payment = payment


class UnknownWebhookTargetError(IntegrityError):
    code = "WEBHOOK_001"

    def __init__(self, intent_id: str):
        super().__init__(
            f"No payment tracked for intent {intent_id}",
            {"intent_id": intent_id},
        )
        self.intent_id = intent_id


# =============================================================================
# Concurrency
# =============================================================================

class ConcurrencyConflictError(EntitlementEngineError):
    """Raised when a write loses an optimistic concurrency race."""
    code = "CONFLICT_001"
    status_code = 409


class StaleWriteError(ConcurrencyConflictError):
    """Raised by versioned writes when the stored version moved on."""

    def __init__(self, entity: str, entity_id: str, expected_version: int):
        super().__init__(
            f"{entity} {entity_id} was modified concurrently",
            {"entity": entity, "id": entity_id, "expected_version": expected_version},
        )
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version


class DuplicateError(DatabaseError):
    """Raised when attempting to create a duplicate resource."""
    status_code = 409
