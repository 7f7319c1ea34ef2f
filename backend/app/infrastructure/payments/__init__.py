"""
Payments Infrastructure Module

Stripe Connect adapter for the payment gateway port.
"""

from app.infrastructure.payments.stripe_service import StripeGateway, get_stripe_gateway

__all__ = ["StripeGateway", "get_stripe_gateway"]
