# API Routes Module
from app.api.routes import (
    payments,
    subscriptions,
    credits,
    webhooks,
)

__all__ = [
    "payments",
    "subscriptions",
    "credits",
    "webhooks",
]
