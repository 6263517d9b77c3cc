# API Routes Module
from quantipack.api.routes import (
    subscriptions,
    tokens,
    users,
    webhooks,
)

__all__ = [
    "subscriptions",
    "tokens",
    "users",
    "webhooks",
]
