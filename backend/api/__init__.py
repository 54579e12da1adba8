"""API route handlers."""
from . import plaid, sync, webhooks

__all__ = ["plaid", "sync", "webhooks"]
