"""
Middlewares for the Telegram bot.

Currently includes:
- BoxContextMiddleware: resolves the linked admin and the box they manage.
"""

from .box_context import BoxContextMiddleware

__all__ = ["BoxContextMiddleware"]
