"""
Notifications Package.

Exports the email template renderer.
"""

from .templates import PAID_WELCOME, WELCOME, RenderedMessage, render_message

__all__ = ["RenderedMessage", "render_message", "WELCOME", "PAID_WELCOME"]
