"""API Package for the Account Lifecycle Engine."""

from .server import app, start_server

__all__ = ["app", "start_server"]
