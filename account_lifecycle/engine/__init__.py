"""
Engine Package.

This package provides the Identity Gate that authorizes lifecycle
transitions and the store that tracks workflow executions.
"""

from .execution_store import ExecutionStore
from .gate import ALLOW, Decision, GateDecision, IdentityGate

__all__ = [
    "ALLOW",
    "Decision",
    "ExecutionStore",
    "GateDecision",
    "IdentityGate",
]
