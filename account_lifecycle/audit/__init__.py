"""
Audit Package.

Provides the append-only audit trail of workflow step executions.
"""

from .audit_logger import AuditLogger

__all__ = ["AuditLogger"]
