"""Audit logging package."""

from beanledger.audit.logger import AuditLogger, InMemoryAuditStorage, configure_logging

__all__ = ["AuditLogger", "InMemoryAuditStorage", "configure_logging"]
