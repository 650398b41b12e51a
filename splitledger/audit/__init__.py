"""Audit logging package."""

from splitledger.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
