"""Audit logging package."""

from utility_splitter.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
