"""Bounded audit log.

    from cafe_guard.audit import AuditLogger, AuditCategory, SecuritySeverity

Layout:
    models.py  AuditLogEntry, AuditCategory, SecuritySeverity, AuditFilters
    logger.py  AuditLogger (bounded store + structlog sink + queries)
    export.py  json / csv renderers
"""

from cafe_guard.audit.export import UnsupportedExportFormat
from cafe_guard.audit.logger import AuditLogger
from cafe_guard.audit.models import (
    AuditCategory,
    AuditFilters,
    AuditLogEntry,
    SecuritySeverity,
)

__all__ = [
    "AuditCategory",
    "AuditFilters",
    "AuditLogEntry",
    "AuditLogger",
    "SecuritySeverity",
    "UnsupportedExportFormat",
]
