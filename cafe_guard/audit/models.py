"""Audit log entry model, categories and severities.

Entries are immutable once written. ``to_dict()`` gives the camelCase shape
used by the JSON export and the admin API.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from cafe_guard.utils.ulid import generate_ulid

# ─── Enums ────────────────────────────────────────────────────────────────────


class AuditCategory(str, Enum):
    AUTHENTICATION = "Authentication"
    AUTHORIZATION = "Authorization"
    DATA_ACCESS = "DataAccess"
    DATA_MODIFICATION = "DataModification"
    SECURITY = "Security"
    ADMINISTRATION = "Administration"
    API_USAGE = "ApiUsage"
    FILE_OPERATION = "FileOperation"
    CONFIGURATION = "Configuration"


class SecuritySeverity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


# ─── AuditLogEntry ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuditLogEntry:
    """One audited event.

    Every entry shares the same envelope (id, timestamp, category, action,
    success, severity). The remaining fields are filled in by whichever
    convenience entry point of ``AuditLogger`` produced it.
    """

    timestamp: datetime
    category: AuditCategory
    action: str
    success: bool
    severity: SecuritySeverity = SecuritySeverity.LOW
    id: str = field(default_factory=generate_ulid)

    user_id: Optional[str] = None
    target_user_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    reason: Optional[str] = None
    details: Optional[str] = None
    old_value: Optional[str] = None
    """JSON serialisation of the value before a data modification."""
    new_value: Optional[str] = None
    """JSON serialisation of the value after a data modification."""

    file_name: Optional[str] = None
    file_size: Optional[int] = None
    status_code: Optional[int] = None
    response_time_ms: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
            "action": self.action,
            "userId": self.user_id,
            "targetUserId": self.target_user_id,
            "resourceType": self.resource_type,
            "resourceId": self.resource_id,
            "success": self.success,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "reason": self.reason,
            "details": self.details,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "statusCode": self.status_code,
            "responseTimeMs": self.response_time_ms,
            "severity": self.severity.value,
        }


# ─── Query filters ────────────────────────────────────────────────────────────


@dataclass
class AuditFilters:
    """Filters for ``AuditLogger.query()``. All fields optional.

    ``start_date`` and ``end_date`` are inclusive bounds.
    """

    category: Optional[AuditCategory] = None
    user_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    def matches(self, entry: AuditLogEntry) -> bool:
        if self.category is not None and entry.category != self.category:
            return False
        if self.user_id and entry.user_id != self.user_id:
            return False
        if self.start_date is not None and entry.timestamp < self.start_date:
            return False
        if self.end_date is not None and entry.timestamp > self.end_date:
            return False
        return True
