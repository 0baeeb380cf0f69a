"""Bounded in-memory audit log.

Append-only store with a hard capacity (default 10,000). Every append is
followed, under the same lock, by evicting from the head until the size is
within capacity, so the store behaves as a FIFO ring.

Each entry is also passed through to the ``cafe_guard.audit`` structlog
logger at a level derived from category and severity. That sink is not part
of the queryable store: if writing to it fails the entry is still kept and
the failure is only counted in ``sink_failures``.
"""

from __future__ import annotations

import json
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Optional

from cafe_guard import constants
from cafe_guard.audit import export
from cafe_guard.audit.models import (
    AuditCategory,
    AuditFilters,
    AuditLogEntry,
    SecuritySeverity,
)
from cafe_guard.clock import Clock, SystemClock
from cafe_guard.utils.logger import get_logger

logger = get_logger(__name__)

AUDIT_SINK_NAME = "cafe_guard.audit"

_SEVERITY_LEVELS: dict[SecuritySeverity, str] = {
    SecuritySeverity.CRITICAL: "critical",
    SecuritySeverity.HIGH: "error",
    SecuritySeverity.MEDIUM: "warning",
    SecuritySeverity.LOW: "info",
}


class AuditLogger:
    def __init__(
        self,
        capacity: int = constants.AUDIT_CAPACITY,
        clock: Optional[Clock] = None,
        sink: Any = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.clock = clock or SystemClock()
        self._sink = sink if sink is not None else get_logger(AUDIT_SINK_NAME)
        self._entries: deque[AuditLogEntry] = deque()
        self._lock = threading.Lock()
        self.sink_failures = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ── Core append ───────────────────────────────────────────────────────

    def log(
        self,
        category: AuditCategory,
        action: str,
        *,
        success: bool = True,
        severity: SecuritySeverity = SecuritySeverity.LOW,
        sink_level: str = "info",
        **fields: Any,
    ) -> AuditLogEntry:
        """Append one entry and pass it to the sink. Never raises on sink failure."""
        entry = AuditLogEntry(
            timestamp=self.clock.now(),
            category=category,
            action=action,
            success=success,
            severity=severity,
            **fields,
        )
        with self._lock:
            self._entries.append(entry)
            while len(self._entries) > self.capacity:
                self._entries.popleft()
        self._emit(sink_level, entry)
        return entry

    def _emit(self, level: str, entry: AuditLogEntry) -> None:
        try:
            getattr(self._sink, level)(
                f"[{entry.category.value}] {entry.action}",
                audit_id=entry.id,
                user_id=entry.user_id,
                success=entry.success,
                severity=entry.severity.value,
                ip_address=entry.ip_address,
                resource=(
                    f"{entry.resource_type}/{entry.resource_id}"
                    if entry.resource_type
                    else None
                ),
                details=entry.details,
            )
        except Exception as exc:  # noqa: BLE001
            with self._lock:
                self.sink_failures += 1
            logger.debug("Audit sink write failed", error=str(exc), audit_id=entry.id)

    # ── Convenience entry points ──────────────────────────────────────────

    def log_authentication(
        self,
        user_id: Optional[str],
        action: str,
        success: bool,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> AuditLogEntry:
        return self.log(
            AuditCategory.AUTHENTICATION,
            action,
            success=success,
            severity=SecuritySeverity.LOW if success else SecuritySeverity.MEDIUM,
            sink_level="info" if success else "warning",
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            reason=reason,
        )

    def log_authorization(
        self,
        user_id: Optional[str],
        action: str,
        success: bool,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> AuditLogEntry:
        return self.log(
            AuditCategory.AUTHORIZATION,
            action,
            success=success,
            sink_level="info" if success else "warning",
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            reason=reason,
        )

    def log_data_access(
        self,
        user_id: Optional[str],
        resource_type: str,
        resource_id: str,
        action: str,
        success: bool,
        reason: Optional[str] = None,
    ) -> AuditLogEntry:
        return self.log(
            AuditCategory.DATA_ACCESS,
            action,
            success=success,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            reason=reason,
        )

    def log_data_modification(
        self,
        user_id: Optional[str],
        resource_type: str,
        resource_id: str,
        action: str,
        old_value: Any = None,
        new_value: Any = None,
    ) -> AuditLogEntry:
        return self.log(
            AuditCategory.DATA_MODIFICATION,
            action,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            old_value=_serialize(old_value),
            new_value=_serialize(new_value),
        )

    def log_security_event(
        self,
        event_type: str,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        details: Optional[str] = None,
        severity: SecuritySeverity = SecuritySeverity.MEDIUM,
        user_agent: Optional[str] = None,
    ) -> AuditLogEntry:
        """Security events are always recorded as unsuccessful."""
        return self.log(
            AuditCategory.SECURITY,
            event_type,
            success=False,
            severity=severity,
            sink_level=_SEVERITY_LEVELS[severity],
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details=details,
        )

    def log_admin_action(
        self,
        admin_user_id: Optional[str],
        action: str,
        target_user_id: Optional[str] = None,
        details: Optional[str] = None,
    ) -> AuditLogEntry:
        return self.log(
            AuditCategory.ADMINISTRATION,
            action,
            sink_level="warning",
            user_id=admin_user_id,
            target_user_id=target_user_id,
            details=details,
        )

    def log_api_call(
        self,
        endpoint: str,
        method: str,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        status_code: int = 200,
        response_time_ms: float = 0,
    ) -> AuditLogEntry:
        return self.log(
            AuditCategory.API_USAGE,
            f"{method} {endpoint}",
            success=200 <= status_code < 400,
            sink_level="debug",
            user_id=user_id,
            ip_address=ip_address,
            status_code=status_code,
            response_time_ms=response_time_ms,
        )

    def log_file_operation(
        self,
        user_id: Optional[str],
        operation: str,
        file_name: str,
        file_size: int,
        success: bool,
        reason: Optional[str] = None,
    ) -> AuditLogEntry:
        return self.log(
            AuditCategory.FILE_OPERATION,
            operation,
            success=success,
            user_id=user_id,
            file_name=file_name,
            file_size=file_size,
            reason=reason,
        )

    # ── Queries ───────────────────────────────────────────────────────────

    def entries(self) -> list[AuditLogEntry]:
        """Snapshot in append order (oldest first)."""
        with self._lock:
            return list(self._entries)

    def query(
        self,
        category: Optional[AuditCategory] = None,
        user_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        max_results: Optional[int] = constants.AUDIT_DEFAULT_MAX_RESULTS,
    ) -> list[AuditLogEntry]:
        """Filtered snapshot, most recent first, truncated to ``max_results``.

        ``max_results=None`` returns every match.
        """
        filters = AuditFilters(
            category=category, user_id=user_id, start_date=start_date, end_date=end_date
        )
        matched = [e for e in self.entries() if filters.matches(e)]
        ordered = _newest_first(matched)
        if max_results is None:
            return ordered
        return ordered[: max(0, max_results)]

    def security_alerts(self, hours: int = 24) -> list[AuditLogEntry]:
        """Security events plus failed authentications of the last ``hours``."""
        cutoff = self.clock.now() - timedelta(hours=hours)
        alerts = [
            e
            for e in self.entries()
            if e.timestamp >= cutoff
            and (
                e.category == AuditCategory.SECURITY
                or (e.category == AuditCategory.AUTHENTICATION and not e.success)
            )
        ]
        return _newest_first(alerts)

    def failed_login_count(self, user_id: str, hours: int = 1) -> int:
        cutoff = self.clock.now() - timedelta(hours=hours)
        return sum(
            1
            for e in self.entries()
            if e.timestamp >= cutoff
            and e.category == AuditCategory.AUTHENTICATION
            and e.user_id == user_id
            and not e.success
            and e.action in constants.FAILED_LOGIN_ACTIONS
        )

    def export(self, start_date: datetime, end_date: datetime, export_format: str = "json") -> str:
        """Serialize every entry in ``[start_date, end_date]``, most recent first.

        Raises:
            UnsupportedExportFormat: for formats other than json or csv.
        """
        if (export_format or "").lower() not in export.EXPORT_FORMATS:
            raise export.UnsupportedExportFormat("Unsupported format. Use 'json' or 'csv'.")
        entries = self.query(start_date=start_date, end_date=end_date, max_results=None)
        return export.render(entries, export_format)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def _newest_first(entries: list[AuditLogEntry]) -> list[AuditLogEntry]:
    # Reversed first so that entries sharing a timestamp keep newest-appended first.
    return sorted(reversed(entries), key=lambda e: e.timestamp, reverse=True)


def _serialize(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)
