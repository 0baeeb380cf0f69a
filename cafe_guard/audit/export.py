"""Audit log export renderers.

  json  pretty-printed array of full entries (camelCase keys)
  csv   RFC 4180: header row, CRLF line endings, fields containing commas,
        quotes or newlines are quoted with embedded quotes doubled
"""

from __future__ import annotations

import csv
import io
import json
from typing import Iterable

from cafe_guard.audit.models import AuditLogEntry
from cafe_guard.errors import SecurityError

CSV_HEADER: tuple[str, ...] = (
    "Timestamp",
    "Category",
    "Action",
    "UserId",
    "ResourceType",
    "ResourceId",
    "Success",
    "IpAddress",
    "Details",
)

EXPORT_FORMATS: frozenset[str] = frozenset({"json", "csv"})


class UnsupportedExportFormat(SecurityError, ValueError):
    """Raised for any export format other than json or csv."""

    status_code = 400


def render_json(entries: Iterable[AuditLogEntry]) -> str:
    return json.dumps([entry.to_dict() for entry in entries], indent=2)


def render_csv(entries: Iterable[AuditLogEntry]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(CSV_HEADER)
    for entry in entries:
        writer.writerow(
            (
                entry.timestamp.isoformat(),
                entry.category.value,
                entry.action,
                entry.user_id or "",
                entry.resource_type or "",
                entry.resource_id or "",
                "true" if entry.success else "false",
                entry.ip_address or "",
                entry.details or "",
            )
        )
    return buffer.getvalue()


def render(entries: Iterable[AuditLogEntry], export_format: str) -> str:
    """Render ``entries`` in ``export_format`` (case-insensitive).

    Raises:
        UnsupportedExportFormat: for anything but json or csv.
    """
    fmt = (export_format or "").lower()
    if fmt == "json":
        return render_json(entries)
    if fmt == "csv":
        return render_csv(entries)
    raise UnsupportedExportFormat("Unsupported format. Use 'json' or 'csv'.")
