"""Service API key issuance, validation, rotation and revocation.

Key format: ``cafe_`` + 32 url-safe characters, active for ``expiry_days``.

State machine::

    Active ──(expiry reached, seen by validate)──▶ Inactive
    Active ──rotate──▶ Deprecated (expires rotation + grace_days) + new Active key
    Active | Deprecated ──revoke──▶ Inactive (immediately, no grace)

``validate()`` is not a pure query: a successful check bumps ``request_count``
and ``last_used_at``, and an expired key is marked inactive. The lookup and the
usage update are separate steps; a concurrent revoke may land in between.
"""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Optional

from cafe_guard import constants
from cafe_guard.clock import Clock, SystemClock
from cafe_guard.config import ApiKeyConfig
from cafe_guard.errors import NotFound, StateConflict
from cafe_guard.store import RecordStore
from cafe_guard.utils.logger import get_logger

logger = get_logger(__name__)

MASK_LENGTH = 10


# ─── Records ──────────────────────────────────────────────────────────────────


@dataclass
class ApiKey:
    key: str
    service_name: str
    description: str
    created_at: datetime
    expires_at: datetime
    is_active: bool = True
    last_used_at: Optional[datetime] = None
    request_count: int = 0
    deprecated_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    @property
    def is_deprecated(self) -> bool:
        return self.deprecated_at is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class ApiKeyStatistics:
    key: str
    service_name: str
    created_at: datetime
    expires_at: datetime
    last_used_at: Optional[datetime]
    request_count: int
    is_active: bool
    days_until_expiry: int
    needs_rotation: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "serviceName": self.service_name,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "lastUsedAt": self.last_used_at.isoformat() if self.last_used_at else None,
            "requestCount": self.request_count,
            "isActive": self.is_active,
            "daysUntilExpiry": self.days_until_expiry,
            "needsRotation": self.needs_rotation,
        }


def mask_key(key: str) -> str:
    return key[:MASK_LENGTH] + "..."


# ─── Manager ──────────────────────────────────────────────────────────────────


class ApiKeyManager:
    def __init__(self, config: Optional[ApiKeyConfig] = None, clock: Optional[Clock] = None) -> None:
        self.config = config or ApiKeyConfig()
        self.clock = clock or SystemClock()
        self._keys: RecordStore[str, ApiKey] = RecordStore()
        # Guards field mutation of stored ApiKey records.
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._keys)

    def _generate_key(self) -> str:
        return self.config.prefix + secrets.token_urlsafe(32)[: constants.API_KEY_BODY_LENGTH]

    def issue(self, service_name: str, description: str = "") -> str:
        if not service_name or not service_name.strip():
            raise ValueError("service_name is required")
        now = self.clock.now()
        record = ApiKey(
            key=self._generate_key(),
            service_name=service_name,
            description=description or "",
            created_at=now,
            expires_at=now + timedelta(days=self.config.expiry_days),
        )
        self._keys.put(record.key, record)
        logger.info(
            "API key issued",
            service_name=service_name,
            key=mask_key(record.key),
            expires_at=record.expires_at.isoformat(),
        )
        return record.key

    def validate(self, key: str) -> tuple[bool, Optional[ApiKey]]:
        """Return ``(valid, snapshot)``. ``snapshot`` is None only for unknown keys."""
        if not key or not key.strip():
            return False, None
        record = self._keys.get(key)
        if record is None:
            return False, None

        now = self.clock.now()
        with self._lock:
            if not record.is_active:
                return False, replace(record)
            if record.is_expired(now):
                record.is_active = False
                logger.info("API key expired", key=mask_key(key), service_name=record.service_name)
                return False, replace(record)
            record.last_used_at = now
            record.request_count += 1
            return True, replace(record)

    def rotate(self, old_key: str) -> tuple[str, datetime]:
        """Issue a replacement key and demote ``old_key`` to deprecated.

        The old key's expiry becomes exactly ``grace_days`` from now, which
        shortens a long-lived key and extends a nearly expired one.

        Raises:
            NotFound:      unknown key.
            StateConflict: key already revoked, inactive, expired or rotated.
        """
        record = self._keys.get(old_key)
        if record is None:
            raise NotFound("API key not found")

        now = self.clock.now()
        with self._lock:
            if record.revoked_at is not None or not record.is_active:
                raise StateConflict("API key is not active")
            if record.is_expired(now):
                record.is_active = False
                raise StateConflict("API key has expired")
            if record.is_deprecated:
                raise StateConflict("API key has already been rotated")
            record.deprecated_at = now
            record.expires_at = now + timedelta(days=self.config.grace_days)
            deprecation_date = record.expires_at
            service_name = record.service_name

        new_key = self.issue(service_name, f"Rotated from {mask_key(old_key)}")
        logger.info(
            "API key rotated",
            service_name=service_name,
            old_key=mask_key(old_key),
            new_key=mask_key(new_key),
            deprecation_date=deprecation_date.isoformat(),
        )
        return new_key, deprecation_date

    def revoke(self, key: str) -> None:
        """Deactivate ``key`` immediately. Revoking twice is a no-op.

        Raises:
            NotFound: unknown key.
        """
        record = self._keys.get(key)
        if record is None:
            raise NotFound("API key not found")
        with self._lock:
            if record.revoked_at is not None:
                return
            record.is_active = False
            record.revoked_at = self.clock.now()
        logger.info("API key revoked", key=mask_key(key), service_name=record.service_name)

    def list_all(self) -> list[ApiKey]:
        """Snapshots of every key, newest first."""
        with self._lock:
            snapshots = [replace(r) for r in self._keys.values()]
        return sorted(snapshots, key=lambda r: r.created_at, reverse=True)

    def list_needing_rotation(self, within_days: Optional[int] = None) -> list[ApiKey]:
        """Active keys whose expiry falls within the warning window."""
        days = self.config.rotation_warning_days if within_days is None else within_days
        warning_date = self.clock.now() + timedelta(days=days)
        return [r for r in self.list_all() if r.is_active and r.expires_at <= warning_date]

    def statistics(self, key: str) -> ApiKeyStatistics:
        """Raises NotFound for unknown keys."""
        record = self._keys.get(key)
        if record is None:
            raise NotFound("API key not found")
        now = self.clock.now()
        with self._lock:
            snapshot = replace(record)
        return ApiKeyStatistics(
            key=mask_key(key),
            service_name=snapshot.service_name,
            created_at=snapshot.created_at,
            expires_at=snapshot.expires_at,
            last_used_at=snapshot.last_used_at,
            request_count=snapshot.request_count,
            is_active=snapshot.is_active,
            days_until_expiry=(snapshot.expires_at - now).days,
            needs_rotation=snapshot.expires_at
            <= now + timedelta(days=self.config.rotation_warning_days),
        )

    def sweep_expired(self) -> int:
        """Drop inactive keys and keys expired more than ``retention_days`` ago."""
        cutoff = self.clock.now() - timedelta(days=self.config.retention_days)
        removed = self._keys.remove_where(lambda r: not r.is_active or r.expires_at < cutoff)
        if removed:
            logger.info("API keys swept", removed=len(removed))
        return len(removed)
