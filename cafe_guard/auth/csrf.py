"""CSRF token lifecycle.

Tokens are 256-bit random values (base64), bound to one user, valid for
``expiry_minutes`` and usable once through ``validate_and_consume()``.

Issuance sweeps every expired token, then keeps at most
``max_tokens_per_user`` live tokens for the issuing user, evicting the oldest
by creation time. "Not found", "wrong user" and "expired" all validate as
False; callers cannot tell them apart.
"""

from __future__ import annotations

import base64
import itertools
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from cafe_guard import constants
from cafe_guard.clock import Clock, SystemClock
from cafe_guard.config import CsrfConfig
from cafe_guard.store import RecordStore
from cafe_guard.utils.logger import get_logger

logger = get_logger(__name__)

_sequence = itertools.count()


@dataclass(frozen=True)
class CsrfToken:
    token: str
    user_id: str
    created_at: datetime
    expires_at: datetime
    seq: int = field(default_factory=lambda: next(_sequence), compare=False, repr=False)

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now


def generate_csrf_token() -> str:
    return base64.b64encode(secrets.token_bytes(constants.CSRF_TOKEN_BYTES)).decode("ascii")


class CsrfTokenManager:
    def __init__(self, config: CsrfConfig | None = None, clock: Clock | None = None) -> None:
        self.config = config or CsrfConfig()
        self.clock = clock or SystemClock()
        self._tokens: RecordStore[str, CsrfToken] = RecordStore()
        # Serialises issue-then-cap so a user never ends up above the cap.
        self._issue_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._tokens)

    @property
    def expires_in_seconds(self) -> int:
        return self.config.expiry_minutes * 60

    def issue(self, user_id: str) -> str:
        if not user_id:
            raise ValueError("user_id is required")
        now = self.clock.now()
        record = CsrfToken(
            token=generate_csrf_token(),
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(minutes=self.config.expiry_minutes),
        )
        with self._issue_lock:
            self._tokens.put(record.token, record)
            self._sweep(now)
            evicted = self._enforce_cap(user_id)

        logger.debug("CSRF token issued", user_id=user_id, evicted=evicted)
        return record.token

    def validate(self, token: str, user_id: str) -> bool:
        if not token or not token.strip() or not user_id or not user_id.strip():
            return False
        record = self._tokens.get(token)
        if record is None or record.user_id != user_id:
            return False
        now = self.clock.now()
        if not record.is_live(now):
            self._tokens.pop_if(token, lambda r: not r.is_live(now))
            return False
        return True

    def validate_and_consume(self, token: str, user_id: str) -> bool:
        """Validate and delete in one step. Only one concurrent caller can win a token."""
        if not self.validate(token, user_id):
            return False
        now = self.clock.now()
        consumed = self._tokens.pop_if(
            token, lambda r: r.user_id == user_id and r.is_live(now)
        )
        return consumed is not None

    def revoke(self, token: str) -> bool:
        return self._tokens.pop(token) is not None

    def revoke_all(self, user_id: str) -> int:
        removed = self._tokens.remove_where(lambda r: r.user_id == user_id)
        if removed:
            logger.info("CSRF tokens revoked", user_id=user_id, count=len(removed))
        return len(removed)

    def sweep_expired(self) -> int:
        """Delete every expired token. Idempotent."""
        return self._sweep(self.clock.now())

    def live_tokens(self, user_id: str) -> list[CsrfToken]:
        now = self.clock.now()
        return [r for r in self._tokens.values() if r.user_id == user_id and r.is_live(now)]

    def _sweep(self, now: datetime) -> int:
        return len(self._tokens.remove_where(lambda r: not r.is_live(now)))

    def _enforce_cap(self, user_id: str) -> int:
        owned = sorted(
            (r for r in self._tokens.values() if r.user_id == user_id),
            key=lambda r: (r.created_at, r.seq),
        )
        excess = len(owned) - self.config.max_tokens_per_user
        if excess <= 0:
            return 0
        for record in owned[:excess]:
            self._tokens.pop(record.token)
        return excess
