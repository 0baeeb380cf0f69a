"""ULID generation for cafe_guard.

ULIDs are used as audit entry ids and as per-request correlation ids. They
sort lexicographically by creation time, which keeps exported audit logs and
log lines in a stable order.

Uses the `python-ulid` library; do not hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Example::

        entry_id = generate_ulid()
        # "01KJ0JRVHYA7KX32VPN5ZSCTMV"
        assert len(entry_id) == 26
    """
    return str(ULID())
