"""Outlet (tenant) records and the directory the resolver looks them up in.

Outlets live in the external data store. The resolver only needs
``get_outlet(id)``; :class:`InMemoryOutletDirectory` serves it from the
``outlets`` section of the config and is what tests use.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, runtime_checkable

from cafe_guard.config import OutletSeed


@dataclass(frozen=True)
class Outlet:
    id: str
    outlet_name: str
    is_active: bool = True


@runtime_checkable
class OutletDirectory(Protocol):
    async def get_outlet(self, outlet_id: str) -> Optional[Outlet]:
        """Return the outlet, or None if it does not exist."""
        ...


class InMemoryOutletDirectory:
    def __init__(self, outlets: Iterable[Outlet] = ()) -> None:
        self._outlets: dict[str, Outlet] = {o.id: o for o in outlets}

    @classmethod
    def from_seeds(cls, seeds: Iterable[OutletSeed]) -> "InMemoryOutletDirectory":
        return cls(Outlet(s.id, s.outlet_name, s.is_active) for s in seeds)

    def __len__(self) -> int:
        return len(self._outlets)

    def add(self, outlet: Outlet) -> None:
        self._outlets[outlet.id] = outlet

    async def get_outlet(self, outlet_id: str) -> Optional[Outlet]:
        return self._outlets.get(outlet_id)
