"""cafe_guard: in-process security and multi-tenant access control for the cafe API."""

__version__ = "1.0.0"
