"""Security administration HTTP surface (``/security/...``)."""
