"""Shared constants for cafe_guard.

Thresholds, lifetimes and header/claim names used across modules. These are
the defaults; config.yaml may override the numeric ones.
"""

# ─── Rate limiting ────────────────────────────────────────────────────────────

MAX_REQUESTS_PER_MINUTE: int = 600
MAX_REQUESTS_PER_HOUR: int = 10_000
MAX_AUTH_ATTEMPTS_PER_HOUR: int = 10
BLOCK_DURATION_MINUTES: int = 5

# Endpoint names containing any of these (case-insensitive) count as auth endpoints.
AUTH_ENDPOINT_PATTERNS: tuple[str, ...] = ("login", "register")

# Windows with no timestamps for this long are dropped by the idle sweep.
RATE_WINDOW_IDLE_SECONDS: int = 3600

# Minimum spacing between access-triggered idle sweeps.
RATE_SWEEP_INTERVAL_SECONDS: int = 60

# Shared bucket for requests that carry no identifying information.
UNKNOWN_CLIENT_ID: str = "unknown"

# ─── CSRF ─────────────────────────────────────────────────────────────────────

CSRF_TOKEN_BYTES: int = 32  # 256 bits
CSRF_TOKEN_EXPIRY_MINUTES: int = 60
CSRF_MAX_TOKENS_PER_USER: int = 10

# ─── API keys ─────────────────────────────────────────────────────────────────

API_KEY_PREFIX: str = "cafe_"
API_KEY_BODY_LENGTH: int = 32
API_KEY_EXPIRY_DAYS: int = 90
API_KEY_GRACE_DAYS: int = 30
API_KEY_ROTATION_WARNING_DAYS: int = 7
# Expired keys are kept this long after expiry before the sweep drops them.
API_KEY_RETENTION_DAYS: int = 30

# ─── Audit ────────────────────────────────────────────────────────────────────

AUDIT_CAPACITY: int = 10_000
AUDIT_DEFAULT_MAX_RESULTS: int = 100
AUDIT_QUERY_HARD_CAP: int = 1_000
FAILED_LOGIN_ACTIONS: frozenset[str] = frozenset({"Login", "Login Failed"})

# ─── Request / token headers and claims ───────────────────────────────────────

AUTHORIZATION_HEADER: str = "Authorization"
OUTLET_ID_HEADER: str = "X-Outlet-Id"
FORWARDED_FOR_HEADER: str = "X-Forwarded-For"
REAL_IP_HEADER: str = "X-Real-IP"

# Claim names as written by the external AuthService (.NET short claim names).
CLAIM_USER_ID: str = "nameid"
CLAIM_USERNAME: str = "unique_name"
CLAIM_ROLE: str = "role"
CLAIM_DEFAULT_OUTLET: str = "DefaultOutletId"
CLAIM_ASSIGNED_OUTLETS: str = "AssignedOutlets"

ADMIN_ROLE: str = "admin"
MANAGER_ROLE: str = "manager"

# ─── Maintenance ──────────────────────────────────────────────────────────────

MAINTENANCE_SWEEP_INTERVAL_SECONDS: int = 300
