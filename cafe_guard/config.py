"""Config loading for cafe_guard.

Reads `.cafe_guard/config.yaml` (or `~/.cafe_guard/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field or invalid limits.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided, for testing or explicit override)
  2. CAFE_GUARD_CONFIG environment variable (if set)
  3. `.cafe_guard/config.yaml` (working directory, for development)
  4. `~/.cafe_guard/config.yaml` (home directory, for production deployments)

Environment variable overrides (applied after the file):
  CAFE_GUARD_PORT       overrides server.port
  CAFE_GUARD_JWT_SECRET overrides auth.jwt_secret
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional

import yaml

from cafe_guard import constants
from cafe_guard.utils.logger import get_logger

logger = get_logger(__name__)

SUPPORTED_CONFIG_VERSION = 1
SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

DEFAULT_CONFIG_PATHS = [
    ".cafe_guard/config.yaml",
    "~/.cafe_guard/config.yaml",
]

# Development-only signing secret. Startup logs a warning while it is in use.
DEV_JWT_SECRET = "cafe-guard-development-secret-change-me-0123456789"


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 7071


@dataclass
class RateLimitConfig:
    """Sliding-window thresholds. Checked in order minute → hour → auth."""

    max_per_minute: int = constants.MAX_REQUESTS_PER_MINUTE
    max_per_hour: int = constants.MAX_REQUESTS_PER_HOUR
    max_auth_per_hour: int = constants.MAX_AUTH_ATTEMPTS_PER_HOUR
    block_minutes: int = constants.BLOCK_DURATION_MINUTES
    auth_endpoint_patterns: list[str] = field(
        default_factory=lambda: list(constants.AUTH_ENDPOINT_PATTERNS)
    )
    window_idle_seconds: int = constants.RATE_WINDOW_IDLE_SECONDS
    sweep_interval_seconds: int = constants.RATE_SWEEP_INTERVAL_SECONDS


@dataclass
class CsrfConfig:
    expiry_minutes: int = constants.CSRF_TOKEN_EXPIRY_MINUTES
    max_tokens_per_user: int = constants.CSRF_MAX_TOKENS_PER_USER


@dataclass
class ApiKeyConfig:
    prefix: str = constants.API_KEY_PREFIX
    expiry_days: int = constants.API_KEY_EXPIRY_DAYS
    grace_days: int = constants.API_KEY_GRACE_DAYS
    rotation_warning_days: int = constants.API_KEY_ROTATION_WARNING_DAYS
    retention_days: int = constants.API_KEY_RETENTION_DAYS


@dataclass
class AuditConfig:
    capacity: int = constants.AUDIT_CAPACITY
    log_api_calls: bool = False


@dataclass
class AuthConfig:
    jwt_secret: str = DEV_JWT_SECRET
    jwt_algorithms: list[str] = field(default_factory=lambda: ["HS256"])
    token_expiry_minutes: int = 1440


@dataclass
class MaintenanceConfig:
    sweep_interval_seconds: int = constants.MAINTENANCE_SWEEP_INTERVAL_SECONDS


@dataclass
class OutletSeed:
    id: str
    outlet_name: str
    is_active: bool = True


@dataclass
class Config:
    """Root configuration object populated from .cafe_guard/config.yaml.

    All fields have safe defaults; cafe_guard can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    server: ServerConfig = field(default_factory=ServerConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    csrf: CsrfConfig = field(default_factory=CsrfConfig)
    api_keys: ApiKeyConfig = field(default_factory=ApiKeyConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    maintenance: MaintenanceConfig = field(default_factory=MaintenanceConfig)
    outlets: list[OutletSeed] = field(default_factory=list)
    path: Optional[str] = None

    @classmethod
    def defaults(cls) -> "Config":
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are ignored.

        Raises:
            SystemExit(1): On a non-positive limit or a malformed outlet entry.
        """
        rate_limit = _section(RateLimitConfig, raw.get("rate_limit"))
        csrf = _section(CsrfConfig, raw.get("csrf"))
        api_keys = _section(ApiKeyConfig, raw.get("api_keys"))
        audit = _section(AuditConfig, raw.get("audit"))
        maintenance = _section(MaintenanceConfig, raw.get("maintenance"))

        _require_positive("rate_limit.max_per_minute", rate_limit.max_per_minute)
        _require_positive("rate_limit.max_per_hour", rate_limit.max_per_hour)
        _require_positive("rate_limit.max_auth_per_hour", rate_limit.max_auth_per_hour)
        _require_positive("rate_limit.block_minutes", rate_limit.block_minutes)
        _require_positive("csrf.expiry_minutes", csrf.expiry_minutes)
        _require_positive("csrf.max_tokens_per_user", csrf.max_tokens_per_user)
        _require_positive("api_keys.expiry_days", api_keys.expiry_days)
        _require_positive("api_keys.grace_days", api_keys.grace_days)
        _require_positive("audit.capacity", audit.capacity)
        _require_positive(
            "maintenance.sweep_interval_seconds", maintenance.sweep_interval_seconds
        )

        outlets: list[OutletSeed] = []
        for item in raw.get("outlets") or []:
            if not isinstance(item, dict) or not item.get("id"):
                _fail(f"Invalid outlets entry: {item!r}. Each outlet needs an 'id'.")
            outlets.append(
                OutletSeed(
                    id=str(item["id"]),
                    outlet_name=str(item.get("outlet_name", item["id"])),
                    is_active=bool(item.get("is_active", True)),
                )
            )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            server=_section(ServerConfig, raw.get("server")),
            rate_limit=rate_limit,
            csrf=csrf,
            api_keys=api_keys,
            audit=audit,
            auth=_section(AuthConfig, raw.get("auth")),
            maintenance=maintenance,
            outlets=outlets,
            path=path,
        )


def _section(cls: type, raw: Any) -> Any:
    """Build a section dataclass from a YAML mapping, ignoring unknown keys."""
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        _fail(f"Config section for {cls.__name__} must be a mapping, got {type(raw).__name__}.")
    known = {k: v for k, v in raw.items() if k in cls.__dataclass_fields__}
    return cls(**known)


def _require_positive(name: str, value: Any) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        _fail(f"{name} must be a positive integer, got {value!r}.")


def _fail(message: str) -> NoReturn:
    print(f"CONFIG ERROR: {message}", file=sys.stderr)
    raise SystemExit(1)


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate cafe_guard configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes the error to stderr and raises SystemExit(1).

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, invalid limits, or invalid ``CAFE_GUARD_PORT``.
    """
    search_paths = [
        p for p in (config_path, os.environ.get("CAFE_GUARD_CONFIG")) if p
    ] + DEFAULT_CONFIG_PATHS
    found_path = _first_existing(search_paths)

    if found_path is None:
        logger.info("No config file found, using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        _warn_insecure(config)
        return config

    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(f"Failed to parse {found_path}: {exc}")
    except OSError as exc:
        _fail(f"Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    version = raw.get("version")
    if version is None:
        _fail(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)
    _warn_insecure(config)

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        audit_capacity=config.audit.capacity,
        outlets=len(config.outlets),
    )
    return config


def _first_existing(candidates: list[str]) -> Optional[str]:
    return next(
        (p for p in map(os.path.expanduser, candidates) if os.path.isfile(p)),
        None,
    )


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Raises:
        SystemExit(1): If CAFE_GUARD_PORT is set but not a valid integer.
    """
    env_port = os.environ.get("CAFE_GUARD_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _fail(f"CAFE_GUARD_PORT environment variable is not a valid integer: '{env_port}'")

    env_secret = os.environ.get("CAFE_GUARD_JWT_SECRET")
    if env_secret:
        config.auth.jwt_secret = env_secret


def _warn_insecure(config: Config) -> None:
    if config.auth.jwt_secret == DEV_JWT_SECRET:
        logger.warning(
            "SECURITY WARNING: using the built-in development JWT secret. "
            "Set CAFE_GUARD_JWT_SECRET or auth.jwt_secret before deploying."
        )
    if config.server.host == "0.0.0.0":
        logger.warning(
            "cafe_guard is configured to bind on 0.0.0.0 (all interfaces)"
        )
