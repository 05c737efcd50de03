from __future__ import annotations

import os
import re
import threading
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx


# Environment variable names (kept identical to the container deployment docs)
ENV_VAULT_ADDR = "VAULT_ADDR"
ENV_ROOT_TOKEN_SECRET_ID = "ROOT_TOKEN_SECRET_ID"
ENV_RECOVERY_KEYS_SECRET_ID = "RECOVERY_KEYS_SECRET_ID"
ENV_STORED_SHARES = "VAULT_STORED_SHARES"
ENV_RECOVERY_SHARES = "VAULT_RECOVERY_SHARES"
ENV_RECOVERY_THRESHOLD = "VAULT_RECOVERY_THRESHOLD"
ENV_CHECK_INTERVAL = "CHECK_INTERVAL"
ENV_SKIP_VERIFY = "VAULT_SKIP_VERIFY"
ENV_HTTP_TIMEOUT = "VAULT_HTTP_TIMEOUT"

DEFAULT_VAULT_ADDR = "https://127.0.0.1:8200"
DEFAULT_CHECK_INTERVAL = 10.0
DEFAULT_HTTP_TIMEOUT = 15.0


class ConfigError(RuntimeError):
    """Missing or malformed configuration value."""


@dataclass(frozen=True)
class Config:
    """
    Process-wide settings, resolved once at startup and passed explicitly
    to the health monitor and the initializer.

    Fields
    - vault_addr: base URL of the cluster (no trailing slash).
    - root_token_secret_id / recovery_keys_secret_id: Secrets Manager ids.
    - stored_shares, recovery_shares, recovery_threshold: init parameters.
    - check_interval: seconds between health checks.
    - insecure_skip_verify: skip TLS certificate verification for the cluster.
      Defaults to True because the sidecar talks to Vault over the pod-local
      network with a self-signed certificate.
    - http_timeout: per-request timeout for cluster calls, in seconds.
    """

    root_token_secret_id: str
    recovery_keys_secret_id: str
    vault_addr: str = DEFAULT_VAULT_ADDR
    stored_shares: int = 1
    recovery_shares: int = 1
    recovery_threshold: int = 1
    check_interval: float = DEFAULT_CHECK_INTERVAL
    insecure_skip_verify: bool = True
    http_timeout: Optional[float] = DEFAULT_HTTP_TIMEOUT

    def __post_init__(self) -> None:
        if not self.root_token_secret_id:
            raise ConfigError(f"{ENV_ROOT_TOKEN_SECRET_ID} must be set and not empty")
        if not self.recovery_keys_secret_id:
            raise ConfigError(f"{ENV_RECOVERY_KEYS_SECRET_ID} must be set and not empty")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        env = os.environ if environ is None else environ
        return cls(
            vault_addr=vault_addr_from_env(env, ENV_VAULT_ADDR, DEFAULT_VAULT_ADDR),
            root_token_secret_id=_require(env, ENV_ROOT_TOKEN_SECRET_ID),
            recovery_keys_secret_id=_require(env, ENV_RECOVERY_KEYS_SECRET_ID),
            stored_shares=int_from_env(env, ENV_STORED_SHARES, 1),
            recovery_shares=int_from_env(env, ENV_RECOVERY_SHARES, 1),
            recovery_threshold=int_from_env(env, ENV_RECOVERY_THRESHOLD, 1),
            check_interval=duration_from_env(env, ENV_CHECK_INTERVAL, DEFAULT_CHECK_INTERVAL),
            insecure_skip_verify=bool_from_env(env, ENV_SKIP_VERIFY, True),
            http_timeout=duration_from_env(env, ENV_HTTP_TIMEOUT, DEFAULT_HTTP_TIMEOUT),
        )


def _getenv(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    val = env.get(name)
    return val if val not in (None, "") else default


def _require(env: Mapping[str, str], name: str) -> str:
    val = _getenv(env, name)
    if not val:
        raise ConfigError(f"{name} must be set and not empty")
    return val


def vault_addr_from_env(env: Mapping[str, str], name: str, default: str) -> str:
    val = (_getenv(env, name) or default).strip().rstrip("/")
    try:
        url = httpx.URL(val)
    except httpx.InvalidURL as ex:
        raise ConfigError(f"failed to parse {name}={val!r}: {ex}") from ex
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigError(f"failed to parse {name}={val!r}: expected an http(s) URL with a host")
    return val


def int_from_env(env: Mapping[str, str], name: str, default: int) -> int:
    val = _getenv(env, name)
    if val is None:
        return default
    try:
        return int(val.strip())
    except ValueError as ex:
        raise ConfigError(f"failed to parse {name}={val!r}: not an integer") from ex


_TRUE = {"1", "t", "true"}
_FALSE = {"0", "f", "false"}


def bool_from_env(env: Mapping[str, str], name: str, default: bool) -> bool:
    val = _getenv(env, name)
    if val is None:
        return default
    norm = val.strip().lower()
    if norm in _TRUE:
        return True
    if norm in _FALSE:
        return False
    raise ConfigError(f"failed to parse {name}={val!r}: not a boolean")


def duration_from_env(env: Mapping[str, str], name: str, default: float) -> float:
    val = _getenv(env, name)
    if val is None:
        return default
    try:
        return parse_duration(val)
    except ValueError as ex:
        raise ConfigError(f"failed to parse {name}={val!r}: {ex}") from ex


_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(raw: str) -> float:
    """Parse a duration string into seconds.

    Accepts Go-style durations ("500ms", "1m30s", "1.5h") and bare numbers,
    which are taken as seconds ("30" -> 30.0). Negative and zero durations
    are rejected.
    """
    s = raw.strip()
    if not s:
        raise ValueError("empty duration")
    if s[-1].isdigit() or s[-1] == ".":
        s = s + "s"

    total = 0.0
    pos = 0
    for m in _PART_RE.finditer(s):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _UNIT_SECONDS[m.group(2)]
        pos = m.end()
    if pos != len(s):
        raise ValueError(f"invalid duration {raw!r}")
    if total <= 0:
        raise ValueError(f"duration must be positive, got {raw!r}")
    # Event.wait() and socket timeouts overflow past this
    if total > threading.TIMEOUT_MAX:
        raise ValueError(f"duration {raw!r} is out of range")
    return total


def format_duration(seconds: float) -> str:
    """Render seconds compactly for log lines ("10s", "500ms", "1m30s")."""
    if seconds < 1e-6:
        return f"{seconds * 1e9:g}ns"
    if seconds < 1e-3:
        return f"{seconds * 1e6:g}us"
    if seconds < 1:
        return f"{seconds * 1e3:g}ms"
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    out = ""
    if hours:
        out += f"{hours}h"
    if hours or minutes:
        out += f"{minutes}m"
    return out + f"{secs:g}s"


__all__ = [
    "Config",
    "ConfigError",
    "parse_duration",
    "format_duration",
    "int_from_env",
    "vault_addr_from_env",
    "bool_from_env",
    "duration_from_env",
]
