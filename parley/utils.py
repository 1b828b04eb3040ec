"""
Shared utilities for the conversation service and CLI.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def parse_bool(value: object, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    text = str(value).strip().lower()
    if not text:
        return default
    return text in {"1", "true", "yes", "on"}


def load_env(env_path: Path | None = None) -> None:
    """Load .env file into os.environ. Handles quoted values and spaces.

    Variables already set in the environment win over the file.
    """
    if env_path is None:
        env_path = Path.cwd() / ".env"

    if not env_path.exists():
        return

    for line in env_path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, val = line.split("=", 1)
            val = val.strip().strip('"').strip("'")
            os.environ.setdefault(key.strip(), val)


# =============================================================================
# Configuration (call load_env() before accessing these)
# =============================================================================


@dataclass(frozen=True)
class ServiceSettings:
    host: str
    port: int
    headless: bool
    shutdown_grace_s: float
    log_level: str

    @property
    def base_url(self) -> str:
        url_host = self.host
        if url_host in {"0.0.0.0", "::", "[::]", ""}:
            url_host = "127.0.0.1"
        return f"http://{url_host}:{self.port}"


def get_service_settings() -> ServiceSettings:
    host = (os.getenv("PARLEY_HOST") or "127.0.0.1").strip() or "127.0.0.1"
    port = int(os.getenv("PARLEY_PORT", "3001"))
    try:
        grace = float(os.getenv("PARLEY_SHUTDOWN_GRACE_S", "0.5"))
    except ValueError:
        grace = 0.5
    return ServiceSettings(
        host=host,
        port=port,
        headless=parse_bool(os.getenv("PARLEY_HEADLESS"), default=False),
        shutdown_grace_s=max(0.0, grace),
        log_level=(os.getenv("PARLEY_LOG_LEVEL") or "INFO").strip().upper() or "INFO",
    )


def get_service_url() -> str:
    url = (os.getenv("PARLEY_URL") or "").strip()
    if url:
        return url.rstrip("/")
    return get_service_settings().base_url


def get_state_path() -> Path:
    raw = (os.getenv("PARLEY_STATE_FILE") or "").strip()
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".parley" / "state.json"
