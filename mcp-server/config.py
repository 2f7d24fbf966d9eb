from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import urlsplit

from dotenv import load_dotenv

VERSION = "3.0.0"
_DEFAULT_CARDAPIO_ID = "d38f4f7c-6223-4d6b-989f-8a62754e3d2a"
_DEFAULT_CARDAPIO_BASE_URL = "https://talkhub.me/cardapios/cardapio_uai/cardapio-cliente.html"


class ConfigError(RuntimeError):
    """Raised when the process cannot start with the given environment."""


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_str(name: str, default: str | None = None) -> str | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


@dataclass(frozen=True)
class Settings:
    database_url: str
    port: int = 3010
    host: str = "0.0.0.0"
    auth_token: str | None = None
    service_name: str = "uai-salgados-mcp"
    version: str = VERSION
    domain: str = "mcp.talkhub.me"
    cardapio_id: str = _DEFAULT_CARDAPIO_ID
    cardapio_base_url: str = _DEFAULT_CARDAPIO_BASE_URL
    log_level: str = "INFO"
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    db_command_timeout: float = 30.0
    keepalive_interval: float = 30.0
    startup_self_test: bool = True
    startup_self_test_delay: float = 2.0

    @property
    def auth_enabled(self) -> bool:
        return bool(self.auth_token)

    @property
    def database_host(self) -> str:
        """Host part of the DSN, safe to expose (no credentials)."""
        try:
            return urlsplit(self.database_url).hostname or ""
        except ValueError:
            return ""

    def public_url(self, path: str = "/") -> str:
        return f"https://{self.domain}{path}"


def load_settings() -> Settings:
    load_dotenv()

    database_url = _env_str("DATABASE_URL")
    if not database_url:
        raise ConfigError("DATABASE_URL is required")

    return Settings(
        database_url=database_url,
        port=_env_int("PORT", 3010),
        host=_env_str("HOST", "0.0.0.0"),
        auth_token=_env_str("MCP_AUTH_TOKEN"),
        service_name=_env_str("SERVICE_NAME", "uai-salgados-mcp"),
        domain=_env_str("DOMAIN", "mcp.talkhub.me"),
        cardapio_id=_env_str("CARDAPIO_ID", _DEFAULT_CARDAPIO_ID),
        cardapio_base_url=_env_str("CARDAPIO_BASE_URL", _DEFAULT_CARDAPIO_BASE_URL),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        db_pool_min_size=max(1, _env_int("DB_POOL_MIN_SIZE", 1)),
        db_pool_max_size=max(1, _env_int("DB_POOL_MAX_SIZE", 10)),
        db_command_timeout=max(1.0, _env_float("DB_COMMAND_TIMEOUT", 30.0)),
        keepalive_interval=max(1.0, _env_float("SSE_KEEPALIVE_SECONDS", 30.0)),
        startup_self_test=_env_bool("STARTUP_SELF_TEST", True),
        startup_self_test_delay=max(0.0, _env_float("STARTUP_SELF_TEST_DELAY", 2.0)),
    )


__all__ = ["ConfigError", "Settings", "VERSION", "load_settings"]
