from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

from auth.models import ClientCredentials, TokenSet

from .constants import CLICKUP_AUTH_URL, CLICKUP_MCP_URL, CLICKUP_TOKEN_URL, LOGGER


@dataclass(frozen=True)
class GatewaySettings:
    """Process-wide configuration, built once at startup."""

    credentials: ClientCredentials
    api_key: str
    public_url: str | None = None
    token_store_path: str = ".tokens.json"
    use_pkce: bool = False
    timeout: float = 30.0
    refresh_lease_seconds: int = 30
    mcp_url: str = CLICKUP_MCP_URL
    token_url: str = CLICKUP_TOKEN_URL
    authorize_url: str = CLICKUP_AUTH_URL
    seed_tokens: TokenSet | None = None


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    missing = [key for key in ("MCP_API_KEY",) if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    unset = [
        key
        for key in ("CLICKUP_CLIENT_ID", "CLICKUP_CLIENT_SECRET")
        if not os.getenv(key, "").strip()
    ]
    if unset:
        LOGGER.warning("OAuth not configured; %s not set. See / for setup steps.", ", ".join(unset))

    for key in ("CLICKUP_PUBLIC_URL", "CLICKUP_MCP_URL", "CLICKUP_TOKEN_URL", "CLICKUP_AUTH_URL"):
        value = os.getenv(key, "").strip()
        if value and not _is_http_url(value):
            raise RuntimeError(
                f"{key} must be an absolute http(s) URL (for example: https://proxy.example.com)."
            )

    if os.getenv("CLICKUP_REFRESH_TOKEN", "").strip() and not os.getenv(
        "CLICKUP_ACCESS_TOKEN", ""
    ).strip():
        LOGGER.warning("CLICKUP_REFRESH_TOKEN is set without CLICKUP_ACCESS_TOKEN; ignoring it.")


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("CLICKUP_PROXY_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled


def _seed_tokens_from_env() -> TokenSet | None:
    access_token = os.getenv("CLICKUP_ACCESS_TOKEN", "").strip()
    if not access_token:
        return None
    refresh_token = os.getenv("CLICKUP_REFRESH_TOKEN", "").strip() or None
    return TokenSet(access_token=access_token, refresh_token=refresh_token)


def load_settings() -> GatewaySettings:
    public_url = os.getenv("CLICKUP_PUBLIC_URL", "").strip().rstrip("/") or None
    return GatewaySettings(
        credentials=ClientCredentials(
            client_id=os.getenv("CLICKUP_CLIENT_ID", "").strip(),
            client_secret=os.getenv("CLICKUP_CLIENT_SECRET", "").strip(),
        ),
        api_key=os.getenv("MCP_API_KEY", "").strip(),
        public_url=public_url,
        token_store_path=os.getenv("CLICKUP_TOKEN_STORE_PATH", ".tokens.json"),
        use_pkce=is_truthy(os.getenv("CLICKUP_USE_PKCE", "0")),
        timeout=_get_env_float("CLICKUP_TIMEOUT", 30.0),
        refresh_lease_seconds=_get_env_int("CLICKUP_REFRESH_LEASE_SECONDS", 30),
        mcp_url=os.getenv("CLICKUP_MCP_URL", "").strip() or CLICKUP_MCP_URL,
        token_url=os.getenv("CLICKUP_TOKEN_URL", "").strip() or CLICKUP_TOKEN_URL,
        authorize_url=os.getenv("CLICKUP_AUTH_URL", "").strip() or CLICKUP_AUTH_URL,
        seed_tokens=_seed_tokens_from_env(),
    )
