"""Centralized configuration for the Studio Assistant.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/studio-assistant/<VARIABLE_NAME>``.

Secrets are resolved lazily (on each chat request) so that a missing key
fails that request with a :class:`ConfigurationError` naming the variable,
instead of preventing the server from importing at all.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))

_SSM_PREFIX = "/studio-assistant"


class ConfigurationError(OSError):
    """A mandatory setting is missing.  Fatal for the request, never retried."""

    def __init__(self, name: str, hint: str | None = None):
        self.name = name
        self.hint = hint or (
            f"Set {name} in .env (local) or SSM Parameter Store "
            f"{_SSM_PREFIX}/{name} (AWS)."
        )
        super().__init__(f"Missing required configuration: {name}. {self.hint}")


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 lazy import

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"{_SSM_PREFIX}/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _optional_env(name: str) -> str | None:
    """Return a config value from env-var or SSM, or ``None``."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _require_env(name: str, hint: str | None = None) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _optional_env(name)
    if not value:
        raise ConfigurationError(name, hint)
    return value


# ── Mindbody ────────────────────────────────────────────────────────
MINDBODY_BASE_URL: str = os.getenv(
    "MINDBODY_BASE_URL", "https://api.mindbodyonline.com/public/v6",
)
DEFAULT_SITE_ID = "-99"  # Mindbody sandbox site


@dataclass(frozen=True)
class MindbodyCredentials:
    """Everything needed to authenticate against the Mindbody public API.

    ``api_key`` is mandatory.  Staff ``username``/``password`` let the token
    manager issue bearer tokens; a pre-issued ``static_token`` takes
    precedence over both and is never renewed.
    """

    api_key: str
    site_id: str = DEFAULT_SITE_ID
    username: str | None = None
    password: str | None = None
    static_token: str | None = None

    @property
    def has_staff_login(self) -> bool:
        return bool(self.username and self.password)


def load_mindbody_credentials() -> MindbodyCredentials:
    """Read the Mindbody credentials, failing fast when the API key is absent."""
    credentials = MindbodyCredentials(
        api_key=_require_env(
            "MINDBODY_API_KEY",
            "Create an API key at developers.mindbodyonline.com and set "
            "MINDBODY_API_KEY in .env.",
        ),
        site_id=_optional_env("MINDBODY_SITE_ID") or DEFAULT_SITE_ID,
        username=_optional_env("MINDBODY_USERNAME"),
        password=_optional_env("MINDBODY_PASSWORD"),
        static_token=_optional_env("MINDBODY_STAFF_TOKEN"),
    )

    if credentials.static_token:
        logger.debug("Mindbody: using MINDBODY_STAFF_TOKEN (site %s)", credentials.site_id)
    elif not credentials.has_staff_login:
        logger.warning(
            "Mindbody staff credentials not provided; most tools require them. "
            "Set MINDBODY_USERNAME and MINDBODY_PASSWORD, or MINDBODY_STAFF_TOKEN.",
        )
    return credentials


# ── LLM ─────────────────────────────────────────────────────────────

def get_anthropic_api_key() -> str:
    return _require_env(
        "ANTHROPIC_API_KEY",
        "Set ANTHROPIC_API_KEY in .env. Get one at https://console.anthropic.com/",
    )


MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")

# Cheap model for the per-turn tool selection call
SELECTOR_MODEL_NAME: str = os.getenv("SELECTOR_MODEL_NAME", "claude-haiku-4-5")

# Tool-use budget for one chat turn
MAX_TOOL_STEPS: int = min(max(int(os.getenv("MAX_TOOL_STEPS", "10")), 1), 30)

# Coarse wall-clock budget for one streamed turn
CHAT_TIMEOUT_SECONDS: float = float(os.getenv("CHAT_TIMEOUT_SECONDS", "120"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
