"""
# Configuration Module

This module is the **single source of truth** for runtime configuration of the AgentBuy API.
Values are loaded by **pydantic-settings** from environment variables, optionally seeded from a
config file discovered on disk and loaded with **python-dotenv**.

## Config File Discovery

`get_config_path()` checks, in order:

1. `AGENTBUY_CONFIG_PATH` environment variable (if set and the file exists)
2. `.agentbuy` file in the project root
3. `.env` file in the project root

When nothing is found the application runs from plain environment variables.

## Configuration Groups

- **Server**: `HOST`, `PORT`, `DEBUG`, `ENVIRONMENT`
- **Database**: `MONGODB_URI` (falls back to `DATABASE_URL`), `MONGODB_DATABASE`, timeouts
- **CORS**: `CLIENT_URL` / `FRONTEND_URL` (comma separated), `CORS_ALLOW_ORIGIN_PREFIX`
- **Auth**: identity provider JWT key, algorithms, issuer, API URL, development bypass
- **Business rules**: initial card grant, chat e-mail throttle window, top agent rank cutoff

## Usage Example

```python
from agentbuy.config import settings

if settings.is_development:
    print(settings.mongodb_uri)
```
"""

import os
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv
from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Constants ---
AGENTBUY_FILENAME: str = ".agentbuy"
DEFAULT_ENV_FILENAME: str = ".env"
CONFIG_ENV_VAR: str = "AGENTBUY_CONFIG_PATH"
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent
DEFAULT_CLIENT_URL: str = "http://localhost:3000"


# --- Config file discovery (no logging) ---
def get_config_path() -> Optional[str]:
    """
    Determine the configuration file path based on a fixed precedence order.

    Returns:
        Optional[str]: The path to the configuration file, or `None` if not found.
    """
    env_path: Optional[str] = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    agentbuy_path: Path = PROJECT_ROOT / AGENTBUY_FILENAME
    if agentbuy_path.exists():
        return str(agentbuy_path)
    env_path_file: Path = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if env_path_file.exists():
        return str(env_path_file)
    return None


CONFIG_PATH: Optional[str] = get_config_path()
if CONFIG_PATH:
    load_dotenv(dotenv_path=CONFIG_PATH, override=False)


class Settings(BaseSettings):
    """
    Application configuration settings model.

    Every field can be overridden through the environment. Only the database URI is required
    at runtime, and its absence is reported when the database manager first connects rather
    than at import time so that tooling (tests, `--help`) works without a database.
    """

    model_config = SettingsConfigDict(
        env_file=CONFIG_PATH if CONFIG_PATH else None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
    )

    # Server configuration
    HOST: str = "127.0.0.1"
    PORT: int = 5000
    DEBUG: bool = False
    ENVIRONMENT: str = "production"
    LOG_LEVEL: str = "INFO"

    # MongoDB configuration
    MONGODB_URI: Optional[str] = None
    DATABASE_URL: Optional[str] = None
    MONGODB_DATABASE: str = "agentbuy"
    MONGODB_CONNECTION_TIMEOUT: int = 10000
    MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000

    # CORS configuration
    CLIENT_URL: Optional[str] = None
    FRONTEND_URL: Optional[str] = None
    CORS_ALLOW_ORIGIN_PREFIX: bool = False  # Legacy startswith() matching, off unless requested

    # Identity provider configuration
    AUTH_JWT_KEY: SecretStr = SecretStr("")
    AUTH_JWT_ALGORITHMS: str = "RS256"
    AUTH_ISSUER: Optional[str] = None
    AUTH_API_URL: str = "https://api.clerk.com/v1"
    AUTH_SECRET_KEY: SecretStr = SecretStr("")
    AUTH_HTTP_TIMEOUT: float = 5.0
    DISABLE_AUTH: bool = False
    DEV_USER_EMAIL: str = "dev@agentbuy.mn"
    DEFAULT_ROLE: str = "user"

    # Business rules
    INITIAL_CARDS: int = 5
    CHAT_EMAIL_THROTTLE_MINUTES: int = 30
    TOP_AGENT_RANK_LIMIT: int = 10

    # CLI defaults for the one-off admin commands
    DEFAULT_AGENT_EMAIL: str = "agent@agentbuy.mn"
    DEFAULT_ADMIN_EMAIL: str = "admin@agentbuy.mn"

    @field_validator("ENVIRONMENT", mode="before")
    @classmethod
    def normalize_environment(cls, v: Any) -> Any:
        """Lower-case the environment name. Unset or blank means production."""
        if v is None or not str(v).strip():
            return "production"
        return str(v).strip().lower()

    @field_validator("DEFAULT_ROLE", mode="before")
    @classmethod
    def validate_default_role(cls, v: Any) -> Any:
        if str(v).strip().lower() not in ("user", "agent", "admin"):
            raise ValueError("DEFAULT_ROLE must be one of: user, agent, admin")
        return str(v).strip().lower()

    @field_validator("INITIAL_CARDS", "TOP_AGENT_RANK_LIMIT", mode="before")
    @classmethod
    def validate_positive_int(cls, v: Any, info: Any) -> Any:
        if int(v) < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return int(v)

    @property
    def mongodb_uri(self) -> Optional[str]:
        """Effective MongoDB URI: `MONGODB_URI`, then `DATABASE_URL`."""
        return self.MONGODB_URI or self.DATABASE_URL or None

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production" and not self.DEBUG

    @property
    def jwt_algorithms(self) -> List[str]:
        return [a.strip() for a in self.AUTH_JWT_ALGORITHMS.split(",") if a.strip()]


settings: Settings = Settings()
