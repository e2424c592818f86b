import os
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional

from dotenv import load_dotenv

VERSION = "1.0.0"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


@dataclass
class ClientConfig:
    # Quickbase
    realm: str = ""
    server: str = "api.quickbase.com"
    version: str = "v1"

    # Auth
    user_token: str = ""
    temp_token: str = ""
    app_token: str = ""

    user_agent: str = ""

    auto_consume_temp_tokens: bool = True
    auto_renew_temp_tokens: bool = True

    # Throttle
    connection_limit: int = 10
    connection_limit_period: int = 1000  # ms
    error_on_connection_limit: bool = False

    # Transport
    proxy: Optional[Dict[str, str]] = None
    max_retries: int = 0

    @classmethod
    def from_env(cls, **overrides: Any) -> "ClientConfig":
        """Read QB_* settings from the environment (and a .env file, if present)."""
        load_dotenv()

        proxy_url = os.getenv("QB_PROXY")
        cfg = cls(
            realm=os.getenv("QB_REALMID", ""),
            server=os.getenv("QB_SERVER", "api.quickbase.com"),
            version=os.getenv("QB_API_VERSION", "v1"),
            user_token=os.getenv("QB_USER_TOKEN", ""),
            temp_token=os.getenv("QB_TEMP_TOKEN", ""),
            app_token=os.getenv("QB_APP_TOKEN", ""),
            user_agent=os.getenv("QB_USER_AGENT", ""),
            auto_consume_temp_tokens=_env_bool("QB_AUTO_CONSUME_TEMP_TOKENS", "true"),
            auto_renew_temp_tokens=_env_bool("QB_AUTO_RENEW_TEMP_TOKENS", "true"),
            connection_limit=int(os.getenv("QB_CONNECTION_LIMIT", "10")),
            connection_limit_period=int(os.getenv("QB_CONNECTION_LIMIT_PERIOD", "1000")),
            error_on_connection_limit=_env_bool("QB_ERROR_ON_CONNECTION_LIMIT", "false"),
            proxy={"http": proxy_url, "https": proxy_url} if proxy_url else None,
            max_retries=int(os.getenv("QB_MAX_RETRIES", "0")),
        )
        return cfg.merged(overrides) if overrides else cfg

    @classmethod
    def field_names(cls) -> tuple:
        return tuple(f.name for f in fields(cls))

    def merged(self, options: Dict[str, Any]) -> "ClientConfig":
        """Return a copy with `options` applied on top. Unknown keys are rejected."""
        unknown = set(options) - set(self.field_names())
        if unknown:
            raise TypeError(f"Unknown Quick Base option(s): {', '.join(sorted(unknown))}")
        data = self.to_dict()
        data.update(options)
        return ClientConfig(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
