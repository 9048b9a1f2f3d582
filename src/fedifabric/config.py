# fedifabric/config.py
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import PostRequestHook, PreRequestHook


def normalize_url(url: str) -> str:
    """Strips trailing slashes so paths can always be joined with a single '/'."""
    return url.rstrip("/")


class GatewaySettings(BaseSettings):
    """
    Manages user-configurable settings for fedifabric gateways, primarily loaded
    from environment variables (prefixed with `FEDIFABRIC_`) or a .env file.

    Connection values given here are only defaults: arguments passed directly
    to a `Gateway` take precedence.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "secrets.env"),
        env_file_encoding="utf-8",
        env_prefix="FEDIFABRIC_",
        extra="ignore",
        case_sensitive=False,
        arbitrary_types_allowed=True,
    )

    # --- Connection Defaults ---
    url: str | None = Field(default=None, description="Base URL of the instance")
    streaming_url: str | None = Field(
        default=None, description="Streaming API base URL of the instance"
    )
    access_token: str | None = Field(
        default=None, description="Bearer token of the user"
    )
    version: str | None = Field(
        default=None, description="Version string of the instance software"
    )

    # --- HTTP Behavior Settings ---
    request_timeout: float = Field(
        default=30.0, description="Default request timeout in seconds"
    )
    user_agent: str = Field(
        default="fedifabric/0.1.0",
        description="User-Agent header for requests",
    )

    # --- Streaming Settings ---
    streaming_path: str = Field(
        default="/api/v1/streaming",
        description="Path of the multiplexed WebSocket endpoint",
    )
    streaming_open_timeout: float = Field(
        default=10.0, description="Timeout for the WebSocket opening handshake"
    )
    streaming_ping_interval: float | None = Field(
        default=20.0,
        description="Seconds between keepalive pings; None disables them",
    )

    # --- Hook Settings ---
    pre_request_hooks: list[PreRequestHook] = Field(
        default_factory=list,
        description="List of hooks to call before a request is made.",
    )
    post_request_hooks: list[PostRequestHook] = Field(
        default_factory=list,
        description="List of hooks to call after a response is received and parsed.",
    )


class ConnectionConfig(BaseModel):
    """Connection parameters owned by a single Gateway.

    Fields are plain mutable attributes. Assignment is validated, so writing
    `config.url = "https://example.test/"` stores the normalized
    `"https://example.test"`, exactly as construction does.
    """

    model_config = ConfigDict(validate_assignment=True)

    url: str
    streaming_url: str | None = None
    version: str | None = None
    access_token: str | None = None

    @field_validator("url", "streaming_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_url(value)


@lru_cache
def get_settings() -> GatewaySettings:
    """
    Provides access to the gateway settings.

    Settings are loaded from environment variables or .env/secrets.env files.
    The instance is cached for performance.

    Returns:
        GatewaySettings: The settings instance.
    """
    return GatewaySettings()
