"""Connection settings and response shapes for the TrueNAS middleware API."""

import re
from enum import StrEnum
from typing import TypedDict

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.truenas.errors import ConfigurationError

MIN_API_KEY_LENGTH = 10
WEBSOCKET_PATH = "/websocket"

_HTTP_URL_RE = re.compile(r"^https?://.+")


class Action(StrEnum):
    STATUS = "status"
    STOP = "stop"
    START = "start"
    RESTART = "restart"


class JobState(StrEnum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    ABORTED = "ABORTED"


# --- Response TypedDicts ---


class TruenasJobProgress(TypedDict, total=False):
    percent: float
    description: str


class TruenasJobEntry(TypedDict, total=False):
    id: int
    method: str
    state: str
    progress: TruenasJobProgress
    error: str


class TruenasAppEntry(TypedDict, total=False):
    name: str
    state: str
    version: str
    human_version: str
    upgrade_available: bool


# --- Connection config ---


class ConnectionConfig(BaseModel):
    """Target, credential and TLS settings for one client. Immutable."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(description="TrueNAS base URL, e.g. https://truenas.local")
    api_key: str = Field(repr=False, description="TrueNAS API key")
    verify_ssl: bool = Field(default=True, description="Verify the server TLS certificate")
    ca_cert: str = Field(default="", description="Optional CA bundle used when verifying")
    connect_timeout: float = Field(default=10.0, gt=0)
    call_timeout: float = Field(default=30.0, gt=0)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if not _HTTP_URL_RE.match(value):
            raise ValueError("truenas-url must be a valid HTTP/HTTPS URL (e.g., https://truenas.local)")
        return value.rstrip("/")

    @field_validator("api_key")
    @classmethod
    def _check_api_key(cls, value: str) -> str:
        if not value:
            raise ValueError("api-key is required")
        if len(value) < MIN_API_KEY_LENGTH:
            raise ValueError("api-key appears to be too short. Please check your TrueNAS API key")
        return value

    @property
    def websocket_url(self) -> str:
        """The middleware websocket endpoint: http(s) becomes ws(s), plus /websocket."""
        return "ws" + self.url[len("http") :] + WEBSOCKET_PATH

    @property
    def uses_tls(self) -> bool:
        return self.url.startswith("https://")


def build_connection_config(
    url: str,
    api_key: str,
    verify_ssl: bool = True,
    ca_cert: str = "",
    connect_timeout: float = 10.0,
    call_timeout: float = 30.0,
) -> ConnectionConfig:
    """Validate raw values into a ConnectionConfig, raising ConfigurationError on bad input."""
    try:
        return ConnectionConfig(
            url=url,
            api_key=api_key,
            verify_ssl=verify_ssl,
            ca_cert=ca_cert,
            connect_timeout=connect_timeout,
            call_timeout=call_timeout,
        )
    except ValidationError as e:
        messages = "; ".join(str(err["msg"]).removeprefix("Value error, ") for err in e.errors())
        raise ConfigurationError(messages) from e


def validate_app_name(app_name: str) -> str:
    """Return the stripped app name, or raise ConfigurationError when empty."""
    if not app_name or not app_name.strip():
        raise ConfigurationError("app-name cannot be empty")
    return app_name.strip()


def parse_action(action: str) -> Action:
    """Parse an action name case-insensitively."""
    try:
        return Action(action.strip().lower())
    except ValueError:
        supported = ", ".join(a.value for a in Action)
        raise ConfigurationError(f"Invalid action: {action}. Supported actions: {supported}") from None
