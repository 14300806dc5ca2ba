"""Shared pytest configuration and fixtures."""

import asyncio
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import patch

import pytest

from src.config import Settings, get_settings
from src.truenas.client import TruenasClient
from src.truenas.errors import TruenasConnectionError
from src.truenas.models import ConnectionConfig

Reply = dict[str, Any] | None
Responder = Callable[[list[Any]], Reply]


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run e2e tests that hit a real TrueNAS (requires .env with valid credentials)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="Need --run-e2e flag to run")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _no_dotenv(request: pytest.FixtureRequest) -> Generator[None]:
    """Block .env loading so unit tests never pick up real credentials."""
    if "e2e" in request.keywords:
        yield
        return

    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings() -> Generator[Any]:
    """Provide fake settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = type(
        "FakeSettings",
        (),
        {
            "truenas_url": "https://truenas.test",
            "truenas_api_key": "1-fake-truenas-api-key",
            "truenas_verify_ssl": True,
            "truenas_ca_cert": "",
            "truenas_connect_timeout_seconds": 1.0,
            "truenas_call_timeout_seconds": 1.0,
            "truenas_job_timeout_seconds": 30.0,
            "truenas_job_poll_interval_seconds": 0.0,
            "log_level": "WARNING",
        },
    )()
    with (
        patch("src.config.get_settings", return_value=fake_settings),
        patch("src.cli.get_settings", return_value=fake_settings),
        patch("src.action.get_settings", return_value=fake_settings),
    ):
        yield fake_settings


class FakeChannel:
    """In-memory stand-in for the middleware websocket.

    Answers the protocol negotiation with ``negotiation_reply`` and each method
    call with ``responders[method](params)``. A responder returning None sends
    nothing back. ``noise`` messages are pushed before every reply so that
    correlation by id (not by order) is exercised.
    """

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.responders: dict[str, Responder] = {"auth.login_with_api_key": lambda _params: {"result": True}}
        self.negotiation_reply: Reply = {"msg": "connected", "session": "fake-session"}
        self.noise: list[dict[str, Any]] = []
        self.closed = False
        self._inbox: asyncio.Queue[dict[str, Any] | Exception] = asyncio.Queue()

    @property
    def calls(self) -> list[dict[str, Any]]:
        return [m for m in self.sent if m.get("msg") == "method"]

    def methods(self) -> list[str]:
        return [m["method"] for m in self.calls]

    def push(self, message: dict[str, Any]) -> None:
        self._inbox.put_nowait(message)

    def drop(self, reason: str = "connection reset") -> None:
        self.fail(TruenasConnectionError(f"Websocket closed: {reason}"))

    def fail(self, exc: Exception) -> None:
        """Make the next receive() raise ``exc``."""
        self._inbox.put_nowait(exc)

    async def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise TruenasConnectionError("Websocket closed while sending")
        self.sent.append(message)
        if message.get("msg") == "connect":
            if self.negotiation_reply is not None:
                self.push(self.negotiation_reply)
            return
        responder = self.responders.get(message["method"])
        reply = responder(message["params"]) if responder else {"error": {"reason": "Method does not exist"}}
        if reply is None:
            return
        for extra in self.noise:
            self.push(extra)
        self.push({"id": message["id"], "msg": "result", **reply})

    async def receive(self) -> dict[str, Any]:
        item = await self._inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True
        self.drop("closed by client")


@pytest.fixture
def connection_config() -> ConnectionConfig:
    return ConnectionConfig(
        url="https://truenas.test",
        api_key="1-fake-truenas-api-key",
        connect_timeout=1.0,
        call_timeout=1.0,
    )


@pytest.fixture
def fake_channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def client(connection_config: ConnectionConfig, fake_channel: FakeChannel) -> TruenasClient:
    """An unconnected client whose channel factory returns ``fake_channel``."""

    async def factory(_config: ConnectionConfig) -> FakeChannel:
        return fake_channel

    return TruenasClient(connection_config, channel_factory=factory)
