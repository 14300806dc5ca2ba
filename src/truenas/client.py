"""Websocket client for the TrueNAS SCALE middleware.

One client owns one channel. ``connect()`` opens it, negotiates the protocol
and authenticates with an API key. After that, ``call_method()`` sends
correlated calls: every request carries a fresh integer id and resolves only
when a response with the same id arrives. A single reader task dispatches
inbound messages to the waiting futures by id, so unrelated traffic (events,
late replies) never gets mistaken for a response.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from itertools import count
from types import TracebackType
from typing import Any, Self

from src.truenas.errors import (
    AuthenticationError,
    AuthFailureKind,
    CallTimeoutError,
    MethodError,
    TruenasConnectionError,
)
from src.truenas.models import ConnectionConfig
from src.truenas.transport import Channel, WebSocketChannel

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "1"
AUTH_METHOD = "auth.login_with_api_key"

ChannelFactory = Callable[[ConnectionConfig], Awaitable[Channel]]


def classify_auth_failure(reason: str) -> AuthFailureKind:
    """Classify an authentication error message for diagnostics."""
    text = reason.lower()
    if "expired" in text or "revoked" in text:
        return AuthFailureKind.EXPIRED
    if any(word in text for word in ("invalid", "malformed", "not found", "incorrect", "bad")):
        return AuthFailureKind.INVALID
    return AuthFailureKind.OTHER


def _method_error(method: str, error: object) -> MethodError:
    """Build a MethodError from the ``error`` field of a response."""
    if not isinstance(error, dict):
        return MethodError(method, str(error))
    reason = error.get("reason") or error.get("message") or "unknown error"  # pyright: ignore[reportAny]
    errno = error.get("error")  # pyright: ignore[reportAny]
    error_type = error.get("type")  # pyright: ignore[reportAny]
    return MethodError(
        method,
        str(reason).strip(),  # pyright: ignore[reportAny]
        errno=errno if isinstance(errno, int) else None,
        error_type=str(error_type) if error_type else None,  # pyright: ignore[reportAny]
    )


class TruenasClient:
    """Connection manager and correlated-call layer for one TrueNAS session."""

    def __init__(self, config: ConnectionConfig, channel_factory: ChannelFactory | None = None) -> None:
        self.config = config
        self._channel_factory: ChannelFactory = channel_factory or WebSocketChannel.open
        self._channel: Channel | None = None
        self._reader: asyncio.Task[None] | None = None
        self._ids = count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._authenticated = False
        self._closed_reason: str | None = None

    @property
    def connected(self) -> bool:
        return self._channel is not None and self._authenticated

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    # --- Connection manager ---

    async def connect(self) -> None:
        """Open the channel, negotiate the protocol and authenticate.

        Raises TruenasConnectionError for network or negotiation failures and
        AuthenticationError when the API key is rejected. The channel is torn
        down before either is raised; nothing is retried.
        """
        if self._channel is not None:
            raise TruenasConnectionError("Client is already connected")

        self._channel = await self._channel_factory(self.config)
        self._closed_reason = None
        try:
            await self._negotiate()
            self._reader = asyncio.create_task(self._dispatch_loop(), name="truenas-dispatch")
            await self._authenticate()
        except BaseException:
            await self.disconnect()
            raise
        logger.info("Authenticated with TrueNAS at %s", self.config.url)

    async def _negotiate(self) -> None:
        channel = self._require_channel()
        await channel.send({"msg": "connect", "version": PROTOCOL_VERSION, "support": [PROTOCOL_VERSION]})
        try:
            response = await asyncio.wait_for(channel.receive(), timeout=self.config.connect_timeout)
        except TimeoutError as e:
            raise TruenasConnectionError(
                f"No protocol negotiation reply within {self.config.connect_timeout}s"
            ) from e
        if response.get("msg") != "connected":
            raise TruenasConnectionError(f"TrueNAS rejected the websocket session: {response}")
        logger.debug("Protocol negotiated (session=%s)", response.get("session"))

    async def _authenticate(self) -> None:
        try:
            result = await self._call(AUTH_METHOD, [self.config.api_key])
        except MethodError as e:
            kind = classify_auth_failure(e.reason)
            raise AuthenticationError(f"Authentication failed ({kind}): {e.reason}", kind) from e
        if result is False:
            raise AuthenticationError("Authentication failed (invalid): API key rejected", AuthFailureKind.INVALID)
        self._authenticated = True

    async def disconnect(self) -> None:
        """Close the channel and fail anything still waiting. Safe to call twice."""
        self._authenticated = False
        reader, self._reader = self._reader, None
        if reader is not None:
            _ = reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._fail_pending(TruenasConnectionError("Connection closed"))
        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                await channel.close()
            except Exception:
                logger.debug("Error while closing channel", exc_info=True)
            logger.info("Disconnected from TrueNAS")

    # --- Correlated calls ---

    async def call_method(self, method: str, params: list[Any] | None = None) -> Any:
        """Call a middleware method and return its result.

        Raises MethodError when the server answers with an error,
        CallTimeoutError when no matching response arrives within
        ``call_timeout``, and TruenasConnectionError when the session is not
        authenticated or the channel drops.
        """
        if not self.connected:
            reason = self._closed_reason or "Not connected"
            raise TruenasConnectionError(f"{reason}; cannot call {method}")
        return await self._call(method, params or [])

    async def _call(self, method: str, params: list[Any]) -> Any:
        channel = self._require_channel()
        message_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future
        try:
            await channel.send({"id": message_id, "msg": "method", "method": method, "params": params})
            logger.debug("Sent call %d: %s", message_id, method)
            try:
                response: dict[str, Any] = await asyncio.wait_for(future, timeout=self.config.call_timeout)
            except TimeoutError as e:
                raise CallTimeoutError(
                    f"No response to {method} (id {message_id}) within {self.config.call_timeout}s"
                ) from e
        finally:
            _ = self._pending.pop(message_id, None)

        if "error" in response and response["error"] is not None:
            raise _method_error(method, response["error"])
        return response.get("result")

    def _require_channel(self) -> Channel:
        if self._channel is None:
            raise TruenasConnectionError(self._closed_reason or "Not connected")
        return self._channel

    async def _dispatch_loop(self) -> None:
        channel = self._require_channel()
        while True:
            try:
                message = await channel.receive()
            except TruenasConnectionError as e:
                self._mark_lost(e)
                return
            except Exception as e:
                self._mark_lost(TruenasConnectionError(f"Error reading from TrueNAS: {e!r}"))
                return
            self._dispatch(message)

    def _mark_lost(self, exc: TruenasConnectionError) -> None:
        logger.warning("TrueNAS channel lost: %s", exc)
        self._closed_reason = str(exc)
        self._authenticated = False
        self._fail_pending(exc)

    def _dispatch(self, message: dict[str, Any]) -> None:
        message_id = message.get("id")
        future = self._pending.get(message_id) if isinstance(message_id, int) else None
        if future is None:
            logger.debug("Ignoring uncorrelated message: msg=%s id=%s", message.get("msg"), message_id)
            return
        if not future.done():
            future.set_result(message)

    def _fail_pending(self, exc: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)
        self._pending.clear()
