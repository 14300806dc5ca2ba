"""Websocket channel to the TrueNAS middleware."""

import json
import logging
import ssl
from typing import Any, Protocol

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from src.truenas.errors import TruenasConnectionError
from src.truenas.models import ConnectionConfig

logger = logging.getLogger(__name__)

SSL_HINT = "Tip: retry with SSL verification disabled (--no-ssl-verify / disable-ssl-verify: true)"


class Channel(Protocol):
    """A bidirectional JSON message channel."""

    async def send(self, message: dict[str, Any]) -> None: ...

    async def receive(self) -> dict[str, Any]: ...

    async def close(self) -> None: ...


# --- SSL helper ---


def build_ssl_context(config: ConnectionConfig) -> ssl.SSLContext | None:
    """Build the TLS context for a wss:// connection.

    Returns None for plain ws:// URLs. With verification disabled, hostname and
    certificate checks are both turned off. With a CA cert path, that bundle is
    trusted instead of the system store.
    """
    if not config.uses_tls:
        return None
    if not config.verify_ssl:
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx
    if config.ca_cert:
        return ssl.create_default_context(cafile=config.ca_cert)
    return ssl.create_default_context()


def _is_certificate_error(exc: BaseException) -> bool:
    if isinstance(exc, ssl.SSLCertVerificationError):
        return True
    text = str(exc).lower()
    return "self-signed certificate" in text or "unable to verify" in text or "certificate verify failed" in text


class WebSocketChannel:
    """Channel backed by a single websockets client connection."""

    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws

    @classmethod
    async def open(cls, config: ConnectionConfig) -> "WebSocketChannel":
        """Open the websocket, translating network failures into TruenasConnectionError."""
        url = config.websocket_url
        logger.info("Connecting to TrueNAS websocket at %s", url)
        try:
            ws = await connect(
                url,
                ssl=build_ssl_context(config),
                open_timeout=config.connect_timeout,
                max_size=None,
            )
        except TimeoutError as e:
            raise TruenasConnectionError(f"Timed out connecting to {url} after {config.connect_timeout}s") from e
        except (InvalidURI, InvalidHandshake) as e:
            raise TruenasConnectionError(f"Websocket handshake with {url} failed: {e}") from e
        except OSError as e:
            message = f"Cannot connect to TrueNAS at {url}: {e}"
            if _is_certificate_error(e):
                message = f"{message}. {SSL_HINT}"
            raise TruenasConnectionError(message) from e
        return cls(ws)

    async def send(self, message: dict[str, Any]) -> None:
        payload = json.dumps(message)
        logger.debug("Websocket send: %s", payload)
        try:
            await self._ws.send(payload)
        except ConnectionClosed as e:
            raise TruenasConnectionError(f"Websocket closed while sending: {e}") from e

    async def receive(self) -> dict[str, Any]:
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as e:
            raise TruenasConnectionError(f"Websocket closed: {e}") from e
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise TruenasConnectionError(f"Received undecodable frame from TrueNAS: {e}") from e
        logger.debug("Websocket receive: %s", raw)
        try:
            data: object = json.loads(raw)
        except json.JSONDecodeError as e:
            raise TruenasConnectionError(f"Received malformed JSON from TrueNAS: {e}") from e
        if not isinstance(data, dict):
            raise TruenasConnectionError(f"Expected a JSON object from TrueNAS, got {type(data).__name__}")
        return data

    async def close(self) -> None:
        logger.debug("Closing websocket")
        await self._ws.close()
