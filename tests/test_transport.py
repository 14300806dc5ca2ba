"""Unit tests for the websocket channel helpers."""

import ssl

import pytest

from src.truenas.errors import TruenasConnectionError
from src.truenas.models import ConnectionConfig
from src.truenas.transport import WebSocketChannel, _is_certificate_error, build_ssl_context

KEY = "1-fake-truenas-api-key"


class TestBuildSslContext:
    def test_plain_ws_has_no_context(self) -> None:
        config = ConnectionConfig(url="http://truenas.test", api_key=KEY)
        assert build_ssl_context(config) is None

    def test_verification_on_by_default(self) -> None:
        config = ConnectionConfig(url="https://truenas.test", api_key=KEY)
        ctx = build_ssl_context(config)
        assert isinstance(ctx, ssl.SSLContext)
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        assert ctx.check_hostname is True

    def test_verification_disabled(self) -> None:
        config = ConnectionConfig(url="https://truenas.test", api_key=KEY, verify_ssl=False)
        ctx = build_ssl_context(config)
        assert isinstance(ctx, ssl.SSLContext)
        assert ctx.verify_mode == ssl.CERT_NONE
        assert ctx.check_hostname is False


class TestIsCertificateError:
    def test_verification_error(self) -> None:
        assert _is_certificate_error(ssl.SSLCertVerificationError("certificate verify failed"))

    def test_self_signed_message(self) -> None:
        assert _is_certificate_error(OSError("self-signed certificate in certificate chain"))

    def test_refused(self) -> None:
        assert not _is_certificate_error(ConnectionRefusedError("Connection refused"))


class _StubConnection:
    def __init__(self, frame: str | bytes) -> None:
        self.frame = frame

    async def recv(self) -> str | bytes:
        return self.frame


class TestWebSocketChannelReceive:
    async def test_undecodable_frame(self) -> None:
        channel = WebSocketChannel(_StubConnection(b"\xff\xfe"))  # type: ignore[arg-type]
        with pytest.raises(TruenasConnectionError, match="undecodable"):
            _ = await channel.receive()

    async def test_malformed_json(self) -> None:
        channel = WebSocketChannel(_StubConnection("{not json"))  # type: ignore[arg-type]
        with pytest.raises(TruenasConnectionError, match="malformed JSON"):
            _ = await channel.receive()

    async def test_non_object(self) -> None:
        channel = WebSocketChannel(_StubConnection("[1, 2]"))  # type: ignore[arg-type]
        with pytest.raises(TruenasConnectionError, match="JSON object"):
            _ = await channel.receive()

    async def test_bytes_frame_decoded(self) -> None:
        channel = WebSocketChannel(_StubConnection(b'{"msg": "connected"}'))  # type: ignore[arg-type]
        assert await channel.receive() == {"msg": "connected"}
