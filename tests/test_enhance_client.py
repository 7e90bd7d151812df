"""
Tests for the remote enhancement client, using httpx.MockTransport.
"""
import asyncio
import json

import httpx
import pytest

from realty_enhance.cancellation import CancellationToken, OperationCancelled
from realty_enhance.config import EnhanceAPIConfig
from realty_enhance.enhance_client import (
    EnhanceClient,
    EnhanceError,
    NotAuthenticatedError,
    OutOfCreditsError,
    RateLimitedError,
    is_image_bytes,
)
from realty_enhance.queue_controller import EnhancementSettings
from realty_enhance.records import ImageRecord

from conftest import make_jpeg

BASE_URL = "https://fotos.example.com"


def make_client(handler) -> EnhanceClient:
    config = EnhanceAPIConfig(base_url=BASE_URL, session_token="")
    return EnhanceClient(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def enhance_once(handler, settings=None, token=None):
    record = ImageRecord(source_bytes=make_jpeg(), filename="front.jpg")

    async def scenario():
        client = make_client(handler)
        try:
            return await client.enhance(record, settings or EnhancementSettings(), token or CancellationToken())
        finally:
            await client.client.aclose()

    return asyncio.run(scenario())


class TestEnhance:

    def test_success(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = request.content
            return httpx.Response(200, json={
                "success": True,
                "enhancedImageUrl": "https://replicate.delivery/out.png",
                "message": "Photo enhanced",
                "remainingCredits": 7,
            })

        result = enhance_once(handler, EnhancementSettings(preset="premium", strength=120, face_enhance=True))

        assert result.url == "https://replicate.delivery/out.png"
        assert result.remaining_credits == 7
        assert seen["method"] == "POST"
        assert seen["path"] == "/api/enhance"
        body = seen["body"]
        assert b'name="image"; filename="front.jpg"' in body
        assert b'name="preset"' in body
        assert b"premium" in body
        assert json.dumps({"strength": 120, "faceEnhance": True}).encode() in body

    def test_server_error_message_is_surfaced(self):
        def handler(request):
            return httpx.Response(500, json={"error": "Something went wrong enhancing the photo"})

        with pytest.raises(EnhanceError) as exc_info:
            enhance_once(handler)
        assert str(exc_info.value) == "Something went wrong enhancing the photo"
        assert exc_info.value.status_code == 500

    def test_error_without_body_uses_default_message(self):
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        with pytest.raises(EnhanceError, match="Enhancement failed"):
            enhance_once(handler)

    def test_not_authenticated(self):
        def handler(request):
            return httpx.Response(401, json={"error": "You must be logged in", "requireLogin": True})

        with pytest.raises(NotAuthenticatedError):
            enhance_once(handler)

    def test_out_of_credits(self):
        def handler(request):
            return httpx.Response(402, json={"error": "No credits left", "noCredits": True})

        with pytest.raises(OutOfCreditsError, match="No credits left"):
            enhance_once(handler)

    def test_rate_limited(self):
        def handler(request):
            return httpx.Response(429, json={"error": "Too many requests", "retryAfter": 120})

        with pytest.raises(RateLimitedError) as exc_info:
            enhance_once(handler)
        assert exc_info.value.retry_after == 120

    def test_malformed_success_body(self):
        def handler(request):
            return httpx.Response(200, json={"success": True})

        with pytest.raises(EnhanceError, match="Unexpected response"):
            enhance_once(handler)

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(EnhanceError, match="Network error"):
            enhance_once(handler)

    def test_cancelled_while_in_flight(self):
        async def scenario():
            in_flight = asyncio.Event()

            async def handler(request):
                in_flight.set()
                await asyncio.sleep(30)
                return httpx.Response(200, json={"enhancedImageUrl": "x", "remainingCredits": 1})

            client = make_client(handler)
            token = CancellationToken()
            record = ImageRecord(source_bytes=make_jpeg())
            call = asyncio.create_task(client.enhance(record, EnhancementSettings(), token))
            await in_flight.wait()
            token.cancel()
            try:
                with pytest.raises(OperationCancelled):
                    await call
            finally:
                await client.client.aclose()

        asyncio.run(scenario())

    def test_already_cancelled_token_sends_nothing(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"enhancedImageUrl": "x", "remainingCredits": 1})

        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            enhance_once(handler, token=token)
        assert calls == []


class TestCredits:

    def test_fetch_credits(self):
        def handler(request):
            assert request.url.path == "/api/credits"
            return httpx.Response(200, json={"credits": 12, "loggedIn": True})

        async def scenario():
            client = make_client(handler)
            try:
                return await client.fetch_credits()
            finally:
                await client.client.aclose()

        status = asyncio.run(scenario())
        assert status.credits == 12
        assert status.logged_in is True

    def test_logged_out(self):
        def handler(request):
            return httpx.Response(200, json={"credits": 0, "loggedIn": False})

        async def scenario():
            client = make_client(handler)
            try:
                return await client.fetch_credits()
            finally:
                await client.client.aclose()

        assert asyncio.run(scenario()).logged_in is False


class TestDownload:

    def _download(self, handler, dest):
        async def scenario():
            client = make_client(handler)
            try:
                return await client.download("https://cdn.example.com/out.jpg", dest)
            finally:
                await client.client.aclose()

        return asyncio.run(scenario())

    def test_writes_validated_image(self, tmp_path):
        payload = make_jpeg()

        def handler(request):
            return httpx.Response(200, content=payload, headers={"content-type": "image/jpeg"})

        dest = self._download(handler, tmp_path / "out" / "front_enhanced.jpg")
        assert dest.read_bytes() == payload

    def test_rejects_html(self, tmp_path):
        def handler(request):
            return httpx.Response(200, text="<html>expired</html>", headers={"content-type": "text/html"})

        with pytest.raises(EnhanceError, match="did not return an image"):
            self._download(handler, tmp_path / "x.jpg")
        assert not (tmp_path / "x.jpg").exists()

    def test_rejects_bad_magic_bytes(self, tmp_path):
        def handler(request):
            return httpx.Response(200, content=b"not really an image at all", headers={"content-type": "image/png"})

        with pytest.raises(EnhanceError, match="Invalid image data"):
            self._download(handler, tmp_path / "x.png")

    def test_http_error(self, tmp_path):
        def handler(request):
            return httpx.Response(404)

        with pytest.raises(EnhanceError, match="Failed to download"):
            self._download(handler, tmp_path / "x.jpg")


class TestMagicBytes:

    def test_known_formats(self):
        assert is_image_bytes(make_jpeg())
        assert is_image_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 10)
        assert is_image_bytes(b"\x00\x00\x00\x1cftypavif" + b"\x00" * 8)

    def test_unknown(self):
        assert not is_image_bytes(b"<!DOCTYPE html>")
        assert not is_image_bytes(b"")


class TestSessionCookie:

    def test_cookie_only_when_token_set(self):
        assert EnhanceAPIConfig(session_token="").cookies == {}
        config = EnhanceAPIConfig(session_cookie="sid", session_token="abc")
        assert config.cookies == {"sid": "abc"}
        assert config.enhance_url.endswith("/api/enhance")
