"""
Unit tests for image download and data-URL helpers
"""
import base64
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_image_bytes
from render_api.services.image_fetch import (
    ImageFetcher,
    b64_to_data_url,
    extension_for,
    is_data_url,
    parse_data_url,
    sniff_mime,
    to_data_url,
)


def mock_get_session(status: int, data: bytes = b"", content_type: str = "image/png"):
    response = MagicMock()
    response.status = status
    response.read = AsyncMock(return_value=data)
    response.headers = {"Content-Type": content_type}
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    session.closed = False
    session.get = MagicMock(return_value=ctx)
    return session


class TestDataUrls:
    @pytest.mark.unit
    def test_parse_data_url(self, sample_base64_image):
        mime, data = parse_data_url(sample_base64_image)
        assert mime == "image/png"
        assert data.startswith(b"\x89PNG")

    @pytest.mark.unit
    @pytest.mark.parametrize("ref", ["https://x/y.png", "data:image/png,rawtext", "data:image/png;base64"])
    def test_parse_rejects_non_base64_refs(self, ref):
        with pytest.raises(ValueError):
            parse_data_url(ref)

    @pytest.mark.unit
    def test_is_data_url(self, sample_base64_image):
        assert is_data_url(sample_base64_image)
        assert not is_data_url("https://x/y.png")
        assert not is_data_url(None)

    @pytest.mark.unit
    def test_b64_to_data_url_detects_jpeg(self):
        jpeg = base64.b64encode(make_image_bytes(fmt="JPEG")).decode()
        png = base64.b64encode(make_image_bytes(fmt="PNG")).decode()
        assert b64_to_data_url(jpeg).startswith("data:image/jpeg;base64,")
        assert b64_to_data_url(png).startswith("data:image/png;base64,")
        assert b64_to_data_url("data:image/webp;base64,AAAA") == "data:image/webp;base64,AAAA"

    @pytest.mark.unit
    def test_sniff_and_round_trip(self):
        jpeg = make_image_bytes(fmt="JPEG")
        assert sniff_mime(jpeg) == "image/jpeg"
        assert sniff_mime(b"garbage") == "image/png"
        assert parse_data_url(to_data_url(jpeg)) == ("image/jpeg", jpeg)

    @pytest.mark.unit
    def test_extension_for(self):
        assert extension_for("image/jpeg") == "jpg"
        assert extension_for("image/png") == "png"
        assert extension_for("application/octet-stream") == "png"


class TestImageFetcher:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_data_url_is_decoded_locally(self, sample_base64_image):
        fetcher = ImageFetcher()
        result = await fetcher.fetch(sample_base64_image)
        assert result.ok
        assert result.content_type == "image/png"
        assert fetcher.session is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_url(self):
        result = await ImageFetcher().fetch("")
        assert not result.ok
        assert result.reason == "empty_url"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_http_download(self):
        png = make_image_bytes()
        fetcher = ImageFetcher()
        fetcher.session = mock_get_session(200, png, content_type="binary/octet-stream")

        result = await fetcher.fetch("https://cdn.example.com/room")
        assert result.ok
        # Non-image content types are replaced by sniffing the bytes
        assert result.content_type == "image/png"
        assert result.data_url.startswith("data:image/png;base64,")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_http_error(self):
        fetcher = ImageFetcher()
        fetcher.session = mock_get_session(403)
        result = await fetcher.fetch("https://cdn.example.com/private.jpg")
        assert not result.ok
        assert result.status == 403
        assert result.data_url is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_too_large(self):
        fetcher = ImageFetcher(max_bytes=10)
        fetcher.session = mock_get_session(200, make_image_bytes())
        result = await fetcher.fetch("https://cdn.example.com/huge.png")
        assert not result.ok
        assert result.reason == "too_large"
