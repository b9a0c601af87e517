"""Tests for image download and resizing."""

import io

import httpx
import pytest
from PIL import Image

from castflow.core.errors import MediaProcessingError
from castflow.media.image import download_media, prepare_image, resize_to_jpeg
from castflow.media.video import select_streams


def png_bytes(width: int, height: int) -> bytes:
    output = io.BytesIO()
    Image.new("RGBA", (width, height), (255, 0, 0, 128)).save(output, format="PNG")
    return output.getvalue()


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_resize_scales_down_to_width():
    data = resize_to_jpeg(png_bytes(1600, 400), width=800)

    with Image.open(io.BytesIO(data)) as image:
        assert image.format == "JPEG"
        assert image.size == (800, 200)


def test_resize_never_upscales():
    data = resize_to_jpeg(png_bytes(100, 50), width=800)

    with Image.open(io.BytesIO(data)) as image:
        assert image.size == (100, 50)


def test_resize_rejects_non_images():
    with pytest.raises(MediaProcessingError):
        resize_to_jpeg(b"not an image")


@pytest.mark.asyncio
async def test_download_fails_fast_on_client_errors():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404)

    async with client_for(handler) as http:
        with pytest.raises(MediaProcessingError):
            await download_media(http, "https://i.imgur.com/missing.png")

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_prepare_image_returns_jpeg():
    async with client_for(lambda request: httpx.Response(200, content=png_bytes(10, 10))) as http:
        data = await prepare_image(http, "https://i.imgur.com/a.png")

    assert data is not None
    assert data[:2] == b"\xff\xd8"


@pytest.mark.asyncio
async def test_prepare_image_drops_oversized_results():
    async with client_for(lambda request: httpx.Response(200, content=png_bytes(10, 10))) as http:
        assert await prepare_image(http, "https://i.imgur.com/a.png", max_bytes=10) is None


def test_select_streams_prefers_lowest_bit_rate():
    selection = select_streams(
        [
            {"index": 0, "codec_type": "video", "bit_rate": "4000000"},
            {"index": 1, "codec_type": "video", "tags": {"variant_bitrate": "800000"}},
            {"index": 2, "codec_type": "audio", "bit_rate": "128000"},
            {"index": 3, "codec_type": "audio", "bit_rate": "64000"},
        ]
    )

    assert selection.video_index == 1
    assert selection.audio_index == 3


def test_select_streams_without_audio():
    selection = select_streams([{"index": 0, "codec_type": "video"}])

    assert selection.video_index == 0
    assert selection.audio_index is None


def test_select_streams_requires_video():
    with pytest.raises(MediaProcessingError):
        select_streams([{"index": 0, "codec_type": "audio"}])
