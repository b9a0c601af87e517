"""Image download and normalization."""

import asyncio
import io

import httpx
from PIL import Image, UnidentifiedImageError

from castflow.core.errors import MediaProcessingError
from castflow.llm.invoker import retry_with_backoff

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "*/*",
    "Referer": "https://warpcast.com/",
}


async def download_media(http: httpx.AsyncClient, url: str) -> bytes:
    """Download media bytes, retrying transient network failures.

    Raises:
        MediaProcessingError: If the server answers with an error status
    """

    async def fetch() -> bytes:
        response = await http.get(url, headers=BROWSER_HEADERS, follow_redirects=True)
        if response.status_code >= 500:
            response.raise_for_status()
        if response.status_code >= 400:
            raise MediaProcessingError(
                f"Failed to download {url}: HTTP {response.status_code}"
            )
        return response.content

    return await retry_with_backoff(fetch, retries=3, delay=1.0)


def resize_to_jpeg(data: bytes, width: int = 800, quality: int = 70) -> bytes:
    """Scale an image to ``width`` (never upscaling) and re-encode as JPEG.

    Raises:
        MediaProcessingError: If the bytes are not a readable image
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.seek(0)
            converted = image.convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        raise MediaProcessingError(f"Unreadable image: {e}") from e

    if converted.width > width:
        height = max(1, round(converted.height * width / converted.width))
        converted = converted.resize((width, height), Image.Resampling.LANCZOS)

    output = io.BytesIO()
    converted.save(output, format="JPEG", quality=quality, optimize=True)
    return output.getvalue()


async def prepare_image(
    http: httpx.AsyncClient,
    url: str,
    width: int = 800,
    quality: int = 70,
    max_bytes: int = 25 * 1024 * 1024,
) -> bytes | None:
    """Download and shrink an image for the vision model.

    Returns:
        JPEG bytes, or None when the processed image is still too large
    """
    data = await download_media(http, url)
    processed = await asyncio.to_thread(resize_to_jpeg, data, width, quality)
    if len(processed) > max_bytes:
        return None
    return processed
