"""Text descriptions of attachment urls."""

import asyncio
import hashlib
import shutil
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import httpx

from castflow.cache.keys import (
    CAST_DESCRIPTION_PREFIX,
    IMAGE_DESCRIPTION_PREFIX,
    VIDEO_DESCRIPTION_PREFIX,
    YOUTUBE_DESCRIPTION_PREFIX,
    ZORA_DESCRIPTION_PREFIX,
)
from castflow.cache.results import ResultCache
from castflow.core.errors import MediaProcessingError
from castflow.core.logging import get_logger
from castflow.database.store import DataStore
from castflow.llm.invoker import AIInvoker
from castflow.llm.prompts import (
    CANNOT_ACCESS_PHRASES,
    IMAGE_DESCRIPTION_PROMPT,
    VIDEO_DESCRIPTION_PROMPT,
    YOUTUBE_DESCRIPTION_PROMPT,
)
from castflow.llm.providers.gemini import GeminiMediaClient, UploadedFile
from castflow.media.image import prepare_image
from castflow.media.urls import (
    extract_cast_hash,
    is_allowed_domain,
    is_cast_url,
    is_short_cast_url,
    is_video_url,
    is_youtube_url,
    is_zora_url,
    parse_zora_url,
    to_wrpcd_url,
)
from castflow.media.video import download_video

logger = get_logger().bind(module="media_describer")

QUOTED_POST_PREFIX = "Quoted post: "
ZORA_MINT_PREFIX = "Zora mint: "
YOUTUBE_PREFIX = "Youtube video: "
ATTACHED_VIDEO_PREFIX = "Attached video: "

IPFS_GATEWAY = "https://ipfs.io/ipfs/"


def _url_digest(url: str) -> str:
    return hashlib.md5(url.encode()).hexdigest()  # noqa: S324


def _resolve_ipfs(url: str) -> str:
    if url.startswith("ipfs://"):
        return IPFS_GATEWAY + url[len("ipfs://") :]
    return url


def format_cast_description(
    author: str, timestamp: str, content: str, url: str, summaries: list[str], urls: list[str]
) -> str:
    """Render a cast as the labelled block used in prompts."""
    return (
        f"CAST_AUTHOR: {author}\n"
        f"TIMESTAMP: {timestamp}\n"
        f"CONTENT: {content}\n"
        f"CAST_URL: {url}\n"
        f"ATTACHMENTS: {', '.join(summaries) if summaries else 'None'}\n"
        f"ATTACHMENT_URLS: {', '.join(urls) if urls else 'None'}"
    )


class MediaDescriber:
    """Turns attachment urls into text a language model can reason about.

    Each kind of media has its own handler; all of them share the result
    cache and return None instead of raising when the media cannot be
    described.
    """

    def __init__(
        self,
        cache: ResultCache,
        gemini: GeminiMediaClient,
        invoker: AIInvoker,
        http: httpx.AsyncClient,
        store: DataStore,
        model_name: str = "gemini-1.5-flash",
        allowed_domains: list[str] | None = None,
        temp_dir: str = "/tmp/castflow-media",
        poll_interval: float = 10.0,
        poll_max_attempts: int = 30,
        image_width: int = 800,
        image_quality: int = 70,
        max_image_bytes: int = 25 * 1024 * 1024,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.cache = cache
        self.gemini = gemini
        self.invoker = invoker
        self.http = http
        self.store = store
        self.model_name = model_name
        self.allowed_domains = allowed_domains or []
        self.temp_dir = Path(temp_dir)
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts
        self.image_width = image_width
        self.image_quality = image_quality
        self.max_image_bytes = max_image_bytes
        self.sleep = sleep

    async def fetch_url_summaries(self, urls: list[str]) -> list[str]:
        """Describe every url concurrently, dropping those without a description."""
        if not urls:
            return []
        descriptions = await asyncio.gather(*(self.describe(url) for url in urls))
        return [description for description in descriptions if description]

    async def describe(self, url: str) -> str | None:
        """Describe one attachment, labelled by its kind."""
        if not url or url == '""':
            return None
        if is_cast_url(url):
            prefix, description = QUOTED_POST_PREFIX, await self.describe_cast(url)
        elif is_zora_url(url):
            prefix, description = ZORA_MINT_PREFIX, await self.describe_zora(url)
        elif is_youtube_url(url):
            prefix, description = YOUTUBE_PREFIX, await self.describe_youtube(url)
        elif is_video_url(url):
            prefix, description = ATTACHED_VIDEO_PREFIX, await self.describe_video(url)
        else:
            return await self.describe_image(url)
        return f"{prefix}{description}" if description else None

    async def _cached(
        self, url: str, prefix: str, compute: Callable[[], Awaitable[str | None]]
    ) -> str | None:
        try:
            result = await self.cache.cache_result(url, prefix, compute)
        except Exception as e:
            logger.warning("Media description failed", url=url, prefix=prefix, error=str(e))
            return None
        return result if isinstance(result, str) and result else None

    def _accept(self, text: str) -> str | None:
        lowered = text.lower()
        if any(phrase in lowered for phrase in CANNOT_ACCESS_PHRASES):
            return None
        return text

    async def _wait_until_active(self, uploaded: UploadedFile) -> UploadedFile:
        """Poll an upload until the provider has finished processing it.

        Raises:
            MediaProcessingError: If processing fails or does not finish in time
        """
        current = uploaded
        for _ in range(self.poll_max_attempts):
            if current.state == "ACTIVE":
                return current
            if current.state == "FAILED":
                raise MediaProcessingError(f"Processing failed for {uploaded.name}")
            await self.sleep(self.poll_interval)
            current = await self.gemini.get_file(uploaded.name)
        if current.state == "ACTIVE":
            return current
        raise MediaProcessingError(f"Timed out waiting for {uploaded.name}")

    async def _describe_local_file(
        self, path: Path, mime_type: str, prompt: str, context: str
    ) -> str | None:
        uploaded = await self.gemini.upload_file(path, mime_type, path.name)
        try:
            active = await self._wait_until_active(uploaded)
            text = await self.invoker(
                lambda model: lambda: self.gemini.generate_from_file(
                    model, active.uri, active.mime_type or mime_type, prompt
                ),
                [self.model_name],
                context=context,
            )
        finally:
            try:
                await self.gemini.delete_file(uploaded.name)
            except httpx.HTTPError as e:
                logger.warning("Failed to delete uploaded file", name=uploaded.name, error=str(e))
        return self._accept(text)

    async def describe_image(self, url: str) -> str | None:
        if not url or url == '""':
            return None
        if not is_allowed_domain(url, self.allowed_domains):
            logger.info("Image domain not allowed", url=url)
            return None

        async def compute() -> str | None:
            data = await prepare_image(
                self.http,
                to_wrpcd_url(url),
                width=self.image_width,
                quality=self.image_quality,
                max_bytes=self.max_image_bytes,
            )
            if data is None:
                logger.info("Image too large after processing", url=url)
                return None
            self.temp_dir.mkdir(parents=True, exist_ok=True)
            path = self.temp_dir / f"{_url_digest(url)}.jpg"
            path.write_bytes(data)
            try:
                return await self._describe_local_file(
                    path, "image/jpeg", IMAGE_DESCRIPTION_PROMPT, "describe_image"
                )
            finally:
                path.unlink(missing_ok=True)

        return await self._cached(url, IMAGE_DESCRIPTION_PREFIX, compute)

    async def describe_video(self, url: str) -> str | None:
        async def compute() -> str | None:
            work_dir = self.temp_dir / _url_digest(url)
            work_dir.mkdir(parents=True, exist_ok=True)
            try:
                path = await download_video(self.http, url, work_dir / "video.mp4")
                return await self._describe_local_file(
                    path, "video/mp4", VIDEO_DESCRIPTION_PROMPT, "describe_video"
                )
            finally:
                shutil.rmtree(work_dir, ignore_errors=True)

        return await self._cached(url, VIDEO_DESCRIPTION_PREFIX, compute)

    async def describe_youtube(self, url: str) -> str | None:
        async def compute() -> str | None:
            text = await self.invoker(
                lambda model: lambda: self.gemini.generate_from_file(
                    model, url, "video/mp4", YOUTUBE_DESCRIPTION_PROMPT
                ),
                [self.model_name],
                context="describe_youtube",
            )
            return self._accept(text)

        return await self._cached(url, YOUTUBE_DESCRIPTION_PREFIX, compute)

    async def describe_zora(self, url: str) -> str | None:
        """Describe a Zora mint from its token metadata and media."""
        if parse_zora_url(url) is None:
            logger.info("Unrecognized Zora url", url=url)
            return None

        async def compute() -> str | None:
            metadata = await self.store.get_token_metadata_for_url(url)
            if metadata is None:
                return None
            mime_type = (metadata.mime_type or "").lower()
            media: str | None = None
            if mime_type.startswith("video") or mime_type == "image/gif":
                source = metadata.animation_url or metadata.image
                if source:
                    media = await self.describe_video(_resolve_ipfs(source))
            elif metadata.image:
                media = await self.describe_image(_resolve_ipfs(metadata.image))
            parts = [
                f"Title: {metadata.name}" if metadata.name else "",
                f"Description: {metadata.description}" if metadata.description else "",
                f"Media: {media}" if media else "",
            ]
            text = "\n".join(part for part in parts if part)
            return text or None

        return await self._cached(url, ZORA_DESCRIPTION_PREFIX, compute)

    async def describe_cast(self, url: str) -> str | None:
        """Describe a quoted cast; short-hash urls cannot be resolved."""
        if is_short_cast_url(url):
            return ""
        cast_hash = extract_cast_hash(url)
        if cast_hash is None:
            return None

        async def compute() -> str | None:
            cast = await self.store.get_cast_by_hash(cast_hash)
            if cast is None:
                return None
            urls = [u for u in cast.embed_urls() if not is_cast_url(u)]
            summaries = cast.embed_summaries
            if summaries is None:
                summaries = await self.fetch_url_summaries(urls)
            return format_cast_description(
                author=cast.author_fname or str(cast.fid),
                timestamp=cast.timestamp.isoformat(),
                content=cast.text,
                url=url,
                summaries=summaries,
                urls=urls,
            )

        return await self._cached(cast_hash, CAST_DESCRIPTION_PREFIX, compute)
