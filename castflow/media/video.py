"""Video stream selection and download with ffmpeg."""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from castflow.core.errors import MediaProcessingError
from castflow.core.logging import get_logger
from castflow.media.image import download_media

logger = get_logger().bind(module="video")

PROBE_TIMEOUT_SECONDS = 60
DOWNLOAD_TIMEOUT_SECONDS = 600


@dataclass(frozen=True)
class StreamSelection:
    """Indexes of the streams to copy out of a source."""

    video_index: int
    audio_index: int | None


async def _run(args: list[str], timeout: float) -> bytes:
    process = await asyncio.create_subprocess_exec(  # noqa: S603
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        process.kill()
        await process.wait()
        raise MediaProcessingError(f"{args[0]} timed out") from e
    if process.returncode != 0:
        raise MediaProcessingError(
            f"{args[0]} exited with {process.returncode}: {stderr.decode(errors='replace')[-500:]}"
        )
    return stdout


def _bit_rate(stream: dict[str, Any]) -> int:
    try:
        return int(stream.get("bit_rate") or stream.get("tags", {}).get("variant_bitrate") or 0)
    except (TypeError, ValueError):
        return 0


def select_streams(streams: list[dict[str, Any]]) -> StreamSelection:
    """Pick the lowest bit rate video stream and audio stream.

    Raises:
        MediaProcessingError: If the source has no video stream
    """
    videos = [s for s in streams if s.get("codec_type") == "video"]
    audios = [s for s in streams if s.get("codec_type") == "audio"]
    if not videos:
        raise MediaProcessingError("No video stream found")
    video = min(videos, key=_bit_rate)
    audio = min(audios, key=_bit_rate) if audios else None
    return StreamSelection(
        video_index=int(video["index"]),
        audio_index=int(audio["index"]) if audio is not None else None,
    )


async def probe_streams(url: str) -> list[dict[str, Any]]:
    output = await _run(
        [
            "ffprobe",
            "-v",
            "quiet",
            "-protocol_whitelist",
            "file,http,https,tcp,tls",
            "-print_format",
            "json",
            "-show_streams",
            url,
        ],
        timeout=PROBE_TIMEOUT_SECONDS,
    )
    try:
        return json.loads(output).get("streams", [])
    except json.JSONDecodeError as e:
        raise MediaProcessingError("ffprobe returned invalid JSON") from e


async def download_video(http: httpx.AsyncClient, url: str, output_path: Path) -> Path:
    """Copy the smallest renditions of a video into ``output_path``.

    Falls back to a plain download when the source cannot be probed.
    """
    try:
        selection = select_streams(await probe_streams(url))
    except MediaProcessingError as e:
        logger.warning("Probe failed, downloading directly", url=url, error=str(e))
        output_path.write_bytes(await download_media(http, url))
        return output_path

    args = [
        "ffmpeg",
        "-y",
        "-protocol_whitelist",
        "file,http,https,tcp,tls",
        "-i",
        url,
        "-c",
        "copy",
        "-map",
        f"0:{selection.video_index}",
    ]
    if selection.audio_index is not None:
        args += ["-map", f"0:{selection.audio_index}"]
    args.append(str(output_path))

    await _run(args, timeout=DOWNLOAD_TIMEOUT_SECONDS)
    return output_path
