"""Google AI Studio client for media understanding."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from castflow.core.errors import ProviderError
from castflow.core.logging import get_logger

logger = get_logger().bind(module="gemini_provider")

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"


@dataclass(frozen=True)
class UploadedFile:
    """A file held by the provider's file API."""

    name: str
    uri: str
    mime_type: str
    state: str


def _to_uploaded_file(payload: dict[str, Any]) -> UploadedFile:
    data = payload.get("file", payload)
    return UploadedFile(
        name=data["name"],
        uri=data.get("uri", ""),
        mime_type=data.get("mimeType", ""),
        state=data.get("state", "STATE_UNSPECIFIED"),
    )


class GeminiMediaClient:
    """Uploads media and asks a Gemini model to describe it.

    HTTP errors surface as :class:`httpx.HTTPStatusError` so the invoker can
    tell rate limits and server errors apart from fatal ones.
    """

    def __init__(
        self,
        api_key: str | None,
        http: httpx.AsyncClient,
        base_url: str = GEMINI_BASE_URL,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Google AI Studio key
            http: Shared async HTTP client
            base_url: API root
        """
        self.api_key = api_key
        self.http = http
        self.base_url = base_url.rstrip("/")

    def _params(self) -> dict[str, str]:
        if not self.api_key:
            raise ValueError("API key is required")
        return {"key": self.api_key}

    async def upload_file(self, path: Path, mime_type: str, display_name: str) -> UploadedFile:
        """Upload a local file with the resumable upload protocol."""
        data = path.read_bytes()
        start = await self.http.post(
            f"{self.base_url}/upload/v1beta/files",
            params=self._params(),
            headers={
                "X-Goog-Upload-Protocol": "resumable",
                "X-Goog-Upload-Command": "start",
                "X-Goog-Upload-Header-Content-Length": str(len(data)),
                "X-Goog-Upload-Header-Content-Type": mime_type,
            },
            json={"file": {"display_name": display_name}},
        )
        start.raise_for_status()
        upload_url = start.headers.get("x-goog-upload-url")
        if not upload_url:
            raise ProviderError("Upload session did not return an upload url")

        finish = await self.http.post(
            upload_url,
            headers={
                "X-Goog-Upload-Offset": "0",
                "X-Goog-Upload-Command": "upload, finalize",
                "Content-Length": str(len(data)),
            },
            content=data,
        )
        finish.raise_for_status()
        uploaded = _to_uploaded_file(finish.json())
        logger.debug("Uploaded media file", name=uploaded.name, state=uploaded.state)
        return uploaded

    async def get_file(self, name: str) -> UploadedFile:
        response = await self.http.get(
            f"{self.base_url}/v1beta/{name}", params=self._params()
        )
        response.raise_for_status()
        return _to_uploaded_file(response.json())

    async def delete_file(self, name: str) -> None:
        response = await self.http.delete(
            f"{self.base_url}/v1beta/{name}", params=self._params()
        )
        response.raise_for_status()

    async def generate_from_file(
        self, model: str, file_uri: str, mime_type: str, prompt: str
    ) -> str:
        """Describe an uploaded (or YouTube) file.

        Args:
            model: Gemini model name, without the ``models/`` prefix
            file_uri: Uri returned by the upload, or a public YouTube url
            mime_type: Mime type of the file
            prompt: Instruction text

        Returns:
            The model's text response
        """
        response = await self.http.post(
            f"{self.base_url}/v1beta/models/{model}:generateContent",
            params=self._params(),
            json={
                "contents": [
                    {
                        "parts": [
                            {"file_data": {"mime_type": mime_type, "file_uri": file_uri}},
                            {"text": prompt},
                        ]
                    }
                ]
            },
        )
        response.raise_for_status()
        return _extract_text(response.json(), model)


def _extract_text(payload: dict[str, Any], model: str) -> str:
    candidates = payload.get("candidates") or []
    if not candidates:
        raise ProviderError(f"No candidates returned by {model}")
    parts = candidates[0].get("content", {}).get("parts", [])
    text = "".join(part.get("text", "") for part in parts).strip()
    if not text:
        raise ProviderError(f"Empty response from {model}")
    return text
