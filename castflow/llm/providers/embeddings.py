"""Text embeddings."""

from openai import AsyncOpenAI

from castflow.core.errors import ProviderError
from castflow.core.logging import get_logger

logger = get_logger().bind(module="embeddings_provider")


class EmbeddingProvider:
    """Creates vector embeddings with the OpenAI embeddings endpoint."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.dimensions = dimensions
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise ValueError("API key is required")
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            ProviderError: If the response has no embedding or the wrong size
        """
        response = await self.client.embeddings.create(
            model=self.model, input=text, dimensions=self.dimensions
        )
        if not response.data:
            raise ProviderError("Embedding response contained no data")
        vector = list(response.data[0].embedding)
        if len(vector) != self.dimensions:
            raise ProviderError(
                f"Expected {self.dimensions} dimensions, got {len(vector)}"
            )
        return vector
