"""OpenRouter chat provider with structured output support."""

import json
import re
from typing import Any, TypeVar, cast

from openai import AsyncOpenAI
from openai.types.chat.chat_completion import ChatCompletion
from openai.types.completion_usage import CompletionUsage
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from castflow.core.errors import DataIntegrityError, ProviderError
from castflow.core.logging import get_logger
from castflow.llm.providers.types import GenerateConfig, LLMResponse, Message

logger = get_logger().bind(module="openrouter_provider")

SchemaT = TypeVar("SchemaT", bound=BaseModel)

DEFAULT_HEADERS = {
    "HTTP-Referer": "https://flows.wtf",
    "X-Title": "Castflow",
    "X-Provider-Preferences": json.dumps({"require_parameters": True}),
}


def _extract_json_from_markdown(text: str) -> str:
    """Extract JSON content from markdown code blocks.

    Args:
        text: Text that may contain markdown code blocks

    Returns:
        str: Extracted JSON content or original text if no code blocks found
    """
    json_block_match = re.search(r"```(?:json)?\s*\n(.*?)\n```", text, re.DOTALL)
    if json_block_match:
        return json_block_match.group(1).strip()
    return text


def _validate_usage(usage: CompletionUsage | dict[str, Any] | None) -> dict[str, int]:
    if usage is None:
        return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    if isinstance(usage, CompletionUsage):
        usage = usage.model_dump()
    return {
        "prompt_tokens": int(usage.get("prompt_tokens") or 0),
        "completion_tokens": int(usage.get("completion_tokens") or 0),
        "total_tokens": int(usage.get("total_tokens") or 0),
    }


def response_format_for(schema: type[BaseModel]) -> dict[str, Any]:
    """Build an OpenAI ``response_format`` from a pydantic model."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": schema.__name__,
            "schema": schema.model_json_schema(by_alias=True),
            "strict": False,
        },
    }


class OpenRouterProvider:
    """Chat completions for any model id routed through OpenRouter.

    API errors are not wrapped: the invoker classifies them by status code
    to decide between retrying and falling back to another model.
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://openrouter.ai/api/v1",
        headers: dict[str, str] | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            api_key: OpenRouter API key
            base_url: Base URL for the API endpoint
            headers: Additional HTTP headers
            client: Preconfigured client, mainly for tests
        """
        self.api_key = api_key
        self.base_url = base_url
        self.headers = headers or DEFAULT_HEADERS
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        """Get or create the OpenAI client instance."""
        if self._client is None:
            if not self.api_key:
                raise ValueError("API key is required")
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                default_headers=self.headers,
            )
        return self._client

    def _build_api_params(
        self,
        model: str,
        messages: list[Message],
        config: GenerateConfig | None = None,
        schema: type[BaseModel] | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": config.temperature if config else 0.7,
        }
        if config and config.max_tokens is not None:
            params["max_tokens"] = config.max_tokens
        if schema is not None:
            params["response_format"] = response_format_for(schema)
        return params

    async def _complete(self, params: dict[str, Any]) -> LLMResponse:
        logger.debug(
            "Making API request",
            base_url=self.base_url,
            parameters=json.dumps({k: v for k, v in params.items() if k != "messages"}),
        )
        result = cast(ChatCompletion, await self.client.chat.completions.create(**params))

        if not result.choices or not result.choices[0].message:
            raise ProviderError(f"Empty response from {params['model']}")

        content = str(result.choices[0].message.content or "")
        if not content.strip():
            raise ProviderError(f"Empty response from {params['model']}")

        return LLMResponse(
            text=content.strip(),
            model=params["model"],
            usage=_validate_usage(result.usage),
        )

    async def generate_text(
        self,
        messages: list[Message],
        model: str,
        config: GenerateConfig | None = None,
    ) -> str:
        """Generate free text.

        Args:
            messages: Chat messages; a trailing assistant message acts as a prefill
            model: OpenRouter model id
            config: Generation configuration

        Returns:
            The completion text
        """
        response = await self._complete(self._build_api_params(model, messages, config))
        return response.text

    async def generate_object(
        self,
        messages: list[Message],
        schema: type[SchemaT],
        model: str,
        config: GenerateConfig | None = None,
    ) -> SchemaT:
        """Generate a structured object validated against ``schema``.

        Raises:
            DataIntegrityError: If the model output does not match the schema
        """
        response = await self._complete(
            self._build_api_params(model, messages, config, schema)
        )
        payload = _extract_json_from_markdown(response.text)
        try:
            return schema.model_validate_json(payload)
        except PydanticValidationError as e:
            logger.error(
                "Structured output failed validation",
                model=model,
                schema=schema.__name__,
                error=str(e),
            )
            raise DataIntegrityError(
                f"{model} returned output that does not match {schema.__name__}"
            ) from e
