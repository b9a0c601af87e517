"""Model-agnostic LLM access routed through the resilient invoker."""

from collections.abc import Sequence
from typing import Protocol, TypeVar

from pydantic import BaseModel

from castflow.llm.invoker import AIInvoker
from castflow.llm.providers.types import GenerateConfig, Message

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class TextGenerator(Protocol):
    """What a chat provider must offer."""

    async def generate_text(
        self, messages: list[Message], model: str, config: GenerateConfig | None = None
    ) -> str: ...

    async def generate_object(
        self,
        messages: list[Message],
        schema: type[SchemaT],
        model: str,
        config: GenerateConfig | None = None,
    ) -> SchemaT: ...


class LLMClient:
    """Text and structured generation with retry and model fallback."""

    def __init__(self, provider: TextGenerator, invoker: AIInvoker) -> None:
        self.provider = provider
        self.invoker = invoker

    async def generate_text(
        self,
        messages: list[Message],
        models: Sequence[str],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        context: str = "",
    ) -> str:
        config = GenerateConfig(temperature=temperature, max_tokens=max_tokens)
        return await self.invoker(
            lambda model: lambda: self.provider.generate_text(messages, model, config),
            models,
            context=context,
        )

    async def generate_object(
        self,
        messages: list[Message],
        schema: type[SchemaT],
        models: Sequence[str],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        context: str = "",
    ) -> SchemaT:
        config = GenerateConfig(temperature=temperature, max_tokens=max_tokens)
        return await self.invoker(
            lambda model: lambda: self.provider.generate_object(
                messages, schema, model, config
            ),
            models,
            context=context,
        )
