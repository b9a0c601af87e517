"""Type definitions for LLM providers."""

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field
from typing_extensions import TypedDict


class Message(TypedDict):
    """A chat message."""

    role: Literal["system", "user", "assistant"]
    content: str


@dataclass
class GenerateConfig:
    """Configuration for generation requests."""

    temperature: float = 0.7
    max_tokens: int | None = None

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if not 0 <= self.temperature <= 2:
            raise ValueError("Temperature must be between 0 and 2")
        if self.max_tokens is not None and self.max_tokens < 1:
            raise ValueError("Max tokens must be positive")


class LLMResponse(BaseModel):
    """Standard response format for LLM generations."""

    text: str = Field(description="Generated text content")
    model: str = Field(description="Name of the model used")
    usage: dict[str, int] = Field(
        default_factory=dict, description="Token usage statistics"
    )
    parsed: Any | None = Field(
        default=None, description="Parsed structured output if a schema was given"
    )

    def __str__(self) -> str:
        return self.text
