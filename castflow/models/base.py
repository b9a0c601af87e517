"""Shared pydantic base class."""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model that reads and writes camelCase payloads.

    Attributes are snake_case in Python; queue payloads, API bodies and
    LLM schemas use the camelCase aliases.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dict using camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
