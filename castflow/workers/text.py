"""Text helpers shared by the stage workers."""

import re
from collections.abc import Iterable
from typing import TypeVar

MARKDOWN_LINK = re.compile(r"!?\[([^\]]*)\]\(([^)]*)\)")
MARKDOWN_CHARS = re.compile(r"[#*_`>]+")
WHITESPACE = re.compile(r"\s+")

T = TypeVar("T")


def clean_text_for_embedding(text: str) -> str:
    """Strip markdown syntax and collapse whitespace.

    Links keep their label; emphasis, headings, quotes and code markers are
    removed.
    """
    text = MARKDOWN_LINK.sub(lambda m: m.group(1) or m.group(2), text)
    text = MARKDOWN_CHARS.sub(" ", text)
    return WHITESPACE.sub(" ", text).strip()


def unique(items: Iterable[str]) -> list[str]:
    """Drop duplicates, keeping first occurrences in order."""
    return list(dict.fromkeys(items))


def unique_lower(items: Iterable[str]) -> list[str]:
    return unique(item.lower() for item in items)


def build_embedding_input(content: str, summaries: list[str]) -> str:
    """Join content and attachment descriptions into the text to embed."""
    text = content.replace("\n", " ", 1)
    if summaries:
        text = f"{text} [Contains attachments: {', '.join(summaries)}]"
    return text


def chunk(items: list[T], size: int) -> list[list[T]]:
    return [items[i : i + size] for i in range(0, len(items), size)]
