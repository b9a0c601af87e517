"""Tests for shared text helpers."""

import pytest

from castflow.workers.text import (
    build_embedding_input,
    chunk,
    clean_text_for_embedding,
    unique,
    unique_lower,
)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("# Title\n\n**bold** [link](https://x.io)", "Title bold link"),
        ("![](https://x.io/a.png) shipped", "https://x.io/a.png shipped"),
        ("> quoted `code`", "quoted code"),
        ("   ", ""),
    ],
)
def test_clean_text_for_embedding(text, expected):
    assert clean_text_for_embedding(text) == expected


def test_build_embedding_input_appends_attachments():
    text = build_embedding_input("first\nsecond", ["a chart", "a demo video"])

    assert text == "first second [Contains attachments: a chart, a demo video]"


def test_build_embedding_input_without_attachments():
    assert build_embedding_input("plain", []) == "plain"


def test_unique_keeps_first_occurrence():
    assert unique(["b", "a", "b", "c"]) == ["b", "a", "c"]
    assert unique_lower(["Nouns", "nouns", "Flows"]) == ["nouns", "flows"]


def test_chunk_splits_into_fixed_sizes():
    assert chunk(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]
    assert chunk([], 3) == []
