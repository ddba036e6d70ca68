"""Keyword heuristics for gluten-free evidence in restaurant web pages.

A simple keyword filter rather than a classifier: markup is stripped, the
text is split into lines and any line mentioning gluten-free food, celiac
disease or the "GF" shorthand is kept.
"""

from __future__ import annotations

import re
from typing import List, Protocol

from bs4 import BeautifulSoup

from glutenscan.models import MAX_EVIDENCE_CHARS, MAX_EVIDENCE_ITEMS
from glutenscan.utils import collapse_whitespace


GF_PATTERN = re.compile(
    r"gluten[\s-]*free|\bgf\b|c(?:o)?eliac|no\s+gluten",
    re.I,
)

MIN_LINE_CHARS = 4


class Extractor(Protocol):
    def extract(self, page: str) -> List[str]:
        ...


def looks_gluten_free(text: str) -> bool:
    return bool(text and GF_PATTERN.search(text))


def strip_markup(page: str) -> str:
    soup = BeautifulSoup(page, "html.parser")
    for block in soup(["script", "style"]):
        block.decompose()
    return soup.get_text(" ")


class EvidenceExtractor:
    def __init__(self, max_items: int = MAX_EVIDENCE_ITEMS, max_chars: int = MAX_EVIDENCE_CHARS) -> None:
        self.max_items = max_items
        self.max_chars = max_chars

    def extract(self, page: str) -> List[str]:
        if not page:
            return []
        found: list[str] = []
        for raw in strip_markup(page).split("\n"):
            line = collapse_whitespace(raw)
            if len(line) < MIN_LINE_CHARS:
                continue
            if not GF_PATTERN.search(line):
                continue
            snippet = line[: self.max_chars]
            if snippet not in found:
                found.append(snippet)
            if len(found) >= self.max_items:
                break
        return found
