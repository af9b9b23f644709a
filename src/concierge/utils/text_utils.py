"""Text helpers shared by the search tools."""

from __future__ import annotations

import json
import re

from typing import Any
from urllib.parse import urlparse

_CODE_FENCE = re.compile(r"^\s*```")
_JSON_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def normalize_title(title: str) -> str:
    """Lowercase, strip markdown decoration and collapse whitespace."""
    cleaned = re.sub(r"[*_`#\[\]]", "", title).lower()
    return " ".join(cleaned.split())


def similarity(a: str, b: str) -> float:
    """Normalized similarity in [0, 1]: 1 - distance / len(longer)."""
    a, b = normalize_title(a), normalize_title(b)
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def is_duplicate(candidate: str, seen: list[str], threshold: float) -> bool:
    return any(similarity(candidate, prior) >= threshold for prior in seen)


def strip_code_fences(text: str) -> str:
    """Remove ``` fence lines from model output."""
    return "\n".join(line for line in text.splitlines() if not _CODE_FENCE.match(line)).strip()


def extract_json(text: str) -> Any:
    """Parse JSON from raw model output, tolerating fenced blocks.

    Raises:
        json.JSONDecodeError: If no JSON document can be parsed.
    """
    stripped = text.strip()
    if match := _JSON_BLOCK.search(stripped):
        stripped = match.group(1).strip()
    return json.loads(stripped)


def site_name(url: str) -> str:
    """Hostname without the ``www.`` prefix."""
    host = urlparse(url).hostname or url
    return host.removeprefix("www.")


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 1].rstrip() + "…"
