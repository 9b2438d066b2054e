"""Text normalization helpers for natural keys and loosely-typed LLM output.

Two concerns live here:

1. **Natural-key normalization** -- package names, guideline titles, course
   and module names are compared trimmed, whitespace-collapsed and
   case-insensitive after NFKC folding, so "Silver Plan", " silver  plan "
   and "SILVER PLAN" are the same package.

2. **Value coercion** -- extraction output is loosely typed (prices as
   "$49.99", list items as strings *or* dicts, numbers as strings).  These
   helpers turn it into the plain values the canonical models expect.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Any

_WHITESPACE_RE = re.compile(r"\s+")
_PRICE_RE = re.compile(r"-?\d+(?:[.,]\d+)?")


def normalize_key(value: str | None) -> str:
    """Return the comparison form of a natural-key string.

    Args:
        value: Raw name or title.

    Returns:
        NFKC-normalized, trimmed, whitespace-collapsed, case-folded text
        ("" for ``None``).
    """
    if value is None:
        return ""
    text = unicodedata.normalize("NFKC", str(value))
    return _WHITESPACE_RE.sub(" ", text).strip().casefold()


def clean_text(value: Any) -> str | None:
    """Coerce a scalar to stripped text, or ``None`` when empty or missing."""
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return None
    text = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return text or None


def parse_price(value: Any) -> float | None:
    """Parse a price-like value ("$49.99", "49", 49.0) into a float.

    Returns ``None`` for missing or unparseable values rather than guessing.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _PRICE_RE.search(str(value).replace(",", ""))
    if match is None:
        return None
    try:
        return float(match.group(0))
    except ValueError:
        return None


def item_text(item: Any, keys: tuple[str, ...] = ("text", "point", "name", "title")) -> str | None:
    """Return the display text of a list item that may be a string or a dict."""
    if isinstance(item, dict):
        for key in keys:
            text = clean_text(item.get(key))
            if text:
                return text
        return None
    return clean_text(item)


def text_list(value: Any) -> list[str]:
    """Coerce a loosely-typed list field into a list of non-empty strings.

    A bare string becomes a one-element list; dict items use their ``text``
    / ``point`` / ``name`` / ``title`` field.  Order is preserved and
    duplicates are *not* removed here (see :func:`union_texts`).
    """
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        text = clean_text(value)
        return [text] if text else []
    if isinstance(value, dict):
        text = item_text(value)
        return [text] if text else []
    result: list[str] = []
    for item in value:
        text = item_text(item)
        if text:
            result.append(text)
    return result


def union_texts(existing: list[str], incoming: list[str]) -> list[str]:
    """Append *incoming* items not already present (by normalized text).

    First-seen spelling and order win.
    """
    seen = {normalize_key(item) for item in existing}
    merged = list(existing)
    for item in incoming:
        key = normalize_key(item)
        if key and key not in seen:
            seen.add(key)
            merged.append(item)
    return merged


def derive_name(text: str | None, max_words: int = 8) -> str | None:
    """Derive a short name from the first words of *text* ("" words dropped)."""
    cleaned = clean_text(text)
    if not cleaned:
        return None
    words = cleaned.split(" ")
    name = " ".join(words[:max_words]).rstrip(".,;:")
    if len(words) > max_words:
        name += "..."
    return name


def as_list(value: Any) -> list[Any]:
    """Coerce a field that should hold a list.

    ``None`` and scalars other than strings become ``[]``; a bare string or
    object becomes a one-element list.
    """
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        return [value]
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


def dict_items(value: Any) -> list[dict[str, Any]]:
    """Coerce a field that should hold a list of objects, dropping other items."""
    return [item for item in as_list(value) if isinstance(item, dict)]
