"""Slug generation for category nodes."""

import time


def slugify(text: str) -> str:
    """Normalize a name into an NDR path segment.

    Lowercases the text, keeps ASCII letters and digits, and collapses every
    other run of characters into a single hyphen. Names without any ASCII
    alphanumerics (for example purely CJK names) produce an empty string.

    Args:
        text: Display name (e.g., "Unit 3: Grammar")

    Returns:
        str: Slug (e.g., "unit-3-grammar")
    """
    if not text:
        return ""

    normalized = ''.join(
        c if ('a' <= c <= 'z' or '0' <= c <= '9') else '-'
        for c in text.strip().lower()
    )

    while '--' in normalized:
        normalized = normalized.replace('--', '-')

    return normalized.strip('-')


def node_slug(name: str) -> str:
    """Slug for ``name``, or a unique ``node-<ns>`` fallback when empty."""
    return slugify(name) or f"node-{time.time_ns()}"
