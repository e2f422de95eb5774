from __future__ import annotations

from collections.abc import Mapping, Sequence


def _normalize(content: bytes | str) -> str:
    if isinstance(content, bytes):
        # surrogateescape keeps invalid bytes distinct from any keyword text
        content = content.decode("utf-8", errors="surrogateescape")
    return content.lower()


def scan_content(
    content: bytes | str, pattern_groups: Mapping[str, Sequence[str]]
) -> tuple[dict[str, list[str]], bool]:
    """Check ``content`` for every keyword of every pattern group.

    Matching is a case-insensitive literal substring test. A group appears in
    the result only when at least one of its keywords matched, and its value
    lists the matched keywords in the order they were declared.
    """
    haystack = _normalize(content)
    matches: dict[str, list[str]] = {}

    for group_name, keywords in pattern_groups.items():
        found = [keyword for keyword in keywords if keyword.lower() in haystack]
        if found:
            matches[group_name] = found

    return matches, bool(matches)
