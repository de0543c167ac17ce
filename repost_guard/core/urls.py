from __future__ import annotations

import re

URL_PATTERN = re.compile(
    r"https?://(?:www\.)?[-a-z0-9@:%._+~#=]{1,256}\.[a-z0-9()]{2,6}\b[-a-z0-9()@:%_+.~#?&/=]*",
    re.IGNORECASE,
)
_HOST_TERMINATORS = "/?#"


def normalize_url(raw_url: str) -> str:
    """Trim and lower-case scheme and host; path, query and fragment keep their case."""
    stripped = raw_url.strip()
    scheme, separator, rest = stripped.partition("://")
    if not separator:
        return stripped

    host_end = len(rest)
    for terminator in _HOST_TERMINATORS:
        index = rest.find(terminator)
        if index != -1:
            host_end = min(host_end, index)
    return f"{scheme.lower()}://{rest[:host_end].lower()}{rest[host_end:]}"


def extract_urls(text: str | None) -> list[str]:
    if not text:
        return []

    seen: set[str] = set()
    urls: list[str] = []
    for match in URL_PATTERN.finditer(text):
        normalized = normalize_url(match.group(0))
        if normalized in seen:
            continue
        seen.add(normalized)
        urls.append(normalized)
    return urls
