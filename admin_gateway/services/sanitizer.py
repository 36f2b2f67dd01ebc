"""
Payload sanitization.

Strips script blocks, javascript: URIs, inline event handlers and
data:text/html URIs from every string in a request body or query mapping.
Neutralizes rather than rejects: the payload shape is kept as is.
"""

import re
from typing import Any, Optional, Set

SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
JAVASCRIPT_URI = re.compile(r"javascript:", re.IGNORECASE)
EVENT_HANDLER = re.compile(r"on\w+\s*=", re.IGNORECASE)
DATA_HTML_URI = re.compile(r"data:text/html", re.IGNORECASE)

DANGEROUS_PATTERNS = (SCRIPT_BLOCK, JAVASCRIPT_URI, EVENT_HANDLER, DATA_HTML_URI)

# Containers nested deeper than this are replaced with None
MAX_DEPTH = 64

# Inbound headers dropped before the request reaches the application
DANGEROUS_HEADERS = frozenset({"x-forwarded-host", "x-forwarded-server"})


def sanitize_string(value: str) -> str:
    # Repeat until stable so that fragments like "javajavascript:script:"
    # cannot reassemble a pattern after a single pass
    while True:
        cleaned = value
        for pattern in DANGEROUS_PATTERNS:
            cleaned = pattern.sub("", cleaned)
        cleaned = cleaned.strip()
        if cleaned == value:
            return cleaned
        value = cleaned


def sanitize(payload: Any, _seen: Optional[Set[int]] = None) -> Any:
    """
    Return a sanitized copy of payload.

    Dicts, lists and tuples are rebuilt depth first. A container met twice
    on the same path (a cycle) is replaced with None, and so is any container
    nested deeper than MAX_DEPTH.
    """
    if isinstance(payload, str):
        return sanitize_string(payload)
    if not isinstance(payload, (dict, list, tuple)):
        return payload

    seen = _seen if _seen is not None else set()
    marker = id(payload)
    if marker in seen or len(seen) >= MAX_DEPTH:
        return None
    seen.add(marker)
    try:
        if isinstance(payload, dict):
            return {key: sanitize(value, seen) for key, value in payload.items()}
        items = [sanitize(item, seen) for item in payload]
        return tuple(items) if isinstance(payload, tuple) else items
    finally:
        seen.discard(marker)
