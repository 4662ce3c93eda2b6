"""
Provider Output Sanitizer

Identity providers are untrusted: their error text is stripped of markup and
length-capped before it reaches a caller, and outbound forms are masked
before being echoed back for debugging.
"""

import re
from typing import Dict, Mapping

MARKUP_PATTERN = re.compile(r"<[^>]*>")

SECRET_MASK = "••••••••"
CODE_PREVIEW_LENGTH = 20

DEFAULT_MAX_LENGTH = 500


def sanitize_error_message(message: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Strip HTML-like tags and truncate to max_length characters."""
    if not isinstance(message, str):
        message = str(message)
    return MARKUP_PATTERN.sub("", message)[:max_length]


def mask_form_for_debug(form: Mapping[str, str]) -> Dict[str, str]:
    """
    Copy of an outbound form safe to show to the caller.

    client_secret is replaced with a fixed mask; code is cut to a short preview.
    """
    masked = {}
    for key, value in form.items():
        if key == "client_secret":
            masked[key] = SECRET_MASK
        elif key == "code" and len(value) > CODE_PREVIEW_LENGTH:
            masked[key] = f"{value[:CODE_PREVIEW_LENGTH]}..."
        else:
            masked[key] = value
    return masked
