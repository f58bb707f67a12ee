"""Classification of image references before they reach the database."""

import re
from typing import Any, List

from ..config import settings
from ..constants import DISALLOWED_URL_SCHEMES, MAX_IMAGE_LOCATION_LENGTH

_HTTP_URL = re.compile(r"^https?://", re.IGNORECASE)
DEFAULT_UPLOAD_PREFIX = "/api/uploads"


def _normalise_prefix(prefix: str) -> str:
    trimmed = (prefix or "").strip()
    if not trimmed:
        return ""
    return "/" + trimmed.strip("/")


def local_upload_prefixes() -> List[str]:
    """Public path prefixes served from the local upload directory."""
    prefixes: List[str] = []
    candidates = [DEFAULT_UPLOAD_PREFIX, settings.uploads_public_path, *settings.legacy_upload_prefixes]
    for candidate in candidates:
        if _HTTP_URL.match(candidate or ""):
            continue
        normalised = _normalise_prefix(candidate)
        if normalised and normalised != "/" and normalised not in prefixes:
            prefixes.append(normalised)
    return prefixes


def is_local_upload_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    candidate = value.strip()
    if not candidate:
        return False
    return any(candidate == prefix or candidate.startswith(prefix + "/") for prefix in local_upload_prefixes())


def is_valid_image_location(value: Any) -> bool:
    """Return True when ``value`` is safe to store as an image reference.

    Accepts absolute http(s) URLs, ``data:image/*`` URLs and paths inside the
    local upload namespace. Script-capable schemes, blank values and values
    longer than 2048 characters are rejected.
    """
    if not isinstance(value, str):
        return False
    trimmed = value.strip()
    if not trimmed or len(trimmed) > MAX_IMAGE_LOCATION_LENGTH:
        return False

    lowered = trimmed.lower()
    if lowered.startswith(DISALLOWED_URL_SCHEMES):
        return False
    if lowered.startswith("data:"):
        return lowered.startswith("data:image/")
    if _HTTP_URL.match(trimmed):
        return True
    return is_local_upload_url(trimmed)
