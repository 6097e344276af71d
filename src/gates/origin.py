from __future__ import annotations
from typing import Iterable, Optional
from urllib.parse import urlsplit


def _origin_of(url: str) -> Optional[str]:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}".lower()


def is_allowed_origin(origin: Optional[str], referer: Optional[str], allowed: Iterable[str]) -> bool:
    """Origin header wins; the referer is only consulted when no origin was sent."""
    allowed_set = {a.rstrip("/").lower() for a in allowed}
    if origin:
        return origin.rstrip("/").lower() in allowed_set
    if referer:
        return _origin_of(referer) in allowed_set
    return False


def is_allowed_country(country: Optional[str]) -> bool:
    # no geo data means local development or a proxy that strips it
    return not country or country.upper() == "US"
