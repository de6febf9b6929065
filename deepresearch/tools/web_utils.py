from __future__ import annotations

import re
from urllib.parse import urlparse, urlunparse


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except Exception:
        return False


def normalize_url(url: str) -> str:
    """Add a scheme when missing and drop fragments; returns "" if unusable."""
    if not isinstance(url, str):
        return ""
    candidate = url.strip()
    if not candidate:
        return ""
    if not candidate.startswith(("http://", "https://")):
        candidate = f"https://{candidate}"
    if not is_valid_url(candidate):
        return ""
    parsed = urlparse(candidate)
    return urlunparse(parsed._replace(fragment=""))


def clean_content(text: str, max_length: int = 8000) -> str:
    """Collapse blank-line runs and trim to max length."""
    text = re.sub(r"\n{3,}", "\n\n", text or "")
    text = re.sub(r"[ \t]+", " ", text).strip()
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def extract_domain(url: str) -> str:
    """Extract the host without a leading www."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except Exception:
        return url
    return host[4:] if host.startswith("www.") else host
