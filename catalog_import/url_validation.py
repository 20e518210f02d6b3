"""Image reference resolution and URL validation.

Supplier feeds mix absolute image URLs with host-relative paths. Every
reference is resolved against the image host and checked before fetching.
"""

import re
from typing import Optional, Set
from urllib.parse import urljoin, urlparse

__all__ = [
    "URLValidationError",
    "sanitize_url",
    "resolve_image_ref",
    "validate_image_url",
    "is_safe_image_ref",
]


class URLValidationError(ValueError):
    """Raised when URL validation fails."""
    pass


# Dangerous URL schemes to reject
DANGEROUS_SCHEMES = {"javascript", "data", "vbscript", "file"}

SUSPICIOUS_PATTERNS = (
    r"\.\./",            # Path traversal
    r"%2e%2e",           # Encoded path traversal
    r"<script",          # XSS attempt
    r"javascript:",      # JS injection
)


def sanitize_url(url: str) -> str:
    """Strip whitespace, control characters and null bytes from a URL."""
    if not url:
        return ""
    url = url.strip()
    url = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", url)
    return url.replace("%00", "")


def resolve_image_ref(ref: str, base_url: str) -> str:
    """Turn a feed image reference into an absolute URL.

    Args:
        ref: Absolute URL, protocol-relative URL, or host-relative path
        base_url: Image host used for relative references

    Returns:
        Absolute URL (not yet validated)

    Raises:
        URLValidationError: If the reference is empty or cannot be parsed
    """
    ref = sanitize_url(ref)
    if not ref:
        raise URLValidationError("Image reference is empty")
    if ref.startswith("//"):
        return "https:" + ref
    try:
        if urlparse(ref).scheme:
            return ref
        return urljoin(base_url.rstrip("/") + "/", ref.lstrip("/"))
    except ValueError as e:
        raise URLValidationError(f"Failed to parse image reference: {e}") from e


def validate_image_url(url: str, allowed_domains: Optional[Set[str]] = None) -> str:
    """Validate an absolute image URL.

    Args:
        url: URL to validate
        allowed_domains: Optional set of hosts to restrict fetching to

    Returns:
        Validated URL

    Raises:
        URLValidationError: If URL is unsafe or malformed
    """
    url = sanitize_url(url)
    if not url:
        raise URLValidationError("URL is empty")

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise URLValidationError(f"Failed to parse image URL: {e}") from e

    scheme = parsed.scheme.lower()
    if scheme in DANGEROUS_SCHEMES:
        raise URLValidationError(f"Dangerous URL scheme in image: {scheme}")
    if scheme not in ("http", "https"):
        raise URLValidationError(f"Invalid image URL scheme: {scheme}")

    host = (parsed.hostname or "").lower()
    if not host:
        raise URLValidationError("URL has no domain")
    if allowed_domains and host not in allowed_domains:
        raise URLValidationError(f"Image host '{host}' not in allowed domains")

    url_lower = url.lower()
    for pattern in SUSPICIOUS_PATTERNS:
        if re.search(pattern, url_lower):
            raise URLValidationError(f"URL contains suspicious pattern: {pattern}")

    return url


def is_safe_image_ref(ref: str, base_url: str) -> bool:
    """Check a feed image reference without raising."""
    try:
        validate_image_url(resolve_image_ref(ref, base_url))
        return True
    except URLValidationError:
        return False
