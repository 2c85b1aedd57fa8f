"""Shared URL utilities: join record paths to environment base URLs."""

from __future__ import annotations

import re
from urllib.parse import urlparse


def build_url(base_url: str, path: str) -> str:
    """Join a base URL and a record path with exactly one slash."""
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def hostname(url: str) -> str:
    return urlparse(url).hostname or ""


def cookie_matches_domain(cookie_domain: str, target_domain: str) -> bool:
    """Cookie domains may carry a leading dot and cover subdomains."""
    cookie_domain = cookie_domain.lstrip(".")
    return cookie_domain == target_domain or target_domain.endswith("." + cookie_domain) \
        or cookie_domain.endswith("." + target_domain)


def sanitize_profile_name(device_name: str) -> str:
    """Playwright descriptor name to profile name: "iPhone 14 Pro Max" -> "iphone-14-pro-max"."""
    return re.sub(r"\s+", "-", device_name.strip().lower())
