"""Product details from retail product pages.

``scrape`` validates the URL against the site registry before any network
call, fetches the page once and runs the site's extraction cascade. Blocked
pages and failed fetches fall back to a name guessed from the URL.
"""
import logging
from urllib.parse import urlparse

import requests

from . import fetch
from .base import InvalidProductUrl, ScrapeError, ScrapeResult, UnsupportedDomain
from .sites import REGISTRY, find_extractor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

__all__ = [
    "InvalidProductUrl",
    "REGISTRY",
    "ScrapeError",
    "ScrapeResult",
    "UnsupportedDomain",
    "normalize_url",
    "resolve_site",
    "scrape",
]


def normalize_url(url):
    if not isinstance(url, str) or not url.strip():
        raise InvalidProductUrl("Product URL is required")
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    url = url.split("#", 1)[0]
    parsed = urlparse(url)
    if not parsed.hostname or "." not in parsed.hostname:
        raise InvalidProductUrl(f"Not a valid product URL: {url}")
    return url


def resolve_site(url, extra_domains=()):
    """Return ``(extractor, normalized_url)`` or raise before touching the network."""
    url = normalize_url(url)
    host = urlparse(url).hostname
    extractor = find_extractor(host, extra_domains)
    if extractor is None:
        raise UnsupportedDomain(f"Unsupported product URL domain: {host}")
    return extractor, url


def scrape(url, timeout=DEFAULT_TIMEOUT, extra_domains=()):
    extractor, url = resolve_site(url, extra_domains)

    try:
        markup = fetch.fetch_page(url, extractor.referer(url), timeout)
    except requests.Timeout:
        logger.warning("Timed out after %ss fetching %s", timeout, url)
        return extractor.fallback(url, "timeout", strict=True)
    except requests.RequestException as e:
        logger.warning("Fetching %s failed: %s", url, e)
        return extractor.fallback(url, "request failed", strict=True)

    if len(markup) < fetch.MIN_PAGE_LENGTH:
        logger.warning("Page from %s is only %d characters", url, len(markup))
        return extractor.fallback(url, "empty page", strict=True)

    blocked = fetch.detect_block(markup)
    if blocked:
        logger.warning("%s served a block page (%s)", extractor.name, blocked)
        return extractor.fallback(url, f"blocked: {blocked}")

    return extractor.extract(markup, url)
