import logging

import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

PAGE_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}

IMAGE_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

# matched against the page title and visible text, never raw markup
BLOCK_MARKERS = (
    "Access Denied",
    "You have been blocked",
    "Request blocked",
    "Attention Required! | Cloudflare",
    "Checking your browser before accessing",
    "Robot Check",
    "Enter the characters you see below",
)

CHALLENGE_IDS = ("cf-browser-verification", "challenge-form", "cf-challenge-running")

MIN_PAGE_LENGTH = 100


def fetch_page(url, referer, timeout):
    """GET a product page; raises requests exceptions on timeout or non-2xx."""
    logger.info("Fetching product page %s", url)
    resp = requests.get(
        url, headers={**PAGE_HEADERS, "Referer": referer}, timeout=timeout
    )
    if not resp.ok:
        logger.warning("Product page %s returned %s", url, resp.status_code)
    resp.raise_for_status()
    return resp.text


def detect_block(html):
    """Return a short reason when the page is a block, challenge or login page."""
    soup = BeautifulSoup(html, "html.parser")
    has_structured_data = soup.find("script", attrs={"type": "application/ld+json"}) is not None
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    text = " ".join(soup.get_text(" ").split())
    for marker in BLOCK_MARKERS:
        if marker in text:
            return marker
    for element_id in CHALLENGE_IDS:
        if soup.find(id=element_id):
            return element_id
    if soup.find("input", attrs={"type": "password"}) and not has_structured_data:
        return "login page"
    return None


def download_image(url, referer, timeout, max_bytes=None):
    """Fetch an image; returns ``(bytes, content_type)`` or None on any failure."""
    try:
        resp = requests.get(
            url, headers={**IMAGE_HEADERS, "Referer": referer}, timeout=timeout
        )
    except requests.RequestException as e:
        logger.warning("Image download from %s failed: %s", url, e)
        return None
    if not resp.ok:
        logger.warning("Image download from %s returned %s", url, resp.status_code)
        return None

    content_type = resp.headers.get("Content-Type", "image/jpeg").split(";")[0].strip()
    if not content_type.startswith("image/"):
        logger.warning("Image URL %s served %s, not an image", url, content_type)
        return None
    data = resp.content
    if not data:
        logger.warning("Image URL %s returned an empty body", url)
        return None
    if max_bytes and len(data) > max_bytes:
        logger.warning("Image from %s is %d bytes, over the %d limit", url, len(data), max_bytes)
        return None
    return data, content_type
