import html
import json
import logging
import re
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

PRODUCT_TYPES = {"Product", "ProductGroup", "IndividualProduct"}
IMAGE_ATTRS = ("data-old-hires", "data-src", "src")
BACKGROUND_URL_RE = re.compile(r"url\(\s*['\"]?([^'\")]+)['\"]?\s*\)")
SIZE_UNIT_RE = re.compile(r"\b(\d+)\s*(gb|tb|mb)\b", re.I)

MIN_NAME_LENGTH = 3
MIN_DESCRIPTION_LENGTH = 20
MIN_FEATURE_LENGTH = 10


class ScrapeError(Exception):
    pass


class InvalidProductUrl(ScrapeError):
    pass


class UnsupportedDomain(ScrapeError):
    pass


@dataclass
class ScrapeResult:
    product_name: str
    product_description: str
    product_image_url: str
    product_url: str
    site: str
    source: str = "default"

    def to_dict(self):
        return {
            "productName": self.product_name,
            "productDescription": self.product_description,
            "productImageUrl": self.product_image_url,
            "productUrl": self.product_url,
        }


def clean_text(value):
    if not value:
        return ""
    value = re.sub(r"<[^>]+>", " ", str(value))
    value = html.unescape(value).replace("\xa0", " ")
    return re.sub(r"\s+", " ", value).strip()


def origin_of(url):
    parsed = urlparse(url)
    return f"{parsed.scheme or 'https'}://{parsed.netloc}"


def normalize_image_url(src, origin):
    if not src:
        return ""
    src = html.unescape(src.strip())
    if not src or src.startswith("data:"):
        return ""
    if src.startswith("//"):
        src = "https:" + src
    elif src.startswith("/"):
        src = origin + src
    elif not src.startswith(("http://", "https://")):
        return ""
    return src.split("#", 1)[0].split("?", 1)[0]


def title_case_slug(slug):
    words = [w for w in unquote(slug).replace("_", "-").split("-") if w]
    name = " ".join(w[:1].upper() + w[1:] for w in words)
    return SIZE_UNIT_RE.sub(lambda m: f"({m.group(1)} {m.group(2).upper()})", name).strip()


class Page:
    """Parsed product page handed to every extraction stage."""

    def __init__(self, markup, url):
        self.url = url
        self.origin = origin_of(url)
        self.soup = BeautifulSoup(markup, "html.parser")
        self.products = list(self._json_ld_products())

    def _json_ld_products(self):
        for script in self.soup.find_all("script", attrs={"type": "application/ld+json"}):
            raw = script.string or script.get_text()
            try:
                data = json.loads(raw)
            except ValueError:
                continue
            for node in _walk_json_ld(data):
                if _is_product(node):
                    yield node

    def meta(self, *names):
        for name in names:
            tag = self.soup.find("meta", attrs={"property": name}) or self.soup.find(
                "meta", attrs={"name": name}
            )
            if tag and tag.get("content"):
                return tag["content"]
        return ""


def _walk_json_ld(data):
    if isinstance(data, list):
        for item in data:
            yield from _walk_json_ld(item)
    elif isinstance(data, dict):
        yield data
        if "@graph" in data:
            yield from _walk_json_ld(data["@graph"])


def _is_product(node):
    types = node.get("@type")
    if isinstance(types, str):
        types = [types]
    if not isinstance(types, list):
        return False
    return any(isinstance(t, str) and t in PRODUCT_TYPES for t in types)


def _image_from_ld(value):
    if isinstance(value, list):
        for item in value:
            found = _image_from_ld(item)
            if found:
                return found
        return ""
    if isinstance(value, dict):
        return value.get("url") or value.get("contentUrl") or ""
    if isinstance(value, str):
        return value
    return ""


class SiteExtractor:
    """Extraction rules for one retailer.

    Each field is tried against JSON-LD, then Open Graph / Twitter meta
    tags, then this site's CSS selectors, then generic tags. Subclasses
    only fill in the class attributes below.
    """

    name = "Store"
    domains = ()
    name_selectors = ()
    description_selectors = ()
    feature_selectors = ()
    image_selectors = ()
    title_cleanup = ()
    url_name_patterns = ()

    def match(self, host):
        host = (host or "").lower().split(":", 1)[0]
        return any(host == d or host.endswith("." + d) for d in self.domains)

    def referer(self, url):
        return origin_of(url) + "/"

    @property
    def default_name(self):
        return f"Product from {self.name}"

    @property
    def default_description(self):
        return f"Product details from {self.name}"

    # name

    def _ld_name(self, page):
        for product in page.products:
            if isinstance(product.get("name"), str):
                return clean_text(product["name"])
        return ""

    def _meta_name(self, page):
        return clean_text(page.meta("og:title", "twitter:title"))

    def _site_name(self, page):
        for css in self.name_selectors:
            el = page.soup.select_one(css)
            if el:
                text = clean_text(el.get_text(" "))
                if len(text) > MIN_NAME_LENGTH:
                    return text
        return ""

    def _generic_name(self, page):
        h1 = page.soup.find("h1")
        if h1:
            text = clean_text(h1.get_text(" "))
            if len(text) > MIN_NAME_LENGTH:
                return text
        if page.soup.title and page.soup.title.string:
            return self.clean_title(page.soup.title.string)
        return ""

    def clean_title(self, title):
        title = clean_text(title)
        for pattern in self.title_cleanup:
            title = re.sub(pattern, "", title, flags=re.I)
        return title.strip()

    # description

    def _ld_description(self, page):
        for product in page.products:
            if isinstance(product.get("description"), str):
                return clean_text(product["description"])
        return ""

    def _meta_description(self, page):
        text = clean_text(page.meta("og:description", "description", "twitter:description"))
        return text if len(text) > MIN_DESCRIPTION_LENGTH else ""

    def _site_description(self, page):
        for css in self.description_selectors:
            el = page.soup.select_one(css)
            if el:
                text = clean_text(el.get_text(" "))
                if len(text) > MIN_DESCRIPTION_LENGTH:
                    return text
        features = []
        for css in self.feature_selectors:
            for el in page.soup.select(css):
                text = clean_text(el.get_text(" "))
                if len(text) > MIN_FEATURE_LENGTH:
                    features.append(text)
        return ". ".join(features)

    def _generic_description(self, page):
        return ""

    # image

    def _ld_image(self, page):
        for product in page.products:
            url = normalize_image_url(_image_from_ld(product.get("image")), page.origin)
            if url:
                return url
        return ""

    def _meta_image(self, page):
        return normalize_image_url(
            page.meta("og:image", "og:image:secure_url", "twitter:image"), page.origin
        )

    def _site_image(self, page):
        for css in self.image_selectors:
            for el in page.soup.select(css):
                for attr in IMAGE_ATTRS:
                    url = normalize_image_url(el.get(attr), page.origin)
                    if url:
                        return url
                style = BACKGROUND_URL_RE.search(el.get("style") or "")
                if style:
                    url = normalize_image_url(style.group(1), page.origin)
                    if url:
                        return url
        return ""

    def _generic_image(self, page):
        for img in page.soup.find_all("img"):
            url = normalize_image_url(img.get("src"), page.origin)
            if url:
                return url
        return ""

    def _first(self, page, stages):
        for label, stage in stages:
            value = stage(page)
            if value:
                return value, label
        return "", None

    def extract(self, markup, url):
        page = Page(markup, url)
        name, source = self._first(page, [
            ("json-ld", self._ld_name),
            ("meta", self._meta_name),
            ("site", self._site_name),
            ("generic", self._generic_name),
        ])
        description, _ = self._first(page, [
            ("json-ld", self._ld_description),
            ("meta", self._meta_description),
            ("site", self._site_description),
            ("generic", self._generic_description),
        ])
        image_url, image_source = self._first(page, [
            ("json-ld", self._ld_image),
            ("meta", self._meta_image),
            ("site", self._site_image),
            ("generic", self._generic_image),
        ])

        if not name:
            name = self.name_from_url(url)
            source = "url" if name else "default"

        logger.info(
            "Extracted %s product: name via %s, image %s",
            self.name, source, f"via {image_source}" if image_url else "not found",
        )
        return ScrapeResult(
            product_name=name or self.default_name,
            product_description=description or self.default_description,
            product_image_url=image_url,
            product_url=url,
            site=self.name,
            source=source,
        )

    def name_from_url(self, url):
        path = urlparse(url).path
        for pattern in self.url_name_patterns:
            match = re.search(pattern, path)
            if match:
                return title_case_slug(match.group(1))
        # longest hyphenated segment that is not just an id
        segments = [
            s for s in path.split("/")
            if "-" in s and re.search(r"[a-zA-Z]{2,}", s)
        ]
        if segments:
            return title_case_slug(max(segments, key=len))
        return ""

    def fallback(self, url, reason, strict=False):
        """Best-effort result built from the URL alone.

        With ``strict`` a URL that yields no product name is a failure
        rather than a default-filled result.
        """
        name = self.name_from_url(url)
        if not name and strict:
            raise ScrapeError(f"Could not fetch product page ({reason})")
        logger.warning("Using URL-derived details for %s (%s)", url, reason)
        return ScrapeResult(
            product_name=name or self.default_name,
            product_description=self.default_description,
            product_image_url="",
            product_url=url,
            site=self.name,
            source="url" if name else "default",
        )
