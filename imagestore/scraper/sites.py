import re

from .base import SiteExtractor


class FlipkartExtractor(SiteExtractor):
    name = "Flipkart"
    domains = ("flipkart.com",)
    name_selectors = (
        "h1.B_NuCI",
        "span.B_NuCI",
        "h1.yhB1nd",
        "span.VU-ZEz",
    )
    description_selectors = (
        "div._1mXcCf",
        "div.RmoJUa",
        "p._2-N8zT",
        "div._2418kt",
    )
    feature_selectors = ("li._21Ahn-", "li._7eSDEz")
    image_selectors = (
        "img.q6DClP",
        "img._396cs4",
        "img.CXW8mj",
        "img._2r_T1I",
        "img.DByuf4",
        "div.CXW8mj img",
    )
    title_cleanup = (r"\s*[-|:]\s*(Buy .*)?Flipkart.*$",)
    url_name_patterns = (r"/([^/]+)/p/",)


class AmazonExtractor(SiteExtractor):
    name = "Amazon"
    domains = ("amazon.in", "amazon.com", "amazon.co.uk")
    name_selectors = ("#productTitle", "#title", "h1.product-title")
    description_selectors = ("#productDescription", "#bookDescription_feature_div")
    feature_selectors = ("#feature-bullets li span.a-list-item",)
    image_selectors = ("#landingImage", "#imgBlkFront", "#imgTagWrapperId img")
    title_cleanup = (r"^Amazon\.[a-z.]+\s*:\s*", r"\s*:\s*Amazon\.[a-z.]+.*$")
    url_name_patterns = (r"/([^/]+)/dp/", r"/([^/]+)/gp/product/")


class MyntraExtractor(SiteExtractor):
    name = "Myntra"
    domains = ("myntra.com",)
    name_selectors = ("h1.pdp-name", "h1.pdp-title")
    description_selectors = (".pdp-product-description-content",)
    feature_selectors = (".index-tableContainer .index-rowValue",)
    image_selectors = (".image-grid-image", ".image-grid-imageContainer img")
    title_cleanup = (r"^Buy\s+", r"\s*[-|]\s*Myntra.*$")
    url_name_patterns = (r"/([^/]+)/\d+/buy",)


class MeeshoExtractor(SiteExtractor):
    name = "Meesho"
    domains = ("meesho.com",)
    name_selectors = ("[class*='ProductTitle']", "[class*='ProductName']")
    description_selectors = ("[class*='ProductDescription']",)
    image_selectors = ("[class*='ProductImage'] img", "picture img")
    title_cleanup = (r"\s*[-|]\s*Meesho.*$",)
    url_name_patterns = (r"/([^/]+)/p/",)


class GenericExtractor(SiteExtractor):
    """Structured data and generic tags only, for operator-added domains."""

    def __init__(self, domain):
        self.domains = (domain,)
        label = domain.split(".")[0] if not domain.startswith("www.") else domain.split(".")[1]
        self.name = " ".join(part.capitalize() for part in label.split("-"))
        self.title_cleanup = (rf"\s*[-|:]\s*{re.escape(self.name)}.*$",)


REGISTRY = [
    FlipkartExtractor(),
    AmazonExtractor(),
    MyntraExtractor(),
    MeeshoExtractor(),
]


def find_extractor(host, extra_domains=()):
    for extractor in REGISTRY:
        if extractor.match(host):
            return extractor
    for domain in extra_domains:
        extractor = GenericExtractor(domain)
        if extractor.match(host):
            return extractor
    return None
