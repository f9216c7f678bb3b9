"""Join stored objects with metadata records whose names have drifted apart.

Upload names carry our own ``_<hex>`` suffix and a blob store may append
its own ``-<token>`` on top, so the name a client asks for, the name the
backend returns and the key in the metadata map are often not equal.

Each strategy is a plain function ``(requested, candidate) -> bool``.
:func:`match_name` walks them in order and returns the first hit, trying
one strategy against every candidate before falling back to the next.
Ties go to the earliest candidate, not the best one.
"""
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from urllib.parse import unquote

from .naming import product_name_from_filename

MIN_FRAGMENT = 3

STOP_WORDS = {
    "and", "for", "the", "with", "from", "pack", "set", "new", "product",
    "details", "buy", "online", "men", "women",
}

URL_RE = re.compile(r"https?://[^\s\"'<>]+")
TOKEN_RE = re.compile(r"^[A-Za-z0-9]+$")


def leaf(path):
    return path.rsplit("/", 1)[-1]


def stem(name):
    return leaf(name).rsplit(".", 1)[0]


def base_name(name):
    """Drop the extension and a trailing ``-token`` added by the blob store.

    Only an alphanumeric tail counts as a token, so a hyphen inside the
    sanitized original name (``my-photo_ab12.png``) is left alone.
    """
    name = stem(name)
    if "-" in name:
        head, tail = name.rsplit("-", 1)
        if head and TOKEN_RE.match(tail):
            return head
    return name


def _names(requested):
    decoded = unquote(requested)
    return (requested, decoded) if decoded != requested else (requested,)


def exact(requested, candidate):
    return leaf(candidate) in _names(requested)


def casefold(requested, candidate):
    name = leaf(candidate).casefold()
    return any(name == r.casefold() for r in _names(requested))


def same_base(requested, candidate):
    for r in _names(requested):
        if base_name(r) == base_name(candidate):
            return True
    return one_side_suffixed(requested, candidate)


def one_side_suffixed(requested, candidate):
    """Exactly one of the names carries a provider suffix over the other.

    Two different suffixes on the same base (``iphone-14`` and
    ``iphone-15``) do not match.
    """
    for r in _names(requested):
        if stem(r) == base_name(candidate) != stem(candidate):
            return True
        if base_name(r) == stem(candidate) != stem(r):
            return True
    return False


def contains(requested, candidate):
    cb = base_name(candidate)
    for r in _names(requested):
        rb = base_name(r)
        if len(rb) < MIN_FRAGMENT or len(cb) < MIN_FRAGMENT:
            continue
        if rb in cb or cb in rb:
            return True
    return False


def path_suffix(requested, candidate):
    return any(
        candidate == r or candidate.endswith("/" + r.lstrip("/")) for r in _names(requested)
    )


NAME_STRATEGIES: List[Tuple[str, Callable[[str, str], bool]]] = [
    ("exact", exact),
    ("casefold", casefold),
    ("base-name", same_base),
    ("contains", contains),
    ("path-suffix", path_suffix),
]

# used when the result is destructive: no substring guesses and no
# matching between two differently suffixed names
STRICT_STRATEGIES: List[Tuple[str, Callable[[str, str], bool]]] = [
    ("exact", exact),
    ("casefold", casefold),
    ("suffixed", one_side_suffixed),
    ("path-suffix", path_suffix),
]


@dataclass
class Match:
    item: object
    strategy: str

    @property
    def exact(self):
        return self.strategy == "exact"


def match_name(requested, candidates, key=lambda c: c, strategies=NAME_STRATEGIES):
    """Return a Match for the first candidate accepted by the earliest strategy."""
    if not requested:
        return None
    candidates = list(candidates)
    for strategy, accepts in strategies:
        for candidate in candidates:
            if accepts(requested, key(candidate)):
                return Match(candidate, strategy)
    return None


def significant_words(text):
    return {
        w for w in re.findall(r"[a-z0-9]+", (text or "").lower())
        if len(w) >= MIN_FRAGMENT and w not in STOP_WORDS
    }


def normalize_product_name(text):
    return " ".join(re.findall(r"[a-z0-9]+", (text or "").lower()))


def same_product(a, b):
    """Exact normalized name, or at least two shared significant words."""
    if not a or not b:
        return False
    if normalize_product_name(a) == normalize_product_name(b):
        return True
    return len(significant_words(a) & significant_words(b)) >= 2


def find_record(filename, records) -> Optional[Match]:
    """Find the metadata record for a stored filename."""
    match = match_name(filename, list(records))
    if match:
        return Match(records[match.item], match.strategy)

    derived = product_name_from_filename(filename)
    for record in records.values():
        if same_product(derived, record.product_name):
            return Match(record, "product-name")
    return None


def url_from_description(description):
    match = URL_RE.search(description or "")
    if not match:
        return None
    return match.group(0).rstrip(".,;:)]}")


def resolve_source_url(record, records):
    """Return ``(url, strategy)`` for a record, borrowing or extracting if needed."""
    if record.source_url:
        return record.source_url, "record"
    for other in records.values():
        if other is record or not other.source_url:
            continue
        if same_product(record.product_name, other.product_name):
            return other.source_url, "product-name"
    url = url_from_description(record.product_description)
    if url:
        return url, "description-url"
    return None, None


@dataclass
class Association:
    record: object
    strategy: str
    url_strategy: Optional[str] = None

    @property
    def needs_update(self):
        # anything not found by exact key, or with a discovered URL, is
        # written back under the physical name
        return not (self.strategy == "exact" and self.url_strategy in (None, "record"))


def associate(filename, records) -> Optional[Association]:
    match = find_record(filename, records)
    if match is None:
        return None
    record = match.item
    url, url_strategy = resolve_source_url(record, records)
    if url and url != record.source_url:
        record = record.renamed(filename)
        record.source_url = url
    elif not match.exact:
        record = record.renamed(filename)
    return Association(record, match.strategy, url_strategy)
