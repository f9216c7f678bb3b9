"""Filename rules shared by uploads, scraped images and the listing."""
import os
import re
import secrets

ALLOWED_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}

SUFFIX_BYTES = 8


def extension_of(filename):
    return os.path.splitext(filename or "")[1].lower()


def is_allowed(filename):
    return extension_of(filename) in ALLOWED_EXTENSIONS


def content_type_for(filename):
    return CONTENT_TYPES.get(extension_of(filename), "application/octet-stream")


def extension_for_content_type(content_type):
    content_type = (content_type or "").lower()
    if "png" in content_type:
        return ".png"
    if "webp" in content_type:
        return ".webp"
    return ".jpg"


def sanitize_filename(name):
    name = re.sub(r"[^a-zA-Z0-9.-]", "_", name)
    name = re.sub(r"_{2,}", "_", name)
    return name.lower()


def random_suffix():
    return secrets.token_hex(SUFFIX_BYTES)


def unique_filename(original_name):
    """``My Photo.PNG`` -> ``my_photo_<16 hex>.png``."""
    stem, ext = os.path.splitext(os.path.basename(original_name))
    return f"{sanitize_filename(stem)}_{random_suffix()}{ext.lower()}"


def filename_for_product(product_name, ext):
    stem = sanitize_filename(product_name)[:50].strip("_") or "product"
    return f"{stem}_{random_suffix()}{ext}"


def product_name_from_filename(filename):
    """Drop the extension and the trailing ``_suffix`` a generated name carries.

    ``phone1_9712de3ac759785d.webp`` -> ``phone1``
    ``product_name_abc123.jpg`` -> ``product name``
    """
    stem = os.path.splitext(os.path.basename(filename))[0]
    parts = stem.split("_")
    if len(parts) > 1:
        return " ".join(parts[:-1]).strip() or stem
    return stem
