"""Upload, listing and deletion on top of a storage backend and a metadata store.

Route handlers stay thin and call into these functions with the storage
and metadata store configured on the app.
"""
import logging
from concurrent.futures import ThreadPoolExecutor

from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy.exc import SQLAlchemyError

from . import reconcile
from .metadata import MetadataRecord
from .naming import (
    ALLOWED_EXTENSIONS,
    content_type_for,
    extension_for_content_type,
    extension_of,
    filename_for_product,
    product_name_from_filename,
    random_suffix,
    sanitize_filename,
    unique_filename,
)
from .scraper import fetch
from .scraper.base import origin_of
from .storage import ObjectNotFound

logger = logging.getLogger(__name__)

STORAGE_ERRORS = (OSError, BotoCoreError, ClientError)
METADATA_ERRORS = STORAGE_ERRORS + (SQLAlchemyError,)


class UploadRejected(Exception):
    pass


def _save_metadata(action, *args, warnings=None):
    """Run a metadata write; failures are logged and reported, never raised."""
    try:
        action(*args)
        return True
    except METADATA_ERRORS as e:
        logger.warning("Metadata write failed: %s", e)
        if warnings is not None:
            warnings.append("Metadata could not be saved; images were stored without enrichment")
        return False


def check_upload(original_name, data, max_size):
    ext = extension_of(original_name)
    if ext not in ALLOWED_EXTENSIONS:
        raise UploadRejected(
            f"{original_name}: Invalid file type ({ext or 'no extension'}). "
            "Only JPG, PNG, and WEBP are allowed."
        )
    if len(data) > max_size:
        raise UploadRejected(
            f"{original_name}: File size exceeds {max_size // (1024 * 1024)}MB limit."
        )
    if not data:
        raise UploadRejected(f"{original_name}: File is empty.")


def upload_images(storage, store, files, image_url_for, max_size,
                  product_url=None, scraped=None):
    """Store each ``(original_name, data)`` pair and record its metadata.

    Invalid files are reported in ``errors`` and skipped; the others are
    still stored.
    """
    uploaded, products, errors, warnings, records = [], [], [], [], []

    for original_name, data in files:
        try:
            check_upload(original_name, data, max_size)
            filename = unique_filename(original_name)
            filename = storage.put(filename, data, content_type_for(filename))
        except UploadRejected as e:
            errors.append(str(e))
            continue
        except STORAGE_ERRORS as e:
            logger.error("Saving %s failed: %s", original_name, e)
            errors.append(f"{original_name}: Failed to save file - {e}")
            continue

        if scraped:
            record = MetadataRecord(
                filename,
                source_url=scraped.product_url,
                product_name=scraped.product_name,
                product_description=scraped.product_description,
                product_image_url=scraped.product_image_url or None,
            )
        else:
            record = MetadataRecord(
                filename,
                source_url=product_url,
                product_name=product_name_from_filename(filename),
            )
        records.append(record)
        uploaded.append(filename)
        products.append({
            "productName": record.product_name,
            "productImageUrl": image_url_for(filename),
            "productUrl": record.source_url,
            "productDescription": record.product_description,
        })

    if records:
        _save_metadata(store.put, *records, warnings=warnings)

    logger.info("Upload complete: %d stored, %d rejected", len(uploaded), len(errors))
    return {"files": uploaded, "products": products, "errors": errors, "warnings": warnings}


def listing_entry(obj, record, image_url_for):
    product_name = (record and record.product_name) or product_name_from_filename(obj.name)
    return {
        "filename": obj.name,
        "productName": product_name,
        "title": product_name,
        "productUrl": record.source_url if record else None,
        "productImageUrl": image_url_for(obj.name),
        "externalImageUrl": record.product_image_url if record else None,
        "description": (record.product_description if record else None) or "",
        "uploadedAt": obj.created_at.isoformat() if obj.created_at else None,
        "size": obj.size,
        "url": obj.url or image_url_for(obj.name),
    }


def list_images(storage, store, image_url_for):
    """Join every stored object with its metadata; returns ``(entries, warnings)``."""
    objects = storage.list()
    records = store.load()
    warnings = list(records.warnings)

    entries, updates = [], []
    for obj in objects:
        association = reconcile.associate(obj.name, records)
        record = association.record if association else None
        if association and association.needs_update:
            logger.info(
                "Matched %s to metadata via %s (url via %s)",
                obj.name, association.strategy, association.url_strategy,
            )
            updates.append(record)
        entries.append(listing_entry(obj, record, image_url_for))

    if updates:
        _save_metadata(store.put, *updates, warnings=warnings)

    entries.sort(key=lambda e: e["title"].casefold())
    return entries, warnings


def resolve_object(storage, name, strategies=reconcile.NAME_STRATEGIES):
    """Find the stored object for a requested name, exact key first."""
    try:
        return storage.stat(name)
    except ObjectNotFound:
        pass
    match = reconcile.match_name(name, storage.list(), key=lambda o: o.key, strategies=strategies)
    if match is None:
        raise ObjectNotFound(name)
    logger.info("Resolved %s to %s via %s", name, match.item.name, match.strategy)
    return match.item


def find_metadata(store, filename):
    records = store.load()
    association = reconcile.associate(filename, records)
    return association.record if association else None


def record_keys_for(names, records):
    """Metadata keys that belong to any of ``names``, suffix drift included."""
    keys = []
    for key in records:
        for name in names:
            if any(accepts(name, key) for _, accepts in reconcile.STRICT_STRATEGIES):
                keys.append(key)
                break
    return keys


def _delete_object(storage, name):
    obj = resolve_object(storage, name, strategies=reconcile.STRICT_STRATEGIES)
    storage.delete(obj.name)
    return obj.name


def _forget(store, names, warnings=None):
    records = store.load()
    keys = record_keys_for(names, records)
    if keys:
        _save_metadata(store.remove, *keys, warnings=warnings)
    return keys


def delete_image(storage, store, name):
    deleted = _delete_object(storage, name)
    _forget(store, [name, deleted])
    logger.info("Deleted %s", deleted)
    return deleted


def bulk_delete(storage, store, names, workers=8):
    """Delete several images concurrently; one failure does not stop the rest."""
    results = []
    with ThreadPoolExecutor(max_workers=max(1, min(workers, len(names) or 1))) as pool:
        futures = [(name, pool.submit(_delete_object, storage, name)) for name in names]
        for name, future in futures:
            try:
                deleted = future.result()
            except ObjectNotFound:
                results.append({"filename": name, "success": False, "error": "File not found"})
            except STORAGE_ERRORS as e:
                logger.error("Deleting %s failed: %s", name, e)
                results.append({"filename": name, "success": False, "error": "Failed to delete file"})
            else:
                results.append({"filename": name, "success": True, "deleted": deleted})

    removed = [r["filename"] for r in results if r["success"]]
    removed += [r["deleted"] for r in results if r["success"]]
    if removed:
        _forget(store, removed)

    successful = sum(1 for r in results if r["success"])
    logger.info("Bulk delete: %d deleted, %d failed", successful, len(results) - successful)
    return {"successful": successful, "failed": len(results) - successful, "results": results}


def save_product_image(storage, scraped, timeout, max_bytes):
    """Download the scraped image and store it; None when anything fails."""
    if not scraped.product_image_url:
        return None
    downloaded = fetch.download_image(
        scraped.product_image_url,
        referer=origin_of(scraped.product_url) + "/",
        timeout=timeout,
        max_bytes=max_bytes,
    )
    if downloaded is None:
        return None
    data, content_type = downloaded
    filename = filename_for_product(scraped.product_name, extension_for_content_type(content_type))
    try:
        return storage.put(filename, data, content_type_for(filename))
    except STORAGE_ERRORS as e:
        logger.error("Storing image for %s failed: %s", scraped.product_url, e)
        return None


def import_product(storage, store, scraped, image_url_for, timeout, max_bytes):
    """Persist a scrape result as a stored image plus its metadata record."""
    saved = save_product_image(storage, scraped, timeout, max_bytes)
    key = saved or f"placeholder_{sanitize_filename(scraped.product_name)[:50]}_{random_suffix()}"
    record = MetadataRecord(
        key,
        source_url=scraped.product_url,
        product_name=scraped.product_name,
        product_description=scraped.product_description,
        product_image_url=scraped.product_image_url or None,
    )
    warnings = []
    _save_metadata(store.put, record, warnings=warnings)
    return {
        "imageUrl": image_url_for(saved) if saved else scraped.product_image_url,
        "productUrl": scraped.product_url,
        "productName": scraped.product_name,
        "productDescription": scraped.product_description,
        "filename": saved,
        "warnings": warnings,
    }
