import logging

from flask import Blueprint, Response, current_app, jsonify, request, url_for

from . import gallery, scraper
from .naming import content_type_for, is_allowed
from .scraper import InvalidProductUrl, ScrapeError, UnsupportedDomain
from .storage import ObjectNotFound

logger = logging.getLogger(__name__)

images_bp = Blueprint("images", __name__)

IMMUTABLE = "public, max-age=31536000, immutable"
NO_STORE = "no-store, no-cache, must-revalidate"


def _storage():
    return current_app.extensions["imagestore.storage"]


def _metadata():
    return current_app.extensions["imagestore.metadata"]


def _image_url(filename):
    return url_for("images.get_image", filename=filename, _external=True)


def _scrape(product_url):
    return scraper.scrape(
        product_url,
        timeout=current_app.config["SCRAPER_TIMEOUT"],
        extra_domains=current_app.config["SCRAPER_EXTRA_DOMAINS"],
    )


def _invalid_type():
    return jsonify({"error": "Invalid file type"}), 400


@images_bp.route("/upload", methods=["POST"])
def upload():
    files = request.files.getlist("images") or request.files.getlist("image")
    files = [f for f in files if f and f.filename]
    if not files:
        return jsonify({"error": "No files provided"}), 400

    product_url = (request.form.get("productUrl") or request.form.get("flipkartUrl") or "").strip()
    scraped = None
    warnings = []
    if product_url:
        try:
            _, product_url = scraper.resolve_site(
                product_url, current_app.config["SCRAPER_EXTRA_DOMAINS"]
            )
            scraped = _scrape(product_url)
        except (UnsupportedDomain, InvalidProductUrl) as e:
            return jsonify({"error": str(e)}), 400
        except ScrapeError as e:
            logger.warning("Uploading without product details: %s", e)
            warnings.append(f"Could not extract product details: {e}")

    result = gallery.upload_images(
        _storage(),
        _metadata(),
        [(f.filename, f.read()) for f in files],
        image_url_for=_image_url,
        max_size=current_app.config["MAX_UPLOAD_SIZE"],
        product_url=product_url or None,
        scraped=scraped,
    )
    if not result["files"]:
        return jsonify({"error": "No files were uploaded", "errors": result["errors"]}), 400

    body = {
        "success": True,
        "uploaded": len(result["files"]),
        "files": result["files"],
        "products": result["products"],
    }
    if result["errors"]:
        body["errors"] = result["errors"]
    warnings += result["warnings"]
    if warnings:
        body["warnings"] = warnings
    return jsonify(body)


@images_bp.route("/extract-url", methods=["POST"])
def extract_url():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON in request body"}), 400

    product_url = data.get("productUrl") or data.get("flipkartUrl")
    if not isinstance(product_url, str) or not product_url.strip():
        return jsonify({"error": "productUrl is required and must be a non-empty string"}), 400

    try:
        scraped = _scrape(product_url)
    except (UnsupportedDomain, InvalidProductUrl) as e:
        return jsonify({"error": str(e)}), 400
    except ScrapeError as e:
        logger.warning("Extraction failed for %s: %s", product_url, e)
        return jsonify({
            "error": "Failed to extract product details. The URL might be invalid, "
                     "blocked, or the page structure has changed."
        }), 400

    result = gallery.import_product(
        _storage(),
        _metadata(),
        scraped,
        image_url_for=_image_url,
        timeout=current_app.config["SCRAPER_TIMEOUT"],
        max_bytes=current_app.config["MAX_UPLOAD_SIZE"],
    )
    warnings = result.pop("warnings")
    body = {"success": True, **result}
    if warnings:
        body["warnings"] = warnings
    return jsonify(body)


@images_bp.route("/images", methods=["GET"])
def list_images():
    entries, warnings = gallery.list_images(_storage(), _metadata(), _image_url)
    body = {"success": True, "count": len(entries), "images": entries}
    if warnings:
        body["warnings"] = warnings
    resp = jsonify(body)
    resp.headers["Cache-Control"] = NO_STORE
    return resp


@images_bp.route("/images/<filename>", methods=["GET"])
def get_image(filename):
    if not is_allowed(filename):
        return _invalid_type()
    storage = _storage()
    try:
        obj = gallery.resolve_object(storage, filename)
        data = storage.get(obj.name)
    except ObjectNotFound:
        return jsonify({"error": "File not found"}), 404
    return Response(
        data,
        mimetype=content_type_for(obj.name),
        headers={"Cache-Control": IMMUTABLE},
    )


@images_bp.route("/images/<filename>/info", methods=["GET"])
def image_info(filename):
    if not is_allowed(filename):
        return _invalid_type()
    try:
        obj = gallery.resolve_object(_storage(), filename)
    except ObjectNotFound:
        return jsonify({"error": "File not found"}), 404

    record = gallery.find_metadata(_metadata(), obj.name)
    body = {"success": True, **obj.to_dict()}
    body["url"] = obj.url or _image_url(obj.name)
    body["apiUrl"] = url_for("images.get_image", filename=obj.name)
    body["productName"] = record.product_name if record else None
    body["productDescription"] = record.product_description if record else None
    body["productUrl"] = record.source_url if record else None
    resp = jsonify(body)
    resp.headers["Cache-Control"] = NO_STORE
    return resp


@images_bp.route("/images/<filename>", methods=["DELETE"])
def delete_image(filename):
    if not is_allowed(filename):
        return _invalid_type()
    try:
        deleted = gallery.delete_image(_storage(), _metadata(), filename)
    except ObjectNotFound:
        return jsonify({"error": "File not found"}), 404
    return jsonify({"success": True, "filename": deleted})


@images_bp.route("/images/bulk-delete", methods=["POST"])
def bulk_delete():
    data = request.get_json(silent=True)
    filenames = data.get("filenames") if isinstance(data, dict) else None
    if not isinstance(filenames, list) or not filenames:
        return jsonify({"error": "filenames must be a non-empty list"}), 400
    if not all(isinstance(name, str) and name for name in filenames):
        return jsonify({"error": "filenames must be non-empty strings"}), 400

    valid = [name for name in filenames if is_allowed(name)]
    rejected = [
        {"filename": name, "success": False, "error": "Invalid file type"}
        for name in filenames if not is_allowed(name)
    ]
    result = gallery.bulk_delete(
        _storage(), _metadata(), valid, workers=current_app.config["BULK_DELETE_WORKERS"]
    ) if valid else {"successful": 0, "failed": 0, "results": []}

    return jsonify({
        "success": True,
        "successful": result["successful"],
        "failed": result["failed"] + len(rejected),
        "results": result["results"] + rejected,
    })
