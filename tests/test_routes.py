import io
import json
import re

import requests

from imagestore.app import create_app

from conftest import PNG, FakeResponse

GENERATED = re.compile(r"^photo_[0-9a-f]{16}\.png$")

WIDGET_PAGE = """<html><head><title>Widget - Example Retail</title>
<script type="application/ld+json">
{"@context": "https://schema.org", "@type": "Product", "name": "Widget",
 "description": "A sturdy widget for every workshop bench.",
 "image": "https://cdn/img.jpg"}
</script></head><body><h1>Widget</h1></body></html>"""


def _metadata(upload_dir):
    return json.loads((upload_dir / "metadata.json").read_text())


def test_health(client):
    assert client.get("/health").get_json() == {"status": "healthy"}


def test_upload_then_list(upload, client):
    resp = upload(("photo.png", b"\x89PNG" + b"\x00" * 500 * 1024))
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["uploaded"] == 1
    assert GENERATED.match(body["files"][0])

    listing = client.get("/api/images").get_json()
    entry = next(i for i in listing["images"] if i["filename"] == body["files"][0])
    assert entry["productName"] == "photo"
    assert entry["title"] == "photo"
    assert entry["size"] == 4 + 500 * 1024


def test_uploaded_file_round_trips(upload, client):
    filename = upload(("photo.png", PNG)).get_json()["files"][0]

    resp = client.get(f"/api/images/{filename}")
    assert resp.status_code == 200
    assert resp.data == PNG
    assert resp.mimetype == "image/png"
    assert "immutable" in resp.headers["Cache-Control"]


def test_upload_rejects_extension_even_with_image_mime(upload, upload_dir):
    resp = upload(("animation.gif", PNG, "image/png"))
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["error"] == "No files were uploaded"
    assert "Invalid file type" in body["errors"][0]
    assert not upload_dir.exists() or not any(upload_dir.iterdir())


def test_upload_reports_bad_files_next_to_good_ones(upload):
    body = upload(("good.jpg", PNG), ("empty.png", b"")).get_json()
    assert body["uploaded"] == 1
    assert body["errors"] == ["empty.png: File is empty."]


def test_upload_size_limit(app, upload):
    app.config["MAX_UPLOAD_SIZE"] = 100
    resp = upload(("big.png", PNG))
    assert resp.status_code == 400
    assert "exceeds" in resp.get_json()["errors"][0]


def test_upload_without_files(client):
    resp = client.post("/api/upload", data={}, content_type="multipart/form-data")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "No files provided"}


def test_upload_with_unsupported_product_url(upload, upload_dir, no_network):
    resp = upload(("photo.png", PNG), productUrl="https://shop.unknown.test/item/1")
    assert resp.status_code == 400
    assert "Unsupported product URL domain" in resp.get_json()["error"]
    assert not upload_dir.exists()


def test_upload_with_product_url_attaches_details(upload, client, web):
    url = "https://www.example-retail.com/p/123"
    web.add(url, FakeResponse(text=WIDGET_PAGE))

    body = upload(("photo.png", PNG), productUrl=url).get_json()
    assert body["products"][0]["productName"] == "Widget"
    assert body["products"][0]["productUrl"] == url

    entry = client.get("/api/images").get_json()["images"][0]
    assert entry["productName"] == "Widget"
    assert entry["productUrl"] == url
    assert entry["description"] == "A sturdy widget for every workshop bench."


def test_get_rejects_bad_extension(client):
    assert client.get("/api/images/notes.txt").status_code == 400
    assert client.delete("/api/images/notes.txt").status_code == 400
    assert client.get("/api/images/notes.txt/info").status_code == 400


def test_get_missing_is_404(client):
    resp = client.get("/api/images/missing_0123456789abcdef.png")
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "File not found"}


def test_provider_suffix_still_resolves_and_keeps_metadata(client, upload_dir):
    upload_dir.mkdir()
    (upload_dir / "photo_0123456789abcdef-Xy7Zq9.png").write_bytes(PNG)
    (upload_dir / "metadata.json").write_text(json.dumps({
        "photo_0123456789abcdef.png": {
            "filename": "photo_0123456789abcdef.png",
            "productName": "Blue Widget",
            "sourceUrl": "https://www.flipkart.com/blue-widget/p/itm1",
        }
    }))

    resp = client.get("/api/images/photo_0123456789abcdef.png")
    assert resp.status_code == 200
    assert resp.data == PNG

    entry = client.get("/api/images").get_json()["images"][0]
    assert entry["filename"] == "photo_0123456789abcdef-Xy7Zq9.png"
    assert entry["productName"] == "Blue Widget"
    assert entry["productUrl"] == "https://www.flipkart.com/blue-widget/p/itm1"

    # the association is written back under the physical name
    assert "photo_0123456789abcdef-Xy7Zq9.png" in _metadata(upload_dir)


def test_listing_sorted_by_title(upload, client):
    upload(("zebra.png", PNG), ("apple.png", PNG), ("Mango.png", PNG))
    titles = [i["title"] for i in client.get("/api/images").get_json()["images"]]
    assert titles == ["apple", "mango", "zebra"]


def test_listing_survives_corrupt_metadata(upload, client, upload_dir):
    upload(("photo.png", PNG))
    (upload_dir / "metadata.json").write_text("{not json")

    resp = client.get("/api/images")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["count"] == 1
    assert body["images"][0]["productName"] == "photo"
    assert "not valid JSON" in body["warnings"][0]


def test_info(upload, client):
    filename = upload(("photo.png", PNG)).get_json()["files"][0]
    body = client.get(f"/api/images/{filename}/info").get_json()
    assert body["filename"] == filename
    assert body["size"] == len(PNG)
    assert body["contentType"] == "image/png"
    assert body["apiUrl"] == f"/api/images/{filename}"
    assert body["productName"] == "photo"


def test_delete_removes_file_and_metadata(upload, client, upload_dir):
    filename = upload(("photo.png", PNG)).get_json()["files"][0]
    assert filename in _metadata(upload_dir)

    resp = client.delete(f"/api/images/{filename}")
    assert resp.get_json() == {"success": True, "filename": filename}

    assert filename not in _metadata(upload_dir)
    assert client.get("/api/images").get_json()["images"] == []
    assert client.get(f"/api/images/{filename}").status_code == 404
    assert client.delete(f"/api/images/{filename}").status_code == 404


def test_bulk_delete_tolerates_missing_files(upload, client):
    files = upload(("one.png", PNG), ("two.png", PNG)).get_json()["files"]

    resp = client.post("/api/images/bulk-delete", json={
        "filenames": files + ["gone_fedcba9876543210.png"],
    })
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["successful"] == 2
    assert body["failed"] == 1
    assert client.get("/api/images").get_json()["count"] == 0


def test_bulk_delete_validates_body(client):
    assert client.post("/api/images/bulk-delete", json={"filenames": []}).status_code == 400
    assert client.post("/api/images/bulk-delete", json=["a.png"]).status_code == 400


def test_extract_url_stores_product_image(client, web, upload_dir):
    url = "https://www.example-retail.com/p/123"
    web.add(url, FakeResponse(text=WIDGET_PAGE))
    web.add("https://cdn/img.jpg", FakeResponse(content=b"\xff\xd8jpeg", headers={"Content-Type": "image/jpeg"}))

    resp = client.post("/api/extract-url", json={"productUrl": url})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["productName"] == "Widget"
    assert body["productUrl"] == url
    assert re.match(r"^widget_[0-9a-f]{16}\.jpg$", body["filename"])
    assert body["imageUrl"].endswith(f"/api/images/{body['filename']}")
    assert (upload_dir / body["filename"]).read_bytes() == b"\xff\xd8jpeg"

    record = _metadata(upload_dir)[body["filename"]]
    assert record["sourceUrl"] == url
    assert record["productImageUrl"] == "https://cdn/img.jpg"


def test_extract_url_keeps_details_when_image_download_fails(client, web, upload_dir):
    url = "https://www.example-retail.com/p/123"
    web.add(url, FakeResponse(text=WIDGET_PAGE))
    web.add("https://cdn/img.jpg", requests.Timeout("slow cdn"))

    body = client.post("/api/extract-url", json={"productUrl": url}).get_json()
    assert body["success"] is True
    assert body["filename"] is None
    assert body["imageUrl"] == "https://cdn/img.jpg"
    keys = list(_metadata(upload_dir))
    assert len(keys) == 1 and keys[0].startswith("placeholder_widget_")


def test_extract_url_unsupported_domain(client, no_network):
    resp = client.post("/api/extract-url", json={"productUrl": "https://evil.test/p/1"})
    assert resp.status_code == 400
    assert "Unsupported product URL domain" in resp.get_json()["error"]


def test_extract_url_bad_body(client):
    resp = client.post("/api/extract-url", data="{oops", content_type="application/json")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Invalid JSON in request body"}
    assert client.post("/api/extract-url", json={"productUrl": "  "}).status_code == 400


def test_extract_url_unreachable_without_url_name(client, web):
    url = "https://www.example-retail.com/p/123"
    web.add(url, requests.Timeout("timed out"))
    resp = client.post("/api/extract-url", json={"productUrl": url})
    assert resp.status_code == 400
    assert "Failed to extract product details" in resp.get_json()["error"]


def test_storage_not_configured(tmp_path):
    app = create_app({
        "TESTING": True,
        "UPLOAD_FOLDER": str(tmp_path),
        "USE_OBJECT_STORAGE": True,
        "OBJECT_STORE_LOCATION": None,
        "METADATA_BACKEND": "auto",
    })
    client = app.test_client()

    resp = client.get("/api/images")
    assert resp.status_code == 503
    assert "not configured" in resp.get_json()["error"]

    resp = client.post(
        "/api/upload",
        data={"images": [(io.BytesIO(PNG), "photo.png")]},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 503


def test_unknown_route_is_json(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert "error" in resp.get_json()


def test_delete_missing_name_leaves_suffixed_sibling(client, upload_dir):
    upload_dir.mkdir()
    (upload_dir / "iphone-15.png").write_bytes(PNG)
    (upload_dir / "metadata.json").write_text(json.dumps({
        "iphone-15.png": {"filename": "iphone-15.png", "productName": "iPhone 15"},
    }))

    assert client.delete("/api/images/iphone-14.png").status_code == 404
    body = client.post("/api/images/bulk-delete", json={"filenames": ["iphone-14.png"]}).get_json()
    assert body["successful"] == 0 and body["failed"] == 1

    assert (upload_dir / "iphone-15.png").exists()
    assert "iphone-15.png" in _metadata(upload_dir)


def test_delete_by_name_without_provider_suffix(client, upload_dir):
    upload_dir.mkdir()
    (upload_dir / "photo_0123456789abcdef-Xy7Zq9.png").write_bytes(PNG)
    (upload_dir / "iphone-15.png").write_bytes(PNG)
    (upload_dir / "metadata.json").write_text(json.dumps({
        "photo_0123456789abcdef.png": {"productName": "Blue Widget"},
        "iphone-15.png": {"productName": "iPhone 15"},
    }))

    resp = client.delete("/api/images/photo_0123456789abcdef.png")
    assert resp.get_json() == {"success": True, "filename": "photo_0123456789abcdef-Xy7Zq9.png"}
    assert list(_metadata(upload_dir)) == ["iphone-15.png"]
    assert (upload_dir / "iphone-15.png").exists()
