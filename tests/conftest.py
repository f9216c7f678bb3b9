import io

import pytest
import requests

from imagestore.app import create_app

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 512


class FakeResponse:
    def __init__(self, status_code=200, text="", content=b"", headers=None):
        self.status_code = status_code
        self.text = text
        self.content = content or text.encode("utf-8")
        self.headers = headers or {}

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeWeb:
    """Stand-in for requests.get: URL -> FakeResponse or exception."""

    def __init__(self):
        self.routes = {}
        self.calls = []
        self.sent = []

    def add(self, url, response):
        self.routes[url] = response

    def get(self, url, headers=None, timeout=None, **kwargs):
        self.calls.append(url)
        self.sent.append({"headers": headers or {}, "timeout": timeout})
        if url not in self.routes:
            raise requests.ConnectionError(f"no route for {url}")
        result = self.routes[url]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def web(monkeypatch):
    fake = FakeWeb()
    monkeypatch.setattr("imagestore.scraper.fetch.requests.get", fake.get)
    return fake


@pytest.fixture
def no_network(monkeypatch):
    def refuse(*args, **kwargs):
        raise AssertionError("network call was not expected")

    monkeypatch.setattr("imagestore.scraper.fetch.requests.get", refuse)


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def app(upload_dir):
    return create_app({
        "TESTING": True,
        "UPLOAD_FOLDER": str(upload_dir),
        "USE_OBJECT_STORAGE": False,
        "METADATA_BACKEND": "file",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SCRAPER_EXTRA_DOMAINS": ["example-retail.com"],
    })


@pytest.fixture
def client(app):
    return app.test_client()


def _file(name, content, mimetype=None):
    if mimetype:
        return (io.BytesIO(content), name, mimetype)
    return (io.BytesIO(content), name)


@pytest.fixture
def upload(client):
    def _upload(*files, **form):
        data = dict(form)
        data["images"] = [_file(*f) for f in files]
        return client.post("/api/upload", data=data, content_type="multipart/form-data")

    return _upload
