import io
from datetime import datetime, timezone

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.response import StreamingBody
from botocore.stub import ANY, Stubber

from imagestore.storage import (
    LocalStorage,
    ObjectNotFound,
    S3Storage,
    StorageNotConfigured,
    UnconfiguredStorage,
    create_storage,
)

from conftest import PNG

MODIFIED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def s3():
    client = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    with Stubber(client) as stub:
        yield S3Storage("bucket", client=client), stub
        stub.assert_no_pending_responses()


def test_local_put_list_get_delete(tmp_path):
    storage = LocalStorage(str(tmp_path / "uploads"))
    assert storage.list() == []

    assert storage.put("../escape_ab12.png", PNG) == "escape_ab12.png"
    (tmp_path / "uploads" / "notes.txt").write_text("not an image")
    (tmp_path / "uploads" / "metadata.json").write_text("{}")

    objects = storage.list()
    assert [o.name for o in objects] == ["escape_ab12.png"]
    assert objects[0].size == len(PNG)
    assert objects[0].key == "uploads/escape_ab12.png"
    assert objects[0].to_dict()["contentType"] == "image/png"

    assert storage.get("escape_ab12.png") == PNG
    storage.delete("escape_ab12.png")
    with pytest.raises(ObjectNotFound):
        storage.get("escape_ab12.png")
    with pytest.raises(ObjectNotFound):
        storage.delete("escape_ab12.png")
    with pytest.raises(ObjectNotFound):
        storage.stat("escape_ab12.png")


def test_s3_put(s3):
    storage, stub = s3
    stub.add_response(
        "put_object",
        {},
        {"Bucket": "bucket", "Key": "uploads/a_1.webp", "Body": ANY, "ContentType": "image/webp"},
    )
    assert storage.put("a_1.webp", b"RIFF") == "a_1.webp"


def test_s3_list_follows_pages_and_skips_nested_keys(s3):
    storage, stub = s3
    stub.add_response(
        "list_objects_v2",
        {
            "Contents": [
                {"Key": "uploads/a_1.png", "Size": 10, "LastModified": MODIFIED},
                {"Key": "uploads/metadata.json", "Size": 2, "LastModified": MODIFIED},
                {"Key": "uploads/sub/nested.png", "Size": 5, "LastModified": MODIFIED},
            ],
            "IsTruncated": True,
            "NextContinuationToken": "next",
        },
        {"Bucket": "bucket", "Prefix": "uploads/", "Delimiter": "/"},
    )
    stub.add_response(
        "list_objects_v2",
        {
            "Contents": [{"Key": "uploads/b_2.jpg", "Size": 20, "LastModified": MODIFIED}],
            "IsTruncated": False,
        },
        {"Bucket": "bucket", "Prefix": "uploads/", "Delimiter": "/", "ContinuationToken": "next"},
    )

    objects = storage.list()
    assert [o.name for o in objects] == ["a_1.png", "b_2.jpg"]
    assert objects[1].url == "https://bucket.s3.amazonaws.com/uploads/b_2.jpg"
    assert objects[1].created_at == MODIFIED


def test_s3_get(s3):
    storage, stub = s3
    stub.add_response(
        "get_object",
        {"Body": StreamingBody(io.BytesIO(PNG), len(PNG))},
        {"Bucket": "bucket", "Key": "uploads/a_1.png"},
    )
    assert storage.get("a_1.png") == PNG


def test_s3_get_missing(s3):
    storage, stub = s3
    stub.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
    with pytest.raises(ObjectNotFound):
        storage.get("a_1.png")


def test_s3_delete_checks_existence(s3):
    storage, stub = s3
    stub.add_response(
        "head_object",
        {"ContentLength": 10, "LastModified": MODIFIED},
        {"Bucket": "bucket", "Key": "uploads/a_1.png"},
    )
    stub.add_response("delete_object", {}, {"Bucket": "bucket", "Key": "uploads/a_1.png"})
    storage.delete("a_1.png")

    stub.add_client_error("head_object", service_error_code="404", http_status_code=404)
    with pytest.raises(ObjectNotFound):
        storage.delete("a_1.png")


def test_s3_other_errors_propagate(s3):
    storage, stub = s3
    stub.add_client_error("head_object", service_error_code="AccessDenied", http_status_code=403)
    with pytest.raises(ClientError):
        storage.stat("a_1.png")


def test_create_storage(tmp_path):
    storage = create_storage({"USE_OBJECT_STORAGE": False, "UPLOAD_FOLDER": str(tmp_path)})
    assert isinstance(storage, LocalStorage)

    storage = create_storage({"USE_OBJECT_STORAGE": True, "OBJECT_STORE_LOCATION": None})
    assert isinstance(storage, UnconfiguredStorage)
    with pytest.raises(StorageNotConfigured):
        storage.list()
    with pytest.raises(StorageNotConfigured):
        storage.put("a.png", PNG)
