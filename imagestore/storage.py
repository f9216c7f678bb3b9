import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from .naming import content_type_for, is_allowed

logger = logging.getLogger(__name__)


class ObjectNotFound(Exception):
    pass


class StorageNotConfigured(Exception):
    pass


@dataclass
class StoredObject:
    name: str
    key: str
    size: int
    created_at: Optional[datetime] = None
    url: Optional[str] = None

    @property
    def content_type(self):
        return content_type_for(self.name)

    def to_dict(self):
        return {
            "filename": self.name,
            "pathname": self.key,
            "url": self.url,
            "size": self.size,
            "uploadedAt": self.created_at.isoformat() if self.created_at else None,
            "contentType": self.content_type,
        }


class LocalStorage:
    """Images kept as plain files in a single upload folder."""

    def __init__(self, upload_folder):
        self.upload_folder = upload_folder

    def _path(self, name):
        return os.path.join(self.upload_folder, os.path.basename(name))

    def _stat(self, entry_name, path):
        st = os.stat(path)
        return StoredObject(
            name=entry_name,
            key=f"uploads/{entry_name}",
            size=st.st_size,
            created_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )

    def put(self, name, data, content_type=None):
        os.makedirs(self.upload_folder, exist_ok=True)
        name = os.path.basename(name)
        with open(self._path(name), "wb") as fh:
            fh.write(data)
        return name

    def list(self):
        if not os.path.isdir(self.upload_folder):
            return []
        objects = []
        with os.scandir(self.upload_folder) as entries:
            for entry in entries:
                if not (entry.is_file() and is_allowed(entry.name)):
                    continue
                try:
                    objects.append(self._stat(entry.name, entry.path))
                except FileNotFoundError:
                    # removed while listing
                    continue
        return objects

    def stat(self, name):
        path = self._path(name)
        if not os.path.isfile(path):
            raise ObjectNotFound(name)
        return self._stat(os.path.basename(name), path)

    def get(self, name):
        path = self._path(name)
        if not os.path.isfile(path):
            raise ObjectNotFound(name)
        with open(path, "rb") as fh:
            return fh.read()

    def delete(self, name):
        path = self._path(name)
        if not os.path.isfile(path):
            raise ObjectNotFound(name)
        os.remove(path)


class S3Storage:
    def __init__(self, bucket, prefix="uploads/", region=None, client=None):
        self.bucket = bucket
        self.prefix = prefix
        if client is None:
            client = boto3.client("s3", region_name=region) if region else boto3.client("s3")
        self.s3 = client

    def _key(self, name):
        return f"{self.prefix}{os.path.basename(name)}"

    def get_url(self, key):
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def _object(self, key, size, last_modified):
        return StoredObject(
            name=key.rsplit("/", 1)[-1],
            key=key,
            size=size,
            created_at=last_modified,
            url=self.get_url(key),
        )

    def put(self, name, data, content_type=None):
        key = self._key(name)
        self.s3.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type or content_type_for(name),
        )
        return key.rsplit("/", 1)[-1]

    def list(self):
        objects = []
        paginator = self.s3.get_paginator("list_objects_v2")
        # only direct children of the prefix; stat/get/delete address keys by leaf name
        pages = paginator.paginate(Bucket=self.bucket, Prefix=self.prefix, Delimiter="/")
        for page in pages:
            for item in page.get("Contents", []):
                if "/" in item["Key"][len(self.prefix):]:
                    continue
                if is_allowed(item["Key"]):
                    objects.append(
                        self._object(item["Key"], item.get("Size", 0), item.get("LastModified"))
                    )
        return objects

    def stat(self, name):
        key = self._key(name)
        try:
            head = self.s3.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                raise ObjectNotFound(name) from e
            raise
        return self._object(key, head.get("ContentLength", 0), head.get("LastModified"))

    def get(self, name):
        try:
            resp = self.s3.get_object(Bucket=self.bucket, Key=self._key(name))
        except ClientError as e:
            if _is_missing(e):
                raise ObjectNotFound(name) from e
            raise
        return resp["Body"].read()

    def delete(self, name):
        # delete_object succeeds for absent keys, so check first
        self.stat(name)
        self.s3.delete_object(Bucket=self.bucket, Key=self._key(name))


class UnconfiguredStorage:
    message = (
        "Object storage is not configured. Set OBJECT_STORE_LOCATION to the "
        "bucket name or unset USE_OBJECT_STORAGE."
    )

    def _fail(self, *args, **kwargs):
        raise StorageNotConfigured(self.message)

    put = list = stat = get = delete = _fail


def _is_missing(error):
    code = error.response.get("Error", {}).get("Code")
    return code in ("NoSuchKey", "404", "NotFound")


def create_storage(config):
    if config.get("USE_OBJECT_STORAGE"):
        bucket = config.get("OBJECT_STORE_LOCATION")
        if not bucket:
            logger.error("USE_OBJECT_STORAGE is set but OBJECT_STORE_LOCATION is empty")
            return UnconfiguredStorage()
        return S3Storage(
            bucket,
            prefix=config.get("OBJECT_STORE_PREFIX", "uploads/"),
            region=config.get("AWS_REGION"),
        )
    return LocalStorage(config["UPLOAD_FOLDER"])
