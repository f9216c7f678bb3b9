"""Metadata records keyed by stored filename.

Three backends share one interface: a ``metadata.json`` file next to the
uploads, a ``metadata.json`` object in the S3 bucket, or a SQL table.
``load`` never raises; problems reading the document come back as
warnings on the returned map. Write errors propagate to the caller.
"""
import json
import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

import boto3
from botocore.exceptions import ClientError
from sqlalchemy.exc import SQLAlchemyError

from .models import ImageMetadata, db

logger = logging.getLogger(__name__)

JSON_FIELDS = {
    "source_url": "sourceUrl",
    "product_name": "productName",
    "product_description": "productDescription",
    "product_image_url": "productImageUrl",
}

# keys written by earlier deployments
LEGACY_FIELDS = {"flipkartUrl": "source_url", "productUrl": "source_url"}


@dataclass
class MetadataRecord:
    filename: str
    source_url: Optional[str] = None
    product_name: Optional[str] = None
    product_description: Optional[str] = None
    product_image_url: Optional[str] = None

    @classmethod
    def from_dict(cls, filename, data):
        values = {}
        for legacy, attr in LEGACY_FIELDS.items():
            if data.get(legacy):
                values[attr] = data[legacy]
        for attr, key in JSON_FIELDS.items():
            if data.get(key):
                values[attr] = data[key]
        return cls(filename=data.get("filename") or filename, **values)

    def to_dict(self):
        data = {"filename": self.filename}
        for attr, key in JSON_FIELDS.items():
            value = getattr(self, attr)
            if value:
                data[key] = value
        return data

    def renamed(self, filename):
        return replace(self, filename=filename)


class Metadata(dict):
    """filename -> MetadataRecord, plus any warnings raised while loading."""

    def __init__(self, *args, warnings=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.warnings = list(warnings or [])


def parse_document(raw, source):
    """Turn a JSON document into a Metadata map, tolerating bad content."""
    try:
        data = json.loads(raw)
    except ValueError as e:
        message = f"Metadata document {source} is not valid JSON ({e}); ignoring it"
        logger.warning(message)
        return Metadata(warnings=[message])
    if not isinstance(data, dict):
        message = f"Metadata document {source} is not a JSON object; ignoring it"
        logger.warning(message)
        return Metadata(warnings=[message])

    records = Metadata()
    for filename, value in data.items():
        if not isinstance(value, dict):
            message = f"Skipping malformed metadata entry {filename!r}"
            logger.warning(message)
            records.warnings.append(message)
            continue
        records[filename] = MetadataRecord.from_dict(filename, value)
    return records


def serialize_document(records):
    return json.dumps(
        {name: record.to_dict() for name, record in records.items()}, indent=2
    )


class MetadataStore:
    def load(self):
        raise NotImplementedError

    def save(self, records):
        raise NotImplementedError

    def put(self, *records):
        current = self.load()
        for record in records:
            current[record.filename] = record
        self.save(current)

    def remove(self, *filenames):
        current = self.load()
        removed = [name for name in filenames if current.pop(name, None) is not None]
        if removed:
            self.save(current)
        return removed


class JsonFileMetadataStore(MetadataStore):
    def __init__(self, path):
        self.path = path

    def load(self):
        if not os.path.exists(self.path):
            return Metadata()
        try:
            with open(self.path, encoding="utf-8") as fh:
                raw = fh.read()
        except OSError as e:
            message = f"Could not read {self.path}: {e}"
            logger.warning(message)
            return Metadata(warnings=[message])
        return parse_document(raw, self.path)

    def save(self, records):
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            fh.write(serialize_document(records))
        os.replace(tmp_path, self.path)


class S3MetadataStore(MetadataStore):
    def __init__(self, bucket, key="metadata.json", region=None, client=None):
        self.bucket = bucket
        self.key = key
        if client is None:
            client = boto3.client("s3", region_name=region) if region else boto3.client("s3")
        self.s3 = client

    def load(self):
        source = f"s3://{self.bucket}/{self.key}"
        try:
            resp = self.s3.get_object(Bucket=self.bucket, Key=self.key)
            raw = resp["Body"].read().decode("utf-8")
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                return Metadata()
            message = f"Could not read {source}: {code}"
            logger.warning(message)
            return Metadata(warnings=[message])
        except UnicodeDecodeError as e:
            message = f"Metadata document {source} is not UTF-8 ({e}); ignoring it"
            logger.warning(message)
            return Metadata(warnings=[message])
        return parse_document(raw, source)

    def save(self, records):
        self.s3.put_object(
            Bucket=self.bucket,
            Key=self.key,
            Body=serialize_document(records).encode("utf-8"),
            ContentType="application/json",
        )


class SqlMetadataStore(MetadataStore):
    """One row per record; put and remove touch only their own rows."""

    @staticmethod
    def _to_record(row):
        return MetadataRecord(
            filename=row.filename,
            source_url=row.source_url,
            product_name=row.product_name,
            product_description=row.product_description,
            product_image_url=row.product_image_url,
        )

    @staticmethod
    def _to_row(record):
        return ImageMetadata(
            filename=record.filename,
            source_url=record.source_url,
            product_name=record.product_name,
            product_description=record.product_description,
            product_image_url=record.product_image_url,
        )

    def load(self):
        try:
            rows = ImageMetadata.query.all()
        except SQLAlchemyError as e:
            db.session.rollback()
            message = f"Could not read metadata table: {e.__class__.__name__}"
            logger.warning(message)
            return Metadata(warnings=[message])
        return Metadata((row.filename, self._to_record(row)) for row in rows)

    def save(self, records):
        try:
            ImageMetadata.query.filter(
                ImageMetadata.filename.notin_(list(records))
            ).delete(synchronize_session=False)
            for record in records.values():
                db.session.merge(self._to_row(record))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def put(self, *records):
        try:
            for record in records:
                db.session.merge(self._to_row(record))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def remove(self, *filenames):
        if not filenames:
            return []
        try:
            rows = ImageMetadata.query.filter(ImageMetadata.filename.in_(filenames)).all()
            removed = [row.filename for row in rows]
            for row in rows:
                db.session.delete(row)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return removed


def create_metadata_store(config):
    backend = (config.get("METADATA_BACKEND") or "auto").lower()
    bucket = config.get("OBJECT_STORE_LOCATION")
    filename = config.get("METADATA_FILENAME", "metadata.json")

    if backend == "auto":
        backend = "s3" if config.get("USE_OBJECT_STORAGE") and bucket else "file"

    if backend == "sql":
        return SqlMetadataStore()
    if backend == "s3":
        if not bucket:
            raise ValueError("METADATA_BACKEND=s3 requires OBJECT_STORE_LOCATION")
        return S3MetadataStore(bucket, key=filename, region=config.get("AWS_REGION"))
    if backend == "file":
        return JsonFileMetadataStore(os.path.join(config["UPLOAD_FOLDER"], filename))
    raise ValueError(f"Unknown METADATA_BACKEND: {backend}")
