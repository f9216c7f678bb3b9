import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

MB = 1024 * 1024


def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name):
    value = os.environ.get(name, "")
    return [item.strip().lower() for item in value.split(",") if item.strip()]


class Config:
    UPLOAD_FOLDER = os.environ.get(
        "UPLOAD_FOLDER", os.path.join(BASE_DIR, "static", "uploads")
    )

    # Object storage is used only when both are set; the switch alone
    # without a bucket leaves storage unconfigured.
    USE_OBJECT_STORAGE = _env_flag("USE_OBJECT_STORAGE")
    OBJECT_STORE_LOCATION = os.environ.get("OBJECT_STORE_LOCATION")
    OBJECT_STORE_PREFIX = os.environ.get("OBJECT_STORE_PREFIX", "uploads/")
    AWS_REGION = os.environ.get("AWS_REGION", os.environ.get("AWS_DEFAULT_REGION"))

    # auto | file | s3 | sql
    METADATA_BACKEND = os.environ.get("METADATA_BACKEND", "auto")
    METADATA_FILENAME = os.environ.get("METADATA_FILENAME", "metadata.json")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{os.path.join(BASE_DIR, 'imagestore.db')}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    MAX_UPLOAD_SIZE = int(os.environ.get("MAX_UPLOAD_SIZE", 10 * MB))
    MAX_CONTENT_LENGTH = 20 * 10 * MB

    SCRAPER_TIMEOUT = float(os.environ.get("SCRAPER_TIMEOUT", 30))
    SCRAPER_EXTRA_DOMAINS = _env_list("SCRAPER_EXTRA_DOMAINS")

    BULK_DELETE_WORKERS = int(os.environ.get("BULK_DELETE_WORKERS", 8))
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
