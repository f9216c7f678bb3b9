"""Maintenance commands: ``flask --app imagestore.app seed|migrate-storage``."""
import os

import click
from flask import current_app
from flask.cli import with_appcontext

from . import gallery, scraper
from .metadata import JsonFileMetadataStore, S3MetadataStore
from .naming import content_type_for, is_allowed
from .storage import LocalStorage, S3Storage


def _local_url(filename):
    return f"/api/images/{filename}"


@click.command("seed")
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--product-url", default=None, help="Scrape this product page and attach it to every image.")
@with_appcontext
def seed_command(directory, product_url):
    """Import every image in DIRECTORY through the upload path."""
    files = []
    for name in sorted(os.listdir(directory)):
        path = os.path.join(directory, name)
        if os.path.isfile(path) and is_allowed(name):
            with open(path, "rb") as fh:
                files.append((name, fh.read()))
    if not files:
        click.echo("No images to import.")
        return

    scraped = None
    if product_url:
        try:
            scraped = scraper.scrape(
                product_url,
                timeout=current_app.config["SCRAPER_TIMEOUT"],
                extra_domains=current_app.config["SCRAPER_EXTRA_DOMAINS"],
            )
        except scraper.ScrapeError as e:
            raise click.ClickException(str(e))

    result = gallery.upload_images(
        current_app.extensions["imagestore.storage"],
        current_app.extensions["imagestore.metadata"],
        files,
        image_url_for=_local_url,
        max_size=current_app.config["MAX_UPLOAD_SIZE"],
        product_url=product_url,
        scraped=scraped,
    )
    for filename in result["files"]:
        click.echo(f"  Imported {filename}")
    for error in result["errors"]:
        click.echo(f"  Skipped {error}")
    click.echo(f"Imported {len(result['files'])} images.")


@click.command("migrate-storage")
@click.option("--bucket", envvar="TARGET_S3_BUCKET", required=True, help="Target S3 bucket.")
@click.option("--prefix", default=None, help="Key prefix for images (default OBJECT_STORE_PREFIX).")
@with_appcontext
def migrate_storage_command(bucket, prefix):
    """Copy the local upload folder and metadata.json into S3."""
    config = current_app.config
    source = LocalStorage(config["UPLOAD_FOLDER"])
    target = S3Storage(
        bucket,
        prefix=prefix if prefix is not None else config["OBJECT_STORE_PREFIX"],
        region=config.get("AWS_REGION"),
    )

    objects = sorted(source.list(), key=lambda o: o.name)
    if not objects:
        click.echo("No images to upload.")
    for obj in objects:
        target.put(obj.name, source.get(obj.name), content_type_for(obj.name))
        click.echo(f"  Uploaded {obj.name} -> s3://{bucket}/{target.prefix}{obj.name}")
    click.echo(f"Uploaded {len(objects)} images to S3.")

    filename = config["METADATA_FILENAME"]
    records = JsonFileMetadataStore(os.path.join(config["UPLOAD_FOLDER"], filename)).load()
    for warning in records.warnings:
        click.echo(f"  Warning: {warning}")
    if records:
        S3MetadataStore(bucket, key=filename, client=target.s3).save(records)
        click.echo(f"Copied {len(records)} metadata records to s3://{bucket}/{filename}")


def register_commands(app):
    app.cli.add_command(seed_command)
    app.cli.add_command(migrate_storage_command)
