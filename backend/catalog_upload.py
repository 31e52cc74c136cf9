#!/usr/bin/env python3
"""
catalog_upload.py — Turn a multipart upload into a new catalog item.

Expects the form fields `name` and `description` plus one file part. The
file must decode as an image; its stored extension comes from the format
Pillow detects, not from the client's filename.
"""
from __future__ import annotations

import io
import logging
from pathlib import Path

from PIL import Image, UnidentifiedImageError

import catalog_db as db
from catalog_errors import BadRequest
from catalog_multipart import parse_multipart

log = logging.getLogger("catalog.upload")

FORMAT_EXTENSIONS = {
    "PNG": ".png",
    "JPEG": ".jpg",
    "GIF": ".gif",
    "WEBP": ".webp",
}


def detect_image_type(data: bytes) -> str:
    """Extension (with dot) for image bytes. Raises BadRequest if not an image."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError,
            ValueError, EOFError) as exc:
        raise BadRequest(f"upload is not a readable image: {exc}") from exc
    ext = FORMAT_EXTENSIONS.get(fmt or "")
    if ext is None:
        raise BadRequest(f"unsupported image format {fmt}")
    return ext


def build_record(name: str, description: str, image_type: str) -> db.ItemRecord:
    tag = db.make_tag(name)
    if not db.is_valid_tag(tag):
        raise BadRequest(f"name {name!r} has no usable characters")
    return db.ItemRecord(
        name=name,
        description=description,
        image=tag + image_type,
        tag=tag,
        image_type=image_type,
    )


def handle_upload(body: bytes, content_type: str, data_dir: Path, images_dir: Path,
                  lock_root: Path, lock_timeout: float = 10.0) -> db.ItemRecord:
    form = parse_multipart(body, content_type)

    name = form.fields.get("name", "").strip()
    description = form.fields.get("description", "").strip()
    upload = form.first_file()
    missing = [label for label, value in (("name", name), ("description", description),
                                          ("file", upload)) if not value]
    if missing:
        raise BadRequest(f"missing upload fields: {', '.join(missing)}")

    image_type = detect_image_type(upload.data)
    record = build_record(name, description, image_type)
    log.info("Upload %r → %s (client file %r, %d bytes)",
             name, record.image, upload.filename, len(upload.data))
    db.save_item(data_dir, images_dir, record, upload.data, lock_root, lock_timeout)
    return record
