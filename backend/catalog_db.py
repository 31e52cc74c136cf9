#!/usr/bin/env python3
"""
catalog_db.py — Flat-file storage for catalog items and images.

All scripts share this module for on-disk access. An item is two files:

    data/<tag>.json                 → item record (name, description, ...)
    data_images/<tag><imageType>    → the image the record points at

Writes are staged as hidden temp files next to their targets, fsynced, and
renamed into place; save_item() treats the image and the record as one unit
so a failed upload never leaves one without the other.
"""
from __future__ import annotations

import json
import logging
import mimetypes
import os
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from catalog_errors import Conflict, NotFound, ServerError
from catalog_lock import write_lock

log = logging.getLogger("catalog.db")

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp"}
TEMP_SUFFIX = ".tmp"

_TAG_STRIP = re.compile(r"[^A-Za-z0-9_-]+")
_TAG_VALID = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class ItemRecord:
    name: str
    description: str
    image: str
    tag: str
    image_type: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "description": self.description,
            "image": self.image,
            "tag": self.tag,
            "imageType": self.image_type,
        }

    @classmethod
    def from_dict(cls, data: dict, tag: str) -> "ItemRecord":
        """Build from a parsed record. Raises KeyError/TypeError on bad shape."""
        if not isinstance(data, dict):
            raise TypeError("record is not an object")
        image_type = data["imageType"]
        if not isinstance(image_type, str) or not image_type.startswith("."):
            raise TypeError(f"bad imageType {image_type!r}")
        return cls(
            name=str(data["name"]),
            description=str(data.get("description", "")),
            image=str(data.get("image") or tag + image_type),
            tag=str(data.get("tag") or tag),
            image_type=image_type,
        )


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------

def make_tag(name: str) -> str:
    """Item key derived from its display name: letters, digits, - and _ only."""
    return _TAG_STRIP.sub("", name or "")


def is_valid_tag(tag: str) -> bool:
    return bool(tag) and bool(_TAG_VALID.match(tag))


def is_safe_filename(filename: str) -> bool:
    """One plain path segment: no separators, no parent refs, no dotfiles."""
    if not filename or filename in (".", ".."):
        return False
    if filename.startswith("."):
        return False
    if any(ch in filename for ch in ("/", "\\", "\x00")):
        return False
    return ".." not in filename


def is_image_name(filename: str) -> bool:
    return is_safe_filename(filename) and Path(filename).suffix.lower() in IMAGE_EXTENSIONS


# ---------------------------------------------------------------------------
# Atomic writes
# ---------------------------------------------------------------------------

def _fsync_dir(directory: Path) -> None:
    try:
        fd = os.open(str(directory), os.O_RDONLY)
    except OSError:
        # Directories can't be opened for fsync on Windows
        return
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _stage(target: Path, data: bytes) -> Path:
    """Write data to a hidden temp file next to target and fsync it."""
    tmp = target.parent / f".{target.name}.{uuid.uuid4().hex[:8]}{TEMP_SUFFIX}"
    with open(tmp, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    return tmp


def write_atomic(path: Path, data: bytes) -> None:
    """Replace path with data in one rename. Raises OSError."""
    path = Path(path)
    tmp = _stage(path, data)
    try:
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
    _fsync_dir(path.parent)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def ensure_layout(data_dir: Path, images_dir: Path) -> None:
    for d in (data_dir, images_dir):
        Path(d).mkdir(parents=True, exist_ok=True)


def list_image_names(images_dir: Path) -> List[str]:
    """Sorted image filenames in images_dir (hidden and temp files skipped)."""
    try:
        entries = list(Path(images_dir).iterdir())
    except OSError as exc:
        raise ServerError(f"cannot read {images_dir}: {exc}") from exc
    return sorted(p.name for p in entries if p.is_file() and is_image_name(p.name))


def load_item(data_dir: Path, item_id: str) -> ItemRecord:
    if not is_valid_tag(item_id):
        raise NotFound(f"invalid item id {item_id!r}")
    path = Path(data_dir) / f"{item_id}.json"
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise NotFound(f"no record {path.name}") from exc
    except OSError as exc:
        raise ServerError(f"cannot read {path}: {exc}") from exc
    try:
        return ItemRecord.from_dict(json.loads(raw), item_id)
    except (json.JSONDecodeError, KeyError, TypeError) as exc:
        log.error("Corrupt record %s: %s", path, exc)
        raise NotFound(f"corrupt record {path.name}") from exc


def image_path(images_dir: Path, filename: str) -> Path:
    """Resolve filename inside images_dir, refusing anything that escapes it."""
    if not is_safe_filename(filename):
        raise NotFound(f"rejected image name {filename!r}")
    base = Path(images_dir).resolve()
    path = (base / filename).resolve()
    if path.parent != base:
        raise NotFound(f"rejected image path {filename!r}")
    return path


def read_image(images_dir: Path, filename: str) -> Tuple[bytes, str]:
    path = image_path(images_dir, filename)
    try:
        data = path.read_bytes()
    except (FileNotFoundError, IsADirectoryError) as exc:
        raise NotFound(f"no image {filename}") from exc
    except OSError as exc:
        raise ServerError(f"cannot read {path}: {exc}") from exc
    mime = mimetypes.guess_type(str(path))[0] or "application/octet-stream"
    return data, mime


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def save_item(data_dir: Path, images_dir: Path, record: ItemRecord, image_bytes: bytes,
              lock_root: Path, lock_timeout: float = 10.0) -> Tuple[Path, Path]:
    """Write image and record as one unit. Returns (record_path, image_path).

    Both files are staged and fsynced before either is renamed into place.
    Any failure removes everything this call created.
    """
    data_dir, images_dir = Path(data_dir), Path(images_dir)
    record_path = data_dir / f"{record.tag}.json"
    img_path = images_dir / record.image
    payload = json.dumps(record.to_dict(), indent=2).encode("utf-8")

    with write_lock(lock_root, f"upload:{record.tag}", lock_timeout):
        same_stem = [p for p in images_dir.glob(f"{record.tag}.*") if is_image_name(p.name)]
        if record_path.exists() or img_path.exists() or same_stem:
            raise Conflict(f"item {record.tag} already exists")

        staged: List[Path] = []
        placed: List[Path] = []
        try:
            tmp_img = _stage(img_path, image_bytes)
            staged.append(tmp_img)
            tmp_rec = _stage(record_path, payload)
            staged.append(tmp_rec)

            os.replace(tmp_img, img_path)
            staged.remove(tmp_img)
            placed.append(img_path)
            os.replace(tmp_rec, record_path)
            staged.remove(tmp_rec)
            placed.append(record_path)

            _fsync_dir(images_dir)
            _fsync_dir(data_dir)
        except OSError as exc:
            for p in staged + placed:
                try:
                    p.unlink(missing_ok=True)
                except OSError as cleanup_exc:
                    log.error("Cleanup of %s failed: %s", p, cleanup_exc)
            raise ServerError(f"saving item {record.tag} failed: {exc}") from exc

    log.info("Saved item %s (%s, %d bytes)", record.tag, record.image, len(image_bytes))
    return record_path, img_path


def clean_stale_temps(*dirs: Path) -> List[Path]:
    """Remove staged temp files left behind by an interrupted write."""
    removed = []
    for d in dirs:
        d = Path(d)
        if not d.is_dir():
            continue
        for p in d.iterdir():
            if p.name.startswith(".") and p.name.endswith(TEMP_SUFFIX) and p.is_file():
                p.unlink(missing_ok=True)
                removed.append(p)
    for p in removed:
        log.warning("Removed stale temp file %s", p)
    return removed


# ---------------------------------------------------------------------------
# Consistency report
# ---------------------------------------------------------------------------

def verify_catalog(data_dir: Path, images_dir: Path) -> Dict[str, list]:
    """Cross-check records and images.

    Returns lists under: missing_images (record tag whose image is absent),
    unrecorded_images, corrupt_records, stale_temps.
    """
    data_dir, images_dir = Path(data_dir), Path(images_dir)
    report: Dict[str, list] = {
        "missing_images": [],
        "unrecorded_images": [],
        "corrupt_records": [],
        "stale_temps": [],
    }
    images = set(list_image_names(images_dir)) if images_dir.is_dir() else set()
    referenced = set()

    records = sorted(data_dir.glob("*.json")) if data_dir.is_dir() else []
    for path in records:
        tag = path.stem
        try:
            rec: Optional[ItemRecord] = load_item(data_dir, tag)
        except NotFound:
            report["corrupt_records"].append(path.name)
            continue
        image = tag + rec.image_type
        referenced.add(image)
        if image not in images:
            report["missing_images"].append(tag)

    report["unrecorded_images"] = sorted(images - referenced)
    for d in (data_dir, images_dir):
        if d.is_dir():
            report["stale_temps"].extend(
                sorted(p.name for p in d.iterdir()
                       if p.name.startswith(".") and p.name.endswith(TEMP_SUFFIX))
            )
    return report
