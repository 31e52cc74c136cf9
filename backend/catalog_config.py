#!/usr/bin/env python3
"""
catalog_config.py — Settings and the persisted site title.

CatalogSettings collects paths and limits for one site root. ConfigStore
owns config.json: it is read once when the app is built (and again on
reload), and every title change is written atomically under the catalog
write lock before the in-memory copy is updated.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import catalog_db as db
from catalog_errors import BadRequest, ServerError
from catalog_lock import write_lock

log = logging.getLogger("catalog.config")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_SITE_DIR = PROJECT_ROOT / "site"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 1712
DEFAULT_TITLE = "Catalog"
MAX_UPLOAD_BYTES = 50 * 1024 * 1024
LOCK_TIMEOUT = 10.0


@dataclass
class CatalogSettings:
    root: Path = DEFAULT_SITE_DIR
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    lock_timeout: float = LOCK_TIMEOUT
    accept_title_param: bool = True

    def __post_init__(self):
        self.root = Path(self.root)

    @property
    def config_path(self) -> Path:
        return self.root / "config.json"

    @property
    def stylesheet_path(self) -> Path:
        return self.root / "catalog.css"

    @property
    def templates_dir(self) -> Path:
        return self.root / "templates"

    @property
    def data_dir(self) -> Path:
        return self.root / "data"

    @property
    def images_dir(self) -> Path:
        return self.root / "data_images"

    @classmethod
    def from_env(cls, **overrides) -> "CatalogSettings":
        """Defaults, then CATALOG_ROOT / CATALOG_PORT, then explicit overrides."""
        values = {}
        if os.environ.get("CATALOG_ROOT"):
            values["root"] = Path(os.environ["CATALOG_ROOT"])
        if os.environ.get("CATALOG_PORT"):
            values["port"] = int(os.environ["CATALOG_PORT"])
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# ---------------------------------------------------------------------------
# Title store
# ---------------------------------------------------------------------------

class ConfigStore:
    def __init__(self, path: Path, lock_root: Path, lock_timeout: float = LOCK_TIMEOUT):
        self.path = Path(path)
        self.lock_root = Path(lock_root)
        self.lock_timeout = lock_timeout
        self._data = {"title": DEFAULT_TITLE}

    @property
    def title(self) -> str:
        return self._data.get("title") or DEFAULT_TITLE

    def load(self) -> None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            log.info("No config at %s, using default title", self.path)
            data = {}
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as exc:
            log.error("Unreadable config %s: %s", self.path, exc)
            data = {}
        if not isinstance(data, dict):
            log.error("Config %s is not an object, ignoring", self.path)
            data = {}
        data.setdefault("title", DEFAULT_TITLE)
        self._data = data

    def set_title(self, title: Optional[str]) -> str:
        title = (title or "").strip()
        if not title:
            raise BadRequest("empty title")
        updated = dict(self._data, title=title)
        payload = json.dumps(updated, indent=2).encode("utf-8")
        try:
            with write_lock(self.lock_root, "config", self.lock_timeout):
                db.write_atomic(self.path, payload)
        except OSError as exc:
            raise ServerError(f"cannot write {self.path}: {exc}") from exc
        self._data = updated
        log.info("Title set to %r", title)
        return title
