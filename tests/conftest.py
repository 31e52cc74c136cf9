"""Shared fixtures: a throwaway site root, generated images, multipart bodies."""

import io
import os
import shutil
import sys
import uuid

import pytest
from PIL import Image

# Ensure backend modules are importable without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from catalog_config import CatalogSettings
from serve_catalog import CatalogApp

SITE_DIR = os.path.join(os.path.dirname(__file__), '..', 'site')


@pytest.fixture
def site_root(tmp_path):
    root = tmp_path / "site"
    root.mkdir()
    shutil.copytree(os.path.join(SITE_DIR, "templates"), root / "templates")
    shutil.copy(os.path.join(SITE_DIR, "catalog.css"), root / "catalog.css")
    (root / "config.json").write_text('{"title": "Test Shop"}')
    (root / "data").mkdir()
    (root / "data_images").mkdir()
    return root


@pytest.fixture
def settings(site_root):
    return CatalogSettings(root=site_root, lock_timeout=1.0)


@pytest.fixture
def app(settings):
    return CatalogApp.create(settings)


@pytest.fixture
def image_bytes():
    def _make(fmt="PNG", color=(200, 30, 30), size=(8, 8)):
        buf = io.BytesIO()
        Image.new("RGB", size, color).save(buf, fmt)
        return buf.getvalue()
    return _make


@pytest.fixture
def multipart():
    """Build (body, content_type) for text fields plus optional file parts."""
    def _build(fields=None, files=None):
        boundary = "----catalogtest" + uuid.uuid4().hex
        chunks = []
        for name, value in (fields or {}).items():
            chunks.append(
                f'--{boundary}\r\n'
                f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
                f'{value}\r\n'.encode()
            )
        for name, (filename, data) in (files or {}).items():
            chunks.append(
                f'--{boundary}\r\n'
                f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
                f'Content-Type: application/octet-stream\r\n\r\n'.encode()
                + data + b'\r\n'
            )
        chunks.append(f'--{boundary}--\r\n'.encode())
        return b"".join(chunks), f"multipart/form-data; boundary={boundary}"
    return _build


@pytest.fixture
def post(app):
    """POST a body through the app's request boundary."""
    def _post(path, body, content_type):
        headers = {"Content-Type": content_type, "Content-Length": str(len(body))}
        return app.handle("POST", path, headers, io.BytesIO(body))
    return _post
