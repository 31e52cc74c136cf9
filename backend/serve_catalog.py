#!/usr/bin/env python3
"""
serve_catalog.py — HTTP server for the flat-file catalog.

Routes (paths are URL-decoded and split into segments):
    GET  /  or  /catalog            → catalog page (one thumbnail per image)
    GET  /catalog.css               → stylesheet
    GET  /templates/<id>.html       → item page for data/<id>.json
    GET  /templates/<file>          → image (item pages link images relatively)
    GET  /config?title=...          → set the site title, redirect to catalog
    POST /config                    → same, title as a form field
    POST <anything else>            → multipart upload, answers with the catalog
    GET  <anything else>            → image from data_images/

A `title` query parameter on any other request also sets the title (disable
with --no-title-param).

Usage:
    python3 backend/serve_catalog.py                   # http://localhost:1712
    python3 backend/serve_catalog.py --port 8080
    python3 backend/serve_catalog.py --root /srv/shop --log-file catalog.log
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
from dataclasses import dataclass, field
from functools import partial
from http import HTTPStatus
from http.server import HTTPServer, BaseHTTPRequestHandler
from pathlib import Path
from typing import BinaryIO, Dict, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlparse

import catalog_db as db
from catalog_config import CatalogSettings, ConfigStore
from catalog_errors import BadRequest, CatalogError, MethodNotAllowed, PayloadTooLarge
from catalog_multipart import parse_multipart
from catalog_pages import ITEM_PREFIX, ITEM_SUFFIX, build_catalog, build_item_page
from catalog_templates import TemplateSet
from catalog_upload import handle_upload

log = logging.getLogger("catalog.server")

HTML = "text/html; charset=utf-8"
TEXT = "text/plain; charset=utf-8"
CSS = "text/css; charset=utf-8"


@dataclass
class Response:
    status: int
    content_type: str = TEXT
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)


def error_response(exc: CatalogError) -> Response:
    body = b"" if exc.status >= 500 else exc.reason.encode()
    return Response(exc.status, TEXT, body, dict(exc.headers))


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

def route(method: str, path: str) -> Tuple[str, Optional[str]]:
    """Map method + decoded path to (handler name, argument)."""
    segments = [s for s in path.split("/") if s]

    if method == "POST":
        if segments == ["config"]:
            return "config", None
        return "upload", None
    if method != "GET":
        raise MethodNotAllowed(method)

    if not segments or segments == ["catalog"]:
        return "catalog", None
    if segments == ["catalog.css"]:
        return "stylesheet", None
    if segments == ["config"]:
        return "config", None
    if segments[0] == ITEM_PREFIX and len(segments) > 1:
        rest = segments[1:]
        if len(rest) == 1 and rest[0].endswith(ITEM_SUFFIX):
            return "item", rest[0][:-len(ITEM_SUFFIX)]
        return "image", "/".join(rest)
    return "image", "/".join(segments)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

class CatalogApp:
    """Everything a request needs: settings, title store, templates, stylesheet."""

    def __init__(self, settings: CatalogSettings):
        self.settings = settings
        self.config = ConfigStore(settings.config_path, settings.root, settings.lock_timeout)
        self.templates = TemplateSet({})
        self.stylesheet = b""

    @classmethod
    def create(cls, settings: CatalogSettings) -> "CatalogApp":
        app = cls(settings)
        db.ensure_layout(settings.data_dir, settings.images_dir)
        db.clean_stale_temps(settings.data_dir, settings.images_dir)
        app.reload()
        return app

    def reload(self) -> None:
        self.config.load()
        self.templates = TemplateSet.load_dir(self.settings.templates_dir)
        try:
            self.stylesheet = self.settings.stylesheet_path.read_bytes()
        except OSError as exc:
            log.error("Stylesheet %s unreadable: %s", self.settings.stylesheet_path, exc)
            self.stylesheet = b""

    # ── Request boundary ──

    def handle(self, method: str, raw_path: str, headers=None,
               rfile: Optional[BinaryIO] = None) -> Response:
        headers = headers or {}
        try:
            parsed = urlparse(raw_path)
            path = unquote(parsed.path)
            query = parse_qs(parsed.query)
            name, arg = route(method, path)
            if name != "config":
                self._apply_title_param(query)
            return self._dispatch(name, arg, query, headers, rfile)
        except CatalogError as exc:
            level = logging.ERROR if exc.status >= 500 else logging.WARNING
            log.log(level, "%s %s → %d: %s", method, raw_path, exc.status, exc)
            return error_response(exc)
        except Exception:
            log.exception("Unhandled error for %s %s", method, raw_path)
            return Response(HTTPStatus.INTERNAL_SERVER_ERROR, TEXT, b"")

    def _dispatch(self, name, arg, query, headers, rfile) -> Response:
        s = self.settings
        if name == "catalog":
            return self.serve_catalog()
        if name == "stylesheet":
            return Response(HTTPStatus.OK, CSS, self.stylesheet)
        if name == "item":
            html = build_item_page(self.templates, s.data_dir, arg)
            return Response(HTTPStatus.OK, HTML, html.encode())
        if name == "image":
            data, mime = db.read_image(s.images_dir, arg)
            return Response(HTTPStatus.OK, mime, data)
        if name == "config":
            return self.update_config(query, headers, rfile)
        if name == "upload":
            body = self.read_body(headers, rfile)
            handle_upload(body, headers.get("Content-Type", ""), s.data_dir, s.images_dir,
                          s.root, s.lock_timeout)
            return self.serve_catalog()
        raise MethodNotAllowed(name)

    # ── Handlers ──

    def serve_catalog(self) -> Response:
        html = build_catalog(self.templates, self.config.title, self.settings.images_dir)
        return Response(HTTPStatus.OK, HTML, html.encode())

    def update_config(self, query, headers, rfile) -> Response:
        titles = query.get("title", [])
        if not titles and rfile is not None and headers.get("Content-Length"):
            titles = self._form_titles(self.read_body(headers, rfile),
                                       headers.get("Content-Type", ""))
        if not titles:
            raise BadRequest("config update without a title")
        self.config.set_title(titles[0])
        return Response(HTTPStatus.SEE_OTHER, TEXT, b"", {"Location": "/catalog"})

    def read_body(self, headers, rfile: Optional[BinaryIO]) -> bytes:
        raw_length = headers.get("Content-Length")
        if raw_length is None or rfile is None:
            raise BadRequest("request without a body")
        try:
            length = int(raw_length)
        except ValueError as exc:
            raise BadRequest(f"bad Content-Length {raw_length!r}") from exc
        if length < 0:
            raise BadRequest(f"bad Content-Length {raw_length!r}")
        if length > self.settings.max_upload_bytes:
            raise PayloadTooLarge(f"{length} bytes > {self.settings.max_upload_bytes}")
        body = rfile.read(length)
        if len(body) != length:
            raise BadRequest(f"body truncated at {len(body)} of {length} bytes")
        return body

    # ── Title side channel ──

    def _apply_title_param(self, query) -> None:
        if not self.settings.accept_title_param:
            return
        for title in query.get("title", []):
            if title.strip():
                self.config.set_title(title)
                return
            log.debug("Ignoring empty title parameter")

    @staticmethod
    def _form_titles(body: bytes, content_type: str):
        if content_type.lower().startswith("multipart/form-data"):
            title = parse_multipart(body, content_type).fields.get("title")
            return [title] if title is not None else []
        return parse_qs(body.decode("utf-8", errors="replace")).get("title", [])


# ---------------------------------------------------------------------------
# HTTP handler
# ---------------------------------------------------------------------------

class CatalogHandler(BaseHTTPRequestHandler):
    server_version = "CatalogHTTP/1.0"

    def __init__(self, *args, app: CatalogApp, **kwargs):
        self.app = app
        super().__init__(*args, **kwargs)

    def do_GET(self):
        self._respond(self.app.handle("GET", self.path, self.headers, None))

    def do_POST(self):
        self._respond(self.app.handle("POST", self.path, self.headers, self.rfile))

    def _other_method(self):
        self._respond(self.app.handle(self.command, self.path, self.headers, None))

    do_HEAD = do_PUT = do_DELETE = do_PATCH = do_OPTIONS = _other_method

    def _respond(self, resp: Response):
        if resp.status >= 400 and self.command != "GET":
            # Body may be unread; don't reuse the connection
            self.close_connection = True
            resp.headers.setdefault("Connection", "close")
        self.send_response(resp.status)
        self.send_header("Content-Type", resp.content_type)
        self.send_header("Content-Length", str(len(resp.body)))
        for key, value in resp.headers.items():
            self.send_header(key, value)
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(resp.body)

    def log_message(self, fmt, *args):
        log.info("%s %s", self.address_string(), fmt % args)


def reload_safely(app: CatalogApp) -> None:
    """SIGHUP entry point: a failed reload keeps the server running on old state."""
    try:
        app.reload()
    except Exception:
        log.exception("Reload failed, keeping previous templates and config")


def make_server(app: CatalogApp, host: Optional[str] = None,
                port: Optional[int] = None) -> HTTPServer:
    host = app.settings.host if host is None else host
    port = app.settings.port if port is None else port
    return HTTPServer((host, port), partial(CatalogHandler, app=app))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def setup_logging(log_file: Optional[str] = None, verbose: bool = False) -> None:
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
    )


def main(argv=None):
    parser = argparse.ArgumentParser(description="Flat-file catalog server")
    parser.add_argument("--root", type=Path, default=None,
                        help="Site directory with config.json, catalog.css, templates/")
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--log-file", type=str, default=None)
    parser.add_argument("--max-upload-mb", type=int, default=None)
    parser.add_argument("--no-title-param", action="store_true",
                        help="Only change the title through /config")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    setup_logging(args.log_file, args.verbose)
    settings = CatalogSettings.from_env(
        root=args.root,
        host=args.host,
        port=args.port,
        max_upload_bytes=args.max_upload_mb * 1024 * 1024 if args.max_upload_mb else None,
        accept_title_param=False if args.no_title_param else None,
    )
    app = CatalogApp.create(settings)

    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, lambda *_: reload_safely(app))

    server = make_server(app)
    print(f"Catalog server → http://localhost:{settings.port}")
    print(f"  Site root: {settings.root}")
    print(f"  Title:     {app.config.title}")
    print(f"  Images:    {len(db.list_image_names(settings.images_dir))}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nStopped.")
        server.server_close()


if __name__ == "__main__":
    sys.exit(main())
