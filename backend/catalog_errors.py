#!/usr/bin/env python3
"""
catalog_errors.py — Error taxonomy for the catalog server.

Every filesystem and parse failure is raised as one of these. The request
boundary in serve_catalog.py maps them to an HTTP status and a generic
reason phrase; the message itself is only logged, never sent.
"""
from __future__ import annotations


class CatalogError(Exception):
    status = 500
    reason = "Server error"
    headers: dict = {}


class NotFound(CatalogError):
    status = 404
    reason = "Resource not found"


class BadRequest(CatalogError):
    status = 400
    reason = "Bad request"


class PayloadTooLarge(BadRequest):
    status = 413
    reason = "Upload too large"


class Conflict(CatalogError):
    status = 409
    reason = "Item already exists"


class MethodNotAllowed(CatalogError):
    status = 405
    reason = "Method not allowed"
    headers = {"Allow": "GET, POST"}


class ServerError(CatalogError):
    status = 500
    reason = "Server error"
