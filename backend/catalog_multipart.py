#!/usr/bin/env python3
"""
catalog_multipart.py — multipart/form-data parsing for uploads.

Small parser for browser form posts: text fields become strings, parts with
a filename become UploadedFile. Part bodies are never stripped beyond the
single CRLF that precedes the next boundary, so binary data survives intact.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Optional

from catalog_errors import BadRequest

_BOUNDARY_RE = re.compile(r'boundary=(?:"([^"]+)"|([^;]+))', re.I)
_NAME_RE = re.compile(r'\bname="([^"]*)"', re.I)
_FILENAME_RE = re.compile(r'\bfilename="([^"]*)"', re.I)


@dataclass
class UploadedFile:
    filename: str
    content_type: str
    data: bytes


@dataclass
class FormData:
    fields: Dict[str, str] = field(default_factory=dict)
    files: Dict[str, UploadedFile] = field(default_factory=dict)

    def first_file(self) -> Optional[UploadedFile]:
        for f in self.files.values():
            if f.filename and f.data:
                return f
        return None


def get_boundary(content_type: str) -> str:
    if not content_type or not content_type.lower().startswith("multipart/form-data"):
        raise BadRequest(f"expected multipart/form-data, got {content_type!r}")
    match = _BOUNDARY_RE.search(content_type)
    if match is None:
        raise BadRequest("missing multipart boundary")
    boundary = (match.group(1) or match.group(2) or "").strip()
    if not boundary:
        raise BadRequest("empty multipart boundary")
    return boundary


def parse_multipart(body: bytes, content_type: str) -> FormData:
    delimiter = b"--" + get_boundary(content_type).encode("utf-8", errors="replace")
    if delimiter not in body:
        raise BadRequest("multipart body has no parts")

    form = FormData()
    # Preamble before the first delimiter and epilogue after the last are dropped
    for part in body.split(delimiter)[1:]:
        if part.startswith(b"--"):
            break
        if part.startswith(b"\r\n"):
            part = part[2:]
        if part.endswith(b"\r\n"):
            part = part[:-2]

        head, sep, data = part.partition(b"\r\n\r\n")
        if not sep:
            continue

        disposition = ""
        part_type = ""
        for line in head.decode("utf-8", errors="replace").split("\r\n"):
            low = line.lower()
            if low.startswith("content-disposition:"):
                disposition = line.split(":", 1)[1].strip()
            elif low.startswith("content-type:"):
                part_type = line.split(":", 1)[1].strip()

        name_match = _NAME_RE.search(disposition)
        if name_match is None:
            continue
        name = name_match.group(1)
        file_match = _FILENAME_RE.search(disposition)
        if file_match is not None:
            form.files[name] = UploadedFile(
                filename=file_match.group(1),
                content_type=part_type or "application/octet-stream",
                data=data,
            )
        else:
            form.fields[name] = data.decode("utf-8", errors="replace")
    return form
