#!/usr/bin/env python3
"""
catalog_templates.py — HTML templates with %%PLACEHOLDER%% substitution.

Templates are plain HTML files in the site's templates/ directory. Values are
substituted with str.replace, so CSS and JS braces in the files need no
escaping. Callers pass already-escaped text.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict

from catalog_errors import ServerError

log = logging.getLogger("catalog.templates")


class TemplateSet:
    def __init__(self, templates: Dict[str, str]):
        self.templates = templates

    @classmethod
    def load_dir(cls, directory: Path) -> "TemplateSet":
        templates = {}
        directory = Path(directory)
        if not directory.is_dir():
            log.error("Template directory %s not found", directory)
            return cls(templates)
        for path in sorted(directory.glob("*.html")):
            try:
                templates[path.name] = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                log.error("Skipping unreadable template %s: %s", path, exc)
        log.info("Loaded %d templates from %s", len(templates), directory)
        return cls(templates)

    def render(self, name: str, values: Dict[str, str]) -> str:
        try:
            html = self.templates[name]
        except KeyError as exc:
            raise ServerError(f"template {name} not loaded") from exc
        for key, value in values.items():
            html = html.replace(f"%%{key.upper()}%%", value)
        return html
