#!/usr/bin/env python3
"""
catalog_pages.py — Catalog and item page rendering.

The catalog page is one linked thumbnail per file in data_images/; each link
points at templates/<stem>.html. The item page shows one record with its
image, unlinked.
"""
from __future__ import annotations

from html import escape
from pathlib import Path
from typing import List
from urllib.parse import quote

import catalog_db as db
from catalog_templates import TemplateSet

ITEM_PREFIX = "templates"
ITEM_SUFFIX = ".html"


def item_href(filename: str) -> str:
    return f"{ITEM_PREFIX}/{quote(Path(filename).stem)}{ITEM_SUFFIX}"


def image_tag(filename: str) -> str:
    return f'<img src="{quote(filename)}" alt="{escape(filename)}">'


def thumbnail_tag(filename: str) -> str:
    return f'<a href="{item_href(filename)}"> {image_tag(filename)} </a>'


def image_names_to_tags(filenames: List[str]) -> List[str]:
    return [thumbnail_tag(name) for name in filenames]


def build_catalog(templates: TemplateSet, title: str, images_dir: Path) -> str:
    names = db.list_image_names(images_dir)
    return templates.render("catalog.html", {
        "title": escape(title),
        "count": str(len(names)),
        "image_tags": "".join(image_names_to_tags(names)),
    })


def build_item_page(templates: TemplateSet, data_dir: Path, item_id: str) -> str:
    record = db.load_item(data_dir, item_id)
    # Image lives next to the page URL: templates/<id><type> → data_images/
    image_name = item_id + record.image_type
    return templates.render("item.html", {
        "title": escape(record.name),
        "description": escape(record.description),
        "image_tag": image_tag(image_name),
    })
