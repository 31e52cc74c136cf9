"""Tests for catalog and item page rendering."""

import json

import pytest

from catalog_errors import NotFound
from catalog_pages import build_item_page, image_names_to_tags, item_href


def seed_images(site_root, image_bytes, names):
    for name in names:
        fmt = "JPEG" if name.endswith(".jpg") else "PNG"
        (site_root / "data_images" / name).write_bytes(image_bytes(fmt))


def seed_record(site_root, tag, **fields):
    record = {"name": tag, "description": "", "image": tag + ".png",
              "tag": tag, "imageType": ".png"}
    record.update(fields)
    (site_root / "data" / f"{tag}.json").write_text(json.dumps(record))


class TestCatalogPage:
    @pytest.mark.parametrize("count", [0, 1, 2, 5])
    def test_one_thumbnail_per_image(self, app, site_root, image_bytes, count):
        seed_images(site_root, image_bytes, [f"item{i}.png" for i in range(count)])
        resp = app.handle("GET", "/catalog")
        assert resp.status == 200
        assert resp.body.decode().count("<img ") == count

    def test_non_images_and_hidden_files_skipped(self, app, site_root, image_bytes):
        seed_images(site_root, image_bytes, ["a.png", "b.jpg"])
        (site_root / "data_images" / "notes.txt").write_text("x")
        (site_root / "data_images" / ".a.png.1234.tmp").write_bytes(b"partial")
        html = app.handle("GET", "/").body.decode()
        assert html.count("<img ") == 2

    def test_single_image_still_linked(self, app, site_root, image_bytes):
        seed_images(site_root, image_bytes, ["Lamp.png"])
        html = app.handle("GET", "/catalog").body.decode()
        assert '<a href="templates/Lamp.html">' in html

    def test_title_from_config(self, app):
        html = app.handle("GET", "/catalog").body.decode()
        assert "<title>Test Shop</title>" in html

    def test_tags_link_to_item_pages(self):
        tags = image_names_to_tags(["b.png", "a.jpg"])
        assert tags[0] == '<a href="templates/b.html"> <img src="b.png" alt="b.png"> </a>'
        assert item_href("a.jpg") == "templates/a.html"


class TestItemPage:
    def test_renders_record(self, app, site_root, image_bytes):
        seed_images(site_root, image_bytes, ["Lamp.png"])
        seed_record(site_root, "Lamp", name="Red Lamp", description="Bright & cheap")
        resp = app.handle("GET", "/templates/Lamp.html")
        assert resp.status == 200
        html = resp.body.decode()
        assert "<title>Red Lamp</title>" in html
        assert "Bright &amp; cheap" in html
        assert '<img src="Lamp.png" alt="Lamp.png">' in html
        assert "<a href=\"templates/" not in html

    def test_image_link_from_item_page_resolves(self, app, site_root, image_bytes):
        seed_images(site_root, image_bytes, ["Lamp.png"])
        resp = app.handle("GET", "/templates/Lamp.png")
        assert resp.status == 200
        assert resp.content_type == "image/png"
        assert resp.body == (site_root / "data_images" / "Lamp.png").read_bytes()

    def test_missing_record_is_404(self, app):
        resp = app.handle("GET", "/templates/Nothing.html")
        assert resp.status == 404

    def test_seeded_image_without_record_is_404(self, app, site_root, image_bytes):
        seed_images(site_root, image_bytes, ["Orphan.png"])
        assert app.handle("GET", "/templates/Orphan.html").status == 404

    def test_corrupt_record_is_404(self, app, site_root):
        (site_root / "data" / "Broken.json").write_text("{not json")
        assert app.handle("GET", "/templates/Broken.html").status == 404

    def test_record_without_image_type_is_404(self, app, site_root):
        (site_root / "data" / "Half.json").write_text('{"name": "Half"}')
        assert app.handle("GET", "/templates/Half.html").status == 404

    def test_invalid_id_raises_not_found(self, app, site_root):
        with pytest.raises(NotFound):
            build_item_page(app.templates, site_root / "data", "../config")
