"""End-to-end HTTP tests against a live server on an ephemeral port."""

import http.client
import threading
import urllib.error
import urllib.request

import pytest

from serve_catalog import make_server


@pytest.fixture
def base_url(app):
    server = make_server(app, "127.0.0.1", 0)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


def fetch(url, data=None, headers=None):
    req = urllib.request.Request(url, data=data, headers=headers or {})
    with urllib.request.urlopen(req, timeout=5) as resp:
        return resp.status, resp.headers, resp.read()


class TestLiveServer:
    def test_catalog(self, base_url):
        status, headers, body = fetch(base_url + "/catalog")
        assert status == 200
        assert headers["Content-Type"].startswith("text/html")
        assert b"<title>Test Shop</title>" in body

    def test_upload_then_browse(self, base_url, multipart, image_bytes):
        png = image_bytes()
        body, ctype = multipart({"name": "Red Lamp", "description": "A lamp"},
                                {"fileupload": ("lamp.png", png)})
        status, _, page = fetch(base_url + "/", data=body, headers={"Content-Type": ctype})
        assert status == 200
        assert b'src="RedLamp.png"' in page

        status, _, item = fetch(base_url + "/templates/RedLamp.html")
        assert status == 200
        assert b"A lamp" in item

        status, headers, data = fetch(base_url + "/templates/RedLamp.png")
        assert status == 200
        assert headers["Content-Type"] == "image/png"
        assert data == png

    def test_bad_upload_is_400(self, base_url, multipart, site_root):
        body, ctype = multipart({"name": "Lamp", "description": "no file"})
        with pytest.raises(urllib.error.HTTPError) as err:
            fetch(base_url + "/", data=body, headers={"Content-Type": ctype})
        assert err.value.code == 400
        assert list((site_root / "data").iterdir()) == []

    def test_missing_item_is_404(self, base_url):
        with pytest.raises(urllib.error.HTTPError) as err:
            fetch(base_url + "/templates/Nothing.html")
        assert err.value.code == 404

    def test_traversal_is_404(self, base_url):
        with pytest.raises(urllib.error.HTTPError) as err:
            fetch(base_url + "/%2e%2e/%2e%2e/etc/passwd")
        assert err.value.code == 404

    def test_title_param(self, base_url):
        fetch(base_url + "/catalog.css?title=My+Shop")
        _, _, body = fetch(base_url + "/catalog")
        assert b"<title>My Shop</title>" in body

    @pytest.mark.parametrize("method", ["PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"])
    def test_other_methods_are_405(self, base_url, method):
        host, port = base_url.rsplit("/", 1)[-1].split(":")
        conn = http.client.HTTPConnection(host, int(port), timeout=5)
        try:
            conn.request(method, "/catalog")
            resp = conn.getresponse()
            body = resp.read()
        finally:
            conn.close()
        assert resp.status == 405
        assert resp.getheader("Allow") == "GET, POST"
        if method == "HEAD":
            assert body == b""
