# tests/unit/test_blob_store.py
# Cloud Storage blob store against an httpx mock transport

import httpx
import pytest


class StaticCredentials:
    valid = True
    token = "test-token"


def make_store(settings, handler):
    from chapter_portal.backends.blobs import GcsBlobStore

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GcsBlobStore(settings, http_client=client, credentials=StaticCredentials())


class TestMultipartBody:

    def test_boundary_is_fresh_per_body(self):
        from chapter_portal.backends.blobs import multipart_related

        first, body = multipart_related("{}", "text/html", "<p>hi</p>")
        second, _ = multipart_related("{}", "text/html", "<p>hi</p>")

        assert first != second
        assert body.startswith(f"--{first}\r\n")
        assert body.endswith(f"--{first}--")
        assert body.count(first) == 3


class TestGcsBlobStore:

    @pytest.mark.asyncio
    async def test_html_upload_declares_the_body_boundary(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.content.decode("utf-8")
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(200, json={"name": "button_x.html"})

        store = make_store(settings, handler)
        # Content that contains a delimiter-like line of its own
        html = "<pre>--chapter_portal_boundary</pre>"
        url = await store.upload_html("button-htmls", "button_x.html", html)
        await store.aclose()

        boundary = seen["content_type"].split("boundary=", 1)[1]
        assert boundary not in html
        assert seen["body"].count(f"--{boundary}") == 3
        assert html in seen["body"]
        assert seen["auth"] == "Bearer test-token"
        assert url.startswith("https://storage.googleapis.com/button-htmls/button_x.html?v=")

    @pytest.mark.asyncio
    async def test_rejected_upload_returns_none(self, settings):
        store = make_store(settings, lambda request: httpx.Response(403, text="denied"))

        assert await store.upload_html("button-htmls", "button_x.html", "<p>x</p>") is None
        await store.aclose()
