"""Tests for favicon discovery and fallback."""

import asyncio

import httpx
import pytest

from site_shell.favicon.resolver import FaviconResolver, parse_icon_links, sniff_image_type
from site_shell.whitelist.models import SiteEntry

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
ICO = b"\x00\x00\x01\x00" + b"\x00" * 32

PAGE = """<html><head>
<link rel="stylesheet" href="/app.css">
<link rel="icon" type="image/png" href="/static/fav.png">
<link rel="shortcut icon" href="data:image/png;base64,AAAA">
<link rel="apple-touch-icon" href="https://cdn.example.com/touch.png">
</head><body></body></html>"""


@pytest.fixture
def entry():
    return SiteEntry(site_id="1", name="Mail", pattern="mail.example.com", position=0)


def _async_resolver(routes):
    def handler(request):
        key = f"{request.url.host}{request.url.path}"
        response = routes.get(key)
        if response is None:
            return httpx.Response(404)
        if isinstance(response, Exception):
            raise response
        return response

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    return FaviconResolver(client=client)


def test_parse_icon_links():
    links = parse_icon_links(PAGE, "https://mail.example.com/inbox")
    assert links == [
        "https://mail.example.com/static/fav.png",
        "https://cdn.example.com/touch.png",
    ]


def test_parse_icon_links_empty_page():
    assert parse_icon_links("<html></html>", "https://a.example/") == []


def test_sniff_image_type():
    assert sniff_image_type(PNG) == "image/png"
    assert sniff_image_type(ICO) == "image/x-icon"
    assert sniff_image_type(b"GIF89a....") == "image/gif"
    assert sniff_image_type(b"\xff\xd8\xff\xe0....") == "image/jpeg"
    assert sniff_image_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
    assert sniff_image_type(b'  <svg xmlns="http://www.w3.org/2000/svg"/>') == "image/svg+xml"
    assert sniff_image_type(b"BM....", "image/bmp") == "image/bmp"
    assert sniff_image_type(b"<!DOCTYPE html><html>", "image/png") is None
    assert sniff_image_type(b"plain text", "text/plain") is None
    assert sniff_image_type(b"") is None


def test_declared_icon_preferred(entry):
    resolver = _async_resolver({
        "mail.example.com/": httpx.Response(200, html=PAGE),
        "mail.example.com/static/fav.png": httpx.Response(200, content=PNG, headers={"content-type": "image/png"}),
        "mail.example.com/favicon.ico": httpx.Response(200, content=ICO),
    })

    result = asyncio.run(resolver.resolve(entry))

    assert result.generated is False
    assert result.data == PNG
    assert result.source == "https://mail.example.com/static/fav.png"


def test_falls_back_to_favicon_ico(entry):
    resolver = _async_resolver({
        "mail.example.com/": httpx.Response(500),
        "www.mail.example.com/favicon.ico": httpx.Response(200, content=ICO),
    })

    result = asyncio.run(resolver.resolve(entry))

    assert result.generated is False
    assert result.content_type == "image/x-icon"
    assert result.source == "https://www.mail.example.com/favicon.ico"


def test_html_error_page_is_not_an_icon(entry):
    resolver = _async_resolver({
        "mail.example.com/favicon.ico": httpx.Response(200, html="<!DOCTYPE html><p>Not found</p>"),
    })

    result = asyncio.run(resolver.resolve(entry))

    assert result.generated is True
    assert result.content_type == "image/svg+xml"
    assert result.data.startswith(b"<svg")


def test_network_failure_generates_icon(entry):
    resolver = _async_resolver({
        "mail.example.com/": httpx.ConnectError("offline"),
        "mail.example.com/favicon.ico": httpx.ConnectError("offline"),
        "www.mail.example.com/favicon.ico": httpx.ConnectError("offline"),
    })

    result = asyncio.run(resolver.resolve(entry))

    assert result.generated is True
    assert result.source is None


def test_oversized_icon_rejected(entry):
    client_routes = {"mail.example.com/favicon.ico": httpx.Response(200, content=ICO + b"\x00" * 2048)}
    resolver = _async_resolver(client_routes)
    resolver.max_bytes = 1024

    assert asyncio.run(resolver.resolve(entry)).generated is True


def test_resolve_sync(entry):
    def handler(request):
        if request.url.path == "/favicon.ico" and request.url.host == "mail.example.com":
            return httpx.Response(200, content=PNG, headers={"content-type": "image/x-icon"})
        return httpx.Response(404)

    resolver = FaviconResolver(sync_client=httpx.Client(transport=httpx.MockTransport(handler)))
    result = resolver.resolve_sync(entry)

    assert result.generated is False
    assert result.content_type == "image/png"
