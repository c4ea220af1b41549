import httpx
import pytest

from services.ingestor.app.fetch import FeedFetcher, fetch_stats, looks_like_html
from shared.schemas.messages import FeedDescriptor

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>Feed A</title>
<item><title>Grid operators brace for heat</title><link>https://a.example/1</link>
  <guid>a-1</guid><pubDate>Wed, 16 Jul 2025 20:54:01 +0000</pubDate>
  <description>&lt;p&gt;Peak demand &lt;b&gt;records&lt;/b&gt; expected.&lt;/p&gt;</description></item>
<item><title>New LNG terminal approved</title><link>https://a.example/2</link>
  <guid>a-2</guid><pubDate>Wed, 16 Jul 2025 18:00:00 +0000</pubDate></item>
<item><title>Offshore wind lease sale</title><link>https://a.example/3</link>
  <guid>a-3</guid><pubDate>Tue, 15 Jul 2025 09:30:00 +0000</pubDate></item>
</channel></rss>"""

HTML = b"<!DOCTYPE html><html><head><title>Just a moment...</title></head><body></body></html>"

FEED_A = FeedDescriptor(name="A", address="https://a.example/feed")
FEED_B = FeedDescriptor(name="B", address="https://b.example/feed")
FEED_C = FeedDescriptor(name="C", address="https://c.example/feed", content_type="finance")


def handler(request: httpx.Request) -> httpx.Response:
    host = request.url.host
    if host == "a.example":
        return httpx.Response(200, content=RSS, headers={"content-type": "application/rss+xml"})
    if host == "b.example":
        return httpx.Response(403, content=b"Forbidden")
    if host == "html.example":
        return httpx.Response(200, content=HTML, headers={"content-type": "text/html"})
    if host == "junk.example":
        return httpx.Response(200, content=b'{"not": "a feed"}', headers={"content-type": "application/json"})
    raise httpx.ConnectError("connection refused", request=request)


@pytest.fixture
def fetcher():
    return FeedFetcher(timeout=5, transport=httpx.MockTransport(handler))


def test_fetch_parses_items(fetcher):
    result = fetcher.fetch(FEED_A)
    assert result.ok
    assert [item.title for item in result.items] == [
        "Grid operators brace for heat",
        "New LNG terminal approved",
        "Offshore wind lease sale",
    ]
    first = result.items[0]
    assert first.guid == "a-1"
    assert first.iso_date == "2025-07-16T20:54:01+00:00"
    assert first.snippet == "Peak demand records expected."
    assert result.diagnostics.http_status == 200


def test_http_error_is_a_result_not_an_exception(fetcher):
    result = fetcher.fetch(FEED_B)
    assert not result.ok
    assert result.items == []
    assert result.error == "HTTP 403: Forbidden"
    assert result.diagnostics.http_status == 403
    assert result.diagnostics.response_preview == "Forbidden"


def test_html_response_is_rejected(fetcher):
    result = fetcher.fetch(FeedDescriptor(name="H", address="https://html.example/feed"))
    assert result.error.startswith("Response is HTML")
    assert result.diagnostics.content_type == "text/html"


def test_unparseable_body_reports_parse_error(fetcher):
    result = fetcher.fetch(FeedDescriptor(name="J", address="https://junk.example/feed"))
    assert result.error.startswith("Parse error")
    assert result.diagnostics.parse_error


def test_network_error_is_captured(fetcher):
    result = fetcher.fetch(FeedDescriptor(name="Down", address="https://down.example/feed"))
    assert result.error.startswith("ConnectError")


def test_fetch_all_isolates_failures(fetcher):
    results = fetcher.fetch_all([FEED_A, FEED_B, FEED_C])
    assert [r.source for r in results] == ["A", "B", "C"]
    assert len(results[0].items) == 3
    assert results[1].error == "HTTP 403: Forbidden"
    assert results[2].content_type == "finance"
    assert not results[2].ok

    stats = fetch_stats(results)
    assert stats["total_feeds"] == 3
    assert stats["successful_feeds"] == 1
    assert stats["failed_feeds"] == 2
    assert stats["total_items"] == 3


def test_fetch_all_with_no_feeds(fetcher):
    assert fetcher.fetch_all([]) == []


def test_fetch_sequential_keeps_order(fetcher, monkeypatch):
    monkeypatch.setattr("services.ingestor.app.fetch.time.sleep", lambda s: None)
    results = fetcher.fetch_sequential([FEED_B, FEED_A])
    assert [r.source for r in results] == ["B", "A"]


def test_requests_identify_as_feed_reader():
    seen = {}

    def capture(request):
        seen.update(request.headers)
        return httpx.Response(200, content=RSS)

    FeedFetcher(user_agent="TestBot/1.0", transport=httpx.MockTransport(capture)).fetch(FEED_A)
    assert seen["user-agent"] == "TestBot/1.0"
    assert "application/rss+xml" in seen["accept"]


def test_looks_like_html():
    assert looks_like_html("  <!DOCTYPE html><html>")
    assert looks_like_html("<HTML><body>")
    assert not looks_like_html('<?xml version="1.0"?><rss>')
    assert looks_like_html("\ufeff<!DOCTYPE html>")
    assert looks_like_html("\r\n<!doctype HTML PUBLIC \"-//W3C//DTD XHTML 1.0//EN\">")
    assert looks_like_html("<!DOCTYPE>")
    assert not looks_like_html("\ufeff<?xml version='1.0'?><feed>")
