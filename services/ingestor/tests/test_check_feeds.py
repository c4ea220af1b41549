import httpx

import services.ingestor.app.check_feeds as check_feeds
from services.ingestor.app.fetch import FeedFetcher
from shared.config.feeds import FeedRegistry
from shared.schemas.messages import FeedDescriptor

RSS = b"""<?xml version="1.0"?><rss version="2.0"><channel><title>T</title>
<item><title>Transmission line approved</title><link>https://ok.example/1</link><guid>1</guid></item>
</channel></rss>"""

REGISTRY = FeedRegistry([
    FeedDescriptor(name="Good", address="https://ok.example/rss"),
    FeedDescriptor(name="Blocked", address="https://blocked.example/rss"),
    FeedDescriptor(name="Dormant", address="https://ok.example/dormant", enabled=False),
])


def handler(request):
    if request.url.host == "ok.example":
        return httpx.Response(200, content=RSS)
    return httpx.Response(403, content=b"<html>blocked</html>")


def patch_cli(monkeypatch):
    monkeypatch.setattr(check_feeds, "load_feed_registry", lambda path=None: REGISTRY)
    monkeypatch.setattr(
        check_feeds, "FeedFetcher", lambda **kw: FeedFetcher(transport=httpx.MockTransport(handler))
    )


def test_cli_reports_failures_with_exit_code(monkeypatch, capsys):
    patch_cli(monkeypatch)
    assert check_feeds.main([]) == 1

    out = capsys.readouterr().out
    assert "✅ Good" in out
    assert "[Infrastructure] " in out
    assert "❌ Blocked" in out
    assert "HTTP 403: Forbidden" in out
    assert "Dormant" not in out
    assert "1/2 feeds ok" in out


def test_cli_single_source(monkeypatch, capsys):
    patch_cli(monkeypatch)
    assert check_feeds.main(["--source", "Dormant", "--sequential"]) == 0
    assert "✅ Dormant" in capsys.readouterr().out


def test_cli_unknown_source(monkeypatch):
    patch_cli(monkeypatch)
    assert check_feeds.main(["--source", "Nope"]) == 2
