import httpx
import pytest

from services.enricher.app.enrich import ImageEnricher, ImageScraper
from shared.utils.deadline import Deadline

OG_PAGE = '<html><head><meta property="og:image" content="/uploads/lead.jpg"></head><body></body></html>'


def handler(request):
    path = request.url.path
    if path.startswith("/ok"):
        return httpx.Response(200, text=OG_PAGE, headers={"content-type": "text/html; charset=utf-8"})
    if path == "/bare":
        return httpx.Response(200, content=OG_PAGE.encode())
    if path == "/json":
        return httpx.Response(200, json={"image": "x"})
    if path == "/empty":
        return httpx.Response(200, text="<html><body>No pictures</body></html>", headers={"content-type": "text/html"})
    if path == "/moved":
        return httpx.Response(301, headers={"location": "https://other.example/ok/final"})
    return httpx.Response(404)


@pytest.fixture
def scraper():
    return ImageScraper(transport=httpx.MockTransport(handler))


def test_scrape_finds_open_graph_image(scraper):
    result = scraper.scrape("https://site.example/ok/story")
    assert result.success
    assert result.image_url == "https://site.example/uploads/lead.jpg"
    assert result.extractor == "open_graph"


def test_relative_images_resolve_against_the_final_url(scraper):
    result = scraper.scrape("https://site.example/moved")
    assert result.image_url == "https://other.example/uploads/lead.jpg"


def test_missing_content_type_is_treated_as_html(scraper):
    assert scraper.scrape("https://site.example/bare").success


@pytest.mark.parametrize(
    "url,error",
    [
        ("ftp://site.example/file", "Invalid protocol"),
        ("https://site.example/missing", "HTTP 404"),
        ("https://site.example/json", "Not HTML content"),
        ("https://site.example/empty", "No image found"),
    ],
)
def test_scrape_failures_are_results(scraper, url, error):
    result = scraper.scrape(url)
    assert not result.success
    assert result.error == error


def test_html_is_truncated_before_parsing():
    late_og = "<html><head>" + " " * 500 + '<meta property="og:image" content="https://cdn.example/a.jpg"></head></html>'
    transport = httpx.MockTransport(lambda r: httpx.Response(200, text=late_og, headers={"content-type": "text/html"}))
    assert ImageScraper(max_html_chars=100, transport=transport).scrape("https://site.example/x").error == "No image found"


def test_enrich_missing_updates_the_store(store, make_record, scraper):
    store.upsert_ignoring_duplicates([
        make_record(1, link="https://site.example/ok/1"),
        make_record(2, link="https://site.example/missing"),
        make_record(3, link="https://site.example/ok/3", image_url="https://cdn.example/has.jpg"),
        make_record(4, link="https://site.example/ok/4", is_archived=True),
    ])
    pauses = []
    stats = ImageEnricher(store, scraper, delay=0.3, sleep=pauses.append).enrich_missing(10)

    assert stats.checked == 2
    assert stats.updated == 1
    assert stats.failed == 1
    assert stats.failures[0].reason == "HTTP 404"
    assert stats.failures[0].link == "https://site.example/missing"
    assert pauses == [0.3]
    assert [a.id for a in store.articles_missing_image(10)] == ["id0002"]


def test_enrich_missing_respects_the_limit(store, make_record, scraper):
    store.upsert_ignoring_duplicates([make_record(n, link=f"https://site.example/ok/{n}") for n in range(5)])
    stats = ImageEnricher(store, scraper, delay=0).enrich_missing(2)
    assert stats.checked == 2
    assert len(store.articles_missing_image(10)) == 3


def test_enrich_missing_stops_at_the_deadline(store, make_record, scraper):
    store.upsert_ignoring_duplicates([make_record(n, link=f"https://site.example/ok/{n}") for n in range(3)])
    stats = ImageEnricher(store, scraper, delay=0).enrich_missing(10, deadline=Deadline(0))
    assert stats.checked == 0
    assert stats.skipped == 3


def test_unexpected_errors_are_counted(store, make_record):
    class ExplodingScraper:
        def scrape(self, url):
            raise RuntimeError("parser blew up")

    store.upsert_ignoring_duplicates([make_record(1)])
    stats = ImageEnricher(store, ExplodingScraper(), delay=0).enrich_missing(5)
    assert stats.failed == 1
    assert stats.failures[0].reason == "Unexpected error: parser blew up"
