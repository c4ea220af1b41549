from datetime import datetime, timezone

from services.ingestor.app.normalize import ID_LENGTH, Normalizer, make_article_id, parse_timestamp
from shared.schemas.messages import RawItem

FIXED_NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_id_is_stable_for_the_same_guid():
    a = RawItem(title="One", link="https://example.com/a", guid="urn:item:42")
    b = RawItem(title="Other title", link="https://example.com/b", guid="urn:item:42")
    assert make_article_id(a) == make_article_id(b)
    assert len(make_article_id(a)) == ID_LENGTH


def test_id_falls_back_to_link_then_title_and_date():
    by_link = RawItem(title="T", link="  https://example.com/a  ")
    assert make_article_id(by_link) == make_article_id(RawItem(title="X", link="https://example.com/a"))

    by_title = RawItem(title="T", published="Wed, 16 Jul 2025 20:54:01 +0000")
    assert make_article_id(by_title) == make_article_id(RawItem(title="T", published="Wed, 16 Jul 2025 20:54:01 +0000"))
    assert make_article_id(by_title) != make_article_id(by_link)


def test_parse_timestamp_formats():
    expected = datetime(2025, 7, 16, 20, 54, 1, tzinfo=timezone.utc)
    assert parse_timestamp("2025-07-16T20:54:01Z") == expected
    assert parse_timestamp("2025-07-16T20:54:01+00:00") == expected
    assert parse_timestamp("Wed, 16 Jul 2025 20:54:01 +0000") == expected
    assert parse_timestamp("July 16, 2025 20:54:01") == expected
    assert parse_timestamp("not a date") is None
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None


def test_parse_timestamp_converts_to_utc():
    parsed = parse_timestamp("2025-07-16T15:54:01-05:00")
    assert parsed == datetime(2025, 7, 16, 20, 54, 1, tzinfo=timezone.utc)


def test_published_at_prefers_iso_date_then_published_then_now(categorizer):
    normalizer = Normalizer(categorizer, clock=lambda: FIXED_NOW)
    both = RawItem(iso_date="2025-03-01T00:00:00Z", published="Sat, 01 Feb 2025 00:00:00 +0000")
    only_published = RawItem(published="Sat, 01 Feb 2025 00:00:00 +0000")

    assert normalizer.resolve_published_at(both).month == 3
    assert normalizer.resolve_published_at(only_published).month == 2
    assert normalizer.resolve_published_at(RawItem()) == FIXED_NOW
    assert normalizer.resolve_published_at(RawItem(published="garbage")) == FIXED_NOW


def test_normalize_builds_a_categorized_item(categorizer):
    normalizer = Normalizer(categorizer, clock=lambda: FIXED_NOW)
    raw = RawItem(
        title="  Offshore wind farm approved ",
        link="https://example.com/wind",
        guid="wind-1",
        content="<p>long</p>",
        snippet="Turbines are going up.",
    )
    item = normalizer.normalize(raw, "Utility Dive", "policy")
    assert item.title == "Offshore wind farm approved"
    assert item.category == "Renewable Energy"
    assert item.excerpt == "Turbines are going up."
    assert item.source == "Utility Dive"
    assert item.published_at == FIXED_NOW


def test_normalize_drops_items_without_title_or_link(categorizer):
    normalizer = Normalizer(categorizer)
    items = [
        RawItem(title="Has both", link="https://example.com/1"),
        RawItem(title="No link"),
        RawItem(link="https://example.com/3"),
        RawItem(title="   ", link="https://example.com/4"),
    ]
    normalized = normalizer.normalize_many(items, "Src", "finance")
    assert [item.title for item in normalized] == ["Has both"]
    assert normalized[0].content_type == "finance"
