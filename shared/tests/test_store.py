from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from shared.database.models import Article
from shared.database.store import ArticleStore, normalize_title
from shared.schemas.messages import ArticleRecord


def test_upsert_is_idempotent(store, make_record):
    records = [make_record(n) for n in range(3)]

    first = store.upsert_ignoring_duplicates(records)
    second = store.upsert_ignoring_duplicates(records)

    assert first.inserted_count == 3
    assert sorted(first.inserted_ids) == ["id0000", "id0001", "id0002"]
    assert second.inserted_count == 0
    assert second.duplicate_count == 3
    assert second.failed_count == 0


def test_upsert_never_overwrites(store, make_record, session_factory):
    store.upsert_ignoring_duplicates([make_record(1, summary="original")])
    store.upsert_ignoring_duplicates([make_record(1, summary="changed")])

    with session_factory() as session:
        assert session.scalar(select(Article.summary).where(Article.id == "id0001")) == "original"


def test_repeated_ids_in_one_batch_count_as_duplicates(store, make_record):
    result = store.upsert_ignoring_duplicates([make_record(1), make_record(1, title="again")])
    assert result.inserted_count == 1
    assert result.duplicate_count == 1


def test_write_failures_are_not_duplicates(store, make_record):
    broken = ArticleRecord.model_construct(**{**make_record(2).model_dump(), "title": None})
    result = store.upsert_ignoring_duplicates([make_record(1), broken, make_record(3)])

    assert result.inserted_count == 2
    assert result.failed_count == 1
    assert result.duplicate_count == 0
    assert result.errors[0].startswith("id0002")


def test_existing_ids_and_titles(store, make_record):
    store.upsert_ignoring_duplicates([make_record(1, title="  Grid News  "), make_record(2)])

    assert store.existing_ids(["id0001", "id0009"]) == {"id0001"}
    assert store.existing_titles(["GRID NEWS", "Other"]) == {"grid news"}
    assert store.existing_ids([]) == set()


def test_small_chunks_give_the_same_answers(session_factory, make_record):
    small = ArticleStore(session_factory, chunk_size=2)
    result = small.upsert_ignoring_duplicates([make_record(n) for n in range(5)])
    assert result.inserted_count == 5
    assert small.existing_ids([f"id{n:04d}" for n in range(7)]) == {f"id{n:04d}" for n in range(5)}


class FlakySessionFactory:
    """Raises OperationalError on the first session, then delegates."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls == 1:
            raise OperationalError("SELECT 1", {}, Exception("connection reset"))
        return self.session_factory()


def test_lookups_retry_with_generator_input(session_factory, make_record, monkeypatch):
    monkeypatch.setattr("shared.utils.retry.time.sleep", lambda s: None)
    ArticleStore(session_factory).upsert_ignoring_duplicates([make_record(1, title="Grid News")])

    flaky_factory = FlakySessionFactory(session_factory)
    flaky = ArticleStore(flaky_factory)
    assert flaky.existing_ids(r.id for r in [make_record(1), make_record(2)]) == {"id0001"}
    assert flaky_factory.calls == 2

    flaky = ArticleStore(FlakySessionFactory(session_factory))
    assert flaky.existing_titles(t for t in ["GRID NEWS", "Other"]) == {"grid news"}


def test_articles_missing_image(store, make_record):
    store.upsert_ignoring_duplicates([
        make_record(1),
        make_record(2, image_url="https://img.example/2.jpg"),
        make_record(3),
        make_record(4, is_archived=True),
    ])

    missing = store.articles_missing_image(10)
    assert [a.id for a in missing] == ["id0003", "id0001"]
    assert [a.id for a in store.articles_missing_image(1)] == ["id0003"]


def test_set_image_url_only_fills_empty_images(store, make_record):
    store.upsert_ignoring_duplicates([make_record(1)])

    assert store.set_image_url("id0001", "https://img.example/a.jpg") is True
    assert store.set_image_url("id0001", "https://img.example/b.jpg") is False
    assert store.articles_missing_image(10) == []


def test_archive_excess_keeps_the_newest(store, make_record):
    store.upsert_ignoring_duplicates(
        [make_record(n, content_type="finance") for n in range(10)] + [make_record(50)]
    )

    assert store.archive_excess("finance", 6) == 4
    assert store.count_active("finance") == 6
    assert store.count_active("policy") == 1
    assert store.archive_excess("finance", 6) == 0


def test_update_summary_and_category(store, make_record):
    store.upsert_ignoring_duplicates([make_record(1)])

    assert store.update_summary("id0001", "Better summary.")
    assert store.update_category("id0001", "LNG")
    assert store.update_summary("missing", "x") is False
    assert store.all_titles() == [("id0001", "Article 1", "LNG")]


def test_normalize_title():
    assert normalize_title("  Mixed Case ") == "mixed case"
    assert normalize_title(None) == ""
