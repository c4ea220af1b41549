from datetime import datetime, timedelta, timezone

import pytest

from services.ingestor.app.categorize import load_category_rules
from shared.database.session import create_db_engine, create_session_factory, init_db
from shared.database.store import ArticleStore
from shared.schemas.messages import ArticleRecord

BASE_TIME = datetime(2025, 7, 16, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    # in-memory SQLite shared across sessions through StaticPool
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return ArticleStore(session_factory)


@pytest.fixture
def categorizer():
    return load_category_rules()


@pytest.fixture
def make_record():
    def _make(n, **overrides):
        fields = {
            "id": f"id{n:04d}",
            "title": f"Article {n}",
            "link": f"https://example.com/{n}",
            "published_at": BASE_TIME + timedelta(hours=n),
            "source": "Test Source",
            "category": "Energy Policy",
            "content_type": "policy",
            "summary": f"Summary of article {n}.",
        }
        fields.update(overrides)
        return ArticleRecord(**fields)

    return _make
