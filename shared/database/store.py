"""
ArticleStore: the only component that talks to the articles table.

Inserts are "insert if absent, otherwise skip" on the primary key. The
result of an upsert keeps duplicate skips (not an error) apart from rows
lost to write failures (an error).
"""

from typing import Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import func, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from shared.app_logging.logger import get_logger
from shared.database.models import Article
from shared.schemas.messages import ArticleRecord, UpsertResult
from shared.utils.retry import retry

logger = get_logger("database.store")

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class StoreError(Exception):
    """Raised when the store cannot serve a request at all."""


def normalize_title(title: Optional[str]) -> str:
    return (title or "").strip().lower()


def _chunks(values: Sequence, size: int) -> Iterable[Sequence]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class ArticleStore:
    def __init__(self, session_factory: sessionmaker, chunk_size: int = 200):
        self.session_factory = session_factory
        self.chunk_size = chunk_size

    def _insert_for(self, session: Session):
        dialect = session.get_bind().dialect.name
        try:
            return _DIALECT_INSERTS[dialect]
        except KeyError:
            raise StoreError(f"Upsert is not supported on the {dialect} dialect")

    def ping(self) -> None:
        with self.session_factory() as session:
            session.execute(text("SELECT 1"))

    def existing_ids(self, ids: Iterable[str]) -> Set[str]:
        return self._existing_ids(sorted(set(ids)))

    @retry(max_retries=2, base_delay=0.5, backoff_factor=2.0, retryable_exceptions=(OperationalError,))
    def _existing_ids(self, unique: List[str]) -> Set[str]:
        found: Set[str] = set()
        with self.session_factory() as session:
            for chunk in _chunks(unique, self.chunk_size):
                found.update(session.scalars(select(Article.id).where(Article.id.in_(chunk))))
        return found

    def existing_titles(self, titles: Iterable[str]) -> Set[str]:
        """Return the subset of ``titles`` (compared lower-cased and trimmed) already stored."""
        return self._existing_titles(sorted({normalize_title(t) for t in titles if normalize_title(t)}))

    @retry(max_retries=2, base_delay=0.5, backoff_factor=2.0, retryable_exceptions=(OperationalError,))
    def _existing_titles(self, unique: List[str]) -> Set[str]:
        stored_title = func.lower(func.trim(Article.title))
        found: Set[str] = set()
        with self.session_factory() as session:
            for chunk in _chunks(unique, self.chunk_size):
                found.update(session.scalars(select(stored_title).where(stored_title.in_(chunk))))
        return found

    def _insert_rows(self, session: Session, rows: List[dict]) -> List[str]:
        insert = self._insert_for(session)
        stmt = (
            insert(Article)
            .values(rows)
            .on_conflict_do_nothing(index_elements=[Article.id])
            .returning(Article.id)
        )
        inserted = list(session.scalars(stmt))
        session.commit()
        return inserted

    def upsert_ignoring_duplicates(self, articles: Sequence[ArticleRecord]) -> UpsertResult:
        result = UpsertResult()
        rows, seen = [], set()
        for article in articles:
            if article.id in seen:
                result.duplicate_count += 1
                continue
            seen.add(article.id)
            rows.append(article.model_dump(exclude={"excerpt"}))

        for chunk in _chunks(rows, self.chunk_size):
            chunk = list(chunk)
            with self.session_factory() as session:
                try:
                    inserted = self._insert_rows(session, chunk)
                except SQLAlchemyError as e:
                    session.rollback()
                    logger.warning(f"Chunk of {len(chunk)} rows failed ({e.__class__.__name__}); retrying row by row")
                    inserted = self._insert_one_by_one(session, chunk, result)
            result.inserted_ids.extend(inserted)

        result.inserted_count = len(result.inserted_ids)
        result.duplicate_count += len(rows) - result.inserted_count - result.failed_count
        logger.info(
            f"Upsert finished: {result.inserted_count} inserted, "
            f"{result.duplicate_count} duplicates, {result.failed_count} failed"
        )
        return result

    def _insert_one_by_one(self, session: Session, rows: List[dict], result: UpsertResult) -> List[str]:
        inserted = []
        for row in rows:
            try:
                inserted.extend(self._insert_rows(session, [row]))
            except SQLAlchemyError as e:
                session.rollback()
                result.failed_count += 1
                message = f"{row['id']} ({row['source']}): {e.__class__.__name__}: {e.orig if getattr(e, 'orig', None) else e}"
                result.errors.append(message)
                logger.error(f"❌ Failed to insert article {message}")
        return inserted

    def articles_missing_image(self, limit: int) -> List[Article]:
        with self.session_factory() as session:
            stmt = (
                select(Article)
                .where(Article.image_url.is_(None), Article.is_archived.is_(False))
                .order_by(Article.published_at.desc())
                .limit(limit)
            )
            return list(session.scalars(stmt))

    def set_image_url(self, article_id: str, image_url: str) -> bool:
        """Set the image once; an article that already has one is left alone."""
        with self.session_factory() as session:
            res = session.execute(
                update(Article)
                .where(Article.id == article_id, Article.image_url.is_(None))
                .values(image_url=image_url)
            )
            session.commit()
            return res.rowcount == 1

    def archive_excess(self, content_type: str, keep: int) -> int:
        """Archive every active article of the segment except the ``keep`` most recent."""
        with self.session_factory() as session:
            active = (Article.content_type == content_type, Article.is_archived.is_(False))
            keep_ids = list(session.scalars(
                select(Article.id)
                .where(*active)
                .order_by(Article.published_at.desc(), Article.created_at.desc(), Article.id)
                .limit(max(keep, 0))
            ))
            res = session.execute(
                update(Article)
                .where(*active, Article.id.not_in(keep_ids))
                .values(is_archived=True)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return res.rowcount or 0

    def count_active(self, content_type: str) -> int:
        with self.session_factory() as session:
            return session.scalar(
                select(func.count())
                .select_from(Article)
                .where(Article.content_type == content_type, Article.is_archived.is_(False))
            )

    def latest_articles(self, limit: int) -> List[Article]:
        with self.session_factory() as session:
            return list(session.scalars(select(Article).order_by(Article.published_at.desc()).limit(limit)))

    def update_summary(self, article_id: str, summary: str) -> bool:
        with self.session_factory() as session:
            res = session.execute(update(Article).where(Article.id == article_id).values(summary=summary))
            session.commit()
            return res.rowcount == 1

    def all_titles(self) -> List[Tuple[str, str, str]]:
        """(id, title, category) for every stored article."""
        with self.session_factory() as session:
            return [tuple(row) for row in session.execute(select(Article.id, Article.title, Article.category))]

    def update_category(self, article_id: str, category: str) -> bool:
        with self.session_factory() as session:
            res = session.execute(update(Article).where(Article.id == article_id).values(category=category))
            session.commit()
            return res.rowcount == 1
