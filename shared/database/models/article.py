from sqlalchemy import Boolean, Column, DateTime, Index, String, Text, false, func

from ..base import Base


class Article(Base):
    __tablename__ = "articles"

    # 16 hex chars of sha256(guid | link | title:date), stable across runs
    id = Column(String(64), primary_key=True)
    title = Column(Text, nullable=False)
    summary = Column(Text, nullable=False)
    link = Column(Text, nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=False, index=True)
    source = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False, index=True)
    content_type = Column(String, nullable=False, default="policy", server_default="policy")
    image_url = Column(Text, nullable=True)
    is_archived = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_articles_content_type_active", "content_type", "is_archived", "published_at"),
    )

    def __repr__(self) -> str:
        return f"<Article {self.id} {self.source!r} {self.title[:40]!r}>"
