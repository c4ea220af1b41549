from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ContentType = Literal["policy", "finance"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Display name, also stored as the article source")
    address: str = Field(..., description="Feed URL")
    enabled: bool = Field(True, description="Whether the feed takes part in ingestion")
    content_type: ContentType = Field("policy", description="Segment the feed's articles belong to")
    group: Optional[str] = Field(None, description="Source family, e.g. government, trade, news, international, finance")


class RawItem(BaseModel):
    """One entry as parsed from a feed, before any cleanup."""

    title: Optional[str] = None
    link: Optional[str] = None
    published: Optional[str] = Field(None, description="Publish date string as the feed wrote it")
    iso_date: Optional[str] = Field(None, description="Machine-parsed publish date, ISO-8601")
    content: Optional[str] = None
    snippet: Optional[str] = Field(None, description="Plain-text excerpt")
    guid: Optional[str] = None


class FetchDiagnostics(BaseModel):
    http_status: Optional[int] = None
    content_type: Optional[str] = None
    response_preview: Optional[str] = Field(None, description="First 500 characters of the body")
    parse_error: Optional[str] = None


class FeedFetchResult(BaseModel):
    source: str
    url: str
    content_type: ContentType = "policy"
    items: List[RawItem] = Field(default_factory=list)
    error: Optional[str] = None
    fetched_at: datetime = Field(default_factory=utcnow)
    diagnostics: FetchDiagnostics = Field(default_factory=FetchDiagnostics)

    @property
    def ok(self) -> bool:
        return self.error is None


class NormalizedItem(BaseModel):
    id: str = Field(..., description="Deterministic 16-char hash id")
    title: str
    link: str
    published_at: datetime
    source: str
    category: str
    content_type: ContentType = "policy"
    excerpt: Optional[str] = Field(None, description="Text handed to the summarizer, never persisted")


class ArticleRecord(NormalizedItem):
    summary: str = Field(..., min_length=1, description="AI summary or title-derived fallback")
    image_url: Optional[str] = None
    is_archived: bool = False


class UpsertResult(BaseModel):
    inserted_count: int = 0
    inserted_ids: List[str] = Field(default_factory=list)
    duplicate_count: int = Field(0, description="Rows skipped on primary-key conflict")
    failed_count: int = Field(0, description="Rows lost to write failures")
    errors: List[str] = Field(default_factory=list)


class SummarizeResult(BaseModel):
    success: bool
    summary: Optional[str] = None
    tokens_used: Optional[int] = None
    error: Optional[str] = None


class SourceIngestResult(BaseModel):
    source: str
    fetch_status: Literal["success", "error"]
    fetch_error: Optional[str] = None
    items_fetched: int = 0
    items_normalized: int = 0
    items_inserted: int = 0
    items_skipped: int = 0
    skip_reasons: List[str] = Field(default_factory=list)
    diagnostics: Optional[FetchDiagnostics] = None


class SummarizationStats(BaseModel):
    enabled: bool = False
    attempted: int = 0
    successful: int = 0
    failed: int = 0
    fallback: int = Field(0, description="Items given the title-derived summary")
    tokens_used: int = 0


class IngestionStats(BaseModel):
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    duration_ms: int = 0
    total_sources: int = 0
    successful_sources: int = 0
    failed_sources: int = 0
    total_items_fetched: int = 0
    total_items_normalized: int = 0
    total_items_considered: int = Field(0, description="Items that passed validation")
    total_items_attempted: int = Field(0, description="Items that survived deduplication")
    total_items_inserted: int = 0
    total_items_duplicates: int = 0
    total_items_skipped: int = 0
    total_db_errors: int = 0
    deadline_reached: bool = False
    summarization: SummarizationStats = Field(default_factory=SummarizationStats)
    per_source: List[SourceIngestResult] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class ImageResult(BaseModel):
    success: bool
    image_url: Optional[str] = None
    error: Optional[str] = None
    extractor: Optional[str] = Field(None, description="Name of the strategy that found the image")


class EnrichmentFailure(BaseModel):
    source: str
    link: str
    reason: str


class EnrichmentStats(BaseModel):
    checked: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    failures: List[EnrichmentFailure] = Field(default_factory=list)
    duration_ms: int = 0


class ResummarizeStats(BaseModel):
    total: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    tokens_used: int = 0
    duration_ms: int = 0


class RecategorizeStats(BaseModel):
    total: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    category_breakdown: Dict[str, int] = Field(default_factory=dict)


class JobRunMetrics(BaseModel):
    inserted_count: int = 0
    duplicate_count: int = 0
    images_enriched_count: int = 0


class JobRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_name: str
    ran_at: datetime
    status: Literal["started", "success", "error"]
    duration_ms: Optional[int] = None
    inserted_count: int = 0
    duplicate_count: int = 0
    images_enriched_count: int = 0
    error_message: Optional[str] = None
    host: Optional[str] = None


class RunReport(BaseModel):
    """Outcome of one orchestrator run, returned inline or kept for debugging."""

    run_id: str
    status: Literal["success", "error"]
    started_at: datetime
    duration_ms: int = 0
    metrics: JobRunMetrics = Field(default_factory=JobRunMetrics)
    ingestion: Optional[IngestionStats] = None
    enrichment: Optional[EnrichmentStats] = None
    archived: Dict[str, int] = Field(default_factory=dict)
    invalidated: bool = False
    skipped_stages: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list, description="Non-fatal stage failures")
    error: Optional[str] = None
