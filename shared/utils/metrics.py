from prometheus_client import Counter

FEEDS_FETCHED = Counter(
    "pipeline_feeds_fetched_total",
    "Feed fetch attempts by outcome",
    ["outcome"],
)
ARTICLES_INSERTED = Counter("pipeline_articles_inserted_total", "Articles inserted into the store")
ARTICLES_DUPLICATE = Counter("pipeline_articles_duplicate_total", "Articles skipped as duplicates")
ARTICLE_WRITE_FAILURES = Counter("pipeline_article_write_failures_total", "Articles lost to write failures")
SUMMARIES = Counter(
    "pipeline_summaries_total",
    "Summaries produced by kind",
    ["kind"],
)
IMAGES_ENRICHED = Counter(
    "pipeline_images_total",
    "Image enrichment attempts by outcome",
    ["outcome"],
)
PIPELINE_RUNS = Counter(
    "pipeline_runs_total",
    "Orchestrator runs by terminal status",
    ["status"],
)
