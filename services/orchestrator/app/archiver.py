from typing import Dict, Mapping

from shared.app_logging.logger import get_logger
from shared.database.store import ArticleStore

logger = get_logger("orchestrator.archiver")


class Archiver:
    """Keeps the N most recent articles of a segment active and archives the rest. Never un-archives."""

    def __init__(self, store: ArticleStore):
        self.store = store

    def archive_segment(self, content_type: str, keep: int) -> int:
        archived = self.store.archive_excess(content_type, keep)
        logger.info(f"Archived {archived} '{content_type}' article(s), keeping {keep} active")
        return archived

    def run(self, policy: Mapping[str, int]) -> Dict[str, int]:
        return {segment: self.archive_segment(segment, keep) for segment, keep in policy.items()}
