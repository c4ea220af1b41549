from dataclasses import dataclass, field
from typing import List, Sequence

from shared.app_logging.logger import get_logger
from shared.database.store import ArticleStore, normalize_title
from shared.schemas.messages import NormalizedItem

logger = get_logger("ingestor.dedupe")


@dataclass
class DedupResult:
    survivors: List[NormalizedItem] = field(default_factory=list)
    batch_title_duplicates: int = 0
    stored_id_duplicates: int = 0
    stored_title_duplicates: int = 0

    @property
    def dropped(self) -> int:
        return self.batch_title_duplicates + self.stored_id_duplicates + self.stored_title_duplicates


class Deduplicator:
    """
    Three narrowing passes over one run's items:
    1. repeated titles within the batch (first occurrence wins),
    2. ids already in the store,
    3. titles already in the store, which catches a story re-published under another guid or link.
    """

    def __init__(self, store: ArticleStore):
        self.store = store

    @staticmethod
    def drop_batch_title_duplicates(items: Sequence[NormalizedItem]) -> List[NormalizedItem]:
        seen = set()
        unique = []
        for item in items:
            key = normalize_title(item.title)
            if key in seen:
                continue
            seen.add(key)
            unique.append(item)
        return unique

    def dedupe(self, items: Sequence[NormalizedItem]) -> DedupResult:
        result = DedupResult()

        stage1 = self.drop_batch_title_duplicates(items)
        result.batch_title_duplicates = len(items) - len(stage1)
        if not stage1:
            return result

        known_ids = self.store.existing_ids([item.id for item in stage1])
        stage2 = [item for item in stage1 if item.id not in known_ids]
        result.stored_id_duplicates = len(stage1) - len(stage2)

        if stage2:
            known_titles = self.store.existing_titles([item.title for item in stage2])
            result.survivors = [item for item in stage2 if normalize_title(item.title) not in known_titles]
        result.stored_title_duplicates = len(stage2) - len(result.survivors)

        logger.info(
            f"Dedup: {len(items)} in, {len(result.survivors)} new "
            f"(batch titles -{result.batch_title_duplicates}, "
            f"stored ids -{result.stored_id_duplicates}, "
            f"stored titles -{result.stored_title_duplicates})"
        )
        return result
