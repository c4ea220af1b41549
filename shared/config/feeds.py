"""Feed registry loaded from YAML: an ordered list of feed descriptors."""

import re
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import yaml
from pydantic import ValidationError

from shared.app_logging.logger import get_logger
from shared.schemas.messages import FeedDescriptor

logger = get_logger("config.feeds")

DEFAULT_REGISTRY_PATH = Path(__file__).with_name("feeds.yaml")


class FeedRegistryError(ValueError):
    """Raised when the registry file cannot be read or holds an invalid entry."""


class FeedRegistry:
    def __init__(self, feeds: Iterable[FeedDescriptor]):
        self._feeds: List[FeedDescriptor] = list(feeds)
        names = [feed.name for feed in self._feeds]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise FeedRegistryError(f"Duplicate feed names in registry: {', '.join(duplicates)}")

    def __len__(self) -> int:
        return len(self._feeds)

    def __iter__(self):
        return iter(self._feeds)

    def all(self) -> List[FeedDescriptor]:
        return list(self._feeds)

    def enabled(self) -> List[FeedDescriptor]:
        return [feed for feed in self._feeds if feed.enabled]

    def enabled_by_type(self, content_type: str) -> List[FeedDescriptor]:
        return [feed for feed in self._feeds if feed.enabled and feed.content_type == content_type]

    def by_name(self, name: str) -> Optional[FeedDescriptor]:
        return next((feed for feed in self._feeds if feed.name == name), None)

    def by_group(self, group: str) -> List[FeedDescriptor]:
        """Enabled feeds of one group, compared case-insensitively."""
        group = group.lower()
        return [feed for feed in self._feeds if feed.enabled and (feed.group or "").lower() == group]

    def groups(self) -> List[str]:
        return sorted({feed.group for feed in self._feeds if feed.group})

    def select(
        self,
        content_type: Optional[str] = None,
        group: Optional[str] = None,
        sources: Sequence[str] = (),
        source_pattern: Optional[str] = None,
    ) -> List[FeedDescriptor]:
        """
        Enabled feeds narrowed by every filter given. ``sources`` are exact
        names; ``source_pattern`` is a case-insensitive regex searched in the name.
        """
        feeds = self.by_group(group) if group else self.enabled()
        if content_type:
            feeds = [feed for feed in feeds if feed.content_type == content_type]
        if sources:
            wanted = set(sources)
            feeds = [feed for feed in feeds if feed.name in wanted]
        if source_pattern:
            matcher = re.compile(source_pattern, re.IGNORECASE)
            feeds = [feed for feed in feeds if matcher.search(feed.name)]
        return feeds


def load_feed_registry(path: Optional[Union[str, Path]] = None) -> FeedRegistry:
    registry_path = Path(path) if path else DEFAULT_REGISTRY_PATH
    try:
        with open(registry_path, encoding="utf-8") as fh:
            entries = yaml.safe_load(fh) or []
    except (OSError, yaml.YAMLError) as e:
        raise FeedRegistryError(f"Cannot load feed registry {registry_path}: {e}") from e

    if not isinstance(entries, list):
        raise FeedRegistryError(f"Feed registry {registry_path} must be a list of feeds")

    feeds = []
    for index, entry in enumerate(entries):
        try:
            feeds.append(FeedDescriptor(**entry))
        except (TypeError, ValidationError) as e:
            raise FeedRegistryError(f"Invalid feed entry #{index} in {registry_path}: {e}") from e

    registry = FeedRegistry(feeds)
    logger.info(f"Loaded {len(registry)} feeds ({len(registry.enabled())} enabled) from {registry_path}")
    return registry
