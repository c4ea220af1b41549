"""
Cover-image extraction strategies.

Each ``Extractor`` yields raw candidate URLs from a parsed page; ``extract``
returns the first one that resolves to an http(s) URL and passes the
quality filter. ``DEFAULT_EXTRACTORS`` is the cascade order.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Iterable, Iterator, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

SKIP_PATTERNS = (
    "favicon", "logo", "icon", "sprite", "pixel",
    "tracking", "analytics", "badge", "button",
    "1x1", "spacer", "blank", "transparent",
    "avatar", "profile", "author", "gravatar",
    ".gif",
)
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".avif")
MEDIA_PATH_HINTS = ("/image", "/img", "/photo", "/media", "/uploads", "/wp-content")


def is_likely_content_image(url: str) -> bool:
    lower = url.lower()
    if any(pattern in lower for pattern in SKIP_PATTERNS):
        return False
    return any(ext in lower for ext in IMAGE_EXTENSIONS) or any(hint in lower for hint in MEDIA_PATH_HINTS)


def resolve_image_url(raw: Optional[str], base_url: str) -> Optional[str]:
    if not raw or not isinstance(raw, str):
        return None
    raw = raw.strip()
    if not raw or raw.lower().startswith("data:"):
        return None
    try:
        resolved = urljoin(base_url, raw)
    except ValueError:
        return None
    if urlparse(resolved).scheme not in ("http", "https"):
        return None
    return resolved


class Page:
    """A fetched document plus the URL that relative references resolve against."""

    def __init__(self, html: str, url: str):
        self.html = html
        self.url = url
        self.soup = BeautifulSoup(html, "html.parser")
        base = self.soup.find("base", href=True)
        self.base_url = urljoin(url, base["href"]) if base else url


class Extractor(ABC):
    name = "extractor"

    @abstractmethod
    def candidates(self, page: Page) -> Iterable[str]:
        ...

    def extract(self, page: Page) -> Optional[str]:
        for raw in self.candidates(page):
            url = resolve_image_url(raw, page.base_url)
            if url and is_likely_content_image(url):
                return url
        return None


def _meta_content(page: Page, attrs: Sequence[str], values: Sequence[str]) -> Iterator[str]:
    wanted = {value.lower() for value in values}
    for meta in page.soup.find_all("meta"):
        for attr in attrs:
            value = meta.get(attr)
            if value and value.strip().lower() in wanted and meta.get("content"):
                yield meta["content"]
                break


class OpenGraphExtractor(Extractor):
    name = "open_graph"

    def candidates(self, page):
        return _meta_content(page, ("property", "name"), ("og:image", "og:image:url", "og:image:secure_url"))


class TwitterCardExtractor(Extractor):
    name = "twitter_card"

    def candidates(self, page):
        return _meta_content(page, ("name", "property"), ("twitter:image", "twitter:image:src"))


class ImageSrcLinkExtractor(Extractor):
    name = "image_src_link"

    def candidates(self, page):
        for link in page.soup.find_all("link", href=True):
            rel = link.get("rel") or []
            if isinstance(rel, str):
                rel = rel.split()
            if "image_src" in [r.lower() for r in rel]:
                yield link["href"]


def schema_images(data: Any) -> Iterator[str]:
    """Image URLs from a schema.org JSON-LD value (object, list or @graph)."""
    if isinstance(data, list):
        for entry in data:
            yield from schema_images(entry)
        return
    if not isinstance(data, dict):
        return

    image = data.get("image")
    if isinstance(image, str):
        yield image
    elif isinstance(image, list) and image:
        first = image[0]
        if isinstance(first, str):
            yield first
        elif isinstance(first, dict) and isinstance(first.get("url"), str):
            yield first["url"]
    elif isinstance(image, dict) and isinstance(image.get("url"), str):
        yield image["url"]

    if isinstance(data.get("thumbnailUrl"), str):
        yield data["thumbnailUrl"]

    if "@graph" in data:
        yield from schema_images(data["@graph"])


class StructuredDataExtractor(Extractor):
    name = "structured_data"

    def candidates(self, page):
        for script in page.soup.find_all("script", type="application/ld+json"):
            raw = script.string or script.get_text()
            if not raw or not raw.strip():
                continue
            try:
                data = json.loads(raw)
            except ValueError:
                continue
            yield from schema_images(data)


def _img_src(img: Tag) -> Optional[str]:
    return img.get("src")


class FeaturedImageExtractor(Extractor):
    """Images carrying the featured-image classes common CMS themes emit."""

    name = "featured_image"
    class_patterns = ("wp-post-image", "featured", "hero", "post-image", "article-image")

    def candidates(self, page):
        images = page.soup.find_all("img", src=True)
        for pattern in self.class_patterns:
            for img in images:
                classes = " ".join(img.get("class") or []).lower()
                if pattern in classes:
                    yield _img_src(img)


class ContentContainerExtractor(Extractor):
    name = "content_container"

    def _containers(self, page: Page) -> Iterator[Tag]:
        yield from page.soup.find_all("article")
        yield from page.soup.find_all("main")
        for div in page.soup.find_all("div", class_=True):
            if any("content" in cls.lower() for cls in div.get("class") or []):
                yield div

    def candidates(self, page):
        for container in self._containers(page):
            for img in container.find_all("img", src=True):
                yield _img_src(img)


class FirstImageExtractor(Extractor):
    name = "first_image"

    def candidates(self, page):
        for img in page.soup.find_all("img", src=True):
            yield _img_src(img)


DEFAULT_EXTRACTORS: Tuple[Extractor, ...] = (
    OpenGraphExtractor(),
    TwitterCardExtractor(),
    ImageSrcLinkExtractor(),
    StructuredDataExtractor(),
    FeaturedImageExtractor(),
    ContentContainerExtractor(),
    FirstImageExtractor(),
)


def extract_image(page: Page, extractors: Sequence[Extractor] = DEFAULT_EXTRACTORS) -> Tuple[Optional[str], Optional[str]]:
    """Run the cascade; returns (image_url, extractor name) or (None, None)."""
    for extractor in extractors:
        url = extractor.extract(page)
        if url:
            return url, extractor.name
    return None, None
