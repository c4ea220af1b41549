import time
from typing import Callable, Iterable, List, Optional, Tuple

from openai import OpenAI

from shared.app_logging.logger import get_logger
from shared.config.settings import OpenAISettings
from shared.schemas.messages import SummarizeResult
from shared.utils.retry import RetryError, retry_with_backoff

logger = get_logger("analyzer.summarize")

SYSTEM_PROMPT = """You are an expert energy policy analyst. Your task is to summarize news articles about U.S. energy policy for busy professionals in the energy sector.

Guidelines:
- Write exactly 2-3 concise sentences
- Focus on key policy changes, regulatory impacts, or market implications
- Highlight compliance requirements or deadlines when mentioned
- Note any implications for energy security or grid reliability
- Use professional, objective language
- Do NOT include phrases like "This article discusses" or "The summary is"
- Start directly with the key information

Your audience includes:
- Energy company executives
- Regulatory compliance officers
- Policy analysts
- Grid operators"""


def create_openai_client(settings: OpenAISettings) -> Optional[OpenAI]:
    """Build the client once at startup; without an API key every summary falls back."""
    if not settings.api_key:
        logger.warning("OPENAI_API_KEY not set; summaries will use the title fallback")
        return None
    return OpenAI(api_key=settings.api_key, timeout=settings.timeout, max_retries=0)


def fallback_summary(title: str, max_length: int = 200) -> str:
    """Deterministic summary built from the title alone."""
    title = (title or "").strip()
    if len(title) <= max_length:
        return title
    return title[: max_length - 3] + "..."


def is_likely_placeholder(title: Optional[str], summary: Optional[str]) -> bool:
    """
    True when a stored summary looks like the title fallback rather than a
    real summary: an exact copy of the title, a truncated title (with or
    without an ellipsis), or a short text made almost entirely of title words.
    """
    t = (title or "").strip().lower()
    s = (summary or "").strip().lower()
    if not s:
        return True
    if s == t:
        return True

    without_ellipsis = s.replace("...", "").strip()
    if without_ellipsis and t.startswith(without_ellipsis):
        return True
    if s.endswith("...") and t.startswith(s[:-3].rstrip()):
        return True

    if len(s) < 100 and len(s) <= len(t):
        summary_words = s.split()
        title_words = set(t.split())
        if summary_words:
            overlap = sum(1 for word in summary_words if word in title_words) / len(summary_words)
            if overlap > 0.8:
                return True

    return False


class Summarizer:
    """
    Two-to-three sentence summaries from the chat completions API.
    ``summarize`` never raises; callers decide what to do with a failure.
    """

    def __init__(
        self,
        client: Optional[OpenAI],
        model: str = "gpt-4o-mini",
        max_tokens: int = 200,
        temperature: float = 0.3,
        content_chars: int = 2000,
        fallback_chars: int = 200,
        max_retries: int = 0,
        retry_delay: float = 1.0,
    ):
        self._client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.content_chars = content_chars
        self.fallback_chars = fallback_chars
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    def build_prompt(self, title: str, excerpt: Optional[str] = None, source: Optional[str] = None) -> str:
        origin = f" (from {source})" if source else ""
        prompt = f"Summarize this energy news article{origin}:\n\nTitle: {title}"
        if excerpt:
            prompt += f"\n\nContent:\n{excerpt[: self.content_chars]}"
        prompt += "\n\nProvide a 2-3 sentence summary focusing on policy implications, compliance requirements, or market impacts."
        return prompt

    def _complete(self, prompt: str) -> Tuple[str, Optional[int]]:
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        content = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not content:
            raise ValueError("Empty response from OpenAI")
        usage = getattr(response, "usage", None)
        return content, getattr(usage, "total_tokens", None)

    def summarize(self, title: str, excerpt: Optional[str] = None, source: Optional[str] = None) -> SummarizeResult:
        if not self.is_configured:
            return SummarizeResult(success=False, error="OpenAI client not configured")

        try:
            summary, tokens = retry_with_backoff(
                self._complete,
                self.build_prompt(title, excerpt, source),
                max_retries=self.max_retries,
                base_delay=self.retry_delay,
                backoff_factor=2.0,
            )
        except RetryError as e:
            cause = e.__cause__ or e
            logger.warning(f"Summarization failed for {title[:60]!r}: {cause}")
            return SummarizeResult(success=False, error=str(cause))

        logger.debug(f"Summarized {title[:60]!r} ({tokens} tokens)")
        return SummarizeResult(success=True, summary=summary, tokens_used=tokens)

    def fallback(self, title: str) -> str:
        return fallback_summary(title, self.fallback_chars)

    def summarize_many(
        self,
        items: Iterable[Tuple[str, Optional[str], Optional[str]]],
        delay: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> List[SummarizeResult]:
        """Summarize (title, excerpt, source) triples one at a time, pausing between calls."""
        results = []
        for index, (title, excerpt, source) in enumerate(items):
            if index and delay:
                sleep(delay)
            results.append(self.summarize(title, excerpt, source))
        return results
