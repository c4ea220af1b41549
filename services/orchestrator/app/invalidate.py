from typing import Optional, Sequence

import httpx

from shared.app_logging.logger import get_logger

logger = get_logger("orchestrator.invalidate")


class CacheInvalidator:
    """Asks the presentation layer to re-render its cached pages."""

    def __init__(
        self,
        url: Optional[str],
        paths: Sequence[str],
        secret: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url
        self.paths = list(paths)
        self.secret = secret
        self.timeout = timeout
        self._transport = transport

    def invalidate(self) -> bool:
        """Returns False when no revalidation URL is configured."""
        if not self.url:
            logger.info("No REVALIDATE_URL configured; skipping cache invalidation")
            return False

        headers = {"x-cron-secret": self.secret} if self.secret else {}
        with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
            response = client.post(self.url, json={"paths": self.paths}, headers=headers)
            response.raise_for_status()
        logger.info(f"✅ Revalidated {', '.join(self.paths)}")
        return True
