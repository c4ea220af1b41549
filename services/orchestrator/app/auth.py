import hmac
from typing import List, Optional

from fastapi import Header, HTTPException, Request, status

from shared.app_logging.logger import get_logger

logger = get_logger("orchestrator.auth")


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return None


def presented_secrets(x_cron_secret: Optional[str], authorization: Optional[str]) -> List[str]:
    return [secret for secret in (x_cron_secret, _bearer_token(authorization)) if secret]


def secret_matches(expected: Optional[str], presented: Optional[str]) -> bool:
    """An unset secret matches nothing."""
    if not expected or not presented:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))


def verify_trigger_secret(
    request: Request,
    x_cron_secret: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
) -> None:
    """FastAPI dependency: accepts ``x-cron-secret`` or ``Authorization: Bearer``; either matching is enough."""
    expected = request.app.state.components.settings.pipeline.cron_secret
    if not any(secret_matches(expected, secret) for secret in presented_secrets(x_cron_secret, authorization)):
        logger.warning(f"❌ Rejected unauthenticated request to {request.url.path}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
