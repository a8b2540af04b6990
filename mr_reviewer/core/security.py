"""Webhook token verification."""

import hmac

from mr_reviewer.config import settings
from mr_reviewer.core.exceptions import SignatureVerificationError
from mr_reviewer.core.logging import get_logger

logger = get_logger("security")


def verify_gitlab_token(token: str | None) -> bool:
    """Verify the X-Gitlab-Token header against the configured secret.

    Args:
        token: X-Gitlab-Token header value

    Returns:
        True if valid or no secret is configured, False otherwise
    """
    if not settings.gitlab_webhook_secret:
        logger.warning("No GitLab webhook secret configured, skipping verification")
        return True

    return hmac.compare_digest(settings.gitlab_webhook_secret.encode(), (token or "").encode())


def require_gitlab_token(token: str | None) -> None:
    """Verify the GitLab webhook token or raise exception.

    Raises:
        SignatureVerificationError: If the token is invalid
    """
    if not verify_gitlab_token(token):
        logger.warning("Invalid GitLab webhook token")
        raise SignatureVerificationError("GitLab webhook")
