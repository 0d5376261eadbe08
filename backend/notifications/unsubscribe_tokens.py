"""
Unsubscribe links for digest recipients.

Mailing-list members get a one-click unsubscribe URL carrying the token
stored on their subscribers row; the unsubscribe route looks that token
up. Everyone else (registered accounts, and mailing-list rows that have
no stored token) is sent to their account settings page.
"""

import os

from models import Recipient
from models.types import MAILING_LIST

DEFAULT_FRONTEND_BASE_URL = "http://localhost:3000"


def _frontend_base_url() -> str:
    return os.getenv("FRONTEND_BASE_URL", DEFAULT_FRONTEND_BASE_URL).rstrip("/")


def _backend_base_url() -> str:
    # Unsubscribe is served by the API; fall back to the frontend host
    return (os.getenv("BACKEND_BASE_URL") or _frontend_base_url()).rstrip("/")


def account_settings_url() -> str:
    return f"{_frontend_base_url()}/account/settings"


def build_unsubscribe_url(recipient: Recipient) -> str:
    """
    Build the recipient-specific unsubscribe link embedded in each digest.

    Args:
        recipient: Resolved recipient

    Returns:
        Token URL for mailing-list members with a stored token,
        account settings URL otherwise
    """
    if recipient.source == MAILING_LIST and recipient.unsubscribe_token:
        return f"{_backend_base_url()}/api/newsletter/unsubscribe/{recipient.unsubscribe_token}"

    return account_settings_url()
