"""
Subscribers Module
==================

Provides:
- SubscriptionStore: JSON-file backed subscriber records
- Public API for newsletter signups and unsubscribes
- Subscriber stats
- Export and erasure endpoints (admin API key required)
"""

from flask import Blueprint

newsletter_bp = Blueprint(
    'newsletter',
    __name__,
    url_prefix='/api/newsletter'
)

from .store import SubscriptionStore, extract_email_provider  # noqa: E402
from . import routes  # noqa: E402

__all__ = ['newsletter_bp', 'SubscriptionStore', 'extract_email_provider']
