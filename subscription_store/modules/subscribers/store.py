"""
Subscription Store
==================

JSON-file backed collection of newsletter subscribers, one record per exact
email string. Every write is a read-modify-write of the whole file, with the
previous file kept as a backup.
"""

import logging
import os
import secrets
import string
import threading
import time
from datetime import datetime, timezone

from ...core.storage import CorruptStoreError, read_collection, write_collection

logger = logging.getLogger(__name__)

STATUS_PENDING = 'pending'
STATUS_VERIFIED = 'verified'
STATUS_SUBSCRIBED = 'subscribed'
STATUS_UNSUBSCRIBED = 'unsubscribed'

VALID_STATUSES = (STATUS_PENDING, STATUS_VERIFIED, STATUS_SUBSCRIBED, STATUS_UNSUBSCRIBED)
ACTIVE_STATUSES = (STATUS_SUBSCRIBED, STATUS_VERIFIED)

DEFAULT_SOURCE = 'website'
DEFAULT_SIGNUP_SOURCE = 'Newsletter form'

EMAIL_PROVIDERS = {
    'gmail.com': 'Gmail',
    'yahoo.com': 'Yahoo',
    'hotmail.com': 'Hotmail',
    'outlook.com': 'Outlook',
    'icloud.com': 'iCloud',
    'aol.com': 'AOL',
    'protonmail.com': 'ProtonMail',
}

_ID_ALPHABET = string.digits + string.ascii_lowercase


def utc_timestamp():
    """Current time as ISO-8601 UTC with millisecond precision, e.g. 2024-05-01T09:30:00.123Z"""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def generate_subscription_id():
    suffix = ''.join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"email_{int(time.time() * 1000)}_{suffix}"


def extract_email_provider(email):
    """Map the email's domain to a provider label.

    Known domains get a friendly name, others pass through lower-cased, and
    an address without a domain part is "unknown".
    """
    parts = email.split('@')
    domain = parts[1].lower() if len(parts) > 1 else ''
    if not domain:
        return 'unknown'
    return EMAIL_PROVIDERS.get(domain, domain)


def _without_none(values):
    return {key: value for key, value in values.items() if value is not None}


class SubscriptionStore:
    """Subscriber records persisted as one JSON array on disk.

    Each instance serializes its own read-modify-write cycles with a lock.
    Nothing coordinates separate instances or processes pointed at the same
    file: the last writer wins.
    """

    def __init__(self, file_path, backup_path=None, fail_open=False):
        self.file_path = file_path
        if backup_path is None:
            stem, ext = os.path.splitext(file_path)
            backup_path = f"{stem}-backup{ext or '.json'}"
        self.backup_path = backup_path
        self.fail_open = fail_open
        self._lock = threading.Lock()

    # ===== Persistence =====

    def _read_subscriptions(self):
        try:
            return read_collection(self.file_path)
        except CorruptStoreError as e:
            if not self.fail_open:
                raise
            logger.warning(f"Treating corrupt subscriptions file as empty: {e}")
            return []

    def _write_subscriptions(self, subscriptions):
        write_collection(self.file_path, subscriptions, self.backup_path)

    # ===== Writes =====

    def add_subscription(self, email, source=None, ip_address=None, user_agent=None,
                         referer=None, signup_source=None, consent_given=True):
        """Insert a subscriber, or re-subscribe the existing record for `email`.

        Re-subscribing keeps the record's id and source, resets the status to
        subscribed, refreshes subscribedAt and merges the new request metadata
        over the stored metadata. Returns the stored record.
        """
        subscription, _ = self.upsert_subscription(
            email, source=source, ip_address=ip_address, user_agent=user_agent,
            referer=referer, signup_source=signup_source, consent_given=consent_given)
        return subscription

    def upsert_subscription(self, email, source=None, ip_address=None, user_agent=None,
                            referer=None, signup_source=None, consent_given=True):
        """Same as add_subscription, returning `(record, created)`.

        `created` is decided under the write lock, so it is False for every
        caller but the one that inserted the record.
        """
        now = utc_timestamp()
        metadata = _without_none({
            'ipAddress': ip_address,
            'userAgent': user_agent,
            'referer': referer,
        })
        metadata.update({
            'consentGiven': bool(consent_given),
            'consentTimestamp': now,
            'emailProvider': extract_email_provider(email),
            'signupSource': signup_source or DEFAULT_SIGNUP_SOURCE,
        })

        with self._lock:
            subscriptions = self._read_subscriptions()
            existing = next((sub for sub in subscriptions if sub.get('email') == email), None)

            created = existing is None
            if not created:
                existing['status'] = STATUS_SUBSCRIBED
                existing['subscribedAt'] = now
                existing['metadata'] = {**(existing.get('metadata') or {}), **metadata}
                subscription = existing
            else:
                subscription = {
                    'id': generate_subscription_id(),
                    'email': email,
                    'status': STATUS_SUBSCRIBED,
                    'source': source or DEFAULT_SOURCE,
                    'subscribedAt': now,
                    'metadata': metadata,
                }
                subscriptions.append(subscription)

            self._write_subscriptions(subscriptions)
            return subscription, created

    def update_subscription_status(self, email, status, metadata=None):
        """Set the status of the record for `email`, returns it or None if absent.

        Moving to verified stamps verifiedAt. `metadata` is shallow-merged into
        the stored metadata, skipping keys whose value is None.
        """
        if status not in VALID_STATUSES:
            raise ValueError(f"Unknown subscription status: {status!r}")

        with self._lock:
            subscriptions = self._read_subscriptions()
            subscription = next((sub for sub in subscriptions if sub.get('email') == email), None)
            if subscription is None:
                return None

            subscription['status'] = status
            if status == STATUS_VERIFIED:
                subscription['verifiedAt'] = utc_timestamp()
            if metadata:
                subscription['metadata'] = {
                    **(subscription.get('metadata') or {}),
                    **_without_none(metadata),
                }

            self._write_subscriptions(subscriptions)
            return subscription

    def delete_subscription(self, email):
        """Remove the record for `email`. Returns True if one was removed."""
        with self._lock:
            subscriptions = self._read_subscriptions()
            remaining = [sub for sub in subscriptions if sub.get('email') != email]
            if len(remaining) == len(subscriptions):
                return False

            self._write_subscriptions(remaining)
            return True

    # ===== Reads =====

    def get_subscription(self, email):
        """Exact, case-sensitive lookup. Returns None when not found."""
        for sub in self._read_subscriptions():
            if sub.get('email') == email:
                return sub
        return None

    def get_all_subscriptions(self):
        return self._read_subscriptions()

    def get_active_subscriptions(self):
        return [sub for sub in self._read_subscriptions() if sub.get('status') in ACTIVE_STATUSES]

    def export_data(self):
        """Full dump of every record (backups, GDPR data requests)."""
        return self.get_all_subscriptions()

    def get_stats(self):
        """Aggregate counts computed from the current collection."""
        subscriptions = self._read_subscriptions()

        stats = {
            'totalSubscriptions': len(subscriptions),
            'activeSubscriptions': 0,
            'unsubscribed': 0,
            'pending': 0,
            'verified': 0,
            'subscriptionsByMonth': {},
            'topEmailProviders': {},
            'sources': {},
        }

        for sub in subscriptions:
            status = sub.get('status')
            if status in ACTIVE_STATUSES:
                stats['activeSubscriptions'] += 1
            if status == STATUS_UNSUBSCRIBED:
                stats['unsubscribed'] += 1
            elif status == STATUS_PENDING:
                stats['pending'] += 1
            elif status == STATUS_VERIFIED:
                stats['verified'] += 1

            month = (sub.get('subscribedAt') or '')[:7]  # YYYY-MM
            stats['subscriptionsByMonth'][month] = stats['subscriptionsByMonth'].get(month, 0) + 1

            provider = (sub.get('metadata') or {}).get('emailProvider') or 'unknown'
            stats['topEmailProviders'][provider] = stats['topEmailProviders'].get(provider, 0) + 1

            source = sub.get('source') or 'unknown'
            stats['sources'][source] = stats['sources'].get(source, 0) + 1

        return stats
