"""
Subscriber Analytics
====================

Read-only aggregation over the full subscriber list: recent signup windows,
growth, sources, referrers, providers, device types and daily trends.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse

from .store import ACTIVE_STATUSES

TOP_REFERRERS_LIMIT = 10
DAILY_TREND_DAYS = 30

# Case-sensitive user agent markers, checked in order
MOBILE_MARKERS = ('Mobile', 'Android', 'iPhone')
TABLET_MARKERS = ('Tablet', 'iPad')


def _utcnow():
    return datetime.now(timezone.utc)


def parse_timestamp(value):
    """Parse a stored ISO-8601 timestamp into an aware datetime, or None."""
    if not value or not isinstance(value, str):
        return None
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(dt):
    return dt.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def detect_device_type(user_agent):
    if any(marker in user_agent for marker in MOBILE_MARKERS):
        return 'Mobile'
    if any(marker in user_agent for marker in TABLET_MARKERS):
        return 'Tablet'
    return 'Desktop'


def referrer_key(referer):
    """Host plus path of a referrer URL, or the raw value when it is not a URL."""
    parsed = urlparse(referer)
    if parsed.scheme and parsed.netloc:
        return (parsed.hostname or parsed.netloc) + (parsed.path or '/')
    return referer


def _count(counter, key):
    counter[key] = counter.get(key, 0) + 1


def build_analytics(subscriptions, now=None):
    """Compute the analytics report for `subscriptions` as of `now` (UTC)."""
    now = now or _utcnow()
    thirty_days_ago = now - timedelta(days=30)
    sixty_days_ago = now - timedelta(days=60)
    seven_days_ago = now - timedelta(days=7)
    one_day_ago = now - timedelta(days=1)

    total = len(subscriptions)
    active = 0
    last_30 = last_7 = last_24h = previous_30 = 0
    has_referrer = organic = 0

    sources = {}
    referrers = {}
    providers = {}
    devices = {}
    ip_prefixes = {}
    signup_dates = {}
    timestamps = []

    for sub in subscriptions:
        metadata = sub.get('metadata') or {}

        if sub.get('status') in ACTIVE_STATUSES:
            active += 1

        subscribed_at = parse_timestamp(sub.get('subscribedAt'))
        if subscribed_at is not None:
            timestamps.append(subscribed_at)
            _count(signup_dates, subscribed_at.astimezone(timezone.utc).date().isoformat())
            if subscribed_at >= thirty_days_ago:
                last_30 += 1
            elif subscribed_at >= sixty_days_ago:
                previous_30 += 1
            if subscribed_at >= seven_days_ago:
                last_7 += 1
            if subscribed_at >= one_day_ago:
                last_24h += 1

        _count(sources, metadata.get('signupSource') or sub.get('source') or 'unknown')
        _count(providers, metadata.get('emailProvider') or 'unknown')
        _count(devices, detect_device_type(metadata.get('userAgent') or ''))

        referer = metadata.get('referer')
        if referer:
            has_referrer += 1
            _count(referrers, referrer_key(referer))
        if not referer or 'utm_' not in referer:
            organic += 1

        ip_address = metadata.get('ipAddress')
        if ip_address and ip_address != 'unknown':
            _count(ip_prefixes, '.'.join(ip_address.split('.')[:2]))

    if previous_30 > 0:
        growth_rate = (last_30 - previous_30) / previous_30 * 100
    else:
        growth_rate = 100.0 if last_30 > 0 else 0.0

    top_referrers = dict(
        sorted(referrers.items(), key=lambda item: item[1], reverse=True)[:TOP_REFERRERS_LIMIT]
    )

    daily_signups = []
    for days_back in range(DAILY_TREND_DAYS - 1, -1, -1):
        day = (now - timedelta(days=days_back)).astimezone(timezone.utc).date().isoformat()
        daily_signups.append({'date': day, 'count': signup_dates.get(day, 0)})

    return {
        'overview': {
            'totalSubscriptions': total,
            'activeSubscriptions': active,
            'unsubscribed': total - active,
            'last30Days': last_30,
            'last7Days': last_7,
            'last24Hours': last_24h,
            'growthRate': round(growth_rate, 2),
        },
        'trends': {
            'dailySignups': daily_signups,
            'monthlyGrowthRate': growth_rate,
        },
        'sources': {
            'breakdown': sources,
            'topReferrers': top_referrers,
        },
        'demographics': {
            'emailProviders': providers,
            'deviceTypes': devices,
            'estimatedRegions': ip_prefixes,
        },
        'quality': {
            'hasReferrer': has_referrer,
            'organicSignups': organic,
        },
        'generatedAt': _iso(now),
        'dataFreshness': {
            'oldestRecord': _iso(min(timestamps)) if timestamps else None,
            'newestRecord': _iso(max(timestamps)) if timestamps else None,
        },
    }
