"""
Newsletter Routes
=================

Provides:
- POST /subscribe -- add or re-subscribe an email
- POST /unsubscribe -- mark a subscriber as unsubscribed (optional reason)
- GET /stats -- aggregate subscriber statistics
- GET /analytics -- signup trends and breakdowns (admin API key required)
- GET /export -- export every record (admin API key required)
- POST /export -- export a single record by email (admin API key required)
- DELETE /subscription -- erase a subscriber (admin API key required)

Exported helpers:
- get_store()
- validate_email(email)
"""

import hmac
import logging
import re
from datetime import datetime, timezone
from functools import wraps

from flask import current_app, jsonify, request

from . import newsletter_bp
from .analytics import build_analytics
from .store import STATUS_UNSUBSCRIBED, SubscriptionStore, utc_timestamp
from ...core.config import Config
from ...core.logging_service import LoggingService
from ...core.storage import StorageError

# Email validation regex: rejects consecutive dots and leading/trailing dots
EMAIL_REGEX = re.compile(r'^[a-zA-Z0-9_%+-]+(\.[a-zA-Z0-9_%+-]+)*@[a-zA-Z0-9-]+(\.[a-zA-Z0-9-]+)*\.[a-zA-Z]{2,}$')

# Setup logging
logger = logging.getLogger(__name__)


def _db_log(level, message, details=None):
    """Log to the persistent log table as well as stdout"""
    LoggingService.log(level, 'newsletter', message, details)


def get_store():
    """Return the SubscriptionStore for the current app.

    Uses the store built by the Newsletter extension, or builds one from
    app.config when the blueprint was registered on its own.
    """
    ext = current_app.extensions.get('newsletter')
    if ext is not None and ext.store is not None:
        return ext.store

    store = current_app.extensions.get('newsletter_store')
    if store is None:
        store = SubscriptionStore(
            current_app.config.get('SUBSCRIPTIONS_FILE', Config.SUBSCRIPTIONS_FILE),
            current_app.config.get('SUBSCRIPTIONS_BACKUP_FILE', Config.SUBSCRIPTIONS_BACKUP_FILE),
            fail_open=current_app.config.get('SUBSCRIPTIONS_FAIL_OPEN', Config.SUBSCRIPTIONS_FAIL_OPEN),
        )
        current_app.extensions['newsletter_store'] = store
    return store


def _get_brand_name():
    return current_app.config.get('EMAIL_BRAND_NAME', Config.EMAIL_BRAND_NAME)


def validate_email(email):
    """Validate email format"""
    if not email or not isinstance(email, str) or len(email) > 255:
        return False
    return EMAIL_REGEX.match(email.strip()) is not None


def get_client_ip():
    """Get client IP address from request"""
    if request.headers.get('X-Forwarded-For'):
        return request.headers.get('X-Forwarded-For').split(',')[0].strip()
    elif request.headers.get('X-Real-IP'):
        return request.headers.get('X-Real-IP')
    else:
        return request.remote_addr


def admin_required(f):
    """Decorator to require `Authorization: Bearer <ADMIN_API_KEY>`"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('ADMIN_API_KEY')
        auth_header = request.headers.get('Authorization', '')

        if not expected or not hmac.compare_digest(auth_header.encode(), f"Bearer {expected}".encode()):
            LoggingService.log_security_event(
                'Rejected newsletter admin request',
                {'endpoint': request.path, 'method': request.method, 'ip': get_client_ip()}
            )
            return jsonify({'error': 'Unauthorized'}), 401

        return f(*args, **kwargs)
    return decorated_function


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ===================
# PUBLIC API ROUTES
# ===================

@newsletter_bp.route('/subscribe', methods=['POST'])
def subscribe():
    """Handle new subscription requests"""
    data = _json_body()
    email = data.get('email')

    if not email:
        return jsonify({'error': 'Email address is required'}), 400

    email = email.strip() if isinstance(email, str) else email
    if not validate_email(email):
        return jsonify({'error': 'Please enter a valid email address'}), 400

    ip_address = get_client_ip()
    store = get_store()

    try:
        subscription, created = store.upsert_subscription(
            email,
            source=data.get('source') or None,
            ip_address=ip_address,
            user_agent=request.headers.get('User-Agent', '')[:500] or None,
            referer=request.headers.get('Referer') or None,
            signup_source=data.get('signupSource') or None,
        )
    except (OSError, StorageError) as e:
        logger.error(f"Storage error in subscribe: {e}")
        LoggingService.log_error_with_traceback('newsletter', e, {'operation': 'subscribe'})
        return jsonify({'error': 'Failed to subscribe. Please try again.'}), 500

    if not created:
        logger.info(f"Re-subscribed: {email}")
        _db_log('info', f'Re-subscribed: {email}', {'ip': ip_address})
        return jsonify({
            'success': True,
            'message': 'Welcome back! Your subscription has been reactivated.',
            'data': subscription,
        }), 200

    logger.info(f"New subscription added: {email}")
    _db_log('info', f'New subscriber: {email}', {'ip': ip_address})
    return jsonify({
        'success': True,
        'message': f'Successfully subscribed! Welcome to {_get_brand_name()}.',
        'data': subscription,
    }), 201


@newsletter_bp.route('/unsubscribe', methods=['POST'])
def unsubscribe():
    """Handle unsubscribe requests"""
    data = _json_body()
    email = data.get('email')

    if not email:
        return jsonify({'error': 'Email address is required'}), 400

    email = email.strip() if isinstance(email, str) else email
    if not validate_email(email):
        return jsonify({'error': 'Please enter a valid email address'}), 400

    reason = data.get('reason')
    try:
        updated = get_store().update_subscription_status(
            email,
            STATUS_UNSUBSCRIBED,
            {
                'unsubscribeReason': reason if isinstance(reason, str) and reason else None,
                'unsubscribeDate': utc_timestamp(),
            }
        )
    except (OSError, StorageError) as e:
        logger.error(f"Storage error in unsubscribe: {e}")
        LoggingService.log_error_with_traceback('newsletter', e, {'operation': 'unsubscribe'})
        return jsonify({'error': 'An unexpected error occurred. Please try again.'}), 500

    if not updated:
        return jsonify({'error': 'Subscription not found'}), 404

    logger.info(f"Unsubscribed: {email}")
    _db_log('info', f'Unsubscribed: {email}', {'reason': reason})
    return jsonify({
        'success': True,
        'message': 'Successfully unsubscribed from newsletter.'
    }), 200


@newsletter_bp.route('/stats', methods=['GET'])
def get_subscriber_stats():
    """Get subscriber statistics"""
    try:
        stats = get_store().get_stats()
    except (OSError, StorageError) as e:
        logger.error(f"Storage error in get_subscriber_stats: {e}")
        LoggingService.log_error_with_traceback('newsletter', e, {'operation': 'stats'})
        return jsonify({'error': 'Failed to retrieve statistics'}), 500

    return jsonify({'success': True, 'data': stats}), 200


# ===================
# ADMIN ROUTES
# ===================

@newsletter_bp.route('/analytics', methods=['GET'])
@admin_required
def get_subscriber_analytics():
    """Signup trends, sources, referrers and device breakdown"""
    try:
        subscriptions = get_store().get_all_subscriptions()
    except (OSError, StorageError) as e:
        logger.error(f"Storage error in get_subscriber_analytics: {e}")
        LoggingService.log_error_with_traceback('newsletter', e, {'operation': 'analytics'})
        return jsonify({'error': 'Failed to retrieve analytics'}), 500

    return jsonify({'success': True, 'data': build_analytics(subscriptions)}), 200


@newsletter_bp.route('/export', methods=['GET'])
@admin_required
def export_subscribers():
    """Export every subscriber record"""
    try:
        records = get_store().export_data()
    except (OSError, StorageError) as e:
        logger.error(f"Storage error in export_subscribers: {e}")
        LoggingService.log_error_with_traceback('newsletter', e, {'operation': 'export'})
        return jsonify({'error': 'Failed to export data'}), 500

    _db_log('info', 'Subscriber export', {'total_records': len(records)})
    return jsonify({
        'success': True,
        'data': records,
        'exportedAt': datetime.now(timezone.utc).isoformat(),
        'totalRecords': len(records),
    }), 200


@newsletter_bp.route('/export', methods=['POST'])
@admin_required
def export_subscriber():
    """Export the record for a single email (data access requests)"""
    email = _json_body().get('email')
    if not email:
        return jsonify({'error': 'Email is required'}), 400

    try:
        subscription = get_store().get_subscription(email)
    except (OSError, StorageError) as e:
        logger.error(f"Storage error in export_subscriber: {e}")
        LoggingService.log_error_with_traceback('newsletter', e, {'operation': 'export_single'})
        return jsonify({'error': 'Failed to export individual data'}), 500

    if not subscription:
        return jsonify({'error': 'Subscription not found'}), 404

    return jsonify({'success': True, 'data': subscription}), 200


@newsletter_bp.route('/subscription', methods=['DELETE'])
@admin_required
def erase_subscriber():
    """Permanently delete a subscriber record (erasure requests)"""
    email = _json_body().get('email')
    if not email:
        return jsonify({'error': 'Email is required'}), 400

    try:
        deleted = get_store().delete_subscription(email)
    except (OSError, StorageError) as e:
        logger.error(f"Storage error in erase_subscriber: {e}")
        LoggingService.log_error_with_traceback('newsletter', e, {'operation': 'erase'})
        return jsonify({'error': 'Failed to delete subscription'}), 500

    if not deleted:
        return jsonify({'error': 'Subscription not found'}), 404

    logger.info(f"Erased subscriber: {email}")
    _db_log('info', f'Erased subscriber: {email}')
    return jsonify({'success': True, 'message': 'Subscription deleted.'}), 200
