import os
from dotenv import load_dotenv

load_dotenv(override=True)


def _env_flag(name, default='false'):
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """
    Base configuration for the subscription store.
    Projects can override any of these via environment variables or app.config.
    """
    # Get DATA_DIR from environment, or use a default if not set
    DATA_DIR = os.getenv('DATA_DIR', os.path.join(os.getcwd(), 'data'))

    # Subscriber collection - one JSON array plus the previous version as backup
    SUBSCRIPTIONS_FILE = os.getenv(
        'SUBSCRIPTIONS_FILE', os.path.join(DATA_DIR, 'email-subscriptions.json'))
    SUBSCRIPTIONS_BACKUP_FILE = os.getenv(
        'SUBSCRIPTIONS_BACKUP_FILE', os.path.join(DATA_DIR, 'email-subscriptions-backup.json'))

    # Treat an unparsable subscriptions file as an empty collection instead of raising
    SUBSCRIPTIONS_FAIL_OPEN = _env_flag('SUBSCRIPTIONS_FAIL_OPEN')

    # Persistent log sink
    LOG_DB = os.getenv('LOG_DB', os.path.join(DATA_DIR, 'app_logs.db'))
    LOGS_TABLE = "app_logs"

    # Bearer token for the export/erase endpoints
    ADMIN_API_KEY = os.getenv('ADMIN_API_KEY')

    EMAIL_BRAND_NAME = os.getenv('EMAIL_BRAND_NAME', 'our newsletter')

    # Keys copied into app.config by the Newsletter extension when missing
    APP_KEYS = (
        'DATA_DIR',
        'SUBSCRIPTIONS_FILE',
        'SUBSCRIPTIONS_BACKUP_FILE',
        'SUBSCRIPTIONS_FAIL_OPEN',
        'LOG_DB',
        'ADMIN_API_KEY',
        'EMAIL_BRAND_NAME',
    )
