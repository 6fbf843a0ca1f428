"""
Subscription Store - Newsletter subscribers for Flask sites
===========================================================

A small, file-backed subscriber store with:
- Upsert-by-email subscriber records persisted as one JSON file
- Backup of the previous file on every write
- Subscriber statistics and exports
- Flask blueprint and CLI commands around the store

Usage:
    from subscription_store import Newsletter

    newsletter = Newsletter(app)   # registers /api/newsletter/* and `flask newsletter`
    newsletter.store.add_subscription('reader@example.com')
"""

import os

from .core.config import Config
from .core.storage import CorruptStoreError, StorageError
from .modules.subscribers import SubscriptionStore, newsletter_bp
from .modules.subscribers.commands import newsletter_cli
from .modules.subscribers.routes import get_store

__version__ = '0.1.0'


class Newsletter:
    """Flask extension wiring a SubscriptionStore into an app.

    Config precedence: the `config` dict passed here, then app.config, then
    the environment-backed Config defaults.
    """

    def __init__(self, app=None, config=None):
        self._config = dict(config or {})
        self.store = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        for key in Config.APP_KEYS:
            if key in self._config:
                app.config[key] = self._config[key]
            else:
                app.config.setdefault(key, getattr(Config, key))

        # Derive file paths from a DATA_DIR override when they were not given explicitly
        data_dir = app.config['DATA_DIR']
        if data_dir != Config.DATA_DIR:
            for key, filename in (('SUBSCRIPTIONS_FILE', 'email-subscriptions.json'),
                                  ('SUBSCRIPTIONS_BACKUP_FILE', 'email-subscriptions-backup.json'),
                                  ('LOG_DB', 'app_logs.db')):
                if (key not in self._config and os.getenv(key) is None
                        and app.config[key] == getattr(Config, key)):
                    app.config[key] = os.path.join(data_dir, filename)

        os.makedirs(data_dir, exist_ok=True)

        self.store = SubscriptionStore(
            app.config['SUBSCRIPTIONS_FILE'],
            app.config['SUBSCRIPTIONS_BACKUP_FILE'],
            fail_open=bool(app.config['SUBSCRIPTIONS_FAIL_OPEN']),
        )

        app.register_blueprint(newsletter_bp)
        app.cli.add_command(newsletter_cli)
        app.extensions['newsletter'] = self


__all__ = [
    'Newsletter',
    'SubscriptionStore',
    'StorageError',
    'CorruptStoreError',
    'Config',
    'get_store',
    'newsletter_bp',
]
