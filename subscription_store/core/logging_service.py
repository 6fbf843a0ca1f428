"""
Centralized logging service for the newsletter application.
Provides structured logging with database storage and easy integration.
"""

import json
import traceback
from datetime import datetime, timedelta
from flask import current_app, request, has_app_context, has_request_context
from .database import Database
from .config import Config


class LoggingService:
    """Centralized logging service for application-wide logging"""

    @staticmethod
    def _get_log_db():
        """Resolve the log database path from the app config, or the base Config"""
        if has_app_context():
            path = current_app.config.get('LOG_DB')
            if path:
                return path
        return Config.LOG_DB

    @staticmethod
    def _ensure_logs_table(conn):
        """Ensure the app_logs table exists"""
        cursor = conn.cursor()
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS {Config.LOGS_TABLE} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                level TEXT NOT NULL,
                source TEXT NOT NULL,
                message TEXT NOT NULL,
                details TEXT,
                ip_address TEXT,
                user_agent TEXT,
                request_path TEXT
            )
        """)
        cursor.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_logs_timestamp
            ON {Config.LOGS_TABLE}(timestamp DESC)
        """)
        cursor.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_logs_source
            ON {Config.LOGS_TABLE}(source)
        """)

    @staticmethod
    def _get_request_context():
        """Extract request context information"""
        if not has_request_context():
            return None, None, None

        ip_address = request.headers.get('X-Forwarded-For', request.remote_addr)
        if ip_address and ',' in ip_address:
            ip_address = ip_address.split(',')[0].strip()

        user_agent = request.headers.get('User-Agent', '')
        return ip_address, user_agent, request.path

    @staticmethod
    def log(level, source, message, details=None):
        """
        Log a message to the database

        Args:
            level (str): Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            source (str): Source component (newsletter, cli, security, etc.)
            message (str): Main log message
            details (str/dict): Additional details (will be JSON-encoded if dict)
        """
        if isinstance(details, dict):
            details = json.dumps(details, indent=2, default=str)

        timestamp = datetime.now().isoformat()

        try:
            ip_address, user_agent, request_path = LoggingService._get_request_context()

            with Database.connect(LoggingService._get_log_db()) as conn:
                LoggingService._ensure_logs_table(conn)
                conn.execute(f"""
                    INSERT INTO {Config.LOGS_TABLE}
                    (timestamp, level, source, message, details, ip_address, user_agent, request_path)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    timestamp, level.upper(), source, message, details,
                    ip_address, user_agent, request_path
                ))
                conn.commit()

        except Exception as e:
            # Fallback to console logging if database fails
            print(f"[{timestamp}] [{level.upper()}] [{source}] {message}")
            if details:
                print(f"Details: {details}")
            print(f"Logging service error: {e}")

    @staticmethod
    def info(source, message, details=None):
        LoggingService.log('INFO', source, message, details)

    @staticmethod
    def warning(source, message, details=None):
        LoggingService.log('WARNING', source, message, details)

    @staticmethod
    def error(source, message, details=None):
        LoggingService.log('ERROR', source, message, details)

    @staticmethod
    def log_error_with_traceback(source, error, details=None):
        """Log error with full traceback"""
        error_details = {
            'error_type': type(error).__name__,
            'error_message': str(error),
            'traceback': traceback.format_exc()
        }
        if details:
            error_details['additional_details'] = details

        LoggingService.error(source, f"Exception occurred: {type(error).__name__}", error_details)

    @staticmethod
    def log_security_event(message, details=None):
        """Log security-related events (rejected admin calls etc.)"""
        LoggingService.warning('security', message, details)

    @staticmethod
    def get_recent_logs(limit=50, source=None):
        """Return the newest log entries as dicts, optionally filtered by source"""
        query = f"""
            SELECT timestamp, level, source, message, details, ip_address, request_path
            FROM {Config.LOGS_TABLE}
        """
        params = []
        if source:
            query += " WHERE source = ?"
            params.append(source)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with Database.connect(LoggingService._get_log_db()) as conn:
            LoggingService._ensure_logs_table(conn)
            rows = conn.execute(query, params).fetchall()

        return [
            {
                'timestamp': row[0],
                'level': row[1],
                'source': row[2],
                'message': row[3],
                'details': row[4],
                'ip_address': row[5],
                'request_path': row[6],
            }
            for row in rows
        ]

    @staticmethod
    def cleanup_old_logs(days_to_keep=30):
        """Clean up old log entries, returns the number of rows removed"""
        cutoff_iso = (datetime.now() - timedelta(days=days_to_keep)).isoformat()

        with Database.connect(LoggingService._get_log_db()) as conn:
            LoggingService._ensure_logs_table(conn)
            cursor = conn.execute(
                f"DELETE FROM {Config.LOGS_TABLE} WHERE timestamp < ?",
                (cutoff_iso,)
            )
            deleted_count = cursor.rowcount
            conn.commit()

        LoggingService.info('system', f"Cleaned up {deleted_count} old log entries")
        return deleted_count

