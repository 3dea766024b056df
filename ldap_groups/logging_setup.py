"""
Logging setup and configuration for LDAP Group Manager.

This module provides centralized logging configuration including file rotation,
retention policies, scrubbing of credentials from log output and an audit
trail of directory writes.
"""

import os
import re
import glob
import logging
import logging.handlers
from typing import Dict, Any, List
from datetime import datetime, timedelta

LOG_FILE_NAME = 'ldap_groups.log'


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'userPassword', 'unicodePwd', 'credential',
        'credentials', 'secret', 'token', 'pwd'
    ]

    def __init__(self, name: str = ''):
        super().__init__(name)
        keywords = '|'.join(re.escape(keyword) for keyword in self.SENSITIVE_KEYWORDS)
        # key=value and key: value
        self._assignment = re.compile(rf'(\b(?:{keywords})\s*[=:]\s*)(?!\s*["\'])[^\s,}}\]]+',
                                      re.IGNORECASE)
        # "key": "value" and 'key': 'value'
        self._quoted = re.compile(rf'(["\'](?:{keywords})["\']\s*:\s*["\'])[^"\']*(["\'])',
                                  re.IGNORECASE)

    def filter(self, record):
        """Filter out sensitive data from log records."""
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        msg = str(record.msg)
        msg = self._quoted.sub(r'\1****\2', msg)
        msg = self._assignment.sub(r'\1****', msg)
        record.msg = msg
        return True


class LoggingManager:
    """
    Manages logging configuration for the LDAP Group Manager.

    Provides file-based logging with rotation, retention policies, and
    optional console output.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: Logging configuration dictionary
        """
        if self.configured:
            return

        logging_config = config if config else {}

        log_level = logging_config.get('level', 'INFO').upper()
        self.log_dir = logging_config.get('log_dir', 'logs')
        rotation = logging_config.get('rotation', 'daily')
        self.retention_days = logging_config.get('retention_days', 7)
        console_enabled = logging_config.get('console_output', True)
        console_level = logging_config.get('console_level', 'WARNING').upper()

        self._ensure_log_directory()

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level, logging.INFO))
        root_logger.handlers.clear()

        detailed_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%H:%M:%S'
        )

        sensitive_filter = SensitiveDataFilter()

        file_handler = self._create_file_handler(rotation)
        file_handler.setLevel(getattr(logging, log_level, logging.INFO))
        file_handler.setFormatter(detailed_formatter)
        file_handler.addFilter(sensitive_filter)
        root_logger.addHandler(file_handler)

        if console_enabled:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(getattr(logging, console_level, logging.WARNING))
            console_handler.setFormatter(console_formatter)
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        self._cleanup_old_logs()
        self.configured = True

        logger = logging.getLogger(__name__)
        logger.info(f"Logging configured: level={log_level}, dir={self.log_dir}, "
                    f"retention={self.retention_days} days, console={console_enabled}")

    def reset(self) -> None:
        """Remove the installed handlers so logging can be configured again."""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        self.configured = False

    def _ensure_log_directory(self) -> None:
        """Ensure the log directory exists."""
        if self.log_dir and not os.path.exists(self.log_dir):
            try:
                os.makedirs(self.log_dir, exist_ok=True)
            except OSError as e:
                logging.getLogger(__name__).warning(
                    f"Could not create log directory {self.log_dir}: {e}; using current directory")
                self.log_dir = '.'

    def _create_file_handler(self, rotation: str) -> logging.Handler:
        """
        Create appropriate file handler based on rotation setting.

        Args:
            rotation: Rotation setting ('daily', 'midnight', or 'none')
        """
        log_file = os.path.join(self.log_dir, LOG_FILE_NAME)

        if rotation.lower() in ['daily', 'midnight']:
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=log_file,
                when='midnight',
                interval=1,
                backupCount=self.retention_days,
                encoding='utf-8'
            )
            handler.suffix = '%Y-%m-%d'
        else:
            handler = logging.FileHandler(log_file, encoding='utf-8')

        return handler

    def _cleanup_old_logs(self) -> None:
        """Remove rotated log files older than the retention period."""
        if not self.log_dir or self.retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=self.retention_days)
        for log_file in self.get_log_files():
            if log_file.endswith(LOG_FILE_NAME):
                continue
            try:
                if datetime.fromtimestamp(os.path.getmtime(log_file)) < cutoff_date:
                    os.remove(log_file)
            except OSError as e:
                logging.getLogger(__name__).warning(f"Could not remove old log file {log_file}: {e}")

    def get_log_files(self) -> List[str]:
        """Return the current and rotated log files, sorted."""
        if not self.log_dir:
            return []
        return sorted(glob.glob(os.path.join(self.log_dir, LOG_FILE_NAME + '*')))


# Global logging manager instance
_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)


class AuditLogger:
    """Audit trail for writes made to the directory."""

    def __init__(self):
        self.logger = logging.getLogger('ldap_groups.audit')

    def log_group_operation(self, operation: str, target: str, success: bool):
        """Log a group create, delete or rename."""
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"Group {operation} {status}: {target}")

    def log_membership_change(self, operation: str, group_dn: str, count: int, success: bool):
        """Log one membership modify request."""
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"Membership change {status}: {count} member(s) {operation} {group_dn}")


# Global audit logger instance
audit_logger = AuditLogger()
