"""Logging setup for the signer, with secret redaction.

Library modules use ``logging.getLogger(__name__)``; entry points call
``configure_logging`` once with the secrets that must never reach a log line.
"""

import logging
import re

LEVELS = [logging.ERROR, logging.WARNING, logging.INFO, logging.DEBUG]

REDACTED = '[REDACTED]'

_traceback_formatter = logging.Formatter()


class SecretFilter(logging.Filter):
    """Replace registered secrets in log records with [REDACTED].

    Records are never dropped, only rewritten.
    """

    def __init__(self, secrets=()):
        super().__init__()
        self._pattern = None
        self._secrets = set()
        for secret in secrets:
            self.register_secret(secret)

    def register_secret(self, secret):
        if not secret:
            return
        self._secrets.add(secret)
        # Longest first so a secret containing another is redacted whole
        escaped = [re.escape(s) for s in sorted(self._secrets, key=len, reverse=True)]
        self._pattern = re.compile('|'.join(escaped))

    def filter(self, record):
        if self._pattern is None:
            return True
        record.msg = self._pattern.sub(REDACTED, str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._redact(v) for k, v in record.args.items()}
            else:
                record.args = tuple(self._redact(arg) for arg in record.args)
        if record.exc_info and not record.exc_text:
            record.exc_text = _traceback_formatter.formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = self._pattern.sub(REDACTED, record.exc_text)
        return True

    def _redact(self, value):
        if isinstance(value, str):
            return self._pattern.sub(REDACTED, value)
        return value


def level_for_verbosity(verbosity):
    """Map a -v count to a level: none is ERROR, -vvv and more is DEBUG"""
    return LEVELS[max(0, min(verbosity, len(LEVELS) - 1))]


def redact_loggers(secrets, names):
    """Attach a SecretFilter to the named loggers, replacing any earlier one.

    Logger filters run where the record is created, before any handler the
    hosting server installs.
    """
    secret_filter = SecretFilter(secrets)
    for name in names:
        logger = logging.getLogger(name)
        for existing in [f for f in logger.filters if isinstance(f, SecretFilter)]:
            logger.removeFilter(existing)
        logger.addFilter(secret_filter)
    return secret_filter


def configure_logging(verbosity=0, secrets=(), format_string=None):
    """Configure the root logger.

    Args:
        verbosity: Number of -v flags given
        secrets: Values to redact from every record
        format_string: Custom format string, defaults to a timestamped one
    """
    if format_string is None:
        format_string = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string))
    handler.addFilter(SecretFilter(secrets))

    root_logger = logging.getLogger()
    root_logger.setLevel(level_for_verbosity(verbosity))
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)
    root_logger.addHandler(handler)
    return handler
