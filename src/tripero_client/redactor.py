"""Logging filter that redacts credentials from log records.

The resolved configuration is scanned for the Redis password and for HTTP
header values whose *names* look like credentials (``Authorization``,
``X-Api-Key``...). Records passing the filter have every occurrence of
those values replaced with ``[REDACTED]``.
"""

from __future__ import annotations

import fnmatch
import logging
import re
from typing import Any, Iterable, Optional

REDACTED = "[REDACTED]"

SECRET_HEADER_PATTERNS = ("authorization", "*key*", "*token*", "*secret*", "cookie")


class SecretRedactingFilter(logging.Filter):
    """Scrub known secret values from the rendered message of each record.

    The record is rendered once (``msg % args``), matches are replaced, and
    the result is stored back as a pre-formatted message.
    """

    def __init__(self, secret_values: Iterable[str] | None = None) -> None:
        super().__init__()
        self._secrets: set[str] = set()
        self._pattern: Optional[re.Pattern[str]] = None
        for value in secret_values or ():
            self.add_secret(value)

    def add_secret(self, value: str) -> None:
        """Register an additional secret value at runtime."""
        # Single characters would mangle every message
        if not value or len(value) < 2 or value in self._secrets:
            return
        self._secrets.add(value)
        # Longest first so a secret containing another is replaced whole.
        alternatives = sorted(self._secrets, key=len, reverse=True)
        self._pattern = re.compile("|".join(map(re.escape, alternatives)))

    def filter(self, record: logging.LogRecord) -> bool:
        if self._pattern is None:
            return True
        message = record.getMessage()
        redacted = self._pattern.sub(REDACTED, message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def collect_secret_values(config: Any) -> list[str]:
    """Return the credential values held by a :class:`~tripero_client.config.ClientConfig`."""
    values: list[str] = []
    if config.redis.password:
        values.append(config.redis.password)
    if config.http is not None:
        for name, value in config.http.headers.items():
            if any(fnmatch.fnmatch(name.lower(), p) for p in SECRET_HEADER_PATTERNS):
                values.append(value)
    return values
