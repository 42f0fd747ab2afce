"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without triggering
alembic.context at import time.
"""

from __future__ import annotations

import os
import shlex
from urllib.parse import quote_plus, urlparse, urlunparse

_DRIVER_PREFIX = "postgresql+psycopg2://"


def parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse a libpq key=value DSN; single-quoted values may hold spaces."""
    tokens: dict[str, str] = {}
    for part in shlex.split(dsn):
        key, sep, value = part.partition("=")
        if sep:
            tokens[key] = value
    return tokens


def libpq_dsn_to_url(dsn: str, password: str = "") -> str:
    """Convert a libpq DSN to a SQLAlchemy URL.

    host=/cloudsql/... (unix socket) becomes ?host=...; anything else
    becomes HOST:PORT.
    """
    tokens = parse_libpq_dsn(dsn)
    user = quote_plus(tokens.get("user", ""))
    secret = quote_plus(tokens.get("password") or password)
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")
    port = tokens.get("port", "5432")

    if host.startswith("/"):
        return f"{_DRIVER_PREFIX}{user}:{secret}@/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_PREFIX}{user}:{secret}@{host}:{port}/{dbname}"


def _with_password(url: str, password: str) -> str:
    parsed = urlparse(url)
    if parsed.password or not password:
        return url
    netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def get_database_url() -> str:
    """SQLAlchemy URL built from DATABASE_URL (URL or libpq DSN).

    DB_PASSWORD fills in a missing password, matching kosly.infra.db.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    password = os.environ.get("DB_PASSWORD", "")

    if "://" not in url:
        return libpq_dsn_to_url(url, password)

    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            url = _DRIVER_PREFIX + url[len(scheme):]
            break
    return _with_password(url, password)
