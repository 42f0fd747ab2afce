"""Tests for migrations/env_helpers.py DSN-to-URL conversion."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from migrations.env_helpers import get_database_url, libpq_dsn_to_url, parse_libpq_dsn


class TestParseLibpqDsn:
    def test_plain_tokens(self):
        assert parse_libpq_dsn("dbname=kosly user=admin host=localhost") == {
            "dbname": "kosly",
            "user": "admin",
            "host": "localhost",
        }

    def test_quoted_value_with_spaces(self):
        assert parse_libpq_dsn("user=u password='p@ss w0rd'")["password"] == "p@ss w0rd"


class TestLibpqDsnToUrl:
    def test_cloudsql_socket(self):
        dsn = "dbname=kosly user=kosly-sa password=s3cret host=/cloudsql/proj:asia-southeast2:inst"
        assert libpq_dsn_to_url(dsn) == (
            "postgresql+psycopg2://kosly-sa:s3cret@/kosly"
            "?host=%2Fcloudsql%2Fproj%3Aasia-southeast2%3Ainst"
        )

    def test_tcp_host(self):
        dsn = "dbname=kosly user=admin password=pw host=localhost port=5433"
        assert libpq_dsn_to_url(dsn) == "postgresql+psycopg2://admin:pw@localhost:5433/kosly"

    def test_default_port(self):
        assert libpq_dsn_to_url("dbname=db user=u password=p host=myhost") == (
            "postgresql+psycopg2://u:p@myhost:5432/db"
        )

    def test_special_chars_encoded(self):
        result = libpq_dsn_to_url("dbname=db user=u@domain password=p@ss=word host=h")
        assert "u%40domain" in result
        assert "p%40ss%3Dword" in result

    def test_password_argument_fills_gap(self):
        assert "from-env" in libpq_dsn_to_url("dbname=db user=u host=h", "from-env")

    def test_dsn_password_wins(self):
        result = libpq_dsn_to_url("dbname=db user=u password=from-dsn host=h", "from-env")
        assert "from-dsn" in result
        assert "from-env" not in result


class TestGetDatabaseUrl:
    def test_url_passthrough(self):
        with patch.dict(os.environ, {"DATABASE_URL": "postgresql+psycopg2://u:p@h/db"}, clear=True):
            assert get_database_url() == "postgresql+psycopg2://u:p@h/db"

    def test_dsn_converted_with_db_password(self):
        env = {"DATABASE_URL": "dbname=kosly user=sa host=/cloudsql/p:r:i", "DB_PASSWORD": "pw"}
        with patch.dict(os.environ, env, clear=True):
            result = get_database_url()
        assert result.startswith("postgresql+psycopg2://sa:pw@/kosly")

    def test_missing_raises(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError, match="DATABASE_URL is required"):
                get_database_url()

    @pytest.mark.parametrize("url", ["postgres://u:p@h/db", "postgresql://u:p@h/db"])
    def test_scheme_gets_driver(self, url):
        with patch.dict(os.environ, {"DATABASE_URL": url}, clear=True):
            assert get_database_url() == "postgresql+psycopg2://u:p@h/db"

    def test_url_db_password_fallback(self):
        env = {"DATABASE_URL": "postgresql://u@h:5432/db", "DB_PASSWORD": "secret"}
        with patch.dict(os.environ, env, clear=True):
            assert get_database_url() == "postgresql+psycopg2://u:secret@h:5432/db"
