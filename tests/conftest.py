"""Shared fixtures: a real SQLite store in a temp directory."""

import asyncio

import pytest

from beacon_analytics.core.storage import SQLiteDatabase


@pytest.fixture
def db(tmp_path):
    database = SQLiteDatabase(tmp_path / "analytics.db")
    asyncio.run(database.init_schema())
    return database
