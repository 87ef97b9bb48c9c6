"""Tests for famly.adapters.sqlite_store — async wrapper and error mapping."""

import sqlite3
from unittest.mock import MagicMock

import pytest

from famly.adapters.sqlite_store import SQLiteFamilyStore
from famly.core.errors import NotFoundError, PersistenceError


class TestSQLiteFamilyStore:
    @pytest.mark.asyncio
    async def test_delegates_to_db(self, family_db):
        store = SQLiteFamilyStore(family_db)
        family, founder = await store.create_family("Smith", "Mom", user_ref="100")
        assert await store.find_membership("100") == (family, founder)
        assert await store.list_members(family.id) == [founder]

    @pytest.mark.asyncio
    async def test_sqlite_error_becomes_persistence_error(self):
        db = MagicMock()
        db.list_members.side_effect = sqlite3.OperationalError("database is locked")
        db.list_members.__name__ = "list_members"
        store = SQLiteFamilyStore(db)
        with pytest.raises(PersistenceError, match="list_members"):
            await store.list_members("fam1")

    @pytest.mark.asyncio
    async def test_domain_errors_pass_through(self, family_db):
        store = SQLiteFamilyStore(family_db)
        with pytest.raises(NotFoundError):
            await store.join_family("ZZZZZZ", "Dad")
