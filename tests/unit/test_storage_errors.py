"""Unit tests for storage error translation."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError, ProgrammingError

from falvia.database import storage_errors
from falvia.errors import StorageConflictError, TransientIOError


def _session() -> AsyncMock:
    return AsyncMock()


class TestStorageErrors:
    """Driver errors become engine errors after a rollback."""

    @pytest.mark.asyncio
    async def test_integrity_error_is_conflict(self):
        db = _session()
        with pytest.raises(StorageConflictError):
            async with storage_errors(db):
                raise IntegrityError("INSERT INTO daily_claims", {}, Exception("UNIQUE constraint failed"))
        db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error_cls", [OperationalError, InterfaceError])
    async def test_operational_errors_are_transient(self, error_cls):
        db = _session()
        with pytest.raises(TransientIOError) as exc_info:
            async with storage_errors(db):
                raise error_cls("UPDATE accounts", {}, Exception("connection reset"))
        assert exc_info.value.retryable is True
        db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalidated_connection_is_transient(self):
        db = _session()
        with pytest.raises(TransientIOError):
            async with storage_errors(db):
                raise DBAPIError("SELECT 1", {}, Exception("server closed"), connection_invalidated=True)
        db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_programming_error_is_not_retryable(self):
        db = _session()
        with pytest.raises(ProgrammingError):
            async with storage_errors(db):
                raise ProgrammingError("SELECT nope", {}, Exception("no such column"))
        db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_clean_block_does_not_roll_back(self):
        db = _session()
        async with storage_errors(db):
            pass
        db.rollback.assert_not_awaited()
