import asyncio
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from common.core.exceptions import StorageUnavailableError
from common.db.errors import storage_guard, with_storage_timeout


class TestStorageGuard:
    async def test_passes_results_through(self):
        async with storage_guard("read"):
            value = await with_storage_timeout(asyncio.sleep(0, result=42))
        assert value == 42

    async def test_translates_operational_error(self):
        with pytest.raises(StorageUnavailableError) as exc_info:
            async with storage_guard("read"):
                raise OperationalError("SELECT 1", {}, Exception("refused"))

        assert isinstance(exc_info.value.__cause__, OperationalError)

    async def test_translates_connection_error(self):
        with pytest.raises(StorageUnavailableError):
            async with storage_guard("read"):
                raise ConnectionResetError("reset by peer")

    async def test_translates_timeout(self):
        with pytest.raises(StorageUnavailableError):
            async with storage_guard("commit"):
                await with_storage_timeout(asyncio.sleep(1), timeout=0.01)

    async def test_constraint_violations_are_not_outages(self):
        with pytest.raises(IntegrityError):
            async with storage_guard("write"):
                raise IntegrityError("INSERT", {}, Exception("duplicate key"))
