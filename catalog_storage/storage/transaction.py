"""Transaction isolation levels and the managed transaction helper."""

from contextlib import asynccontextmanager
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator

from catalog_storage.core.logging import get_logger

if TYPE_CHECKING:
    from catalog_storage.storage.manager import StorageManager

logger = get_logger(__name__)


class TransactionIsolation(str, Enum):
    """Isolation levels, valued with their SQL spelling.

    READ_COMMITTED is the only level the storage core relies on.
    DEFAULT leaves the connection at the backend's configured level.
    """
    DEFAULT = "DEFAULT"
    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


@asynccontextmanager
async def managed_transaction(
    manager: "StorageManager",
    isolation: TransactionIsolation = TransactionIsolation.READ_COMMITTED,
) -> AsyncIterator["StorageManager"]:
    """Run a block inside one transaction.

    Commits when the block finishes, rolls back and re-raises when it
    raises (including cancellation).
    """
    await manager.begin_transaction(isolation)
    try:
        yield manager
    except BaseException:
        try:
            await manager.rollback_transaction()
        except Exception as e:
            logger.error("Rollback failed", error=str(e))
        raise
    else:
        await manager.commit_transaction()
