"""
Connection handling helper for SQL store operations.

The SQL stores accept either an AsyncEngine or an AsyncConnection. The
``execute_with_connection`` context manager hides the difference.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Context manager for executing database operations.

    Args:
        conn: Database connection or engine
        transactional: If True, wrap in transaction (begin).
                       If False, use bare connection (connect).
                       Only applies when conn is an AsyncEngine.

    Yields:
        AsyncConnection ready for execute() calls

    Example:
        >>> async with execute_with_connection(self._conn) as conn:
        ...     await conn.execute(query, params)

    Note:
        When passing an existing AsyncConnection, the caller is responsible
        for transaction management.
    """
    if isinstance(conn, AsyncEngine):
        if transactional:
            async with conn.begin() as connection:
                yield connection
        else:
            async with conn.connect() as connection:
                yield connection
    else:
        yield conn
