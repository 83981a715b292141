"""Executor protocol: the abstract interface for running SQL statements."""

from collections.abc import AsyncIterator
from typing import Any, Protocol


class Executor(Protocol):
    """Runs one parameterized statement at a time against a database.

    Implementations must be async.  Arguments are positional and match the
    placeholders of the statement set selected by :attr:`dialect`.  Driver
    errors propagate unchanged; executors never retry.
    """

    dialect: str

    async def execute(self, query: str, *args: Any) -> int:
        """Run a statement and return the number of affected rows."""
        ...

    async def fetchrow(self, query: str, *args: Any) -> dict[str, Any] | None:
        """Run a query and return its first row, or ``None`` when empty."""
        ...

    def iterate(self, query: str, *args: Any) -> AsyncIterator[dict[str, Any]]:
        """Run a query and stream its rows."""
        ...

    async def close(self) -> None:
        """Release any connections held by the executor."""
        ...
