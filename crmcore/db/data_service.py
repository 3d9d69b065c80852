"""
Abstract backend data service.

The CRM layer talks to storage only through this interface: equality-filtered
reads and writes against named collections, one transaction per call.
"""

from abc import ABC, abstractmethod
from typing import Any

Row = dict[str, Any]
Filters = dict[str, Any]

COLLECTIONS = (
    "organizations",
    "profiles",
    "contacts",
    "deals",
    "tasks",
    "activities",
)


class DataService(ABC):
    """
    Request/response access to the backend's collections.

    Rows are plain dicts keyed by wire column names. A failed call never rolls
    back an earlier successful one.
    """

    @abstractmethod
    async def select(
        self,
        collection: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[Row]:
        """
        Read every row matching all equality filters.

        Args:
            collection: Collection (table) name
            filters: Column -> value equality conditions; None matches NULL
            order_by: Optional column to sort on
            descending: Sort newest/largest first

        Returns:
            Matching rows

        Raises:
            UpstreamError: If the backend call fails
        """
        pass

    async def select_one(self, collection: str, filters: Filters) -> Row | None:
        """Read the first row matching the filters, or None."""
        rows = await self.select(collection, filters)
        return rows[0] if rows else None

    @abstractmethod
    async def insert(self, collection: str, values: Row) -> Row:
        """
        Insert one row.

        Returns:
            The stored row, including server-assigned defaults

        Raises:
            ConflictError: On a unique or integrity constraint violation
            UpstreamError: If the backend call fails
        """
        pass

    @abstractmethod
    async def update(self, collection: str, filters: Filters, values: Row) -> list[Row]:
        """
        Update every row matching the filters.

        Returns:
            The updated rows (empty when nothing matched)
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, filters: Filters) -> int:
        """
        Delete every row matching the filters.

        Returns:
            Number of rows removed
        """
        pass

    async def close(self) -> None:
        """Release any connections held by the service."""
        pass


def require_filters(collection: str, filters: Filters) -> None:
    """Refuse unfiltered bulk writes."""
    if not filters:
        raise ValueError(f"Refusing unfiltered write on {collection}")
