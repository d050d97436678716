"""
Data Layer Base Classes.

The data layer provides the Repository pattern for data access.
This abstracts away the specific data store (Cosmos DB, in-memory, etc.)
and provides a clean interface for the application services.

Key principles:
- Repositories handle persistence only
- No business logic in repositories (rules are passed in as callables)
- Support for different backends via dependency injection
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

# Type variable for entity types
T = TypeVar("T")


class NotFoundError(LookupError):
    """A referenced entity does not exist in the store."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


class ConcurrencyConflict(Exception):
    """
    Raised by a repository when a conditional write kept losing the race
    after its bounded number of attempts.
    """


@dataclass
class QueryOptions:
    """Options for repository queries."""
    limit: int = 10
    offset: int = 0
    order_by: Optional[str] = None
    order_desc: bool = False
    filters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_page(cls, page: int, limit: int, **kwargs) -> "QueryOptions":
        """Build options from 1-based page numbers."""
        page = max(page, 1)
        return cls(limit=limit, offset=(page - 1) * limit, **kwargs)


@dataclass
class QueryResult(Generic[T]):
    """Result of a repository query with pagination info."""
    data: List[T]
    total_count: int
    has_more: bool
    next_offset: Optional[int] = None

    @classmethod
    def from_slice(cls, items: List[T], options: QueryOptions) -> "QueryResult[T]":
        """Cut one page out of an already filtered and sorted list."""
        total = len(items)
        end = options.offset + options.limit
        page = items[options.offset:end]
        has_more = end < total
        return cls(
            data=page,
            total_count=total,
            has_more=has_more,
            next_offset=end if has_more else None,
        )

    def pagination(self, options: QueryOptions) -> Dict[str, int]:
        """Pagination block used in list responses."""
        limit = max(options.limit, 1)
        return {
            "page": options.offset // limit + 1,
            "pages": math.ceil(self.total_count / limit),
            "total": self.total_count,
            "limit": options.limit,
        }
