"""
Core Framework for the clinic front-desk service.

This module provides the base classes and interfaces that each use case
builds on. The layered architecture ensures:

1. Domain Layer - Pure business rules, no I/O
2. Data Layer - Repository pattern for data access
3. Application Layer - Services and HTTP routes that wire everything together
"""

from .domain import DomainEvent, DomainService, PolicyDecision, PolicyEngine, PolicyResult
from .data import ConcurrencyConflict, NotFoundError, QueryOptions, QueryResult

__all__ = [
    # Domain
    "DomainEvent",
    "DomainService",
    "PolicyDecision",
    "PolicyEngine",
    "PolicyResult",
    # Data
    "ConcurrencyConflict",
    "NotFoundError",
    "QueryOptions",
    "QueryResult",
]
