"""
Shared modules for the clinic front-desk application.

This package contains shared configuration and utilities used across the
application and its scripts.
"""

from shared.cosmos_config import (
    COSMOS_ENDPOINT,
    DATABASE_NAME,
    CLINIC_CONTAINERS,
)

__all__ = [
    "COSMOS_ENDPOINT",
    "DATABASE_NAME",
    "CLINIC_CONTAINERS",
]
