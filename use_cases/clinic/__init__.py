"""
Clinic front-desk use case.

Layout follows core/:
- domain/: Pure business logic (slot planning, booking and cancellation
  policies, rating aggregation)
- data/: Repository interface with in-memory and Cosmos DB backends
- service.py: Application service wiring policies to the repository
- routes.py: FastAPI router
"""

from .service import ClinicService
from .routes import router

__all__ = [
    "ClinicService",
    "router",
]
