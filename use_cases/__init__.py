"""
Use Cases Package.

Each use case is a self-contained module following the layered
architecture defined in core/:
- domain/: Pure business logic (policies, services)
- data/: Repository pattern for data access
- service.py: Application service orchestrating domain and data
- routes.py: HTTP endpoints

Available use cases:
- clinic: Front-desk scheduling, booking, cancellation and feedback
"""

from use_cases.clinic import ClinicService, router as clinic_router

__all__ = [
    "ClinicService",
    "clinic_router",
]
