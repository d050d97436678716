"""
Azure Cosmos DB Configuration.

Centralized configuration for all Cosmos DB settings used across the application.
This ensures consistency between the application, scripts, and data population tools.

Environment Variables (optional overrides):
    COSMOS_ENDPOINT - Override the default Cosmos DB endpoint
    COSMOS_DATABASE - Override the default database name
"""

import os

# =============================================================================
# COSMOS DB CONNECTION
# =============================================================================

COSMOS_ENDPOINT = os.getenv(
    "COSMOS_ENDPOINT",
    "https://localhost:8081/"
)

DATABASE_NAME = os.getenv(
    "COSMOS_DATABASE",
    "clinic"
)

# =============================================================================
# CLINIC DATA CONTAINERS
# =============================================================================

# Format: logical_name -> (container_name, partition_key_path)
# Appointments share a partition per doctor with their slot ledgers so a
# booking and its capacity update can run in one transactional batch.
CLINIC_CONTAINERS = {
    "doctors": ("Clinic_Doctors", "/id"),
    "patients": ("Clinic_Patients", "/id"),
    "schedules": ("Clinic_Schedules", "/doctor_id"),
    "appointments": ("Clinic_Appointments", "/doctor_id"),
    "feedback": ("Clinic_Feedback", "/doctor_id"),
}

# Simple container name lookup (without partition key)
CLINIC_CONTAINER_NAMES = {
    key: name for key, (name, _) in CLINIC_CONTAINERS.items()
}

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_clinic_container_name(logical_name: str) -> str:
    """Get the actual container name for a logical clinic container name."""
    if logical_name in CLINIC_CONTAINER_NAMES:
        return CLINIC_CONTAINER_NAMES[logical_name]
    return logical_name


def get_clinic_container_config(logical_name: str) -> tuple:
    """Get (container_name, partition_key_path) for a clinic container."""
    if logical_name in CLINIC_CONTAINERS:
        return CLINIC_CONTAINERS[logical_name]
    raise ValueError(f"Unknown clinic container: {logical_name}")
