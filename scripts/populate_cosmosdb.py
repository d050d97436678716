"""
Cosmos DB Data Population Script for the Clinic Front Desk.

Creates the clinic containers if needed and loads the sample doctors,
patients and next-days schedule blocks, using AzureCliCredential.

Usage:
    python scripts/populate_cosmosdb.py

Environment:
    COSMOS_ENDPOINT - Override the default Cosmos DB endpoint
    COSMOS_DATABASE - Override the default database name

Containers:
    - Clinic_Doctors       (partition: /id)
    - Clinic_Patients      (partition: /id)
    - Clinic_Schedules     (partition: /doctor_id)
    - Clinic_Appointments  (partition: /doctor_id) - appointments and slot ledgers, populated at runtime
    - Clinic_Feedback      (partition: /doctor_id) - populated at runtime
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from azure.cosmos import CosmosClient, PartitionKey
from azure.cosmos.exceptions import CosmosHttpResponseError
from azure.identity import AzureCliCredential

# Import configuration from shared module
from shared.cosmos_config import (
    COSMOS_ENDPOINT,
    DATABASE_NAME,
    CLINIC_CONTAINERS,
    get_clinic_container_config,
)

# Import sample data
from use_cases.clinic.data.sample import DOCTORS, PATIENTS, build_schedules

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


# =============================================================================
# COSMOS DB OPERATIONS
# =============================================================================

def upsert_items(container, items: List[Dict[str, Any]]) -> int:
    """Upsert items into a container."""
    count = 0
    for item in items:
        try:
            container.upsert_item(item)
            count += 1
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to upsert item {item.get('id')}: {e}")
    return count


def main():
    """Create the clinic containers and load sample data."""
    logger.info("=" * 60)
    logger.info("Clinic Front Desk - Cosmos DB Population Script")
    logger.info("=" * 60)
    logger.info(f"Endpoint: {COSMOS_ENDPOINT}")
    logger.info(f"Database: {DATABASE_NAME}")
    logger.info("Authentication: AzureCliCredential")
    logger.info("=" * 60)

    logger.info("\nAuthenticating with Azure CLI...")
    credential = AzureCliCredential()

    client = CosmosClient(COSMOS_ENDPOINT, credential=credential)

    logger.info(f"Connecting to database '{DATABASE_NAME}'...")
    try:
        database = client.get_database_client(DATABASE_NAME)
        database.read()
        logger.info(f"Database '{DATABASE_NAME}' found")
    except CosmosHttpResponseError as e:
        logger.error(f"Database '{DATABASE_NAME}' not found or access denied: {e}")
        logger.error("Please create the database first or check RBAC permissions")
        return

    logger.info("\n--- Clinic Containers ---")
    for key in CLINIC_CONTAINERS:
        container_name, partition_key = get_clinic_container_config(key)
        database.create_container_if_not_exists(id=container_name, partition_key=PartitionKey(path=partition_key))
        logger.info(f"  {container_name} (partition: {partition_key})")

    data_sets = [
        ("doctors", DOCTORS),
        ("patients", PATIENTS),
        ("schedules", build_schedules()),
    ]

    logger.info("\n--- Populating Sample Data ---")
    total_items = 0
    for key, items in data_sets:
        container_name, _ = get_clinic_container_config(key)
        container = database.get_container_client(container_name)
        count = upsert_items(container, items)
        logger.info(f"  {container_name}: {count} items")
        total_items += count

    logger.info("\n" + "=" * 60)
    logger.info(f"COMPLETE: {total_items} total items populated")
    logger.info("Appointments, slot ledgers and feedback are written at runtime")
    logger.info("=" * 60)

    # Print Azure CLI commands for creating all containers
    logger.info("\n--- Azure CLI Commands to Create All Containers ---")
    logger.info("# If the account does not allow container creation from the data plane, run:")
    for key, (container_name, partition_key) in CLINIC_CONTAINERS.items():
        logger.info(f'az cosmosdb sql container create --account-name "<account>" --database-name "{DATABASE_NAME}" --name "{container_name}" --partition-key-path "{partition_key}" --resource-group "<resource-group>"')


if __name__ == "__main__":
    main()
