#!/usr/bin/env python3
"""
Create the record documents table in Snowflake.

Workouts, exercise records and athlete profiles all live in one
versioned documents table. Run this once per environment before
starting the API without mock mode.

Usage:
    python scripts/init_schema.py
    python scripts/init_schema.py --dry-run

Requires:
    - .env file with Snowflake credentials (same variables as the API)
"""

import sys
from pathlib import Path

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from src.config.settings import get_settings
from src.infrastructure.snowflake.client import (
    SnowflakeConfig,
    SnowflakeConnectionError,
    get_snowflake_connection,
)
from src.infrastructure.snowflake.repositories.documents import (
    CREATE_TABLE_SQL,
    DOCUMENTS_TABLE,
    SnowflakeDocumentStore,
)


def create_schema(dry_run: bool = False) -> bool:
    """Create the documents table. Returns True on success."""
    settings = get_settings()

    if dry_run:
        print("\n=== DRY RUN - No statements will be executed ===\n")
        print(CREATE_TABLE_SQL.strip())
        return True

    missing = [
        field for field in settings.validate_required_fields()
        if field.startswith("SNOWFLAKE")
    ]
    if missing:
        print(f"ERROR: Missing configuration: {', '.join(missing)}")
        return False

    config = SnowflakeConfig(
        account=settings.snowflake_account,
        user=settings.snowflake_user,
        password=settings.snowflake_password or None,
        private_key_path=settings.snowflake_private_key_path,
        private_key_base64=settings.snowflake_private_key_base64,
        database=settings.snowflake_database,
        schema=settings.snowflake_schema,
        warehouse=settings.snowflake_warehouse,
        role=settings.snowflake_role,
    )

    try:
        print(f"Connecting to Snowflake account: {config.account}")
        with get_snowflake_connection(config) as conn:
            SnowflakeDocumentStore(conn).create_schema()
    except SnowflakeConnectionError as e:
        print(f"ERROR connecting to Snowflake: {e}")
        return False

    print(f"[OK] {config.database}.{config.schema}.{DOCUMENTS_TABLE} is ready")
    return True


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Create the record documents table in Snowflake')
    parser.add_argument('--dry-run', action='store_true', help='Print the DDL, don\'t execute it')
    args = parser.parse_args()

    success = create_schema(dry_run=args.dry_run)

    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
